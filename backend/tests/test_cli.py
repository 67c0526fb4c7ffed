from datetime import date

from sqlalchemy import update

from fleetledger.extensions import db
from fleetledger.models import StockMovement
from fleetledger.services import posting_service


def _post_income(item):
    movement = posting_service.create_movement(
        {"date": "2024-05-03", "movement_type": "INCOME", "lines": [{"stock_item_id": item.id, "quantity": 10}]}
    )
    return posting_service.post_movement(movement.id)


def test_lock_and_verify_period(app, db_session, fuel_item):
    movement = _post_income(fuel_item)
    runner = app.test_cli_runner()

    result = runner.invoke(args=['ledger', 'lock-period', '2024-05', '--actor', 'cli'])
    assert result.exit_code == 0, result.output
    assert 'LOCKED 2024-05: 1 records' in result.output

    result = runner.invoke(args=['ledger', 'verify-period', '2024-05'])
    assert result.exit_code == 0
    assert 'PASS 2024-05' in result.output

    db.session.execute(update(StockMovement).where(StockMovement.id == movement.id).values(notes='edited'))
    db.session.commit()

    result = runner.invoke(args=['ledger', 'verify-period', '2024-05'])
    assert result.exit_code == 1
    assert 'FAIL 2024-05' in result.output


def test_lock_empty_period_fails(app, db_session):
    result = app.test_cli_runner().invoke(args=['ledger', 'lock-period', '2030-01'])
    assert result.exit_code == 1
    assert 'no posted documents' in result.output


def test_regenerate_snapshots(app, db_session, driver, fuel_item):
    posting_service.create_adjustment(driver.id, 12.0, on_date=date(2024, 4, 2))

    result = app.test_cli_runner().invoke(args=['ledger', 'regenerate-snapshots', '--today', '2024-06-01'])
    assert result.exit_code == 0
    assert 'Regenerated 2 balance snapshots.' in result.output


def test_recalc_drafts_unknown_vehicle(app, db_session):
    result = app.test_cli_runner().invoke(
        args=['ledger', 'recalc-drafts', '--vehicle-id', '99', '--from-date', '2024-05-01']
    )
    assert result.exit_code == 1
    assert 'Vehicle 99 not found' in result.output
