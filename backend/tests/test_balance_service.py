from datetime import date, datetime

import pytest

from fleetledger.extensions import db
from fleetledger.models import BalanceSnapshot, BusinessEvent, Driver
from fleetledger.services import balance_service, posting_service, waybill_service
from fleetledger.validation import NotFoundError


@pytest.fixture
def history(db_session, vehicle, driver, fuel_item, make_posted_waybill):
    """
    +100 top-up on 2024-03-10, -30 waybill on 2024-04-15 08:00,
    -5 adjustment on 2024-05-02. Final balance 65.
    """
    top_up = posting_service.create_movement(
        {
            "date": "2024-03-10",
            "movement_type": "EXPENSE",
            "expense_reason": "FUEL_CARD_TOP_UP",
            "driver_id": driver.id,
            "lines": [{"stock_item_id": fuel_item.id, "quantity": 100}],
        }
    )
    posting_service.post_movement(top_up.id)
    make_posted_waybill(vehicle, driver, day=date(2024, 4, 15), fuel_filled=30.0, number="WL-1")
    posting_service.create_adjustment(driver.id, -5.0, on_date=date(2024, 5, 2))
    return driver


def test_replay_walks_full_history(history):
    assert balance_service.replay_balance(history.id) == 65.0
    assert balance_service.replay_balance(history.id, "2024-04-14") == 100.0
    assert balance_service.replay_balance(history.id, "2024-04-15") == 70.0


def test_timestamp_target_respects_departure_time(history):
    assert balance_service.balance_as_of(history.id, "2024-04-15T07:59:00") == 100.0
    assert balance_service.balance_as_of(history.id, datetime(2024, 4, 15, 8, 0)) == 70.0


def test_regenerate_writes_one_snapshot_per_month_end(history):
    count = balance_service.regenerate_snapshots(today=date(2024, 6, 1))
    assert count == 3

    snapshots = (
        db.session.query(BalanceSnapshot)
        .filter_by(driver_id=history.id)
        .order_by(BalanceSnapshot.date)
        .all()
    )
    assert [(s.date, s.balance) for s in snapshots] == [
        (date(2024, 3, 31), 100.0),
        (date(2024, 4, 30), 70.0),
        (date(2024, 5, 31), 65.0),
    ]


def test_regenerate_is_idempotent(history):
    balance_service.regenerate_snapshots(today=date(2024, 6, 1))
    balance_service.regenerate_snapshots(today=date(2024, 6, 1))
    assert db.session.query(BalanceSnapshot).count() == 3


@pytest.mark.parametrize(
    "target",
    ["2024-03-09", "2024-03-31", "2024-04-15", "2024-04-30", "2024-05-01", "2024-05-02", "2024-07-01",
     "2024-04-15T07:00:00", "2024-05-31T12:00:00"],
)
def test_snapshot_path_matches_full_replay(history, target):
    balance_service.regenerate_snapshots(today=date(2024, 6, 1))
    assert balance_service.balance_as_of(history.id, target) == balance_service.replay_balance(history.id, target)


def test_snapshot_is_trusted_over_history(history):
    balance_service.regenerate_snapshots(today=date(2024, 6, 1))
    snapshot = db.session.query(BalanceSnapshot).filter_by(date=date(2024, 4, 30)).one()
    snapshot.balance = 1000.0
    db.session.commit()

    assert balance_service.balance_as_of(history.id, "2024-05-15") == 995.0


def test_backdated_top_up_drops_stale_snapshots(history, fuel_item):
    balance_service.regenerate_snapshots(today=date(2024, 6, 1))
    late = posting_service.create_movement(
        {
            "date": "2024-03-15",
            "movement_type": "EXPENSE",
            "expense_reason": "FUEL_CARD_TOP_UP",
            "driver_id": history.id,
            "lines": [{"stock_item_id": fuel_item.id, "quantity": 40}],
        }
    )
    posting_service.post_movement(late.id)

    assert db.session.query(BalanceSnapshot).filter_by(driver_id=history.id).count() == 0
    assert balance_service.balance_as_of(history.id, "2024-03-31") == 140.0
    for target in ("2024-03-31", "2024-05-15", "2024-07-01"):
        assert balance_service.balance_as_of(history.id, target) == balance_service.replay_balance(history.id, target)

    balance_service.regenerate_snapshots(today=date(2024, 6, 1))
    posting_service.unpost_movement(late.id)
    assert balance_service.balance_as_of(history.id, "2024-05-31") == balance_service.replay_balance(history.id) == 65.0


def test_posting_a_waybill_drops_later_snapshots(history, vehicle):
    balance_service.regenerate_snapshots(today=date(2024, 6, 1))
    waybill = waybill_service.create_waybill(
        {
            "vehicle_id": vehicle.id,
            "driver_id": history.id,
            "date": "2024-05-10",
            "valid_from": "2024-05-10T08:00:00",
            "valid_to": "2024-05-10T18:00:00",
            "fuel_filled": 20.0,
            "segments": [{"distance_km": 100}],
        }
    )
    waybill_service.post_waybill(waybill.id)

    kept = db.session.query(BalanceSnapshot).filter_by(driver_id=history.id).order_by(BalanceSnapshot.date).all()
    assert [s.date for s in kept] == [date(2024, 3, 31), date(2024, 4, 30)]
    assert balance_service.balance_as_of(history.id, "2024-05-31") == 45.0
    assert balance_service.replay_balance(history.id, "2024-05-31") == 45.0


def test_recalculate_driver_balances_rewrites_cache(history):
    driver = db.session.get(Driver, history.id)
    driver.fuel_card_balance = 12.0
    db.session.commit()

    balances = balance_service.recalculate_driver_balances()
    assert balances[history.id] == 65.0
    assert db.session.get(Driver, history.id).fuel_card_balance == 65.0


def test_reset_posts_negating_adjustment(history):
    result = balance_service.reset_fuel_card_balance(history.id, actor_id="boss")

    assert result["old_balance"] == 65.0
    assert result["adjustment"]["expense_reason"] == "INVENTORY_ADJUSTMENT"
    assert result["adjustment"]["lines"][0]["quantity"] == -65.0
    assert balance_service.replay_balance(history.id) == 0.0
    assert db.session.get(Driver, history.id).fuel_card_balance == 0.0
    assert db.session.query(BusinessEvent).filter_by(event_type="employee.fuelReset").count() == 1


def test_reset_of_empty_card_posts_nothing(db_session, driver, fuel_item):
    result = balance_service.reset_fuel_card_balance(driver.id)
    assert result["adjustment"] is None
    assert result["old_balance"] == 0.0


def test_unknown_driver(db_session):
    with pytest.raises(NotFoundError):
        balance_service.balance_as_of(999, "2024-05-01")
