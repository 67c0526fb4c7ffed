from datetime import date

import pytest

from fleetledger.extensions import db
from fleetledger.models import BusinessEvent, Driver, StockItem, StockMovement
from fleetledger.services import integrity_service, posting_service
from fleetledger.services.lifecycle_service import LifecycleError
from fleetledger.validation import PeriodLockedError, ValidationError


def _movement(item, quantity, *, movement_type="INCOME", reason=None, driver=None, day=date(2024, 5, 3)):
    payload = {
        "date": day.isoformat(),
        "movement_type": movement_type,
        "lines": [{"stock_item_id": item.id, "quantity": quantity, "unit_price": 55.0}],
    }
    if reason:
        payload["expense_reason"] = reason
    if driver is not None:
        payload["driver_id"] = driver.id
    return posting_service.create_movement(payload)


def _balance(item_id):
    return db.session.get(StockItem, item_id).balance


def _card(driver_id):
    return db.session.get(Driver, driver_id).fuel_card_balance


def test_new_movements_are_drafts_with_monthly_numbers(db_session, fuel_item):
    first = _movement(fuel_item, 100)
    second = _movement(fuel_item, 5)

    assert first.status == "DRAFT"
    assert first.doc_number == "IN-202405-00001"
    assert second.doc_number == "IN-202405-00002"


def test_post_and_unpost_income_and_expense(db_session, fuel_item):
    income = _movement(fuel_item, 100)
    posting_service.post_movement(income.id)
    assert _balance(fuel_item.id) == 100.0

    expense = _movement(fuel_item, 30, movement_type="EXPENSE", reason="WRITE_OFF")
    posted = posting_service.post_movement(expense.id, actor_id="u-1")
    assert posted.status == "POSTED"
    assert _balance(fuel_item.id) == 70.0

    posting_service.unpost_movement(expense.id)
    assert _balance(fuel_item.id) == 100.0
    assert db.session.get(StockMovement, expense.id).status == "DRAFT"

    events = db.session.query(BusinessEvent).filter_by(event_type="stock.posted").all()
    assert len(events) == 2


def test_expense_refused_when_stock_is_short(db_session, fuel_item):
    expense = _movement(fuel_item, 5, movement_type="EXPENSE", reason="WRITE_OFF")

    with pytest.raises(ValidationError, match="Insufficient balance"):
        posting_service.post_movement(expense.id)

    assert db.session.get(StockMovement, expense.id).status == "DRAFT"
    assert _balance(fuel_item.id) == 0.0


def test_posting_twice_is_a_lifecycle_error(db_session, fuel_item):
    income = _movement(fuel_item, 10)
    posting_service.post_movement(income.id)

    with pytest.raises(LifecycleError):
        posting_service.post_movement(income.id)


def test_top_up_credits_driver_and_may_drive_stock_negative(db_session, fuel_item, driver):
    top_up = _movement(fuel_item, 40, movement_type="EXPENSE", reason="FUEL_CARD_TOP_UP", driver=driver)
    assert top_up.doc_number.startswith("FC-202405-")

    posting_service.post_movement(top_up.id)

    assert _balance(fuel_item.id) == -40.0
    assert _card(driver.id) == 40.0


def test_unpost_top_up_refused_once_fuel_was_used(db_session, fuel_item, driver):
    top_up = _movement(fuel_item, 40, movement_type="EXPENSE", reason="FUEL_CARD_TOP_UP", driver=driver)
    posting_service.post_movement(top_up.id)

    card = db.session.get(Driver, driver.id)
    card.fuel_card_balance = 10.0
    db.session.commit()

    with pytest.raises(ValidationError, match="already used"):
        posting_service.unpost_movement(top_up.id)
    assert db.session.get(StockMovement, top_up.id).status == "POSTED"


def test_top_up_requires_a_driver(db_session, fuel_item):
    with pytest.raises(ValidationError, match="driver_id is required"):
        _movement(fuel_item, 40, movement_type="EXPENSE", reason="FUEL_CARD_TOP_UP")


def test_negative_quantity_only_for_adjustments(db_session, fuel_item):
    with pytest.raises(ValidationError, match="must be > 0"):
        _movement(fuel_item, -3)


def test_failed_status_write_rolls_back_balances(db_session, fuel_item, driver, monkeypatch):
    top_up = _movement(fuel_item, 25, movement_type="EXPENSE", reason="FUEL_CARD_TOP_UP", driver=driver)
    real_commit = posting_service._commit_fields

    def flaky_commit(row, values):
        if isinstance(row, StockMovement) and values.get("status") == "POSTED":
            raise RuntimeError("database is locked")
        real_commit(row, values)

    monkeypatch.setattr(posting_service, "_commit_fields", flaky_commit)

    with pytest.raises(RuntimeError, match="database is locked"):
        posting_service.post_movement(top_up.id)

    assert _balance(fuel_item.id) == 0.0
    assert _card(driver.id) == 0.0
    assert db.session.get(StockMovement, top_up.id).status == "DRAFT"


def test_adjustment_moves_driver_balance_only(db_session, fuel_item, driver):
    adjustment = posting_service.create_adjustment(driver.id, -5.5, "Card audit", on_date=date(2024, 5, 5))

    assert adjustment.status == "POSTED"
    assert adjustment.expense_reason == "INVENTORY_ADJUSTMENT"
    assert _card(driver.id) == -5.5
    assert _balance(fuel_item.id) == 0.0


def test_adjustment_needs_a_stock_item(db_session, driver):
    with pytest.raises(ValidationError, match="No stock item"):
        posting_service.create_adjustment(driver.id, 3.0, on_date=date(2024, 5, 5))


def test_draft_delete_and_posted_delete(db_session, fuel_item):
    draft = _movement(fuel_item, 1)
    posting_service.delete_movement(draft.id)
    assert db.session.get(StockMovement, draft.id) is None

    posted = _movement(fuel_item, 1)
    posting_service.post_movement(posted.id)
    with pytest.raises(LifecycleError):
        posting_service.delete_movement(posted.id)


def test_locked_period_refuses_every_write(db_session, fuel_item):
    income = _movement(fuel_item, 10)
    posting_service.post_movement(income.id)
    integrity_service.lock_period("2024-05")

    with pytest.raises(PeriodLockedError) as exc_info:
        posting_service.unpost_movement(income.id)
    assert exc_info.value.period == "2024-05"

    with pytest.raises(PeriodLockedError):
        _movement(fuel_item, 1, day=date(2024, 5, 20))

    draft = _movement(fuel_item, 1, day=date(2024, 6, 1))
    with pytest.raises(PeriodLockedError):
        posting_service.update_movement(draft.id, {"date": "2024-05-31"})


def test_recalculate_stock_balances_rebuilds_from_history(db_session, fuel_item, driver):
    income = _movement(fuel_item, 100)
    posting_service.post_movement(income.id)
    expense = _movement(fuel_item, 12.5, movement_type="EXPENSE", reason="MAINTENANCE")
    posting_service.post_movement(expense.id)
    posting_service.create_adjustment(driver.id, 7.0, on_date=date(2024, 5, 6))

    item = db.session.get(StockItem, fuel_item.id)
    item.balance = 999.0
    db.session.commit()

    balances = posting_service.recalculate_stock_balances()
    assert balances[fuel_item.id] == 87.5
    assert _balance(fuel_item.id) == 87.5
