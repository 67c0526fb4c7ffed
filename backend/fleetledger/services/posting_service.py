# Overview: Stock movement CRUD and the saga-based post/unpost engine.

"""
FleetLedger Stock & Fuel-Card Posting (authoritative)

State machine:
    DRAFT --post--> POSTED --unpost--> DRAFT
    DRAFT --delete--> removed
    POSTED is never edited or deleted directly.

Posting effects:
- INCOME:  item.balance += quantity
- EXPENSE: item.balance -= quantity; refused when the item balance is short,
  unless expense_reason is FUEL_CARD_TOP_UP (advance provisioning may go negative)
- FUEL_CARD_TOP_UP: driver.fuel_card_balance += quantity of fuel-tagged lines
- INVENTORY_ADJUSTMENT: driver side only (signed quantity), stock is untouched
- Driver-side postings and unpostings drop that driver's balance snapshots
  dated on or after the movement date

Every write is its own commit. The writes of one posting run as a saga:
one step per changed stock item, one for the driver, one for the status.
A failing step compensates the completed ones from their captured pre-images.

Gate:
- The period-lock check runs before any other validation, on post, unpost,
  create, update (old and new date) and delete.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Any, Callable

from flask import current_app

from ..extensions import db
from ..models import BalanceSnapshot, Driver, StockItem, StockMovement, StockMovementLine
from ..validation import (
    ModelValidationPolicy,
    NotFoundError,
    ValidationError,
    enforce_rules_movement_lines,
    validate_payload,
)
from fleetledger.time_utils import today
from .audit_service import audit_business
from .cache_service import broadcast
from .integrity_service import ensure_period_open
from .lifecycle_service import LifecycleError, can_delete_movement, can_edit_movement, can_transition_movement
from .saga_service import SagaTransaction
from .sequence_service import movement_sequence_type, next_document_number


logger = logging.getLogger(__name__)

MOVEMENT_TYPES = {"INCOME", "EXPENSE"}
EXPENSE_REASONS = {
    "WAYBILL",
    "MAINTENANCE",
    "WRITE_OFF",
    "FUEL_CARD_TOP_UP",
    "INVENTORY_ADJUSTMENT",
    "OTHER",
}
DRIVER_REASONS = {"FUEL_CARD_TOP_UP", "INVENTORY_ADJUSTMENT"}

MOVEMENT_POLICY = ModelValidationPolicy(
    writable_fields={
        "doc_number",
        "date",
        "movement_type",
        "expense_reason",
        "organization_id",
        "driver_id",
        "vehicle_id",
        "waybill_id",
        "supplier",
        "notes",
        "lines",
    },
    required_on_create={"date", "movement_type", "lines"},
    nested_fields={"lines"},
)

LINE_POLICY = ModelValidationPolicy(
    writable_fields={"stock_item_id", "quantity", "unit_price"},
    required_on_create={"stock_item_id", "quantity"},
)


# =============================================================================
# Shared helpers
# =============================================================================

def get_movement(movement_id: int) -> StockMovement:
    movement = db.session.get(StockMovement, movement_id)
    if movement is None:
        raise NotFoundError(f"Stock movement {movement_id} not found")
    return movement


def fuel_card_delta(movement: StockMovement) -> float:
    """
    Signed change a POSTED movement applies to its driver's fuel card.

    Top-ups count fuel-tagged lines only; adjustments count every line.
    """
    if movement.expense_reason == "FUEL_CARD_TOP_UP":
        return sum(
            line.quantity or 0.0
            for line in movement.lines
            if line.stock_item is not None and line.stock_item.is_fuel_item
        )
    if movement.expense_reason == "INVENTORY_ADJUSTMENT":
        return movement.total_quantity()
    return 0.0


def _quantities_by_item(movement: StockMovement) -> "OrderedDict[int, float]":
    totals: OrderedDict[int, float] = OrderedDict()
    for line in movement.lines:
        totals[line.stock_item_id] = totals.get(line.stock_item_id, 0.0) + (line.quantity or 0.0)
    return totals


def _load_items(item_ids) -> dict[int, StockItem]:
    items = {}
    for item_id in item_ids:
        item = db.session.get(StockItem, item_id)
        if item is None:
            raise NotFoundError(f"Stock item {item_id} not found")
        items[item_id] = item
    return items


def _load_driver(driver_id: int | None) -> Driver:
    if driver_id is None:
        raise ValidationError("A driver is required for fuel-card movements")
    driver = db.session.get(Driver, driver_id)
    if driver is None:
        raise NotFoundError(f"Driver {driver_id} not found")
    return driver


def _commit_fields(row, values: dict) -> None:
    """Single-entity write: set, commit, roll back on failure."""
    try:
        for key, value in values.items():
            setattr(row, key, value)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


def write_step(model, pk: int, compute: Callable[[Any], dict]) -> tuple[Callable[[], Any], Callable[[], None]]:
    """
    Build an (action, compensation) pair for one entity.

    The action captures the pre-image of the fields it changes right before
    writing; the compensation writes that pre-image back.
    """
    pre_image: dict = {}

    def action():
        row = db.session.get(model, pk)
        if row is None:
            raise NotFoundError(f"{model.__name__} {pk} not found")
        values = compute(row)
        pre_image.clear()
        pre_image.update({key: getattr(row, key) for key in values})
        _commit_fields(row, values)
        return row

    def compensation():
        if not pre_image:
            return
        row = db.session.get(model, pk)
        if row is None:
            raise NotFoundError(f"{model.__name__} {pk} disappeared during compensation")
        _commit_fields(row, dict(pre_image))

    return action, compensation


def _add_stock_step(saga: SagaTransaction, item_id: int, delta: float, movement: StockMovement) -> None:
    movement_date = movement.date

    def compute(item: StockItem) -> dict:
        values = {"balance": (item.balance or 0.0) + delta}
        if delta and (item.last_movement_date is None or movement_date >= item.last_movement_date):
            values["last_movement_date"] = movement_date
        return values

    action, compensation = write_step(StockItem, item_id, compute)
    saga.add(action, compensation, label=f"stock_item:{item_id}")


def _add_driver_step(saga: SagaTransaction, driver_id: int, delta: float) -> None:
    action, compensation = write_step(
        Driver,
        driver_id,
        lambda driver: {"fuel_card_balance": (driver.fuel_card_balance or 0.0) + delta},
    )
    saga.add(action, compensation, label=f"driver:{driver_id}")


def _add_status_step(saga: SagaTransaction, movement_id: int, status: str) -> None:
    action, compensation = write_step(StockMovement, movement_id, lambda _m: {"status": status})
    saga.add(action, compensation, label=f"movement:{movement_id}:status")


def discard_stale_snapshots(driver_id: int | None, day) -> int:
    """
    Drop the driver's balance snapshots dated on or after `day`.

    Called after a posting that moves the driver's balance on `day`. Snapshots
    are never patched: the affected months are answered by replay until the
    next regeneration.
    """
    if driver_id is None or day is None:
        return 0
    try:
        removed = (
            db.session.query(BalanceSnapshot)
            .filter(BalanceSnapshot.driver_id == driver_id, BalanceSnapshot.date >= day)
            .delete(synchronize_session=False)
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception("Failed to discard snapshots of driver %s from %s", driver_id, day)
        raise

    if removed:
        logger.info("Discarded %d stale snapshot(s) of driver %s from %s", removed, driver_id, day)
        broadcast("snapshots", driver_id=driver_id, removed=removed)
    return removed


# =============================================================================
# Post / unpost
# =============================================================================

def post_movement(movement_id: int, *, actor_id: str | None = None) -> StockMovement:
    """
    DRAFT -> POSTED.

    Raises:
        NotFoundError: movement, item or driver missing
        PeriodLockedError: the movement date is in a sealed period
        LifecycleError: movement is not a DRAFT
        ValidationError: insufficient stock or missing driver
    """
    movement = get_movement(movement_id)
    ensure_period_open(movement.date)

    if not can_transition_movement(movement.status, "POSTED"):
        raise LifecycleError(f"Cannot post movement {movement_id}: status is '{movement.status}', must be 'DRAFT'")
    if not movement.lines:
        raise ValidationError("Cannot post a movement without lines")

    reason = movement.expense_reason
    is_adjustment = reason == "INVENTORY_ADJUSTMENT"
    quantities = _quantities_by_item(movement)
    items = _load_items(quantities)

    if movement.movement_type == "EXPENSE" and reason not in DRIVER_REASONS:
        for item_id, quantity in quantities.items():
            balance = items[item_id].balance or 0.0
            if balance < quantity:
                raise ValidationError(
                    f"Insufficient balance for '{items[item_id].name}': available {balance}, requested {quantity}"
                )

    driver_delta = fuel_card_delta(movement)
    if reason in DRIVER_REASONS:
        _load_driver(movement.driver_id)

    saga = SagaTransaction(name=f"post:{movement.doc_number}")
    if not is_adjustment:
        sign = 1.0 if movement.movement_type == "INCOME" else -1.0
        for item_id, quantity in quantities.items():
            _add_stock_step(saga, item_id, sign * quantity, movement)
    if reason in DRIVER_REASONS and driver_delta:
        _add_driver_step(saga, movement.driver_id, driver_delta)
    _add_status_step(saga, movement.id, "POSTED")

    saga.execute()

    broadcast("stock", movement_id=movement_id)
    if reason in DRIVER_REASONS:
        broadcast("drivers", driver_id=movement.driver_id)
        discard_stale_snapshots(movement.driver_id, movement.date)
    audit_business(
        "stock.posted",
        {"movement_id": movement_id, "doc_number": movement.doc_number, "reason": reason},
        actor_id=actor_id,
    )
    return get_movement(movement_id)


def unpost_movement(movement_id: int, *, actor_id: str | None = None) -> StockMovement:
    """
    POSTED -> DRAFT, reversing every balance change made by posting.

    Reversing a top-up is refused when the driver's current balance is lower
    than the topped-up amount (the fuel was already used).
    """
    movement = get_movement(movement_id)
    ensure_period_open(movement.date)

    if not can_transition_movement(movement.status, "DRAFT"):
        raise LifecycleError(f"Cannot unpost movement {movement_id}: status is '{movement.status}', must be 'POSTED'")

    reason = movement.expense_reason
    is_adjustment = reason == "INVENTORY_ADJUSTMENT"
    quantities = _quantities_by_item(movement)
    items = _load_items(quantities)
    driver_delta = fuel_card_delta(movement)

    if reason in DRIVER_REASONS:
        driver = _load_driver(movement.driver_id)
        if reason == "FUEL_CARD_TOP_UP" and (driver.fuel_card_balance or 0.0) < driver_delta:
            raise ValidationError(
                f"Cannot unpost top-up {movement.doc_number}: driver balance "
                f"{driver.fuel_card_balance} is below {driver_delta}, the fuel was already used"
            )

    if movement.movement_type == "INCOME" and not is_adjustment:
        for item_id, quantity in quantities.items():
            balance = items[item_id].balance or 0.0
            if balance < quantity:
                raise ValidationError(
                    f"Cannot unpost {movement.doc_number}: '{items[item_id].name}' has only {balance} left"
                )

    saga = SagaTransaction(name=f"unpost:{movement.doc_number}")
    if not is_adjustment:
        sign = -1.0 if movement.movement_type == "INCOME" else 1.0
        for item_id, quantity in quantities.items():
            _add_stock_step(saga, item_id, sign * quantity, movement)
    if reason in DRIVER_REASONS and driver_delta:
        _add_driver_step(saga, movement.driver_id, -driver_delta)
    _add_status_step(saga, movement.id, "DRAFT")

    saga.execute()

    broadcast("stock", movement_id=movement_id)
    if reason in DRIVER_REASONS:
        broadcast("drivers", driver_id=movement.driver_id)
        discard_stale_snapshots(movement.driver_id, movement.date)
    audit_business(
        "stock.unposted",
        {"movement_id": movement_id, "doc_number": movement.doc_number, "reason": reason},
        actor_id=actor_id,
    )
    return get_movement(movement_id)


# =============================================================================
# Draft CRUD
# =============================================================================

def _validate_lines(raw_lines: list, *, allow_negative: bool) -> list[dict]:
    lines = []
    for index, raw in enumerate(raw_lines):
        if not isinstance(raw, dict):
            raise ValidationError(f"lines[{index}] must be an object")
        lines.append(validate_payload(model=StockMovementLine, payload=raw, policy=LINE_POLICY, partial=False))
    enforce_rules_movement_lines(lines)
    if not allow_negative:
        for index, line in enumerate(lines):
            if line["quantity"] < 0:
                raise ValidationError(f"lines[{index}].quantity must be > 0")
    _load_items({line["stock_item_id"] for line in lines})
    return lines


def _check_header(patch: dict) -> None:
    movement_type = patch.get("movement_type")
    if movement_type is not None and movement_type not in MOVEMENT_TYPES:
        raise ValidationError(f"movement_type must be one of: {', '.join(sorted(MOVEMENT_TYPES))}")
    reason = patch.get("expense_reason")
    if reason is not None:
        if reason not in EXPENSE_REASONS:
            raise ValidationError(f"expense_reason must be one of: {', '.join(sorted(EXPENSE_REASONS))}")
        if movement_type == "INCOME":
            raise ValidationError("expense_reason is only valid for EXPENSE movements")
    if reason in DRIVER_REASONS and patch.get("driver_id") is None:
        raise ValidationError(f"driver_id is required for {reason}")


def _replace_lines(movement: StockMovement, lines: list[dict]) -> None:
    movement.lines.clear()
    for position, line in enumerate(lines):
        movement.lines.append(StockMovementLine(position=position, **line))


def create_movement(payload: dict) -> StockMovement:
    """Create a DRAFT movement; blank doc_number gets the next monthly number."""
    patch = validate_payload(model=StockMovement, payload=payload, policy=MOVEMENT_POLICY, partial=False)
    ensure_period_open(patch["date"])
    _check_header(patch)
    lines = _validate_lines(
        patch.pop("lines"),
        allow_negative=patch.get("expense_reason") == "INVENTORY_ADJUSTMENT",
    )
    if patch.get("driver_id") is not None:
        _load_driver(patch["driver_id"])

    if not patch.get("doc_number"):
        patch["doc_number"] = next_document_number(
            movement_sequence_type(patch["movement_type"], patch.get("expense_reason")),
            patch["date"],
        )

    movement = StockMovement(status="DRAFT", **patch)
    _replace_lines(movement, lines)
    db.session.add(movement)
    db.session.commit()
    broadcast("stock", movement_id=movement.id)
    return movement


def update_movement(movement_id: int, payload: dict) -> StockMovement:
    movement = get_movement(movement_id)
    ensure_period_open(movement.date)
    if not can_edit_movement(movement.status):
        raise LifecycleError(f"Cannot edit movement {movement_id}: status is '{movement.status}'")

    patch = validate_payload(model=StockMovement, payload=payload, policy=MOVEMENT_POLICY, partial=True)
    if "date" in patch:
        if patch["date"] is None:
            raise ValidationError("date cannot be null")
        ensure_period_open(patch["date"])

    merged = {
        "movement_type": movement.movement_type,
        "expense_reason": movement.expense_reason,
        "driver_id": movement.driver_id,
    }
    merged.update({k: v for k, v in patch.items() if k in merged})
    _check_header(merged)

    lines = None
    if "lines" in patch:
        lines = _validate_lines(
            patch.pop("lines"),
            allow_negative=merged["expense_reason"] == "INVENTORY_ADJUSTMENT",
        )

    for key, value in patch.items():
        setattr(movement, key, value)
    if lines is not None:
        _replace_lines(movement, lines)

    db.session.commit()
    broadcast("stock", movement_id=movement.id)
    return movement


def delete_movement(movement_id: int) -> None:
    movement = get_movement(movement_id)
    ensure_period_open(movement.date)
    if not can_delete_movement(movement.status):
        raise LifecycleError(f"Cannot delete movement {movement_id}: status is '{movement.status}'")
    db.session.delete(movement)
    db.session.commit()
    broadcast("stock", movement_id=movement_id)


def list_movements(
    *,
    status: str | None = None,
    driver_id: int | None = None,
    expense_reason: str | None = None,
    limit: int = 200,
) -> list[StockMovement]:
    q = db.session.query(StockMovement)
    if status:
        q = q.filter(StockMovement.status == status)
    if driver_id is not None:
        q = q.filter(StockMovement.driver_id == driver_id)
    if expense_reason:
        q = q.filter(StockMovement.expense_reason == expense_reason)
    return q.order_by(StockMovement.date.desc(), StockMovement.id.desc()).limit(limit).all()


# =============================================================================
# Correction helper and full rebuild
# =============================================================================

def _adjustment_item() -> StockItem:
    items = db.session.query(StockItem).order_by(StockItem.id).all()
    for item in items:
        if item.is_fuel_item:
            return item
    if items:
        return items[0]
    raise ValidationError("No stock item available to carry a balance adjustment")


def create_adjustment(
    driver_id: int,
    delta: float,
    note: str | None = None,
    *,
    on_date=None,
    actor_id: str | None = None,
) -> StockMovement:
    """
    Create and immediately post a single-line fuel-card adjustment of `delta`.

    Goes through the normal draft + post path, so the adjustment is gated,
    audited and can be unposted like any other movement.
    """
    _load_driver(driver_id)
    if not delta:
        raise ValidationError("Adjustment delta must be non-zero")
    item = _adjustment_item()

    movement = create_movement(
        {
            "date": on_date or today(),
            "movement_type": "EXPENSE",
            "expense_reason": "INVENTORY_ADJUSTMENT",
            "driver_id": driver_id,
            "notes": note,
            "lines": [{"stock_item_id": item.id, "quantity": delta}],
        }
    )
    logger.info("Created fuel-card adjustment %s for driver %s (%+.2f)", movement.doc_number, driver_id, delta)
    return post_movement(movement.id, actor_id=actor_id)


def recalculate_stock_balances() -> dict[int, float]:
    """Rebuild every item balance from POSTED history; adjustments are driver-only."""
    balances = {item.id: 0.0 for item in db.session.query(StockItem).all()}

    movements = (
        db.session.query(StockMovement)
        .filter(StockMovement.status == "POSTED")
        .order_by(StockMovement.date, StockMovement.id)
        .all()
    )
    for movement in movements:
        if movement.expense_reason == "INVENTORY_ADJUSTMENT":
            continue
        sign = 1.0 if movement.movement_type == "INCOME" else -1.0
        for line in movement.lines:
            balances[line.stock_item_id] = balances.get(line.stock_item_id, 0.0) + sign * (line.quantity or 0.0)

    epsilon = current_app.config.get("BALANCE_EPSILON", 0.001)
    for item in db.session.query(StockItem).all():
        value = balances.get(item.id, 0.0)
        item.balance = 0.0 if abs(value) < epsilon else round(value, 3)
        balances[item.id] = item.balance
    db.session.commit()
    broadcast("stock")
    logger.info("Recalculated balances for %d stock item(s)", len(balances))
    return balances
