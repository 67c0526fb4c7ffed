# Overview: Driver fuel-card balances from month-end snapshots plus replay.

"""
Fuel-card balance semantics:

Events that move a driver's balance (POSTED documents only):
- FUEL_CARD_TOP_UP movement:      + fuel-tagged quantity
- INVENTORY_ADJUSTMENT movement:  + signed quantity
- waybill:                        - fuel_filled

Every event has a business day and an instant. Movements happen at the start of
their day; waybills at their departure time on their own date.

balance_as_of(driver, target):
- day-only target: events with day <= target, snapshot with date <= target
- timestamp target: events with instant <= target, snapshot with date < target day
  (a snapshot closes its whole day)
Result is rounded half-up to 0.01, both on the snapshot path and on full replay.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Iterable, Optional

from flask import current_app

from ..extensions import db
from ..models import BalanceSnapshot, Driver, StockMovement, Waybill
from ..validation import NotFoundError
from fleetledger.time_utils import DateLike, month_ends_between, parse_iso_date, parse_iso_datetime, today as today_utc
from .audit_service import audit_business
from .cache_service import broadcast
from .fuel_service import round_half_up
from .posting_service import DRIVER_REASONS, create_adjustment, fuel_card_delta


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BalanceEvent:
    day: date
    at: datetime
    delta: float
    source: str


def _movement_events(driver_id: int) -> list[BalanceEvent]:
    movements = (
        db.session.query(StockMovement)
        .filter(
            StockMovement.driver_id == driver_id,
            StockMovement.status == "POSTED",
            StockMovement.expense_reason.in_(sorted(DRIVER_REASONS)),
        )
        .all()
    )
    return [
        BalanceEvent(
            day=m.date,
            at=datetime.combine(m.date, time.min),
            delta=fuel_card_delta(m),
            source=f"stock_movement:{m.id}",
        )
        for m in movements
    ]


def _waybill_events(driver_id: int) -> list[BalanceEvent]:
    waybills = (
        db.session.query(Waybill)
        .filter(Waybill.driver_id == driver_id, Waybill.status == "POSTED")
        .all()
    )
    return [
        BalanceEvent(
            day=w.date,
            at=datetime.combine(w.date, w.valid_from.time() if w.valid_from else time.min),
            delta=-(w.fuel_filled or 0.0),
            source=f"waybill:{w.id}",
        )
        for w in waybills
        if w.fuel_filled
    ]


def driver_events(driver_id: int) -> list[BalanceEvent]:
    """All balance-moving events of a driver in chronological order."""
    events = _movement_events(driver_id) + _waybill_events(driver_id)
    events.sort(key=lambda e: (e.at, e.source))
    return events


def _parse_target(target: DateLike) -> tuple[date, Optional[datetime]]:
    """(target day, target instant or None for day-only targets)."""
    if isinstance(target, datetime):
        return target.date(), target
    if isinstance(target, date):
        return target, None
    text = str(target).strip()
    if len(text) == 10:
        return parse_iso_date(text), None
    instant = parse_iso_datetime(text)
    return instant.date(), instant


def _included(event: BalanceEvent, target_day: date, target_at: Optional[datetime]) -> bool:
    if target_at is None:
        return event.day <= target_day
    return event.at <= target_at


def _sum(events: Iterable[BalanceEvent]) -> float:
    return sum(e.delta for e in events)


def _get_driver(driver_id: int) -> Driver:
    driver = db.session.get(Driver, driver_id)
    if driver is None:
        raise NotFoundError(f"Driver {driver_id} not found")
    return driver


def latest_snapshot(driver_id: int, target_day: date, *, inclusive: bool = True) -> Optional[BalanceSnapshot]:
    q = db.session.query(BalanceSnapshot).filter(BalanceSnapshot.driver_id == driver_id)
    if inclusive:
        q = q.filter(BalanceSnapshot.date <= target_day)
    else:
        q = q.filter(BalanceSnapshot.date < target_day)
    return q.order_by(BalanceSnapshot.date.desc()).first()


def balance_as_of(driver_id: int, target: DateLike) -> float:
    """Balance at `target`: latest snapshot on or before it plus the events after it."""
    _get_driver(driver_id)
    target_day, target_at = _parse_target(target)

    snapshot = latest_snapshot(driver_id, target_day, inclusive=target_at is None)
    start = snapshot.balance if snapshot else 0.0
    cutoff = snapshot.date if snapshot else None

    total = start + _sum(
        e for e in driver_events(driver_id)
        if (cutoff is None or e.day > cutoff) and _included(e, target_day, target_at)
    )
    return round_half_up(total, 2)


def replay_balance(driver_id: int, target: DateLike | None = None) -> float:
    """Full replay of the driver's history, ignoring snapshots."""
    events = driver_events(driver_id)
    if target is not None:
        target_day, target_at = _parse_target(target)
        events = [e for e in events if _included(e, target_day, target_at)]
    return round_half_up(_sum(events), 2)


def regenerate_snapshots(today: date | None = None) -> int:
    """
    Drop every snapshot and rebuild month-end snapshots for all drivers.

    One forward pass per driver: from the month of its first event up to (not
    including) today, emit the running balance at each month end.
    """
    stop = today or today_utc()

    db.session.query(BalanceSnapshot).delete(synchronize_session=False)

    snapshots: list[BalanceSnapshot] = []
    for driver in db.session.query(Driver).order_by(Driver.id).all():
        events = driver_events(driver.id)
        if not events:
            continue

        running = 0.0
        cursor = 0
        for boundary in month_ends_between(events[0].day, stop):
            while cursor < len(events) and events[cursor].day <= boundary:
                running += events[cursor].delta
                cursor += 1
            snapshots.append(
                BalanceSnapshot(driver_id=driver.id, date=boundary, balance=round_half_up(running, 2))
            )

    try:
        db.session.add_all(snapshots)
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception("Snapshot regeneration failed")
        raise

    broadcast("snapshots", count=len(snapshots))
    logger.info("Regenerated %d balance snapshot(s) up to %s", len(snapshots), stop.isoformat())
    return len(snapshots)


def recalculate_driver_balances() -> dict[int, float]:
    """Rewrite every cached fuel_card_balance from a full replay."""
    balances: dict[int, float] = {}
    for driver in db.session.query(Driver).all():
        balances[driver.id] = replay_balance(driver.id)
        driver.fuel_card_balance = balances[driver.id]
    db.session.commit()
    broadcast("drivers")
    logger.info("Recalculated fuel-card balances for %d driver(s)", len(balances))
    return balances


def reset_fuel_card_balance(driver_id: int, *, actor_id: str | None = None, note: str | None = None) -> dict:
    """
    Zero a driver's fuel card.

    Posts an adjustment for the negated current balance when it is not already
    zero, then forces the cached field to exactly 0.
    """
    _get_driver(driver_id)
    epsilon = current_app.config.get("BALANCE_EPSILON", 0.001)

    current_day = today_utc()
    old_balance = balance_as_of(driver_id, current_day)

    adjustment = None
    if abs(old_balance) > epsilon:
        adjustment = create_adjustment(
            driver_id,
            -old_balance,
            note or f"Fuel card reset (balance {old_balance:.2f})",
            on_date=current_day,
            actor_id=actor_id,
        )

    driver = _get_driver(driver_id)
    driver.fuel_card_balance = 0.0
    db.session.commit()
    broadcast("drivers", driver_id=driver_id)

    audit_business(
        "employee.fuelReset",
        {
            "driver_id": driver_id,
            "old_balance": old_balance,
            "adjustment_id": adjustment.id if adjustment else None,
        },
        actor_id=actor_id,
    )
    return {
        "driver_id": driver_id,
        "old_balance": old_balance,
        "adjustment": adjustment.to_dict() if adjustment else None,
    }