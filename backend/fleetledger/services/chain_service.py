# Overview: Forward recalculation of a vehicle's draft waybill chain.

"""
Waybill chain rules:
- A vehicle's waybills are ordered by valid_from, then by number.
- Each DRAFT starts where its predecessor ended: odometer_start = previous
  odometer_end (or its odometer_start), fuel_at_start = previous fuel_at_end (or 0).
- The walk stops at the first non-DRAFT successor. POSTED documents are never rewritten.
- Everything is computed first and written in one commit at the end; a failure
  during computation leaves the stored chain untouched.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from ..extensions import db
from ..models import Vehicle, Waybill
from ..validation import NotFoundError
from fleetledger.time_utils import DateLike, parse_iso_date
from .cache_service import broadcast
from .fuel_service import (
    FuelCalculationInput,
    SeasonSettings,
    calculate_fuel,
    calculate_fuel_end,
    calculate_odometer_end,
    map_legacy_method,
)
from .lifecycle_service import is_recalculable
from .settings_service import get_season_settings


logger = logging.getLogger(__name__)

FUEL_TOLERANCE = 0.01


@dataclass
class ChainChange:
    field: str
    old: object
    new: object

    def to_dict(self) -> dict:
        return {"field": self.field, "old": self.old, "new": self.new}


@dataclass
class ChainLogEntry:
    waybill_id: int
    number: str
    date: date
    changes: list[ChainChange] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "waybill_id": self.waybill_id,
            "number": self.number,
            "date": self.date.isoformat() if self.date else None,
            "changes": [c.to_dict() for c in self.changes],
            "warnings": list(self.warnings),
        }


def chain_sort_key(waybill: Waybill):
    return (waybill.valid_from, waybill.number or "")


def vehicle_chain(vehicle_id: int) -> list[Waybill]:
    waybills = db.session.query(Waybill).filter(Waybill.vehicle_id == vehicle_id).all()
    return sorted(waybills, key=chain_sort_key)


def compute_waybill_values(
    waybill: Waybill,
    *,
    odometer_start: int,
    fuel_at_start: float,
    vehicle: Vehicle,
    season: Optional[SeasonSettings],
) -> dict:
    """New odometer/fuel figures for a waybill started at the given values."""
    segments = [s.to_input() for s in waybill.segments]
    data = FuelCalculationInput(
        segments=segments,
        rates=vehicle.fuel_rates(),
        base_date=waybill.date,
        season_settings=season,
        day_mode=waybill.day_mode,
    )
    result = calculate_fuel(map_legacy_method(waybill.calculation_method or "by_total"), data)
    return {
        "odometer_start": odometer_start,
        "fuel_at_start": fuel_at_start,
        "odometer_end": calculate_odometer_end(odometer_start, segments),
        "fuel_planned": result.consumption,
        "fuel_at_end": calculate_fuel_end(fuel_at_start, waybill.fuel_filled or 0.0, result.consumption),
    }


def _apply_bulk(pending: list[tuple[Waybill, dict]]) -> None:
    try:
        for waybill, values in pending:
            for key, value in values.items():
                setattr(waybill, key, value)
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception("Bulk write of %d recalculated waybill(s) failed", len(pending))
        raise
    broadcast("waybills", count=len(pending))


def recalculate_chain_from(waybill: Waybill) -> list[Waybill]:
    """
    Push the end values of `waybill` forward through its DRAFT successors.

    Returns the rewritten successors; an empty list when there is nothing to do.
    """
    chain = vehicle_chain(waybill.vehicle_id)
    index = next((i for i, w in enumerate(chain) if w.id == waybill.id), None)
    if index is None or index == len(chain) - 1:
        return []

    vehicle = db.session.get(Vehicle, waybill.vehicle_id)
    if vehicle is None:
        return []
    season = get_season_settings()

    previous_odometer = waybill.odometer_end if waybill.odometer_end is not None else waybill.odometer_start
    previous_fuel = waybill.fuel_at_end if waybill.fuel_at_end is not None else 0.0

    pending: list[tuple[Waybill, dict]] = []
    try:
        for current in chain[index + 1:]:
            if not is_recalculable(current.status):
                break
            values = compute_waybill_values(
                current,
                odometer_start=previous_odometer,
                fuel_at_start=previous_fuel,
                vehicle=vehicle,
                season=season,
            )
            pending.append((current, values))
            previous_odometer = values["odometer_end"]
            previous_fuel = values["fuel_at_end"]
    except Exception:
        logger.exception("Chain recalculation after waybill %s aborted", waybill.id)
        raise

    if pending:
        logger.info("[chain] updating %d waybill(s) after %s", len(pending), waybill.number)
        _apply_bulk(pending)
    return [w for w, _ in pending]


def _changes(waybill: Waybill, values: dict) -> list[ChainChange]:
    changes = []
    if values["odometer_start"] != waybill.odometer_start:
        changes.append(ChainChange("odometer_start", waybill.odometer_start, values["odometer_start"]))
    if abs((values["fuel_at_start"] or 0.0) - (waybill.fuel_at_start or 0.0)) > FUEL_TOLERANCE:
        changes.append(ChainChange("fuel_at_start", waybill.fuel_at_start, values["fuel_at_start"]))
    if values["odometer_end"] != waybill.odometer_end:
        changes.append(ChainChange("odometer_end", waybill.odometer_end, values["odometer_end"]))
    if abs((values["fuel_planned"] or 0.0) - (waybill.fuel_planned or 0.0)) > FUEL_TOLERANCE:
        changes.append(ChainChange("fuel_planned", waybill.fuel_planned, values["fuel_planned"]))
    if abs((values["fuel_at_end"] or 0.0) - (waybill.fuel_at_end or 0.0)) > FUEL_TOLERANCE:
        changes.append(ChainChange("fuel_at_end", waybill.fuel_at_end, values["fuel_at_end"]))
    return changes


def recalculate_drafts_from(vehicle_id: int, from_date: DateLike) -> dict:
    """
    Recompute every DRAFT of a vehicle dated on or after `from_date`.

    Starting values come from the latest POSTED waybill dated before `from_date`;
    without one, from the first draft itself, then the vehicle record.
    Returns {"count": <documents with changes or warnings>, "logs": [...]}.
    """
    vehicle = db.session.get(Vehicle, vehicle_id)
    if vehicle is None:
        raise NotFoundError(f"Vehicle {vehicle_id} not found")
    start_day = parse_iso_date(from_date)

    chain = vehicle_chain(vehicle_id)
    posted_before = [w for w in chain if w.status == "POSTED" and w.date < start_day]
    anchor = max(posted_before, key=lambda w: (w.date, w.valid_from, w.number or ""), default=None)

    drafts = [w for w in chain if is_recalculable(w.status) and w.date >= start_day]
    if not drafts:
        return {"count": 0, "logs": []}

    if anchor is not None:
        odometer = anchor.odometer_end if anchor.odometer_end is not None else anchor.odometer_start
        fuel = anchor.fuel_at_end if anchor.fuel_at_end is not None else 0.0
    else:
        first = drafts[0]
        odometer = first.odometer_start if first.odometer_start is not None else vehicle.mileage
        fuel = first.fuel_at_start if first.fuel_at_start is not None else vehicle.current_fuel
    season = get_season_settings()

    pending: list[tuple[Waybill, dict]] = []
    logs: list[ChainLogEntry] = []
    try:
        for current in drafts:
            values = compute_waybill_values(
                current,
                odometer_start=odometer,
                fuel_at_start=fuel,
                vehicle=vehicle,
                season=season,
            )
            entry = ChainLogEntry(waybill_id=current.id, number=current.number, date=current.date)
            entry.changes = _changes(current, values)
            if values["fuel_at_end"] < 0:
                entry.warnings.append(f"Negative fuel at end: {values['fuel_at_end']} l")
            if entry.changes or entry.warnings:
                logs.append(entry)

            pending.append((current, values))
            odometer = values["odometer_end"]
            fuel = values["fuel_at_end"]
    except Exception:
        logger.exception("Draft recalculation for vehicle %s from %s aborted", vehicle_id, start_day)
        raise

    _apply_bulk(pending)
    logger.info("[chain] recalculated %d draft(s) for vehicle %s, %d changed", len(pending), vehicle_id, len(logs))
    return {"count": len(logs), "logs": [entry.to_dict() for entry in logs]}
