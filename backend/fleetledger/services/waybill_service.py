# Overview: Waybill CRUD, lifecycle transitions and vehicle stats sync.

from __future__ import annotations

import logging

from sqlalchemy import func

from ..extensions import db
from ..models import Driver, RouteSegment, Vehicle, Waybill
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    NotFoundError,
    ValidationError,
    enforce_rules_segments,
    enforce_rules_waybill,
    validate_payload,
)
from fleetledger.time_utils import utcnow
from .audit_service import audit_business
from .cache_service import broadcast
from .chain_service import (
    chain_sort_key,
    compute_waybill_values,
    recalculate_chain_from,
    recalculate_drafts_from,
    vehicle_chain,
)
from .fuel_service import LEGACY_METHODS, VALID_METHODS
from .integrity_service import ensure_period_open
from .lifecycle_service import (
    LifecycleError,
    can_delete_waybill,
    can_edit_waybill,
    is_recalculable,
    require_transition,
)
from .posting_service import discard_stale_snapshots, write_step
from .saga_service import SagaTransaction
from .sequence_service import next_document_number
from .settings_service import get_season_settings


logger = logging.getLogger(__name__)

WAYBILL_POLICY = ModelValidationPolicy(
    writable_fields={
        "number",
        "organization_id",
        "vehicle_id",
        "driver_id",
        "date",
        "valid_from",
        "valid_to",
        "odometer_start",
        "odometer_end",
        "fuel_at_start",
        "fuel_filled",
        "fuel_at_end",
        "fuel_planned",
        "calculation_method",
        "blank_id",
        "notes",
        "segments",
    },
    required_on_create={"vehicle_id", "date", "valid_from", "valid_to"},
    nested_fields={"segments"},
)

SEGMENT_POLICY = ModelValidationPolicy(
    writable_fields={
        "origin",
        "destination",
        "distance_km",
        "is_city_driving",
        "is_warming",
        "is_mountain_driving",
        "segment_date",
    },
    required_on_create={"distance_km"},
)

# Fields that feed the fuel calculator; changing one recomputes the end values
CALCULATION_INPUTS = {
    "segments",
    "odometer_start",
    "fuel_at_start",
    "fuel_filled",
    "calculation_method",
    "date",
    "valid_to",
    "vehicle_id",
}
CALCULATED_FIELDS = {"odometer_end", "fuel_planned", "fuel_at_end"}


def get_waybill(waybill_id: int) -> Waybill:
    waybill = db.session.get(Waybill, waybill_id)
    if waybill is None:
        raise NotFoundError(f"Waybill {waybill_id} not found")
    return waybill


def _get_vehicle(vehicle_id: int) -> Vehicle:
    vehicle = db.session.get(Vehicle, vehicle_id)
    if vehicle is None:
        raise NotFoundError(f"Vehicle {vehicle_id} not found")
    return vehicle


def _check_driver(driver_id: int | None) -> None:
    if driver_id is not None and db.session.get(Driver, driver_id) is None:
        raise NotFoundError(f"Driver {driver_id} not found")


def list_waybills(
    *,
    vehicle_id: int | None = None,
    driver_id: int | None = None,
    status: str | None = None,
    limit: int = 200,
) -> list[Waybill]:
    q = db.session.query(Waybill)
    if vehicle_id is not None:
        q = q.filter(Waybill.vehicle_id == vehicle_id)
    if driver_id is not None:
        q = q.filter(Waybill.driver_id == driver_id)
    if status:
        q = q.filter(Waybill.status == status)
    return q.order_by(Waybill.valid_from.desc(), Waybill.id.desc()).limit(limit).all()


def check_number_unique(number: str, doc_date, *, exclude_id: int | None = None) -> None:
    """Numbers are unique per calendar year, case-insensitive, cancelled ones ignored."""
    year = doc_date.year
    q = db.session.query(Waybill).filter(
        func.lower(func.trim(Waybill.number)) == number.strip().lower(),
        Waybill.status != "CANCELLED",
    )
    if exclude_id is not None:
        q = q.filter(Waybill.id != exclude_id)
    for other in q.all():
        if other.date.year == year:
            raise ConflictError(f'Waybill number "{number}" already exists in {year}')


def _validate_segments(raw_segments: list) -> list[dict]:
    segments = []
    for index, raw in enumerate(raw_segments):
        if not isinstance(raw, dict):
            raise ValidationError(f"segments[{index}] must be an object")
        segments.append(validate_payload(model=RouteSegment, payload=raw, policy=SEGMENT_POLICY, partial=False))
    enforce_rules_segments(segments)
    return segments


def _check_method(patch: dict) -> None:
    method = patch.get("calculation_method")
    if method is not None and method not in VALID_METHODS | LEGACY_METHODS:
        allowed = ", ".join(sorted(VALID_METHODS | LEGACY_METHODS))
        raise ValidationError(f"calculation_method must be one of: {allowed}")


def _replace_segments(waybill: Waybill, segments: list[dict]) -> None:
    waybill.segments.clear()
    db.session.flush()
    for position, segment in enumerate(segments):
        waybill.segments.append(RouteSegment(position=position, **segment))


def _chain_neighbours(vehicle_id: int, key, *, exclude_id: int | None = None):
    """(predecessor, successor) of a chain position; CANCELLED waybills are skipped."""
    chain = [
        w for w in vehicle_chain(vehicle_id)
        if w.id != exclude_id and w.status != "CANCELLED"
    ]
    predecessor = next((w for w in reversed(chain) if chain_sort_key(w) < key), None)
    successor = next((w for w in chain if chain_sort_key(w) > key), None)
    return predecessor, successor


def _fill_calculated(waybill: Waybill, vehicle: Vehicle, *, only_missing: bool) -> None:
    values = compute_waybill_values(
        waybill,
        odometer_start=waybill.odometer_start or 0,
        fuel_at_start=waybill.fuel_at_start or 0.0,
        vehicle=vehicle,
        season=get_season_settings(),
    )
    for key in CALCULATED_FIELDS:
        if only_missing and getattr(waybill, key) is not None:
            continue
        setattr(waybill, key, values[key])


# =============================================================================
# CRUD
# =============================================================================

def create_waybill(payload: dict, *, actor_id: str | None = None) -> Waybill:
    """
    Create a DRAFT waybill.

    Missing start values come from the ending values of the preceding waybill
    in the vehicle chain, or from the vehicle record when there is none. Missing
    end values come from the fuel calculator. DRAFT successors are recalculated
    afterwards.
    """
    patch = validate_payload(model=Waybill, payload=payload, policy=WAYBILL_POLICY, partial=False)
    ensure_period_open(patch["date"])
    enforce_rules_waybill(patch)
    _check_method(patch)

    vehicle = _get_vehicle(patch["vehicle_id"])
    _check_driver(patch.get("driver_id"))
    segments = _validate_segments(patch.pop("segments", []) or [])

    if not patch.get("number"):
        patch["number"] = next_document_number("waybill", patch["date"])
    check_number_unique(patch["number"], patch["date"])

    patch.setdefault("calculation_method", "by_total")
    predecessor, _ = _chain_neighbours(vehicle.id, (patch["valid_from"], patch["number"]))
    if predecessor is not None:
        start_odometer = predecessor.odometer_end if predecessor.odometer_end is not None else predecessor.odometer_start
        start_fuel = predecessor.fuel_at_end if predecessor.fuel_at_end is not None else 0.0
    else:
        start_odometer, start_fuel = vehicle.mileage, vehicle.current_fuel
    if patch.get("odometer_start") is None:
        patch["odometer_start"] = start_odometer or 0
    if patch.get("fuel_at_start") is None:
        patch["fuel_at_start"] = start_fuel or 0.0

    waybill = Waybill(status="DRAFT", **patch)
    for position, segment in enumerate(segments):
        waybill.segments.append(RouteSegment(position=position, **segment))
    _fill_calculated(waybill, vehicle, only_missing=True)

    db.session.add(waybill)
    db.session.commit()
    broadcast("waybills", waybill_id=waybill.id)

    audit_business("waybill.created", {"waybill_id": waybill.id, "number": waybill.number}, actor_id=actor_id)
    recalculate_chain_from(waybill)
    return waybill


def update_waybill(waybill_id: int, payload: dict) -> Waybill:
    waybill = get_waybill(waybill_id)
    ensure_period_open(waybill.date)
    if not can_edit_waybill(waybill.status):
        raise LifecycleError(f"Cannot edit waybill {waybill.number}: status is '{waybill.status}'")

    patch = validate_payload(model=Waybill, payload=payload, policy=WAYBILL_POLICY, partial=True)
    for key in ("vehicle_id", "date", "valid_from", "valid_to"):
        if key in patch and patch[key] is None:
            raise ValidationError(f"{key} cannot be null")
    if "date" in patch:
        ensure_period_open(patch["date"])
    _check_method(patch)

    merged = {
        "odometer_start": waybill.odometer_start,
        "fuel_filled": waybill.fuel_filled,
        "valid_from": waybill.valid_from,
        "valid_to": waybill.valid_to,
    }
    merged.update({k: v for k, v in patch.items() if k in merged})
    enforce_rules_waybill(merged)

    vehicle = _get_vehicle(patch.get("vehicle_id", waybill.vehicle_id))
    _check_driver(patch.get("driver_id"))

    new_number = patch.get("number") or waybill.number
    new_date = patch.get("date", waybill.date)
    if new_number != waybill.number or new_date.year != waybill.date.year:
        check_number_unique(new_number, new_date, exclude_id=waybill.id)

    segments = None
    if "segments" in patch:
        segments = _validate_segments(patch.pop("segments") or [])

    for key, value in patch.items():
        setattr(waybill, key, value)
    if segments is not None:
        _replace_segments(waybill, segments)

    touched_inputs = (set(patch) | ({"segments"} if segments is not None else set())) & CALCULATION_INPUTS
    if touched_inputs and not (CALCULATED_FIELDS & set(patch)):
        _fill_calculated(waybill, vehicle, only_missing=False)

    db.session.commit()
    broadcast("waybills", waybill_id=waybill.id)
    recalculate_chain_from(waybill)
    return waybill


def delete_waybill(waybill_id: int) -> None:
    waybill = get_waybill(waybill_id)
    ensure_period_open(waybill.date)
    if not can_delete_waybill(waybill.status):
        raise LifecycleError(f"Cannot delete waybill {waybill.number}: status is '{waybill.status}'")

    predecessor, successor = _chain_neighbours(
        waybill.vehicle_id, chain_sort_key(waybill), exclude_id=waybill.id
    )
    db.session.delete(waybill)
    db.session.commit()
    broadcast("waybills", waybill_id=waybill_id)

    # the successors now continue from the surviving predecessor
    if predecessor is not None:
        recalculate_chain_from(predecessor)
    elif successor is not None and is_recalculable(successor.status):
        recalculate_chain_from(successor)


# =============================================================================
# Status transitions
# =============================================================================

def submit_waybill(waybill_id: int) -> Waybill:
    waybill = get_waybill(waybill_id)
    ensure_period_open(waybill.date)
    if waybill.status != "DRAFT":
        raise LifecycleError(f"Only DRAFT waybills can be submitted, {waybill.number} is '{waybill.status}'")
    waybill.status = "SUBMITTED"
    db.session.commit()
    broadcast("waybills", waybill_id=waybill.id)
    return waybill


def cancel_waybill(waybill_id: int, *, actor_id: str | None = None) -> Waybill:
    waybill = get_waybill(waybill_id)
    ensure_period_open(waybill.date)
    require_transition(f"waybill {waybill.number}", waybill.status, "CANCELLED")
    waybill.status = "CANCELLED"
    db.session.commit()
    broadcast("waybills", waybill_id=waybill.id)
    audit_business("waybill.cancelled", {"waybill_id": waybill.id, "number": waybill.number}, actor_id=actor_id)
    return waybill


def _validate_for_posting(waybill: Waybill) -> None:
    if waybill.driver_id is None:
        raise ValidationError(f"Waybill {waybill.number} has no driver")
    if waybill.vehicle_id is None:
        raise ValidationError(f"Waybill {waybill.number} has no vehicle")
    _check_driver(waybill.driver_id)
    _get_vehicle(waybill.vehicle_id)
    if waybill.odometer_end is None:
        raise ValidationError(f"Waybill {waybill.number} has no ending odometer")
    if waybill.odometer_end < (waybill.odometer_start or 0):
        raise ValidationError(
            f"Waybill {waybill.number}: odometer_end {waybill.odometer_end} is below odometer_start {waybill.odometer_start}"
        )
    if waybill.fuel_at_end is None or waybill.fuel_at_end < 0:
        raise ValidationError(f"Waybill {waybill.number}: ending fuel must be >= 0, got {waybill.fuel_at_end}")


def post_waybill(waybill_id: int, *, actor_id: str | None = None) -> Waybill:
    """
    DRAFT/SUBMITTED -> POSTED.

    Saga: driver fuel card -= fuel_filled, then the status change. The vehicle
    record is synced to the latest posted waybill afterwards.
    """
    waybill = get_waybill(waybill_id)
    ensure_period_open(waybill.date)
    require_transition(f"waybill {waybill.number}", waybill.status, "POSTED")
    if waybill.status == "POSTED":
        raise LifecycleError(f"Waybill {waybill.number} is already posted")
    _validate_for_posting(waybill)

    fuel_filled = waybill.fuel_filled or 0.0
    saga = SagaTransaction(name=f"post:{waybill.number}")
    if fuel_filled:
        action, compensation = write_step(
            Driver,
            waybill.driver_id,
            lambda driver: {"fuel_card_balance": (driver.fuel_card_balance or 0.0) - fuel_filled},
        )
        saga.add(action, compensation, label=f"driver:{waybill.driver_id}")
    action, compensation = write_step(
        Waybill,
        waybill.id,
        lambda _w: {"status": "POSTED", "posted_at": utcnow(), "posted_by": actor_id},
    )
    saga.add(action, compensation, label=f"waybill:{waybill.id}:status")
    saga.execute()

    broadcast("waybills", waybill_id=waybill_id)
    broadcast("drivers", driver_id=waybill.driver_id)
    if fuel_filled:
        discard_stale_snapshots(waybill.driver_id, waybill.date)
    sync_vehicle_stats(waybill.vehicle_id)
    audit_business("waybill.posted", {"waybill_id": waybill.id, "number": waybill.number}, actor_id=actor_id)
    return get_waybill(waybill_id)


def revert_waybill(waybill_id: int, *, reason: str | None = None, actor_id: str | None = None) -> dict:
    """
    POSTED -> DRAFT for corrections.

    Refused while a later POSTED waybill exists for the same vehicle. Afterwards
    the vehicle record is re-synced and the vehicle's drafts from this date on
    are recalculated; their change log is returned.
    """
    waybill = get_waybill(waybill_id)
    ensure_period_open(waybill.date)
    if waybill.status != "POSTED":
        raise LifecycleError(f"Only POSTED waybills can be reverted, {waybill.number} is '{waybill.status}'")

    own_key = chain_sort_key(waybill)
    later = [
        w for w in db.session.query(Waybill).filter(
            Waybill.vehicle_id == waybill.vehicle_id,
            Waybill.status == "POSTED",
            Waybill.id != waybill.id,
        ).all()
        if chain_sort_key(w) > own_key
    ]
    if later:
        numbers = ", ".join(sorted(w.number for w in later))
        raise ConflictError(
            f"Cannot revert waybill {waybill.number}: later posted waybill(s) {numbers} must be reverted first"
        )

    fuel_filled = waybill.fuel_filled or 0.0
    note = waybill.notes or ""
    if reason:
        note = f"{note}\nCorrection: {reason}".strip()

    saga = SagaTransaction(name=f"revert:{waybill.number}")
    if fuel_filled and waybill.driver_id is not None:
        action, compensation = write_step(
            Driver,
            waybill.driver_id,
            lambda driver: {"fuel_card_balance": (driver.fuel_card_balance or 0.0) + fuel_filled},
        )
        saga.add(action, compensation, label=f"driver:{waybill.driver_id}")
    action, compensation = write_step(
        Waybill,
        waybill.id,
        lambda _w: {"status": "DRAFT", "posted_at": None, "posted_by": None, "notes": note or None},
    )
    saga.add(action, compensation, label=f"waybill:{waybill.id}:status")
    saga.execute()

    broadcast("waybills", waybill_id=waybill_id)
    broadcast("drivers", driver_id=waybill.driver_id)
    if fuel_filled:
        discard_stale_snapshots(waybill.driver_id, waybill.date)

    waybill = get_waybill(waybill_id)
    sync_vehicle_stats(waybill.vehicle_id)
    result = recalculate_drafts_from(waybill.vehicle_id, waybill.date)
    audit_business(
        "waybill.corrected",
        {"waybill_id": waybill.id, "number": waybill.number, "reason": reason, "recalculated": result["count"]},
        actor_id=actor_id,
    )
    return {"waybill": get_waybill(waybill_id), "recalculation": result}


# =============================================================================
# Vehicle stats
# =============================================================================

def sync_vehicle_stats(vehicle_id: int) -> Vehicle:
    """Mirror the end values of the vehicle's latest POSTED waybill onto the vehicle."""
    vehicle = _get_vehicle(vehicle_id)
    posted = db.session.query(Waybill).filter(Waybill.vehicle_id == vehicle_id, Waybill.status == "POSTED").all()
    if not posted:
        return vehicle

    latest = max(posted, key=lambda w: (w.date, w.valid_to, w.number or ""))
    changed = False
    if latest.odometer_end is not None and vehicle.mileage != latest.odometer_end:
        vehicle.mileage = latest.odometer_end
        changed = True
    if latest.fuel_at_end is not None and vehicle.current_fuel != latest.fuel_at_end:
        vehicle.current_fuel = latest.fuel_at_end
        changed = True

    if changed:
        db.session.commit()
        broadcast("vehicles", vehicle_id=vehicle_id)
        logger.info("Vehicle %s synced to waybill %s", vehicle_id, latest.number)
    return vehicle
