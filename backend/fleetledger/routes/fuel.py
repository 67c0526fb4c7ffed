# backend/fleetledger/routes/fuel.py
"""
Fuel calculator and season settings routes.

POST /api/fuel/calculate
    {
      "method": "BOILER" | "SEGMENTS" | "MIXED" | "by_total" | "by_segment",
      "vehicle_id": 1,                 // or "rates": {...}
      "base_date": "2024-05-10",
      "day_mode": "single" | "multi",
      "segments": [{"distance_km": 50, "is_city_driving": true, "date": "2024-05-10"}],
      "odometer_distance": 120,        // MIXED only, optional
      "odometer_start": 1000,          // optional, adds odometer_end
      "fuel_at_start": 20, "fuel_filled": 10   // optional, adds fuel_at_end
    }

The calculator is pure; the route only resolves rates and season settings.
"""
from flask import Blueprint, current_app, request

from ..extensions import db
from ..models import Vehicle
from ..services import settings_service
from ..services.fuel_service import (
    FuelCalculationInput,
    FuelRates,
    Segment,
    calculate_fuel,
    calculate_fuel_end,
    calculate_odometer_end,
    map_legacy_method,
)
from fleetledger.time_utils import parse_iso_date
from ..validation import NotFoundError, ValidationError
from .errors import DOMAIN_ERRORS, error_response


fuel_bp = Blueprint("fuel", __name__, url_prefix="/api/fuel")

RATE_KEYS = (
    "summer_rate",
    "winter_rate",
    "city_increase_percent",
    "warming_increase_percent",
    "mountain_increase_percent",
)


def _number(value, key: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{key} must be a number")


def _rates_from_payload(payload: dict) -> FuelRates:
    if payload.get("vehicle_id") is not None:
        vehicle = db.session.get(Vehicle, payload["vehicle_id"])
        if vehicle is None:
            raise NotFoundError(f"Vehicle {payload['vehicle_id']} not found")
        return vehicle.fuel_rates()

    raw = payload.get("rates")
    if not isinstance(raw, dict):
        raise ValidationError("Either vehicle_id or rates is required")
    return FuelRates(**{key: _number(raw.get(key, 0), key) for key in RATE_KEYS})


def _segments_from_payload(raw_segments) -> list[Segment]:
    if not isinstance(raw_segments, list):
        raise ValidationError("segments must be a list")
    segments = []
    for index, raw in enumerate(raw_segments):
        if not isinstance(raw, dict):
            raise ValidationError(f"segments[{index}] must be an object")
        try:
            segment_date = parse_iso_date(raw.get("date"))
        except ValueError:
            raise ValidationError(f"segments[{index}].date must be an ISO date")
        segments.append(
            Segment(
                distance_km=_number(raw.get("distance_km", 0), f"segments[{index}].distance_km"),
                is_city_driving=bool(raw.get("is_city_driving")),
                is_warming=bool(raw.get("is_warming")),
                is_mountain_driving=bool(raw.get("is_mountain_driving")),
                date=segment_date,
            )
        )
    return segments


@fuel_bp.post("/calculate")
def calculate_route():
    payload = request.get_json(silent=True) or {}

    try:
        segments = _segments_from_payload(payload.get("segments", []))
        rates = _rates_from_payload(payload)
        try:
            base_date = parse_iso_date(payload.get("base_date"))
        except ValueError:
            raise ValidationError("base_date must be an ISO date")
        if base_date is None:
            raise ValidationError("base_date is required")
        day_mode = payload.get("day_mode", "multi")
        if day_mode not in ("single", "multi"):
            raise ValidationError("day_mode must be 'single' or 'multi'")
        odometer_distance = payload.get("odometer_distance")
        if odometer_distance is not None:
            odometer_distance = _number(odometer_distance, "odometer_distance")

        data = FuelCalculationInput(
            segments=segments,
            rates=rates,
            base_date=base_date,
            season_settings=settings_service.get_season_settings(),
            day_mode=day_mode,
            odometer_distance=odometer_distance,
        )
        method = map_legacy_method(payload.get("method")) or "BOILER"
        result = calculate_fuel(method, data).to_dict()

        if payload.get("odometer_start") is not None:
            result["odometer_end"] = calculate_odometer_end(
                _number(payload["odometer_start"], "odometer_start"), segments
            )
        if payload.get("fuel_at_start") is not None:
            result["fuel_at_end"] = calculate_fuel_end(
                _number(payload["fuel_at_start"], "fuel_at_start"),
                _number(payload.get("fuel_filled") or 0, "fuel_filled"),
                result["consumption"],
            )
        result["method"] = method
        return result, 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Fuel calculation failed")
        return {"error": "Internal server error"}, 500


@fuel_bp.get("/season-settings")
def get_season_settings_route():
    settings = settings_service.get_season_settings()
    return {
        "rule_type": settings.rule_type,
        "winter_month": settings.winter_month,
        "summer_month": settings.summer_month,
        "winter_start_date": settings.winter_start_date.isoformat() if settings.winter_start_date else None,
        "winter_end_date": settings.winter_end_date.isoformat() if settings.winter_end_date else None,
    }, 200


@fuel_bp.put("/season-settings")
def save_season_settings_route():
    payload = request.get_json(silent=True) or {}
    try:
        row = settings_service.save_season_settings(payload)
        return {"season_settings": row.to_dict()}, 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to save season settings")
        return {"error": "Internal server error"}, 500
