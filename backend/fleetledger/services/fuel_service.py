# Overview: Pure fuel consumption calculations shared by waybills, chains and the API.

"""
FleetLedger Fuel Calculator (authoritative)

Every fuel figure in the system comes from these functions. They are pure:
no database access, no clock, no settings lookup.

ALGORITHMS:
    BOILER:   sum segments -> round to whole km -> (km / 100) * base rate -> round to 0.01
    SEGMENTS: per segment (km / 100) * base rate * (1 + sum of modifiers), sum, round to 0.01
    MIXED:    effective average rate from SEGMENTS applied to an external total distance

Rounding follows half-up semantics (2.5 -> 3, -2.5 -> -2) at the points named above
and nowhere else. Intermediate values are never rounded.

Seasons:
- recurring: winter iff month >= winter_month OR month < summer_month
- manual: winter iff winter_start_date <= date <= winter_end_date
- no settings at all: always summer
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date
from typing import Iterable, Literal, Optional, Sequence

from fleetledger.time_utils import DateLike, parse_iso_date


FuelCalculationMethod = Literal["BOILER", "SEGMENTS", "MIXED"]
DayMode = Literal["single", "multi"]

VALID_METHODS = {"BOILER", "SEGMENTS", "MIXED"}
LEGACY_METHODS = {"by_total", "by_segment"}

DEFAULT_WINTER_MONTH = 11
DEFAULT_SUMMER_MONTH = 4


@dataclass(frozen=True)
class Segment:
    distance_km: float = 0.0
    is_city_driving: bool = False
    is_warming: bool = False
    is_mountain_driving: bool = False
    date: Optional[DateLike] = None


@dataclass(frozen=True)
class FuelRates:
    """Liters per 100 km plus additive modifier percentages (10 means +10%)."""
    summer_rate: float
    winter_rate: float
    city_increase_percent: float = 0.0
    warming_increase_percent: float = 0.0
    mountain_increase_percent: float = 0.0


@dataclass(frozen=True)
class SeasonSettings:
    rule_type: Literal["recurring", "manual"] = "recurring"
    winter_month: Optional[int] = DEFAULT_WINTER_MONTH
    summer_month: Optional[int] = DEFAULT_SUMMER_MONTH
    winter_start_date: Optional[date] = None
    winter_end_date: Optional[date] = None


@dataclass(frozen=True)
class FuelCalculationInput:
    segments: Sequence[Segment]
    rates: FuelRates
    base_date: DateLike
    season_settings: Optional[SeasonSettings] = None
    day_mode: DayMode = "multi"
    # MIXED only: total distance taken from odometer readings
    odometer_distance: Optional[float] = None


@dataclass(frozen=True)
class FuelCalculationResult:
    distance: int
    consumption: float

    def to_dict(self) -> dict:
        return {
            "distance": self.distance,
            "consumption": self.consumption,
        }


def round_half_up(value: float, digits: int = 0) -> float:
    """Round like a calculator: halves go towards positive infinity."""
    factor = 10 ** digits
    rounded = math.floor(value * factor + 0.5) / factor
    return int(rounded) if digits == 0 else rounded


def is_winter_date(value: DateLike, settings: Optional[SeasonSettings]) -> bool:
    if settings is None:
        return False
    d = parse_iso_date(value)

    if settings.rule_type == "manual":
        if settings.winter_start_date is None or settings.winter_end_date is None:
            return False
        start = parse_iso_date(settings.winter_start_date)
        end = parse_iso_date(settings.winter_end_date)
        return start <= d <= end

    winter_month = settings.winter_month or DEFAULT_WINTER_MONTH
    summer_month = settings.summer_month or DEFAULT_SUMMER_MONTH
    # Winter from November, summer from April: months 11, 12, 1, 2, 3 are winter
    return d.month >= winter_month or d.month < summer_month


def get_base_rate_for_date(value: DateLike, rates: FuelRates, settings: Optional[SeasonSettings]) -> float:
    """Seasonal base rate; a missing rate falls back to the other season's."""
    if is_winter_date(value, settings):
        return rates.winter_rate or rates.summer_rate or 0.0
    return rates.summer_rate or rates.winter_rate or 0.0


def _sum_distances(segments: Iterable[Segment]) -> float:
    return sum(float(s.distance_km or 0) for s in segments)


def _segment_coefficient(segment: Segment, rates: FuelRates) -> float:
    coefficient = 0.0
    if segment.is_city_driving and (rates.city_increase_percent or 0) > 0:
        coefficient += rates.city_increase_percent / 100
    if segment.is_warming and (rates.warming_increase_percent or 0) > 0:
        coefficient += rates.warming_increase_percent / 100
    if segment.is_mountain_driving and (rates.mountain_increase_percent or 0) > 0:
        coefficient += rates.mountain_increase_percent / 100
    return coefficient


def _segment_totals(data: FuelCalculationInput) -> tuple[float, float]:
    """Raw (unrounded) consumption and distance over segments with a distance."""
    total_consumption = 0.0
    total_km = 0.0
    for segment in data.segments:
        distance_km = float(segment.distance_km or 0)
        if distance_km == 0:
            continue

        segment_date = segment.date if (data.day_mode == "multi" and segment.date) else data.base_date
        base_rate = get_base_rate_for_date(segment_date, data.rates, data.season_settings)
        effective_rate = base_rate * (1 + _segment_coefficient(segment, data.rates))

        total_consumption += (distance_km / 100) * effective_rate
        total_km += distance_km
    return total_consumption, total_km


def calculate_boiler(data: FuelCalculationInput) -> FuelCalculationResult:
    distance = round_half_up(_sum_distances(data.segments))
    base_rate = get_base_rate_for_date(data.base_date, data.rates, data.season_settings)
    consumption = round_half_up((distance / 100) * base_rate, 2)
    return FuelCalculationResult(distance=distance, consumption=consumption)


def calculate_segments(data: FuelCalculationInput) -> FuelCalculationResult:
    total_consumption, _ = _segment_totals(data)
    distance = round_half_up(_sum_distances(data.segments))
    return FuelCalculationResult(distance=distance, consumption=round_half_up(total_consumption, 2))


def calculate_mixed(data: FuelCalculationInput) -> FuelCalculationResult:
    """
    Average the per-segment rate and apply it to the odometer distance when one is given.

    With no segment distance at all this is exactly BOILER (zero distance, zero fuel).
    """
    total_consumption, segments_km = _segment_totals(data)
    if segments_km == 0:
        return calculate_boiler(data)

    distance = round_half_up(segments_km)
    average_rate = total_consumption / (segments_km / 100)
    final_distance = data.odometer_distance if data.odometer_distance is not None else distance
    consumption = round_half_up((final_distance / 100) * average_rate, 2)
    return FuelCalculationResult(distance=distance, consumption=consumption)


def map_legacy_method(method: Optional[str]) -> FuelCalculationMethod:
    """
    Translate stored method names to calculator methods.

    by_total maps to MIXED, not BOILER, so that city/warming/mountain flags still
    influence the result when the simple method is selected.
    """
    if method == "by_segment":
        return "SEGMENTS"
    if method == "by_total":
        return "MIXED"
    return method  # type: ignore[return-value]


def calculate_fuel(method: Optional[str], data: FuelCalculationInput) -> FuelCalculationResult:
    """Dispatch to an algorithm; unknown methods fall back to BOILER."""
    if method == "SEGMENTS":
        return calculate_segments(data)
    if method == "MIXED":
        return calculate_mixed(data)
    return calculate_boiler(data)


def calculate_odometer_end(odometer_start: float, segments: Iterable[Segment]) -> int:
    return round_half_up((odometer_start or 0) + _sum_distances(segments))


def calculate_fuel_end(fuel_start: float, fuel_filled: float, fuel_consumed: float) -> float:
    """Ending fuel, may be negative; callers decide whether that is acceptable."""
    result = (fuel_start or 0) + (fuel_filled or 0) - (fuel_consumed or 0)
    return round_half_up(result, 2)
