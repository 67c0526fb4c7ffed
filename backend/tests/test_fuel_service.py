from datetime import date

import pytest

from fleetledger.services.fuel_service import (
    FuelCalculationInput,
    FuelRates,
    Segment,
    SeasonSettings,
    calculate_fuel,
    calculate_fuel_end,
    calculate_odometer_end,
    get_base_rate_for_date,
    is_winter_date,
    map_legacy_method,
    round_half_up,
)


RATES = FuelRates(summer_rate=10.0, winter_rate=12.0, city_increase_percent=10.0)
RECURRING = SeasonSettings(rule_type="recurring", winter_month=11, summer_month=4)


def _input(segments, **kwargs):
    kwargs.setdefault("base_date", date(2024, 6, 10))
    kwargs.setdefault("season_settings", RECURRING)
    return FuelCalculationInput(segments=segments, rates=RATES, **kwargs)


def test_city_flag_changes_segments_but_not_boiler():
    data = _input([Segment(distance_km=50, is_city_driving=True), Segment(distance_km=50)])

    assert calculate_fuel("BOILER", data).consumption == 10.0
    assert calculate_fuel("SEGMENTS", data).consumption == 10.5
    assert calculate_fuel("MIXED", data).consumption == 10.5


def test_all_methods_report_the_same_distance():
    data = _input([Segment(distance_km=40.4), Segment(distance_km=20.2, is_city_driving=True)])

    distances = {calculate_fuel(m, data).distance for m in ("BOILER", "SEGMENTS", "MIXED")}
    assert distances == {61}


def test_mixed_applies_average_rate_to_odometer_distance():
    data = _input(
        [Segment(distance_km=50, is_city_driving=True), Segment(distance_km=50)],
        odometer_distance=200,
    )

    result = calculate_fuel("MIXED", data)
    assert result.distance == 100
    assert result.consumption == 21.0


def test_mixed_without_segment_distance_is_zero():
    result = calculate_fuel("MIXED", _input([Segment(distance_km=0)]))
    assert result.distance == 0
    assert result.consumption == 0.0


def test_unknown_method_falls_back_to_boiler():
    data = _input([Segment(distance_km=100, is_city_driving=True)])
    assert calculate_fuel("SOMETHING", data).consumption == 10.0


def test_legacy_method_mapping():
    assert map_legacy_method("by_total") == "MIXED"
    assert map_legacy_method("by_segment") == "SEGMENTS"
    assert map_legacy_method("BOILER") == "BOILER"


@pytest.mark.parametrize(
    "day,expected",
    [
        (date(2024, 11, 1), True),
        (date(2024, 12, 31), True),
        (date(2024, 3, 31), True),
        (date(2024, 4, 1), False),
        (date(2024, 10, 31), False),
    ],
)
def test_recurring_season(day, expected):
    assert is_winter_date(day, RECURRING) is expected


def test_manual_season_is_inclusive():
    manual = SeasonSettings(
        rule_type="manual",
        winter_month=None,
        summer_month=None,
        winter_start_date=date(2024, 11, 15),
        winter_end_date=date(2025, 3, 15),
    )
    assert is_winter_date("2024-11-15", manual)
    assert is_winter_date("2025-03-15", manual)
    assert not is_winter_date("2025-03-16", manual)


def test_no_settings_means_summer():
    assert not is_winter_date(date(2024, 1, 15), None)
    assert get_base_rate_for_date(date(2024, 1, 15), RATES, None) == 10.0


def test_missing_winter_rate_falls_back_to_summer():
    rates = FuelRates(summer_rate=9.0, winter_rate=0.0)
    assert get_base_rate_for_date(date(2024, 1, 15), rates, RECURRING) == 9.0


def test_multi_day_segments_use_their_own_season():
    segments = [
        Segment(distance_km=100, date=date(2024, 10, 31)),
        Segment(distance_km=100, date=date(2024, 11, 1)),
    ]
    multi = calculate_fuel("SEGMENTS", _input(segments, base_date=date(2024, 10, 31), day_mode="multi"))
    single = calculate_fuel("SEGMENTS", _input(segments, base_date=date(2024, 10, 31), day_mode="single"))

    assert multi.consumption == 22.0
    assert single.consumption == 20.0


def test_round_half_up():
    assert round_half_up(2.5) == 3
    assert round_half_up(-2.5) == -2
    assert round_half_up(10.125, 2) == 10.13


def test_fuel_end_may_go_negative():
    assert calculate_fuel_end(10.0, 0.0, 15.0) == -5.0
    assert calculate_fuel_end(40.0, 20.0, 12.25) == 47.75


def test_odometer_end_rounds_total_distance():
    assert calculate_odometer_end(1000, [Segment(distance_km=10.4), Segment(distance_km=0.2)]) == 1011
