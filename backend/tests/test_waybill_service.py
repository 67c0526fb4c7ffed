import pytest

from fleetledger.extensions import db
from fleetledger.models import BusinessEvent, Driver, Vehicle, Waybill
from fleetledger.services import chain_service, integrity_service, waybill_service
from fleetledger.services.lifecycle_service import LifecycleError
from fleetledger.validation import ConflictError, NotFoundError, PeriodLockedError, ValidationError


def _waybill(vehicle, driver, day, km, **extra):
    payload = {
        "vehicle_id": vehicle.id,
        "driver_id": driver.id,
        "date": day,
        "valid_from": f"{day}T08:00:00",
        "valid_to": f"{day}T18:00:00",
        "segments": [{"origin": "Depot", "destination": "Client", "distance_km": km}],
    }
    payload.update(extra)
    return waybill_service.create_waybill(payload, actor_id="dispatcher")


def _reload(waybill_id):
    return db.session.get(Waybill, waybill_id)


class TestCreate:
    def test_draft_starts_from_vehicle_and_gets_calculated_ends(self, db_session, vehicle, driver):
        waybill = _waybill(vehicle, driver, "2024-06-03", 100)

        assert waybill.status == "DRAFT"
        assert waybill.number == "WL-202406-000001"
        assert waybill.calculation_method == "by_total"
        assert waybill.odometer_start == 1000
        assert waybill.fuel_at_start == 50.0
        assert waybill.odometer_end == 1100
        assert waybill.fuel_planned == 10.0
        assert waybill.fuel_at_end == 40.0
        assert db.session.query(BusinessEvent).filter_by(event_type="waybill.created").count() == 1

    def test_city_segment_counts_with_default_method(self, db_session, vehicle, driver):
        waybill = _waybill(
            vehicle,
            driver,
            "2024-06-03",
            0,
            segments=[{"distance_km": 50, "is_city_driving": True}, {"distance_km": 50}],
        )
        assert waybill.fuel_planned == 10.5

    def test_start_values_follow_the_preceding_draft(self, db_session, vehicle, driver):
        drafts = [_waybill(vehicle, driver, day, 100) for day in ("2024-06-03", "2024-06-04", "2024-06-05")]

        starts = [(_reload(w.id).odometer_start, _reload(w.id).fuel_at_start) for w in drafts]
        assert starts == [(1000, 50.0), (1100, 40.0), (1200, 30.0)]

    def test_fractional_segments_round_the_ending_odometer(self, db_session, vehicle, driver):
        waybill = _waybill(
            vehicle, driver, "2024-06-03", 0, segments=[{"distance_km": 10.4}, {"distance_km": 0.2}]
        )
        assert waybill.odometer_end == 1011

    def test_number_is_unique_per_year_ignoring_case(self, db_session, vehicle, driver):
        first = _waybill(vehicle, driver, "2024-06-03", 10, number="A-1")

        with pytest.raises(ConflictError):
            _waybill(vehicle, driver, "2024-07-03", 10, number=" a-1 ")

        _waybill(vehicle, driver, "2025-01-10", 10, number="A-1")

        waybill_service.cancel_waybill(first.id)
        _waybill(vehicle, driver, "2024-08-01", 10, number="A-1")

    def test_invalid_input(self, db_session, vehicle, driver):
        with pytest.raises(ValidationError):
            _waybill(vehicle, driver, "2024-06-03", -5)
        with pytest.raises(ValidationError):
            _waybill(vehicle, driver, "2024-06-03", 10, valid_to="2024-06-02T18:00:00")
        with pytest.raises(ValidationError):
            _waybill(vehicle, driver, "2024-06-03", 10, calculation_method="GUESS")
        with pytest.raises(NotFoundError):
            waybill_service.create_waybill(
                {"vehicle_id": 999, "date": "2024-06-03", "valid_from": "2024-06-03T08:00:00",
                 "valid_to": "2024-06-03T18:00:00"}
            )


class TestChain:
    def test_edit_cascades_through_drafts(self, db_session, vehicle, driver):
        w1 = _waybill(vehicle, driver, "2024-06-03", 100)
        w2 = _waybill(vehicle, driver, "2024-06-04", 100, odometer_start=1100, fuel_at_start=40.0)
        w3 = _waybill(vehicle, driver, "2024-06-05", 50, odometer_start=1200, fuel_at_start=30.0)

        waybill_service.update_waybill(w1.id, {"segments": [{"distance_km": 200}]})

        w1, w2, w3 = _reload(w1.id), _reload(w2.id), _reload(w3.id)
        assert (w1.odometer_end, w1.fuel_at_end) == (1200, 30.0)
        assert (w2.odometer_start, w2.fuel_at_start, w2.odometer_end, w2.fuel_at_end) == (1200, 30.0, 1300, 20.0)
        assert (w3.odometer_start, w3.fuel_at_start, w3.odometer_end, w3.fuel_at_end) == (1300, 20.0, 1350, 15.0)

    def test_walk_stops_at_posted_waybill(self, db_session, vehicle, driver):
        w1 = _waybill(vehicle, driver, "2024-06-03", 100)
        w2 = _waybill(vehicle, driver, "2024-06-04", 100, odometer_start=1100, fuel_at_start=40.0)
        w3 = _waybill(vehicle, driver, "2024-06-05", 50, odometer_start=1200, fuel_at_start=30.0)
        waybill_service.post_waybill(w2.id)

        waybill_service.update_waybill(w1.id, {"segments": [{"distance_km": 200}]})

        assert _reload(w2.id).odometer_start == 1100
        assert _reload(w3.id).odometer_start == 1200
        assert chain_service.recalculate_chain_from(_reload(w1.id)) == []

    def test_last_waybill_has_nothing_to_push(self, db_session, vehicle, driver):
        only = _waybill(vehicle, driver, "2024-06-03", 100)
        assert chain_service.recalculate_chain_from(only) == []

    def test_drafts_recalculated_from_last_posted(self, db_session, vehicle, driver):
        w1 = _waybill(vehicle, driver, "2024-06-03", 100)
        waybill_service.post_waybill(w1.id)
        w2 = _waybill(vehicle, driver, "2024-06-04", 100, odometer_start=1000, fuel_at_start=50.0)

        result = chain_service.recalculate_drafts_from(vehicle.id, "2024-06-04")

        assert result["count"] == 1
        log = result["logs"][0]
        assert log["waybill_id"] == w2.id
        changed = {c["field"]: (c["old"], c["new"]) for c in log["changes"]}
        assert changed["odometer_start"] == (1000, 1100)
        assert changed["fuel_at_start"] == (50.0, 40.0)
        assert log["warnings"] == []
        assert _reload(w2.id).fuel_at_end == 30.0

    def test_negative_fuel_is_a_warning(self, db_session, vehicle, driver):
        w1 = _waybill(vehicle, driver, "2024-06-03", 100)
        waybill_service.post_waybill(w1.id)
        _waybill(vehicle, driver, "2024-06-04", 1000)

        result = chain_service.recalculate_drafts_from(vehicle.id, "2024-06-04")

        assert result["count"] == 1
        assert result["logs"][0]["changes"] == []
        assert result["logs"][0]["warnings"] == ["Negative fuel at end: -60.0 l"]

    def test_deleting_a_draft_reconnects_its_neighbours(self, db_session, vehicle, driver):
        posted = _waybill(vehicle, driver, "2024-06-03", 100)
        waybill_service.post_waybill(posted.id)
        d1 = _waybill(vehicle, driver, "2024-06-04", 100)
        d2 = _waybill(vehicle, driver, "2024-06-05", 100)
        d3 = _waybill(vehicle, driver, "2024-06-06", 100)
        assert _reload(d3.id).odometer_start == 1300

        waybill_service.delete_waybill(d2.id)

        d1, d3 = _reload(d1.id), _reload(d3.id)
        assert (d1.odometer_start, d1.odometer_end, d1.fuel_at_end) == (1100, 1200, 30.0)
        assert (d3.odometer_start, d3.fuel_at_start, d3.odometer_end, d3.fuel_at_end) == (1200, 30.0, 1300, 20.0)

    def test_deleting_the_first_draft_keeps_the_rest_consistent(self, db_session, vehicle, driver):
        d1 = _waybill(vehicle, driver, "2024-06-03", 100)
        d2 = _waybill(vehicle, driver, "2024-06-04", 100)
        d3 = _waybill(vehicle, driver, "2024-06-05", 100)

        waybill_service.delete_waybill(d1.id)

        d2, d3 = _reload(d2.id), _reload(d3.id)
        assert (d2.odometer_start, d2.odometer_end) == (1100, 1200)
        assert (d3.odometer_start, d3.fuel_at_start) == (d2.odometer_end, d2.fuel_at_end)

    def test_unknown_vehicle(self, db_session):
        with pytest.raises(NotFoundError):
            chain_service.recalculate_drafts_from(404, "2024-06-01")


class TestPostAndRevert:
    def test_post_charges_card_and_syncs_vehicle(self, db_session, vehicle, driver):
        w1 = _waybill(vehicle, driver, "2024-06-03", 100, fuel_filled=20.0)

        posted = waybill_service.post_waybill(w1.id, actor_id="u-1")

        assert posted.status == "POSTED"
        assert posted.posted_by == "u-1"
        assert posted.posted_at is not None
        assert db.session.get(Driver, driver.id).fuel_card_balance == -20.0
        truck = db.session.get(Vehicle, vehicle.id)
        assert (truck.mileage, truck.current_fuel) == (1100, 60.0)

    def test_post_refuses_negative_fuel(self, db_session, vehicle, driver):
        w1 = _waybill(vehicle, driver, "2024-06-03", 1000)
        with pytest.raises(ValidationError, match="ending fuel"):
            waybill_service.post_waybill(w1.id)
        assert _reload(w1.id).status == "DRAFT"

    def test_posted_waybill_is_immutable(self, db_session, vehicle, driver):
        w1 = _waybill(vehicle, driver, "2024-06-03", 100)
        waybill_service.post_waybill(w1.id)

        with pytest.raises(LifecycleError):
            waybill_service.update_waybill(w1.id, {"notes": "late edit"})
        with pytest.raises(LifecycleError):
            waybill_service.delete_waybill(w1.id)
        with pytest.raises(LifecycleError):
            waybill_service.post_waybill(w1.id)

    def test_revert_refused_while_later_waybill_is_posted(self, db_session, vehicle, driver):
        w1 = _waybill(vehicle, driver, "2024-06-03", 100)
        waybill_service.post_waybill(w1.id)
        w2 = _waybill(vehicle, driver, "2024-06-04", 100)
        waybill_service.post_waybill(w2.id)

        with pytest.raises(ConflictError, match=w2.number):
            waybill_service.revert_waybill(w1.id, reason="typo")

    def test_revert_restores_card_and_recalculates(self, db_session, vehicle, driver):
        w1 = _waybill(vehicle, driver, "2024-06-03", 100)
        waybill_service.post_waybill(w1.id)
        w2 = _waybill(vehicle, driver, "2024-06-04", 100, odometer_start=1150, fuel_filled=15.0)
        waybill_service.post_waybill(w2.id)
        assert db.session.get(Driver, driver.id).fuel_card_balance == -15.0

        result = waybill_service.revert_waybill(w2.id, reason="wrong odometer", actor_id="u-2")

        reverted = result["waybill"]
        assert reverted.status == "DRAFT"
        assert reverted.posted_at is None
        assert "Correction: wrong odometer" in reverted.notes
        assert reverted.odometer_start == 1100
        assert result["recalculation"]["count"] == 1
        assert db.session.get(Driver, driver.id).fuel_card_balance == 0.0
        assert db.session.get(Vehicle, vehicle.id).mileage == 1100
        assert db.session.query(BusinessEvent).filter_by(event_type="waybill.corrected").count() == 1

    def test_locked_period_blocks_waybill_writes(self, db_session, vehicle, driver):
        w1 = _waybill(vehicle, driver, "2024-06-03", 100)
        waybill_service.post_waybill(w1.id)
        integrity_service.lock_period("2024-06")

        with pytest.raises(PeriodLockedError):
            waybill_service.revert_waybill(w1.id, reason="too late")
        with pytest.raises(PeriodLockedError):
            _waybill(vehicle, driver, "2024-06-20", 10)
        _waybill(vehicle, driver, "2024-07-01", 10)

    def test_delete_draft(self, db_session, vehicle, driver):
        w1 = _waybill(vehicle, driver, "2024-06-03", 100)
        waybill_service.delete_waybill(w1.id)
        assert _reload(w1.id) is None
