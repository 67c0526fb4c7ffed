from __future__ import annotations

from ..extensions import db
from fleetledger.time_utils import to_utc_z, to_iso_date


class Waybill(db.Model):
    """
    Trip document ("waybill") for one vehicle/driver trip.

    LIFECYCLE:
    1. DRAFT: editable, recalculated by the chain recalculator
    2. SUBMITTED: handed in for review, still editable
    3. POSTED: immutable ground truth, charges the driver's fuel card
    4. CANCELLED: voided, ignored everywhere

    odometer_end >= odometer_start is enforced at posting time only.
    fuel_at_end may be negative while the document is a DRAFT.
    """
    __tablename__ = "waybills"
    __table_args__ = (
        db.Index("ix_waybills_vehicle_valid_from", "vehicle_id", "valid_from"),
        db.Index("ix_waybills_driver_status_date", "driver_id", "status", "date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    number = db.Column(db.String(64), nullable=False, index=True)

    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=True, index=True)
    vehicle_id = db.Column(db.Integer, db.ForeignKey("vehicles.id"), nullable=False, index=True)
    driver_id = db.Column(db.Integer, db.ForeignKey("drivers.id"), nullable=True, index=True)

    date = db.Column(db.Date, nullable=False, index=True)
    valid_from = db.Column(db.DateTime, nullable=False)
    valid_to = db.Column(db.DateTime, nullable=False)

    status = db.Column(db.String(16), nullable=False, default="DRAFT", index=True)

    odometer_start = db.Column(db.Integer, nullable=False, default=0)
    odometer_end = db.Column(db.Integer, nullable=True)
    fuel_at_start = db.Column(db.Float, nullable=False, default=0.0)
    fuel_filled = db.Column(db.Float, nullable=True)
    fuel_at_end = db.Column(db.Float, nullable=True)
    fuel_planned = db.Column(db.Float, nullable=True)

    # BOILER/SEGMENTS/MIXED or the legacy by_total/by_segment names
    calculation_method = db.Column(db.String(16), nullable=False, default="by_total")

    # Strict-accountability form reserved by this waybill
    blank_id = db.Column(db.Integer, nullable=True)

    notes = db.Column(db.Text, nullable=True)

    posted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    posted_by = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    vehicle = db.relationship("Vehicle", backref=db.backref("waybills", lazy=True))
    driver = db.relationship("Driver", backref=db.backref("waybills", lazy=True))
    segments = db.relationship(
        "RouteSegment",
        back_populates="waybill",
        order_by="RouteSegment.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def day_mode(self) -> str:
        """Single-day trips take the season from the waybill date, multi-day from each segment."""
        if self.valid_to is not None and self.valid_to.date() == self.date:
            return "single"
        return "multi"

    def __repr__(self) -> str:
        return f"<Waybill id={self.id} number={self.number!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "number": self.number,
            "organization_id": self.organization_id,
            "vehicle_id": self.vehicle_id,
            "driver_id": self.driver_id,
            "date": to_iso_date(self.date),
            "valid_from": to_utc_z(self.valid_from),
            "valid_to": to_utc_z(self.valid_to),
            "status": self.status,
            "odometer_start": self.odometer_start,
            "odometer_end": self.odometer_end,
            "fuel_at_start": self.fuel_at_start,
            "fuel_filled": self.fuel_filled,
            "fuel_at_end": self.fuel_at_end,
            "fuel_planned": self.fuel_planned,
            "calculation_method": self.calculation_method,
            "blank_id": self.blank_id,
            "notes": self.notes,
            "posted_at": to_utc_z(self.posted_at),
            "posted_by": self.posted_by,
            "created_at": to_utc_z(self.created_at),
            "segments": [s.to_dict() for s in self.segments],
        }


class RouteSegment(db.Model):
    """One leg of a waybill route, owned by exactly one waybill."""
    __tablename__ = "route_segments"
    __table_args__ = (
        db.UniqueConstraint("waybill_id", "position", name="uq_route_segments_waybill_position"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    waybill_id = db.Column(db.Integer, db.ForeignKey("waybills.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)

    origin = db.Column(db.String(255), nullable=True)
    destination = db.Column(db.String(255), nullable=True)
    distance_km = db.Column(db.Float, nullable=False, default=0.0)

    is_city_driving = db.Column(db.Boolean, nullable=False, default=False)
    is_warming = db.Column(db.Boolean, nullable=False, default=False)
    is_mountain_driving = db.Column(db.Boolean, nullable=False, default=False)

    # Multi-day trips date each leg separately
    segment_date = db.Column(db.Date, nullable=True)

    waybill = db.relationship("Waybill", back_populates="segments")

    def to_input(self):
        from ..services.fuel_service import Segment

        return Segment(
            distance_km=self.distance_km or 0.0,
            is_city_driving=bool(self.is_city_driving),
            is_warming=bool(self.is_warming),
            is_mountain_driving=bool(self.is_mountain_driving),
            date=self.segment_date,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "position": self.position,
            "origin": self.origin,
            "destination": self.destination,
            "distance_km": self.distance_km,
            "is_city_driving": self.is_city_driving,
            "is_warming": self.is_warming,
            "is_mountain_driving": self.is_mountain_driving,
            "segment_date": to_iso_date(self.segment_date),
        }
