from __future__ import annotations

from ..extensions import db
from fleetledger.time_utils import to_utc_z


class Organization(db.Model):
    """Owning organization for vehicles, drivers and stock documents."""
    __tablename__ = "organizations"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_organizations_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(32), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Vehicle(db.Model):
    """
    Vehicle master record.

    Fuel consumption rates are liters per 100 km; the increase percentages are
    additive modifiers applied per route segment (10 means +10%).

    mileage/current_fuel mirror the end values of the latest POSTED waybill and
    serve as the starting point when a vehicle has no posted history yet.
    """
    __tablename__ = "vehicles"
    __table_args__ = (
        db.UniqueConstraint("registration_number", name="uq_vehicles_registration"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=True, index=True)

    registration_number = db.Column(db.String(32), nullable=False)
    model = db.Column(db.String(128), nullable=True)

    summer_rate = db.Column(db.Float, nullable=False, default=0.0)
    winter_rate = db.Column(db.Float, nullable=False, default=0.0)
    city_increase_percent = db.Column(db.Float, nullable=False, default=0.0)
    warming_increase_percent = db.Column(db.Float, nullable=False, default=0.0)
    mountain_increase_percent = db.Column(db.Float, nullable=False, default=0.0)

    mileage = db.Column(db.Integer, nullable=False, default=0)
    current_fuel = db.Column(db.Float, nullable=False, default=0.0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    organization = db.relationship("Organization", backref=db.backref("vehicles", lazy=True))

    def fuel_rates(self):
        from ..services.fuel_service import FuelRates

        return FuelRates(
            summer_rate=self.summer_rate or 0.0,
            winter_rate=self.winter_rate or 0.0,
            city_increase_percent=self.city_increase_percent or 0.0,
            warming_increase_percent=self.warming_increase_percent or 0.0,
            mountain_increase_percent=self.mountain_increase_percent or 0.0,
        )

    def __repr__(self) -> str:
        return f"<Vehicle id={self.id} registration={self.registration_number!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "registration_number": self.registration_number,
            "model": self.model,
            "summer_rate": self.summer_rate,
            "winter_rate": self.winter_rate,
            "city_increase_percent": self.city_increase_percent,
            "warming_increase_percent": self.warming_increase_percent,
            "mountain_increase_percent": self.mountain_increase_percent,
            "mileage": self.mileage,
            "current_fuel": self.current_fuel,
            "is_active": self.is_active,
        }


class Driver(db.Model):
    """
    Driver holding a fuel card.

    fuel_card_balance is a denormalized projection written by the posting engine.
    The source of truth is posted history plus balance snapshots.
    """
    __tablename__ = "drivers"
    __table_args__ = (
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=True, index=True)

    full_name = db.Column(db.String(255), nullable=False)
    personnel_number = db.Column(db.String(32), nullable=True)
    fuel_card_number = db.Column(db.String(64), nullable=True)

    fuel_card_balance = db.Column(db.Float, nullable=False, default=0.0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    organization = db.relationship("Organization", backref=db.backref("drivers", lazy=True))

    def __repr__(self) -> str:
        return f"<Driver id={self.id} name={self.full_name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "full_name": self.full_name,
            "personnel_number": self.personnel_number,
            "fuel_card_number": self.fuel_card_number,
            "fuel_card_balance": self.fuel_card_balance,
            "is_active": self.is_active,
        }
