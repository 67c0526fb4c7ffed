from __future__ import annotations

from ..extensions import db
from fleetledger.time_utils import to_utc_z, to_iso_date


class StockItem(db.Model):
    """
    Garage stock item (fuel, oil, spare parts).

    balance is a running projection maintained by the posting engine.
    It can always be rebuilt from POSTED movement history.
    """
    __tablename__ = "stock_items"
    __table_args__ = (
        db.Index("ix_stock_items_org_name", "organization_id", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=True, index=True)

    code = db.Column(db.String(32), nullable=True)
    name = db.Column(db.String(255), nullable=False)
    group = db.Column(db.String(64), nullable=True)
    unit = db.Column(db.String(16), nullable=False, default="l")

    is_fuel = db.Column(db.Boolean, nullable=False, default=False)

    balance = db.Column(db.Float, nullable=False, default=0.0)
    last_purchase_price = db.Column(db.Float, nullable=True)
    last_movement_date = db.Column(db.Date, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    @property
    def is_fuel_item(self) -> bool:
        return bool(self.is_fuel) or (self.group or "").upper() == "FUEL"

    def __repr__(self) -> str:
        return f"<StockItem id={self.id} name={self.name!r} balance={self.balance}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "code": self.code,
            "name": self.name,
            "group": self.group,
            "unit": self.unit,
            "is_fuel": self.is_fuel,
            "balance": self.balance,
            "last_purchase_price": self.last_purchase_price,
            "last_movement_date": to_iso_date(self.last_movement_date),
            "is_active": self.is_active,
        }


class StockMovement(db.Model):
    """
    Income or expense stock document.

    LIFECYCLE: DRAFT --post--> POSTED --unpost--> DRAFT, DRAFT --delete--> removed.
    POSTED movements are never edited or deleted directly.

    A FUEL_CARD_TOP_UP expense moves fuel from the warehouse onto a driver's
    fuel card; INVENTORY_ADJUSTMENT documents only touch the driver side.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_driver_reason_date", "driver_id", "expense_reason", "date"),
        db.Index("ix_stock_movements_status_date", "status", "date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    doc_number = db.Column(db.String(64), nullable=False, index=True)
    date = db.Column(db.Date, nullable=False, index=True)

    movement_type = db.Column(db.String(16), nullable=False)  # INCOME, EXPENSE
    status = db.Column(db.String(16), nullable=False, default="DRAFT", index=True)
    expense_reason = db.Column(db.String(32), nullable=True)

    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=True, index=True)
    driver_id = db.Column(db.Integer, db.ForeignKey("drivers.id"), nullable=True, index=True)
    vehicle_id = db.Column(db.Integer, db.ForeignKey("vehicles.id"), nullable=True, index=True)
    waybill_id = db.Column(db.Integer, db.ForeignKey("waybills.id"), nullable=True, index=True)

    supplier = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    driver = db.relationship("Driver", backref=db.backref("stock_movements", lazy=True))
    lines = db.relationship(
        "StockMovementLine",
        back_populates="movement",
        order_by="StockMovementLine.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def total_quantity(self) -> float:
        return sum(line.quantity or 0.0 for line in self.lines)

    def __repr__(self) -> str:
        return f"<StockMovement id={self.id} doc={self.doc_number!r} {self.movement_type}/{self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "doc_number": self.doc_number,
            "date": to_iso_date(self.date),
            "movement_type": self.movement_type,
            "status": self.status,
            "expense_reason": self.expense_reason,
            "organization_id": self.organization_id,
            "driver_id": self.driver_id,
            "vehicle_id": self.vehicle_id,
            "waybill_id": self.waybill_id,
            "supplier": self.supplier,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "lines": [line.to_dict() for line in self.lines],
        }


class StockMovementLine(db.Model):
    __tablename__ = "stock_movement_lines"
    __table_args__ = (
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    movement_id = db.Column(db.Integer, db.ForeignKey("stock_movements.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)

    stock_item_id = db.Column(db.Integer, db.ForeignKey("stock_items.id"), nullable=False, index=True)
    quantity = db.Column(db.Float, nullable=False)
    unit_price = db.Column(db.Float, nullable=True)

    movement = db.relationship("StockMovement", back_populates="lines")
    stock_item = db.relationship("StockItem")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "position": self.position,
            "stock_item_id": self.stock_item_id,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
        }
