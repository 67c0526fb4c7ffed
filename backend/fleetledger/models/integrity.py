from __future__ import annotations

from ..extensions import db
from fleetledger.time_utils import to_utc_z, to_iso_date


class PeriodLock(db.Model):
    """
    Cryptographic seal over a calendar month.

    data_hash is the SHA-256 of the canonical form of every POSTED waybill and
    POSTED stock movement dated inside the period at lock time.
    While a lock exists, mutations dated inside the period are refused.
    """
    __tablename__ = "period_locks"
    __table_args__ = (
        db.UniqueConstraint("period", name="uq_period_locks_period"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    period = db.Column(db.String(7), nullable=False, index=True)  # YYYY-MM

    data_hash = db.Column(db.String(64), nullable=False)
    record_count = db.Column(db.Integer, nullable=False)

    locked_by = db.Column(db.String(64), nullable=True)
    locked_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    notes = db.Column(db.Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "period": self.period,
            "data_hash": self.data_hash,
            "record_count": self.record_count,
            "locked_by": self.locked_by,
            "locked_at": to_utc_z(self.locked_at),
            "notes": self.notes,
        }


class BalanceSnapshot(db.Model):
    """Fuel-card balance of a driver at the end of a calendar month. Regenerated in bulk only."""
    __tablename__ = "balance_snapshots"
    __table_args__ = (
        db.UniqueConstraint("driver_id", "date", name="uq_balance_snapshots_driver_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    driver_id = db.Column(db.Integer, db.ForeignKey("drivers.id"), nullable=False, index=True)
    date = db.Column(db.Date, nullable=False, index=True)
    balance = db.Column(db.Float, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "driver_id": self.driver_id,
            "date": to_iso_date(self.date),
            "balance": self.balance,
            "created_at": to_utc_z(self.created_at),
        }
