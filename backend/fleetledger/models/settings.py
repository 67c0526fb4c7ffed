from __future__ import annotations

from ..extensions import db
from fleetledger.time_utils import to_utc_z, to_iso_date


class SeasonSetting(db.Model):
    """
    Winter/summer boundary used to select seasonal fuel rates (single row).

    rule_type "recurring" switches on winter_month/summer_month every year;
    "manual" treats winter_start_date..winter_end_date (inclusive) as winter.
    The *_day columns are stored for display; season resolution is by month.
    """
    __tablename__ = "season_settings"

    id = db.Column(db.Integer, primary_key=True)
    rule_type = db.Column(db.String(16), nullable=False, default="recurring")

    winter_month = db.Column(db.Integer, nullable=True)
    winter_day = db.Column(db.Integer, nullable=True)
    summer_month = db.Column(db.Integer, nullable=True)
    summer_day = db.Column(db.Integer, nullable=True)

    winter_start_date = db.Column(db.Date, nullable=True)
    winter_end_date = db.Column(db.Date, nullable=True)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "rule_type": self.rule_type,
            "winter_month": self.winter_month,
            "winter_day": self.winter_day,
            "summer_month": self.summer_month,
            "summer_day": self.summer_day,
            "winter_start_date": to_iso_date(self.winter_start_date),
            "winter_end_date": to_iso_date(self.winter_end_date),
            "updated_at": to_utc_z(self.updated_at),
        }
