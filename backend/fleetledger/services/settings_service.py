# Overview: Season settings lookup and update.

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import SeasonSetting
from ..validation import ValidationError
from fleetledger.time_utils import parse_iso_date
from .cache_service import broadcast
from .fuel_service import SeasonSettings


RULE_TYPES = {"recurring", "manual"}


def _defaults() -> SeasonSettings:
    return SeasonSettings(
        rule_type="recurring",
        winter_month=current_app.config.get("SEASON_WINTER_START_MONTH", 11),
        summer_month=current_app.config.get("SEASON_SUMMER_START_MONTH", 4),
    )


def get_season_settings() -> SeasonSettings:
    """Stored season rule, or the configured recurring default."""
    row = db.session.query(SeasonSetting).first()
    if row is None:
        return _defaults()
    if row.rule_type == "manual":
        return SeasonSettings(
            rule_type="manual",
            winter_month=None,
            summer_month=None,
            winter_start_date=row.winter_start_date,
            winter_end_date=row.winter_end_date,
        )
    defaults = _defaults()
    return SeasonSettings(
        rule_type="recurring",
        winter_month=row.winter_month or defaults.winter_month,
        summer_month=row.summer_month or defaults.summer_month,
    )


def _month(value, key: str) -> int | None:
    if value is None:
        return None
    try:
        month = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{key} must be an integer")
    if not 1 <= month <= 12:
        raise ValidationError(f"{key} must be between 1 and 12")
    return month


def save_season_settings(payload: dict) -> SeasonSetting:
    rule_type = payload.get("rule_type", "recurring")
    if rule_type not in RULE_TYPES:
        raise ValidationError(f"rule_type must be one of: {', '.join(sorted(RULE_TYPES))}")

    row = db.session.query(SeasonSetting).first()
    if row is None:
        row = SeasonSetting()
        db.session.add(row)

    row.rule_type = rule_type
    if rule_type == "recurring":
        row.winter_month = _month(payload.get("winter_month"), "winter_month")
        row.summer_month = _month(payload.get("summer_month"), "summer_month")
        row.winter_day = payload.get("winter_day")
        row.summer_day = payload.get("summer_day")
        row.winter_start_date = None
        row.winter_end_date = None
    else:
        try:
            start = parse_iso_date(payload.get("winter_start_date"))
            end = parse_iso_date(payload.get("winter_end_date"))
        except ValueError:
            raise ValidationError("winter_start_date/winter_end_date must be ISO dates")
        if start is None or end is None:
            raise ValidationError("manual rule requires winter_start_date and winter_end_date")
        if end < start:
            raise ValidationError("winter_end_date must not be before winter_start_date")
        row.winter_start_date = start
        row.winter_end_date = end

    db.session.commit()
    broadcast("settings")
    return row
