# backend/fleetledger/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/fleetledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///fleetledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Recurring season rule used when no SeasonSetting row exists
    SEASON_WINTER_START_MONTH = int(os.environ.get("SEASON_WINTER_START_MONTH", "11"))
    SEASON_SUMMER_START_MONTH = int(os.environ.get("SEASON_SUMMER_START_MONTH", "4"))

    # "process" hashes sealed periods in a worker process, "thread" in a worker thread
    INTEGRITY_HASH_EXECUTOR = os.environ.get("INTEGRITY_HASH_EXECUTOR", "process")

    # Fuel-card balances closer to zero than this are treated as zero
    BALANCE_EPSILON = float(os.environ.get("BALANCE_EPSILON", "0.001"))
