# Overview: Period sealing, verification and the closed-period gate.

"""
FleetLedger Period Integrity Lock

A lock seals a calendar month ("YYYY-MM"). Sealing hashes the canonical form of
every POSTED waybill and POSTED stock movement dated inside the month:

    records   -> to_dict() + record_type, id rewritten to "<record_type>:<id>"
    ordering  -> by that id, plain string comparison
    canonical -> keys sorted recursively, "__ui_*" keys dropped, compact JSON
    digest    -> SHA-256 over the UTF-8 bytes, hex encoded

Hashing runs in a worker (process or thread, INTEGRITY_HASH_EXECUTOR) and talks
to the caller with plain message dicts. The call blocks until the worker answers.

While a lock exists every mutating operation dated inside the month is refused
by ensure_period_open(), which reads the lock table directly. Only the lock
listing goes through the collection cache.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
from concurrent.futures import Executor, ProcessPoolExecutor, ThreadPoolExecutor
from typing import Any

from flask import current_app

from ..extensions import db, collection_cache
from ..models import PeriodLock, StockMovement, Waybill
from ..validation import ConflictError, NotFoundError, PeriodLockedError, ValidationError
from fleetledger.time_utils import DateLike, period_bounds, period_of
from .audit_service import audit_business
from .cache_service import broadcast


logger = logging.getLogger(__name__)

PERIOD_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")
UI_FIELD_PREFIX = "__ui_"


class HashWorkerError(RuntimeError):
    """The hashing worker reported an error instead of a digest."""


# -----------------------------------------------------------------------------
# Canonicalization
# -----------------------------------------------------------------------------

def canonicalize(value: Any) -> Any:
    """Rebuild dicts with sorted keys, dropping UI-only fields, at every depth."""
    if isinstance(value, dict):
        return {
            key: canonicalize(value[key])
            for key in sorted(value)
            if not str(key).startswith(UI_FIELD_PREFIX)
        }
    if isinstance(value, (list, tuple)):
        return [canonicalize(item) for item in value]
    return value


def canonical_json(records: list[dict]) -> str:
    return json.dumps(canonicalize(records), separators=(",", ":"), ensure_ascii=False)


def _canonical_record(record_type: str, row) -> dict:
    data = row.to_dict()
    data["id"] = f"{record_type}:{row.id}"
    data["record_type"] = record_type
    return data


def collect_period_records(period: str) -> list[dict]:
    """POSTED waybills and movements dated inside the period, in canonical order."""
    first, last = period_bounds(period)

    waybills = (
        db.session.query(Waybill)
        .filter(Waybill.status == "POSTED", Waybill.date >= first, Waybill.date <= last)
        .all()
    )
    movements = (
        db.session.query(StockMovement)
        .filter(StockMovement.status == "POSTED", StockMovement.date >= first, StockMovement.date <= last)
        .all()
    )

    records = [_canonical_record("waybill", w) for w in waybills]
    records.extend(_canonical_record("stock_movement", m) for m in movements)
    records.sort(key=lambda r: r["id"])
    return records


# -----------------------------------------------------------------------------
# Hash worker
# -----------------------------------------------------------------------------

def hash_worker(message: dict) -> dict:
    """
    Worker entry point. Request {"type": "hash", "payload": {"data": str, "count": int}}.
    Answers {"type": "hashResult", "payload": {...}} or {"type": "error", "payload": {...}}.
    """
    try:
        if message.get("type") != "hash":
            raise ValueError(f"Unsupported message type {message.get('type')!r}")
        payload = message["payload"]
        digest = hashlib.sha256(payload["data"].encode("utf-8")).hexdigest()
        return {"type": "hashResult", "payload": {"hash": digest, "count": payload["count"]}}
    except Exception as exc:
        return {"type": "error", "payload": {"message": str(exc)}}


def _make_executor() -> Executor:
    kind = current_app.config.get("INTEGRITY_HASH_EXECUTOR", "process")
    if kind == "thread":
        return ThreadPoolExecutor(max_workers=1, thread_name_prefix="integrity-hash")
    if kind == "process":
        return ProcessPoolExecutor(max_workers=1)
    raise ValueError(f"INTEGRITY_HASH_EXECUTOR must be 'process' or 'thread', got {kind!r}")


def compute_hash(records: list[dict]) -> tuple[str, int]:
    """Hash records off the request thread; returns (digest, record_count)."""
    message = {"type": "hash", "payload": {"data": canonical_json(records), "count": len(records)}}
    with _make_executor() as executor:
        reply = executor.submit(hash_worker, message).result()

    if reply.get("type") != "hashResult":
        raise HashWorkerError(reply.get("payload", {}).get("message", "hash worker failed"))
    return reply["payload"]["hash"], reply["payload"]["count"]


# -----------------------------------------------------------------------------
# Gate
# -----------------------------------------------------------------------------

def is_period_locked(value: DateLike) -> bool:
    if value is None:
        return False
    period = period_of(value)
    return db.session.query(PeriodLock.id).filter(PeriodLock.period == period).first() is not None


def ensure_period_open(*values: DateLike) -> None:
    """
    Raise PeriodLockedError if any of the given dates falls in a sealed month.

    Reads the lock table directly, so locks written by other processes
    (the CLI, a second worker) apply at once.
    """
    for value in values:
        if is_period_locked(value):
            raise PeriodLockedError(period_of(value))


# -----------------------------------------------------------------------------
# Lock / verify / unlock
# -----------------------------------------------------------------------------

def _validate_period(period: str) -> str:
    period = (period or "").strip()
    if not PERIOD_RE.match(period):
        raise ValidationError(f"Invalid period '{period}', expected YYYY-MM")
    return period


def lock_period(period: str, actor_id: str | None = None, notes: str | None = None) -> PeriodLock:
    period = _validate_period(period)

    existing = db.session.query(PeriodLock).filter_by(period=period).first()
    if existing is not None:
        raise ConflictError(f"Period {period} is already locked")

    records = collect_period_records(period)
    if not records:
        raise ValidationError(f"Period {period} has no posted documents to lock")

    digest, count = compute_hash(records)

    lock = PeriodLock(period=period, data_hash=digest, record_count=count, locked_by=actor_id, notes=notes)
    db.session.add(lock)
    db.session.commit()
    broadcast("period_locks", period=period)

    logger.info("Locked period %s (%d records)", period, count)
    audit_business("period.locked", {"period": period, "record_count": count, "hash": digest}, actor_id=actor_id)
    return lock


def get_period_lock(lock_id: int) -> PeriodLock:
    lock = db.session.get(PeriodLock, lock_id)
    if lock is None:
        raise NotFoundError(f"Period lock {lock_id} not found")
    return lock


def verify_period(lock_id: int) -> dict:
    """
    Recompute a sealed period. A count mismatch is reported without hashing.

    A failed verification is a result, not an exception.
    """
    lock = get_period_lock(lock_id)
    records = collect_period_records(lock.period)

    if len(records) != lock.record_count:
        logger.warning(
            "Period %s record count changed: stored %d, current %d",
            lock.period, lock.record_count, len(records),
        )
        return {
            "isValid": False,
            "currentHash": "count_mismatch",
            "storedHash": lock.data_hash,
            "details": f"Record count mismatch: stored {lock.record_count}, current {len(records)}",
        }

    digest, _ = compute_hash(records)
    is_valid = digest == lock.data_hash
    if not is_valid:
        logger.warning("Period %s hash mismatch", lock.period)
    return {"isValid": is_valid, "currentHash": digest, "storedHash": lock.data_hash}


def _load_period_locks() -> tuple[dict, ...]:
    locks = db.session.query(PeriodLock).order_by(PeriodLock.period.desc()).all()
    return tuple(lock.to_dict() for lock in locks)


def list_period_locks() -> list[dict]:
    """Locks newest first, as dicts. Served from the collection cache."""
    return list(collection_cache.get_or_load("period_locks", _load_period_locks))


def delete_period_lock(lock_id: int) -> dict:
    """Remove a seal; returns the removed lock as a dict."""
    lock = get_period_lock(lock_id)
    snapshot = lock.to_dict()
    db.session.delete(lock)
    db.session.commit()
    broadcast("period_locks", period=snapshot["period"])
    logger.info("Unlocked period %s", snapshot["period"])
    return snapshot
