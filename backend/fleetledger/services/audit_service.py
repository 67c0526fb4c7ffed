# Overview: Fire-and-forget business audit events.

from __future__ import annotations

import logging

from ..extensions import db
from ..models import BusinessEvent
from .cache_service import broadcast


logger = logging.getLogger(__name__)

EVENT_TYPES = {
    "waybill.created",
    "waybill.posted",
    "waybill.corrected",
    "waybill.cancelled",
    "stock.posted",
    "stock.unposted",
    "employee.fuelReset",
    "period.locked",
    "period.unlocked",
}


def audit_business(event_type: str, payload: dict | None = None, *, actor_id: str | None = None) -> BusinessEvent | None:
    """
    Append a typed business event.

    The audit sink never breaks the operation that emits it: a failed write is
    logged and rolled back, and None is returned.
    """
    if event_type not in EVENT_TYPES:
        raise ValueError(f"Unknown business event type '{event_type}'")

    event = BusinessEvent(event_type=event_type, actor_id=actor_id, payload=payload or {})
    try:
        db.session.add(event)
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception("Failed to record business event %s", event_type)
        return None

    broadcast("audit", event_type=event_type)
    return event
