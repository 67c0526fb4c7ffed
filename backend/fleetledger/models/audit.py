from __future__ import annotations

from ..extensions import db
from fleetledger.time_utils import to_utc_z


class BusinessEvent(db.Model):
    """
    Append-only business audit event.

    payload is a small JSON document whose shape depends on event_type;
    the core only writes it, presentation layers interpret it.
    """
    __tablename__ = "business_events"
    __table_args__ = (
        db.Index("ix_business_events_type_at", "event_type", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    event_type = db.Column(db.String(64), nullable=False, index=True)
    actor_id = db.Column(db.String(64), nullable=True, index=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    payload = db.Column(db.JSON, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_type": self.event_type,
            "actor_id": self.actor_id,
            "occurred_at": to_utc_z(self.occurred_at),
            "payload": self.payload,
        }
