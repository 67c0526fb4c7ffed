# backend/fleetledger/routes/periods.py
"""
Period lock routes.

- GET    /api/periods                  list locks
- POST   /api/periods {"period": "2024-05", "notes": "..."}
- POST   /api/periods/<id>/verify      {"isValid", "currentHash", "storedHash"}
- DELETE /api/periods/<id>             unlock, recorded as period.unlocked
- GET    /api/periods/check?date=...   {"locked": bool}

A failed verification is a normal 200 response with isValid=false.
"""
from flask import Blueprint, current_app, request

from ..services import integrity_service
from ..services.audit_service import audit_business
from ..validation import ValidationError
from .errors import DOMAIN_ERRORS, actor_id, error_response


periods_bp = Blueprint("periods", __name__, url_prefix="/api/periods")


@periods_bp.get("")
def list_periods_route():
    return {"locks": integrity_service.list_period_locks()}, 200


@periods_bp.post("")
def lock_period_route():
    payload = request.get_json(silent=True) or {}
    try:
        lock = integrity_service.lock_period(
            payload.get("period"), actor_id=actor_id(), notes=payload.get("notes")
        )
        return {"lock": lock.to_dict()}, 201
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to lock period")
        return {"error": "Internal server error"}, 500


@periods_bp.post("/<int:lock_id>/verify")
def verify_period_route(lock_id: int):
    try:
        return integrity_service.verify_period(lock_id), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to verify period")
        return {"error": "Internal server error"}, 500


@periods_bp.delete("/<int:lock_id>")
def unlock_period_route(lock_id: int):
    try:
        removed = integrity_service.delete_period_lock(lock_id)
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to unlock period")
        return {"error": "Internal server error"}, 500

    audit_business(
        "period.unlocked",
        {"period": removed["period"], "lock_id": lock_id, "data_hash": removed["data_hash"]},
        actor_id=actor_id(),
    )
    return {"unlocked": removed}, 200


@periods_bp.get("/check")
def check_period_route():
    value = request.args.get("date")
    try:
        if not value:
            raise ValidationError("date is required")
        try:
            locked = integrity_service.is_period_locked(value)
        except ValueError:
            raise ValidationError(f"Invalid date '{value}'")
        return {"date": value, "locked": locked}, 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
