# backend/fleetledger/routes/balances.py
"""
Driver fuel-card balance routes.

- GET  /api/drivers/<id>/balance?date=YYYY-MM-DD[THH:MM]   point-in-time balance
- POST /api/drivers/<id>/adjustments {"delta": -5.5, "note": "..."}
- POST /api/drivers/<id>/reset-balance
- POST /api/drivers/recalculate-balances
- POST /api/snapshots/regenerate
"""
from flask import Blueprint, current_app, request

from ..extensions import db
from ..models import Driver
from ..services import balance_service, posting_service
from fleetledger.time_utils import today
from ..validation import ValidationError
from .errors import DOMAIN_ERRORS, actor_id, error_response


drivers_bp = Blueprint("drivers", __name__, url_prefix="/api/drivers")
snapshots_bp = Blueprint("snapshots", __name__, url_prefix="/api/snapshots")


@drivers_bp.get("")
def list_drivers_route():
    drivers = db.session.query(Driver).order_by(Driver.full_name).all()
    return {"drivers": [d.to_dict() for d in drivers]}, 200


@drivers_bp.get("/<int:driver_id>/balance")
def driver_balance_route(driver_id: int):
    target = request.args.get("date") or today().isoformat()
    try:
        balance = balance_service.balance_as_of(driver_id, target)
        driver = db.session.get(Driver, driver_id)
        return {
            "driver_id": driver_id,
            "date": target,
            "balance": balance,
            "cached_balance": driver.fuel_card_balance,
        }, 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except ValueError:
        return {"error": f"Invalid date '{target}'"}, 400


@drivers_bp.post("/<int:driver_id>/adjustments")
def create_adjustment_route(driver_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        try:
            delta = float(payload.get("delta"))
        except (TypeError, ValueError):
            raise ValidationError("delta must be a number")
        movement = posting_service.create_adjustment(
            driver_id, delta, payload.get("note"), actor_id=actor_id()
        )
        return {"movement": movement.to_dict()}, 201
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create fuel-card adjustment")
        return {"error": "Internal server error"}, 500


@drivers_bp.post("/<int:driver_id>/reset-balance")
def reset_balance_route(driver_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        result = balance_service.reset_fuel_card_balance(
            driver_id, actor_id=actor_id(), note=payload.get("note")
        )
        return result, 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reset fuel-card balance")
        return {"error": "Internal server error"}, 500


@drivers_bp.post("/recalculate-balances")
def recalculate_balances_route():
    try:
        balances = balance_service.recalculate_driver_balances()
        return {"balances": {str(k): v for k, v in balances.items()}}, 200
    except Exception:
        current_app.logger.exception("Driver balance recalculation failed")
        return {"error": "Internal server error"}, 500


@snapshots_bp.post("/regenerate")
def regenerate_snapshots_route():
    try:
        count = balance_service.regenerate_snapshots()
        return {"snapshots": count}, 200
    except Exception:
        current_app.logger.exception("Snapshot regeneration failed")
        return {"error": "Internal server error"}, 500
