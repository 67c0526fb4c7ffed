# backend/fleetledger/routes/waybills.py
"""
Waybill routes.

- GET    /api/waybills?vehicle_id=&driver_id=&status=
- POST   /api/waybills                         create DRAFT (number auto-assigned when blank)
- GET    /api/waybills/<id>
- PATCH  /api/waybills/<id>                    edit DRAFT/SUBMITTED, recalculates the chain
- DELETE /api/waybills/<id>
- POST   /api/waybills/<id>/submit | cancel | post
- POST   /api/waybills/<id>/revert {"reason": "..."}   POSTED -> DRAFT
- POST   /api/waybills/recalculate {"vehicle_id": 1, "from_date": "2024-05-01"}
"""
from flask import Blueprint, current_app, request

from ..services import chain_service, waybill_service
from ..time_utils import parse_iso_date
from ..validation import ValidationError
from .errors import DOMAIN_ERRORS, actor_id, error_response


waybills_bp = Blueprint("waybills", __name__, url_prefix="/api/waybills")


@waybills_bp.get("")
def list_waybills_route():
    limit = request.args.get("limit", default=200, type=int)
    waybills = waybill_service.list_waybills(
        vehicle_id=request.args.get("vehicle_id", type=int),
        driver_id=request.args.get("driver_id", type=int),
        status=request.args.get("status"),
        limit=max(1, min(limit, 1000)),
    )
    return {"waybills": [w.to_dict() for w in waybills]}, 200


@waybills_bp.post("")
def create_waybill_route():
    payload = request.get_json(silent=True) or {}
    try:
        waybill = waybill_service.create_waybill(payload, actor_id=actor_id())
        return {"waybill": waybill.to_dict()}, 201
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create waybill")
        return {"error": "Internal server error"}, 500


@waybills_bp.get("/<int:waybill_id>")
def get_waybill_route(waybill_id: int):
    try:
        return {"waybill": waybill_service.get_waybill(waybill_id).to_dict()}, 200
    except DOMAIN_ERRORS as e:
        return error_response(e)


@waybills_bp.patch("/<int:waybill_id>")
def update_waybill_route(waybill_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        waybill = waybill_service.update_waybill(waybill_id, payload)
        return {"waybill": waybill.to_dict()}, 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update waybill")
        return {"error": "Internal server error"}, 500


@waybills_bp.delete("/<int:waybill_id>")
def delete_waybill_route(waybill_id: int):
    try:
        waybill_service.delete_waybill(waybill_id)
        return {"deleted": waybill_id}, 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete waybill")
        return {"error": "Internal server error"}, 500


@waybills_bp.post("/<int:waybill_id>/submit")
def submit_waybill_route(waybill_id: int):
    try:
        return {"waybill": waybill_service.submit_waybill(waybill_id).to_dict()}, 200
    except DOMAIN_ERRORS as e:
        return error_response(e)


@waybills_bp.post("/<int:waybill_id>/cancel")
def cancel_waybill_route(waybill_id: int):
    try:
        waybill = waybill_service.cancel_waybill(waybill_id, actor_id=actor_id())
        return {"waybill": waybill.to_dict()}, 200
    except DOMAIN_ERRORS as e:
        return error_response(e)


@waybills_bp.post("/<int:waybill_id>/post")
def post_waybill_route(waybill_id: int):
    try:
        waybill = waybill_service.post_waybill(waybill_id, actor_id=actor_id())
        return {"waybill": waybill.to_dict()}, 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to post waybill")
        return {"error": "Internal server error"}, 500


@waybills_bp.post("/<int:waybill_id>/revert")
def revert_waybill_route(waybill_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        result = waybill_service.revert_waybill(
            waybill_id, reason=payload.get("reason"), actor_id=actor_id()
        )
        return {"waybill": result["waybill"].to_dict(), "recalculation": result["recalculation"]}, 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to revert waybill")
        return {"error": "Internal server error"}, 500


@waybills_bp.post("/recalculate")
def recalculate_drafts_route():
    payload = request.get_json(silent=True) or {}
    try:
        vehicle_id = payload.get("vehicle_id")
        from_date = payload.get("from_date")
        if vehicle_id is None or not from_date:
            raise ValidationError("vehicle_id and from_date are required")
        try:
            vehicle_id = int(vehicle_id)
            from_date = parse_iso_date(from_date)
        except (TypeError, ValueError):
            raise ValidationError("vehicle_id must be an integer and from_date an ISO date")
        return chain_service.recalculate_drafts_from(vehicle_id, from_date), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Draft recalculation failed")
        return {"error": "Internal server error"}, 500
