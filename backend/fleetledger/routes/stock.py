# backend/fleetledger/routes/stock.py
"""
Stock movement routes.

Movements are created as DRAFT and change balances only through post/unpost:
- POST   /api/stock/movements                 create draft
- PATCH  /api/stock/movements/<id>            edit draft
- DELETE /api/stock/movements/<id>            delete draft
- POST   /api/stock/movements/<id>/post       DRAFT -> POSTED
- POST   /api/stock/movements/<id>/unpost     POSTED -> DRAFT
- POST   /api/stock/recalculate               rebuild item balances from history

Every mutation is refused with 409 when the movement date is in a locked period.
"""
from flask import Blueprint, current_app, request

from ..extensions import db
from ..models import StockItem
from ..services import posting_service
from .errors import DOMAIN_ERRORS, actor_id, error_response


stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


@stock_bp.get("/items")
def list_items_route():
    items = db.session.query(StockItem).order_by(StockItem.name).all()
    return {"items": [i.to_dict() for i in items]}, 200


@stock_bp.get("/movements")
def list_movements_route():
    driver_id = request.args.get("driver_id", type=int)
    limit = request.args.get("limit", default=200, type=int)
    movements = posting_service.list_movements(
        status=request.args.get("status"),
        driver_id=driver_id,
        expense_reason=request.args.get("expense_reason"),
        limit=max(1, min(limit, 1000)),
    )
    return {"movements": [m.to_dict() for m in movements]}, 200


@stock_bp.post("/movements")
def create_movement_route():
    payload = request.get_json(silent=True) or {}
    try:
        movement = posting_service.create_movement(payload)
        return {"movement": movement.to_dict()}, 201
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create stock movement")
        return {"error": "Internal server error"}, 500


@stock_bp.get("/movements/<int:movement_id>")
def get_movement_route(movement_id: int):
    try:
        return {"movement": posting_service.get_movement(movement_id).to_dict()}, 200
    except DOMAIN_ERRORS as e:
        return error_response(e)


@stock_bp.patch("/movements/<int:movement_id>")
def update_movement_route(movement_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        movement = posting_service.update_movement(movement_id, payload)
        return {"movement": movement.to_dict()}, 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update stock movement")
        return {"error": "Internal server error"}, 500


@stock_bp.delete("/movements/<int:movement_id>")
def delete_movement_route(movement_id: int):
    try:
        posting_service.delete_movement(movement_id)
        return {"deleted": movement_id}, 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete stock movement")
        return {"error": "Internal server error"}, 500


@stock_bp.post("/movements/<int:movement_id>/post")
def post_movement_route(movement_id: int):
    try:
        movement = posting_service.post_movement(movement_id, actor_id=actor_id())
        return {"movement": movement.to_dict()}, 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to post stock movement")
        return {"error": "Internal server error"}, 500


@stock_bp.post("/movements/<int:movement_id>/unpost")
def unpost_movement_route(movement_id: int):
    try:
        movement = posting_service.unpost_movement(movement_id, actor_id=actor_id())
        return {"movement": movement.to_dict()}, 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to unpost stock movement")
        return {"error": "Internal server error"}, 500


@stock_bp.post("/recalculate")
def recalculate_stock_route():
    try:
        balances = posting_service.recalculate_stock_balances()
        return {"balances": {str(k): v for k, v in balances.items()}}, 200
    except Exception:
        current_app.logger.exception("Stock balance recalculation failed")
        return {"error": "Internal server error"}, 500
