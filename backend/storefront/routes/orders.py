# Overview: Flask API routes for orders; listings, detail, status changes and cancellation.

from flask import Blueprint, current_app, request

from ..responses import HANDLED_ERRORS, error_response, fail, json_body, ok
from ..services import download_service, order_service, payment_service, store_service

orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _order_detail(order_id: int) -> dict:
    order = order_service.require_order(order_id)
    data = order.to_dict()
    items = []
    for item in order_service.get_items(order_id):
        entry = item.to_dict()
        entry["download_links"] = [
            link.to_dict() for link in download_service.get_order_item_download_links(item.id)
        ]
        items.append(entry)
    data["items"] = items
    data["payments"] = [payment.to_dict() for payment in payment_service.get_order_payments(order_id)]
    data["refunds"] = [refund.to_dict() for refund in payment_service.get_order_refunds(order_id)]
    return data


def _override_flag(payload: dict) -> bool:
    return bool(payload.get("override")) or request.args.get("override", "false").lower() == "true"


@orders_bp.get("")
def list_orders_route():
    """
    Query params:
    - store_id: int (required unless user_id is given)
    - status: filter by order status
    - user_id: list a customer's orders across stores
    """
    try:
        user_id = request.args.get("user_id")
        if user_id and not request.args.get("store_id"):
            orders = order_service.list_user_orders(user_id)
        else:
            store = store_service.require_store(request.args.get("store_id", type=int))
            orders = order_service.list_store_orders(store.id, status=request.args.get("status"))
            if user_id:
                orders = [order for order in orders if order.user_id == user_id]
        return ok([order.to_dict() for order in orders])
    except HANDLED_ERRORS as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return fail("Internal server error", 500)


@orders_bp.get("/<int:order_id>")
def get_order_route(order_id: int):
    try:
        return ok(_order_detail(order_id))
    except HANDLED_ERRORS as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to load order %s", order_id)
        return fail("Internal server error", 500)


@orders_bp.get("/by-number/<order_number>")
def get_order_by_number_route(order_number: str):
    try:
        store = store_service.require_store(request.args.get("store_id", type=int))
        order = order_service.get_order_by_number(store.id, order_number)
        if not order:
            return fail("Order not found", 404)
        return ok(_order_detail(order.id))
    except HANDLED_ERRORS as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to load order %s", order_number)
        return fail("Internal server error", 500)


@orders_bp.route("/<int:order_id>", methods=["PUT", "PATCH"])
def update_order_route(order_id: int):
    """
    Request body (any subset):
    {"status": "...", "payment_status": "...", "shipping_status": "...",
     "notes": "...", "metadata": {...}, "override": false}

    Invalid status transitions answer 409 unless override is true.
    """
    try:
        payload = dict(json_body())
        override = _override_flag(payload)
        payload.pop("override", None)
        order_service.update_order(order_id, payload, override=override)
        return ok(_order_detail(order_id))
    except HANDLED_ERRORS as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to update order %s", order_id)
        return fail("Internal server error", 500)


@orders_bp.post("/<int:order_id>/status")
def update_order_status_route(order_id: int):
    """Request body: {"status": "shipped", "override": false}"""
    try:
        payload = json_body()
        status = payload.get("status")
        if not status:
            return fail("status is required", 400)
        order_service.update_order_status(order_id, status, override=_override_flag(payload))
        return ok(_order_detail(order_id))
    except HANDLED_ERRORS as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to update status of order %s", order_id)
        return fail("Internal server error", 500)


@orders_bp.post("/<int:order_id>/shipping-status")
def update_shipping_status_route(order_id: int):
    """Request body: {"shipping_status": "shipped", "override": false}"""
    try:
        payload = json_body()
        shipping_status = payload.get("shipping_status")
        if not shipping_status:
            return fail("shipping_status is required", 400)
        order_service.update_shipping_status(order_id, shipping_status, override=_override_flag(payload))
        return ok(_order_detail(order_id))
    except HANDLED_ERRORS as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to update shipping status of order %s", order_id)
        return fail("Internal server error", 500)


@orders_bp.post("/<int:order_id>/cancel")
def cancel_order_route(order_id: int):
    try:
        payload = json_body()
        order_service.cancel_order(order_id, override=_override_flag(payload))
        return ok(_order_detail(order_id))
    except HANDLED_ERRORS as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to cancel order %s", order_id)
        return fail("Internal server error", 500)
