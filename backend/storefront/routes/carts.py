# Overview: Flask API routes for carts; item mutations, coupon, shipping and checkout.

from flask import Blueprint, current_app, request

from ..responses import HANDLED_ERRORS, error_response, fail, int_field, json_body, ok
from ..services import cart_service, checkout_service, store_service

carts_bp = Blueprint("carts", __name__, url_prefix="/api/carts")


def _summary(cart_id: int):
    return ok(cart_service.get_cart_summary(cart_id))


@carts_bp.post("")
def create_cart_route():
    """Request body: {"store_id": 1, "user_id": "u-42"} or {"store_id": 1, "session_id": "..."}"""
    try:
        payload = json_body()
        cart = cart_service.create_cart(
            int_field(payload, "store_id"),
            user_id=payload.get("user_id"),
            session_id=payload.get("session_id"),
        )
        return ok(cart_service.get_cart_summary(cart.id), 201)
    except HANDLED_ERRORS as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to create cart")
        return fail("Internal server error", 500)


@carts_bp.get("/current")
def current_cart_route():
    """Query params: store_id (required) and one of user_id / session_id."""
    try:
        store = store_service.require_store(request.args.get("store_id", type=int))
        user_id = request.args.get("user_id")
        session_id = request.args.get("session_id")
        if user_id:
            cart = cart_service.get_user_cart(store.id, user_id)
        elif session_id:
            cart = cart_service.get_session_cart(store.id, session_id)
        else:
            return fail("user_id or session_id is required", 400)
        if not cart:
            return fail("Cart not found", 404)
        return _summary(cart.id)
    except HANDLED_ERRORS as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to load current cart")
        return fail("Internal server error", 500)


@carts_bp.get("/<int:cart_id>")
def get_cart_route(cart_id: int):
    try:
        return _summary(cart_id)
    except HANDLED_ERRORS as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to load cart %s", cart_id)
        return fail("Internal server error", 500)


# =============================================================================
# ITEMS
# =============================================================================

@carts_bp.post("/<int:cart_id>/items")
def add_cart_item_route(cart_id: int):
    """Request body: {"product_id": 7, "quantity": 2, "variant_id": 3 (optional)}"""
    try:
        payload = json_body()
        cart_service.add_product(
            cart_id,
            int_field(payload, "product_id"),
            int_field(payload, "quantity", default=1),
            variant_id=int_field(payload, "variant_id", required=False),
        )
        return ok(cart_service.get_cart_summary(cart_id), 201)
    except HANDLED_ERRORS as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to add item to cart %s", cart_id)
        return fail("Internal server error", 500)


@carts_bp.put("/<int:cart_id>/items/<int:item_id>")
def update_cart_item_route(cart_id: int, item_id: int):
    """Request body: {"quantity": 3}. Zero removes the line."""
    try:
        item = cart_service.get_item(item_id)
        if not item or item.cart_id != cart_id:
            return fail("Cart item not found", 404)
        cart_service.update_item(item_id, int_field(json_body(), "quantity"))
        return _summary(cart_id)
    except HANDLED_ERRORS as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to update item %s in cart %s", item_id, cart_id)
        return fail("Internal server error", 500)


@carts_bp.delete("/<int:cart_id>/items/<int:item_id>")
def remove_cart_item_route(cart_id: int, item_id: int):
    try:
        item = cart_service.get_item(item_id)
        if not item or item.cart_id != cart_id:
            return fail("Cart item not found", 404)
        cart_service.remove_item(item_id)
        return _summary(cart_id)
    except HANDLED_ERRORS as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to remove item %s from cart %s", item_id, cart_id)
        return fail("Internal server error", 500)


@carts_bp.post("/<int:cart_id>/clear")
def clear_cart_route(cart_id: int):
    try:
        cart_service.clear_cart(cart_id)
        return _summary(cart_id)
    except HANDLED_ERRORS as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to clear cart %s", cart_id)
        return fail("Internal server error", 500)


# =============================================================================
# COUPON / SHIPPING
# =============================================================================

@carts_bp.post("/<int:cart_id>/coupon")
def apply_coupon_route(cart_id: int):
    """Request body: {"code": "SPRING10"}. The discount is computed server-side."""
    try:
        code = json_body().get("code")
        if not code:
            return fail("code is required", 400)
        cart_service.apply_coupon_code(cart_id, code)
        return _summary(cart_id)
    except HANDLED_ERRORS as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to apply coupon to cart %s", cart_id)
        return fail("Internal server error", 500)


@carts_bp.delete("/<int:cart_id>/coupon")
def remove_coupon_route(cart_id: int):
    try:
        cart_service.remove_coupon(cart_id)
        return _summary(cart_id)
    except HANDLED_ERRORS as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to remove coupon from cart %s", cart_id)
        return fail("Internal server error", 500)


@carts_bp.put("/<int:cart_id>/shipping")
def set_shipping_route(cart_id: int):
    """Request body: {"shipping_cents": 500}"""
    try:
        shipping_cents = int_field(json_body(), "shipping_cents")
        if shipping_cents < 0:
            return fail("shipping_cents must be >= 0", 400)
        cart_service.set_shipping(cart_id, shipping_cents)
        return _summary(cart_id)
    except HANDLED_ERRORS as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to set shipping on cart %s", cart_id)
        return fail("Internal server error", 500)


# =============================================================================
# CHECKOUT
# =============================================================================

@carts_bp.post("/<int:cart_id>/checkout")
def checkout_route(cart_id: int):
    """
    Freeze the cart into a pending order.

    Request body:
    {
        "email": "buyer@example.com",
        "user_id": "u-42",                (optional)
        "billing_address": {...},         (optional)
        "shipping_address": {...},        (optional)
        "notes": "Leave at the door",     (optional)
        "metadata": {...}                 (optional)
    }
    """
    try:
        payload = json_body()
        order = checkout_service.checkout_cart(
            cart_id,
            email=payload.get("email"),
            user_id=payload.get("user_id"),
            payment_method=payload.get("payment_method"),
            billing_address=payload.get("billing_address"),
            shipping_address=payload.get("shipping_address"),
            notes=payload.get("notes"),
            metadata=payload.get("metadata"),
        )
        data = order.to_dict()
        data["items"] = [item.to_dict() for item in order.items]
        return ok(data, 201)
    except HANDLED_ERRORS as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to check out cart %s", cart_id)
        return fail("Internal server error", 500)
