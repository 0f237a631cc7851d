# Overview: Flask API routes for the store registry and store-scoped coupons.

from flask import Blueprint, current_app, request

from ..responses import HANDLED_ERRORS, error_response, fail, json_body, ok
from ..services import coupon_service, store_service

stores_bp = Blueprint("stores", __name__, url_prefix="/api/stores")


@stores_bp.get("")
def list_stores_route():
    active_only = request.args.get("active_only", "false").lower() == "true"
    try:
        stores = store_service.list_stores(active_only=active_only)
        return ok([store.to_dict() for store in stores])
    except Exception:
        current_app.logger.exception("Failed to list stores")
        return fail("Internal server error", 500)


@stores_bp.post("")
def create_store_route():
    """
    Request body:
    {
        "name": "Acme Books",
        "slug": "acme-books",
        "currency": "USD",       (optional)
        "tax_rate_bps": 825,     (optional, 825 = 8.25%)
        "shipping_enabled": true,
        "settings": {...}
    }
    """
    try:
        payload = json_body()
        store = store_service.create_store(
            payload.get("name"),
            payload.get("slug"),
            description=payload.get("description"),
            logo_url=payload.get("logo_url"),
            currency=payload.get("currency") or current_app.config.get("DEFAULT_CURRENCY"),
            tax_rate_bps=payload.get("tax_rate_bps", 0),
            shipping_enabled=payload.get("shipping_enabled", True),
            settings=payload.get("settings"),
        )
        return ok(store.to_dict(), 201)
    except HANDLED_ERRORS as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to create store")
        return fail("Internal server error", 500)


@stores_bp.get("/<int:store_id>")
def get_store_route(store_id: int):
    try:
        return ok(store_service.require_store(store_id).to_dict())
    except HANDLED_ERRORS as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to load store %s", store_id)
        return fail("Internal server error", 500)


@stores_bp.get("/by-slug/<slug>")
def get_store_by_slug_route(slug: str):
    try:
        store = store_service.get_store_by_slug(slug)
        if not store:
            return fail("Store not found", 404)
        return ok(store.to_dict())
    except Exception:
        current_app.logger.exception("Failed to load store %s", slug)
        return fail("Internal server error", 500)


@stores_bp.route("/<int:store_id>", methods=["PUT", "PATCH"])
def update_store_route(store_id: int):
    try:
        store = store_service.update_store(store_id, json_body())
        return ok(store.to_dict())
    except HANDLED_ERRORS as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to update store %s", store_id)
        return fail("Internal server error", 500)


@stores_bp.post("/<int:store_id>/activate")
def activate_store_route(store_id: int):
    try:
        return ok(store_service.activate_store(store_id).to_dict())
    except HANDLED_ERRORS as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to activate store %s", store_id)
        return fail("Internal server error", 500)


@stores_bp.post("/<int:store_id>/deactivate")
def deactivate_store_route(store_id: int):
    try:
        return ok(store_service.deactivate_store(store_id).to_dict())
    except HANDLED_ERRORS as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to deactivate store %s", store_id)
        return fail("Internal server error", 500)


# =============================================================================
# SETTINGS
# =============================================================================

@stores_bp.get("/<int:store_id>/settings")
def get_store_settings_route(store_id: int):
    try:
        return ok(store_service.get_store_settings(store_id))
    except HANDLED_ERRORS as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to load settings for store %s", store_id)
        return fail("Internal server error", 500)


@stores_bp.put("/<int:store_id>/settings")
def update_store_settings_route(store_id: int):
    """Shallow-merges the JSON object into the store's settings."""
    try:
        return ok(store_service.update_store_settings(store_id, json_body()))
    except HANDLED_ERRORS as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to update settings for store %s", store_id)
        return fail("Internal server error", 500)


# =============================================================================
# COUPONS
# =============================================================================

@stores_bp.get("/<int:store_id>/coupons")
def list_coupons_route(store_id: int):
    active_only = request.args.get("active_only", "false").lower() == "true"
    try:
        store_service.require_store(store_id)
        coupons = coupon_service.list_store_coupons(store_id, active_only=active_only)
        return ok([coupon.to_dict() for coupon in coupons])
    except HANDLED_ERRORS as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to list coupons for store %s", store_id)
        return fail("Internal server error", 500)


@stores_bp.post("/<int:store_id>/coupons")
def create_coupon_route(store_id: int):
    try:
        coupon = coupon_service.create_coupon(store_id, json_body())
        return ok(coupon.to_dict(), 201)
    except HANDLED_ERRORS as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to create coupon for store %s", store_id)
        return fail("Internal server error", 500)
