# Overview: Flask API routes for the catalog; products, variants, categories, stock and deliverable files.

# backend/storefront/routes/products.py
"""
Catalog routes.

Every listing is store-scoped: `store_id` is a required query parameter.
Product payload keys are model attribute names; "metadata" is accepted for
the product's JSON metadata bag.
"""
from flask import Blueprint, current_app, request

from ..responses import HANDLED_ERRORS, error_response, fail, int_field, json_body, ok
from ..services import download_service, products_service, store_service
from ..validation import ValidationError

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


def _optional_int_arg(form, name: str):
    raw = form.get(name)
    if raw in (None, ""):
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be an integer")


@products_bp.get("")
def list_products_route():
    """
    Query params:
    - store_id: int (required)
    - featured: true|false - only featured products (default false)
    - include_inactive: true|false (default false)
    - limit: int - featured listing size (default 10)
    """
    try:
        store = store_service.require_store(request.args.get("store_id", type=int))
        if request.args.get("featured", "false").lower() == "true":
            products = products_service.list_featured_products(store.id, limit=request.args.get("limit", 10, type=int))
        else:
            include_inactive = request.args.get("include_inactive", "false").lower() == "true"
            products = products_service.list_store_products(store.id, active_only=not include_inactive)
        return ok([product.to_dict() for product in products])
    except HANDLED_ERRORS as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to list products")
        return fail("Internal server error", 500)


@products_bp.post("")
def create_product_route():
    """
    Request body: {"store_id": 1, "name": "...", "slug": "...", "price_cents": 1999,
                   "type": "physical"|"digital", "stock_quantity": 10, ...}
    """
    try:
        payload = dict(json_body())
        store_id = int_field(payload, "store_id")
        payload.pop("store_id", None)
        product = products_service.create_product(store_id, payload)
        return ok(product.to_dict(), 201)
    except HANDLED_ERRORS as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to create product")
        return fail("Internal server error", 500)


@products_bp.get("/<int:product_id>")
def get_product_route(product_id: int):
    try:
        product = products_service.require_product(product_id)
        data = product.to_dict()
        data["variants"] = [variant.to_dict() for variant in products_service.get_variants(product_id)]
        return ok(data)
    except HANDLED_ERRORS as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to load product %s", product_id)
        return fail("Internal server error", 500)


@products_bp.route("/<int:product_id>", methods=["PUT", "PATCH"])
def update_product_route(product_id: int):
    try:
        product = products_service.update_product(product_id, json_body())
        return ok(product.to_dict())
    except HANDLED_ERRORS as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to update product %s", product_id)
        return fail("Internal server error", 500)


@products_bp.delete("/<int:product_id>")
def delete_product_route(product_id: int):
    """Soft delete: the product is deactivated, order history keeps pointing at it."""
    try:
        if not products_service.delete_product(product_id):
            return fail("Product not found", 404)
        return ok({"id": product_id, "is_active": False})
    except HANDLED_ERRORS as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to delete product %s", product_id)
        return fail("Internal server error", 500)


@products_bp.put("/<int:product_id>/stock")
def update_stock_route(product_id: int):
    """Request body: {"stock_quantity": 25, "variant_id": 3 (optional)}"""
    try:
        payload = json_body()
        target = products_service.update_stock(
            product_id,
            int_field(payload, "stock_quantity"),
            variant_id=int_field(payload, "variant_id", required=False),
        )
        return ok(target.to_dict())
    except HANDLED_ERRORS as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to update stock for product %s", product_id)
        return fail("Internal server error", 500)


# =============================================================================
# VARIANTS
# =============================================================================

@products_bp.get("/<int:product_id>/variants")
def list_variants_route(product_id: int):
    try:
        products_service.require_product(product_id)
        return ok([variant.to_dict() for variant in products_service.get_variants(product_id)])
    except HANDLED_ERRORS as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to list variants for product %s", product_id)
        return fail("Internal server error", 500)


@products_bp.post("/<int:product_id>/variants")
def create_variant_route(product_id: int):
    try:
        variant = products_service.create_variant(product_id, json_body())
        return ok(variant.to_dict(), 201)
    except HANDLED_ERRORS as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to create variant for product %s", product_id)
        return fail("Internal server error", 500)


@products_bp.delete("/variants/<int:variant_id>")
def delete_variant_route(variant_id: int):
    try:
        if not products_service.delete_variant(variant_id):
            return fail("Variant not found", 404)
        return ok({"id": variant_id})
    except HANDLED_ERRORS as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to delete variant %s", variant_id)
        return fail("Internal server error", 500)


# =============================================================================
# CATEGORIES
# =============================================================================

@products_bp.get("/categories")
def list_categories_route():
    try:
        store = store_service.require_store(request.args.get("store_id", type=int))
        active_only = request.args.get("active_only", "false").lower() == "true"
        return ok([category.to_dict() for category in products_service.get_categories(store.id, active_only=active_only)])
    except HANDLED_ERRORS as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to list categories")
        return fail("Internal server error", 500)


@products_bp.post("/categories")
def create_category_route():
    try:
        payload = dict(json_body())
        store_id = int_field(payload, "store_id")
        payload.pop("store_id", None)
        category = products_service.create_category(store_id, payload)
        return ok(category.to_dict(), 201)
    except HANDLED_ERRORS as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to create category")
        return fail("Internal server error", 500)


# =============================================================================
# DELIVERABLE FILES (digital products)
# =============================================================================

@products_bp.get("/<int:product_id>/downloads")
def list_product_downloads_route(product_id: int):
    try:
        products_service.require_product(product_id)
        return ok([download.to_dict() for download in download_service.get_product_downloads(product_id)])
    except HANDLED_ERRORS as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to list downloads for product %s", product_id)
        return fail("Internal server error", 500)


@products_bp.post("/<int:product_id>/downloads")
def create_product_download_route(product_id: int):
    """
    multipart/form-data with a "file" part (plus optional download_limit,
    expiration_days, mime_type fields), or JSON describing a file whose bytes
    are uploaded later.
    """
    try:
        upload = request.files.get("file")
        if upload is not None:
            fields = request.form
            data = upload.read()
            download = download_service.create_digital_download(
                product_id,
                upload.filename,
                file_size=len(data),
                mime_type=fields.get("mime_type") or upload.mimetype,
                download_limit=_optional_int_arg(fields, "download_limit"),
                expiration_days=_optional_int_arg(fields, "expiration_days"),
            )
            download = download_service.upload_file(current_app.extensions["object_store"], download.id, data)
        else:
            payload = json_body()
            download = download_service.create_digital_download(
                product_id,
                payload.get("file_name"),
                payload.get("file_path"),
                file_size=int_field(payload, "file_size", required=False),
                mime_type=payload.get("mime_type"),
                download_limit=int_field(payload, "download_limit", required=False),
                expiration_days=int_field(payload, "expiration_days", required=False),
            )
        return ok(download.to_dict(), 201)
    except HANDLED_ERRORS as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to create download for product %s", product_id)
        return fail("Internal server error", 500)


@products_bp.delete("/downloads/<int:download_id>")
def delete_product_download_route(download_id: int):
    try:
        download_service.delete_digital_download(current_app.extensions["object_store"], download_id)
        return ok({"id": download_id})
    except HANDLED_ERRORS as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to delete download %s", download_id)
        return fail("Internal server error", 500)
