# backend/storefront/services/products_service.py
"""
Catalog Service

MULTI-TENANT: Every product and category belongs to exactly one store; SKU
and slug uniqueness are enforced per store, never globally.

STOCK: physical products track stock_quantity. Digital products are never
decremented. Stock decrements are single conditional UPDATE statements so
concurrent paid orders cannot lose a decrement.
"""
from __future__ import annotations

from sqlalchemy import case, update

from ..extensions import db
from ..errors import NotFoundError
from ..models import Product, ProductCategory, ProductVariant, Store
from ..models.catalog import PRODUCT_TYPE_PHYSICAL
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    ValidationError,
    enforce_rules_product,
    enforce_rules_variant,
    remap_metadata,
    validate_payload,
)
from .concurrency import lock_for_update, run_with_retry, rowcount_of


PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "category_id", "name", "slug", "sku", "description", "type",
        "price_cents", "cost_cents", "stock_quantity", "weight_grams",
        "dimensions", "image_url", "gallery_urls", "is_active", "is_featured",
        "metadata_json",
    },
    required_on_create={"name", "slug", "price_cents"},
)

# Product type is fixed at creation: switching would orphan download links
# or stock history.
PRODUCT_MUTABLE_FIELDS = PRODUCT_POLICY.writable_fields - {"type"}

VARIANT_POLICY = ModelValidationPolicy(
    writable_fields={"name", "sku", "price_cents", "stock_quantity", "image_url", "metadata_json"},
    required_on_create={"name"},
)

CATEGORY_POLICY = ModelValidationPolicy(
    writable_fields={"parent_id", "name", "slug", "description", "image_url", "is_active"},
    required_on_create={"name", "slug"},
)


def _require_store(store_id: int) -> Store:
    store = db.session.get(Store, store_id)
    if not store:
        raise NotFoundError(f"Store not found: {store_id}")
    return store


def _ensure_unique(store_id: int, *, slug: str | None, sku: str | None, exclude_id: int | None = None) -> None:
    if slug:
        query = db.session.query(Product.id).filter(Product.store_id == store_id, Product.slug == slug)
        if exclude_id is not None:
            query = query.filter(Product.id != exclude_id)
        if query.first():
            raise ConflictError("Slug already exists for this store.")
    if sku:
        query = db.session.query(Product.id).filter(Product.store_id == store_id, Product.sku == sku)
        if exclude_id is not None:
            query = query.filter(Product.id != exclude_id)
        if query.first():
            raise ConflictError("SKU already exists for this store.")


def _check_category(store_id: int, category_id: int | None) -> None:
    if category_id is None:
        return
    category = db.session.get(ProductCategory, category_id)
    if not category or category.store_id != store_id:
        raise ValidationError(f"Category not found in this store: {category_id}")


# =============================================================================
# PRODUCTS
# =============================================================================

def create_product(store_id: int, payload: dict) -> Product:
    patch = validate_payload(model=Product, payload=remap_metadata(payload), policy=PRODUCT_POLICY, partial=False)
    enforce_rules_product(patch)
    patch.setdefault("type", PRODUCT_TYPE_PHYSICAL)

    def _op():
        _require_store(store_id)
        _ensure_unique(store_id, slug=patch.get("slug"), sku=patch.get("sku"))
        _check_category(store_id, patch.get("category_id"))

        product = Product(store_id=store_id, **patch)
        db.session.add(product)
        db.session.commit()
        return product

    return run_with_retry(_op)


def get_product(product_id: int) -> Product | None:
    return db.session.get(Product, product_id)


def require_product(product_id: int) -> Product:
    product = get_product(product_id)
    if not product:
        raise NotFoundError(f"Product not found: {product_id}")
    return product


def list_store_products(store_id: int, active_only: bool = True) -> list[Product]:
    query = db.session.query(Product).filter(Product.store_id == store_id)
    if active_only:
        query = query.filter(Product.is_active.is_(True))
    return query.order_by(Product.name.asc(), Product.id.asc()).all()


def list_featured_products(store_id: int, limit: int = 10) -> list[Product]:
    limit = max(1, min(limit, 100))
    return (
        db.session.query(Product)
        .filter(
            Product.store_id == store_id,
            Product.is_featured.is_(True),
            Product.is_active.is_(True),
        )
        .order_by(Product.created_at.desc(), Product.id.desc())
        .limit(limit)
        .all()
    )


def update_product(product_id: int, payload: dict) -> Product:
    payload = remap_metadata(payload)
    if "type" in payload:
        raise ValidationError("Product type cannot be changed after creation")
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
    enforce_rules_product(patch)

    def _op():
        product = lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()
        if not product:
            raise NotFoundError(f"Product not found: {product_id}")

        _ensure_unique(
            product.store_id,
            slug=patch.get("slug") if patch.get("slug") != product.slug else None,
            sku=patch.get("sku") if patch.get("sku") != product.sku else None,
            exclude_id=product.id,
        )
        if "category_id" in patch:
            _check_category(product.store_id, patch["category_id"])

        for key, value in patch.items():
            if key in PRODUCT_MUTABLE_FIELDS:
                setattr(product, key, value)

        db.session.commit()
        return product

    return run_with_retry(_op)


def _set_active(product_id: int, active: bool) -> Product:
    def _op():
        product = lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()
        if not product:
            raise NotFoundError(f"Product not found: {product_id}")
        product.is_active = active
        db.session.commit()
        return product

    return run_with_retry(_op)


def activate_product(product_id: int) -> Product:
    return _set_active(product_id, True)


def deactivate_product(product_id: int) -> Product:
    return _set_active(product_id, False)


def delete_product(product_id: int) -> bool:
    """
    Soft-delete a product (is_active = False).

    Order items, cart items and download links keep pointing at the row, so
    it is never physically removed. Returns False when the product is missing.
    """
    product = get_product(product_id)
    if not product:
        return False
    if product.is_active:
        deactivate_product(product_id)
    return True


# =============================================================================
# STOCK
# =============================================================================

def update_stock(product_id: int, quantity: int, variant_id: int | None = None) -> Product | ProductVariant:
    """Set absolute stock for a product, or for one of its variants."""
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 0:
        raise ValidationError("stock_quantity must be an integer >= 0")

    def _op():
        if variant_id is not None:
            target = lock_for_update(
                db.session.query(ProductVariant).filter_by(id=variant_id, product_id=product_id)
            ).first()
            if not target:
                raise NotFoundError(f"Variant not found: {variant_id}")
        else:
            target = lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()
            if not target:
                raise NotFoundError(f"Product not found: {product_id}")
        target.stock_quantity = quantity
        db.session.commit()
        return target

    return run_with_retry(_op)


def _clamped_decrement(column, quantity: int):
    return case((column > quantity, column - quantity), else_=0)


def decrease_stock(product_id: int, quantity: int, variant_id: int | None = None) -> bool:
    """
    Decrement physical stock by `quantity`, clamped at zero.

    One conditional UPDATE per row, no read-modify-write. Digital products
    match nothing and are left untouched. Returns True when stock changed.
    """
    if quantity <= 0:
        return False

    def _op():
        result = db.session.execute(
            update(Product)
            .where(Product.id == product_id, Product.type == PRODUCT_TYPE_PHYSICAL)
            .values(
                stock_quantity=_clamped_decrement(Product.stock_quantity, quantity),
                version_id=Product.version_id + 1,
            )
            .execution_options(synchronize_session=False)
        )
        changed = rowcount_of(result) > 0

        if changed and variant_id is not None:
            db.session.execute(
                update(ProductVariant)
                .where(ProductVariant.id == variant_id, ProductVariant.product_id == product_id)
                .values(stock_quantity=_clamped_decrement(ProductVariant.stock_quantity, quantity))
                .execution_options(synchronize_session=False)
            )

        db.session.commit()
        return changed

    return run_with_retry(_op)


def resolve_unit_price(product_id: int, variant_id: int | None = None) -> int:
    """Current catalog price in cents; a variant's own price wins over its parent's."""
    product = require_product(product_id)
    if variant_id is None:
        return product.price_cents

    variant = db.session.get(ProductVariant, variant_id)
    if not variant or variant.product_id != product.id:
        raise NotFoundError(f"Variant not found: {variant_id}")
    return variant.effective_price_cents()


# =============================================================================
# VARIANTS
# =============================================================================

def create_variant(product_id: int, payload: dict) -> ProductVariant:
    patch = validate_payload(model=ProductVariant, payload=remap_metadata(payload), policy=VARIANT_POLICY, partial=False)
    enforce_rules_variant(patch)

    def _op():
        require_product(product_id)
        variant = ProductVariant(product_id=product_id, **patch)
        db.session.add(variant)
        db.session.commit()
        return variant

    return run_with_retry(_op)


def get_variants(product_id: int) -> list[ProductVariant]:
    return (
        db.session.query(ProductVariant)
        .filter_by(product_id=product_id)
        .order_by(ProductVariant.id.asc())
        .all()
    )


def delete_variant(variant_id: int) -> bool:
    variant = db.session.get(ProductVariant, variant_id)
    if not variant:
        return False
    db.session.delete(variant)
    db.session.commit()
    return True


# =============================================================================
# CATEGORIES
# =============================================================================

def create_category(store_id: int, payload: dict) -> ProductCategory:
    patch = validate_payload(model=ProductCategory, payload=payload, policy=CATEGORY_POLICY, partial=False)

    def _op():
        _require_store(store_id)
        exists = (
            db.session.query(ProductCategory.id)
            .filter_by(store_id=store_id, slug=patch["slug"])
            .first()
        )
        if exists:
            raise ConflictError("Category slug already exists for this store.")
        parent_id = patch.get("parent_id")
        if parent_id is not None:
            parent = db.session.get(ProductCategory, parent_id)
            if not parent or parent.store_id != store_id:
                raise ValidationError(f"Parent category not found in this store: {parent_id}")

        category = ProductCategory(store_id=store_id, **patch)
        db.session.add(category)
        db.session.commit()
        return category

    return run_with_retry(_op)


def get_categories(store_id: int, active_only: bool = False) -> list[ProductCategory]:
    query = db.session.query(ProductCategory).filter_by(store_id=store_id)
    if active_only:
        query = query.filter(ProductCategory.is_active.is_(True))
    return query.order_by(ProductCategory.name.asc(), ProductCategory.id.asc()).all()
