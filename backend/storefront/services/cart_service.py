# Overview: Cart engine; item mutations, coupon/shipping adjustments and the totals recompute.

"""
Cart Service

WHY: The cart is the only place money is computed before checkout. Every
mutation ends with the same recompute so stored totals can never drift from
the items, shipping, coupon discount and store tax rate.

DESIGN:
- Totals: subtotal = sum(price * quantity); tax = subtotal * rate (basis
  points, half-up to the cent); total = subtotal + tax + shipping - discount.
  Only total_price_cents and total_tax_cents are stored.
- Each mutation and its recompute commit together. The cart row is locked
  and carries version_id, so two concurrent mutations cannot both commit
  against the same totals; the loser is retried by run_with_retry.
- Item prices are snapshots. The catalog is only consulted by add_product.
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app

from ..extensions import db
from ..errors import InsufficientStockError, NotFoundError
from ..models import Cart, CartItem, Product, ProductVariant, Store
from ..money import apply_bps
from ..validation import ValidationError
from storefront.time_utils import days_after, utcnow
from .concurrency import lock_for_update, run_with_retry
from . import coupon_service


DEFAULT_CART_TTL_DAYS = 30


def _cart_ttl_days() -> int:
    return int(current_app.config.get("CART_TTL_DAYS", DEFAULT_CART_TTL_DAYS))


# =============================================================================
# LOOKUPS
# =============================================================================

def get_cart(cart_id: int) -> Cart | None:
    return db.session.get(Cart, cart_id)


def require_cart(cart_id: int) -> Cart:
    cart = get_cart(cart_id)
    if not cart:
        raise NotFoundError(f"Cart not found: {cart_id}")
    return cart


def _latest_live_cart(store_id: int, now: datetime | None, **owner) -> Cart | None:
    now = now or utcnow()
    return (
        db.session.query(Cart)
        .filter_by(store_id=store_id, **owner)
        .filter((Cart.expires_at.is_(None)) | (Cart.expires_at > now))
        .order_by(Cart.created_at.desc(), Cart.id.desc())
        .first()
    )


def get_user_cart(store_id: int, user_id: str, now: datetime | None = None) -> Cart | None:
    """Newest unexpired cart owned by a signed-in user."""
    return _latest_live_cart(store_id, now, user_id=user_id)


def get_session_cart(store_id: int, session_id: str, now: datetime | None = None) -> Cart | None:
    """Newest unexpired cart owned by an anonymous session."""
    return _latest_live_cart(store_id, now, session_id=session_id)


def get_items(cart_id: int) -> list[CartItem]:
    return db.session.query(CartItem).filter_by(cart_id=cart_id).order_by(CartItem.id.asc()).all()


def get_item(item_id: int) -> CartItem | None:
    return db.session.get(CartItem, item_id)


def subtotal_cents(cart_id: int) -> int:
    return sum(item.price_cents * item.quantity for item in get_items(cart_id))


def get_cart_summary(cart_id: int) -> dict:
    cart = require_cart(cart_id)
    items = get_items(cart_id)
    return {
        "cart": cart.to_dict(),
        "items": [item.to_dict() for item in items],
        "item_count": sum(item.quantity for item in items),
        "subtotal_cents": sum(item.price_cents * item.quantity for item in items),
    }


# =============================================================================
# CREATION
# =============================================================================

def create_cart(
    store_id: int,
    *,
    user_id: str | None = None,
    session_id: str | None = None,
    now: datetime | None = None,
) -> Cart:
    if bool(user_id) == bool(session_id):
        raise ValidationError("Exactly one of user_id or session_id is required")

    def _op():
        if not db.session.get(Store, store_id):
            raise NotFoundError(f"Store not found: {store_id}")

        created = now or utcnow()
        cart = Cart(
            store_id=store_id,
            user_id=user_id or None,
            session_id=session_id or None,
            total_price_cents=0,
            total_tax_cents=0,
            total_shipping_cents=0,
            coupon_discount_cents=0,
            expires_at=days_after(created, _cart_ttl_days()),
        )
        db.session.add(cart)
        db.session.commit()
        return cart

    return run_with_retry(_op)


# =============================================================================
# RECOMPUTE
# =============================================================================

def _recompute_locked(cart: Cart) -> None:
    """Write totals for a cart already locked in the current transaction."""
    store = db.session.get(Store, cart.store_id)
    tax_rate_bps = store.tax_rate_bps if store else 0

    db.session.flush()
    subtotal = sum(
        price * quantity
        for price, quantity in db.session.query(CartItem.price_cents, CartItem.quantity).filter_by(cart_id=cart.id)
    )
    tax = apply_bps(subtotal, tax_rate_bps)

    cart.total_tax_cents = tax
    cart.total_price_cents = subtotal + tax + (cart.total_shipping_cents or 0) - (cart.coupon_discount_cents or 0)
    # Always dirty the row so the version_id check runs even when totals are unchanged
    cart.updated_at = utcnow()


def _mutate(cart_id: int, change):
    """
    Lock the cart, apply `change(cart)`, recompute and commit as one unit.

    Returns whatever `change` returns.
    """
    def _op():
        cart = lock_for_update(db.session.query(Cart).filter_by(id=cart_id)).first()
        if not cart:
            raise NotFoundError(f"Cart not found: {cart_id}")
        result = change(cart)
        _recompute_locked(cart)
        db.session.commit()
        return result

    return run_with_retry(_op)


def recalculate_cart(cart_id: int) -> Cart:
    return _mutate(cart_id, lambda cart: cart)


# =============================================================================
# ITEMS
# =============================================================================

def add_item(
    cart_id: int,
    product_id: int,
    quantity: int,
    price_cents: int,
    variant_id: int | None = None,
) -> CartItem:
    """Insert a line at a caller-resolved price and recompute."""
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
        raise ValidationError("quantity must be an integer >= 1")

    def _change(cart: Cart) -> CartItem:
        item = CartItem(
            cart_id=cart.id,
            product_id=product_id,
            variant_id=variant_id,
            quantity=quantity,
            price_cents=price_cents,
        )
        db.session.add(item)
        return item

    return _mutate(cart_id, _change)


def add_product(cart_id: int, product_id: int, quantity: int, variant_id: int | None = None) -> CartItem:
    """
    Add a catalog product at its current price.

    The product must be active and belong to the cart's store. Physical
    products must have enough stock for `quantity`.
    """
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
        raise ValidationError("quantity must be an integer >= 1")
    cart = require_cart(cart_id)
    product = db.session.get(Product, product_id)
    if not product or product.store_id != cart.store_id or not product.is_active:
        raise NotFoundError(f"Product not found: {product_id}")

    price = product.price_cents
    available = product.stock_quantity
    if variant_id is not None:
        variant = db.session.get(ProductVariant, variant_id)
        if not variant or variant.product_id != product.id:
            raise NotFoundError(f"Variant not found: {variant_id}")
        price = variant.effective_price_cents()
        available = variant.stock_quantity

    if not product.is_digital and available < quantity:
        raise InsufficientStockError(
            f"Only {available} left in stock for {product.name}",
            details={"product_id": product.id, "variant_id": variant_id, "available": available},
        )

    return add_item(cart_id, product_id, quantity, price, variant_id=variant_id)


def update_item(item_id: int, quantity: int) -> CartItem | None:
    """Set a line's quantity; zero or less removes the line. Returns None when removed."""
    item = get_item(item_id)
    if not item:
        raise NotFoundError(f"Cart item not found: {item_id}")
    if quantity <= 0:
        remove_item(item_id)
        return None

    def _change(cart: Cart) -> CartItem:
        current = db.session.query(CartItem).filter_by(id=item_id, cart_id=cart.id).first()
        if not current:
            raise NotFoundError(f"Cart item not found: {item_id}")
        current.quantity = quantity
        return current

    return _mutate(item.cart_id, _change)


def remove_item(item_id: int) -> None:
    item = get_item(item_id)
    if not item:
        raise NotFoundError(f"Cart item not found: {item_id}")

    def _change(cart: Cart) -> None:
        current = db.session.query(CartItem).filter_by(id=item_id, cart_id=cart.id).first()
        if not current:
            raise NotFoundError(f"Cart item not found: {item_id}")
        db.session.delete(current)

    _mutate(item.cart_id, _change)


def clear_cart(cart_id: int) -> Cart:
    """Remove every line and reset totals, shipping and coupon to zero."""
    def _op():
        cart = lock_for_update(db.session.query(Cart).filter_by(id=cart_id)).first()
        if not cart:
            raise NotFoundError(f"Cart not found: {cart_id}")
        db.session.query(CartItem).filter_by(cart_id=cart.id).delete(synchronize_session=False)
        cart.total_price_cents = 0
        cart.total_tax_cents = 0
        cart.total_shipping_cents = 0
        cart.coupon_code = None
        cart.coupon_discount_cents = 0
        cart.updated_at = utcnow()
        db.session.commit()
        return cart

    return run_with_retry(_op)


# =============================================================================
# COUPON / SHIPPING
# =============================================================================

def apply_coupon(cart_id: int, code: str, discount_cents: int) -> Cart:
    """Store an already-evaluated discount on the cart and recompute."""
    def _change(cart: Cart) -> Cart:
        cart.coupon_code = coupon_service.normalize_code(code) or None
        cart.coupon_discount_cents = discount_cents
        return cart

    return _mutate(cart_id, _change)


def apply_coupon_code(cart_id: int, code: str, now: datetime | None = None) -> Cart:
    """Evaluate a stored store coupon against the current subtotal, then apply it."""
    cart = require_cart(cart_id)
    _, discount = coupon_service.quote_coupon(cart.store_id, code, subtotal_cents(cart_id), now=now)
    return apply_coupon(cart_id, code, discount)


def remove_coupon(cart_id: int) -> Cart:
    def _change(cart: Cart) -> Cart:
        cart.coupon_code = None
        cart.coupon_discount_cents = 0
        return cart

    return _mutate(cart_id, _change)


def set_shipping(cart_id: int, shipping_cents: int) -> Cart:
    def _change(cart: Cart) -> Cart:
        cart.total_shipping_cents = shipping_cents
        return cart

    return _mutate(cart_id, _change)


# =============================================================================
# EXPIRY SWEEP
# =============================================================================

def delete_expired_carts(now: datetime | None = None) -> int:
    """
    Purge carts whose expires_at has passed. Returns the number of carts removed.

    Items are deleted explicitly first: bulk deletes skip ORM cascades and
    SQLite does not enforce ON DELETE CASCADE by default.
    """
    def _op():
        cutoff = now or utcnow()
        expired_ids = [
            row.id
            for row in db.session.query(Cart.id).filter(Cart.expires_at.isnot(None), Cart.expires_at < cutoff)
        ]
        if not expired_ids:
            return 0
        db.session.query(CartItem).filter(CartItem.cart_id.in_(expired_ids)).delete(synchronize_session=False)
        deleted = db.session.query(Cart).filter(Cart.id.in_(expired_ids)).delete(synchronize_session=False)
        db.session.commit()
        current_app.logger.info("Purged %s expired carts", deleted)
        return deleted

    return run_with_retry(_op)
