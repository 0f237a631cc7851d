"""
Coupon evaluation and redemption.

evaluate_coupon is pure: given a coupon row, a cart subtotal and a clock
reading it returns the discount or raises CouponError. Nothing here trusts a
caller-supplied discount amount.
"""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import or_, update

from ..extensions import db
from ..errors import CouponError, NotFoundError
from ..models import Coupon, Store
from ..money import apply_bps
from ..validation import ConflictError, ModelValidationPolicy, ValidationError, validate_payload, MAX_TAX_RATE_BPS
from storefront.time_utils import utcnow
from .concurrency import run_with_retry, rowcount_of


DISCOUNT_PERCENTAGE = "percentage"
DISCOUNT_FIXED = "fixed"
DISCOUNT_TYPES = (DISCOUNT_PERCENTAGE, DISCOUNT_FIXED)

COUPON_POLICY = ModelValidationPolicy(
    writable_fields={
        "code", "description", "discount_type", "discount_value", "max_uses",
        "min_purchase_cents", "valid_from", "valid_until", "is_active",
    },
    required_on_create={"code", "discount_type", "discount_value"},
)


def normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()


def evaluate_coupon(coupon: Coupon, subtotal_cents: int, now: datetime) -> int:
    """
    Discount in cents this coupon grants on `subtotal_cents` at `now`.

    Never exceeds the subtotal. Raises CouponError with the first reason the
    coupon cannot be used.
    """
    if not coupon.is_active:
        raise CouponError("Coupon is not active", details={"code": coupon.code, "reason": "inactive"})
    if coupon.valid_from is not None and now < coupon.valid_from:
        raise CouponError("Coupon is not yet valid", details={"code": coupon.code, "reason": "not_started"})
    if coupon.valid_until is not None and now > coupon.valid_until:
        raise CouponError("Coupon has expired", details={"code": coupon.code, "reason": "expired"})
    if coupon.max_uses is not None and coupon.current_uses >= coupon.max_uses:
        raise CouponError("Coupon usage limit reached", details={"code": coupon.code, "reason": "exhausted"})
    if coupon.min_purchase_cents is not None and subtotal_cents < coupon.min_purchase_cents:
        raise CouponError(
            "Cart subtotal is below the coupon minimum",
            details={"code": coupon.code, "reason": "minimum", "min_purchase_cents": coupon.min_purchase_cents},
        )

    if coupon.discount_type == DISCOUNT_PERCENTAGE:
        discount = apply_bps(subtotal_cents, coupon.discount_value)
    elif coupon.discount_type == DISCOUNT_FIXED:
        discount = coupon.discount_value
    else:
        raise CouponError(f"Unknown discount type: {coupon.discount_type}", details={"code": coupon.code})

    return max(0, min(discount, subtotal_cents))


def create_coupon(store_id: int, payload: dict) -> Coupon:
    patch = validate_payload(model=Coupon, payload=payload, policy=COUPON_POLICY, partial=False)
    patch["code"] = normalize_code(patch["code"])

    if patch["discount_type"] not in DISCOUNT_TYPES:
        raise ValidationError(f"discount_type must be one of {', '.join(DISCOUNT_TYPES)}")
    if patch["discount_value"] < 0:
        raise ValidationError("discount_value must be >= 0")
    if patch["discount_type"] == DISCOUNT_PERCENTAGE and patch["discount_value"] > MAX_TAX_RATE_BPS:
        raise ValidationError("percentage discount_value is in basis points and cannot exceed 10000")
    if patch.get("max_uses") is not None and patch["max_uses"] < 0:
        raise ValidationError("max_uses must be >= 0")
    if patch.get("valid_from") and patch.get("valid_until") and patch["valid_until"] < patch["valid_from"]:
        raise ValidationError("valid_until must be after valid_from")

    def _op():
        if not db.session.get(Store, store_id):
            raise NotFoundError(f"Store not found: {store_id}")
        if get_coupon_by_code(store_id, patch["code"]):
            raise ConflictError(f"Coupon code already exists: {patch['code']}")
        coupon = Coupon(store_id=store_id, current_uses=0, **patch)
        db.session.add(coupon)
        db.session.commit()
        return coupon

    return run_with_retry(_op)


def get_coupon_by_code(store_id: int, code: str) -> Coupon | None:
    code = normalize_code(code)
    if not code:
        return None
    return db.session.query(Coupon).filter_by(store_id=store_id, code=code).first()


def list_store_coupons(store_id: int, active_only: bool = False) -> list[Coupon]:
    query = db.session.query(Coupon).filter_by(store_id=store_id)
    if active_only:
        query = query.filter(Coupon.is_active.is_(True))
    return query.order_by(Coupon.code.asc()).all()


def redeem_coupon(coupon_id: int) -> bool:
    """
    Count one use of a coupon.

    Single conditional UPDATE: returns False instead of overshooting when
    max_uses is already reached.
    """
    def _op():
        result = db.session.execute(
            update(Coupon)
            .where(
                Coupon.id == coupon_id,
                or_(Coupon.max_uses.is_(None), Coupon.current_uses < Coupon.max_uses),
            )
            .values(current_uses=Coupon.current_uses + 1)
            .execution_options(synchronize_session=False)
        )
        db.session.commit()
        return rowcount_of(result) > 0

    return run_with_retry(_op)


def quote_coupon(store_id: int, code: str, subtotal_cents: int, now: datetime | None = None) -> tuple[Coupon, int]:
    """Look up a store coupon by code and evaluate it against a subtotal."""
    coupon = get_coupon_by_code(store_id, code)
    if not coupon:
        raise CouponError(f"Coupon not found: {normalize_code(code)}", details={"reason": "unknown"})
    return coupon, evaluate_coupon(coupon, subtotal_cents, now or utcnow())


def release_coupon(coupon_id: int) -> bool:
    """Give back one use claimed by redeem_coupon (checkout that failed after redeeming)."""
    def _op():
        result = db.session.execute(
            update(Coupon)
            .where(Coupon.id == coupon_id, Coupon.current_uses > 0)
            .values(current_uses=Coupon.current_uses - 1)
            .execution_options(synchronize_session=False)
        )
        db.session.commit()
        return rowcount_of(result) > 0

    return run_with_retry(_op)
