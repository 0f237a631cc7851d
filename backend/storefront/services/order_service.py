# Overview: Order pipeline; frozen order snapshots, line items and the three status state machines.

"""
Order Service

WHY: An order is the durable record of what the customer agreed to pay.
Its money columns are written once by create_order and never recomputed.

STATE MACHINES (checked by can_transition):
- status:           pending -> paid -> processing -> shipped -> delivered,
                    cancelled from any pre-shipped state, refunded after paid
- payment_status:   unpaid -> paid | failed, failed -> paid | failed,
                    paid -> refunded
- shipping_status:  unshipped -> shipped -> delivered | returned,
                    delivered -> returned

Setting a column to its current value is always allowed. Admin callers can
pass override=True to force any value; overrides are logged at WARNING.
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..errors import InvalidTransitionError, NotFoundError
from ..models import Order, OrderItem, Product, Store
from ..models.orders import (
    ORDER_STATUS_CANCELLED,
    ORDER_STATUS_DELIVERED,
    ORDER_STATUS_PAID,
    ORDER_STATUS_PENDING,
    ORDER_STATUS_PROCESSING,
    ORDER_STATUS_REFUNDED,
    ORDER_STATUS_SHIPPED,
    PAYMENT_STATUS_FAILED,
    PAYMENT_STATUS_PAID,
    PAYMENT_STATUS_REFUNDED,
    PAYMENT_STATUS_UNPAID,
    SHIPPING_STATUS_DELIVERED,
    SHIPPING_STATUS_RETURNED,
    SHIPPING_STATUS_SHIPPED,
    SHIPPING_STATUS_UNSHIPPED,
)
from ..validation import ConflictError, ValidationError
from .concurrency import lock_for_update, run_with_retry
from .document_service import DOCUMENT_TYPE_ORDER, allocate_sequence_number, format_document_number


ORDER_NUMBER_PREFIX = "ORD"


# =============================================================================
# TRANSITION TABLES
# =============================================================================

ORDER_TRANSITIONS: dict[str, frozenset[str]] = {
    ORDER_STATUS_PENDING: frozenset({ORDER_STATUS_PAID, ORDER_STATUS_PROCESSING, ORDER_STATUS_CANCELLED}),
    ORDER_STATUS_PAID: frozenset({ORDER_STATUS_PROCESSING, ORDER_STATUS_CANCELLED, ORDER_STATUS_REFUNDED}),
    ORDER_STATUS_PROCESSING: frozenset({ORDER_STATUS_SHIPPED, ORDER_STATUS_CANCELLED, ORDER_STATUS_REFUNDED}),
    ORDER_STATUS_SHIPPED: frozenset({ORDER_STATUS_DELIVERED, ORDER_STATUS_REFUNDED}),
    ORDER_STATUS_DELIVERED: frozenset({ORDER_STATUS_REFUNDED}),
    ORDER_STATUS_CANCELLED: frozenset({ORDER_STATUS_REFUNDED}),
    ORDER_STATUS_REFUNDED: frozenset(),
}

PAYMENT_TRANSITIONS: dict[str, frozenset[str]] = {
    PAYMENT_STATUS_UNPAID: frozenset({PAYMENT_STATUS_PAID, PAYMENT_STATUS_FAILED}),
    PAYMENT_STATUS_FAILED: frozenset({PAYMENT_STATUS_PAID, PAYMENT_STATUS_FAILED}),
    PAYMENT_STATUS_PAID: frozenset({PAYMENT_STATUS_REFUNDED}),
    PAYMENT_STATUS_REFUNDED: frozenset(),
}

SHIPPING_TRANSITIONS: dict[str, frozenset[str]] = {
    SHIPPING_STATUS_UNSHIPPED: frozenset({SHIPPING_STATUS_SHIPPED}),
    SHIPPING_STATUS_SHIPPED: frozenset({SHIPPING_STATUS_DELIVERED, SHIPPING_STATUS_RETURNED}),
    SHIPPING_STATUS_DELIVERED: frozenset({SHIPPING_STATUS_RETURNED}),
    SHIPPING_STATUS_RETURNED: frozenset(),
}

_TABLES_BY_FIELD = {
    "status": ORDER_TRANSITIONS,
    "payment_status": PAYMENT_TRANSITIONS,
    "shipping_status": SHIPPING_TRANSITIONS,
}

UPDATABLE_ORDER_FIELDS = {"status", "payment_status", "shipping_status", "notes", "metadata"}


def can_transition(table: dict[str, frozenset[str]], current: str, target: str) -> bool:
    if target not in table:
        return False
    if current == target:
        return True
    return target in table.get(current, frozenset())


def _apply_status(order: Order, field: str, target: str, *, override: bool) -> None:
    table = _TABLES_BY_FIELD[field]
    if target not in table:
        raise ValidationError(f"Invalid {field}: {target}. Must be one of {', '.join(table)}")

    current = getattr(order, field)
    if not can_transition(table, current, target):
        if not override:
            raise InvalidTransitionError(
                f"Cannot change {field} from {current} to {target}",
                details={"order_id": order.id, "field": field, "from": current, "to": target},
            )
        current_app.logger.warning(
            "Admin override on order %s: %s %s -> %s", order.order_number, field, current, target
        )
    setattr(order, field, target)


# =============================================================================
# CREATION
# =============================================================================

MONEY_FIELDS = ("subtotal_cents", "tax_cents", "shipping_cents", "discount_cents", "total_cents")


def _check_amounts(amounts: dict) -> None:
    for key in MONEY_FIELDS:
        value = amounts[key]
        if not isinstance(value, int) or isinstance(value, bool):
            raise ValidationError(f"{key} must be an integer number of cents")
        if value < 0 and key != "total_cents":
            raise ValidationError(f"{key} must be >= 0")

    expected = (
        amounts["subtotal_cents"]
        + amounts["tax_cents"]
        + amounts["shipping_cents"]
        - amounts["discount_cents"]
    )
    if amounts["total_cents"] != expected:
        raise ValidationError(
            f"total_cents must equal subtotal + tax + shipping - discount (expected {expected}, got {amounts['total_cents']})"
        )


def create_order(
    store_id: int,
    *,
    email: str,
    subtotal_cents: int,
    tax_cents: int = 0,
    shipping_cents: int = 0,
    discount_cents: int = 0,
    total_cents: int,
    currency: str | None = None,
    user_id: str | None = None,
    payment_method: str | None = None,
    coupon_code: str | None = None,
    billing_address: dict | None = None,
    shipping_address: dict | None = None,
    notes: str | None = None,
    metadata: dict | None = None,
    items: list[dict] | None = None,
) -> Order:
    """
    Persist a frozen checkout snapshot.

    Amounts are stored exactly as given; an inconsistent total is rejected,
    never corrected. The order number is claimed in the same transaction as
    the insert, so a failed insert does not burn a number.

    `items` are line snapshots (the keyword arguments of add_item). They are
    written in the same commit as the order: either the order exists with
    every line or nothing was written.
    """
    if not email or not str(email).strip():
        raise ValidationError("email is required")
    amounts = {
        "subtotal_cents": subtotal_cents,
        "tax_cents": tax_cents,
        "shipping_cents": shipping_cents,
        "discount_cents": discount_cents,
        "total_cents": total_cents,
    }
    _check_amounts(amounts)
    for name, bag in (("billing_address", billing_address), ("shipping_address", shipping_address), ("metadata", metadata)):
        if bag is not None and not isinstance(bag, dict):
            raise ValidationError(f"{name} must be a JSON object")
    lines = [_check_line(**line) for line in (items or [])]

    def _op():
        store = db.session.get(Store, store_id)
        if not store:
            raise NotFoundError(f"Store not found: {store_id}")

        order = Order(
            store_id=store_id,
            user_id=user_id,
            email=str(email).strip(),
            status=ORDER_STATUS_PENDING,
            payment_status=PAYMENT_STATUS_UNPAID,
            shipping_status=SHIPPING_STATUS_UNSHIPPED,
            currency=(currency or store.currency or "USD").upper(),
            payment_method=payment_method,
            coupon_code=coupon_code,
            billing_address=billing_address,
            shipping_address=shipping_address,
            notes=notes,
            metadata_json=metadata,
            **amounts,
        )
        for line in lines:
            _build_item(order, **line)

        # Lines resolve their catalog snapshots before the first write
        number = allocate_sequence_number(store_id=store_id, document_type=DOCUMENT_TYPE_ORDER)
        order.order_number = format_document_number(ORDER_NUMBER_PREFIX, store_id, number)
        db.session.add(order)
        db.session.commit()
        return order

    return run_with_retry(_op)


def add_item(
    order_id: int,
    *,
    product_id: int,
    quantity: int,
    price_cents: int,
    product_name: str | None = None,
    variant_id: int | None = None,
    sku: str | None = None,
    total_cents: int | None = None,
    metadata: dict | None = None,
) -> OrderItem:
    """
    Append a frozen line to a pending order.

    product_name and sku default to the catalog values at this moment. The
    order's totals are not touched.
    """
    line = _check_line(
        product_id=product_id,
        quantity=quantity,
        price_cents=price_cents,
        product_name=product_name,
        variant_id=variant_id,
        sku=sku,
        total_cents=total_cents,
        metadata=metadata,
    )

    def _op():
        order = db.session.get(Order, order_id)
        if not order:
            raise NotFoundError(f"Order not found: {order_id}")
        if order.status != ORDER_STATUS_PENDING:
            raise ConflictError(f"Cannot add items to an order in status {order.status}")

        item = _build_item(order, **line)
        db.session.add(item)
        db.session.commit()
        return item

    return run_with_retry(_op)


def _check_line(
    *,
    product_id: int,
    quantity: int,
    price_cents: int,
    product_name: str | None = None,
    variant_id: int | None = None,
    sku: str | None = None,
    total_cents: int | None = None,
    metadata: dict | None = None,
) -> dict:
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
        raise ValidationError("quantity must be an integer >= 1")
    if not isinstance(price_cents, int) or isinstance(price_cents, bool) or price_cents < 0:
        raise ValidationError("price_cents must be an integer >= 0")
    return {
        "product_id": product_id,
        "quantity": quantity,
        "price_cents": price_cents,
        "product_name": product_name,
        "variant_id": variant_id,
        "sku": sku,
        "total_cents": total_cents,
        "metadata": metadata,
    }


def _build_item(
    order: Order,
    *,
    product_id: int,
    quantity: int,
    price_cents: int,
    product_name: str | None,
    variant_id: int | None,
    sku: str | None,
    total_cents: int | None,
    metadata: dict | None,
) -> OrderItem:
    name, item_sku = product_name, sku
    if name is None or item_sku is None:
        product = db.session.get(Product, product_id)
        if not product:
            raise NotFoundError(f"Product not found: {product_id}")
        name = name if name is not None else product.name
        item_sku = item_sku if item_sku is not None else product.sku

    return OrderItem(
        order=order,
        product_id=product_id,
        variant_id=variant_id,
        product_name=name,
        sku=item_sku,
        quantity=quantity,
        price_cents=price_cents,
        total_cents=total_cents if total_cents is not None else price_cents * quantity,
        metadata_json=metadata,
    )


# =============================================================================
# LOOKUPS
# =============================================================================

def get_order(order_id: int) -> Order | None:
    return db.session.get(Order, order_id)


def require_order(order_id: int) -> Order:
    order = get_order(order_id)
    if not order:
        raise NotFoundError(f"Order not found: {order_id}")
    return order


def get_order_by_number(store_id: int, order_number: str) -> Order | None:
    return db.session.query(Order).filter_by(store_id=store_id, order_number=order_number).first()


def list_store_orders(store_id: int, status: str | None = None) -> list[Order]:
    query = db.session.query(Order).filter_by(store_id=store_id)
    if status:
        query = query.filter_by(status=status)
    return query.order_by(Order.created_at.desc(), Order.id.desc()).all()


def list_user_orders(user_id: str) -> list[Order]:
    return (
        db.session.query(Order)
        .filter_by(user_id=user_id)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .all()
    )


def get_items(order_id: int) -> list[OrderItem]:
    return db.session.query(OrderItem).filter_by(order_id=order_id).order_by(OrderItem.id.asc()).all()


# =============================================================================
# STATUS UPDATES
# =============================================================================

def update_order(order_id: int, patch: dict, *, override: bool = False) -> Order:
    """
    Partial update limited to status columns, notes and metadata.

    Money, number, email and store are immutable after creation.
    """
    patch = dict(patch or {})
    unknown = sorted(set(patch) - UPDATABLE_ORDER_FIELDS)
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(unknown)}")
    if "metadata" in patch and patch["metadata"] is not None and not isinstance(patch["metadata"], dict):
        raise ValidationError("metadata must be a JSON object")

    def _op():
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if not order:
            raise NotFoundError(f"Order not found: {order_id}")

        for field in ("payment_status", "status", "shipping_status"):
            if field in patch:
                _apply_status(order, field, patch[field], override=override)
        if "notes" in patch:
            order.notes = patch["notes"]
        if "metadata" in patch:
            order.metadata_json = patch["metadata"]

        db.session.commit()
        return order

    return run_with_retry(_op)


def update_order_status(order_id: int, status: str, *, override: bool = False) -> Order:
    return update_order(order_id, {"status": status}, override=override)


def update_payment_status(order_id: int, payment_status: str, *, override: bool = False) -> Order:
    return update_order(order_id, {"payment_status": payment_status}, override=override)


def update_shipping_status(order_id: int, shipping_status: str, *, override: bool = False) -> Order:
    return update_order(order_id, {"shipping_status": shipping_status}, override=override)


def mark_as_paid(order_id: int, payment_id: int | None = None) -> Order:
    """payment_status=paid and status=processing in one commit, optionally recording the settling payment."""
    def _op():
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if not order:
            raise NotFoundError(f"Order not found: {order_id}")

        _apply_status(order, "payment_status", PAYMENT_STATUS_PAID, override=False)
        _apply_status(order, "status", ORDER_STATUS_PROCESSING, override=False)
        if payment_id is not None:
            order.payment_id = payment_id

        db.session.commit()
        return order

    return run_with_retry(_op)


def cancel_order(order_id: int, *, override: bool = False) -> Order:
    """Cancel without touching payments; refunds are a separate, explicit step."""
    return update_order_status(order_id, ORDER_STATUS_CANCELLED, override=override)


def mark_as_refunded(order_id: int) -> Order:
    """
    Used by the payment engine once the settling payment is fully refunded.

    The money has already moved, so an order whose status cannot reach
    refunded (still pending, say) keeps its status and only payment_status
    changes.
    """
    def _op():
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if not order:
            raise NotFoundError(f"Order not found: {order_id}")
        _apply_status(order, "payment_status", PAYMENT_STATUS_REFUNDED, override=False)
        if can_transition(ORDER_TRANSITIONS, order.status, ORDER_STATUS_REFUNDED):
            order.status = ORDER_STATUS_REFUNDED
        else:
            current_app.logger.warning(
                "Order %s refunded while in status %s; status left unchanged", order.order_number, order.status
            )
        db.session.commit()
        return order

    return run_with_retry(_op)
