# Overview: Checkout orchestration; cart -> order -> payment -> fulfillment as separate committed steps.

"""
Checkout Service

Each step commits on its own and can be retried on its own:

    checkout_cart        cart (recomputed) -> pending order, coupon redeemed, cart cleared
    pay_order            one gateway attempt for the order total
    complete_paid_order  mark paid -> decrement physical stock -> issue download links
    issue_download_links one link per (digital line, file); safe to call again
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app

from ..extensions import db
from ..errors import CouponError, InvalidTransitionError, PaymentError
from ..gateways import GatewayRegistry
from ..models import DownloadLink, Order, Payment, Product, ProductVariant
from ..models.orders import (
    ORDER_STATUS_CANCELLED,
    ORDER_STATUS_REFUNDED,
    PAYMENT_STATUS_FAILED,
    PAYMENT_STATUS_PAID,
    PAYMENT_STATUS_REFUNDED,
)
from ..validation import ValidationError
from . import cart_service, coupon_service, download_service, order_service, payment_service, products_service


def checkout_cart(
    cart_id: int,
    *,
    email: str,
    user_id: str | None = None,
    payment_method: str | None = None,
    billing_address: dict | None = None,
    shipping_address: dict | None = None,
    notes: str | None = None,
    metadata: dict | None = None,
    now: datetime | None = None,
) -> Order:
    """
    Freeze a cart into a pending order.

    A coupon code that names a stored store coupon is re-evaluated against
    the current subtotal and its use is claimed before the order is
    written; if the order cannot be written the use is given back. Any
    other code carries a discount supplied through apply_coupon, which is
    frozen as it stands.

    The order and all of its lines are written in one commit.
    """
    if not email or not str(email).strip():
        raise ValidationError("email is required")
    cart = cart_service.require_cart(cart_id)
    items = cart_service.get_items(cart_id)
    if not items:
        raise ValidationError("Cart is empty")

    coupon = None
    if cart.coupon_code:
        coupon = coupon_service.get_coupon_by_code(cart.store_id, cart.coupon_code)
    if coupon is not None:
        coupon, discount = coupon_service.quote_coupon(
            cart.store_id, coupon.code, cart_service.subtotal_cents(cart_id), now=now
        )
        cart_service.apply_coupon(cart_id, coupon.code, discount)
    cart = cart_service.recalculate_cart(cart_id)

    subtotal = cart_service.subtotal_cents(cart_id)
    store_id = cart.store_id
    snapshot = {
        "subtotal_cents": subtotal,
        "tax_cents": cart.total_tax_cents,
        "shipping_cents": cart.total_shipping_cents,
        "discount_cents": cart.coupon_discount_cents,
        "total_cents": cart.total_price_cents,
    }
    coupon_code = cart.coupon_code
    lines = [_line_snapshot(item) for item in cart_service.get_items(cart_id)]

    if coupon is not None and not coupon_service.redeem_coupon(coupon.id):
        raise CouponError("Coupon usage limit reached", details={"code": coupon.code, "reason": "exhausted"})

    try:
        order = order_service.create_order(
            store_id,
            email=email,
            user_id=user_id or cart.user_id,
            payment_method=payment_method,
            coupon_code=coupon_code,
            billing_address=billing_address,
            shipping_address=shipping_address,
            notes=notes,
            metadata=metadata,
            items=lines,
            **snapshot,
        )
    except Exception:
        db.session.rollback()
        if coupon is not None:
            coupon_service.release_coupon(coupon.id)
        raise

    cart_service.clear_cart(cart_id)
    current_app.logger.info("Cart %s checked out as order %s", cart_id, order.order_number)
    return order_service.require_order(order.id)


def _line_snapshot(item) -> dict:
    """Order line for a cart item, named after the catalog product (and variant) as it is now."""
    product = db.session.get(Product, item.product_id)
    variant = db.session.get(ProductVariant, item.variant_id) if item.variant_id is not None else None
    name = product.name if product else f"Product {item.product_id}"
    sku = product.sku if product else None
    if variant is not None:
        name = f"{name} - {variant.name}"
        sku = variant.sku or sku
    return {
        "product_id": item.product_id,
        "variant_id": item.variant_id,
        "quantity": item.quantity,
        "price_cents": item.price_cents,
        "product_name": name,
        "sku": sku or "",
    }


def pay_order(
    registry: GatewayRegistry,
    order_id: int,
    gateway_type: str | None = None,
    *,
    payment_method_id: int | None = None,
    metadata: dict | None = None,
) -> Payment | None:
    """
    Charge the order total once.

    A failed attempt leaves the order at payment_status=failed and the error
    propagates. A zero-total order is completed without a gateway call and
    returns None.
    """
    order = order_service.require_order(order_id)
    if order.status in (ORDER_STATUS_CANCELLED, ORDER_STATUS_REFUNDED):
        raise InvalidTransitionError(
            f"Cannot pay an order in status {order.status}",
            details={"order_id": order.id, "status": order.status},
        )
    if order.payment_status in (PAYMENT_STATUS_PAID, PAYMENT_STATUS_REFUNDED):
        raise InvalidTransitionError(
            f"Order {order.order_number} is already {order.payment_status}",
            details={"order_id": order.id, "payment_status": order.payment_status},
        )
    if order.total_cents < 0:
        raise PaymentError("Order total is negative", details={"total_cents": order.total_cents})
    if order.total_cents == 0:
        complete_paid_order(order_id)
        return None

    attempts_before = len(payment_service.get_order_payments(order_id))
    try:
        payment = payment_service.process_payment(
            registry,
            order_id=order_id,
            amount_cents=order.total_cents,
            gateway_type=gateway_type,
            currency=order.currency,
            payment_method_id=payment_method_id,
            metadata=metadata,
        )
    except Exception:
        db.session.rollback()
        if len(payment_service.get_order_payments(order_id)) > attempts_before:
            order_service.update_payment_status(order_id, PAYMENT_STATUS_FAILED)
        raise

    complete_paid_order(order_id, payment.id)
    return payment


def complete_paid_order(order_id: int, payment_id: int | None = None) -> Order:
    """Mark paid, decrement stock for physical lines, then issue download links."""
    order = order_service.mark_as_paid(order_id, payment_id)

    for item in order_service.get_items(order_id):
        product = db.session.get(Product, item.product_id)
        if product is None or product.is_digital:
            continue
        if not products_service.decrease_stock(item.product_id, item.quantity, variant_id=item.variant_id):
            current_app.logger.warning(
                "Stock not decremented for product %s on order %s", item.product_id, order.order_number
            )

    issue_download_links(order_id)
    return order_service.require_order(order_id)


def issue_download_links(order_id: int, now: datetime | None = None) -> list[DownloadLink]:
    """
    Create the missing download links for a paid order.

    Existing (order item, file) pairs are skipped, so calling this again
    only fills gaps. Returns the links created by this call.
    """
    order = order_service.require_order(order_id)
    if order.payment_status != PAYMENT_STATUS_PAID:
        raise InvalidTransitionError(
            f"Order {order.order_number} is not paid",
            details={"order_id": order.id, "payment_status": order.payment_status},
        )

    created = []
    for item in order_service.get_items(order_id):
        product = db.session.get(Product, item.product_id)
        if product is None or not product.is_digital:
            continue
        issued = {link.digital_download_id for link in download_service.get_order_item_download_links(item.id)}
        for download in download_service.get_product_downloads(product.id):
            if download.id in issued:
                continue
            created.append(
                download_service.create_download_link(
                    item.id,
                    download.id,
                    max_downloads=download.download_limit,
                    expiration_days=download.expiration_days,
                    now=now,
                )
            )

    if created:
        current_app.logger.info("Issued %s download links for order %s", len(created), order.order_number)
    return created
