# Overview: Payment engine; payment methods, single-attempt gateway charges and refunds.

"""
Payment Processing Service

WHY: Charge orders through pluggable gateways while keeping a complete audit
trail of every attempt.

DESIGN PRINCIPLES:
- Append-only attempts: each process_payment call inserts its own Payment
  row in `pending` and commits it before the gateway is resolved or called.
  The row then ends in exactly one terminal state (completed or failed).
- No automatic retries: a retry is a new process_payment call and a new row.
- Failures are recorded AND re-raised, never recorded and hidden.
- Refunds can never exceed what is left of the original payment; the check
  runs when the refund is created and again when it is processed.
- The gateway registry is passed in by the caller (see gateways.py).
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import func, update

from ..extensions import db
from ..errors import GatewayError, NotFoundError, PaymentError
from ..gateways import GATEWAY_TYPES, GatewayRegistry
from ..models import Order, Payment, PaymentMethod, Refund, Store
from ..models.orders import PAYMENT_STATUS_PAID
from ..models.payments import (
    PAYMENT_COMPLETED,
    PAYMENT_FAILED,
    PAYMENT_PENDING,
    PAYMENT_REFUNDED,
    REFUND_COMPLETED,
    REFUND_FAILED,
    REFUND_PENDING,
    REFUND_PROCESSING,
)
from ..money import format_cents
from ..validation import ConflictError, ValidationError
from .concurrency import lock_for_update, run_with_retry, rowcount_of
from . import order_service


# Refund states that hold a claim on the payment's balance
RESERVING_REFUND_STATUSES = (REFUND_PENDING, REFUND_PROCESSING, REFUND_COMPLETED)


# =============================================================================
# PAYMENT METHODS
# =============================================================================

def create_payment_method(
    store_id: int,
    name: str,
    method_type: str,
    config: dict | None = None,
    is_active: bool = True,
) -> PaymentMethod:
    if not name or not str(name).strip():
        raise ValidationError("name is required")
    if method_type not in GATEWAY_TYPES:
        raise ValidationError(f"type must be one of {', '.join(GATEWAY_TYPES)}")
    if config is not None and not isinstance(config, dict):
        raise ValidationError("config must be a JSON object")

    def _op():
        if not db.session.get(Store, store_id):
            raise NotFoundError(f"Store not found: {store_id}")
        method = PaymentMethod(
            store_id=store_id,
            name=str(name).strip(),
            type=method_type,
            config=config or {},
            is_active=bool(is_active),
        )
        db.session.add(method)
        db.session.commit()
        return method

    return run_with_retry(_op)


def get_payment_method(method_id: int) -> PaymentMethod | None:
    return db.session.get(PaymentMethod, method_id)


def get_store_payment_methods(store_id: int) -> list[PaymentMethod]:
    """Active payment methods configured for a store."""
    return (
        db.session.query(PaymentMethod)
        .filter_by(store_id=store_id, is_active=True)
        .order_by(PaymentMethod.name.asc(), PaymentMethod.id.asc())
        .all()
    )


def deactivate_payment_method(method_id: int) -> PaymentMethod:
    def _op():
        method = lock_for_update(db.session.query(PaymentMethod).filter_by(id=method_id)).first()
        if not method:
            raise NotFoundError(f"Payment method not found: {method_id}")
        method.is_active = False
        db.session.commit()
        return method

    return run_with_retry(_op)


# =============================================================================
# PAYMENTS
# =============================================================================

def create_payment(
    order_id: int,
    gateway_type: str,
    amount_cents: int,
    currency: str | None = None,
    payment_method_id: int | None = None,
    metadata: dict | None = None,
) -> Payment:
    """Insert and commit a `pending` attempt row. No gateway is involved."""
    if not isinstance(amount_cents, int) or isinstance(amount_cents, bool) or amount_cents <= 0:
        raise PaymentError("Payment amount must be a positive integer number of cents")
    if metadata is not None and not isinstance(metadata, dict):
        raise ValidationError("metadata must be a JSON object")

    def _op():
        order = db.session.get(Order, order_id)
        if not order:
            raise NotFoundError(f"Order not found: {order_id}")
        payment = Payment(
            order_id=order.id,
            payment_method_id=payment_method_id,
            gateway_type=gateway_type,
            amount_cents=amount_cents,
            currency=(currency or order.currency or "USD").upper(),
            status=PAYMENT_PENDING,
            metadata_json=metadata,
        )
        db.session.add(payment)
        db.session.commit()
        return payment

    return run_with_retry(_op)


def get_payment(payment_id: int) -> Payment | None:
    return db.session.get(Payment, payment_id)


def get_order_payments(order_id: int) -> list[Payment]:
    return db.session.query(Payment).filter_by(order_id=order_id).order_by(Payment.id.asc()).all()


def _finish_payment(payment_id: int, status: str, *, transaction_id: str | None = None, error_message: str | None = None) -> Payment:
    """Move a pending attempt to its terminal state. Only the first finish wins."""
    def _op():
        db.session.execute(
            update(Payment)
            .where(Payment.id == payment_id, Payment.status == PAYMENT_PENDING)
            .values(status=status, transaction_id=transaction_id, error_message=error_message)
            .execution_options(synchronize_session=False)
        )
        db.session.commit()
        return db.session.get(Payment, payment_id)

    return run_with_retry(_op)


def _resolve_method(order: Order, payment_method_id: int | None, gateway_type: str | None) -> str:
    if payment_method_id is None:
        if not gateway_type:
            raise ValidationError("gateway_type or payment_method_id is required")
        return gateway_type

    method = get_payment_method(payment_method_id)
    if not method or method.store_id != order.store_id:
        raise NotFoundError(f"Payment method not found: {payment_method_id}")
    if not method.is_active:
        raise PaymentError(f"Payment method is inactive: {method.name}")
    if gateway_type and gateway_type != method.type:
        raise ValidationError(f"gateway_type {gateway_type} does not match payment method type {method.type}")
    return method.type


def process_payment(
    registry: GatewayRegistry,
    *,
    order_id: int,
    amount_cents: int,
    gateway_type: str | None = None,
    currency: str | None = None,
    payment_method_id: int | None = None,
    metadata: dict | None = None,
) -> Payment:
    """
    One charge attempt against one order.

    The pending row is committed before the gateway is looked up, so even an
    unregistered gateway leaves an audit row; that row is then marked failed
    and ConfigurationError is raised. Gateway errors mark the row failed and
    propagate unchanged.
    """
    order = db.session.get(Order, order_id)
    if not order:
        raise NotFoundError(f"Order not found: {order_id}")
    gateway_type = _resolve_method(order, payment_method_id, gateway_type)

    payment = create_payment(
        order_id,
        gateway_type,
        amount_cents,
        currency=currency,
        payment_method_id=payment_method_id,
        metadata=metadata,
    )
    payment_id = payment.id
    payment_currency = payment.currency

    try:
        gateway = registry.get(gateway_type)
        transaction_id = gateway.process(amount_cents, payment_currency, order_id, metadata or {})
        if not transaction_id:
            raise GatewayError(f"Gateway {gateway_type} returned no transaction id")
    except Exception as exc:
        db.session.rollback()
        _finish_payment(payment_id, PAYMENT_FAILED, error_message=str(exc) or exc.__class__.__name__)
        current_app.logger.warning(
            "Payment %s for order %s failed via %s: %s", payment_id, order_id, gateway_type, exc
        )
        raise

    payment = _finish_payment(payment_id, PAYMENT_COMPLETED, transaction_id=str(transaction_id))
    current_app.logger.info(
        "Payment %s for order %s completed via %s (%s)",
        payment_id, order_id, gateway_type, format_cents(amount_cents, payment_currency),
    )
    return payment


# =============================================================================
# REFUNDS
# =============================================================================

def _reserved_refund_total(payment_id: int, *, statuses=RESERVING_REFUND_STATUSES, exclude_id: int | None = None) -> int:
    query = db.session.query(func.coalesce(func.sum(Refund.amount_cents), 0)).filter(
        Refund.payment_id == payment_id,
        Refund.status.in_(statuses),
    )
    if exclude_id is not None:
        query = query.filter(Refund.id != exclude_id)
    return int(query.scalar() or 0)


def refundable_amount(payment_id: int) -> int:
    """What is left of a payment after completed and in-flight refunds."""
    payment = get_payment(payment_id)
    if not payment:
        raise NotFoundError(f"Payment not found: {payment_id}")
    if payment.status not in (PAYMENT_COMPLETED, PAYMENT_REFUNDED):
        return 0
    return max(0, payment.amount_cents - _reserved_refund_total(payment_id))


def create_refund(order_id: int, payment_id: int, amount_cents: int, reason: str | None = None) -> Refund:
    """Insert a `pending` refund; rejects amounts above the refundable balance."""
    if not isinstance(amount_cents, int) or isinstance(amount_cents, bool) or amount_cents <= 0:
        raise PaymentError("Refund amount must be a positive integer number of cents")

    def _op():
        payment = lock_for_update(db.session.query(Payment).filter_by(id=payment_id)).first()
        if not payment:
            raise NotFoundError(f"Payment not found: {payment_id}")
        if payment.order_id != order_id:
            raise NotFoundError(f"Payment {payment_id} does not belong to order {order_id}")
        if payment.status != PAYMENT_COMPLETED:
            raise PaymentError(f"Cannot refund a payment in status {payment.status}")

        available = payment.amount_cents - _reserved_refund_total(payment.id)
        if amount_cents > available:
            raise PaymentError(
                f"Refund amount exceeds refundable balance ({format_cents(available, payment.currency)})",
                details={"refundable_cents": max(0, available), "requested_cents": amount_cents},
            )

        refund = Refund(
            order_id=order_id,
            payment_id=payment.id,
            amount_cents=amount_cents,
            reason=reason,
            status=REFUND_PENDING,
        )
        db.session.add(refund)
        db.session.commit()
        return refund

    return run_with_retry(_op)


def get_refund(refund_id: int) -> Refund | None:
    return db.session.get(Refund, refund_id)


def get_order_refunds(order_id: int) -> list[Refund]:
    return (
        db.session.query(Refund)
        .filter_by(order_id=order_id)
        .order_by(Refund.created_at.desc(), Refund.id.desc())
        .all()
    )


def _finish_refund(refund_id: int, status: str, *, transaction_id: str | None = None, error_message: str | None = None) -> None:
    def _op():
        db.session.execute(
            update(Refund)
            .where(Refund.id == refund_id, Refund.status == REFUND_PROCESSING)
            .values(status=status, transaction_id=transaction_id, error_message=error_message)
            .execution_options(synchronize_session=False)
        )
        db.session.commit()

    run_with_retry(_op)


def _claim_refund(refund_id: int) -> bool:
    def _op():
        result = db.session.execute(
            update(Refund)
            .where(Refund.id == refund_id, Refund.status == REFUND_PENDING)
            .values(status=REFUND_PROCESSING)
            .execution_options(synchronize_session=False)
        )
        db.session.commit()
        return rowcount_of(result) > 0

    return run_with_retry(_op)


def process_refund(registry: GatewayRegistry, refund_id: int) -> Refund:
    """
    Send a pending refund to the gateway that took the original payment.

    The refund is claimed (pending -> processing) with a conditional UPDATE
    so two callers can never both send it. On success the refund is
    completed; a fully refunded payment becomes `refunded` and so does its
    order. On any failure the refund is marked failed and the error re-raised.
    """
    refund = get_refund(refund_id)
    if not refund:
        raise NotFoundError(f"Refund not found: {refund_id}")
    payment = get_payment(refund.payment_id) if refund.payment_id else None
    if not payment:
        raise NotFoundError(f"Payment not found for refund: {refund_id}")
    if not payment.transaction_id:
        raise NotFoundError(f"Payment {payment.id} has no gateway transaction to refund")

    if not _claim_refund(refund_id):
        raise ConflictError(f"Refund {refund_id} is not pending")

    payment_id = payment.id
    amount_cents = refund.amount_cents
    try:
        already = _reserved_refund_total(
            payment_id, statuses=(REFUND_PROCESSING, REFUND_COMPLETED), exclude_id=refund_id
        )
        if already + amount_cents > payment.amount_cents:
            raise PaymentError("Refund amount exceeds refundable balance")
        gateway = registry.get(payment.gateway_type)
        transaction_id = gateway.refund(payment.transaction_id, amount_cents, payment.currency)
        if not transaction_id:
            raise GatewayError(f"Gateway {payment.gateway_type} returned no refund transaction id")
    except Exception as exc:
        db.session.rollback()
        _finish_refund(refund_id, REFUND_FAILED, error_message=str(exc) or exc.__class__.__name__)
        current_app.logger.warning("Refund %s on payment %s failed: %s", refund_id, payment_id, exc)
        raise

    _finish_refund(refund_id, REFUND_COMPLETED, transaction_id=str(transaction_id))
    _settle_full_refund(payment_id)
    current_app.logger.info("Refund %s on payment %s completed", refund_id, payment_id)
    return get_refund(refund_id)


def _settle_full_refund(payment_id: int) -> None:
    def _op():
        payment = lock_for_update(db.session.query(Payment).filter_by(id=payment_id)).first()
        refunded = _reserved_refund_total(payment_id, statuses=(REFUND_COMPLETED,))
        if payment is None or refunded < payment.amount_cents or payment.status == PAYMENT_REFUNDED:
            return None
        payment.status = PAYMENT_REFUNDED
        db.session.commit()
        return payment.order_id

    order_id = run_with_retry(_op)
    if order_id is None:
        return

    order = db.session.get(Order, order_id)
    if order is not None and order.payment_status == PAYMENT_STATUS_PAID:
        order_service.mark_as_refunded(order_id)
