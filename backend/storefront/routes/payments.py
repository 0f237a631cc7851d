# Overview: Flask API routes for payments; charge attempts, store payment methods and refunds.

# backend/storefront/routes/payments.py
"""
Payment API Routes

WHY: Charge orders and refund them through the gateways registered on this
app (current_app.extensions["gateways"]).

DESIGN:
- POST /api/payments is one attempt. A failed attempt is recorded, the order
  moves to payment_status=failed and the error is returned; retrying is
  another POST.
- Refunds are created first (balance checked) and then processed, so a
  client can retry processing without risking a second refund.
"""

from flask import Blueprint, current_app, request

from ..errors import ConfigurationError
from ..models.payments import PAYMENT_FAILED
from ..responses import HANDLED_ERRORS, error_response, fail, int_field, json_body, ok
from ..services import checkout_service, order_service, payment_service, store_service

payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


def _gateways():
    return current_app.extensions["gateways"]


# =============================================================================
# CHARGES
# =============================================================================

@payments_bp.post("")
def pay_order_route():
    """
    Request body:
    {
        "order_id": 12,
        "gateway_type": "custom",      (or payment_method_id)
        "payment_method_id": 3,        (optional)
        "metadata": {...}              (optional, passed to the gateway)
    }

    Returns:
        201: payment completed; order is paid and fulfilled
        402: gateway declined or raised; the captured message is returned
        409: order cannot be paid in its current state
        500: gateway not configured / unexpected failure
    """
    order_id = None
    attempts_before = 0
    try:
        payload = json_body()
        order_id = int_field(payload, "order_id")
        attempts_before = len(payment_service.get_order_payments(order_id))
        payment = checkout_service.pay_order(
            _gateways(),
            order_id,
            payload.get("gateway_type"),
            payment_method_id=int_field(payload, "payment_method_id", required=False),
            metadata=payload.get("metadata"),
        )
        return ok(
            {
                "payment": payment.to_dict() if payment else None,
                "order": order_service.require_order(order_id).to_dict(),
            },
            201,
        )
    except HANDLED_ERRORS as exc:
        if isinstance(exc, ConfigurationError):
            current_app.logger.error("Payment gateway misconfigured: %s", exc)
        return error_response(exc)
    except Exception as exc:
        current_app.logger.exception("Failed to process payment")
        failed = _new_failed_attempt(order_id, attempts_before)
        if failed is not None:
            return fail(
                f"Payment failed: {failed.error_message or exc}",
                402,
                details={"payment_id": failed.id, "order_id": order_id},
            )
        return fail("Payment processing failed", 500)


def _new_failed_attempt(order_id, attempts_before: int):
    """The attempt recorded as failed by the request that just raised, if it got that far."""
    if order_id is None:
        return None
    payments = payment_service.get_order_payments(order_id)
    if len(payments) > attempts_before and payments[-1].status == PAYMENT_FAILED:
        return payments[-1]
    return None


@payments_bp.get("/<int:payment_id>")
def get_payment_route(payment_id: int):
    try:
        payment = payment_service.get_payment(payment_id)
        if not payment:
            return fail("Payment not found", 404)
        data = payment.to_dict()
        data["refundable_cents"] = payment_service.refundable_amount(payment_id)
        return ok(data)
    except HANDLED_ERRORS as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to load payment %s", payment_id)
        return fail("Internal server error", 500)


@payments_bp.get("/orders/<int:order_id>")
def get_order_payments_route(order_id: int):
    try:
        order_service.require_order(order_id)
        return ok([payment.to_dict() for payment in payment_service.get_order_payments(order_id)])
    except HANDLED_ERRORS as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to list payments for order %s", order_id)
        return fail("Internal server error", 500)


# =============================================================================
# PAYMENT METHODS
# =============================================================================

@payments_bp.get("/methods")
def list_payment_methods_route():
    """Active payment methods for ?store_id=. Gateway config is never returned."""
    try:
        store = store_service.require_store(request.args.get("store_id", type=int))
        return ok([method.to_dict() for method in payment_service.get_store_payment_methods(store.id)])
    except HANDLED_ERRORS as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to list payment methods")
        return fail("Internal server error", 500)


@payments_bp.post("/methods")
def create_payment_method_route():
    """Request body: {"store_id": 1, "name": "Card", "type": "stripe", "config": {...}}"""
    try:
        payload = json_body()
        method = payment_service.create_payment_method(
            int_field(payload, "store_id"),
            payload.get("name"),
            payload.get("type"),
            config=payload.get("config"),
            is_active=payload.get("is_active", True),
        )
        return ok(method.to_dict(), 201)
    except HANDLED_ERRORS as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to create payment method")
        return fail("Internal server error", 500)


@payments_bp.post("/methods/<int:method_id>/deactivate")
def deactivate_payment_method_route(method_id: int):
    try:
        return ok(payment_service.deactivate_payment_method(method_id).to_dict())
    except HANDLED_ERRORS as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to deactivate payment method %s", method_id)
        return fail("Internal server error", 500)


# =============================================================================
# REFUNDS
# =============================================================================

@payments_bp.post("/refunds")
def create_refund_route():
    """Request body: {"order_id": 12, "payment_id": 40, "amount_cents": 500, "reason": "damaged"}"""
    try:
        payload = json_body()
        refund = payment_service.create_refund(
            int_field(payload, "order_id"),
            int_field(payload, "payment_id"),
            int_field(payload, "amount_cents"),
            reason=payload.get("reason"),
        )
        return ok(refund.to_dict(), 201)
    except HANDLED_ERRORS as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to create refund")
        return fail("Internal server error", 500)


@payments_bp.post("/refunds/<int:refund_id>/process")
def process_refund_route(refund_id: int):
    try:
        refund = payment_service.process_refund(_gateways(), refund_id)
        return ok(refund.to_dict())
    except HANDLED_ERRORS as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to process refund %s", refund_id)
        return fail("Refund processing failed", 500)


@payments_bp.get("/orders/<int:order_id>/refunds")
def list_order_refunds_route(order_id: int):
    try:
        order_service.require_order(order_id)
        return ok([refund.to_dict() for refund in payment_service.get_order_refunds(order_id)])
    except HANDLED_ERRORS as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to list refunds for order %s", order_id)
        return fail("Internal server error", 500)
