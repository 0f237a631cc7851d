from __future__ import annotations

from ..extensions import db
from storefront.time_utils import to_utc_z


PAYMENT_PENDING = "pending"
PAYMENT_COMPLETED = "completed"
PAYMENT_FAILED = "failed"
PAYMENT_REFUNDED = "refunded"

REFUND_PENDING = "pending"
REFUND_PROCESSING = "processing"
REFUND_COMPLETED = "completed"
REFUND_FAILED = "failed"


class PaymentMethod(db.Model):
    """
    A gateway configured for a store.

    config is an opaque JSON object handed to the gateway (API keys,
    merchant ids). One row per (store_id, type) is expected but not enforced.
    """
    __tablename__ = "payment_methods"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    name = db.Column(db.String(120), nullable=False)
    type = db.Column(db.String(16), nullable=False)  # stripe, paypal, square, custom
    config = db.Column(db.JSON, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self, include_config: bool = False) -> dict:
        data = {
            "id": self.id,
            "store_id": self.store_id,
            "name": self.name,
            "type": self.type,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        # Gateway credentials stay server-side unless explicitly requested
        if include_config:
            data["config"] = self.config or {}
        return data


class Payment(db.Model):
    """
    One payment attempt against an order.

    APPEND-ONLY: a retry is a new row. Each row goes pending -> completed or
    pending -> failed exactly once; a completed row can later become refunded.
    """
    __tablename__ = "payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    payment_method_id = db.Column(db.Integer, db.ForeignKey("payment_methods.id"), nullable=True)

    gateway_type = db.Column(db.String(16), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="USD")
    status = db.Column(db.String(16), nullable=False, default=PAYMENT_PENDING, index=True)
    transaction_id = db.Column(db.String(128), nullable=True, index=True)
    error_message = db.Column(db.Text, nullable=True)
    metadata_json = db.Column("metadata", db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    order = db.relationship("Order", backref=db.backref("payments", lazy=True, order_by="Payment.id"))
    payment_method = db.relationship("PaymentMethod")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "payment_method_id": self.payment_method_id,
            "gateway_type": self.gateway_type,
            "amount_cents": self.amount_cents,
            "currency": self.currency,
            "status": self.status,
            "transaction_id": self.transaction_id,
            "error_message": self.error_message,
            "metadata": self.metadata_json or {},
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Refund(db.Model):
    """Reversal against a completed payment. amount_cents never exceeds what is left to refund."""
    __tablename__ = "refunds"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    payment_id = db.Column(db.Integer, db.ForeignKey("payments.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(16), nullable=False, default=REFUND_PENDING, index=True)
    transaction_id = db.Column(db.String(128), nullable=True)
    error_message = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    payment = db.relationship("Payment", backref=db.backref("refunds", lazy=True, order_by="Refund.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "payment_id": self.payment_id,
            "amount_cents": self.amount_cents,
            "reason": self.reason,
            "status": self.status,
            "transaction_id": self.transaction_id,
            "error_message": self.error_message,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
