from __future__ import annotations

from ..extensions import db
from storefront.time_utils import to_utc_z


ORDER_STATUS_PENDING = "pending"
ORDER_STATUS_PAID = "paid"
ORDER_STATUS_PROCESSING = "processing"
ORDER_STATUS_SHIPPED = "shipped"
ORDER_STATUS_DELIVERED = "delivered"
ORDER_STATUS_CANCELLED = "cancelled"
ORDER_STATUS_REFUNDED = "refunded"

PAYMENT_STATUS_UNPAID = "unpaid"
PAYMENT_STATUS_PAID = "paid"
PAYMENT_STATUS_FAILED = "failed"
PAYMENT_STATUS_REFUNDED = "refunded"

SHIPPING_STATUS_UNSHIPPED = "unshipped"
SHIPPING_STATUS_SHIPPED = "shipped"
SHIPPING_STATUS_DELIVERED = "delivered"
SHIPPING_STATUS_RETURNED = "returned"


class Order(db.Model):
    """
    Frozen checkout snapshot.

    MONEY: subtotal/tax/shipping/discount/total are written once by
    order_service.create_order and never touched again. Status changes go
    through the three independent state columns only.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("order_number", name="uq_orders_order_number"),
        db.Index("ix_orders_store_status", "store_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    order_number = db.Column(db.String(32), nullable=False)

    user_id = db.Column(db.String(64), nullable=True, index=True)
    email = db.Column(db.String(255), nullable=False)

    status = db.Column(db.String(16), nullable=False, default=ORDER_STATUS_PENDING)
    payment_status = db.Column(db.String(16), nullable=False, default=PAYMENT_STATUS_UNPAID)
    shipping_status = db.Column(db.String(16), nullable=False, default=SHIPPING_STATUS_UNSHIPPED)

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    shipping_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)
    currency = db.Column(db.String(3), nullable=False, default="USD")

    payment_method = db.Column(db.String(32), nullable=True)
    payment_id = db.Column(db.Integer, nullable=True)
    coupon_code = db.Column(db.String(64), nullable=True)

    billing_address = db.Column(db.JSON, nullable=True)
    shipping_address = db.Column(db.JSON, nullable=True)
    notes = db.Column(db.Text, nullable=True)
    metadata_json = db.Column("metadata", db.JSON, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    store = db.relationship("Store")
    items = db.relationship("OrderItem", backref="order", lazy=True, order_by="OrderItem.id")
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Order id={self.id} number={self.order_number!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "order_number": self.order_number,
            "user_id": self.user_id,
            "email": self.email,
            "status": self.status,
            "payment_status": self.payment_status,
            "shipping_status": self.shipping_status,
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "shipping_cents": self.shipping_cents,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
            "currency": self.currency,
            "payment_method": self.payment_method,
            "payment_id": self.payment_id,
            "coupon_code": self.coupon_code,
            "billing_address": self.billing_address or {},
            "shipping_address": self.shipping_address or {},
            "notes": self.notes,
            "metadata": self.metadata_json or {},
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class OrderItem(db.Model):
    """
    Frozen order line.

    product_name, sku and price_cents are copied from the catalog at
    checkout so later catalog edits never rewrite history.
    """
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=True)

    product_name = db.Column(db.String(255), nullable=False)
    sku = db.Column(db.String(64), nullable=True)
    quantity = db.Column(db.Integer, nullable=False)
    price_cents = db.Column(db.Integer, nullable=False)
    total_cents = db.Column(db.Integer, nullable=False)
    metadata_json = db.Column("metadata", db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "product_name": self.product_name,
            "sku": self.sku,
            "quantity": self.quantity,
            "price_cents": self.price_cents,
            "total_cents": self.total_cents,
            "metadata": self.metadata_json or {},
            "created_at": to_utc_z(self.created_at),
        }
