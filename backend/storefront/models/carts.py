from __future__ import annotations

from ..extensions import db
from storefront.time_utils import to_utc_z


class Cart(db.Model):
    """
    Mutable pre-order basket.

    OWNER: exactly one of user_id (signed-in shopper) or session_id
    (anonymous shopper) identifies the cart.

    TOTALS: total_price_cents and total_tax_cents are only ever written by
    cart_service.recalculate_cart (or zeroed by clear_cart). The subtotal is
    not stored; it is the sum of item price * quantity.
    """
    __tablename__ = "carts"
    __table_args__ = (
        db.Index("ix_carts_store_user", "store_id", "user_id"),
        db.Index("ix_carts_store_session", "store_id", "session_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    user_id = db.Column(db.String(64), nullable=True)
    session_id = db.Column(db.String(128), nullable=True)

    total_price_cents = db.Column(db.Integer, nullable=False, default=0)
    total_tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_shipping_cents = db.Column(db.Integer, nullable=False, default=0)
    coupon_code = db.Column(db.String(64), nullable=True)
    coupon_discount_cents = db.Column(db.Integer, nullable=False, default=0)

    expires_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    store = db.relationship("Store")
    items = db.relationship(
        "CartItem",
        backref="cart",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="CartItem.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "user_id": self.user_id,
            "session_id": self.session_id,
            "total_price_cents": self.total_price_cents,
            "total_tax_cents": self.total_tax_cents,
            "total_shipping_cents": self.total_shipping_cents,
            "coupon_code": self.coupon_code,
            "coupon_discount_cents": self.coupon_discount_cents,
            "expires_at": to_utc_z(self.expires_at),
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class CartItem(db.Model):
    """Priced line in a cart. price_cents is a snapshot taken at add time."""
    __tablename__ = "cart_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    cart_id = db.Column(db.Integer, db.ForeignKey("carts.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    price_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product")

    @property
    def line_total_cents(self) -> int:
        return self.price_cents * self.quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cart_id": self.cart_id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "quantity": self.quantity,
            "price_cents": self.price_cents,
            "line_total_cents": self.line_total_cents,
            "created_at": to_utc_z(self.created_at),
        }


class Coupon(db.Model):
    """
    Store coupon.

    discount_value is basis points for "percentage" coupons and cents for
    "fixed" coupons. Evaluation lives in coupon_service.evaluate_coupon.
    """
    __tablename__ = "coupons"
    __table_args__ = (
        db.UniqueConstraint("store_id", "code", name="uq_coupons_store_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    code = db.Column(db.String(64), nullable=False)
    description = db.Column(db.Text, nullable=True)
    discount_type = db.Column(db.String(16), nullable=False)  # percentage, fixed
    discount_value = db.Column(db.Integer, nullable=False, default=0)

    max_uses = db.Column(db.Integer, nullable=True)
    current_uses = db.Column(db.Integer, nullable=False, default=0)
    min_purchase_cents = db.Column(db.Integer, nullable=True)
    valid_from = db.Column(db.DateTime(timezone=True), nullable=True)
    valid_until = db.Column(db.DateTime(timezone=True), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "code": self.code,
            "description": self.description,
            "discount_type": self.discount_type,
            "discount_value": self.discount_value,
            "max_uses": self.max_uses,
            "current_uses": self.current_uses,
            "min_purchase_cents": self.min_purchase_cents,
            "valid_from": to_utc_z(self.valid_from),
            "valid_until": to_utc_z(self.valid_until),
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
