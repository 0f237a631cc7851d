from __future__ import annotations

from ..extensions import db
from storefront.time_utils import to_utc_z


class Store(db.Model):
    """
    Store: the tenant boundary.

    MULTI-TENANT: Every product, cart, order, coupon and payment method
    carries a store_id. No commerce data crosses store boundaries.
    """
    __tablename__ = "stores"
    __table_args__ = (
        db.UniqueConstraint("slug", name="uq_stores_slug"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    slug = db.Column(db.String(120), nullable=False, index=True)
    description = db.Column(db.Text, nullable=True)
    logo_url = db.Column(db.String(512), nullable=True)

    currency = db.Column(db.String(3), nullable=False, default="USD")
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)  # Basis points (e.g., 825 = 8.25%)
    shipping_enabled = db.Column(db.Boolean, nullable=False, default=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    # Free-form per-tenant settings (opaque JSON object)
    settings = db.Column(db.JSON, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Store id={self.id} slug={self.slug!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
            "logo_url": self.logo_url,
            "currency": self.currency,
            "tax_rate_bps": self.tax_rate_bps,
            "shipping_enabled": self.shipping_enabled,
            "is_active": self.is_active,
            "settings": self.settings or {},
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
