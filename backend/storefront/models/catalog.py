from __future__ import annotations

from ..extensions import db
from storefront.time_utils import to_utc_z


PRODUCT_TYPE_PHYSICAL = "physical"
PRODUCT_TYPE_DIGITAL = "digital"


class ProductCategory(db.Model):
    """Store-scoped, optionally nested product category."""
    __tablename__ = "product_categories"
    __table_args__ = (
        db.UniqueConstraint("store_id", "slug", name="uq_product_categories_store_slug"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    parent_id = db.Column(db.Integer, db.ForeignKey("product_categories.id"), nullable=True, index=True)

    name = db.Column(db.String(120), nullable=False)
    slug = db.Column(db.String(120), nullable=False)
    description = db.Column(db.Text, nullable=True)
    image_url = db.Column(db.String(512), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    parent = db.relationship("ProductCategory", remote_side=[id], backref=db.backref("children", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "parent_id": self.parent_id,
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
            "image_url": self.image_url,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Product(db.Model):
    """
    Catalog item.

    TYPES:
    - physical: stock_quantity is decremented when an order is paid
    - digital: delivered through download links; stock is never decremented
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("store_id", "slug", name="uq_products_store_slug"),
        db.Index("ix_products_store_active", "store_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    category_id = db.Column(db.Integer, db.ForeignKey("product_categories.id"), nullable=True, index=True)

    name = db.Column(db.String(255), nullable=False)
    slug = db.Column(db.String(255), nullable=False)
    sku = db.Column(db.String(64), nullable=True, index=True)
    description = db.Column(db.Text, nullable=True)
    type = db.Column(db.String(16), nullable=False, default=PRODUCT_TYPE_PHYSICAL)

    price_cents = db.Column(db.Integer, nullable=False)
    cost_cents = db.Column(db.Integer, nullable=True)
    stock_quantity = db.Column(db.Integer, nullable=False, default=0)

    weight_grams = db.Column(db.Integer, nullable=True)
    dimensions = db.Column(db.String(64), nullable=True)
    image_url = db.Column(db.String(512), nullable=True)
    gallery_urls = db.Column(db.JSON, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    is_featured = db.Column(db.Boolean, nullable=False, default=False)
    metadata_json = db.Column("metadata", db.JSON, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    store = db.relationship("Store", backref=db.backref("products", lazy=True))
    category = db.relationship("ProductCategory", backref=db.backref("products", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_digital(self) -> bool:
        return self.type == PRODUCT_TYPE_DIGITAL

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "category_id": self.category_id,
            "name": self.name,
            "slug": self.slug,
            "sku": self.sku,
            "description": self.description,
            "type": self.type,
            "price_cents": self.price_cents,
            "cost_cents": self.cost_cents,
            "stock_quantity": self.stock_quantity,
            "weight_grams": self.weight_grams,
            "dimensions": self.dimensions,
            "image_url": self.image_url,
            "gallery_urls": self.gallery_urls or [],
            "is_active": self.is_active,
            "is_featured": self.is_featured,
            "metadata": self.metadata_json or {},
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ProductVariant(db.Model):
    """Priced sub-SKU. price_cents overrides the parent price when set."""
    __tablename__ = "product_variants"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    sku = db.Column(db.String(64), nullable=True)
    price_cents = db.Column(db.Integer, nullable=True)
    stock_quantity = db.Column(db.Integer, nullable=False, default=0)
    image_url = db.Column(db.String(512), nullable=True)
    metadata_json = db.Column("metadata", db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("variants", lazy=True))

    def effective_price_cents(self) -> int:
        if self.price_cents is not None:
            return self.price_cents
        return self.product.price_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "name": self.name,
            "sku": self.sku,
            "price_cents": self.price_cents,
            "stock_quantity": self.stock_quantity,
            "image_url": self.image_url,
            "metadata": self.metadata_json or {},
            "created_at": to_utc_z(self.created_at),
        }
