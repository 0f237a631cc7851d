from __future__ import annotations

from ..extensions import db
from storefront.time_utils import to_utc_z


class DigitalDownload(db.Model):
    """
    A deliverable file attached to a digital product.

    storage_key is assigned once at creation and never rewritten; the bytes
    themselves live in the object store under that key.
    """
    __tablename__ = "digital_downloads"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    file_name = db.Column(db.String(255), nullable=False)
    file_path = db.Column(db.String(512), nullable=True)
    storage_key = db.Column(db.String(512), nullable=False, unique=True)
    file_size = db.Column(db.Integer, nullable=True)
    mime_type = db.Column(db.String(128), nullable=False, default="application/octet-stream")

    download_limit = db.Column(db.Integer, nullable=True)
    expiration_days = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("digital_downloads", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "file_name": self.file_name,
            "file_path": self.file_path,
            "storage_key": self.storage_key,
            "file_size": self.file_size,
            "mime_type": self.mime_type,
            "download_limit": self.download_limit,
            "expiration_days": self.expiration_days,
            "created_at": to_utc_z(self.created_at),
        }


class DownloadLink(db.Model):
    """
    Bearer access grant for one order item's file.

    COUNTERS: download_count is only incremented by the conditional UPDATE in
    download_service.record_download, so it never passes max_downloads.
    """
    __tablename__ = "download_links"
    __table_args__ = (
        db.UniqueConstraint("token", name="uq_download_links_token"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_item_id = db.Column(db.Integer, db.ForeignKey("order_items.id"), nullable=False, index=True)
    digital_download_id = db.Column(db.Integer, db.ForeignKey("digital_downloads.id"), nullable=False, index=True)

    token = db.Column(db.String(64), nullable=False)
    download_count = db.Column(db.Integer, nullable=False, default=0)
    max_downloads = db.Column(db.Integer, nullable=True)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    last_downloaded_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    digital_download = db.relationship("DigitalDownload")
    order_item = db.relationship("OrderItem")

    @property
    def remaining_downloads(self) -> int | None:
        if self.max_downloads is None:
            return None
        return max(0, self.max_downloads - self.download_count)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_item_id": self.order_item_id,
            "digital_download_id": self.digital_download_id,
            "token": self.token,
            "download_count": self.download_count,
            "max_downloads": self.max_downloads,
            "remaining_downloads": self.remaining_downloads,
            "expires_at": to_utc_z(self.expires_at),
            "last_downloaded_at": to_utc_z(self.last_downloaded_at),
            "created_at": to_utc_z(self.created_at),
        }
