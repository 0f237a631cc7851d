# Overview: Digital fulfillment; deliverable files, bearer download links and counted, bounded downloads.

"""
Digital Download Service

WHY: Paid digital goods are delivered through unguessable bearer tokens that
stop working after a number of downloads or a number of days.

DESIGN:
- Bytes live in the object store under DigitalDownload.storage_key, which is
  set once when the row is created.
- A link is expired when now > expires_at. expiration_days=0 therefore
  yields a link that is usable only at the instant it was created.
- record_download is ONE conditional UPDATE (count < max AND not expired),
  so concurrent requests for the same token can never push download_count
  past max_downloads.
- get_download_file fetches the object before consuming a download, so
  storage drift (row present, bytes missing) fails without using up a count.
"""

from __future__ import annotations

import hashlib
import os
import secrets
import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import BinaryIO

from flask import current_app
from sqlalchemy import or_, update

from ..extensions import db
from ..errors import DownloadExpiredError, DownloadLimitReachedError, NotFoundError
from ..models import DigitalDownload, DownloadLink, OrderItem, Product
from ..storage import DEFAULT_CONTENT_TYPE, ObjectStore
from ..validation import ConflictError, ValidationError
from storefront.time_utils import days_after, is_past, utcnow
from .concurrency import run_with_retry, rowcount_of


STORAGE_PREFIX = "digital-downloads"
DEFAULT_TOKEN_LENGTH = 32
MIN_TOKEN_LENGTH = 16
MAX_TOKEN_LENGTH = 64


@dataclass
class DownloadFile:
    """What a successful download hands to the HTTP layer."""
    stream: BinaryIO
    file_name: str
    mime_type: str
    size: int | None


# =============================================================================
# TOKENS
# =============================================================================

def _token_length() -> int:
    try:
        configured = int(current_app.config.get("DOWNLOAD_TOKEN_LENGTH", DEFAULT_TOKEN_LENGTH))
    except RuntimeError:
        configured = DEFAULT_TOKEN_LENGTH
    return max(MIN_TOKEN_LENGTH, min(configured, MAX_TOKEN_LENGTH))


def generate_token(length: int | None = None) -> str:
    """
    Lowercase hex bearer token: sha256 of 32 random bytes plus a timestamp,
    truncated to `length` (DOWNLOAD_TOKEN_LENGTH by default).
    """
    length = length or _token_length()
    seed = secrets.token_bytes(32) + str(time.time_ns()).encode("ascii")
    return hashlib.sha256(seed).hexdigest()[:length]


# =============================================================================
# DIGITAL DOWNLOADS (FILES)
# =============================================================================

def _clean_file_name(file_name: str | None) -> str:
    name = (file_name or "").strip()
    if not name:
        raise ValidationError("file_name is required")
    if name != os.path.basename(name) or name in (".", "..") or "\\" in name:
        raise ValidationError("file_name must be a plain file name")
    return name


def storage_key_for(download_id: int, file_name: str) -> str:
    return f"{STORAGE_PREFIX}/{download_id}/{file_name}"


def create_digital_download(
    product_id: int,
    file_name: str,
    file_path: str | None = None,
    *,
    file_size: int | None = None,
    mime_type: str | None = None,
    download_limit: int | None = None,
    expiration_days: int | None = None,
) -> DigitalDownload:
    name = _clean_file_name(file_name)
    if download_limit is not None and download_limit < 1:
        raise ValidationError("download_limit must be >= 1")
    if expiration_days is not None and expiration_days < 0:
        raise ValidationError("expiration_days must be >= 0")

    def _op():
        product = db.session.get(Product, product_id)
        if not product:
            raise NotFoundError(f"Product not found: {product_id}")
        if not product.is_digital:
            raise ValidationError("Digital downloads can only be attached to digital products")

        download = DigitalDownload(
            product_id=product.id,
            file_name=name,
            file_path=file_path,
            # Placeholder until the id is known; replaced before commit
            storage_key=f"{STORAGE_PREFIX}/pending-{uuid.uuid4().hex}",
            file_size=file_size,
            mime_type=mime_type or DEFAULT_CONTENT_TYPE,
            download_limit=download_limit,
            expiration_days=expiration_days,
        )
        db.session.add(download)
        db.session.flush()
        download.storage_key = storage_key_for(download.id, name)
        db.session.commit()
        return download

    return run_with_retry(_op)


def get_digital_download(download_id: int) -> DigitalDownload | None:
    return db.session.get(DigitalDownload, download_id)


def require_digital_download(download_id: int) -> DigitalDownload:
    download = get_digital_download(download_id)
    if not download:
        raise NotFoundError(f"Digital download not found: {download_id}")
    return download


def get_product_downloads(product_id: int) -> list[DigitalDownload]:
    return (
        db.session.query(DigitalDownload)
        .filter_by(product_id=product_id)
        .order_by(DigitalDownload.created_at.desc(), DigitalDownload.id.desc())
        .all()
    )


def upload_file(store: ObjectStore, download_id: int, data: bytes) -> DigitalDownload:
    """Write the file bytes under the download's storage key."""
    download = require_digital_download(download_id)
    store.put(
        download.storage_key,
        data,
        content_type=download.mime_type or DEFAULT_CONTENT_TYPE,
        content_disposition=f'attachment; filename="{download.file_name}"',
    )

    def _op():
        row = db.session.get(DigitalDownload, download_id)
        row.file_size = len(data)
        db.session.commit()
        return row

    return run_with_retry(_op)


def delete_digital_download(store: ObjectStore, download_id: int) -> None:
    """
    Remove a deliverable file and its bytes.

    Refused while download links point at it; links are fulfillment records.
    """
    download = require_digital_download(download_id)
    link_count = db.session.query(DownloadLink.id).filter_by(digital_download_id=download.id).count()
    if link_count:
        raise ConflictError(f"Digital download {download_id} has {link_count} issued download link(s)")

    store.delete(download.storage_key)

    def _op():
        db.session.query(DigitalDownload).filter_by(id=download_id).delete(synchronize_session=False)
        db.session.commit()

    run_with_retry(_op)


# =============================================================================
# DOWNLOAD LINKS
# =============================================================================

def create_download_link(
    order_item_id: int,
    digital_download_id: int,
    max_downloads: int | None = None,
    expiration_days: int | None = None,
    *,
    now: datetime | None = None,
) -> DownloadLink:
    if max_downloads is not None and max_downloads < 1:
        raise ValidationError("max_downloads must be >= 1")
    if expiration_days is not None and expiration_days < 0:
        raise ValidationError("expiration_days must be >= 0")

    def _op():
        if not db.session.get(OrderItem, order_item_id):
            raise NotFoundError(f"Order item not found: {order_item_id}")
        require_digital_download(digital_download_id)

        issued_at = now or utcnow()
        link = DownloadLink(
            order_item_id=order_item_id,
            digital_download_id=digital_download_id,
            token=generate_token(),
            download_count=0,
            max_downloads=max_downloads,
            expires_at=days_after(issued_at, expiration_days) if expiration_days is not None else None,
        )
        db.session.add(link)
        db.session.commit()
        return link

    return run_with_retry(_op)


def find_link_by_token(token: str) -> DownloadLink | None:
    if not token:
        return None
    return db.session.query(DownloadLink).filter_by(token=token).first()


def _check_link(link: DownloadLink, now: datetime) -> None:
    if is_past(link.expires_at, now):
        raise DownloadExpiredError("Download link has expired", details={"token": link.token})
    if link.max_downloads is not None and link.download_count >= link.max_downloads:
        raise DownloadLimitReachedError("Download limit reached", details={"token": link.token})


def get_download_link_by_token(token: str, now: datetime | None = None) -> DownloadLink:
    """Usable link for `token`, or NotFound / Expired / LimitReached."""
    link = find_link_by_token(token)
    if not link:
        raise NotFoundError("Download link not found")
    _check_link(link, now or utcnow())
    return link


def get_order_item_download_links(order_item_id: int) -> list[DownloadLink]:
    return (
        db.session.query(DownloadLink)
        .filter_by(order_item_id=order_item_id)
        .order_by(DownloadLink.created_at.desc(), DownloadLink.id.desc())
        .all()
    )


def record_download(link_id: int, now: datetime | None = None) -> bool:
    """
    Count one download if the link still allows it.

    Single statement: the limit and expiry are checked by the same UPDATE
    that increments. Returns False when no row qualified.
    """
    moment = now or utcnow()

    def _op():
        result = db.session.execute(
            update(DownloadLink)
            .where(
                DownloadLink.id == link_id,
                or_(DownloadLink.max_downloads.is_(None), DownloadLink.download_count < DownloadLink.max_downloads),
                or_(DownloadLink.expires_at.is_(None), DownloadLink.expires_at >= moment),
            )
            .values(download_count=DownloadLink.download_count + 1, last_downloaded_at=moment)
            .execution_options(synchronize_session=False)
        )
        db.session.commit()
        return rowcount_of(result) > 0

    return run_with_retry(_op)


def get_download_file(store: ObjectStore, token: str, now: datetime | None = None) -> DownloadFile:
    """
    Resolve a token to a file stream, consuming one download.

    Order: validate link -> fetch bytes -> count atomically. If another
    request consumed the last download in between, the stream is closed and
    the specific reason (expired or limit reached) is raised.
    """
    moment = now or utcnow()
    link = get_download_link_by_token(token, moment)
    link_id = link.id

    download = get_digital_download(link.digital_download_id)
    if not download:
        raise NotFoundError("Digital download not found")

    stored = store.get(download.storage_key)
    if stored is None:
        current_app.logger.error(
            "Storage drift: object %s missing for digital download %s", download.storage_key, download.id
        )
        raise NotFoundError("File not found in storage")

    if not record_download(link_id, moment):
        stored.body.close()
        db.session.expire_all()
        current = db.session.get(DownloadLink, link_id)
        if current is None:
            raise NotFoundError("Download link not found")
        _check_link(current, moment)
        raise DownloadLimitReachedError("Download limit reached", details={"token": token})

    return DownloadFile(
        stream=stored.body,
        file_name=download.file_name,
        mime_type=download.mime_type or stored.content_type or DEFAULT_CONTENT_TYPE,
        size=stored.size,
    )


def get_download_link_info(token: str) -> dict:
    """Read-only status for a token; does not consume a download or apply checks."""
    link = find_link_by_token(token)
    if not link:
        raise NotFoundError("Download link not found")
    download = get_digital_download(link.digital_download_id)
    now = utcnow()
    return {
        "token": link.token,
        "file_name": download.file_name if download else None,
        "download_count": link.download_count,
        "max_downloads": link.max_downloads,
        "remaining_downloads": link.remaining_downloads,
        "expires_at": link.to_dict()["expires_at"],
        "last_downloaded_at": link.to_dict()["last_downloaded_at"],
        "is_expired": is_past(link.expires_at, now),
    }


def delete_download_link(link_id: int) -> bool:
    def _op():
        deleted = db.session.query(DownloadLink).filter_by(id=link_id).delete(synchronize_session=False)
        db.session.commit()
        return deleted > 0

    return run_with_retry(_op)


def cleanup_expired_links(now: datetime | None = None) -> int:
    """Delete links whose expiry has passed. Returns the number removed."""
    cutoff = now or utcnow()

    def _op():
        deleted = (
            db.session.query(DownloadLink)
            .filter(DownloadLink.expires_at.isnot(None), DownloadLink.expires_at < cutoff)
            .delete(synchronize_session=False)
        )
        db.session.commit()
        current_app.logger.info("Removed %s expired download links", deleted)
        return deleted

    return run_with_retry(_op)
