# Overview: Service-layer sweeps run from the CLI; expired carts and expired download links.

from __future__ import annotations

from datetime import datetime, timedelta

from storefront.time_utils import utcnow
from . import cart_service, download_service


def purge_expired_carts(*, grace_days: int = 0, now: datetime | None = None) -> int:
    """Delete carts that expired more than grace_days ago."""
    cutoff = (now or utcnow()) - timedelta(days=grace_days)
    return cart_service.delete_expired_carts(now=cutoff)


def cleanup_download_links(*, grace_days: int = 0, now: datetime | None = None) -> int:
    """
    Delete download links that expired more than grace_days ago.

    Links without an expiry are kept; they are bounded only by max_downloads.
    """
    cutoff = (now or utcnow()) - timedelta(days=grace_days)
    return download_service.cleanup_expired_links(now=cutoff)
