# Overview: Exception taxonomy shared by services and translated to HTTP by routes.

"""
Commerce errors.

Services raise these; routes translate them into the JSON envelope
{"success": false, "error": ...} using `status_code`.
"""

from __future__ import annotations


class CommerceError(Exception):
    """Base class for commerce pipeline failures."""
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class NotFoundError(CommerceError):
    """A store, cart, order, payment, refund, download or link is missing."""
    status_code = 404


class DownloadExpiredError(CommerceError):
    """Download link is past its expiry window."""
    status_code = 410


class DownloadLimitReachedError(CommerceError):
    """Download link has been used its maximum number of times."""
    status_code = 403


class ConfigurationError(CommerceError):
    """No gateway registered for the requested type."""
    status_code = 500


class GatewayError(CommerceError):
    """Opaque failure raised by an external payment processor."""
    status_code = 402


class InvalidTransitionError(CommerceError):
    """Order status change not allowed by the transition tables."""
    status_code = 409


class CouponError(CommerceError):
    """Coupon cannot be applied to the cart."""
    pass


class PaymentError(CommerceError):
    """Payment or refund request is not acceptable."""
    pass


class InsufficientStockError(CommerceError):
    """Requested quantity exceeds available stock."""
    status_code = 409
