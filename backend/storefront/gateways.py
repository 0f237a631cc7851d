# Overview: Payment gateway contract, the per-app gateway registry, and the offline manual gateway.

"""
Payment gateways.

DESIGN:
- A gateway is anything with process() and refund() returning a processor
  transaction id. Failures are raised and treated as opaque by callers.
- GatewayRegistry is built once by create_app and stored in
  app.extensions["gateways"]; services receive it as an argument instead of
  reaching for a module global.
"""

from __future__ import annotations

import uuid

from .errors import ConfigurationError


GATEWAY_STRIPE = "stripe"
GATEWAY_PAYPAL = "paypal"
GATEWAY_SQUARE = "square"
GATEWAY_CUSTOM = "custom"

GATEWAY_TYPES = (GATEWAY_STRIPE, GATEWAY_PAYPAL, GATEWAY_SQUARE, GATEWAY_CUSTOM)


class PaymentGateway:
    """Contract every gateway implementation follows."""

    def process(self, amount_cents: int, currency: str, order_id: int, metadata: dict | None = None) -> str:
        raise NotImplementedError

    def refund(self, transaction_id: str, amount_cents: int, currency: str) -> str:
        raise NotImplementedError


class GatewayRegistry:
    """Gateway type tag -> gateway instance. Populated at startup, read per call."""

    def __init__(self) -> None:
        self._gateways: dict[str, PaymentGateway] = {}

    def register(self, gateway_type: str, gateway: PaymentGateway) -> None:
        if gateway_type not in GATEWAY_TYPES:
            raise ValueError(f"Unknown gateway type: {gateway_type}. Must be one of {', '.join(GATEWAY_TYPES)}")
        self._gateways[gateway_type] = gateway

    def get(self, gateway_type: str) -> PaymentGateway:
        gateway = self._gateways.get(gateway_type)
        if gateway is None:
            raise ConfigurationError(
                f"No payment gateway registered for type: {gateway_type}",
                details={"gateway_type": gateway_type},
            )
        return gateway

    def types(self) -> list[str]:
        return sorted(self._gateways)

    def __contains__(self, gateway_type: str) -> bool:
        return gateway_type in self._gateways


class ManualGateway(PaymentGateway):
    """
    Offline gateway for pay-on-delivery, bank transfer and test stores.

    Always succeeds and hands back a locally generated reference.
    """

    prefix = "manual"

    def process(self, amount_cents: int, currency: str, order_id: int, metadata: dict | None = None) -> str:
        return f"{self.prefix}_{uuid.uuid4().hex}"

    def refund(self, transaction_id: str, amount_cents: int, currency: str) -> str:
        return f"{self.prefix}_refund_{uuid.uuid4().hex}"
