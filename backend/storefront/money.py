from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP


BPS_DENOMINATOR = 10_000


def apply_bps(amount_cents: int, rate_bps: int) -> int:
    """
    amount * rate, rate in basis points, rounded half-up to a whole cent.

    apply_bps(2500, 1000) == 250 (10% of $25.00)
    apply_bps(105, 500) == 5 (5% of $1.05 is 5.25 cents)
    """
    if not amount_cents or not rate_bps:
        return 0
    value = Decimal(amount_cents) * Decimal(rate_bps) / Decimal(BPS_DENOMINATOR)
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def format_cents(amount_cents: int, currency: str = "USD") -> str:
    """Human-readable amount for log lines and error messages."""
    sign = "-" if amount_cents < 0 else ""
    return f"{sign}{abs(amount_cents) / 100:,.2f} {currency}"
