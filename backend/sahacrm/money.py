# Overview: Fixed-point helpers for monetary amounts (integer cents) and quantities.

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

CENT = Decimal("0.01")
QUANTITY_STEP = Decimal("0.001")


def to_decimal(value) -> Decimal:
    """Convert a JSON/CLI value to Decimal without going through binary floats."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise InvalidOperation("booleans are not amounts")
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    if isinstance(value, str):
        return Decimal(value.strip())
    raise InvalidOperation(f"unsupported amount type {type(value).__name__}")


def decimal_to_cents(amount: Decimal) -> int:
    """Exact conversion; amounts with more than two fractional digits are rejected."""
    if amount != amount.quantize(CENT):
        raise InvalidOperation("amount has more than two decimal places")
    return int((amount * 100).to_integral_value())


def format_cents(cents: int | None) -> str | None:
    """1050 -> "10.50"."""
    if cents is None:
        return None
    return str((Decimal(cents) / 100).quantize(CENT))


def format_quantity(quantity) -> str | None:
    if quantity is None:
        return None
    return format(to_decimal(quantity).quantize(QUANTITY_STEP).normalize(), "f")


def line_total_cents(quantity, unit_price_cents: int) -> int:
    """quantity x unit price, rounded half-up to the cent."""
    total = to_decimal(quantity) * Decimal(unit_price_cents)
    return int(total.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def apply_rate_bps(cents: int, rate_bps: int) -> int:
    """Flat percentage in basis points, rounded half-up to the cent."""
    if not rate_bps:
        return 0
    amount = Decimal(cents) * Decimal(rate_bps) / Decimal(10000)
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
