from __future__ import annotations

from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any

from sahacrm.money import QUANTITY_STEP, decimal_to_cents, to_decimal
from sahacrm.time_utils import parse_iso_date


# Maximum single amount: 99,999,999.99
# Keeps integer cents well inside a 64-bit column and rejects nonsense input
MAX_AMOUNT_CENTS = 9_999_999_999
MAX_QUANTITY = Decimal("1000000")


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., delivery note already invoiced)."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class NotFoundError(ConflictError):
    """404-level: a referenced row does not exist."""


def parse_id(value: Any, field: str, *, required: bool = True) -> int | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(f"{field} is required")
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        parsed = value
    elif isinstance(value, str) and value.strip().isdigit():
        parsed = int(value.strip())
    else:
        raise ValidationError(f"{field} must be an integer")
    if parsed <= 0:
        raise ValidationError(f"{field} must be a positive integer")
    return parsed


def parse_id_list(value: Any, field: str) -> list[int]:
    """Non-empty list of ids, duplicates removed, request order kept."""
    if not isinstance(value, (list, tuple)) or not value:
        raise ValidationError(f"{field} must be a non-empty list")
    ids: list[int] = []
    for raw in value:
        parsed = parse_id(raw, field)
        if parsed not in ids:
            ids.append(parsed)
    return ids


def parse_amount_cents(value: Any, field: str, *, allow_zero: bool = False) -> int:
    """
    Parse a fixed-point money value ("400.00", "400", 400, 400.5) into cents.

    Floats are read through their shortest repr, never through binary arithmetic.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"{field} is required")
    try:
        cents = decimal_to_cents(to_decimal(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a decimal amount with at most two decimal places")

    if cents < 0 or (cents == 0 and not allow_zero):
        raise ValidationError(f"{field} must be > 0" if not allow_zero else f"{field} must be >= 0")
    if cents > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field} exceeds the maximum allowed amount")
    return cents


def parse_quantity(value: Any, field: str) -> Decimal:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"{field} is required")
    try:
        qty = to_decimal(value)
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a decimal number")
    if not qty.is_finite():
        raise ValidationError(f"{field} must be a decimal number")
    if qty != qty.quantize(QUANTITY_STEP):
        raise ValidationError(f"{field} allows at most three decimal places")
    if qty <= 0:
        raise ValidationError(f"{field} must be > 0")
    if qty > MAX_QUANTITY:
        raise ValidationError(f"{field} exceeds the maximum allowed quantity")
    return qty


def parse_text(value: Any, field: str, *, required: bool = False, max_length: int | None = None) -> str | None:
    if value is None:
        if required:
            raise ValidationError(f"{field} is required")
        return None
    text = str(value).strip()
    if not text:
        if required:
            raise ValidationError(f"{field} cannot be blank")
        return None
    if max_length and len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return text


def parse_date(value: Any, field: str) -> date | None:
    try:
        return parse_iso_date(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an ISO-8601 date")


def parse_bool(value: Any, field: str) -> bool | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return value
    lowered = str(value).strip().lower()
    if lowered in {"1", "true", "yes"}:
        return True
    if lowered in {"0", "false", "no"}:
        return False
    raise ValidationError(f"{field} must be true or false")
