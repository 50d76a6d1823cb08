# Overview: Service-layer operations for the customer account ledger; encapsulates business logic and database work.

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date

from sqlalchemy import func

from ..extensions import db
from ..models import AccountMovement, Customer, Invoice
from ..validation import NotFoundError, ValidationError
from sahacrm.money import format_cents
from sahacrm.time_utils import day_before, to_iso_date, utcnow

"""
Customer Account Ledger Invariants (authoritative)

- Append-only: append_movement is the only write path; rows are never
  updated or deleted (enforced by mapper events on AccountMovement).
- Movements are written inside the same DB transaction as the invoice or
  payment they record.
- Balance is never stored: balance = sum(debit) - sum(credit).
- As-of filtering is inclusive: movement_date <= as_of.
- Statement order is (movement_date, created_at, id) ascending.
"""

MOVEMENT_INVOICE = "invoice"
MOVEMENT_PAYMENT = "payment"

VALID_MOVEMENT_TYPES = [MOVEMENT_INVOICE, MOVEMENT_PAYMENT]


def append_movement(
    *,
    customer_id: int,
    movement_type: str,
    reference_id: int,
    movement_date: date,
    debit_amount_cents: int = 0,
    credit_amount_cents: int = 0,
    reference_number: str | None = None,
    description: str | None = None,
) -> AccountMovement:
    """
    Append one movement to a customer's account.

    Exactly one side carries the amount: invoices debit, payments credit.
    Flushes without committing; the caller owns the transaction.
    """
    if movement_type not in VALID_MOVEMENT_TYPES:
        raise ValidationError(f"Invalid movement type: {movement_type}")
    if debit_amount_cents < 0 or credit_amount_cents < 0:
        raise ValidationError("Movement amounts must be >= 0")
    if (debit_amount_cents > 0) == (credit_amount_cents > 0):
        raise ValidationError("A movement is either a debit or a credit: exactly one side must be > 0")
    if movement_type == MOVEMENT_PAYMENT and debit_amount_cents:
        raise ValidationError("Payment movements must be credits")
    if movement_type == MOVEMENT_INVOICE and credit_amount_cents:
        raise ValidationError("Invoice movements must be debits")

    movement = AccountMovement(
        customer_id=customer_id,
        movement_type=movement_type,
        reference_id=reference_id,
        reference_number=reference_number,
        movement_date=movement_date,
        debit_amount_cents=debit_amount_cents,
        credit_amount_cents=credit_amount_cents,
        description=description,
        created_at=utcnow(),
    )
    db.session.add(movement)
    db.session.flush()  # ensures movement.id is assigned without committing
    return movement


def _ensure_customer(customer_id: int) -> Customer:
    customer = db.session.get(Customer, customer_id)
    if not customer:
        raise NotFoundError(f"Customer {customer_id} not found")
    return customer


def _totals(customer_id: int, *, as_of: date | None = None) -> tuple[int, int]:
    query = db.session.query(
        func.coalesce(func.sum(AccountMovement.debit_amount_cents), 0),
        func.coalesce(func.sum(AccountMovement.credit_amount_cents), 0),
    ).filter(AccountMovement.customer_id == customer_id)
    if as_of is not None:
        query = query.filter(AccountMovement.movement_date <= as_of)
    debit, credit = query.one()
    return int(debit), int(credit)


def get_balance(customer_id: int, *, as_of: date | None = None) -> int:
    """Debit minus credit over all movements up to and including as_of (cents)."""
    debit, credit = _totals(customer_id, as_of=as_of)
    return debit - credit


def get_account_summary(customer_id: int, *, as_of: date | None = None) -> dict:
    """
    Account summary for a customer.

    Returns:
        - total_debit / total_credit: sums of each side
        - balance: total_debit - total_credit (positive = customer owes)
    """
    _ensure_customer(customer_id)
    debit, credit = _totals(customer_id, as_of=as_of)
    return {
        "customer_id": customer_id,
        "as_of": to_iso_date(as_of),
        "total_debit_cents": debit,
        "total_credit_cents": credit,
        "balance_cents": debit - credit,
    }


def ordered_movements(
    customer_id: int,
    *,
    start_date: date | None = None,
    end_date: date | None = None,
) -> list[AccountMovement]:
    query = db.session.query(AccountMovement).filter(AccountMovement.customer_id == customer_id)
    if start_date is not None:
        query = query.filter(AccountMovement.movement_date >= start_date)
    if end_date is not None:
        query = query.filter(AccountMovement.movement_date <= end_date)
    return query.order_by(
        AccountMovement.movement_date.asc(),
        AccountMovement.created_at.asc(),
        AccountMovement.id.asc(),
    ).all()


@dataclass
class StatementLine:
    movement: AccountMovement
    balance_cents: int

    def to_dict(self) -> dict:
        data = self.movement.to_dict()
        data["balance"] = format_cents(self.balance_cents)
        return data


@dataclass
class Statement:
    customer_id: int
    start_date: date | None
    end_date: date | None
    opening_balance_cents: int
    lines: list[StatementLine] = field(default_factory=list)

    @property
    def total_debit_cents(self) -> int:
        return sum(line.movement.debit_amount_cents for line in self.lines)

    @property
    def total_credit_cents(self) -> int:
        return sum(line.movement.credit_amount_cents for line in self.lines)

    @property
    def closing_balance_cents(self) -> int:
        if self.lines:
            return self.lines[-1].balance_cents
        return self.opening_balance_cents

    def to_dict(self) -> dict:
        return {
            "customer_id": self.customer_id,
            "start_date": to_iso_date(self.start_date),
            "end_date": to_iso_date(self.end_date),
            "opening_balance": format_cents(self.opening_balance_cents),
            "total_debit": format_cents(self.total_debit_cents),
            "total_credit": format_cents(self.total_credit_cents),
            "closing_balance": format_cents(self.closing_balance_cents),
            "movements": [line.to_dict() for line in self.lines],
        }


def fold_running_balance(movements: list[AccountMovement], opening_balance_cents: int = 0) -> list[StatementLine]:
    """Left-to-right running balance over already ordered movements."""
    running = opening_balance_cents
    lines: list[StatementLine] = []
    for movement in movements:
        running += movement.signed_amount_cents
        lines.append(StatementLine(movement=movement, balance_cents=running))
    return lines


def build_statement(
    customer_id: int,
    *,
    start_date: date | None = None,
    end_date: date | None = None,
    include_opening_balance: bool = False,
) -> Statement:
    """
    Account statement ("ekstre") for a date window.

    The running balance starts at 0 unless include_opening_balance is set,
    in which case it starts at the balance as of the day before start_date.
    """
    _ensure_customer(customer_id)
    if start_date and end_date and start_date > end_date:
        raise ValidationError("start_date must be on or before end_date")

    opening = 0
    if include_opening_balance and start_date is not None:
        opening = get_balance(customer_id, as_of=day_before(start_date))

    movements = ordered_movements(customer_id, start_date=start_date, end_date=end_date)
    return Statement(
        customer_id=customer_id,
        start_date=start_date,
        end_date=end_date,
        opening_balance_cents=opening,
        lines=fold_running_balance(movements, opening),
    )


def list_customer_invoices(customer_id: int) -> list[Invoice]:
    _ensure_customer(customer_id)
    return (
        db.session.query(Invoice)
        .filter(Invoice.customer_id == customer_id)
        .order_by(Invoice.invoice_date.desc(), Invoice.id.desc())
        .all()
    )
