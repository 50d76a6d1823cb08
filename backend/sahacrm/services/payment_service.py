# Overview: Service-layer operations for payment; encapsulates business logic and database work.

"""
Payment Allocation Service

WHY: Record collected payments ("tahsilat"), optionally against one invoice,
and reflect them in the invoice, the receiving cash register and the
customer's account in one transaction.

DESIGN PRINCIPLES:
- Payments are immutable once recorded
- Invoice paid/remaining amounts change only through an atomic conditional
  UPDATE guarded by remaining_amount >= amount (no overpayment, no negative
  remaining, no lost updates between concurrent payments)
- Unallocated payments credit the account and the cash register only
- Every payment appends exactly one credit movement
"""

from __future__ import annotations

from datetime import date

from sqlalchemy import case, update

from ..extensions import db
from ..models import CashRegister, Customer, Invoice, Payment
from ..validation import ConflictError, NotFoundError, ValidationError
from sahacrm.time_utils import today, utcnow
from . import ledger_service
from .concurrency import affected_rows, run_with_retry
from .invoice_service import (
    INVOICE_STATUS_PAID,
    INVOICE_STATUS_PARTIAL,
    INVOICE_STATUS_UNPAID,
)


class OverpaymentError(ConflictError):
    """Payment amount exceeds the invoice's remaining amount."""
    pass


# =============================================================================
# PAYMENT METHODS (CONSTANTS)
# =============================================================================

METHOD_CASH = "cash"
METHOD_CREDIT_CARD = "credit_card"
METHOD_BANK_TRANSFER = "bank_transfer"
METHOD_CHECK = "check"

VALID_PAYMENT_METHODS = [
    METHOD_CASH,
    METHOD_CREDIT_CARD,
    METHOD_BANK_TRANSFER,
    METHOD_CHECK,
]

METHOD_LABELS = {
    METHOD_CASH: "Nakit",
    METHOD_CREDIT_CARD: "Kredi Kartı",
    METHOD_BANK_TRANSFER: "Havale/EFT",
    METHOD_CHECK: "Çek",
}

PAYMENT_REFERENCE_PREFIX = "TAH"


# =============================================================================
# PAYMENT CREATION
# =============================================================================

def record_payment(
    *,
    customer_id: int,
    amount_cents: int,
    payment_method: str,
    invoice_id: int | None = None,
    cash_register_id: int | None = None,
    reference_number: str | None = None,
    notes: str | None = None,
    payment_date: date | None = None,
) -> Payment:
    """
    Record a payment and apply it.

    Args:
        customer_id: Paying customer
        amount_cents: Amount collected (in cents, > 0)
        payment_method: cash, credit_card, bank_transfer, check
        invoice_id: Invoice to allocate against (optional)
        cash_register_id: Receiving cash register (optional, must be active)
        reference_number: Receipt / slip number; defaults to TAH-{payment id}

    Returns:
        Payment record

    Raises:
        ValidationError: bad amount or method
        NotFoundError: customer, invoice or cash register not found
        ConflictError: invoice of another customer, inactive cash register
        OverpaymentError: amount > invoice remaining amount
    """
    if payment_method not in VALID_PAYMENT_METHODS:
        raise ValidationError(f"Invalid payment method: {payment_method}. Must be one of {VALID_PAYMENT_METHODS}")
    if not isinstance(amount_cents, int) or isinstance(amount_cents, bool) or amount_cents <= 0:
        raise ValidationError("Payment amount must be positive")

    def _op() -> Payment:
        customer = db.session.get(Customer, customer_id)
        if not customer:
            raise NotFoundError(f"Customer {customer_id} not found")

        invoice = None
        if invoice_id is not None:
            invoice = db.session.get(Invoice, invoice_id)
            if not invoice:
                raise NotFoundError(f"Invoice {invoice_id} not found")
            if invoice.customer_id != customer_id:
                raise ConflictError(
                    "Invoice belongs to a different customer",
                    details={"invoice_id": invoice_id, "customer_id": customer_id},
                )

        if cash_register_id is not None:
            register = db.session.get(CashRegister, cash_register_id)
            if not register:
                raise NotFoundError(f"Cash register {cash_register_id} not found")
            if not register.is_active:
                raise ConflictError(
                    f"Cash register {register.name} is inactive",
                    details={"cash_register_id": cash_register_id},
                )

        paid_on = payment_date or today()
        payment = Payment(
            customer_id=customer_id,
            invoice_id=invoice_id,
            cash_register_id=cash_register_id,
            amount_cents=amount_cents,
            payment_method=payment_method,
            reference_number=reference_number,
            notes=notes,
            payment_date=paid_on,
            created_at=utcnow(),
        )
        db.session.add(payment)
        db.session.flush()  # Get payment ID

        if invoice is not None:
            _allocate_to_invoice(invoice, amount_cents)

        if cash_register_id is not None:
            db.session.execute(
                update(CashRegister)
                .where(CashRegister.id == cash_register_id)
                .values(balance_cents=CashRegister.balance_cents + amount_cents, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )

        if not payment.reference_number:
            payment.reference_number = f"{PAYMENT_REFERENCE_PREFIX}-{payment.id}"

        ledger_service.append_movement(
            customer_id=customer_id,
            movement_type=ledger_service.MOVEMENT_PAYMENT,
            reference_id=payment.id,
            reference_number=payment.reference_number,
            movement_date=paid_on,
            credit_amount_cents=amount_cents,
            description=f"Tahsilat - {METHOD_LABELS[payment_method]}",
        )

        db.session.commit()
        return payment

    return run_with_retry(_op)


def _allocate_to_invoice(invoice: Invoice, amount_cents: int) -> None:
    """
    Apply a payment to an invoice with a single guarded UPDATE.

    The guard and the arithmetic run in the database, so concurrent payments
    serialize on the row and the sum of accepted payments never exceeds the
    invoice total.
    """
    new_remaining = Invoice.remaining_amount_cents - amount_cents
    new_paid = Invoice.paid_amount_cents + amount_cents

    result = db.session.execute(
        update(Invoice)
        .where(
            Invoice.id == invoice.id,
            Invoice.remaining_amount_cents >= amount_cents,
        )
        .values(
            paid_amount_cents=new_paid,
            remaining_amount_cents=new_remaining,
            status=case(
                (new_remaining <= 0, INVOICE_STATUS_PAID),
                (new_paid > 0, INVOICE_STATUS_PARTIAL),
                else_=INVOICE_STATUS_UNPAID,
            ),
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    if not affected_rows(result):
        db.session.refresh(invoice)
        raise OverpaymentError(
            f"Payment exceeds the remaining amount of invoice {invoice.document_number}",
            details={
                "invoice_id": invoice.id,
                "remaining_amount_cents": invoice.remaining_amount_cents,
                "amount_cents": amount_cents,
            },
        )


# =============================================================================
# QUERIES
# =============================================================================

def get_payment(payment_id: int) -> Payment:
    payment = db.session.get(Payment, payment_id)
    if not payment:
        raise NotFoundError(f"Payment {payment_id} not found")
    return payment


def list_customer_payments(customer_id: int) -> list[Payment]:
    """All payments of a customer, newest first."""
    if not db.session.get(Customer, customer_id):
        raise NotFoundError(f"Customer {customer_id} not found")
    return (
        db.session.query(Payment)
        .filter(Payment.customer_id == customer_id)
        .order_by(Payment.payment_date.desc(), Payment.id.desc())
        .all()
    )


def list_invoice_payments(invoice_id: int) -> list[Payment]:
    if not db.session.get(Invoice, invoice_id):
        raise NotFoundError(f"Invoice {invoice_id} not found")
    return (
        db.session.query(Payment)
        .filter(Payment.invoice_id == invoice_id)
        .order_by(Payment.id)
        .all()
    )
