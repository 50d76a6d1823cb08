# Overview: Service-layer operations for invoices; encapsulates business logic and database work.

"""
Invoice Consolidation Engine

Turns one or more delivered, not-yet-invoiced delivery notes of a single
customer into one invoice.

DESIGN PRINCIPLES:
- All or nothing: invoice, merged items, delivery note marking and the
  ledger debit commit together or not at all
- Invoice total is the sum of delivery note totals (plus flat tax), never
  re-derived from line items
- Lines are merged per product: quantities add up, the first-seen unit
  price wins (no averaging)
- A delivery note can only be consolidated once: the is_invoiced flag is
  flipped with a compare-and-set inside the same transaction
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable

from flask import current_app
from sqlalchemy import update

from ..extensions import db
from ..models import Customer, DeliveryNote, DeliveryNoteItem, Invoice, InvoiceItem
from ..validation import ConflictError, NotFoundError, ValidationError
from sahacrm.money import apply_rate_bps, line_total_cents
from sahacrm.time_utils import today, utcnow
from . import delivery_service, ledger_service
from .concurrency import affected_rows, lock_for_update, run_with_retry
from .document_service import (
    SEQUENCE_INVOICE,
    flush_numbered_document,
    next_document_number,
    retry_on_collision,
)


# =============================================================================
# INVOICE STATUS (CONSTANTS)
# =============================================================================

INVOICE_STATUS_DRAFT = "draft"
INVOICE_STATUS_SENT = "sent"
INVOICE_STATUS_UNPAID = "unpaid"
INVOICE_STATUS_PARTIAL = "partial"
INVOICE_STATUS_PAID = "paid"

VALID_INVOICE_STATUSES = [
    INVOICE_STATUS_DRAFT,
    INVOICE_STATUS_SENT,
    INVOICE_STATUS_UNPAID,
    INVOICE_STATUS_PARTIAL,
    INVOICE_STATUS_PAID,
]


# =============================================================================
# LINE MERGING
# =============================================================================

@dataclass
class MergedLine:
    product_id: int
    product_name: str
    unit: str
    unit_price_cents: int
    quantity: Decimal

    @property
    def total_price_cents(self) -> int:
        return line_total_cents(self.quantity, self.unit_price_cents)


def merge_delivery_items(items: Iterable[DeliveryNoteItem]) -> list[MergedLine]:
    """
    Group delivery items by product_id.

    quantity is summed; unit_price, unit and product_name come from the
    first item seen for the product. Output keeps first-appearance order.
    """
    merged: dict[int, MergedLine] = {}
    for item in items:
        line = merged.get(item.product_id)
        if line is None:
            merged[item.product_id] = MergedLine(
                product_id=item.product_id,
                product_name=item.product_name,
                unit=item.unit,
                unit_price_cents=item.unit_price_cents,
                quantity=Decimal(item.quantity),
            )
        else:
            line.quantity += Decimal(item.quantity)
    return list(merged.values())


# =============================================================================
# CONSOLIDATION
# =============================================================================

def _check_consolidation_preconditions(
    customer_id: int,
    requested_ids: list[int],
    notes: list[DeliveryNote],
) -> None:
    found = {note.id: note for note in notes}
    missing = [note_id for note_id in requested_ids if note_id not in found]
    if missing:
        raise NotFoundError(
            "Some delivery notes were not found",
            details={"missing_delivery_note_ids": missing},
        )

    other_customer = [n.id for n in notes if n.customer_id != customer_id]
    if other_customer:
        raise ConflictError(
            "Some delivery notes belong to a different customer",
            details={"delivery_note_ids": other_customer, "customer_id": customer_id},
        )

    already_invoiced = [n.id for n in notes if n.is_invoiced]
    if already_invoiced:
        raise ConflictError(
            "Delivery note already invoiced",
            details={"delivery_note_ids": already_invoiced},
        )

    not_delivered = [n.id for n in notes if n.status != delivery_service.STATUS_DELIVERED]
    if not_delivered:
        raise ConflictError(
            "Only delivered (signed) delivery notes can be invoiced",
            details={"delivery_note_ids": not_delivered},
        )


def create_invoice_from_delivery_notes(
    *,
    customer_id: int,
    delivery_note_ids: list[int],
    invoice_number: str | None = None,
    invoice_date: date | None = None,
    notes: str | None = None,
) -> Invoice:
    """
    Consolidate delivered delivery notes into a single draft invoice.

    Args:
        customer_id: Customer all notes must belong to
        delivery_note_ids: Non-empty list of delivery note ids
        invoice_number: Caller-supplied number (optional, must be unused)
        invoice_date: Defaults to today

    Returns:
        The committed invoice, with merged items

    Raises:
        ValidationError: empty selection, or the selected notes total zero
        NotFoundError: customer or a delivery note not found
        ConflictError: wrong customer, not delivered, already invoiced,
            or invoice_number already in use
    """
    ids: list[int] = []
    for note_id in delivery_note_ids or []:
        if note_id not in ids:
            ids.append(note_id)
    if not ids:
        raise ValidationError("Select at least one delivery note")

    manual_number = invoice_number.strip() if invoice_number else None

    def _create(skip: int) -> Invoice:
        def _op() -> Invoice:
            customer = db.session.get(Customer, customer_id)
            if not customer:
                raise NotFoundError(f"Customer {customer_id} not found")

            if manual_number and _number_in_use(manual_number):
                raise ConflictError(
                    f"Invoice number {manual_number} is already in use",
                    details={"document_number": manual_number},
                )

            selected = lock_for_update(
                db.session.query(DeliveryNote).filter(DeliveryNote.id.in_(ids))
            ).all()
            _check_consolidation_preconditions(customer_id, ids, selected)
            subtotal = sum(note.total_amount_cents for note in selected)
            if subtotal <= 0:
                raise ValidationError("Selected delivery notes have a zero total; nothing to invoice")

            doc_date = invoice_date or today()
            number = manual_number or next_document_number(SEQUENCE_INVOICE, on_date=doc_date, skip=skip)

            tax = apply_rate_bps(subtotal, current_app.config.get("INVOICE_TAX_RATE_BPS", 0))
            total = subtotal + tax
            due_days = current_app.config.get("INVOICE_DUE_DAYS", 30)

            invoice = Invoice(
                document_number=number,
                customer_id=customer_id,
                invoice_date=doc_date,
                due_date=doc_date + timedelta(days=due_days) if due_days is not None else None,
                subtotal_amount_cents=subtotal,
                tax_amount_cents=tax,
                total_amount_cents=total,
                paid_amount_cents=0,
                remaining_amount_cents=total,
                status=INVOICE_STATUS_DRAFT,
                notes=notes,
            )
            db.session.add(invoice)
            flush_numbered_document(invoice, kind=SEQUENCE_INVOICE, manual=bool(manual_number))

            source_items = (
                db.session.query(DeliveryNoteItem)
                .filter(DeliveryNoteItem.delivery_note_id.in_(ids))
                .order_by(DeliveryNoteItem.delivery_note_id, DeliveryNoteItem.id)
                .all()
            )
            for line in merge_delivery_items(source_items):
                db.session.add(InvoiceItem(
                    invoice_id=invoice.id,
                    product_id=line.product_id,
                    product_name=line.product_name,
                    quantity=line.quantity,
                    unit_price_cents=line.unit_price_cents,
                    total_price_cents=line.total_price_cents,
                    unit=line.unit,
                ))

            moved = delivery_service.mark_invoiced(ids, invoice.id)
            if moved != len(ids):
                raise ConflictError(
                    "Delivery note already invoiced",
                    details={"delivery_note_ids": ids, "marked": moved},
                )

            ledger_service.append_movement(
                customer_id=customer_id,
                movement_type=ledger_service.MOVEMENT_INVOICE,
                reference_id=invoice.id,
                reference_number=number,
                movement_date=doc_date,
                debit_amount_cents=total,
                description=f"Invoice {number}",
            )

            db.session.commit()
            return invoice

        return run_with_retry(_op)

    return retry_on_collision(_create)


def _number_in_use(document_number: str, *, exclude_invoice_id: int | None = None) -> bool:
    query = db.session.query(Invoice.id).filter(Invoice.document_number == document_number)
    if exclude_invoice_id is not None:
        query = query.filter(Invoice.id != exclude_invoice_id)
    return query.first() is not None


# =============================================================================
# INVOICE LIFECYCLE
# =============================================================================

def send_invoice(invoice_id: int) -> Invoice:
    """draft -> sent. Any other status is a conflict."""
    def _op() -> Invoice:
        invoice = get_invoice(invoice_id)
        result = db.session.execute(
            update(Invoice)
            .where(Invoice.id == invoice_id, Invoice.status == INVOICE_STATUS_DRAFT)
            .values(status=INVOICE_STATUS_SENT, sent_at=utcnow(), updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if not affected_rows(result):
            db.session.refresh(invoice)
            raise ConflictError(
                f"Only draft invoices can be sent (status is {invoice.status})",
                details={"invoice_id": invoice_id, "status": invoice.status},
            )
        db.session.commit()
        return invoice

    return run_with_retry(_op)


def renumber_invoice(invoice_id: int, document_number: str) -> Invoice:
    """
    Replace an invoice's document number (e.g., with the official e-invoice
    number). Ledger movements keep the number they were written with.
    """
    new_number = (document_number or "").strip()
    if not new_number:
        raise ValidationError("invoice_number is required")

    def _op() -> Invoice:
        invoice = lock_for_update(db.session.query(Invoice).filter(Invoice.id == invoice_id)).first()
        if not invoice:
            raise NotFoundError(f"Invoice {invoice_id} not found")
        if _number_in_use(new_number, exclude_invoice_id=invoice_id):
            raise ConflictError(
                f"Invoice number {new_number} is already in use",
                details={"document_number": new_number},
            )
        invoice.document_number = new_number
        flush_numbered_document(invoice, kind=SEQUENCE_INVOICE, manual=True)
        db.session.commit()
        return invoice

    return run_with_retry(_op)


# =============================================================================
# QUERIES
# =============================================================================

def get_invoice(invoice_id: int) -> Invoice:
    invoice = db.session.get(Invoice, invoice_id)
    if not invoice:
        raise NotFoundError(f"Invoice {invoice_id} not found")
    return invoice


def list_invoices(*, customer_id: int | None = None, status: str | None = None) -> list[Invoice]:
    if status is not None and status not in VALID_INVOICE_STATUSES:
        raise ValidationError(f"Invalid status: {status}. Must be one of {VALID_INVOICE_STATUSES}")

    query = db.session.query(Invoice)
    if customer_id is not None:
        query = query.filter(Invoice.customer_id == customer_id)
    if status is not None:
        query = query.filter(Invoice.status == status)
    return query.order_by(Invoice.invoice_date.desc(), Invoice.id.desc()).all()


def get_invoice_delivery_notes(invoice_id: int) -> list[DeliveryNote]:
    get_invoice(invoice_id)
    return (
        db.session.query(DeliveryNote)
        .filter(DeliveryNote.invoice_id == invoice_id)
        .order_by(DeliveryNote.delivery_date, DeliveryNote.id)
        .all()
    )
