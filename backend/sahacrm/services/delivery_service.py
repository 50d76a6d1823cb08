# Overview: Service-layer operations for delivery notes; encapsulates business logic and database work.

"""
Delivery Note State Machine

States: pending -> delivered -> invoiced (terminal).

- create: always pending; header and items are written in one transaction
- sign: pending -> delivered, stamps the signature and advances the
  originating order to "delivered" in the same transaction
- delete: pending notes only, items go with the note
- invoiced: only set by invoice consolidation (invoice_service)

Transitions are compare-and-set UPDATEs on the current status, so two
concurrent callers can never both move the same note.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from sqlalchemy import update

from ..extensions import db
from ..models import Customer, DeliveryNote, DeliveryNoteItem, Order, Product
from ..models.orders import ORDER_STATUS_DELIVERED
from ..validation import ConflictError, NotFoundError, ValidationError
from sahacrm.money import line_total_cents
from sahacrm.time_utils import today, utcnow
from .concurrency import affected_rows, run_with_retry
from .document_service import (
    SEQUENCE_DELIVERY_NOTE,
    flush_numbered_document,
    next_document_number,
    retry_on_collision,
)


STATUS_PENDING = "pending"
STATUS_DELIVERED = "delivered"
STATUS_INVOICED = "invoiced"

VALID_STATUSES = [STATUS_PENDING, STATUS_DELIVERED, STATUS_INVOICED]

DEFAULT_UNIT = "adet"


def create_delivery_note(
    *,
    customer_id: int,
    items: list[dict],
    order_id: int | None = None,
    delivery_date: date | None = None,
    delivery_address: str | None = None,
    notes: str | None = None,
) -> DeliveryNote:
    """
    Create a pending delivery note with its items.

    Args:
        customer_id: Receiving customer
        items: [{"product_id", "quantity" (Decimal), "unit_price_cents",
                 "unit" (optional), "product_name" (optional)}]
        order_id: Originating order (optional, must belong to the customer)

    Product name and unit are snapshotted from the catalog unless supplied.

    Raises:
        ValidationError: empty item list, unknown product without a name
        NotFoundError: customer or order not found
        ConflictError: order belongs to another customer
    """
    if not items:
        raise ValidationError("A delivery note needs at least one item")

    def _create(skip: int) -> DeliveryNote:
        def _op() -> DeliveryNote:
            customer = db.session.get(Customer, customer_id)
            if not customer:
                raise NotFoundError(f"Customer {customer_id} not found")

            if order_id is not None:
                order = db.session.get(Order, order_id)
                if not order:
                    raise NotFoundError(f"Order {order_id} not found")
                if order.customer_id != customer_id:
                    raise ConflictError(
                        "Order belongs to a different customer",
                        details={"order_id": order_id, "customer_id": customer_id},
                    )

            lines = [_build_item(item) for item in items]

            note_date = delivery_date or today()
            note = DeliveryNote(
                document_number=next_document_number(SEQUENCE_DELIVERY_NOTE, on_date=note_date, skip=skip),
                customer_id=customer_id,
                order_id=order_id,
                delivery_date=note_date,
                delivery_address=delivery_address or customer.address,
                notes=notes,
                status=STATUS_PENDING,
                is_invoiced=False,
                total_amount_cents=sum(line.total_price_cents for line in lines),
            )
            note.items.extend(lines)
            db.session.add(note)
            flush_numbered_document(note, kind=SEQUENCE_DELIVERY_NOTE, manual=False)

            db.session.commit()
            return note

        return run_with_retry(_op)

    return retry_on_collision(_create)


def _build_item(item: dict) -> DeliveryNoteItem:
    product_id = item.get("product_id")
    quantity = item.get("quantity")
    unit_price_cents = item.get("unit_price_cents")

    if not product_id:
        raise ValidationError("product_id is required for every item")
    if not isinstance(quantity, Decimal) or quantity <= 0:
        raise ValidationError("quantity must be a positive decimal")
    if unit_price_cents is None or unit_price_cents < 0:
        raise ValidationError("unit_price must be >= 0")

    product = db.session.get(Product, product_id)
    product_name = item.get("product_name") or (product.name if product else None)
    if not product_name:
        raise ValidationError(f"Product {product_id} not found and no product_name given")
    unit = item.get("unit") or (product.unit if product else None) or DEFAULT_UNIT

    return DeliveryNoteItem(
        product_id=product_id,
        product_name=product_name,
        quantity=quantity,
        unit_price_cents=unit_price_cents,
        total_price_cents=line_total_cents(quantity, unit_price_cents),
        unit=unit,
    )


def sign_delivery_note(
    note_id: int,
    *,
    signature: str,
    signer_name: str,
    signer_title: str | None = None,
) -> DeliveryNote:
    """
    Record the customer's signature and complete the delivery.

    pending -> delivered. If the note came from an order, the order is
    advanced to "delivered" in the same transaction.

    Raises:
        ValidationError: missing signature or signer name
        NotFoundError: note not found
        ConflictError: note is not pending (already signed or invoiced)
    """
    if not signature or not str(signature).strip():
        raise ValidationError("signature is required")
    if not signer_name or not str(signer_name).strip():
        raise ValidationError("signer_name is required")

    def _op() -> DeliveryNote:
        note = db.session.get(DeliveryNote, note_id)
        if not note:
            raise NotFoundError(f"Delivery note {note_id} not found")

        result = db.session.execute(
            update(DeliveryNote)
            .where(DeliveryNote.id == note_id, DeliveryNote.status == STATUS_PENDING)
            .values(
                status=STATUS_DELIVERED,
                signature=signature,
                signer_name=signer_name.strip(),
                signer_title=signer_title,
                signature_date=utcnow(),
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if not affected_rows(result):
            db.session.refresh(note)
            raise ConflictError(
                f"Delivery note {note.document_number} cannot be signed in status {note.status}",
                details={"delivery_note_id": note_id, "status": note.status},
            )

        if note.order_id is not None:
            _advance_order(note.order_id)

        db.session.commit()
        db.session.refresh(note)
        return note

    return run_with_retry(_op)


def _advance_order(order_id: int) -> None:
    """Move the originating order to delivered; runs in the signing transaction."""
    db.session.execute(
        update(Order)
        .where(Order.id == order_id)
        .values(status=ORDER_STATUS_DELIVERED, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )


def delete_delivery_note(note_id: int) -> None:
    """
    Delete a pending delivery note together with its items.

    Only pending notes can be deleted; a signed note is a delivery record.
    The status check is a compare-and-set, so a note signed concurrently
    is never deleted.

    Raises:
        NotFoundError: note not found
        ConflictError: note is delivered or invoiced
    """
    def _op() -> None:
        note = db.session.get(DeliveryNote, note_id)
        if not note:
            raise NotFoundError(f"Delivery note {note_id} not found")

        result = db.session.execute(
            update(DeliveryNote)
            .where(DeliveryNote.id == note_id, DeliveryNote.status == STATUS_PENDING)
            .values(updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if not affected_rows(result):
            db.session.refresh(note)
            raise ConflictError(
                f"Delivery note {note.document_number} cannot be deleted in status {note.status}",
                details={"delivery_note_id": note_id, "status": note.status},
            )

        # passive_deletes skips unloaded children; load them for the cascade
        list(note.items)
        db.session.delete(note)
        db.session.commit()

    run_with_retry(_op)


def get_delivery_note(note_id: int) -> DeliveryNote:
    note = db.session.get(DeliveryNote, note_id)
    if not note:
        raise NotFoundError(f"Delivery note {note_id} not found")
    return note


def list_delivery_notes(
    *,
    status: str | None = None,
    customer_id: int | None = None,
    is_invoiced: bool | None = None,
) -> list[DeliveryNote]:
    """List delivery notes, newest first. Filters combine with AND."""
    if status is not None and status not in VALID_STATUSES:
        raise ValidationError(f"Invalid status: {status}. Must be one of {VALID_STATUSES}")

    query = db.session.query(DeliveryNote)
    if status is not None:
        query = query.filter(DeliveryNote.status == status)
    if customer_id is not None:
        query = query.filter(DeliveryNote.customer_id == customer_id)
    if is_invoiced is not None:
        query = query.filter(DeliveryNote.is_invoiced.is_(is_invoiced))

    return query.order_by(DeliveryNote.created_at.desc(), DeliveryNote.id.desc()).all()


def list_ready_for_invoicing(customer_id: int | None = None) -> list[DeliveryNote]:
    """Signed, not yet invoiced notes (oldest delivery first)."""
    query = db.session.query(DeliveryNote).filter(
        DeliveryNote.status == STATUS_DELIVERED,
        DeliveryNote.is_invoiced.is_(False),
    )
    if customer_id is not None:
        query = query.filter(DeliveryNote.customer_id == customer_id)
    return query.order_by(DeliveryNote.delivery_date, DeliveryNote.id).all()


def mark_invoiced(note_ids: list[int], invoice_id: int) -> int:
    """
    delivered -> invoiced for a set of notes, inside the caller's transaction.

    Compare-and-set on (status=delivered, is_invoiced=false); returns how
    many rows actually moved. Only invoice consolidation calls this.
    """
    result = db.session.execute(
        update(DeliveryNote)
        .where(
            DeliveryNote.id.in_(note_ids),
            DeliveryNote.status == STATUS_DELIVERED,
            DeliveryNote.is_invoiced.is_(False),
        )
        .values(
            status=STATUS_INVOICED,
            is_invoiced=True,
            invoice_id=invoice_id,
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    return affected_rows(result)
