from datetime import date, timedelta
from decimal import Decimal
from types import SimpleNamespace

import pytest

from sahacrm.models import AccountMovement, DeliveryNote, Invoice, InvoiceItem
from sahacrm.services import document_service, invoice_service, ledger_service
from sahacrm.services.document_service import SEQUENCE_INVOICE
from sahacrm.services.invoice_service import INVOICE_STATUS_DRAFT, INVOICE_STATUS_SENT
from sahacrm.validation import ConflictError, NotFoundError, ValidationError


INVOICE_DATE = date(2026, 10, 19)


def _item(product_id, quantity, unit_price_cents, name="P", unit="adet"):
    return SimpleNamespace(
        product_id=product_id,
        product_name=name,
        unit=unit,
        unit_price_cents=unit_price_cents,
        quantity=Decimal(quantity),
    )


# =============================================================================
# LINE MERGING
# =============================================================================

def test_merge_sums_quantities_per_product():
    lines = invoice_service.merge_delivery_items([_item(1, "10", 500), _item(1, "4", 500)])

    assert len(lines) == 1
    assert lines[0].quantity == Decimal("14")
    assert lines[0].total_price_cents == 7000


def test_merge_keeps_first_seen_price_and_order():
    lines = invoice_service.merge_delivery_items([
        _item(2, "1", 1200, name="Un"),
        _item(1, "2", 500, name="Yağ"),
        _item(2, "3", 1500, name="Un (yeni fiyat)"),
    ])

    assert [line.product_id for line in lines] == [2, 1]
    assert lines[0].unit_price_cents == 1200
    assert lines[0].product_name == "Un"
    assert lines[0].quantity == Decimal("4")
    assert lines[0].total_price_cents == 4800


def test_merge_empty():
    assert invoice_service.merge_delivery_items([]) == []


# =============================================================================
# CONSOLIDATION
# =============================================================================

def test_consolidate_two_notes_into_one_invoice(db_session, customer, product, make_delivery_note):
    d1 = make_delivery_note(customer.id, [(product.id, 10, 500)])
    d2 = make_delivery_note(customer.id, [(product.id, 4, 500)])

    invoice = invoice_service.create_invoice_from_delivery_notes(
        customer_id=customer.id,
        delivery_note_ids=[d1.id, d2.id],
        invoice_date=INVOICE_DATE,
    )

    assert invoice.document_number == "FAT-261019-000001"
    assert invoice.status == INVOICE_STATUS_DRAFT
    assert invoice.total_amount_cents == 7000
    assert invoice.remaining_amount_cents == 7000
    assert invoice.paid_amount_cents == 0
    assert invoice.due_date == INVOICE_DATE + timedelta(days=30)

    assert len(invoice.items) == 1
    item = invoice.items[0]
    assert item.product_id == product.id
    assert item.quantity == Decimal("14")
    assert item.total_price_cents == 7000

    for note_id in (d1.id, d2.id):
        note = db_session.get(DeliveryNote, note_id)
        assert note.is_invoiced is True
        assert note.status == "invoiced"
        assert note.invoice_id == invoice.id

    movements = db_session.query(AccountMovement).filter_by(customer_id=customer.id).all()
    assert len(movements) == 1
    assert movements[0].movement_type == ledger_service.MOVEMENT_INVOICE
    assert movements[0].debit_amount_cents == 7000
    assert movements[0].credit_amount_cents == 0
    assert movements[0].reference_id == invoice.id
    assert movements[0].reference_number == invoice.document_number
    assert movements[0].movement_date == INVOICE_DATE


def test_consolidate_uses_note_totals_and_flat_tax(app, db_session, customer, product, second_product, make_delivery_note, monkeypatch):
    monkeypatch.setitem(app.config, "INVOICE_TAX_RATE_BPS", 1800)
    d1 = make_delivery_note(customer.id, [(product.id, 2, 500), (second_product.id, 1, 1200)])

    invoice = invoice_service.create_invoice_from_delivery_notes(
        customer_id=customer.id, delivery_note_ids=[d1.id], invoice_date=INVOICE_DATE
    )

    assert invoice.subtotal_amount_cents == 2200
    assert invoice.tax_amount_cents == 396
    assert invoice.total_amount_cents == 2596
    assert [i.product_id for i in invoice.items] == [product.id, second_product.id]


def _assert_nothing_written(db_session, note_ids):
    assert db_session.query(Invoice).count() == 0
    assert db_session.query(InvoiceItem).count() == 0
    assert db_session.query(AccountMovement).count() == 0
    for note_id in note_ids:
        assert db_session.get(DeliveryNote, note_id).is_invoiced is False


def test_consolidate_rejects_pending_note_and_writes_nothing(db_session, customer, product, make_delivery_note):
    delivered = make_delivery_note(customer.id, [(product.id, 1, 500)])
    pending = make_delivery_note(customer.id, [(product.id, 1, 500)], signed=False)

    with pytest.raises(ConflictError) as excinfo:
        invoice_service.create_invoice_from_delivery_notes(
            customer_id=customer.id, delivery_note_ids=[delivered.id, pending.id]
        )

    assert excinfo.value.details["delivery_note_ids"] == [pending.id]
    _assert_nothing_written(db_session, [delivered.id, pending.id])


def test_consolidate_rejects_other_customers_note(db_session, customer, other_customer, product, make_delivery_note):
    mine = make_delivery_note(customer.id, [(product.id, 1, 500)])
    theirs = make_delivery_note(other_customer.id, [(product.id, 1, 500)])

    with pytest.raises(ConflictError):
        invoice_service.create_invoice_from_delivery_notes(
            customer_id=customer.id, delivery_note_ids=[mine.id, theirs.id]
        )

    _assert_nothing_written(db_session, [mine.id, theirs.id])


def test_consolidate_missing_note(db_session, customer, product, make_delivery_note):
    note = make_delivery_note(customer.id, [(product.id, 1, 500)])

    with pytest.raises(NotFoundError) as excinfo:
        invoice_service.create_invoice_from_delivery_notes(customer_id=customer.id, delivery_note_ids=[note.id, 98765])

    assert excinfo.value.details["missing_delivery_note_ids"] == [98765]
    _assert_nothing_written(db_session, [note.id])


def test_consolidate_empty_selection(db_session, customer):
    with pytest.raises(ValidationError):
        invoice_service.create_invoice_from_delivery_notes(customer_id=customer.id, delivery_note_ids=[])


def test_consolidate_zero_total_is_rejected(db_session, customer, product, make_delivery_note):
    free = make_delivery_note(customer.id, [(product.id, 3, 0)])

    with pytest.raises(ValidationError, match="zero total"):
        invoice_service.create_invoice_from_delivery_notes(customer_id=customer.id, delivery_note_ids=[free.id])

    _assert_nothing_written(db_session, [free.id])
    assert document_service.peek_current_value(SEQUENCE_INVOICE) == 0


def test_consolidate_twice_is_conflict(db_session, customer, product, make_delivery_note):
    note = make_delivery_note(customer.id, [(product.id, 1, 500)])
    first = invoice_service.create_invoice_from_delivery_notes(customer_id=customer.id, delivery_note_ids=[note.id])

    with pytest.raises(ConflictError, match="already invoiced"):
        invoice_service.create_invoice_from_delivery_notes(customer_id=customer.id, delivery_note_ids=[note.id])

    assert db_session.query(Invoice).count() == 1
    assert db_session.get(DeliveryNote, note.id).invoice_id == first.id


def test_failure_late_in_transaction_rolls_everything_back(db_session, customer, product, make_delivery_note, monkeypatch):
    note = make_delivery_note(customer.id, [(product.id, 10, 500)])

    def _boom(**kwargs):
        raise RuntimeError("ledger unavailable")

    monkeypatch.setattr(ledger_service, "append_movement", _boom)

    with pytest.raises(RuntimeError):
        invoice_service.create_invoice_from_delivery_notes(customer_id=customer.id, delivery_note_ids=[note.id])

    _assert_nothing_written(db_session, [note.id])
    assert db_session.get(DeliveryNote, note.id).status == "delivered"
    assert document_service.peek_current_value(SEQUENCE_INVOICE) == 0


def test_generated_number_collision_retries_with_next_number(db_session, customer, product, make_delivery_note):
    # An invoice already holds the number the counter will hand out next
    db_session.add(Invoice(
        document_number="FAT-261019-000001",
        customer_id=customer.id,
        invoice_date=INVOICE_DATE,
        total_amount_cents=0,
        remaining_amount_cents=0,
    ))
    db_session.commit()
    note = make_delivery_note(customer.id, [(product.id, 1, 500)])

    invoice = invoice_service.create_invoice_from_delivery_notes(
        customer_id=customer.id, delivery_note_ids=[note.id], invoice_date=INVOICE_DATE
    )

    assert invoice.document_number == "FAT-261019-000002"
    assert db_session.get(DeliveryNote, note.id).invoice_id == invoice.id


def test_manual_invoice_number(db_session, customer, product, make_delivery_note):
    d1 = make_delivery_note(customer.id, [(product.id, 1, 500)])
    d2 = make_delivery_note(customer.id, [(product.id, 1, 500)])

    invoice = invoice_service.create_invoice_from_delivery_notes(
        customer_id=customer.id, delivery_note_ids=[d1.id], invoice_number="GIB2026000000001"
    )
    assert invoice.document_number == "GIB2026000000001"

    with pytest.raises(ConflictError):
        invoice_service.create_invoice_from_delivery_notes(
            customer_id=customer.id, delivery_note_ids=[d2.id], invoice_number="GIB2026000000001"
        )
    assert db_session.get(DeliveryNote, d2.id).is_invoiced is False


# =============================================================================
# LIFECYCLE AND QUERIES
# =============================================================================

def test_send_invoice_only_from_draft(db_session, customer, product, make_delivery_note):
    note = make_delivery_note(customer.id, [(product.id, 1, 500)])
    invoice = invoice_service.create_invoice_from_delivery_notes(customer_id=customer.id, delivery_note_ids=[note.id])

    sent = invoice_service.send_invoice(invoice.id)
    assert sent.status == INVOICE_STATUS_SENT
    assert sent.sent_at is not None

    with pytest.raises(ConflictError):
        invoice_service.send_invoice(invoice.id)


def test_renumber_invoice(db_session, customer, product, make_delivery_note):
    d1 = make_delivery_note(customer.id, [(product.id, 1, 500)])
    d2 = make_delivery_note(customer.id, [(product.id, 1, 500)])
    first = invoice_service.create_invoice_from_delivery_notes(customer_id=customer.id, delivery_note_ids=[d1.id])
    second = invoice_service.create_invoice_from_delivery_notes(customer_id=customer.id, delivery_note_ids=[d2.id])

    renamed = invoice_service.renumber_invoice(first.id, "GIB2026000000042")
    assert renamed.document_number == "GIB2026000000042"

    with pytest.raises(ConflictError):
        invoice_service.renumber_invoice(second.id, "GIB2026000000042")
    with pytest.raises(ValidationError):
        invoice_service.renumber_invoice(second.id, "   ")


def test_get_invoice_delivery_notes_and_list(db_session, customer, other_customer, product, make_delivery_note):
    d1 = make_delivery_note(customer.id, [(product.id, 1, 500)], delivery_date=date(2026, 10, 3))
    d2 = make_delivery_note(customer.id, [(product.id, 1, 500)], delivery_date=date(2026, 10, 1))
    invoice = invoice_service.create_invoice_from_delivery_notes(
        customer_id=customer.id, delivery_note_ids=[d1.id, d2.id]
    )
    d3 = make_delivery_note(other_customer.id, [(product.id, 1, 500)])
    invoice_service.create_invoice_from_delivery_notes(customer_id=other_customer.id, delivery_note_ids=[d3.id])

    assert [n.id for n in invoice_service.get_invoice_delivery_notes(invoice.id)] == [d2.id, d1.id]
    assert [i.id for i in invoice_service.list_invoices(customer_id=customer.id)] == [invoice.id]
    assert len(invoice_service.list_invoices(status=INVOICE_STATUS_DRAFT)) == 2
    with pytest.raises(NotFoundError):
        invoice_service.get_invoice(424242)
