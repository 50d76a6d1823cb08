from datetime import date
from decimal import Decimal

import pytest

from sahacrm.extensions import db
from sahacrm.models import DeliveryNote, DeliveryNoteItem, Order
from sahacrm.services import delivery_service
from sahacrm.services.delivery_service import STATUS_DELIVERED, STATUS_PENDING
from sahacrm.validation import ConflictError, NotFoundError, ValidationError


SIGNATURE = "data:image/png;base64,iVBORw0KGgo="


def test_create_delivery_note_is_pending_with_totals(db_session, customer, product):
    note = delivery_service.create_delivery_note(
        customer_id=customer.id,
        delivery_date=date(2026, 10, 19),
        items=[
            {"product_id": product.id, "quantity": Decimal("2.5"), "unit_price_cents": 1999},
            {"product_id": product.id, "quantity": Decimal("1"), "unit_price_cents": 500},
        ],
    )

    assert note.status == STATUS_PENDING
    assert note.is_invoiced is False
    assert note.document_number == "IRS-261019-000001"
    # 2.5 x 19.99 = 49.975 -> 49.98
    assert [item.total_price_cents for item in note.items] == [4998, 500]
    assert note.total_amount_cents == 5498
    assert note.delivery_address == customer.address


def test_create_delivery_note_snapshots_product_name_and_unit(db_session, customer, product):
    note = delivery_service.create_delivery_note(
        customer_id=customer.id,
        items=[{"product_id": product.id, "quantity": Decimal("3"), "unit_price_cents": 500}],
    )
    product.name = "Renamed product"
    db_session.commit()

    refreshed = db_session.get(DeliveryNote, note.id)
    assert refreshed.items[0].product_name == "Ayçiçek Yağı 5L"
    assert refreshed.items[0].unit == "adet"


def test_create_delivery_note_unknown_product_needs_name(db_session, customer):
    with pytest.raises(ValidationError):
        delivery_service.create_delivery_note(
            customer_id=customer.id,
            items=[{"product_id": 9999, "quantity": Decimal("1"), "unit_price_cents": 100}],
        )

    note = delivery_service.create_delivery_note(
        customer_id=customer.id,
        items=[{"product_id": 9999, "quantity": Decimal("1"), "unit_price_cents": 100, "product_name": "Numune"}],
    )
    assert note.items[0].product_name == "Numune"


def test_create_delivery_note_requires_items(db_session, customer):
    with pytest.raises(ValidationError):
        delivery_service.create_delivery_note(customer_id=customer.id, items=[])


def test_create_delivery_note_unknown_customer(db_session, product):
    with pytest.raises(NotFoundError):
        delivery_service.create_delivery_note(
            customer_id=424242,
            items=[{"product_id": product.id, "quantity": Decimal("1"), "unit_price_cents": 100}],
        )
    assert db_session.query(DeliveryNote).count() == 0


def test_create_delivery_note_order_of_other_customer(db_session, other_customer, order, product):
    with pytest.raises(ConflictError):
        delivery_service.create_delivery_note(
            customer_id=other_customer.id,
            order_id=order.id,
            items=[{"product_id": product.id, "quantity": Decimal("1"), "unit_price_cents": 100}],
        )


def test_sign_moves_pending_to_delivered_and_updates_order(db_session, customer, order, product):
    note = delivery_service.create_delivery_note(
        customer_id=customer.id,
        order_id=order.id,
        items=[{"product_id": product.id, "quantity": Decimal("1"), "unit_price_cents": 100}],
    )

    signed = delivery_service.sign_delivery_note(
        note.id, signature=SIGNATURE, signer_name=" Ayşe Kaya ", signer_title="Depo Sorumlusu"
    )

    assert signed.status == STATUS_DELIVERED
    assert signed.signer_name == "Ayşe Kaya"
    assert signed.signature == SIGNATURE
    assert signed.signature_date is not None
    assert db_session.get(Order, order.id).status == "delivered"


def test_sign_rolls_back_when_order_update_fails(db_session, customer, order, product, monkeypatch):
    note = delivery_service.create_delivery_note(
        customer_id=customer.id,
        order_id=order.id,
        items=[{"product_id": product.id, "quantity": Decimal("1"), "unit_price_cents": 100}],
    )

    def _boom(order_id):
        raise RuntimeError("order store unavailable")

    monkeypatch.setattr(delivery_service, "_advance_order", _boom)

    with pytest.raises(RuntimeError):
        delivery_service.sign_delivery_note(note.id, signature=SIGNATURE, signer_name="Ayşe Kaya")

    db_session.expire_all()
    unsigned = db_session.get(DeliveryNote, note.id)
    assert unsigned.status == STATUS_PENDING
    assert unsigned.signature is None
    assert unsigned.signer_name is None
    assert unsigned.signature_date is None
    assert db_session.get(Order, order.id).status == "ready"


def test_sign_twice_is_conflict(db_session, customer, product, make_delivery_note):
    note = make_delivery_note(customer.id, [(product.id, 1, 100)])

    with pytest.raises(ConflictError) as excinfo:
        delivery_service.sign_delivery_note(note.id, signature=SIGNATURE, signer_name="Someone else")

    assert excinfo.value.details["status"] == STATUS_DELIVERED
    assert db_session.get(DeliveryNote, note.id).signer_name == "Ayşe Kaya"


def test_sign_requires_signature_and_signer(db_session, customer, product, make_delivery_note):
    note = make_delivery_note(customer.id, [(product.id, 1, 100)], signed=False)

    with pytest.raises(ValidationError):
        delivery_service.sign_delivery_note(note.id, signature="", signer_name="Ayşe")
    with pytest.raises(ValidationError):
        delivery_service.sign_delivery_note(note.id, signature=SIGNATURE, signer_name="  ")

    assert db_session.get(DeliveryNote, note.id).status == STATUS_PENDING


def test_sign_unknown_note(db_session):
    with pytest.raises(NotFoundError):
        delivery_service.sign_delivery_note(123, signature=SIGNATURE, signer_name="Ayşe")


def test_list_ready_for_invoicing(db_session, customer, other_customer, product, make_delivery_note):
    later = make_delivery_note(customer.id, [(product.id, 1, 100)], delivery_date=date(2026, 10, 5))
    earlier = make_delivery_note(customer.id, [(product.id, 1, 100)], delivery_date=date(2026, 10, 2))
    make_delivery_note(customer.id, [(product.id, 1, 100)], signed=False)
    make_delivery_note(other_customer.id, [(product.id, 1, 100)])

    ready = delivery_service.list_ready_for_invoicing(customer.id)

    assert [n.id for n in ready] == [earlier.id, later.id]


def test_list_delivery_notes_filters(db_session, customer, product, make_delivery_note):
    make_delivery_note(customer.id, [(product.id, 1, 100)])
    pending = make_delivery_note(customer.id, [(product.id, 1, 100)], signed=False)

    assert [n.id for n in delivery_service.list_delivery_notes(status=STATUS_PENDING)] == [pending.id]
    assert len(delivery_service.list_delivery_notes(customer_id=customer.id, is_invoiced=False)) == 2
    with pytest.raises(ValidationError):
        delivery_service.list_delivery_notes(status="lost")


def test_mark_invoiced_is_compare_and_set(db_session, customer, product, make_delivery_note):
    delivered = make_delivery_note(customer.id, [(product.id, 1, 100)])
    pending = make_delivery_note(customer.id, [(product.id, 1, 100)], signed=False)

    # SQLite does not enforce the invoice FK; nothing is committed
    moved = delivery_service.mark_invoiced([delivered.id, pending.id], invoice_id=1)
    db.session.rollback()

    assert moved == 1


def test_delete_pending_note_removes_items(db_session, customer, product, second_product, make_delivery_note):
    note = make_delivery_note(customer.id, [(product.id, 1, 100), (second_product.id, 2, 300)], signed=False)
    keep = make_delivery_note(customer.id, [(product.id, 1, 100)], signed=False)
    note_id, keep_id = note.id, keep.id

    delivery_service.delete_delivery_note(note_id)

    assert db_session.get(DeliveryNote, note_id) is None
    assert db_session.query(DeliveryNoteItem).filter_by(delivery_note_id=note_id).count() == 0
    assert db_session.query(DeliveryNoteItem).filter_by(delivery_note_id=keep_id).count() == 1


def test_delete_signed_note_is_conflict(db_session, customer, product, make_delivery_note):
    note = make_delivery_note(customer.id, [(product.id, 1, 100)])

    with pytest.raises(ConflictError) as excinfo:
        delivery_service.delete_delivery_note(note.id)

    assert excinfo.value.details["status"] == STATUS_DELIVERED
    assert db_session.get(DeliveryNote, note.id) is not None
    assert db_session.query(DeliveryNoteItem).filter_by(delivery_note_id=note.id).count() == 1


def test_delete_unknown_note(db_session):
    with pytest.raises(NotFoundError):
        delivery_service.delete_delivery_note(4242)
