from __future__ import annotations

from ..extensions import db
from sahacrm.money import format_cents, format_quantity
from sahacrm.time_utils import to_iso_date, to_utc_z


class DocumentSequence(db.Model):
    """
    Atomic per-kind document counters.

    WHY: Document numbers must never collide under concurrent callers.
    current_value is only ever advanced with a single
    UPDATE ... SET current_value = current_value + 1 inside the
    transaction that uses the number.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("name", name="uq_document_sequences_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(32), nullable=False)
    current_value = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "current_value": self.current_value,
            "updated_at": to_utc_z(self.updated_at),
        }


class DeliveryNote(db.Model):
    """
    Delivery note ("irsaliye"): evidence that goods were handed to a customer.

    LIFECYCLE:
    1. pending: created, goods on the way
    2. delivered: customer signed; signature fields are stamped
    3. invoiced: consolidated into exactly one invoice (terminal)

    INVARIANTS:
    - is_invoiced implies status == "invoiced" and invoice_id is set
    - signature fields are present iff status is delivered or invoiced
    """
    __tablename__ = "delivery_notes"
    __table_args__ = (
        db.UniqueConstraint("document_number", name="uq_delivery_notes_document_number"),
        # Ready-for-invoicing lookups
        db.Index("ix_delivery_notes_customer_status_invoiced", "customer_id", "status", "is_invoiced"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable document number (e.g., "IRS-261019-000042")
    document_number = db.Column(db.String(64), nullable=False)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)

    delivery_date = db.Column(db.Date, nullable=False)
    delivery_address = db.Column(db.Text, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)  # pending, delivered, invoiced

    # Sign-off (set together, on pending -> delivered)
    signature = db.Column(db.Text, nullable=True)
    signer_name = db.Column(db.String(128), nullable=True)
    signer_title = db.Column(db.String(128), nullable=True)
    signature_date = db.Column(db.DateTime(timezone=True), nullable=True)

    is_invoiced = db.Column(db.Boolean, nullable=False, default=False, index=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=True, index=True)

    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    customer = db.relationship("Customer", backref=db.backref("delivery_notes", lazy=True))
    order = db.relationship("Order", backref=db.backref("delivery_notes", lazy=True))
    invoice = db.relationship("Invoice", backref=db.backref("delivery_notes", lazy=True, order_by="DeliveryNote.id"))
    items = db.relationship(
        "DeliveryNoteItem",
        back_populates="delivery_note",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="DeliveryNoteItem.id",
        lazy=True,
    )

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "document_number": self.document_number,
            "customer_id": self.customer_id,
            "customer_name": self.customer.company_name if self.customer else None,
            "order_id": self.order_id,
            "delivery_date": to_iso_date(self.delivery_date),
            "delivery_address": self.delivery_address,
            "notes": self.notes,
            "status": self.status,
            "signer_name": self.signer_name,
            "signer_title": self.signer_title,
            "signature_date": to_utc_z(self.signature_date) if self.signature_date else None,
            "is_signed": self.signature is not None,
            "is_invoiced": self.is_invoiced,
            "invoice_id": self.invoice_id,
            "total_amount": format_cents(self.total_amount_cents),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class DeliveryNoteItem(db.Model):
    """
    Line on a delivery note.

    product_id is a weak reference (no FK): the product may be deleted
    later, product_name and unit are captured at creation time.
    """
    __tablename__ = "delivery_note_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    delivery_note_id = db.Column(
        db.Integer,
        db.ForeignKey("delivery_notes.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    product_id = db.Column(db.Integer, nullable=False, index=True)
    product_name = db.Column(db.String(200), nullable=False)

    quantity = db.Column(db.Numeric(12, 3), nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    total_price_cents = db.Column(db.Integer, nullable=False)
    unit = db.Column(db.String(20), nullable=False, default="adet")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    delivery_note = db.relationship("DeliveryNote", back_populates="items")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "delivery_note_id": self.delivery_note_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": format_quantity(self.quantity),
            "unit_price": format_cents(self.unit_price_cents),
            "total_price": format_cents(self.total_price_cents),
            "unit": self.unit,
        }
