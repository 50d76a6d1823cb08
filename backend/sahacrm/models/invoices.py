from __future__ import annotations

from ..extensions import db
from sahacrm.money import format_cents, format_quantity
from sahacrm.time_utils import to_iso_date, to_utc_z


class Invoice(db.Model):
    """
    Invoice ("fatura") consolidated from one or more delivered delivery notes.

    PAYMENT TRACKING (all amounts in cents):
    - total_amount_cents: subtotal (sum of delivery note totals) + flat tax
    - paid_amount_cents: only ever increases
    - remaining_amount_cents: total - paid, never negative

    STATUS: draft -> sent (optional), then unpaid / partial / paid as
    payments are applied.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.UniqueConstraint("document_number", name="uq_invoices_document_number"),
        db.CheckConstraint("remaining_amount_cents >= 0", name="ck_invoices_remaining_non_negative"),
        db.CheckConstraint("paid_amount_cents <= total_amount_cents", name="ck_invoices_paid_within_total"),
        db.Index("ix_invoices_customer_status", "customer_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable document number (e.g., "FAT-261019-000007")
    document_number = db.Column(db.String(64), nullable=False)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    invoice_date = db.Column(db.Date, nullable=False, index=True)
    due_date = db.Column(db.Date, nullable=True)

    subtotal_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    paid_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    remaining_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default="draft", index=True)  # draft, sent, unpaid, partial, paid

    notes = db.Column(db.Text, nullable=True)
    sent_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    customer = db.relationship("Customer", backref=db.backref("invoices", lazy=True))
    items = db.relationship(
        "InvoiceItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="InvoiceItem.id",
        lazy=True,
    )

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "document_number": self.document_number,
            "customer_id": self.customer_id,
            "customer_name": self.customer.company_name if self.customer else None,
            "invoice_date": to_iso_date(self.invoice_date),
            "due_date": to_iso_date(self.due_date),
            "subtotal_amount": format_cents(self.subtotal_amount_cents),
            "tax_amount": format_cents(self.tax_amount_cents),
            "total_amount": format_cents(self.total_amount_cents),
            "paid_amount": format_cents(self.paid_amount_cents),
            "remaining_amount": format_cents(self.remaining_amount_cents),
            "status": self.status,
            "notes": self.notes,
            "sent_at": to_utc_z(self.sent_at) if self.sent_at else None,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class InvoiceItem(db.Model):
    """
    Merged invoice line: one row per product across all source delivery notes.

    unit_price_cents is the first-seen delivery price for the product;
    quantities are summed, prices are never averaged.
    """
    __tablename__ = "invoice_items"
    __table_args__ = (
        db.UniqueConstraint("invoice_id", "product_id", name="uq_invoice_items_invoice_product"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(
        db.Integer,
        db.ForeignKey("invoices.id", ondelete="CASCADE"),
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

    invoice = db.relationship("Invoice", back_populates="items")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": format_quantity(self.quantity),
            "unit_price": format_cents(self.unit_price_cents),
            "total_price": format_cents(self.total_price_cents),
            "unit": self.unit,
        }


class Payment(db.Model):
    """
    Collected payment ("tahsilat").

    invoice_id is optional: unallocated payments (advances, floating credit)
    still credit the customer's account and the receiving cash register.
    Immutable once created.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_payments_amount_positive"),
        db.Index("ix_payments_customer_date", "customer_id", "payment_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=True, index=True)
    cash_register_id = db.Column(db.Integer, db.ForeignKey("cash_registers.id"), nullable=True, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    payment_method = db.Column(db.String(32), nullable=False)  # cash, credit_card, bank_transfer, check
    reference_number = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    payment_date = db.Column(db.Date, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    customer = db.relationship("Customer", backref=db.backref("payments", lazy=True))
    invoice = db.relationship("Invoice", backref=db.backref("payments", lazy=True, order_by="Payment.id"))
    cash_register = db.relationship("CashRegister", backref=db.backref("payments", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "invoice_id": self.invoice_id,
            "invoice_number": self.invoice.document_number if self.invoice else None,
            "cash_register_id": self.cash_register_id,
            "cash_register_name": self.cash_register.name if self.cash_register else None,
            "amount": format_cents(self.amount_cents),
            "payment_method": self.payment_method,
            "reference_number": self.reference_number,
            "notes": self.notes,
            "payment_date": to_iso_date(self.payment_date),
            "created_at": to_utc_z(self.created_at),
        }
