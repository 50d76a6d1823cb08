from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from sahacrm.money import format_cents
from sahacrm.time_utils import to_iso_date, to_utc_z


class LedgerImmutableError(RuntimeError):
    """Raised when code tries to modify or delete an account movement."""


class AccountMovement(db.Model):
    """
    Customer current-account ("cari hesap") movement.

    APPEND-ONLY: rows are never updated or deleted. The customer balance is
    not stored anywhere; it is always the sum of debit minus credit over
    these rows.

    - movement_type "invoice": debit_amount_cents > 0, credit is 0
    - movement_type "payment": credit_amount_cents > 0, debit is 0
    - reference_id points at the invoice/payment by id only (weak reference)
    - movement_date is business date; created_at is system time and breaks
      ties between movements on the same date
    """
    __tablename__ = "account_movements"
    __table_args__ = (
        db.CheckConstraint(
            "debit_amount_cents >= 0 AND credit_amount_cents >= 0 "
            "AND ((debit_amount_cents > 0) <> (credit_amount_cents > 0))",
            name="ck_account_movements_single_side",
        ),
        db.Index("ix_account_movements_customer_date", "customer_id", "movement_date", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    movement_date = db.Column(db.Date, nullable=False)
    movement_type = db.Column(db.String(16), nullable=False, index=True)  # invoice, payment

    reference_id = db.Column(db.Integer, nullable=False)
    reference_number = db.Column(db.String(64), nullable=True)
    description = db.Column(db.String(255), nullable=True)

    debit_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    credit_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    customer = db.relationship("Customer", backref=db.backref("account_movements", lazy=True))

    @property
    def signed_amount_cents(self) -> int:
        return (self.debit_amount_cents or 0) - (self.credit_amount_cents or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "movement_date": to_iso_date(self.movement_date),
            "movement_type": self.movement_type,
            "reference_id": self.reference_id,
            "reference_number": self.reference_number,
            "description": self.description,
            "debit_amount": format_cents(self.debit_amount_cents),
            "credit_amount": format_cents(self.credit_amount_cents),
            "created_at": to_utc_z(self.created_at),
        }


@event.listens_for(AccountMovement, "before_update")
def _reject_movement_update(mapper, connection, target):
    raise LedgerImmutableError(f"Account movement {target.id} is append-only")


@event.listens_for(AccountMovement, "before_delete")
def _reject_movement_delete(mapper, connection, target):
    raise LedgerImmutableError(f"Account movement {target.id} is append-only")
