from __future__ import annotations

from ..extensions import db
from sahacrm.money import format_cents
from sahacrm.time_utils import to_utc_z


class CashRegister(db.Model):
    """
    Named cash pool ("kasa") that accumulates collected payments.

    Independent of any customer. balance_cents only changes through
    payments, as an atomic SQL increment.
    """
    __tablename__ = "cash_registers"
    __table_args__ = (
        db.UniqueConstraint("name", name="uq_cash_registers_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    balance_cents = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "balance": format_cents(self.balance_cents),
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
