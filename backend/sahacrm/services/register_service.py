# Overview: Service-layer operations for cash registers; encapsulates business logic and database work.

"""
Cash Register Service

WHY: Collected payments land in a named cash pool ("kasa"). Registers are
never deleted (payments keep pointing at them); they are deactivated instead
and stop accepting new payments.

The balance only moves through payment_service (atomic increment).
"""

from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import CashRegister
from ..validation import ConflictError, NotFoundError, ValidationError


def create_cash_register(name: str, opening_balance_cents: int = 0) -> CashRegister:
    """
    Create a new cash register.

    Args:
        name: Unique display name (e.g., "Merkez Kasa")
        opening_balance_cents: Cash already in the register (in cents, >= 0)
    """
    name = (name or "").strip()
    if not name:
        raise ValidationError("name is required")
    if opening_balance_cents < 0:
        raise ValidationError("opening_balance must be >= 0")

    existing = db.session.query(CashRegister).filter_by(name=name).first()
    if existing:
        raise ConflictError(f"Cash register '{name}' already exists", details={"name": name})

    register = CashRegister(name=name, balance_cents=opening_balance_cents, is_active=True)
    db.session.add(register)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(f"Cash register '{name}' already exists", details={"name": name})

    return register


def list_cash_registers(include_inactive: bool = False) -> list[CashRegister]:
    query = db.session.query(CashRegister)
    if not include_inactive:
        query = query.filter_by(is_active=True)
    return query.order_by(CashRegister.name).all()


def get_cash_register(register_id: int) -> CashRegister:
    register = db.session.get(CashRegister, register_id)
    if not register:
        raise NotFoundError(f"Cash register {register_id} not found")
    return register


def deactivate_cash_register(register_id: int) -> CashRegister:
    """Soft delete: history is kept, new payments are refused."""
    register = get_cash_register(register_id)
    if not register.is_active:
        raise ConflictError(
            f"Cash register '{register.name}' is already inactive",
            details={"cash_register_id": register_id},
        )
    register.is_active = False
    db.session.commit()
    return register
