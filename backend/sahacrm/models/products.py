from __future__ import annotations

from ..extensions import db


class Product(db.Model):
    """
    Product catalog entry.

    Line items never hold a foreign key to this table: they keep the id for
    lookups plus a name/unit snapshot, so a deleted product does not break
    delivery or invoice history.
    """
    __tablename__ = "products"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    unit = db.Column(db.String(20), nullable=False, default="adet")
    price_cents = db.Column(db.Integer, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
