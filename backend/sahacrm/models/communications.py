from __future__ import annotations

from ..extensions import db


class NotificationLog(db.Model):
    """
    One row per outbound notification attempt (sent, failed or skipped).

    Written by the notification worker after the triggering transaction
    has committed; never part of that transaction.
    """
    __tablename__ = "notification_logs"
    __table_args__ = (
        db.Index("ix_notification_logs_event_entity", "event_type", "entity_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    channel = db.Column(db.String(16), nullable=False, default="email")
    event_type = db.Column(db.String(64), nullable=False)
    entity_id = db.Column(db.Integer, nullable=False)
    recipient = db.Column(db.String(255), nullable=True)
    status = db.Column(db.String(16), nullable=False, index=True)  # sent, failed, skipped
    error = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
