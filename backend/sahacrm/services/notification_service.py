# Overview: Service-layer operations for outbound notifications; encapsulates business logic and email delivery.

"""
Delivery Notifications

WHY: The customer gets a copy of the delivery note ("irsaliye") by email as
soon as it is signed. Delivery is best effort: the signing request never
waits for SMTP and never fails because of it.

- The message is built on the request thread (needs the request's session)
- Sending runs on a small ThreadPoolExecutor inside a fresh app context
- Every attempt is written to notification_logs (sent / failed / skipped)
"""

from __future__ import annotations

import smtplib
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from email.message import EmailMessage

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import DeliveryNote, NotificationLog
from sahacrm.money import format_cents, format_quantity
from sahacrm.time_utils import utcnow


EVENT_DELIVERY_SIGNED = "delivery_note.signed"

STATUS_SENT = "sent"
STATUS_FAILED = "failed"
STATUS_SKIPPED = "skipped"


class NotificationError(Exception):
    """Raised when an outbound notification cannot be delivered."""
    pass


@dataclass
class EmailJob:
    event_type: str
    entity_id: int
    recipient: str | None
    subject: str
    body: str


_executor: ThreadPoolExecutor | None = None
_executor_lock = threading.Lock()


def _get_executor(max_workers: int) -> ThreadPoolExecutor:
    global _executor
    with _executor_lock:
        if _executor is None:
            _executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="sahacrm-mail")
        return _executor


def shutdown_executor(wait: bool = True) -> None:
    global _executor
    with _executor_lock:
        if _executor is not None:
            _executor.shutdown(wait=wait)
            _executor = None


# =============================================================================
# MESSAGE BUILDING
# =============================================================================

def build_delivery_signed_job(note: DeliveryNote) -> EmailJob:
    customer = note.customer
    lines = [
        f"Sayın {customer.contact_person or customer.company_name},",
        "",
        f"{note.document_number} numaralı irsaliye teslim edilmiş ve imzalanmıştır.",
        "",
        f"Teslimat tarihi: {note.delivery_date.isoformat()}",
        f"Teslim alan: {note.signer_name}" + (f" ({note.signer_title})" if note.signer_title else ""),
        "",
        "Teslim edilen ürünler:",
    ]
    for item in note.items:
        lines.append(f"- {item.product_name}: {format_quantity(item.quantity)} {item.unit}")
    lines += [
        "",
        f"Toplam: {format_cents(note.total_amount_cents)}",
        "",
        "Bu e-posta otomatik olarak gönderilmiştir.",
    ]
    return EmailJob(
        event_type=EVENT_DELIVERY_SIGNED,
        entity_id=note.id,
        recipient=customer.email,
        subject=f"İrsaliye - {note.document_number} | {customer.company_name}",
        body="\n".join(lines),
    )


# =============================================================================
# DISPATCH
# =============================================================================

def notify_delivery_signed(note_id: int) -> Future | None:
    """
    Email the signed delivery note to the customer.

    Call after the signing transaction has committed. Returns the Future of
    the background job (None when mail is disabled or the job ran inline).
    Never raises.
    """
    app = current_app._get_current_object()
    if not app.config.get("MAIL_ENABLED"):
        return None

    try:
        note = db.session.get(DeliveryNote, note_id)
        if note is None:
            app.logger.warning("Delivery note %s vanished before notification", note_id)
            return None
        job = build_delivery_signed_job(note)
    except SQLAlchemyError:
        app.logger.exception("Failed to build notification for delivery note %s", note_id)
        return None

    if app.config.get("NOTIFICATIONS_INLINE"):
        _run_job(app, job)
        return None

    executor = _get_executor(app.config.get("NOTIFICATION_WORKERS", 2))
    return executor.submit(_run_job, app, job)


def _run_job(app, job: EmailJob) -> str:
    """
    Worker entry point: send, then record the attempt.

    Never raises; every outcome ends as a notification_logs row.
    """
    with app.app_context():
        status, error = STATUS_SENT, None
        if not job.recipient:
            status, error = STATUS_SKIPPED, "customer has no email address"
            app.logger.info("Skipping %s notification for %s: no recipient", job.event_type, job.entity_id)
        else:
            try:
                send_email(job.recipient, job.subject, job.body)
            except NotificationError as exc:
                status, error = STATUS_FAILED, str(exc)
                app.logger.exception("Failed to send %s notification for %s", job.event_type, job.entity_id)
            except Exception as exc:
                status, error = STATUS_FAILED, f"unexpected error: {exc}"
                app.logger.exception("Unexpected error sending %s notification for %s", job.event_type, job.entity_id)

        try:
            db.session.add(NotificationLog(
                channel="email",
                event_type=job.event_type,
                entity_id=job.entity_id,
                recipient=job.recipient,
                status=status,
                error=error,
                created_at=utcnow(),
            ))
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            app.logger.exception("Failed to record %s notification for %s", job.event_type, job.entity_id)
        return status


def send_email(recipient: str, subject: str, body: str) -> None:
    """
    Send one plain-text email through the configured SMTP server.

    Raises:
        NotificationError: on a malformed header (e.g. CR/LF in the address)
            or any SMTP or socket failure
    """
    config = current_app.config
    try:
        message = EmailMessage()
        message["From"] = config["MAIL_DEFAULT_SENDER"]
        message["To"] = recipient
        message["Subject"] = subject
        message.set_content(body)
    except ValueError as exc:
        raise NotificationError(f"Cannot build email for {recipient!r}: {exc}") from exc

    try:
        with smtplib.SMTP(config["MAIL_SERVER"], config["MAIL_PORT"], timeout=config["MAIL_TIMEOUT_SECONDS"]) as smtp:
            if config.get("MAIL_USE_TLS"):
                smtp.starttls()
            if config.get("MAIL_USERNAME"):
                smtp.login(config["MAIL_USERNAME"], config.get("MAIL_PASSWORD") or "")
            smtp.send_message(message)
    except (smtplib.SMTPException, OSError) as exc:
        raise NotificationError(f"SMTP delivery to {recipient} failed: {exc}") from exc
