import smtplib

import pytest

from sahacrm.models import DeliveryNote, NotificationLog
from sahacrm.services import notification_service
from sahacrm.services.notification_service import (
    EVENT_DELIVERY_SIGNED,
    NotificationError,
    STATUS_FAILED,
    STATUS_SENT,
    STATUS_SKIPPED,
)


class FakeSMTP:
    """Records messages instead of talking to a server."""

    sent = []
    fail_with = None

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self):
        pass

    def login(self, username, password):
        pass

    def send_message(self, message):
        if FakeSMTP.fail_with is not None:
            raise FakeSMTP.fail_with
        FakeSMTP.sent.append(message)


@pytest.fixture
def mail_enabled(app, monkeypatch):
    FakeSMTP.sent = []
    FakeSMTP.fail_with = None
    monkeypatch.setitem(app.config, "MAIL_ENABLED", True)
    monkeypatch.setitem(app.config, "NOTIFICATIONS_INLINE", True)
    monkeypatch.setattr(smtplib, "SMTP", FakeSMTP)
    return FakeSMTP


def test_build_delivery_signed_job(db_session, customer, product, make_delivery_note):
    note = make_delivery_note(customer.id, [(product.id, "2.5", 500)])

    job = notification_service.build_delivery_signed_job(db_session.get(DeliveryNote, note.id))

    assert job.recipient == customer.email
    assert note.document_number in job.subject
    assert "Ayçiçek Yağı 5L: 2.5 adet" in job.body
    assert "Teslim alan: Ayşe Kaya" in job.body


def test_notify_sends_and_logs(db_session, customer, product, make_delivery_note, mail_enabled):
    note = make_delivery_note(customer.id, [(product.id, 1, 500)])

    assert notification_service.notify_delivery_signed(note.id) is None

    assert len(mail_enabled.sent) == 1
    assert mail_enabled.sent[0]["To"] == customer.email
    log = db_session.query(NotificationLog).one()
    assert log.status == STATUS_SENT
    assert log.event_type == EVENT_DELIVERY_SIGNED == "delivery_note.signed"
    assert log.entity_id == note.id


def test_smtp_failure_is_logged_not_raised(db_session, customer, product, make_delivery_note, mail_enabled):
    note = make_delivery_note(customer.id, [(product.id, 1, 500)])
    mail_enabled.fail_with = smtplib.SMTPServerDisconnected("connection lost")

    notification_service.notify_delivery_signed(note.id)

    log = db_session.query(NotificationLog).one()
    assert log.status == STATUS_FAILED
    assert "connection lost" in log.error
    assert db_session.get(DeliveryNote, note.id).status == "delivered"


def test_customer_without_email_is_skipped(db_session, other_customer, product, make_delivery_note, mail_enabled):
    note = make_delivery_note(other_customer.id, [(product.id, 1, 500)])

    notification_service.notify_delivery_signed(note.id)

    assert mail_enabled.sent == []
    assert db_session.query(NotificationLog).one().status == STATUS_SKIPPED


def test_disabled_mail_does_nothing(db_session, customer, product, make_delivery_note):
    note = make_delivery_note(customer.id, [(product.id, 1, 500)])

    assert notification_service.notify_delivery_signed(note.id) is None
    assert db_session.query(NotificationLog).count() == 0


def test_send_email_wraps_socket_errors(app, monkeypatch):
    def _refuse(*args, **kwargs):
        raise ConnectionRefusedError("no server")

    monkeypatch.setattr(smtplib, "SMTP", _refuse)

    with pytest.raises(NotificationError):
        notification_service.send_email("a@example.com", "subject", "body")


def test_background_dispatch_returns_future(app, db_session, customer, product, make_delivery_note, mail_enabled, monkeypatch):
    monkeypatch.setitem(app.config, "NOTIFICATIONS_INLINE", False)
    note = make_delivery_note(customer.id, [(product.id, 1, 500)])

    future = notification_service.notify_delivery_signed(note.id)
    try:
        assert future.result(timeout=10) == STATUS_SENT
    finally:
        notification_service.shutdown_executor()

    assert len(mail_enabled.sent) == 1


INJECTED_EMAIL = "a@example.com\r\nBcc: evil@example.com"


def test_malformed_recipient_fails_without_breaking_sign(client, db_session, customer, product, make_delivery_note, mail_enabled):
    customer.email = INJECTED_EMAIL
    db_session.commit()
    note = make_delivery_note(customer.id, [(product.id, 1, 500)], signed=False)

    response = client.put(f"/api/delivery-notes/{note.id}/sign", json={
        "signature": "data:image/png;base64,iVBORw0KGgo=",
        "signer_name": "Ayşe Kaya",
    })

    assert response.status_code == 200
    assert response.get_json()["status"] == "delivered"
    assert mail_enabled.sent == []
    log = db_session.query(NotificationLog).one()
    assert log.status == STATUS_FAILED
    assert "Cannot build email" in log.error


def test_malformed_recipient_in_background_is_recorded(app, db_session, customer, product, make_delivery_note, mail_enabled, monkeypatch):
    monkeypatch.setitem(app.config, "NOTIFICATIONS_INLINE", False)
    customer.email = INJECTED_EMAIL
    db_session.commit()
    note = make_delivery_note(customer.id, [(product.id, 1, 500)])

    future = notification_service.notify_delivery_signed(note.id)
    try:
        assert future.result(timeout=10) == STATUS_FAILED
        assert future.exception() is None
    finally:
        notification_service.shutdown_executor()

    assert mail_enabled.sent == []
    assert db_session.query(NotificationLog).one().status == STATUS_FAILED


def test_unexpected_send_error_is_recorded_as_failed(db_session, customer, product, make_delivery_note, mail_enabled):
    note = make_delivery_note(customer.id, [(product.id, 1, 500)])
    mail_enabled.fail_with = RuntimeError("transport bug")

    notification_service.notify_delivery_signed(note.id)

    log = db_session.query(NotificationLog).one()
    assert log.status == STATUS_FAILED
    assert "transport bug" in log.error
