# Overview: Service-layer operations for document numbering; encapsulates business logic and database work.

from __future__ import annotations

from datetime import date

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import DocumentSequence
from ..validation import ConflictError
from sahacrm.time_utils import today
from .concurrency import affected_rows


SEQUENCE_INVOICE = "invoice"
SEQUENCE_DELIVERY_NOTE = "delivery_note"

DOCUMENT_PREFIXES = {
    SEQUENCE_INVOICE: "FAT",
    SEQUENCE_DELIVERY_NOTE: "IRS",
}

COUNTER_PAD = 6


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


class DuplicateDocumentNumber(Exception):
    """A generated document number collided with an existing row."""

    def __init__(self, document_number: str, kind: str):
        super().__init__(f"Document number {document_number} already exists")
        self.document_number = document_number
        self.kind = kind


def format_document_number(kind: str, value: int, on_date: date) -> str:
    prefix = DOCUMENT_PREFIXES[kind]
    return f"{prefix}-{on_date:%y%m%d}-{value:0{COUNTER_PAD}d}"


def next_document_number(kind: str, *, on_date: date | None = None, skip: int = 0) -> str:
    """
    Atomically allocate the next document number for a document kind.

    Runs inside the caller's transaction: the counter row stays write-locked
    until the caller commits, and a rollback gives the number back.
    `skip` advances past numbers known to be taken (collision retry).

    Format: PREFIX-YYMMDD-NNNNNN. The date is informational; the counter
    is global per kind, so numbers never repeat across days.
    """
    if kind not in DOCUMENT_PREFIXES:
        raise DocumentSequenceError(f"Unknown document kind: {kind}")
    if skip < 0:
        raise DocumentSequenceError("skip must be >= 0")

    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.name == kind)
        .values(current_value=DocumentSequence.current_value + 1 + skip)
    )

    result = db.session.execute(stmt)
    if not affected_rows(result):
        seq = DocumentSequence(name=kind, current_value=1 + skip)
        db.session.add(seq)
        try:
            db.session.flush()
        except IntegrityError:
            # Another transaction created the row first; retry the whole unit of work.
            db.session.rollback()
            raise StaleDataError(f"Document sequence '{kind}' created concurrently")

    current = (
        db.session.query(DocumentSequence.current_value)
        .filter(DocumentSequence.name == kind)
        .scalar()
    )
    return format_document_number(kind, current, on_date or today())


def peek_current_value(kind: str) -> int:
    """Last allocated counter value for a kind (0 if never used)."""
    value = (
        db.session.query(DocumentSequence.current_value)
        .filter(DocumentSequence.name == kind)
        .scalar()
    )
    return value or 0


def is_document_number_collision(exc: IntegrityError) -> bool:
    return "document_number" in str(getattr(exc, "orig", exc))


def flush_numbered_document(document, *, kind: str, manual: bool) -> None:
    """
    Flush a freshly added numbered document, translating unique-number
    violations: a generated number raises DuplicateDocumentNumber (retryable),
    a caller-supplied number is a ConflictError.
    """
    try:
        db.session.flush()
    except IntegrityError as exc:
        if not is_document_number_collision(exc):
            raise
        if manual:
            raise ConflictError(
                f"Document number {document.document_number} is already in use",
                details={"document_number": document.document_number},
            )
        raise DuplicateDocumentNumber(document.document_number, kind) from exc


def retry_on_collision(func):
    """
    Call func(skip) once; on DuplicateDocumentNumber call it exactly once more
    with a freshly allocated number. A second collision propagates.
    """
    try:
        return func(0)
    except DuplicateDocumentNumber as exc:
        db.session.rollback()
        current_app.logger.warning(
            "Document number collision on %s (%s); retrying with a fresh number",
            exc.document_number,
            exc.kind,
        )
        return func(1)
