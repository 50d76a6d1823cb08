# backend/sahacrm/api_errors.py
from flask import jsonify

from .validation import ConflictError, NotFoundError, ValidationError


def error_response(exc: ValueError):
    """
    JSON error body for a domain error.

    NotFoundError -> 404, ValidationError -> 400, other ConflictErrors
    (including OverpaymentError) -> 409. ConflictErrors carry details.
    """
    body = {"error": str(exc)}
    details = getattr(exc, "details", None)
    if details:
        body["details"] = details

    if isinstance(exc, NotFoundError):
        return jsonify(body), 404
    if isinstance(exc, ConflictError):
        return jsonify(body), 409
    if isinstance(exc, ValidationError):
        return jsonify(body), 400
    return jsonify(body), 400
