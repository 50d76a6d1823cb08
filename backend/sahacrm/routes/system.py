# backend/sahacrm/routes/system.py
"""
System health endpoint.

Reports database connectivity and the last allocated document numbers,
which is enough to spot a stuck or reset sequence after a deployment.
"""

import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy import text

from ..extensions import db
from ..models import DocumentSequence
from ..services.document_service import SEQUENCE_DELIVERY_NOTE, SEQUENCE_INVOICE, peek_current_value

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and sequence table accessibility.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        db.session.execute(text("SELECT 1"))
        details = {
            "invoice_sequence": peek_current_value(SEQUENCE_INVOICE),
            "delivery_note_sequence": peek_current_value(SEQUENCE_DELIVERY_NOTE),
            "sequences": [
                seq.to_dict()
                for seq in db.session.query(DocumentSequence).order_by(DocumentSequence.name)
            ],
        }
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": details,
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        db.session.rollback()
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


@system_bp.get("/health")
def health():
    database = check_database_health()
    status_code = 200 if database["status"] == "healthy" else 503
    return jsonify({
        "status": "ok" if status_code == 200 else "degraded",
        "checks": {"database": database},
    }), status_code
