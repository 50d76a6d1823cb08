# Overview: Flask API routes for invoice operations; parses input and returns JSON responses.

"""
Invoice API Routes

DESIGN:
- Invoices are only created by consolidating delivered delivery notes
- Consolidation is all-or-nothing (see invoice_service)
- Sending and renumbering are the only edits after creation
"""

from flask import Blueprint, request, jsonify, current_app

from ..api_errors import error_response
from ..services import invoice_service, payment_service
from ..validation import (
    ConflictError,
    ValidationError,
    parse_date,
    parse_id,
    parse_id_list,
    parse_text,
)


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


@invoices_bp.post("/from-delivery-notes")
def create_invoice_from_delivery_notes_route():
    """
    Consolidate delivery notes into one invoice.

    Request body:
    {
        "customer_id": 1,
        "delivery_note_ids": [4, 5],
        "invoice_number": "FAT-2026-0001",  (optional, must be unused)
        "invoice_date": "2026-10-19",  (optional, defaults to today)
        "notes": "..."  (optional)
    }

    Returns:
        201: Invoice with merged items and the consolidated delivery notes
        400: Invalid input
        404: Customer or delivery note not found
        409: Delivery notes of another customer, not delivered, or already invoiced
    """
    try:
        data = request.get_json(silent=True) or {}

        invoice = invoice_service.create_invoice_from_delivery_notes(
            customer_id=parse_id(data.get("customer_id"), "customer_id"),
            delivery_note_ids=parse_id_list(data.get("delivery_note_ids"), "delivery_note_ids"),
            invoice_number=parse_text(data.get("invoice_number"), "invoice_number", max_length=64),
            invoice_date=parse_date(data.get("invoice_date"), "invoice_date"),
            notes=parse_text(data.get("notes"), "notes", max_length=2000),
        )

        payload = invoice.to_dict(include_items=True)
        payload["delivery_notes"] = [
            n.to_dict() for n in invoice_service.get_invoice_delivery_notes(invoice.id)
        ]
        return jsonify(payload), 201

    except (ValidationError, ConflictError) as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create invoice from delivery notes")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("")
def list_invoices_route():
    """Query params: customer_id, status."""
    try:
        invoices = invoice_service.list_invoices(
            customer_id=parse_id(request.args.get("customer_id"), "customer_id", required=False),
            status=request.args.get("status") or None,
        )
        return jsonify({"items": [i.to_dict() for i in invoices]}), 200

    except (ValidationError, ConflictError) as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list invoices")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("/<int:invoice_id>")
def get_invoice_route(invoice_id: int):
    """Invoice with items and its payments."""
    try:
        invoice = invoice_service.get_invoice(invoice_id)
        payload = invoice.to_dict(include_items=True)
        payload["payments"] = [p.to_dict() for p in payment_service.list_invoice_payments(invoice_id)]
        return jsonify(payload), 200

    except (ValidationError, ConflictError) as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("/<int:invoice_id>/delivery-notes")
def get_invoice_delivery_notes_route(invoice_id: int):
    try:
        notes = invoice_service.get_invoice_delivery_notes(invoice_id)
        return jsonify({"items": [n.to_dict(include_items=True) for n in notes]}), 200

    except (ValidationError, ConflictError) as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get invoice delivery notes")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.put("/<int:invoice_id>/send")
def send_invoice_route(invoice_id: int):
    """draft -> sent."""
    try:
        invoice = invoice_service.send_invoice(invoice_id)
        return jsonify(invoice.to_dict()), 200

    except (ValidationError, ConflictError) as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to send invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.put("/<int:invoice_id>/number")
def renumber_invoice_route(invoice_id: int):
    """
    Replace the invoice number.

    Request body: {"invoice_number": "GIB2026000000123"}
    """
    try:
        data = request.get_json(silent=True) or {}
        invoice = invoice_service.renumber_invoice(
            invoice_id,
            parse_text(data.get("invoice_number"), "invoice_number", required=True, max_length=64),
        )
        return jsonify(invoice.to_dict()), 200

    except (ValidationError, ConflictError) as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to renumber invoice")
        return jsonify({"error": "Internal server error"}), 500
