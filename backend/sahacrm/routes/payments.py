# Overview: Flask API routes for payments operations; parses input and returns JSON responses.

"""
Payment API Routes

DESIGN:
- Record a payment, optionally allocated to one invoice
- Overpayment is rejected with 409 and the invoice's remaining amount
- Amounts travel as decimal strings ("400.00")
"""

from flask import Blueprint, request, jsonify, current_app

from ..api_errors import error_response
from ..services import payment_service
from ..validation import (
    ConflictError,
    ValidationError,
    parse_amount_cents,
    parse_date,
    parse_id,
    parse_text,
)


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


@payments_bp.post("")
def record_payment_route():
    """
    Record a payment.

    Request body:
    {
        "customer_id": 1,
        "amount": "400.00",
        "payment_method": "cash",  (cash, credit_card, bank_transfer, check)
        "invoice_id": 12,  (optional)
        "cash_register_id": 2,  (optional)
        "reference_number": "MAKBUZ-881",  (optional, defaults to TAH-{id})
        "notes": "...",  (optional)
        "payment_date": "2026-10-19"  (optional, defaults to today)
    }

    Returns:
        201: Payment, plus the updated invoice when allocated
        400: Invalid input
        404: Customer, invoice or cash register not found
        409: Overpayment, invoice of another customer, inactive cash register
    """
    try:
        data = request.get_json(silent=True) or {}

        payment = payment_service.record_payment(
            customer_id=parse_id(data.get("customer_id"), "customer_id"),
            amount_cents=parse_amount_cents(data.get("amount"), "amount"),
            payment_method=parse_text(data.get("payment_method"), "payment_method", required=True),
            invoice_id=parse_id(data.get("invoice_id"), "invoice_id", required=False),
            cash_register_id=parse_id(data.get("cash_register_id"), "cash_register_id", required=False),
            reference_number=parse_text(data.get("reference_number"), "reference_number", max_length=128),
            notes=parse_text(data.get("notes"), "notes", max_length=2000),
            payment_date=parse_date(data.get("payment_date"), "payment_date"),
        )

        return jsonify({
            "payment": payment.to_dict(),
            "invoice": payment.invoice.to_dict() if payment.invoice else None,
        }), 201

    except (ValidationError, ConflictError) as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.get("/<int:payment_id>")
def get_payment_route(payment_id: int):
    try:
        payment = payment_service.get_payment(payment_id)
        return jsonify(payment.to_dict()), 200

    except (ValidationError, ConflictError) as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get payment")
        return jsonify({"error": "Internal server error"}), 500
