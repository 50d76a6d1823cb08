# Overview: Flask API routes for customer account (cari) operations; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app

from ..api_errors import error_response
from ..services import ledger_service, payment_service
from ..validation import ConflictError, ValidationError, parse_bool, parse_date
from sahacrm.money import format_cents

"""
Time semantics:
- API accepts ISO-8601 calendar dates (YYYY-MM-DD).
- as_of filtering is inclusive: movement_date <= as_of.
- Statement windows are inclusive on both ends.
"""

accounts_bp = Blueprint("accounts", __name__, url_prefix="/api/customers")


@accounts_bp.get("/<int:customer_id>/account-summary")
def account_summary_route(customer_id: int):
    """
    Current account summary.

    Returns:
        200: {"total_debit": "1000.00", "total_credit": "400.00", "balance": "600.00"}
    """
    try:
        as_of = parse_date(request.args.get("as_of"), "as_of")
        summary = ledger_service.get_account_summary(customer_id, as_of=as_of)
        return jsonify({
            "customer_id": summary["customer_id"],
            "as_of": summary["as_of"],
            "total_debit": format_cents(summary["total_debit_cents"]),
            "total_credit": format_cents(summary["total_credit_cents"]),
            "balance": format_cents(summary["balance_cents"]),
        }), 200

    except (ValidationError, ConflictError) as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get account summary")
        return jsonify({"error": "Internal server error"}), 500


@accounts_bp.get("/<int:customer_id>/movements")
def account_movements_route(customer_id: int):
    """
    Account statement ("ekstre") with running balance.

    Query params: start_date, end_date, opening_balance (true to start the
    running balance from the balance before start_date).
    """
    try:
        statement = ledger_service.build_statement(
            customer_id,
            start_date=parse_date(request.args.get("start_date"), "start_date"),
            end_date=parse_date(request.args.get("end_date"), "end_date"),
            include_opening_balance=bool(parse_bool(request.args.get("opening_balance"), "opening_balance")),
        )
        return jsonify(statement.to_dict()), 200

    except (ValidationError, ConflictError) as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to build account statement")
        return jsonify({"error": "Internal server error"}), 500


@accounts_bp.get("/<int:customer_id>/invoices")
def customer_invoices_route(customer_id: int):
    try:
        invoices = ledger_service.list_customer_invoices(customer_id)
        return jsonify({"items": [i.to_dict() for i in invoices]}), 200

    except (ValidationError, ConflictError) as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list customer invoices")
        return jsonify({"error": "Internal server error"}), 500


@accounts_bp.get("/<int:customer_id>/payments")
def customer_payments_route(customer_id: int):
    try:
        payments = payment_service.list_customer_payments(customer_id)
        return jsonify({"items": [p.to_dict() for p in payments]}), 200

    except (ValidationError, ConflictError) as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list customer payments")
        return jsonify({"error": "Internal server error"}), 500
