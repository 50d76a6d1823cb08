# Overview: Flask API routes for cash register operations; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app

from ..api_errors import error_response
from ..services import register_service
from ..validation import ConflictError, ValidationError, parse_amount_cents, parse_bool, parse_text


cash_registers_bp = Blueprint("cash_registers", __name__, url_prefix="/api/cash-registers")


@cash_registers_bp.get("")
def list_cash_registers_route():
    """Active registers; include_inactive=true lists all."""
    try:
        include_inactive = bool(parse_bool(request.args.get("include_inactive"), "include_inactive"))
        registers = register_service.list_cash_registers(include_inactive=include_inactive)
        return jsonify({"items": [r.to_dict() for r in registers]}), 200

    except (ValidationError, ConflictError) as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list cash registers")
        return jsonify({"error": "Internal server error"}), 500


@cash_registers_bp.post("")
def create_cash_register_route():
    """
    Create a cash register.

    Request body: {"name": "Merkez Kasa", "opening_balance": "0.00"}
    """
    try:
        data = request.get_json(silent=True) or {}
        opening = data.get("opening_balance")
        register = register_service.create_cash_register(
            parse_text(data.get("name"), "name", required=True, max_length=128),
            opening_balance_cents=parse_amount_cents(opening, "opening_balance", allow_zero=True) if opening is not None else 0,
        )
        return jsonify(register.to_dict()), 201

    except (ValidationError, ConflictError) as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create cash register")
        return jsonify({"error": "Internal server error"}), 500


@cash_registers_bp.post("/<int:register_id>/deactivate")
def deactivate_cash_register_route(register_id: int):
    try:
        register = register_service.deactivate_cash_register(register_id)
        return jsonify(register.to_dict()), 200

    except (ValidationError, ConflictError) as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to deactivate cash register")
        return jsonify({"error": "Internal server error"}), 500
