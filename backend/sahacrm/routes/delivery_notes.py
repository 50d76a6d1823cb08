# Overview: Flask API routes for delivery note operations; parses input and returns JSON responses.

"""
Delivery Note API Routes

DESIGN:
- Create pending delivery notes with items (prices as decimal strings)
- Sign: pending -> delivered; the customer is emailed a copy afterwards
- Delete: pending notes only
- Ready-for-invoicing list feeds the consolidation screen
"""

from flask import Blueprint, request, jsonify, current_app

from ..api_errors import error_response
from ..services import delivery_service, notification_service
from ..validation import (
    ConflictError,
    ValidationError,
    parse_amount_cents,
    parse_bool,
    parse_date,
    parse_id,
    parse_quantity,
    parse_text,
)


delivery_notes_bp = Blueprint("delivery_notes", __name__, url_prefix="/api/delivery-notes")


def _parse_items(raw_items) -> list[dict]:
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("items must be a non-empty list")
    items = []
    for index, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{index}] must be an object")
        items.append({
            "product_id": parse_id(raw.get("product_id"), f"items[{index}].product_id"),
            "quantity": parse_quantity(raw.get("quantity"), f"items[{index}].quantity"),
            "unit_price_cents": parse_amount_cents(raw.get("unit_price"), f"items[{index}].unit_price", allow_zero=True),
            "unit": parse_text(raw.get("unit"), f"items[{index}].unit", max_length=20),
            "product_name": parse_text(raw.get("product_name"), f"items[{index}].product_name", max_length=200),
        })
    return items


@delivery_notes_bp.post("")
def create_delivery_note_route():
    """
    Create a pending delivery note.

    Request body:
    {
        "customer_id": 1,
        "order_id": 7,  (optional)
        "delivery_date": "2026-10-19",  (optional, defaults to today)
        "delivery_address": "...",  (optional, defaults to customer address)
        "notes": "...",  (optional)
        "items": [{"product_id": 3, "quantity": "10", "unit_price": "5.00", "unit": "adet"}]
    }

    Returns:
        201: Delivery note with items
        400: Invalid input
        404: Customer or order not found
        409: Order belongs to another customer
    """
    try:
        data = request.get_json(silent=True) or {}

        note = delivery_service.create_delivery_note(
            customer_id=parse_id(data.get("customer_id"), "customer_id"),
            order_id=parse_id(data.get("order_id"), "order_id", required=False),
            delivery_date=parse_date(data.get("delivery_date"), "delivery_date"),
            delivery_address=parse_text(data.get("delivery_address"), "delivery_address", max_length=1000),
            notes=parse_text(data.get("notes"), "notes", max_length=2000),
            items=_parse_items(data.get("items")),
        )
        return jsonify(note.to_dict(include_items=True)), 201

    except (ValidationError, ConflictError) as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create delivery note")
        return jsonify({"error": "Internal server error"}), 500


@delivery_notes_bp.get("")
def list_delivery_notes_route():
    """Query params: status, customer_id, is_invoiced."""
    try:
        notes = delivery_service.list_delivery_notes(
            status=request.args.get("status") or None,
            customer_id=parse_id(request.args.get("customer_id"), "customer_id", required=False),
            is_invoiced=parse_bool(request.args.get("is_invoiced"), "is_invoiced"),
        )
        return jsonify({"items": [n.to_dict() for n in notes]}), 200

    except (ValidationError, ConflictError) as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list delivery notes")
        return jsonify({"error": "Internal server error"}), 500


@delivery_notes_bp.get("/ready-for-invoicing")
def ready_for_invoicing_route():
    """Signed, not yet invoiced notes, with items (oldest delivery first)."""
    try:
        customer_id = parse_id(request.args.get("customer_id"), "customer_id", required=False)
        notes = delivery_service.list_ready_for_invoicing(customer_id)
        return jsonify({"items": [n.to_dict(include_items=True) for n in notes]}), 200

    except (ValidationError, ConflictError) as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list delivery notes ready for invoicing")
        return jsonify({"error": "Internal server error"}), 500


@delivery_notes_bp.get("/<int:note_id>")
def get_delivery_note_route(note_id: int):
    try:
        note = delivery_service.get_delivery_note(note_id)
        return jsonify(note.to_dict(include_items=True)), 200

    except (ValidationError, ConflictError) as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get delivery note")
        return jsonify({"error": "Internal server error"}), 500


@delivery_notes_bp.put("/<int:note_id>/sign")
def sign_delivery_note_route(note_id: int):
    """
    Record the customer's signature.

    Request body:
    {
        "signature": "data:image/png;base64,...",
        "signer_name": "Ayşe Yılmaz",
        "signer_title": "Depo Sorumlusu"  (optional)
    }

    Returns:
        200: Signed delivery note
        400: Missing signature or signer name
        404: Delivery note not found
        409: Delivery note is not pending
    """
    try:
        data = request.get_json(silent=True) or {}

        note = delivery_service.sign_delivery_note(
            note_id,
            signature=parse_text(data.get("signature"), "signature", required=True),
            signer_name=parse_text(data.get("signer_name"), "signer_name", required=True, max_length=128),
            signer_title=parse_text(data.get("signer_title"), "signer_title", max_length=128),
        )

        # Committed; the email goes out in the background
        notification_service.notify_delivery_signed(note.id)

        return jsonify(note.to_dict(include_items=True)), 200

    except (ValidationError, ConflictError) as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to sign delivery note")
        return jsonify({"error": "Internal server error"}), 500


@delivery_notes_bp.delete("/<int:note_id>")
def delete_delivery_note_route(note_id: int):
    """
    Delete a pending delivery note and its items.

    Returns:
        200: Deleted
        404: Delivery note not found
        409: Delivery note is already signed or invoiced
    """
    try:
        delivery_service.delete_delivery_note(note_id)
        return jsonify({"message": "Delivery note deleted", "id": note_id}), 200

    except (ValidationError, ConflictError) as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete delivery note")
        return jsonify({"error": "Internal server error"}), 500
