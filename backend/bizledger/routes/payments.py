# Overview: Flask API routes for payments operations; parses input and returns JSON responses.

from flask import Blueprint, request, g

from ..services.ledger_service import QUICK_PAYMENT_METHODS, record_quick_payment
from ..validation import to_amount, to_choice
from ..decorators import require_actor, json_errors

payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


@payments_bp.post("/quick")
@require_actor
@json_errors
def quick_payment():
    """
    Standalone cash-drawer payment not tied to an invoice.

    Body: {amount, method, type?: "walkin"|..., reference?, notes?}
    """
    payload = request.get_json(silent=True) or {}
    amount = to_amount(payload.get("amount"), "amount")
    method = to_choice(payload.get("method"), "method", QUICK_PAYMENT_METHODS)

    tx = record_quick_payment(
        amount=amount,
        method=method,
        payer_type=payload.get("type"),
        reference=payload.get("reference"),
        notes=payload.get("notes"),
        actor=g.actor_id,
    )
    return {"message": "Payment recorded successfully", "transaction": tx.to_dict()}, 201
