# Overview: Flask API routes for transactions operations; parses input and returns JSON responses.

"""
Time semantics:
- API accepts ISO-8601 datetimes with Z/offsets; backend normalizes to UTC-naive internally.
- startDate/endDate filters are inclusive; a date-only endDate covers that whole day.
"""
from flask import Blueprint, request, g, current_app

from ..errors import ValidationError
from ..models import Transaction
from ..models.ledger import ACCOUNTS, TRANSACTION_CATEGORIES, TRANSACTION_TYPES
from ..services import ledger_service, reporting_service
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    to_choice,
    parse_pagination,
    parse_date_range,
)
from ..decorators import require_actor, json_errors

MANUAL_TRANSACTION_POLICY = ModelValidationPolicy(
    writable_fields={
        "type", "category", "amount", "description", "account", "date",
        "paymentMethod", "reference", "customerId", "supplierId", "tags", "notes",
    },
    required_on_create={"type", "category", "amount", "description", "account"},
    aliases={
        "paymentMethod": "payment_method",
        "customerId": "customer_id",
        "supplierId": "supplier_id",
    },
)

ANNOTATION_POLICY = ModelValidationPolicy(writable_fields={"description", "tags", "notes"})

transactions_bp = Blueprint("transactions", __name__, url_prefix="/api/transactions")


@transactions_bp.get("")
@require_actor
@json_errors
def list_transactions():
    """
    Query params: page, limit, type, category, account, customerId,
    supplierId, startDate, endDate, search.
    """
    page, limit = parse_pagination(
        request.args,
        default_limit=current_app.config["DEFAULT_PAGE_SIZE"],
        max_limit=current_app.config["MAX_PAGE_SIZE"],
    )
    start, end = parse_date_range(request.args)
    return ledger_service.list_transactions(
        page=page,
        limit=limit,
        type=request.args.get("type"),
        category=request.args.get("category"),
        account=request.args.get("account"),
        customer_id=request.args.get("customerId", type=int),
        supplier_id=request.args.get("supplierId", type=int),
        start=start,
        end=end,
        search=request.args.get("search"),
    )


@transactions_bp.get("/summary")
@require_actor
@json_errors
def summary():
    start, end = parse_date_range(request.args)
    return reporting_service.financial_summary(start, end)


@transactions_bp.get("/account-balances")
@require_actor
@json_errors
def account_balances():
    return ledger_service.account_balances()


@transactions_bp.get("/cash-flow")
@require_actor
@json_errors
def cash_flow():
    """Query params: startDate, endDate, period (daily|weekly|monthly)."""
    start, end = parse_date_range(request.args)
    return reporting_service.cash_flow(start, end, period=request.args.get("period", "daily"))


@transactions_bp.get("/profit-loss")
@require_actor
@json_errors
def profit_loss():
    start, end = parse_date_range(request.args)
    return reporting_service.profit_loss(start, end)


@transactions_bp.get("/<int:transaction_id>")
@require_actor
@json_errors
def get_transaction(transaction_id: int):
    return {"transaction": ledger_service.get_transaction(transaction_id).to_dict()}


@transactions_bp.post("")
@require_actor
@json_errors
def create_transaction():
    payload = request.get_json(silent=True) or {}
    fields = validate_payload(
        model=Transaction, payload=payload, policy=MANUAL_TRANSACTION_POLICY, partial=False
    )
    to_choice(fields["type"], "type", TRANSACTION_TYPES)
    to_choice(fields["category"], "category", TRANSACTION_CATEGORIES)
    to_choice(fields["account"], "account", ACCOUNTS)

    tx = ledger_service.create_manual_transaction(fields=fields, actor=g.actor_id)
    return {"message": "Transaction created successfully", "transaction": tx.to_dict()}, 201


@transactions_bp.put("/<int:transaction_id>")
@require_actor
@json_errors
def update_transaction(transaction_id: int):
    payload = request.get_json(silent=True) or {}
    patch = validate_payload(model=Transaction, payload=payload, policy=ANNOTATION_POLICY, partial=True)
    if not patch:
        raise ValidationError("Nothing to update")

    tx = ledger_service.update_manual_transaction(transaction_id=transaction_id, patch=patch)
    return {"message": "Transaction updated successfully", "transaction": tx.to_dict()}


@transactions_bp.post("/accounts/<account>/rebuild")
@require_actor
@json_errors
def rebuild_account(account: str):
    to_choice(account, "account", ACCOUNTS)
    return ledger_service.rebuild_account_chain(account)


@transactions_bp.get("/accounts/<account>/verify")
@require_actor
@json_errors
def verify_account(account: str):
    to_choice(account, "account", ACCOUNTS)
    return ledger_service.verify_account_chain(account)
