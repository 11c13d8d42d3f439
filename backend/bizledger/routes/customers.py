# Overview: Flask API routes for customers operations; parses input and returns JSON responses.

from flask import Blueprint, request, g, current_app

from ..models import Customer
from ..services import party_service, invoice_service
from ..validation import ModelValidationPolicy, validate_payload, enforce_non_negative, parse_pagination
from ..decorators import require_actor, json_errors
from bizledger.time_utils import utcnow

CUSTOMER_POLICY = ModelValidationPolicy(
    writable_fields={
        "name", "email", "phone", "companyName",
        "address.street", "address.city", "address.state", "address.postalCode", "address.country",
        "type", "creditLimit", "paymentTerms", "creditDays", "notes",
    },
    required_on_create={"name", "phone"},
    aliases={
        "companyName": "company_name",
        "address.street": "address_street",
        "address.city": "address_city",
        "address.state": "address_state",
        "address.postalCode": "address_postal_code",
        "address.country": "address_country",
        "creditLimit": "credit_limit",
        "paymentTerms": "payment_terms",
        "creditDays": "credit_days",
    },
)

customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.get("")
@require_actor
@json_errors
def list_customers():
    """Query params: page, limit, search, type, status (active|overdue|all)."""
    page, limit = parse_pagination(
        request.args,
        default_limit=current_app.config["DEFAULT_PAGE_SIZE"],
        max_limit=current_app.config["MAX_PAGE_SIZE"],
    )
    return party_service.list_customers(
        page=page,
        limit=limit,
        search=request.args.get("search"),
        customer_type=request.args.get("type"),
        status=request.args.get("status", "active"),
    )


@customers_bp.get("/overdue")
@require_actor
@json_errors
def overdue_customers():
    return party_service.overdue_customers()


@customers_bp.get("/list")
@require_actor
@json_errors
def customer_options():
    return {"customers": party_service.customer_options()}


@customers_bp.get("/<int:customer_id>")
@require_actor
@json_errors
def get_customer(customer_id: int):
    return party_service.customer_detail(customer_id)


@customers_bp.post("")
@require_actor
@json_errors
def create_customer():
    payload = request.get_json(silent=True) or {}
    patch = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=False)
    enforce_non_negative(patch, "credit_days")

    customer = party_service.create_customer(patch=patch, actor=g.actor_id)
    return {"message": "Customer created successfully", "customer": customer.to_dict()}, 201


@customers_bp.put("/<int:customer_id>")
@require_actor
@json_errors
def update_customer(customer_id: int):
    payload = request.get_json(silent=True) or {}
    patch = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=True)
    enforce_non_negative(patch, "credit_days")

    customer = party_service.update_customer(customer_id=customer_id, patch=patch)
    return {"message": "Customer updated successfully", "customer": customer.to_dict()}


@customers_bp.post("/<int:customer_id>/blacklist")
@require_actor
@json_errors
def blacklist_customer(customer_id: int):
    customer = party_service.set_customer_blacklisted(customer_id=customer_id, blacklisted=True)
    return {"message": "Customer blacklisted successfully", "customer": customer.to_dict()}


@customers_bp.post("/<int:customer_id>/unblacklist")
@require_actor
@json_errors
def unblacklist_customer(customer_id: int):
    customer = party_service.set_customer_blacklisted(customer_id=customer_id, blacklisted=False)
    return {"message": "Customer removed from blacklist", "customer": customer.to_dict()}


@customers_bp.get("/<int:customer_id>/invoices")
@require_actor
@json_errors
def customer_invoices(customer_id: int):
    return invoice_service.customer_invoices(customer_id)


@customers_bp.post("/<int:customer_id>/invoices")
@require_actor
@json_errors
def create_customer_invoice(customer_id: int):
    """Sales invoice for this customer; same body as POST /api/invoices/sales minus the customer."""
    from .invoices import parse_sale_terms, parse_items

    payload = request.get_json(silent=True) or {}
    invoice = invoice_service.create_sale_invoice(
        items=parse_items(payload.get("items")),
        actor=g.actor_id,
        customer_id=customer_id,
        **parse_sale_terms(payload),
    )
    return {"message": "Invoice created successfully", "invoice": invoice.to_dict(utcnow())}, 201
