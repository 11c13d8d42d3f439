# Overview: Flask API routes for suppliers operations; parses input and returns JSON responses.

from flask import Blueprint, request, g, current_app

from ..models import Supplier
from ..services import party_service
from ..validation import ModelValidationPolicy, validate_payload, enforce_rating, parse_pagination, to_int
from ..decorators import require_actor, json_errors

SUPPLIER_POLICY = ModelValidationPolicy(
    writable_fields={
        "name", "companyName", "contactPerson", "email", "phone",
        "address.street", "address.city", "address.state", "address.postalCode", "address.country",
        "categories", "paymentTerms", "creditLimit", "notes",
        "performance.reliability", "performance.quality", "performance.deliveryTime",
    },
    required_on_create={"name", "phone"},
    aliases={
        "companyName": "company_name",
        "contactPerson": "contact_person",
        "address.street": "address_street",
        "address.city": "address_city",
        "address.state": "address_state",
        "address.postalCode": "address_postal_code",
        "address.country": "address_country",
        "paymentTerms": "payment_terms",
        "creditLimit": "credit_limit",
        "performance.reliability": "reliability",
        "performance.quality": "quality",
        "performance.deliveryTime": "delivery_time",
    },
)

suppliers_bp = Blueprint("suppliers", __name__, url_prefix="/api/suppliers")


@suppliers_bp.get("")
@require_actor
@json_errors
def list_suppliers():
    page, limit = parse_pagination(
        request.args,
        default_limit=current_app.config["DEFAULT_PAGE_SIZE"],
        max_limit=current_app.config["MAX_PAGE_SIZE"],
    )
    return party_service.list_suppliers(page=page, limit=limit, search=request.args.get("search"))


@suppliers_bp.get("/overdue")
@require_actor
@json_errors
def overdue_suppliers():
    return party_service.overdue_suppliers()


@suppliers_bp.get("/top")
@require_actor
@json_errors
def top_suppliers():
    limit = request.args.get("limit", 10, type=int) or 10
    return {"suppliers": party_service.top_suppliers(limit=max(1, min(limit, 50)))}


@suppliers_bp.get("/<int:supplier_id>")
@require_actor
@json_errors
def get_supplier(supplier_id: int):
    return {"supplier": party_service.supplier_detail(supplier_id)}


@suppliers_bp.post("")
@require_actor
@json_errors
def create_supplier():
    payload = request.get_json(silent=True) or {}
    patch = validate_payload(model=Supplier, payload=payload, policy=SUPPLIER_POLICY, partial=False)
    enforce_rating(patch, "reliability", "quality", "delivery_time")

    supplier = party_service.create_supplier(patch=patch, actor=g.actor_id)
    return {"message": "Supplier created successfully", "supplier": supplier.to_dict()}, 201


@suppliers_bp.put("/<int:supplier_id>")
@require_actor
@json_errors
def update_supplier(supplier_id: int):
    payload = request.get_json(silent=True) or {}
    patch = validate_payload(model=Supplier, payload=payload, policy=SUPPLIER_POLICY, partial=True)
    enforce_rating(patch, "reliability", "quality", "delivery_time")

    supplier = party_service.update_supplier(supplier_id=supplier_id, patch=patch)
    return {"message": "Supplier updated successfully", "supplier": supplier.to_dict()}


@suppliers_bp.put("/<int:supplier_id>/performance")
@require_actor
@json_errors
def update_performance(supplier_id: int):
    """Body: any of {reliability, quality, deliveryTime}, each 1..5."""
    payload = request.get_json(silent=True) or {}
    ratings = {}
    for wire_key, column in (("reliability", "reliability"), ("quality", "quality"), ("deliveryTime", "delivery_time")):
        if payload.get(wire_key) is not None:
            ratings[column] = to_int(payload[wire_key], wire_key)
    enforce_rating(ratings, *ratings.keys())

    supplier = party_service.update_performance(supplier_id=supplier_id, ratings=ratings)
    return {"message": "Supplier performance updated", "supplier": supplier.to_dict()}
