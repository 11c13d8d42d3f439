# Overview: Flask API routes for invoices operations; parses input and returns JSON responses.

"""
Invoice routes.

Creation endpoints accept the party either by id or inline:
- sales:     {"customer": id} or {"isNewCustomer": true, "customerInfo": {...}}
- purchases: {"supplier": id} or {"isNewSupplier": true, "supplierInfo": {...}}
- quick:     optional {"customerInfo": {"name", "phone"}}; falls back to the
             shared walk-in customer.

Line items: {"product": id, "quantity", "unitPrice", "discount"?, "tax"?,
"description"?}. Purchase lines may carry "newProductInfo" instead of a
product id.
"""
from flask import Blueprint, request, g, current_app

from ..errors import ValidationError
from ..models import Customer, Product, Supplier
from ..models.invoices import PAYMENT_METHODS
from ..services import invoice_service
from ..validation import (
    to_amount,
    to_choice,
    to_datetime,
    to_int,
    validate_payload,
    parse_pagination,
    parse_date_range,
)
from ..decorators import require_actor, json_errors
from bizledger.time_utils import utcnow
from .customers import CUSTOMER_POLICY
from .products import PRODUCT_POLICY
from .suppliers import SUPPLIER_POLICY

invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


# =============================================================================
# PAYLOAD PARSING
# =============================================================================

def parse_items(raw, *, allow_new_products: bool = False) -> list[dict]:
    if not isinstance(raw, list) or not raw:
        raise ValidationError("At least one item is required")

    lines = []
    for index, item in enumerate(raw):
        prefix = f"items[{index}]"
        if not isinstance(item, dict):
            raise ValidationError(f"{prefix} must be an object")

        line = {
            "quantity": to_int(item.get("quantity"), f"{prefix}.quantity", minimum=1),
            "unit_price": to_amount(item.get("unitPrice"), f"{prefix}.unitPrice"),
            "discount": to_amount(item.get("discount") or 0, f"{prefix}.discount"),
            "tax": to_amount(item.get("tax") or 0, f"{prefix}.tax"),
            "description": (str(item["description"]).strip() or None) if item.get("description") else None,
        }

        if allow_new_products and item.get("newProductInfo") is not None:
            info = item["newProductInfo"]
            if not isinstance(info, dict):
                raise ValidationError(f"{prefix}.newProductInfo must be an object")
            line["new_product"] = validate_payload(
                model=Product, payload=info, policy=PRODUCT_POLICY, partial=False
            )
        else:
            product_id = item.get("product", item.get("productId"))
            if product_id in (None, ""):
                raise ValidationError(f"{prefix}.product is required")
            line["product_id"] = to_int(product_id, f"{prefix}.product", minimum=1)

        lines.append(line)
    return lines


def _payment_method(payload: dict) -> str:
    return to_choice(payload.get("paymentMethod") or "cash", "paymentMethod", PAYMENT_METHODS)


def parse_sale_terms(payload: dict) -> dict:
    """Shared money/terms fields of sale and purchase bodies, as service kwargs."""
    return {
        "date": to_datetime(payload.get("date"), "date"),
        "discount": to_amount(payload.get("discount") or 0, "discount"),
        "tax": to_amount(payload.get("tax") or 0, "tax"),
        "notes": payload.get("notes"),
        "terms": payload.get("terms"),
        "payment_amount": to_amount(payload.get("paymentAmount") or 0, "paymentAmount"),
        "payment_method": _payment_method(payload),
    }


def _party_ref(payload: dict, id_key: str, new_flag: str, info_key: str, *, model, policy) -> dict:
    if payload.get(new_flag):
        info = payload.get(info_key)
        if not isinstance(info, dict):
            raise ValidationError(f"{info_key} is required when {new_flag} is true")
        return {"patch": validate_payload(model=model, payload=info, policy=policy, partial=False)}
    if payload.get(id_key) in (None, ""):
        raise ValidationError(f"Either {id_key} or {info_key} is required")
    return {"id": to_int(payload[id_key], id_key, minimum=1)}


def _list_args() -> dict:
    page, limit = parse_pagination(
        request.args,
        default_limit=current_app.config["DEFAULT_PAGE_SIZE"],
        max_limit=current_app.config["MAX_PAGE_SIZE"],
    )
    start, end = parse_date_range(request.args)
    return {
        "page": page,
        "limit": limit,
        "status": request.args.get("status"),
        "start": start,
        "end": end,
        "search": request.args.get("search"),
    }


def _invoice_response(invoice, message: str, status: int = 200):
    return {"message": message, "invoice": invoice.to_dict(utcnow())}, status


# =============================================================================
# LISTS
# =============================================================================

@invoices_bp.get("/sales")
@require_actor
@json_errors
def list_sales():
    return invoice_service.list_invoices(invoice_type="sale", **_list_args())


@invoices_bp.get("/purchases")
@require_actor
@json_errors
def list_purchases():
    return invoice_service.list_invoices(invoice_type="purchase", **_list_args())


@invoices_bp.get("/quick")
@require_actor
@json_errors
def list_quick():
    return invoice_service.list_invoices(invoice_type="quick", **_list_args())


@invoices_bp.get("/overdue")
@require_actor
@json_errors
def list_overdue():
    return invoice_service.overdue_invoices()


@invoices_bp.post("/refresh-status")
@require_actor
@json_errors
def refresh_status():
    return invoice_service.refresh_overdue_statuses()


@invoices_bp.get("/customer/<int:customer_id>")
@require_actor
@json_errors
def customer_invoices(customer_id: int):
    return invoice_service.customer_invoices(customer_id)


@invoices_bp.get("/<int:invoice_id>")
@require_actor
@json_errors
def get_invoice(invoice_id: int):
    invoice = invoice_service.get_invoice(invoice_id)
    return {"invoice": invoice.to_dict(utcnow())}


# =============================================================================
# CREATION
# =============================================================================

@invoices_bp.post("/sales")
@require_actor
@json_errors
def create_sale():
    payload = request.get_json(silent=True) or {}
    party = _party_ref(
        payload, "customer", "isNewCustomer", "customerInfo", model=Customer, policy=CUSTOMER_POLICY
    )
    invoice = invoice_service.create_sale_invoice(
        items=parse_items(payload.get("items")),
        actor=g.actor_id,
        customer_id=party.get("id"),
        customer_patch=party.get("patch"),
        **parse_sale_terms(payload),
    )
    return _invoice_response(invoice, "Sales invoice created successfully", 201)


@invoices_bp.post("/purchases")
@require_actor
@json_errors
def create_purchase():
    payload = request.get_json(silent=True) or {}
    party = _party_ref(
        payload, "supplier", "isNewSupplier", "supplierInfo", model=Supplier, policy=SUPPLIER_POLICY
    )
    invoice = invoice_service.create_purchase_invoice(
        items=parse_items(payload.get("items"), allow_new_products=True),
        actor=g.actor_id,
        supplier_id=party.get("id"),
        supplier_patch=party.get("patch"),
        **parse_sale_terms(payload),
    )
    return _invoice_response(invoice, "Purchase invoice created successfully", 201)


@invoices_bp.post("/quick")
@require_actor
@json_errors
def create_quick():
    payload = request.get_json(silent=True) or {}
    info = payload.get("customerInfo") or {}
    if not isinstance(info, dict):
        raise ValidationError("customerInfo must be an object")

    invoice = invoice_service.create_quick_invoice(
        items=parse_items(payload.get("items")),
        actor=g.actor_id,
        customer_phone=info.get("phone"),
        customer_name=info.get("name"),
        notes=payload.get("notes"),
        payment_method=_payment_method(payload),
    )
    return _invoice_response(invoice, "Quick invoice created successfully", 201)


# =============================================================================
# CHANGES
# =============================================================================

@invoices_bp.put("/<int:invoice_id>")
@require_actor
@json_errors
def update_invoice(invoice_id: int):
    """Only notes and date may change."""
    payload = request.get_json(silent=True) or {}
    unknown = sorted(set(payload) - {"notes", "date"})
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(unknown)}")

    patch = {}
    if "notes" in payload:
        notes = payload["notes"]
        if notes is not None and not isinstance(notes, str):
            raise ValidationError("notes must be a string")
        patch["notes"] = notes
    if payload.get("date") is not None:
        patch["date"] = to_datetime(payload["date"], "date")

    invoice = invoice_service.update_invoice(invoice_id=invoice_id, patch=patch)
    return _invoice_response(invoice, "Invoice updated successfully")


@invoices_bp.post("/<int:invoice_id>/payments")
@require_actor
@json_errors
def add_payment(invoice_id: int):
    """Body: {amount, method, reference?, notes?}"""
    payload = request.get_json(silent=True) or {}
    amount = to_amount(payload.get("amount"), "amount")
    method = to_choice(payload.get("method"), "method", PAYMENT_METHODS)

    invoice = invoice_service.add_payment(
        invoice_id=invoice_id,
        amount=amount,
        method=method,
        actor=g.actor_id,
        reference=payload.get("reference"),
        notes=payload.get("notes"),
    )
    return _invoice_response(invoice, "Payment added successfully")


@invoices_bp.post("/<int:invoice_id>/cancel")
@require_actor
@json_errors
def cancel_invoice(invoice_id: int):
    payload = request.get_json(silent=True) or {}
    invoice = invoice_service.cancel_invoice(
        invoice_id=invoice_id,
        actor=g.actor_id,
        reason=payload.get("reason"),
    )
    return _invoice_response(invoice, "Invoice cancelled successfully")
