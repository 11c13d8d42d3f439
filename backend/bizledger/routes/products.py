# Overview: Flask API routes for products operations; parses input and returns JSON responses.

"""
Product catalogue and stock routes.

Stock levels are never written directly: POST /<id>/stock records a
movement, and a changed stock.current on PUT becomes an adjustment.
"""
from flask import Blueprint, request, g, current_app

from ..models import Product
from ..services import stock_service
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_non_negative,
    parse_pagination,
    parse_bool_arg,
    require_fields,
    to_int,
    to_choice,
)
from ..decorators import require_actor, json_errors

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "sku", "name", "brand", "category", "description", "unit",
        "costPrice", "sellingPrice",
        "stock.current", "stock.reorderThreshold", "stock.minStock",
        "supplierId", "isActive",
    },
    required_on_create={"sku", "name", "category", "costPrice", "sellingPrice"},
    aliases={
        "costPrice": "cost_price",
        "sellingPrice": "selling_price",
        "stock.current": "stock_current",
        "stock.reorderThreshold": "reorder_threshold",
        "stock.minStock": "min_stock",
        "supplierId": "supplier_id",
        "isActive": "is_active",
    },
)

# Manual movements; sale/purchase come from invoices only
MANUAL_MOVEMENT_TYPES = ("stock_in", "stock_out", "adjustment")

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


def _page_args():
    return parse_pagination(
        request.args,
        default_limit=current_app.config["DEFAULT_PAGE_SIZE"],
        max_limit=current_app.config["MAX_PAGE_SIZE"],
    )


@products_bp.get("")
@require_actor
@json_errors
def list_products():
    """
    Query params: page, limit, search, category, brand,
    lowStock (true/false), status (active|archived|all, default active).
    """
    page, limit = _page_args()
    return stock_service.list_products(
        page=page,
        limit=limit,
        search=request.args.get("search"),
        category=request.args.get("category"),
        brand=request.args.get("brand"),
        low_stock=parse_bool_arg(request.args, "lowStock"),
        status=request.args.get("status", "active"),
    )


@products_bp.get("/low-stock")
@require_actor
@json_errors
def low_stock():
    return stock_service.low_stock_report()


@products_bp.get("/categories")
@require_actor
@json_errors
def categories():
    return stock_service.list_categories()


@products_bp.get("/<int:product_id>")
@require_actor
@json_errors
def get_product(product_id: int):
    product = stock_service.get_product(product_id)
    return {"product": product.to_dict(include_activity=True)}


@products_bp.post("")
@require_actor
@json_errors
def create_product():
    payload = request.get_json(silent=True) or {}
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
    enforce_non_negative(patch, "stock_current", "reorder_threshold", "min_stock")

    product = stock_service.create_product(patch=patch, actor=g.actor_id)
    return {"message": "Product created successfully", "product": product.to_dict()}, 201


@products_bp.put("/<int:product_id>")
@require_actor
@json_errors
def update_product(product_id: int):
    payload = request.get_json(silent=True) or {}
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
    enforce_non_negative(patch, "stock_current", "reorder_threshold", "min_stock")

    product = stock_service.update_product(product_id=product_id, patch=patch, actor=g.actor_id)
    return {"message": "Product updated successfully", "product": product.to_dict()}


@products_bp.post("/<int:product_id>/stock")
@require_actor
@json_errors
def update_stock(product_id: int):
    """
    Body: {quantity, type: stock_in|stock_out|adjustment, reason}

    adjustment treats quantity as the new absolute stock level.
    """
    payload = request.get_json(silent=True) or {}
    require_fields(payload, "quantity", "type", "reason")

    minimum = 0 if payload.get("type") == "adjustment" else 1
    quantity = to_int(payload["quantity"], "quantity", minimum=minimum)
    movement_type = to_choice(payload["type"], "type", MANUAL_MOVEMENT_TYPES)

    product = stock_service.apply_stock_movement(
        product_id=product_id,
        quantity=quantity,
        movement_type=movement_type,
        actor=g.actor_id,
        reason=str(payload["reason"]).strip(),
        reference_model="Adjustment" if movement_type == "adjustment" else None,
    )
    return {"message": "Stock updated successfully", "product": product.to_dict()}


@products_bp.post("/<int:product_id>/archive")
@require_actor
@json_errors
def archive_product(product_id: int):
    product = stock_service.set_archived(product_id=product_id, archived=True)
    return {"message": "Product archived successfully", "product": product.to_dict()}


@products_bp.post("/<int:product_id>/restore")
@require_actor
@json_errors
def restore_product(product_id: int):
    product = stock_service.set_archived(product_id=product_id, archived=False)
    return {"message": "Product restored successfully", "product": product.to_dict()}


@products_bp.delete("/<int:product_id>")
@require_actor
@json_errors
def delete_product(product_id: int):
    stock_service.delete_product(product_id=product_id)
    return {"message": "Product deleted successfully"}


@products_bp.get("/<int:product_id>/activity")
@require_actor
@json_errors
def product_activity(product_id: int):
    page, limit = _page_args()
    return stock_service.list_activity(product_id=product_id, page=page, limit=limit)
