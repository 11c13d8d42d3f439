# Overview: Service-layer operations for product stock; encapsulates business logic and database work.

"""
Stock ledger invariants (authoritative)

- Product.stock_current changes only through _apply_movement_inner, which
  appends exactly one ProductActivity row in the same unit of work.
  Hence stock_current == last(activity).stock_after.
- Movement semantics:
    stock_in / purchase   current + quantity        (updates last_restocked)
    stock_out / sale      current - quantity        (InsufficientStockError if < 0)
    adjustment            max(0, quantity)          (quantity is an ABSOLUTE
                                                     target, not a delta)
- quantity is always a non-negative magnitude.
- Low/critical stock are predicates on Product, never stored.
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import or_, func

from ..errors import BusinessRuleError, InsufficientStockError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Product, ProductActivity, InvoiceItem, Supplier
from ..models.inventory import MOVEMENT_TYPES, PRODUCT_UNITS, REFERENCE_MODELS
from bizledger.time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .pagination import paginate


def _add(current: int, quantity: int) -> int:
    return current + quantity


def _remove(current: int, quantity: int) -> int:
    return current - quantity


def _set(current: int, quantity: int) -> int:
    return max(0, quantity)


MOVEMENT_RULES = {
    "stock_in": _add,
    "purchase": _add,
    "stock_out": _remove,
    "sale": _remove,
    "adjustment": _set,
}

RESTOCK_TYPES = ("stock_in", "purchase")


# =============================================================================
# LOOKUPS
# =============================================================================

def get_product(product_id: int, *, lock: bool = False) -> Product:
    query = db.session.query(Product).filter_by(id=product_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None:
        raise NotFoundError(f"Product not found: {product_id}")
    return product


def find_shortfalls(requirements: dict[int, int]) -> list[dict]:
    """
    Compare required quantities per product id against stock on hand.

    Returns one entry per product that cannot cover its requirement so the
    caller can report every shortfall at once.
    """
    shortfalls = []
    for product_id, required in requirements.items():
        product = get_product(product_id)
        if product.stock_current < required:
            shortfalls.append({
                "productId": product.id,
                "name": product.name,
                "available": product.stock_current,
                "required": required,
            })
    return shortfalls


# =============================================================================
# STOCK MOVEMENTS
# =============================================================================

def _apply_movement_inner(
    *,
    product: Product,
    quantity: int,
    movement_type: str,
    actor: str | None,
    reason: str | None = None,
    reference_id: int | None = None,
    reference_model: str | None = None,
    now: datetime | None = None,
) -> ProductActivity:
    """Core movement logic without locking, retry, or commit.

    Called by apply_stock_movement() and by the invoice orchestrator inside
    its own unit of work.
    """
    rule = MOVEMENT_RULES.get(movement_type)
    if rule is None:
        raise ValidationError(f"movement type must be one of {list(MOVEMENT_TYPES)}")
    if quantity is None or quantity < 0:
        raise ValidationError("quantity must be a non-negative integer")
    if reference_model is not None and reference_model not in REFERENCE_MODELS:
        raise ValidationError(f"referenceModel must be one of {list(REFERENCE_MODELS)}")

    now = now or utcnow()
    stock_before = product.stock_current or 0
    stock_after = rule(stock_before, quantity)

    if stock_after < 0:
        raise InsufficientStockError(
            f"Insufficient stock for {product.name}. Available: {stock_before}, Required: {quantity}",
            details={"productId": product.id, "available": stock_before, "required": quantity},
        )

    activity = ProductActivity(
        product_id=product.id,
        type=movement_type,
        quantity=quantity,
        stock_before=stock_before,
        stock_after=stock_after,
        reference_id=reference_id,
        reference_model=reference_model,
        reason=reason,
        user=actor,
        timestamp=now,
    )
    db.session.add(activity)

    product.stock_current = stock_after
    if movement_type in RESTOCK_TYPES:
        product.last_restocked = now

    db.session.flush()
    return activity


def apply_stock_movement(
    *,
    product_id: int,
    quantity: int,
    movement_type: str,
    actor: str | None,
    reason: str | None = None,
    reference_id: int | None = None,
    reference_model: str | None = None,
) -> Product:
    """Apply one stock movement as its own unit of work."""
    def _op():
        product = get_product(product_id, lock=True)
        _apply_movement_inner(
            product=product,
            quantity=quantity,
            movement_type=movement_type,
            actor=actor,
            reason=reason,
            reference_id=reference_id,
            reference_model=reference_model,
        )
        db.session.commit()
        return product

    return run_with_retry(_op)


# =============================================================================
# PRODUCT MASTER DATA
# =============================================================================

def _check_product_patch(patch: dict, *, product_id: int | None = None) -> None:
    if "sku" in patch and patch["sku"] is not None:
        patch["sku"] = patch["sku"].upper()
        clash = db.session.query(Product.id).filter(Product.sku == patch["sku"])
        if product_id is not None:
            clash = clash.filter(Product.id != product_id)
        if clash.first() is not None:
            raise BusinessRuleError(f"Product with SKU {patch['sku']} already exists")

    if "unit" in patch and patch["unit"] not in PRODUCT_UNITS:
        raise ValidationError(f"unit must be one of {list(PRODUCT_UNITS)}")

    for key in ("stock_current", "reorder_threshold", "min_stock"):
        value = patch.get(key)
        if value is not None and value < 0:
            raise ValidationError(f"{key} must be >= 0")

    supplier_id = patch.get("supplier_id")
    if supplier_id is not None and db.session.get(Supplier, supplier_id) is None:
        raise NotFoundError(f"Supplier not found: {supplier_id}")


def _create_product_inner(*, patch: dict, actor: str | None, now: datetime) -> Product:
    """Insert a product and log its initial stock (flush only)."""
    _check_product_patch(patch)

    initial_stock = patch.pop("stock_current", None) or 0
    product = Product(**patch)
    product.stock_current = 0
    product.created_by = actor
    db.session.add(product)
    db.session.flush()

    if initial_stock > 0:
        _apply_movement_inner(
            product=product,
            quantity=initial_stock,
            movement_type="stock_in",
            actor=actor,
            reason="Initial stock",
            now=now,
        )
    return product


def create_product(*, patch: dict, actor: str | None) -> Product:
    def _op():
        product = _create_product_inner(patch=dict(patch), actor=actor, now=utcnow())
        db.session.commit()
        return product

    return run_with_retry(_op)


def update_product(*, product_id: int, patch: dict, actor: str | None) -> Product:
    """
    Apply a validated field patch.

    A changed stock.current is not written directly; it becomes an
    'adjustment' movement so the activity log stays authoritative.
    """
    def _op():
        product = get_product(product_id, lock=True)
        fields = dict(patch)
        _check_product_patch(fields, product_id=product.id)

        target = fields.pop("stock_current", None)
        for key, value in fields.items():
            setattr(product, key, value)

        if target is not None and target != product.stock_current:
            _apply_movement_inner(
                product=product,
                quantity=target,
                movement_type="adjustment",
                actor=actor,
                reason="Stock level updated",
                reference_model="Adjustment",
            )

        db.session.commit()
        return product

    return run_with_retry(_op)


def set_archived(*, product_id: int, archived: bool) -> Product:
    def _op():
        product = get_product(product_id, lock=True)
        product.is_archived = archived
        product.is_active = not archived
        db.session.commit()
        return product

    return run_with_retry(_op)


def delete_product(*, product_id: int) -> None:
    """Hard delete; refused while stock remains or invoices reference the product."""
    def _op():
        product = get_product(product_id, lock=True)
        if product.stock_current > 0:
            raise BusinessRuleError("Cannot delete product with existing stock")
        referenced = db.session.query(InvoiceItem.id).filter_by(product_id=product.id).first()
        if referenced is not None:
            raise BusinessRuleError("Product is referenced by invoices; archive it instead")
        sku = product.sku
        db.session.query(ProductActivity).filter_by(product_id=product.id).delete(synchronize_session=False)
        db.session.delete(product)
        db.session.commit()
        current_app.logger.info("Deleted product %s (%s)", product_id, sku)

    run_with_retry(_op)


# =============================================================================
# QUERIES
# =============================================================================

def list_products(
    *,
    page: int,
    limit: int,
    search: str | None = None,
    category: str | None = None,
    brand: str | None = None,
    low_stock: bool = False,
    status: str = "active",
) -> dict:
    query = db.session.query(Product)

    if status == "active":
        query = query.filter(Product.is_active.is_(True), Product.is_archived.is_(False))
    elif status == "archived":
        query = query.filter(Product.is_archived.is_(True))
    elif status != "all":
        raise ValidationError("status must be one of ['active', 'archived', 'all']")

    if category:
        query = query.filter(Product.category == category)
    if brand:
        query = query.filter(Product.brand == brand)
    if low_stock:
        query = query.filter(Product.stock_current <= Product.reorder_threshold)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(
            Product.name.ilike(pattern),
            Product.brand.ilike(pattern),
            Product.category.ilike(pattern),
            Product.sku.ilike(pattern),
        ))

    query = query.order_by(Product.name.asc(), Product.id.asc())
    result = paginate(query, page=page, limit=limit, serialize=lambda p: p.to_dict())

    result["stats"] = {
        "lowStockCount": (
            db.session.query(func.count(Product.id))
            .filter(
                Product.is_active.is_(True),
                Product.is_archived.is_(False),
                Product.stock_current <= Product.reorder_threshold,
            )
            .scalar()
        ),
    }
    return result


def low_stock_report() -> dict:
    products = (
        db.session.query(Product)
        .filter(
            Product.is_active.is_(True),
            Product.is_archived.is_(False),
            Product.stock_current <= Product.reorder_threshold,
        )
        .order_by(Product.stock_current.asc(), Product.id.asc())
        .all()
    )
    critical = [p for p in products if p.is_critical_stock()]
    return {
        "lowStockProducts": [p.to_dict() for p in products],
        "criticalStockProducts": [p.to_dict() for p in critical],
        "stats": {
            "lowStockCount": len(products),
            "criticalCount": len(critical),
        },
    }


def list_categories() -> dict:
    active = (Product.is_active.is_(True), Product.is_archived.is_(False))
    categories = [
        row[0] for row in
        db.session.query(Product.category).filter(*active).distinct().order_by(Product.category).all()
        if row[0]
    ]
    brands = [
        row[0] for row in
        db.session.query(Product.brand).filter(*active).distinct().order_by(Product.brand).all()
        if row[0]
    ]
    return {"categories": categories, "brands": brands}


def list_activity(*, product_id: int, page: int, limit: int) -> dict:
    get_product(product_id)
    query = (
        db.session.query(ProductActivity)
        .filter_by(product_id=product_id)
        .order_by(ProductActivity.id.desc())
    )
    return paginate(query, page=page, limit=limit, serialize=lambda a: a.to_dict())
