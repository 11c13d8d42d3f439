# Overview: Service-layer operations for customers and suppliers; encapsulates business logic and database work.

"""
Party financial ledger rules

record_financial_event(party, billed, paid) is the only writer of the
running totals:
    total_billed (total_purchased) += billed
    total_paid                     += paid
    outstanding                    := max(0, total_billed - total_paid)

Customer extras on billed > 0: last_purchase_date, loyalty spend/visits,
points (one per LOYALTY_POINTS_UNIT billed), tier, average order value.
Supplier extras on billed > 0: last_purchase_date, purchase_count and
average purchase value.

A negative billed amount (invoice cancellation) walks the same counters
back, never below zero.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP

from flask import current_app
from sqlalchemy import func, or_

from ..errors import BusinessRuleError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Customer, Invoice, Supplier
from ..models.parties import (
    CUSTOMER_PAYMENT_TERMS,
    CUSTOMER_TYPES,
    PERFORMANCE_FIELDS,
    SUPPLIER_PAYMENT_TERMS,
    WALK_IN_CUSTOMER_NAME,
    WALK_IN_CUSTOMER_PHONE,
    calculate_loyalty_tier,
)
from bizledger.time_utils import to_utc_z, utcnow
from .concurrency import lock_for_update, run_with_retry
from .pagination import paginate


CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def _q(value) -> Decimal:
    return Decimal(value or 0).quantize(CENT, rounding=ROUND_HALF_UP)


# =============================================================================
# LOOKUPS
# =============================================================================

def get_customer(customer_id: int, *, lock: bool = False) -> Customer:
    query = db.session.query(Customer).filter_by(id=customer_id)
    if lock:
        query = lock_for_update(query)
    customer = query.first()
    if customer is None:
        raise NotFoundError(f"Customer not found: {customer_id}")
    return customer


def get_supplier(supplier_id: int, *, lock: bool = False) -> Supplier:
    query = db.session.query(Supplier).filter_by(id=supplier_id)
    if lock:
        query = lock_for_update(query)
    supplier = query.first()
    if supplier is None:
        raise NotFoundError(f"Supplier not found: {supplier_id}")
    return supplier


# =============================================================================
# FINANCIAL EVENTS
# =============================================================================

def _record_customer_event(customer: Customer, billed: Decimal, paid: Decimal, now: datetime) -> None:
    customer.total_billed = _q(customer.total_billed) + billed
    customer.total_paid = _q(customer.total_paid) + paid
    customer.outstanding_due = max(ZERO, customer.total_billed - customer.total_paid)

    if paid > 0:
        customer.last_payment_date = now

    unit = Decimal(current_app.config.get("LOYALTY_POINTS_UNIT", 100))
    if billed > 0:
        customer.last_purchase_date = now
        customer.total_spent = _q(customer.total_spent) + billed
        customer.visit_count = (customer.visit_count or 0) + 1
        customer.loyalty_points = (customer.loyalty_points or 0) + int(billed // unit)
    elif billed < 0:
        customer.total_spent = max(ZERO, _q(customer.total_spent) + billed)
        customer.visit_count = max(0, (customer.visit_count or 0) - 1)
        customer.loyalty_points = max(0, (customer.loyalty_points or 0) - int(-billed // unit))

    if billed != 0:
        customer.loyalty_tier = calculate_loyalty_tier(customer.total_spent)
        customer.average_order_value = (
            _q(max(ZERO, customer.total_billed) / customer.visit_count) if customer.visit_count else ZERO
        )


def _record_supplier_event(supplier: Supplier, billed: Decimal, paid: Decimal, now: datetime) -> None:
    supplier.total_purchased = _q(supplier.total_purchased) + billed
    supplier.total_paid = _q(supplier.total_paid) + paid
    supplier.outstanding_payable = max(ZERO, supplier.total_purchased - supplier.total_paid)

    if paid > 0:
        supplier.last_payment_date = now

    if billed > 0:
        supplier.last_purchase_date = now
        supplier.purchase_count = (supplier.purchase_count or 0) + 1
    elif billed < 0:
        supplier.purchase_count = max(0, (supplier.purchase_count or 0) - 1)

    if billed != 0:
        supplier.average_purchase_value = (
            _q(max(ZERO, supplier.total_purchased) / supplier.purchase_count) if supplier.purchase_count else ZERO
        )


def record_financial_event(party, billed, paid, *, now: datetime | None = None) -> None:
    """
    Apply one billed/paid event to a Customer or Supplier (flush only).

    Called by the invoice orchestrator inside its unit of work.
    """
    now = now or utcnow()
    billed = _q(billed)
    paid = _q(paid)
    if paid < 0:
        raise ValidationError("paid amount must be >= 0")

    if isinstance(party, Customer):
        _record_customer_event(party, billed, paid, now)
    elif isinstance(party, Supplier):
        _record_supplier_event(party, billed, paid, now)
    else:
        raise TypeError(f"Unsupported party type: {type(party).__name__}")

    db.session.flush()


# =============================================================================
# CUSTOMERS
# =============================================================================

def _check_customer_patch(patch: dict, *, customer_id: int | None = None) -> None:
    if "type" in patch and patch["type"] not in CUSTOMER_TYPES:
        raise ValidationError(f"type must be one of {list(CUSTOMER_TYPES)}")
    if "payment_terms" in patch and patch["payment_terms"] not in CUSTOMER_PAYMENT_TERMS:
        raise ValidationError(f"paymentTerms must be one of {list(CUSTOMER_PAYMENT_TERMS)}")
    if patch.get("credit_days") is not None and patch["credit_days"] < 0:
        raise ValidationError("creditDays must be >= 0")
    if patch.get("email"):
        patch["email"] = patch["email"].lower()

    clauses = []
    if patch.get("phone"):
        clauses.append(Customer.phone == patch["phone"])
    if patch.get("email"):
        clauses.append(Customer.email == patch["email"])
    if clauses:
        clash = db.session.query(Customer.id).filter(or_(*clauses))
        if customer_id is not None:
            clash = clash.filter(Customer.id != customer_id)
        if clash.first() is not None:
            raise BusinessRuleError("Customer with this phone or email already exists")


def _create_customer_inner(*, patch: dict, actor: str | None) -> Customer:
    _check_customer_patch(patch)
    customer = Customer(**patch)
    customer.created_by = actor
    db.session.add(customer)
    db.session.flush()
    return customer


def create_customer(*, patch: dict, actor: str | None) -> Customer:
    def _op():
        customer = _create_customer_inner(patch=dict(patch), actor=actor)
        db.session.commit()
        return customer

    return run_with_retry(_op)


def update_customer(*, customer_id: int, patch: dict) -> Customer:
    def _op():
        customer = get_customer(customer_id, lock=True)
        fields = dict(patch)
        _check_customer_patch(fields, customer_id=customer.id)
        for key, value in fields.items():
            setattr(customer, key, value)
        db.session.commit()
        return customer

    return run_with_retry(_op)


def set_customer_blacklisted(*, customer_id: int, blacklisted: bool) -> Customer:
    def _op():
        customer = get_customer(customer_id, lock=True)
        customer.is_blacklisted = blacklisted
        customer.is_active = not blacklisted
        db.session.commit()
        current_app.logger.info(
            "Customer %s %s", customer_id, "blacklisted" if blacklisted else "unblacklisted"
        )
        return customer

    return run_with_retry(_op)


def find_or_create_walk_in_customer(*, phone: str | None, name: str | None, actor: str | None) -> Customer:
    """
    Resolve the customer for a quick invoice (flush only).

    A phone number picks (or registers) that walk-in customer; without one
    the shared "Walk-in Customer" record is used.
    """
    phone = (phone or "").strip()
    if phone:
        customer = db.session.query(Customer).filter_by(phone=phone).first()
        if customer is None:
            customer = _create_customer_inner(
                patch={"name": (name or "").strip() or WALK_IN_CUSTOMER_NAME, "phone": phone, "type": "walk-in"},
                actor=actor,
            )
        return customer

    customer = (
        db.session.query(Customer)
        .filter_by(name=WALK_IN_CUSTOMER_NAME, type="walk-in")
        .order_by(Customer.id.asc())
        .first()
    )
    if customer is None:
        customer = _create_customer_inner(
            patch={"name": WALK_IN_CUSTOMER_NAME, "phone": WALK_IN_CUSTOMER_PHONE, "type": "walk-in"},
            actor=actor,
        )
    return customer


def _active_customers():
    return db.session.query(Customer).filter(
        Customer.is_active.is_(True), Customer.is_blacklisted.is_(False)
    )


def list_customers(
    *,
    page: int,
    limit: int,
    search: str | None = None,
    customer_type: str | None = None,
    status: str = "active",
) -> dict:
    if status not in ("active", "overdue", "all"):
        raise ValidationError("status must be one of ['active', 'overdue', 'all']")

    query = db.session.query(Customer) if status == "all" else _active_customers()
    if customer_type:
        query = query.filter(Customer.type == customer_type)
    if status == "overdue":
        query = query.filter(Customer.outstanding_due > 0)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(
            Customer.name.ilike(pattern),
            Customer.phone.ilike(pattern),
            Customer.email.ilike(pattern),
            Customer.company_name.ilike(pattern),
        ))

    query = query.order_by(Customer.name.asc(), Customer.id.asc())
    result = paginate(query, page=page, limit=limit, serialize=lambda c: c.to_dict())

    overdue_count, total_dues = (
        _active_customers()
        .filter(Customer.outstanding_due > 0)
        .with_entities(func.count(Customer.id), func.coalesce(func.sum(Customer.outstanding_due), 0))
        .one()
    )
    result["stats"] = {"overdueCount": overdue_count, "totalDues": float(total_dues or 0)}
    return result


def customer_options(limit: int = 100) -> list[dict]:
    """Lightweight id/name/phone rows for pickers."""
    rows = _active_customers().order_by(Customer.name.asc()).limit(limit).all()
    return [{"id": c.id, "name": c.name, "phone": c.phone} for c in rows]


def customer_detail(customer_id: int, *, now: datetime | None = None) -> dict:
    now = now or utcnow()
    customer = get_customer(customer_id)

    invoices = db.session.query(Invoice).filter(Invoice.customer_id == customer.id)
    recent = invoices.order_by(Invoice.date.desc(), Invoice.id.desc()).limit(10).all()
    stats = {
        "totalInvoices": invoices.count(),
        "paidInvoices": invoices.filter(Invoice.payment_status == "fully_paid").count(),
        "overdueInvoices": invoices.filter(
            Invoice.payment_status != "fully_paid",
            Invoice.status != "cancelled",
            Invoice.due_date.isnot(None),
            Invoice.due_date < now,
        ).count(),
    }

    data = customer.to_dict()
    data["dueStatus"] = customer.get_due_status(now)
    data["overdueDays"] = customer.get_overdue_days(now)
    return {
        "customer": data,
        "recentInvoices": [inv.to_dict(now) for inv in recent],
        "stats": stats,
    }


def overdue_customers(*, now: datetime | None = None) -> dict:
    now = now or utcnow()
    customers = (
        _active_customers()
        .filter(Customer.outstanding_due > 0)
        .order_by(Customer.outstanding_due.desc(), Customer.id.asc())
        .all()
    )

    rows = []
    total = ZERO
    for customer in customers:
        recent = (
            db.session.query(Invoice)
            .filter(
                Invoice.customer_id == customer.id,
                Invoice.payment_status != "fully_paid",
                Invoice.status != "cancelled",
            )
            .order_by(Invoice.date.desc(), Invoice.id.desc())
            .limit(3)
            .all()
        )
        data = customer.to_dict()
        data["recentInvoices"] = [
            {
                "id": inv.id,
                "invoiceNumber": inv.invoice_number,
                "date": to_utc_z(inv.date),
                "total": float(inv.total),
                "paymentStatus": inv.payment_status,
            }
            for inv in recent
        ]
        data["overdueDays"] = customer.get_overdue_days(now)
        data["dueStatus"] = customer.get_due_status(now)
        rows.append(data)
        total += _q(customer.outstanding_due)

    return {"overdueCustomers": rows, "totalOverdueAmount": float(total)}


# =============================================================================
# SUPPLIERS
# =============================================================================

def _check_supplier_patch(patch: dict, *, supplier_id: int | None = None) -> None:
    if "payment_terms" in patch and patch["payment_terms"] not in SUPPLIER_PAYMENT_TERMS:
        raise ValidationError(f"paymentTerms must be one of {list(SUPPLIER_PAYMENT_TERMS)}")
    for key in PERFORMANCE_FIELDS:
        value = patch.get(key)
        if value is not None and not 1 <= value <= 5:
            raise ValidationError(f"{key} must be between 1 and 5")
    if patch.get("email"):
        patch["email"] = patch["email"].lower()

    clauses = []
    if patch.get("phone"):
        clauses.append(Supplier.phone == patch["phone"])
    if patch.get("email"):
        clauses.append(Supplier.email == patch["email"])
    if clauses:
        clash = db.session.query(Supplier.id).filter(or_(*clauses))
        if supplier_id is not None:
            clash = clash.filter(Supplier.id != supplier_id)
        if clash.first() is not None:
            raise BusinessRuleError("Supplier with this phone or email already exists")


def _create_supplier_inner(*, patch: dict, actor: str | None) -> Supplier:
    _check_supplier_patch(patch)
    supplier = Supplier(**patch)
    if not supplier.company_name:
        supplier.company_name = supplier.name
    if not supplier.contact_person:
        supplier.contact_person = supplier.name
    supplier.created_by = actor
    db.session.add(supplier)
    db.session.flush()
    return supplier


def create_supplier(*, patch: dict, actor: str | None) -> Supplier:
    def _op():
        supplier = _create_supplier_inner(patch=dict(patch), actor=actor)
        db.session.commit()
        return supplier

    return run_with_retry(_op)


def update_supplier(*, supplier_id: int, patch: dict) -> Supplier:
    def _op():
        supplier = get_supplier(supplier_id, lock=True)
        fields = dict(patch)
        _check_supplier_patch(fields, supplier_id=supplier.id)
        for key, value in fields.items():
            setattr(supplier, key, value)
        db.session.commit()
        return supplier

    return run_with_retry(_op)


def update_performance(*, supplier_id: int, ratings: dict) -> Supplier:
    """Set any of reliability/quality/delivery_time (1..5) and stamp the update."""
    def _op():
        supplier = get_supplier(supplier_id, lock=True)
        fields = {k: v for k, v in ratings.items() if k in PERFORMANCE_FIELDS and v is not None}
        if not fields:
            raise ValidationError("At least one rating is required")
        _check_supplier_patch(fields, supplier_id=supplier.id)
        for key, value in fields.items():
            setattr(supplier, key, value)
        supplier.last_rating_update = utcnow()
        db.session.commit()
        return supplier

    return run_with_retry(_op)


def _active_suppliers():
    return db.session.query(Supplier).filter(
        Supplier.is_active.is_(True), Supplier.is_blacklisted.is_(False)
    )


def list_suppliers(*, page: int, limit: int, search: str | None = None) -> dict:
    query = db.session.query(Supplier)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(
            Supplier.name.ilike(pattern),
            Supplier.email.ilike(pattern),
            Supplier.phone.ilike(pattern),
            Supplier.company_name.ilike(pattern),
        ))
    query = query.order_by(Supplier.created_at.desc(), Supplier.id.desc())
    result = paginate(query, page=page, limit=limit, serialize=lambda s: s.to_dict())

    total_payables = (
        db.session.query(func.coalesce(func.sum(Supplier.outstanding_payable), 0)).scalar()
    )
    overdue_count = _active_suppliers().filter(Supplier.outstanding_payable > 0).count()
    result["stats"] = {"overdueCount": overdue_count, "totalPayables": float(total_payables or 0)}
    return result


def supplier_detail(supplier_id: int, *, now: datetime | None = None) -> dict:
    now = now or utcnow()
    supplier = get_supplier(supplier_id)
    data = supplier.to_dict()
    data["payableStatus"] = supplier.get_payable_status(now)
    data["overdueDays"] = supplier.get_overdue_days(now)
    return data


def overdue_suppliers(*, now: datetime | None = None) -> dict:
    now = now or utcnow()
    suppliers = (
        _active_suppliers()
        .filter(Supplier.outstanding_payable > 0)
        .order_by(Supplier.outstanding_payable.desc(), Supplier.id.asc())
        .all()
    )
    rows = []
    total = ZERO
    for supplier in suppliers:
        data = supplier.to_dict()
        data["overdueDays"] = supplier.get_overdue_days(now)
        data["payableStatus"] = supplier.get_payable_status(now)
        rows.append(data)
        total += _q(supplier.outstanding_payable)
    return {"suppliers": rows, "count": len(rows), "totalPayable": float(total)}


def top_suppliers(limit: int = 10) -> list[dict]:
    suppliers = (
        _active_suppliers()
        .order_by(Supplier.total_purchased.desc(), Supplier.id.asc())
        .limit(limit)
        .all()
    )
    return [s.to_dict() for s in suppliers]
