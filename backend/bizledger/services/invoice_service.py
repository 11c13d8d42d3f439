# Overview: Service-layer orchestration of invoice events across stock, party and ledger records.

"""
Business Event Orchestrator

Every invoice event below is ONE unit of work: each step flushes, a single
commit happens at the end, and any failure rolls the whole session back.

    event              stock                party                    ledger
    sale invoice       sale per line        billed=total, paid=p     sale/income/receivables(total)
                                                                     payment_received/asset/<method>(p)
    quick invoice      sale per line        billed=total, paid=total sale/income/<method>(total)
    purchase invoice   purchase per line    billed=total, paid=p     purchase/expense/payables(total)
                                                                     payment_made/expense/<method>(p)
    invoice payment    -                    paid=amount              payment_received/asset or
                                                                     payment_made/expense, <method>
    cancel invoice     reverse lines        billed=-total            adjustment reversing the creation

All checks (party state, product availability, stock shortfalls, credit,
overpayment) run before the first mutation.
Ledger entries carry the invoice date only when one was supplied explicitly;
otherwise they are dated when the account lock is taken.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP

from flask import current_app
from sqlalchemy import or_

from ..errors import (
    BusinessRuleError,
    CreditLimitError,
    InsufficientStockError,
    InvoiceStateError,
    NotFoundError,
    OverpaymentError,
    PartyBlockedError,
    ValidationError,
)
from ..extensions import db
from ..models import Customer, Invoice, InvoiceItem, Supplier
from ..models.invoices import INVOICE_STATUSES, INVOICE_TYPES, PAYMENT_METHODS
from ..models.ledger import PAYMENT_METHOD_ACCOUNTS
from bizledger.time_utils import utcnow, whole_days_between
from .concurrency import lock_for_update, run_with_retry
from .document_service import next_invoice_number
from .ledger_service import append_transaction
from .pagination import paginate
from .party_service import (
    _create_customer_inner,
    _create_supplier_inner,
    find_or_create_walk_in_customer,
    get_customer,
    get_supplier,
    record_financial_event,
)
from .stock_service import _apply_movement_inner, _create_product_inner, find_shortfalls, get_product


CENT = Decimal("0.01")
ZERO = Decimal("0.00")

CUSTOMER_INVOICE_TYPES = ("sale", "quick")


def _q(value) -> Decimal:
    return Decimal(value or 0).quantize(CENT, rounding=ROUND_HALF_UP)


def _method_account(method: str) -> str:
    if method not in PAYMENT_METHODS:
        raise ValidationError(f"paymentMethod must be one of {list(PAYMENT_METHODS)}")
    return PAYMENT_METHOD_ACCOUNTS[method]


def _due_date(invoice_type: str, date: datetime) -> datetime | None:
    if invoice_type == "quick":
        return None
    days = current_app.config.get("INVOICE_DUE_DAYS", 30)
    return date + timedelta(days=days)


# =============================================================================
# LOOKUPS
# =============================================================================

def get_invoice(invoice_id: int, *, lock: bool = False) -> Invoice:
    query = db.session.query(Invoice).filter_by(id=invoice_id)
    if lock:
        query = lock_for_update(query)
    invoice = query.first()
    if invoice is None:
        raise NotFoundError(f"Invoice not found: {invoice_id}")
    return invoice


# =============================================================================
# PRE-CHECKS
# =============================================================================

def _check_party(party) -> None:
    if party.is_blacklisted:
        kind = "Customer" if isinstance(party, Customer) else "Supplier"
        raise PartyBlockedError(
            f"{kind} {party.name} is blacklisted",
            details={"partyId": party.id},
        )


def _load_sellable_products(items: list[dict]) -> dict:
    """Lock every product on the invoice and report all shortfalls at once."""
    if not items:
        raise ValidationError("At least one item is required")

    products = {}
    requirements: dict[int, int] = {}
    for item in items:
        product_id = item["product_id"]
        if product_id not in products:
            product = get_product(product_id, lock=True)
            if not product.is_active or product.is_archived:
                raise BusinessRuleError(
                    f"Product {product.name} is not available for sale",
                    details={"productId": product.id},
                )
            products[product_id] = product
        requirements[product_id] = requirements.get(product_id, 0) + item["quantity"]

    shortfalls = find_shortfalls(requirements)
    if shortfalls:
        names = ", ".join(s["name"] for s in shortfalls)
        raise InsufficientStockError(
            f"Insufficient stock for {names}",
            details={"shortfalls": shortfalls},
        )
    return products


def _check_initial_payment(total: Decimal, payment: Decimal) -> None:
    if payment < 0:
        raise ValidationError("paymentAmount must be >= 0")
    if payment > total:
        raise OverpaymentError(
            "Payment amount exceeds invoice total",
            details={"amount": float(payment), "total": float(total)},
        )


# =============================================================================
# BUILDING
# =============================================================================

def _new_invoice(
    *,
    invoice_type: str,
    items: list[dict],
    now: datetime,
    actor: str | None,
    date: datetime | None = None,
    discount=ZERO,
    tax=ZERO,
    notes: str | None = None,
    terms: str | None = None,
) -> Invoice:
    """Build an unsaved invoice with its lines and totals."""
    date = date or now
    invoice = Invoice(
        type=invoice_type,
        invoice_number=next_invoice_number(invoice_type, now),
        date=date,
        due_date=_due_date(invoice_type, date),
        discount=_q(discount),
        tax=_q(tax),
        notes=notes,
        created_by=actor,
        status="draft",
        payment_status="unpaid",
    )
    if invoice_type == "quick":
        invoice.terms = None
    elif terms:
        invoice.terms = terms

    for line_no, item in enumerate(items, start=1):
        quantity = item["quantity"]
        unit_price = _q(item["unit_price"])
        invoice.items.append(InvoiceItem(
            line_no=line_no,
            product_id=item["product_id"],
            quantity=quantity,
            unit_price=unit_price,
            total_price=_q(quantity * unit_price),
            discount=_q(item.get("discount")),
            tax=_q(item.get("tax")),
            description=item.get("description"),
        ))

    invoice.calculate_totals()
    if invoice.total < 0:
        raise ValidationError("discount cannot exceed subtotal plus tax")
    return invoice


def _move_lines(invoice: Invoice, movement_type: str, *, actor: str | None, reason: str, now: datetime) -> None:
    for item in invoice.items:
        _apply_movement_inner(
            product=item.product,
            quantity=item.quantity,
            movement_type=movement_type,
            actor=actor,
            reason=reason,
            reference_id=invoice.id,
            reference_model="Invoice",
            now=now,
        )


# =============================================================================
# CREATION
# =============================================================================

def create_sale_invoice(
    *,
    items: list[dict],
    actor: str | None,
    customer_id: int | None = None,
    customer_patch: dict | None = None,
    date: datetime | None = None,
    discount=ZERO,
    tax=ZERO,
    notes: str | None = None,
    terms: str | None = None,
    payment_amount=ZERO,
    payment_method: str = "cash",
) -> Invoice:
    """
    Sell to an existing customer (customer_id) or one registered inline
    (customer_patch). The unpaid remainder must fit the customer's credit.
    """
    payment = _q(payment_amount)
    account = _method_account(payment_method)

    def _op():
        now = utcnow()
        if customer_patch is not None:
            customer = _create_customer_inner(patch=dict(customer_patch), actor=actor)
        elif customer_id is not None:
            customer = get_customer(customer_id, lock=True)
        else:
            raise ValidationError("Either customer or customerInfo is required")
        _check_party(customer)

        products = _load_sellable_products(items)
        invoice = _new_invoice(
            invoice_type="sale", items=items, now=now, actor=actor, date=date,
            discount=discount, tax=tax, notes=notes, terms=terms,
        )
        _check_initial_payment(invoice.total, payment)

        remainder = invoice.total - payment
        if remainder > 0 and not customer.can_make_purchase(remainder):
            available = _q(customer.credit_limit) - _q(customer.outstanding_due)
            raise CreditLimitError(
                "Customer credit limit exceeded",
                details={"requested": float(remainder), "available": float(max(ZERO, available))},
            )

        invoice.customer = customer
        for item in invoice.items:
            item.product = products[item.product_id]
        db.session.add(invoice)
        db.session.flush()

        _move_lines(invoice, "sale", actor=actor, reason=f"Sale: {invoice.invoice_number}", now=now)

        invoice.update_status(now)
        if payment > 0:
            invoice.add_payment(payment, payment_method, actor, now)

        record_financial_event(customer, invoice.total, payment, now=now)

        append_transaction(
            account="receivables",
            category="income",
            type="sale",
            amount=invoice.total,
            description=f"Sales invoice: {invoice.invoice_number}",
            date=date,
            payment_method=payment_method,
            reference=invoice.invoice_number,
            customer_id=customer.id,
            invoice_id=invoice.id,
            actor=actor,
        )
        if payment > 0:
            append_transaction(
                account=account,
                category="asset",
                type="payment_received",
                amount=payment,
                description=f"Payment received: {invoice.invoice_number}",
                date=date,
                payment_method=payment_method,
                reference=invoice.invoice_number,
                customer_id=customer.id,
                invoice_id=invoice.id,
                actor=actor,
            )

        db.session.commit()
        return invoice

    invoice = run_with_retry(_op)
    current_app.logger.info(
        "Created sales invoice %s total=%s paid=%s", invoice.invoice_number, invoice.total, payment
    )
    return invoice


def create_quick_invoice(
    *,
    items: list[dict],
    actor: str | None,
    customer_phone: str | None = None,
    customer_name: str | None = None,
    notes: str | None = None,
    payment_method: str = "cash",
) -> Invoice:
    """Point-of-sale invoice: always settled in full at creation."""
    account = _method_account(payment_method)

    def _op():
        now = utcnow()
        customer = find_or_create_walk_in_customer(phone=customer_phone, name=customer_name, actor=actor)
        _check_party(customer)

        products = _load_sellable_products(items)
        invoice = _new_invoice(invoice_type="quick", items=items, now=now, actor=actor, notes=notes)
        invoice.customer = customer
        for item in invoice.items:
            item.product = products[item.product_id]
        db.session.add(invoice)
        db.session.flush()

        _move_lines(invoice, "sale", actor=actor, reason=f"Quick sale: {invoice.invoice_number}", now=now)

        invoice.update_status(now)
        if invoice.total > 0:
            invoice.add_payment(invoice.total, payment_method, actor, now)

        record_financial_event(customer, invoice.total, invoice.total, now=now)

        append_transaction(
            account=account,
            category="income",
            type="sale",
            amount=invoice.total,
            description=f"Quick invoice: {invoice.invoice_number}",
            payment_method=payment_method,
            reference=invoice.invoice_number,
            customer_id=customer.id,
            invoice_id=invoice.id,
            actor=actor,
        )

        db.session.commit()
        return invoice

    invoice = run_with_retry(_op)
    current_app.logger.info("Created quick invoice %s total=%s", invoice.invoice_number, invoice.total)
    return invoice


def create_purchase_invoice(
    *,
    items: list[dict],
    actor: str | None,
    supplier_id: int | None = None,
    supplier_patch: dict | None = None,
    date: datetime | None = None,
    discount=ZERO,
    tax=ZERO,
    notes: str | None = None,
    terms: str | None = None,
    payment_amount=ZERO,
    payment_method: str = "cash",
) -> Invoice:
    """
    Receive goods from a supplier.

    Lines either reference an existing product (product_id) or carry a
    new_product patch; new products are created at zero stock and then
    receive the purchased quantity like any other line.
    """
    payment = _q(payment_amount)
    account = _method_account(payment_method)
    if not items:
        raise ValidationError("At least one item is required")

    def _op():
        now = utcnow()
        if supplier_patch is not None:
            supplier = _create_supplier_inner(patch=dict(supplier_patch), actor=actor)
        elif supplier_id is not None:
            supplier = get_supplier(supplier_id, lock=True)
        else:
            raise ValidationError("Either supplier or supplierInfo is required")
        _check_party(supplier)

        lines = []
        for item in items:
            line = dict(item)
            new_product = line.pop("new_product", None)
            if new_product is not None:
                patch = dict(new_product)
                patch["stock_current"] = 0
                patch.setdefault("supplier_id", supplier.id)
                product = _create_product_inner(patch=patch, actor=actor, now=now)
            else:
                product = get_product(line["product_id"], lock=True)
            line["product_id"] = product.id
            line["product"] = product
            lines.append(line)

        invoice = _new_invoice(
            invoice_type="purchase", items=lines, now=now, actor=actor, date=date,
            discount=discount, tax=tax, notes=notes, terms=terms,
        )
        _check_initial_payment(invoice.total, payment)

        invoice.supplier = supplier
        for item, line in zip(invoice.items, lines):
            item.product = line["product"]
        db.session.add(invoice)
        db.session.flush()

        _move_lines(
            invoice, "purchase", actor=actor,
            reason=f"Purchase from {supplier.company_name or supplier.name}: {invoice.invoice_number}",
            now=now,
        )

        invoice.update_status(now)
        if payment > 0:
            invoice.add_payment(payment, payment_method, actor, now)

        record_financial_event(supplier, invoice.total, payment, now=now)

        append_transaction(
            account="payables",
            category="expense",
            type="purchase",
            amount=invoice.total,
            description=f"Purchase invoice: {invoice.invoice_number}",
            date=date,
            payment_method=payment_method,
            reference=invoice.invoice_number,
            supplier_id=supplier.id,
            invoice_id=invoice.id,
            actor=actor,
        )
        if payment > 0:
            append_transaction(
                account=account,
                category="expense",
                type="payment_made",
                amount=payment,
                description=f"Payment made: {invoice.invoice_number}",
                date=date,
                payment_method=payment_method,
                reference=invoice.invoice_number,
                supplier_id=supplier.id,
                invoice_id=invoice.id,
                actor=actor,
            )

        db.session.commit()
        return invoice

    invoice = run_with_retry(_op)
    current_app.logger.info(
        "Created purchase invoice %s total=%s paid=%s", invoice.invoice_number, invoice.total, payment
    )
    return invoice


# =============================================================================
# PAYMENTS / CANCELLATION / EDITS
# =============================================================================

def add_payment(
    *,
    invoice_id: int,
    amount,
    method: str,
    actor: str | None,
    reference: str | None = None,
    notes: str | None = None,
) -> Invoice:
    """Record a payment against an invoice, its party and the ledger."""
    amount = _q(amount)
    account = _method_account(method)

    def _op():
        now = utcnow()
        invoice = get_invoice(invoice_id, lock=True)
        invoice.add_payment(amount, method, actor, now, reference=reference, notes=notes)

        if invoice.type in CUSTOMER_INVOICE_TYPES:
            party = invoice.customer
            posting = {"category": "asset", "type": "payment_received", "customer_id": invoice.customer_id}
            label = "Payment received"
        else:
            party = invoice.supplier
            posting = {"category": "expense", "type": "payment_made", "supplier_id": invoice.supplier_id}
            label = "Payment made"

        if party is not None:
            record_financial_event(party, ZERO, amount, now=now)

        append_transaction(
            account=account,
            amount=amount,
            description=f"{label}: {invoice.invoice_number}",
            payment_method=method,
            reference=reference or invoice.invoice_number,
            invoice_id=invoice.id,
            notes=notes,
            actor=actor,
            **posting,
        )

        db.session.commit()
        return invoice

    return run_with_retry(_op)


def cancel_invoice(*, invoice_id: int, actor: str | None, reason: str | None = None) -> Invoice:
    """
    Cancel an unpaid sale or purchase invoice.

    Compensates every effect of creation: stock lines are reversed, the
    party is billed -total and an 'adjustment' entry offsets the original
    posting. Cancelled is terminal.
    """
    def _op():
        now = utcnow()
        invoice = get_invoice(invoice_id, lock=True)
        if invoice.status == "cancelled":
            raise InvoiceStateError(f"Invoice {invoice.invoice_number} is already cancelled")
        if invoice.type == "quick":
            raise InvoiceStateError("Quick invoices cannot be cancelled")
        if invoice.payments:
            raise InvoiceStateError(
                f"Invoice {invoice.invoice_number} has recorded payments",
                details={"amountPaid": float(invoice.get_amount_paid())},
            )

        label = f"Cancelled: {invoice.invoice_number}"
        if invoice.type == "sale":
            _move_lines(invoice, "stock_in", actor=actor, reason=label, now=now)
            party = invoice.customer
            posting = {
                "account": "receivables", "category": "expense", "customer_id": invoice.customer_id,
            }
        else:
            _move_lines(invoice, "stock_out", actor=actor, reason=label, now=now)
            party = invoice.supplier
            posting = {
                "account": "payables", "category": "income", "supplier_id": invoice.supplier_id,
            }

        if party is not None:
            record_financial_event(party, -_q(invoice.total), ZERO, now=now)

        append_transaction(
            type="adjustment",
            amount=invoice.total,
            description=f"Invoice cancelled: {invoice.invoice_number}",
            payment_method="adjustment",
            reference=invoice.invoice_number,
            invoice_id=invoice.id,
            notes=reason,
            actor=actor,
            **posting,
        )

        invoice.status = "cancelled"
        invoice.cancelled_at = now
        invoice.cancelled_by = actor
        invoice.cancellation_reason = reason

        db.session.commit()
        return invoice

    invoice = run_with_retry(_op)
    current_app.logger.info("Cancelled invoice %s (%s)", invoice.invoice_number, reason or "no reason")
    return invoice


def update_invoice(*, invoice_id: int, patch: dict) -> Invoice:
    """Only notes and date are editable; amounts and lines are fixed at creation."""
    def _op():
        invoice = get_invoice(invoice_id, lock=True)
        if "notes" in patch:
            invoice.notes = patch["notes"]
        if patch.get("date") is not None:
            invoice.date = patch["date"]
        db.session.commit()
        return invoice

    return run_with_retry(_op)


# =============================================================================
# OVERDUE
# =============================================================================

def _open_past_due(now: datetime):
    return db.session.query(Invoice).filter(
        Invoice.type != "quick",
        Invoice.status != "cancelled",
        Invoice.payment_status != "fully_paid",
        Invoice.due_date.isnot(None),
        Invoice.due_date < now,
    )


def overdue_invoices(*, now: datetime | None = None) -> dict:
    now = now or utcnow()
    invoices = [
        inv for inv in _open_past_due(now).order_by(Invoice.due_date.asc(), Invoice.id.asc()).all()
        if whole_days_between(inv.due_date, now) > 0
    ]
    total = sum((inv.get_amount_due() for inv in invoices), ZERO)
    return {
        "overdueInvoices": [inv.to_dict(now) for inv in invoices],
        "totalOverdueAmount": float(_q(total)),
    }


def refresh_overdue_statuses(*, now: datetime | None = None) -> dict:
    """Recompute status for open past-due invoices so 'overdue' is stored."""
    def _op():
        current = now or utcnow()
        checked = updated = 0
        for invoice in _open_past_due(current).all():
            checked += 1
            before = invoice.status
            invoice.update_status(current)
            if invoice.status != before:
                updated += 1
        db.session.commit()
        return {"checked": checked, "updated": updated}

    result = run_with_retry(_op)
    current_app.logger.info(
        "Overdue sweep: %d of %d open invoices changed status", result["updated"], result["checked"]
    )
    return result


# =============================================================================
# QUERIES
# =============================================================================

def list_invoices(
    *,
    invoice_type: str,
    page: int,
    limit: int,
    status: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    search: str | None = None,
) -> dict:
    if invoice_type not in INVOICE_TYPES:
        raise ValidationError(f"type must be one of {list(INVOICE_TYPES)}")

    query = db.session.query(Invoice).filter(Invoice.type == invoice_type)
    if status and status != "all":
        if status not in INVOICE_STATUSES:
            raise ValidationError(f"status must be one of {list(INVOICE_STATUSES)}")
        query = query.filter(Invoice.status == status)
    if start is not None:
        query = query.filter(Invoice.date >= start)
    if end is not None:
        query = query.filter(Invoice.date <= end)
    if search:
        pattern = f"%{search.strip()}%"
        if invoice_type == "purchase":
            query = query.outerjoin(Supplier, Invoice.supplier_id == Supplier.id).filter(or_(
                Invoice.invoice_number.ilike(pattern),
                Supplier.name.ilike(pattern),
                Supplier.phone.ilike(pattern),
            ))
        else:
            query = query.outerjoin(Customer, Invoice.customer_id == Customer.id).filter(or_(
                Invoice.invoice_number.ilike(pattern),
                Customer.name.ilike(pattern),
                Customer.phone.ilike(pattern),
            ))

    now = utcnow()
    query = query.order_by(Invoice.date.desc(), Invoice.id.desc())
    return paginate(query, page=page, limit=limit, serialize=lambda inv: inv.to_dict(now))


def customer_invoices(customer_id: int, *, now: datetime | None = None) -> dict:
    now = now or utcnow()
    customer = get_customer(customer_id)
    invoices = (
        db.session.query(Invoice)
        .filter(Invoice.customer_id == customer.id, Invoice.type.in_(CUSTOMER_INVOICE_TYPES))
        .order_by(Invoice.date.desc(), Invoice.id.desc())
        .all()
    )

    live = [inv for inv in invoices if inv.status != "cancelled"]
    return {
        "invoices": [inv.to_dict(now) for inv in invoices],
        "stats": {
            "totalInvoices": len(invoices),
            "totalAmount": float(sum((_q(inv.total) for inv in live), ZERO)),
            "totalPaid": float(sum((inv.get_amount_paid() for inv in live), ZERO)),
            "totalDue": float(sum((inv.get_amount_due() for inv in live), ZERO)),
        },
    }
