# Overview: Service-layer read models over the transaction ledger (summaries, cash flow, profit/loss).

from __future__ import annotations

from collections import OrderedDict
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP

from ..errors import ValidationError
from sqlalchemy import func

from ..extensions import db
from ..models import Customer, Invoice, Product, Supplier, Transaction
from ..models.ledger import ACCOUNTS, CASH_ACCOUNTS
from bizledger.time_utils import to_utc_z, utcnow
from .invoice_service import overdue_invoices
from .ledger_service import get_account_balance
"""
Reporting Semantics

- All reports are read-only projections over Transaction rows with
  start <= date <= end (inclusive). Default range: the last 30 days.
- Profit/loss:
    salesRevenue   = income entries of type 'sale'
    otherRevenue   = income entries of any other type
    purchaseCosts  = expense entries of type 'purchase'
    otherExpenses  = expense entries other than 'purchase' and 'payment_made'
  Settling a purchase (payment_made) moves money against a cost already
  booked by its 'purchase' entry, so it is not counted a second time.
  An invoice-linked 'adjustment' is a cancellation reversal: it nets
  against salesRevenue (expense side) or purchaseCosts (income side)
  instead of landing in the other* buckets.
- Dashboard figures come from invoices and party/product rows rather than
  the ledger; cancelled invoices are left out of every total.
- Cash flow only looks at the cash-like accounts (cash, bank_account,
  mobile_money); inflow/outflow are the signed entry amounts.
"""


CENT = Decimal("0.01")
ZERO = Decimal("0.00")

CASH_FLOW_PERIODS = ("daily", "weekly", "monthly")
DEFAULT_RANGE_DAYS = 30

CHART_PERIOD_DAYS = {"7d": 7, "30d": 30, "90d": 90, "1y": 365}
CHART_TYPES = {"sales": "sale", "purchases": "purchase"}
RECENT_ACTIVITY_DAYS = 7
RECENT_ACTIVITY_LIMIT = 5


def _q(value) -> Decimal:
    return Decimal(value or 0).quantize(CENT, rounding=ROUND_HALF_UP)


def resolve_range(start: datetime | None, end: datetime | None) -> tuple[datetime, datetime]:
    end = end or utcnow()
    start = start or (end - timedelta(days=DEFAULT_RANGE_DAYS))
    if start > end:
        raise ValidationError("startDate must be on or before endDate")
    return start, end


def _rows_in_range(start: datetime, end: datetime, *, accounts=None):
    query = db.session.query(Transaction).filter(Transaction.date >= start, Transaction.date <= end)
    if accounts is not None:
        query = query.filter(Transaction.account.in_(accounts))
    return query.order_by(Transaction.date.asc(), Transaction.id.asc()).all()


def _period_payload(start: datetime, end: datetime) -> dict:
    return {"startDate": to_utc_z(start), "endDate": to_utc_z(end)}


def _daily_totals(rows, tx_type: str, key: str) -> list[dict]:
    buckets: dict[str, list] = {}
    for tx in rows:
        if tx.type != tx_type:
            continue
        day = tx.date.strftime("%Y-%m-%d")
        bucket = buckets.setdefault(day, [ZERO, 0])
        bucket[0] += _q(tx.amount)
        bucket[1] += 1
    return [
        {"date": day, key: float(total), "count": count}
        for day, (total, count) in sorted(buckets.items(), reverse=True)
    ]


def financial_summary(start: datetime | None = None, end: datetime | None = None) -> dict:
    """By-category totals, daily sales/purchase sums and current account balances."""
    start, end = resolve_range(start, end)
    rows = _rows_in_range(start, end)

    by_category: "OrderedDict[str, list]" = OrderedDict()
    for tx in rows:
        bucket = by_category.setdefault(tx.category, [ZERO, 0])
        bucket[0] += _q(tx.amount)
        bucket[1] += 1

    return {
        "summary": [
            {"category": category, "totalAmount": float(total), "count": count}
            for category, (total, count) in sorted(by_category.items())
        ],
        "sales": _daily_totals(rows, "sale", "totalSales"),
        "purchases": _daily_totals(rows, "purchase", "totalPurchases"),
        "accountBalances": [
            {"account": account, "balance": float(get_account_balance(account))}
            for account in ACCOUNTS
        ],
        "period": _period_payload(start, end),
    }


def _bucket_key(dt: datetime, period: str) -> str:
    if period == "daily":
        return dt.strftime("%Y-%m-%d")
    if period == "weekly":
        year, week, _ = dt.isocalendar()
        return f"{year:04d}-W{week:02d}"
    return dt.strftime("%Y-%m")


def cash_flow(start: datetime | None = None, end: datetime | None = None, period: str = "daily") -> dict:
    if period not in CASH_FLOW_PERIODS:
        raise ValidationError(f"period must be one of {list(CASH_FLOW_PERIODS)}")
    start, end = resolve_range(start, end)

    buckets: "OrderedDict[str, dict]" = OrderedDict()
    for tx in _rows_in_range(start, end, accounts=CASH_ACCOUNTS):
        key = _bucket_key(tx.date, period)
        bucket = buckets.setdefault(key, {"inflow": ZERO, "outflow": ZERO})
        signed = _q(tx.signed_amount)
        if signed >= 0:
            bucket["inflow"] += signed
        else:
            bucket["outflow"] += -signed

    flows = [
        {
            "period": key,
            "inflow": float(b["inflow"]),
            "outflow": float(b["outflow"]),
            "net": float(b["inflow"] - b["outflow"]),
        }
        for key, b in sorted(buckets.items())
    ]
    return {
        "cashFlow": flows,
        "period": period,
        "dateRange": _period_payload(start, end),
    }


def _margin(numerator: Decimal, denominator: Decimal) -> float:
    if denominator <= 0:
        return 0.0
    return float((numerator / denominator * 100).quantize(CENT, rounding=ROUND_HALF_UP))


def profit_loss(start: datetime | None = None, end: datetime | None = None) -> dict:
    start, end = resolve_range(start, end)

    sales_revenue = other_revenue = purchase_costs = other_expenses = ZERO
    for tx in _rows_in_range(start, end):
        amount = _q(tx.amount)
        reversal = tx.type == "adjustment" and tx.invoice_id is not None
        if tx.category == "income":
            if reversal:
                purchase_costs -= amount
            elif tx.type == "sale":
                sales_revenue += amount
            else:
                other_revenue += amount
        elif tx.category == "expense":
            if reversal:
                sales_revenue -= amount
            elif tx.type == "purchase":
                purchase_costs += amount
            elif tx.type != "payment_made":
                other_expenses += amount

    total_revenue = sales_revenue + other_revenue
    total_expenses = purchase_costs + other_expenses
    gross_profit = sales_revenue - purchase_costs
    net_profit = total_revenue - total_expenses

    return {
        "profitLoss": {
            "totalRevenue": float(total_revenue),
            "totalExpenses": float(total_expenses),
            "salesRevenue": float(sales_revenue),
            "purchaseCosts": float(purchase_costs),
            "otherRevenue": float(other_revenue),
            "otherExpenses": float(other_expenses),
            "grossProfit": float(gross_profit),
            "netProfit": float(net_profit),
            "grossMargin": _margin(gross_profit, sales_revenue),
            "netMargin": _margin(net_profit, total_revenue),
        },
        "period": _period_payload(start, end),
    }


# =============================================================================
# DASHBOARD
# =============================================================================

def _invoice_stats(invoice_type: str, start: datetime, end: datetime) -> tuple[Decimal, Decimal, int]:
    invoices = (
        db.session.query(Invoice)
        .filter(
            Invoice.type == invoice_type,
            Invoice.status != "cancelled",
            Invoice.date >= start,
            Invoice.date <= end,
        )
        .all()
    )
    total = sum((_q(inv.total) for inv in invoices), ZERO)
    paid = sum((_q(inv.get_amount_paid()) for inv in invoices), ZERO)
    return total, paid, len(invoices)


def _recent_invoices(invoice_type: str, since: datetime, party_key: str) -> list[dict]:
    rows = (
        db.session.query(Invoice)
        .filter(Invoice.type == invoice_type, Invoice.date >= since)
        .order_by(Invoice.date.desc(), Invoice.id.desc())
        .limit(RECENT_ACTIVITY_LIMIT)
        .all()
    )
    return [
        {
            "id": inv.id,
            "invoiceNumber": inv.invoice_number,
            "date": to_utc_z(inv.date),
            party_key: inv.party_name(),
            "total": float(_q(inv.total)),
            "status": inv.status,
        }
        for inv in rows
    ]


def _sum_column(query, column) -> Decimal:
    return _q(query.with_entities(func.coalesce(func.sum(column), 0)).scalar())


def dashboard_overview(now: datetime | None = None) -> dict:
    """
    Headline numbers for the last DEFAULT_RANGE_DAYS days plus the
    current standing of parties, stock and accounts.
    """
    end = now or utcnow()
    start = end - timedelta(days=DEFAULT_RANGE_DAYS)

    sales_total, sales_paid, sales_count = _invoice_stats("sale", start, end)
    purchase_total, purchase_paid, purchase_count = _invoice_stats("purchase", start, end)

    active_customers = db.session.query(Customer).filter(
        Customer.is_active.is_(True), Customer.is_blacklisted.is_(False)
    )
    active_suppliers = db.session.query(Supplier).filter(
        Supplier.is_active.is_(True), Supplier.is_blacklisted.is_(False)
    )
    active_products = db.session.query(Product).filter(
        Product.is_active.is_(True), Product.is_archived.is_(False)
    )

    low_stock = active_products.filter(Product.stock_current <= Product.reorder_threshold).count()
    inventory_value = _sum_column(active_products, Product.stock_current * Product.cost_price)

    overdue = overdue_invoices(now=end)
    since = end - timedelta(days=RECENT_ACTIVITY_DAYS)

    return {
        "overview": {
            "totalSales": float(sales_total),
            "totalPurchases": float(purchase_total),
            "totalCustomers": active_customers.count(),
            "totalSuppliers": active_suppliers.count(),
            "totalProducts": active_products.count(),
            "lowStockProducts": low_stock,
            "inventoryValue": float(inventory_value),
            "totalCustomerDues": float(_sum_column(active_customers, Customer.outstanding_due)),
            "totalSupplierPayables": float(_sum_column(active_suppliers, Supplier.outstanding_payable)),
            "totalOverdueInvoices": len(overdue["overdueInvoices"]),
            "totalOverdueAmount": overdue["totalOverdueAmount"],
        },
        "recentActivity": {
            "recentSales": _recent_invoices("sale", since, "customer"),
            "recentPurchases": _recent_invoices("purchase", since, "supplier"),
        },
        "financialSummary": {
            "salesStats": {
                "totalSales": float(sales_total),
                "totalPaid": float(sales_paid),
                "count": sales_count,
            },
            "purchaseStats": {
                "totalPurchases": float(purchase_total),
                "totalPaid": float(purchase_paid),
                "count": purchase_count,
            },
            "accountBalances": [
                {"account": account, "balance": float(get_account_balance(account))}
                for account in ACCOUNTS
            ],
        },
        "period": _period_payload(start, end),
    }


def sales_chart(period: str = "30d", chart_type: str = "sales", now: datetime | None = None) -> dict:
    """Per-day invoice totals for the chart window, oldest day first."""
    if period not in CHART_PERIOD_DAYS:
        raise ValidationError(f"period must be one of {list(CHART_PERIOD_DAYS)}")
    if chart_type not in CHART_TYPES:
        raise ValidationError(f"type must be one of {list(CHART_TYPES)}")

    end = now or utcnow()
    start = end - timedelta(days=CHART_PERIOD_DAYS[period])
    invoices = (
        db.session.query(Invoice)
        .filter(
            Invoice.type == CHART_TYPES[chart_type],
            Invoice.status != "cancelled",
            Invoice.date >= start,
            Invoice.date <= end,
        )
        .all()
    )

    buckets: dict[str, list] = {}
    for inv in invoices:
        bucket = buckets.setdefault(inv.date.strftime("%Y-%m-%d"), [ZERO, 0])
        bucket[0] += _q(inv.total)
        bucket[1] += 1

    return {
        "data": [
            {"date": day, "total": float(total), "count": count}
            for day, (total, count) in sorted(buckets.items())
        ],
        "period": _period_payload(start, end),
        "type": chart_type,
    }
