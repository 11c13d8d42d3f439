from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from bizledger.errors import ValidationError
from bizledger.extensions import db
from bizledger.services import invoice_service, ledger_service, reporting_service
from bizledger.time_utils import utcnow


START = datetime(2024, 3, 1)
END = datetime(2024, 3, 31, 23, 59, 59)


def _post(account, category, type, amount, date):
    ledger_service.append_transaction(
        account=account,
        category=category,
        type=type,
        amount=Decimal(amount),
        description=f"{type} {amount}",
        date=date,
    )


@pytest.fixture
def march_ledger(db_session):
    _post("receivables", "income", "sale", "1000", datetime(2024, 3, 4, 10))
    _post("cash", "asset", "payment_received", "400", datetime(2024, 3, 4, 11))
    _post("payables", "expense", "purchase", "600", datetime(2024, 3, 5, 9))
    _post("cash", "expense", "payment_made", "300", datetime(2024, 3, 5, 10))
    _post("cash", "expense", "adjustment", "50", datetime(2024, 3, 12, 8))
    _post("bank_account", "income", "adjustment", "20", datetime(2024, 3, 12, 9))
    # Outside the range
    _post("cash", "income", "sale", "999", datetime(2024, 4, 2))
    db.session.commit()


def test_profit_loss_excludes_supplier_payments(march_ledger):
    result = reporting_service.profit_loss(START, END)["profitLoss"]

    assert result == {
        "totalRevenue": 1020.0,
        "totalExpenses": 650.0,
        "salesRevenue": 1000.0,
        "purchaseCosts": 600.0,
        "otherRevenue": 20.0,
        "otherExpenses": 50.0,
        "grossProfit": 400.0,
        "netProfit": 370.0,
        "grossMargin": 40.0,
        "netMargin": 36.27,
    }


def test_profit_loss_with_no_revenue_has_zero_margins(db_session):
    result = reporting_service.profit_loss(START, END)["profitLoss"]
    assert result["grossMargin"] == 0.0
    assert result["netMargin"] == 0.0


def test_cash_flow_daily_covers_cash_like_accounts(march_ledger):
    result = reporting_service.cash_flow(START, END, period="daily")

    assert result["cashFlow"] == [
        {"period": "2024-03-04", "inflow": 400.0, "outflow": 0.0, "net": 400.0},
        {"period": "2024-03-05", "inflow": 0.0, "outflow": 300.0, "net": -300.0},
        {"period": "2024-03-12", "inflow": 20.0, "outflow": 50.0, "net": -30.0},
    ]


def test_cash_flow_weekly_and_monthly_buckets(march_ledger):
    weekly = reporting_service.cash_flow(START, END, period="weekly")["cashFlow"]
    monthly = reporting_service.cash_flow(START, END, period="monthly")["cashFlow"]

    assert [row["period"] for row in weekly] == ["2024-W10", "2024-W11"]
    assert monthly == [{"period": "2024-03", "inflow": 420.0, "outflow": 350.0, "net": 70.0}]


def test_cash_flow_rejects_unknown_period(db_session):
    with pytest.raises(ValidationError):
        reporting_service.cash_flow(START, END, period="hourly")


def test_financial_summary(march_ledger):
    result = reporting_service.financial_summary(START, END)

    by_category = {row["category"]: row for row in result["summary"]}
    assert by_category["income"] == {"category": "income", "totalAmount": 1020.0, "count": 2}
    assert by_category["expense"]["totalAmount"] == 950.0
    assert result["sales"] == [{"date": "2024-03-04", "totalSales": 1000.0, "count": 1}]
    assert result["purchases"] == [{"date": "2024-03-05", "totalPurchases": 600.0, "count": 1}]

    balances = {row["account"]: row["balance"] for row in result["accountBalances"]}
    assert balances["cash"] == 1049.0


def test_start_after_end_rejected(db_session):
    with pytest.raises(ValidationError):
        reporting_service.profit_loss(END, START)


def _line(product, quantity, unit_price):
    return {"product_id": product.id, "quantity": quantity, "unit_price": Decimal(unit_price)}


def test_cancelled_sale_nets_out_of_profit_loss(product, credit_customer):
    invoice = invoice_service.create_sale_invoice(
        items=[_line(product, 2, "100")], actor="tester", customer_id=credit_customer.id,
    )
    invoice_service.cancel_invoice(invoice_id=invoice.id, actor="tester", reason="Duplicate")

    result = reporting_service.profit_loss()["profitLoss"]
    assert result["salesRevenue"] == 0.0
    assert result["otherExpenses"] == 0.0
    assert result["totalExpenses"] == 0.0
    assert result["grossProfit"] == 0.0
    assert result["grossMargin"] == 0.0


def test_cancelled_purchase_nets_out_of_profit_loss(product, supplier):
    invoice = invoice_service.create_purchase_invoice(
        items=[_line(product, 5, "60")], actor="tester", supplier_id=supplier.id,
    )
    invoice_service.cancel_invoice(invoice_id=invoice.id, actor="tester")

    result = reporting_service.profit_loss()["profitLoss"]
    assert result["purchaseCosts"] == 0.0
    assert result["otherRevenue"] == 0.0
    assert result["totalRevenue"] == 0.0
    assert result["netProfit"] == 0.0


@pytest.fixture
def trading_month(product, second_product, credit_customer, supplier):
    sale = invoice_service.create_sale_invoice(
        items=[_line(product, 2, "100")], actor="tester", customer_id=credit_customer.id,
    )
    cancelled = invoice_service.create_sale_invoice(
        items=[_line(product, 1, "100")], actor="tester", customer_id=credit_customer.id,
    )
    invoice_service.cancel_invoice(invoice_id=cancelled.id, actor="tester")
    purchase = invoice_service.create_purchase_invoice(
        items=[_line(second_product, 5, "200")],
        actor="tester",
        supplier_id=supplier.id,
        payment_amount=Decimal("400"),
    )
    return sale, cancelled, purchase


def test_dashboard_overview(trading_month):
    sale, cancelled, purchase = trading_month

    result = reporting_service.dashboard_overview()
    overview = result["overview"]

    assert overview["totalSales"] == 200.0
    assert overview["totalPurchases"] == 1000.0
    assert overview["totalCustomers"] == 1
    assert overview["totalSuppliers"] == 1
    assert overview["totalProducts"] == 2
    assert overview["lowStockProducts"] == 1
    # 48 x 60 + 8 x 200
    assert overview["inventoryValue"] == 4480.0
    assert overview["totalCustomerDues"] == 200.0
    assert overview["totalSupplierPayables"] == 600.0
    assert overview["totalOverdueInvoices"] == 0

    summary = result["financialSummary"]
    assert summary["salesStats"] == {"totalSales": 200.0, "totalPaid": 0.0, "count": 1}
    assert summary["purchaseStats"] == {"totalPurchases": 1000.0, "totalPaid": 400.0, "count": 1}
    balances = {row["account"]: row["balance"] for row in summary["accountBalances"]}
    assert balances["receivables"] == 200.0

    recent_sales = result["recentActivity"]["recentSales"]
    assert [row["id"] for row in recent_sales] == [cancelled.id, sale.id]
    assert recent_sales[1]["customer"] == "Bola Stores"
    assert result["recentActivity"]["recentPurchases"][0]["supplier"] == "Apex Auto Supplies"


def test_dashboard_overview_reports_overdue_invoices(trading_month):
    later = utcnow() + timedelta(days=45)

    overview = reporting_service.dashboard_overview(now=later)["overview"]

    assert overview["totalSales"] == 0.0
    assert overview["totalOverdueInvoices"] == 2
    assert overview["totalOverdueAmount"] == 800.0


def test_sales_chart_groups_by_day(trading_month):
    sales = reporting_service.sales_chart(period="7d", chart_type="sales")
    purchases = reporting_service.sales_chart(period="1y", chart_type="purchases")

    today = utcnow().strftime("%Y-%m-%d")
    assert sales["data"] == [{"date": today, "total": 200.0, "count": 1}]
    assert sales["type"] == "sales"
    assert purchases["data"] == [{"date": today, "total": 1000.0, "count": 1}]


@pytest.mark.parametrize("period, chart_type", [("14d", "sales"), ("30d", "quotes")])
def test_sales_chart_rejects_unknown_options(db_session, period, chart_type):
    with pytest.raises(ValidationError):
        reporting_service.sales_chart(period=period, chart_type=chart_type)
