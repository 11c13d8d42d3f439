from datetime import timedelta
from decimal import Decimal

import pytest

from bizledger.errors import (
    CreditLimitError,
    InsufficientStockError,
    InvoiceStateError,
    OverpaymentError,
    PartyBlockedError,
    ValidationError,
)
from bizledger.models import Product, ProductActivity, Transaction
from bizledger.services import invoice_service, ledger_service, party_service, stock_service
from bizledger.time_utils import utcnow


def line(product, quantity, unit_price):
    return {"product_id": product.id, "quantity": quantity, "unit_price": Decimal(unit_price)}


def _transactions(invoice_id):
    return (
        Transaction.query.filter_by(invoice_id=invoice_id)
        .order_by(Transaction.id.asc())
        .all()
    )


def test_fully_paid_sale(product, customer):
    invoice = invoice_service.create_sale_invoice(
        items=[line(product, 2, "100")],
        actor="tester",
        customer_id=customer.id,
        payment_amount=Decimal("200"),
    )

    assert invoice.total == Decimal("200.00")
    assert invoice.status == "paid"
    assert invoice.payment_status == "fully_paid"
    assert invoice.get_amount_due() == Decimal("0.00")
    assert stock_service.get_product(product.id).stock_current == 48

    refreshed = party_service.get_customer(customer.id)
    assert refreshed.total_billed == Decimal("200.00")
    assert refreshed.outstanding_due == Decimal("0.00")

    postings = [(tx.account, tx.category, tx.type, tx.amount) for tx in _transactions(invoice.id)]
    assert postings == [
        ("receivables", "income", "sale", Decimal("200.00")),
        ("cash", "asset", "payment_received", Decimal("200.00")),
    ]


def test_partially_paid_sale(product, customer):
    invoice = invoice_service.create_sale_invoice(
        items=[line(product, 2, "100")],
        actor="tester",
        customer_id=customer.id,
        payment_amount=Decimal("50"),
    )

    data = invoice.to_dict(utcnow())
    assert data["paymentStatus"] == "partially_paid"
    assert data["status"] == "partially_paid"
    assert data["amountDue"] == 150.0
    assert party_service.get_customer(customer.id).outstanding_due == Decimal("150.00")


def test_payment_beyond_amount_due_rejected(product, customer):
    invoice = invoice_service.create_sale_invoice(
        items=[line(product, 2, "100")],
        actor="tester",
        customer_id=customer.id,
        payment_amount=Decimal("50"),
    )

    with pytest.raises(OverpaymentError):
        invoice_service.add_payment(invoice_id=invoice.id, amount=Decimal("200"), method="cash", actor="tester")

    refreshed = invoice_service.get_invoice(invoice.id)
    assert refreshed.get_amount_paid() == Decimal("50.00")
    assert len(_transactions(invoice.id)) == 2


def test_add_payment_settles_invoice(product, customer):
    invoice = invoice_service.create_sale_invoice(
        items=[line(product, 2, "100")],
        actor="tester",
        customer_id=customer.id,
        payment_amount=Decimal("50"),
    )

    paid = invoice_service.add_payment(
        invoice_id=invoice.id, amount=Decimal("150"), method="bank_transfer", actor="tester",
    )

    assert paid.status == "paid"
    assert paid.payment_status == "fully_paid"
    last = _transactions(invoice.id)[-1]
    assert (last.account, last.type, last.amount) == ("bank_account", "payment_received", Decimal("150.00"))
    assert party_service.get_customer(customer.id).outstanding_due == Decimal("0.00")


def test_oversell_reports_every_shortfall(product, second_product, customer):
    with pytest.raises(InsufficientStockError) as excinfo:
        invoice_service.create_sale_invoice(
            items=[line(product, 60, "100"), line(second_product, 5, "350")],
            actor="tester",
            customer_id=customer.id,
        )

    shortfalls = excinfo.value.details["shortfalls"]
    assert {s["productId"] for s in shortfalls} == {product.id, second_product.id}
    assert stock_service.get_product(product.id).stock_current == 50
    assert stock_service.get_product(second_product.id).stock_current == 3
    assert Transaction.query.count() == 0


def test_repeated_product_lines_are_summed(second_product, customer):
    with pytest.raises(InsufficientStockError):
        invoice_service.create_sale_invoice(
            items=[line(second_product, 2, "350"), line(second_product, 2, "350")],
            actor="tester",
            customer_id=customer.id,
        )


def test_credit_limit_enforced(product, credit_customer):
    with pytest.raises(CreditLimitError) as excinfo:
        invoice_service.create_sale_invoice(
            items=[line(product, 11, "100")],
            actor="tester",
            customer_id=credit_customer.id,
        )

    assert excinfo.value.details == {"requested": 1100.0, "available": 1000.0}
    assert stock_service.get_product(product.id).stock_current == 50


def test_credit_sale_within_limit_leaves_balance_due(product, credit_customer):
    invoice = invoice_service.create_sale_invoice(
        items=[line(product, 10, "100")],
        actor="tester",
        customer_id=credit_customer.id,
    )

    assert invoice.payment_status == "unpaid"
    assert invoice.status == "sent"
    assert party_service.get_customer(credit_customer.id).outstanding_due == Decimal("1000.00")


def test_blacklisted_customer_cannot_buy(product, customer):
    party_service.set_customer_blacklisted(customer_id=customer.id, blacklisted=True)

    with pytest.raises(PartyBlockedError):
        invoice_service.create_sale_invoice(
            items=[line(product, 1, "100")],
            actor="tester",
            customer_id=customer.id,
        )


def test_initial_payment_cannot_exceed_total(product, customer):
    with pytest.raises(OverpaymentError):
        invoice_service.create_sale_invoice(
            items=[line(product, 1, "100")],
            actor="tester",
            customer_id=customer.id,
            payment_amount=Decimal("150"),
        )


def test_sale_with_inline_customer(product, db_session):
    invoice = invoice_service.create_sale_invoice(
        items=[line(product, 1, "100")],
        actor="tester",
        customer_patch={"name": "New Buyer", "phone": "08055550000"},
        payment_amount=Decimal("100"),
    )
    assert invoice.customer.name == "New Buyer"
    assert invoice.customer.total_paid == Decimal("100.00")


def test_sale_requires_a_customer(product):
    with pytest.raises(ValidationError):
        invoice_service.create_sale_invoice(items=[line(product, 1, "100")], actor="tester")


def test_invoice_totals_with_discount_and_tax(product, customer):
    invoice = invoice_service.create_sale_invoice(
        items=[line(product, 3, "100")],
        actor="tester",
        customer_id=customer.id,
        discount=Decimal("20"),
        tax=Decimal("15"),
    )
    assert invoice.subtotal == Decimal("300.00")
    assert invoice.total == Decimal("295.00")


def test_invoice_numbers_are_sequential_per_month(product, customer):
    first = invoice_service.create_sale_invoice(
        items=[line(product, 1, "100")], actor="tester", customer_id=customer.id,
    )
    second = invoice_service.create_sale_invoice(
        items=[line(product, 1, "100")], actor="tester", customer_id=customer.id,
    )
    quick = invoice_service.create_quick_invoice(items=[line(product, 1, "100")], actor="tester")

    period = utcnow().strftime("%Y%m")
    assert first.invoice_number == f"INV{period}0001"
    assert second.invoice_number == f"INV{period}0002"
    assert quick.invoice_number == f"QIK{period}0001"


def test_quick_invoice_is_settled_on_creation(product, db_session):
    invoice = invoice_service.create_quick_invoice(
        items=[line(product, 3, "100")],
        actor="tester",
        customer_phone="08077770000",
        customer_name="Emeka",
        payment_method="mobile_money",
    )

    assert invoice.status == "paid"
    assert invoice.terms is None
    assert invoice.due_date is None
    assert invoice.customer.type == "walk-in"
    assert stock_service.get_product(product.id).stock_current == 47

    postings = [(tx.account, tx.category, tx.type) for tx in _transactions(invoice.id)]
    assert postings == [("mobile_money", "income", "sale")]


def test_purchase_creates_new_product_and_receives_stock(supplier):
    invoice = invoice_service.create_purchase_invoice(
        items=[{
            "new_product": {
                "sku": "SPK-010",
                "name": "Spark Plug",
                "category": "Ignition",
                "cost_price": Decimal("40.00"),
                "selling_price": Decimal("70.00"),
            },
            "quantity": 10,
            "unit_price": Decimal("40.00"),
        }],
        actor="tester",
        supplier_id=supplier.id,
        payment_amount=Decimal("100"),
    )

    product = Product.query.filter_by(sku="SPK-010").one()
    assert product.stock_current == 10
    assert product.supplier_id == supplier.id
    assert invoice.status == "partially_paid"

    activity = ProductActivity.query.filter_by(product_id=product.id).all()
    assert [(a.type, a.stock_before, a.stock_after) for a in activity] == [("purchase", 0, 10)]

    refreshed = party_service.get_supplier(supplier.id)
    assert refreshed.outstanding_payable == Decimal("300.00")

    postings = [(tx.account, tx.category, tx.type, tx.amount) for tx in _transactions(invoice.id)]
    assert postings == [
        ("payables", "expense", "purchase", Decimal("400.00")),
        ("cash", "expense", "payment_made", Decimal("100.00")),
    ]


def test_cancel_sale_reverses_every_effect(product, credit_customer):
    invoice = invoice_service.create_sale_invoice(
        items=[line(product, 2, "100")],
        actor="tester",
        customer_id=credit_customer.id,
    )

    cancelled = invoice_service.cancel_invoice(invoice_id=invoice.id, actor="tester", reason="Customer returned")

    assert cancelled.status == "cancelled"
    assert cancelled.cancelled_at is not None
    assert stock_service.get_product(product.id).stock_current == 50

    customer = party_service.get_customer(credit_customer.id)
    assert customer.total_billed == Decimal("0.00")
    assert customer.outstanding_due == Decimal("0.00")

    assert ledger_service.get_account_balance("receivables") == Decimal("0.00")
    last = _transactions(invoice.id)[-1]
    assert (last.type, last.category, last.notes) == ("adjustment", "expense", "Customer returned")


def test_cancel_is_terminal_and_blocks_payments(product, credit_customer):
    invoice = invoice_service.create_sale_invoice(
        items=[line(product, 1, "100")],
        actor="tester",
        customer_id=credit_customer.id,
    )
    invoice_service.cancel_invoice(invoice_id=invoice.id, actor="tester")

    with pytest.raises(InvoiceStateError):
        invoice_service.cancel_invoice(invoice_id=invoice.id, actor="tester")
    with pytest.raises(InvoiceStateError):
        invoice_service.add_payment(invoice_id=invoice.id, amount=Decimal("10"), method="cash", actor="tester")


def test_cancel_rejected_when_payments_recorded(product, customer):
    invoice = invoice_service.create_sale_invoice(
        items=[line(product, 1, "100")],
        actor="tester",
        customer_id=customer.id,
        payment_amount=Decimal("40"),
    )

    with pytest.raises(InvoiceStateError):
        invoice_service.cancel_invoice(invoice_id=invoice.id, actor="tester")
    assert stock_service.get_product(product.id).stock_current == 49


def test_cancel_purchase_removes_received_stock(product, supplier):
    invoice = invoice_service.create_purchase_invoice(
        items=[line(product, 5, "60")],
        actor="tester",
        supplier_id=supplier.id,
    )
    assert stock_service.get_product(product.id).stock_current == 55

    invoice_service.cancel_invoice(invoice_id=invoice.id, actor="tester")

    assert stock_service.get_product(product.id).stock_current == 50
    assert party_service.get_supplier(supplier.id).outstanding_payable == Decimal("0.00")
    assert ledger_service.get_account_balance("payables") == Decimal("0.00")


def test_update_invoice_only_touches_notes_and_date(product, customer):
    invoice = invoice_service.create_sale_invoice(
        items=[line(product, 1, "100")], actor="tester", customer_id=customer.id,
    )
    new_date = utcnow() - timedelta(days=2)

    updated = invoice_service.update_invoice(
        invoice_id=invoice.id, patch={"notes": "Deliver Monday", "date": new_date},
    )
    assert updated.notes == "Deliver Monday"
    assert updated.date == new_date
    assert updated.total == Decimal("100.00")


def test_backdated_invoice_is_overdue(product, credit_customer):
    invoice = invoice_service.create_sale_invoice(
        items=[line(product, 1, "100")],
        actor="tester",
        customer_id=credit_customer.id,
        date=utcnow() - timedelta(days=40),
    )
    assert invoice.status == "overdue"

    report = invoice_service.overdue_invoices()
    assert [row["id"] for row in report["overdueInvoices"]] == [invoice.id]
    assert report["overdueInvoices"][0]["daysOverdue"] >= 9
    assert report["totalOverdueAmount"] == 100.0


def test_overdue_sweep_updates_stored_status(product, credit_customer):
    invoice = invoice_service.create_sale_invoice(
        items=[line(product, 1, "100")],
        actor="tester",
        customer_id=credit_customer.id,
    )
    assert invoice.status == "sent"

    result = invoice_service.refresh_overdue_statuses(now=utcnow() + timedelta(days=45))
    assert result == {"checked": 1, "updated": 1}
    assert invoice_service.get_invoice(invoice.id).status == "overdue"


def test_customer_invoice_stats_exclude_cancelled(product, credit_customer):
    kept = invoice_service.create_sale_invoice(
        items=[line(product, 2, "100")],
        actor="tester",
        customer_id=credit_customer.id,
        payment_amount=Decimal("50"),
    )
    dropped = invoice_service.create_sale_invoice(
        items=[line(product, 1, "100")],
        actor="tester",
        customer_id=credit_customer.id,
    )
    invoice_service.cancel_invoice(invoice_id=dropped.id, actor="tester")

    result = invoice_service.customer_invoices(credit_customer.id)
    assert result["stats"] == {
        "totalInvoices": 2,
        "totalAmount": 200.0,
        "totalPaid": 50.0,
        "totalDue": 150.0,
    }
    assert {row["id"] for row in result["invoices"]} == {kept.id, dropped.id}


def test_list_invoices_search_by_customer_name(product, customer, credit_customer):
    invoice_service.create_sale_invoice(
        items=[line(product, 1, "100")], actor="tester", customer_id=customer.id,
    )
    invoice_service.create_sale_invoice(
        items=[line(product, 1, "100")], actor="tester", customer_id=credit_customer.id,
    )

    result = invoice_service.list_invoices(invoice_type="sale", page=1, limit=10, search="bola")
    assert result["pagination"]["total"] == 1
    assert result["items"][0]["partyName"] == "Bola Stores"
