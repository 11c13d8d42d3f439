from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from bizledger.errors import BusinessRuleError, ValidationError
from bizledger.extensions import db
from bizledger.models import Customer
from bizledger.models.parties import WALK_IN_CUSTOMER_NAME, calculate_loyalty_tier
from bizledger.services import party_service


def test_credit_limit_blocks_purchase_beyond_available():
    customer = Customer(
        payment_terms="credit",
        credit_limit=Decimal("1000"),
        outstanding_due=Decimal("800"),
        is_blacklisted=False,
    )
    assert customer.can_make_purchase(Decimal("300")) is False
    assert customer.can_make_purchase(Decimal("200")) is True


def test_cash_customer_is_never_credit_limited():
    customer = Customer(payment_terms="cash", credit_limit=0, outstanding_due=0, is_blacklisted=False)
    assert customer.can_make_purchase(Decimal("1000000")) is True

    customer.is_blacklisted = True
    assert customer.can_make_purchase(Decimal("1")) is False


@pytest.mark.parametrize(
    "spent, tier",
    [
        (0, "bronze"),
        (99999, "bronze"),
        (100000, "silver"),
        (500000, "gold"),
        (1000000, "platinum"),
    ],
)
def test_loyalty_tier_thresholds(spent, tier):
    assert calculate_loyalty_tier(Decimal(spent)) == tier


def test_outstanding_due_tracks_billed_minus_paid(credit_customer):
    party_service.record_financial_event(credit_customer, Decimal("500"), Decimal("120"))
    db.session.commit()

    customer = party_service.get_customer(credit_customer.id)
    assert customer.total_billed == Decimal("500.00")
    assert customer.total_paid == Decimal("120.00")
    assert customer.outstanding_due == Decimal("380.00")
    assert customer.visit_count == 1
    assert customer.loyalty_points == 5
    assert customer.last_payment_date is not None


def test_outstanding_due_never_negative(customer):
    party_service.record_financial_event(customer, Decimal("100"), Decimal("100"))
    party_service.record_financial_event(customer, Decimal("-100"), Decimal("0"))
    db.session.commit()

    refreshed = party_service.get_customer(customer.id)
    assert refreshed.total_billed == Decimal("0.00")
    assert refreshed.outstanding_due == Decimal("0.00")
    assert refreshed.visit_count == 0
    assert refreshed.total_spent == Decimal("0.00")


def test_negative_paid_amount_rejected(customer):
    with pytest.raises(ValidationError):
        party_service.record_financial_event(customer, Decimal("0"), Decimal("-1"))
    db.session.rollback()


def test_supplier_payable_tracks_purchases(supplier):
    party_service.record_financial_event(supplier, Decimal("900"), Decimal("400"))
    db.session.commit()

    refreshed = party_service.get_supplier(supplier.id)
    assert refreshed.outstanding_payable == Decimal("500.00")
    assert refreshed.purchase_count == 1
    assert refreshed.average_purchase_value == Decimal("900.00")


def test_duplicate_customer_phone_rejected(customer):
    with pytest.raises(BusinessRuleError):
        party_service.create_customer(patch={"name": "Other", "phone": "08022220000"}, actor="tester")


def test_invalid_customer_type_rejected(db_session):
    with pytest.raises(ValidationError):
        party_service.create_customer(
            patch={"name": "Odd", "phone": "0809", "type": "martian"}, actor="tester",
        )


def test_blacklist_toggles_active(customer):
    blocked = party_service.set_customer_blacklisted(customer_id=customer.id, blacklisted=True)
    assert (blocked.is_blacklisted, blocked.is_active) == (True, False)

    options = party_service.customer_options()
    assert customer.id not in [row["id"] for row in options]

    restored = party_service.set_customer_blacklisted(customer_id=customer.id, blacklisted=False)
    assert (restored.is_blacklisted, restored.is_active) == (False, True)


def test_walk_in_customer_is_shared_without_phone(db_session):
    first = party_service.find_or_create_walk_in_customer(phone=None, name=None, actor="tester")
    second = party_service.find_or_create_walk_in_customer(phone="  ", name="Ignored", actor="tester")
    db.session.commit()

    assert first.id == second.id
    assert first.name == WALK_IN_CUSTOMER_NAME
    assert first.type == "walk-in"


def test_walk_in_customer_with_phone_reuses_existing(customer):
    found = party_service.find_or_create_walk_in_customer(phone="08022220000", name="X", actor="tester")
    created = party_service.find_or_create_walk_in_customer(phone="08099990000", name="Tunde", actor="tester")
    db.session.commit()

    assert found.id == customer.id
    assert created.name == "Tunde"
    assert created.type == "walk-in"


def test_customer_due_status_buckets(credit_customer):
    now = datetime(2024, 6, 1)
    credit_customer.outstanding_due = Decimal("50")
    credit_customer.last_purchase_date = now - timedelta(days=45)

    # credit_days=30, so 15 days past due
    assert credit_customer.get_overdue_days(now) == 15
    assert credit_customer.get_due_status(now) == "overdue-30"

    credit_customer.last_purchase_date = now - timedelta(days=10)
    assert credit_customer.get_due_status(now) == "current"

    credit_customer.outstanding_due = Decimal("0")
    assert credit_customer.get_due_status(now) == "paid"
    db.session.rollback()


def test_overdue_customers_report(credit_customer, customer):
    party_service.record_financial_event(credit_customer, Decimal("250"), Decimal("0"))
    db.session.commit()

    report = party_service.overdue_customers()
    assert [row["id"] for row in report["overdueCustomers"]] == [credit_customer.id]
    assert report["totalOverdueAmount"] == 250.0


def test_supplier_performance_and_overall_rating(supplier):
    updated = party_service.update_performance(
        supplier_id=supplier.id, ratings={"reliability": 5, "quality": 4},
    )
    assert updated.get_overall_rating() == 4.0
    assert updated.last_rating_update is not None


def test_supplier_rating_out_of_range(supplier):
    with pytest.raises(ValidationError):
        party_service.update_performance(supplier_id=supplier.id, ratings={"quality": 6})


def test_supplier_defaults_company_and_contact(supplier):
    assert supplier.company_name == "Apex Auto Supplies"
    assert supplier.contact_person == "Apex Auto Supplies"
    assert supplier.credit_days == 30
