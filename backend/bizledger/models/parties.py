from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal

from ..extensions import db
from bizledger.time_utils import to_utc_z, whole_days_between
from .inventory import money


CUSTOMER_TYPES = ("individual", "business", "walk-in")
CUSTOMER_PAYMENT_TERMS = ("cash", "credit", "mixed")

# Highest threshold first; first match wins
LOYALTY_TIER_THRESHOLDS = (
    (Decimal("1000000"), "platinum"),
    (Decimal("500000"), "gold"),
    (Decimal("100000"), "silver"),
)

# Supplier payment terms -> credit days
SUPPLIER_CREDIT_DAYS = {
    "immediate": 0,
    "net15": 15,
    "net30": 30,
    "net60": 60,
    "net90": 90,
}
SUPPLIER_PAYMENT_TERMS = tuple(SUPPLIER_CREDIT_DAYS)

PERFORMANCE_FIELDS = ("reliability", "quality", "delivery_time")

WALK_IN_CUSTOMER_NAME = "Walk-in Customer"
WALK_IN_CUSTOMER_PHONE = "0000000000"


def _overdue_days(outstanding, last_purchase_date: datetime | None, credit_days: int, now: datetime) -> int:
    if outstanding is None or outstanding <= 0:
        return 0
    if last_purchase_date is None:
        return 0
    due = last_purchase_date + timedelta(days=credit_days or 0)
    return max(0, whole_days_between(due, now))


def calculate_loyalty_tier(total_spent) -> str:
    spent = Decimal(total_spent or 0)
    for threshold, tier in LOYALTY_TIER_THRESHOLDS:
        if spent >= threshold:
            return tier
    return "bronze"


class Customer(db.Model):
    """
    Customer party with running financial totals and loyalty state.

    FINANCIAL INVARIANT (maintained by services.party_service):
        outstanding_due == max(0, total_billed - total_paid)
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.Index("ix_customers_phone", "phone"),
        db.Index("ix_customers_email", "email"),
        db.Index("ix_customers_outstanding_due", "outstanding_due"),
        db.Index("ix_customers_active_blacklisted", "is_active", "is_blacklisted"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=False)
    company_name = db.Column(db.String(255), nullable=True)

    address_street = db.Column(db.String(255), nullable=True)
    address_city = db.Column(db.String(120), nullable=True)
    address_state = db.Column(db.String(120), nullable=True)
    address_postal_code = db.Column(db.String(32), nullable=True)
    address_country = db.Column(db.String(120), nullable=True, default="Nigeria")

    type = db.Column(db.String(16), nullable=False, default="individual")

    credit_limit = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    payment_terms = db.Column(db.String(16), nullable=False, default="cash")
    credit_days = db.Column(db.Integer, nullable=False, default=0)

    # Financials
    total_billed = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    total_paid = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    outstanding_due = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    last_payment_date = db.Column(db.DateTime(timezone=True), nullable=True)
    average_order_value = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    # Loyalty
    loyalty_points = db.Column(db.Integer, nullable=False, default=0)
    loyalty_tier = db.Column(db.String(16), nullable=False, default="bronze")
    total_spent = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    visit_count = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    is_blacklisted = db.Column(db.Boolean, nullable=False, default=False)
    notes = db.Column(db.Text, nullable=True)
    last_purchase_date = db.Column(db.DateTime(timezone=True), nullable=True)

    created_by = db.Column(db.String(64), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Customer id={self.id} name={self.name!r} outstanding={self.outstanding_due}>"

    def calculate_loyalty_tier(self) -> str:
        return calculate_loyalty_tier(self.total_spent)

    def can_make_purchase(self, amount) -> bool:
        """Blacklisted: never. Cash terms: always. Otherwise within available credit."""
        if self.is_blacklisted:
            return False
        if self.payment_terms == "cash":
            return True
        available = Decimal(self.credit_limit or 0) - Decimal(self.outstanding_due or 0)
        return Decimal(amount) <= available

    def get_overdue_days(self, now: datetime) -> int:
        return _overdue_days(self.outstanding_due, self.last_purchase_date, self.credit_days, now)

    def get_due_status(self, now: datetime) -> str:
        if self.outstanding_due is None or self.outstanding_due <= 0:
            return "paid"
        days = self.get_overdue_days(now)
        if days <= 0:
            return "current"
        if days <= 30:
            return "overdue-30"
        if days <= 60:
            return "overdue-60"
        return "overdue-90+"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "companyName": self.company_name,
            "address": {
                "street": self.address_street,
                "city": self.address_city,
                "state": self.address_state,
                "postalCode": self.address_postal_code,
                "country": self.address_country,
            },
            "type": self.type,
            "creditLimit": money(self.credit_limit),
            "paymentTerms": self.payment_terms,
            "creditDays": self.credit_days,
            "financials": {
                "totalBilled": money(self.total_billed),
                "totalPaid": money(self.total_paid),
                "outstandingDue": money(self.outstanding_due),
                "lastPaymentDate": to_utc_z(self.last_payment_date),
                "averageOrderValue": money(self.average_order_value),
            },
            "loyalty": {
                "points": self.loyalty_points,
                "tier": self.loyalty_tier,
                "totalSpent": money(self.total_spent),
                "visitCount": self.visit_count,
            },
            "isActive": self.is_active,
            "isBlacklisted": self.is_blacklisted,
            "notes": self.notes,
            "lastPurchaseDate": to_utc_z(self.last_purchase_date),
            "createdBy": self.created_by,
            "versionId": self.version_id,
            "createdAt": to_utc_z(self.created_at),
            "updatedAt": to_utc_z(self.updated_at),
        }


class Supplier(db.Model):
    """
    Supplier party with running payable totals and performance ratings.

    FINANCIAL INVARIANT (maintained by services.party_service):
        outstanding_payable == max(0, total_purchased - total_paid)
    """
    __tablename__ = "suppliers"
    __table_args__ = (
        db.Index("ix_suppliers_name", "name"),
        db.Index("ix_suppliers_outstanding_payable", "outstanding_payable"),
        db.Index("ix_suppliers_active_blacklisted", "is_active", "is_blacklisted"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)
    company_name = db.Column(db.String(255), nullable=True)
    contact_person = db.Column(db.String(255), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=False)

    address_street = db.Column(db.String(255), nullable=True)
    address_city = db.Column(db.String(120), nullable=True)
    address_state = db.Column(db.String(120), nullable=True)
    address_postal_code = db.Column(db.String(32), nullable=True)
    address_country = db.Column(db.String(120), nullable=True, default="Nigeria")

    # List of product category names this supplier carries
    categories = db.Column(db.JSON, nullable=False, default=list)

    payment_terms = db.Column(db.String(16), nullable=False, default="net30")
    credit_limit = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    # Financials
    total_purchased = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    total_paid = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    outstanding_payable = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    last_payment_date = db.Column(db.DateTime(timezone=True), nullable=True)
    average_purchase_value = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    purchase_count = db.Column(db.Integer, nullable=False, default=0)

    # Performance ratings, 1..5
    reliability = db.Column(db.Integer, nullable=False, default=3)
    quality = db.Column(db.Integer, nullable=False, default=3)
    delivery_time = db.Column(db.Integer, nullable=False, default=3)
    last_rating_update = db.Column(db.DateTime(timezone=True), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    is_blacklisted = db.Column(db.Boolean, nullable=False, default=False)
    notes = db.Column(db.Text, nullable=True)
    last_purchase_date = db.Column(db.DateTime(timezone=True), nullable=True)

    created_by = db.Column(db.String(64), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Supplier id={self.id} name={self.name!r} payable={self.outstanding_payable}>"

    @property
    def credit_days(self) -> int:
        return SUPPLIER_CREDIT_DAYS.get(self.payment_terms, 30)

    def get_overdue_days(self, now: datetime) -> int:
        return _overdue_days(self.outstanding_payable, self.last_purchase_date, self.credit_days, now)

    def get_payable_status(self, now: datetime) -> str:
        if self.outstanding_payable is None or self.outstanding_payable <= 0:
            return "paid"
        days = self.get_overdue_days(now)
        if days <= 0:
            return "current"
        if days <= 15:
            return "due-soon"
        return "overdue"

    def get_overall_rating(self) -> float:
        ratings = [self.reliability or 3, self.quality or 3, self.delivery_time or 3]
        return round(sum(ratings) / len(ratings), 1)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "companyName": self.company_name,
            "contactPerson": self.contact_person,
            "email": self.email,
            "phone": self.phone,
            "address": {
                "street": self.address_street,
                "city": self.address_city,
                "state": self.address_state,
                "postalCode": self.address_postal_code,
                "country": self.address_country,
            },
            "categories": list(self.categories or []),
            "paymentTerms": self.payment_terms,
            "creditDays": self.credit_days,
            "creditLimit": money(self.credit_limit),
            "financials": {
                "totalPurchased": money(self.total_purchased),
                "totalPaid": money(self.total_paid),
                "outstandingPayable": money(self.outstanding_payable),
                "lastPaymentDate": to_utc_z(self.last_payment_date),
                "averagePurchaseValue": money(self.average_purchase_value),
                "purchaseCount": self.purchase_count,
            },
            "performance": {
                "reliability": self.reliability,
                "quality": self.quality,
                "deliveryTime": self.delivery_time,
                "lastRatingUpdate": to_utc_z(self.last_rating_update),
                "overallRating": self.get_overall_rating(),
            },
            "isActive": self.is_active,
            "isBlacklisted": self.is_blacklisted,
            "notes": self.notes,
            "lastPurchaseDate": to_utc_z(self.last_purchase_date),
            "createdBy": self.created_by,
            "versionId": self.version_id,
            "createdAt": to_utc_z(self.created_at),
            "updatedAt": to_utc_z(self.updated_at),
        }
