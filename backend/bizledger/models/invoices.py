from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from ..extensions import db
from ..errors import InvoiceStateError, OverpaymentError, ValidationError
from bizledger.time_utils import to_utc_z, whole_days_between
from .inventory import money


INVOICE_TYPES = ("sale", "purchase", "quick")
INVOICE_STATUSES = ("draft", "sent", "paid", "partially_paid", "overdue", "cancelled", "received")
PAYMENT_STATUSES = ("unpaid", "partially_paid", "fully_paid")
PAYMENT_METHODS = ("cash", "bank_transfer", "card", "cheque", "mobile_money")

# Invoice number prefixes by type
INVOICE_PREFIXES = {"sale": "INV", "purchase": "PUR", "quick": "QIK"}

DEFAULT_TERMS = "Payment due within 30 days"

ZERO = Decimal("0.00")


class Invoice(db.Model):
    """
    Sale, purchase or quick (point-of-sale) invoice.

    STATE MACHINE:
    payment_status is authoritative and is a pure function of total vs.
    sum(payments.amount). status is a view over payment_status plus the
    due date, except 'cancelled' which is terminal and never recomputed.

        amount_due <= 0           -> (paid, fully_paid)
        amount_paid > 0           -> (partially_paid, partially_paid)
        unpaid, days_overdue > 0  -> (overdue, unpaid)
        unpaid, purchase          -> (received, unpaid)
        unpaid                    -> (sent, unpaid)

    invoice_number is assigned once at creation by
    services.document_service and never changes.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.UniqueConstraint("invoice_number", name="uq_invoices_invoice_number"),
        db.Index("ix_invoices_type_date", "type", "date"),
        db.Index("ix_invoices_customer_date", "customer_id", "date"),
        db.Index("ix_invoices_supplier_date", "supplier_id", "date"),
        db.Index("ix_invoices_payment_status_due", "payment_status", "due_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    type = db.Column(db.String(16), nullable=False)
    invoice_number = db.Column(db.String(32), nullable=False)

    date = db.Column(db.DateTime(timezone=True), nullable=False)
    due_date = db.Column(db.DateTime(timezone=True), nullable=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=True, index=True)

    subtotal = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    discount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    tax = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    total = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default="draft")
    payment_status = db.Column(db.String(16), nullable=False, default="unpaid")

    notes = db.Column(db.Text, nullable=True)
    terms = db.Column(db.String(255), nullable=True, default=DEFAULT_TERMS)

    created_by = db.Column(db.String(64), nullable=True)

    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by = db.Column(db.String(64), nullable=True)
    cancellation_reason = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    customer = db.relationship("Customer", backref=db.backref("invoices", lazy="dynamic"))
    supplier = db.relationship("Supplier", backref=db.backref("invoices", lazy="dynamic"))
    items = db.relationship(
        "InvoiceItem",
        back_populates="invoice",
        order_by="InvoiceItem.line_no",
        cascade="all, delete-orphan",
    )
    payments = db.relationship(
        "InvoicePayment",
        back_populates="invoice",
        order_by="InvoicePayment.id",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Invoice id={self.id} number={self.invoice_number!r} status={self.status}>"

    # ---- totals ----

    def calculate_totals(self) -> "Invoice":
        """subtotal = sum(line totals); total = subtotal - discount + tax."""
        self.subtotal = sum((Decimal(item.total_price) for item in self.items), ZERO)
        self.total = self.subtotal - Decimal(self.discount or 0) + Decimal(self.tax or 0)
        return self

    def get_amount_paid(self) -> Decimal:
        return sum((Decimal(p.amount) for p in self.payments), ZERO)

    def get_amount_due(self) -> Decimal:
        return Decimal(self.total or 0) - self.get_amount_paid()

    def get_days_overdue(self, now: datetime) -> int:
        if self.payment_status == "fully_paid" or self.due_date is None:
            return 0
        return max(0, whole_days_between(self.due_date, now))

    # ---- state ----

    def update_status(self, now: datetime) -> None:
        if self.status == "cancelled":
            return

        amount_paid = self.get_amount_paid()
        amount_due = self.get_amount_due()

        if amount_due <= 0:
            self.payment_status = "fully_paid"
            self.status = "paid"
        elif amount_paid > 0:
            self.payment_status = "partially_paid"
            self.status = "partially_paid"
        else:
            self.payment_status = "unpaid"
            if self.get_days_overdue(now) > 0:
                self.status = "overdue"
            elif self.type == "purchase":
                self.status = "received"
            else:
                self.status = "sent"

    def add_payment(
        self,
        amount: Decimal,
        method: str,
        recorded_by: str | None,
        now: datetime,
        reference: str | None = None,
        notes: str | None = None,
    ) -> "InvoicePayment":
        """
        Append a payment and recompute status.

        Guards: invoice not cancelled, method known, 0 < amount <= amount due.
        """
        if self.status == "cancelled":
            raise InvoiceStateError(f"Invoice {self.invoice_number} is cancelled")
        if method not in PAYMENT_METHODS:
            raise ValidationError(f"method must be one of {list(PAYMENT_METHODS)}")
        if amount <= 0:
            raise ValidationError("Payment amount must be > 0")

        amount_due = self.get_amount_due()
        if amount > amount_due:
            raise OverpaymentError(
                "Payment amount exceeds due amount",
                details={"amount": float(amount), "amountDue": float(amount_due)},
            )

        payment = InvoicePayment(
            amount=amount,
            method=method,
            date=now,
            reference=reference,
            notes=notes,
            recorded_by=recorded_by,
        )
        self.payments.append(payment)
        self.update_status(now)
        return payment

    def party_name(self) -> str | None:
        party = self.customer if self.type in ("sale", "quick") else self.supplier
        return party.name if party is not None else None

    def to_dict(self, now: datetime | None = None) -> dict:
        data = {
            "id": self.id,
            "type": self.type,
            "invoiceNumber": self.invoice_number,
            "date": to_utc_z(self.date),
            "dueDate": to_utc_z(self.due_date),
            "customerId": self.customer_id,
            "supplierId": self.supplier_id,
            "partyName": self.party_name(),
            "items": [item.to_dict() for item in self.items],
            "subtotal": money(self.subtotal),
            "discount": money(self.discount),
            "tax": money(self.tax),
            "total": money(self.total),
            "payments": [p.to_dict() for p in self.payments],
            "status": self.status,
            "paymentStatus": self.payment_status,
            "amountPaid": money(self.get_amount_paid()),
            "amountDue": money(self.get_amount_due()),
            "notes": self.notes,
            "terms": self.terms,
            "createdBy": self.created_by,
            "cancelledAt": to_utc_z(self.cancelled_at),
            "cancellationReason": self.cancellation_reason,
            "versionId": self.version_id,
            "createdAt": to_utc_z(self.created_at),
            "updatedAt": to_utc_z(self.updated_at),
        }
        if now is not None:
            data["daysOverdue"] = self.get_days_overdue(now)
        return data


class InvoiceItem(db.Model):
    __tablename__ = "invoice_items"
    __table_args__ = (
        db.UniqueConstraint("invoice_id", "line_no", name="uq_invoice_items_invoice_line"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)
    line_no = db.Column(db.Integer, nullable=False)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Numeric(14, 2), nullable=False)
    # quantity * unit_price; line discount/tax are informational
    total_price = db.Column(db.Numeric(14, 2), nullable=False)
    discount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    tax = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    description = db.Column(db.String(255), nullable=True)

    invoice = db.relationship("Invoice", back_populates="items")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        product = self.product
        return {
            "id": self.id,
            "productId": self.product_id,
            "product": (
                {"id": product.id, "name": product.name, "brand": product.brand, "sku": product.sku}
                if product is not None else None
            ),
            "quantity": self.quantity,
            "unitPrice": money(self.unit_price),
            "totalPrice": money(self.total_price),
            "discount": money(self.discount),
            "tax": money(self.tax),
            "description": self.description,
        }


class InvoicePayment(db.Model):
    """Append-only; payments are never edited or removed."""
    __tablename__ = "invoice_payments"
    __table_args__ = (
        db.CheckConstraint("amount > 0", name="ck_invoice_payments_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)

    amount = db.Column(db.Numeric(14, 2), nullable=False)
    method = db.Column(db.String(16), nullable=False)
    date = db.Column(db.DateTime(timezone=True), nullable=False)
    reference = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.String(255), nullable=True)
    recorded_by = db.Column(db.String(64), nullable=True)

    invoice = db.relationship("Invoice", back_populates="payments")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "amount": money(self.amount),
            "method": self.method,
            "date": to_utc_z(self.date),
            "reference": self.reference,
            "notes": self.notes,
            "recordedBy": self.recorded_by,
        }
