from __future__ import annotations

from ..extensions import db
from bizledger.time_utils import to_utc_z
from .inventory import money


TRANSACTION_TYPES = (
    "sale",
    "purchase",
    "payment_received",
    "payment_made",
    "adjustment",
    "opening_balance",
)

# category -> sign applied to the running balance
CATEGORY_SIGN = {
    "income": 1,
    "asset": 1,
    "liability": 1,
    "expense": -1,
}
TRANSACTION_CATEGORIES = tuple(CATEGORY_SIGN)

ACCOUNTS = ("cash", "bank_account", "mobile_money", "receivables", "payables")
CASH_ACCOUNTS = ("cash", "bank_account", "mobile_money")
LIABILITY_ACCOUNTS = ("receivables", "payables")

# Payment method -> settlement account
PAYMENT_METHOD_ACCOUNTS = {
    "cash": "cash",
    "bank_transfer": "bank_account",
    "card": "bank_account",
    "cheque": "bank_account",
    "mobile_money": "mobile_money",
}


class Transaction(db.Model):
    """
    Immutable running-balance ledger entry.

    CHAIN INVARIANT (per account, ordered by date, created_at, id):
        entry[n].balance_before == entry[n-1].balance_after
        entry[n].balance_after  == balance_before + sign(category) * amount

    Rows are written once by services.ledger_service.append_transaction.
    The only later writers are the chain rebuild (balance fields) and the
    manual-entry annotation edit (description/tags/notes).
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.Index("ix_transactions_account_chain", "account", "date", "created_at", "id"),
        db.Index("ix_transactions_type_date", "type", "date"),
        db.Index("ix_transactions_category_date", "category", "date"),
        db.CheckConstraint("amount >= 0", name="ck_transactions_amount_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    type = db.Column(db.String(32), nullable=False)
    category = db.Column(db.String(16), nullable=False)
    amount = db.Column(db.Numeric(14, 2), nullable=False)
    date = db.Column(db.DateTime(timezone=True), nullable=False)
    description = db.Column(db.String(255), nullable=False)

    account = db.Column(db.String(32), nullable=False)
    payment_method = db.Column(db.String(16), nullable=True)
    reference = db.Column(db.String(128), nullable=True)

    balance_before = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    balance_after = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=True, index=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=True, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True, index=True)

    tags = db.Column(db.JSON, nullable=False, default=list)
    notes = db.Column(db.Text, nullable=True)
    is_manual = db.Column(db.Boolean, nullable=False, default=False)

    created_by = db.Column(db.String(64), nullable=True)

    # Written explicitly (utcnow) so same-date entries keep insertion order
    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    customer = db.relationship("Customer")
    supplier = db.relationship("Supplier")
    invoice = db.relationship("Invoice", backref=db.backref("transactions", lazy="dynamic"))

    def __repr__(self) -> str:
        return (
            f"<Transaction id={self.id} account={self.account} {self.category} "
            f"{self.amount} {self.balance_before}->{self.balance_after}>"
        )

    @property
    def signed_amount(self):
        return CATEGORY_SIGN[self.category] * self.amount

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "category": self.category,
            "amount": money(self.amount),
            "date": to_utc_z(self.date),
            "description": self.description,
            "account": self.account,
            "paymentMethod": self.payment_method,
            "reference": self.reference,
            "balanceBefore": money(self.balance_before),
            "balanceAfter": money(self.balance_after),
            "customerId": self.customer_id,
            "customerName": self.customer.name if self.customer is not None else None,
            "supplierId": self.supplier_id,
            "supplierName": self.supplier.name if self.supplier is not None else None,
            "invoiceId": self.invoice_id,
            "invoiceNumber": self.invoice.invoice_number if self.invoice is not None else None,
            "productId": self.product_id,
            "tags": list(self.tags or []),
            "notes": self.notes,
            "isManual": self.is_manual,
            "createdBy": self.created_by,
            "createdAt": to_utc_z(self.created_at),
            "updatedAt": to_utc_z(self.updated_at),
        }


class LedgerAccount(db.Model):
    """
    Per-account chain head.

    Every append locks this row (SELECT ... FOR UPDATE where supported) and
    bumps version_id, so two writers racing on the same account conflict
    with StaleDataError instead of both chaining off the same balance.
    """
    __tablename__ = "ledger_accounts"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_ledger_accounts_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), nullable=False)

    last_transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=True)
    transaction_count = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<LedgerAccount code={self.code} count={self.transaction_count} v={self.version_id}>"
