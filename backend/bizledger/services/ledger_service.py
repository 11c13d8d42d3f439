# Overview: Service-layer operations for the account transaction ledger; encapsulates business logic and database work.

from __future__ import annotations

from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP

from flask import current_app
from sqlalchemy import String, cast, or_
from sqlalchemy.exc import IntegrityError

from ..errors import BusinessRuleError, NotFoundError, ValidationError
from ..extensions import db
from ..models import LedgerAccount, Transaction
from ..models.ledger import (
    ACCOUNTS,
    CASH_ACCOUNTS,
    CATEGORY_SIGN,
    LIABILITY_ACCOUNTS,
    TRANSACTION_TYPES,
)
from bizledger.time_utils import to_utc_z, utcnow
from .concurrency import lock_for_update, run_with_retry
from .pagination import paginate
"""
Account Transaction Ledger Invariants (authoritative)

- One running-balance chain per account, ordered by (date, created_at, id).
- balance_before of an appended entry is the balance_after of the latest
  entry on that account by that ordering, or 0 for the first entry.
- balance_after = balance_before + amount for income/asset/liability,
  balance_before - amount for expense.
- Appends never rewrite earlier or later rows. A backdated entry therefore
  chains off the latest balance; rebuild_account_chain() replays the
  account from zero and is idempotent.
- Appends are serialized per account through the LedgerAccount head row
  (row lock + optimistic version bump). Entries are written inside the
  caller's DB transaction.
"""


CENT = Decimal("0.01")
ZERO = Decimal("0.00")

QUICK_PAYMENT_METHODS = ("cash", "bank_transfer", "card", "mobile_money")


def _q(value) -> Decimal:
    return Decimal(value or 0).quantize(CENT, rounding=ROUND_HALF_UP)


def _require_account(account: str) -> None:
    if account not in ACCOUNTS:
        raise ValidationError(f"account must be one of {list(ACCOUNTS)}")


def _chain_order_desc():
    return (Transaction.date.desc(), Transaction.created_at.desc(), Transaction.id.desc())


def _chain_order_asc():
    return (Transaction.date.asc(), Transaction.created_at.asc(), Transaction.id.asc())


# =============================================================================
# ACCOUNT HEADS
# =============================================================================

def ensure_ledger_account(account: str, *, lock: bool = False) -> LedgerAccount:
    """
    Return the head row for an account, creating it on first use.

    Safe to call repeatedly (idempotent).
    """
    _require_account(account)

    query = db.session.query(LedgerAccount).filter_by(code=account)
    if lock:
        query = lock_for_update(query)
    head = query.first()
    if head is not None:
        return head

    try:
        with db.session.begin_nested():
            head = LedgerAccount(code=account, transaction_count=0)
            db.session.add(head)
    except IntegrityError:
        query = db.session.query(LedgerAccount).filter_by(code=account)
        if lock:
            query = lock_for_update(query)
        head = query.one()
    return head


# =============================================================================
# APPEND
# =============================================================================

def append_transaction(
    *,
    account: str,
    category: str,
    type: str,
    amount,
    description: str,
    date: datetime | None = None,
    payment_method: str | None = None,
    reference: str | None = None,
    customer_id: int | None = None,
    supplier_id: int | None = None,
    invoice_id: int | None = None,
    product_id: int | None = None,
    tags: list | None = None,
    notes: str | None = None,
    is_manual: bool = False,
    actor: str | None = None,
) -> Transaction:
    """
    Append one immutable entry to an account chain (flush only, no commit).

    Callers own the unit of work. The head row is bumped and flushed before
    the chain tail is read, so the write lock (FOR UPDATE, or the SQLite
    writer lock) is held from that point on; a racing append that committed
    first makes the version check fail with StaleDataError, which
    run_with_retry turns into a full retry. created_at and a defaulted date
    are stamped only once the lock is held, so every entry sorts after the
    ones it chains from.
    """
    _require_account(account)
    if category not in CATEGORY_SIGN:
        raise ValidationError(f"category must be one of {list(CATEGORY_SIGN)}")
    if type not in TRANSACTION_TYPES:
        raise ValidationError(f"type must be one of {list(TRANSACTION_TYPES)}")
    amount = _q(amount)
    if amount < 0:
        raise ValidationError("amount must be >= 0")
    if not description or not description.strip():
        raise ValidationError("description is required")

    head = ensure_ledger_account(account, lock=True)
    head.transaction_count = (head.transaction_count or 0) + 1
    db.session.flush()

    now = utcnow()
    last = (
        db.session.query(Transaction)
        .filter(Transaction.account == account)
        .order_by(*_chain_order_desc())
        .first()
    )
    balance_before = _q(last.balance_after) if last is not None else ZERO
    balance_after = balance_before + CATEGORY_SIGN[category] * amount

    tx = Transaction(
        type=type,
        category=category,
        amount=amount,
        date=date or now,
        description=description.strip(),
        account=account,
        payment_method=payment_method,
        reference=reference,
        balance_before=balance_before,
        balance_after=balance_after,
        customer_id=customer_id,
        supplier_id=supplier_id,
        invoice_id=invoice_id,
        product_id=product_id,
        tags=list(tags or []),
        notes=notes,
        is_manual=is_manual,
        created_by=actor,
        created_at=now,
    )
    db.session.add(tx)
    db.session.flush()

    head.last_transaction_id = tx.id
    db.session.flush()
    return tx


# =============================================================================
# CHAIN REPAIR / VERIFY
# =============================================================================

def _rebuild_inner(account: str) -> dict:
    head = ensure_ledger_account(account, lock=True)
    rows = (
        db.session.query(Transaction)
        .filter(Transaction.account == account)
        .order_by(*_chain_order_asc())
        .all()
    )

    running = ZERO
    repaired = 0
    for tx in rows:
        before = running
        after = before + tx.signed_amount
        if _q(tx.balance_before) != before or _q(tx.balance_after) != after:
            tx.balance_before = before
            tx.balance_after = after
            repaired += 1
        running = after

    head.last_transaction_id = rows[-1].id if rows else None
    head.transaction_count = len(rows)
    db.session.flush()

    return {
        "account": account,
        "transactions": len(rows),
        "repaired": repaired,
        "finalBalance": float(running),
    }


def rebuild_account_chain(account: str) -> dict:
    """
    Replay an account from zero in (date, created_at, id) order and rewrite
    balance_before/balance_after. Idempotent: a second run repairs nothing.
    """
    def _op():
        result = _rebuild_inner(account)
        db.session.commit()
        return result

    result = run_with_retry(_op)
    if result["repaired"]:
        current_app.logger.warning(
            "Rebuilt ledger chain for %s: %d of %d entries repaired",
            account, result["repaired"], result["transactions"],
        )
    else:
        current_app.logger.info("Ledger chain for %s already consistent (%d entries)", account, result["transactions"])
    return result


def rebuild_all_chains() -> list[dict]:
    return [rebuild_account_chain(account) for account in ACCOUNTS]


def verify_account_chain(account: str) -> dict:
    """Report chain breaks without modifying anything."""
    _require_account(account)
    rows = (
        db.session.query(Transaction)
        .filter(Transaction.account == account)
        .order_by(*_chain_order_asc())
        .all()
    )

    breaks = []
    previous_after = ZERO
    for tx in rows:
        before = _q(tx.balance_before)
        after = _q(tx.balance_after)
        expected_after = before + tx.signed_amount
        if before != previous_after or after != expected_after:
            breaks.append({
                "transactionId": tx.id,
                "expectedBefore": float(previous_after),
                "actualBefore": float(before),
                "expectedAfter": float(expected_after),
                "actualAfter": float(after),
            })
        previous_after = after

    return {
        "account": account,
        "ok": not breaks,
        "transactions": len(rows),
        "breaks": breaks,
    }


# =============================================================================
# BALANCES
# =============================================================================

def _latest(account: str, as_of: datetime | None = None) -> Transaction | None:
    query = db.session.query(Transaction).filter(Transaction.account == account)
    if as_of is not None:
        query = query.filter(Transaction.date <= as_of)
    return query.order_by(*_chain_order_desc()).first()


def get_account_balance(account: str, as_of: datetime | None = None) -> Decimal:
    """balance_after of the latest entry (optionally as-of, inclusive), or 0."""
    _require_account(account)
    last = _latest(account, as_of)
    return _q(last.balance_after) if last is not None else ZERO


def account_balances() -> dict:
    rows = []
    balances = {}
    for account in ACCOUNTS:
        last = _latest(account)
        balance = _q(last.balance_after) if last is not None else ZERO
        balances[account] = balance
        rows.append({
            "account": account,
            "balance": float(balance),
            "lastTransaction": (
                {
                    "id": last.id,
                    "date": to_utc_z(last.date),
                    "description": last.description,
                    "amount": float(last.amount),
                    "type": last.type,
                }
                if last is not None else None
            ),
        })

    total_assets = sum((balances[a] for a in CASH_ACCOUNTS), ZERO)
    total_liabilities = sum((balances[a] for a in LIABILITY_ACCOUNTS), ZERO)
    return {
        "accountBalances": rows,
        "totals": {
            "totalAssets": float(total_assets),
            "totalLiabilities": float(total_liabilities),
            "netWorth": float(total_assets - total_liabilities),
        },
    }


# =============================================================================
# MANUAL ENTRIES
# =============================================================================

def create_manual_transaction(*, fields: dict, actor: str | None) -> Transaction:
    """Record an admin-entered transaction; it chains like any other entry."""
    def _op():
        tx = append_transaction(
            account=fields["account"],
            category=fields["category"],
            type=fields["type"],
            amount=fields["amount"],
            description=fields["description"],
            date=fields.get("date"),
            payment_method=fields.get("payment_method") or "adjustment",
            reference=fields.get("reference"),
            customer_id=fields.get("customer_id"),
            supplier_id=fields.get("supplier_id"),
            tags=fields.get("tags"),
            notes=fields.get("notes"),
            is_manual=True,
            actor=actor,
        )
        db.session.commit()
        return tx

    return run_with_retry(_op)


ANNOTATION_FIELDS = ("description", "tags", "notes")


def update_manual_transaction(*, transaction_id: int, patch: dict) -> Transaction:
    """Edit description/tags/notes of a manual entry; amounts are immutable."""
    def _op():
        tx = get_transaction(transaction_id)
        if not tx.is_manual:
            raise BusinessRuleError("Cannot edit automatic transactions")
        for key in ANNOTATION_FIELDS:
            if key in patch:
                value = patch[key]
                if key == "description" and not (value or "").strip():
                    raise ValidationError("description cannot be blank")
                setattr(tx, key, value)
        db.session.commit()
        return tx

    return run_with_retry(_op)


def record_quick_payment(
    *,
    amount,
    method: str,
    payer_type: str | None,
    reference: str | None,
    notes: str | None,
    actor: str | None,
) -> Transaction:
    """
    Record a standalone cash-drawer payment.

    Walk-in payers ('walkin') post income to cash; anything else is treated
    as a vendor payout and posts an expense.
    """
    if method not in QUICK_PAYMENT_METHODS:
        raise ValidationError(f"method must be one of {list(QUICK_PAYMENT_METHODS)}")
    amount = _q(amount)
    if amount <= 0:
        raise ValidationError("Payment amount must be > 0")

    walk_in = payer_type == "walkin"

    def _op():
        tx = append_transaction(
            account="cash",
            category="income" if walk_in else "expense",
            type="payment_received" if walk_in else "payment_made",
            amount=amount,
            description=notes or f"Quick payment - {method}",
            payment_method=method,
            reference=reference,
            notes=notes,
            actor=actor,
        )
        db.session.commit()
        return tx

    return run_with_retry(_op)


# =============================================================================
# QUERIES
# =============================================================================

def get_transaction(transaction_id: int) -> Transaction:
    tx = db.session.get(Transaction, transaction_id)
    if tx is None:
        raise NotFoundError(f"Transaction not found: {transaction_id}")
    return tx


def list_transactions(
    *,
    page: int,
    limit: int,
    type: str | None = None,
    category: str | None = None,
    account: str | None = None,
    customer_id: int | None = None,
    supplier_id: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    search: str | None = None,
) -> dict:
    query = db.session.query(Transaction)
    if type:
        query = query.filter(Transaction.type == type)
    if category:
        query = query.filter(Transaction.category == category)
    if account:
        query = query.filter(Transaction.account == account)
    if customer_id is not None:
        query = query.filter(Transaction.customer_id == customer_id)
    if supplier_id is not None:
        query = query.filter(Transaction.supplier_id == supplier_id)
    if start is not None:
        query = query.filter(Transaction.date >= start)
    if end is not None:
        query = query.filter(Transaction.date <= end)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(
            Transaction.description.ilike(pattern),
            Transaction.payment_method.ilike(pattern),
            cast(Transaction.tags, String).ilike(pattern),
        ))

    query = query.order_by(*_chain_order_desc())
    return paginate(query, page=page, limit=limit, serialize=lambda t: t.to_dict())
