# Overview: Service-layer operations for document numbering; allocates invoice numbers.

from __future__ import annotations

from datetime import datetime

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..errors import ValidationError
from ..extensions import db
from ..models import DocumentSequence
from ..models.invoices import INVOICE_PREFIXES


def _allocate(document_type: str, period: str) -> int:
    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.document_type == document_type,
            DocumentSequence.period == period,
        )
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        db.session.flush()
        current = (
            db.session.query(DocumentSequence.next_number)
            .filter_by(document_type=document_type, period=period)
            .scalar()
        )
        return current - 1

    # First number of the period. A concurrent writer may create the row
    # first; the savepoint keeps the outer unit of work intact.
    try:
        with db.session.begin_nested():
            db.session.add(DocumentSequence(document_type=document_type, period=period, next_number=2))
        return 1
    except IntegrityError:
        result = db.session.execute(stmt)
        if not result.rowcount:
            raise
        db.session.flush()
        current = (
            db.session.query(DocumentSequence.next_number)
            .filter_by(document_type=document_type, period=period)
            .scalar()
        )
        return current - 1


def next_invoice_number(invoice_type: str, now: datetime, *, pad: int = 4) -> str:
    """
    Allocate the next invoice number: {PREFIX}{YYYY}{MM}{NNNN}.

    Runs inside the caller's unit of work (flush only, no commit), so an
    aborted invoice creation also releases its number.
    """
    prefix = INVOICE_PREFIXES.get(invoice_type)
    if prefix is None:
        raise ValidationError(f"Unknown invoice type: {invoice_type}")

    period = f"{now.year:04d}{now.month:02d}"
    number = _allocate(f"invoice_{invoice_type}", period)
    return f"{prefix}{period}{number:0{pad}d}"
