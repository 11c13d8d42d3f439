# Overview: Error taxonomy shared by services and routes.

"""
Error categories

- ValidationError: missing/malformed input (400). Never retried.
- NotFoundError: referenced entity id absent (404). Raised before any mutation.
- BusinessRuleError: a business invariant would be violated (409).
  Raised before any mutation; subclasses name the rule.

Anything else escaping a service is treated as a server failure (500) by the
routes, after the unit of work has been rolled back.
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for errors reported to API callers."""

    status_code = 500
    category = "server"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"error": str(self), "category": self.category}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(LedgerError, ValueError):
    """400-level input problem."""

    status_code = 400
    category = "validation"


class NotFoundError(LedgerError, LookupError):
    """404-level missing entity."""

    status_code = 404
    category = "not_found"


class BusinessRuleError(LedgerError):
    """409-level business rule violation."""

    status_code = 409
    category = "business_rule"


class InsufficientStockError(BusinessRuleError):
    """Raised when a movement would take stock below zero."""


class PartyBlockedError(BusinessRuleError):
    """Raised when a blacklisted customer or supplier is invoiced."""


class CreditLimitError(BusinessRuleError):
    """Raised when an unpaid remainder exceeds the customer's available credit."""


class OverpaymentError(BusinessRuleError):
    """Raised when a payment exceeds the invoice's amount due."""


class InvoiceStateError(BusinessRuleError):
    """Raised when an invoice transition is not allowed from its current state."""
