from .inventory import Product, ProductActivity
from .parties import Customer, Supplier
from .invoices import Invoice, InvoiceItem, InvoicePayment
from .ledger import Transaction, LedgerAccount
from .documents import DocumentSequence

__all__ = [
    'Product', 'ProductActivity',
    'Customer', 'Supplier',
    'Invoice', 'InvoiceItem', 'InvoicePayment',
    'Transaction', 'LedgerAccount',
    'DocumentSequence',
]
