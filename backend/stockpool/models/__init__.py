from .tenancy import Company, Branch
from .inventory import Product, ProductUnit, ProductVariant
from .customers import Customer
from .sales import Sale, SaleLine
from .documents import InvoiceSequence, AuditEvent

__all__ = [
    'Company', 'Branch',
    'Product', 'ProductUnit', 'ProductVariant',
    'Customer',
    'Sale', 'SaleLine',
    'InvoiceSequence', 'AuditEvent',
]
