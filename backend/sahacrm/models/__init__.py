from .customers import Customer
from .products import Product
from .orders import Order
from .registers import CashRegister
from .documents import DocumentSequence, DeliveryNote, DeliveryNoteItem
from .invoices import Invoice, InvoiceItem, Payment
from .ledger import AccountMovement, LedgerImmutableError
from .communications import NotificationLog

__all__ = [
    'Customer', 'Product', 'Order',
    'CashRegister',
    'DocumentSequence', 'DeliveryNote', 'DeliveryNoteItem',
    'Invoice', 'InvoiceItem', 'Payment',
    'AccountMovement', 'LedgerImmutableError',
    'NotificationLog',
]
