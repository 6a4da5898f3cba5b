from .catalog import Product, PRODUCT_STATUSES
from .sales import Transaction, TransactionLine
from .settings import StoreSettings

__all__ = [
    'Product', 'PRODUCT_STATUSES',
    'Transaction', 'TransactionLine',
    'StoreSettings',
]
