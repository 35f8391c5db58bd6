from .tenancy import Store, Branch
from .inventory import Product, StockMovement
from .sales import Sale, SaleItem, SaleSequence
from .customers import Customer, LoyaltyTransaction
from .events import LedgerEvent
from .offline import OfflineSale

__all__ = [
    'Store', 'Branch',
    'Product', 'StockMovement',
    'Sale', 'SaleItem', 'SaleSequence',
    'Customer', 'LoyaltyTransaction',
    'LedgerEvent',
    'OfflineSale',
]
