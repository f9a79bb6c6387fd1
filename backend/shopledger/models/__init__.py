from .tenancy import Shop
from .catalog import Product, Supplier
from .customers import Customer, LoyaltyAccount
from .sales import Sale, SaleItem, Installment, OfflineSaleSync
from .purchasing import PurchaseOrder, PurchaseOrderItem
from .activity import StockMovement, ActivityLog, Notification, DocumentSequence

__all__ = [
    'Shop',
    'Product', 'Supplier',
    'Customer', 'LoyaltyAccount',
    'Sale', 'SaleItem', 'Installment', 'OfflineSaleSync',
    'PurchaseOrder', 'PurchaseOrderItem',
    'StockMovement', 'ActivityLog', 'Notification', 'DocumentSequence',
]
