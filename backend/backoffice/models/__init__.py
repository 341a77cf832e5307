from .inventory import Product, OutletStock, StockMovement
from .purchasing import PurchaseOrder, PurchaseOrderItem
from .documents import StockTransfer, StockTransferItem, Return, ReturnItem
from .sales import Transaction, TransactionItem
from .settings import ReturnPolicy
from .audit import AuditEvent

__all__ = [
    'Product', 'OutletStock', 'StockMovement',
    'PurchaseOrder', 'PurchaseOrderItem',
    'StockTransfer', 'StockTransferItem', 'Return', 'ReturnItem',
    'Transaction', 'TransactionItem',
    'ReturnPolicy',
    'AuditEvent',
]
