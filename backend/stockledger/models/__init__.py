from .tenancy import Tenant, Location
from .catalog import Product
from .stock import StockLevel, StockMovement, ProductBatch, StockMovementBatch
from .sales import Sale, SaleLine
from .purchasing import PurchaseOrder, PurchaseOrderLine
from .documents import (
    StockTransfer,
    StockTransferItem,
    Inventory,
    InventoryItem,
    DocumentSequence,
)

__all__ = [
    'Tenant', 'Location',
    'Product',
    'StockLevel', 'StockMovement', 'ProductBatch', 'StockMovementBatch',
    'Sale', 'SaleLine',
    'PurchaseOrder', 'PurchaseOrderLine',
    'StockTransfer', 'StockTransferItem',
    'Inventory', 'InventoryItem', 'DocumentSequence',
]
