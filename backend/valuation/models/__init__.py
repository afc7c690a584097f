from .catalog import Store, Product
from .inventory import InventoryRecord, InventoryCostLayer
from .ledger import StockMovement, PriceChangeEvent, InventoryRevaluationEvent
from .sales import Transaction, TransactionItem
from .analytics import ProductProfitabilitySnapshot, BatchRun

__all__ = [
    'Store', 'Product',
    'InventoryRecord', 'InventoryCostLayer',
    'StockMovement', 'PriceChangeEvent', 'InventoryRevaluationEvent',
    'Transaction', 'TransactionItem',
    'ProductProfitabilitySnapshot', 'BatchRun',
]
