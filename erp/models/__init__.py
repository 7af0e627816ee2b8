from erp.models.inventory.product import Product
from erp.models.inventory.inventory_transaction import InventoryTransaction
from erp.models.inventory.stock_count import StockCount
from erp.models.inventory.stock_count_item import StockCountItem
