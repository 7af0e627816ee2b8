from fastapi import APIRouter
from erp.api.v1.endpoints.inventory import inventory_transactions, products, stock_counts
from erp.api.v1.endpoints.notification import realtime

api_router = APIRouter()

# Inventory routes
api_router.include_router(products.router, prefix="/inventory/product", tags=["Inventory"])
api_router.include_router(inventory_transactions.router, prefix="/inventory/transaction", tags=["Inventory"])
api_router.include_router(stock_counts.router, prefix="/inventory/stock-count", tags=["Inventory"])

# Realtime routes
api_router.include_router(realtime.router, prefix="/realtime", tags=["Realtime"])
