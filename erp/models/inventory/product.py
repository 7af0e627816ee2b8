from sqlalchemy import Column, Integer, String, Boolean, Text, Numeric
from sqlalchemy.orm import relationship
from erp.db.base import BaseModel

class Product(BaseModel):
    __tablename__ = 'products'

    sku = Column(String(50), unique=True, nullable=False, index=True)
    name = Column(String(200), nullable=False)
    description = Column(Text)
    category = Column(String(100), index=True)
    price = Column(Numeric(10, 2), default=0)
    cost = Column(Numeric(10, 2), default=0)
    min_stock = Column(Integer, default=0)
    # Cached copy of the ledger-derived level; written only by the ledger service
    current_stock = Column(Integer, nullable=False, default=0)
    stock_version = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, default=True)

    # Relationships
    transactions = relationship("InventoryTransaction", back_populates="product")
    stock_count_items = relationship("StockCountItem", back_populates="product")
