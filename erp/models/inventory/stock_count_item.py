from sqlalchemy import Column, Integer, DateTime, Text, Numeric, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from erp.db.base import BaseModel

class StockCountItem(BaseModel):
    __tablename__ = 'stock_count_items'

    stock_count_id = Column(Integer, ForeignKey('stock_counts.id'), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey('products.id'), nullable=False)
    position = Column(Integer, nullable=False, default=0)
    expected_quantity = Column(Integer, nullable=False)
    actual_quantity = Column(Integer)
    variance = Column(Integer)
    unit_cost = Column(Numeric(10, 2))
    notes = Column(Text)
    counted_by = Column(Integer)  # User ID
    counted_at = Column(DateTime(timezone=True))
    transaction_id = Column(Integer, ForeignKey('inventory_transactions.id'))

    __table_args__ = (
        UniqueConstraint("stock_count_id", "product_id", name="uq_stock_count_product"),
    )

    # Relationships
    stock_count = relationship("StockCount", back_populates="items")
    product = relationship("Product", back_populates="stock_count_items")

    @property
    def is_counted(self) -> bool:
        return self.actual_quantity is not None
