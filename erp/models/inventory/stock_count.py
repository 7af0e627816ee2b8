from sqlalchemy import Column, Integer, String, DateTime, Text, Numeric, Enum as SQLEnum
from sqlalchemy.orm import relationship
from erp.db.base import BaseModel
from erp.models.shared.enums import StockCountStatus, StockCountType, enum_values

class StockCount(BaseModel):
    __tablename__ = 'stock_counts'

    title = Column(String(200), nullable=False)
    description = Column(Text)
    count_type = Column(SQLEnum(StockCountType, values_callable=enum_values, name="stockcounttype"), default=StockCountType.FULL)
    status = Column(
        SQLEnum(StockCountStatus, values_callable=enum_values, name="stockcountstatus"),
        nullable=False,
        default=StockCountStatus.DRAFT,
    )
    location = Column(String(100))
    category = Column(String(100))
    scheduled_date = Column(DateTime(timezone=True))
    start_date = Column(DateTime(timezone=True))
    end_date = Column(DateTime(timezone=True))
    total_items = Column(Integer, nullable=False, default=0)
    counted_items = Column(Integer, nullable=False, default=0)
    total_variance = Column(Integer, nullable=False, default=0)
    total_value = Column(Numeric(14, 2), default=0)
    variance_value = Column(Numeric(14, 2), default=0)
    approved_by = Column(Integer)  # User ID
    notes = Column(Text)

    # Relationships
    items = relationship(
        "StockCountItem",
        back_populates="stock_count",
        order_by="StockCountItem.position",
        cascade="all, delete-orphan",
    )

    @property
    def progress_percentage(self) -> float:
        if not self.total_items:
            return 0.0
        return round(self.counted_items / self.total_items * 100, 2)
