from sqlalchemy import Column, Integer, String, Text, Numeric, ForeignKey, Enum as SQLEnum
from sqlalchemy.orm import relationship
from erp.db.base import BaseModel
from erp.models.shared.enums import TransactionType, TransactionStatus, TransactionReason, enum_values

class InventoryTransaction(BaseModel):
    __tablename__ = 'inventory_transactions'

    product_id = Column(Integer, ForeignKey('products.id'), nullable=False, index=True)
    type = Column(SQLEnum(TransactionType, values_callable=enum_values, name="transactiontype"), nullable=False)
    quantity = Column(Integer, nullable=False)           # Magnitude, always positive
    quantity_delta = Column(Integer, nullable=False)     # Signed effect on stock
    previous_stock = Column(Integer, nullable=False)
    new_stock = Column(Integer, nullable=False)
    reference = Column(String(100))
    reference_number = Column(String(100), index=True)
    location_from = Column(String(100))
    location_to = Column(String(100))
    reason = Column(SQLEnum(TransactionReason, values_callable=enum_values, name="transactionreason"), nullable=False)
    notes = Column(Text)
    unit_cost = Column(Numeric(10, 2))
    total_cost = Column(Numeric(12, 2))
    performed_by = Column(Integer, nullable=False)  # User ID
    approved_by = Column(Integer)  # User ID
    status = Column(
        SQLEnum(TransactionStatus, values_callable=enum_values, name="transactionstatus"),
        nullable=False,
        default=TransactionStatus.COMPLETED,
    )
    compensates_id = Column(Integer, ForeignKey('inventory_transactions.id'))

    # Relationships
    product = relationship("Product", back_populates="transactions")
