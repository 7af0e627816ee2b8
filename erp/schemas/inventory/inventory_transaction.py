from pydantic import BaseModel, Field, field_validator
from typing import Optional, Dict
from datetime import datetime
from decimal import Decimal
from erp.models.shared.enums import TransactionType, TransactionStatus, TransactionReason
from erp.schemas.inventory.product import ProductRef

class StockMovementBase(BaseModel):
    product_id: int
    reference: Optional[str] = None
    reference_number: Optional[str] = None
    notes: Optional[str] = None
    unit_cost: Optional[Decimal] = None
    requires_approval: bool = False

class StockInCreate(StockMovementBase):
    quantity: int
    reason: TransactionReason = TransactionReason.PURCHASE

    @field_validator('quantity')
    @classmethod
    def validate_positive_quantity(cls, v):
        if v <= 0:
            raise ValueError('Quantity must be positive')
        return v

class StockOutCreate(StockInCreate):
    reason: TransactionReason = TransactionReason.SALE

class StockTransferCreate(StockInCreate):
    location_from: str = Field(..., min_length=1)
    location_to: str = Field(..., min_length=1)
    reason: TransactionReason = TransactionReason.TRANSFER

class StockAdjustmentCreate(StockMovementBase):
    # Either a signed delta or an absolute target level
    quantity: Optional[int] = None
    new_quantity: Optional[int] = Field(default=None, ge=0)
    reason: TransactionReason = TransactionReason.ADJUSTMENT

    @field_validator('quantity')
    @classmethod
    def validate_non_zero_delta(cls, v):
        if v == 0:
            raise ValueError('Adjustment quantity cannot be zero')
        return v

class TransactionReject(BaseModel):
    notes: Optional[str] = None

class InventoryTransactionInDB(BaseModel):
    id: int
    product_id: int
    type: TransactionType
    quantity: int
    quantity_delta: int
    previous_stock: int
    new_stock: int
    reference: Optional[str] = None
    reference_number: Optional[str] = None
    location_from: Optional[str] = None
    location_to: Optional[str] = None
    reason: TransactionReason
    notes: Optional[str] = None
    unit_cost: Optional[Decimal] = None
    total_cost: Optional[Decimal] = None
    performed_by: int
    approved_by: Optional[int] = None
    status: TransactionStatus
    compensates_id: Optional[int] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class InventoryTransaction(InventoryTransactionInDB):
    product: Optional[ProductRef] = None

class TypeSummary(BaseModel):
    count: int
    quantity: int
    total_value: Decimal

class InventoryStats(BaseModel):
    total_transactions: int
    by_type: Dict[str, TypeSummary]
    total_products: int
    low_stock_products: int
    out_of_stock_products: int
