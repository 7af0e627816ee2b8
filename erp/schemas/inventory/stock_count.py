from pydantic import BaseModel, Field, model_validator
from typing import Optional, List, Dict
from datetime import datetime
from decimal import Decimal
from erp.models.shared.enums import StockCountStatus, StockCountType
from erp.schemas.inventory.product import ProductRef

class StockCountScope(BaseModel):
    """Which products a new count covers; empty means every active product"""
    product_ids: Optional[List[int]] = None
    category: Optional[str] = None
    location: Optional[str] = None

    @model_validator(mode='after')
    def validate_single_selector(self):
        if self.product_ids is not None and self.category is not None:
            raise ValueError('Use either product_ids or category, not both')
        if self.product_ids is not None and not self.product_ids:
            raise ValueError('product_ids cannot be empty')
        return self

class StockCountCreate(StockCountScope):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    scheduled_date: Optional[datetime] = None
    notes: Optional[str] = None

class StockCountItemRecord(BaseModel):
    actual_quantity: int = Field(..., ge=0)
    notes: Optional[str] = None

class StockCountItem(BaseModel):
    id: int
    product_id: int
    position: int
    expected_quantity: int
    actual_quantity: Optional[int] = None
    variance: Optional[int] = None
    unit_cost: Optional[Decimal] = None
    notes: Optional[str] = None
    counted_by: Optional[int] = None
    counted_at: Optional[datetime] = None
    transaction_id: Optional[int] = None
    product: Optional[ProductRef] = None

    class Config:
        from_attributes = True

class StockCountInDB(BaseModel):
    id: int
    title: str
    description: Optional[str] = None
    count_type: StockCountType
    status: StockCountStatus
    location: Optional[str] = None
    category: Optional[str] = None
    scheduled_date: Optional[datetime] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    total_items: int
    counted_items: int
    total_variance: int
    total_value: Optional[Decimal] = None
    variance_value: Optional[Decimal] = None
    progress_percentage: float
    created_by: Optional[int] = None
    approved_by: Optional[int] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class StockCountSummary(StockCountInDB):
    pass

class StockCount(StockCountInDB):
    items: List[StockCountItem] = Field(default_factory=list)

class StockCountStats(BaseModel):
    total_counts: int
    by_status: Dict[str, int]
    active_counts: int
    completed_counts: int
    total_value: Decimal
    total_variance: int
    variance_value: Decimal
