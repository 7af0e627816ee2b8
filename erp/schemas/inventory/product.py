from pydantic import BaseModel, Field, field_validator
from typing import Optional
from datetime import datetime
from decimal import Decimal

class ProductBase(BaseModel):
    sku: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    category: Optional[str] = None
    price: Decimal = Decimal("0")
    cost: Decimal = Decimal("0")
    min_stock: int = 0

    @field_validator('price', 'cost')
    @classmethod
    def validate_non_negative_amount(cls, v):
        if v < 0:
            raise ValueError('Amount cannot be negative')
        return v

class ProductCreate(ProductBase):
    opening_stock: int = Field(default=0, ge=0)

class ProductInDB(ProductBase):
    id: int
    current_stock: int
    stock_version: int
    is_active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    created_by: Optional[int] = None

    class Config:
        from_attributes = True

class Product(ProductInDB):
    pass

class ProductRef(BaseModel):
    id: int
    name: str
    sku: str

    class Config:
        from_attributes = True

class ProductStock(BaseModel):
    product_id: int
    current_stock: int
    recomputed_stock: int
    min_stock: int
    is_low_stock: bool
