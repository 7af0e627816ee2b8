from fastapi import APIRouter, Depends, HTTPException, status, Query
from typing import Optional
from erp.api.dependencies import CurrentUser, get_current_user, get_product_service, require_permission
from erp.schemas.common.pagination import PaginatedResponse
from erp.schemas.inventory.product import Product, ProductCreate
from erp.services.inventory.product_service import ProductService
from erp.core.exceptions import NotFoundError, ValidationError

router = APIRouter()

@router.post("/", response_model=Product, status_code=status.HTTP_201_CREATED)
async def create_product(
    product_data: ProductCreate,
    service: ProductService = Depends(get_product_service),
    current_user: CurrentUser = Depends(require_permission("inventory", "create"))
):
    """Create a product, optionally with opening stock"""
    try:
        return await service.create_product(product_data, current_user.id)
    except ValidationError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))

@router.get("/", response_model=PaginatedResponse[Product])
async def get_products(
    page_index: int = Query(1, ge=1),
    page_size: int = Query(100, ge=1, le=1000),
    search: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    low_stock: bool = Query(False),
    service: ProductService = Depends(get_product_service),
    current_user: CurrentUser = Depends(get_current_user)
):
    """Get products with optional search"""
    return await service.get_products(
        page_index=page_index,
        page_size=page_size,
        search=search,
        category=category,
        low_stock=low_stock
    )

@router.get("/{product_id}", response_model=Product)
async def get_product(
    product_id: int,
    service: ProductService = Depends(get_product_service),
    current_user: CurrentUser = Depends(get_current_user)
):
    """Get product by ID"""
    try:
        return await service.get_product(product_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
