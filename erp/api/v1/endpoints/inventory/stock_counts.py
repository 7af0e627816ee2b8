from fastapi import APIRouter, Depends, HTTPException, status, Query
from typing import Optional
from erp.api.dependencies import CurrentUser, get_current_user, get_stock_count_service, require_permission
from erp.schemas.common.pagination import PaginatedResponse
from erp.schemas.inventory.stock_count import (
    StockCount,
    StockCountCreate,
    StockCountItemRecord,
    StockCountStats,
    StockCountSummary,
)
from erp.services.inventory.stock_count_service import StockCountService
from erp.models.shared.enums import StockCountStatus, StockCountType
from erp.core.exceptions import BaseAppException, NotFoundError

router = APIRouter()

@router.post("/", response_model=StockCount, status_code=status.HTTP_201_CREATED)
async def create_stock_count(
    data: StockCountCreate,
    service: StockCountService = Depends(get_stock_count_service),
    current_user: CurrentUser = Depends(require_permission("stock_count", "create"))
):
    """Create a draft stock count over products, a category, or everything"""
    try:
        return await service.create_stock_count(data, current_user.id)
    except BaseAppException as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))

@router.get("/", response_model=PaginatedResponse[StockCountSummary])
async def get_stock_counts(
    page_index: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=1000),
    count_status: Optional[StockCountStatus] = Query(None, alias="status"),
    count_type: Optional[StockCountType] = Query(None, alias="type"),
    search: Optional[str] = Query(None),
    service: StockCountService = Depends(get_stock_count_service),
    current_user: CurrentUser = Depends(get_current_user)
):
    return await service.get_stock_counts(
        page_index=page_index,
        page_size=page_size,
        status=count_status,
        count_type=count_type,
        search=search
    )

@router.get("/stats/overview", response_model=StockCountStats)
async def get_stock_count_stats(
    service: StockCountService = Depends(get_stock_count_service),
    current_user: CurrentUser = Depends(get_current_user)
):
    return await service.get_stock_count_stats()

@router.get("/{stock_count_id}", response_model=StockCount)
async def get_stock_count(
    stock_count_id: int,
    service: StockCountService = Depends(get_stock_count_service),
    current_user: CurrentUser = Depends(get_current_user)
):
    """Get stock count with its items"""
    try:
        return await service.get_stock_count(stock_count_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Stock count not found")

@router.patch("/{stock_count_id}/start", response_model=StockCount)
async def start_stock_count(
    stock_count_id: int,
    service: StockCountService = Depends(get_stock_count_service),
    current_user: CurrentUser = Depends(require_permission("stock_count", "update"))
):
    try:
        return await service.start_stock_count(stock_count_id, current_user.id)
    except BaseAppException as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))

@router.patch("/{stock_count_id}/items/{product_id}", response_model=StockCount)
async def record_count(
    stock_count_id: int,
    product_id: int,
    data: StockCountItemRecord,
    service: StockCountService = Depends(get_stock_count_service),
    current_user: CurrentUser = Depends(require_permission("stock_count", "count"))
):
    """Record the physically counted quantity of one product"""
    try:
        return await service.record_count(
            stock_count_id, product_id, data.actual_quantity, current_user.id, data.notes
        )
    except BaseAppException as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))

@router.patch("/{stock_count_id}/complete", response_model=StockCount)
async def complete_stock_count(
    stock_count_id: int,
    service: StockCountService = Depends(get_stock_count_service),
    current_user: CurrentUser = Depends(require_permission("stock_count", "approve"))
):
    """Post variance adjustments to the ledger and complete the count"""
    try:
        return await service.finalize(stock_count_id, current_user.id)
    except BaseAppException as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))

@router.patch("/{stock_count_id}/cancel", response_model=StockCount)
async def cancel_stock_count(
    stock_count_id: int,
    service: StockCountService = Depends(get_stock_count_service),
    current_user: CurrentUser = Depends(require_permission("stock_count", "update"))
):
    try:
        return await service.cancel(stock_count_id, current_user.id)
    except BaseAppException as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
