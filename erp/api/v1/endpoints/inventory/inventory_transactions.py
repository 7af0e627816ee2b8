from fastapi import APIRouter, Depends, HTTPException, status, Query
from typing import Optional
from datetime import datetime
from erp.api.dependencies import CurrentUser, get_current_user, get_ledger_service, require_permission
from erp.schemas.common.pagination import PaginatedResponse
from erp.schemas.inventory.inventory_transaction import (
    InventoryStats,
    InventoryTransaction,
    StockAdjustmentCreate,
    StockInCreate,
    StockOutCreate,
    StockTransferCreate,
    TransactionReject,
)
from erp.schemas.inventory.product import ProductStock
from erp.services.inventory.ledger_service import InventoryLedgerService
from erp.models.shared.enums import TransactionStatus, TransactionType
from erp.core.exceptions import BaseAppException, NotFoundError, ValidationError

router = APIRouter()

def _movement_fields(data) -> dict:
    return {
        "reference": data.reference,
        "reference_number": data.reference_number,
        "notes": data.notes,
        "unit_cost": data.unit_cost,
        "status": TransactionStatus.PENDING if data.requires_approval else TransactionStatus.COMPLETED,
    }

@router.post("/stock-in", response_model=InventoryTransaction, status_code=status.HTTP_201_CREATED)
async def stock_in(
    data: StockInCreate,
    ledger: InventoryLedgerService = Depends(get_ledger_service),
    current_user: CurrentUser = Depends(require_permission("inventory", "create"))
):
    """Receive stock"""
    try:
        entry = await ledger.record_transaction(
            data.product_id, TransactionType.IN, data.quantity, data.reason, current_user.id,
            **_movement_fields(data)
        )
        return await ledger.get_transaction(entry.id)
    except BaseAppException as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))

@router.post("/stock-out", response_model=InventoryTransaction, status_code=status.HTTP_201_CREATED)
async def stock_out(
    data: StockOutCreate,
    ledger: InventoryLedgerService = Depends(get_ledger_service),
    current_user: CurrentUser = Depends(require_permission("inventory", "create"))
):
    """Issue stock; rejected when it would leave the product below zero"""
    try:
        entry = await ledger.record_transaction(
            data.product_id, TransactionType.OUT, data.quantity, data.reason, current_user.id,
            **_movement_fields(data)
        )
        return await ledger.get_transaction(entry.id)
    except BaseAppException as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))

@router.post("/stock-transfer", response_model=InventoryTransaction, status_code=status.HTTP_201_CREATED)
async def stock_transfer(
    data: StockTransferCreate,
    ledger: InventoryLedgerService = Depends(get_ledger_service),
    current_user: CurrentUser = Depends(require_permission("inventory", "create"))
):
    """Move stock between locations"""
    try:
        entry = await ledger.record_transfer(
            data.product_id, data.quantity, data.location_from, data.location_to, current_user.id,
            **_movement_fields(data)
        )
        return await ledger.get_transaction(entry.id)
    except BaseAppException as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))

@router.post("/stock-adjustment", response_model=InventoryTransaction, status_code=status.HTTP_201_CREATED)
async def stock_adjustment(
    data: StockAdjustmentCreate,
    ledger: InventoryLedgerService = Depends(get_ledger_service),
    current_user: CurrentUser = Depends(require_permission("inventory", "update"))
):
    """Adjust stock by a signed quantity or to an absolute level"""
    if (data.quantity is None) == (data.new_quantity is None):
        raise HTTPException(status_code=422, detail="Provide exactly one of quantity or new_quantity")
    try:
        if data.new_quantity is not None:
            entry = await ledger.set_stock_level(
                data.product_id, data.new_quantity, current_user.id, data.reason,
                **_movement_fields(data)
            )
        else:
            entry = await ledger.record_transaction(
                data.product_id, TransactionType.ADJUSTMENT, data.quantity, data.reason, current_user.id,
                **_movement_fields(data)
            )
        return await ledger.get_transaction(entry.id)
    except BaseAppException as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))

@router.get("/", response_model=PaginatedResponse[InventoryTransaction])
async def get_transactions(
    page_index: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=1000),
    product_id: Optional[int] = Query(None),
    transaction_type: Optional[TransactionType] = Query(None, alias="type"),
    transaction_status: Optional[TransactionStatus] = Query(None, alias="status"),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    ledger: InventoryLedgerService = Depends(get_ledger_service),
    current_user: CurrentUser = Depends(get_current_user)
):
    """Get ledger entries, newest first"""
    return await ledger.get_transactions(
        page_index=page_index,
        page_size=page_size,
        product_id=product_id,
        transaction_type=transaction_type,
        status=transaction_status,
        start=start_date,
        end=end_date,
    )

@router.get("/stats/overview", response_model=InventoryStats)
async def get_inventory_stats(
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    ledger: InventoryLedgerService = Depends(get_ledger_service),
    current_user: CurrentUser = Depends(get_current_user)
):
    """Movement totals per type plus low and out-of-stock product counts"""
    return await ledger.get_inventory_stats(start_date, end_date)

@router.get("/product/{product_id}/history", response_model=PaginatedResponse[InventoryTransaction])
async def get_product_history(
    product_id: int,
    page_index: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=1000),
    ledger: InventoryLedgerService = Depends(get_ledger_service),
    current_user: CurrentUser = Depends(get_current_user)
):
    """Get movement history for a specific product"""
    return await ledger.get_transactions(page_index=page_index, page_size=page_size, product_id=product_id)

@router.get("/product/{product_id}/stock", response_model=ProductStock)
async def get_product_stock(
    product_id: int,
    ledger: InventoryLedgerService = Depends(get_ledger_service),
    current_user: CurrentUser = Depends(get_current_user)
):
    """Current level from the ledger next to a full recomputation"""
    try:
        product = await ledger.get_product(product_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    current = await ledger.get_current_stock(product_id)
    return ProductStock(
        product_id=product_id,
        current_stock=current,
        recomputed_stock=await ledger.recompute_stock(product_id),
        min_stock=product.min_stock or 0,
        is_low_stock=current <= (product.min_stock or 0),
    )

@router.get("/{transaction_id}", response_model=InventoryTransaction)
async def get_transaction(
    transaction_id: int,
    ledger: InventoryLedgerService = Depends(get_ledger_service),
    current_user: CurrentUser = Depends(get_current_user)
):
    """Get ledger entry by ID"""
    try:
        return await ledger.get_transaction(transaction_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Transaction not found")

@router.post("/{transaction_id}/approve", response_model=InventoryTransaction)
async def approve_transaction(
    transaction_id: int,
    ledger: InventoryLedgerService = Depends(get_ledger_service),
    current_user: CurrentUser = Depends(require_permission("inventory", "approve"))
):
    try:
        return await ledger.approve_transaction(transaction_id, current_user.id)
    except (NotFoundError, ValidationError) as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))

@router.post("/{transaction_id}/reject", response_model=InventoryTransaction)
async def reject_transaction(
    transaction_id: int,
    data: Optional[TransactionReject] = None,
    ledger: InventoryLedgerService = Depends(get_ledger_service),
    current_user: CurrentUser = Depends(require_permission("inventory", "approve"))
):
    """Reject a pending entry; its stock effect is reversed by a compensating adjustment"""
    try:
        return await ledger.reject_transaction(transaction_id, current_user.id, data.notes if data else None)
    except BaseAppException as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))

@router.post("/{transaction_id}/complete", response_model=InventoryTransaction)
async def complete_transaction(
    transaction_id: int,
    ledger: InventoryLedgerService = Depends(get_ledger_service),
    current_user: CurrentUser = Depends(require_permission("inventory", "approve"))
):
    try:
        return await ledger.complete_transaction(transaction_id, current_user.id)
    except (NotFoundError, ValidationError) as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
