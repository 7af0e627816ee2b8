from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from erp.core.database import get_async_session
from erp.auth.jwt_handler import decode_access_token
from erp.auth.permissions import PermissionChecker
from erp.services.concurrency import StockLockRegistry
from erp.services.notification.channel_hub import ChannelHub
from erp.services.inventory.ledger_service import InventoryLedgerService
from erp.services.inventory.product_service import ProductService
from erp.services.inventory.stock_count_service import StockCountService
import logging

security = HTTPBearer()
logger = logging.getLogger(__name__)

@dataclass
class CurrentUser:
    """Actor resolved from the bearer token; user records live outside this service"""
    id: int
    permissions: List[Dict[str, Any]] = field(default_factory=list)

def user_from_token(token: Optional[str]) -> Optional[CurrentUser]:
    payload = decode_access_token(token) if token else None
    if payload is None:
        return None
    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        return None
    return CurrentUser(id=user_id, permissions=payload.get("permissions", []))

async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> CurrentUser:
    """Get current authenticated user"""
    user = user_from_token(credentials.credentials)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    # Add request info to context
    request.state.current_user = user
    request.state.user_permissions = user.permissions
    return user

def require_permission(resource: str, action: str):
    """
    Dependency to require specific permission for an endpoint

    Examples:
        require_permission("inventory", "create")      # inventory:create
    """
    async def permission_dependency(
        current_user: CurrentUser = Depends(get_current_user)
    ) -> CurrentUser:
        PermissionChecker(current_user.permissions).require(resource, action)
        return current_user

    return permission_dependency

# --- Application-scoped collaborators (created by create_app) ---

def get_channel_hub(request: Request) -> ChannelHub:
    return request.app.state.channel_hub

def get_lock_registry(request: Request) -> StockLockRegistry:
    return request.app.state.lock_registry

def get_ledger_service(
    db: AsyncSession = Depends(get_async_session),
    locks: StockLockRegistry = Depends(get_lock_registry),
    hub: ChannelHub = Depends(get_channel_hub),
) -> InventoryLedgerService:
    return InventoryLedgerService(db, locks=locks, publisher=hub)

def get_product_service(
    db: AsyncSession = Depends(get_async_session),
    ledger: InventoryLedgerService = Depends(get_ledger_service),
) -> ProductService:
    return ProductService(db, ledger)

def get_stock_count_service(
    db: AsyncSession = Depends(get_async_session),
    ledger: InventoryLedgerService = Depends(get_ledger_service),
) -> StockCountService:
    return StockCountService(db, ledger)
