import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from erp.core.exceptions import (
    AlreadyFinalizedError,
    IncompleteCountError,
    NotFoundError,
    StockCountStateError,
    ValidationError,
)
from erp.core.logging import log_user_action
from erp.models.inventory.inventory_transaction import InventoryTransaction
from erp.models.inventory.product import Product
from erp.models.inventory.stock_count import StockCount
from erp.models.inventory.stock_count_item import StockCountItem
from erp.models.shared.enums import StockCountStatus, StockCountType, TransactionReason, TransactionType
from erp.schemas.inventory.stock_count import StockCountCreate
from erp.services.concurrency import run_with_retry
from erp.services.inventory.ledger_service import InventoryLedgerService

logger = logging.getLogger(__name__)


def _count_key(stock_count_id: int):
    return ("stock_count", stock_count_id)


class StockCountService:
    """Stock-count batches reconciled into the ledger as adjustments"""

    def __init__(self, db: AsyncSession, ledger: InventoryLedgerService):
        self.db = db
        self.ledger = ledger
        self.locks = ledger.locks

    async def _load(self, stock_count_id: int) -> StockCount:
        result = await self.db.execute(
            select(StockCount)
            .options(selectinload(StockCount.items).selectinload(StockCountItem.product))
            .where(StockCount.id == stock_count_id)
            .execution_options(populate_existing=True)
        )
        stock_count = result.scalar_one_or_none()
        if not stock_count:
            raise NotFoundError(f"Stock count {stock_count_id} not found")
        return stock_count

    async def get_stock_count(self, stock_count_id: int) -> StockCount:
        return await self._load(stock_count_id)

    @staticmethod
    def _ensure_open(stock_count: StockCount) -> None:
        if stock_count.status == StockCountStatus.COMPLETED:
            raise AlreadyFinalizedError(f"Stock count {stock_count.id} is already completed")
        if stock_count.status == StockCountStatus.CANCELLED:
            raise StockCountStateError(f"Stock count {stock_count.id} is cancelled")

    # --- Creation ---------------------------------------------------------

    async def create_stock_count(self, data: StockCountCreate, created_by: int) -> StockCount:
        """
        Create a draft count whose expected quantities are the ledger levels
        right now.

        Explicit product ids make a partial count, a category makes a cycle
        count, and no selector counts every active product.
        """
        query = select(Product).where(Product.is_active == True)
        if data.product_ids:
            query = query.where(Product.id.in_(data.product_ids))
            count_type = StockCountType.PARTIAL
        elif data.category:
            query = query.where(Product.category == data.category)
            count_type = StockCountType.CYCLE
        else:
            count_type = StockCountType.FULL

        result = await self.db.execute(query.order_by(Product.id))
        products = list(result.scalars().all())

        if data.product_ids:
            found = {product.id for product in products}
            missing = [pid for pid in data.product_ids if pid not in found]
            if missing:
                raise NotFoundError(f"Products not found or inactive: {missing}")
            order = {pid: index for index, pid in enumerate(dict.fromkeys(data.product_ids))}
            products.sort(key=lambda product: order[product.id])

        if not products:
            raise ValidationError("No products match the stock count scope")

        try:
            stock_count = StockCount(
                title=data.title,
                description=data.description,
                count_type=count_type,
                status=StockCountStatus.DRAFT,
                location=data.location,
                category=data.category,
                scheduled_date=data.scheduled_date,
                notes=data.notes,
                total_items=len(products),
                counted_items=0,
                total_variance=0,
                variance_value=Decimal("0"),
                created_by=created_by,
                updated_by=created_by,
            )
            total_value = Decimal("0")
            for position, product in enumerate(products):
                expected = await self.ledger.get_current_stock(product.id)
                cost = Decimal(product.cost or 0)
                total_value += cost * expected
                stock_count.items.append(StockCountItem(
                    product_id=product.id,
                    position=position,
                    expected_quantity=expected,
                    unit_cost=cost,
                    created_by=created_by,
                ))
            stock_count.total_value = total_value

            self.db.add(stock_count)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Stock count {stock_count.id} created with {len(products)} items ({count_type.value})")
        log_user_action(created_by, "create_stock_count", "stock_count", stock_count.id)
        return await self._load(stock_count.id)

    # --- Workflow ---------------------------------------------------------

    async def start_stock_count(self, stock_count_id: int, started_by: int) -> StockCount:
        async with self.locks.hold(_count_key(stock_count_id)):
            stock_count = await self._load(stock_count_id)
            self._ensure_open(stock_count)
            if stock_count.status != StockCountStatus.DRAFT:
                raise StockCountStateError("Only draft stock counts can be started")
            stock_count.status = StockCountStatus.IN_PROGRESS
            stock_count.start_date = datetime.now(timezone.utc)
            stock_count.updated_by = started_by
            await self.db.commit()

        log_user_action(started_by, "start_stock_count", "stock_count", stock_count_id)
        return await self._load(stock_count_id)

    async def record_count(
        self,
        stock_count_id: int,
        product_id: int,
        actual_quantity: int,
        counted_by: int,
        notes: Optional[str] = None,
    ) -> StockCount:
        """Record (or overwrite) the physical quantity of one item"""
        if actual_quantity < 0:
            raise ValidationError("Counted quantity cannot be negative")

        async with self.locks.hold(_count_key(stock_count_id)):
            stock_count = await self._load(stock_count_id)
            self._ensure_open(stock_count)

            item = next((i for i in stock_count.items if i.product_id == product_id), None)
            if item is None:
                raise NotFoundError(f"Product {product_id} is not part of stock count {stock_count_id}")

            if not item.is_counted:
                stock_count.counted_items += 1
            item.actual_quantity = actual_quantity
            item.variance = actual_quantity - item.expected_quantity
            item.counted_by = counted_by
            item.counted_at = datetime.now(timezone.utc)
            item.updated_by = counted_by
            if notes is not None:
                item.notes = notes

            if stock_count.status == StockCountStatus.DRAFT:
                stock_count.status = StockCountStatus.IN_PROGRESS
                stock_count.start_date = datetime.now(timezone.utc)
            stock_count.updated_by = counted_by
            await self.db.commit()

        return await self._load(stock_count_id)

    async def finalize(self, stock_count_id: int, approved_by: int) -> StockCount:
        """
        Post one adjustment per item with a non-zero variance and complete
        the count, all in one database transaction.

        The adjustment delta is the item variance applied to the product's
        level at finalize time. Any failure rolls everything back.
        """
        stock_count = await self._load(stock_count_id)
        self._ensure_open(stock_count)
        product_ids = [item.product_id for item in stock_count.items]

        async def finalize_once() -> List[InventoryTransaction]:
            current = await self._load(stock_count_id)
            self._ensure_open(current)
            if current.counted_items < current.total_items:
                raise IncompleteCountError(
                    f"{current.total_items - current.counted_items} of {current.total_items} items not counted"
                )

            entries = []
            total_variance = 0
            variance_value = Decimal("0")
            for item in current.items:
                total_variance += abs(item.variance)
                variance_value += abs(item.variance) * Decimal(item.unit_cost or 0)
                if not item.variance:
                    continue
                entry = await self.ledger.record_transaction(
                    item.product_id,
                    TransactionType.ADJUSTMENT,
                    item.variance,
                    TransactionReason.COUNT,
                    approved_by,
                    commit=False,
                    reference="Stock Count Adjustment",
                    reference_number=f"SC-{current.id}",
                    notes=f"Stock count #{current.id}: expected {item.expected_quantity}, counted {item.actual_quantity}",
                )
                item.transaction_id = entry.id
                entries.append(entry)

            current.total_variance = total_variance
            current.variance_value = variance_value
            current.status = StockCountStatus.COMPLETED
            current.end_date = datetime.now(timezone.utc)
            current.approved_by = approved_by
            current.updated_by = approved_by
            await self.db.commit()
            return entries

        try:
            async with self.locks.hold_many([_count_key(stock_count_id), *product_ids]):
                entries = await run_with_retry(
                    finalize_once,
                    self.db,
                    attempts=self.ledger.retry_attempts,
                    backoff_base=self.ledger.retry_backoff,
                )
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Stock count {stock_count_id} completed with {len(entries)} adjustment(s)")
        log_user_action(approved_by, "complete_stock_count", "stock_count", stock_count_id)
        for entry in entries:
            await self.ledger.after_commit(entry)
        return await self._load(stock_count_id)

    async def cancel(self, stock_count_id: int, cancelled_by: int) -> StockCount:
        async with self.locks.hold(_count_key(stock_count_id)):
            stock_count = await self._load(stock_count_id)
            self._ensure_open(stock_count)
            stock_count.status = StockCountStatus.CANCELLED
            stock_count.updated_by = cancelled_by
            await self.db.commit()

        log_user_action(cancelled_by, "cancel_stock_count", "stock_count", stock_count_id)
        return await self._load(stock_count_id)

    # --- Listing ----------------------------------------------------------

    async def get_stock_counts(
        self,
        page_index: int = 1,
        page_size: int = 10,
        status: Optional[StockCountStatus] = None,
        count_type: Optional[StockCountType] = None,
        search: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Get stock counts with pagination"""
        conditions = []
        if status:
            conditions.append(StockCount.status == status)
        if count_type:
            conditions.append(StockCount.count_type == count_type)
        if search:
            conditions.append(
                or_(
                    StockCount.title.ilike(f"%{search}%"),
                    StockCount.description.ilike(f"%{search}%"),
                )
            )

        query = select(StockCount)
        if conditions:
            query = query.where(and_(*conditions))

        count_query = select(func.count()).select_from(query.subquery())
        total = (await self.db.execute(count_query)).scalar() or 0

        skip = (page_index - 1) * page_size
        result = await self.db.execute(
            query.order_by(StockCount.id.desc()).offset(skip).limit(page_size)
        )
        return {
            "page_index": page_index,
            "page_size": page_size,
            "count": total,
            "data": result.scalars().all(),
        }

    async def get_stock_count_stats(self) -> Dict[str, Any]:
        result = await self.db.execute(
            select(
                StockCount.status,
                func.count(StockCount.id).label('count'),
                func.coalesce(func.sum(StockCount.total_value), 0).label('total_value'),
                func.coalesce(func.sum(StockCount.total_variance), 0).label('total_variance'),
                func.coalesce(func.sum(StockCount.variance_value), 0).label('variance_value'),
            ).group_by(StockCount.status)
        )

        by_status = {status.value: 0 for status in StockCountStatus}
        total_value = Decimal("0")
        total_variance = 0
        variance_value = Decimal("0")
        for row in result:
            by_status[row.status.value] = int(row.count)
            total_value += Decimal(str(row.total_value))
            if row.status == StockCountStatus.COMPLETED:
                total_variance += int(row.total_variance)
                variance_value += Decimal(str(row.variance_value))

        return {
            "total_counts": sum(by_status.values()),
            "by_status": by_status,
            "active_counts": by_status[StockCountStatus.IN_PROGRESS.value],
            "completed_counts": by_status[StockCountStatus.COMPLETED.value],
            "total_value": total_value,
            "total_variance": total_variance,
            "variance_value": variance_value,
        }
