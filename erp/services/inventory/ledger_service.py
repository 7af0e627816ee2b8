import logging
import time
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

from sqlalchemy import and_, desc, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from erp.core.config import settings
from erp.core.exceptions import (
    ConcurrencyConflictError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from erp.core.logging import log_user_action
from erp.models.inventory.inventory_transaction import InventoryTransaction
from erp.models.inventory.product import Product
from erp.models.shared.enums import TransactionReason, TransactionStatus, TransactionType
from erp.services.concurrency import StockLockRegistry, run_with_retry

logger = logging.getLogger(__name__)

INVENTORY_CHANNEL = "inventory"
STOCK_ALERTS_CHANNEL = "stock-alerts"

# (previous_stock) -> (quantity, quantity_delta)
DeltaRule = Callable[[int], Tuple[int, int]]


class Publisher(Protocol):
    async def publish(self, channel: str, payload: Any) -> int:
        ...


class InventoryLedgerService:
    """
    Append-only stock ledger.

    Every movement is an InventoryTransaction with
    ``new_stock = previous_stock + quantity_delta``. Writers for one product
    are serialized by the lock registry and the product's ``stock_version``
    is checked at write time, so two writers never derive a new level from
    the same previous level.
    """

    def __init__(
        self,
        db: AsyncSession,
        locks: Optional[StockLockRegistry] = None,
        publisher: Optional[Publisher] = None,
        allow_negative_stock: Optional[bool] = None,
        retry_attempts: Optional[int] = None,
        retry_backoff: Optional[float] = None,
    ):
        self.db = db
        self.locks = locks or StockLockRegistry()
        self.publisher = publisher
        self.allow_negative_stock = (
            settings.ALLOW_NEGATIVE_STOCK if allow_negative_stock is None else allow_negative_stock
        )
        self.retry_attempts = retry_attempts or settings.LEDGER_RETRY_ATTEMPTS
        self.retry_backoff = settings.LEDGER_RETRY_BACKOFF_SECONDS if retry_backoff is None else retry_backoff

    # --- Validation -------------------------------------------------------

    @staticmethod
    def signed_delta(transaction_type: TransactionType, quantity: int) -> int:
        """Signed stock effect of a movement; raises ValidationError for bad quantities"""
        if transaction_type == TransactionType.ADJUSTMENT:
            if not quantity:
                raise ValidationError("Adjustment quantity cannot be zero")
            return quantity
        if quantity is None or quantity <= 0:
            raise ValidationError("Quantity must be greater than zero")
        if transaction_type == TransactionType.IN:
            return quantity
        if transaction_type == TransactionType.OUT:
            return -quantity
        # transfer legs live on the same product, count is an audit record
        return 0

    def _check_level(self, product_id: int, previous: int, new: int, requested: int) -> None:
        if new >= 0:
            return
        if not self.allow_negative_stock:
            raise InsufficientStockError(
                f"Insufficient stock: available {previous}, requested {requested}"
            )
        logger.warning(
            f"Negative stock allowed by policy: product {product_id} goes from {previous} to {new}"
        )

    # --- Reads ------------------------------------------------------------

    async def get_product(self, product_id: int) -> Product:
        result = await self.db.execute(
            select(Product)
            .where(Product.id == product_id)
            .execution_options(populate_existing=True)
        )
        product = result.scalar_one_or_none()
        if not product:
            raise NotFoundError(f"Product {product_id} not found")
        return product

    async def get_current_stock(self, product_id: int) -> int:
        """new_stock of the latest ledger entry; 0 for a product without history"""
        result = await self.db.execute(
            select(InventoryTransaction.new_stock)
            .where(InventoryTransaction.product_id == product_id)
            .order_by(desc(InventoryTransaction.id))
            .limit(1)
        )
        current = result.scalar_one_or_none()
        return current if current is not None else 0

    async def recompute_stock(self, product_id: int) -> int:
        """Fold of every quantity_delta; always equals get_current_stock"""
        result = await self.db.execute(
            select(func.coalesce(func.sum(InventoryTransaction.quantity_delta), 0))
            .where(InventoryTransaction.product_id == product_id)
        )
        return int(result.scalar() or 0)

    def _filters(
        self,
        product_id: Optional[int] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        transaction_type: Optional[TransactionType] = None,
        status: Optional[TransactionStatus] = None,
    ) -> list:
        conditions = []
        if product_id:
            conditions.append(InventoryTransaction.product_id == product_id)
        if start:
            conditions.append(InventoryTransaction.created_at >= start)
        if end:
            conditions.append(InventoryTransaction.created_at <= end)
        if transaction_type:
            conditions.append(InventoryTransaction.type == transaction_type)
        if status:
            conditions.append(InventoryTransaction.status == status)
        return conditions

    async def list_transactions(
        self,
        product_id: Optional[int] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        transaction_type: Optional[TransactionType] = None,
        status: Optional[TransactionStatus] = None,
        skip: int = 0,
        limit: Optional[int] = None,
        newest_first: bool = False,
    ) -> List[InventoryTransaction]:
        """Ledger entries in chronological order (ids are assigned in append order)"""
        query = select(InventoryTransaction).options(selectinload(InventoryTransaction.product))
        conditions = self._filters(product_id, start, end, transaction_type, status)
        if conditions:
            query = query.where(and_(*conditions))
        order = desc(InventoryTransaction.id) if newest_first else InventoryTransaction.id
        query = query.order_by(order).offset(skip)
        if limit is not None:
            query = query.limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def count_transactions(self, **filters) -> int:
        query = select(func.count(InventoryTransaction.id))
        conditions = self._filters(**filters)
        if conditions:
            query = query.where(and_(*conditions))
        result = await self.db.execute(query)
        return result.scalar() or 0

    async def get_transactions(
        self,
        page_index: int = 1,
        page_size: int = 50,
        **filters,
    ) -> Dict[str, Any]:
        """Newest-first page of ledger entries"""
        total = await self.count_transactions(**filters)
        data = await self.list_transactions(
            **filters,
            skip=(page_index - 1) * page_size,
            limit=page_size,
            newest_first=True,
        )
        return {
            "page_index": page_index,
            "page_size": page_size,
            "count": total,
            "data": data,
        }

    async def get_transaction(self, transaction_id: int) -> InventoryTransaction:
        result = await self.db.execute(
            select(InventoryTransaction)
            .options(selectinload(InventoryTransaction.product))
            .where(InventoryTransaction.id == transaction_id)
            .execution_options(populate_existing=True)
        )
        transaction = result.scalar_one_or_none()
        if not transaction:
            raise NotFoundError(f"Transaction {transaction_id} not found")
        return transaction

    # --- Writes -----------------------------------------------------------

    async def _append(
        self,
        product_id: int,
        transaction_type: TransactionType,
        rule: DeltaRule,
        reason: TransactionReason,
        performed_by: int,
        commit: bool = True,
        **fields,
    ) -> InventoryTransaction:
        """Read, validate and write one entry; the caller holds the product lock"""
        product = await self.get_product(product_id)
        seen_version = product.stock_version
        previous = await self.get_current_stock(product_id)
        quantity, delta = rule(previous)
        new = previous + delta

        result = await self.db.execute(
            update(Product)
            .where(and_(Product.id == product_id, Product.stock_version == seen_version))
            .values(current_stock=new, stock_version=seen_version + 1)
        )
        if result.rowcount != 1:
            raise ConcurrencyConflictError(f"Stock of product {product_id} changed concurrently")

        unit_cost = fields.pop("unit_cost", None)
        if unit_cost is None:
            unit_cost = product.cost
        total_cost = fields.pop("total_cost", None)
        if total_cost is None and unit_cost is not None:
            total_cost = Decimal(unit_cost) * quantity

        entry = InventoryTransaction(
            product_id=product_id,
            type=transaction_type,
            quantity=quantity,
            quantity_delta=delta,
            previous_stock=previous,
            new_stock=new,
            reason=reason,
            unit_cost=unit_cost,
            total_cost=total_cost,
            performed_by=performed_by,
            created_by=performed_by,
            updated_by=performed_by,
            **fields,
        )
        self.db.add(entry)
        if commit:
            await self.db.commit()
            await self.db.refresh(entry)
        else:
            await self.db.flush()
            await self.db.refresh(entry)
        return entry

    async def _write(
        self,
        product_id: int,
        transaction_type: TransactionType,
        rule: DeltaRule,
        reason: TransactionReason,
        performed_by: int,
        **fields,
    ) -> InventoryTransaction:
        try:
            async with self.locks.hold(product_id):
                entry = await run_with_retry(
                    lambda: self._append(product_id, transaction_type, rule, reason, performed_by, **fields),
                    self.db,
                    attempts=self.retry_attempts,
                    backoff_base=self.retry_backoff,
                )
        except Exception:
            await self.db.rollback()
            raise
        await self.after_commit(entry)
        return entry

    async def record_transaction(
        self,
        product_id: int,
        transaction_type: TransactionType,
        quantity: int,
        reason: TransactionReason,
        performed_by: int,
        commit: bool = True,
        **fields,
    ) -> InventoryTransaction:
        """
        Append one stock movement and return the persisted entry.

        ``quantity`` is a positive magnitude for in/out/transfer/count and a
        signed delta for adjustment. With ``commit=False`` the entry is only
        flushed; the caller must hold the product lock and commit.
        """
        transaction_type = TransactionType(transaction_type)
        reason = TransactionReason(reason)
        delta = self.signed_delta(transaction_type, quantity)
        magnitude = abs(quantity)

        def rule(previous: int) -> Tuple[int, int]:
            self._check_level(product_id, previous, previous + delta, magnitude)
            return magnitude, delta

        if not commit:
            return await self._append(
                product_id, transaction_type, rule, reason, performed_by, commit=False, **fields
            )
        return await self._write(product_id, transaction_type, rule, reason, performed_by, **fields)

    async def record_transfer(
        self,
        product_id: int,
        quantity: int,
        location_from: str,
        location_to: str,
        performed_by: int,
        **fields,
    ) -> InventoryTransaction:
        """Move stock between locations; the product's total is unchanged"""
        if not location_from or not location_to:
            raise ValidationError("Both source and destination locations are required")
        if location_from == location_to:
            raise ValidationError("Source and destination locations must differ")
        self.signed_delta(TransactionType.TRANSFER, quantity)

        def rule(previous: int) -> Tuple[int, int]:
            # Cannot move more than is on hand
            self._check_level(product_id, previous, previous - quantity, quantity)
            return quantity, 0

        return await self._write(
            product_id,
            TransactionType.TRANSFER,
            rule,
            TransactionReason.TRANSFER,
            performed_by,
            location_from=location_from,
            location_to=location_to,
            **fields,
        )

    async def set_stock_level(
        self,
        product_id: int,
        new_quantity: int,
        performed_by: int,
        reason: TransactionReason = TransactionReason.ADJUSTMENT,
        **fields,
    ) -> InventoryTransaction:
        """Adjust to an absolute level; the delta is computed under the product lock"""
        if new_quantity < 0 and not self.allow_negative_stock:
            raise ValidationError("Stock level cannot be negative")

        def rule(previous: int) -> Tuple[int, int]:
            delta = new_quantity - previous
            if delta == 0:
                raise ValidationError(f"Stock is already at {new_quantity}")
            return abs(delta), delta

        if not fields.get("reference"):
            fields["reference"] = "Stock Adjustment"
        if not fields.get("reference_number"):
            fields["reference_number"] = f"ADJ-{int(time.time() * 1000)}"
        return await self._write(
            product_id, TransactionType.ADJUSTMENT, rule, TransactionReason(reason), performed_by, **fields
        )

    # --- Status workflow --------------------------------------------------

    async def approve_transaction(self, transaction_id: int, approved_by: int) -> InventoryTransaction:
        transaction = await self.get_transaction(transaction_id)
        if transaction.status != TransactionStatus.PENDING:
            raise ValidationError(f"Only pending transactions can be approved (status: {transaction.status.value})")
        transaction.status = TransactionStatus.APPROVED
        transaction.approved_by = approved_by
        transaction.updated_by = approved_by
        await self.db.commit()
        log_user_action(approved_by, "approve_transaction", "inventory_transaction", transaction_id)
        return await self.get_transaction(transaction_id)

    async def complete_transaction(self, transaction_id: int, completed_by: int) -> InventoryTransaction:
        transaction = await self.get_transaction(transaction_id)
        if transaction.status != TransactionStatus.APPROVED:
            raise ValidationError(f"Only approved transactions can be completed (status: {transaction.status.value})")
        transaction.status = TransactionStatus.COMPLETED
        transaction.updated_by = completed_by
        await self.db.commit()
        log_user_action(completed_by, "complete_transaction", "inventory_transaction", transaction_id)
        return await self.get_transaction(transaction_id)

    async def reject_transaction(
        self,
        transaction_id: int,
        rejected_by: int,
        notes: Optional[str] = None,
    ) -> InventoryTransaction:
        """Reject a pending entry and post the adjustment that reverses its effect"""
        transaction = await self.get_transaction(transaction_id)
        if transaction.status != TransactionStatus.PENDING:
            raise ValidationError(f"Only pending transactions can be rejected (status: {transaction.status.value})")

        product_id = transaction.product_id
        reversal = -transaction.quantity_delta

        async def reject_once() -> Optional[InventoryTransaction]:
            current = await self.get_transaction(transaction_id)
            if current.status != TransactionStatus.PENDING:
                raise ValidationError("Transaction was processed concurrently")
            compensation = None
            if reversal:
                def rule(previous: int) -> Tuple[int, int]:
                    self._check_level(product_id, previous, previous + reversal, abs(reversal))
                    return abs(reversal), reversal

                compensation = await self._append(
                    product_id,
                    TransactionType.ADJUSTMENT,
                    rule,
                    TransactionReason.ADJUSTMENT,
                    rejected_by,
                    commit=False,
                    reference=f"Reversal of transaction #{transaction_id}",
                    notes=notes,
                    compensates_id=transaction_id,
                )
            current.status = TransactionStatus.REJECTED
            current.approved_by = rejected_by
            current.updated_by = rejected_by
            await self.db.commit()
            return compensation

        try:
            async with self.locks.hold(product_id):
                compensation = await run_with_retry(
                    reject_once, self.db, attempts=self.retry_attempts, backoff_base=self.retry_backoff
                )
        except Exception:
            await self.db.rollback()
            raise

        log_user_action(rejected_by, "reject_transaction", "inventory_transaction", transaction_id)
        if compensation is not None:
            await self.after_commit(compensation)
        return await self.get_transaction(transaction_id)

    # --- Stats ------------------------------------------------------------

    async def get_inventory_stats(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        conditions = self._filters(start=start, end=end)
        by_type_query = select(
            InventoryTransaction.type,
            func.count(InventoryTransaction.id).label('count'),
            func.sum(InventoryTransaction.quantity).label('total_quantity'),
            func.sum(func.coalesce(InventoryTransaction.total_cost, 0)).label('total_value'),
        ).group_by(InventoryTransaction.type)
        if conditions:
            by_type_query = by_type_query.where(and_(*conditions))
        result = await self.db.execute(by_type_query)

        by_type = {}
        total_transactions = 0
        for row in result:
            by_type[row.type.value] = {
                "count": int(row.count),
                "quantity": int(row.total_quantity or 0),
                "total_value": Decimal(str(row.total_value or 0)),
            }
            total_transactions += int(row.count)

        active = Product.is_active == True
        total_products = await self.db.scalar(select(func.count(Product.id)).where(active))
        low_stock = await self.db.scalar(
            select(func.count(Product.id)).where(and_(active, Product.current_stock <= Product.min_stock))
        )
        out_of_stock = await self.db.scalar(
            select(func.count(Product.id)).where(and_(active, Product.current_stock <= 0))
        )
        return {
            "total_transactions": total_transactions,
            "by_type": by_type,
            "total_products": total_products or 0,
            "low_stock_products": low_stock or 0,
            "out_of_stock_products": out_of_stock or 0,
        }

    # --- Side effects -----------------------------------------------------

    async def after_commit(self, entry: InventoryTransaction) -> None:
        """Audit line plus realtime events for a committed entry"""
        log_user_action(entry.performed_by, f"stock_{entry.type.value}", "product", entry.product_id)
        if self.publisher is None:
            return

        payload = {
            "event": f"stock_{entry.type.value}",
            "transaction_id": entry.id,
            "product_id": entry.product_id,
            "type": entry.type.value,
            "quantity": entry.quantity,
            "quantity_delta": entry.quantity_delta,
            "previous_stock": entry.previous_stock,
            "new_stock": entry.new_stock,
            "status": entry.status.value,
        }
        try:
            await self.publisher.publish(INVENTORY_CHANNEL, payload)
            if entry.quantity_delta < 0:
                product = await self.get_product(entry.product_id)
                if entry.new_stock <= (product.min_stock or 0):
                    await self.publisher.publish(STOCK_ALERTS_CHANNEL, {
                        "product_id": product.id,
                        "sku": product.sku,
                        "name": product.name,
                        "current_stock": entry.new_stock,
                        "min_stock": product.min_stock,
                        "level": "out_of_stock" if entry.new_stock <= 0 else "low_stock",
                    })
        except Exception:
            # The entry is already committed; a failed push must not undo it
            logger.exception(f"Failed to publish inventory event for transaction {entry.id}")
