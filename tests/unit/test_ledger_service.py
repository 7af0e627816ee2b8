"""Tests for the append-only inventory ledger."""

import asyncio
import logging
from decimal import Decimal

import pytest
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from erp.core.exceptions import (
    ConcurrencyConflictError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from erp.db.base import Base
from erp.models.inventory.product import Product
from erp.models.shared.enums import TransactionReason, TransactionStatus, TransactionType
from erp.schemas.inventory.product import ProductCreate
from erp.services.inventory.ledger_service import (
    INVENTORY_CHANNEL,
    STOCK_ALERTS_CHANNEL,
    InventoryLedgerService,
)
from erp.services.inventory.product_service import ProductService


async def assert_consistent(ledger: InventoryLedgerService, product_id: int) -> int:
    """Every entry chains onto the previous one and the fold matches the cached level"""
    entries = await ledger.list_transactions(product_id=product_id)
    running = 0
    for entry in entries:
        assert entry.previous_stock == running
        assert entry.new_stock == entry.previous_stock + entry.quantity_delta
        running = entry.new_stock

    current = await ledger.get_current_stock(product_id)
    product = await ledger.get_product(product_id)
    assert current == running
    assert await ledger.recompute_stock(product_id) == current
    assert product.current_stock == current
    return current


@pytest.mark.asyncio
class TestRecordTransaction:
    """Appending movements"""

    async def test_stock_in_and_out(self, ledger, make_product):
        product = await make_product(stock=10)

        entry = await ledger.record_transaction(product.id, TransactionType.OUT, 3, TransactionReason.SALE, 1)

        assert entry.quantity == 3
        assert entry.quantity_delta == -3
        assert entry.previous_stock == 10
        assert entry.new_stock == 7
        assert entry.status == TransactionStatus.COMPLETED
        assert await assert_consistent(ledger, product.id) == 7

    async def test_product_without_history_has_zero_stock(self, ledger, make_product):
        product = await make_product()
        assert await ledger.get_current_stock(product.id) == 0
        assert await ledger.recompute_stock(product.id) == 0

    async def test_unit_cost_defaults_to_product_cost(self, ledger, make_product):
        product = await make_product(stock=0, cost="1.25")

        entry = await ledger.record_transaction(product.id, TransactionType.IN, 4, TransactionReason.PURCHASE, 1)

        assert entry.unit_cost == Decimal("1.25")
        assert entry.total_cost == Decimal("5")

    async def test_insufficient_stock_leaves_ledger_untouched(self, ledger, make_product):
        product_id = (await make_product(stock=2)).id

        with pytest.raises(InsufficientStockError) as exc_info:
            await ledger.record_transaction(product_id, TransactionType.OUT, 5, TransactionReason.SALE, 1)

        assert "available 2" in str(exc_info.value)
        assert await ledger.count_transactions(product_id=product_id) == 1
        assert await assert_consistent(ledger, product_id) == 2

    @pytest.mark.parametrize("transaction_type,quantity", [
        (TransactionType.IN, 0),
        (TransactionType.OUT, -1),
        (TransactionType.ADJUSTMENT, 0),
    ])
    async def test_invalid_quantities_rejected(self, ledger, make_product, transaction_type, quantity):
        product = await make_product(stock=5)

        with pytest.raises(ValidationError):
            await ledger.record_transaction(product.id, transaction_type, quantity, TransactionReason.OTHER, 1)

        assert await ledger.count_transactions(product_id=product.id) == 1

    async def test_unknown_product(self, ledger):
        with pytest.raises(NotFoundError):
            await ledger.record_transaction(999, TransactionType.IN, 1, TransactionReason.PURCHASE, 1)

    async def test_adjustment_is_signed_delta(self, ledger, make_product):
        product = await make_product(stock=10)

        down = await ledger.record_transaction(product.id, TransactionType.ADJUSTMENT, -4, TransactionReason.DAMAGE, 1)
        up = await ledger.record_transaction(product.id, TransactionType.ADJUSTMENT, 2, TransactionReason.ADJUSTMENT, 1)

        assert (down.quantity, down.quantity_delta, down.new_stock) == (4, -4, 6)
        assert (up.quantity, up.quantity_delta, up.new_stock) == (2, 2, 8)
        assert await assert_consistent(ledger, product.id) == 8

    async def test_count_entry_does_not_move_stock(self, ledger, make_product):
        product = await make_product(stock=5)

        entry = await ledger.record_transaction(product.id, TransactionType.COUNT, 5, TransactionReason.COUNT, 1)

        assert entry.quantity_delta == 0
        assert entry.new_stock == entry.previous_stock == 5

    async def test_negative_stock_allowed_by_policy(self, db_session, locks, make_product, caplog):
        product = await make_product(stock=1)
        permissive = InventoryLedgerService(db_session, locks=locks, allow_negative_stock=True, retry_backoff=0)

        with caplog.at_level(logging.WARNING, logger="erp.services.inventory.ledger_service"):
            entry = await permissive.record_transaction(product.id, TransactionType.OUT, 3, TransactionReason.SALE, 1)

        assert entry.new_stock == -2
        assert "Negative stock allowed" in caplog.text
        assert await assert_consistent(permissive, product.id) == -2


@pytest.mark.asyncio
class TestTransfersAndLevels:
    async def test_transfer_keeps_total(self, ledger, make_product):
        product = await make_product(stock=10)

        entry = await ledger.record_transfer(product.id, 4, "Main", "Store B", 1)

        assert entry.type == TransactionType.TRANSFER
        assert entry.quantity == 4
        assert entry.quantity_delta == 0
        assert (entry.location_from, entry.location_to) == ("Main", "Store B")
        assert await assert_consistent(ledger, product.id) == 10

    async def test_transfer_cannot_exceed_stock(self, ledger, make_product):
        product = await make_product(stock=3)
        with pytest.raises(InsufficientStockError):
            await ledger.record_transfer(product.id, 4, "Main", "Store B", 1)

    async def test_transfer_requires_distinct_locations(self, ledger, make_product):
        product = await make_product(stock=3)
        with pytest.raises(ValidationError):
            await ledger.record_transfer(product.id, 1, "Main", "Main", 1)
        with pytest.raises(ValidationError):
            await ledger.record_transfer(product.id, 1, "", "Main", 1)

    async def test_set_stock_level(self, ledger, make_product):
        product = await make_product(stock=10)

        entry = await ledger.set_stock_level(product.id, 7, 1, reference=None)

        assert entry.type == TransactionType.ADJUSTMENT
        assert entry.quantity_delta == -3
        assert entry.quantity == 3
        assert entry.reference == "Stock Adjustment"
        assert entry.reference_number.startswith("ADJ-")
        assert await assert_consistent(ledger, product.id) == 7

    async def test_set_stock_level_to_same_value_rejected(self, ledger, make_product):
        product = await make_product(stock=4)
        with pytest.raises(ValidationError):
            await ledger.set_stock_level(product.id, 4, 1)

    async def test_set_stock_level_negative_rejected(self, ledger, make_product):
        product = await make_product(stock=4)
        with pytest.raises(ValidationError):
            await ledger.set_stock_level(product.id, -1, 1)


@pytest.fixture
async def file_session_maker(tmp_path):
    """Database with one connection per session, like a deployed server"""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


async def create_product(session_maker, locks, stock: int) -> int:
    async with session_maker() as session:
        service = ProductService(session, InventoryLedgerService(session, locks=locks))
        product = await service.create_product(
            ProductCreate(sku="RACE-1", name="Contended", cost="1.00", opening_stock=stock), current_user_id=1
        )
        return product.id


@pytest.mark.asyncio
class TestConcurrency:
    """Writers racing on the same product"""

    async def test_concurrent_outs_never_oversell(self, file_session_maker, locks):
        product_id = await create_product(file_session_maker, locks, stock=10)
        session_maker = file_session_maker

        async with session_maker() as first, session_maker() as second:
            writers = [
                InventoryLedgerService(first, locks=locks, retry_backoff=0),
                InventoryLedgerService(second, locks=locks, retry_backoff=0),
            ]
            results = await asyncio.gather(
                *[w.record_transaction(product_id, TransactionType.OUT, 8, TransactionReason.SALE, 1) for w in writers],
                return_exceptions=True,
            )

        succeeded = [r for r in results if not isinstance(r, Exception)]
        failed = [r for r in results if isinstance(r, Exception)]
        assert len(succeeded) == 1
        assert len(failed) == 1
        assert isinstance(failed[0], InsufficientStockError)

        async with session_maker() as session:
            check = InventoryLedgerService(session, locks=locks)
            assert await assert_consistent(check, product_id) == 2

    async def test_many_concurrent_ins_all_applied(self, file_session_maker, locks):
        product_id = await create_product(file_session_maker, locks, stock=0)
        session_maker = file_session_maker

        async def stock_in():
            async with session_maker() as session:
                writer = InventoryLedgerService(session, locks=locks, retry_backoff=0)
                return await writer.record_transaction(product_id, TransactionType.IN, 1, TransactionReason.PURCHASE, 1)

        entries = await asyncio.gather(*[stock_in() for _ in range(10)])

        assert sorted(entry.new_stock for entry in entries) == list(range(1, 11))
        async with session_maker() as session:
            assert await assert_consistent(InventoryLedgerService(session), product_id) == 10

    async def test_version_conflict_is_retried(self, ledger, db_session, make_product, monkeypatch):
        product_id = (await make_product(stock=5)).id
        original = ledger.get_current_stock
        calls = {"n": 0}

        async def racing_read(product_id):
            calls["n"] += 1
            if calls["n"] == 1:
                # Another writer commits between our version read and our write
                await db_session.execute(
                    update(Product)
                    .where(Product.id == product_id)
                    .values(stock_version=Product.stock_version + 1)
                    .execution_options(synchronize_session=False)
                )
            return await original(product_id)

        monkeypatch.setattr(ledger, "get_current_stock", racing_read)

        entry = await ledger.record_transaction(product_id, TransactionType.OUT, 2, TransactionReason.SALE, 1)

        assert calls["n"] == 2
        assert entry.new_stock == 3
        monkeypatch.undo()
        assert await assert_consistent(ledger, product_id) == 3

    async def test_persistent_conflict_surfaces(self, ledger, db_session, make_product, monkeypatch):
        product_id = (await make_product(stock=5)).id
        original = ledger.get_current_stock

        async def always_racing(product_id):
            await db_session.execute(
                update(Product)
                .where(Product.id == product_id)
                .values(stock_version=Product.stock_version + 1)
                .execution_options(synchronize_session=False)
            )
            return await original(product_id)

        monkeypatch.setattr(ledger, "get_current_stock", always_racing)

        with pytest.raises(ConcurrencyConflictError):
            await ledger.record_transaction(product_id, TransactionType.OUT, 2, TransactionReason.SALE, 1)

        monkeypatch.undo()
        assert await ledger.count_transactions(product_id=product_id) == 1
        assert await assert_consistent(ledger, product_id) == 5


@pytest.mark.asyncio
class TestEvents:
    """Realtime publications after commit"""

    async def test_movement_published_on_inventory_channel(self, ledger, publisher, make_product):
        product = await make_product(stock=10)

        entry = await ledger.record_transaction(product.id, TransactionType.OUT, 1, TransactionReason.SALE, 1)

        event = publisher.on(INVENTORY_CHANNEL)[-1]
        assert event["transaction_id"] == entry.id
        assert event["event"] == "stock_out"
        assert event["new_stock"] == 9
        assert publisher.on(STOCK_ALERTS_CHANNEL) == []

    async def test_stock_alert_when_reaching_minimum(self, ledger, publisher, make_product):
        product = await make_product(stock=10, min_stock=5)

        await ledger.record_transaction(product.id, TransactionType.OUT, 5, TransactionReason.SALE, 1)
        await ledger.record_transaction(product.id, TransactionType.OUT, 5, TransactionReason.SALE, 1)

        alerts = publisher.on(STOCK_ALERTS_CHANNEL)
        assert [alert["level"] for alert in alerts] == ["low_stock", "out_of_stock"]
        assert alerts[0]["sku"] == product.sku

    async def test_increase_below_minimum_does_not_alert(self, ledger, publisher, make_product):
        product = await make_product(stock=1, min_stock=5)

        await ledger.record_transaction(product.id, TransactionType.IN, 1, TransactionReason.PURCHASE, 1)

        assert publisher.on(STOCK_ALERTS_CHANNEL) == []

    async def test_publish_failure_does_not_undo_entry(self, db_session, locks, make_product, caplog):
        class BrokenPublisher:
            async def publish(self, channel, payload):
                raise ConnectionError("hub down")

        product = await make_product(stock=3)
        ledger = InventoryLedgerService(db_session, locks=locks, publisher=BrokenPublisher(), retry_backoff=0)

        entry = await ledger.record_transaction(product.id, TransactionType.OUT, 1, TransactionReason.SALE, 1)

        assert entry.new_stock == 2
        assert "Failed to publish" in caplog.text
        assert await assert_consistent(ledger, product.id) == 2


@pytest.mark.asyncio
class TestApprovalWorkflow:
    async def test_pending_approve_complete(self, ledger, make_product):
        product = await make_product(stock=10)
        entry = await ledger.record_transaction(
            product.id, TransactionType.OUT, 4, TransactionReason.SALE, 1, status=TransactionStatus.PENDING
        )
        assert await ledger.get_current_stock(product.id) == 6

        approved = await ledger.approve_transaction(entry.id, 2)
        assert approved.status == TransactionStatus.APPROVED
        assert approved.approved_by == 2

        completed = await ledger.complete_transaction(entry.id, 2)
        assert completed.status == TransactionStatus.COMPLETED

        with pytest.raises(ValidationError):
            await ledger.approve_transaction(entry.id, 2)

    async def test_complete_requires_approval(self, ledger, make_product):
        product = await make_product(stock=10)
        entry = await ledger.record_transaction(
            product.id, TransactionType.IN, 4, TransactionReason.PURCHASE, 1, status=TransactionStatus.PENDING
        )
        with pytest.raises(ValidationError):
            await ledger.complete_transaction(entry.id, 2)

    async def test_reject_posts_compensating_adjustment(self, ledger, make_product):
        product = await make_product(stock=10)
        entry = await ledger.record_transaction(
            product.id, TransactionType.OUT, 4, TransactionReason.SALE, 1, status=TransactionStatus.PENDING
        )

        rejected = await ledger.reject_transaction(entry.id, 2, notes="Wrong order")

        assert rejected.status == TransactionStatus.REJECTED
        history = await ledger.list_transactions(product_id=product.id)
        reversal = history[-1]
        assert reversal.type == TransactionType.ADJUSTMENT
        assert reversal.quantity_delta == 4
        assert reversal.compensates_id == entry.id
        assert reversal.notes == "Wrong order"
        assert await assert_consistent(ledger, product.id) == 10

        with pytest.raises(ValidationError):
            await ledger.reject_transaction(entry.id, 2)

    async def test_reject_unknown_transaction(self, ledger):
        with pytest.raises(NotFoundError):
            await ledger.reject_transaction(404, 1)


@pytest.mark.asyncio
class TestQueries:
    async def test_history_is_chronological_and_filterable(self, ledger, make_product):
        product = await make_product(stock=5)
        other = await make_product(stock=1)
        await ledger.record_transaction(product.id, TransactionType.OUT, 2, TransactionReason.SALE, 1)
        await ledger.record_transaction(product.id, TransactionType.IN, 7, TransactionReason.PURCHASE, 1)

        history = await ledger.list_transactions(product_id=product.id)
        assert [entry.new_stock for entry in history] == [5, 3, 10]
        assert all(entry.product_id == product.id for entry in history)

        outs = await ledger.list_transactions(transaction_type=TransactionType.OUT)
        assert [entry.product_id for entry in outs] == [product.id]

        page = await ledger.get_transactions(page_index=1, page_size=2)
        assert page["count"] == 4
        assert [entry.product_id for entry in page["data"]] == [product.id, product.id]
        assert page["data"][0].new_stock == 10

        assert await ledger.count_transactions(product_id=other.id) == 1

    async def test_inventory_stats(self, ledger, make_product):
        product = await make_product(stock=10, min_stock=3)
        await make_product(stock=0)
        await ledger.record_transaction(product.id, TransactionType.OUT, 8, TransactionReason.SALE, 1)

        stats = await ledger.get_inventory_stats()

        assert stats["total_transactions"] == 2
        assert stats["by_type"]["in"]["quantity"] == 10
        assert stats["by_type"]["out"]["count"] == 1
        assert stats["by_type"]["out"]["total_value"] == Decimal("20")
        assert stats["total_products"] == 2
        assert stats["low_stock_products"] == 2
        assert stats["out_of_stock_products"] == 1
