from typing import Any, Dict, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import and_, func, or_, select

from erp.models.inventory.product import Product
from erp.models.shared.enums import TransactionReason, TransactionType
from erp.schemas.inventory.product import ProductCreate
from erp.services.inventory.ledger_service import InventoryLedgerService
from erp.core.exceptions import NotFoundError, ValidationError
from erp.core.logging import log_user_action

class ProductService:
    def __init__(self, db: AsyncSession, ledger: InventoryLedgerService):
        self.db = db
        self.ledger = ledger

    async def create_product(self, product_data: ProductCreate, current_user_id: int) -> Product:
        """Create a product; opening stock is posted to the ledger as an 'in' movement"""
        existing = await self.db.execute(select(Product).where(Product.sku == product_data.sku))
        if existing.scalar_one_or_none():
            raise ValidationError(f"SKU '{product_data.sku}' already exists")

        product = Product(
            **product_data.model_dump(exclude={'opening_stock'}),
            current_stock=0,
            stock_version=0,
            created_by=current_user_id,
            updated_by=current_user_id,
        )
        self.db.add(product)
        await self.db.commit()
        log_user_action(current_user_id, "create", "product", product.id)

        if product_data.opening_stock > 0:
            await self.ledger.record_transaction(
                product.id,
                TransactionType.IN,
                product_data.opening_stock,
                TransactionReason.OTHER,
                current_user_id,
                reference="Opening stock",
            )

        return await self.get_product(product.id)

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

    async def get_products(
        self,
        page_index: int = 1,
        page_size: int = 100,
        search: Optional[str] = None,
        category: Optional[str] = None,
        low_stock: bool = False,
    ) -> Dict[str, Any]:
        """Get products with pagination"""
        query = select(Product).where(Product.is_active == True)
        if search:
            query = query.where(
                or_(
                    Product.name.ilike(f"%{search}%"),
                    Product.sku.ilike(f"%{search}%"),
                )
            )
        if category:
            query = query.where(Product.category == category)
        if low_stock:
            query = query.where(and_(Product.current_stock <= Product.min_stock))

        count_query = select(func.count()).select_from(query.subquery())
        total = (await self.db.execute(count_query)).scalar() or 0

        skip = (page_index - 1) * page_size
        result = await self.db.execute(
            query.order_by(Product.id).offset(skip).limit(page_size).execution_options(populate_existing=True)
        )
        return {
            "page_index": page_index,
            "page_size": page_size,
            "count": total,
            "data": result.scalars().all(),
        }
