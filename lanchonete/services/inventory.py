"""
Inventory Service

Stock control for products with ``track_stock`` set:
- ENTRADA adds, SAIDA removes (never below zero), AJUSTE sets the count
- every change is stored as a StockMovement in the same transaction
- alert levels: out of stock (<= 0), low (<= min level), over (> max level)
- crossing into low / out of stock raises an in-app notification

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from lanchonete.core.exceptions import BusinessRuleError, NotFoundError
from lanchonete.models import (
    Category,
    MovementType,
    Order,
    OrderItem,
    Product,
    StockMovement,
    User,
    utcnow,
)
from lanchonete.schemas import StockAdjustment
from lanchonete.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

OUT_OF_STOCK = "out_of_stock"
LOW_STOCK = "low_stock"
OVER_STOCK = "over_stock"

SALES_WINDOW_DAYS = 30

PRODUCT_SORT = {
    "name": Product.name,
    "stock_quantity": Product.stock_quantity,
    "price": Product.price,
    "category": Category.name,
}
MOVEMENT_SORT = {
    "created_at": StockMovement.created_at,
    "quantity": StockMovement.quantity,
    "type": StockMovement.type,
}


def stock_alert(product: Product) -> Optional[dict[str, str]]:
    """Alert for a tracked product, or None when its stock is in range."""
    if not product.track_stock:
        return None

    quantity = product.stock_quantity
    if quantity <= 0:
        return {"type": OUT_OF_STOCK, "message": "Produto esgotado"}
    if quantity <= product.min_stock_level:
        return {"type": LOW_STOCK, "message": f"Estoque baixo ({quantity}/{product.min_stock_level})"}
    if quantity > product.max_stock_level:
        return {"type": OVER_STOCK, "message": f"Estoque alto ({quantity}/{product.max_stock_level})"}
    return None


def next_stock(current: int, movement: MovementType, quantity: int) -> int:
    if movement == MovementType.ENTRADA:
        return current + quantity
    if movement == MovementType.SAIDA:
        return max(0, current - quantity)
    return quantity


class InventoryService:
    """Stock listing, movements and alerts bound to one database session."""

    def __init__(self, db: AsyncSession, notifications: Optional[NotificationService] = None):
        self.db = db
        self.notifications = notifications

    # =========================================================================
    # LISTING
    # =========================================================================

    async def _sales_since(self, product_ids: list[int], since: datetime) -> dict[int, int]:
        if not product_ids:
            return {}
        rows = await self.db.execute(
            select(OrderItem.product_id, func.count(OrderItem.id))
            .join(Order, Order.id == OrderItem.order_id)
            .where(OrderItem.product_id.in_(product_ids), Order.created_at >= since)
            .group_by(OrderItem.product_id)
        )
        return {product_id: count for product_id, count in rows.all()}

    async def list_products(
        self,
        page: int = 1,
        limit: int = 50,
        category_id: Optional[int] = None,
        track_stock: Optional[bool] = None,
        low_stock: bool = False,
        sort_by: str = "name",
        sort_order: str = "asc",
    ) -> tuple[list[dict[str, Any]], int]:
        """
        Products with their stock alert and order lines of the last 30 days.

        Args:
            low_stock: Only tracked products at or below their minimum level

        Returns:
            (rows, total) where each row holds the product, its category
            name, ``stock_alert`` and ``sales_last_30_days``
        """
        conditions = []
        if category_id is not None:
            conditions.append(Product.category_id == category_id)
        if track_stock is not None:
            conditions.append(Product.track_stock.is_(track_stock))
        if low_stock:
            conditions.extend([
                Product.track_stock.is_(True),
                Product.stock_quantity <= Product.min_stock_level,
            ])

        column = PRODUCT_SORT.get(sort_by, Product.name)
        ordering = column.desc() if sort_order == "desc" else column.asc()

        total = (await self.db.execute(select(func.count(Product.id)).where(*conditions))).scalar() or 0
        result = await self.db.execute(
            select(Product, Category.name)
            .join(Category, Category.id == Product.category_id)
            .where(*conditions)
            .order_by(ordering, Product.id)
            .offset((page - 1) * limit)
            .limit(limit)
        )
        products = result.all()

        sales = await self._sales_since(
            [p.id for p, _ in products],
            utcnow() - timedelta(days=SALES_WINDOW_DAYS),
        )
        rows = [
            {
                "product": product,
                "category_name": category_name,
                "stock_alert": stock_alert(product),
                "sales_last_30_days": sales.get(product.id, 0),
            }
            for product, category_name in products
        ]
        return rows, total

    # =========================================================================
    # MOVEMENTS
    # =========================================================================

    async def adjust(self, user: User, payload: StockAdjustment) -> tuple[Product, StockMovement]:
        """
        Apply a stock movement and record it.

        Raises:
            NotFoundError: product missing
            BusinessRuleError: ENTRADA / SAIDA of zero units
        """
        product = await self.db.get(Product, payload.product_id)
        if not product:
            raise NotFoundError("Produto não encontrado")
        if payload.type != MovementType.AJUSTE and payload.quantity <= 0:
            raise BusinessRuleError("Quantidade deve ser maior que zero")

        previous_alert = stock_alert(product)
        current = product.stock_quantity
        new = next_stock(current, payload.type, payload.quantity)

        movement = StockMovement(
            product_id=product.id,
            type=payload.type,
            quantity=abs(new - current) if payload.type != MovementType.AJUSTE else new - current,
            previous_stock=current,
            new_stock=new,
            reason=payload.reason,
            reference=payload.reference,
            notes=payload.notes,
            user_id=user.id,
        )

        try:
            product.stock_quantity = new
            self.db.add(movement)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            f"📦 Stock of '{product.name}': {current} -> {new} "
            f"({payload.type.value}, {payload.reason}) by user #{user.id}"
        )
        await self._notify_if_crossed(product, previous_alert)
        return product, movement

    async def _notify_if_crossed(self, product: Product, previous: Optional[dict[str, str]]) -> None:
        current = stock_alert(product)
        if self.notifications is None or current is None or current["type"] == OVER_STOCK:
            return
        if previous is not None and previous["type"] == current["type"]:
            return
        try:
            await self.notifications.notify_stock_alert(
                product.id, product.name, product.stock_quantity, product.min_stock_level
            )
        except Exception as e:
            # The movement is already committed
            logger.error(f"❌ Stock alert for product #{product.id} failed: {e}")

    async def list_movements(
        self,
        page: int = 1,
        limit: int = 50,
        product_id: Optional[int] = None,
        movement_type: Optional[MovementType] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> tuple[list[StockMovement], int]:
        conditions = []
        if product_id is not None:
            conditions.append(StockMovement.product_id == product_id)
        if movement_type is not None:
            conditions.append(StockMovement.type == movement_type)
        if start_date is not None:
            conditions.append(StockMovement.created_at >= start_date)
        if end_date is not None:
            conditions.append(StockMovement.created_at <= end_date)

        column = MOVEMENT_SORT.get(sort_by, StockMovement.created_at)
        ordering = column.asc() if sort_order == "asc" else column.desc()

        total = (await self.db.execute(
            select(func.count(StockMovement.id)).where(*conditions)
        )).scalar() or 0
        result = await self.db.execute(
            select(StockMovement)
            .where(*conditions)
            .order_by(ordering, StockMovement.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    # =========================================================================
    # ALERTS
    # =========================================================================

    async def alerts(self) -> dict[str, Any]:
        """Tracked products grouped by alert level, lowest stock first."""
        result = await self.db.execute(
            select(Product)
            .where(Product.track_stock.is_(True))
            .order_by(Product.stock_quantity.asc(), Product.name.asc())
        )
        products = result.scalars().all()

        groups: dict[str, list[Product]] = {OUT_OF_STOCK: [], LOW_STOCK: [], OVER_STOCK: []}
        for product in products:
            alert = stock_alert(product)
            if alert is not None:
                groups[alert["type"]].append(product)

        return {
            "groups": groups,
            "stats": {
                "total_products": len(products),
                "out_of_stock_count": len(groups[OUT_OF_STOCK]),
                "low_stock_count": len(groups[LOW_STOCK]),
                "over_stock_count": len(groups[OVER_STOCK]),
                "total_alerts": sum(len(g) for g in groups.values()),
            },
            "last_updated": utcnow(),
        }
