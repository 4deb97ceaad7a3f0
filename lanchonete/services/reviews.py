"""
Order reviews: a customer rates an order once it has been delivered.

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from lanchonete.core.exceptions import BusinessRuleError, NotFoundError
from lanchonete.core.security import UserRole, has_min_role
from lanchonete.models import Order, OrderReview, OrderStatus, User

logger = logging.getLogger(__name__)


def is_delivered(order: Order) -> bool:
    """Delivered means ENTREGUE, or received after being paid at the table."""
    return order.status == OrderStatus.ENTREGUE or order.received_at is not None


class ReviewService:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _visible_order(self, order_id: int, user: User) -> Order:
        # Customers only see their own orders; others get the same 404
        order = await self.db.get(Order, order_id)
        if not order or (not has_min_role(user.role, UserRole.STAFF) and order.user_id != user.id):
            raise NotFoundError("Pedido não encontrado")
        return order

    async def get_for_order(self, order_id: int, user: User) -> Optional[OrderReview]:
        await self._visible_order(order_id, user)
        result = await self.db.execute(select(OrderReview).where(OrderReview.order_id == order_id))
        return result.scalar_one_or_none()

    async def create(self, order_id: int, user: User, rating: int, comment: Optional[str] = None) -> OrderReview:
        """
        Record the customer's rating of their own delivered order.

        Raises:
            NotFoundError: order missing or placed by someone else
            BusinessRuleError: order not delivered yet, or already reviewed
        """
        order = await self.db.get(Order, order_id)
        if not order or order.user_id != user.id:
            raise NotFoundError("Pedido não encontrado")
        if not is_delivered(order):
            raise BusinessRuleError("Apenas pedidos entregues podem ser avaliados")

        existing = await self.db.execute(select(OrderReview.id).where(OrderReview.order_id == order_id))
        if existing.first():
            raise BusinessRuleError("Este pedido já foi avaliado")

        review = OrderReview(
            order_id=order_id,
            user_id=user.id,
            rating=rating,
            comment=comment.strip() if comment and comment.strip() else None,
        )
        self.db.add(review)
        await self.db.commit()

        logger.info(f"⭐ Order #{order_id} rated {rating}/5 by user #{user.id}")
        return review

    async def summary(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> dict[str, Any]:
        """Review count and average rating, optionally within [start, end)."""
        query = select(func.count(OrderReview.id), func.avg(OrderReview.rating))
        if start is not None:
            query = query.where(OrderReview.created_at >= start)
        if end is not None:
            query = query.where(OrderReview.created_at < end)
        count, average = (await self.db.execute(query)).one()
        return {"reviews": count or 0, "average_rating": round(float(average), 2) if average else None}
