"""
Sales Reports

Aggregates orders over a day, month or year (UTC):
- revenue, order count and average ticket
- unique customers and orders by status
- best-selling products
- current table occupancy

Also flattens the orders of a period into rows for the Excel export.

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy import distinct, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from lanchonete.core.exceptions import BusinessRuleError
from lanchonete.models import (
    DiningTable,
    Order,
    OrderItem,
    OrderStatus,
    Product,
    TableStatus,
)

logger = logging.getLogger(__name__)

PERIODS = ("day", "month", "year")
TOP_PRODUCTS_LIMIT = 5


def period_bounds(period: str, reference: Optional[datetime] = None) -> tuple[datetime, datetime]:
    """
    Half-open [start, end) interval of the period containing ``reference``.

    Args:
        period: "day", "month" or "year"
        reference: Any instant inside the period (defaults to now, UTC)
    """
    if period not in PERIODS:
        raise BusinessRuleError(f"Período inválido: {period}")

    ref = reference or datetime.now(timezone.utc)
    if ref.tzinfo is None:
        ref = ref.replace(tzinfo=timezone.utc)

    if period == "day":
        start = ref.replace(hour=0, minute=0, second=0, microsecond=0)
        end = start + timedelta(days=1)
    elif period == "month":
        start = ref.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        if start.month == 12:
            end = start.replace(year=start.year + 1, month=1)
        else:
            end = start.replace(month=start.month + 1)
    else:
        start = ref.replace(month=1, day=1, hour=0, minute=0, second=0, microsecond=0)
        end = start.replace(year=start.year + 1)
    return start, end


async def summarize(db: AsyncSession, period: str, reference: Optional[datetime] = None) -> dict[str, Any]:
    """Aggregate figures for the period. Cancelled orders do not count as sales."""
    start, end = period_bounds(period, reference)
    in_period = (Order.created_at >= start, Order.created_at < end)
    sold = (*in_period, Order.status != OrderStatus.CANCELADO)

    row = (await db.execute(
        select(
            func.count(Order.id),
            func.coalesce(func.sum(Order.total), 0.0),
            func.count(distinct(Order.user_id)),
        ).where(*sold)
    )).one()
    total_orders, revenue, unique_customers = row[0] or 0, float(row[1] or 0), row[2] or 0

    by_status = await db.execute(
        select(Order.status, func.count(Order.id)).where(*in_period).group_by(Order.status)
    )

    top = await db.execute(
        select(
            Product.id,
            Product.name,
            func.sum(OrderItem.quantity).label("quantity"),
            func.sum(OrderItem.quantity * OrderItem.price).label("revenue"),
        )
        .join(OrderItem, OrderItem.product_id == Product.id)
        .join(Order, Order.id == OrderItem.order_id)
        .where(*sold)
        .group_by(Product.id, Product.name)
        .order_by(func.sum(OrderItem.quantity).desc(), Product.name)
        .limit(TOP_PRODUCTS_LIMIT)
    )

    total_tables = (await db.execute(select(func.count(DiningTable.id)))).scalar() or 0
    occupied = (await db.execute(
        select(func.count(DiningTable.id)).where(DiningTable.status == TableStatus.OCUPADA)
    )).scalar() or 0

    return {
        "period": period,
        "start": start,
        "end": end,
        "total_revenue": round(revenue, 2),
        "total_orders": total_orders,
        "average_ticket": round(revenue / total_orders, 2) if total_orders else 0.0,
        "unique_customers": unique_customers,
        "orders_by_status": {s.value: c for s, c in by_status.all()},
        "top_products": [
            {
                "product_id": pid,
                "name": name,
                "quantity": int(quantity or 0),
                "revenue": round(float(product_revenue or 0), 2),
            }
            for pid, name, quantity, product_revenue in top.all()
        ],
        "table_occupancy": {
            "total_tables": total_tables,
            "occupied": occupied,
            "rate": round(occupied / total_tables, 2) if total_tables else 0.0,
        },
    }


async def order_rows(db: AsyncSession, period: str, reference: Optional[datetime] = None) -> list[dict[str, Any]]:
    """Orders of the period flattened for the spreadsheet, oldest first."""
    start, end = period_bounds(period, reference)
    result = await db.execute(
        select(Order)
        .options(
            selectinload(Order.items).selectinload(OrderItem.product),
            selectinload(Order.user),
            selectinload(Order.table),
        )
        .where(Order.created_at >= start, Order.created_at < end)
        .order_by(Order.created_at, Order.id)
    )

    rows = []
    for order in result.scalars().all():
        items = ", ".join(
            f"{item.quantity}x {item.product.name if item.product else item.product_id}"
            for item in order.items
        )
        rows.append({
            "order_id": order.id,
            "date_time": order.created_at.isoformat() if order.created_at else None,
            "customer_name": order.user.name if order.user else None,
            "customer_email": order.user.email if order.user else None,
            "table_number": order.table.number if order.table else None,
            "delivery_type": order.delivery_type.value,
            "delivery_address": order.delivery_address,
            "items": items,
            "notes": order.notes,
            "total_amount": order.total,
            "payment_method": order.payment_method,
            "payment_amount": order.payment_amount,
            "is_paid": order.is_paid,
            "order_status": order.status.value,
        })

    logger.info(f"📊 {len(rows)} orders collected for {period} report starting {start.date()}")
    return rows
