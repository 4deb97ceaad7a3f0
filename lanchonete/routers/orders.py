"""
Order endpoints.

Listing is scoped by role:
    - CUSTOMER: own orders (any date)
    - STAFF / ADMIN: today's orders
    - MANAGER: today's orders placed by STAFF or MANAGER users

Listings and the pending summary are cached per user and query; every
write clears the ``orders:`` cache group.
"""

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from lanchonete.core.cache import CacheDuration, ResponseCache, get_cache
from lanchonete.core.exceptions import BusinessRuleError, PermissionDeniedError
from lanchonete.core.security import UserRole, normalize_role
from lanchonete.database import get_db
from lanchonete.deps import get_lifecycle, get_notification_service, require_permission
from lanchonete.models import DiningTable, Order, OrderItem, OrderStatus, User
from lanchonete.schemas import (
    AddItemsRequest,
    AddProductsRequest,
    Envelope,
    OrderCreate,
    OrderOut,
    OrderSummary,
    OrderUpdate,
    Page,
    PaymentRequest,
    ReviewCreate,
    ReviewOut,
    paginate,
)
from lanchonete.services.lifecycle import OrderLifecycle
from lanchonete.services.notification_service import NotificationService
from lanchonete.services.reviews import ReviewService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/orders", tags=["Orders"])

ORDERS_CACHE_GROUP = "orders:"
SORT_FIELDS = {
    "created_at": Order.created_at,
    "total": Order.total,
    "status": Order.status,
}
# Small result sets are cheap to keep around longer
LIGHTWEIGHT_LIMIT = 5


def _day_bounds(day: date) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


def _ensure_owner(order: Order, user: User) -> None:
    if normalize_role(user.role) == UserRole.CUSTOMER and order.user_id != user.id:
        raise PermissionDeniedError("Acesso negado: você só pode acessar seus próprios pedidos")


async def _table_number(db: AsyncSession, table_id: Optional[int]) -> Optional[int]:
    if table_id is None:
        return None
    table = await db.get(DiningTable, table_id)
    return table.number if table else None


def _parse_statuses(raw: Optional[str]) -> list[OrderStatus]:
    if not raw:
        return []
    statuses = []
    for part in raw.split(","):
        value = part.strip().upper()
        if not value:
            continue
        try:
            statuses.append(OrderStatus(value))
        except ValueError:
            raise BusinessRuleError(f"Status inválido: {value}")
    return statuses


# =============================================================================
# CREATE & LIST
# =============================================================================

@router.post("", response_model=Envelope[OrderOut], status_code=status.HTTP_201_CREATED)
async def create_order(
    payload: OrderCreate,
    db: AsyncSession = Depends(get_db),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
    notifications: NotificationService = Depends(get_notification_service),
    cache: ResponseCache = Depends(get_cache),
    user: User = Depends(require_permission("orders:create")),
):
    order = await lifecycle.create_order(user, payload)
    cache.clear_pattern(ORDERS_CACHE_GROUP)

    table_number = await _table_number(db, order.table_id)
    await notifications.notify_new_order(order.id, user.name, table_number)
    if table_number is not None:
        await notifications.notify_table_occupied(table_number, user.name)

    return Envelope(data=OrderOut.model_validate(order), message="Pedido criado com sucesso")


@router.get("", response_model=Envelope[Page[OrderOut]])
async def list_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    table_id: Optional[int] = Query(None),
    status_filter: Optional[str] = Query(None, alias="status", description="Comma-separated statuses"),
    is_paid: Optional[bool] = Query(None),
    day: Optional[date] = Query(None, alias="date"),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    sort_by: str = Query("created_at"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    db: AsyncSession = Depends(get_db),
    cache: ResponseCache = Depends(get_cache),
    user: User = Depends(require_permission("orders:read")),
):
    role = normalize_role(user.role)
    key = (
        f"orders:list:{user.id}:{role.value}:{page}:{limit}:{table_id}:{status_filter}:"
        f"{is_paid}:{day}:{date_from}:{date_to}:{sort_by}:{sort_order}"
    )
    max_age = CacheDuration.MEDIUM if limit <= LIGHTWEIGHT_LIMIT else CacheDuration.SHORT
    cached = cache.get(key, max_age)
    if cached is not None:
        return Envelope(data=cached)

    conditions = []

    # Role scoping
    if role == UserRole.CUSTOMER:
        conditions.append(Order.user_id == user.id)
    else:
        start, end = _day_bounds(datetime.now(timezone.utc).date())
        if day is None and date_from is None and date_to is None:
            conditions.extend([Order.created_at >= start, Order.created_at < end])
        if role == UserRole.MANAGER:
            staff_ids = select(User.id).where(User.role.in_([UserRole.STAFF, UserRole.MANAGER]))
            conditions.append(Order.user_id.in_(staff_ids))

    # Filters
    if table_id is not None:
        conditions.append(Order.table_id == table_id)
    statuses = _parse_statuses(status_filter)
    if statuses:
        conditions.append(Order.status.in_(statuses))
    if is_paid is not None:
        conditions.append(Order.is_paid.is_(is_paid))
    if day is not None:
        start, end = _day_bounds(day)
        conditions.extend([Order.created_at >= start, Order.created_at < end])
    if date_from is not None:
        conditions.append(Order.created_at >= _day_bounds(date_from)[0])
    if date_to is not None:
        conditions.append(Order.created_at < _day_bounds(date_to)[1])

    sort_column = SORT_FIELDS.get(sort_by, Order.created_at)
    ordering = sort_column.asc() if sort_order == "asc" else sort_column.desc()

    total = (await db.execute(select(func.count(Order.id)).where(*conditions))).scalar() or 0
    result = await db.execute(
        select(Order)
        .options(selectinload(Order.items).selectinload(OrderItem.product))
        .where(*conditions)
        .order_by(ordering, Order.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    items = [OrderOut.model_validate(o).model_dump(mode="json") for o in result.scalars().all()]

    data = paginate(items, total, page, limit)
    cache.set(key, data)
    return Envelope(data=data)


@router.get("/summary", response_model=Envelope[OrderSummary])
async def orders_summary(
    db: AsyncSession = Depends(get_db),
    cache: ResponseCache = Depends(get_cache),
    user: User = Depends(require_permission("orders:read")),
):
    """Count and date range of the orders still waiting (PENDENTE / CONFIRMADO)."""
    key = f"orders:summary:{user.id}"
    cached = cache.get(key, CacheDuration.MEDIUM)
    if cached is not None:
        return Envelope(data=cached)

    conditions = [Order.status.in_([OrderStatus.PENDENTE, OrderStatus.CONFIRMADO])]
    if normalize_role(user.role) == UserRole.CUSTOMER:
        conditions.append(Order.user_id == user.id)

    row = (await db.execute(
        select(func.count(Order.id), func.min(Order.created_at), func.max(Order.created_at))
        .where(*conditions)
    )).one()

    data = OrderSummary(
        pending_count=row[0] or 0,
        first_order_at=row[1],
        last_order_at=row[2],
    ).model_dump(mode="json")
    cache.set(key, data)
    return Envelope(data=data)


# =============================================================================
# SINGLE ORDER
# =============================================================================

@router.get("/{order_id}", response_model=Envelope[OrderOut])
async def get_order(
    order_id: int,
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
    user: User = Depends(require_permission("orders:read")),
):
    order = await lifecycle.get_order(order_id)
    _ensure_owner(order, user)
    return Envelope(data=OrderOut.model_validate(order))


@router.put("/{order_id}", response_model=Envelope[OrderOut])
async def update_order(
    order_id: int,
    payload: OrderUpdate,
    db: AsyncSession = Depends(get_db),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
    notifications: NotificationService = Depends(get_notification_service),
    cache: ResponseCache = Depends(get_cache),
    user: User = Depends(require_permission("orders:update", "orders:write")),
):
    order = await lifecycle.get_order(order_id)
    _ensure_owner(order, user)

    order, became_ready = await lifecycle.update_order(
        order,
        status=payload.status.strip().upper() if payload.status else None,
        payment_method=payload.payment_method.strip().upper() if payload.payment_method else None,
    )
    cache.clear_pattern(ORDERS_CACHE_GROUP)

    if became_ready:
        await notifications.notify_order_ready(order.id, await _table_number(db, order.table_id))

    return Envelope(data=OrderOut.model_validate(order), message="Pedido atualizado com sucesso")


@router.put("/{order_id}/receive", response_model=Envelope[OrderOut])
async def receive_order(
    order_id: int,
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
    cache: ResponseCache = Depends(get_cache),
    user: User = Depends(require_permission("orders:update", "orders:write")),
):
    _ensure_owner(await lifecycle.get_order(order_id), user)
    order = await lifecycle.receive_order(order_id)
    cache.clear_pattern(ORDERS_CACHE_GROUP)
    return Envelope(data=OrderOut.model_validate(order), message="Pedido marcado como recebido")


@router.post("/{order_id}/cancel", response_model=Envelope[OrderOut])
async def cancel_order(
    order_id: int,
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
    cache: ResponseCache = Depends(get_cache),
    user: User = Depends(require_permission("orders:update", "orders:write")),
):
    _ensure_owner(await lifecycle.get_order(order_id), user)
    order = await lifecycle.cancel_order(order_id)
    cache.clear_pattern(ORDERS_CACHE_GROUP)
    return Envelope(data=OrderOut.model_validate(order), message="Pedido cancelado com sucesso")


@router.post("/{order_id}/payment", response_model=Envelope[OrderOut])
async def process_payment(
    order_id: int,
    payload: PaymentRequest,
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
    notifications: NotificationService = Depends(get_notification_service),
    cache: ResponseCache = Depends(get_cache),
    user: User = Depends(require_permission("orders:write")),
):
    method = payload.resolved_method().strip().upper()
    order = await lifecycle.process_payment(
        order_id,
        method=method,
        staff_user_id=user.id,
        amount=payload.resolved_amount(),
    )
    cache.clear_pattern(ORDERS_CACHE_GROUP)

    try:
        await notifications.notify_payment_received(order.id, order.payment_amount, method)
    except Exception as e:
        # The payment is already committed
        logger.error(f"❌ Payment notification for order #{order.id} failed: {e}")

    return Envelope(data=OrderOut.model_validate(order), message="Pagamento processado com sucesso")


@router.post("/{order_id}/add-products", response_model=Envelope[OrderOut])
async def add_products(
    order_id: int,
    payload: AddProductsRequest,
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
    cache: ResponseCache = Depends(get_cache),
    _: User = Depends(require_permission("orders:write")),
):
    order = await lifecycle.add_products(order_id, payload.products)
    cache.clear_pattern(ORDERS_CACHE_GROUP)
    return Envelope(data=OrderOut.model_validate(order), message="Produtos adicionados com sucesso")


@router.put("/{order_id}/items", response_model=Envelope[OrderOut])
async def add_order_items(
    order_id: int,
    payload: AddItemsRequest,
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
    cache: ResponseCache = Depends(get_cache),
    user: User = Depends(require_permission("orders:update", "orders:write")),
):
    """Append items (with add-ons) to an existing order."""
    order = await lifecycle.add_items(order_id, payload.items, user)
    cache.clear_pattern(ORDERS_CACHE_GROUP)
    return Envelope(data=OrderOut.model_validate(order), message="Itens adicionados ao pedido")


# =============================================================================
# REVIEWS
# =============================================================================

@router.post("/{order_id}/review", response_model=Envelope[ReviewOut], status_code=status.HTTP_201_CREATED)
async def create_review(
    order_id: int,
    payload: ReviewCreate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_permission("orders:read")),
):
    review = await ReviewService(db).create(order_id, user, payload.rating, payload.comment)
    return Envelope(data=ReviewOut.model_validate(review), message="Avaliação registrada com sucesso")


@router.get("/{order_id}/review", response_model=Envelope[Optional[ReviewOut]])
async def get_review(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_permission("orders:read")),
):
    review = await ReviewService(db).get_for_order(order_id, user)
    return Envelope(data=ReviewOut.model_validate(review) if review else None)
