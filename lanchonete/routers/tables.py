"""
Dining table endpoints.

Clearing a table goes through ``OrderLifecycle.clear_table`` and is
refused while any of its orders is still in the kitchen.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from lanchonete.core.cache import ResponseCache, get_cache, invalidate
from lanchonete.core.exceptions import BusinessRuleError, ConflictError, NotFoundError
from lanchonete.database import get_db
from lanchonete.deps import get_lifecycle, get_notification_service, require_permission
from lanchonete.models import DiningTable, Order, TableStatus, User
from lanchonete.schemas import (
    ActiveOrderOut,
    Envelope,
    TableCreate,
    TableOut,
    TableStatusCheck,
    TableUpdate,
)
from lanchonete.services.lifecycle import OrderLifecycle
from lanchonete.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/tables", tags=["Tables"])

TABLE_CACHE_GROUPS = ("orders:", "tables:")


async def _ensure_number_free(db: AsyncSession, number: int, exclude_id: Optional[int] = None) -> None:
    query = select(DiningTable.id).where(DiningTable.number == number)
    if exclude_id is not None:
        query = query.where(DiningTable.id != exclude_id)
    if (await db.execute(query)).first():
        raise ConflictError(f"Já existe uma mesa com o número {number}")


async def _ensure_user_exists(db: AsyncSession, user_id: Optional[int]) -> None:
    if user_id is not None and not await db.get(User, user_id):
        raise NotFoundError("Usuário não encontrado")


# =============================================================================
# CRUD
# =============================================================================

@router.get("", response_model=Envelope[list[TableOut]])
async def list_tables(
    table_status: Optional[TableStatus] = Query(None, alias="status"),
    assigned_to: Optional[int] = Query(None),
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_permission("tables:read")),
):
    query = select(DiningTable).order_by(DiningTable.number)
    if table_status is not None:
        query = query.where(DiningTable.status == table_status)
    if assigned_to is not None:
        query = query.where(DiningTable.assigned_to == assigned_to)

    tables = (await db.execute(query)).scalars().all()
    return Envelope(data=[TableOut.model_validate(t) for t in tables])


@router.post("", response_model=Envelope[TableOut], status_code=status.HTTP_201_CREATED)
async def create_table(
    payload: TableCreate,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_permission("tables:manage")),
):
    await _ensure_number_free(db, payload.number)
    await _ensure_user_exists(db, payload.assigned_to)

    table = DiningTable(**payload.model_dump())
    db.add(table)
    await db.commit()

    logger.info(f"🪑 Table {table.number} created (capacity {table.capacity})")
    return Envelope(data=TableOut.model_validate(table), message="Mesa criada com sucesso")


@router.get("/{table_id}", response_model=Envelope[TableOut])
async def get_table(
    table_id: int,
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
    _: User = Depends(require_permission("tables:read")),
):
    return Envelope(data=TableOut.model_validate(await lifecycle.get_table(table_id)))


@router.put("/{table_id}", response_model=Envelope[TableOut])
async def update_table(
    table_id: int,
    payload: TableUpdate,
    db: AsyncSession = Depends(get_db),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
    cache: ResponseCache = Depends(get_cache),
    _: User = Depends(require_permission("tables:write")),
):
    """Edit a table. Setting it LIVRE obeys the same rule as ``/clear``."""
    table = await lifecycle.get_table(table_id)
    changes = payload.model_dump(exclude_unset=True)

    if changes.get("status") == TableStatus.LIVRE and table.status != TableStatus.LIVRE:
        await lifecycle.ensure_clearable(table)
    if changes.get("number") is not None:
        await _ensure_number_free(db, changes["number"], exclude_id=table.id)
    if "assigned_to" in changes:
        await _ensure_user_exists(db, changes["assigned_to"])
        table.assigned_to = changes.pop("assigned_to")

    for field, value in changes.items():
        if value is not None:
            setattr(table, field, value)
    await db.commit()
    invalidate(cache, TABLE_CACHE_GROUPS)

    return Envelope(data=TableOut.model_validate(table), message="Mesa atualizada com sucesso")


@router.delete("/{table_id}", response_model=Envelope[dict])
async def delete_table(
    table_id: int,
    db: AsyncSession = Depends(get_db),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
    _: User = Depends(require_permission("tables:manage")),
):
    table = await lifecycle.get_table(table_id)
    orders = (await db.execute(
        select(func.count(Order.id)).where(Order.table_id == table_id)
    )).scalar() or 0
    if orders:
        raise BusinessRuleError("Mesa possui pedidos e não pode ser excluída")

    await db.delete(table)
    await db.commit()

    logger.info(f"🗑️ Table #{table_id} deleted")
    return Envelope(data={"id": table_id}, message="Mesa excluída com sucesso")


# =============================================================================
# LIFECYCLE
# =============================================================================

@router.post("/{table_id}/clear", response_model=Envelope[TableOut])
async def clear_table(
    table_id: int,
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
    notifications: NotificationService = Depends(get_notification_service),
    cache: ResponseCache = Depends(get_cache),
    _: User = Depends(require_permission("tables:write")),
):
    table = await lifecycle.clear_table(table_id)
    invalidate(cache, TABLE_CACHE_GROUPS)

    await notifications.notify_table_freed(table.number)
    return Envelope(data=TableOut.model_validate(table), message="Mesa limpa com sucesso")


@router.get("/{table_id}/status", response_model=Envelope[TableStatusCheck])
async def check_table_status(
    table_id: int,
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
    _: User = Depends(require_permission("tables:read")),
):
    check = await lifecycle.check_table_status(table_id)
    return Envelope(data=TableStatusCheck(
        table=TableOut.model_validate(check["table"]),
        active_orders=[ActiveOrderOut.model_validate(o) for o in check["active_orders"]],
        should_be_occupied=check["should_be_occupied"],
        status_matches=check["status_matches"],
    ))


@router.put("/{table_id}/status", response_model=Envelope[TableOut])
async def reconcile_table_status(
    table_id: int,
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
    cache: ResponseCache = Depends(get_cache),
    _: User = Depends(require_permission("tables:write")),
):
    """Force the table status to match its active orders."""
    table = await lifecycle.reconcile_table(table_id)
    invalidate(cache, TABLE_CACHE_GROUPS)
    return Envelope(data=TableOut.model_validate(table), message="Status da mesa sincronizado")
