"""
Inventory endpoints (admin area): stock levels, movements and alerts.
"""

import logging
from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from lanchonete.core.cache import ResponseCache, get_cache
from lanchonete.database import get_db
from lanchonete.deps import get_notification_service, require_permission
from lanchonete.models import MovementType, User
from lanchonete.schemas import (
    Envelope,
    InventoryItemOut,
    Page,
    ProductOut,
    StockAdjustment,
    StockMovementOut,
    paginate,
)
from lanchonete.services.inventory import InventoryService
from lanchonete.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin/inventory", tags=["Inventory"])


def _inventory_row(row: dict[str, Any]) -> InventoryItemOut:
    return InventoryItemOut(
        **ProductOut.model_validate(row["product"]).model_dump(),
        category_name=row["category_name"],
        stock_alert=row["stock_alert"],
        sales_last_30_days=row["sales_last_30_days"],
    )


@router.get("", response_model=Envelope[Page[InventoryItemOut]])
async def list_inventory(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    category_id: Optional[int] = Query(None),
    track_stock: Optional[bool] = Query(None),
    low_stock: bool = Query(False),
    sort_by: str = Query("name", pattern="^(name|stock_quantity|price|category)$"),
    sort_order: str = Query("asc", pattern="^(asc|desc)$"),
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_permission("inventory:read")),
):
    rows, total = await InventoryService(db).list_products(
        page=page,
        limit=limit,
        category_id=category_id,
        track_stock=track_stock,
        low_stock=low_stock,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return Envelope(data=paginate([_inventory_row(r) for r in rows], total, page, limit))


@router.post("", response_model=Envelope[dict[str, Any]], status_code=status.HTTP_201_CREATED)
async def adjust_stock(
    payload: StockAdjustment,
    db: AsyncSession = Depends(get_db),
    notifications: NotificationService = Depends(get_notification_service),
    cache: ResponseCache = Depends(get_cache),
    user: User = Depends(require_permission("inventory:write")),
):
    """Record an ENTRADA, SAIDA or AJUSTE movement for one product."""
    product, movement = await InventoryService(db, notifications).adjust(user, payload)
    cache.clear_pattern("products:")
    return Envelope(
        data={
            "product": ProductOut.model_validate(product).model_dump(mode="json"),
            "movement": StockMovementOut.model_validate(movement).model_dump(mode="json"),
        },
        message="Estoque atualizado com sucesso",
    )


@router.get("/alerts", response_model=Envelope[dict[str, Any]])
async def stock_alerts(
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_permission("inventory:read")),
):
    report = await InventoryService(db).alerts()
    return Envelope(data={
        "alerts": {
            level: [ProductOut.model_validate(p).model_dump(mode="json") for p in products]
            for level, products in report["groups"].items()
        },
        "stats": report["stats"],
        "last_updated": report["last_updated"].isoformat(),
    })


@router.get("/movements", response_model=Envelope[Page[StockMovementOut]])
async def list_movements(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    product_id: Optional[int] = Query(None),
    movement_type: Optional[MovementType] = Query(None, alias="type"),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    sort_by: str = Query("created_at", pattern="^(created_at|quantity|type)$"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_permission("inventory:read")),
):
    movements, total = await InventoryService(db).list_movements(
        page=page,
        limit=limit,
        product_id=product_id,
        movement_type=movement_type,
        start_date=start_date,
        end_date=end_date,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    items = [StockMovementOut.model_validate(m) for m in movements]
    return Envelope(data=paginate(items, total, page, limit))
