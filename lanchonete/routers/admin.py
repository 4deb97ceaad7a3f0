"""
Settings, reports and maintenance endpoints.
"""

import json
import logging
from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lanchonete.core.config import get_settings
from lanchonete.database import get_db
from lanchonete.deps import get_notification_service, require_permission
from lanchonete.models import Setting, User
from lanchonete.schemas import Envelope, ExportRequest, PublicSettings, SettingsUpsert
from lanchonete.services import reports
from lanchonete.services.notification_service import NotificationService
from lanchonete.services.reviews import ReviewService
from lanchonete.tasks import export_orders_report

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Admin"])


def _decode(value: Optional[str]) -> Any:
    if value is None:
        return None
    try:
        return json.loads(value)
    except ValueError:
        return value


# =============================================================================
# SETTINGS
# =============================================================================

@router.get("/settings/public", response_model=Envelope[PublicSettings])
async def public_settings():
    """Restaurant information shown to everyone."""
    settings = get_settings()
    return Envelope(data=PublicSettings(
        restaurant_name=settings.restaurant_name,
        restaurant_description=settings.restaurant_description,
        restaurant_phone=settings.restaurant_phone,
        restaurant_email=settings.restaurant_email,
        restaurant_address=settings.restaurant_address,
        delivery_enabled=settings.delivery_enabled,
        delivery_fee=settings.delivery_fee,
        min_order_value=settings.min_order_value,
        estimated_delivery_minutes=settings.estimated_delivery_minutes,
        payment_methods=settings.payment_methods_list,
    ))


@router.get("/admin/settings", response_model=Envelope[dict[str, dict[str, Any]]])
async def list_settings(
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_permission("settings:read")),
):
    rows = (await db.execute(select(Setting).order_by(Setting.category, Setting.key))).scalars().all()

    grouped: dict[str, dict[str, Any]] = {}
    for row in rows:
        grouped.setdefault(row.category, {})[row.key] = _decode(row.value)
    return Envelope(data=grouped)


@router.post("/admin/settings", response_model=Envelope[dict])
async def upsert_settings(
    payload: SettingsUpsert,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_permission("settings:write")),
):
    keys = [s.key for s in payload.settings]
    existing = {
        s.key: s
        for s in (await db.execute(select(Setting).where(Setting.key.in_(keys)))).scalars().all()
    }

    created = updated = 0
    for item in payload.settings:
        value = json.dumps(item.value)
        setting = existing.get(item.key)
        if setting is None:
            db.add(Setting(key=item.key, value=value, category=item.category, description=item.description))
            created += 1
        else:
            setting.value = value
            setting.category = item.category
            if item.description is not None:
                setting.description = item.description
            updated += 1
    await db.commit()

    logger.info(f"⚙️ Settings saved by admin #{admin.id}: {created} created, {updated} updated")
    return Envelope(data={"created": created, "updated": updated}, message="Configurações salvas com sucesso")


# =============================================================================
# REPORTS
# =============================================================================

@router.get("/admin/reports", response_model=Envelope[dict])
async def sales_report(
    period: str = Query("day", pattern="^(day|month|year)$"),
    reference: Optional[datetime] = Query(None),
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_permission("reports:read")),
):
    summary = await reports.summarize(db, period, reference)
    summary["reviews"] = await ReviewService(db).summary(summary["start"], summary["end"])
    summary["start"] = summary["start"].isoformat()
    summary["end"] = summary["end"].isoformat()
    return Envelope(data=summary)


@router.post("/admin/reports/export", response_model=Envelope[dict], status_code=status.HTTP_202_ACCEPTED)
async def export_report(
    payload: ExportRequest,
    user: User = Depends(require_permission("reports:read")),
):
    """Queue the Excel export on the Celery worker."""
    reference = payload.reference.isoformat() if payload.reference else None
    task = export_orders_report.delay(payload.period, reference)

    logger.info(f"📤 Report export queued by user #{user.id}: task {task.id}")
    return Envelope(
        data={"task_id": task.id, "period": payload.period},
        message="Exportação do relatório iniciada",
    )


# =============================================================================
# NOTIFICATION MAINTENANCE
# =============================================================================

@router.get("/admin/notifications/stats", response_model=Envelope[dict])
async def notification_stats(
    service: NotificationService = Depends(get_notification_service),
    _: User = Depends(require_permission("notifications:manage")),
):
    return Envelope(data=await service.stats())


@router.post("/admin/notifications/cleanup", response_model=Envelope[dict])
async def cleanup_notifications(
    service: NotificationService = Depends(get_notification_service),
    _: User = Depends(require_permission("notifications:manage")),
):
    count = await service.cleanup_expired()
    return Envelope(data={"deactivated": count}, message=f"{count} notificações expiradas removidas")
