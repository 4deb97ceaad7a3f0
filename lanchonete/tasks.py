"""
Background jobs: Excel report export and notification expiry.

The Celery tasks are thin synchronous wrappers; the work itself lives in
the async helpers so tests can drive it against their own session factory.

Author: Khalil Bannouri
Version: 1.0.0
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lanchonete.celery_worker import celery_app
from lanchonete.database import async_session_maker
from lanchonete.services import reports
from lanchonete.services.notification_service import NotificationService
from lanchonete.services.report_manager import ReportManager

logger = logging.getLogger(__name__)


async def build_orders_report(
    session_factory: async_sessionmaker[AsyncSession],
    manager: ReportManager,
    period: str,
    reference: Optional[datetime] = None,
) -> dict[str, Any]:
    """Collect the period's orders and write them to the workbook."""
    async with session_factory() as db:
        rows = await reports.order_rows(db, period, reference)
    start, _ = reports.period_bounds(period, reference)
    return manager.export_orders(rows, ReportManager.sheet_name(period, start))


async def purge_expired_notifications(session_factory: async_sessionmaker[AsyncSession]) -> int:
    async with session_factory() as db:
        return await NotificationService(db).cleanup_expired()


# =============================================================================
# CELERY TASKS
# =============================================================================

@celery_app.task(
    bind=True,
    autoretry_for=(OSError,),
    retry_backoff=True,
    max_retries=3,
    default_retry_delay=5,
)
def export_orders_report(self, period: str = "day", reference: Optional[str] = None) -> dict:
    """
    Export the orders of a day / month / year to the Excel report.

    Args:
        period: "day", "month" or "year"
        reference: ISO datetime inside the period (defaults to now)

    Returns:
        The ReportManager result plus ``task_id`` and ``processing_time_seconds``
    """
    started = time.perf_counter()
    logger.info(f"📋 Report export {self.request.id}: {period} ({reference or 'now'})")

    ref = datetime.fromisoformat(reference) if reference else None
    outcome = asyncio.run(build_orders_report(async_session_maker, ReportManager(), period, ref))
    outcome.update(
        task_id=self.request.id,
        processing_time_seconds=round(time.perf_counter() - started, 3),
    )

    if outcome["success"]:
        logger.info(f"✅ Report export {self.request.id}: {outcome['message']}")
    else:
        logger.warning(f"⚠️ Report export {self.request.id} failed: {outcome['message']}")
    return outcome


@celery_app.task
def cleanup_expired_notifications() -> dict:
    """Deactivate notifications past their expiry."""
    deactivated = asyncio.run(purge_expired_notifications(async_session_maker))
    if deactivated:
        logger.info(f"🧹 {deactivated} expired notifications deactivated")
    return {"deactivated": deactivated, "timestamp": datetime.now().isoformat()}


@celery_app.task
def health_check() -> dict:
    """Round-trip probe for the worker."""
    return {"status": "healthy", "worker": "celery", "timestamp": datetime.now().isoformat()}
