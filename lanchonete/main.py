"""
Lanchonete API

Routers:
    - /api/auth: register, login, refresh, me, logout
    - /api/users: admin user management
    - /api/categories, /api/products: menu
    - /api/adicionais, /api/products/{id}/adicionais: add-ons
    - /api/tables: tables, clear, status check / reconcile
    - /api/orders: orders, payment, add products / items, receive, cancel, review
    - /api/notifications: in-app notifications
    - /api/settings, /api/admin: settings, reports, maintenance
    - /api/admin/inventory: stock levels, movements and alerts
    - /health: database, Redis and notification channel probes

Run with ``python -m lanchonete.main`` or ``uvicorn lanchonete.main:app``.

Author: Khalil Bannouri
Version: 1.0.0
"""

import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime

import redis
from fastapi import Depends, FastAPI
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

from lanchonete.core.config import get_settings, setup_logging
from lanchonete.core.exceptions import register_exception_handlers
from lanchonete.core.middleware import add_middlewares
from lanchonete.database import engine, get_db, init_db
from lanchonete.routers import addons, admin, auth, inventory, menu, notifications, orders, tables, users
from lanchonete.schemas import HealthResponse
from lanchonete.services.notifications import BaseNotificationChannel, get_notification_channel

settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)

HEALTHY = "healthy"


# =============================================================================
# LIFESPAN
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("=" * 60)
    logger.info(f"🍔 {settings.app_name} v{settings.app_version} ({settings.env_mode.value}, debug={settings.debug})")

    await init_db()
    logger.info("✅ Database schema ready")
    logger.info(f"✅ Notification channel: {get_notification_channel().provider_name}")
    logger.info(f"✅ Cache / rate-limit store: {settings.cache_backend.value}")

    missing = settings.validate_production_config()
    if missing:
        logger.warning(f"⚠️ Missing configuration for {settings.env_mode.value}: {', '.join(missing)}")

    logger.info("=" * 60)

    yield

    await engine.dispose()
    logger.info("👋 Database connections closed")


app = FastAPI(
    title=settings.app_name,
    description=(
        "Restaurant ordering backend: menu, tables, orders and payments "
        "with staff notifications and sales reports."
    ),
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

add_middlewares(app)
register_exception_handlers(app)

for module in (auth, users, menu, addons, tables, orders, notifications, admin, inventory):
    app.include_router(module.router)


# =============================================================================
# ROOT & HEALTH
# =============================================================================

@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    return {
        "message": f"🍔 Bem-vindo à {settings.app_name}",
        "version": settings.app_version,
        "environment": settings.env_mode.value,
        "documentation": "/docs",
        "health": "/health",
    }


async def _probe_database(db: AsyncSession) -> str:
    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"❌ Database health check failed: {e}")
        return f"unhealthy: {e}"
    return HEALTHY


def _probe_redis() -> str:
    try:
        client = redis.Redis.from_url(settings.redis_url, socket_timeout=2, socket_connect_timeout=2)
        client.ping()
        client.close()
    except Exception as e:
        logger.error(f"❌ Redis health check failed: {e}")
        return f"unhealthy: {e}"
    return HEALTHY


@app.get("/health", response_model=HealthResponse, tags=["Health"], summary="System Health Check")
async def health_check(
    db: AsyncSession = Depends(get_db),
    channel: BaseNotificationChannel = Depends(get_notification_channel),
) -> HealthResponse:
    """
    Probe the database, Redis (Celery broker) and the outbound channel.
    Always answers 200; ``status`` is ``degraded`` when any probe fails.
    """
    probes = {
        "database": await _probe_database(db),
        "redis": _probe_redis(),
        "notification_channel": HEALTHY if await channel.health_check() else "unhealthy",
    }
    overall = "operational" if all(v == HEALTHY for v in probes.values()) else "degraded"

    return HealthResponse(
        status=overall,
        environment=settings.env_mode.value,
        version=settings.app_version,
        timestamp=datetime.now(),
        **probes,
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "lanchonete.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.is_development,
    )
