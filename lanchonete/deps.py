"""
FastAPI dependencies shared by the routers: authentication, permission
checks, login rate limiting and service construction.
"""

import logging
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from lanchonete.core.config import get_settings
from lanchonete.core.exceptions import (
    AuthenticationError,
    PermissionDeniedError,
    RateLimitedError,
)
from lanchonete.core.rate_limit import RateLimiter, get_client_ip, get_rate_limiter
from lanchonete.core.security import UserRole, decode_access_token, has_min_role, has_permission
from lanchonete.database import get_db
from lanchonete.models import User
from lanchonete.services.lifecycle import OrderLifecycle
from lanchonete.services.notification_service import NotificationService
from lanchonete.services.notifications import BaseNotificationChannel, get_notification_channel

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


# =============================================================================
# AUTHENTICATION
# =============================================================================

def token_from_request(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials],
) -> Optional[str]:
    """Bearer header first, then the ``token`` cookie."""
    if credentials and credentials.scheme.lower() == "bearer" and credentials.credentials:
        return credentials.credentials
    return request.cookies.get("token")


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    token = token_from_request(request, credentials)
    if not token:
        raise AuthenticationError("Token não fornecido", headers={"WWW-Authenticate": "Bearer"})

    payload = decode_access_token(token)
    if not payload or not str(payload.get("sub", "")).isdigit():
        raise AuthenticationError("Token inválido", headers={"WWW-Authenticate": "Bearer"})

    user = await db.get(User, int(payload["sub"]))
    if not user or not user.is_active:
        raise AuthenticationError("Usuário não encontrado ou inativo")
    return user


def require_permission(*permissions: str):
    """Dependency factory: the user must hold at least one of ``permissions``."""

    async def dependency(user: User = Depends(get_current_user)) -> User:
        if not any(has_permission(user.role, p) for p in permissions):
            logger.warning(f"🚫 User #{user.id} ({user.role.value}) lacks {permissions}")
            raise PermissionDeniedError("Acesso negado")
        return user

    return dependency


def require_role(minimum: UserRole):
    """Dependency factory: the user's role must be at least ``minimum``."""

    async def dependency(user: User = Depends(get_current_user)) -> User:
        if not has_min_role(user.role, minimum):
            raise PermissionDeniedError("Acesso negado")
        return user

    return dependency


# =============================================================================
# RATE LIMITING
# =============================================================================

def auth_rate_limit(action: str):
    """Per-client fixed window for the login / register endpoints."""

    async def dependency(
        request: Request,
        limiter: RateLimiter = Depends(get_rate_limiter),
    ) -> None:
        settings = get_settings()
        key = f"{action}:{get_client_ip(request)}"
        result = limiter.check(
            key,
            settings.login_rate_limit_window_seconds * 1000,
            settings.login_rate_limit_max,
        )
        if not result.allowed:
            raise RateLimitedError(
                "Muitas tentativas. Tente novamente mais tarde.",
                headers={
                    "Retry-After": str(result.retry_after_seconds),
                    "X-RateLimit-Remaining": "0",
                },
            )

    return dependency


# =============================================================================
# SERVICES
# =============================================================================

def get_lifecycle(db: AsyncSession = Depends(get_db)) -> OrderLifecycle:
    return OrderLifecycle(db)


def get_notification_service(
    db: AsyncSession = Depends(get_db),
    channel: BaseNotificationChannel = Depends(get_notification_channel),
) -> NotificationService:
    return NotificationService(db, channel)
