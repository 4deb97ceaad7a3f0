"""
Authentication endpoints: register, login, refresh, me, logout.
"""

import logging

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lanchonete.core.exceptions import AuthenticationError, ConflictError, PermissionDeniedError
from lanchonete.core.security import (
    UserRole,
    create_access_token,
    create_token_pair,
    decode_refresh_token,
    hash_password,
    verify_password,
)
from lanchonete.database import get_db
from lanchonete.deps import auth_rate_limit, get_current_user, get_notification_service
from lanchonete.models import User
from lanchonete.schemas import (
    Envelope,
    LoginRequest,
    RefreshRequest,
    RegisterRequest,
    TokenData,
    UserOut,
)
from lanchonete.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["Auth"])


def _token_response(user: User) -> TokenData:
    tokens = create_token_pair(user.id, user.email, user.role)
    return TokenData(user=UserOut.model_validate(user), **tokens)


@router.post(
    "/register",
    response_model=Envelope[TokenData],
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(auth_rate_limit("register"))],
)
async def register(
    payload: RegisterRequest,
    response: Response,
    db: AsyncSession = Depends(get_db),
    notifications: NotificationService = Depends(get_notification_service),
) -> Envelope[TokenData]:
    """Self-service signup; always creates a CUSTOMER."""
    existing = await db.execute(select(User).where(User.email == payload.email))
    if existing.scalar_one_or_none():
        raise ConflictError("Email já está em uso")

    user = User(
        email=payload.email,
        name=payload.name,
        password_hash=hash_password(payload.password),
        role=UserRole.CUSTOMER,
    )
    db.add(user)
    await db.commit()
    logger.info(f"👤 User #{user.id} registered ({user.email})")

    await notifications.notify_new_user(user.id, user.name, user.role.value)

    data = _token_response(user)
    response.set_cookie("token", data.access_token, httponly=True, samesite="lax")
    return Envelope(data=data, message="Usuário criado com sucesso")


@router.post(
    "/login",
    response_model=Envelope[TokenData],
    dependencies=[Depends(auth_rate_limit("login"))],
)
async def login(
    payload: LoginRequest,
    response: Response,
    db: AsyncSession = Depends(get_db),
) -> Envelope[TokenData]:
    result = await db.execute(select(User).where(User.email == payload.email))
    user = result.scalar_one_or_none()

    if not user or not verify_password(payload.password, user.password_hash):
        logger.warning(f"🔒 Failed login for {payload.email}")
        raise AuthenticationError("Credenciais inválidas")
    if not user.is_active:
        raise PermissionDeniedError("Usuário inativo")

    data = _token_response(user)
    response.set_cookie("token", data.access_token, httponly=True, samesite="lax")
    logger.info(f"🔓 User #{user.id} logged in")
    return Envelope(data=data, message="Login realizado com sucesso")


@router.post("/refresh", response_model=Envelope[dict])
async def refresh(
    payload: RefreshRequest,
    db: AsyncSession = Depends(get_db),
) -> Envelope[dict]:
    claims = decode_refresh_token(payload.refresh_token)
    if not claims or not str(claims.get("sub", "")).isdigit():
        raise AuthenticationError("Refresh token inválido")

    user = await db.get(User, int(claims["sub"]))
    if not user or not user.is_active:
        raise AuthenticationError("Usuário não encontrado ou inativo")

    return Envelope(data={
        "access_token": create_access_token(user.id, user.email, user.role),
        "token_type": "bearer",
    })


@router.get("/me", response_model=Envelope[UserOut])
async def me(user: User = Depends(get_current_user)) -> Envelope[UserOut]:
    return Envelope(data=UserOut.model_validate(user))


@router.post("/logout", response_model=Envelope[dict])
async def logout(response: Response) -> Envelope[dict]:
    """Drop the session cookie; bearer tokens simply expire."""
    response.delete_cookie("token")
    return Envelope(data={}, message="Logout realizado com sucesso")
