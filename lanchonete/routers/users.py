"""
Admin user management.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from lanchonete.core.exceptions import BusinessRuleError, ConflictError, NotFoundError
from lanchonete.core.security import UserRole, hash_password
from lanchonete.database import get_db
from lanchonete.deps import get_notification_service, require_permission
from lanchonete.models import User
from lanchonete.schemas import Envelope, Page, UserCreate, UserOut, UserUpdate, paginate
from lanchonete.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["Users"])


async def _get_user(db: AsyncSession, user_id: int) -> User:
    user = await db.get(User, user_id)
    if not user:
        raise NotFoundError("Usuário não encontrado")
    return user


async def _ensure_email_free(db: AsyncSession, email: str, exclude_id: Optional[int] = None) -> None:
    query = select(User.id).where(User.email == email)
    if exclude_id is not None:
        query = query.where(User.id != exclude_id)
    if (await db.execute(query)).first():
        raise ConflictError("Email já está em uso")


@router.get("", response_model=Envelope[Page[UserOut]])
async def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    role: Optional[UserRole] = Query(None),
    search: Optional[str] = Query(None, max_length=100),
    is_active: Optional[bool] = Query(None),
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_permission("users:read")),
):
    conditions = []
    if role is not None:
        conditions.append(User.role == role)
    if is_active is not None:
        conditions.append(User.is_active.is_(is_active))
    if search:
        like = f"%{search}%"
        conditions.append(or_(User.name.ilike(like), User.email.ilike(like)))

    total = (await db.execute(select(func.count(User.id)).where(*conditions))).scalar() or 0
    result = await db.execute(
        select(User)
        .where(*conditions)
        .order_by(User.created_at.desc(), User.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    users = [UserOut.model_validate(u) for u in result.scalars().all()]
    return Envelope(data=paginate(users, total, page, limit))


@router.post("", response_model=Envelope[UserOut], status_code=status.HTTP_201_CREATED)
async def create_user(
    payload: UserCreate,
    db: AsyncSession = Depends(get_db),
    notifications: NotificationService = Depends(get_notification_service),
    admin: User = Depends(require_permission("users:write")),
):
    email = payload.email
    await _ensure_email_free(db, email)

    user = User(
        email=email,
        name=payload.name,
        password_hash=hash_password(payload.password),
        role=payload.role,
    )
    db.add(user)
    await db.commit()
    logger.info(f"👤 User #{user.id} ({user.role.value}) created by admin #{admin.id}")

    await notifications.notify_new_user(user.id, user.name, user.role.value)
    return Envelope(data=UserOut.model_validate(user), message="Usuário criado com sucesso")


@router.get("/{user_id}", response_model=Envelope[UserOut])
async def get_user(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_permission("users:read")),
):
    return Envelope(data=UserOut.model_validate(await _get_user(db, user_id)))


@router.put("/{user_id}", response_model=Envelope[UserOut])
async def update_user(
    user_id: int,
    payload: UserUpdate,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_permission("users:write")),
):
    user = await _get_user(db, user_id)
    changes = payload.model_dump(exclude_unset=True)

    if user.id == admin.id and (
        changes.get("is_active") is False
        or ("role" in changes and changes["role"] != UserRole.ADMIN)
    ):
        raise BusinessRuleError("Você não pode remover seu próprio acesso de administrador")

    if "email" in changes and changes["email"]:
        changes["email"] = changes["email"].strip().lower()
        await _ensure_email_free(db, changes["email"], exclude_id=user.id)

    password = changes.pop("password", None)
    if password:
        user.password_hash = hash_password(password)

    for field, value in changes.items():
        if value is not None:
            setattr(user, field, value)
    await db.commit()

    logger.info(f"✏️ User #{user.id} updated by admin #{admin.id}: {sorted(changes)}")
    return Envelope(data=UserOut.model_validate(user), message="Usuário atualizado com sucesso")


@router.delete("/{user_id}", response_model=Envelope[UserOut])
async def deactivate_user(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_permission("users:delete")),
):
    """Users are deactivated, never removed, so their orders stay attributed."""
    user = await _get_user(db, user_id)
    if user.id == admin.id:
        raise BusinessRuleError("Você não pode desativar sua própria conta")

    user.is_active = False
    await db.commit()
    logger.info(f"🚫 User #{user.id} deactivated by admin #{admin.id}")
    return Envelope(data=UserOut.model_validate(user), message="Usuário desativado com sucesso")
