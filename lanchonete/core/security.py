"""
Authentication primitives

- Role hierarchy and per-role permission table
- bcrypt password hashing (passlib)
- JWT access / refresh tokens (python-jose) with issuer and audience
- Password and name rules shared by registration and user management

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
import re
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from lanchonete.core.config import get_settings

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


# =============================================================================
# ROLES & PERMISSIONS
# =============================================================================

class UserRole(str, Enum):
    CUSTOMER = "CUSTOMER"
    STAFF = "STAFF"
    MANAGER = "MANAGER"
    ADMIN = "ADMIN"


ROLE_LEVEL = {
    UserRole.CUSTOMER: 1,
    UserRole.STAFF: 2,
    UserRole.MANAGER: 3,
    UserRole.ADMIN: 4,
}

ROLE_PERMISSIONS: dict[UserRole, frozenset[str]] = {
    UserRole.CUSTOMER: frozenset({
        "menu:read",
        "orders:read", "orders:create", "orders:update",
        "profile:read", "profile:write",
        "cart:read", "cart:write", "cart:delete",
    }),
    UserRole.STAFF: frozenset({
        "menu:read",
        "orders:read", "orders:create", "orders:update", "orders:write",
        "products:read",
        "profile:read", "profile:write",
        "tables:read", "tables:write",
        "cart:read", "cart:write", "cart:delete",
    }),
    UserRole.MANAGER: frozenset({
        "menu:read",
        "orders:read", "orders:create", "orders:update", "orders:write",
        "products:read",
        "profile:read", "profile:write",
        "tables:read", "tables:write",
        "reports:read",
        "inventory:read",
    }),
    UserRole.ADMIN: frozenset({
        "users:read", "users:write", "users:delete",
        "products:read", "products:write", "products:delete",
        "categories:read", "categories:write", "categories:delete",
        "orders:read", "orders:write", "orders:delete", "orders:create",
        "reports:read",
        "settings:read", "settings:write",
        "menu:read", "menu:write", "menu:delete",
        "profile:read", "profile:write",
        "tables:read", "tables:write", "tables:manage",
        "notifications:manage",
        "inventory:read", "inventory:write",
    }),
}


def normalize_role(role: Any) -> UserRole:
    """Map any role spelling to a UserRole; unknown values become CUSTOMER."""
    value = role.value if isinstance(role, Enum) else str(role or "")
    try:
        return UserRole(value.strip().upper())
    except ValueError:
        return UserRole.CUSTOMER


def has_permission(role: Any, permission: str) -> bool:
    return permission in ROLE_PERMISSIONS[normalize_role(role)]


def has_min_role(role: Any, minimum: UserRole) -> bool:
    return ROLE_LEVEL[normalize_role(role)] >= ROLE_LEVEL[minimum]


# =============================================================================
# PASSWORDS
# =============================================================================

def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    try:
        return pwd_context.verify(password, hashed)
    except ValueError:
        # Malformed hash stored for the user
        return False


PASSWORD_MIN_LENGTH = 6
PASSWORD_MAX_LENGTH = 128
NAME_PATTERN = re.compile(r"^[A-Za-zÀ-ÿ\s'\-]+$")


def validate_password(password: str) -> Optional[str]:
    """
    Check the password rules.

    Returns:
        An error message, or None when the password is acceptable
    """
    if len(password) < PASSWORD_MIN_LENGTH:
        return f"Senha deve ter pelo menos {PASSWORD_MIN_LENGTH} caracteres"
    if len(password) > PASSWORD_MAX_LENGTH:
        return f"Senha deve ter no máximo {PASSWORD_MAX_LENGTH} caracteres"
    if not re.search(r"[A-Za-z]", password):
        return "Senha deve conter pelo menos uma letra"
    if not re.search(r"\d", password):
        return "Senha deve conter pelo menos um número"
    return None


def validate_name(name: str) -> Optional[str]:
    name = name.strip()
    if len(name) < 2:
        return "Nome deve ter pelo menos 2 caracteres"
    if len(name) > 100:
        return "Nome deve ter no máximo 100 caracteres"
    if not NAME_PATTERN.match(name):
        return "Nome deve conter apenas letras, espaços, hífens e apóstrofos"
    return None


# =============================================================================
# TOKENS
# =============================================================================

def _encode(user_id: int, email: str, role: Any, audience: str, minutes: int) -> str:
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "email": email,
        "role": normalize_role(role).value,
        "iss": settings.jwt_issuer,
        "aud": audience,
        "iat": now,
        "exp": now + timedelta(minutes=minutes),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def create_access_token(user_id: int, email: str, role: Any) -> str:
    settings = get_settings()
    return _encode(
        user_id, email, role,
        settings.jwt_access_audience,
        settings.jwt_access_expires_minutes,
    )


def create_refresh_token(user_id: int, email: str, role: Any) -> str:
    settings = get_settings()
    return _encode(
        user_id, email, role,
        settings.jwt_refresh_audience,
        settings.jwt_refresh_expires_minutes,
    )


def create_token_pair(user_id: int, email: str, role: Any) -> dict[str, str]:
    return {
        "access_token": create_access_token(user_id, email, role),
        "refresh_token": create_refresh_token(user_id, email, role),
        "token_type": "bearer",
    }


def _decode(token: str, audience: str) -> Optional[dict[str, Any]]:
    settings = get_settings()
    try:
        return jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            audience=audience,
            issuer=settings.jwt_issuer,
        )
    except JWTError as e:
        logger.debug(f"Token rejected: {e}")
        return None


def decode_access_token(token: str) -> Optional[dict[str, Any]]:
    """Verify an access token; None when invalid, expired or for another audience."""
    return _decode(token, get_settings().jwt_access_audience)


def decode_refresh_token(token: str) -> Optional[dict[str, Any]]:
    return _decode(token, get_settings().jwt_refresh_audience)


def extract_bearer(header_value: Optional[str]) -> Optional[str]:
    """Return the token of an ``Authorization: Bearer <token>`` header."""
    if not header_value:
        return None
    parts = header_value.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer" or not parts[1]:
        return None
    return parts[1]
