"""
Admin Bootstrap Script

Creates (or updates) the admin user, optionally with a manager and a
staff member for local testing.
Run from project root: python scripts/create_admin.py --email admin@lanchonete.com --password admin123

Author: Khalil Bannouri
Version: 1.0.0
"""

import argparse
import asyncio
import os
import sys

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Windows event loop fix
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

from sqlalchemy import select

from lanchonete.core.config import setup_logging
from lanchonete.core.security import UserRole, hash_password, validate_password
from lanchonete.database import async_session_maker, engine, init_db
from lanchonete.models import User


async def upsert_user(email: str, name: str, password: str, role: UserRole) -> User:
    """Create the user, or reset password / role / active flag if it exists."""
    async with async_session_maker() as db:
        user = (await db.execute(select(User).where(User.email == email))).scalar_one_or_none()
        if user is None:
            user = User(email=email, name=name, role=role, password_hash=hash_password(password))
            db.add(user)
            action = "created"
        else:
            user.name = name
            user.role = role
            user.is_active = True
            user.password_hash = hash_password(password)
            action = "updated"
        await db.commit()

    print(f"   ✅ {role.value} {email} {action} (id #{user.id})")
    return user


async def main(args: argparse.Namespace) -> None:
    print("=" * 60)
    print("👤 CREATING USERS")
    print("=" * 60)

    await init_db()

    await upsert_user(args.email.strip().lower(), args.name, args.password, UserRole.ADMIN)
    if args.with_manager:
        await upsert_user("gerente@lanchonete.com", "Gerente", args.password, UserRole.MANAGER)
    if args.with_staff:
        await upsert_user("atendente@lanchonete.com", "Atendente", args.password, UserRole.STAFF)

    await engine.dispose()
    print("=" * 60)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Admin Bootstrap Script")
    parser.add_argument("--email", default="admin@lanchonete.com")
    parser.add_argument("--name", default="Administrador")
    parser.add_argument("--password", default="admin123")
    parser.add_argument("--with-manager", action="store_true", help="Also create gerente@lanchonete.com")
    parser.add_argument("--with-staff", action="store_true", help="Also create atendente@lanchonete.com")
    args = parser.parse_args()

    message = validate_password(args.password)
    if message:
        print(f"❌ {message}")
        sys.exit(1)

    setup_logging()
    asyncio.run(main(args))
