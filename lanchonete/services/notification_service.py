"""
In-App Notification Service

Stores staff/customer notifications in the database and forwards HIGH
and URGENT ones to the outbound channel (SMS/email to the manager).
A failing channel never fails the operation that raised the alert.

Visibility rules:
    - a notification with ``user_id`` is private to that user
    - a notification without ``user_id`` is global and shown to staff
      roles (STAFF, MANAGER, ADMIN)

Author: Khalil Bannouri
Version: 1.0.0
"""

import json
import logging
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from lanchonete.core.config import get_settings
from lanchonete.core.exceptions import NotFoundError
from lanchonete.core.security import UserRole, has_min_role
from lanchonete.models import (
    Notification,
    NotificationPriority,
    NotificationType,
    User,
    utcnow,
)
from lanchonete.services.notifications import BaseNotificationChannel, StaffAlert

logger = logging.getLogger(__name__)

FORWARDED_PRIORITIES = (NotificationPriority.HIGH, NotificationPriority.URGENT)


class NotificationService:
    """Create, query and maintain in-app notifications."""

    def __init__(self, db: AsyncSession, channel: Optional[BaseNotificationChannel] = None):
        self.db = db
        self.channel = channel

    # =========================================================================
    # CREATION
    # =========================================================================

    async def create(
        self,
        title: str,
        message: str,
        type: NotificationType,
        priority: NotificationPriority = NotificationPriority.NORMAL,
        user_id: Optional[int] = None,
        data: Optional[dict[str, Any]] = None,
        expires_at: Optional[datetime] = None,
    ) -> Notification:
        """
        Persist a notification and forward it when its priority is high.

        Args:
            title: Short headline
            message: Body text
            type: ORDER, PAYMENT, TABLE, USER or SYSTEM
            priority: LOW, NORMAL, HIGH or URGENT
            user_id: Recipient; None makes the notification global
            data: Extra JSON payload
            expires_at: After this instant cleanup deactivates it

        Returns:
            The stored Notification
        """
        notification = Notification(
            user_id=user_id,
            title=title,
            message=message,
            type=type,
            priority=priority,
            data=json.dumps(data, default=str) if data else None,
            expires_at=expires_at,
        )
        self.db.add(notification)
        await self.db.commit()

        logger.info(f"🔔 Notification #{notification.id} [{type.value}/{priority.value}] {title}")

        if priority in FORWARDED_PRIORITIES:
            await self._forward(notification)

        return notification

    async def _forward(self, notification: Notification) -> None:
        if self.channel is None:
            return
        alert = StaffAlert(
            title=notification.title,
            message=notification.message,
            priority=notification.priority.value,
            restaurant=get_settings().restaurant_name,
        )
        try:
            result = await self.channel.send_staff_alert(alert)
            if not result.success:
                logger.warning(
                    f"⚠️ Alert for notification #{notification.id} not delivered: {result.error_message}"
                )
        except Exception as e:
            logger.error(f"❌ Notification channel error for #{notification.id}: {e}")

    async def notify_new_order(
        self,
        order_id: int,
        customer_name: Optional[str] = None,
        table_number: Optional[int] = None,
    ) -> Notification:
        if table_number:
            message = f"Pedido #{order_id} da Mesa {table_number}"
            if customer_name:
                message += f" ({customer_name})"
        else:
            message = f"Pedido #{order_id}"
            if customer_name:
                message += f" de {customer_name}"

        return await self.create(
            title="Novo Pedido Recebido",
            message=message,
            type=NotificationType.ORDER,
            priority=NotificationPriority.HIGH,
            data={"order_id": order_id, "customer_name": customer_name, "table_number": table_number},
        )

    async def notify_order_ready(self, order_id: int, table_number: Optional[int] = None) -> Notification:
        if table_number:
            message = f"Pedido #{order_id} da Mesa {table_number} está pronto para entrega"
        else:
            message = f"Pedido #{order_id} está pronto para entrega"

        return await self.create(
            title="Pedido Pronto",
            message=message,
            type=NotificationType.ORDER,
            priority=NotificationPriority.HIGH,
            data={"order_id": order_id, "table_number": table_number},
        )

    async def notify_payment_received(self, order_id: int, amount: float, method: str) -> Notification:
        return await self.create(
            title="Pagamento Recebido",
            message=f"Pagamento de R$ {amount:.2f} via {method} recebido para o pedido #{order_id}",
            type=NotificationType.PAYMENT,
            priority=NotificationPriority.NORMAL,
            data={"order_id": order_id, "amount": amount, "method": method},
        )

    async def notify_new_user(self, user_id: int, user_name: str, user_role: str) -> Notification:
        return await self.create(
            title="Novo Usuário Cadastrado",
            message=f"{user_name} foi cadastrado como {user_role}",
            type=NotificationType.USER,
            priority=NotificationPriority.NORMAL,
            data={"user_id": user_id, "user_name": user_name, "user_role": user_role},
        )

    async def notify_table_occupied(self, table_number: int, customer_name: Optional[str] = None) -> Notification:
        suffix = f" por {customer_name}" if customer_name else ""
        return await self.create(
            title="Mesa Ocupada",
            message=f"Mesa {table_number} foi ocupada{suffix}",
            type=NotificationType.TABLE,
            priority=NotificationPriority.NORMAL,
            data={"table_number": table_number, "customer_name": customer_name},
        )

    async def notify_table_freed(self, table_number: int) -> Notification:
        return await self.create(
            title="Mesa Liberada",
            message=f"Mesa {table_number} foi liberada e está disponível",
            type=NotificationType.TABLE,
            priority=NotificationPriority.LOW,
            data={"table_number": table_number},
        )

    async def notify_stock_alert(self, product_id: int, product_name: str, quantity: int, min_level: int) -> Notification:
        out = quantity <= 0
        return await self.create(
            title="Produto Esgotado" if out else "Estoque Baixo",
            message=(
                f"{product_name} está esgotado" if out
                else f"{product_name} com estoque baixo ({quantity}/{min_level})"
            ),
            type=NotificationType.SYSTEM,
            priority=NotificationPriority.HIGH if out else NotificationPriority.NORMAL,
            data={"product_id": product_id, "stock_quantity": quantity, "min_stock_level": min_level},
        )

    async def notify_system(
        self,
        message: str,
        priority: NotificationPriority = NotificationPriority.NORMAL,
        retention_days: Optional[int] = None,
    ) -> Notification:
        expires_at = utcnow() + timedelta(days=retention_days) if retention_days else None
        return await self.create(
            title="Notificação do Sistema",
            message=message,
            type=NotificationType.SYSTEM,
            priority=priority,
            expires_at=expires_at,
        )

    # =========================================================================
    # QUERIES
    # =========================================================================

    @staticmethod
    def _visible_to(user: User):
        if has_min_role(user.role, UserRole.STAFF):
            return or_(Notification.user_id == user.id, Notification.user_id.is_(None))
        return Notification.user_id == user.id

    async def list_for_user(
        self,
        user: User,
        page: int = 1,
        limit: int = 20,
        type: Optional[NotificationType] = None,
        is_read: Optional[bool] = None,
        priority: Optional[NotificationPriority] = None,
    ) -> tuple[list[Notification], int, int]:
        """
        Active notifications visible to ``user``, newest first.

        Returns:
            (page of notifications, total matching, unread count)
        """
        base = and_(self._visible_to(user), Notification.is_active.is_(True))

        conditions = [base]
        if type is not None:
            conditions.append(Notification.type == type)
        if priority is not None:
            conditions.append(Notification.priority == priority)
        if is_read is not None:
            conditions.append(Notification.is_read.is_(is_read))

        query = (
            select(Notification)
            .where(*conditions)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        items = (await self.db.execute(query)).scalars().all()

        total = (await self.db.execute(
            select(func.count(Notification.id)).where(*conditions)
        )).scalar() or 0

        unread = (await self.db.execute(
            select(func.count(Notification.id)).where(base, Notification.is_read.is_(False))
        )).scalar() or 0

        return list(items), total, unread

    async def _get_visible(self, notification_id: int, user: User) -> Notification:
        result = await self.db.execute(
            select(Notification).where(
                Notification.id == notification_id,
                Notification.is_active.is_(True),
                self._visible_to(user),
            )
        )
        notification = result.scalar_one_or_none()
        if not notification:
            raise NotFoundError("Notificação não encontrada")
        return notification

    # =========================================================================
    # STATE CHANGES
    # =========================================================================

    async def mark_read(self, notification_id: int, user: User, is_read: bool = True) -> Notification:
        notification = await self._get_visible(notification_id, user)
        notification.is_read = is_read
        notification.read_at = utcnow() if is_read else None
        await self.db.commit()
        return notification

    async def soft_delete(self, notification_id: int, user: User) -> None:
        notification = await self._get_visible(notification_id, user)
        notification.is_active = False
        await self.db.commit()
        logger.info(f"🗑️ Notification #{notification_id} deactivated by user #{user.id}")

    async def mark_all_read(self, user: User) -> int:
        result = await self.db.execute(
            update(Notification)
            .where(
                self._visible_to(user),
                Notification.is_active.is_(True),
                Notification.is_read.is_(False),
            )
            .values(is_read=True, read_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount or 0

    async def cleanup_expired(self) -> int:
        """Deactivate notifications whose expiry has passed."""
        result = await self.db.execute(
            update(Notification)
            .where(
                Notification.expires_at.is_not(None),
                Notification.expires_at < utcnow(),
                Notification.is_active.is_(True),
            )
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        count = result.rowcount or 0
        if count:
            logger.info(f"🧹 {count} expired notifications deactivated")
        return count

    async def stats(self) -> dict[str, Any]:
        """Counts of active notifications by type and priority."""
        active = Notification.is_active.is_(True)

        total = (await self.db.execute(select(func.count(Notification.id)).where(active))).scalar() or 0
        unread = (await self.db.execute(
            select(func.count(Notification.id)).where(active, Notification.is_read.is_(False))
        )).scalar() or 0

        by_type = await self.db.execute(
            select(Notification.type, func.count(Notification.id)).where(active).group_by(Notification.type)
        )
        by_priority = await self.db.execute(
            select(Notification.priority, func.count(Notification.id)).where(active).group_by(Notification.priority)
        )

        return {
            "total": total,
            "unread": unread,
            "by_type": {t.value: c for t, c in by_type.all()},
            "by_priority": {p.value: c for p, c in by_priority.all()},
        }
