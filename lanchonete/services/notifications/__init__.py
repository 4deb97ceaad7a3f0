"""
Outbound channel selection: the mock in development, Twilio/SendGrid
everywhere else. The instance is built once per process.

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
from functools import lru_cache

from lanchonete.core.config import get_settings
from lanchonete.services.notifications.base import (
    AlertRecipients,
    BaseNotificationChannel,
    NotificationResult,
    StaffAlert,
)
from lanchonete.services.notifications.mock import MockNotificationChannel
from lanchonete.services.notifications.real import RealNotificationChannel

logger = logging.getLogger(__name__)


@lru_cache()
def get_notification_channel() -> BaseNotificationChannel:
    settings = get_settings()
    channel: BaseNotificationChannel = (
        MockNotificationChannel() if settings.is_development else RealNotificationChannel()
    )
    logger.info(f"📣 Notification channel: {channel.provider_name} ({settings.env_mode.value} mode)")
    return channel


__all__ = [
    "AlertRecipients",
    "BaseNotificationChannel",
    "MockNotificationChannel",
    "NotificationResult",
    "RealNotificationChannel",
    "StaffAlert",
    "get_notification_channel",
]
