"""
Mock Notification Channel

Development channel: nothing leaves the process. Deliveries are logged and
kept in ``sent`` so tests can inspect them; a configurable share of them
fails to exercise the error path.

Author: Khalil Bannouri
Version: 1.0.0
"""

import asyncio
import logging
import random
import uuid
from typing import Optional

from lanchonete.core.config import get_settings
from lanchonete.services.notifications.base import (
    AlertRecipients,
    BaseNotificationChannel,
    NotificationResult,
)

logger = logging.getLogger(__name__)

DEFAULT_PHONE = "+5511999999999"
DEFAULT_EMAIL = "gerente@lanchonete.local"


class MockNotificationChannel(BaseNotificationChannel):

    def __init__(self, failure_rate: float = 0.05, latency: Optional[tuple[float, float]] = (0.1, 0.3)):
        self.failure_rate = failure_rate
        self.latency = latency
        self.sent: list[dict] = []
        logger.info(f"MockNotificationChannel initialized (failure_rate={failure_rate:.0%})")

    @property
    def provider_name(self) -> str:
        return "mock"

    def recipients(self) -> AlertRecipients:
        # Always deliver somewhere so development shows the full flow
        settings = get_settings()
        return AlertRecipients(
            phone=settings.manager_phone or DEFAULT_PHONE,
            email=settings.manager_email or DEFAULT_EMAIL,
        )

    async def _record(self, kind: str, **entry) -> NotificationResult:
        if self.latency:
            await asyncio.sleep(random.uniform(*self.latency))

        if random.random() < self.failure_rate:
            logger.warning(f"Mock {kind} to {entry['to']} failed (simulated)")
            return NotificationResult(success=False, error_message=f"Simulated {kind} failure", provider="mock")

        message_id = f"{kind}_mock_{uuid.uuid4().hex[:12]}"
        self.sent.append({"channel": kind, "id": message_id, **entry})
        return NotificationResult(success=True, message_id=message_id, provider="mock")

    async def send_sms(self, to_phone: str, message: str) -> NotificationResult:
        result = await self._record("sms", to=to_phone, body=message)
        if result.success:
            logger.info(f"📱 Mock SMS to {to_phone}: {message[:50]}")
        return result

    async def send_email(
        self,
        to_email: str,
        subject: str,
        body_html: str,
        body_text: Optional[str] = None,
    ) -> NotificationResult:
        result = await self._record("email", to=to_email, subject=subject)
        if result.success:
            logger.info(f"📧 Mock email to {to_email}: {subject}")
        return result

    async def health_check(self) -> bool:
        return True
