"""
Real Notification Channel

Staff alerts over Twilio (SMS) and SendGrid (email). Either provider may be
left unconfigured; the channel then delivers through the other one only.

Author: Khalil Bannouri
Version: 1.0.0
"""

import asyncio
import logging
from typing import Optional

from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail
from twilio.base.exceptions import TwilioException
from twilio.rest import Client as TwilioClient

from lanchonete.core.config import get_settings
from lanchonete.services.notifications.base import (
    AlertRecipients,
    BaseNotificationChannel,
    NotificationResult,
)

logger = logging.getLogger(__name__)

SENDGRID_ACCEPTED = (200, 201, 202)


class RealNotificationChannel(BaseNotificationChannel):

    def __init__(self):
        self.settings = get_settings()
        s = self.settings

        self.twilio_client = (
            TwilioClient(s.twilio_account_sid, s.twilio_auth_token)
            if s.twilio_account_sid and s.twilio_auth_token else None
        )
        self.sendgrid_client = SendGridAPIClient(s.sendgrid_api_key) if s.sendgrid_api_key else None

        if self.twilio_client is None:
            logger.warning("⚠️ Twilio not configured: staff alerts will not go out by SMS")
        if self.sendgrid_client is None:
            logger.warning("⚠️ SendGrid not configured: staff alerts will not go out by email")

    @property
    def provider_name(self) -> str:
        return "real"

    def recipients(self) -> AlertRecipients:
        return AlertRecipients(
            phone=self.settings.manager_phone if self.twilio_client else None,
            email=self.settings.manager_email if self.sendgrid_client else None,
        )

    async def send_sms(self, to_phone: str, message: str) -> NotificationResult:
        if self.twilio_client is None:
            return NotificationResult(success=False, error_message="Twilio not configured", provider="twilio")

        try:
            # Twilio's client is blocking
            sms = await asyncio.to_thread(
                self.twilio_client.messages.create,
                body=message,
                from_=self.settings.twilio_phone_number,
                to=to_phone,
            )
        except TwilioException as e:
            logger.error(f"❌ Twilio error sending to {to_phone}: {e}")
            return NotificationResult(success=False, error_message=str(e), provider="twilio")

        logger.info(f"📱 SMS {sms.sid} sent to {to_phone}")
        return NotificationResult(success=True, message_id=sms.sid, provider="twilio")

    async def send_email(
        self,
        to_email: str,
        subject: str,
        body_html: str,
        body_text: Optional[str] = None,
    ) -> NotificationResult:
        if self.sendgrid_client is None:
            return NotificationResult(success=False, error_message="SendGrid not configured", provider="sendgrid")

        mail = Mail(
            from_email=self.settings.sendgrid_from_email,
            to_emails=to_email,
            subject=subject,
            html_content=body_html,
            plain_text_content=body_text,
        )
        try:
            response = await asyncio.to_thread(self.sendgrid_client.send, mail)
        except Exception as e:
            # python_http_client raises one error class per HTTP status
            logger.error(f"❌ SendGrid error sending to {to_email}: {e}")
            return NotificationResult(success=False, error_message=str(e), provider="sendgrid")

        accepted = response.status_code in SENDGRID_ACCEPTED
        logger.info(f"📧 Email to {to_email}: HTTP {response.status_code}")
        return NotificationResult(
            success=accepted,
            message_id=response.headers.get("X-Message-Id"),
            error_message=None if accepted else f"HTTP {response.status_code}",
            provider="sendgrid",
        )

    async def health_check(self) -> bool:
        return self.twilio_client is not None or self.sendgrid_client is not None
