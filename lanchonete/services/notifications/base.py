"""
Outbound Notification Channel

Staff alerts leave the app by SMS and email. Channels implement the two
transports; the alert itself (text, HTML body, recipients and the merge of
both deliveries) is built here once.

Author: Khalil Bannouri
Version: 1.0.0
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from html import escape
from typing import Optional


@dataclass
class NotificationResult:
    """Outcome of one delivery attempt."""
    success: bool
    message_id: Optional[str] = None
    error_message: Optional[str] = None
    provider: str = "unknown"


@dataclass
class StaffAlert:
    """An in-app notification rendered for the manager's phone and inbox."""
    title: str
    message: str
    priority: str
    restaurant: str

    @property
    def text(self) -> str:
        return f"[{self.priority}] {self.title}: {self.message}"

    @property
    def subject(self) -> str:
        return f"{self.title} - {self.restaurant}"

    @property
    def html(self) -> str:
        # Titles and messages carry customer-provided names
        title, message = escape(self.title), escape(self.message)
        return (
            '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
            f'<h1 style="color: #ff4757;">{title}</h1>'
            f"<p><strong>Prioridade:</strong> {escape(self.priority)}</p>"
            f'<div style="background: #f8f9fa; padding: 15px; border-radius: 8px;"><p>{message}</p></div>'
            f"<p>{escape(self.restaurant)}</p>"
            "</div>"
        )


@dataclass
class AlertRecipients:
    phone: Optional[str] = None
    email: Optional[str] = None


class BaseNotificationChannel(ABC):
    """Transport-agnostic staff alerting; subclasses provide SMS and email."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        ...

    @abstractmethod
    def recipients(self) -> AlertRecipients:
        """Where staff alerts go for this channel."""

    @abstractmethod
    async def send_sms(self, to_phone: str, message: str) -> NotificationResult:
        ...

    @abstractmethod
    async def send_email(
        self,
        to_email: str,
        subject: str,
        body_html: str,
        body_text: Optional[str] = None,
    ) -> NotificationResult:
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        ...

    async def send_staff_alert(self, alert: StaffAlert) -> NotificationResult:
        """
        Deliver ``alert`` to every configured recipient.

        Returns:
            Success when at least one transport delivered; the id of the
            first successful delivery
        """
        to = self.recipients()
        results = []
        if to.phone:
            results.append(await self.send_sms(to.phone, alert.text))
        if to.email:
            results.append(await self.send_email(to.email, alert.subject, alert.html, alert.text))

        if not results:
            return NotificationResult(
                success=False,
                error_message="No manager contact configured",
                provider=self.provider_name,
            )

        delivered = [r for r in results if r.success]
        return NotificationResult(
            success=bool(delivered),
            message_id=delivered[0].message_id if delivered else None,
            error_message=None if delivered else "; ".join(r.error_message or "failed" for r in results),
            provider=self.provider_name,
        )
