"""
                        Services Module

Business logic shared by the routers and the Celery tasks.

Services:
    - lifecycle: order / table transitions (create, pay, clear, ...)
    - notification_service: in-app notifications
    - notifications: outbound channel (Mock in development, Twilio/SendGrid otherwise)
    - reports: sales aggregation
    - report_manager: process-safe Excel report operations
"""

from lanchonete.services.report_manager import ReportManager

__all__ = ["ReportManager"]
