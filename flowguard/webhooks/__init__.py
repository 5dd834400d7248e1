"""Inbound webhook dispatch."""

from .handlers import (
    AppointmentConfirmationWebhookHandler,
    BaseWebhookHandler,
    CalendarSyncWebhookHandler,
    MessagingWebhookHandler,
    PaymentWebhookHandler,
    WebhookRouter,
)

__all__ = [
    "AppointmentConfirmationWebhookHandler",
    "BaseWebhookHandler",
    "CalendarSyncWebhookHandler",
    "MessagingWebhookHandler",
    "PaymentWebhookHandler",
    "WebhookRouter",
]
