"""Notification service package."""

from .backend import (
    EmailBackend,
    InMemoryEmailBackend,
    InMemorySMSBackend,
    SMSBackend,
    SMTPEmailBackend,
)
from .service import NotificationEvent, NotificationService

__all__ = [
    "EmailBackend",
    "SMTPEmailBackend",
    "InMemoryEmailBackend",
    "SMSBackend",
    "InMemorySMSBackend",
    "NotificationService",
    "NotificationEvent",
]
