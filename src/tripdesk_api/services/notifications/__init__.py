"""Notification service package."""

from .backend import EmailBackend, InMemoryEmailBackend, SMTPEmailBackend
from .service import NotificationEvent, NotificationService

__all__ = [
    "EmailBackend",
    "InMemoryEmailBackend",
    "SMTPEmailBackend",
    "NotificationEvent",
    "NotificationService",
]
