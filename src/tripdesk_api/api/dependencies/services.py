"""Providers for service collaborators, overridable in tests."""

from __future__ import annotations

from tripdesk_api.services.notifications import NotificationService
from tripdesk_api.services.payments import GatewayClient, build_gateway_client


def get_gateway_client() -> GatewayClient | None:
    return build_gateway_client()


def get_notification_service() -> NotificationService:
    return NotificationService()
