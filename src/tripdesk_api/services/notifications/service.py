"""High-level notification service for payment emails."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from loguru import logger

from tripdesk_api.core.settings import get_settings

from .backend import EmailBackend, SMTPEmailBackend
from .templates import RenderedTemplate, render_payment_confirmation, render_payment_instructions


@dataclass
class NotificationEvent:
    """Representation of a notification that was sent."""

    recipient: str
    subject: str
    body_text: str
    event_type: str
    metadata: dict[str, Any]


class NotificationService:
    """Sends payment emails through a pluggable backend.

    Delivery is best-effort: backend errors are logged and swallowed so that a
    mail outage never fails a webhook acknowledgement or a payment request.
    """

    def __init__(self, backend: Optional[EmailBackend] = None) -> None:
        self._settings = get_settings()
        self._backend = backend or self._build_default_backend()
        self._events: list[NotificationEvent] = []

    @property
    def sent_events(self) -> list[NotificationEvent]:
        return self._events

    async def send_payment_confirmation(
        self,
        to: str,
        order_number: str,
        total_cents: int,
        currency: str,
        points_earned: int,
    ) -> bool:
        template = render_payment_confirmation(
            order_number=order_number,
            total_cents=total_cents,
            currency=currency,
            points_earned=points_earned,
            shop_name=self._settings.shop_display_name,
        )
        return await self._deliver(
            to,
            template,
            event_type="payment_confirmation",
            metadata={"order_number": order_number, "points_earned": points_earned},
        )

    async def send_payment_instructions(
        self,
        to: str,
        order_number: str,
        total_cents: int,
        currency: str,
        bank_details: str,
    ) -> bool:
        template = render_payment_instructions(
            order_number=order_number,
            total_cents=total_cents,
            currency=currency,
            bank_details=bank_details,
            shop_name=self._settings.shop_display_name,
        )
        return await self._deliver(
            to,
            template,
            event_type="payment_instructions",
            metadata={"order_number": order_number},
        )

    def _build_default_backend(self) -> Optional[EmailBackend]:
        if not self._settings.smtp_host or not self._settings.smtp_sender_email:
            return None

        return SMTPEmailBackend(
            host=self._settings.smtp_host,
            port=self._settings.smtp_port,
            username=self._settings.smtp_username,
            password=self._settings.smtp_password,
            use_tls=self._settings.smtp_use_tls,
            sender_email=self._settings.smtp_sender_email,
        )

    async def _deliver(
        self,
        recipient: str,
        template: RenderedTemplate,
        *,
        event_type: str,
        metadata: dict[str, Any],
    ) -> bool:
        if self._backend is None:
            logger.info("Email backend not configured; skipping notification", event_type=event_type)
            return False

        try:
            await self._backend.send_email(
                recipient,
                template.subject,
                template.text_body,
                body_html=template.html_body,
            )
        except Exception as exc:
            logger.error(
                "Failed to send notification email",
                event_type=event_type,
                recipient=recipient,
                error=str(exc),
                **metadata,
            )
            return False

        self._events.append(
            NotificationEvent(
                recipient=recipient,
                subject=template.subject,
                body_text=template.text_body,
                event_type=event_type,
                metadata=metadata,
            )
        )
        logger.info("Notification email sent", event_type=event_type, **metadata)
        return True
