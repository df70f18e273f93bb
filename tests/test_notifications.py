import pytest

from tripdesk_api.services.notifications import InMemoryEmailBackend, NotificationService
from tripdesk_api.services.notifications.templates import (
    format_amount,
    render_payment_confirmation,
    render_payment_instructions,
)


class _BrokenBackend:
    async def send_email(self, recipient, subject, body_text, *, body_html=None, reply_to=None) -> None:
        raise ConnectionRefusedError("smtp down")


@pytest.mark.parametrize(
    ("amount_cents", "currency", "expected"),
    [
        (50000, "PLN", "500,00 PLN"),
        (123450, "PLN", "1 234,50 PLN"),
        (5, "eur", "0,05 EUR"),
        (-1999, "PLN", "-19,99 PLN"),
    ],
)
def test_format_amount(amount_cents: int, currency: str, expected: str) -> None:
    assert format_amount(amount_cents, currency) == expected


def test_confirmation_template_mentions_points_only_when_earned() -> None:
    with_points = render_payment_confirmation(
        order_number="DTS-2026-000001",
        total_cents=50000,
        currency="PLN",
        points_earned=50,
        shop_name="Dream Travel Sport",
    )
    without_points = render_payment_confirmation(
        order_number="DTS-2026-000001",
        total_cents=50000,
        currency="PLN",
        points_earned=0,
        shop_name="Dream Travel Sport",
    )

    assert with_points.subject == "Payment confirmed for order DTS-2026-000001"
    assert "500,00 PLN" in with_points.text_body
    assert "50 loyalty points" in with_points.text_body
    assert "loyalty points" not in without_points.text_body


def test_instructions_template_escapes_html() -> None:
    template = render_payment_instructions(
        order_number="DTS-2026-000002",
        total_cents=1000,
        currency="PLN",
        bank_details="Holder <Travel & Sport>",
        shop_name="Dream Travel Sport",
    )

    assert "Transfer title: DTS-2026-000002" in template.text_body
    assert "Holder &lt;Travel &amp; Sport&gt;" in template.html_body


@pytest.mark.asyncio
async def test_service_records_sent_events() -> None:
    backend = InMemoryEmailBackend()
    service = NotificationService(backend=backend)

    sent = await service.send_payment_confirmation("ola@example.com", "DTS-2026-000003", 25000, "PLN", 25)

    assert sent is True
    message = backend.sent_messages[0]
    assert message["To"] == "ola@example.com"
    assert message["Subject"] == "Payment confirmed for order DTS-2026-000003"
    assert message.is_multipart()
    event = service.sent_events[0]
    assert event.event_type == "payment_confirmation"
    assert event.metadata == {"order_number": "DTS-2026-000003", "points_earned": 25}


@pytest.mark.asyncio
async def test_backend_failure_is_reported_not_raised() -> None:
    service = NotificationService(backend=_BrokenBackend())

    sent = await service.send_payment_instructions("ola@example.com", "DTS-2026-000004", 1000, "PLN", "IBAN")

    assert sent is False
    assert service.sent_events == []


@pytest.mark.asyncio
async def test_missing_backend_skips_delivery(monkeypatch) -> None:
    service = NotificationService()
    monkeypatch.setattr(service, "_backend", None)

    assert await service.send_payment_confirmation("ola@example.com", "DTS-2026-000005", 1000, "PLN", 1) is False
    assert service.sent_events == []
