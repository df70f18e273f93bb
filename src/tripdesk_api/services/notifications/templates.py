"""Notification templates for payment emails."""

from __future__ import annotations

import html
from dataclasses import dataclass


@dataclass
class RenderedTemplate:
    subject: str
    text_body: str
    html_body: str


def format_amount(amount_cents: int, currency: str) -> str:
    """Render minor units as ``1 234,50 PLN``."""

    major, minor = divmod(abs(amount_cents), 100)
    grouped = f"{major:,}".replace(",", " ")
    sign = "-" if amount_cents < 0 else ""
    return f"{sign}{grouped},{minor:02d} {currency.upper()}"


def _paragraphs(lines: list[str]) -> str:
    blocks = "\n".join(f"    <p>{html.escape(line)}</p>" for line in lines if line)
    return f"<html>\n  <body>\n{blocks}\n  </body>\n</html>"


def render_payment_confirmation(
    *,
    order_number: str,
    total_cents: int,
    currency: str,
    points_earned: int,
    shop_name: str,
) -> RenderedTemplate:
    formatted_total = format_amount(total_cents, currency)
    subject = f"Payment confirmed for order {order_number}"
    lines = [
        "Hello,",
        "",
        f"We received your payment of {formatted_total} for order {order_number}.",
        "Your booking is now confirmed.",
    ]
    if points_earned > 0:
        lines.extend(["", f"You earned {points_earned} loyalty points with this order."])
    lines.extend(["", "Thank you,", shop_name])
    text_body = "\n".join(lines)
    return RenderedTemplate(subject=subject, text_body=text_body, html_body=_paragraphs(lines))


def render_payment_instructions(
    *,
    order_number: str,
    total_cents: int,
    currency: str,
    bank_details: str,
    shop_name: str,
) -> RenderedTemplate:
    formatted_total = format_amount(total_cents, currency)
    subject = f"Payment instructions for order {order_number}"
    lines = [
        "Hello,",
        "",
        f"Please transfer {formatted_total} to complete order {order_number}.",
        "",
        "Bank details:",
        bank_details,
        f"Transfer title: {order_number}",
        "",
        "Your booking is confirmed once the transfer is booked on our account.",
        "",
        "Thank you,",
        shop_name,
    ]
    text_body = "\n".join(lines)
    return RenderedTemplate(subject=subject, text_body=text_body, html_body=_paragraphs(lines))
