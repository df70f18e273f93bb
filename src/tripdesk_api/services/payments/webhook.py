"""Normalization of inbound gateway notifications."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Mapping

from tripdesk_api.core.errors import ValidationError


_FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "merchant_id": ("merchantId", "p24_merchant_id", "p24MerchantId", "merchant_id"),
    "pos_id": ("posId", "p24_pos_id", "p24PosId", "pos_id"),
    "session_id": ("sessionId", "p24_session_id", "p24SessionId", "session_id"),
    "amount": ("amount", "p24_amount", "p24Amount"),
    "currency": ("currency", "p24_currency", "p24Currency"),
    "gateway_order_id": ("orderId", "p24_order_id", "p24OrderId", "order_id"),
    "signature": ("sign", "p24_sign", "p24Sign"),
}

_ORDER_NUMBER_PREFIX = "DTS"
_YEAR = re.compile(r"^\d{4}$")
_SEQUENCE = re.compile(r"^\d{6}$")


@dataclass(frozen=True)
class WebhookNotification:
    """Gateway notification with provider field-name variants resolved."""

    merchant_id: str
    pos_id: str
    session_id: str
    amount: int
    currency: str
    gateway_order_id: str
    signature: str
    payload: dict[str, Any]

    @property
    def order_number(self) -> str:
        return order_number_from_session(self.session_id)


def _pick(body: Mapping[str, Any], aliases: tuple[str, ...]) -> Any:
    for alias in aliases:
        value = body.get(alias)
        if value is not None and value != "":
            return value
    return None


def order_number_from_session(session_id: str) -> str:
    """Strip the per-attempt suffix: ``DTS-2026-000123-a1b2c3d4`` -> ``DTS-2026-000123``.

    Anything that does not follow the order-number layout is returned untouched.
    """

    parts = session_id.split("-")
    if (
        len(parts) >= 3
        and parts[0] == _ORDER_NUMBER_PREFIX
        and _YEAR.match(parts[1])
        and _SEQUENCE.match(parts[2])
    ):
        return "-".join(parts[:3])
    return session_id


def normalize_webhook_payload(body: Mapping[str, Any]) -> WebhookNotification:
    """Build a ``WebhookNotification`` from a JSON or form body.

    Raises:
        ValidationError: when a required field is missing or the amount is not an integer.
    """

    values = {field: _pick(body, aliases) for field, aliases in _FIELD_ALIASES.items()}
    missing = sorted(field for field, value in values.items() if value is None)
    if missing:
        raise ValidationError("Missing required fields", details={"missing": missing})

    try:
        amount = int(str(values["amount"]).strip())
    except ValueError as error:
        raise ValidationError(
            "Amount must be an integer number of minor units",
            details={"amount": str(values["amount"])},
        ) from error

    return WebhookNotification(
        merchant_id=str(values["merchant_id"]).strip(),
        pos_id=str(values["pos_id"]).strip(),
        session_id=str(values["session_id"]).strip(),
        amount=amount,
        currency=str(values["currency"]).strip(),
        gateway_order_id=str(values["gateway_order_id"]).strip(),
        signature=str(values["signature"]).strip(),
        payload=dict(body),
    )
