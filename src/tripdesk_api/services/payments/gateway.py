"""HTTP client for the payment gateway REST API (Przelewy24-compatible)."""

from __future__ import annotations

import hashlib
import hmac
import json
from dataclasses import dataclass, field
from typing import Any, Dict

import httpx
from loguru import logger

from tripdesk_api.core.errors import GatewayUnavailableError
from tripdesk_api.core.settings import Settings, settings as default_settings

from .webhook import WebhookNotification


VERIFY_SUCCESS = "success"


@dataclass(frozen=True)
class VerificationRequest:
    session_id: str
    gateway_order_id: int
    amount: int
    currency: str


@dataclass(frozen=True)
class VerificationResult:
    status: str
    message: str | None = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == VERIFY_SUCCESS


@dataclass(frozen=True)
class RegistrationRequest:
    session_id: str
    amount: int
    currency: str
    description: str
    email: str
    client: str
    url_return: str
    url_status: str
    phone: str | None = None
    country: str = "PL"
    language: str = "pl"
    time_limit_minutes: int = 15


@dataclass(frozen=True)
class RegistrationResult:
    token: str
    raw: Dict[str, Any]


def _sha384(data: str) -> str:
    return hashlib.sha384(data.encode("utf-8")).hexdigest()


def _compact_json(payload: Dict[str, Any]) -> str:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


def _as_int(value: str) -> int | None:
    try:
        return int(value)
    except ValueError:
        return None


class GatewayClient:
    """Signature checks and authoritative API calls against the gateway.

    The client never touches the database. Transport failures, timeouts and
    rejected requests are raised as ``GatewayUnavailableError`` so callers can
    tell "the gateway said no" apart from "we could not ask".
    """

    def __init__(
        self,
        *,
        merchant_id: int,
        pos_id: int,
        api_key: str,
        crc_key: str,
        api_url: str,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.merchant_id = merchant_id
        self.pos_id = pos_id
        self._api_key = api_key
        self._crc_key = crc_key
        self.api_url = api_url.rstrip("/")
        self._timeout_seconds = timeout_seconds
        self._transport = transport

        if len(api_key) < 16:
            logger.warning(
                "Gateway API key looks too short",
                key_length=len(api_key),
                api_url=self.api_url,
            )

    @classmethod
    def from_settings(
        cls,
        config: Settings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "GatewayClient":
        if not config.gateway_pos_id or not config.gateway_api_key or not config.gateway_crc_key:
            raise ValueError("Gateway credentials are not configured")
        return cls(
            merchant_id=config.gateway_merchant_id or config.gateway_pos_id,
            pos_id=config.gateway_pos_id,
            api_key=config.gateway_api_key,
            crc_key=config.gateway_crc_key,
            api_url=config.gateway_api_url,
            timeout_seconds=config.gateway_timeout_seconds,
            transport=transport,
        )

    def payment_url(self, token: str) -> str:
        return f"{self.api_url}/trnRequest/{token}"

    # Signatures ---------------------------------------------------------

    def signature_candidates(self, notification: WebhookNotification) -> Dict[str, str]:
        """Digests of every notification layout the gateway is known to sign."""

        crc = self._crc_key
        session_id = notification.session_id
        order_id = notification.gateway_order_id
        amount = str(notification.amount)
        currency = notification.currency
        merchant_id = notification.merchant_id
        pos_id = notification.pos_id

        candidates = {
            "pipe_session_order": _sha384(f"{session_id}|{order_id}|{amount}|{currency}|{crc}"),
            "pipe_merchant_pos": _sha384(
                f"{merchant_id}|{pos_id}|{session_id}|{amount}|{currency}|{order_id}|{crc}"
            ),
            "json_session_order_str": _sha384(
                _compact_json(
                    {"sessionId": session_id, "orderId": order_id, "amount": amount, "currency": currency, "crc": crc}
                )
            ),
            "json_merchant_pos_str": _sha384(
                _compact_json(
                    {
                        "merchantId": merchant_id,
                        "posId": pos_id,
                        "sessionId": session_id,
                        "amount": amount,
                        "currency": currency,
                        "orderId": order_id,
                        "crc": crc,
                    }
                )
            ),
        }

        order_id_num = _as_int(order_id)
        if order_id_num is not None:
            candidates["json_session_order_num"] = _sha384(
                _compact_json(
                    {
                        "sessionId": session_id,
                        "orderId": order_id_num,
                        "amount": notification.amount,
                        "currency": currency,
                        "crc": crc,
                    }
                )
            )
            merchant_num = _as_int(merchant_id)
            pos_num = _as_int(pos_id)
            if merchant_num is not None and pos_num is not None:
                candidates["json_merchant_pos_num"] = _sha384(
                    _compact_json(
                        {
                            "merchantId": merchant_num,
                            "posId": pos_num,
                            "sessionId": session_id,
                            "amount": notification.amount,
                            "currency": currency,
                            "orderId": order_id_num,
                            "crc": crc,
                        }
                    )
                )
        return candidates

    def verify_signature(self, notification: WebhookNotification) -> bool:
        """Check the notification signature against the accepted layouts.

        A mismatch is only logged. The verify call is the authoritative check,
        so callers treat the result as an audit signal rather than a gate.
        """

        if notification.merchant_id != str(self.merchant_id) or notification.pos_id != str(self.pos_id):
            logger.warning(
                "Gateway webhook credentials mismatch",
                session_id=notification.session_id,
                merchant_id=notification.merchant_id,
                pos_id=notification.pos_id,
            )
            return False

        incoming = notification.signature.lower()
        candidates = self.signature_candidates(notification)
        for layout, digest in candidates.items():
            if hmac.compare_digest(digest, incoming):
                logger.debug("Gateway webhook signature matched", layout=layout)
                return True

        logger.warning(
            "Gateway webhook signature mismatch",
            session_id=notification.session_id,
            gateway_order_id=notification.gateway_order_id,
            amount=notification.amount,
            currency=notification.currency,
            received_preview=f"{incoming[:12]}...",
            candidate_previews={layout: f"{digest[:12]}..." for layout, digest in candidates.items()},
        )
        return False

    def _verify_signs(self, request: VerificationRequest) -> list[tuple[str, str]]:
        json_sign = _sha384(
            _compact_json(
                {
                    "sessionId": request.session_id,
                    "orderId": request.gateway_order_id,
                    "amount": request.amount,
                    "currency": request.currency,
                    "crc": self._crc_key,
                }
            )
        )
        pipe_sign = _sha384(
            f"{request.session_id}|{request.gateway_order_id}|{request.amount}|{request.currency}|{self._crc_key}"
        )
        return [("json", json_sign), ("pipe", pipe_sign)]

    def _register_signs(self, request: RegistrationRequest) -> list[tuple[str, str]]:
        json_sign = _sha384(
            _compact_json(
                {
                    "sessionId": request.session_id,
                    "merchantId": self.merchant_id,
                    "amount": request.amount,
                    "currency": request.currency,
                    "crc": self._crc_key,
                }
            )
        )
        pipe_sign = _sha384(
            f"{request.session_id}|{self.merchant_id}|{request.amount}|{request.currency}|{self._crc_key}"
        )
        return [("json", json_sign), ("pipe", pipe_sign)]

    # API calls ----------------------------------------------------------

    async def verify_transaction(self, request: VerificationRequest) -> VerificationResult:
        """Ask the gateway whether the transaction really settled.

        Returns the gateway's verdict. A timeout or transport failure raises
        ``GatewayUnavailableError`` and must never be read as a failed payment.
        """

        payload = {
            "merchantId": self.merchant_id,
            "posId": self.pos_id,
            "sessionId": request.session_id,
            "amount": request.amount,
            "currency": request.currency,
            "orderId": request.gateway_order_id,
        }
        body = await self._send_signed(
            "PUT",
            "/api/v1/transaction/verify",
            payload,
            self._verify_signs(request),
            operation="verify",
        )
        data = body.get("data") if isinstance(body.get("data"), dict) else {}
        status = str(data.get("status") or "error")
        message = data.get("message") or body.get("error")
        logger.info(
            "Gateway verify completed",
            session_id=request.session_id,
            gateway_order_id=request.gateway_order_id,
            status=status,
        )
        return VerificationResult(status=status, message=message, raw=body)

    async def register_transaction(self, request: RegistrationRequest) -> RegistrationResult:
        payload: Dict[str, Any] = {
            "merchantId": self.merchant_id,
            "posId": self.pos_id,
            "sessionId": request.session_id,
            "amount": request.amount,
            "currency": request.currency,
            "description": request.description,
            "email": request.email,
            "client": request.client,
            "country": request.country,
            "language": request.language,
            "urlReturn": request.url_return,
            "urlStatus": request.url_status,
            "timeLimit": request.time_limit_minutes,
        }
        if request.phone:
            payload["phone"] = request.phone

        body = await self._send_signed(
            "POST",
            "/api/v1/transaction/register",
            payload,
            self._register_signs(request),
            operation="register",
        )
        data = body.get("data") if isinstance(body.get("data"), dict) else {}
        token = data.get("token")
        if not token:
            raise GatewayUnavailableError(
                "Gateway register response did not include a token",
                details={"session_id": request.session_id},
            )
        logger.info("Gateway transaction registered", session_id=request.session_id)
        return RegistrationResult(token=str(token), raw=body)

    async def _send_signed(
        self,
        method: str,
        path: str,
        payload: Dict[str, Any],
        signs: list[tuple[str, str]],
        *,
        operation: str,
    ) -> Dict[str, Any]:
        """Send ``payload`` signed with each layout in turn until one is accepted."""

        url = f"{self.api_url}{path}"
        rejected: list[dict[str, Any]] = []
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout_seconds,
                auth=(str(self.pos_id), self._api_key),
                transport=self._transport,
            ) as client:
                for sign_format, sign in signs:
                    response = await client.request(
                        method,
                        url,
                        json={**payload, "sign": sign},
                        headers={"Accept": "application/json"},
                    )
                    try:
                        response.raise_for_status()
                    except httpx.HTTPStatusError as exc:
                        rejected.append(
                            {
                                "format": sign_format,
                                "status": exc.response.status_code,
                                "body": exc.response.text[:256],
                            }
                        )
                        continue
                    if rejected:
                        logger.warning(
                            "Gateway accepted fallback signature layout",
                            operation=operation,
                            sign_format=sign_format,
                        )
                    try:
                        body = response.json()
                    except ValueError as exc:
                        raise GatewayUnavailableError(
                            f"Gateway {operation} returned invalid JSON",
                            details={"status": response.status_code},
                        ) from exc
                    return body if isinstance(body, dict) else {"data": body}
        except httpx.TimeoutException as exc:
            logger.warning("Gateway request timed out", operation=operation, url=url)
            raise GatewayUnavailableError(
                f"Gateway {operation} timed out",
                details={"timeout_seconds": self._timeout_seconds},
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("Gateway request failed", operation=operation, url=url, error=str(exc))
            raise GatewayUnavailableError(f"Gateway {operation} request failed", details={"error": str(exc)}) from exc

        logger.error("Gateway rejected every signature layout", operation=operation, attempts=rejected)
        raise GatewayUnavailableError(
            f"Gateway {operation} error",
            details={"attempts": rejected},
        )


def build_gateway_client(
    config: Settings | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> GatewayClient | None:
    """Return a configured client, or None when the gateway is not set up."""

    try:
        return GatewayClient.from_settings(config or default_settings, transport=transport)
    except ValueError:
        return None
