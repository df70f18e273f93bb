from fastapi import Header, HTTPException, Request, status
from loguru import logger

from tripdesk_api.core.settings import settings


async def require_admin_api_key(x_api_key: str = Header("", alias="X-API-Key")) -> None:
    if not settings.admin_api_key:
        return

    if x_api_key != settings.admin_api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
        )


def _client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


async def require_gateway_source(request: Request) -> None:
    """Reject webhook calls from outside ``GATEWAY_WEBHOOK_ALLOWED_IPS`` when configured."""

    allowed = settings.gateway_webhook_allowed_ips
    if not allowed:
        return

    client_ip = _client_ip(request)
    if client_ip not in allowed:
        logger.warning("Rejected gateway webhook from unexpected address", client_ip=client_ip)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Webhook source not allowed",
        )
