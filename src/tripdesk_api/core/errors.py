"""Application error taxonomy and FastAPI exception handlers."""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from loguru import logger


class AppError(Exception):
    """Base error carrying an HTTP status, a stable code and optional details."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        *,
        details: Dict[str, Any] | None = None,
        code: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if code:
            self.code = code


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"

    def __init__(self, resource: str, *, details: Dict[str, Any] | None = None) -> None:
        super().__init__(f"{resource} not found", details=details)
        self.resource = resource


class ValidationError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "VALIDATION_ERROR"


class ConflictError(AppError):
    status_code = status.HTTP_409_CONFLICT
    code = "CONFLICT"


class InfrastructureError(AppError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "SERVICE_UNAVAILABLE"


class GatewayUnavailableError(InfrastructureError):
    """Gateway call failed at the transport level (timeout, 5xx, rejected auth)."""

    code = "GATEWAY_UNAVAILABLE"


class GatewayNotConfiguredError(InfrastructureError):
    code = "GATEWAY_NOT_CONFIGURED"


class LedgerConflictError(ConflictError):
    """A ledger entry of the same type already exists for the order."""

    code = "LEDGER_DUPLICATE"


class InsufficientPointsError(ConflictError):
    code = "INSUFFICIENT_POINTS"


def _render(exc: AppError) -> Dict[str, Any]:
    body: Dict[str, Any] = {"error": exc.message, "code": exc.code}
    if exc.details:
        body["details"] = exc.details
    return body


async def handle_app_error(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.opt(exception=exc).error(
            "Request failed with infrastructure error",
            path=str(request.url.path),
            code=exc.code,
            error=exc.message,
        )
    else:
        logger.warning(
            "Request rejected",
            path=str(request.url.path),
            status_code=exc.status_code,
            code=exc.code,
            error=exc.message,
        )
    return JSONResponse(status_code=exc.status_code, content=_render(exc))


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, handle_app_error)  # type: ignore[arg-type]
