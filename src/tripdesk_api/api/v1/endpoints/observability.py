"""Observability endpoints for payment flows."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from tripdesk_api.api.dependencies.security import require_admin_api_key
from tripdesk_api.observability.payments import get_payment_store


router = APIRouter(
    prefix="/observability",
    tags=["Observability"],
    dependencies=[Depends(require_admin_api_key)],
)


def _format_metric(name: str, description: str, value: int | float, labels: dict[str, str] | None = None) -> list[str]:
    label_fragment = ""
    if labels:
        formatted = ",".join(f'{key}="{val}"' for key, val in sorted(labels.items()))
        label_fragment = f"{{{formatted}}}"
    return [
        f"# HELP {name} {description}",
        f"# TYPE {name} counter",
        f"{name}{label_fragment} {value}",
    ]


@router.get("/payments", summary="Payment observability snapshot")
async def get_payments_snapshot() -> dict[str, object]:
    return get_payment_store().snapshot().as_dict()


@router.get(
    "/prometheus",
    summary="Prometheus-formatted payment metrics",
    response_class=PlainTextResponse,
)
async def get_prometheus_metrics() -> PlainTextResponse:
    snapshot = get_payment_store().snapshot()
    lines: list[str] = []

    lines.extend(
        _format_metric(
            "tripdesk_payments_initiation_succeeded_total",
            "Payment attempts created",
            snapshot.initiation_totals.get("succeeded", 0),
        )
    )
    lines.extend(
        _format_metric(
            "tripdesk_payments_initiation_failed_total",
            "Payment initiation requests rejected or failed",
            snapshot.initiation_totals.get("failed", 0),
        )
    )
    for outcome, value in sorted(snapshot.webhook_totals.items()):
        lines.extend(
            _format_metric(
                "tripdesk_payments_webhook_events_total",
                "Gateway notifications grouped by outcome",
                value,
                labels={"outcome": outcome},
            )
        )
    for key, value in sorted(snapshot.sweep_totals.items()):
        lines.extend(
            _format_metric(
                f"tripdesk_reservation_sweep_{key}_total",
                "Reservation sweeper totals",
                value,
            )
        )

    return PlainTextResponse("\n".join(lines) + "\n")
