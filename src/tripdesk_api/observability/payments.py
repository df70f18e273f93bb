"""In-memory observability helper for payment initiation, gateway webhooks and sweeps."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from threading import Lock
from typing import Dict

from tripdesk_api.core.clock import utcnow


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass
class InitiationEventLog:
    last_success_at: datetime | None = None
    last_success_payment_id: str | None = None
    last_failure_at: datetime | None = None
    last_failure_reason: str | None = None


@dataclass
class WebhookEventLog:
    last_event_at: datetime | None = None
    last_outcome: str | None = None
    last_session_id: str | None = None
    last_failure_at: datetime | None = None
    last_failure_reason: str | None = None


@dataclass
class SweepEventLog:
    last_run_at: datetime | None = None
    last_summary: Dict[str, int] = field(default_factory=dict)


@dataclass
class PaymentObservabilitySnapshot:
    initiation_totals: Dict[str, int]
    webhook_totals: Dict[str, int]
    sweep_totals: Dict[str, int]
    initiation_events: InitiationEventLog
    webhook_events: WebhookEventLog
    sweep_events: SweepEventLog

    def as_dict(self) -> Dict[str, object]:
        return {
            "initiation": {
                "totals": self.initiation_totals,
                "events": {
                    "last_success_at": _iso(self.initiation_events.last_success_at),
                    "last_success_payment_id": self.initiation_events.last_success_payment_id,
                    "last_failure_at": _iso(self.initiation_events.last_failure_at),
                    "last_failure_reason": self.initiation_events.last_failure_reason,
                },
            },
            "webhooks": {
                "totals": self.webhook_totals,
                "events": {
                    "last_event_at": _iso(self.webhook_events.last_event_at),
                    "last_outcome": self.webhook_events.last_outcome,
                    "last_session_id": self.webhook_events.last_session_id,
                    "last_failure_at": _iso(self.webhook_events.last_failure_at),
                    "last_failure_reason": self.webhook_events.last_failure_reason,
                },
            },
            "sweeps": {
                "totals": self.sweep_totals,
                "events": {
                    "last_run_at": _iso(self.sweep_events.last_run_at),
                    "last_summary": self.sweep_events.last_summary,
                },
            },
        }


@dataclass
class PaymentObservabilityStore:
    _lock: Lock = field(default_factory=Lock)
    _initiation_totals: Counter = field(default_factory=Counter)
    _initiation_events: InitiationEventLog = field(default_factory=InitiationEventLog)
    _webhook_totals: Counter = field(default_factory=Counter)
    _webhook_events: WebhookEventLog = field(default_factory=WebhookEventLog)
    _sweep_totals: Counter = field(default_factory=Counter)
    _sweep_events: SweepEventLog = field(default_factory=SweepEventLog)

    def record_initiation_success(self, payment_id: str | None) -> None:
        with self._lock:
            self._initiation_totals["succeeded"] += 1
            self._initiation_events.last_success_at = utcnow()
            self._initiation_events.last_success_payment_id = payment_id

    def record_initiation_failure(self, reason: str) -> None:
        with self._lock:
            self._initiation_totals["failed"] += 1
            self._initiation_events.last_failure_at = utcnow()
            self._initiation_events.last_failure_reason = reason

    def record_webhook(self, outcome: str, *, session_id: str | None, error: str | None = None) -> None:
        """Count a webhook by outcome (paid, failed, amount_mismatch, error, ...)."""

        with self._lock:
            self._webhook_totals[outcome] += 1
            now = utcnow()
            self._webhook_events.last_event_at = now
            self._webhook_events.last_outcome = outcome
            self._webhook_events.last_session_id = session_id
            if error is not None:
                self._webhook_events.last_failure_at = now
                self._webhook_events.last_failure_reason = error

    def record_sweep(self, summary: Dict[str, int]) -> None:
        with self._lock:
            self._sweep_totals["runs"] += 1
            for key, value in summary.items():
                self._sweep_totals[key] += value
            self._sweep_events.last_run_at = utcnow()
            self._sweep_events.last_summary = dict(summary)

    def snapshot(self) -> PaymentObservabilitySnapshot:
        with self._lock:
            return PaymentObservabilitySnapshot(
                initiation_totals=dict(self._initiation_totals),
                webhook_totals=dict(self._webhook_totals),
                sweep_totals=dict(self._sweep_totals),
                initiation_events=InitiationEventLog(**vars(self._initiation_events)),
                webhook_events=WebhookEventLog(**vars(self._webhook_events)),
                sweep_events=SweepEventLog(
                    last_run_at=self._sweep_events.last_run_at,
                    last_summary=dict(self._sweep_events.last_summary),
                ),
            )

    def reset(self) -> None:
        with self._lock:
            self._initiation_totals.clear()
            self._webhook_totals.clear()
            self._sweep_totals.clear()
            self._initiation_events = InitiationEventLog()
            self._webhook_events = WebhookEventLog()
            self._sweep_events = SweepEventLog()


_PAYMENT_STORE = PaymentObservabilityStore()


def get_payment_store() -> PaymentObservabilityStore:
    return _PAYMENT_STORE
