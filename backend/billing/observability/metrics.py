"""Prometheus metrics helpers for billing and transcription processing."""
from __future__ import annotations

from prometheus_client import Counter, Histogram

RESERVATION_COUNT = Counter(
    "billing_reservation_total",
    "Reservation attempts by outcome and funding source",
    labelnames=("mode", "outcome", "source"),
)

RECONCILIATION_COUNT = Counter(
    "billing_reconciliation_total",
    "Reservations reconciled, by kind (confirm/release)",
    labelnames=("kind",),
)

CREDIT_GRANT_COUNT = Counter(
    "billing_credit_grant_total",
    "Wallet credit grants by transaction type",
    labelnames=("type",),
)

WEBHOOK_EVENT_COUNT = Counter(
    "billing_webhook_event_total",
    "Payment-provider webhook events by type and handling status",
    labelnames=("event_type", "status"),
)

JOB_TRANSITION_COUNT = Counter(
    "transcription_job_transition_total",
    "Transcription job status transitions",
    labelnames=("from_status", "to_status"),
)

PROVIDER_ERROR_COUNT = Counter(
    "transcription_provider_error_total",
    "Errors raised while talking to the transcription provider",
    labelnames=("kind",),
)

PROVIDER_SUBMIT_LATENCY = Histogram(
    "transcription_provider_submit_duration_seconds",
    "Latency of provider submissions",
    labelnames=("strategy",),
    buckets=(0.25, 0.5, 1, 2, 5, 10, 30, 60, 120, 300),
)
