"""Celery tasks for Stripe event handling."""
from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Dict, Optional

from celery import shared_task
from django.db import IntegrityError, transaction
from django.utils import timezone

from billing.models import WebhookEventLog
from billing.observability.metrics import WEBHOOK_EVENT_COUNT
from billing.services.ledger import AccountNotFound, IdempotencyConflict, LedgerConflict
from billing.services.stripe_events import HandlerResult, WebhookProcessingError, dispatch_event

logger = logging.getLogger(__name__)


@shared_task(
    bind=True,
    queue="billing",
    autoretry_for=(IntegrityError, LedgerConflict),
    retry_backoff=True,
    max_retries=5,
)
def process_stripe_event_async(self, event_data: Dict[str, Any]) -> Dict[str, Any]:
    """Process a Stripe webhook event at most once per event id."""

    event_id = event_data.get("id")
    event_type = event_data.get("type") or ""

    log_entry, already_processed = _claim_event_log(event_id, event_type)
    if already_processed:
        logger.info("Skipping Stripe event %s (%s); already handled.", event_id, event_type)
        return {"status": "skipped"}

    try:
        with transaction.atomic():
            result = dispatch_event(event_id=event_id or "", event_type=event_type, payload=event_data)
    except (WebhookProcessingError, IdempotencyConflict, AccountNotFound) as exc:
        logger.warning("Webhook processing error for event %s: %s", event_id, exc)
        _mark_event_failed(log_entry, str(exc))
        WEBHOOK_EVENT_COUNT.labels(event_type=event_type, status="failed").inc()
        return {"status": "failed", "detail": str(exc)}

    status = (
        WebhookEventLog.Status.PROCESSED
        if result.status == HandlerResult.PROCESSED
        else WebhookEventLog.Status.IGNORED
    )
    _mark_event_completed(log_entry, status)
    WEBHOOK_EVENT_COUNT.labels(event_type=event_type, status=status).inc()
    logger.info("Processed Stripe event %s (%s): %s", event_id, event_type, result.detail or result.status)
    return {"status": result.status, "detail": result.detail}


def _claim_event_log(event_id: Optional[str], event_type: str):
    if not event_id:
        return None, False

    with transaction.atomic():
        log_entry, _ = WebhookEventLog.objects.select_for_update().get_or_create(
            event_id=event_id,
            defaults={"event_type": event_type, "status": WebhookEventLog.Status.RECEIVED},
        )
        return log_entry, log_entry.handled


def _mark_event_completed(log_entry: Optional[WebhookEventLog], status: str) -> None:
    if not log_entry:
        return
    log_entry.status = status
    log_entry.processed_at = timezone.now()
    log_entry.last_error = ""
    log_entry.handled = True
    log_entry.save(update_fields=["status", "processed_at", "last_error", "handled"])


def _mark_event_failed(log_entry: Optional[WebhookEventLog], error: str) -> None:
    if not log_entry:
        return
    log_entry.status = WebhookEventLog.Status.FAILED
    log_entry.last_error = error
    log_entry.processed_at = None
    log_entry.handled = False
    log_entry.save(update_fields=["status", "last_error", "processed_at", "handled"])


@shared_task(queue="billing")
def cleanup_webhook_event_logs(days: int = 7) -> int:
    """Remove processed webhook events older than ``days`` days."""

    cutoff = timezone.now() - timedelta(days=days)
    deleted, _ = WebhookEventLog.objects.filter(
        status=WebhookEventLog.Status.PROCESSED,
        handled=True,
        processed_at__lt=cutoff,
    ).delete()
    logger.info("Cleaned up %s processed webhook events older than %s days.", deleted, days)
    return deleted
