"""Stripe webhook endpoint.

Deliveries are verified, logged once per event id and handed to Celery.
Redeliveries of an event that was already handled are acknowledged without
being queued again.
"""
from __future__ import annotations

import hashlib
import json
import logging
from typing import Any, Dict, Optional

from django.db import transaction
from django.http import HttpResponse
from django.utils.decorators import method_decorator
from django.views.decorators.csrf import csrf_exempt
from rest_framework.response import Response
from rest_framework.views import APIView

from billing.models import WebhookEventLog
from billing.observability.metrics import WEBHOOK_EVENT_COUNT
from billing.services.stripe_events import (
    StripeConfigurationError,
    StripeServiceError,
    StripeWebhookSignatureError,
    parse_event,
)
from billing.tasks import process_stripe_event_async

logger = logging.getLogger(__name__)


@method_decorator(csrf_exempt, name="dispatch")
class StripeWebhookView(APIView):
    authentication_classes = []
    permission_classes = []
    http_method_names = ["post"]

    def post(self, request, *args, **kwargs):
        try:
            payload = request.body.decode("utf-8")
        except UnicodeDecodeError:
            logger.error("Stripe webhook body is not valid UTF-8.")
            return HttpResponse(status=400)

        try:
            parse_event(payload=payload, sig_header=request.headers.get("Stripe-Signature") or "")
            event = json.loads(payload or "{}")
        except StripeWebhookSignatureError:
            WEBHOOK_EVENT_COUNT.labels(event_type="unknown", status="rejected").inc()
            return HttpResponse(status=400)
        except (StripeServiceError, ValueError) as exc:
            logger.warning("Malformed Stripe webhook payload: %s", exc)
            return HttpResponse(status=400)
        except StripeConfigurationError as exc:
            logger.error("Stripe webhook is not configured: %s", exc)
            return HttpResponse(status=500)

        event_type = event.get("type") or "unknown"
        handled = _mark_received(event, payload)
        if handled is not None:
            WEBHOOK_EVENT_COUNT.labels(event_type=event_type, status="duplicate").inc()
            logger.info("Stripe event %s already handled (%s).", event.get("id"), handled.status)
            return Response({"status": handled.status})

        process_stripe_event_async.delay(event)
        WEBHOOK_EVENT_COUNT.labels(event_type=event_type, status="queued").inc()
        return Response({"status": "queued"}, status=202)


def _mark_received(event: Dict[str, Any], payload: str) -> Optional[WebhookEventLog]:
    """Log the delivery; return the existing entry if the event was already handled."""
    event_id = event.get("id")
    if not event_id:
        logger.warning("Stripe event without an id; it will be processed without deduplication.")
        return None

    digest = hashlib.sha256(payload.encode("utf-8")).hexdigest()
    with transaction.atomic():
        entry, created = WebhookEventLog.objects.select_for_update().get_or_create(
            event_id=event_id,
            defaults={"event_type": event.get("type") or "", "payload_hash": digest},
        )
        if created:
            return None
        if entry.handled:
            return entry

        # A previous attempt failed or is still in flight; queue it again.
        entry.event_type = event.get("type") or entry.event_type
        entry.payload_hash = digest
        entry.status = WebhookEventLog.Status.RECEIVED
        entry.last_error = ""
        entry.processed_at = None
        entry.save(update_fields=["event_type", "payload_hash", "status", "last_error", "processed_at"])
    return None
