import json
import time
from unittest.mock import patch

import pytest
from rest_framework.test import APIClient

from billing.models import Account, CreditTransaction, WebhookEventLog
from billing.services.stripe_events import (
    HandlerResult,
    StripeWebhookSignatureError,
    WebhookProcessingError,
    dispatch_event,
    parse_event,
)
from billing.services.subscriptions import activate_subscription
from billing.tasks import process_stripe_event_async


def _event(event_id, event_type, obj):
    return {"id": event_id, "type": event_type, "data": {"object": obj}}


@pytest.mark.django_db
def test_checkout_credit_purchase_grants_credits(user):
    event = _event(
        "evt_1",
        "checkout.session.completed",
        {"id": "cs_1", "mode": "payment", "metadata": {"user_id": str(user.pk), "credits": "1000"}},
    )

    result = dispatch_event(event_id="evt_1", event_type=event["type"], payload=event)

    assert result.status == HandlerResult.PROCESSED
    assert Account.objects.get(user=user).credits == 1000
    assert CreditTransaction.objects.get(idempotency_key="stripe:checkout:cs_1").amount == 1000


@pytest.mark.django_db
def test_checkout_subscription_activates_plan(user):
    event = _event(
        "evt_2",
        "checkout.session.completed",
        {
            "id": "cs_2",
            "mode": "subscription",
            "client_reference_id": str(user.pk),
            "customer": "cus_9",
            "subscription": "sub_9",
            "metadata": {"plan_id": "hybrid-professional"},
        },
    )

    dispatch_event(event_id="evt_2", event_type=event["type"], payload=event)

    account = Account.objects.get(user=user)
    assert account.subscription_plan == "hybrid-professional"
    assert account.included_minutes_per_month == 750
    assert account.stripe_subscription_id == "sub_9"


@pytest.mark.django_db
def test_checkout_without_user_is_an_error():
    event = _event("evt_3", "checkout.session.completed", {"id": "cs_3", "metadata": {}})

    with pytest.raises(WebhookProcessingError):
        dispatch_event(event_id="evt_3", event_type=event["type"], payload=event)


@pytest.mark.django_db
def test_invoice_events_roll_over_and_mark_past_due(user):
    activate_subscription(user.pk, "ai-starter", stripe_customer_id="cus_1", stripe_subscription_id="sub_1")
    Account.objects.filter(user=user).update(minutes_used_this_month=250)

    failed = _event("evt_4", "invoice.payment_failed", {"subscription": "sub_1", "customer": "cus_1"})
    dispatch_event(event_id="evt_4", event_type=failed["type"], payload=failed)
    assert Account.objects.get(user=user).subscription_status == "past_due"

    now = int(time.time())
    paid = _event(
        "evt_5",
        "invoice.payment_succeeded",
        {"subscription": "sub_1", "customer": "cus_1", "period_start": now, "period_end": now + 30 * 86400},
    )
    dispatch_event(event_id="evt_5", event_type=paid["type"], payload=paid)

    account = Account.objects.get(user=user)
    assert account.subscription_status == "active"
    assert account.minutes_used_this_month == 0


@pytest.mark.django_db
def test_unsupported_event_is_ignored():
    result = dispatch_event(event_id="evt_6", event_type="customer.created", payload={})
    assert result.status == HandlerResult.IGNORED


@pytest.mark.django_db
def test_task_processes_each_event_once(user):
    event = _event(
        "evt_7",
        "checkout.session.completed",
        {"id": "cs_7", "mode": "payment", "metadata": {"user_id": str(user.pk), "credits": "300"}},
    )

    first = process_stripe_event_async(event)
    second = process_stripe_event_async(event)

    assert first["status"] == HandlerResult.PROCESSED
    assert second["status"] == "skipped"
    assert Account.objects.get(user=user).credits == 300
    log_entry = WebhookEventLog.objects.get(event_id="evt_7")
    assert log_entry.handled
    assert log_entry.status == WebhookEventLog.Status.PROCESSED


@pytest.mark.django_db
def test_task_records_failures_for_redelivery():
    event = _event("evt_8", "checkout.session.completed", {"id": "cs_8", "metadata": {}})

    result = process_stripe_event_async(event)

    assert result["status"] == "failed"
    log_entry = WebhookEventLog.objects.get(event_id="evt_8")
    assert not log_entry.handled
    assert log_entry.status == WebhookEventLog.Status.FAILED


def test_parse_event_requires_signature_header():
    with pytest.raises(StripeWebhookSignatureError):
        parse_event(payload="{}", sig_header="")


@pytest.mark.django_db
def test_webhook_view_queues_and_deduplicates(user):
    event = _event(
        "evt_9",
        "checkout.session.completed",
        {"id": "cs_9", "mode": "payment", "metadata": {"user_id": str(user.pk), "credits": "200"}},
    )
    client = APIClient()

    with patch("billing.views_webhook.parse_event", return_value=event):
        first = client.post(
            "/api/billing/webhook/stripe/",
            data=json.dumps(event),
            content_type="application/json",
            HTTP_STRIPE_SIGNATURE="t=1,v1=abc",
        )
        second = client.post(
            "/api/billing/webhook/stripe/",
            data=json.dumps(event),
            content_type="application/json",
            HTTP_STRIPE_SIGNATURE="t=1,v1=abc",
        )

    assert first.status_code == 202
    assert second.status_code == 200
    assert Account.objects.get(user=user).credits == 200


@pytest.mark.django_db
def test_webhook_view_rejects_bad_signature():
    client = APIClient()

    with patch("billing.views_webhook.parse_event", side_effect=StripeWebhookSignatureError("bad")):
        response = client.post(
            "/api/billing/webhook/stripe/",
            data="{}",
            content_type="application/json",
            HTTP_STRIPE_SIGNATURE="t=1,v1=abc",
        )

    assert response.status_code == 400
