"""Stripe webhook verification and event handlers."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone as dt_timezone
from typing import Any, Dict, Optional, Tuple

import stripe
from django.conf import settings

from billing import plans
from billing.models import Account, CreditTransaction
from billing.services import subscriptions, wallet

logger = logging.getLogger(__name__)


class StripeConfigurationError(RuntimeError):
    """Raised when Stripe credentials are missing."""


class StripeServiceError(RuntimeError):
    """Raised when Stripe rejects or cannot parse a request."""


class StripeWebhookSignatureError(StripeServiceError):
    """Raised when a webhook signature does not verify."""


class WebhookProcessingError(Exception):
    """Raised when a webhook cannot be processed successfully."""


@dataclass(frozen=True)
class HandlerResult:
    """Outcome of a webhook handler invocation."""

    status: str
    detail: str = ""
    user_id: Optional[int] = None

    PROCESSED = "processed"
    IGNORED = "ignored"


def _configure_stripe() -> None:
    secret_key = getattr(settings, "STRIPE_SECRET_KEY", "")
    if not secret_key:
        raise StripeConfigurationError("STRIPE_SECRET_KEY is not configured.")
    stripe.api_key = secret_key
    api_version = getattr(settings, "STRIPE_API_VERSION", None)
    if api_version:
        stripe.api_version = api_version


def parse_event(payload: str, sig_header: str, secret: Optional[str] = None) -> stripe.Event:
    """Validate and deserialize a Stripe webhook payload."""

    if not sig_header:
        raise StripeWebhookSignatureError("Stripe-Signature header is missing.")

    webhook_secret = secret or getattr(settings, "STRIPE_WEBHOOK_SECRET", "")
    if not webhook_secret:
        raise StripeConfigurationError("STRIPE_WEBHOOK_SECRET is not configured.")

    _configure_stripe()

    try:
        return stripe.Webhook.construct_event(payload=payload, sig_header=sig_header, secret=webhook_secret)
    except stripe.SignatureVerificationError as exc:
        logger.warning("Stripe webhook signature verification failed: %s", exc)
        raise StripeWebhookSignatureError("Stripe webhook signature verification failed.") from exc
    except ValueError as exc:
        logger.error("Received malformed Stripe webhook payload: %s", exc)
        raise StripeServiceError("Malformed Stripe webhook payload.") from exc


def dispatch_event(*, event_id: str, event_type: str, payload: Dict[str, Any]) -> HandlerResult:
    """Route a Stripe webhook event to its dedicated handler."""

    handler = {
        "checkout.session.completed": _handle_checkout_session_completed,
        "customer.subscription.updated": _handle_subscription_updated,
        "customer.subscription.deleted": _handle_subscription_deleted,
        "invoice.payment_succeeded": _handle_invoice_payment_succeeded,
        "invoice.paid": _handle_invoice_payment_succeeded,
        "invoice.payment_failed": _handle_invoice_payment_failed,
    }.get(event_type)

    if handler is None:
        logger.info("Ignoring unsupported Stripe event type '%s'.", event_type)
        return HandlerResult(status=HandlerResult.IGNORED, detail="Unsupported event type")

    return handler(event_id=event_id, payload=payload)


def _event_object(payload: Dict[str, Any]) -> Dict[str, Any]:
    return (payload.get("data") or {}).get("object") or {}


def _coerce_timestamp(value: Any) -> Optional[datetime]:
    if value in (None, ""):
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=dt_timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None


def _coerce_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _user_for(*, subscription_id: Optional[str] = None, customer_id: Optional[str] = None) -> Optional[int]:
    queryset = Account.objects.none()
    if subscription_id:
        queryset = Account.objects.filter(stripe_subscription_id=subscription_id)
        if not queryset.exists() and customer_id:
            queryset = Account.objects.filter(stripe_customer_id=customer_id)
    elif customer_id:
        queryset = Account.objects.filter(stripe_customer_id=customer_id)
    return queryset.values_list("user_id", flat=True).first()


def _subscription_period(subscription: Dict[str, Any]) -> Tuple[Optional[datetime], Optional[datetime]]:
    start = _coerce_timestamp(subscription.get("current_period_start"))
    end = _coerce_timestamp(subscription.get("current_period_end"))
    if start is None or end is None:
        items = (subscription.get("items") or {}).get("data") or []
        if items and isinstance(items[0], dict):
            start = start or _coerce_timestamp(items[0].get("current_period_start"))
            end = end or _coerce_timestamp(items[0].get("current_period_end"))
    return start, end


def _subscription_price_id(subscription: Dict[str, Any]) -> Optional[str]:
    items = (subscription.get("items") or {}).get("data") or []
    for item in items:
        price = (item or {}).get("price") or {}
        if isinstance(price, dict) and price.get("id"):
            return price["id"]
    return None


def _extract_invoice_period(invoice: Dict[str, Any]) -> Tuple[Optional[datetime], Optional[datetime]]:
    """Derive the coverage window of an invoice from its line items."""

    period_start = _coerce_timestamp(invoice.get("period_start"))
    period_end = _coerce_timestamp(invoice.get("period_end"))

    lines = (invoice.get("lines") or {}).get("data") or []
    for line in lines:
        if not isinstance(line, dict):
            continue
        line_period = line.get("period") or {}
        line_start = _coerce_timestamp(line_period.get("start"))
        line_end = _coerce_timestamp(line_period.get("end"))
        if line_start and (period_start is None or line_start < period_start):
            period_start = line_start
        if line_end and (period_end is None or line_end > period_end):
            period_end = line_end

    return period_start, period_end


def _invoice_subscription_id(invoice: Dict[str, Any]) -> Optional[str]:
    subscription = invoice.get("subscription")
    if isinstance(subscription, dict):
        return subscription.get("id")
    if subscription:
        return subscription
    details = ((invoice.get("parent") or {}).get("subscription_details") or {})
    return details.get("subscription")


def _handle_checkout_session_completed(*, event_id: str, payload: Dict[str, Any]) -> HandlerResult:
    session = _event_object(payload)
    metadata = session.get("metadata") or {}
    user_id = _coerce_int(metadata.get("user_id") or session.get("client_reference_id"))
    if user_id is None:
        raise WebhookProcessingError(f"Checkout session {session.get('id')} carries no user_id.")

    if session.get("mode") == "subscription":
        plan_id = metadata.get("plan_id")
        if not plan_id or plans.get_plan(plan_id) is None:
            raise WebhookProcessingError(f"Checkout session {session.get('id')} references unknown plan '{plan_id}'.")
        subscriptions.activate_subscription(
            user_id,
            plan_id,
            stripe_customer_id=session.get("customer") or None,
            stripe_subscription_id=session.get("subscription") or None,
        )
        return HandlerResult(status=HandlerResult.PROCESSED, detail=f"Activated {plan_id}", user_id=user_id)

    credits = _coerce_int(metadata.get("credits"))
    if not credits or credits <= 0:
        return HandlerResult(status=HandlerResult.IGNORED, detail="Checkout without credits", user_id=user_id)

    result = wallet.grant_credits(
        user_id,
        credits,
        reason="Credit purchase",
        type=CreditTransaction.TransactionType.PURCHASE,
        idempotency_key=f"stripe:checkout:{session.get('id') or event_id}",
        metadata={"stripe_event_id": event_id, "amount_total": session.get("amount_total")},
    )
    detail = f"Granted {credits} credits" if result.created else "Credits already granted"
    return HandlerResult(status=HandlerResult.PROCESSED, detail=detail, user_id=user_id)


def _handle_subscription_updated(*, event_id: str, payload: Dict[str, Any]) -> HandlerResult:
    subscription = _event_object(payload)
    start, end = _subscription_period(subscription)
    account = subscriptions.sync_subscription_status(
        subscription.get("id") or "",
        status=subscription.get("status") or "",
        period_start=start,
        period_end=end,
        price_id=_subscription_price_id(subscription),
    )
    if account is None:
        return HandlerResult(status=HandlerResult.IGNORED, detail="Unknown subscription")
    return HandlerResult(status=HandlerResult.PROCESSED, detail=account.subscription_status, user_id=account.user_id)


def _handle_subscription_deleted(*, event_id: str, payload: Dict[str, Any]) -> HandlerResult:
    subscription = _event_object(payload)
    user_id = _user_for(subscription_id=subscription.get("id"), customer_id=subscription.get("customer"))
    if user_id is None:
        return HandlerResult(status=HandlerResult.IGNORED, detail="Unknown subscription")
    subscriptions.cancel_subscription(user_id)
    return HandlerResult(status=HandlerResult.PROCESSED, detail="Subscription canceled", user_id=user_id)


def _handle_invoice_payment_succeeded(*, event_id: str, payload: Dict[str, Any]) -> HandlerResult:
    invoice = _event_object(payload)
    user_id = _user_for(subscription_id=_invoice_subscription_id(invoice), customer_id=invoice.get("customer"))
    if user_id is None:
        return HandlerResult(status=HandlerResult.IGNORED, detail="No subscription account for invoice")
    start, end = _extract_invoice_period(invoice)
    subscriptions.roll_over_cycle(user_id, start, end)
    return HandlerResult(status=HandlerResult.PROCESSED, detail="Billing cycle rolled over", user_id=user_id)


def _handle_invoice_payment_failed(*, event_id: str, payload: Dict[str, Any]) -> HandlerResult:
    invoice = _event_object(payload)
    user_id = _user_for(subscription_id=_invoice_subscription_id(invoice), customer_id=invoice.get("customer"))
    if user_id is None:
        return HandlerResult(status=HandlerResult.IGNORED, detail="No subscription account for invoice")
    subscriptions.mark_past_due(user_id)
    return HandlerResult(status=HandlerResult.PROCESSED, detail="Subscription past due", user_id=user_id)
