"""Subscription lifecycle: activation, status sync, cancellation, cycle rollover, trial."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional

from django.utils import timezone

from billing import plans
from billing.models import Account
from billing.observability.logging import log_billing_event
from billing.services import ledger

logger = logging.getLogger(__name__)

DEFAULT_CYCLE_DAYS = 30

# Stripe subscription statuses that have no direct local counterpart.
STRIPE_STATUS_MAP = {
    "incomplete_expired": Account.SubscriptionStatus.CANCELED,
    "unpaid": Account.SubscriptionStatus.PAST_DUE,
    "paused": Account.SubscriptionStatus.PAST_DUE,
}


class SubscriptionError(ledger.LedgerError):
    """Base exception for subscription lifecycle operations."""


class TrialAlreadyUsed(SubscriptionError):
    """Raised when an account asks for a second free trial."""


def normalize_status(status: Optional[str]) -> str:
    if not status:
        return Account.SubscriptionStatus.NONE
    mapped = STRIPE_STATUS_MAP.get(status, status)
    if mapped not in Account.SubscriptionStatus.values:
        logger.warning("Unknown subscription status '%s'; treating as incomplete.", status)
        return Account.SubscriptionStatus.INCOMPLETE
    return mapped


def _default_period(period_start: Optional[datetime], period_end: Optional[datetime]):
    start = period_start or timezone.now()
    end = period_end or (start + timedelta(days=DEFAULT_CYCLE_DAYS))
    return start, end


def activate_subscription(
    user_id,
    plan_id: str,
    *,
    status: str = Account.SubscriptionStatus.ACTIVE,
    period_start: Optional[datetime] = None,
    period_end: Optional[datetime] = None,
    stripe_customer_id: Optional[str] = None,
    stripe_subscription_id: Optional[str] = None,
) -> Account:
    """Put the account on ``plan_id`` and open a fresh billing cycle."""
    plan = plans.require_plan(plan_id)
    start, end = _default_period(period_start, period_end)

    def _attempt() -> Account:
        account = ledger.lock_account(user_id)
        changes = {
            "subscription_plan": plan.id,
            "subscription_status": normalize_status(status),
            "included_minutes_per_month": plan.included_minutes,
            "minutes_used_this_month": 0,
            "billing_cycle_start": start,
            "billing_cycle_end": end,
        }
        if stripe_customer_id:
            changes["stripe_customer_id"] = stripe_customer_id
        if stripe_subscription_id:
            changes["stripe_subscription_id"] = stripe_subscription_id
        return ledger.commit_account(account, **changes)

    account = ledger.run_in_ledger_transaction(_attempt, label=f"activate:{user_id}")
    log_billing_event(
        message="subscription.activated",
        user_id=user_id,
        extra={"plan": plan.id, "status": account.subscription_status, "included_minutes": plan.included_minutes},
    )
    return account


def sync_subscription_status(
    stripe_subscription_id: str,
    *,
    status: str,
    period_start: Optional[datetime] = None,
    period_end: Optional[datetime] = None,
    price_id: Optional[str] = None,
) -> Optional[Account]:
    """Mirror a provider-side subscription change onto the local account.

    Returns ``None`` when no account is linked to ``stripe_subscription_id``.
    """
    if not stripe_subscription_id:
        raise ValueError("stripe_subscription_id is required.")

    user_id = (
        Account.objects.filter(stripe_subscription_id=stripe_subscription_id)
        .values_list("user_id", flat=True)
        .first()
    )
    if user_id is None:
        logger.warning("No billing account linked to subscription %s.", stripe_subscription_id)
        return None

    local_status = normalize_status(status)
    if local_status == Account.SubscriptionStatus.CANCELED:
        return cancel_subscription(user_id)

    plan = plans.get_plan_by_price_id(price_id)

    def _attempt() -> Account:
        account = ledger.lock_account(user_id)
        changes = {"subscription_status": local_status}
        if plan is not None and plan.id != account.subscription_plan:
            changes["subscription_plan"] = plan.id
            changes["included_minutes_per_month"] = plan.included_minutes
        if period_start and (account.billing_cycle_start is None or period_start > account.billing_cycle_start):
            changes["minutes_used_this_month"] = 0
            changes["billing_cycle_start"] = period_start
            changes["billing_cycle_end"] = period_end or account.billing_cycle_end
        elif period_end:
            changes["billing_cycle_end"] = period_end
        return ledger.commit_account(account, **changes)

    account = ledger.run_in_ledger_transaction(_attempt, label=f"sync:{stripe_subscription_id}")
    log_billing_event(
        message="subscription.synced",
        user_id=user_id,
        extra={"status": local_status, "plan": account.subscription_plan},
    )
    return account


def cancel_subscription(user_id) -> Account:
    """Drop the account back to credits-only; in-flight reservations stay held."""

    def _attempt() -> Account:
        account = ledger.lock_account(user_id)
        return ledger.commit_account(
            account,
            subscription_plan=plans.NO_PLAN,
            subscription_status=Account.SubscriptionStatus.CANCELED,
            included_minutes_per_month=0,
        )

    account = ledger.run_in_ledger_transaction(_attempt, label=f"cancel:{user_id}")
    log_billing_event(message="subscription.canceled", user_id=user_id)
    return account


def mark_past_due(user_id) -> Account:
    def _attempt() -> Account:
        account = ledger.lock_account(user_id)
        return ledger.commit_account(account, subscription_status=Account.SubscriptionStatus.PAST_DUE)

    account = ledger.run_in_ledger_transaction(_attempt, label=f"past_due:{user_id}")
    log_billing_event(message="subscription.past_due", user_id=user_id)
    return account


def roll_over_cycle(
    user_id,
    period_start: Optional[datetime] = None,
    period_end: Optional[datetime] = None,
) -> Account:
    """Start a new billing cycle.

    ``minutes_used_this_month`` goes back to zero; ``minutes_reserved`` is kept
    so jobs already in flight can still be confirmed or released.
    """
    start, end = _default_period(period_start, period_end)

    def _attempt() -> Account:
        account = ledger.lock_account(user_id)
        changes = {
            "minutes_used_this_month": 0,
            "billing_cycle_start": start,
            "billing_cycle_end": end,
        }
        if account.subscription_status == Account.SubscriptionStatus.PAST_DUE and account.subscription_plan != plans.NO_PLAN:
            changes["subscription_status"] = Account.SubscriptionStatus.ACTIVE
        return ledger.commit_account(account, **changes)

    account = ledger.run_in_ledger_transaction(_attempt, label=f"rollover:{user_id}")
    log_billing_event(
        message="subscription.cycle_rolled_over",
        user_id=user_id,
        extra={"cycle_start": start.isoformat(), "cycle_end": end.isoformat()},
    )
    return account


def start_free_trial(user_id) -> Account:
    """Grant the one-off free trial as a trialing subscription."""
    trial = plans.TRIAL_PLAN

    def _attempt() -> Account:
        account = ledger.lock_account(user_id)
        if account.trial_used:
            raise TrialAlreadyUsed(f"User {user_id} has already used the free trial.")
        if account.has_active_subscription:
            raise SubscriptionError(f"User {user_id} already has an active subscription.")
        start, end = _default_period(None, None)
        return ledger.commit_account(
            account,
            subscription_plan=trial.id,
            subscription_status=Account.SubscriptionStatus.TRIALING,
            included_minutes_per_month=trial.included_minutes,
            minutes_used_this_month=0,
            billing_cycle_start=start,
            billing_cycle_end=end,
            trial_used=True,
        )

    account = ledger.run_in_ledger_transaction(_attempt, label=f"trial:{user_id}")
    log_billing_event(
        message="subscription.trial_started",
        user_id=user_id,
        extra={"included_minutes": trial.included_minutes},
    )
    return account
