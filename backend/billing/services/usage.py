"""Usage reconciliation: turn a held reservation into usage, or give it back."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from django.db.models import Count, Q, Sum

from billing.models import Account, UsageRecord
from billing.observability.logging import log_billing_event
from billing.observability.metrics import RECONCILIATION_COUNT
from billing.services import ledger

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UsageConfirmation:
    record: UsageRecord
    created: bool


def resolve_usage_source(reserved_minutes: int, credits_used: int) -> str:
    if reserved_minutes > 0 and credits_used > 0:
        return UsageRecord.Source.OVERAGE
    if reserved_minutes > 0:
        return UsageRecord.Source.SUBSCRIPTION
    return UsageRecord.Source.CREDITS


def confirm_usage(
    user_id,
    job_id,
    mode: str,
    actual_minutes: int,
    reserved_minutes: int,
    *,
    credits_used: int = 0,
    source: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> UsageConfirmation:
    """Convert a reservation into confirmed usage for ``job_id``.

    Calling this twice for the same job returns the first record untouched.
    Subscription-funded minutes move from ``minutes_reserved`` to
    ``minutes_used_this_month``; usage beyond the plan allowance is recorded on
    the usage row but never pushes the account past its included minutes.
    """
    if actual_minutes < 0 or reserved_minutes < 0:
        raise ValueError("Minutes must be non-negative.")
    if job_id is None:
        raise ValueError("job_id is required to confirm usage.")

    usage_source = source or resolve_usage_source(reserved_minutes, credits_used)

    def _attempt() -> UsageConfirmation:
        account = ledger.lock_account(user_id)

        existing = UsageRecord.objects.filter(job_id=job_id).first()
        if existing is not None:
            return UsageConfirmation(record=existing, created=False)

        previous_used = account.minutes_used_this_month
        new_reserved = max(0, account.minutes_reserved - reserved_minutes)
        new_used = previous_used
        if reserved_minutes > 0:
            ceiling = max(previous_used, account.included_minutes_per_month - new_reserved)
            new_used = min(previous_used + actual_minutes, ceiling)

        ledger.commit_account(account, minutes_used_this_month=new_used, minutes_reserved=new_reserved)

        record_metadata = dict(metadata or {})
        record_metadata["reserved_minutes"] = reserved_minutes
        record_metadata["subscription_minutes"] = new_used - previous_used
        record = UsageRecord.objects.create(
            user_id=account.user_id,
            job_id=job_id,
            mode=mode,
            minutes_used=actual_minutes,
            credits_used=credits_used,
            source=usage_source,
            billing_cycle_start=account.billing_cycle_start,
            billing_cycle_end=account.billing_cycle_end,
            metadata=record_metadata,
        )
        return UsageConfirmation(record=record, created=True)

    result = ledger.run_in_ledger_transaction(_attempt, label=f"confirm:{job_id}")

    if result.created:
        RECONCILIATION_COUNT.labels(kind="confirm").inc()
        log_billing_event(
            message="usage.confirmed",
            user_id=user_id,
            job_id=job_id,
            extra={
                "mode": mode,
                "actual_minutes": actual_minutes,
                "reserved_minutes": reserved_minutes,
                "credits_used": credits_used,
                "source": usage_source,
            },
        )
    else:
        logger.info("Usage for job %s already confirmed; returning existing record.", job_id)
    return result


def release_reservation(user_id, reserved_minutes: int, *, job_id=None) -> Account:
    """Return held subscription minutes; the wallet is left alone."""
    if reserved_minutes < 0:
        raise ValueError("reserved_minutes must be non-negative.")

    def _attempt() -> Account:
        account = ledger.lock_account(user_id)
        if reserved_minutes == 0:
            return account
        return ledger.commit_account(
            account,
            minutes_reserved=max(0, account.minutes_reserved - reserved_minutes),
        )

    account = ledger.run_in_ledger_transaction(_attempt, label=f"release:{user_id}")

    RECONCILIATION_COUNT.labels(kind="release").inc()
    log_billing_event(
        message="reservation.released",
        user_id=user_id,
        job_id=job_id,
        extra={"reserved_minutes": reserved_minutes},
    )
    return account


def usage_summary(user_id) -> Dict[str, Any]:
    """Balance and current-cycle totals for the account dashboard."""
    account = Account.objects.get(user_id=user_id)
    records = UsageRecord.objects.filter(user_id=user_id)
    if account.billing_cycle_start:
        records = records.filter(timestamp__gte=account.billing_cycle_start)

    totals = records.aggregate(
        jobs=Count("id"),
        minutes=Sum("minutes_used"),
        credits=Sum("credits_used"),
        overage_minutes=Sum("minutes_used", filter=Q(source=UsageRecord.Source.OVERAGE)),
    )
    return {
        "subscription_plan": account.subscription_plan,
        "subscription_status": account.subscription_status,
        "included_minutes_per_month": account.included_minutes_per_month,
        "minutes_used_this_month": account.minutes_used_this_month,
        "minutes_reserved": account.minutes_reserved,
        "minutes_available": account.available_minutes,
        "credits": account.credits,
        "billing_cycle_start": account.billing_cycle_start,
        "billing_cycle_end": account.billing_cycle_end,
        "cycle_jobs": totals["jobs"] or 0,
        "cycle_minutes": totals["minutes"] or 0,
        "cycle_credits": totals["credits"] or 0,
        "cycle_overage_minutes": totals["overage_minutes"] or 0,
    }
