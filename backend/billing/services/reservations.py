"""Reservation engine: fund a job from subscription minutes and/or wallet credits."""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

from billing import plans
from billing.models import Account, CreditTransaction
from billing.observability.logging import log_billing_event
from billing.observability.metrics import RESERVATION_COUNT
from billing.services import ledger

logger = logging.getLogger(__name__)

SOURCE_SUBSCRIPTION = "subscription"
SOURCE_CREDITS = "credits"
SOURCE_INSUFFICIENT = "insufficient"

USER_NOT_FOUND = "user_not_found"
INSUFFICIENT_FUNDS = "insufficient_funds"
PLAN_MODE_NOT_ALLOWED = "plan_mode_not_allowed"

REASON_NO_SUBSCRIPTION = "no_subscription"
REASON_SUBSCRIPTION_EXHAUSTED = "subscription_exhausted"


@dataclass(frozen=True)
class ReservationResult:
    success: bool
    source: str
    minutes_from_subscription: int = 0
    credits_used: int = 0
    minutes_reserved: int = 0
    remaining_minutes: int = 0
    remaining_credits: int = 0
    message: str = ""
    error_code: Optional[str] = None
    failure_reason: Optional[str] = None
    required_credits: int = 0
    available_credits: int = 0

    @property
    def is_split(self) -> bool:
        return self.success and self.minutes_from_subscription > 0 and self.credits_used > 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def reserve(user_id, mode: str, estimated_minutes: int, *, job_id=None) -> ReservationResult:
    """Atomically reserve capacity for a job of ``estimated_minutes``.

    Subscription minutes are held (``minutes_reserved``) and later confirmed or
    released; credits are debited for good. Either everything is committed or
    nothing is, and funding problems come back as an unsuccessful result rather
    than an exception.
    """
    if mode not in plans.MODES:
        raise ValueError(f"Unsupported transcription mode '{mode}'.")
    if isinstance(estimated_minutes, bool) or not isinstance(estimated_minutes, int) or estimated_minutes <= 0:
        raise ValueError("estimated_minutes must be a positive integer.")

    def _attempt() -> ReservationResult:
        try:
            account = ledger.lock_account(user_id)
        except ledger.AccountNotFound:
            return ReservationResult(
                success=False,
                source=SOURCE_INSUFFICIENT,
                message="User not found",
                error_code=USER_NOT_FOUND,
                failure_reason=USER_NOT_FOUND,
            )
        return _reserve_locked(account, mode, estimated_minutes, job_id=job_id)

    result = ledger.run_in_ledger_transaction(_attempt, label=f"reserve:{user_id}")

    RESERVATION_COUNT.labels(
        mode=mode,
        outcome="success" if result.success else (result.error_code or "failure"),
        source=result.source,
    ).inc()
    log_billing_event(
        message="reservation.succeeded" if result.success else "reservation.rejected",
        user_id=user_id,
        job_id=job_id,
        extra={
            "mode": mode,
            "estimated_minutes": estimated_minutes,
            "source": result.source,
            "minutes_reserved": result.minutes_reserved,
            "credits_used": result.credits_used,
            "error_code": result.error_code,
        },
    )
    return result


def _reserve_locked(account: Account, mode: str, estimated_minutes: int, *, job_id=None) -> ReservationResult:
    subscribed = account.has_active_subscription
    mode_covered = subscribed and plans.plan_allows_mode(account.subscription_plan, mode)

    if mode_covered:
        available = (
            account.included_minutes_per_month - account.minutes_used_this_month - account.minutes_reserved
        )

        if available >= estimated_minutes:
            ledger.commit_account(account, minutes_reserved=account.minutes_reserved + estimated_minutes)
            return ReservationResult(
                success=True,
                source=SOURCE_SUBSCRIPTION,
                minutes_from_subscription=estimated_minutes,
                minutes_reserved=estimated_minutes,
                remaining_minutes=available - estimated_minutes,
                remaining_credits=account.credits,
                message=f"Reserved {estimated_minutes} minutes from subscription",
            )

        if available > 0:
            overage_minutes = estimated_minutes - available
            required = plans.credits_required(mode, overage_minutes)
            if account.credits < required:
                return ReservationResult(
                    success=False,
                    source=SOURCE_INSUFFICIENT,
                    remaining_minutes=available,
                    remaining_credits=account.credits,
                    message=(
                        f"Insufficient credits for overage. Required: {required}, "
                        f"Available: {account.credits}"
                    ),
                    error_code=INSUFFICIENT_FUNDS,
                    failure_reason=REASON_SUBSCRIPTION_EXHAUSTED,
                    required_credits=required,
                    available_credits=account.credits,
                )

            ledger.commit_account(
                account,
                minutes_reserved=account.minutes_reserved + available,
                credits=account.credits - required,
            )
            ledger.record_credit_transaction(
                account,
                amount=-required,
                type=CreditTransaction.TransactionType.RESERVATION_DEBIT,
                description=f"Overage for {overage_minutes} {mode} minutes",
                job_id=job_id,
                metadata={"mode": mode, "minutes": overage_minutes, "split": True},
            )
            return ReservationResult(
                success=True,
                source=SOURCE_SUBSCRIPTION,
                minutes_from_subscription=available,
                credits_used=required,
                minutes_reserved=available,
                remaining_minutes=0,
                remaining_credits=account.credits,
                message=f"Used {available} subscription minutes + {required} credits for overage",
            )

    return _reserve_from_credits(
        account,
        mode,
        estimated_minutes,
        job_id=job_id,
        failure_reason=_credits_failure_reason(subscribed, mode_covered),
    )


def _credits_failure_reason(subscribed: bool, mode_covered: bool) -> str:
    if subscribed and not mode_covered:
        return PLAN_MODE_NOT_ALLOWED
    if subscribed:
        return REASON_SUBSCRIPTION_EXHAUSTED
    return REASON_NO_SUBSCRIPTION


def _reserve_from_credits(account: Account, mode: str, minutes: int, *, job_id, failure_reason: str) -> ReservationResult:
    required = plans.credits_required(mode, minutes)
    remaining_minutes = account.available_minutes if account.has_active_subscription else 0

    if account.credits < required:
        if failure_reason == PLAN_MODE_NOT_ALLOWED:
            prefix = f"Plan {account.subscription_plan} does not include {mode} transcription. "
            error_code = PLAN_MODE_NOT_ALLOWED
        elif failure_reason == REASON_SUBSCRIPTION_EXHAUSTED:
            prefix = "Subscription minutes exhausted. "
            error_code = INSUFFICIENT_FUNDS
        else:
            prefix = ""
            error_code = INSUFFICIENT_FUNDS
        return ReservationResult(
            success=False,
            source=SOURCE_INSUFFICIENT,
            remaining_minutes=remaining_minutes,
            remaining_credits=account.credits,
            message=f"{prefix}Insufficient credits. Required: {required}, Available: {account.credits}",
            error_code=error_code,
            failure_reason=failure_reason,
            required_credits=required,
            available_credits=account.credits,
        )

    ledger.commit_account(account, credits=account.credits - required)
    ledger.record_credit_transaction(
        account,
        amount=-required,
        type=CreditTransaction.TransactionType.RESERVATION_DEBIT,
        description=f"{minutes} {mode} minutes",
        job_id=job_id,
        metadata={"mode": mode, "minutes": minutes},
    )
    return ReservationResult(
        success=True,
        source=SOURCE_CREDITS,
        credits_used=required,
        remaining_minutes=remaining_minutes,
        remaining_credits=account.credits,
        message=f"Used {required} credits",
    )
