"""Wallet credit grants, refunds and admin adjustments."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from billing.models import Account, CreditTransaction
from billing.observability.logging import log_billing_event
from billing.observability.metrics import CREDIT_GRANT_COUNT
from billing.services import ledger

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WalletResult:
    account: Account
    transaction: Optional[CreditTransaction]
    created: bool
    delta: int


def refund_idempotency_key(job_id, attempt: int = 1) -> str:
    return f"refund:job:{job_id}:{attempt}"


def grant_credits(
    user_id,
    amount: int,
    *,
    reason: str = "",
    type: str = CreditTransaction.TransactionType.PURCHASE,
    idempotency_key: Optional[str] = None,
    job_id=None,
    metadata: Optional[dict] = None,
    actor: Optional[str] = None,
) -> WalletResult:
    """Add ``amount`` credits to the wallet.

    Replaying the same ``idempotency_key`` returns the original transaction; a
    replay with a different amount or account raises ``IdempotencyConflict``.
    """
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValueError("Credit grants must be a positive integer.")

    def _attempt() -> WalletResult:
        account = ledger.lock_account(user_id)

        if idempotency_key:
            existing = CreditTransaction.objects.filter(idempotency_key=idempotency_key).first()
            if existing is not None:
                _validate_idempotent(existing, account, amount)
                return WalletResult(account=account, transaction=existing, created=False, delta=existing.amount)

        ledger.commit_account(account, credits=account.credits + amount)
        record = ledger.record_credit_transaction(
            account,
            amount=amount,
            type=type,
            description=reason,
            idempotency_key=idempotency_key,
            job_id=job_id,
            metadata=_merge_metadata(metadata, {"actor": actor} if actor else None),
        )
        return WalletResult(account=account, transaction=record, created=True, delta=amount)

    result = ledger.run_in_ledger_transaction(_attempt, label=f"grant:{user_id}")
    if result.created:
        CREDIT_GRANT_COUNT.labels(type=str(type)).inc()
        log_billing_event(
            message="wallet.credits_granted",
            user_id=user_id,
            job_id=job_id,
            actor=actor,
            extra={"amount": amount, "type": str(type), "balance": result.account.credits},
        )
    return result


def refund_job_credits(user_id, job_id, amount: int, reason: str = "", *, attempt: int = 1) -> WalletResult:
    """Refund credits spent on one attempt of ``job_id``; at most one refund per attempt."""
    key = refund_idempotency_key(job_id, attempt)
    existing = (
        CreditTransaction.objects.select_related("account")
        .filter(idempotency_key=key)
        .first()
    )
    if existing is not None:
        logger.info("Job %s attempt %s already refunded (%s credits).", job_id, attempt, existing.amount)
        return WalletResult(account=existing.account, transaction=existing, created=False, delta=existing.amount)

    return grant_credits(
        user_id,
        amount,
        reason=reason or f"Refund for job {job_id}",
        type=CreditTransaction.TransactionType.REFUND,
        idempotency_key=key,
        job_id=job_id,
        metadata={"attempt": attempt},
    )


def adjust_credits(
    user_id,
    *,
    delta: Optional[int] = None,
    set_to: Optional[int] = None,
    reason: str,
    actor: Optional[str] = None,
    idempotency_key: Optional[str] = None,
) -> WalletResult:
    """Admin correction, either by ``delta`` or to an absolute ``set_to`` balance."""
    if (delta is None) == (set_to is None):
        raise ValueError("Provide exactly one of delta or set_to.")
    if set_to is not None and set_to < 0:
        raise ValueError("Balance cannot be set below zero.")

    def _attempt() -> WalletResult:
        account = ledger.lock_account(user_id)

        if idempotency_key:
            existing = CreditTransaction.objects.filter(idempotency_key=idempotency_key).first()
            if existing is not None:
                if existing.account_id != account.pk:
                    raise ledger.IdempotencyConflict("Idempotency key already used for a different account.")
                return WalletResult(account=account, transaction=existing, created=False, delta=existing.amount)

        change = delta if delta is not None else set_to - account.credits
        if change == 0:
            return WalletResult(account=account, transaction=None, created=False, delta=0)
        if account.credits + change < 0:
            raise ledger.LedgerError(
                f"Adjustment of {change} would leave a negative balance ({account.credits} available)."
            )

        ledger.commit_account(account, credits=account.credits + change)
        record = ledger.record_credit_transaction(
            account,
            amount=change,
            type=CreditTransaction.TransactionType.ADMIN_ADJUSTMENT,
            description=reason,
            idempotency_key=idempotency_key,
            metadata={"actor": actor} if actor else None,
        )
        return WalletResult(account=account, transaction=record, created=True, delta=change)

    result = ledger.run_in_ledger_transaction(_attempt, label=f"adjust:{user_id}")
    if result.created:
        log_billing_event(
            message="wallet.credits_adjusted",
            user_id=user_id,
            actor=actor,
            extra={"delta": result.delta, "reason": reason, "balance": result.account.credits},
        )
    return result


def _validate_idempotent(record: CreditTransaction, account: Account, amount: int) -> None:
    if record.account_id != account.pk:
        raise ledger.IdempotencyConflict("Idempotency key already used for a different account.")
    if record.amount != amount:
        raise ledger.IdempotencyConflict("Idempotency key already used with a different amount.")


def _merge_metadata(base: Optional[dict], extra: Optional[dict]) -> Optional[dict]:
    if not base and not extra:
        return None
    merged = dict(base or {})
    merged.update(extra or {})
    return merged
