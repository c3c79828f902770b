"""Transactional access to ``Account`` balances.

This module is the only place that writes ``credits``, ``minutes_used_this_month``
and ``minutes_reserved``. Callers outside ``billing.services`` go through
``reserve``/``confirm_usage``/``release_reservation``/``grant_credits``.
"""
from __future__ import annotations

import logging
from typing import Callable, TypeVar

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from billing.models import Account, CreditTransaction

logger = logging.getLogger(__name__)

T = TypeVar("T")

BALANCE_FIELDS = ("credits", "minutes_used_this_month", "minutes_reserved")
SUBSCRIPTION_FIELDS = (
    "subscription_plan",
    "subscription_status",
    "included_minutes_per_month",
    "billing_cycle_start",
    "billing_cycle_end",
    "stripe_customer_id",
    "stripe_subscription_id",
    "trial_used",
)
WRITABLE_FIELDS = frozenset(BALANCE_FIELDS + SUBSCRIPTION_FIELDS)


class LedgerError(Exception):
    """Base exception for ledger operations."""


class AccountNotFound(LedgerError):
    """Raised when the user has no billing account."""


class LedgerConflict(LedgerError):
    """Raised when the account changed between read and conditional write."""


class ReconciliationError(LedgerError):
    """Raised when a reservation would be reconciled more than once."""


class IdempotencyConflict(LedgerError):
    """Raised when an idempotency key is reused with different semantics."""


def lock_account(user_id) -> Account:
    """Load the account row for update inside the current transaction."""
    try:
        return Account.objects.select_for_update().get(user_id=user_id)
    except (Account.DoesNotExist, ValueError, TypeError) as exc:
        raise AccountNotFound(f"No billing account for user {user_id}.") from exc


def commit_account(account: Account, **changes) -> Account:
    """Write ``changes`` if nobody else has written the row since it was read.

    The write is conditional on ``version``; a concurrent writer makes it match
    zero rows, which surfaces as ``LedgerConflict`` so the caller's transaction
    can be retried against fresh data.
    """
    unknown = set(changes) - WRITABLE_FIELDS
    if unknown:
        raise ValueError(f"Fields {sorted(unknown)} cannot be written through the ledger.")

    for field in BALANCE_FIELDS:
        if field in changes and changes[field] < 0:
            raise LedgerError(f"{field} cannot become negative (got {changes[field]}).")

    now = timezone.now()
    updated = Account.objects.filter(pk=account.pk, version=account.version).update(
        version=account.version + 1,
        updated_at=now,
        **changes,
    )
    if updated != 1:
        raise LedgerConflict(f"Account {account.pk} was modified concurrently.")

    for field, value in changes.items():
        setattr(account, field, value)
    account.version += 1
    account.updated_at = now
    return account


def run_in_ledger_transaction(operation: Callable[[], T], *, label: str = "ledger") -> T:
    """Run ``operation`` atomically, retrying on optimistic-lock conflicts."""
    max_attempts = max(1, int(getattr(settings, "LEDGER_MAX_RETRIES", 3)))
    for attempt in range(1, max_attempts + 1):
        try:
            with transaction.atomic():
                return operation()
        except LedgerConflict:
            if attempt == max_attempts:
                logger.error("%s: giving up after %d conflicting attempts", label, attempt)
                raise
            logger.info("%s: ledger conflict on attempt %d, retrying", label, attempt)
    raise LedgerConflict(f"{label}: no attempt was made")  # pragma: no cover


def record_credit_transaction(
    account: Account,
    *,
    amount: int,
    type: str,
    description: str = "",
    idempotency_key=None,
    job_id=None,
    metadata=None,
):
    return CreditTransaction.objects.create(
        account=account,
        amount=amount,
        type=type,
        description=description,
        idempotency_key=idempotency_key or None,
        job_id=job_id,
        metadata=metadata or None,
    )
