"""Expose commonly used billing services."""

from .ledger import (
    AccountNotFound,
    IdempotencyConflict,
    LedgerConflict,
    LedgerError,
    ReconciliationError,
)
from .reservations import ReservationResult, reserve
from .usage import UsageConfirmation, confirm_usage, release_reservation, usage_summary
from .wallet import WalletResult, adjust_credits, grant_credits, refund_job_credits
from .subscriptions import (
    SubscriptionError,
    TrialAlreadyUsed,
    activate_subscription,
    cancel_subscription,
    roll_over_cycle,
    start_free_trial,
    sync_subscription_status,
)

__all__ = [
    "AccountNotFound",
    "IdempotencyConflict",
    "LedgerConflict",
    "LedgerError",
    "ReconciliationError",
    "ReservationResult",
    "reserve",
    "UsageConfirmation",
    "confirm_usage",
    "release_reservation",
    "usage_summary",
    "WalletResult",
    "adjust_credits",
    "grant_credits",
    "refund_job_credits",
    "SubscriptionError",
    "TrialAlreadyUsed",
    "activate_subscription",
    "cancel_subscription",
    "roll_over_cycle",
    "start_free_trial",
    "sync_subscription_status",
]
