"""Billing API views."""
from .account import AccountSummaryView, FreeTrialView
from .usage import CreditTransactionListView, UsageRecordListView

__all__ = [
    "AccountSummaryView",
    "FreeTrialView",
    "CreditTransactionListView",
    "UsageRecordListView",
]
