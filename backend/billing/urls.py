"""URL routes for billing endpoints."""
from django.urls import path

from .views import AccountSummaryView, CreditTransactionListView, FreeTrialView, UsageRecordListView
from .views_webhook import StripeWebhookView

app_name = "billing"

urlpatterns = [
    path("account/", AccountSummaryView.as_view(), name="account-summary"),
    path("usage/", UsageRecordListView.as_view(), name="usage-history"),
    path("transactions/", CreditTransactionListView.as_view(), name="credit-transactions"),
    path("trial/", FreeTrialView.as_view(), name="free-trial"),
    path("webhook/stripe/", StripeWebhookView.as_view(), name="stripe-webhook"),
]
