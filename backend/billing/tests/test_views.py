import uuid

import pytest
from rest_framework.test import APIClient

from billing.models import Account
from billing.services.reservations import reserve
from billing.services.usage import confirm_usage
from billing.services.wallet import grant_credits


@pytest.mark.django_db
def test_account_summary_returns_balances(api_client, user, subscribed):
    subscribed(plan="hybrid-starter", included=300, used=40, reserved=10, credits=250)

    response = api_client.get("/api/billing/account/")

    assert response.status_code == 200
    payload = response.json()
    assert payload["subscription_plan"] == "hybrid-starter"
    assert payload["minutes_available"] == 250
    assert payload["credits"] == 250
    assert payload["allowed_modes"] == ["ai", "hybrid"]


@pytest.mark.django_db
def test_account_summary_creates_missing_account(api_client, user):
    Account.objects.filter(user=user).delete()

    response = api_client.get("/api/billing/account/")

    assert response.status_code == 200
    assert response.json()["subscription_plan"] == "none"
    assert Account.objects.filter(user=user).exists()


@pytest.mark.django_db
def test_account_summary_requires_authentication():
    response = APIClient().get("/api/billing/account/")
    assert response.status_code in (401, 403)


@pytest.mark.django_db
def test_usage_history_is_scoped_and_filterable(api_client, user, other_user, subscribed):
    subscribed(plan="ai-starter", included=300, credits=1000)
    sub_job, credit_job = uuid.uuid4(), uuid.uuid4()
    reserve(user.pk, "ai", 5, job_id=sub_job)
    confirm_usage(user.pk, sub_job, "ai", 5, 5)
    confirm_usage(user.pk, credit_job, "human", 2, 0, credits_used=400)
    grant_credits(other_user.pk, 100)

    everything = api_client.get("/api/billing/usage/")
    credits_only = api_client.get("/api/billing/usage/", {"source": "credits"})

    assert everything.status_code == 200
    assert everything.json()["count"] == 2
    assert [row["job_id"] for row in credits_only.json()["results"]] == [str(credit_job)]


@pytest.mark.django_db
def test_transactions_list_only_own_wallet(api_client, user, other_user):
    grant_credits(user.pk, 100)
    grant_credits(other_user.pk, 900)

    response = api_client.get("/api/billing/transactions/")

    assert response.status_code == 200
    assert [row["amount"] for row in response.json()["results"]] == [100]


@pytest.mark.django_db
def test_free_trial_endpoint(api_client, user):
    first = api_client.post("/api/billing/trial/")
    second = api_client.post("/api/billing/trial/")

    assert first.status_code == 201
    assert first.json()["included_minutes_per_month"] == 180
    assert second.status_code == 409
