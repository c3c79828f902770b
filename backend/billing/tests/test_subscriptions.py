from datetime import datetime, timedelta, timezone as dt_timezone

import pytest

from billing.models import Account
from billing.services.subscriptions import (
    TrialAlreadyUsed,
    activate_subscription,
    cancel_subscription,
    mark_past_due,
    normalize_status,
    roll_over_cycle,
    start_free_trial,
    sync_subscription_status,
)


@pytest.mark.django_db
def test_activate_subscription_opens_cycle(user, set_account):
    set_account(user, minutes_used_this_month=12)

    account = activate_subscription(
        user.pk,
        "hybrid-starter",
        stripe_customer_id="cus_1",
        stripe_subscription_id="sub_1",
    )

    assert account.subscription_plan == "hybrid-starter"
    assert account.subscription_status == "active"
    assert account.included_minutes_per_month == 300
    assert account.minutes_used_this_month == 0
    assert account.stripe_subscription_id == "sub_1"
    assert account.billing_cycle_end - account.billing_cycle_start == timedelta(days=30)


@pytest.mark.django_db
def test_sync_subscription_status_resets_usage_on_new_period(user):
    activate_subscription(user.pk, "ai-starter", stripe_subscription_id="sub_1")
    Account.objects.filter(user=user).update(minutes_used_this_month=120)
    start = datetime.now(tz=dt_timezone.utc) + timedelta(days=31)

    account = sync_subscription_status(
        "sub_1",
        status="active",
        period_start=start,
        period_end=start + timedelta(days=30),
    )

    assert account.minutes_used_this_month == 0
    assert account.billing_cycle_start == start


@pytest.mark.django_db
def test_sync_subscription_status_canceled_drops_plan(user):
    activate_subscription(user.pk, "ai-starter", stripe_subscription_id="sub_1")

    account = sync_subscription_status("sub_1", status="canceled")

    assert account.subscription_plan == "none"
    assert account.included_minutes_per_month == 0


@pytest.mark.django_db
def test_sync_unknown_subscription_is_ignored():
    assert sync_subscription_status("sub_missing", status="active") is None


@pytest.mark.django_db
def test_roll_over_keeps_reserved_minutes(user):
    activate_subscription(user.pk, "ai-starter")
    Account.objects.filter(user=user).update(minutes_used_this_month=200, minutes_reserved=15)
    mark_past_due(user.pk)

    account = roll_over_cycle(user.pk)

    assert account.minutes_used_this_month == 0
    assert account.minutes_reserved == 15
    assert account.subscription_status == "active"


@pytest.mark.django_db
def test_cancel_subscription(user):
    activate_subscription(user.pk, "ai-professional")

    account = cancel_subscription(user.pk)

    assert account.subscription_status == "canceled"
    assert not account.has_active_subscription


@pytest.mark.django_db
def test_free_trial_only_once(user):
    account = start_free_trial(user.pk)

    assert account.subscription_plan == "free-trial"
    assert account.subscription_status == "trialing"
    assert account.included_minutes_per_month == 180
    assert account.trial_used

    Account.objects.filter(user=user).update(subscription_plan="none", subscription_status="canceled")
    with pytest.raises(TrialAlreadyUsed):
        start_free_trial(user.pk)


def test_normalize_status():
    assert normalize_status("unpaid") == "past_due"
    assert normalize_status("incomplete_expired") == "canceled"
    assert normalize_status(None) == "none"
    assert normalize_status("something-new") == "incomplete"
