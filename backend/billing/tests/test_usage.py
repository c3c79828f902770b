import uuid
from datetime import timedelta

import pytest
from django.utils import timezone

from billing.models import Account, UsageRecord
from billing.services.reservations import reserve
from billing.services.usage import confirm_usage, release_reservation, resolve_usage_source, usage_summary
from billing.tests.conftest import assert_invariant


@pytest.mark.django_db
def test_reserve_ten_confirm_seven(user, subscribed):
    subscribed(plan="ai-starter", included=300)
    job_id = uuid.uuid4()

    reservation = reserve(user.pk, "ai", 10, job_id=job_id)
    confirmation = confirm_usage(user.pk, job_id, "ai", 7, reservation.minutes_reserved)

    account = Account.objects.get(user=user)
    assert confirmation.created
    assert account.minutes_reserved == 0
    assert account.minutes_used_this_month == 7
    record = confirmation.record
    assert record.minutes_used == 7
    assert record.source == UsageRecord.Source.SUBSCRIPTION
    assert record.metadata["reserved_minutes"] == 10
    assert record.metadata["subscription_minutes"] == 7
    assert_invariant(account)


@pytest.mark.django_db
def test_confirm_is_idempotent_per_job(user, subscribed):
    subscribed(plan="ai-starter", included=300)
    job_id = uuid.uuid4()
    reserve(user.pk, "ai", 10, job_id=job_id)

    first = confirm_usage(user.pk, job_id, "ai", 10, 10)
    second = confirm_usage(user.pk, job_id, "ai", 10, 10)

    assert first.created
    assert not second.created
    assert second.record.pk == first.record.pk
    assert UsageRecord.objects.filter(job_id=job_id).count() == 1
    assert Account.objects.get(user=user).minutes_used_this_month == 10


@pytest.mark.django_db
def test_confirm_longer_than_reserved_is_clamped_to_allowance(user, subscribed):
    account = subscribed(plan="ai-starter", included=300, used=290)
    job_id = uuid.uuid4()
    reserve(user.pk, "ai", 10, job_id=job_id)

    confirm_usage(user.pk, job_id, "ai", 25, 10)

    account.refresh_from_db()
    assert account.minutes_used_this_month == 300
    assert account.minutes_reserved == 0
    assert UsageRecord.objects.get(job_id=job_id).minutes_used == 25
    assert_invariant(account)


@pytest.mark.django_db
def test_confirm_credit_job_leaves_subscription_usage_alone(user, set_account):
    set_account(user, credits=1000)
    job_id = uuid.uuid4()
    reservation = reserve(user.pk, "ai", 3, job_id=job_id)

    confirmation = confirm_usage(
        user.pk,
        job_id,
        "ai",
        3,
        reservation.minutes_reserved,
        credits_used=reservation.credits_used,
    )

    account = Account.objects.get(user=user)
    assert account.minutes_used_this_month == 0
    assert account.credits == 700
    assert confirmation.record.source == UsageRecord.Source.CREDITS
    assert confirmation.record.credits_used == 300


@pytest.mark.django_db
def test_release_restores_reserved_minutes_without_usage(user, subscribed):
    subscribed(plan="ai-starter", included=300, reserved=4)
    job_id = uuid.uuid4()
    reserve(user.pk, "ai", 10, job_id=job_id)

    account = release_reservation(user.pk, 10, job_id=job_id)

    assert account.minutes_reserved == 4
    assert not UsageRecord.objects.filter(job_id=job_id).exists()


@pytest.mark.django_db
def test_release_never_goes_negative(user, subscribed):
    subscribed(plan="ai-starter", reserved=3)

    account = release_reservation(user.pk, 10)

    assert account.minutes_reserved == 0


def test_resolve_usage_source():
    assert resolve_usage_source(10, 0) == "subscription"
    assert resolve_usage_source(5, 500) == "overage"
    assert resolve_usage_source(0, 300) == "credits"


@pytest.mark.django_db
def test_usage_summary_counts_current_cycle(user, subscribed):
    subscribed(plan="ai-starter", included=300)
    Account.objects.filter(user=user).update(billing_cycle_start=timezone.now() - timedelta(days=1))
    for minutes in (4, 6):
        job_id = uuid.uuid4()
        reserve(user.pk, "ai", minutes, job_id=job_id)
        confirm_usage(user.pk, job_id, "ai", minutes, minutes)

    summary = usage_summary(user.pk)

    assert summary["cycle_jobs"] == 2
    assert summary["cycle_minutes"] == 10
    assert summary["minutes_used_this_month"] == 10
    assert summary["minutes_available"] == 290
