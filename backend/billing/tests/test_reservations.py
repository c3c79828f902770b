import threading
import uuid

import pytest
from django.db import connection

from billing.models import Account, CreditTransaction
from billing.services import ledger
from billing.services.reservations import reserve
from billing.tests.conftest import assert_invariant


@pytest.mark.django_db
def test_reserve_from_subscription_holds_minutes(user, subscribed):
    subscribed(plan="ai-starter", included=300, used=100)

    result = reserve(user.pk, "ai", 10)

    assert result.success
    assert result.source == "subscription"
    assert result.minutes_reserved == 10
    assert result.credits_used == 0
    assert result.remaining_minutes == 190
    assert result.message == "Reserved 10 minutes from subscription"

    account = Account.objects.get(user=user)
    assert account.minutes_reserved == 10
    assert account.minutes_used_this_month == 100
    assert not CreditTransaction.objects.filter(account=account).exists()
    assert_invariant(account)


@pytest.mark.django_db
def test_partial_subscription_with_credit_overage(user, subscribed):
    subscribed(plan="ai-starter", included=300, used=295, credits=600)
    job_id = uuid.uuid4()

    result = reserve(user.pk, "ai", 10, job_id=job_id)

    assert result.success
    assert result.is_split
    assert result.minutes_from_subscription == 5
    assert result.credits_used == 500
    assert result.message == "Used 5 subscription minutes + 500 credits for overage"

    account = Account.objects.get(user=user)
    assert account.minutes_reserved == 5
    assert account.credits == 100
    debit = CreditTransaction.objects.get(account=account)
    assert debit.amount == -500
    assert debit.type == CreditTransaction.TransactionType.RESERVATION_DEBIT
    assert debit.job_id == job_id
    assert_invariant(account)


@pytest.mark.django_db
def test_partial_subscription_without_enough_credits_fails_cleanly(user, subscribed):
    subscribed(plan="ai-starter", included=300, used=295, credits=100)

    result = reserve(user.pk, "ai", 10)

    assert not result.success
    assert result.error_code == "insufficient_funds"
    assert result.required_credits == 500
    assert result.available_credits == 100
    assert result.message == "Insufficient credits for overage. Required: 500, Available: 100"

    account = Account.objects.get(user=user)
    assert account.minutes_reserved == 0
    assert account.credits == 100


@pytest.mark.django_db
def test_credits_only_human_reservation(user, set_account):
    set_account(user, credits=1000)

    result = reserve(user.pk, "human", 4)

    assert result.success
    assert result.source == "credits"
    assert result.credits_used == 800
    assert result.remaining_credits == 200
    assert Account.objects.get(user=user).credits == 200


@pytest.mark.django_db
def test_plan_without_mode_reports_plan_mode_not_allowed(user, subscribed):
    subscribed(plan="ai-starter")

    result = reserve(user.pk, "hybrid", 5)

    assert not result.success
    assert result.error_code == "plan_mode_not_allowed"
    assert result.message.startswith("Plan ai-starter does not include hybrid transcription.")


@pytest.mark.django_db
def test_plan_without_mode_falls_back_to_credits(user, subscribed):
    subscribed(plan="ai-starter", credits=1000)

    result = reserve(user.pk, "hybrid", 5)

    assert result.success
    assert result.source == "credits"
    assert result.credits_used == 750
    assert Account.objects.get(user=user).minutes_reserved == 0


@pytest.mark.django_db
def test_exhausted_subscription_without_credits(user, subscribed):
    subscribed(plan="ai-starter", included=300, used=300)

    result = reserve(user.pk, "ai", 3)

    assert not result.success
    assert result.failure_reason == "subscription_exhausted"
    assert result.message == "Subscription minutes exhausted. Insufficient credits. Required: 300, Available: 0"


@pytest.mark.django_db
def test_past_due_subscription_is_not_used(user, subscribed):
    subscribed(plan="ai-starter", status="past_due", credits=100)

    result = reserve(user.pk, "ai", 1)

    assert result.success
    assert result.source == "credits"
    assert Account.objects.get(user=user).minutes_reserved == 0


@pytest.mark.django_db
def test_unknown_user_returns_user_not_found():
    result = reserve(987654, "ai", 5)

    assert not result.success
    assert result.error_code == "user_not_found"
    assert result.message == "User not found"


@pytest.mark.django_db
@pytest.mark.parametrize("minutes", [0, -3, 2.5, True])
def test_reserve_rejects_invalid_minutes(user, minutes):
    with pytest.raises(ValueError):
        reserve(user.pk, "ai", minutes)


@pytest.mark.django_db
def test_reserve_rejects_unknown_mode(user):
    with pytest.raises(ValueError):
        reserve(user.pk, "robot", 5)


@pytest.mark.django_db
def test_second_reservation_sees_first(user, subscribed):
    account = subscribed(plan="ai-starter", included=300, used=290)

    first = reserve(user.pk, "ai", 8)
    second = reserve(user.pk, "ai", 8)

    assert first.success
    assert not second.success
    assert second.error_code == "insufficient_funds"
    assert_invariant(account)


@pytest.mark.django_db
def test_stale_snapshot_is_retried_against_fresh_balance(user, subscribed, monkeypatch):
    account = subscribed(plan="ai-starter", included=300, used=290)
    stale = Account.objects.get(user=user)

    assert reserve(user.pk, "ai", 8).success

    real_lock = ledger.lock_account
    snapshots = [stale]

    def lock_with_stale_read(user_id):
        if snapshots:
            return snapshots.pop()
        return real_lock(user_id)

    monkeypatch.setattr(ledger, "lock_account", lock_with_stale_read)

    result = reserve(user.pk, "ai", 8)

    assert not snapshots
    assert not result.success
    assert result.error_code == "insufficient_funds"
    account.refresh_from_db()
    assert account.minutes_reserved == 8
    assert_invariant(account)


@pytest.mark.django_db
def test_conflicts_exhausting_retries_raise(user, subscribed, monkeypatch, settings):
    settings.LEDGER_MAX_RETRIES = 2
    subscribed(plan="ai-starter", included=300)
    stale = Account.objects.get(user=user)
    Account.objects.filter(pk=stale.pk).update(version=stale.version + 1)

    monkeypatch.setattr(ledger, "lock_account", lambda user_id: stale)

    with pytest.raises(ledger.LedgerConflict):
        reserve(user.pk, "ai", 5)
    assert Account.objects.get(pk=stale.pk).minutes_reserved == 0


# sqlite has no SELECT ... FOR UPDATE; on the default database the stale
# snapshot tests above cover this path. Run against postgres with
# DB_ENGINE=postgres (plus the POSTGRES_* settings) to exercise real threads.
@pytest.mark.skipif(connection.vendor == "sqlite", reason="needs row-level locking; run with DB_ENGINE=postgres")
@pytest.mark.django_db(transaction=True)
def test_concurrent_reservations_never_double_spend(user, subscribed):
    subscribed(plan="ai-starter", included=300, used=290)
    results = []
    barrier = threading.Barrier(2)

    def _worker():
        barrier.wait()
        try:
            results.append(reserve(user.pk, "ai", 8))
        finally:
            connection.close()

    threads = [threading.Thread(target=_worker) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(result.success for result in results) == [False, True]
    account = Account.objects.get(user=user)
    assert account.minutes_reserved == 8
    assert_invariant(account)
