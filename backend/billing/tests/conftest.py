import pytest

from billing.models import Account


@pytest.fixture
def set_account():
    """Put the user's account into a known state, bypassing the ledger."""

    def _set(user, **fields):
        Account.objects.filter(user=user).update(**fields)
        return Account.objects.get(user=user)

    return _set


@pytest.fixture
def subscribed(user, set_account):
    def _subscribe(plan="ai-starter", included=300, used=0, reserved=0, credits=0, status="active"):
        return set_account(
            user,
            subscription_plan=plan,
            subscription_status=status,
            included_minutes_per_month=included,
            minutes_used_this_month=used,
            minutes_reserved=reserved,
            credits=credits,
        )

    return _subscribe


def assert_invariant(account):
    account.refresh_from_db()
    assert account.credits >= 0
    assert account.minutes_reserved >= 0
    assert account.minutes_used_this_month >= 0
    if account.has_active_subscription:
        assert account.minutes_used_this_month + account.minutes_reserved <= account.included_minutes_per_month
