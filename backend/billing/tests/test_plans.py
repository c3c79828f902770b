import pytest

from billing import plans


@pytest.mark.parametrize(
    "seconds, minutes",
    [(0, 1), (None, 1), (1, 1), (60, 1), (61, 2), (299.5, 5), (3600, 60)],
)
def test_billable_minutes_rounds_up_with_one_minute_floor(seconds, minutes):
    assert plans.billable_minutes(seconds) == minutes


def test_credits_required_per_mode():
    assert plans.credits_required(plans.AI, 5) == 500
    assert plans.credits_required(plans.HYBRID, 5) == 750
    assert plans.credits_required(plans.HUMAN, 4) == 800


def test_credit_rates_can_be_overridden(settings):
    settings.TRANSCRIPTION_CREDITS_PER_MINUTE = {plans.AI: 80}
    assert plans.credits_required(plans.AI, 3) == 240
    assert plans.credits_required(plans.HUMAN, 1) == 200


def test_plan_modes():
    assert plans.plan_allows_mode("hybrid-starter", plans.HYBRID)
    assert plans.plan_allows_mode("hybrid-starter", plans.AI)
    assert not plans.plan_allows_mode("ai-enterprise", plans.HYBRID)
    assert not plans.plan_allows_mode(plans.NO_PLAN, plans.AI)
    assert plans.plan_allows_mode(plans.FREE_TRIAL_PLAN_ID, plans.AI)


def test_require_plan_rejects_unknown_ids():
    with pytest.raises(plans.UnknownPlan):
        plans.require_plan("gold")


def test_plan_lookup_by_price_id(settings):
    settings.STRIPE_PRICE_IDS = {"ai-professional": "price_pro"}
    assert plans.get_plan_by_price_id("price_pro").id == "ai-professional"
    assert plans.get_plan_by_price_id("price_other") is None


def test_recommend_plan():
    assert plans.recommend_plan(200, needs_hybrid=False).id == "ai-starter"
    assert plans.recommend_plan(700, needs_hybrid=True).id == "hybrid-professional"
    assert plans.recommend_plan(5000, needs_hybrid=False).id == "ai-enterprise"
