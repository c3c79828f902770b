"""Subscription plan catalogue and per-mode credit pricing."""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from django.conf import settings

AI = "ai"
HYBRID = "hybrid"
HUMAN = "human"
MODES = (AI, HYBRID, HUMAN)

NO_PLAN = "none"

DEFAULT_CREDITS_PER_MINUTE: Dict[str, int] = {
    AI: 100,
    HYBRID: 150,
    HUMAN: 200,
}

FREE_TRIAL_MINUTES = 180
FREE_TRIAL_PLAN_ID = "free-trial"


@dataclass(frozen=True)
class SubscriptionPlan:
    id: str
    name: str
    type: str
    tier: str
    included_minutes: int
    monthly_price: int
    allowed_modes: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def stripe_price_id(self) -> str:
        return (getattr(settings, "STRIPE_PRICE_IDS", {}) or {}).get(self.id, "")


PLANS: Dict[str, SubscriptionPlan] = {
    plan.id: plan
    for plan in (
        SubscriptionPlan("ai-starter", "AI Starter", AI, "starter", 300, 210, (AI,)),
        SubscriptionPlan("ai-professional", "AI Professional", AI, "professional", 750, 488, (AI,)),
        SubscriptionPlan("ai-enterprise", "AI Enterprise", AI, "enterprise", 1500, 900, (AI,)),
        SubscriptionPlan("hybrid-starter", "Hybrid Starter", HYBRID, "starter", 300, 325, (AI, HYBRID)),
        SubscriptionPlan("hybrid-professional", "Hybrid Professional", HYBRID, "professional", 750, 1050, (AI, HYBRID)),
        SubscriptionPlan("hybrid-enterprise", "Hybrid Enterprise", HYBRID, "enterprise", 1500, 1950, (AI, HYBRID)),
    )
}

TRIAL_PLAN = SubscriptionPlan(FREE_TRIAL_PLAN_ID, "Free Trial", AI, "trial", FREE_TRIAL_MINUTES, 0, (AI,))


class UnknownPlan(ValueError):
    """Raised when a plan identifier is not part of the catalogue."""


def get_plan(plan_id: Optional[str]) -> Optional[SubscriptionPlan]:
    if not plan_id or plan_id == NO_PLAN:
        return None
    if plan_id == FREE_TRIAL_PLAN_ID:
        return TRIAL_PLAN
    return PLANS.get(plan_id)


def require_plan(plan_id: str) -> SubscriptionPlan:
    plan = get_plan(plan_id)
    if plan is None:
        raise UnknownPlan(f"Unknown subscription plan '{plan_id}'.")
    return plan


def get_plan_by_price_id(price_id: Optional[str]) -> Optional[SubscriptionPlan]:
    if not price_id:
        return None
    for plan in PLANS.values():
        if plan.stripe_price_id and plan.stripe_price_id == price_id:
            return plan
    return None


def plan_allows_mode(plan_id: Optional[str], mode: str) -> bool:
    plan = get_plan(plan_id)
    return plan is not None and mode in plan.allowed_modes


def credits_per_minute(mode: str) -> int:
    overrides = getattr(settings, "TRANSCRIPTION_CREDITS_PER_MINUTE", None) or {}
    rates = {**DEFAULT_CREDITS_PER_MINUTE, **overrides}
    try:
        return int(rates[mode])
    except KeyError as exc:
        raise ValueError(f"Unsupported transcription mode '{mode}'.") from exc


def credits_required(mode: str, minutes: int) -> int:
    return int(math.ceil(minutes * credits_per_minute(mode)))


def billable_minutes(duration_seconds) -> int:
    """Minutes billed for a piece of media; at least one minute per job."""
    try:
        seconds = float(duration_seconds or 0)
    except (TypeError, ValueError):
        seconds = 0.0
    if seconds <= 0:
        return 1
    return max(1, int(math.ceil(seconds / 60.0)))


def recommend_plan(estimated_monthly_minutes: int, needs_hybrid: bool) -> SubscriptionPlan:
    """Smallest plan of the right family covering the estimate, else the largest."""
    family = HYBRID if needs_hybrid else AI
    candidates = sorted(
        (plan for plan in PLANS.values() if plan.type == family),
        key=lambda plan: plan.included_minutes,
    )
    for plan in candidates:
        if plan.included_minutes >= estimated_monthly_minutes:
            return plan
    return candidates[-1]
