"""Static credit cost and subscription plan tables."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

from config import settings
from services.errors import InvalidActionError


CAMPAIGN_BASE_COSTS: Dict[str, int] = {
    "video": 10,
    "image": 5,
    "script": 3,
}

CAMPAIGN_TYPES = tuple(CAMPAIGN_BASE_COSTS)

DEFAULT_PLAN = "FREE"


@dataclass(frozen=True)
class SubscriptionPlan:
    key: str
    name: str
    monthly_credits: int
    credit_price: float
    price: int

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def credit_costs() -> Dict[str, int]:
    """Action -> credit cost, read from settings so deployments can reprice."""
    return {
        "script_generation": max(int(settings.CREDIT_COST_SCRIPT_GENERATION), 0),
        "image_generation": max(int(settings.CREDIT_COST_IMAGE_GENERATION), 0),
        "video_generation": max(int(settings.CREDIT_COST_VIDEO_GENERATION), 0),
        "prompt_generation": max(int(settings.CREDIT_COST_PROMPT_GENERATION), 0),
    }


def normalize_action(action: str) -> str:
    return str(action or "").strip().lower()


def get_action_cost(action: str) -> int:
    key = normalize_action(action)
    costs = credit_costs()
    if key not in costs:
        raise InvalidActionError(action)
    return costs[key]


def subscription_plans() -> Dict[str, SubscriptionPlan]:
    return {
        "FREE": SubscriptionPlan(
            key="FREE",
            name="Free",
            monthly_credits=max(int(settings.PLAN_FREE_MONTHLY_CREDITS), 0),
            credit_price=0.1,
            price=0,
        ),
        "STARTER": SubscriptionPlan(
            key="STARTER",
            name="Starter",
            monthly_credits=max(int(settings.PLAN_STARTER_MONTHLY_CREDITS), 0),
            credit_price=0.05,
            price=19,
        ),
        "PROFESSIONAL": SubscriptionPlan(
            key="PROFESSIONAL",
            name="Professional",
            monthly_credits=max(int(settings.PLAN_PROFESSIONAL_MONTHLY_CREDITS), 0),
            credit_price=0.03,
            price=49,
        ),
        "ENTERPRISE": SubscriptionPlan(
            key="ENTERPRISE",
            name="Enterprise",
            monthly_credits=max(int(settings.PLAN_ENTERPRISE_MONTHLY_CREDITS), 0),
            credit_price=0.02,
            price=149,
        ),
    }


def get_plan(plan_key: Optional[str]) -> SubscriptionPlan:
    """Resolve a stored plan name; unknown or empty values price as FREE."""
    plans = subscription_plans()
    return plans.get(str(plan_key or "").strip().upper(), plans[DEFAULT_PLAN])


def resolve_plan(plan_key: Optional[str]) -> SubscriptionPlan:
    """Strict variant of `get_plan` for provider-supplied plan names."""
    plans = subscription_plans()
    key = str(plan_key or "").strip().upper()
    if key not in plans:
        raise ValueError(f"Unknown subscription plan: {plan_key!r}")
    return plans[key]
