from decimal import Decimal
from typing import Dict

from app.core.config import FREE_TIER_LIMIT, PLAN_PRICE_MONTHLY, PLAN_PRICE_YEARLY

# Optimizations per calendar month. -1 means unlimited.
PLAN_LIMITS: Dict[str, Dict[str, int]] = {
    "free": {
        "max_optimizations_per_month": FREE_TIER_LIMIT,
    },
    "premium": {
        "max_optimizations_per_month": -1,
    },
}

# Subscription plans sold at checkout (USD, major units)
PLAN_PRICES: Dict[str, Decimal] = {
    "monthly": PLAN_PRICE_MONTHLY,
    "yearly": PLAN_PRICE_YEARLY,
}

SUBSCRIPTION_STATUSES = ("inactive", "active", "past_due", "canceled")

DEFAULT_AUDIENCE = "general"
DEFAULT_FOCUS_AREAS = ["specificity", "clarity"]
SUPPORTED_FOCUS_AREAS = ("specificity", "clarity", "ctas", "engagement")


def get_plan_limit(plan_tier: str, limit_type: str) -> int:
    """Get the limit value for a specific plan and limit type."""
    return PLAN_LIMITS.get(plan_tier, PLAN_LIMITS["free"]).get(limit_type, 0)


def plan_tier_for(is_premium: bool) -> str:
    return "premium" if is_premium else "free"
