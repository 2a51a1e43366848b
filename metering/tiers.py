"""
Plan tiers, per-cycle quota limits and hourly request rate limits
"""

from typing import Dict, Union

from models.base import PlanTier, ResourceKind

# Sentinel for "no limit"; compared like any other limit
UNLIMITED = 2 ** 31 - 1

PLAN_LIMITS: Dict[PlanTier, Dict[ResourceKind, int]] = {
    PlanTier.FREE: {
        ResourceKind.DATA_POINTS: 50,
        ResourceKind.SATELLITE_ANALYSES: 10,
        ResourceKind.REPORT_EXPORTS: 2,
    },
    PlanTier.PRO: {
        ResourceKind.DATA_POINTS: 500,
        ResourceKind.SATELLITE_ANALYSES: 100,
        ResourceKind.REPORT_EXPORTS: 20,
    },
    PlanTier.ENTERPRISE: {
        ResourceKind.DATA_POINTS: UNLIMITED,
        ResourceKind.SATELLITE_ANALYSES: UNLIMITED,
        ResourceKind.REPORT_EXPORTS: UNLIMITED,
    },
}

# Requests per hour, consumed by the rate-limit middleware
RATE_LIMITS: Dict[PlanTier, int] = {
    PlanTier.FREE: 60,
    PlanTier.PRO: 300,
    PlanTier.ENTERPRISE: 1000,
}


def resolve_tier(user_or_tier) -> PlanTier:
    """Plan tier for a user (or raw tier string); unknown tiers fall back to free."""
    raw = getattr(user_or_tier, "plan_tier", user_or_tier)
    try:
        return PlanTier(raw)
    except ValueError:
        return PlanTier.FREE


def limit_for(user_or_tier, resource: Union[str, ResourceKind]) -> int:
    return PLAN_LIMITS[resolve_tier(user_or_tier)][ResourceKind(resource)]


def rate_limit_for(user_or_tier) -> int:
    return RATE_LIMITS[resolve_tier(user_or_tier)]


def is_unlimited(limit: int) -> bool:
    return limit >= UNLIMITED
