"""
worldgate/features/plans/service.py

Plan entitlement table.

Handles:
- Static per-tier ceilings (basic, pro, enterprise), built once at import
- Tier resolution (unset -> basic)
- Ceiling comparisons that honour the UNLIMITED sentinel
"""

from types import MappingProxyType
from typing import Mapping, Optional, Union

from worldgate.core.errors import ValidationError
from worldgate.models.plan import PlanEntitlement, PlanTier, UNLIMITED


GIB = 1024 * 1024 * 1024

# Default plan configurations
DEFAULT_PLANS = {
    PlanTier.BASIC: {
        "name": "Basic",
        "requests_per_month": 1000,
        "requests_per_day": 50,
        "requests_per_minute": 5,
        "allowed_models": ["gpt-4o-mini"],
        "storage_limit": 1 * GIB,
        "max_elements": 100,
    },
    PlanTier.PRO: {
        "name": "Pro",
        "requests_per_month": 20000,
        "requests_per_day": 500,
        "requests_per_minute": 20,
        "allowed_models": ["gpt-4o-mini", "gpt-4o", "claude-3-sonnet-20240620"],
        "storage_limit": 20 * GIB,
        "max_elements": 2000,
    },
    PlanTier.ENTERPRISE: {
        "name": "Enterprise",
        "requests_per_month": UNLIMITED,
        "requests_per_day": UNLIMITED,
        "requests_per_minute": 60,
        "allowed_models": [
            "gpt-4o-mini",
            "gpt-4o",
            "gpt-4-turbo",
            "claude-3-opus-20240229",
            "claude-3-sonnet-20240620",
            "claude-3-5-sonnet-20240620",
        ],
        "storage_limit": 200 * GIB,
        "max_elements": UNLIMITED,
    },
}


PLAN_ENTITLEMENTS: Mapping[PlanTier, PlanEntitlement] = MappingProxyType({
    tier: PlanEntitlement(plan=tier, **config) for tier, config in DEFAULT_PLANS.items()
})

# Smallest recent-event log that can still hold a full minute at every plan's rate ceiling
MIN_EVENT_RETENTION = max(
    e.requests_per_minute for e in PLAN_ENTITLEMENTS.values() if e.requests_per_minute != UNLIMITED
)


def resolve_plan_tier(plan: Optional[Union[PlanTier, str]]) -> PlanTier:
    """Coerce a stored or caller-supplied tier; missing means basic."""
    if plan is None or plan == "":
        return PlanTier.BASIC
    if isinstance(plan, PlanTier):
        return plan
    try:
        return PlanTier(str(plan).strip().lower())
    except ValueError:
        raise ValidationError(f"Unknown plan tier: {plan}")


def get_plan_entitlement(plan: Optional[Union[PlanTier, str]] = None) -> PlanEntitlement:
    """Get the entitlement record for a tier (basic when unset)."""
    return PLAN_ENTITLEMENTS[resolve_plan_tier(plan)]


def is_unlimited(limit: int) -> bool:
    return limit == UNLIMITED


def at_or_over(limit: int, used: int) -> bool:
    """True when `used` has reached a ceiling (used >= limit)."""
    return not is_unlimited(limit) and used >= limit


def exceeds(limit: int, projected: int) -> bool:
    """True when a projected total would go past a ceiling (projected > limit)."""
    return not is_unlimited(limit) and projected > limit
