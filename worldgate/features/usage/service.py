"""
worldgate/features/usage/service.py

Usage accounting helpers.

Handles:
- Recording an allowed request on a user's state (FIFO-capped log)
- Counting requests inside the trailing rate window
- Per-quota usage summaries for account pages
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from worldgate.features.plans.service import MIN_EVENT_RETENTION, is_unlimited
from worldgate.models.plan import PlanEntitlement
from worldgate.models.usage_event import UsageEvent
from worldgate.models.user_plan import UserPlanState

logger = logging.getLogger(__name__)

APPROACHING_LIMIT_RATIO = 0.8


def normalize_now(now: Optional[datetime]) -> datetime:
    """Current time, or `now` converted to UTC (naive values are taken as UTC)."""
    if now is None:
        return datetime.now(timezone.utc)
    if getattr(now, "tzinfo", None) is None:
        return now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc)


def effective_retention(retention: int) -> int:
    """Raise a recent-log cap that could never reach the largest per-minute ceiling."""
    if retention < MIN_EVENT_RETENTION:
        logger.warning(
            "[usage] event retention below largest per-minute ceiling, raising",
            extra={"requested": retention, "retention": MIN_EVENT_RETENTION},
        )
        return MIN_EVENT_RETENTION
    return retention


def append_usage_event(state: UserPlanState, event: UsageEvent, retention: int) -> None:
    """
    Record an allowed request on `state` in place.

    Increments monthly and daily request counts, adds the event's tokens,
    and appends the event to the recent log, evicting the oldest entries
    once the log is longer than `retention`.
    """
    usage = state.usage
    usage.monthly_requests += 1
    usage.daily_requests += 1
    usage.tokens_used += event.token_count

    usage.recent_requests.append(event)
    overflow = len(usage.recent_requests) - retention
    if overflow > 0:
        del usage.recent_requests[:overflow]


def count_recent_requests(state: UserPlanState, now: Optional[datetime] = None, window_seconds: int = 60) -> int:
    """Count logged requests strictly newer than `now - window_seconds`."""
    cutoff = normalize_now(now) - timedelta(seconds=window_seconds)
    return sum(1 for event in state.usage.recent_requests if normalize_now(event.occurred_at) > cutoff)


def _quota(limit: int, used: int) -> Dict[str, Any]:
    if is_unlimited(limit):
        return {"status": "ok", "limit": "unlimited", "used": used, "remaining": "unlimited"}

    if used >= limit:
        status = "at_limit"
    elif used >= limit * APPROACHING_LIMIT_RATIO:
        status = "approaching_limit"
    else:
        status = "ok"

    return {"status": status, "limit": limit, "used": used, "remaining": max(0, limit - used)}


def build_usage_summary(
    state: UserPlanState,
    entitlement: PlanEntitlement,
    now: Optional[datetime] = None,
    window_seconds: int = 60,
) -> Dict[str, Any]:
    """
    Summarize a user's standing against every ceiling of their plan.

    Each quota reports limit, used, remaining and a status of
    ok / approaching_limit (>= 80%) / at_limit. Unlimited ceilings report
    "unlimited" for limit and remaining.
    """
    usage = state.usage
    return {
        "user_id": state.user_id,
        "plan": state.plan.value,
        "plan_name": entitlement.name,
        "subscription_id": state.subscription_id,
        "subscription_status": state.subscription_status.value,
        "allowed_models": sorted(entitlement.allowed_models),
        "tokens_used": usage.tokens_used,
        "quotas": {
            "requests_per_month": _quota(entitlement.requests_per_month, usage.monthly_requests),
            "requests_per_day": _quota(entitlement.requests_per_day, usage.daily_requests),
            "requests_per_minute": _quota(
                entitlement.requests_per_minute,
                count_recent_requests(state, now, window_seconds),
            ),
            "storage": _quota(entitlement.storage_limit, usage.storage_used),
            "elements": _quota(entitlement.max_elements, state.world_element_count),
        },
    }
