"""
worldgate/models/user_plan.py

Per-user plan assignment, subscription status and usage counters.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field

from worldgate.models.plan import PlanTier
from worldgate.models.usage_event import UsageEvent


class SubscriptionStatus(str, Enum):
    """Mirrors the billing provider's subscription status. Any state may follow any other."""
    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    INCOMPLETE = "incomplete"


class UsageCounters(BaseModel):
    monthly_requests: int = 0
    daily_requests: int = 0
    tokens_used: int = 0
    storage_used: int = 0
    recent_requests: List[UsageEvent] = Field(default_factory=list)


class UserPlanState(BaseModel):
    """
    UserPlanState is the mutable per-user record the gate reads and writes.

    Constraint: exactly one state per user_id. New users start on the
    basic plan with zeroed counters.
    """

    user_id: str
    plan: PlanTier = PlanTier.BASIC
    subscription_id: Optional[str] = None
    subscription_status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    world_element_count: int = 0
    usage: UsageCounters = Field(default_factory=UsageCounters)
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def snapshot(self) -> "UserPlanState":
        return self.model_copy(deep=True)
