"""
worldgate/models/plan.py

Plan tier and entitlement models.

Plans describe capability tiers (basic, pro, enterprise) without pricing.
"""

from enum import Enum
from typing import FrozenSet
from pydantic import BaseModel, ConfigDict

# Ceiling sentinel: a limit of -1 never trips
UNLIMITED = -1


class PlanTier(str, Enum):
    BASIC = "basic"
    PRO = "pro"
    ENTERPRISE = "enterprise"


class PlanEntitlement(BaseModel):
    """
    PlanEntitlement is the static quota record for one plan tier.

    Numeric ceilings:
    - requests_per_month / requests_per_day / requests_per_minute: AI requests
    - storage_limit: bytes
    - max_elements: world elements

    Any ceiling may be UNLIMITED (-1).
    """
    model_config = ConfigDict(frozen=True)

    plan: PlanTier
    name: str
    requests_per_month: int
    requests_per_day: int
    requests_per_minute: int
    allowed_models: FrozenSet[str]
    storage_limit: int
    max_elements: int

    def allows_model(self, model_name: str) -> bool:
        return model_name in self.allowed_models
