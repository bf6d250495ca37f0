"""
worldgate/models/usage_event.py

UsageEvent model: one allowed AI request, appended to the user's recent log.
"""

from datetime import datetime
from enum import Enum
from pydantic import BaseModel, ConfigDict


class AIOperation(str, Enum):
    GENERATE = "generate"
    STREAM = "stream"
    ANALYZE = "analyze"


class UsageEvent(BaseModel):
    """
    UsageEvent records an allowed AI request.

    Never mutated after creation; the rate check filters these by
    occurred_at over a trailing window.
    """
    model_config = ConfigDict(frozen=True)

    operation: AIOperation
    model_name: str
    occurred_at: datetime
    token_count: int = 0
