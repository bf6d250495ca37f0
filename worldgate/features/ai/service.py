"""
worldgate/features/ai/service.py

Usage-gated wrapper around opaque text-generation calls.

The gate is consulted before the call; a denial is raised as an AppError
carrying the fixed user-facing message, so HTTP handlers can return it
as-is. The text generator itself is supplied by the caller.
"""

import logging
import math
from typing import Callable, TypeVar, Union

from worldgate.features.entitlements.service import EntitlementGate, enforce
from worldgate.models.usage_event import AIOperation

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Rough characters-per-token ratio for English prose
CHARS_PER_TOKEN = 4


def estimate_tokens(prompt: str) -> int:
    """Rough token estimate for a prompt (length / 4, rounded up)."""
    if not prompt:
        return 0
    return int(math.ceil(len(prompt) / CHARS_PER_TOKEN))


def run_with_usage_limit(
    gate: EntitlementGate,
    user_id: str,
    model_name: str,
    operation: Union[AIOperation, str],
    prompt: str,
    generate: Callable[[str, str], T],
) -> T:
    """
    Check usage for `user_id`, then call `generate(model_name, prompt)`.

    Raises:
        QuotaExceededError: plan, monthly, daily or element limit reached
        RateLimitError: per-minute rate reached
    """
    decision = enforce(
        gate.check_ai_usage(user_id, model_name, operation, estimate_tokens(prompt))
    )
    if decision.fail_open:
        logger.warning(
            "[ai] proceeding without verified limits",
            extra={"user_id": user_id, "model_name": model_name, "operation": AIOperation(operation).value},
        )
    return generate(model_name, prompt)
