"""
worldgate/features/entitlements/service.py

Entitlement gate: the single decision point for AI, storage and
world-element quotas.

Handles:
- Ordered AI usage checks (model, monthly, daily, per-minute rate, elements)
  with usage recorded only when every check passes
- Storage and element checks, decoupled from the later commit calls
- Plan/subscription updates relayed from billing
- Daily and monthly counter resets over every known user
- Fail-open on store errors (configurable), logged for audit
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from numbers import Real
from typing import Any, Dict, Optional, Union

from worldgate.core.config import settings
from worldgate.core.errors import PlanStoreError, QuotaExceededError, RateLimitError, ValidationError
from worldgate.features.plans.service import at_or_over, exceeds, get_plan_entitlement, resolve_plan_tier
from worldgate.features.usage.service import (
    append_usage_event,
    build_usage_summary,
    count_recent_requests,
    effective_retention,
    normalize_now,
)
from worldgate.features.usage.store import PlanStore, build_store_from_settings
from worldgate.models.plan import PlanEntitlement, PlanTier
from worldgate.models.usage_event import AIOperation, UsageEvent
from worldgate.models.user_plan import SubscriptionStatus, UserPlanState


logger = logging.getLogger(__name__)


class DenialReason(str, Enum):
    MODEL_NOT_ALLOWED = "MODEL_NOT_ALLOWED"
    MONTHLY_LIMIT = "MONTHLY_LIMIT"
    DAILY_LIMIT = "DAILY_LIMIT"
    RATE_LIMIT = "RATE_LIMIT"
    STORAGE_LIMIT = "STORAGE_LIMIT"
    ELEMENTS_LIMIT = "ELEMENTS_LIMIT"


# User-facing text, shown verbatim by callers
DENIAL_MESSAGES: Dict[DenialReason, str] = {
    DenialReason.MODEL_NOT_ALLOWED: "Your current plan does not have access to this AI model. Please upgrade to use this feature.",
    DenialReason.MONTHLY_LIMIT: "You've reached your monthly AI request limit. Please upgrade your plan for additional requests.",
    DenialReason.DAILY_LIMIT: "You've reached your daily AI request limit. Please try again tomorrow or upgrade your plan.",
    DenialReason.RATE_LIMIT: "Too many requests. Please wait a moment before trying again.",
    DenialReason.STORAGE_LIMIT: "You've reached your storage limit. Please upgrade your plan for additional storage.",
    DenialReason.ELEMENTS_LIMIT: "You've reached the maximum number of world elements for your plan. Please upgrade to add more.",
}

FAIL_OPEN_WARNINGS = {
    "ai": "Warning: Could not verify usage limits",
    "storage": "Warning: Could not verify storage limits",
    "elements": "Warning: Could not verify element limits",
}


@dataclass(frozen=True)
class GateDecision:
    allowed: bool
    reason: Optional[DenialReason] = None
    message: Optional[str] = None
    state: Optional[UserPlanState] = None
    fail_open: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed": self.allowed,
            "reason": self.reason.value if self.reason else None,
            "message": self.message,
            "fail_open": self.fail_open,
            "plan": self.state.model_dump(mode="json") if self.state else None,
        }


def _require_user_id(user_id: Any) -> str:
    if not isinstance(user_id, str) or not user_id.strip():
        raise ValidationError("user_id must be a non-empty string")
    return user_id


def _require_count(name: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer")
    if value < 0:
        raise ValidationError(f"{name} must be non-negative")
    return value


def _coerce_tokens(token_estimate: Any) -> int:
    if token_estimate is None:
        return 0
    if isinstance(token_estimate, bool) or not isinstance(token_estimate, Real) or not math.isfinite(token_estimate):
        raise ValidationError("token_estimate must be a finite number")
    if token_estimate < 0:
        raise ValidationError("token_estimate must be non-negative")
    return int(math.ceil(token_estimate))


def _coerce_operation(operation: Union[AIOperation, str]) -> AIOperation:
    try:
        return AIOperation(operation)
    except ValueError:
        raise ValidationError(f"Unknown AI operation: {operation}")


def _coerce_status(status: Union[SubscriptionStatus, str]) -> SubscriptionStatus:
    try:
        return SubscriptionStatus(status)
    except ValueError:
        raise ValidationError(f"Unknown subscription status: {status}")


def _deny(reason: DenialReason, state: UserPlanState) -> GateDecision:
    return GateDecision(
        allowed=False,
        reason=reason,
        message=DENIAL_MESSAGES[reason],
        state=state.snapshot(),
    )


class EntitlementGate:
    """
    Decides allow/deny against a user's plan and records allowed AI usage.

    Denials are returned as GateDecision values, never raised. Store
    failures during a check either fail open (allowed, with a warning
    message) or surface as PlanStoreError, per `fail_open`.
    """

    def __init__(
        self,
        store: PlanStore,
        *,
        retention: Optional[int] = None,
        fail_open: Optional[bool] = None,
        rate_window_seconds: Optional[int] = None,
    ):
        self.store = store
        self.retention = effective_retention(retention or settings.USAGE_EVENT_RETENTION)
        self.fail_open = settings.ENTITLEMENTS_FAIL_OPEN if fail_open is None else fail_open
        self.rate_window_seconds = rate_window_seconds or settings.RATE_LIMIT_WINDOW_SECONDS

    # Checks

    def _first_ai_denial(
        self,
        state: UserPlanState,
        entitlement: PlanEntitlement,
        model_name: str,
        operation: AIOperation,
        now: datetime,
    ) -> Optional[DenialReason]:
        usage = state.usage
        if not entitlement.allows_model(model_name):
            return DenialReason.MODEL_NOT_ALLOWED
        if at_or_over(entitlement.requests_per_month, usage.monthly_requests):
            return DenialReason.MONTHLY_LIMIT
        if at_or_over(entitlement.requests_per_day, usage.daily_requests):
            return DenialReason.DAILY_LIMIT
        recent = count_recent_requests(state, now, self.rate_window_seconds)
        if at_or_over(entitlement.requests_per_minute, recent):
            return DenialReason.RATE_LIMIT
        if operation == AIOperation.GENERATE and at_or_over(entitlement.max_elements, state.world_element_count):
            return DenialReason.ELEMENTS_LIMIT
        return None

    def check_ai_usage(
        self,
        user_id: str,
        model_name: str,
        operation: Union[AIOperation, str],
        token_estimate: Union[int, float] = 0,
        *,
        now: Optional[datetime] = None,
    ) -> GateDecision:
        """
        Check an AI request and, if allowed, record it.

        Checks run in order and the first failure wins; a denial leaves the
        counters untouched. The whole read-evaluate-write runs under the
        store's per-user lock.
        """
        user_id = _require_user_id(user_id)
        op = _coerce_operation(operation)
        tokens = _coerce_tokens(token_estimate)
        normalized_now = normalize_now(now)

        try:
            with self.store.locked(user_id):
                state = self.store.get(user_id)
                entitlement = get_plan_entitlement(state.plan)
                reason = self._first_ai_denial(state, entitlement, model_name, op, normalized_now)
                if reason is not None:
                    logger.warning(
                        "[gate] DENY",
                        extra={
                            "user_id": user_id,
                            "plan": state.plan.value,
                            "model_name": model_name,
                            "operation": op.value,
                            "reason": reason.value,
                            "monthly_requests": state.usage.monthly_requests,
                            "daily_requests": state.usage.daily_requests,
                        },
                    )
                    return _deny(reason, state)

                append_usage_event(
                    state,
                    UsageEvent(operation=op, model_name=model_name, occurred_at=normalized_now, token_count=tokens),
                    self.retention,
                )
                self.store.put(state)
        except Exception as e:
            return self._fail_open("ai", user_id, e)

        logger.info(
            "[gate] ALLOW",
            extra={
                "user_id": user_id,
                "plan": state.plan.value,
                "model_name": model_name,
                "operation": op.value,
                "token_count": tokens,
                "monthly_requests": state.usage.monthly_requests,
                "daily_requests": state.usage.daily_requests,
            },
        )
        return GateDecision(allowed=True, state=state.snapshot())

    def check_storage_usage(self, user_id: str, additional_bytes: int) -> GateDecision:
        """Allow when storage_used + additional_bytes stays within the plan limit. No mutation."""
        user_id = _require_user_id(user_id)
        additional_bytes = _require_count("additional_bytes", additional_bytes)

        try:
            state = self.store.get(user_id)
            entitlement = get_plan_entitlement(state.plan)
        except Exception as e:
            return self._fail_open("storage", user_id, e)

        projected = state.usage.storage_used + additional_bytes
        if exceeds(entitlement.storage_limit, projected):
            logger.warning(
                "[gate] DENY",
                extra={
                    "user_id": user_id,
                    "plan": state.plan.value,
                    "reason": DenialReason.STORAGE_LIMIT.value,
                    "storage_used": state.usage.storage_used,
                    "additional_bytes": additional_bytes,
                    "storage_limit": entitlement.storage_limit,
                },
            )
            return _deny(DenialReason.STORAGE_LIMIT, state)
        return GateDecision(allowed=True, state=state.snapshot())

    def check_element_limit(self, user_id: str, additional_elements: int = 1) -> GateDecision:
        """Allow when world_element_count + additional_elements stays within the plan limit. No mutation."""
        user_id = _require_user_id(user_id)
        additional_elements = _require_count("additional_elements", additional_elements)

        try:
            state = self.store.get(user_id)
            entitlement = get_plan_entitlement(state.plan)
        except Exception as e:
            return self._fail_open("elements", user_id, e)

        projected = state.world_element_count + additional_elements
        if exceeds(entitlement.max_elements, projected):
            logger.warning(
                "[gate] DENY",
                extra={
                    "user_id": user_id,
                    "plan": state.plan.value,
                    "reason": DenialReason.ELEMENTS_LIMIT.value,
                    "world_element_count": state.world_element_count,
                    "additional_elements": additional_elements,
                },
            )
            return _deny(DenialReason.ELEMENTS_LIMIT, state)
        return GateDecision(allowed=True, state=state.snapshot())

    def _fail_open(self, kind: str, user_id: str, error: Exception) -> GateDecision:
        if not self.fail_open:
            logger.error(
                "[gate] store unavailable, failing closed",
                exc_info=True,
                extra={"user_id": user_id, "check": kind, "fail_open": False},
            )
            if isinstance(error, PlanStoreError):
                raise error
            raise PlanStoreError(f"Could not verify {kind} limits for {user_id}: {error}") from error

        logger.error(
            "[gate] FAIL_OPEN",
            exc_info=True,
            extra={"user_id": user_id, "check": kind, "fail_open": True, "error": str(error)},
        )
        return GateDecision(
            allowed=True,
            message=FAIL_OPEN_WARNINGS[kind],
            state=UserPlanState(user_id=user_id),
            fail_open=True,
        )

    # Commits and reports

    def record_storage_usage(self, user_id: str, bytes_added: int) -> UserPlanState:
        """Add bytes to storage_used once an upload has succeeded."""
        user_id = _require_user_id(user_id)
        bytes_added = _require_count("bytes_added", bytes_added)
        with self.store.locked(user_id):
            state = self.store.get(user_id)
            state.usage.storage_used += bytes_added
            self.store.put(state)
        logger.info(
            "[gate] storage recorded",
            extra={"user_id": user_id, "bytes_added": bytes_added, "storage_used": state.usage.storage_used},
        )
        return state.snapshot()

    def set_storage_usage(self, user_id: str, storage_used: int) -> UserPlanState:
        """Overwrite storage_used with the caller's recomputed total, e.g. after files are deleted."""
        user_id = _require_user_id(user_id)
        storage_used = _require_count("storage_used", storage_used)
        with self.store.locked(user_id):
            state = self.store.get(user_id)
            previous = state.usage.storage_used
            state.usage.storage_used = storage_used
            self.store.put(state)
        logger.info(
            "[gate] storage set",
            extra={"user_id": user_id, "storage_used": storage_used, "previous_storage_used": previous},
        )
        return state.snapshot()

    def update_element_count(self, user_id: str, count: int) -> UserPlanState:
        """Set the caller-reported authoritative world element count."""
        user_id = _require_user_id(user_id)
        count = _require_count("count", count)
        with self.store.locked(user_id):
            state = self.store.get(user_id)
            state.world_element_count = count
            self.store.put(state)
        logger.info("[gate] element count updated", extra={"user_id": user_id, "world_element_count": count})
        return state.snapshot()

    def set_plan(
        self,
        user_id: str,
        plan: Union[PlanTier, str],
        subscription_id: Optional[str] = None,
        status: Union[SubscriptionStatus, str] = SubscriptionStatus.ACTIVE,
    ) -> UserPlanState:
        """
        Overwrite plan tier, subscription id and status.

        No transition rules are applied; the billing relay that calls this
        owns legality of the change.
        """
        user_id = _require_user_id(user_id)
        tier = resolve_plan_tier(plan)
        new_status = _coerce_status(status)
        with self.store.locked(user_id):
            state = self.store.get(user_id)
            previous = (state.plan, state.subscription_status)
            state.plan = tier
            state.subscription_id = subscription_id
            state.subscription_status = new_status
            self.store.put(state)
        logger.info(
            "[gate] plan updated",
            extra={
                "user_id": user_id,
                "plan": tier.value,
                "previous_plan": previous[0].value,
                "subscription_status": new_status.value,
                "previous_status": previous[1].value,
            },
        )
        return state.snapshot()

    def get_plan_info(self, user_id: str) -> UserPlanState:
        return self.store.get(_require_user_id(user_id))

    def get_usage_summary(self, user_id: str, *, now: Optional[datetime] = None) -> Dict[str, Any]:
        state = self.get_plan_info(user_id)
        return build_usage_summary(
            state,
            get_plan_entitlement(state.plan),
            now=normalize_now(now),
            window_seconds=self.rate_window_seconds,
        )

    # Scheduled resets (invoked externally, e.g. by cron)

    def reset_daily(self) -> int:
        """Zero daily_requests for every known user. Returns users reset."""
        count = 0
        for user_id in self.store.list_user_ids():
            with self.store.locked(user_id):
                state = self.store.get(user_id)
                state.usage.daily_requests = 0
                self.store.put(state)
            count += 1
        logger.info("[gate] daily usage reset", extra={"users": count})
        return count

    def reset_monthly(self) -> int:
        """Zero monthly_requests and tokens_used for every known user. Returns users reset."""
        count = 0
        for user_id in self.store.list_user_ids():
            with self.store.locked(user_id):
                state = self.store.get(user_id)
                state.usage.monthly_requests = 0
                state.usage.tokens_used = 0
                self.store.put(state)
            count += 1
        logger.info("[gate] monthly usage reset", extra={"users": count})
        return count


def enforce(decision: GateDecision) -> GateDecision:
    """
    Raise for a denied decision; return it unchanged otherwise.

    RATE_LIMIT maps to RateLimitError (429); every other reason maps to
    QuotaExceededError (403) with the reason as the error code.
    """
    if decision.allowed:
        return decision
    if decision.reason == DenialReason.RATE_LIMIT:
        raise RateLimitError(decision.message)
    raise QuotaExceededError(decision.message, code=decision.reason.value.lower())


_gate: Optional[EntitlementGate] = None


def get_gate() -> EntitlementGate:
    """Process-wide gate built from settings on first use."""
    global _gate
    if _gate is None:
        _gate = EntitlementGate(build_store_from_settings())
    return _gate
