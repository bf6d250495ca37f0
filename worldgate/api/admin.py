"""
Admin-only routes.
Requires X-Admin-Key header for all endpoints.

- PUT  /v1/admin/plans/{user_id}: relay a subscription change from billing
- POST /v1/admin/usage/reset/daily: zero daily counters (cron, midnight)
- POST /v1/admin/usage/reset/monthly: zero monthly counters and tokens (cron, 1st of month)
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from worldgate.core.admin_auth import AdminActor, require_admin
from worldgate.features.entitlements.service import EntitlementGate, get_gate

logger = logging.getLogger("worldgate.admin")

router = APIRouter(prefix="/v1/admin", tags=["admin"])


class SetPlanRequest(BaseModel):
    plan: str
    subscription_id: Optional[str] = None
    status: str = "active"


@router.put("/plans/{user_id}")
def set_plan(
    user_id: str,
    request: SetPlanRequest,
    gate: EntitlementGate = Depends(get_gate),
    actor: AdminActor = Depends(require_admin),
):
    state = gate.set_plan(user_id, request.plan, request.subscription_id, request.status)
    logger.info("[admin] plan set", extra={"user_id": user_id, "plan": state.plan.value, "actor_id": actor.actor_id})
    return {
        "data": {
            "user_id": state.user_id,
            "plan": state.plan.value,
            "subscription_id": state.subscription_id,
            "subscription_status": state.subscription_status.value,
        }
    }


@router.post("/usage/reset/daily")
def reset_daily(gate: EntitlementGate = Depends(get_gate), actor: AdminActor = Depends(require_admin)):
    count = gate.reset_daily()
    logger.info("[admin] daily reset", extra={"users": count, "actor_id": actor.actor_id})
    return {"data": {"period": "daily", "users_reset": count}}


@router.post("/usage/reset/monthly")
def reset_monthly(gate: EntitlementGate = Depends(get_gate), actor: AdminActor = Depends(require_admin)):
    count = gate.reset_monthly()
    logger.info("[admin] monthly reset", extra={"users": count, "actor_id": actor.actor_id})
    return {"data": {"period": "monthly", "users_reset": count}}
