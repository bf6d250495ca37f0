"""
Health endpoints.

Lightweight liveness plus a readiness probe that touches the plan store.
"""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from worldgate.features.entitlements.service import EntitlementGate, get_gate

logger = logging.getLogger("worldgate")

router = APIRouter(tags=["health"])


@router.get("/healthz")
def healthz():
    """Lightweight liveness check (no deps)."""
    return {"status": "ok"}


@router.get("/readyz")
def readyz(gate: EntitlementGate = Depends(get_gate)):
    """Readiness check: plan store reachable."""
    try:
        gate.store.list_user_ids()
        return {"status": "ok"}
    except Exception as e:
        logger.error(f"[readyz] readiness check failed: {e}")
        return JSONResponse(status_code=503, content={"status": "error", "detail": "plan store unreachable"})
