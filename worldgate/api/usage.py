"""
Usage and quota API routes.

Surface:
- GET  /v1/usage/{user_id}: plan, subscription and per-quota summary
- POST /v1/usage/ai/check: check (and record) an AI request
- POST /v1/usage/storage/check: check an upload against the storage limit
- POST /v1/usage/storage/record: commit bytes after a successful upload
- PUT  /v1/usage/storage: overwrite the storage total after deletions
- POST /v1/usage/elements/check: check element creation against the plan
- PUT  /v1/usage/elements: report the authoritative element count

Denials are returned with HTTP 200 and allowed=false; callers show
`message` verbatim.
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from worldgate.features.entitlements.service import EntitlementGate, get_gate


router = APIRouter(prefix="/v1/usage", tags=["usage"])


class AIUsageRequest(BaseModel):
    user_id: str
    model_name: str
    operation: str
    token_estimate: float = 0


class StorageCheckRequest(BaseModel):
    user_id: str
    additional_bytes: int


class StorageRecordRequest(BaseModel):
    user_id: str
    bytes_added: int


class StorageTotalRequest(BaseModel):
    user_id: str
    storage_used: int


class ElementCheckRequest(BaseModel):
    user_id: str
    additional_elements: int = 1


class ElementCountRequest(BaseModel):
    user_id: str
    count: int


class DecisionResponse(BaseModel):
    allowed: bool
    reason: Optional[str] = None
    message: Optional[str] = None
    fail_open: bool = False
    plan: Optional[Dict[str, Any]] = None


@router.get("/{user_id}")
def usage_summary(user_id: str, gate: EntitlementGate = Depends(get_gate)):
    """Plan and quota standing for a user (creates basic-tier state on first lookup)."""
    return {"data": gate.get_usage_summary(user_id)}


@router.post("/ai/check", response_model=DecisionResponse)
def check_ai_usage(request: AIUsageRequest, gate: EntitlementGate = Depends(get_gate)):
    decision = gate.check_ai_usage(
        request.user_id,
        request.model_name,
        request.operation,
        request.token_estimate,
    )
    return decision.to_dict()


@router.post("/storage/check", response_model=DecisionResponse)
def check_storage_usage(request: StorageCheckRequest, gate: EntitlementGate = Depends(get_gate)):
    return gate.check_storage_usage(request.user_id, request.additional_bytes).to_dict()


@router.post("/storage/record")
def record_storage_usage(request: StorageRecordRequest, gate: EntitlementGate = Depends(get_gate)):
    state = gate.record_storage_usage(request.user_id, request.bytes_added)
    return {"data": {"user_id": state.user_id, "storage_used": state.usage.storage_used}}


@router.put("/storage")
def set_storage_usage(request: StorageTotalRequest, gate: EntitlementGate = Depends(get_gate)):
    state = gate.set_storage_usage(request.user_id, request.storage_used)
    return {"data": {"user_id": state.user_id, "storage_used": state.usage.storage_used}}


@router.post("/elements/check", response_model=DecisionResponse)
def check_element_limit(request: ElementCheckRequest, gate: EntitlementGate = Depends(get_gate)):
    return gate.check_element_limit(request.user_id, request.additional_elements).to_dict()


@router.put("/elements")
def update_element_count(request: ElementCountRequest, gate: EntitlementGate = Depends(get_gate)):
    state = gate.update_element_count(request.user_id, request.count)
    return {"data": {"user_id": state.user_id, "world_element_count": state.world_element_count}}
