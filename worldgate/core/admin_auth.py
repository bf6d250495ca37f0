"""
Admin authentication for plan changes and scheduled resets.

Callers (billing webhook relay, cron) present the shared secret in the
X-Admin-Key header. When ADMIN_KEY is unset every admin call is refused.
"""
import hashlib
import hmac
import logging
import os
from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from worldgate.core.config import settings
from worldgate.core.errors import AppError, PermissionError

logger = logging.getLogger("worldgate.admin_auth")


@dataclass
class AdminActor:
    """Represents an authenticated admin caller."""
    actor_id: str  # "key:<hash prefix>"
    auth_mechanism: str = "x_admin_key"


def get_admin_api_key() -> Optional[str]:
    """Prefer ADMIN_API_KEY env var; fall back to settings.ADMIN_KEY."""
    return os.getenv("ADMIN_API_KEY") or settings.ADMIN_KEY


def require_admin(request: Request) -> AdminActor:
    """
    FastAPI dependency: require a valid X-Admin-Key header.

    Usage:
        @router.post("/v1/admin/...")
        def endpoint(actor: AdminActor = Depends(require_admin)):
            ...
    """
    expected_key = get_admin_api_key()
    if not expected_key:
        raise AppError(
            "Admin authentication not configured. Set ADMIN_KEY.",
            code="admin_auth_unconfigured",
            status_code=503,
        )

    header_key = request.headers.get("X-Admin-Key", "").strip()
    if not header_key or not hmac.compare_digest(header_key, expected_key):
        logger.warning("[admin_auth] invalid admin key attempt", extra={"path": request.url.path})
        raise PermissionError("Invalid or missing X-Admin-Key header")

    key_hash = hashlib.sha256(header_key.encode()).hexdigest()[:16]
    return AdminActor(actor_id=f"key:{key_hash}")
