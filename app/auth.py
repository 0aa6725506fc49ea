"""
Request identity

Authentication happens upstream: the auth gateway forwards the verified user
subject in X-User-Id. Admin tooling authenticates with a shared API key.
"""

import logging
from typing import Optional

from fastapi import Header, HTTPException

from . import config
from .webhook_security import constant_time_compare

logger = logging.getLogger(__name__)


async def get_current_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    """User subject forwarded by the auth gateway"""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Not authenticated")
    return x_user_id.strip()


async def require_admin(x_admin_key: Optional[str] = Header(default=None)) -> None:
    """Reject requests without a valid admin key"""
    if not config.ADMIN_API_KEY:
        logger.error("❌ Admin request rejected: ADMIN_API_KEY not configured")
        raise HTTPException(status_code=403, detail="Admin access is not configured")
    if not constant_time_compare(x_admin_key or "", config.ADMIN_API_KEY):
        logger.warning("🚫 Admin request with invalid API key")
        raise HTTPException(status_code=403, detail="Invalid admin key")
