"""
admin.py

Maintenance endpoints.
"""
from fastapi import APIRouter, HTTPException
from pydantic import BaseModel
from typing import Optional
import hmac
import logging

from ..core.config import settings
from ..services.cache import invalidate_cache

router = APIRouter()
logger = logging.getLogger(__name__)

DEFAULT_PATTERNS = [
    "user:*:stats",
    "user:*:collections*",
    "user:*:actors*",
    "user:*:genres*",
]


class ClearCacheRequest(BaseModel):
    secret: Optional[str] = None
    pattern: Optional[str] = None


@router.post("/clear-cache")
async def clear_cache(payload: ClearCacheRequest):
    """Drop cached aggregations. The shared secret is only enforced in production."""
    if settings.is_production and not hmac.compare_digest(payload.secret or "", settings.cache_clear_secret):
        raise HTTPException(status_code=401, detail="Unauthorized")

    patterns = [payload.pattern] if payload.pattern else DEFAULT_PATTERNS
    total = 0
    for pattern in patterns:
        deleted = await invalidate_cache(pattern)
        total += deleted
        logger.info(f"Cleared cache pattern '{pattern}': {deleted} keys")
    return {"success": True, "deleted_keys": total, "patterns": patterns}
