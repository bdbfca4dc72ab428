"""
rate_limit.py

Redis-based AsyncLimiter protecting the API per endpoint class and per
caller (user id or client IP). Uses a sorted-set sliding window and fails
open when Redis is unavailable.
"""
import time
import uuid
import logging
from typing import Optional, Dict, Any

from fastapi import Depends, HTTPException, Request

from cinetrack.core.config import settings
from cinetrack.core.redis_client import get_redis
from cinetrack.core.security import get_optional_user

logger = logging.getLogger(__name__)

# Rate limit configurations (requests per window seconds)
RATE_LIMITS = {
    "search": {"limit": 100, "window": 60},
    "recommendations": {"limit": 30, "window": 60},
    "user": {"limit": 60, "window": 60},
    "watchlist": {"limit": 200, "window": 60},  # grids load in batches
    "ratings": {"limit": 300, "window": 60},
    "movie-details": {"limit": 300, "window": 60},
    "default": {"limit": 100, "window": 60},
}


class RateLimitExceeded(Exception):
    """Exception raised when rate limit is exceeded."""

    def __init__(self, message: str, endpoint: str = None, key: str = None, status: Dict = None):
        super().__init__(message)
        self.endpoint = endpoint
        self.key = key
        self.status = status or {}


class AsyncLimiter:
    """Redis-based rate limiter with sliding window."""

    def __init__(self, endpoint: str, key: str, redis=None):
        self.endpoint = endpoint if endpoint in RATE_LIMITS else "default"
        self.key = key
        self.redis = redis
        self.config = RATE_LIMITS[self.endpoint]

    @property
    def redis_key(self) -> str:
        return f"rate_limit:{self.endpoint}:{self.key}"

    async def acquire(self) -> Dict[str, Any]:
        """Record one request. Returns a status dict with ``success``."""
        now = time.time()
        window = self.config["window"]
        limit = self.config["limit"]
        allowed = {"success": True, "limit": limit, "remaining": limit, "reset": int(now + window)}

        try:
            redis = self.redis or get_redis()
            # Use sliding window with Redis pipeline
            pipe = redis.pipeline()
            # Remove expired entries
            pipe.zremrangebyscore(self.redis_key, 0, now - window)
            # Add current request; unique member so same-timestamp requests all count
            pipe.zadd(self.redis_key, {f"{now}:{uuid.uuid4().hex}": now})
            # Count current requests
            pipe.zcard(self.redis_key)
            # Set expiry
            pipe.expire(self.redis_key, window)
            results = await pipe.execute()
        except Exception as e:
            logger.error(f"Rate limit check failed for {self.key} on {self.endpoint}, allowing request: {e}")
            return allowed

        current_count = results[2]
        remaining = max(0, limit - current_count)
        if current_count > limit:
            logger.warning(f"Rate limit exceeded for {self.key} on {self.endpoint}: {current_count}/{limit}")
            return {"success": False, "limit": limit, "remaining": 0, "reset": int(now + window)}
        return {"success": True, "limit": limit, "remaining": remaining, "reset": int(now + window)}


def client_key(request: Request, user_id: Optional[int] = None) -> str:
    if user_id is not None:
        return f"user:{user_id}"
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return f"ip:{forwarded.split(',')[0].strip()}"
    host = request.client.host if request.client else "anonymous"
    return f"ip:{host}"


async def check_rate_limit(endpoint: str, key: str) -> Dict[str, Any]:
    """Check rate limit and raise exception if exceeded."""
    if not settings.rate_limit_enabled:
        limit = RATE_LIMITS.get(endpoint, RATE_LIMITS["default"])["limit"]
        return {"success": True, "limit": limit, "remaining": limit}
    status = await AsyncLimiter(endpoint, key).acquire()
    if not status["success"]:
        raise RateLimitExceeded(f"Rate limit exceeded for {endpoint}", endpoint=endpoint, key=key, status=status)
    return status


def rate_limited(endpoint: str):
    """FastAPI dependency factory enforcing the ``endpoint`` class quota."""

    async def _dependency(request: Request, user=Depends(get_optional_user)):
        key = client_key(request, user.id if user is not None else None)
        try:
            await check_rate_limit(endpoint, key)
        except RateLimitExceeded as e:
            raise HTTPException(
                status_code=429,
                detail="Too many requests",
                headers={
                    "X-RateLimit-Limit": str(e.status.get("limit", "")),
                    "X-RateLimit-Remaining": "0",
                    "X-RateLimit-Reset": str(e.status.get("reset", "")),
                },
            )

    return _dependency
