"""Redis client for session lookup and rate limiting"""
import logging
from typing import Optional

import redis

from ethioshop.core.config import settings

logger = logging.getLogger(__name__)

# Lazy initialization - no connection at import time
_client = None

# Session TTL (30 days)
SESSION_TTL = 30 * 24 * 60 * 60

# Fixed-window rate limits
RATE_LIMIT_WINDOW = 60  # seconds
RATE_LIMIT_REQUESTS = 300
RATE_LIMIT_STRICT_REQUESTS = 60  # state-changing requests per window


def get_redis_client():
    """Get or create Redis client (lazy initialization)

    This prevents connection attempts during import, allowing test doubles to be
    installed first.
    """
    global _client
    if _client is None:
        _client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    return _client


def set_session(session_id: str, user_id: int) -> None:
    """Store session in Redis"""
    get_redis_client().setex(f"session:{session_id}", SESSION_TTL, user_id)


def get_session(session_id: str) -> Optional[int]:
    """Get user_id from session"""
    user_id = get_redis_client().get(f"session:{session_id}")
    return int(user_id) if user_id else None


def check_rate_limit(identifier: str, strict: bool = False) -> bool:
    """Count a request against the identifier's window.

    Returns:
        True if within limit, False if exceeded
    """
    limit = RATE_LIMIT_STRICT_REQUESTS if strict else RATE_LIMIT_REQUESTS
    key = f"ratelimit:{'strict' if strict else 'normal'}:{identifier}"
    try:
        client = get_redis_client()
        count = client.incr(key)
        if count == 1:
            client.expire(key, RATE_LIMIT_WINDOW)
        return count <= limit
    except redis.RedisError as e:
        # Fail open when Redis is unavailable
        logger.error(f"Rate limit check failed for {identifier}: {e}")
        return True
