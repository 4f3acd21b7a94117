"""
Redis client and per-activity processing locks.

Redis is optional. When it is down, locks report "acquired" and the
idempotent upsert keyed on activity_id is the only duplicate guard. After a
failed connect the client is not retried for RECONNECT_COOLDOWN_S, so an
outage does not add a connect timeout to every message.
"""
import logging
import time
from typing import Optional
import redis
from redis.exceptions import RedisError
from core.config import settings

logger = logging.getLogger(__name__)

LOCK_PREFIX = "recommendation:lock"
RECONNECT_COOLDOWN_S = 30

_redis_client: Optional[redis.Redis] = None
_last_failure_at: Optional[float] = None


def get_redis_client() -> Optional[redis.Redis]:
    """Shared Redis client, or None while Redis is unreachable."""
    global _redis_client, _last_failure_at

    if _redis_client is not None:
        return _redis_client
    if _last_failure_at is not None and time.monotonic() - _last_failure_at < RECONNECT_COOLDOWN_S:
        return None

    try:
        client = redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2,
            retry_on_timeout=True,
            health_check_interval=30,
        )
        client.ping()
    except RedisError as e:
        _last_failure_at = time.monotonic()
        logger.warning(f"Redis unavailable: {e}. Processing locks disabled for {RECONNECT_COOLDOWN_S}s.")
        return None

    _redis_client = client
    _last_failure_at = None
    logger.info("Redis connection established")
    return _redis_client


def lock_key(activity_id: str) -> str:
    return f"{LOCK_PREFIX}:{activity_id}"


def acquire_processing_lock(activity_id: str, ttl_s: Optional[int] = None) -> bool:
    """
    Claim an activity for recommendation generation.

    False only when another worker holds the claim. The TTL frees the claim
    if its holder dies mid-message.
    """
    client = get_redis_client()
    if client is None:
        return True

    try:
        return bool(client.set(lock_key(activity_id), "1", nx=True, ex=ttl_s or settings.RECOMMENDATION_LOCK_TTL_S))
    except RedisError as e:
        logger.warning(f"Lock acquire failed for activity {activity_id}, proceeding unlocked: {e}")
        return True


def release_processing_lock(activity_id: str) -> None:
    client = get_redis_client()
    if client is None:
        return

    try:
        client.delete(lock_key(activity_id))
    except RedisError as e:
        # TTL expiry cleans up
        logger.warning(f"Lock release failed for activity {activity_id}: {e}")
