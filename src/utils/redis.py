"""
Shared Redis connection and worker heartbeats.
Redis only holds liveness data here, so every helper fails open.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger(__name__)

HEARTBEAT_KEY_PREFIX = "leadsync:worker_health:"

# Redis client (lazily initialized)
_redis_client = None


async def get_redis():
    """Get or create Redis connection."""
    global _redis_client
    if _redis_client is None:
        import redis.asyncio as aioredis
        from src.config import get_settings
        _redis_client = aioredis.from_url(
            get_settings().redis_url,
            decode_responses=True,
        )
    return _redis_client


async def close_redis() -> None:
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
    _redis_client = None


async def record_heartbeat(worker: str, ttl_seconds: int) -> None:
    """Store the worker's last-alive timestamp. Logs and moves on if Redis is down."""
    try:
        redis = await get_redis()
        await redis.set(
            f"{HEARTBEAT_KEY_PREFIX}{worker}",
            datetime.now(timezone.utc).isoformat(),
            ex=ttl_seconds,
        )
    except Exception as e:
        logger.debug("Heartbeat write failed for %s: %s", worker, str(e))


async def get_heartbeat(worker: str) -> Optional[str]:
    """Last heartbeat timestamp (ISO-8601), or None if missing or Redis is down."""
    try:
        redis = await get_redis()
        return await redis.get(f"{HEARTBEAT_KEY_PREFIX}{worker}")
    except Exception as e:
        logger.debug("Heartbeat read failed for %s: %s", worker, str(e))
        return None
