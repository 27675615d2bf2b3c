import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator

import redis.asyncio as aioredis
from ride_service.config import get_settings
from ride_service.errors import RideBusy

settings = get_settings()
logger = logging.getLogger(__name__)

_redis_pool: aioredis.Redis | None = None


async def get_redis() -> aioredis.Redis:
    global _redis_pool
    if _redis_pool is None:
        _redis_pool = aioredis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=100,
        )
    return _redis_pool


async def close_redis() -> None:
    global _redis_pool
    if _redis_pool:
        await _redis_pool.aclose()
        _redis_pool = None


# ---------------------------------------------------------------------------
# Keyed locks
# ---------------------------------------------------------------------------

# Delete the key only while it still holds our token, so a holder whose lease
# expired cannot release the lock somebody else acquired since.
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class KeyedLock:
    """Short-lived NX lock so two requests cannot run the same ride/device
    critical section at once. The TTL bounds how long a crashed holder can
    block the key; it must outlast the slowest run of the section."""

    def __init__(self, redis: aioredis.Redis, ttl_seconds: float = 30):
        self.redis = redis
        self.ttl_seconds = ttl_seconds

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[str]:
        token = uuid.uuid4().hex
        acquired = await self.redis.set(key, token, nx=True, px=int(self.ttl_seconds * 1000))
        if not acquired:
            raise RideBusy(details={"lock": key})
        try:
            yield token
        finally:
            released = await self.redis.eval(_RELEASE_SCRIPT, 1, key, token)
            if not released:
                logger.warning("Lock %s expired before release (ttl=%ss)", key, self.ttl_seconds)


def ride_lock_key(ride_id: str) -> str:
    return f"ride:{ride_id}:lock"


def device_lock_key(device_code: str) -> str:
    return f"device:{device_code}:lock"
