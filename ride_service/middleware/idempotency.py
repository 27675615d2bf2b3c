import json
from typing import Optional

from fastapi import Request, Response
from fastapi.responses import JSONResponse

from ride_service.config import get_settings
from ride_service.redis_client import get_redis

settings = get_settings()


def _cache_key(platform_id: str, key: str) -> str:
    return f"idempotency:{platform_id}:{key}"


async def check_idempotency(request: Request, platform_id: str) -> Optional[Response]:
    """
    Returns the cached Response if this platform already used the
    Idempotency-Key, otherwise None (proceed normally).
    """
    key = request.headers.get("Idempotency-Key")
    if not key:
        return None

    redis = await get_redis()
    cached = await redis.get(_cache_key(platform_id, key))

    if cached:
        data = json.loads(cached)
        return JSONResponse(
            content=data["body"],
            status_code=data["status_code"],
            headers={"X-Idempotency-Replay": "true"},
        )
    return None


async def store_idempotency_result(key: str, platform_id: str, status_code: int, body: dict) -> None:
    """Persist the response for the given idempotency key."""
    redis = await get_redis()
    await redis.setex(
        _cache_key(platform_id, key),
        settings.idempotency_ttl_seconds,
        json.dumps({"status_code": status_code, "body": body}),
    )
