"""
config/redis_client.py
Async Redis client for caching, JWT deny-list, login throttling,
rate limiting and pub/sub for real-time notification delivery.
"""

import json
from typing import Any, Optional
import redis.asyncio as aioredis

from config.settings import settings


# ── Global client (initialized on startup) ───────────────────
redis_client: Optional[aioredis.Redis] = None


async def init_redis() -> None:
    """Initialize the Redis connection pool."""
    global redis_client
    redis_client = aioredis.from_url(
        settings.REDIS_URL,
        encoding="utf-8",
        decode_responses=True,
        max_connections=50,
    )
    await redis_client.ping()


async def close_redis() -> None:
    """Close Redis connection pool."""
    global redis_client
    if redis_client:
        await redis_client.aclose()


def get_redis() -> aioredis.Redis:
    """FastAPI dependency to get Redis client."""
    if not redis_client:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return redis_client


def user_channel(user_id: Any) -> str:
    """Pub/sub channel carrying real-time events for one user."""
    return f"user:{user_id}"


# ── Cache Helpers ─────────────────────────────────────────────
class RedisCache:
    """Helper class for common Redis patterns."""

    def __init__(self, client: aioredis.Redis):
        self.client = client

    async def get(self, key: str) -> Optional[Any]:
        value = await self.client.get(key)
        if value:
            return json.loads(value)
        return None

    async def set(self, key: str, value: Any, ttl: int = settings.REDIS_CACHE_TTL) -> None:
        await self.client.setex(key, ttl, json.dumps(value, default=str))

    async def delete(self, key: str) -> None:
        await self.client.delete(key)

    # ── JWT Deny List ─────────────────────────────────────────
    async def revoke_token(self, jti: str, ttl_seconds: int) -> None:
        """Add JWT ID to deny list until it expires."""
        await self.client.setex(f"jwt_revoked:{jti}", max(ttl_seconds, 1), "1")

    async def is_token_revoked(self, jti: str) -> bool:
        return await self.client.exists(f"jwt_revoked:{jti}") == 1

    # ── Login Throttling ──────────────────────────────────────
    @staticmethod
    def _login_key(email: str) -> str:
        return f"login:attempts:{email.lower()}"

    async def login_attempts(self, email: str) -> int:
        value = await self.client.get(self._login_key(email))
        return int(value) if value else 0

    async def login_lockout_remaining(self, email: str) -> int:
        return max(0, await self.client.ttl(self._login_key(email)))

    async def register_failed_login(self, email: str) -> int:
        key = self._login_key(email)
        attempts = await self.client.incr(key)
        if attempts == 1:
            await self.client.expire(key, settings.LOGIN_LOCKOUT_SECONDS)
        return attempts

    async def clear_login_attempts(self, email: str) -> None:
        await self.client.delete(self._login_key(email))

    # ── Rate Limiting ─────────────────────────────────────────
    async def check_rate_limit(self, key: str, limit: int, window_seconds: int = 60) -> bool:
        """
        Fixed window rate limiter.
        Returns True if request is allowed, False if rate limited.
        """
        current_count = await self.client.incr(key)
        if current_count == 1:
            await self.client.expire(key, window_seconds)
        return current_count <= limit

    # ── Pub/Sub ───────────────────────────────────────────────
    async def publish_to_user(self, user_id: Any, event: str, payload: Any) -> int:
        """Publish an event on the user's channel. Returns subscriber count."""
        message = json.dumps({"event": event, "data": payload}, default=str)
        return await self.client.publish(user_channel(user_id), message)
