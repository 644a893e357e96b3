"""
Redis try-locks — stop a rapid double-click from sending two OTP codes.
Uses Redis SET NX with TTL for automatic expiration. Unlike a waiting lock,
a held lock means "someone is already doing this", so callers back off.
"""
import logging
import uuid
from contextlib import asynccontextmanager

logger = logging.getLogger(__name__)

LOCK_TTL_SECONDS = 15


@asynccontextmanager
async def try_lock(name: str, ttl: int = LOCK_TTL_SECONDS):
    """
    Try to take a lock without waiting. Yields True if acquired, False if held.

    Usage:
        async with try_lock(f"otp:{key}") as acquired:
            if not acquired:
                raise OtpInFlightError(...)
    """
    lock_key = f"quotefunnel:lock:{name}"
    lock_value = uuid.uuid4().hex  # Unique value to ensure we only release our own lock

    acquired = await _acquire_lock(lock_key, lock_value, ttl)
    try:
        yield acquired
    finally:
        if acquired:
            await _release_lock(lock_key, lock_value)


async def _acquire_lock(key: str, value: str, ttl: int) -> bool:
    """Single SET NX attempt."""
    try:
        from src.utils.dedup import get_redis
        redis = await get_redis()
        was_set = await redis.set(key, value, nx=True, ex=ttl)
        return bool(was_set)
    except Exception as e:
        # Redis failure should not block verification
        logger.warning("Redis lock error for %s: %s. Proceeding without lock.", key, str(e))
        return True


async def _release_lock(key: str, value: str) -> None:
    """Release a Redis lock only if we still own it (compare-and-delete)."""
    try:
        from src.utils.dedup import get_redis
        redis = await get_redis()

        lua_script = """
        if redis.call('get', KEYS[1]) == ARGV[1] then
            return redis.call('del', KEYS[1])
        else
            return 0
        end
        """
        await redis.eval(lua_script, 1, key, value)
    except Exception as e:
        logger.warning("Redis lock release error for %s: %s", key, str(e))
