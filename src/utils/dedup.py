"""
Redis client and notification deduplication.
Prevents the same transactional email going out twice for one submission
when the contact step is retried or double-submitted.
"""
import hashlib
import logging

logger = logging.getLogger(__name__)

# Dedup window in seconds (24 hours)
DEDUP_WINDOW_SECONDS = 86400

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


def make_dedup_key(submission_id: str, notification: str) -> str:
    """
    Create a deduplication key from submission_id + notification type.
    Uses SHA-256 hash for consistent key length.
    """
    raw = f"{submission_id}:{notification}"
    hash_val = hashlib.sha256(raw.encode()).hexdigest()[:16]
    return f"quotefunnel:dedup:{hash_val}"


async def claim_notification(submission_id: str, notification: str) -> bool:
    """
    Claim the right to send a notification for a submission.
    Returns True exactly once per (submission, notification) inside the window.
    """
    key = make_dedup_key(submission_id, notification)

    try:
        redis = await get_redis()
        # SET NX = only set if not exists. Returns True if set (first claim), None if exists.
        was_set = await redis.set(key, "1", nx=True, ex=DEDUP_WINDOW_SECONDS)
        if was_set:
            return True
        logger.info(
            "Duplicate notification suppressed: submission=%s notification=%s",
            submission_id[:8], notification,
        )
        return False
    except Exception as e:
        # Redis failure should NOT block the notification - assume first claim
        logger.warning("Redis dedup check failed: %s. Assuming first send.", str(e))
        return True
