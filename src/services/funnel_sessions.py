"""
Wizard session store - per-browser funnel state kept in Redis.

Holds answers and position between requests so the funnel logic stays on the
server. Expires after funnel_session_ttl_seconds of inactivity.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

SESSION_KEY_PREFIX = "quotefunnel:session:"


class FunnelSession(BaseModel):
    session_id: str
    partner_id: str
    service_category_id: str
    category_slug: str
    current_step: int = 1
    answers: dict[str, Any] = Field(default_factory=dict)
    selected_address: Optional[dict[str, Any]] = None
    roof_mapping_data: Optional[dict[str, Any]] = None
    contact_details: Optional[dict[str, Any]] = None
    submission_id: Optional[str] = None
    otp_required: bool = False
    otp_phone: Optional[str] = None
    completed: bool = False
    pages_completed: list[str] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    step_entered_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


def new_session_id() -> str:
    return uuid.uuid4().hex


class FunnelSessionStore:
    def __init__(self, ttl_seconds: Optional[int] = None):
        if ttl_seconds is None:
            from src.config import get_settings
            ttl_seconds = get_settings().funnel_session_ttl_seconds
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def _key(session_id: str) -> str:
        return f"{SESSION_KEY_PREFIX}{session_id}"

    async def load(self, session_id: str) -> Optional[FunnelSession]:
        from src.utils.dedup import get_redis
        redis = await get_redis()
        raw = await redis.get(self._key(session_id))
        if raw is None:
            return None
        try:
            return FunnelSession.model_validate_json(raw)
        except ValueError as e:
            logger.warning(
                "Discarding unreadable funnel session: %s", str(e),
                extra={"session_id": session_id},
            )
            return None

    async def save(self, session: FunnelSession) -> None:
        from src.utils.dedup import get_redis
        redis = await get_redis()
        await redis.set(self._key(session.session_id), session.model_dump_json(), ex=self.ttl_seconds)

    async def delete(self, session_id: str) -> None:
        from src.utils.dedup import get_redis
        redis = await get_redis()
        await redis.delete(self._key(session_id))
