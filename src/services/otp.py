"""
Phone OTP verification sub-flow.

State per (submission, phone), kept in Redis for otp_session_ttl_seconds:
    UNSENT -> SENDING -> SENT -> VERIFYING -> APPROVED | FAILED
    FAILED -> SENDING on resend
Sends are guarded by a Redis try-lock so a double click never sends two codes,
and resends wait out a cooldown. Only the resulting verification stage is
recorded durably (by the caller, see FunnelController).
"""
import hashlib
import logging
import math
import re
import time
from typing import Callable, Optional

from pydantic import BaseModel

from src.services.errors import (
    OtpCodeFormatError,
    OtpCooldownError,
    OtpInFlightError,
    OtpSendError,
    OtpSessionMissingError,
    OtpVerificationFailedError,
)
from src.utils.locks import try_lock
from src.utils.phone import mask_phone_for_log

logger = logging.getLogger(__name__)

OTP_KEY_PREFIX = "quotefunnel:otp:"

UNSENT = "UNSENT"
SENDING = "SENDING"
SENT = "SENT"
VERIFYING = "VERIFYING"
APPROVED = "APPROVED"
FAILED = "FAILED"


class OtpSession(BaseModel):
    submission_id: str
    phone: str
    state: str = UNSENT
    verification_sid: Optional[str] = None
    sent_at: Optional[float] = None
    resend_available_at: Optional[float] = None
    attempts: int = 0
    send_count: int = 0
    last_error: Optional[str] = None

    def seconds_until_resend(self, now: float) -> int:
        if self.resend_available_at is None:
            return 0
        return max(0, math.ceil(self.resend_available_at - now))

    def to_public(self, now: float) -> dict:
        return {
            "state": self.state,
            "resend_available_in": self.seconds_until_resend(now),
            "attempts": self.attempts,
            "last_error": self.last_error,
        }


def otp_session_key(submission_id: str, phone: str) -> str:
    digest = hashlib.sha256(f"{submission_id}:{phone}".encode()).hexdigest()[:24]
    return f"{OTP_KEY_PREFIX}{digest}"


class OtpService:
    def __init__(
        self,
        provider,
        code_length: Optional[int] = None,
        cooldown_seconds: Optional[int] = None,
        session_ttl_seconds: Optional[int] = None,
        lock_seconds: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ):
        from src.config import get_settings
        settings = get_settings()
        self.provider = provider
        self.code_length = code_length or settings.otp_code_length
        self.cooldown_seconds = (
            cooldown_seconds if cooldown_seconds is not None else settings.otp_resend_cooldown_seconds
        )
        self.session_ttl_seconds = session_ttl_seconds or settings.otp_session_ttl_seconds
        self.lock_seconds = lock_seconds or settings.otp_send_lock_seconds
        self.clock = clock
        self._code_pattern = re.compile(rf"^\d{{{self.code_length}}}$")

    async def load(self, submission_id: str, phone: str) -> Optional[OtpSession]:
        from src.utils.dedup import get_redis
        redis = await get_redis()
        raw = await redis.get(otp_session_key(submission_id, phone))
        if raw is None:
            return None
        return OtpSession.model_validate_json(raw)

    async def _save(self, otp: OtpSession) -> None:
        from src.utils.dedup import get_redis
        redis = await get_redis()
        await redis.set(
            otp_session_key(otp.submission_id, otp.phone),
            otp.model_dump_json(),
            ex=self.session_ttl_seconds,
        )

    async def _send(self, otp: OtpSession) -> OtpSession:
        otp.state = SENDING
        await self._save(otp)
        try:
            sid = await self.provider.send(otp.phone)
        except Exception as e:
            otp.state = FAILED
            otp.last_error = str(e)
            await self._save(otp)
            logger.error(
                "OTP send to %s failed: %s", mask_phone_for_log(otp.phone), str(e),
                extra={"submission_id": otp.submission_id},
            )
            raise OtpSendError()

        now = self.clock()
        otp.state = SENT
        otp.verification_sid = sid
        otp.sent_at = now
        otp.resend_available_at = now + self.cooldown_seconds
        otp.send_count += 1
        otp.last_error = None
        await self._save(otp)
        return otp

    async def send_code(self, submission_id: str, phone: str) -> OtpSession:
        """
        Send the first code. Repeating the call while the resend cooldown runs
        (or once approved) returns the existing state without a new send,
        whatever happened to the previous code. Only a send that never
        reached the provider can be retried straight away.
        """
        key = otp_session_key(submission_id, phone)
        async with try_lock(key, ttl=self.lock_seconds) as acquired:
            if not acquired:
                raise OtpInFlightError()
            otp = await self.load(submission_id, phone)
            if otp is None:
                otp = OtpSession(submission_id=submission_id, phone=phone)
            if otp.state == APPROVED:
                return otp
            if otp.verification_sid and otp.seconds_until_resend(self.clock()) > 0:
                return otp
            return await self._send(otp)

    async def resend_code(self, submission_id: str, phone: str) -> OtpSession:
        otp = await self.load(submission_id, phone)
        if otp is not None:
            if otp.state == APPROVED:
                return otp
            remaining = otp.seconds_until_resend(self.clock())
            if remaining > 0:
                raise OtpCooldownError(retry_after=remaining)

        key = otp_session_key(submission_id, phone)
        async with try_lock(key, ttl=self.lock_seconds) as acquired:
            if not acquired:
                raise OtpInFlightError()
            # A send that landed between the check above and the lock restarts the cooldown
            otp = await self.load(submission_id, phone) or OtpSession(
                submission_id=submission_id, phone=phone,
            )
            if otp.state == APPROVED:
                return otp
            remaining = otp.seconds_until_resend(self.clock())
            if remaining > 0:
                raise OtpCooldownError(retry_after=remaining)
            return await self._send(otp)

    async def verify_code(self, submission_id: str, phone: str, code: str) -> OtpSession:
        code = (code or "").strip()
        if not self._code_pattern.match(code):
            raise OtpCodeFormatError(
                detail=f"Please enter the {self.code_length}-digit verification code",
            )

        otp = await self.load(submission_id, phone)
        if otp is not None and otp.state == APPROVED:
            return otp
        if otp is None or not otp.verification_sid:
            raise OtpSessionMissingError()

        otp.state = VERIFYING
        otp.attempts += 1
        await self._save(otp)

        try:
            status = await self.provider.check(phone, code)
        except Exception as e:
            otp.state = FAILED
            otp.last_error = str(e)
            await self._save(otp)
            logger.error(
                "OTP check for %s failed: %s", mask_phone_for_log(phone), str(e),
                extra={"submission_id": submission_id},
            )
            raise OtpVerificationFailedError()

        if status == "approved":
            otp.state = APPROVED
            otp.last_error = None
            await self._save(otp)
            return otp

        otp.state = FAILED
        otp.last_error = f"Verification {status}"
        await self._save(otp)
        logger.info(
            "OTP code rejected for %s (status=%s)", mask_phone_for_log(phone), status,
            extra={"submission_id": submission_id},
        )
        raise OtpVerificationFailedError()
