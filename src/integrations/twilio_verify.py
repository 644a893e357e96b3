"""
Twilio Verify provider - sends and checks phone OTP codes.
The twilio SDK is synchronous, so every call runs in the thread pool.
"""
import asyncio
import logging
from typing import Optional

from src.utils.phone import mask_phone_for_log

logger = logging.getLogger(__name__)

# Twilio client timeout
TWILIO_CLIENT_TIMEOUT = 10

STATUS_APPROVED = "approved"


def _get_twilio_client():
    """Get a Twilio REST client with configured timeout."""
    from twilio.rest import Client as TwilioClient
    from twilio.http.http_client import TwilioHttpClient
    from src.config import get_settings
    settings = get_settings()
    http_client = TwilioHttpClient(timeout=TWILIO_CLIENT_TIMEOUT)
    return TwilioClient(
        settings.twilio_account_sid,
        settings.twilio_auth_token,
        http_client=http_client,
    )


async def _run_sync(func, *args, **kwargs):
    """Run a synchronous function in the thread pool to avoid blocking the event loop."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, lambda: func(*args, **kwargs))


class TwilioVerifyProvider:
    """OTP provider backed by a Twilio Verify service."""

    def __init__(self, service_sid: Optional[str] = None, client=None, channel: str = "sms"):
        if service_sid is None:
            from src.config import get_settings
            service_sid = get_settings().twilio_verify_service_sid
        self.service_sid = service_sid
        self.channel = channel
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = _get_twilio_client()
        return self._client

    def _service(self):
        if not self.service_sid:
            raise ValueError("TWILIO_VERIFY_SERVICE_SID is not configured")
        return self.client.verify.v2.services(self.service_sid)

    async def send(self, phone: str) -> str:
        """Start a verification. Returns the verification sid."""
        service = self._service()
        verification = await _run_sync(
            service.verifications.create, to=phone, channel=self.channel,
        )
        logger.info(
            "OTP sent to %s status=%s",
            mask_phone_for_log(phone), verification.status,
            extra={"provider": "twilio_verify"},
        )
        return verification.sid

    async def check(self, phone: str, code: str) -> str:
        """Check a code. Returns the provider status ("approved", "pending", ...)."""
        service = self._service()
        check = await _run_sync(
            service.verification_checks.create, to=phone, code=code,
        )
        logger.info(
            "OTP check for %s status=%s",
            mask_phone_for_log(phone), check.status,
            extra={"provider": "twilio_verify"},
        )
        return check.status
