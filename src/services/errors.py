"""
Funnel domain errors. Services raise these; src/main.py translates them into
JSON responses of the form {"detail": ..., "errors": {...}} using status_code.
"""
from typing import Optional


class FunnelError(Exception):
    status_code = 400
    detail = "Request could not be completed"

    def __init__(self, detail: Optional[str] = None, errors: Optional[dict] = None):
        self.detail = detail or self.detail
        self.errors = errors or {}
        super().__init__(self.detail)

    def headers(self) -> dict[str, str]:
        return {}


# Configuration

class PartnerNotFoundError(FunnelError):
    status_code = 400
    detail = "Partner not found for this domain"


class CategoryNotFoundError(FunnelError):
    status_code = 404
    detail = "Service category not found"


class SmtpNotConfiguredError(FunnelError):
    status_code = 400
    detail = "SMTP settings are not configured for this partner"


# Client state

class FunnelSessionNotFoundError(FunnelError):
    status_code = 404
    detail = "Funnel session not found"


# Validation

class UnknownQuestionError(FunnelError):
    status_code = 422
    detail = "Unknown question"


class StepIncompleteError(FunnelError):
    status_code = 422
    detail = "Please answer all required questions"


class ContactValidationError(FunnelError):
    status_code = 422
    detail = "Please correct the highlighted fields"

    def __init__(self, errors: dict[str, str]):
        super().__init__(errors=errors)


# Critical-path I/O

class LeadPersistenceError(FunnelError):
    status_code = 503
    detail = "We couldn't save your details. Please try again."


# Phone verification

class OtpError(FunnelError):
    pass


class OtpInFlightError(OtpError):
    status_code = 409
    detail = "A verification code is already being sent"


class OtpSessionMissingError(OtpError):
    status_code = 409
    detail = "No verification code has been sent for this number"


class OtpCodeFormatError(OtpError):
    status_code = 422
    detail = "Please enter the full verification code"


class OtpSendError(OtpError):
    status_code = 502
    detail = "We couldn't send a verification code. Please try again."


class OtpVerificationFailedError(OtpError):
    status_code = 400
    detail = "Invalid verification code. Please try again."


class OtpCooldownError(OtpError):
    status_code = 429
    detail = "Please wait before requesting another code"

    def __init__(self, retry_after: int):
        self.retry_after = max(int(retry_after), 1)
        super().__init__(
            detail=f"Please wait {self.retry_after} seconds before requesting another code",
            errors={"retry_after": self.retry_after},
        )

    def headers(self) -> dict[str, str]:
        return {"Retry-After": str(self.retry_after)}
