"""
Phone OTP endpoints - send, resend and verify a code for a funnel session
whose contact step required verification.
"""
import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.funnel import get_partner, get_session_store, load_controller
from src.database import get_db
from src.integrations.twilio_verify import TwilioVerifyProvider
from src.models.partner import Partner
from src.schemas.funnel import OtpRequest, OtpStateResponse, OtpVerifyRequest, SubmissionResponse
from src.services.funnel_sessions import FunnelSessionStore
from src.services.otp import OtpService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/otp", tags=["otp"])


def get_otp_service() -> OtpService:
    return OtpService(TwilioVerifyProvider())


def _state_response(otp, otp_service: OtpService) -> OtpStateResponse:
    return OtpStateResponse(**otp.to_public(otp_service.clock()))


@router.post("/send", response_model=OtpStateResponse)
async def send_code(
    payload: OtpRequest,
    request: Request,
    partner: Partner = Depends(get_partner),
    db: AsyncSession = Depends(get_db),
    store: FunnelSessionStore = Depends(get_session_store),
    otp_service: OtpService = Depends(get_otp_service),
):
    controller = await load_controller(db, partner, payload.session_id, request, store)
    otp = await controller.send_otp(otp_service)
    return _state_response(otp, otp_service)


@router.post("/resend", response_model=OtpStateResponse)
async def resend_code(
    payload: OtpRequest,
    request: Request,
    partner: Partner = Depends(get_partner),
    db: AsyncSession = Depends(get_db),
    store: FunnelSessionStore = Depends(get_session_store),
    otp_service: OtpService = Depends(get_otp_service),
):
    controller = await load_controller(db, partner, payload.session_id, request, store)
    otp = await controller.resend_otp(otp_service)
    return _state_response(otp, otp_service)


@router.post("/verify", response_model=SubmissionResponse)
async def verify_code(
    payload: OtpVerifyRequest,
    request: Request,
    partner: Partner = Depends(get_partner),
    db: AsyncSession = Depends(get_db),
    store: FunnelSessionStore = Depends(get_session_store),
    otp_service: OtpService = Depends(get_otp_service),
):
    """Check the code; on approval the lead is marked verified and the customer redirected."""
    controller = await load_controller(db, partner, payload.session_id, request, store)
    outcome = await controller.verify_otp(otp_service, payload.code)
    return SubmissionResponse(
        submission_id=outcome.submission_id,
        next_action=outcome.next_action,
        redirect_url=outcome.redirect_url,
        otp_required=outcome.otp_required,
    )
