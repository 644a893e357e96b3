"""
Public quote funnel endpoints.

Every request resolves the partner from the hostname first (X-Forwarded-Host,
then Host, or an explicit ?subdomain= from embedded funnels). Wizard state is
addressed by session id and only visible to the partner that created it.
"""
import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import get_settings
from src.database import get_db
from src.models.partner import Partner
from src.models.service_category import ServiceCategory
from src.schemas.funnel import (
    AddressRequest,
    AnswerRequest,
    ContactRequest,
    PartnerProfile,
    PlanOut,
    QuestionListResponse,
    QuestionOut,
    RoofMappingRequest,
    SessionStateResponse,
    StartSessionRequest,
    StepOut,
    SubmissionResponse,
)
from src.services.dispatch import BackgroundDispatcher
from src.services.errors import CategoryNotFoundError, FunnelSessionNotFoundError, PartnerNotFoundError
from src.services.funnel import FunnelController
from src.services.funnel_sessions import FunnelSession, FunnelSessionStore, new_session_id
from src.services.partner_resolver import (
    get_category_by_slug,
    load_active_questions,
    resolve_partner,
    resolve_partner_by_subdomain,
)
from src.services.telemetry import TelemetryContext, build_device_info

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/funnel", tags=["funnel"])


def request_host(request: Request) -> str:
    return request.headers.get("x-forwarded-host") or request.headers.get("host") or ""


def request_meta(request: Request, referral_source: Optional[str] = None) -> dict:
    forwarded_for = request.headers.get("x-forwarded-for", "")
    ip_address = forwarded_for.split(",")[0].strip() if forwarded_for else None
    if not ip_address and request.client:
        ip_address = request.client.host
    return {
        "ip_address": ip_address,
        "user_agent": request.headers.get("user-agent"),
        "referral_source": referral_source or request.headers.get("referer"),
    }


async def get_partner(
    request: Request,
    subdomain: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
) -> Partner:
    """Resolve the partner for this request or fail with 400."""
    if subdomain:
        partner = await resolve_partner_by_subdomain(db, subdomain)
    else:
        partner = await resolve_partner(db, request_host(request), get_settings().platform_base_domain)
    if partner is None:
        raise PartnerNotFoundError()
    return partner


def get_session_store() -> FunnelSessionStore:
    return FunnelSessionStore()


async def _require_category(db: AsyncSession, slug: str) -> ServiceCategory:
    category = await get_category_by_slug(db, slug)
    if category is None:
        raise CategoryNotFoundError(detail=f"Unknown service category '{slug}'")
    return category


def _question_out(question) -> QuestionOut:
    return QuestionOut(
        id=str(question.id),
        step_number=question.step_number,
        display_order_in_step=question.display_order_in_step or 0,
        question_text=question.question_text,
        answer_type=question.answer_type,
        answer_options=question.answer_options or [],
        is_required=bool(question.is_required),
        conditional_display=question.conditional_display,
    )


async def load_controller(
    db: AsyncSession,
    partner: Partner,
    session_id: str,
    request: Request,
    store: FunnelSessionStore,
) -> FunnelController:
    """Load a wizard session for this partner, or raise FunnelSessionNotFoundError."""
    session = await store.load(session_id)
    if session is None or session.partner_id != str(partner.id):
        raise FunnelSessionNotFoundError()

    category = await db.get(ServiceCategory, uuid.UUID(session.service_category_id))
    if category is None:
        raise FunnelSessionNotFoundError()
    questions = await load_active_questions(db, partner.id, category.id)
    return FunnelController(
        db=db,
        session=session,
        questions=questions,
        partner=partner,
        category=category,
        dispatcher=BackgroundDispatcher(session.submission_id),
        telemetry_context=TelemetryContext(
            session_id=session.session_id,
            device_info=build_device_info(request.headers),
        ),
        store=store,
    )


def state_response(controller: FunnelController) -> SessionStateResponse:
    plan = controller.plan()
    step = plan.step_at(controller.session.current_step)
    session = controller.session
    return SessionStateResponse(
        session_id=session.session_id,
        category_slug=session.category_slug,
        current_step=session.current_step,
        step=StepOut(kind=step.kind, name=step.name, step_number=step.step_number),
        plan=PlanOut(**plan.to_dict()),
        questions=[_question_out(q) for q in controller.current_questions()],
        answers=session.answers,
        selected_address=session.selected_address,
        submission_id=session.submission_id,
        otp_required=session.otp_required,
        completed=session.completed,
    )


@router.get("/partner", response_model=PartnerProfile)
async def partner_profile(partner: Partner = Depends(get_partner)):
    """Branding, feature flags and legal links for the resolved partner."""
    return PartnerProfile(
        id=str(partner.id),
        company_name=partner.company_name,
        subdomain=partner.subdomain,
        custom_domain=partner.custom_domain,
        logo_url=partner.logo_url,
        company_color=partner.company_color,
        business_description=partner.business_description,
        phone=partner.phone,
        website_url=partner.website_url,
        address=partner.address,
        privacy_policy=partner.privacy_policy,
        terms_conditions=partner.terms_conditions,
        otp_enabled=bool(partner.otp_enabled),
        roof_mapping_enabled=bool(partner.roof_mapping_enabled),
    )


@router.get("/{category_slug}/questions", response_model=QuestionListResponse)
async def list_questions(
    category_slug: str,
    partner: Partner = Depends(get_partner),
    db: AsyncSession = Depends(get_db),
):
    category = await _require_category(db, category_slug)
    questions = await load_active_questions(db, partner.id, category.id)
    return QuestionListResponse(category=category.slug, questions=[_question_out(q) for q in questions])


@router.post("/{category_slug}/sessions", response_model=SessionStateResponse, status_code=201)
async def start_session(
    category_slug: str,
    request: Request,
    payload: Optional[StartSessionRequest] = None,
    x_session_id: Optional[str] = Header(None),
    partner: Partner = Depends(get_partner),
    db: AsyncSession = Depends(get_db),
    store: FunnelSessionStore = Depends(get_session_store),
):
    """Start (or resume) a wizard for this browser session."""
    category = await _require_category(db, category_slug)
    session_id = (x_session_id or "").strip() or new_session_id()

    session = await store.load(session_id)
    if (
        session is None
        or session.partner_id != str(partner.id)
        or session.service_category_id != str(category.id)
        or session.completed
    ):
        session = FunnelSession(
            session_id=session_id if session is None else new_session_id(),
            partner_id=str(partner.id),
            service_category_id=str(category.id),
            category_slug=category.slug,
        )
        await store.save(session)
        logger.info("Funnel session started", extra={"session_id": session.session_id, "partner_id": str(partner.id)})

    questions = await load_active_questions(db, partner.id, category.id)
    device = payload.device if payload else {}
    controller = FunnelController(
        db=db,
        session=session,
        questions=questions,
        partner=partner,
        category=category,
        telemetry_context=TelemetryContext(session.session_id, build_device_info(request.headers, device)),
        store=store,
    )
    return state_response(controller)


@router.get("/sessions/{session_id}", response_model=SessionStateResponse)
async def get_session_state(
    session_id: str,
    request: Request,
    partner: Partner = Depends(get_partner),
    db: AsyncSession = Depends(get_db),
    store: FunnelSessionStore = Depends(get_session_store),
):
    controller = await load_controller(db, partner, session_id, request, store)
    return state_response(controller)


@router.put("/sessions/{session_id}/answers/{question_id}", response_model=SessionStateResponse)
async def set_answer(
    session_id: str,
    question_id: str,
    payload: AnswerRequest,
    request: Request,
    partner: Partner = Depends(get_partner),
    db: AsyncSession = Depends(get_db),
    store: FunnelSessionStore = Depends(get_session_store),
):
    controller = await load_controller(db, partner, session_id, request, store)
    await controller.set_answer(question_id, payload.value)
    return state_response(controller)


@router.put("/sessions/{session_id}/address", response_model=SessionStateResponse)
async def select_address(
    session_id: str,
    payload: AddressRequest,
    request: Request,
    partner: Partner = Depends(get_partner),
    db: AsyncSession = Depends(get_db),
    store: FunnelSessionStore = Depends(get_session_store),
):
    controller = await load_controller(db, partner, session_id, request, store)
    await controller.select_address(payload.model_dump(exclude_none=True))
    return state_response(controller)


@router.put("/sessions/{session_id}/roof-mapping", response_model=SessionStateResponse)
async def set_roof_mapping(
    session_id: str,
    payload: RoofMappingRequest,
    request: Request,
    partner: Partner = Depends(get_partner),
    db: AsyncSession = Depends(get_db),
    store: FunnelSessionStore = Depends(get_session_store),
):
    controller = await load_controller(db, partner, session_id, request, store)
    await controller.set_roof_mapping(payload.data)
    return state_response(controller)


@router.post("/sessions/{session_id}/next", response_model=SessionStateResponse)
async def next_step(
    session_id: str,
    request: Request,
    partner: Partner = Depends(get_partner),
    db: AsyncSession = Depends(get_db),
    store: FunnelSessionStore = Depends(get_session_store),
):
    controller = await load_controller(db, partner, session_id, request, store)
    await controller.next()
    return state_response(controller)


@router.post("/sessions/{session_id}/previous", response_model=SessionStateResponse)
async def previous_step(
    session_id: str,
    request: Request,
    partner: Partner = Depends(get_partner),
    db: AsyncSession = Depends(get_db),
    store: FunnelSessionStore = Depends(get_session_store),
):
    controller = await load_controller(db, partner, session_id, request, store)
    await controller.previous()
    return state_response(controller)


@router.post("/sessions/{session_id}/contact", response_model=SubmissionResponse)
async def submit_contact(
    session_id: str,
    payload: ContactRequest,
    request: Request,
    partner: Partner = Depends(get_partner),
    db: AsyncSession = Depends(get_db),
    store: FunnelSessionStore = Depends(get_session_store),
):
    """Final step: save the lead, then either redirect to products or ask for OTP."""
    controller = await load_controller(db, partner, session_id, request, store)
    outcome = await controller.submit_contact(
        payload.model_dump(exclude={"referral_source"}),
        request_meta(request, payload.referral_source),
    )
    return SubmissionResponse(
        submission_id=outcome.submission_id,
        next_action=outcome.next_action,
        redirect_url=outcome.redirect_url,
        otp_required=outcome.otp_required,
    )
