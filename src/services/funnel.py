"""
Funnel controller - drives one customer's pass through a partner's quote wizard.

The browser only renders what this returns. Answers live in the Redis-backed
FunnelSession; every change re-plans the steps and clamps the current step.
Saving the lead at the contact step is the only critical write. Telemetry,
emails, CRM sync, lead address updates and the roof image upload are
dispatched as best-effort background tasks and never block or fail the
customer's request.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError

from src.models.quote_submission import QuoteSubmission
from src.services import telemetry
from src.services.crm_sync import sync_lead_to_crm_detached
from src.services.dispatch import BackgroundDispatcher
from src.services.errors import (
    ContactValidationError,
    FunnelError,
    LeadPersistenceError,
    OtpSessionMissingError,
    StepIncompleteError,
    UnknownQuestionError,
)
from src.services.funnel_sessions import FunnelSession, FunnelSessionStore
from src.services.otp import APPROVED, SENT, OtpService, OtpSession
from src.services.quote_email import EMAIL_QUOTE_INITIAL, EMAIL_QUOTE_VERIFIED, send_quote_email_detached
from src.services.roof_images import split_roof_image, upload_roof_image_detached
from src.services.step_planner import (
    STEP_POSTCODE,
    STEP_QUESTION,
    Step,
    StepPlan,
    clamp_step,
    plan_steps,
    questions_for_step,
)
from src.services.conditions import visible_questions
from src.utils.phone import detect_country_code, full_phone_number, mask_phone_for_log
from src.utils.validation import validate_contact_details

logger = logging.getLogger(__name__)

NEXT_ACTION_REDIRECT = "redirect"
NEXT_ACTION_VERIFY_OTP = "verify_otp"

PAGE_QUOTE = "quote"
PAGE_CONTACT = "contact"
PAGE_OTP = "otp"


@dataclass
class SubmissionOutcome:
    submission_id: str
    next_action: str
    redirect_url: Optional[str]
    otp_required: bool
    otp: Optional[dict] = None


def products_path(category_slug: str, submission_id: str) -> str:
    return f"/{category_slug}/products?submission={submission_id}"


def partner_base_url(partner) -> str:
    from src.config import get_settings
    settings = get_settings()
    if partner.custom_domain and partner.domain_verified is not False:
        return f"https://{partner.custom_domain}"
    if partner.subdomain and settings.platform_base_domain:
        return f"https://{partner.subdomain}.{settings.platform_base_domain}"
    return settings.app_base_url.rstrip("/")


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def apply_lead_address(lead: QuoteSubmission, address: Optional[dict]) -> None:
    if not address:
        return
    lead.apply_address(address)
    lead.postcode = address.get("postcode") or lead.postcode
    lead.city = address.get("city") or address.get("post_town") or lead.city


async def update_lead_address_detached(submission_id: str, address: dict) -> None:
    """Keep an existing lead's address in step with the session, in its own DB session."""
    from src.database import async_session_factory
    async with async_session_factory() as db:
        lead = await db.get(QuoteSubmission, uuid.UUID(submission_id))
        if lead is None:
            logger.warning("Lead not found for address update", extra={"submission_id": submission_id})
            return
        apply_lead_address(lead, address)
        await db.commit()


class FunnelController:
    def __init__(
        self,
        db,
        session: FunnelSession,
        questions: list,
        partner,
        category,
        dispatcher: Optional[BackgroundDispatcher] = None,
        telemetry_context: Optional[telemetry.TelemetryContext] = None,
        store: Optional[FunnelSessionStore] = None,
    ):
        self.db = db
        self.session = session
        self.questions = list(questions)
        self.partner = partner
        self.category = category
        self.dispatcher = dispatcher or BackgroundDispatcher(session.submission_id)
        self.telemetry_context = telemetry_context or telemetry.TelemetryContext(session_id=session.session_id)
        self.store = store or FunnelSessionStore()
        self.include_roof_mapping = bool(category.supports_roof_mapping and partner.roof_mapping_enabled)
        self._questions_by_id = {str(q.id): q for q in self.questions}

    # --- Planning ---

    def plan(self) -> StepPlan:
        return plan_steps(self.questions, self.session.answers, self.include_roof_mapping)

    def current_step(self) -> Step:
        return self.plan().step_at(self.session.current_step)

    def current_questions(self) -> list:
        return questions_for_step(self.questions, self.session.answers, self.current_step())

    def relevant_answers(self) -> list[dict]:
        """Answers to currently visible questions, in question order, empties dropped."""
        answers = []
        for question in visible_questions(self.questions, self.session.answers):
            value = self.session.answers.get(str(question.id))
            if _is_empty(value):
                continue
            answers.append({
                "question_id": str(question.id),
                "question_text": question.question_text,
                "answer": value,
            })
        return answers

    def _reclamp(self) -> StepPlan:
        plan = self.plan()
        clamped = clamp_step(self.session.current_step, plan)
        if clamped != self.session.current_step:
            logger.debug(
                "Clamping step %d -> %d", self.session.current_step, clamped,
                extra={"session_id": self.session.session_id},
            )
            self.session.current_step = clamped
        return plan

    async def _save(self) -> None:
        await self.store.save(self.session)

    # --- Navigation ---

    def _missing_required(self, step: Step) -> dict[str, str]:
        errors: dict[str, str] = {}
        if step.kind == STEP_QUESTION:
            for question in questions_for_step(self.questions, self.session.answers, step):
                if question.is_required and _is_empty(self.session.answers.get(str(question.id))):
                    errors[str(question.id)] = "This field is required"
        elif step.kind == STEP_POSTCODE and not self.session.selected_address:
            errors["address"] = "Please select your address"
        return errors

    def _record_step_time(self, step: Step) -> dict:
        elapsed_ms = int((_now() - self.session.step_entered_at).total_seconds() * 1000)
        if step.name not in self.session.pages_completed:
            self.session.pages_completed.append(step.name)
        self.session.step_entered_at = _now()
        return {step.name: elapsed_ms}

    async def next(self) -> StepPlan:
        plan = self._reclamp()
        if self.session.current_step >= plan.total_steps:
            return plan

        step = plan.step_at(self.session.current_step)
        errors = self._missing_required(step)
        if errors:
            raise StepIncompleteError(errors=errors)

        timing = self._record_step_time(step)
        self.session.current_step = clamp_step(self.session.current_step + 1, plan)
        await self._save()
        if self.session.submission_id:
            self._dispatch_telemetry(PAGE_QUOTE, {"page_timings": timing})
        return plan

    async def previous(self) -> StepPlan:
        plan = self._reclamp()
        self.session.current_step = clamp_step(self.session.current_step - 1, plan)
        self.session.step_entered_at = _now()
        await self._save()
        return plan

    # --- Mutations ---

    async def set_answer(self, question_id: str, value: Any) -> StepPlan:
        question_id = str(question_id)
        if question_id not in self._questions_by_id:
            raise UnknownQuestionError(detail=f"Unknown question {question_id}")

        if _is_empty(value):
            self.session.answers.pop(question_id, None)
        else:
            self.session.answers[question_id] = value

        plan = self._reclamp()
        await self._save()
        if self.session.submission_id:
            self._dispatch_telemetry(PAGE_QUOTE)
        return plan

    async def select_address(self, address: dict) -> None:
        self.session.selected_address = dict(address)
        await self._save()

        if self.session.submission_id:
            submission_id = self.session.submission_id
            selected = dict(address)
            self.dispatcher.dispatch(
                "lead_address",
                lambda: update_lead_address_detached(submission_id, selected),
            )
            self._dispatch_telemetry(PAGE_QUOTE)

    async def set_roof_mapping(self, data: dict) -> None:
        if not self.include_roof_mapping:
            raise FunnelError(detail="Roof mapping is not available for this funnel")
        self.session.roof_mapping_data = dict(data)
        await self._save()

    # --- Contact / lead ---

    def _apply_address(self, lead: QuoteSubmission) -> None:
        apply_lead_address(lead, self.session.selected_address)

    def _clean_contact(self, details: Mapping[str, Any]) -> dict:
        phone = str(details.get("phone") or "").strip()
        country_code = details.get("country_code") or detect_country_code(phone)
        return {
            "first_name": str(details.get("first_name") or "").strip(),
            "last_name": str(details.get("last_name") or "").strip(),
            "email": str(details.get("email") or "").strip().lower(),
            "phone": phone,
            "country_code": country_code,
            "full_phone": full_phone_number(phone, country_code),
        }

    async def _persist_lead(self, contact: dict, request_meta: Mapping[str, Any]) -> QuoteSubmission:
        lead = None
        if self.session.submission_id:
            lead = await self.db.get(QuoteSubmission, uuid.UUID(self.session.submission_id))
        if lead is None:
            lead = QuoteSubmission(
                partner_id=self.partner.id,
                service_category_id=self.category.id,
                status="new",
            )
            self.db.add(lead)
        else:
            logger.info("Contact re-submitted, updating lead in place", extra={"submission_id": self.session.submission_id})

        lead.first_name = contact["first_name"]
        lead.last_name = contact["last_name"]
        lead.email = contact["email"]
        lead.phone = contact["full_phone"] or contact["phone"]
        lead.form_answers = self.relevant_answers()
        self._apply_address(lead)
        roof_data, _ = split_roof_image(self.session.roof_mapping_data)
        if roof_data:
            lead.roof_mapping_data = {**(lead.roof_mapping_data or {}), **roof_data}
        lead.ip_address = request_meta.get("ip_address")
        lead.user_agent = request_meta.get("user_agent")
        lead.referral_source = request_meta.get("referral_source")

        await self.db.flush()
        await self.db.commit()
        return lead

    async def submit_contact(
        self,
        details: Mapping[str, Any],
        request_meta: Optional[Mapping[str, Any]] = None,
    ) -> SubmissionOutcome:
        if self.session.completed:
            # The lead is final once completed; a replayed submit only gets the redirect back
            logger.info(
                "Contact submitted on a completed session",
                extra={"submission_id": self.session.submission_id},
            )
            return self._completion()

        errors = validate_contact_details(details)
        if errors:
            raise ContactValidationError(errors)

        contact = self._clean_contact(details)
        try:
            lead = await self._persist_lead(contact, request_meta or {})
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(
                "Lead save failed: %s", str(e),
                extra={"session_id": self.session.session_id, "partner_id": str(self.partner.id)},
            )
            raise LeadPersistenceError()

        submission_id = str(lead.submission_id)
        self.session.submission_id = submission_id
        self.dispatcher.submission_id = submission_id
        self.session.contact_details = contact
        self.session.otp_required = bool(self.partner.otp_enabled)
        self.session.otp_phone = contact["full_phone"] or None
        self.session.completed = not self.session.otp_required
        if PAGE_CONTACT not in self.session.pages_completed:
            self.session.pages_completed.append(PAGE_CONTACT)
        await self._save()

        logger.info(
            "Lead saved (otp=%s)", self.session.otp_required,
            extra={"submission_id": submission_id, "partner_id": str(self.partner.id)},
        )

        stage = telemetry.STAGE_DETAILS_FILLED if self.session.otp_required else telemetry.STAGE_COMPLETED
        self._dispatch_contact_telemetry(stage)
        quote_link = f"{partner_base_url(self.partner)}{products_path(self.category.slug, submission_id)}"
        self.dispatcher.dispatch(
            "quote_initial_email",
            lambda: send_quote_email_detached(EMAIL_QUOTE_INITIAL, submission_id, quote_link),
            must_survive_navigation=True,
        )
        self.dispatcher.dispatch(
            "crm_quote_initial",
            lambda: sync_lead_to_crm_detached(submission_id, EMAIL_QUOTE_INITIAL),
        )
        _, roof_image = split_roof_image(self.session.roof_mapping_data)
        if roof_image:
            self.dispatcher.dispatch(
                "roof_image_upload",
                lambda: upload_roof_image_detached(submission_id, roof_image),
            )

        if self.session.otp_required:
            return SubmissionOutcome(
                submission_id=submission_id,
                next_action=NEXT_ACTION_VERIFY_OTP,
                redirect_url=None,
                otp_required=True,
            )
        return self._completion()

    def _completion(self) -> SubmissionOutcome:
        return SubmissionOutcome(
            submission_id=self.session.submission_id,
            next_action=NEXT_ACTION_REDIRECT,
            redirect_url=products_path(self.category.slug, self.session.submission_id),
            otp_required=self.session.otp_required,
        )

    # --- Phone verification ---

    def _otp_target(self) -> tuple[str, str]:
        if not self.session.submission_id or not self.session.otp_required or not self.session.otp_phone:
            raise OtpSessionMissingError(detail="Phone verification is not pending for this session")
        return self.session.submission_id, self.session.otp_phone

    async def send_otp(self, otp_service: OtpService) -> OtpSession:
        submission_id, phone = self._otp_target()
        otp = await otp_service.send_code(submission_id, phone)
        if otp.state == SENT:
            self._dispatch_stage(telemetry.STAGE_OTP_SENT, {"phone": mask_phone_for_log(phone)})
        return otp

    async def resend_otp(self, otp_service: OtpService) -> OtpSession:
        submission_id, phone = self._otp_target()
        otp = await otp_service.resend_code(submission_id, phone)
        if otp.state == SENT:
            self._dispatch_stage(telemetry.STAGE_OTP_SENT, {"phone": mask_phone_for_log(phone), "resend": True})
        return otp

    async def verify_otp(self, otp_service: OtpService, code: str) -> SubmissionOutcome:
        submission_id, phone = self._otp_target()
        otp = await otp_service.verify_code(submission_id, phone, code)
        if otp.state != APPROVED:
            raise OtpSessionMissingError()
        return await self.complete_verification()

    async def complete_verification(self) -> SubmissionOutcome:
        """Mark the lead verified and fire the verified side effects once."""
        if self.session.completed:
            return self._completion()

        submission_id = self.session.submission_id
        try:
            lead = await self.db.get(QuoteSubmission, uuid.UUID(submission_id))
            if lead is not None:
                lead.otp_verified = True
                await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("Lead verification save failed: %s", str(e), extra={"submission_id": submission_id})
            raise LeadPersistenceError()

        self.session.completed = True
        if PAGE_OTP not in self.session.pages_completed:
            self.session.pages_completed.append(PAGE_OTP)
        await self._save()

        self._dispatch_stage(telemetry.STAGE_OTP_VERIFIED, {"verified_at": _now().isoformat()})
        quote_link = f"{partner_base_url(self.partner)}{products_path(self.category.slug, submission_id)}"
        self.dispatcher.dispatch(
            "quote_verified_email",
            lambda: send_quote_email_detached(EMAIL_QUOTE_VERIFIED, submission_id, quote_link),
            must_survive_navigation=True,
        )
        self.dispatcher.dispatch(
            "crm_quote_verified",
            lambda: sync_lead_to_crm_detached(submission_id, EMAIL_QUOTE_VERIFIED),
        )
        logger.info("Phone verified", extra={"submission_id": submission_id})
        return self._completion()

    # --- Telemetry ---

    def _quote_data(self) -> dict:
        answered_at = _now().isoformat()
        return {
            "form_answers": {
                a["question_id"]: {**a, "answered_at": answered_at}
                for a in self.relevant_answers()
            },
            "selected_address": self.session.selected_address,
            "current_step": self.session.current_step,
        }

    def _telemetry_kwargs(self, page: str, patch: dict) -> dict:
        return {
            "context": self.telemetry_context,
            "submission_id": self.session.submission_id,
            "partner_id": self.partner.id,
            "service_category_id": self.category.id,
            "patch": patch,
            "current_page": page,
            "pages_completed": list(self.session.pages_completed),
        }

    def _dispatch_telemetry(self, page: str, extra_patch: Optional[dict] = None) -> None:
        patch = {"quote_data": self._quote_data(), **(extra_patch or {})}
        kwargs = self._telemetry_kwargs(page, patch)
        self.dispatcher.dispatch("telemetry_upsert", lambda: telemetry.upsert_telemetry_detached(**kwargs))

    def _dispatch_contact_telemetry(self, stage: str) -> None:
        now = _now()
        quote_data = {
            **self._quote_data(),
            "contact_details": {k: v for k, v in (self.session.contact_details or {}).items() if k != "full_phone"},
            "otp_enabled": self.session.otp_required,
            "total_time_on_page_ms": int((now - self.session.started_at).total_seconds() * 1000),
        }
        patch = {
            "quote_data": quote_data,
            "form_submissions": [{"page": PAGE_CONTACT, "submitted_at": now.isoformat()}],
        }
        kwargs = self._telemetry_kwargs(PAGE_CONTACT, patch)
        submission_id = self.session.submission_id

        async def _write():
            from src.database import async_session_factory
            async with async_session_factory() as db:
                await telemetry.upsert_telemetry(db, **kwargs)
                await telemetry.record_verification_stage(db, submission_id, stage)
                await db.commit()

        self.dispatcher.dispatch("telemetry_contact", _write)

    def _dispatch_stage(self, stage: str, data: Optional[dict] = None) -> None:
        submission_id = self.session.submission_id
        self.dispatcher.dispatch(
            f"telemetry_{stage}",
            lambda: telemetry.record_verification_stage_detached(submission_id, stage, data),
        )
