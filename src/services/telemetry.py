"""
Funnel telemetry - the lead_submission_data record kept alongside each lead.

Written at every step boundary by best-effort background tasks. One row per
submission_id: the first write inserts, later writes merge into it. Top-level
keys are last-write-wins; quote_data merges one level deep; array columns
accumulate.
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from src.models.lead_submission_data import LeadSubmissionData

logger = logging.getLogger(__name__)

STAGE_DETAILS_FILLED = "details_filled"
STAGE_OTP_SENT = "otp_sent"
STAGE_OTP_VERIFIED = "otp_verified"
STAGE_COMPLETED = "completed"

# Stages that finish the funnel; each records exactly one conversion event
COMPLETION_STAGES = {STAGE_OTP_VERIFIED, STAGE_COMPLETED}

ARRAY_FIELDS = ("form_submissions", "conversion_events")

# Client-reported device fields accepted from the browser
CLIENT_DEVICE_FIELDS = (
    "screen_width",
    "screen_height",
    "viewport_width",
    "viewport_height",
    "timezone",
    "color_depth",
    "pixel_ratio",
    "touch_support",
)


@dataclass(frozen=True)
class TelemetryContext:
    """Browser session identity threaded through every telemetry write."""
    session_id: str
    device_info: dict = field(default_factory=dict)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _as_uuid(value) -> uuid.UUID:
    return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))


def build_device_info(
    headers: Optional[Mapping[str, str]],
    client_reported: Optional[Mapping[str, Any]] = None,
) -> dict:
    if headers is None:
        return {}

    lowered = {k.lower(): v for k, v in headers.items()}
    user_agent = lowered.get("user-agent", "")
    info = {
        "user_agent": user_agent,
        "language": (lowered.get("accept-language") or "").split(",")[0].strip() or None,
        "platform": (lowered.get("sec-ch-ua-platform") or "").strip('"') or None,
        "is_mobile": lowered.get("sec-ch-ua-mobile") == "?1" or "mobile" in user_agent.lower(),
    }
    for key in CLIENT_DEVICE_FIELDS:
        if client_reported and client_reported.get(key) is not None:
            info[key] = client_reported[key]
    return {k: v for k, v in info.items() if v is not None}


def _append_unique(existing: list, additions: list) -> list:
    merged = list(existing)
    for item in additions:
        if item not in merged:
            merged.append(item)
    return merged


def _merge_quote_data(existing: Optional[dict], patch: Optional[dict]) -> dict:
    merged = dict(existing or {})
    if not patch:
        return merged
    for key, value in patch.items():
        if key == "stage_history":
            merged["stage_history"] = list(merged.get("stage_history") or []) + list(value or [])
        else:
            merged[key] = value
    return merged


def _apply_patch(
    row: LeadSubmissionData,
    context: TelemetryContext,
    patch: Optional[dict],
    current_page: Optional[str],
    pages_completed: Optional[list],
) -> None:
    patch = dict(patch or {})

    if "quote_data" in patch:
        row.quote_data = _merge_quote_data(row.quote_data, patch.pop("quote_data"))
    if "page_timings" in patch:
        row.page_timings = {**(row.page_timings or {}), **(patch.pop("page_timings") or {})}
    for array_field in ARRAY_FIELDS:
        if array_field in patch:
            setattr(row, array_field, list(getattr(row, array_field) or []) + list(patch.pop(array_field) or []))
    if "pages_completed" in patch:
        pages_completed = list(pages_completed or []) + list(patch.pop("pages_completed") or [])

    for key, value in patch.items():
        if hasattr(LeadSubmissionData, key) and key not in ("id", "submission_id"):
            setattr(row, key, value)
        else:
            logger.debug("Ignoring unknown telemetry key %s", key)

    if pages_completed:
        row.pages_completed = _append_unique(row.pages_completed or [], pages_completed)
    if current_page:
        row.current_page = current_page
    row.session_id = context.session_id
    if context.device_info:
        row.device_info = dict(context.device_info)
    row.last_activity_at = datetime.now(timezone.utc)


async def _get_row(db, submission_id: uuid.UUID) -> Optional[LeadSubmissionData]:
    result = await db.execute(
        select(LeadSubmissionData).where(LeadSubmissionData.submission_id == submission_id)
    )
    return result.scalar_one_or_none()


async def upsert_telemetry(
    db,
    context: TelemetryContext,
    submission_id,
    partner_id,
    service_category_id,
    patch: Optional[dict] = None,
    current_page: Optional[str] = None,
    pages_completed: Optional[list] = None,
) -> LeadSubmissionData:
    """
    Insert or merge the telemetry row for a submission.

    Expects a session dedicated to this write: a concurrent insert of the
    same submission rolls the session back once and retries as a merge.
    """
    submission_uuid = _as_uuid(submission_id)

    row = await _get_row(db, submission_uuid)
    if row is None:
        row = LeadSubmissionData(
            submission_id=submission_uuid,
            partner_id=_as_uuid(partner_id),
            service_category_id=_as_uuid(service_category_id),
            quote_data={},
            pages_completed=[],
            form_submissions=[],
            conversion_events=[],
            page_timings={},
            device_info={},
        )
        _apply_patch(row, context, patch, current_page, pages_completed)
        db.add(row)
        try:
            await db.flush()
            return row
        except IntegrityError:
            logger.info(
                "Concurrent telemetry insert, merging instead",
                extra={"submission_id": str(submission_uuid)},
            )
            await db.rollback()
            row = await _get_row(db, submission_uuid)
            if row is None:
                raise

    _apply_patch(row, context, patch, current_page, pages_completed)
    await db.flush()
    return row


async def record_verification_stage(
    db,
    submission_id,
    stage: str,
    data: Optional[dict] = None,
) -> Optional[LeadSubmissionData]:
    """
    Move the submission to a verification stage.

    Every call appends to stage_history. Completion stages also mark the
    record complete, set completed_at once and add a single conversion event
    for that stage no matter how often they are recorded.
    """
    submission_uuid = _as_uuid(submission_id)
    row = await _get_row(db, submission_uuid)
    if row is None:
        logger.warning(
            "No telemetry record for stage %s", stage,
            extra={"submission_id": str(submission_uuid)},
        )
        return None

    now = _now_iso()
    quote_data = dict(row.quote_data or {})
    quote_data["stage_history"] = list(quote_data.get("stage_history") or []) + [
        {"stage": stage, "timestamp": now, "data": data or {}}
    ]
    quote_data["verification_stage"] = stage

    if stage in COMPLETION_STAGES:
        quote_data["is_complete"] = True
        if not quote_data.get("completed_at"):
            quote_data["completed_at"] = now
        events = list(row.conversion_events or [])
        if not any(isinstance(e, dict) and e.get("event") == stage for e in events):
            events.append({"event": stage, "timestamp": now, "data": data or {}})
        row.conversion_events = events

    row.quote_data = quote_data
    row.last_activity_at = datetime.now(timezone.utc)
    await db.flush()
    return row


async def upsert_telemetry_detached(**kwargs) -> None:
    """upsert_telemetry in its own session, for background dispatch."""
    from src.database import async_session_factory
    async with async_session_factory() as db:
        await upsert_telemetry(db, **kwargs)
        await db.commit()


async def record_verification_stage_detached(submission_id, stage: str, data: Optional[dict] = None) -> None:
    from src.database import async_session_factory
    async with async_session_factory() as db:
        await record_verification_stage(db, submission_id, stage, data)
        await db.commit()
