"""
CRM sync - push a lead into the partner's GoHighLevel account.

Runs as a best-effort background task after the lead is saved (quote-initial)
and again after phone verification (quote-verified). Each active field mapping
for the partner/category/email type becomes one contact upsert plus, when a
pipeline is configured, an opportunity. One mapping failing never stops the rest.
"""
import json
import logging
import uuid
from typing import Any, Optional

from sqlalchemy import select

from src.integrations.crm_base import CRMBase
from src.integrations.gohighlevel import GoHighLevelCRM
from src.models.ghl_integration import GHLFieldMapping, GHLIntegration
from src.utils.encryption import decrypt_value

logger = logging.getLogger(__name__)

DEFAULT_LEAD_TAG = "Quote Lead"
CONTACT_SOURCE = "Quote Funnel"
DEFAULT_COUNTRY = "United Kingdom"


def build_lead_attributes(submission, quote_data: Optional[dict] = None) -> dict[str, Any]:
    """
    The fixed attribute table that field mappings refer to by id.
    None means "no value" and is never sent.
    """
    address_data = None
    if submission.formatted_address or submission.address_line_1:
        address_data = json.dumps({
            "address_line_1": submission.address_line_1,
            "address_line_2": submission.address_line_2,
            "street_name": submission.street_name,
            "street_number": submission.street_number,
            "building_name": submission.building_name,
            "sub_building": submission.sub_building,
            "city": submission.city,
            "county": submission.county,
            "postcode": submission.postcode,
            "country": submission.country,
            "formatted_address": submission.formatted_address,
        })

    answers = quote_data if quote_data is not None else {
        str(a.get("question_text") or a.get("question_id")): a.get("answer")
        for a in (submission.form_answers or [])
    }

    return {
        "firstName": submission.first_name,
        "lastName": submission.last_name,
        "email": submission.email,
        "phone": submission.phone,
        "postcode": submission.postcode,
        "address1": submission.address_line_1,
        "address2": submission.address_line_2,
        "city": submission.city,
        "state": submission.county,
        "postalCode": submission.postcode,
        "country": submission.country,
        "submissionId": str(submission.submission_id),
        "submissionDate": submission.submission_date.isoformat() if submission.submission_date else None,
        "quoteData": json.dumps(answers) if answers else None,
        "addressData": address_data,
    }


def build_custom_fields(field_mappings: Optional[dict], attributes: dict[str, Any]) -> list[dict]:
    custom_fields = []
    for our_field_id, ghl_field_id in (field_mappings or {}).items():
        if not our_field_id or not ghl_field_id:
            continue
        value = attributes.get(our_field_id)
        if value is None:
            continue
        custom_fields.append({"id": ghl_field_id, "field_value": value})
    return custom_fields


def build_tags(email_type: str, mapping: GHLFieldMapping) -> list[str]:
    tags = [DEFAULT_LEAD_TAG, f"Email Type: {email_type}", f"Recipient: {mapping.recipient_type}"]
    saved = mapping.tags if isinstance(mapping.tags, list) else []
    return tags + [t for t in saved if t not in tags]


def build_contact_payload(attributes: dict[str, Any], custom_fields: list[dict], tags: list[str]) -> dict:
    payload = {
        "firstName": attributes["firstName"],
        "lastName": attributes["lastName"],
        "email": attributes["email"],
        "phone": attributes["phone"],
        "address1": attributes["address1"],
        "city": attributes["city"],
        "state": attributes["state"],
        "postalCode": attributes["postalCode"],
        "country": attributes["country"] or DEFAULT_COUNTRY,
        "source": CONTACT_SOURCE,
        "customFields": custom_fields,
        "tags": tags,
    }
    return {k: v for k, v in payload.items() if v is not None}


async def get_crm_for_partner(db, partner_id) -> Optional[CRMBase]:
    result = await db.execute(
        select(GHLIntegration).where(
            GHLIntegration.partner_id == partner_id,
            GHLIntegration.is_active == True,  # noqa: E712
        )
    )
    integration = result.scalar_one_or_none()
    if integration is None:
        return None
    api_key = decrypt_value(integration.api_key_encrypted)
    if not api_key or not integration.location_id:
        logger.warning("GHL integration incomplete", extra={"partner_id": str(partner_id)})
        return None
    return GoHighLevelCRM(api_key=api_key, location_id=integration.location_id)


async def _load_mappings(db, partner_id, service_category_id, email_type: str) -> list[GHLFieldMapping]:
    result = await db.execute(
        select(GHLFieldMapping).where(
            GHLFieldMapping.partner_id == partner_id,
            GHLFieldMapping.service_category_id == service_category_id,
            GHLFieldMapping.email_type == email_type,
            GHLFieldMapping.is_active == True,  # noqa: E712
        )
    )
    return list(result.scalars().all())


async def _pipeline_is_valid(crm: CRMBase, mapping: GHLFieldMapping) -> bool:
    """False only when the pipeline/stage ids are known to be wrong."""
    try:
        pipelines = await crm.get_pipelines()
    except Exception as e:
        logger.warning("Could not validate GHL pipelines, creating opportunity anyway: %s", str(e))
        return True

    pipeline = next((p for p in pipelines if p.get("id") == mapping.pipeline_id), None)
    if pipeline is None:
        logger.error("GHL pipeline %s not found, skipping opportunity", mapping.pipeline_id)
        return False
    if mapping.opportunity_stage and not any(
        s.get("id") == mapping.opportunity_stage for s in pipeline.get("stages", [])
    ):
        logger.error(
            "GHL stage %s not in pipeline %s, skipping opportunity",
            mapping.opportunity_stage, mapping.pipeline_id,
        )
        return False
    return True


async def _sync_mapping(crm: CRMBase, mapping: GHLFieldMapping, email_type: str, attributes: dict) -> None:
    custom_fields = build_custom_fields(mapping.field_mappings, attributes)
    payload = build_contact_payload(attributes, custom_fields, build_tags(email_type, mapping))

    result = await crm.create_contact(payload)
    contact_id = result.get("contact_id")
    if not result.get("success"):
        if not result.get("duplicate_of"):
            raise RuntimeError(f"Contact creation failed: {result.get('error')}")
        contact_id = result["duplicate_of"]
        update = await crm.update_contact(contact_id, payload)
        if not update.get("success"):
            raise RuntimeError(f"Contact update failed: {update.get('error')}")

    if not mapping.pipeline_id or not contact_id:
        return
    if not await _pipeline_is_valid(crm, mapping):
        return

    name = f"{attributes['firstName']} {attributes['lastName']}".strip()
    opportunity = await crm.create_opportunity(
        contact_id, mapping.pipeline_id, mapping.opportunity_stage, name,
    )
    if not opportunity.get("success") and not opportunity.get("duplicate"):
        logger.warning("GHL opportunity not created: %s", opportunity.get("error"))


async def sync_lead_to_crm(
    db,
    submission,
    email_type: str,
    quote_data: Optional[dict] = None,
    crm: Optional[CRMBase] = None,
) -> bool:
    """
    Upsert a lead into GHL for every active mapping of this email type.
    Returns True if any mapping succeeded.
    """
    submission_id = str(submission.submission_id)
    if crm is None:
        crm = await get_crm_for_partner(db, submission.partner_id)
    if crm is None:
        logger.debug("No active GHL integration, skipping CRM sync", extra={"submission_id": submission_id})
        return False

    mappings = await _load_mappings(db, submission.partner_id, submission.service_category_id, email_type)
    if not mappings:
        logger.info("No GHL field mappings for %s", email_type, extra={"submission_id": submission_id})
        return False

    attributes = build_lead_attributes(submission, quote_data)
    succeeded = 0
    failed = 0
    for mapping in mappings:
        try:
            await _sync_mapping(crm, mapping, email_type, attributes)
            succeeded += 1
        except Exception as e:
            failed += 1
            logger.error(
                "GHL sync for %s/%s failed: %s", email_type, mapping.recipient_type, str(e),
                extra={"submission_id": submission_id},
            )

    logger.info(
        "GHL sync %s: %d succeeded, %d failed", email_type, succeeded, failed,
        extra={"submission_id": submission_id},
    )
    return succeeded > 0


async def sync_lead_to_crm_detached(submission_id, email_type: str) -> bool:
    """sync_lead_to_crm in its own session, for background dispatch."""
    from src.database import async_session_factory
    from src.models.quote_submission import QuoteSubmission
    async with async_session_factory() as db:
        submission = await db.get(QuoteSubmission, uuid.UUID(str(submission_id)))
        if submission is None:
            logger.warning("Lead not found for CRM sync", extra={"submission_id": str(submission_id)})
            return False
        return await sync_lead_to_crm(db, submission, email_type)
