"""
Tests for lead -> GoHighLevel sync (src/services/crm_sync.py).
A mocked CRMBase stands in for the HTTP client.
"""
import json
import uuid
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

from conftest import make_category, make_partner
from src.integrations.crm_base import CRMBase
from src.integrations.gohighlevel import GoHighLevelCRM
from src.models.ghl_integration import GHLFieldMapping, GHLIntegration
from src.models.quote_submission import QuoteSubmission
from src.services.crm_sync import (
    DEFAULT_COUNTRY,
    build_contact_payload,
    build_custom_fields,
    build_lead_attributes,
    build_tags,
    get_crm_for_partner,
    sync_lead_to_crm,
    sync_lead_to_crm_detached,
)


def _fake_crm(create=None, pipelines=None):
    crm = MagicMock(spec=CRMBase)
    crm.create_contact = AsyncMock(return_value=create or {"contact_id": "c-1", "success": True})
    crm.update_contact = AsyncMock(return_value={"contact_id": "c-1", "success": True})
    crm.get_pipelines = AsyncMock(return_value=pipelines or [])
    crm.create_opportunity = AsyncMock(return_value={"opportunity_id": "o-1", "success": True})
    return crm


def _with_mappings(mappings):
    return patch("src.services.crm_sync._load_mappings", new_callable=AsyncMock, return_value=mappings)


def _submission(**overrides):
    submission = MagicMock()
    values = {
        "submission_id": uuid.uuid4(),
        "partner_id": uuid.uuid4(),
        "service_category_id": uuid.uuid4(),
        "first_name": "Jane",
        "last_name": "Doe",
        "email": "jane.doe@example.com",
        "phone": "+447700900123",
        "postcode": "SW1A 2AA",
        "address_line_1": "10 Downing Street",
        "address_line_2": None,
        "street_name": None,
        "street_number": None,
        "building_name": None,
        "sub_building": None,
        "city": "London",
        "county": None,
        "country": None,
        "formatted_address": None,
        "submission_date": datetime(2026, 3, 1, tzinfo=timezone.utc),
        "form_answers": [{"question_id": "q1", "question_text": "Fuel", "answer": "Gas"}],
    }
    values.update(overrides)
    for k, v in values.items():
        setattr(submission, k, v)
    return submission


def _mapping(**overrides):
    mapping = MagicMock()
    values = {
        "recipient_type": "customer",
        "field_mappings": {},
        "pipeline_id": None,
        "opportunity_stage": None,
        "tags": [],
    }
    values.update(overrides)
    for k, v in values.items():
        setattr(mapping, k, v)
    return mapping


class TestBuilders:
    def test_attributes(self):
        attributes = build_lead_attributes(_submission())
        assert attributes["postalCode"] == "SW1A 2AA"
        assert attributes["submissionDate"] == "2026-03-01T00:00:00+00:00"
        assert json.loads(attributes["quoteData"]) == {"Fuel": "Gas"}
        assert json.loads(attributes["addressData"])["address_line_1"] == "10 Downing Street"

    def test_custom_fields_skip_missing_values(self):
        attributes = build_lead_attributes(_submission())
        fields = build_custom_fields(
            {"postcode": "ghl-postcode", "county": "ghl-county", "email": "", "": "ghl-x"}, attributes,
        )
        assert fields == [{"id": "ghl-postcode", "field_value": "SW1A 2AA"}]

    def test_tags_merge_without_duplicates(self):
        tags = build_tags("quote-initial", _mapping(tags=["Boiler", "Quote Lead"]))
        assert tags == ["Quote Lead", "Email Type: quote-initial", "Recipient: customer", "Boiler"]

    def test_contact_payload_defaults_country_and_drops_none(self):
        payload = build_contact_payload(build_lead_attributes(_submission()), [], ["Quote Lead"])
        assert payload["country"] == DEFAULT_COUNTRY
        assert payload["source"] == "Quote Funnel"
        assert "state" not in payload


class TestSyncLead:
    async def test_no_integration(self):
        with patch("src.services.crm_sync.get_crm_for_partner", new_callable=AsyncMock, return_value=None):
            assert await sync_lead_to_crm(AsyncMock(), _submission(), "quote-initial") is False

    async def test_no_mappings(self):
        crm = _fake_crm()
        with _with_mappings([]):
            assert await sync_lead_to_crm(AsyncMock(), _submission(), "quote-initial", crm=crm) is False
        crm.create_contact.assert_not_awaited()

    async def test_contact_and_opportunity(self):
        crm = _fake_crm(pipelines=[{"id": "p-1", "stages": [{"id": "s-1"}]}])
        mapping = _mapping(field_mappings={"postcode": "f-1"}, pipeline_id="p-1", opportunity_stage="s-1")
        with _with_mappings([mapping]):
            assert await sync_lead_to_crm(AsyncMock(), _submission(), "quote-initial", crm=crm) is True

        payload = crm.create_contact.await_args.args[0]
        assert payload["customFields"] == [{"id": "f-1", "field_value": "SW1A 2AA"}]
        crm.create_opportunity.assert_awaited_once_with("c-1", "p-1", "s-1", "Jane Doe")

    async def test_duplicate_contact_updated(self):
        crm = _fake_crm(create={"contact_id": None, "success": False, "duplicate_of": "c-9", "error": "dup"})
        with _with_mappings([_mapping()]):
            assert await sync_lead_to_crm(AsyncMock(), _submission(), "quote-verified", crm=crm) is True
        assert crm.update_contact.await_args.args[0] == "c-9"

    async def test_invalid_stage_skips_opportunity(self):
        crm = _fake_crm(pipelines=[{"id": "p-1", "stages": [{"id": "s-1"}]}])
        mapping = _mapping(pipeline_id="p-1", opportunity_stage="s-missing")
        with _with_mappings([mapping]):
            assert await sync_lead_to_crm(AsyncMock(), _submission(), "quote-initial", crm=crm) is True
        crm.create_opportunity.assert_not_awaited()

    async def test_pipeline_lookup_error_still_creates_opportunity(self):
        crm = _fake_crm()
        crm.get_pipelines = AsyncMock(side_effect=Exception("GHL 500"))
        with _with_mappings([_mapping(pipeline_id="p-1")]):
            await sync_lead_to_crm(AsyncMock(), _submission(), "quote-initial", crm=crm)
        crm.create_opportunity.assert_awaited_once()

    async def test_one_mapping_failing_does_not_stop_others(self):
        crm = _fake_crm()
        crm.create_contact = AsyncMock(side_effect=[
            {"contact_id": None, "success": False, "duplicate_of": None, "error": "boom"},
            {"contact_id": "c-2", "success": True},
        ])
        mappings = [_mapping(recipient_type="customer"), _mapping(recipient_type="admin")]
        with _with_mappings(mappings):
            assert await sync_lead_to_crm(AsyncMock(), _submission(), "quote-initial", crm=crm) is True
        assert crm.create_contact.await_count == 2


class TestWithDatabase:
    async def test_get_crm_for_partner(self, db):
        partner = await make_partner(db)
        assert await get_crm_for_partner(db, partner.id) is None

        db.add(GHLIntegration(partner_id=partner.id, api_key_encrypted="ghl-key", location_id="loc-1", is_active=True))
        await db.commit()

        crm = await get_crm_for_partner(db, partner.id)
        assert isinstance(crm, GoHighLevelCRM)
        assert crm.location_id == "loc-1"

    async def test_detached_sync_loads_active_mappings(self, db):
        partner = await make_partner(db)
        category = await make_category(db)
        lead = QuoteSubmission(
            partner_id=partner.id, service_category_id=category.id, status="new",
            first_name="Jane", last_name="Doe", email="jane.doe@example.com", form_answers=[],
        )
        db.add(lead)
        db.add(GHLIntegration(partner_id=partner.id, api_key_encrypted="ghl-key", location_id="loc-1", is_active=True))
        db.add(GHLFieldMapping(
            partner_id=partner.id, service_category_id=category.id, email_type="quote-initial",
            recipient_type="customer", field_mappings={}, tags=[], is_active=True,
        ))
        db.add(GHLFieldMapping(
            partner_id=partner.id, service_category_id=category.id, email_type="quote-initial",
            recipient_type="admin", field_mappings={}, tags=[], is_active=False,
        ))
        await db.commit()

        crm = _fake_crm()
        with patch("src.services.crm_sync.GoHighLevelCRM", return_value=crm):
            assert await sync_lead_to_crm_detached(str(lead.submission_id), "quote-initial") is True
        assert crm.create_contact.await_count == 1

    async def test_detached_missing_lead(self, db):
        assert await sync_lead_to_crm_detached(str(uuid.uuid4()), "quote-initial") is False
