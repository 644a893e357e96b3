"""
Tests for partner-SMTP quote emails (src/services/quote_email.py).
"""
import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from conftest import make_category, make_partner
from src.models.quote_submission import QuoteSubmission
from src.services.errors import SmtpNotConfiguredError
from src.services.quote_email import (
    EMAIL_QUOTE_INITIAL,
    EMAIL_QUOTE_VERIFIED,
    load_partner_smtp,
    normalize_smtp_settings,
    render_quote_email,
    render_template,
    send_quote_email_detached,
    send_quote_initial,
    send_smtp_email,
)

SMTP = {
    "SMTP_HOST": "smtp.acme.example",
    "SMTP_PORT": "465",
    "SMTP_SECURE": "true",
    "SMTP_USER": "quotes@acme.example",
    "SMTP_PASSWORD": "pw",
}


def _partner(**overrides):
    partner = MagicMock()
    partner.id = uuid.uuid4()
    partner.company_name = "Acme Heating"
    partner.phone = "+441632960000"
    partner.admin_email = "office@acme.example"
    partner.contact_person = "Sam"
    partner.logo_url = None
    partner.company_color = None
    partner.smtp_settings = dict(SMTP)
    for k, v in overrides.items():
        setattr(partner, k, v)
    return partner


def _submission():
    submission = MagicMock()
    submission.submission_id = uuid.uuid4()
    submission.first_name = "Jane"
    submission.last_name = "Doe"
    submission.email = "jane.doe@example.com"
    submission.phone = "+447700900123"
    submission.postcode = "SW1A 2AA"
    submission.form_answers = [
        {"question_id": "q2", "question_text": "Bathrooms", "answer": "2"},
        {"question_id": "q1", "question_text": "Fuel", "answer": ["Gas", "Oil"]},
    ]
    return submission


def _question(qid, step):
    q = MagicMock()
    q.id = qid
    q.step_number = step
    q.display_order_in_step = 0
    return q


def _smtp_client():
    client = MagicMock()
    client.login = AsyncMock()
    client.send_message = AsyncMock()
    return client


class TestNormalizeSmtpSettings:
    def test_modern_keys(self):
        smtp = normalize_smtp_settings(SMTP)
        assert smtp == {
            "host": "smtp.acme.example",
            "port": 465,
            "secure": True,
            "username": "quotes@acme.example",
            "password": "pw",
            "from_email": "",
        }

    def test_legacy_keys_and_default_port(self):
        smtp = normalize_smtp_settings({"host": "mail.example", "username": "u", "password": "p", "from": "a@b.c"})
        assert smtp["host"] == "mail.example"
        assert smtp["port"] == 587
        assert smtp["secure"] is False
        assert smtp["from_email"] == "a@b.c"

    def test_modern_key_wins(self):
        assert normalize_smtp_settings({"SMTP_HOST": "new", "host": "old"})["host"] == "new"

    def test_bad_port_falls_back(self):
        assert normalize_smtp_settings({"SMTP_PORT": "abc"})["port"] == 587


class TestLoadPartnerSmtp:
    def test_missing_settings(self):
        with pytest.raises(SmtpNotConfiguredError):
            load_partner_smtp(_partner(smtp_settings=None))

    def test_incomplete_settings(self):
        with pytest.raises(SmtpNotConfiguredError):
            load_partner_smtp(_partner(smtp_settings={"SMTP_HOST": "smtp.acme.example"}))

    def test_decrypts(self):
        with patch("src.services.quote_email.decrypt_dict", return_value=SMTP) as mock_decrypt:
            smtp = load_partner_smtp(_partner(smtp_settings={"SMTP_HOST": "gAAAA..."}))
        mock_decrypt.assert_called_once()
        assert smtp["host"] == "smtp.acme.example"


class TestRender:
    def test_unknown_placeholders_left_alone(self):
        assert render_template("Hi {first_name} {nope}", {"first_name": None}) == "Hi  {nope}"

    def test_customer_copy(self):
        subject, html, text = render_quote_email(
            EMAIL_QUOTE_INITIAL, "customer", _partner(), _submission(), "Boiler",
            [_question("q1", 1), _question("q2", 2)], "https://acme.quotes.test/boiler/products?submission=1",
        )
        assert subject == "Your Boiler quote request - Acme Heating"
        assert "Hi Jane," in text
        # Answers follow question order, lists joined
        assert text.index("Fuel: Gas, Oil") < text.index("Bathrooms: 2")
        assert "https://acme.quotes.test/boiler/products?submission=1" in html
        assert "#f97316" in html

    def test_admin_copy_includes_contact(self):
        subject, _, text = render_quote_email(
            EMAIL_QUOTE_VERIFIED, "admin", _partner(), _submission(), "Boiler", None, "https://x",
        )
        assert subject == "Verified Boiler lead: Jane Doe"
        assert "Hi Sam," in text
        assert "Email: jane.doe@example.com" in text

    def test_customer_values_escaped_in_html(self):
        submission = _submission()
        submission.first_name = "<script>alert(1)</script>"
        submission.form_answers = [{"question_id": "q1", "question_text": "Fuel", "answer": "<b>Gas</b>"}]
        partner = _partner(logo_url='https://cdn.example/logo.png" onerror="x', company_name="Acme & Sons")

        for recipient in ("customer", "admin"):
            _, html, text = render_quote_email(
                EMAIL_QUOTE_INITIAL, recipient, partner, submission, "Boiler", None, "https://x",
            )
            assert "<script>" not in html
            assert "&lt;script&gt;alert(1)&lt;/script&gt;" in html
            assert "&lt;b&gt;Gas&lt;/b&gt;" in html
            assert 'onerror="x' not in html
            assert "Acme &amp; Sons" in html
        # Plain-text part is left as typed
        assert "Fuel: <b>Gas</b>" in text


class TestSendSmtpEmail:
    async def test_sends_with_login(self):
        client = _smtp_client()
        smtp = normalize_smtp_settings(SMTP)
        with patch("src.services.quote_email.aiosmtplib.SMTP", return_value=client) as mock_cls:
            result = await send_smtp_email(smtp, "jane@example.com", "Subject", "<p>hi</p>", "hi", from_name="Acme")

        assert result["status"] == "sent"
        assert result["message_id"]
        assert mock_cls.call_args.kwargs["use_tls"] is True
        client.login.assert_awaited_once_with("quotes@acme.example", "pw")
        message = client.send_message.await_args.args[0]
        assert message["To"] == "jane@example.com"
        assert message["From"] == "Acme <quotes@acme.example>"

    async def test_failure_returns_error(self):
        client = _smtp_client()
        client.login = AsyncMock(side_effect=Exception("535 auth failed"))
        with patch("src.services.quote_email.aiosmtplib.SMTP", return_value=client):
            result = await send_smtp_email(normalize_smtp_settings(SMTP), "jane@example.com", "S", "<p/>", "t")

        assert result == {"message_id": None, "status": "error", "error": "535 auth failed"}


class TestSendQuoteEmail:
    async def test_customer_and_admin_copies(self, fake_redis):
        client = _smtp_client()
        with patch("src.services.quote_email.aiosmtplib.SMTP", return_value=client):
            result = await send_quote_initial(_partner(), _submission(), None, "https://x", "Boiler")

        assert result["status"] == "sent"
        assert client.send_message.await_count == 2
        recipients = [call.args[0]["To"] for call in client.send_message.await_args_list]
        assert recipients == ["jane.doe@example.com", "office@acme.example"]

    async def test_second_send_is_duplicate(self, fake_redis):
        partner, submission = _partner(admin_email=None), _submission()
        client = _smtp_client()
        with patch("src.services.quote_email.aiosmtplib.SMTP", return_value=client):
            await send_quote_initial(partner, submission, None, "https://x")
            result = await send_quote_initial(partner, submission, None, "https://x")

        assert result["status"] == "duplicate"
        assert client.send_message.await_count == 1

    async def test_no_smtp_raises_before_claim(self, fake_redis):
        with pytest.raises(SmtpNotConfiguredError):
            await send_quote_initial(_partner(smtp_settings={}), _submission(), None, "https://x")
        assert fake_redis.store == {}


class TestDetached:
    async def test_loads_lead_and_sends(self, db, fake_redis):
        partner = await make_partner(db, smtp_settings=dict(SMTP), admin_email=None)
        category = await make_category(db)
        lead = QuoteSubmission(
            partner_id=partner.id, service_category_id=category.id, status="new",
            first_name="Jane", last_name="Doe", email="jane.doe@example.com", form_answers=[],
        )
        db.add(lead)
        await db.commit()

        client = _smtp_client()
        with patch("src.services.quote_email.aiosmtplib.SMTP", return_value=client):
            result = await send_quote_email_detached(EMAIL_QUOTE_VERIFIED, str(lead.submission_id), "https://x")

        assert result["status"] == "sent"
        message = client.send_message.await_args.args[0]
        assert message["Subject"] == "Your Boiler quote is ready - Acme Heating"

    async def test_missing_lead(self, db, fake_redis):
        result = await send_quote_email_detached(EMAIL_QUOTE_INITIAL, str(uuid.uuid4()), "https://x")
        assert result["status"] == "missing"
