"""
Quote emails - sent through each partner's own SMTP server.

quote-initial goes out when the contact step is submitted, quote-verified once
the phone number is verified. Each goes to the customer and, when the partner
has an admin_email, as a notification copy to the partner. Partner SMTP
settings are stored encrypted and decrypted only here, right before sending.
"""
import html
import logging
import uuid
from email.message import EmailMessage
from email.utils import formataddr, make_msgid
from typing import Any, Optional

import aiosmtplib

from src.services.errors import SmtpNotConfiguredError
from src.utils.dedup import claim_notification
from src.utils.encryption import decrypt_dict
from src.utils.logging import mask_email

logger = logging.getLogger(__name__)

EMAIL_QUOTE_INITIAL = "quote-initial"
EMAIL_QUOTE_VERIFIED = "quote-verified"

DEFAULT_SMTP_PORT = 587

# Legacy key -> SMTP_* key
_LEGACY_SMTP_KEYS = {
    "host": "SMTP_HOST",
    "port": "SMTP_PORT",
    "secure": "SMTP_SECURE",
    "username": "SMTP_USER",
    "user": "SMTP_USER",
    "password": "SMTP_PASSWORD",
    "from_email": "SMTP_FROM",
    "from": "SMTP_FROM",
}


class _TemplateValues(dict):
    """format_map helper that leaves unknown {placeholders} untouched."""

    def __missing__(self, key):
        return "{" + key + "}"


def render_template(template: str, values: dict[str, Any]) -> str:
    return template.format_map(_TemplateValues({k: "" if v is None else v for k, v in values.items()}))


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


def normalize_smtp_settings(raw: Optional[dict]) -> dict:
    """
    Normalize stored SMTP settings into one shape.

    Accepts SMTP_* keys and the older host/port/secure/username/password/from_email
    keys; SMTP_* wins when both are present.
    """
    raw = raw or {}
    merged: dict[str, Any] = {}
    for key, value in raw.items():
        if key.startswith("SMTP_") and value not in (None, ""):
            merged[key] = value
    for legacy, modern in _LEGACY_SMTP_KEYS.items():
        if modern not in merged and raw.get(legacy) not in (None, ""):
            merged[modern] = raw[legacy]

    try:
        port = int(merged.get("SMTP_PORT") or DEFAULT_SMTP_PORT)
    except (TypeError, ValueError):
        port = DEFAULT_SMTP_PORT

    return {
        "host": str(merged.get("SMTP_HOST") or ""),
        "port": port,
        "secure": _as_bool(merged.get("SMTP_SECURE", False)),
        "username": str(merged.get("SMTP_USER") or ""),
        "password": str(merged.get("SMTP_PASSWORD") or ""),
        "from_email": str(merged.get("SMTP_FROM") or ""),
    }


def load_partner_smtp(partner) -> dict:
    """Decrypt and normalize a partner's SMTP settings, or raise SmtpNotConfiguredError."""
    if not partner.smtp_settings:
        raise SmtpNotConfiguredError()
    smtp = normalize_smtp_settings(decrypt_dict(partner.smtp_settings))
    if not smtp["host"] or not smtp["username"] or not smtp["password"]:
        raise SmtpNotConfiguredError(detail="Incomplete SMTP settings")
    return smtp


async def send_smtp_email(
    smtp: dict,
    to_email: str,
    subject: str,
    html_content: str,
    text_content: str,
    from_name: Optional[str] = None,
    reply_to: Optional[str] = None,
) -> dict:
    """
    Send one email through a partner SMTP server.

    Returns: {"message_id": str|None, "status": str, "error": str|None}
    """
    from src.config import get_settings
    timeout = get_settings().smtp_timeout_seconds

    from_email = smtp["from_email"] or smtp["username"]
    message = EmailMessage()
    message["Subject"] = subject
    message["From"] = formataddr((from_name, from_email)) if from_name else from_email
    message["To"] = to_email
    if reply_to:
        message["Reply-To"] = reply_to
    message_id = make_msgid(domain=from_email.split("@")[-1] if "@" in from_email else None)
    message["Message-ID"] = message_id
    message.set_content(text_content)
    message.add_alternative(html_content, subtype="html")

    # Implicit TLS when secure, otherwise upgrade with STARTTLS if offered
    client = aiosmtplib.SMTP(
        hostname=smtp["host"],
        port=smtp["port"],
        use_tls=smtp["secure"],
        start_tls=False if smtp["secure"] else None,
        timeout=timeout,
    )
    try:
        async with client:
            await client.login(smtp["username"], smtp["password"])
            await client.send_message(message)
    except Exception as e:
        logger.error(
            "SMTP send failed: to=%s host=%s error=%s",
            mask_email(to_email), smtp["host"], str(e),
        )
        return {"message_id": None, "status": "error", "error": str(e)}

    logger.info("Quote email sent: to=%s subject=%s", mask_email(to_email), subject[:40])
    return {"message_id": message_id, "status": "sent", "error": None}


# --- Rendering ---

CUSTOMER_SUBJECTS = {
    EMAIL_QUOTE_INITIAL: "Your {category_name} quote request - {company_name}",
    EMAIL_QUOTE_VERIFIED: "Your {category_name} quote is ready - {company_name}",
}

ADMIN_SUBJECTS = {
    EMAIL_QUOTE_INITIAL: "New {category_name} quote request from {first_name} {last_name}",
    EMAIL_QUOTE_VERIFIED: "Verified {category_name} lead: {first_name} {last_name}",
}

CUSTOMER_INTRO = {
    EMAIL_QUOTE_INITIAL: (
        "Thanks for requesting a {category_name} quote from {company_name}. "
        "We've received your answers and are preparing your options."
    ),
    EMAIL_QUOTE_VERIFIED: (
        "Thanks for confirming your phone number. Your {category_name} quote "
        "from {company_name} is ready to view."
    ),
}

ADMIN_INTRO = {
    EMAIL_QUOTE_INITIAL: "A new quote request has been submitted through your funnel.",
    EMAIL_QUOTE_VERIFIED: "This lead has verified their phone number.",
}

HTML_LAYOUT = """
    <div style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; max-width: 560px; margin: 0 auto; padding: 32px 20px;">
      <div style="text-align: center; margin-bottom: 24px;">
        {logo_html}
        <h2 style="margin: 12px 0 0; color: #111; font-size: 20px;">{heading}</h2>
      </div>
      <p style="color: #555; font-size: 15px; line-height: 1.6;">Hi {greeting_name},</p>
      <p style="color: #555; font-size: 15px; line-height: 1.6;">{intro}</p>
      <table style="width: 100%; border-collapse: collapse; margin: 24px 0; font-size: 14px;">
        {answers_html}
      </table>
      <div style="text-align: center; margin: 32px 0;">
        <a href="{quote_link}" style="background: {brand_color}; color: white; padding: 12px 32px; border-radius: 10px; text-decoration: none; font-weight: 600; font-size: 15px; display: inline-block;">
          View your quote
        </a>
      </div>
      <hr style="border: none; border-top: 1px solid #eee; margin: 32px 0;" />
      <p style="color: #bbb; font-size: 11px; text-align: center;">{company_name} &middot; {company_phone}</p>
    </div>
    """


def _answers_for_email(submission, questions: Optional[list]) -> list[tuple[str, str]]:
    order = {}
    for q in questions or []:
        order[str(q.id)] = (q.step_number, q.display_order_in_step or 0)

    rows = list(submission.form_answers or [])
    rows.sort(key=lambda a: order.get(str(a.get("question_id")), (9999, 0)))
    answers = []
    for row in rows:
        answer = row.get("answer")
        if isinstance(answer, list):
            answer = ", ".join(str(a) for a in answer)
        answers.append((str(row.get("question_text") or ""), str(answer)))
    return answers


def render_quote_email(
    email_type: str,
    recipient: str,
    partner,
    submission,
    category_name: str,
    questions: Optional[list],
    quote_link: str,
) -> tuple[str, str, str]:
    """Returns (subject, html, text) for a customer or admin copy."""
    answers = _answers_for_email(submission, questions)
    values = {
        "first_name": submission.first_name,
        "last_name": submission.last_name,
        "email": submission.email,
        "phone": submission.phone,
        "postcode": submission.postcode,
        "submission_id": str(submission.submission_id),
        "company_name": partner.company_name,
        "company_phone": partner.phone or "",
        "category_name": category_name,
        "quote_link": quote_link,
    }

    if recipient == "admin":
        subject_template, intro_template = ADMIN_SUBJECTS[email_type], ADMIN_INTRO[email_type]
        greeting_name = partner.contact_person or partner.company_name
        contact_rows = [
            ("Name", f"{submission.first_name} {submission.last_name}"),
            ("Email", submission.email),
            ("Phone", submission.phone or ""),
            ("Postcode", submission.postcode or ""),
        ]
        answers = contact_rows + answers
    else:
        subject_template, intro_template = CUSTOMER_SUBJECTS[email_type], CUSTOMER_INTRO[email_type]
        greeting_name = submission.first_name
    subject = render_template(subject_template, values)
    intro = render_template(intro_template, values)

    # Customer-supplied values are escaped before they reach the HTML body
    safe = {k: html.escape("" if v is None else str(v)) for k, v in values.items()}
    answers_html = "".join(
        f'<tr><td style="padding: 6px 0; color: #888;">{html.escape(str(question))}</td>'
        f'<td style="padding: 6px 0; color: #111; text-align: right;">{html.escape(str(answer))}</td></tr>'
        for question, answer in answers
    )
    logo_html = (
        f'<img src="{html.escape(partner.logo_url)}" alt="{safe["company_name"]}" style="max-height: 48px;" />'
        if partner.logo_url else ""
    )
    html_body = render_template(HTML_LAYOUT, {
        **safe,
        "logo_html": logo_html,
        "heading": html.escape(subject),
        "greeting_name": html.escape(greeting_name or ""),
        "intro": render_template(intro_template, safe),
        "answers_html": answers_html,
        "brand_color": html.escape(partner.company_color or "#f97316"),
    })

    text_lines = [f"Hi {greeting_name},", "", intro, ""]
    text_lines += [f"{question}: {answer}" for question, answer in answers]
    text_lines += ["", f"View your quote: {quote_link}", "", f"-- {partner.company_name}"]
    return subject, html_body, "\n".join(text_lines)


async def _send_quote_email(
    email_type: str,
    partner,
    submission,
    category_name: str,
    questions: Optional[list],
    quote_link: str,
) -> dict:
    submission_id = str(submission.submission_id)
    smtp = load_partner_smtp(partner)
    if not await claim_notification(submission_id, email_type):
        return {"customer": None, "admin": None, "status": "duplicate"}

    subject, html_body, text = render_quote_email(
        email_type, "customer", partner, submission, category_name, questions, quote_link,
    )
    customer = await send_smtp_email(
        smtp, submission.email, subject, html_body, text,
        from_name=partner.company_name, reply_to=partner.admin_email,
    )

    admin = None
    if partner.admin_email:
        subject, html_body, text = render_quote_email(
            email_type, "admin", partner, submission, category_name, questions, quote_link,
        )
        admin = await send_smtp_email(
            smtp, partner.admin_email, subject, html_body, text,
            from_name=partner.company_name, reply_to=submission.email,
        )

    status = "sent" if customer["status"] == "sent" else "error"
    if status == "error":
        logger.warning(
            "%s email not delivered to customer", email_type,
            extra={"submission_id": submission_id, "partner_id": str(partner.id)},
        )
    return {"customer": customer, "admin": admin, "status": status}


async def send_quote_initial(partner, submission, questions, quote_link: str, category_name: str = "") -> dict:
    return await _send_quote_email(
        EMAIL_QUOTE_INITIAL, partner, submission, category_name or "home improvement", questions, quote_link,
    )


async def send_quote_verified(partner, submission, questions, quote_link: str, category_name: str = "") -> dict:
    return await _send_quote_email(
        EMAIL_QUOTE_VERIFIED, partner, submission, category_name or "home improvement", questions, quote_link,
    )


async def send_quote_email_detached(email_type: str, submission_id, quote_link: str) -> dict:
    """Load the lead and its partner in a fresh session and send one quote email, for background dispatch."""
    from src.database import async_session_factory
    from src.models.partner import Partner
    from src.models.quote_submission import QuoteSubmission
    from src.models.service_category import ServiceCategory
    from src.services.partner_resolver import load_active_questions

    async with async_session_factory() as db:
        submission = await db.get(QuoteSubmission, uuid.UUID(str(submission_id)))
        if submission is None:
            logger.warning("Lead not found for %s email", email_type, extra={"submission_id": str(submission_id)})
            return {"customer": None, "admin": None, "status": "missing"}
        partner = await db.get(Partner, submission.partner_id)
        category = await db.get(ServiceCategory, submission.service_category_id)
        questions = await load_active_questions(db, submission.partner_id, submission.service_category_id)

    category_name = category.name if category else ""
    if email_type == EMAIL_QUOTE_VERIFIED:
        return await send_quote_verified(partner, submission, questions, quote_link, category_name)
    return await send_quote_initial(partner, submission, questions, quote_link, category_name)
