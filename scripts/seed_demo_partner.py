"""
Seed a demo partner with boiler and solar funnels.

Idempotent: deletes the existing demo partner's questions first, then
recreates them. The boiler funnel includes a fuel-type question whose
follow-up only appears for "Gas" or "Electric".

Usage:
    python scripts/seed_demo_partner.py
"""
import asyncio
import logging
import uuid

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from src.config import get_settings
from src.models.form_question import FormQuestion
from src.models.partner import Partner
from src.models.service_category import ServiceCategory
from src.utils.encryption import encrypt_dict

logging.basicConfig(level=logging.INFO, format="%(levelname)s  %(message)s")
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
DEMO_SUBDOMAIN = "demo"
COMPANY_NAME = "Brightside Heating & Solar"

CATEGORIES = [
    ("Boiler", "boiler"),
    ("Solar", "solar"),
    ("Heating", "heating"),
]

DEMO_SMTP = {
    "host": "localhost",
    "port": "1025",
    "secure": "false",
    "username": "demo",
    "password": "demo-password",
    "from_email": "quotes@brightside.example",
}

# (step, order, text, type, options, required, conditional_display)
BOILER_QUESTIONS = [
    (1, 0, "What type of fuel does your boiler use?", "single_choice", ["Gas", "Electric", "Oil", "LPG"], True, None),
    (1, 1, "Is your boiler a combi boiler?", "single_choice", ["Yes", "No", "Not sure"], True, None),
    (
        2, 0, "Where is your meter located?", "single_choice", ["Inside", "Outside"], True,
        {
            "dependent_on_question_id": "__fuel__",
            "show_when_answer_equals": ["Gas", "Electric"],
            "logical_operator": "OR",
        },
    ),
    (3, 0, "How many bathrooms do you have?", "single_choice", ["1", "2", "3+"], True, None),
    (3, 1, "Anything else we should know?", "text", [], False, None),
]

SOLAR_QUESTIONS = [
    (1, 0, "Do you own your home?", "single_choice", ["Yes", "No"], True, None),
    (1, 1, "Roughly how much is your monthly electricity bill?", "number", [], True, None),
    (2, 0, "Would you like battery storage?", "single_choice", ["Yes", "No", "Maybe"], False, None),
]


async def _get_or_create_category(session: AsyncSession, name: str, slug: str) -> ServiceCategory:
    result = await session.execute(select(ServiceCategory).where(ServiceCategory.slug == slug))
    category = result.scalar_one_or_none()
    if category is None:
        category = ServiceCategory(name=name, slug=slug, is_active=True)
        session.add(category)
        await session.flush()
        logger.info("Created category %s", slug)
    return category


async def _get_or_create_partner(session: AsyncSession) -> Partner:
    result = await session.execute(select(Partner).where(Partner.subdomain == DEMO_SUBDOMAIN))
    partner = result.scalar_one_or_none()
    if partner is None:
        partner = Partner(company_name=COMPANY_NAME, subdomain=DEMO_SUBDOMAIN)
        session.add(partner)
    partner.status = "active"
    partner.company_color = "#f97316"
    partner.admin_email = "leads@brightside.example"
    partner.phone = "+441632960000"
    partner.otp_enabled = True
    partner.roof_mapping_enabled = True
    partner.smtp_settings = encrypt_dict(DEMO_SMTP)
    await session.flush()
    return partner


def _build_questions(partner: Partner, category: ServiceCategory, specs: list[tuple]) -> list[FormQuestion]:
    questions = []
    first_id = None
    for step, order, text, answer_type, options, required, rule in specs:
        if rule and rule.get("dependent_on_question_id") == "__fuel__":
            rule = {**rule, "dependent_on_question_id": str(first_id)}
        question = FormQuestion(
            id=uuid.uuid4(),
            partner_id=partner.id,
            service_category_id=category.id,
            step_number=step,
            display_order_in_step=order,
            question_text=text,
            answer_type=answer_type,
            answer_options=options,
            is_required=required,
            conditional_display=rule,
            status="active",
        )
        questions.append(question)
        if first_id is None:
            first_id = question.id
    return questions


async def seed() -> None:
    settings = get_settings()
    engine = create_async_engine(settings.database_url, echo=False)
    async_session = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with async_session() as session:
        categories = {}
        for name, slug in CATEGORIES:
            categories[slug] = await _get_or_create_category(session, name, slug)

        partner = await _get_or_create_partner(session)
        await session.execute(delete(FormQuestion).where(FormQuestion.partner_id == partner.id))
        logger.info("Cleared existing questions for %s", partner.company_name)

        boiler = _build_questions(partner, categories["boiler"], BOILER_QUESTIONS)
        solar = _build_questions(partner, categories["solar"], SOLAR_QUESTIONS)
        session.add_all(boiler + solar)
        await session.commit()

    await engine.dispose()

    logger.info("=" * 60)
    logger.info("Demo partner seeded successfully!")
    logger.info("  Partner:  %s (%s.%s)", COMPANY_NAME, DEMO_SUBDOMAIN, settings.platform_base_domain)
    logger.info("  Boiler:   %d questions", len(boiler))
    logger.info("  Solar:    %d questions", len(solar))
    logger.info("=" * 60)


if __name__ == "__main__":
    asyncio.run(seed())
