"""
Test configuration and fixtures.
Uses a throwaway SQLite database per test and an in-memory Redis double.
Mocks all external services (Twilio Verify, GoHighLevel, SMTP).
"""
import asyncio
import fnmatch
import os
import uuid

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("PLATFORM_BASE_DOMAIN", "quotes.test")
os.environ.setdefault("APP_BASE_URL", "http://localhost:8000")

import pytest
from unittest.mock import AsyncMock, patch
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.dialects.postgresql import JSONB

import src.models  # noqa: F401  registers every table on Base.metadata
from src.database import Base
from src.models.form_question import FormQuestion
from src.models.partner import Partner
from src.models.service_category import ServiceCategory
from src.services import dispatch


# Register JSONB as JSON for SQLite compatibility in tests
@compiles(JSONB, "sqlite")
def _compile_jsonb_sqlite(type_, compiler, **kw):
    return "JSON"


class FakeRedis:
    """Just enough of redis.asyncio for sessions, OTP state, dedup and locks."""

    def __init__(self):
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int] = {}

    async def get(self, key):
        return self.store.get(key)

    async def set(self, key, value, nx=False, ex=None):
        if nx and key in self.store:
            return None
        self.store[key] = value
        if ex is not None:
            self.ttls[key] = ex
        return True

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    async def eval(self, script, numkeys, *args):
        # Only the compare-and-delete release script is used
        key, value = args[0], args[1]
        if self.store.get(key) == value:
            return await self.delete(key)
        return 0

    async def ping(self):
        return True

    def keys_matching(self, pattern: str) -> list[str]:
        return [k for k in self.store if fnmatch.fnmatch(k, pattern)]


@pytest.fixture
async def engine(tmp_path):
    """SQLite file database - separate sessions (background tasks) see committed rows."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'funnel.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    """Point background tasks' async_session_factory at the test database."""
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    with patch("src.database.async_session_factory", factory):
        yield factory


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def fake_redis():
    """In-memory async Redis, patched in wherever get_redis() is called."""
    redis = FakeRedis()
    with patch("src.utils.dedup.get_redis", new_callable=AsyncMock, return_value=redis):
        yield redis


@pytest.fixture
def mock_redis():
    """Mock for async Redis — prevents real Redis calls in tests."""
    with patch("src.utils.dedup.get_redis") as mock:
        redis_mock = AsyncMock()
        redis_mock.set = AsyncMock(return_value=True)
        redis_mock.ping = AsyncMock(return_value=True)
        mock.return_value = redis_mock
        yield redis_mock


async def wait_for_background_tasks() -> None:
    """Await every dispatched background task, including ones spawned meanwhile."""
    while dispatch._running_tasks:
        await asyncio.gather(*list(dispatch._running_tasks), return_exceptions=True)


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


async def make_partner(db, **overrides) -> Partner:
    values = {
        "id": uuid.uuid4(),
        "company_name": "Acme Heating",
        "status": "active",
        "subdomain": "acme",
        "admin_email": None,
        "phone": "+441632960000",
        "otp_enabled": False,
        "roof_mapping_enabled": False,
    }
    values.update(overrides)
    partner = Partner(**values)
    db.add(partner)
    await db.commit()
    return partner


async def make_category(db, slug: str = "boiler", name: str = "Boiler") -> ServiceCategory:
    category = ServiceCategory(id=uuid.uuid4(), name=name, slug=slug, is_active=True)
    db.add(category)
    await db.commit()
    return category


async def make_question(db, partner, category, step_number: int, text: str, **overrides) -> FormQuestion:
    values = {
        "id": uuid.uuid4(),
        "partner_id": partner.id,
        "service_category_id": category.id,
        "step_number": step_number,
        "display_order_in_step": 0,
        "question_text": text,
        "answer_type": "single_choice",
        "answer_options": [],
        "is_required": True,
        "conditional_display": None,
        "status": "active",
        "is_deleted": False,
    }
    values.update(overrides)
    question = FormQuestion(**values)
    db.add(question)
    await db.commit()
    return question


@pytest.fixture
async def boiler_funnel(db):
    """
    Acme's boiler funnel:
      step 1: fuel type (Gas/Electric/Oil)
      step 2: meter location, only shown for Gas or Electric
      step 3: bathrooms
    """
    partner = await make_partner(db)
    category = await make_category(db)
    fuel = await make_question(
        db, partner, category, 1, "What fuel does your boiler use?",
        answer_options=["Gas", "Electric", "Oil"],
    )
    meter = await make_question(
        db, partner, category, 2, "Where is your meter?",
        answer_options=["Inside", "Outside"],
        conditional_display={
            "dependent_on_question_id": str(fuel.id),
            "show_when_answer_equals": ["Gas", "Electric"],
            "logical_operator": "OR",
        },
    )
    bathrooms = await make_question(
        db, partner, category, 3, "How many bathrooms?",
        answer_options=["1", "2", "3+"],
    )
    return {
        "partner": partner,
        "category": category,
        "fuel": fuel,
        "meter": meter,
        "bathrooms": bathrooms,
        "questions": [fuel, meter, bathrooms],
    }


VALID_CONTACT = {
    "first_name": "Jane",
    "last_name": "Doe",
    "email": "Jane.Doe@example.com",
    "phone": "07700 900123",
}

UK_ADDRESS = {
    "address_line_1": "10 Downing Street",
    "city": "London",
    "postcode": "SW1A 2AA",
    "country": "United Kingdom",
    "formatted_address": "10 Downing Street, London, SW1A 2AA",
}
