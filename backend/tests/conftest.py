"""Shared test fixtures."""

import os
import tempfile
import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

# Settings are read at import time
_DB_DIR = tempfile.mkdtemp(prefix="fleetfin-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ["JWT_SECRET_KEY"] = "test-secret"
os.environ["JWT_AUDIENCE"] = "authenticated"
os.environ["OPENAI_API_KEY"] = ""

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from jose import jwt  # noqa: E402

from fleetfin.api.deps import get_rule_oracle  # noqa: E402
from fleetfin.core.database import async_session_factory, engine  # noqa: E402
from fleetfin.core.retry import RetryPolicy  # noqa: E402
from fleetfin.main import app  # noqa: E402
from fleetfin.models import Base, Company, Profile, Transaction  # noqa: E402
from fleetfin.services.rule_oracle import RuleOracle  # noqa: E402


class FakeOracle(RuleOracle):
    """Replays queued answers; an exception in the queue is raised instead."""

    def __init__(self, *answers):
        self.answers = list(answers)
        self.requests: list[dict] = []

    async def generate(self, request: dict) -> dict:
        self.requests.append(request)
        answer = self.answers.pop(0) if len(self.answers) > 1 else self.answers[0]
        if isinstance(answer, Exception):
            raise answer
        return answer


class RecordingSleep:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def make_token(user_id: str, secret: str = "test-secret", **claims) -> str:
    payload = {
        "sub": user_id,
        "aud": "authenticated",
        "exp": datetime.now(timezone.utc) + timedelta(hours=1),
        **claims,
    }
    return jwt.encode(payload, secret, algorithm="HS256")


def generated_rule(**overrides) -> dict:
    rule = {
        "name": "Fuel purchases",
        "description": "Fuel station payments",
        "pattern": {
            "conditions": [
                {"field": "description", "operator": "contains", "value": "shell"},
            ],
        },
        "category": "Fuel",
        "confidence_score": 0.9,
        "recommendations": ["Track fuel spend per vehicle"],
    }
    rule.update(overrides)
    return rule


# ── Database ──────────────────────────────────────


@pytest.fixture
async def database():
    """Fresh schema for each test."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def db(database):
    async with async_session_factory() as session:
        yield session


async def _create_tenant(session, name: str) -> Profile:
    company = Company(name=name)
    session.add(company)
    await session.flush()
    profile = Profile(id=str(uuid.uuid4()), company_id=company.id, email=f"owner@{name.lower()}.test")
    session.add(profile)
    await session.commit()
    return profile


@pytest.fixture
async def tenant(db) -> Profile:
    return await _create_tenant(db, "Acme")


@pytest.fixture
async def other_tenant(db) -> Profile:
    return await _create_tenant(db, "Globex")


@pytest.fixture
def add_history(db):
    """Store ``count`` ledger transactions for a company, one per day."""

    async def _add(company_id: str, count: int, start: date = date(2024, 1, 1)) -> None:
        for day in range(count):
            db.add(
                Transaction(
                    company_id=company_id,
                    date=start + timedelta(days=day),
                    description=f"SHELL STATION #{day}",
                    amount=Decimal("45.50"),
                    type="expense",
                    category="Fuel",
                    vendor="Shell",
                )
            )
        await db.commit()

    return _add


# ── Retry & oracle ────────────────────────────────


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def instant_policy(sleep):
    def _policy(max_attempts: int = 3, base_delay: float = 2.0, timeout: float | None = None) -> RetryPolicy:
        return RetryPolicy(max_attempts=max_attempts, base_delay=base_delay, timeout=timeout, sleep=sleep)

    return _policy


@pytest.fixture
def fake_oracle():
    oracle = FakeOracle({"rules": [generated_rule()]})
    app.dependency_overrides[get_rule_oracle] = lambda: oracle
    yield oracle
    app.dependency_overrides.pop(get_rule_oracle, None)


# ── HTTP ──────────────────────────────────────────


@pytest.fixture
async def client(database):
    """Async test client for the FastAPI app."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.fixture
def auth_headers(tenant) -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token(tenant.id)}"}
