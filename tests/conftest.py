"""
Clinivoice Backend: Test Configuration (conftest.py)
=====================================================

What:  Shared pytest fixtures for the whole suite.
How:   Environment is pinned before any clinivoice import; database tests run
       against an in-memory SQLite engine (aiosqlite + StaticPool so every
       session shares one connection); endpoint tests use httpx's
       ASGITransport with dependency overrides.

Fixture Hierarchy (all function-scoped):
    ├── mock_db_session:   AsyncMock standing in for AsyncSession
    ├── db_engine:         fresh in-memory database with all tables
    ├── db_session:        AsyncSession on db_engine
    ├── seed:              helpers that insert users, plans, subscriptions...
    ├── make_provider:     factory for scripted NoteProvider doubles
    ├── generation_config: GenerationConfig with fast, deterministic knobs
    └── test_client:       AsyncClient wired to the app and db_engine
"""

import os

# Pin the environment BEFORE any clinivoice import reads settings.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["GEMINI_API_KEY"] = ""
os.environ["OPENAI_API_KEY"] = ""
os.environ["AI_PROVIDER"] = "auto"
os.environ["JWT_SECRET"] = "test-secret-with-at-least-thirty-two-bytes"
os.environ["DB_AUTO_CREATE"] = "false"
os.environ["LOG_LEVEL"] = "WARNING"

import json
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Union
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from clinivoice.config import GenerationConfig
from clinivoice.database import create_tables
from clinivoice.exceptions import ProviderTransportError
from clinivoice.models.entitlement import Plan, Subscription, UsageRecord, WhitelistEntry
from clinivoice.models.user import User
from clinivoice.schemas.note import Domain
from clinivoice.services.llm_base import NoteProvider

FIXED_NOW = datetime(2026, 10, 15, 12, 0, tzinfo=timezone.utc)

MEDICAL_NOTE: Dict[str, Any] = {
    "subjective": "Headache for three days with photophobia.",
    "objective": "Vitals stable. Neuro exam unremarkable.",
    "assessment": "Migraine without aura.",
    "plan": "Sumatriptan as needed; follow up in one week.",
    "icdCodes": ["G43.909"],
    "cptCodes": ["99213"],
}


# ══════════════════════════════════════════════════════════════════════════
# Provider doubles
# ══════════════════════════════════════════════════════════════════════════


class ScriptedProvider(NoteProvider):
    """
    NoteProvider whose _request replays a script.

    Each script entry is either raw response text or an exception instance to
    raise. The last entry repeats once the script runs out.
    """

    def __init__(
        self,
        name: str,
        script: Sequence[Union[str, Exception]],
        generation: GenerationConfig,
        models: Sequence[str] = ("model-a",),
    ):
        self.name = name
        super().__init__(generation)
        self._script = list(script)
        self._models = tuple(models)
        self.calls: List[Dict[str, Any]] = []

    def candidate_models(self) -> Sequence[str]:
        return self._models

    async def _request(self, model: str, prompt: str, domain: Domain) -> str:
        self.calls.append({"model": model, "prompt": prompt, "domain": domain})
        index = min(len(self.calls) - 1, len(self._script) - 1)
        step = self._script[index]
        if isinstance(step, Exception):
            raise step
        return step


@pytest.fixture
def generation_config() -> GenerationConfig:
    return GenerationConfig(
        preference="auto",
        transcript_max_chars=2000,
        request_timeout=5.0,
        provider_retry_attempts=1,
        retry_min_wait=0,
        retry_max_wait=0,
        cb_failure_threshold=5,
        cb_recovery_timeout=60,
    )


@pytest.fixture
def make_provider(generation_config):
    """
    Factory for ScriptedProvider.

    Usage:
        provider = make_provider("openai", [json.dumps(note)])
        failing = make_provider("gemini", [ProviderTransportError("down")])
    """

    def _make(
        name: str,
        script: Optional[Sequence[Union[str, Exception]]] = None,
        models: Sequence[str] = ("model-a",),
        generation: Optional[GenerationConfig] = None,
    ) -> ScriptedProvider:
        if script is None:
            script = [ProviderTransportError(f"{name} unavailable")]
        return ScriptedProvider(name, script, generation or generation_config, models)

    return _make


@pytest.fixture
def medical_note_json() -> str:
    return json.dumps(MEDICAL_NOTE)


# ══════════════════════════════════════════════════════════════════════════
# Database fixtures
# ══════════════════════════════════════════════════════════════════════════


@pytest.fixture
def mock_db_session():
    """
    Provides a mock async database session.

    Usage:
        mock_db_session.execute.return_value.scalar_one_or_none.return_value = row
    """
    session = AsyncMock()
    session.execute = AsyncMock()
    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.close = AsyncMock()
    session.add = MagicMock()
    return session


@pytest_asyncio.fixture
async def db_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


class Seeder:
    """Inserts rows for gate and route tests; every helper flushes."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def user(
        self, user_id: str = "dr.who", role: str = "clinician", status: str = "active"
    ) -> User:
        user = User(user_id=user_id, name=user_id.title(), role=role, status=status)
        self.session.add(user)
        await self.session.flush()
        return user

    async def plan(self, name: str = "starter", limit: Optional[int] = 50) -> Plan:
        plan = Plan(
            name=name,
            display_name=name.title(),
            price=Decimal("19.00"),
            transcription_limit=limit,
        )
        self.session.add(plan)
        await self.session.flush()
        return plan

    async def subscription(
        self,
        user: User,
        plan: Plan,
        status: str = "active",
        start_date: date = date(2026, 10, 1),
        end_date: Optional[date] = None,
    ) -> Subscription:
        subscription = Subscription(
            user_id=user.id,
            plan_id=plan.id,
            status=status,
            start_date=start_date,
            end_date=end_date,
        )
        self.session.add(subscription)
        await self.session.flush()
        return subscription

    async def whitelist(self, user: User, reason: str = "pilot clinic") -> WhitelistEntry:
        entry = WhitelistEntry(user_id=user.id, reason=reason)
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def usage(self, user: User, count: int, month: str = "2026-10") -> UsageRecord:
        record = UsageRecord(user_id=user.id, month=month, transcription_count=count)
        self.session.add(record)
        await self.session.flush()
        return record

    async def subscribed_user(
        self, user_id: str = "dr.who", limit: Optional[int] = 50, usage: int = 0
    ) -> User:
        user = await self.user(user_id)
        plan = await self.plan(name=f"plan-{user_id}", limit=limit)
        await self.subscription(user, plan)
        if usage:
            await self.usage(user, usage)
        return user


@pytest.fixture
def seed(db_session) -> Seeder:
    return Seeder(db_session)


# ══════════════════════════════════════════════════════════════════════════
# API client
# ══════════════════════════════════════════════════════════════════════════


@pytest_asyncio.fixture
async def test_client(db_engine, session_factory, monkeypatch):
    """
    AsyncClient talking to the app in-process.

    get_db_session is overridden to use the test engine (commit on success,
    rollback on error, like the real dependency). The generation pipeline
    defaults to one with no providers, i.e. offline notes; tests that need
    providers set app.dependency_overrides[get_generation_pipeline] before
    the request. /health runs its SELECT 1 against the same test engine.
    """
    from clinivoice.database import get_db_session
    from clinivoice.main import app
    from clinivoice.services.generation_service import (
        NoteGenerationPipeline,
        get_generation_pipeline,
    )

    async def _db_session_override():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    offline_pipeline = NoteGenerationPipeline(GenerationConfig())
    app.dependency_overrides[get_db_session] = _db_session_override
    monkeypatch.setattr("clinivoice.routes.health.engine", db_engine)
    app.dependency_overrides[get_generation_pipeline] = lambda: offline_pipeline

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
