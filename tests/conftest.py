"""
SLA Engine Test Configuration

Provides shared fixtures for async testing with:
- In-memory SQLite database
- Test client with async support
- A session factory for scheduler runs against the test database
- Policy factories for stored and in-memory policies
"""
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Any, Dict, List, Optional
import uuid

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from sla_engine.core.database import Base, get_db
from sla_engine.core.sse import ConnectionManager
from sla_engine.main import app
from sla_engine.models.sla import DEFAULT_BUSINESS_HOURS, SlaPolicy
from sla_engine.services.broadcast import BroadcastPublisher
from sla_engine.services.policy_matcher import CompiledPolicy, TargetRef, compile_policy


# Test database URL - SQLite in-memory with async support
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Monday 2026-10-19 09:00 UTC, the opening of a business window
T0 = datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)


def minutes(n: float) -> timedelta:
    return timedelta(minutes=n)


@pytest_asyncio.fixture(scope="function")
async def async_engine():
    """Create an async engine for testing with in-memory SQLite."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False}
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_factory(async_engine):
    """Session factory bound to the test engine."""
    return async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client with database override."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def manager() -> ConnectionManager:
    """Connection manager isolated from the process-wide one."""
    return ConnectionManager()


@pytest.fixture
def publisher(manager: ConnectionManager) -> BroadcastPublisher:
    return BroadcastPublisher(manager)


# -----------------------------------------------------------------------------
# Data Factories
# -----------------------------------------------------------------------------

def policy_fields(**overrides) -> Dict[str, Any]:
    """Column values for a 24/7 ticket policy with a 60/480 minute budget."""
    fields = {
        "workspace_id": "ws-1",
        "name": "Standard",
        "description": None,
        "applies_to": "ticket",
        "conditions": {},
        "response_time_minutes": 60,
        "resolution_time_minutes": 480,
        "warning_threshold": 80,
        "business_hours_only": False,
        "business_hours": dict(DEFAULT_BUSINESS_HOURS),
        "escalation_rules": [],
        "priority": 0,
        "is_active": True,
    }
    fields.update(overrides)
    return fields


def make_policy(**overrides) -> CompiledPolicy:
    """Compiled policy built without touching the database."""
    fields = policy_fields(**overrides)
    fields.setdefault("id", str(uuid.uuid4()))
    fields.setdefault("created_at", T0 - timedelta(days=30))
    return compile_policy(SlaPolicy(**fields))


def make_target(target_id: str = "TKT-1", workspace_id: str = "ws-1", **attributes) -> TargetRef:
    return TargetRef(
        target_type="ticket",
        target_id=target_id,
        workspace_id=workspace_id,
        attributes=attributes,
    )


class SlaPolicyFactory:
    """Factory for creating stored test SLA policies."""

    @staticmethod
    async def create(
        db: AsyncSession,
        workspace_id: str = "ws-1",
        name: str = "Standard",
        response_time_minutes: Optional[int] = 60,
        resolution_time_minutes: Optional[int] = 480,
        escalation_rules: Optional[List[Dict[str, Any]]] = None,
        created_at: Optional[datetime] = None,
        **overrides
    ) -> SlaPolicy:
        policy = SlaPolicy(
            id=str(uuid.uuid4()),
            created_at=created_at or T0 - timedelta(days=30),
            updated_at=created_at or T0 - timedelta(days=30),
            **policy_fields(
                workspace_id=workspace_id,
                name=name,
                response_time_minutes=response_time_minutes,
                resolution_time_minutes=resolution_time_minutes,
                escalation_rules=escalation_rules or [],
                **overrides
            )
        )
        db.add(policy)
        await db.commit()
        await db.refresh(policy)
        return policy


# -----------------------------------------------------------------------------
# Pre-configured Test Data Fixtures
# -----------------------------------------------------------------------------

@pytest_asyncio.fixture
async def test_policy(db_session: AsyncSession) -> SlaPolicy:
    """A 24/7 ticket policy in ws-1."""
    return await SlaPolicyFactory.create(db_session)


# Export factories for use in tests
__all__ = [
    "T0",
    "minutes",
    "make_policy",
    "make_target",
    "policy_fields",
    "SlaPolicyFactory",
]
