"""
Test configuration and fixtures.
Uses a file-backed SQLite database per test so separate sessions see each other's
commits (concurrent ingestion, unique constraint races). Mocks all external services.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./leadsync-test.db")
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("SYNC_ENABLED", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.dialects.postgresql import JSONB

from src.database import Base
import src.models  # noqa: F401  registers all tables on Base.metadata
from src.schemas.ingestion import CredentialCheck, CredentialStatus, EntityNames
from src.services.ingestion import LeadIngestionService
from src.services.meta_client import MetaLeadClient


# Register JSONB as JSON for SQLite compatibility in tests
@compiles(JSONB, "sqlite")
def _compile_jsonb_sqlite(type_, compiler, **kw):
    return "JSON"


@pytest.fixture
async def engine(tmp_path):
    """Fresh SQLite database file with the full schema."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'leads.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    """A session for seeding and assertions. Commit seeded rows before ingesting."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def meta_client():
    """Graph API client double - no lead details, no names, no forms by default."""
    client = MagicMock(spec=MetaLeadClient)
    client.page_id = "PAGE1"
    client.fetch_lead_detail = AsyncMock(return_value=None)
    client.fetch_entity_names = AsyncMock(return_value=EntityNames())
    client.list_lead_forms = AsyncMock(return_value=[])
    client.list_form_leads = AsyncMock(return_value=[])
    client.validate_credential = AsyncMock(
        return_value=CredentialCheck(status=CredentialStatus.VALID, scopes=["leads_retrieval"])
    )
    return client


@pytest.fixture
def ingestion_service(session_factory, meta_client):
    return LeadIngestionService(
        session_factory=session_factory,
        meta_client=meta_client,
        preferred_agent_email="priya@example.com",
    )


@pytest.fixture
def mock_redis():
    """Mock for async Redis - prevents real Redis calls in tests."""
    with patch("src.utils.redis.get_redis") as mock:
        redis_mock = AsyncMock()
        redis_mock.set = AsyncMock(return_value=True)
        redis_mock.get = AsyncMock(return_value=None)
        redis_mock.ping = AsyncMock(return_value=True)
        mock.return_value = redis_mock
        yield redis_mock
