"""
Pytest configuration and fixtures for testing.

Storage-backed tests run against a throwaway SQLite file per test (through
aiosqlite), so several sessions can be open at once the way they are in
production.
"""

import os
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

os.environ.setdefault("TESTING", "true")

from saas_backend.core.database import build_engine, build_session_factory, create_all  # noqa: E402
from saas_backend.models import TENANT_OWNED_MODELS, Tenant, TenantStatus  # noqa: E402
from saas_backend.storage.tenant_scope import TenantScopeRegistry  # noqa: E402


def pytest_configure(config):
    """Load .env.test before application settings are used."""
    from dotenv import load_dotenv

    test_env_path = Path(__file__).parent.parent / ".env.test"
    if test_env_path.exists():
        load_dotenv(test_env_path, override=True)


class FakeClock:
    """Controllable UTC clock for the event store."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
async def engine(tmp_path):
    """Async engine on a fresh SQLite database with all tables created."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await create_all(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def registry() -> TenantScopeRegistry:
    return TenantScopeRegistry.from_models(TENANT_OWNED_MODELS)


@pytest.fixture
async def tenants(session_factory) -> dict[str, Tenant]:
    """Two active tenants and one suspended tenant, keyed by slug."""
    rows = {
        "acme": Tenant(slug="acme", name="Acme Corporation"),
        "globex": Tenant(slug="globex", name="Globex"),
        "initech": Tenant(
            slug="initech", name="Initech", status=TenantStatus.SUSPENDED.value
        ),
    }
    async with session_factory() as session:
        session.add_all(rows.values())
        await session.commit()
    return rows
