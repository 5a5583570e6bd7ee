"""
Pytest configuration and fixtures for Hive Monitor tests.
"""

import asyncio
import os
import sys
from pathlib import Path

import pytest

# Add project root to path for imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SEED_ON_STARTUP", "false")
os.environ.setdefault("SECRET_KEY", "test-secret")

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from hive_monitor.core.database import Base
from hive_monitor.models.device import Device
from hive_monitor.services.policy import policy_cache


@pytest.fixture
def session_maker(tmp_path):
    """Fresh SQLite database per test."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool)

    async def create_tables():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(create_tables())
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    asyncio.run(engine.dispose())


@pytest.fixture(autouse=True)
def clear_policy_cache():
    """Policy cache is process-wide; start every test cold."""
    policy_cache.clear()
    yield
    policy_cache.clear()


@pytest.fixture
def run(session_maker):
    """Run ``await fn(session)`` on a new session and return the result."""
    def _run(fn):
        async def main():
            async with session_maker() as session:
                return await fn(session)
        return asyncio.run(main())
    return _run


@pytest.fixture
def alpha(run):
    """Device "Alpha" with a known credential."""
    async def create(session):
        device = Device(name="Alpha", credential="alpha_abc", is_active=True)
        session.add(device)
        await session.commit()
        return device
    return run(create)


@pytest.fixture
def client(session_maker):
    """FastAPI test client bound to the per-test database."""
    from fastapi.testclient import TestClient

    from hive_monitor.api.main import app
    from hive_monitor.core.database import get_db

    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def operator_headers(run, client):
    """Authorization header for a freshly created operator."""
    from hive_monitor.services.auth import OperatorService

    async def create(session):
        await OperatorService(session).ensure_admin("admin", "secret")

    run(create)
    response = client.post("/auth/login", json={"username": "admin", "password": "secret"})
    return {"Authorization": f"Bearer {response.json()['token']}"}
