"""
Shared pytest fixtures for Atelier tests.

Provides:
- In-memory asset storage and turn store
- A private tool registry with fake tools
- Small image payloads
- A throwaway SQLite database (aiosqlite)
"""

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from atelier.agent.dispatcher import ToolDispatcher
from atelier.core.database import Base
from atelier.tools.registry import ToolRegistry

from tests.helpers import FakeStorage, MemoryTurnStore, build_registry, data_uri


@pytest.fixture
def png_uri() -> str:
    return data_uri()


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def turn_store() -> MemoryTurnStore:
    return MemoryTurnStore()


@pytest.fixture
def registry() -> ToolRegistry:
    return build_registry()


@pytest.fixture
def dispatcher(registry) -> ToolDispatcher:
    return ToolDispatcher(registry)


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    import atelier.models  # noqa: F401

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'atelier.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session
