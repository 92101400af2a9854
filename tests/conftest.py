from __future__ import annotations

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from plumbtix.metrics import MetricsRegistry, register_default_metrics
from plumbtix.tickets.repository import TicketRepository

from tests.factories import seed_directory


@pytest.fixture
def metrics() -> MetricsRegistry:
    return register_default_metrics(MetricsRegistry())


@pytest_asyncio.fixture
async def engine(tmp_path):
    # File-backed so that concurrent sessions contend for the database lock.
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'plumbtix.db'}")
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def ticket_repository(engine, session_factory) -> TicketRepository:
    repository = TicketRepository(session_factory, engine=engine)
    await repository.ensure_schema()
    await seed_directory(session_factory)
    return repository
