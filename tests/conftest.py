"""
Test fixtures for reelforge tests.

Provides an in-memory database, the queue and rotation services on top of it,
and an httpx client factory for mocked provider/Airtable traffic.
"""

from typing import Callable, Generator

import httpx
import pytest
from sqlalchemy import Engine
from sqlmodel import Session, SQLModel

from reelforge.db import make_engine
from reelforge.services.api_rotation import ApiRotationManager
from reelforge.services.job_queue import JobQueue

# In-memory SQLite shared through a StaticPool (fast, isolated per test)
TEST_DATABASE_URL = "sqlite:///:memory:"


@pytest.fixture(scope="function")
def test_engine() -> Generator[Engine, None, None]:
    """Create a test database engine with in-memory SQLite."""
    engine = make_engine(TEST_DATABASE_URL)
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(scope="function")
def test_session(test_engine) -> Generator[Session, None, None]:
    """Provide a test database session."""
    with Session(test_engine) as session:
        yield session


@pytest.fixture
def job_queue(test_engine) -> JobQueue:
    return JobQueue(test_engine)


@pytest.fixture
def rotation(test_engine) -> ApiRotationManager:
    return ApiRotationManager(test_engine)


@pytest.fixture
def mock_client() -> Callable[[Callable[[httpx.Request], httpx.Response]], httpx.AsyncClient]:
    """Build an AsyncClient whose requests are answered by handler."""

    def make(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return make
