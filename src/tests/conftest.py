"""Pytest configuration and fixtures."""

from datetime import datetime, timedelta

import pytest

import rapidcron
from rapidcron import Config
from rapidcron.db import Store, Task, init_database

T0 = datetime(2026, 1, 1, 12, 0, 0)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line("markers", "integration: mark test as an integration test")


class FakeClock:
    """Manually advanced naive-UTC clock."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def config(tmp_path):
    """Create test config backed by a SQLite file."""
    return Config(
        database_url=f"sqlite:///{tmp_path / 'rapidcron.db'}",
        max_retries=2,
        base_retry_delay_seconds=0,
        retry_jitter_ratio=0,
        default_timeout_seconds=10,
        lease_grace_seconds=5,
        max_backfill=10,
        worker_id="worker-test",
    )


@pytest.fixture
def store(config):
    return Store(init_database(config.database_url))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def init_rapidcron(config):
    """Initialize rapidcron for admin API tests."""
    rapidcron.init(config)
    yield config


@pytest.fixture
def make_task(store):
    """Insert a task directly, bypassing admin validation."""

    def _make(
        name: str = "job",
        schedule: str = "0 * * * * *",
        type: str = "noop",
        created_at: datetime = T0,
        dependencies: tuple = (),
        **fields,
    ) -> Task:
        task = Task(
            name=name,
            schedule=schedule,
            type=type,
            payload=fields.pop("payload", {}),
            dependency_ids=[str(d.id) for d in dependencies],
            created_at=created_at,
            updated_at=created_at,
            **fields,
        )
        with store.session() as session:
            session.add(task)
            session.commit()
            session.refresh(task)
        return task

    return _make


@pytest.fixture(scope="session")
def postgres_container():
    """Provide PostgreSQL container for integration tests."""
    from testcontainers.postgres import PostgresContainer  # type: ignore[import-not-found]

    container = PostgresContainer(
        image="postgres:17",
        username="rapidcron",
        password="rapidcron_pass",
        dbname="rapidcron",
    )
    with container as postgres:
        yield postgres


@pytest.fixture
def database_url(postgres_container):
    """Provide database URL for integration tests."""
    # Convert psycopg2 URL to psycopg3 (psycopg) URL
    url = postgres_container.get_connection_url()
    return url.replace("postgresql+psycopg2://", "postgresql+psycopg://")
