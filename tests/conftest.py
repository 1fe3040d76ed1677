"""
Shared pytest fixtures for the test suite.

Two ways of exercising the service:

* ``async_client`` drives the FastAPI app in-process through httpx's
  ASGITransport with a mock pool. Tests patch the repository call.
* ``spawn_app`` provisions a uniquely-named Postgres database, migrates it
  and starts a real server on an OS-assigned port. These tests are skipped
  when Postgres is not reachable. Databases are never dropped.

Set ``TEST_LOG=1`` to see the JSON logs on stdout.
"""

import asyncio
import os
import sys
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from newsletter.config import DatabaseSettings, get_configuration
from newsletter.database.migrations import run_migrations
from newsletter.database.postgres import create_pool
from newsletter.startup import Application, bind_listener, build_app, run
from newsletter.telemetry import get_subscriber, init_subscriber

CONFIG_DIR = Path(__file__).resolve().parents[1] / "configuration"


@pytest.fixture(scope="session", autouse=True)
def telemetry():
    """Install the global log subscriber exactly once for the whole run."""
    sink = sys.stdout if os.getenv("TEST_LOG") else open(os.devnull, "w")
    init_subscriber(get_subscriber("test", "info", sink))


@pytest.fixture()
def database_settings() -> DatabaseSettings:
    return DatabaseSettings(
        name="newsletter",
        host="localhost",
        port=5432,
        user={"name": "app", "password": "s3cr3t"},
    )


# ---------------------------------------------------------------------------
# In-process client
# ---------------------------------------------------------------------------

@pytest.fixture()
def mock_pool() -> MagicMock:
    return MagicMock(spec=AsyncEngine)


@pytest_asyncio.fixture()
async def async_client(mock_pool) -> AsyncClient:
    """
    Async HTTP test client wired to the FastAPI app.
    Lifespan is NOT triggered (the pool is a mock).
    """
    transport = ASGITransport(app=build_app(mock_pool))
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client


# ---------------------------------------------------------------------------
# Isolated application harness
# ---------------------------------------------------------------------------

@dataclass
class TestApp:
    """A running service instance and the pool of its private database."""

    __test__ = False

    address: str
    pool: AsyncEngine
    application: Application = field(repr=False)
    task: asyncio.Task = field(repr=False)

    async def subscriber_rows(self) -> list[tuple[str, str]]:
        async with self.pool.connect() as connection:
            result = await connection.execute(text("SELECT email, name FROM subscriptions"))
            return [tuple(row) for row in result.all()]


def _is_unreachable(exc: BaseException) -> bool:
    """True for connection-level failures; credential and permission errors are not."""
    if isinstance(exc, OSError):
        return True
    if isinstance(exc, OperationalError):
        return isinstance(exc.orig, OSError) or isinstance(exc.__cause__, OSError)
    return False


async def configure_database(settings: DatabaseSettings, migration_lock: asyncio.Lock) -> AsyncEngine:
    """Create ``settings.name`` from the maintenance database and migrate it."""
    maintenance = create_async_engine(settings.maintenance_url(), isolation_level="AUTOCOMMIT")
    try:
        connection = await maintenance.connect()
    except (OSError, OperationalError) as exc:
        await maintenance.dispose()
        if not _is_unreachable(exc):
            raise
        pytest.skip(f"Postgres is not reachable: {type(exc).__name__}")

    try:
        await connection.execute(text(f'CREATE DATABASE "{settings.name}"'))
    finally:
        await connection.close()
        await maintenance.dispose()

    pool = create_pool(settings)
    # Alembic keeps its migration context in module state; upgrades run one at a time
    async with migration_lock:
        await run_migrations(pool)
    return pool


@pytest_asyncio.fixture()
async def spawn_app():
    """Factory fixture: each call returns a fresh, isolated TestApp."""
    spawned: list[TestApp] = []
    migration_lock = asyncio.Lock()

    async def _spawn() -> TestApp:
        configuration = get_configuration(CONFIG_DIR)
        database = configuration.database.model_copy(update={"name": str(uuid.uuid4())})
        pool = await configure_database(database, migration_lock)

        listener = bind_listener(configuration.server.with_random_port())
        application = run(listener, pool)
        task = asyncio.create_task(application.serve())

        test_app = TestApp(
            address=application.address,
            pool=pool,
            application=application,
            task=task,
        )
        spawned.append(test_app)
        return test_app

    yield _spawn

    for test_app in spawned:
        test_app.application.stop()
        await test_app.task
        await test_app.pool.dispose()


@pytest_asyncio.fixture()
async def test_app(spawn_app) -> TestApp:
    return await spawn_app()


@pytest_asyncio.fixture()
async def http_client() -> AsyncClient:
    async with AsyncClient() as client:
        yield client
