"""pytest fixtures for storyjobs tests.

Provides:
- utc_timezone: Autouse fixture enforcing UTC timezone
- session_factory: Function-scoped SQLite database (aiosqlite) with all tables created
- postgres_container: Session-scoped testcontainer PostgreSQL instance with migrations applied
- pg_session_factory: Function-scoped session factory over that instance, tables emptied after
- session: Function-scoped database session
- uow_factory: Function-scoped UnitOfWork factory
- job_config: Job policy for the test tier (auto processing off, one job at a time)
- manager: Initialized JobManager over the test database
"""

import os
import subprocess
import sys
from pathlib import Path
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from docker.errors import DockerException
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import SQLModel
from testcontainers.postgres import PostgresContainer

import storyjobs.models  # noqa: F401  (registers tables on SQLModel.metadata)
from storyjobs.core.database import setup_db_session
from storyjobs.services.jobs.config import JobConfigManager
from storyjobs.services.jobs.manager import JobManager
from storyjobs.uow import create_uow_factory

PROJECT_ROOT = Path(__file__).resolve().parent.parent


@pytest.fixture(scope="session", autouse=True)
def utc_timezone():
    """Enforce UTC timezone for all tests.

    Autouse fixture ensures TZ=UTC is set before any test runs.
    This prevents timezone-dependent behavior and ensures reproducible tests.
    """
    os.environ["TZ"] = "UTC"
    yield
    # No cleanup needed - environment persists for session


@pytest.fixture(scope="session")
def postgres_container():
    """Provide session-scoped PostgreSQL container with migrations applied.

    Container starts once per test session and is reused by every PostgreSQL test.
    Migrations are applied using subprocess to avoid asyncio event loop conflicts.
    Tests that need it are skipped when no Docker daemon is reachable.
    """
    container = PostgresContainer(
        image="postgres:17",
        username="test",
        password="test",
        dbname="test_storyjobs",
    )
    try:
        container.start()
    except DockerException as e:
        pytest.skip(f"Docker is not available: {e}")

    try:
        # Set DATABASE_URL environment variable for alembic env.py
        env = os.environ.copy()
        env["DATABASE_URL"] = container.get_connection_url(driver="psycopg")

        subprocess.run(
            [sys.executable, "-m", "alembic", "upgrade", "head"],
            check=True,
            capture_output=True,
            text=True,
            env=env,
            cwd=PROJECT_ROOT,
        )

        yield container
    finally:
        container.stop()


@pytest_asyncio.fixture(scope="function")
async def pg_session_factory(
    postgres_container,
) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Provide a session factory over the migrated PostgreSQL database.

    Tables are emptied after each test for isolation.
    """
    factory = setup_db_session(postgres_container.get_connection_url(driver="psycopg"), pool_size=5)

    yield factory

    async with factory() as session:
        await session.execute(text("DELETE FROM background_jobs"))
        await session.execute(text("DELETE FROM processing_locks"))
        await session.commit()
        engine = session.bind
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Provide a session factory over a fresh SQLite file database.

    Each test gets its own database file, so no truncation is needed. Tables are
    created from the SQLModel metadata (the Alembic migration targets PostgreSQL).
    """
    factory = setup_db_session(f"sqlite+aiosqlite:///{tmp_path}/test.db")

    async with factory() as session:
        engine = session.bind
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    yield factory

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Provide function-scoped database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture(scope="function")
async def uow_factory(session_factory):
    """Provide function-scoped UnitOfWork factory.

    Returns a callable that creates UoW instances using the test database.
    """
    return create_uow_factory(session_factory)


@pytest.fixture
def job_config() -> JobConfigManager:
    """Job policy for the test tier."""
    return JobConfigManager(environment="test")


@pytest_asyncio.fixture(scope="function")
async def manager(uow_factory, job_config) -> JobManager:
    """Provide an initialized JobManager over the test database."""
    job_manager = JobManager(uow_factory, job_config)
    assert await job_manager.initialize()
    return job_manager
