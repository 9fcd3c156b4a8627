"""
Pytest configuration and shared fixtures.

Store tests run against a throwaway SQLite file through aiosqlite.
Tests marked ``db`` need a real PostgreSQL (TEST_DATABASE_URL) and are
skipped unless RUN_DB_TESTS=1.
"""

import os
import uuid
from datetime import datetime
from typing import Any, Dict, Optional
from unittest.mock import AsyncMock

import pytest

from review_worker.db.base import Base
from review_worker.db.session import create_engine, create_session_maker, session_scope
from review_worker.models import Job, JobStatus
from review_worker.repositories.job_repository import JobRepository
from review_worker.services.completion_client import CompletionClient, CompletionResult
from review_worker.services.job_dispatcher import JobDispatcher

TEST_USER_ID = uuid.UUID("00000000-0000-0000-0000-000000000001")


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast tests, no external deps")
    config.addinivalue_line("markers", "db: requires database")
    config.addinivalue_line("markers", "server: requires running HTTP server")


def pytest_collection_modifyitems(config, items):
    run_db = os.environ.get("RUN_DB_TESTS") == "1"
    run_server = os.environ.get("RUN_SERVER_TESTS") == "1"

    skip_db = pytest.mark.skip(reason="db tests skipped by default; set RUN_DB_TESTS=1 to enable")
    skip_server = pytest.mark.skip(reason="server tests skipped by default; set RUN_SERVER_TESTS=1 to enable")

    for item in items:
        if "db" in item.keywords and not run_db:
            item.add_marker(skip_db)
        if "server" in item.keywords and not run_server:
            item.add_marker(skip_server)


@pytest.fixture
async def engine(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'jobs.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return create_session_maker(engine)


@pytest.fixture
def repository(session_maker):
    return JobRepository(session_maker, finalize_attempts=3, finalize_backoff_seconds=0)


@pytest.fixture
def insert_job(session_maker):
    """Insert a job row directly, bypassing the repository."""

    async def _insert(
        job_type: str,
        payload: Optional[Dict[str, Any]] = None,
        *,
        status: str = JobStatus.PENDING.value,
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None,
    ) -> Job:
        job = Job(
            user_id=TEST_USER_ID,
            job_type=job_type,
            status=status,
            payload=payload if payload is not None else {},
        )
        if created_at is not None:
            job.created_at = created_at
        if updated_at is not None:
            job.updated_at = updated_at
        async with session_scope(session_maker) as session:
            session.add(job)
        return job

    return _insert


def make_completion(text: str, total_tokens: int = 42, model: str = "gpt-5-nano") -> CompletionResult:
    return CompletionResult(text=text, model=model, total_tokens=total_tokens)


@pytest.fixture
def completion_client():
    client = AsyncMock(spec=CompletionClient)
    client.complete.return_value = make_completion("Thank you for the kind words!")
    return client


@pytest.fixture
def dispatcher(completion_client):
    return JobDispatcher(completion_client, model="gpt-5-nano")
