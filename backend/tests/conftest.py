"""Shared pytest fixtures for the Stepflow test suite.

Provides:
- Temp-file async SQLite database per test (no PostgreSQL or Redis needed)
- AsyncSession factory
- FastAPI test client (httpx.AsyncClient) with a recording job queue
- Helpers to publish workflows and create pending executions
- Recording event sink and job queue fakes
"""

import os
from typing import Any, AsyncGenerator, Optional

import pytest
import pytest_asyncio
from cryptography.fernet import Fernet
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

# Override settings BEFORE any app imports
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("ENCRYPTION_KEY", Fernet.generate_key().decode())
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_FORMAT", "text")

from db.base import Base  # noqa: E402
from db.database import create_db_engine, create_session_factory  # noqa: E402


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class RecordingEventSink:
    """EventSink that keeps every emitted event in memory."""

    def __init__(self):
        self.events: list[tuple[str, str, dict]] = []

    async def emit(self, execution_id: str, event: str, payload: dict[str, Any]) -> None:
        self.events.append((execution_id, event, payload))

    def names(self, execution_id: Optional[str] = None) -> list[str]:
        return [e for ex, e, _ in self.events if execution_id is None or ex == execution_id]


class RecordingQueue:
    """JobQueue that records jobs instead of sending them to Celery."""

    def __init__(self):
        self.dispatches: list[dict] = []
        self.executions: list[str] = []

    def enqueue_dispatch(self, workflow_id, trigger_id=None, input=None, metadata=None) -> str:
        self.dispatches.append({
            "workflow_id": workflow_id,
            "trigger_id": trigger_id,
            "input": input,
            "metadata": metadata,
        })
        return f"dispatch-{len(self.dispatches)}"

    def enqueue_execution(self, execution_id: str) -> str:
        self.executions.append(execution_id)
        return f"execute-{len(self.executions)}"


async def no_sleep(seconds: float) -> None:
    """Instant replacement for asyncio.sleep in retry loops."""
    return None


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """A fresh SQLite file per test, shared by every session the test opens."""
    engine = create_db_engine(f"sqlite+aiosqlite:///{tmp_path / 'stepflow-test.db'}")
    # Import all models so Base.metadata knows about them
    import db.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Provide a DB session; tests commit explicitly when other sessions must see the data."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def event_sink() -> RecordingEventSink:
    return RecordingEventSink()


@pytest.fixture
def job_queue() -> RecordingQueue:
    return RecordingQueue()


# ---------------------------------------------------------------------------
# App / HTTP client fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def app(session_factory, job_queue):
    """FastAPI app wired to the test database and the recording queue."""
    from app.dependencies import get_db, get_queue
    from app.main import create_app

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    test_app = create_app(use_lifespan=False)
    test_app.dependency_overrides[get_db] = override_get_db
    test_app.dependency_overrides[get_queue] = lambda: job_queue
    yield test_app
    test_app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test", follow_redirects=True) as ac:
        yield ac


# ---------------------------------------------------------------------------
# Test data helpers
# ---------------------------------------------------------------------------

async def publish_workflow(
    session_factory,
    steps: list[dict],
    name: str = "Test Workflow",
    settings: Optional[dict] = None,
    **workflow_fields,
):
    """Create a workflow with one published version. Returns (workflow, version)."""
    from services.workflow_service import WorkflowService

    definition: dict[str, Any] = {"steps": steps}
    if settings:
        definition["settings"] = settings

    async with session_factory() as session:
        svc = WorkflowService(session)
        workflow = await svc.create_workflow(name=name, **workflow_fields)
        version = await svc.create_version(workflow.id, definition)
        version = await svc.publish_version(workflow.id, version.id)
        await session.commit()
        return workflow, version


async def create_pending_execution(session_factory, workflow, version, input=None, metadata=None) -> str:
    from services.execution_service import ExecutionService

    async with session_factory() as session:
        execution = await ExecutionService(session).create_execution(
            workflow_id=workflow.id,
            workflow_version_id=version.id,
            input=input,
            metadata=metadata,
        )
        await session.commit()
        return execution.id


@pytest.fixture
def make_workflow(session_factory):
    async def _make(steps: list[dict], **kwargs):
        return await publish_workflow(session_factory, steps, **kwargs)
    return _make


@pytest.fixture
def make_execution(session_factory):
    async def _make(workflow, version, input=None, metadata=None) -> str:
        return await create_pending_execution(session_factory, workflow, version, input, metadata)
    return _make


@pytest.fixture
def make_engine(session_factory, event_sink):
    """Build a WorkflowEngine over the test database.

    ``handler`` becomes an httpx.MockTransport for every outbound HTTP
    call; ``runners`` replaces the full runner registry.
    """
    import httpx

    from connectors.registry import build_connector_registry
    from runners.registry import build_runner_registry
    from services.credential_service import DatabaseCredentialStore
    from workflow.engine import WorkflowEngine

    def _make(handler=None, runners=None):
        if runners is None:
            transport = httpx.MockTransport(handler) if handler else None
            credentials = DatabaseCredentialStore(session_factory)
            runners = build_runner_registry(
                connectors=build_connector_registry(credentials, transport),
                credentials=credentials,
                http_transport=transport,
            )
        return WorkflowEngine(session_factory, runners, event_sink=event_sink, sleep=no_sleep)
    return _make
