"""Wires a WorkflowEngine with its collaborators for a worker process."""

from typing import Optional

import httpx
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.config import Settings, get_settings
from connectors.registry import build_connector_registry
from runners.registry import build_runner_registry
from services.credential_service import DatabaseCredentialStore
from workflow.engine import WorkflowEngine
from workflow.events import EventSink


def build_engine(
    session_factory: async_sessionmaker,
    event_sink: Optional[EventSink] = None,
    settings: Optional[Settings] = None,
    http_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> WorkflowEngine:
    """Engine with database-backed credentials and every built-in runner/connector."""
    settings = settings or get_settings()
    credentials = DatabaseCredentialStore(session_factory)
    connectors = build_connector_registry(credentials, http_transport)
    runners = build_runner_registry(
        settings,
        connectors=connectors,
        credentials=credentials,
        http_transport=http_transport,
    )
    return WorkflowEngine(session_factory, runners, event_sink=event_sink)
