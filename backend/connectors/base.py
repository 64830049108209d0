"""
Base connector interface for external services.

A connector wraps one third-party API (Slack, Discord, SMTP, Stripe,
generic HTTP) behind a small set of named actions. Connectors are
plain objects constructed once at startup with their collaborators
(credential store, optional HTTP transport) and handed to the
connector step runner through a ConnectorRegistry.
"""

from abc import ABC
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

import httpx
import structlog

from runners.base_runner import StepResult
from workflow.context import ExecutionContext

logger = structlog.get_logger(__name__)


class CredentialStore(Protocol):
    """Just-in-time secret retrieval; secrets are never cached by callers."""

    async def get_decrypted_data(self, credential_id: str, caller_id: Optional[str]) -> dict[str, Any]:
        ...


class ConnectorError(Exception):
    """Expected provider-side failure, reported as a failed StepResult."""


@dataclass
class ConnectorAction:
    """Describes one action a connector exposes."""
    name: str
    description: str
    input_schema: dict[str, Any] = field(default_factory=dict)
    output_schema: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
            "output_schema": self.output_schema,
        }


class BaseConnector(ABC):
    """
    Abstract base class for connectors.

    Subclasses declare ``connector_type``, ``name``, ``description`` and
    ``actions``, and implement one ``action_<name>(config, context)``
    coroutine per action.
    """

    connector_type: str = "base"
    name: str = "Base Connector"
    description: str = ""
    actions: list[ConnectorAction] = []
    default_timeout: float = 30.0

    def __init__(
        self,
        credentials: Optional[CredentialStore] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._credentials = credentials
        self._transport = transport

    # ─── Helpers ───────────────────────────────────────────────

    async def get_credentials(self, credential_id: str, context: ExecutionContext) -> dict[str, Any]:
        """Decrypt a credential for this call only."""
        if self._credentials is None:
            raise ConnectorError("No credential store configured")
        return await self._credentials.get_decrypted_data(credential_id, context.user_id)

    def http_client(self, timeout: Optional[float] = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=self._transport,
            timeout=timeout or self.default_timeout,
        )

    def action_names(self) -> list[str]:
        return [action.name for action in self.actions]

    def describe(self) -> dict[str, Any]:
        return {
            "type": self.connector_type,
            "name": self.name,
            "description": self.description,
            "actions": [action.to_dict() for action in self.actions],
        }

    # ─── Dispatch ──────────────────────────────────────────────

    async def execute(self, action: str, config: dict[str, Any], context: ExecutionContext) -> StepResult:
        """Run ``action`` with an already-interpolated config.

        Provider errors and missing credentials come back as failed
        results, never as exceptions.
        """
        handler = getattr(self, f"action_{action}", None)
        if action not in self.action_names() or handler is None:
            return StepResult.fail(f"Unknown action: {action}", retryable=False)

        try:
            return await handler(config, context)
        except ConnectorError as e:
            return StepResult.fail(str(e))
        except httpx.TimeoutException as e:
            return StepResult.fail(f"{self.name} request timed out: {e}")
        except httpx.HTTPError as e:
            return StepResult.fail(str(e) or f"{self.name} connector failed")
        except Exception as e:
            logger.error(
                "Connector action failed",
                connector=self.connector_type,
                action=action,
                error=str(e),
            )
            return StepResult.fail(str(e) or f"{self.name} connector failed")
