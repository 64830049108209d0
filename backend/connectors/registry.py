"""
Connector registry.

Built once at startup by ``build_connector_registry`` and injected into
the connector step runner. There is no module-level instance.
"""

from typing import Optional

import httpx
import structlog

from connectors.base import BaseConnector, CredentialStore
from connectors.discord import DiscordConnector
from connectors.http import HttpConnector
from connectors.slack import SlackConnector
from connectors.smtp import SmtpConnector
from connectors.stripe import StripeConnector

logger = structlog.get_logger(__name__)


class ConnectorRegistry:
    """Maps connector type names to connector instances."""

    def __init__(self):
        self._connectors: dict[str, BaseConnector] = {}

    def register(self, connector: BaseConnector) -> None:
        if connector.connector_type in self._connectors:
            logger.warning("Overwriting connector", connector_type=connector.connector_type)
        self._connectors[connector.connector_type] = connector

    def get(self, connector_type: str) -> Optional[BaseConnector]:
        return self._connectors.get(connector_type)

    def has(self, connector_type: str) -> bool:
        return connector_type in self._connectors

    def list_connectors(self) -> list[dict]:
        return [connector.describe() for connector in self._connectors.values()]

    def __len__(self) -> int:
        return len(self._connectors)


def build_connector_registry(
    credentials: Optional[CredentialStore] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ConnectorRegistry:
    """Create a registry holding every built-in connector."""
    registry = ConnectorRegistry()
    registry.register(SlackConnector(credentials, transport))
    registry.register(DiscordConnector(credentials, transport))
    registry.register(StripeConnector(credentials, transport))
    registry.register(HttpConnector(credentials, transport))
    registry.register(SmtpConnector(credentials))
    logger.debug("Connector registry built", connectors=len(registry))
    return registry
