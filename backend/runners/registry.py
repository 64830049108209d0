"""
Runner registry: the dispatch table from StepType to runner instance.

Built once per worker by ``build_runner_registry`` with its
collaborators (settings, connector registry, credential store) and
passed into the WorkflowEngine.
"""

from typing import Dict, Optional, Union

import httpx

from app.config import Settings, get_settings
from connectors.base import CredentialStore
from connectors.registry import ConnectorRegistry, build_connector_registry
from core.constants import StepType
from runners.base_runner import BaseStepRunner
from runners.implementations.connector_runner import ConnectorRunner
from runners.implementations.custom_code_runner import CustomCodeRunner
from runners.implementations.flow_runners import ConditionalRunner, DelayRunner, LoopRunner
from runners.implementations.http_runner import HttpRequestRunner
from runners.implementations.transform_runner import TransformRunner


class RunnerRegistry:
    """Central registry for all step runner implementations."""

    def __init__(self):
        self._runners: Dict[StepType, BaseStepRunner] = {}

    def register(self, step_type: StepType, runner: BaseStepRunner) -> None:
        self._runners[StepType(step_type)] = runner

    def get(self, step_type: Union[StepType, str]) -> Optional[BaseStepRunner]:
        """Runner for ``step_type``, or None for unknown types."""
        try:
            return self._runners.get(StepType(step_type))
        except ValueError:
            return None


def build_runner_registry(
    settings: Optional[Settings] = None,
    connectors: Optional[ConnectorRegistry] = None,
    credentials: Optional[CredentialStore] = None,
    http_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> RunnerRegistry:
    """Create the registry with every built-in runner."""
    settings = settings or get_settings()
    if connectors is None:
        connectors = build_connector_registry(credentials, http_transport)

    registry = RunnerRegistry()
    registry.register(
        StepType.HTTP_REQUEST,
        HttpRequestRunner(
            credentials=credentials,
            transport=http_transport,
            default_timeout_ms=settings.HTTP_DEFAULT_TIMEOUT_MS,
            allow_private_networks=settings.HTTP_ALLOW_PRIVATE_NETWORKS,
        ),
    )
    for step_type in (StepType.TRANSFORM, StepType.ERROR_HANDLER, StepType.FALLBACK):
        registry.register(step_type, TransformRunner(settings.TRANSFORM_TIMEOUT_MS, step_type=step_type))
    registry.register(StepType.CONDITIONAL, ConditionalRunner())
    registry.register(StepType.LOOP, LoopRunner())
    registry.register(StepType.DELAY, DelayRunner())
    registry.register(
        StepType.CUSTOM_CODE,
        CustomCodeRunner(settings.CUSTOM_CODE_TIMEOUT_MS, node_binary=settings.NODE_BINARY),
    )
    registry.register(StepType.CONNECTOR, ConnectorRunner(connectors))
    return registry
