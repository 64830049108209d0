"""Connector dispatch step.

Config names the connector and action; every other key is passed to
the action after interpolation:

    {"connector_type": "slack", "action": "send_message",
     "credential_id": "...", "channel": "#ops", "text": "Done: {{input.id}}"}
"""

from typing import Any

import structlog

from connectors.registry import ConnectorRegistry
from core.constants import StepType
from runners.base_runner import BaseStepRunner, StepResult
from runners.configs import ConnectorStepConfig
from workflow.context import ExecutionContext

logger = structlog.get_logger(__name__)


class ConnectorRunner(BaseStepRunner):
    step_type = StepType.CONNECTOR
    display_name = "Connector"
    description = "Call an action on an external service connector"
    config_model = ConnectorStepConfig
    interpolate_config = True

    def __init__(self, connectors: ConnectorRegistry):
        self._connectors = connectors

    async def execute(self, config: ConnectorStepConfig, context: ExecutionContext) -> StepResult:
        connector = self._connectors.get(config.connector_type)
        if connector is None:
            return StepResult.fail(f"Connector type '{config.connector_type}' not found", retryable=False)

        action_config: dict[str, Any] = {**config.action_args, "credential_id": config.credential_id}
        logger.debug(
            "Dispatching connector action",
            connector=config.connector_type,
            action=config.action,
            execution_id=context.execution_id,
        )
        return await connector.execute(config.action, action_config, context)
