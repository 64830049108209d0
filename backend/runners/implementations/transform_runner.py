"""Transform step: user Python code reshaping data between steps.

The code is the body of a function, so it ends with ``return``:

    doubled = input.value * 2
    return {"result": doubled}

Bound names: ``input`` (the interpolated ``input_mapping``, or every
accumulated variable), ``variables``, ``metadata``, ``context`` and a
``console`` whose ``log`` lines are returned as step metadata.
Dict values support attribute access.

``error_handler`` and ``fallback`` steps run the same way.
"""

from typing import Any

import structlog

from core.constants import StepType
from runners.base_runner import BaseStepRunner, StepResult
from runners.configs import TransformConfig
from workflow import sandbox
from workflow.context import ExecutionContext
from workflow.interpolation import interpolate

logger = structlog.get_logger(__name__)


class TransformRunner(BaseStepRunner):
    step_type = StepType.TRANSFORM
    display_name = "Transform"
    description = "Transform data with a Python snippet"
    config_model = TransformConfig

    def __init__(self, timeout_ms: int = 5000, step_type: StepType = StepType.TRANSFORM):
        self._timeout_ms = timeout_ms
        self.step_type = step_type

    async def execute(self, config: TransformConfig, context: ExecutionContext) -> StepResult:
        scope = context.template_context()
        if config.input_mapping is not None:
            step_input = interpolate(config.input_mapping, scope)
        else:
            step_input = dict(context.variables)

        bindings: dict[str, Any] = {
            "input": step_input,
            "variables": context.variables,
            "metadata": context.metadata,
            "context": {
                "execution_id": context.execution_id,
                "workflow_id": context.workflow_id,
                "metadata": context.metadata,
            },
        }

        outcome = await sandbox.run_python(
            config.code,
            bindings,
            timeout_ms=config.timeout or self._timeout_ms,
            mode="function",
        )
        if not outcome.ok:
            return StepResult.fail(
                f"Transform execution failed: {outcome.error}",
                metadata={"logs": outcome.logs, "timed_out": outcome.timed_out},
            )

        result = outcome.value
        if config.output_mapping is not None:
            result = interpolate(config.output_mapping, {"result": result, "input": step_input})

        return StepResult.ok(result, metadata={"logs": outcome.logs})
