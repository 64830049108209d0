"""Control-flow steps: conditional, loop and delay.

Conditional and loop outputs describe which steps *would* run next;
the engine records them but still walks steps in position order.
"""

import asyncio
from typing import Any

from core.constants import StepType
from runners.base_runner import BaseStepRunner, StepResult
from runners.configs import ConditionalConfig, DelayConfig, LoopConfig
from workflow.context import ExecutionContext
from workflow.interpolation import PLACEHOLDER_PATTERN, evaluate_condition, get_value_by_path, interpolate

MAX_DELAY_MS = 300_000


class ConditionalRunner(BaseStepRunner):
    """Evaluate a boolean expression and pick a branch.

    Expression errors evaluate to false, so this step never fails on a
    bad condition.
    """

    step_type = StepType.CONDITIONAL
    display_name = "Condition"
    description = "Choose a branch from a boolean expression"
    config_model = ConditionalConfig

    async def execute(self, config: ConditionalConfig, context: ExecutionContext) -> StepResult:
        result = evaluate_condition(config.condition, context.template_context())
        return StepResult.ok(
            {
                "condition": result,
                "next_steps": config.true_steps if result else config.false_steps,
            },
            metadata={"evaluated_condition": config.condition, "result": result},
        )


class LoopRunner(BaseStepRunner):
    """Resolve a list to iterate over.

    ``items`` is either a template (``"{{variables.fetch.data.items}}"``)
    or a bare path (``"variables.fetch.data.items"``). The step does not
    run sub-steps itself.
    """

    step_type = StepType.LOOP
    display_name = "Loop"
    description = "Resolve and bound a list of items to iterate"
    config_model = LoopConfig

    def _resolve_items(self, items: Any, context: ExecutionContext) -> Any:
        scope = context.template_context()
        if isinstance(items, str) and not PLACEHOLDER_PATTERN.search(items):
            return get_value_by_path(scope, items.strip())
        return interpolate(items, scope)

    async def execute(self, config: LoopConfig, context: ExecutionContext) -> StepResult:
        items = self._resolve_items(config.items, context)
        if not isinstance(items, (list, tuple)):
            return StepResult.fail("Loop items must be an array", retryable=False)

        limit = config.max_iterations or len(items)
        bounded = list(items[:limit])

        return StepResult.ok(
            {
                "items": bounded,
                "count": len(bounded),
                "step_id": config.step_id,
                "parallel": config.parallel,
            },
            metadata={"total_items": len(items), "processed_items": len(bounded)},
        )


class DelayRunner(BaseStepRunner):
    step_type = StepType.DELAY
    display_name = "Delay"
    description = "Pause this execution for a fixed duration"
    config_model = DelayConfig

    async def execute(self, config: DelayConfig, context: ExecutionContext) -> StepResult:
        delay_ms = config.milliseconds
        if delay_ms < 0:
            return StepResult.fail("Delay duration must be non-negative", retryable=False)
        if delay_ms > MAX_DELAY_MS:
            return StepResult.fail(
                f"Delay duration must not exceed 5 minutes ({MAX_DELAY_MS}ms)",
                retryable=False,
            )

        await asyncio.sleep(delay_ms / 1000)

        if float(delay_ms).is_integer():
            delay_ms = int(delay_ms)
        return StepResult.ok({"delayed": delay_ms}, metadata={"delay_ms": delay_ms})
