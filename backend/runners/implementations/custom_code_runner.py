"""Custom code step (Python or JavaScript).

Python code runs as a script in a child interpreter with ``input_data``,
``variables``, ``metadata`` and ``context`` defined. Whatever it prints
is the result; a top-level ``result`` variable is printed as JSON after
the script finishes.

JavaScript code is the body of an async function run in a node ``vm``
context with ``input``, ``variables``, ``metadata`` and ``console``
bound; its return value is the result.
"""

import json
from typing import Any

from core.constants import CodeLanguage, StepType
from runners.base_runner import BaseStepRunner, StepResult
from runners.configs import CustomCodeConfig
from workflow import sandbox
from workflow.context import ExecutionContext


def parse_script_output(stdout: str) -> Any:
    """JSON-decode printed output, falling back to the last line, then raw text."""
    text = stdout.strip()
    if not text:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass
    try:
        return json.loads(text.splitlines()[-1])
    except json.JSONDecodeError:
        return text


class CustomCodeRunner(BaseStepRunner):
    step_type = StepType.CUSTOM_CODE
    display_name = "Custom Code"
    description = "Run a Python or JavaScript snippet in an isolated process"
    config_model = CustomCodeConfig

    def __init__(self, timeout_ms: int = 10000, node_binary: str = "node"):
        self._timeout_ms = timeout_ms
        self._node_binary = node_binary

    async def execute(self, config: CustomCodeConfig, context: ExecutionContext) -> StepResult:
        language = config.language.lower()
        timeout_ms = config.timeout or self._timeout_ms

        if language == CodeLanguage.PYTHON.value:
            return await self._run_python(config.code, context, timeout_ms)
        if language == CodeLanguage.JAVASCRIPT.value:
            return await self._run_javascript(config.code, context, timeout_ms)
        return StepResult.fail(f"Unsupported language: {config.language}", retryable=False)

    async def _run_python(self, code: str, context: ExecutionContext, timeout_ms: int) -> StepResult:
        bindings = {
            "input_data": context.input,
            "variables": context.variables,
            "metadata": context.metadata,
            "context": context.template_context(),
        }
        outcome = await sandbox.run_python(code, bindings, timeout_ms=timeout_ms, mode="script")

        if outcome.timed_out:
            return StepResult.fail("Python execution timeout", metadata={"timeout_ms": timeout_ms})
        if not outcome.ok:
            return StepResult.fail(
                f"Python execution failed: {outcome.error}",
                metadata={"exit_code": outcome.exit_code},
            )
        return StepResult.ok(parse_script_output(outcome.stdout))

    async def _run_javascript(self, code: str, context: ExecutionContext, timeout_ms: int) -> StepResult:
        bindings = {
            "input": context.input,
            "variables": context.variables,
            "metadata": context.metadata,
        }
        outcome = await sandbox.run_javascript(
            code,
            bindings,
            timeout_ms=timeout_ms,
            node_binary=self._node_binary,
        )
        if not outcome.ok:
            return StepResult.fail(
                f"JavaScript execution failed: {outcome.error}",
                metadata={"timed_out": outcome.timed_out, "logs": outcome.logs},
            )
        return StepResult.ok(outcome.value, metadata={"logs": outcome.logs})
