"""
Base step runner interface.

Every step type (HTTP call, transform, conditional, loop, delay,
custom code, connector dispatch) has one runner that inherits from
BaseStepRunner and implements execute().
"""

import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Type

import pydantic
import structlog

from core.constants import StepType
from core.exceptions import StepConfigurationError
from runners.configs import StepConfig
from workflow.context import ExecutionContext
from workflow.interpolation import interpolate

logger = structlog.get_logger(__name__)


class StepResult:
    """Uniform result returned by every runner.

    ``output`` is meaningful when ``success`` is true, ``error`` when it
    is false. ``retryable`` is false for configuration errors, which
    would fail identically on every attempt.
    """

    def __init__(
        self,
        success: bool,
        output: Any = None,
        error: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        duration_ms: float = 0,
        retryable: bool = True,
    ):
        self.success = success
        self.output = output
        self.error = error
        self.metadata = metadata or {}
        self.duration_ms = duration_ms
        self.retryable = retryable
        self.timestamp = datetime.now(timezone.utc)

    @classmethod
    def ok(cls, output: Any = None, metadata: Optional[Dict[str, Any]] = None) -> "StepResult":
        return cls(success=True, output=output, metadata=metadata)

    @classmethod
    def fail(
        cls,
        error: str,
        metadata: Optional[Dict[str, Any]] = None,
        retryable: bool = True,
    ) -> "StepResult":
        return cls(success=False, error=error, metadata=metadata, retryable=retryable)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "output": self.output,
            "error": self.error,
            "metadata": self.metadata,
            "duration_ms": self.duration_ms,
            "timestamp": self.timestamp.isoformat(),
        }

    def __repr__(self) -> str:
        state = "ok" if self.success else f"error={self.error!r}"
        return f"StepResult({state})"


def format_validation_error(exc: pydantic.ValidationError) -> str:
    parts = []
    for err in exc.errors():
        location = ".".join(str(p) for p in err.get("loc", ())) or "config"
        parts.append(f"{location}: {err.get('msg')}")
    return "; ".join(parts)


class BaseStepRunner(ABC):
    """
    Abstract base class for all step runners.

    Subclasses set:
    - step_type, display_name, description (class attributes)
    - config_model: the pydantic model the raw config is parsed into
    - interpolate_config: interpolate the whole raw config before parsing

    and implement execute(config, context) -> StepResult. Runners must
    not mutate ``context.variables``.
    """

    step_type: StepType
    display_name: str = "Base Step"
    description: str = "Abstract base step"
    config_model: Type[StepConfig] = StepConfig
    interpolate_config: bool = False

    @abstractmethod
    async def execute(self, config: StepConfig, context: ExecutionContext) -> StepResult:
        """
        Execute the step with its parsed configuration.

        Args:
            config: Instance of ``config_model``
            context: Execution context (input, accumulated variables, metadata)

        Returns:
            StepResult with output or error
        """
        pass

    def parse_config(self, raw_config: Dict[str, Any], context: ExecutionContext) -> StepConfig:
        """Interpolate (when enabled) and validate the raw step config.

        Raises:
            StepConfigurationError: If the config does not match ``config_model``
        """
        raw = raw_config or {}
        if self.interpolate_config:
            raw = interpolate(raw, context.template_context())
        try:
            return self.config_model.model_validate(raw)
        except pydantic.ValidationError as e:
            raise StepConfigurationError(
                f"Invalid {self.step_type.value} config: {format_validation_error(e)}"
            )

    async def run(self, raw_config: Dict[str, Any], context: ExecutionContext) -> StepResult:
        """
        Run the step with timing and error handling.

        This is the entry point called by the retry policy.
        """
        start = time.monotonic()
        try:
            config = self.parse_config(raw_config, context)
        except StepConfigurationError as e:
            logger.warning("Step config rejected", step_type=self.step_type.value, error=e.message)
            return StepResult.fail(e.message, retryable=False)

        try:
            logger.debug(
                "Step runner starting",
                step_type=self.step_type.value,
                execution_id=context.execution_id,
            )
            result = await self.execute(config, context)
            result.duration_ms = (time.monotonic() - start) * 1000

            logger.debug(
                "Step runner finished",
                step_type=self.step_type.value,
                success=result.success,
                duration_ms=round(result.duration_ms, 2),
            )
            return result

        except Exception as e:
            duration_ms = (time.monotonic() - start) * 1000
            logger.error(
                "Step runner raised",
                step_type=self.step_type.value,
                error=str(e),
                duration_ms=round(duration_ms, 2),
            )
            result = StepResult.fail(str(e) or e.__class__.__name__)
            result.duration_ms = duration_ms
            return result
