"""Step retry strategies.

Every step invocation runs under a RetryStrategy sourced from the
owning workflow (``retry_max_attempts`` / ``retry_backoff_ms``) and
optionally refined by the definition's ``settings.retry_policy``.

With the default exponential policy, attempt ``i`` (0-based) waits
``backoff_ms * 2 ** (i - 1)`` before running, so the first attempt
never waits:

    attempt 0: no delay
    attempt 1: backoff_ms
    attempt 2: backoff_ms * 2

Usage:
    strategy = RetryStrategy.from_workflow(workflow, definition.settings.retry_policy)
    result = await execute_with_retry(runner, step.config, context, strategy)
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

import structlog

from runners.base_runner import StepResult
from workflow.context import ExecutionContext

logger = structlog.get_logger(__name__)

OnRetry = Callable[[int, int, float, StepResult], Awaitable[None]]


class RetryPolicy(str, Enum):
    """Available backoff policies."""
    FIXED = "fixed"
    EXPONENTIAL = "exponential"
    LINEAR = "linear"
    NONE = "none"


@dataclass
class RetryStrategy:
    """Bounded retry strategy for one step invocation."""
    max_attempts: int = 3
    backoff_ms: float = 1000
    policy: RetryPolicy = RetryPolicy.EXPONENTIAL
    backoff_multiplier: float = 2.0
    max_backoff_ms: Optional[float] = None

    def __post_init__(self):
        if self.policy == RetryPolicy.NONE:
            self.max_attempts = 1
        self.max_attempts = max(1, int(self.max_attempts))

    @classmethod
    def none(cls) -> "RetryStrategy":
        """Single attempt, no retries."""
        return cls(max_attempts=1, policy=RetryPolicy.NONE)

    @classmethod
    def from_dict(cls, config: dict, defaults: Optional["RetryStrategy"] = None) -> "RetryStrategy":
        """Create a strategy from a settings dict; missing keys fall back to ``defaults``."""
        base = defaults or cls()
        max_attempts = config.get("max_attempts", config.get("maxAttempts"))
        backoff_ms = config.get("backoff_ms", config.get("backoffMs"))
        return cls(
            max_attempts=max_attempts if max_attempts is not None else base.max_attempts,
            backoff_ms=backoff_ms if backoff_ms is not None else base.backoff_ms,
            policy=RetryPolicy(config.get("policy", base.policy.value)),
            backoff_multiplier=config.get(
                "backoff_multiplier", config.get("backoffMultiplier", base.backoff_multiplier)
            ),
            max_backoff_ms=config.get(
                "max_backoff_ms", config.get("maxBackoffMs", base.max_backoff_ms)
            ),
        )

    @classmethod
    def from_workflow(cls, workflow: Any, settings: Any = None) -> "RetryStrategy":
        """Strategy for a workflow row, refined by the definition's retry settings.

        Zero or missing workflow values fall back to 3 attempts / 1000ms.
        """
        strategy = cls(
            max_attempts=getattr(workflow, "retry_max_attempts", None) or 3,
            backoff_ms=getattr(workflow, "retry_backoff_ms", None) or 1000,
        )
        if settings is None:
            return strategy
        if hasattr(settings, "model_dump"):
            settings = settings.model_dump(exclude_none=True)
        return cls.from_dict(settings, defaults=strategy)

    def to_dict(self) -> dict:
        """Serialize to dict for storage in a workflow definition."""
        return {
            "policy": self.policy.value,
            "max_attempts": self.max_attempts,
            "backoff_ms": self.backoff_ms,
            "backoff_multiplier": self.backoff_multiplier,
            "max_backoff_ms": self.max_backoff_ms,
        }

    def compute_delay_ms(self, attempt_index: int) -> float:
        """Delay before the attempt with this 0-based index."""
        if attempt_index <= 0 or self.policy == RetryPolicy.NONE:
            return 0.0

        if self.policy == RetryPolicy.FIXED:
            delay = self.backoff_ms
        elif self.policy == RetryPolicy.LINEAR:
            delay = self.backoff_ms * attempt_index
        else:
            delay = self.backoff_ms * (self.backoff_multiplier ** (attempt_index - 1))

        if self.max_backoff_ms is not None:
            delay = min(delay, self.max_backoff_ms)
        return float(delay)

    def delays_ms(self) -> list[float]:
        """Precomputed delays for every attempt, first attempt included."""
        return [self.compute_delay_ms(i) for i in range(self.max_attempts)]


async def execute_with_retry(
    runner: Any,
    config: dict,
    context: ExecutionContext,
    strategy: RetryStrategy,
    on_retry: Optional[OnRetry] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> StepResult:
    """Run ``runner.run(config, context)`` under ``strategy``.

    Returns the first successful result, or the result of the last
    attempt. A result flagged non-retryable is returned immediately.
    An exception raised on the last attempt is converted into a failed
    StepResult; on earlier attempts it is retried like a failure.

    Args:
        on_retry: Awaited before each retry as
            ``on_retry(attempt_number, max_attempts, delay_ms, previous_result)``
            with a 1-based attempt number.
        sleep: Injected for tests.
    """
    result: Optional[StepResult] = None

    for attempt in range(strategy.max_attempts):
        if attempt > 0:
            delay_ms = strategy.compute_delay_ms(attempt)
            if on_retry is not None:
                await on_retry(attempt + 1, strategy.max_attempts, delay_ms, result)
            if delay_ms > 0:
                await sleep(delay_ms / 1000)

        try:
            result = await runner.run(config, context)
        except Exception as e:
            logger.warning(
                "Step runner raised during attempt",
                attempt=attempt + 1,
                max_attempts=strategy.max_attempts,
                error=str(e),
            )
            result = StepResult.fail(str(e) or e.__class__.__name__)

        if result.success or not result.retryable:
            return result

    return result
