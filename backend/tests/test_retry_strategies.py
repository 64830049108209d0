"""Tests for step retry strategies and the retry loop."""

from types import SimpleNamespace

import pytest

from runners.base_runner import StepResult
from workflow.context import ExecutionContext
from workflow.definition import RetrySettings
from workflow.retry_strategies import RetryPolicy, RetryStrategy, execute_with_retry


class ScriptedRunner:
    """Runner that replays a list of results (or raises exceptions) in order."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0

    async def run(self, config, context):
        outcome = self.outcomes[min(self.calls, len(self.outcomes) - 1)]
        self.calls += 1
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture
def ctx():
    return ExecutionContext(execution_id="ex-1", workflow_id="wf-1", version_id="v-1")


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def fake_sleep(sleeps):
    async def _sleep(seconds):
        sleeps.append(seconds)
    return _sleep


@pytest.mark.unit
class TestRetryStrategy:

    def test_exponential_delays(self):
        strategy = RetryStrategy(max_attempts=4, backoff_ms=1000)
        assert strategy.delays_ms() == [0.0, 1000.0, 2000.0, 4000.0]

    def test_fixed_and_linear(self):
        assert RetryStrategy(max_attempts=3, backoff_ms=500, policy=RetryPolicy.FIXED).delays_ms() == [0.0, 500.0, 500.0]
        assert RetryStrategy(max_attempts=3, backoff_ms=500, policy=RetryPolicy.LINEAR).delays_ms() == [0.0, 500.0, 1000.0]

    def test_max_backoff_caps_delay(self):
        strategy = RetryStrategy(max_attempts=5, backoff_ms=1000, max_backoff_ms=2500)
        assert strategy.compute_delay_ms(4) == 2500.0

    def test_none_policy_is_single_attempt(self):
        assert RetryStrategy.none().max_attempts == 1
        assert RetryStrategy(max_attempts=5, policy=RetryPolicy.NONE).max_attempts == 1

    def test_at_least_one_attempt(self):
        assert RetryStrategy(max_attempts=0).max_attempts == 1

    def test_from_workflow_defaults(self):
        strategy = RetryStrategy.from_workflow(SimpleNamespace(retry_max_attempts=0, retry_backoff_ms=None))
        assert strategy.max_attempts == 3
        assert strategy.backoff_ms == 1000

    def test_from_workflow_with_definition_settings(self):
        workflow = SimpleNamespace(retry_max_attempts=2, retry_backoff_ms=250)
        strategy = RetryStrategy.from_workflow(workflow, RetrySettings(max_attempts=5, policy="fixed"))
        assert strategy.max_attempts == 5
        assert strategy.backoff_ms == 250
        assert strategy.policy == RetryPolicy.FIXED

    def test_from_dict_accepts_camel_case(self):
        strategy = RetryStrategy.from_dict({"maxAttempts": 4, "backoffMs": 10})
        assert (strategy.max_attempts, strategy.backoff_ms) == (4, 10)

    def test_to_dict(self):
        assert RetryStrategy(max_attempts=2, backoff_ms=5).to_dict()["max_attempts"] == 2


@pytest.mark.unit
class TestExecuteWithRetry:

    async def test_success_first_attempt_never_sleeps(self, ctx, fake_sleep, sleeps):
        runner = ScriptedRunner(StepResult.ok({"a": 1}))
        result = await execute_with_retry(runner, {}, ctx, RetryStrategy(max_attempts=3), sleep=fake_sleep)
        assert result.success
        assert runner.calls == 1
        assert sleeps == []

    async def test_retries_until_success(self, ctx, fake_sleep, sleeps):
        runner = ScriptedRunner(StepResult.fail("flaky"), StepResult.fail("flaky"), StepResult.ok(3))
        retries = []

        async def on_retry(attempt, max_attempts, delay_ms, previous):
            retries.append((attempt, max_attempts, delay_ms, previous.error))

        result = await execute_with_retry(
            runner, {}, ctx, RetryStrategy(max_attempts=3, backoff_ms=100),
            on_retry=on_retry, sleep=fake_sleep,
        )
        assert result.success
        assert result.output == 3
        assert retries == [(2, 3, 100.0, "flaky"), (3, 3, 200.0, "flaky")]
        assert sleeps == [0.1, 0.2]

    async def test_returns_last_failure(self, ctx, fake_sleep):
        runner = ScriptedRunner(StepResult.fail("first"), StepResult.fail("second"))
        result = await execute_with_retry(runner, {}, ctx, RetryStrategy(max_attempts=2), sleep=fake_sleep)
        assert not result.success
        assert result.error == "second"
        assert runner.calls == 2

    async def test_always_failing_runner_uses_every_attempt(self, ctx, fake_sleep, sleeps):
        runner = ScriptedRunner(StepResult.fail("down"))
        result = await execute_with_retry(runner, {}, ctx, RetryStrategy(max_attempts=3), sleep=fake_sleep)
        assert not result.success
        assert result.error == "down"
        assert runner.calls == 3
        assert len(sleeps) == 2

    async def test_non_retryable_failure_stops_immediately(self, ctx, fake_sleep, sleeps):
        runner = ScriptedRunner(StepResult.fail("bad config", retryable=False))
        result = await execute_with_retry(runner, {}, ctx, RetryStrategy(max_attempts=5), sleep=fake_sleep)
        assert result.error == "bad config"
        assert runner.calls == 1
        assert sleeps == []

    async def test_exception_is_retried_then_converted(self, ctx, fake_sleep):
        runner = ScriptedRunner(RuntimeError("kaput"))
        result = await execute_with_retry(runner, {}, ctx, RetryStrategy(max_attempts=2), sleep=fake_sleep)
        assert not result.success
        assert result.error == "kaput"
        assert runner.calls == 2
