"""Workflow Execution Engine.

Runs one execution of a published workflow version. Steps run strictly
sequentially in ``position`` order; each step's output is bound into
``variables`` under the step name and is visible to every later step.

Lifecycle of an execution:

    pending ──claim──▶ running ──▶ completed
                          │
                          ├──────▶ failed     (step failed after retries,
                          │                    no steps, configuration error)
                          └──────▶ cancelled  (set externally, honoured at
                                               the next step boundary)

``execute()`` only runs executions it can claim (pending → running in
one conditional UPDATE). Calling it again for an execution that is
running or terminal is a logged no-op, so a redelivered queue job is
harmless. Terminal writes are conditional too: a cancellation that
lands while a step is in flight is never overwritten.

Branching metadata (``next_steps``, ``error_handler``, conditional and
loop outputs) is recorded but does not change the walk order.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.constants import ExecutionEvent, ExecutionStatus, LogLevel, StepStatus
from core.exceptions import EngineException, ExecutionAbortedError, NotFoundError, StepConfigurationError
from core.logging_config import bind_execution_context, clear_execution_context
from db.base import utcnow
from db.models.execution import Execution
from runners.base_runner import StepResult
from runners.registry import RunnerRegistry
from services.execution_service import ExecutionService
from services.workflow_service import WorkflowService, parse_definition
from workflow.context import ExecutionContext
from workflow.events import EventSink, build_event_payload
from workflow.retry_strategies import RetryStrategy, execute_with_retry

logger = structlog.get_logger(__name__)


# ─── Planned Steps ────────────────────────────────────────────

@dataclass
class PlannedStep:
    """One step as the engine walks it, from a step row or the raw definition."""
    key: str
    name: str
    step_type: str
    position: int
    config: dict[str, Any] = field(default_factory=dict)
    row_id: Optional[str] = None


class _RunState:
    """Per-run collaborators shared by the step loop."""

    def __init__(self, session: AsyncSession, execution: Execution, started: float):
        self.session = session
        self.executions = ExecutionService(session)
        self.workflows = WorkflowService(session)
        self.execution = execution
        # plain copy: ORM attributes are expired after a rollback
        self.execution_id: str = execution.id
        self.started = started

    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started) * 1000)


# ─── Workflow Engine ───────────────────────────────────────────

class WorkflowEngine:
    """Main workflow execution engine.

    Collaborators are injected: a session factory for persistence, the
    runner registry (dispatch table by step type) and an event sink for
    lifecycle broadcasts.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        runners: RunnerRegistry,
        event_sink: Optional[EventSink] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._session_factory = session_factory
        self._runners = runners
        self._event_sink = event_sink
        self._sleep = sleep

    async def execute(self, execution_id: str) -> Optional[ExecutionContext]:
        """Run a pending execution to a terminal state.

        Returns:
            The final ExecutionContext, or None if the execution was not
            pending (already running, finished or cancelled).

        Raises:
            NotFoundError: If the execution does not exist
        """
        started = time.monotonic()

        async with self._session_factory() as session:
            executions = ExecutionService(session)
            execution = await executions.get_by_id(execution_id)
            if execution is None:
                raise NotFoundError(f"Execution {execution_id} not found")

            if not await executions.claim_execution(execution_id):
                await session.rollback()
                logger.warning(
                    "Execution is not pending, skipping",
                    execution_id=execution_id,
                    status=execution.status,
                )
                return None
            await session.commit()
            await session.refresh(execution)

            bind_execution_context(execution_id, execution.workflow_id)
            try:
                return await self._run(_RunState(session, execution, started))
            finally:
                clear_execution_context()

    # ─── Run ──────────────────────────────────────────────────

    async def _run(self, state: _RunState) -> ExecutionContext:
        execution = state.execution
        context = ExecutionContext(
            execution_id=execution.id,
            workflow_id=execution.workflow_id,
            version_id=execution.workflow_version_id,
            input=execution.input if execution.input is not None else {},
            metadata=dict(execution.trigger_metadata or {}),
        )

        try:
            await self._log(state, LogLevel.INFO, "Workflow execution started")
            await state.session.commit()
            logger.info("Workflow execution started", version_id=execution.workflow_version_id)
            await self._emit(execution.id, ExecutionEvent.STARTED, {"workflow_id": execution.workflow_id})

            workflow = await state.workflows.get_by_id(execution.workflow_id, include_deleted=True)
            version = await state.workflows.get_version(execution.workflow_version_id)
            context.user_id = workflow.owner_id if workflow else None

            plan = await self._plan(state, version)
            if not plan:
                raise ExecutionAbortedError("No steps defined in workflow")

            definition = parse_definition(version.definition)
            strategy = RetryStrategy.from_workflow(workflow, definition.settings.retry_policy)

            for step in plan:
                if await state.executions.get_status(execution.id) == ExecutionStatus.CANCELLED.value:
                    await self._log(state, LogLevel.WARNING, f"Execution cancelled before step: {step.name}")
                    await state.session.commit()
                    logger.info("Execution cancelled, stopping", next_step=step.name)
                    return context
                await self._run_step(state, step, context, strategy)

            output = dict(context.variables)
            duration_ms = state.elapsed_ms()
            finalized = await state.executions.finalize_execution(
                execution.id,
                ExecutionStatus.COMPLETED,
                duration_ms=duration_ms,
                output=output,
            )
            if not finalized:
                await state.session.commit()
                logger.info("Execution finished after cancellation; keeping cancelled status")
                return context

            await self._log(state, LogLevel.INFO, f"Workflow execution completed in {duration_ms}ms")
            await state.session.commit()
            logger.info("Workflow execution completed", duration_ms=duration_ms, steps=len(plan))
            await self._emit(execution.id, ExecutionEvent.COMPLETED, {"output": output, "duration": duration_ms})

        except Exception as e:
            await self._fail(state, e)

        return context

    async def _plan(self, state: _RunState, version) -> list[PlannedStep]:
        """Steps of the bound version in position order.

        Published versions have step rows; an unpublished version run
        directly falls back to its stored definition.
        """
        rows = await state.workflows.get_steps(version.id)
        if rows:
            return [
                PlannedStep(
                    key=row.step_key,
                    name=row.name,
                    step_type=row.step_type,
                    position=row.position,
                    config=row.config or {},
                    row_id=row.id,
                )
                for row in rows
            ]

        definition = parse_definition(version.definition)
        return [
            PlannedStep(
                key=step.id,
                name=step.name,
                step_type=step.type.value,
                position=step.position,
                config=step.config,
            )
            for step in definition.ordered_steps()
        ]

    # ─── Step ─────────────────────────────────────────────────

    async def _run_step(
        self,
        state: _RunState,
        step: PlannedStep,
        context: ExecutionContext,
        strategy: RetryStrategy,
    ) -> None:
        execution_id = state.execution_id
        step_started = time.monotonic()
        log = logger.bind(step=step.name, step_type=step.step_type)

        await self._log(state, LogLevel.INFO, f"Executing step: {step.name} ({step.step_type})", {"step_id": step.key})
        record = await state.executions.create_execution_step(
            execution_id,
            step_key=step.key,
            step_name=step.name,
            step_type=step.step_type,
            position=step.position,
            step_id=step.row_id,
            input=dict(context.variables),
        )
        await state.executions.update_execution_step(record.id, status=StepStatus.RUNNING.value, started_at=utcnow())
        await state.session.commit()
        log.info("Step started")
        await self._emit(execution_id, ExecutionEvent.STEP_STARTED, {"step_id": step.key, "step_name": step.name})

        runner = self._runners.get(step.step_type)
        if runner is None:
            error = f"Unknown step type: {step.step_type}"
            await self._finish_step(state, record.id, step, step_started, error=error)
            raise StepConfigurationError(error)

        async def on_retry(attempt: int, max_attempts: int, delay_ms: float, previous: Optional[StepResult]) -> None:
            await state.executions.increment_retry_count(execution_id, record.id)
            await self._log(
                state,
                LogLevel.INFO,
                f"Retrying step {step.name} (attempt {attempt}/{max_attempts})",
                {"step_id": step.key, "delay_ms": delay_ms, "error": previous.error if previous else None},
            )
            await state.session.commit()
            log.info("Retrying step", attempt=attempt, max_attempts=max_attempts, delay_ms=delay_ms)

        result = await execute_with_retry(
            runner,
            step.config,
            context,
            strategy,
            on_retry=on_retry,
            sleep=self._sleep,
        )

        if result.success:
            context.variables[step.name] = result.output
            await self._finish_step(state, record.id, step, step_started, output=result.output)
            return

        await self._finish_step(state, record.id, step, step_started, error=result.error)
        raise ExecutionAbortedError(f"Step {step.name} failed: {result.error}")

    async def _finish_step(
        self,
        state: _RunState,
        record_id: str,
        step: PlannedStep,
        step_started: float,
        output: Any = None,
        error: Optional[str] = None,
    ) -> None:
        """Persist, log and broadcast the outcome of one step."""
        duration_ms = int((time.monotonic() - step_started) * 1000)
        failed = error is not None

        await state.executions.update_execution_step(
            record_id,
            status=(StepStatus.FAILED if failed else StepStatus.COMPLETED).value,
            output=None if failed else output,
            error_message=error,
            completed_at=utcnow(),
            duration_ms=duration_ms,
        )

        if failed:
            await self._log(
                state,
                LogLevel.ERROR,
                f"Step failed: {step.name} - {error}",
                {"step_id": step.key, "duration_ms": duration_ms},
            )
            await state.session.commit()
            logger.error("Step failed", step=step.name, error=error, duration_ms=duration_ms)
            await self._emit(
                state.execution_id,
                ExecutionEvent.STEP_FAILED,
                {"step_id": step.key, "step_name": step.name, "error": error},
            )
            return

        await self._log(
            state,
            LogLevel.INFO,
            f"Step completed: {step.name}",
            {"step_id": step.key, "duration_ms": duration_ms},
        )
        await state.session.commit()
        logger.info("Step completed", step=step.name, duration_ms=duration_ms)
        await self._emit(
            state.execution_id,
            ExecutionEvent.STEP_COMPLETED,
            {"step_id": step.key, "step_name": step.name, "output": output},
        )

    # ─── Failure ──────────────────────────────────────────────

    async def _fail(self, state: _RunState, exc: Exception) -> None:
        """Mark the execution failed.

        A failure that cannot be persisted is re-raised so the worker can
        record it through a fresh connection.
        """
        message = exc.message if isinstance(exc, EngineException) else (str(exc) or exc.__class__.__name__)
        duration_ms = state.elapsed_ms()

        try:
            await state.session.rollback()
            finalized = await state.executions.finalize_execution(
                state.execution_id,
                ExecutionStatus.FAILED,
                duration_ms=duration_ms,
                error=message,
            )
            if finalized:
                await self._log(state, LogLevel.ERROR, f"Workflow execution failed: {message}")
            await state.session.commit()
        except Exception as persist_error:
            logger.error("Could not persist execution failure", error=str(persist_error))
            raise

        if not isinstance(exc, EngineException):
            logger.error("Workflow execution failed", error=message, duration_ms=duration_ms, exc_info=exc)
        else:
            logger.error("Workflow execution failed", error=message, duration_ms=duration_ms)

        if finalized:
            await self._emit(state.execution_id, ExecutionEvent.FAILED, {"error": message, "duration": duration_ms})

    # ─── Helpers ──────────────────────────────────────────────

    async def _log(self, state: _RunState, level: LogLevel, message: str, context: Optional[dict] = None) -> None:
        await state.executions.add_log(state.execution_id, level, message, context)

    async def _emit(self, execution_id: str, event: ExecutionEvent, payload: dict[str, Any]) -> None:
        if self._event_sink is None:
            return
        try:
            await self._event_sink.emit(execution_id, event.value, build_event_payload(execution_id, payload))
        except Exception as e:
            logger.warning("Event emit failed", event=event.value, error=str(e))
