"""Execution service: execution records, step records and the log stream.

Status transitions that may race (claiming a pending run, finalizing,
cancelling) are single conditional UPDATE statements, so a run that
was cancelled in the meantime is never overwritten.
"""

from datetime import datetime
from typing import Any, Optional, Sequence

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.constants import TERMINAL_STATUSES, ExecutionStatus, LogLevel, StepStatus, TriggerType
from core.exceptions import ConflictError, NotFoundError
from db.base import utcnow
from db.models.execution import Execution, ExecutionStep
from db.models.execution_log import ExecutionLog
from services.base import BaseService

logger = structlog.get_logger(__name__)

_TERMINAL_VALUES = [status.value for status in TERMINAL_STATUSES]


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class ExecutionService(BaseService[Execution]):
    """Service for execution state, owned by the engine during a run."""

    def __init__(self, db: AsyncSession):
        super().__init__(Execution, db)

    # ─── Executions ────────────────────────────────────────

    async def create_execution(
        self,
        workflow_id: str,
        workflow_version_id: str,
        input: Any = None,
        trigger_id: Optional[str] = None,
        trigger_type: str = TriggerType.MANUAL.value,
        metadata: Optional[dict] = None,
    ) -> Execution:
        """Create a pending execution bound to a version."""
        return await self.create({
            "workflow_id": workflow_id,
            "workflow_version_id": workflow_version_id,
            "trigger_id": trigger_id,
            "trigger_type": trigger_type,
            "status": ExecutionStatus.PENDING.value,
            "input": input if input is not None else {},
            "trigger_metadata": metadata or {},
        })

    async def get_execution(self, execution_id: str) -> Execution:
        execution = await self.get_by_id(execution_id)
        if not execution:
            raise NotFoundError(f"Execution {execution_id} not found")
        return execution

    async def list_executions(
        self,
        workflow_id: Optional[str] = None,
        status: Optional[str] = None,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[Sequence[Execution], int]:
        return await self.list(
            offset=offset,
            limit=limit,
            filters={"workflow_id": workflow_id, "status": status},
        )

    async def update_execution(self, execution_id: str, **fields: Any) -> Execution:
        """Write arbitrary fields; explicit None values are kept."""
        execution = await self.get_execution(execution_id)
        for key, value in fields.items():
            setattr(execution, key, value)
        await self.db.flush()
        return execution

    async def get_status(self, execution_id: str) -> Optional[str]:
        """Current status read straight from the database."""
        result = await self.db.execute(
            select(Execution.status).where(Execution.id == execution_id)
        )
        return result.scalar_one_or_none()

    async def claim_execution(self, execution_id: str) -> bool:
        """Atomically move a pending execution to running.

        Returns False when the execution is not pending, so a redelivered
        job never runs the same execution twice.
        """
        result = await self.db.execute(
            update(Execution)
            .where(
                Execution.id == execution_id,
                Execution.status == ExecutionStatus.PENDING.value,
            )
            .values(status=ExecutionStatus.RUNNING.value, started_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def finalize_execution(
        self,
        execution_id: str,
        status: ExecutionStatus,
        duration_ms: int,
        output: Any = None,
        error: Optional[str] = None,
    ) -> bool:
        """Write a terminal status unless one is already set.

        Returns False if the execution was already terminal (e.g. cancelled).
        """
        values: dict[str, Any] = {
            "status": ExecutionStatus(status).value,
            "completed_at": utcnow(),
            "duration_ms": int(duration_ms),
        }
        if output is not None:
            values["output"] = output
        if error is not None:
            values["error_message"] = error

        result = await self.db.execute(
            update(Execution)
            .where(
                Execution.id == execution_id,
                Execution.status.not_in(_TERMINAL_VALUES),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def cancel_execution(self, execution_id: str) -> Execution:
        """Cancel a pending or running execution.

        Raises:
            NotFoundError: Unknown execution
            ConflictError: Execution already finished
        """
        execution = await self.get_execution(execution_id)
        now = utcnow()
        started = execution.started_at
        duration_ms = 0
        if started is not None:
            if started.tzinfo is None:
                started = started.replace(tzinfo=now.tzinfo)
            duration_ms = int((now - started).total_seconds() * 1000)

        result = await self.db.execute(
            update(Execution)
            .where(
                Execution.id == execution_id,
                Execution.status.in_([ExecutionStatus.PENDING.value, ExecutionStatus.RUNNING.value]),
            )
            .values(
                status=ExecutionStatus.CANCELLED.value,
                completed_at=now,
                duration_ms=duration_ms,
                error_message="Execution cancelled",
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConflictError(f"Execution {execution_id} is already {execution.status}")

        await self.add_log(execution_id, LogLevel.WARNING, "Execution cancelled")
        await self.db.refresh(execution)
        logger.info("Execution cancelled", execution_id=execution_id)
        return execution

    async def increment_retry_count(self, execution_id: str, step_record_id: Optional[str] = None) -> None:
        """Count one step retry on the execution (and on the step record)."""
        await self.db.execute(
            update(Execution)
            .where(Execution.id == execution_id)
            .values(retry_count=Execution.retry_count + 1)
            .execution_options(synchronize_session=False)
        )
        if step_record_id:
            await self.db.execute(
                update(ExecutionStep)
                .where(ExecutionStep.id == step_record_id)
                .values(retry_count=ExecutionStep.retry_count + 1)
                .execution_options(synchronize_session=False)
            )

    # ─── Steps ─────────────────────────────────────────────

    async def create_execution_step(
        self,
        execution_id: str,
        step_key: str,
        step_name: str,
        step_type: str,
        position: int = 0,
        step_id: Optional[str] = None,
        input: Any = None,
    ) -> ExecutionStep:
        step = ExecutionStep(
            execution_id=execution_id,
            step_id=step_id,
            step_key=step_key,
            step_name=step_name,
            step_type=step_type,
            position=position,
            status=StepStatus.PENDING.value,
            input=input,
        )
        self.db.add(step)
        await self.db.flush()
        return step

    async def update_execution_step(self, step_record_id: str, **fields: Any) -> ExecutionStep:
        result = await self.db.execute(
            select(ExecutionStep).where(ExecutionStep.id == step_record_id)
        )
        step = result.scalar_one_or_none()
        if not step:
            raise NotFoundError(f"Execution step {step_record_id} not found")
        for key, value in fields.items():
            setattr(step, key, value)
        await self.db.flush()
        return step

    async def get_steps(self, execution_id: str) -> Sequence[ExecutionStep]:
        result = await self.db.execute(
            select(ExecutionStep)
            .where(ExecutionStep.execution_id == execution_id)
            .order_by(ExecutionStep.position.asc(), ExecutionStep.created_at.asc())
        )
        return result.scalars().all()

    # ─── Logs ──────────────────────────────────────────────

    async def add_log(
        self,
        execution_id: str,
        level: LogLevel,
        message: str,
        context: Optional[dict] = None,
    ) -> ExecutionLog:
        entry = ExecutionLog(
            execution_id=execution_id,
            level=LogLevel(level).value,
            message=message,
            context=context,
            timestamp=utcnow(),
        )
        self.db.add(entry)
        await self.db.flush()
        return entry

    async def get_logs(self, execution_id: str) -> Sequence[ExecutionLog]:
        result = await self.db.execute(
            select(ExecutionLog)
            .where(ExecutionLog.execution_id == execution_id)
            .order_by(ExecutionLog.timestamp.asc(), ExecutionLog.created_at.asc())
        )
        return result.scalars().all()

    # ─── Public shape ──────────────────────────────────────

    async def to_public_dict(self, execution_id: str) -> dict[str, Any]:
        """Execution as returned to API callers, with steps and logs."""
        execution = await self.get_execution(execution_id)
        await self.db.refresh(execution)
        steps = await self.get_steps(execution_id)
        logs = await self.get_logs(execution_id)

        return {
            "id": execution.id,
            "workflow_id": execution.workflow_id,
            "workflow_version_id": execution.workflow_version_id,
            "trigger_id": execution.trigger_id,
            "trigger_type": execution.trigger_type,
            "status": execution.status,
            "input": execution.input,
            "output": execution.output,
            "error": execution.error_message,
            "started_at": _iso(execution.started_at),
            "completed_at": _iso(execution.completed_at),
            "duration_ms": execution.duration_ms,
            "retry_count": execution.retry_count,
            "steps": [
                {
                    "id": step.id,
                    "step_id": step.step_key,
                    "name": step.step_name,
                    "type": step.step_type,
                    "position": step.position,
                    "status": step.status,
                    "input": step.input,
                    "output": step.output,
                    "error": step.error_message,
                    "started_at": _iso(step.started_at),
                    "completed_at": _iso(step.completed_at),
                    "duration_ms": step.duration_ms,
                    "retry_count": step.retry_count,
                }
                for step in steps
            ],
            "logs": [
                {
                    "timestamp": _iso(log.timestamp),
                    "level": log.level,
                    "message": log.message,
                    "context": log.context,
                }
                for log in logs
            ],
        }
