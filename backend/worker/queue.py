"""Queue contract between triggers, dispatch and execution.

    enqueue_dispatch(workflow_id, trigger_id=None, input=None, metadata=None)
    enqueue_execution(execution_id)

Both are at-least-once: the execution job is safe to redeliver because
the engine only runs executions it can claim.
"""

from typing import Any, Optional, Protocol


class JobQueue(Protocol):
    def enqueue_dispatch(
        self,
        workflow_id: str,
        trigger_id: Optional[str] = None,
        input: Any = None,
        metadata: Optional[dict] = None,
    ) -> str:
        ...

    def enqueue_execution(self, execution_id: str) -> str:
        ...


class CeleryJobQueue:
    """JobQueue backed by the Celery tasks; returns task ids."""

    def enqueue_dispatch(
        self,
        workflow_id: str,
        trigger_id: Optional[str] = None,
        input: Any = None,
        metadata: Optional[dict] = None,
    ) -> str:
        from worker.tasks.dispatch import dispatch_workflow

        result = dispatch_workflow.delay(
            workflow_id=workflow_id,
            trigger_id=trigger_id,
            input=input if input is not None else {},
            metadata=metadata or {},
        )
        return result.id

    def enqueue_execution(self, execution_id: str) -> str:
        from worker.tasks.workflow import execute_workflow

        return execute_workflow.delay(execution_id=execution_id).id


def get_job_queue() -> JobQueue:
    return CeleryJobQueue()


def enqueue_dispatch(
    workflow_id: str,
    trigger_id: Optional[str] = None,
    input: Any = None,
    metadata: Optional[dict] = None,
) -> str:
    return get_job_queue().enqueue_dispatch(workflow_id, trigger_id, input, metadata)


def enqueue_execution(execution_id: str) -> str:
    return get_job_queue().enqueue_execution(execution_id)
