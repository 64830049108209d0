"""Celery task turning a fired trigger into a pending execution.

dispatch_workflow resolves the workflow's active version, persists a
pending Execution bound to it and enqueues execute_workflow. Failures
(no active version, database unavailable) are retried with exponential
backoff up to DISPATCH_MAX_RETRIES.
"""

import asyncio
import logging
from typing import Any, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from app.config import get_settings
from core.constants import TriggerType
from core.exceptions import NotFoundError
from services.execution_service import ExecutionService
from services.trigger_service import TriggerService
from services.workflow_service import WorkflowService
from worker.celery_app import celery_app
from worker.queue import JobQueue, get_job_queue

logger = logging.getLogger(__name__)


def _trigger_type(metadata: dict, trigger) -> str:
    if trigger is not None:
        return trigger.trigger_type
    triggered_by = metadata.get("triggered_by")
    try:
        return TriggerType(triggered_by).value
    except ValueError:
        return TriggerType.MANUAL.value


async def dispatch(
    session_factory: async_sessionmaker,
    queue: JobQueue,
    workflow_id: str,
    trigger_id: Optional[str] = None,
    input: Any = None,
    metadata: Optional[dict] = None,
) -> str:
    """Create the pending execution and enqueue it.

    Returns:
        The new execution id

    Raises:
        NotFoundError: "No active version found for workflow X"
    """
    metadata = dict(metadata or {})

    async with session_factory() as session:
        workflows = WorkflowService(session)
        version = await workflows.get_active_version(workflow_id)
        if version is None:
            raise NotFoundError(f"No active version found for workflow {workflow_id}")

        trigger = None
        if trigger_id:
            trigger = await TriggerService(session).get_by_id(trigger_id)

        execution = await ExecutionService(session).create_execution(
            workflow_id=workflow_id,
            workflow_version_id=version.id,
            input=input,
            trigger_id=trigger_id if trigger is not None else None,
            trigger_type=_trigger_type(metadata, trigger),
            metadata=metadata,
        )
        execution_id = execution.id
        await session.commit()

    queue.enqueue_execution(execution_id)
    logger.info(f"Dispatched execution {execution_id} for workflow {workflow_id} (version {version.version})")
    return execution_id


async def _dispatch_in_worker(**kwargs) -> str:
    from db.worker_session import worker_session_factory

    async with worker_session_factory() as session_factory:
        return await dispatch(session_factory, get_job_queue(), **kwargs)


@celery_app.task(
    name="worker.tasks.dispatch.dispatch_workflow",
    bind=True,
    max_retries=get_settings().DISPATCH_MAX_RETRIES,
    acks_late=True,
    queue="dispatch",
)
def dispatch_workflow(
    self,
    workflow_id: str,
    trigger_id: Optional[str] = None,
    input: Any = None,
    metadata: Optional[dict] = None,
):
    """Dispatch a workflow run.

    Args:
        workflow_id: Workflow to run
        trigger_id: Trigger that fired, if any
        input: Execution input payload
        metadata: Side-channel data (e.g. {"triggered_by": "webhook"})
    """
    logger.info(f"Dispatching workflow {workflow_id} (trigger: {trigger_id})")

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        execution_id = loop.run_until_complete(
            _dispatch_in_worker(
                workflow_id=workflow_id,
                trigger_id=trigger_id,
                input=input,
                metadata=metadata,
            )
        )
        return {"execution_id": execution_id, "status": "dispatched"}

    except Exception as exc:
        if self.request.retries < self.max_retries:
            countdown = get_settings().DISPATCH_BACKOFF_SECONDS * (2 ** self.request.retries)
            logger.warning(
                f"Dispatch of workflow {workflow_id} failed ({exc}); "
                f"retry {self.request.retries + 1}/{self.max_retries} in {countdown}s"
            )
            raise self.retry(exc=exc, countdown=countdown)

        logger.error(f"Dispatch of workflow {workflow_id} failed permanently: {exc}")
        return {"error": str(exc), "status": "failed"}

    finally:
        loop.close()
