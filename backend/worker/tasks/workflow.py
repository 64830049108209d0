"""Celery task running one execution through the WorkflowEngine.

There is no queue-level retry: step retries happen inside the engine,
and a redelivered job for an execution that is no longer pending is a
no-op. Anything that escapes the engine is logged and the execution is
marked failed through a fresh database engine, so the row never stays
``running`` after the worker gives up on it.
"""

import asyncio
import logging
import time

from app.config import get_settings
from worker.celery_app import celery_app

logger = logging.getLogger(__name__)


async def _run_execution(execution_id: str) -> dict:
    from db.worker_session import worker_session_factory
    from services.execution_service import ExecutionService
    from worker.bootstrap import build_engine
    from workflow.events import RedisEventPublisher

    settings = get_settings()
    publisher = RedisEventPublisher(settings.REDIS_URL, prefix=settings.EVENT_CHANNEL_PREFIX)

    try:
        async with worker_session_factory() as session_factory:
            engine = build_engine(session_factory, event_sink=publisher, settings=settings)
            context = await engine.execute(execution_id)

            async with session_factory() as session:
                status = await ExecutionService(session).get_status(execution_id)

        return {
            "execution_id": execution_id,
            "status": status,
            "skipped": context is None,
        }
    finally:
        await publisher.close()


async def mark_execution_crashed(session_factory, execution_id: str, error_message: str, duration_ms: int) -> bool:
    """Fail an execution the engine could not finish.

    Returns False if the execution is missing or already terminal.
    """
    from core.constants import ExecutionStatus, LogLevel
    from services.execution_service import ExecutionService

    async with session_factory() as session:
        executions = ExecutionService(session)
        if await executions.get_by_id(execution_id) is None:
            return False

        finalized = await executions.finalize_execution(
            execution_id,
            ExecutionStatus.FAILED,
            duration_ms=duration_ms,
            error=error_message,
        )
        if finalized:
            await executions.add_log(execution_id, LogLevel.ERROR, f"Workflow execution crashed: {error_message}")
        await session.commit()
        return finalized


async def _update_crashed_execution(execution_id: str, error_message: str, duration_ms: int) -> bool:
    from db.worker_session import worker_session_factory

    async with worker_session_factory() as session_factory:
        return await mark_execution_crashed(session_factory, execution_id, error_message, duration_ms)


@celery_app.task(
    name="worker.tasks.workflow.execute_workflow",
    bind=True,
    max_retries=0,
    acks_late=True,
    queue="executions",
)
def execute_workflow(self, execution_id: str):
    """Execute a dispatched workflow run.

    Args:
        execution_id: Pending execution created by dispatch_workflow
    """
    logger.info(f"Starting workflow execution: {execution_id}")
    start_time = time.time()

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        result = loop.run_until_complete(_run_execution(execution_id))
        logger.info(f"Execution {execution_id} finished with status {result['status']}")
        return result

    except Exception as exc:
        duration_ms = int((time.time() - start_time) * 1000)
        error_msg = str(exc) or exc.__class__.__name__
        logger.error(f"Workflow execution crashed: {execution_id}: {error_msg}", exc_info=True)

        # Mark as failed in DB
        try:
            loop.run_until_complete(_update_crashed_execution(execution_id, error_msg, duration_ms))
        except Exception as update_exc:
            logger.error(f"Could not update failed status for {execution_id}: {update_exc}")

        return {"execution_id": execution_id, "error": error_msg, "status": "failed"}

    finally:
        loop.close()
