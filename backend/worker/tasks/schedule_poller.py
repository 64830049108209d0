"""Celery task to poll schedule triggers and dispatch workflow runs.

Runs every SCHEDULE_POLL_SECONDS via Celery Beat, finds enabled
schedule triggers whose next_run_at has passed, advances them to the
next cron occurrence and enqueues a dispatch for each.
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from services.trigger_service import TriggerService
from services.workflow_service import WorkflowService
from worker.celery_app import celery_app
from worker.queue import JobQueue, get_job_queue

logger = logging.getLogger(__name__)


async def poll_due_schedules(
    session_factory: async_sessionmaker,
    queue: JobQueue,
    now: Optional[datetime] = None,
) -> dict:
    """Dispatch every due schedule trigger once."""
    dispatched = 0
    skipped = 0
    errors = 0

    async with session_factory() as session:
        triggers = TriggerService(session)
        workflows = WorkflowService(session)
        due = await triggers.get_due_schedules(now)

        if not due:
            logger.debug("[schedule-poller] No due schedules found.")
            return {"dispatched": 0, "skipped": 0, "errors": 0}

        # A rollback expires every loaded trigger, so each one is re-read by id
        for trigger_id in [t.id for t in due]:
            try:
                trigger = await triggers.get_by_id(trigger_id)
                if trigger is None:
                    continue
                workflow = await workflows.get_by_id(trigger.workflow_id)
                if not workflow or not workflow.is_enabled:
                    logger.warning(
                        f"[schedule-poller] Skipping trigger {trigger.id}: "
                        f"workflow {trigger.workflow_id} not found or disabled"
                    )
                    await triggers.mark_fired(trigger, error="Workflow not found or disabled")
                    await session.commit()
                    skipped += 1
                    continue

                # Advance next_run_at before enqueueing so the next poll cannot fire it twice
                await triggers.mark_fired(trigger)
                await session.commit()

                queue.enqueue_dispatch(
                    workflow_id=trigger.workflow_id,
                    trigger_id=trigger.id,
                    input=(trigger.config or {}).get("input", {}),
                    metadata={"triggered_by": "schedule", "trigger_id": trigger.id},
                )
                dispatched += 1
                logger.info(
                    f"[schedule-poller] Dispatched trigger '{trigger.name}' "
                    f"(workflow: {trigger.workflow_id}). Next run: {trigger.next_run_at}"
                )

            except Exception as e:
                errors += 1
                logger.error(f"[schedule-poller] Error dispatching trigger {trigger_id}: {e}", exc_info=True)
                await session.rollback()

    return {"dispatched": dispatched, "skipped": skipped, "errors": errors}


async def _poll_in_worker() -> dict:
    from db.worker_session import worker_session_factory

    async with worker_session_factory() as session_factory:
        return await poll_due_schedules(session_factory, get_job_queue())


@celery_app.task(
    name="worker.tasks.schedule_poller.poll_schedules",
    bind=True,
    max_retries=2,
    default_retry_delay=15,
    queue="dispatch",
)
def poll_schedules(self):
    """Check for due schedules and dispatch workflow runs."""
    logger.info("[schedule-poller] Polling schedules for due executions...")

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        result = loop.run_until_complete(_poll_in_worker())
        logger.info(f"[schedule-poller] Done: {result}")
        return result
    except Exception as exc:
        logger.error(f"[schedule-poller] Polling failed: {exc}", exc_info=True)
        raise self.retry(exc=exc)
    finally:
        loop.close()
