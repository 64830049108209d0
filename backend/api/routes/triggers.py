"""Trigger API routes: CRUD and the webhook receiver."""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status as http_status
from sqlalchemy.ext.asyncio import AsyncSession

from api.schemas.trigger import (
    TriggerCreate,
    TriggerResponse,
    TriggerUpdate,
    WebhookAcceptedResponse,
)
from app.dependencies import get_db, get_queue
from core.constants import TriggerType
from services.trigger_service import TriggerService
from services.workflow_service import WorkflowService
from worker.queue import JobQueue

logger = logging.getLogger(__name__)

router = APIRouter()
webhook_router = APIRouter()


def _trigger_to_response(t) -> TriggerResponse:
    return TriggerResponse(
        id=t.id,
        workflow_id=t.workflow_id,
        name=t.name,
        trigger_type=t.trigger_type,
        config=t.config or {},
        is_enabled=t.is_enabled,
        trigger_count=t.trigger_count or 0,
        next_run_at=t.next_run_at,
        last_triggered_at=t.last_triggered_at,
        error_message=t.error_message,
    )


# -- CRUD --

@router.get("/", response_model=List[TriggerResponse], summary="List triggers")
async def list_triggers(
    workflow_id: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
):
    triggers = await TriggerService(db).list_triggers(workflow_id)
    return [_trigger_to_response(t) for t in triggers]


@router.post(
    "/",
    response_model=TriggerResponse,
    status_code=http_status.HTTP_201_CREATED,
    summary="Create trigger",
)
async def create_trigger(
    body: TriggerCreate,
    db: AsyncSession = Depends(get_db),
):
    await WorkflowService(db).get_workflow(body.workflow_id)
    trigger = await TriggerService(db).create_trigger(
        workflow_id=body.workflow_id,
        trigger_type=body.trigger_type,
        name=body.name,
        config=body.config,
        is_enabled=body.is_enabled,
    )
    return _trigger_to_response(trigger)


@router.get("/{trigger_id}", response_model=TriggerResponse, summary="Get trigger")
async def get_trigger(
    trigger_id: str,
    db: AsyncSession = Depends(get_db),
):
    return _trigger_to_response(await TriggerService(db).get_trigger(trigger_id))


@router.put("/{trigger_id}", response_model=TriggerResponse, summary="Update trigger")
async def update_trigger(
    trigger_id: str,
    body: TriggerUpdate,
    db: AsyncSession = Depends(get_db),
):
    trigger = await TriggerService(db).update_trigger(
        trigger_id,
        name=body.name,
        config=body.config,
        is_enabled=body.is_enabled,
    )
    return _trigger_to_response(trigger)


@router.delete(
    "/{trigger_id}",
    status_code=http_status.HTTP_204_NO_CONTENT,
    summary="Delete trigger",
)
async def delete_trigger(
    trigger_id: str,
    db: AsyncSession = Depends(get_db),
):
    await TriggerService(db).delete_trigger(trigger_id)


# -- Webhook receiver --

@webhook_router.post(
    "/{trigger_id}",
    response_model=WebhookAcceptedResponse,
    status_code=http_status.HTTP_202_ACCEPTED,
    summary="Receive webhook",
)
async def receive_webhook(
    trigger_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    queue: JobQueue = Depends(get_queue),
):
    """
    Start a run of the trigger's workflow with the request body as input.
    Non-JSON bodies are passed through as {"body": "<text>"}.
    """
    svc = TriggerService(db)
    trigger = await svc.get_by_id(trigger_id)
    if not trigger:
        raise HTTPException(status_code=404, detail="Trigger not found")
    if trigger.trigger_type != TriggerType.WEBHOOK.value:
        raise HTTPException(status_code=400, detail="Trigger is not a webhook trigger")
    if not trigger.is_enabled:
        raise HTTPException(status_code=403, detail="Trigger is disabled")

    raw = await request.body()
    try:
        payload = await request.json() if raw else {}
    except ValueError:
        payload = {"body": raw.decode("utf-8", errors="replace")}

    workflow_id = trigger.workflow_id
    await svc.mark_fired(trigger)
    await db.commit()

    job_id = queue.enqueue_dispatch(
        workflow_id,
        trigger_id,
        payload,
        {"triggered_by": TriggerType.WEBHOOK.value, "trigger_id": trigger_id},
    )
    logger.info(f"Webhook trigger {trigger_id} fired (workflow {workflow_id}, job {job_id})")
    return WebhookAcceptedResponse(trigger_id=trigger_id, workflow_id=workflow_id, job_id=str(job_id))
