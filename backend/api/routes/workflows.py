"""Workflow endpoints: create, versions, publish, execute."""

import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from api.schemas.workflow import (
    WorkflowCreate,
    WorkflowExecuteRequest,
    WorkflowExecuteResponse,
    WorkflowResponse,
    WorkflowVersionCreate,
    WorkflowVersionListResponse,
    WorkflowVersionResponse,
)
from app.dependencies import get_db, get_queue
from core.constants import TriggerType
from core.exceptions import ConflictError
from services.workflow_service import WorkflowService
from worker.queue import JobQueue

logger = logging.getLogger(__name__)

router = APIRouter(tags=["workflows"])


@router.post("/", response_model=WorkflowResponse, status_code=status.HTTP_201_CREATED)
async def create_workflow(
    request: WorkflowCreate,
    db: AsyncSession = Depends(get_db),
) -> WorkflowResponse:
    """Create a new workflow. Steps are added through versions."""
    svc = WorkflowService(db)
    wf = await svc.create_workflow(
        name=request.name,
        description=request.description or "",
        owner_id=request.owner_id,
        retry_max_attempts=request.retry_max_attempts,
        retry_backoff_ms=request.retry_backoff_ms,
        timeout_ms=request.timeout_ms,
    )
    return WorkflowResponse.model_validate(wf)


@router.get("/{workflow_id}", response_model=WorkflowResponse)
async def get_workflow(
    workflow_id: str,
    db: AsyncSession = Depends(get_db),
) -> WorkflowResponse:
    wf = await WorkflowService(db).get_workflow(workflow_id)
    return WorkflowResponse.model_validate(wf)


@router.post(
    "/{workflow_id}/versions",
    response_model=WorkflowVersionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_version(
    workflow_id: str,
    request: WorkflowVersionCreate,
    db: AsyncSession = Depends(get_db),
) -> WorkflowVersionResponse:
    """
    Store a new immutable version. The definition is validated here, so a
    malformed step list never reaches the executor.
    """
    version = await WorkflowService(db).create_version(workflow_id, request.definition)
    return WorkflowVersionResponse.model_validate(version)


@router.get("/{workflow_id}/versions", response_model=WorkflowVersionListResponse)
async def list_versions(
    workflow_id: str,
    db: AsyncSession = Depends(get_db),
) -> WorkflowVersionListResponse:
    svc = WorkflowService(db)
    await svc.get_workflow(workflow_id)
    versions = await svc.list_versions(workflow_id)
    return WorkflowVersionListResponse(
        versions=[WorkflowVersionResponse.model_validate(v) for v in versions],
        total=len(versions),
    )


@router.post(
    "/{workflow_id}/versions/{version_id}/publish",
    response_model=WorkflowVersionResponse,
)
async def publish_version(
    workflow_id: str,
    version_id: str,
    db: AsyncSession = Depends(get_db),
) -> WorkflowVersionResponse:
    """Make this version the one new executions run."""
    version = await WorkflowService(db).publish_version(workflow_id, version_id)
    return WorkflowVersionResponse.model_validate(version)


@router.post(
    "/{workflow_id}/execute",
    response_model=WorkflowExecuteResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def execute_workflow(
    workflow_id: str,
    request: WorkflowExecuteRequest,
    db: AsyncSession = Depends(get_db),
    queue: JobQueue = Depends(get_queue),
) -> WorkflowExecuteResponse:
    """
    Queue a manual run. The execution record is created by the dispatch
    job, so the response carries the job id rather than an execution id.
    """
    svc = WorkflowService(db)
    await svc.get_workflow(workflow_id)
    if await svc.get_active_version(workflow_id) is None:
        raise ConflictError(f"Workflow {workflow_id} has no published version")

    metadata = {**request.metadata, "triggered_by": TriggerType.MANUAL.value}
    job_id = queue.enqueue_dispatch(workflow_id, None, request.input, metadata)
    logger.info(f"Manual run queued for workflow {workflow_id} (job {job_id})")
    return WorkflowExecuteResponse(workflow_id=workflow_id, job_id=str(job_id))
