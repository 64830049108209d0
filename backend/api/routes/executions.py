"""Execution endpoints: list, get with steps and logs, cancel."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from api.schemas.execution import ExecutionListResponse, ExecutionResponse, ExecutionSummary
from app.dependencies import get_db
from services.execution_service import ExecutionService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["executions"])


@router.get("/", response_model=ExecutionListResponse)
async def list_executions(
    workflow_id: Optional[str] = None,
    status: Optional[str] = None,
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
) -> ExecutionListResponse:
    """List executions, newest first, optionally filtered by workflow or status."""
    executions, total = await ExecutionService(db).list_executions(
        workflow_id=workflow_id,
        status=status,
        offset=(page - 1) * per_page,
        limit=per_page,
    )
    return ExecutionListResponse(
        executions=[ExecutionSummary.model_validate(e) for e in executions],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.get("/{execution_id}", response_model=ExecutionResponse)
async def get_execution(
    execution_id: str,
    db: AsyncSession = Depends(get_db),
) -> ExecutionResponse:
    data = await ExecutionService(db).to_public_dict(execution_id)
    return ExecutionResponse(**data)


@router.post("/{execution_id}/cancel", response_model=ExecutionResponse)
async def cancel_execution(
    execution_id: str,
    db: AsyncSession = Depends(get_db),
) -> ExecutionResponse:
    """
    Cancel a pending or running execution. A running executor notices
    the new status before its next step and stops.
    """
    svc = ExecutionService(db)
    await svc.cancel_execution(execution_id)
    return ExecutionResponse(**await svc.to_public_dict(execution_id))
