"""Execution schemas."""

from pydantic import BaseModel, Field
from typing import Any, List, Optional


class ExecutionStepResponse(BaseModel):
    """One step attempt record of an execution."""

    id: str
    step_id: str = Field(description="Step id from the workflow definition")
    name: str
    type: str
    position: int
    status: str
    input: Optional[Any] = None
    output: Optional[Any] = None
    error: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    duration_ms: Optional[int] = None
    retry_count: int = 0


class ExecutionLogResponse(BaseModel):
    """Execution log entry response."""

    timestamp: Optional[str] = None
    level: str = Field(description="Log level (debug, info, warning, error)")
    message: str = Field(description="Log message")
    context: Optional[dict] = Field(default=None, description="Additional context data")


class ExecutionResponse(BaseModel):
    """Execution with its steps and logs."""

    id: str = Field(description="Execution ID")
    workflow_id: str = Field(description="Workflow ID")
    workflow_version_id: str = Field(description="Version the execution is bound to")
    trigger_id: Optional[str] = None
    trigger_type: str = Field(description="How execution was triggered (manual, schedule, webhook)")
    status: str = Field(description="Execution status (pending, running, completed, failed, cancelled)")
    input: Optional[Any] = None
    output: Optional[Any] = None
    error: Optional[str] = Field(default=None, description="Error message if execution failed")
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    duration_ms: Optional[int] = Field(default=None, description="Execution duration in milliseconds")
    retry_count: int = Field(default=0, description="Total step retries")
    steps: List[ExecutionStepResponse] = Field(default_factory=list)
    logs: List[ExecutionLogResponse] = Field(default_factory=list)


class ExecutionSummary(BaseModel):
    """Execution row without steps and logs, for listings."""

    id: str
    workflow_id: str
    workflow_version_id: str
    trigger_type: str
    status: str
    duration_ms: Optional[int] = None
    error_message: Optional[str] = None
    retry_count: int = 0

    class Config:
        from_attributes = True


class ExecutionListResponse(BaseModel):
    """Paginated list of executions."""

    executions: List[ExecutionSummary] = Field(description="List of executions")
    total: int = Field(description="Total number of executions")
    page: int = Field(description="Current page number")
    per_page: int = Field(description="Items per page")
