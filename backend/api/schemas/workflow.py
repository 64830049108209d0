"""Workflow and workflow version schemas."""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Any, Dict, List, Optional


class WorkflowCreate(BaseModel):
    """Request to create a workflow."""

    name: str = Field(min_length=1, description="Workflow name")
    description: Optional[str] = Field(default="", description="Workflow description")
    owner_id: Optional[str] = Field(default=None, description="Caller id used for credential lookups")
    retry_max_attempts: int = Field(default=3, ge=1, le=20, description="Attempts per step")
    retry_backoff_ms: int = Field(default=1000, ge=0, description="Base backoff between attempts")
    timeout_ms: Optional[int] = Field(default=None, ge=1, description="Overall execution budget")


class WorkflowResponse(BaseModel):
    """Workflow information response."""

    id: str = Field(description="Workflow ID")
    name: str = Field(description="Workflow name")
    description: str = Field(description="Workflow description")
    owner_id: Optional[str] = Field(default=None, description="Owner id")
    is_enabled: bool = Field(description="Whether triggers may start executions")
    retry_max_attempts: int
    retry_backoff_ms: int
    timeout_ms: Optional[int] = None
    created_at: datetime = Field(description="Creation timestamp")
    updated_at: datetime = Field(description="Last update timestamp")

    class Config:
        from_attributes = True


class WorkflowVersionCreate(BaseModel):
    """Request to store a new workflow version."""

    definition: Dict[str, Any] = Field(description="Workflow definition with steps and settings")


class WorkflowVersionResponse(BaseModel):
    """A stored workflow version."""

    id: str
    workflow_id: str
    version: int
    definition: Dict[str, Any]
    is_active: bool
    published_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class WorkflowVersionListResponse(BaseModel):
    versions: List[WorkflowVersionResponse]
    total: int


class WorkflowExecuteRequest(BaseModel):
    """Manual run request."""

    input: Dict[str, Any] = Field(default_factory=dict, description="Execution input")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Side-channel data for steps")


class WorkflowExecuteResponse(BaseModel):
    workflow_id: str
    job_id: str
    status: str = "queued"
