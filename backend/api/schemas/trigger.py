"""Trigger schemas."""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class TriggerCreate(BaseModel):
    workflow_id: str
    name: str = ""
    trigger_type: str
    config: dict = Field(default_factory=dict)
    is_enabled: bool = True


class TriggerUpdate(BaseModel):
    name: Optional[str] = None
    config: Optional[dict] = None
    is_enabled: Optional[bool] = None


class TriggerResponse(BaseModel):
    id: str
    workflow_id: str
    name: str
    trigger_type: str
    config: dict
    is_enabled: bool
    trigger_count: int = 0
    next_run_at: Optional[datetime] = None
    last_triggered_at: Optional[datetime] = None
    error_message: Optional[str] = None


class WebhookAcceptedResponse(BaseModel):
    trigger_id: str
    workflow_id: str
    job_id: str
    status: str = "queued"


class CredentialCreate(BaseModel):
    name: str = Field(min_length=1)
    credential_type: str = "api_key"
    data: Dict[str, Any] = Field(description="Secret fields, encrypted at rest")
    owner_id: Optional[str] = None


class CredentialResponse(BaseModel):
    """Credential metadata; secret values are never returned."""

    id: str
    name: str
    credential_type: str
    owner_id: Optional[str] = None
    access_count: int = 0
    last_accessed_at: Optional[datetime] = None

    class Config:
        from_attributes = True
