"""Execution and ExecutionStep models."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, ForeignKey, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import ExecutionStatus, StepStatus, TriggerType
from db.base import BaseModel


class Execution(BaseModel):
    """One run of a workflow version against a specific input.

    Attributes:
        workflow_id: Foreign key to Workflow
        workflow_version_id: Foreign key to the WorkflowVersion that ran
        trigger_id: Trigger that fired, if any
        trigger_type: How the run was started
        status: pending -> running -> completed | failed | cancelled
        input: Caller-supplied payload
        output: Final variables snapshot
        error_message: Error if the run failed
        trigger_metadata: Side-channel data supplied with the trigger
        started_at / completed_at / duration_ms: Run timing
        retry_count: Step retries performed during the run
    """

    __tablename__ = "executions"

    workflow_id: Mapped[str] = mapped_column(
        ForeignKey("workflows.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    workflow_version_id: Mapped[str] = mapped_column(
        ForeignKey("workflow_versions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    trigger_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("triggers.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    trigger_type: Mapped[str] = mapped_column(
        default=TriggerType.MANUAL.value, index=True
    )
    status: Mapped[str] = mapped_column(
        default=ExecutionStatus.PENDING.value, index=True
    )
    input: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    output: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    trigger_metadata: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_ms: Mapped[Optional[int]] = mapped_column(nullable=True)
    retry_count: Mapped[int] = mapped_column(default=0)

    # Relationships
    steps: Mapped[list["ExecutionStep"]] = relationship(
        "ExecutionStep",
        back_populates="execution",
        cascade="all, delete-orphan",
        order_by="ExecutionStep.position",
        lazy="noload",
    )
    logs: Mapped[list["ExecutionLog"]] = relationship(
        "ExecutionLog",
        back_populates="execution",
        cascade="all, delete-orphan",
        order_by="ExecutionLog.timestamp",
        lazy="noload",
    )


class ExecutionStep(BaseModel):
    """Record of one step attempted within an execution."""

    __tablename__ = "execution_steps"

    execution_id: Mapped[str] = mapped_column(
        ForeignKey("executions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    step_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("workflow_steps.id", ondelete="SET NULL"),
        nullable=True,
    )
    step_key: Mapped[str] = mapped_column(nullable=False)
    step_name: Mapped[str] = mapped_column(nullable=False)
    step_type: Mapped[str] = mapped_column(nullable=False)
    position: Mapped[int] = mapped_column(nullable=False, default=0)
    status: Mapped[str] = mapped_column(default=StepStatus.PENDING.value, index=True)
    input: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    output: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_ms: Mapped[Optional[int]] = mapped_column(nullable=True)
    retry_count: Mapped[int] = mapped_column(default=0)

    execution: Mapped["Execution"] = relationship(
        "Execution", back_populates="steps", lazy="noload"
    )
