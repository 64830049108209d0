"""Workflow and WorkflowVersion models."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db.base import BaseModel, SoftDeleteMixin


class Workflow(SoftDeleteMixin, BaseModel):
    """Workflow model: the stable identity that versions hang off.

    Attributes:
        id: Unique identifier (UUID string)
        name: Workflow name
        description: Workflow description
        owner_id: Caller id used for credential retrieval during runs
        is_enabled: Whether triggers may start new executions
        retry_max_attempts: Attempts per step, first attempt included
        retry_backoff_ms: Base backoff between step attempts
        timeout_ms: Optional overall execution budget (advisory)
    """

    __tablename__ = "workflows"

    name: Mapped[str] = mapped_column(nullable=False, index=True)
    description: Mapped[str] = mapped_column(nullable=False, default="")
    owner_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    is_enabled: Mapped[bool] = mapped_column(default=True, index=True)
    retry_max_attempts: Mapped[int] = mapped_column(default=3)
    retry_backoff_ms: Mapped[int] = mapped_column(default=1000)
    timeout_ms: Mapped[Optional[int]] = mapped_column(nullable=True)

    # Relationships
    versions: Mapped[list["WorkflowVersion"]] = relationship(
        "WorkflowVersion",
        back_populates="workflow",
        cascade="all, delete-orphan",
        order_by="WorkflowVersion.version",
        lazy="noload",
    )
    triggers: Mapped[list["Trigger"]] = relationship(
        "Trigger",
        back_populates="workflow",
        cascade="all, delete-orphan",
        lazy="noload",
    )


class WorkflowVersion(BaseModel):
    """Immutable snapshot of a workflow definition.

    At most one version per workflow has ``is_active`` set; publishing
    flips the flag for the whole workflow inside one transaction.
    """

    __tablename__ = "workflow_versions"
    __table_args__ = (
        UniqueConstraint("workflow_id", "version", name="uq_workflow_version_number"),
    )

    workflow_id: Mapped[str] = mapped_column(
        ForeignKey("workflows.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    version: Mapped[int] = mapped_column(nullable=False)
    definition: Mapped[dict] = mapped_column(JSON, nullable=False)
    is_active: Mapped[bool] = mapped_column(default=False, index=True)
    published_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Relationships
    workflow: Mapped["Workflow"] = relationship(
        "Workflow", back_populates="versions", lazy="noload"
    )
    steps: Mapped[list["WorkflowStep"]] = relationship(
        "WorkflowStep",
        back_populates="version",
        cascade="all, delete-orphan",
        order_by="WorkflowStep.position",
        lazy="selectin",
    )
