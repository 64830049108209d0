"""WorkflowStep model: one materialized step of a published version."""

from typing import Optional

from sqlalchemy import JSON, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db.base import BaseModel


class WorkflowStep(BaseModel):
    """A single step row, rebuilt from the version definition on publish.

    Attributes:
        version_id: Foreign key to WorkflowVersion
        step_key: Stable id of the step inside its definition
        name: Variable-binding key for the step output
        step_type: One of StepType
        config: Raw step config, parsed by the runner at run time
        position: Execution order
        next_steps: Advisory branching metadata
        error_handler: Advisory step_key of an error handler
    """

    __tablename__ = "workflow_steps"

    version_id: Mapped[str] = mapped_column(
        ForeignKey("workflow_versions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    step_key: Mapped[str] = mapped_column(nullable=False)
    name: Mapped[str] = mapped_column(nullable=False)
    step_type: Mapped[str] = mapped_column(nullable=False, index=True)
    config: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    position: Mapped[int] = mapped_column(nullable=False)
    next_steps: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    error_handler: Mapped[Optional[str]] = mapped_column(nullable=True)

    version: Mapped["WorkflowVersion"] = relationship(
        "WorkflowVersion", back_populates="steps", lazy="noload"
    )
