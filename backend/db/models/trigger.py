"""Trigger model.

Triggers are the entry points that start workflow executions.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, ForeignKey, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db.base import BaseModel, SoftDeleteMixin


class Trigger(SoftDeleteMixin, BaseModel):
    """Trigger model: defines how a workflow gets started.

    Attributes:
        workflow_id: FK to the Workflow to execute when triggered
        name: Human-readable trigger name
        trigger_type: One of the TriggerType enum values
        is_enabled: Whether this trigger is active
        config: JSON config specific to trigger type (see below)
        next_run_at: Next due time for schedule triggers
        last_triggered_at: When this trigger last fired
        trigger_count: How many times this trigger has fired
        error_message: Last error if dispatching failed

    Config schemas by type:
        webhook:   {}
        schedule:  { "cron": "0 9 * * MON", "timezone": "Europe/Sofia" }
        event:     { "channel": "orders.created" }
        manual:    {}
        api:       {}
    """

    __tablename__ = "triggers"

    workflow_id: Mapped[str] = mapped_column(
        ForeignKey("workflows.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(nullable=False, default="")
    trigger_type: Mapped[str] = mapped_column(nullable=False, index=True)
    is_enabled: Mapped[bool] = mapped_column(default=True, index=True)
    config: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    next_run_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )
    last_triggered_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    trigger_count: Mapped[int] = mapped_column(default=0)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    workflow: Mapped["Workflow"] = relationship(
        "Workflow", back_populates="triggers", lazy="noload"
    )
