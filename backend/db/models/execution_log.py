"""ExecutionLog model for the per-execution log stream."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, ForeignKey, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import LogLevel
from db.base import BaseModel, utcnow


class ExecutionLog(BaseModel):
    """ExecutionLog model: timestamped, leveled free text for one execution.

    Attributes:
        execution_id: Foreign key to Execution
        level: debug, info, warning or error
        message: Log message
        context: JSON metadata for the entry
        timestamp: When the entry was written
    """

    __tablename__ = "execution_logs"

    execution_id: Mapped[str] = mapped_column(
        ForeignKey("executions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    level: Mapped[str] = mapped_column(
        default=LogLevel.INFO.value, index=True
    )
    message: Mapped[str] = mapped_column(Text, nullable=False)
    context: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )

    execution: Mapped["Execution"] = relationship(
        "Execution", back_populates="logs", lazy="noload"
    )
