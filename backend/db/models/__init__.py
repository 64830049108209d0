"""Database models for the Stepflow workflow engine.

This module imports all models to ensure they are registered
with SQLAlchemy's declarative base.
"""

from db.models.workflow import Workflow, WorkflowVersion
from db.models.workflow_step import WorkflowStep
from db.models.execution import Execution, ExecutionStep
from db.models.execution_log import ExecutionLog
from db.models.credential import Credential
from db.models.trigger import Trigger

__all__ = [
    "Workflow",
    "WorkflowVersion",
    "WorkflowStep",
    "Execution",
    "ExecutionStep",
    "ExecutionLog",
    "Credential",
    "Trigger",
]
