"""Workflow service: workflows, immutable versions and publishing."""

from typing import Any, Optional, Sequence

import pydantic
import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import NotFoundError, ValidationError
from db.base import utcnow
from db.models.workflow import Workflow, WorkflowVersion
from db.models.workflow_step import WorkflowStep
from runners.base_runner import format_validation_error
from services.base import BaseService
from workflow.definition import WorkflowDefinition

logger = structlog.get_logger(__name__)


def parse_definition(definition: dict[str, Any]) -> WorkflowDefinition:
    """Validate a raw definition.

    Raises:
        ValidationError: If the structure is invalid (unknown step type,
            duplicate step id, missing name)
    """
    try:
        return WorkflowDefinition.model_validate(definition or {})
    except pydantic.ValidationError as e:
        raise ValidationError(f"Invalid workflow definition: {format_validation_error(e)}")


class WorkflowService(BaseService[Workflow]):
    """Service for workflow and version management."""

    def __init__(self, db: AsyncSession):
        super().__init__(Workflow, db)

    # ─── Workflows ─────────────────────────────────────────

    async def create_workflow(
        self,
        name: str,
        description: str = "",
        owner_id: Optional[str] = None,
        retry_max_attempts: int = 3,
        retry_backoff_ms: int = 1000,
        timeout_ms: Optional[int] = None,
    ) -> Workflow:
        """Create a new workflow (no versions yet)."""
        workflow = await self.create({
            "name": name,
            "description": description,
            "owner_id": owner_id,
            "retry_max_attempts": retry_max_attempts,
            "retry_backoff_ms": retry_backoff_ms,
            "timeout_ms": timeout_ms,
        })
        logger.info("Workflow created", workflow_id=workflow.id, name=name)
        return workflow

    async def get_workflow(self, workflow_id: str) -> Workflow:
        """Get a workflow or raise NotFoundError."""
        workflow = await self.get_by_id(workflow_id)
        if not workflow:
            raise NotFoundError(f"Workflow {workflow_id} not found")
        return workflow

    # ─── Versions ──────────────────────────────────────────

    async def create_version(self, workflow_id: str, definition: dict[str, Any]) -> WorkflowVersion:
        """Store a new immutable version; numbering continues from the last one."""
        await self.get_workflow(workflow_id)
        parsed = parse_definition(definition)

        result = await self.db.execute(
            select(func.count()).select_from(WorkflowVersion).where(
                WorkflowVersion.workflow_id == workflow_id
            )
        )
        next_number = (result.scalar() or 0) + 1

        version = WorkflowVersion(
            workflow_id=workflow_id,
            version=next_number,
            definition=parsed.model_dump(mode="json", by_alias=False),
            is_active=False,
        )
        self.db.add(version)
        await self.db.flush()
        await self.db.refresh(version)

        logger.info("Workflow version created", workflow_id=workflow_id, version=next_number)
        return version

    async def get_version(self, version_id: str) -> WorkflowVersion:
        result = await self.db.execute(
            select(WorkflowVersion).where(WorkflowVersion.id == version_id)
        )
        version = result.scalar_one_or_none()
        if not version:
            raise NotFoundError(f"Workflow version {version_id} not found")
        return version

    async def list_versions(self, workflow_id: str) -> Sequence[WorkflowVersion]:
        result = await self.db.execute(
            select(WorkflowVersion)
            .where(WorkflowVersion.workflow_id == workflow_id)
            .order_by(WorkflowVersion.version.asc())
        )
        return result.scalars().all()

    async def get_active_version(self, workflow_id: str) -> Optional[WorkflowVersion]:
        """The single version eligible for triggered runs, with its steps."""
        result = await self.db.execute(
            select(WorkflowVersion).where(
                WorkflowVersion.workflow_id == workflow_id,
                WorkflowVersion.is_active == True,  # noqa: E712
            )
        )
        return result.scalars().first()

    async def publish_version(self, workflow_id: str, version_id: str) -> WorkflowVersion:
        """Make ``version_id`` the only active version of the workflow.

        Deactivating the others, activating this one and rebuilding its
        step rows happen in the caller's transaction, so readers never
        observe zero or two active versions after the commit.
        """
        version = await self.get_version(version_id)
        if version.workflow_id != workflow_id:
            raise NotFoundError(f"Workflow version {version_id} not found")

        await self.db.execute(
            update(WorkflowVersion)
            .where(
                WorkflowVersion.workflow_id == workflow_id,
                WorkflowVersion.id != version_id,
                WorkflowVersion.is_active == True,  # noqa: E712
            )
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )

        version.is_active = True
        version.published_at = utcnow()
        await self._rebuild_steps(version)
        await self.db.flush()
        await self.db.refresh(version)

        logger.info(
            "Workflow version published",
            workflow_id=workflow_id,
            version_id=version_id,
            version=version.version,
        )
        return version

    async def _rebuild_steps(self, version: WorkflowVersion) -> None:
        existing = await self.db.execute(
            select(WorkflowStep).where(WorkflowStep.version_id == version.id)
        )
        for step in existing.scalars().all():
            await self.db.delete(step)

        definition = parse_definition(version.definition)
        for step in definition.ordered_steps():
            self.db.add(WorkflowStep(
                version_id=version.id,
                step_key=step.id,
                name=step.name,
                step_type=step.type.value,
                config=step.config,
                position=step.position,
                next_steps=step.next_steps or None,
                error_handler=step.error_handler,
            ))
        await self.db.flush()

    async def get_steps(self, version_id: str) -> Sequence[WorkflowStep]:
        """Steps of a version in execution order."""
        result = await self.db.execute(
            select(WorkflowStep)
            .where(WorkflowStep.version_id == version_id)
            .order_by(WorkflowStep.position.asc())
        )
        return result.scalars().all()
