"""Trigger service: CRUD for triggers plus schedule bookkeeping."""

from datetime import datetime, timezone
from typing import Any, Optional, Sequence
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog
from croniter import croniter
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.constants import TriggerType
from core.exceptions import NotFoundError, ValidationError
from db.base import utcnow
from db.models.trigger import Trigger
from services.base import BaseService

logger = structlog.get_logger(__name__)


def compute_next_run(
    cron_expression: str,
    tz: str = "UTC",
    base: Optional[datetime] = None,
) -> datetime:
    """Next occurrence of ``cron_expression`` after ``base``, as aware UTC.

    Raises:
        ValidationError: If the expression or the timezone is invalid
    """
    if not cron_expression or not croniter.is_valid(cron_expression):
        raise ValidationError(f"Invalid cron expression: {cron_expression!r}")
    try:
        tz_obj = ZoneInfo(tz or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        raise ValidationError(f"Unknown timezone: {tz!r}")

    base = base or utcnow()
    if base.tzinfo is None:
        base = base.replace(tzinfo=timezone.utc)
    next_local = croniter(cron_expression, base.astimezone(tz_obj)).get_next(datetime)
    return next_local.astimezone(timezone.utc)


class TriggerService(BaseService[Trigger]):
    """Service for trigger management."""

    def __init__(self, db: AsyncSession):
        super().__init__(Trigger, db)

    def _schedule_fields(self, trigger_type: str, config: dict[str, Any]) -> dict[str, Any]:
        if trigger_type != TriggerType.SCHEDULE.value:
            return {"next_run_at": None}
        return {"next_run_at": compute_next_run(config.get("cron", ""), config.get("timezone", "UTC"))}

    async def create_trigger(
        self,
        workflow_id: str,
        trigger_type: str,
        name: str = "",
        config: Optional[dict] = None,
        is_enabled: bool = True,
    ) -> Trigger:
        """Create a trigger; schedule triggers get their first next_run_at."""
        try:
            trigger_type = TriggerType(trigger_type).value
        except ValueError:
            raise ValidationError(f"Unsupported trigger type: {trigger_type}")

        config = config or {}
        trigger = await self.create({
            "workflow_id": workflow_id,
            "name": name,
            "trigger_type": trigger_type,
            "config": config,
            "is_enabled": is_enabled,
            **self._schedule_fields(trigger_type, config),
        })
        logger.info("Trigger created", trigger_id=trigger.id, trigger_type=trigger_type, workflow_id=workflow_id)
        return trigger

    async def get_trigger(self, trigger_id: str) -> Trigger:
        trigger = await self.get_by_id(trigger_id)
        if not trigger:
            raise NotFoundError(f"Trigger {trigger_id} not found")
        return trigger

    async def list_triggers(self, workflow_id: Optional[str] = None) -> Sequence[Trigger]:
        items, _ = await self.list(limit=500, filters={"workflow_id": workflow_id})
        return items

    async def update_trigger(
        self,
        trigger_id: str,
        name: Optional[str] = None,
        config: Optional[dict] = None,
        is_enabled: Optional[bool] = None,
    ) -> Trigger:
        trigger = await self.get_trigger(trigger_id)
        data: dict[str, Any] = {"name": name, "is_enabled": is_enabled}
        if config is not None:
            data["config"] = config
            data.update(self._schedule_fields(trigger.trigger_type, config))
        return await self.update(trigger_id, data)

    async def delete_trigger(self, trigger_id: str) -> None:
        if not await self.soft_delete(trigger_id):
            raise NotFoundError(f"Trigger {trigger_id} not found")

    # ─── Schedules ─────────────────────────────────────────

    async def get_due_schedules(self, now: Optional[datetime] = None) -> Sequence[Trigger]:
        """Enabled schedule triggers whose next_run_at has passed."""
        now = now or utcnow()
        result = await self.db.execute(
            select(Trigger)
            .where(Trigger.trigger_type == TriggerType.SCHEDULE.value)
            .where(Trigger.is_enabled == True)  # noqa: E712
            .where(Trigger.is_deleted == False)  # noqa: E712
            .where(Trigger.next_run_at != None)  # noqa: E711
            .where(Trigger.next_run_at <= now)
            .order_by(Trigger.next_run_at.asc())
        )
        return result.scalars().all()

    async def mark_fired(self, trigger: Trigger, error: Optional[str] = None) -> Trigger:
        """Record a firing and advance schedule triggers to their next occurrence."""
        now = utcnow()
        trigger.last_triggered_at = now
        trigger.trigger_count = (trigger.trigger_count or 0) + 1
        trigger.error_message = error

        if trigger.trigger_type == TriggerType.SCHEDULE.value:
            config = trigger.config or {}
            trigger.next_run_at = compute_next_run(
                config.get("cron", ""), config.get("timezone", "UTC"), base=now
            )

        await self.db.flush()
        return trigger
