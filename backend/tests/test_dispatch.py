"""Tests for the worker tasks: dispatch, schedule polling and crash bookkeeping."""

from datetime import datetime, timedelta, timezone

import pytest

from core.exceptions import NotFoundError
from db.models.workflow import Workflow
from services.execution_service import ExecutionService
from services.trigger_service import TriggerService
from services.workflow_service import WorkflowService
from worker.tasks.dispatch import dispatch
from worker.tasks.schedule_poller import poll_due_schedules
from worker.tasks.workflow import mark_execution_crashed

WAIT_STEP = {"id": "s1", "name": "wait", "type": "delay", "config": {"milliseconds": 0}}


async def add_trigger(session_factory, workflow_id, trigger_type, **kwargs):
    async with session_factory() as session:
        trigger = await TriggerService(session).create_trigger(workflow_id, trigger_type, **kwargs)
        await session.commit()
        return trigger


async def make_due(session_factory, trigger_id, minutes_ago=1):
    async with session_factory() as session:
        trigger = await TriggerService(session).get_trigger(trigger_id)
        trigger.next_run_at = datetime.now(timezone.utc) - timedelta(minutes=minutes_ago)
        await session.commit()


@pytest.mark.integration
class TestDispatch:

    async def test_creates_pending_execution_and_enqueues(self, session_factory, job_queue, make_workflow):
        workflow, version = await make_workflow([WAIT_STEP])

        execution_id = await dispatch(
            session_factory, job_queue, workflow.id,
            input={"order": 7}, metadata={"triggered_by": "manual", "user": "u-1"},
        )

        assert job_queue.executions == [execution_id]
        async with session_factory() as session:
            execution = await ExecutionService(session).get_execution(execution_id)
            assert execution.status == "pending"
            assert execution.workflow_version_id == version.id
            assert execution.input == {"order": 7}
            assert execution.trigger_type == "manual"
            assert execution.trigger_metadata["user"] == "u-1"

    async def test_binds_to_version_active_at_dispatch(self, session_factory, job_queue, make_workflow):
        workflow, first = await make_workflow([WAIT_STEP])
        first_id = await dispatch(session_factory, job_queue, workflow.id)

        async with session_factory() as session:
            svc = WorkflowService(session)
            second = await svc.create_version(workflow.id, {"steps": [WAIT_STEP]})
            await svc.publish_version(workflow.id, second.id)
            await session.commit()
        second_id = await dispatch(session_factory, job_queue, workflow.id)

        async with session_factory() as session:
            svc = ExecutionService(session)
            assert (await svc.get_execution(first_id)).workflow_version_id == first.id
            assert (await svc.get_execution(second_id)).workflow_version_id == second.id

    async def test_no_active_version(self, session_factory, job_queue):
        async with session_factory() as session:
            workflow = await WorkflowService(session).create_workflow(name="Draft only")
            await session.commit()

        with pytest.raises(NotFoundError) as exc:
            await dispatch(session_factory, job_queue, workflow.id)
        assert exc.value.message == f"No active version found for workflow {workflow.id}"
        assert job_queue.executions == []

    async def test_trigger_type_comes_from_trigger(self, session_factory, job_queue, make_workflow):
        workflow, _ = await make_workflow([WAIT_STEP])
        trigger = await add_trigger(session_factory, workflow.id, "webhook", name="hook")

        execution_id = await dispatch(
            session_factory, job_queue, workflow.id, trigger_id=trigger.id,
            metadata={"triggered_by": "schedule"},
        )

        async with session_factory() as session:
            execution = await ExecutionService(session).get_execution(execution_id)
            assert execution.trigger_id == trigger.id
            assert execution.trigger_type == "webhook"

    async def test_unknown_triggered_by_falls_back_to_manual(self, session_factory, job_queue, make_workflow):
        workflow, _ = await make_workflow([WAIT_STEP])
        execution_id = await dispatch(
            session_factory, job_queue, workflow.id, metadata={"triggered_by": "carrier_pigeon"}
        )
        async with session_factory() as session:
            execution = await ExecutionService(session).get_execution(execution_id)
            assert execution.trigger_type == "manual"
            assert execution.trigger_id is None


@pytest.mark.integration
class TestSchedulePoller:

    async def test_nothing_due(self, session_factory, job_queue):
        result = await poll_due_schedules(session_factory, job_queue)
        assert result == {"dispatched": 0, "skipped": 0, "errors": 0}

    async def test_dispatches_due_trigger_and_advances_it(self, session_factory, job_queue, make_workflow):
        workflow, _ = await make_workflow([WAIT_STEP])
        trigger = await add_trigger(
            session_factory, workflow.id, "schedule", name="every5",
            config={"cron": "*/5 * * * *", "input": {"report": "daily"}},
        )
        await make_due(session_factory, trigger.id)

        result = await poll_due_schedules(session_factory, job_queue)

        assert result == {"dispatched": 1, "skipped": 0, "errors": 0}
        assert job_queue.dispatches == [{
            "workflow_id": workflow.id,
            "trigger_id": trigger.id,
            "input": {"report": "daily"},
            "metadata": {"triggered_by": "schedule", "trigger_id": trigger.id},
        }]

        async with session_factory() as session:
            stored = await TriggerService(session).get_trigger(trigger.id)
            assert stored.trigger_count == 1
            assert stored.error_message is None
            next_run = stored.next_run_at.replace(tzinfo=timezone.utc)
            assert next_run > datetime.now(timezone.utc)

        # Already advanced, so a second poll finds nothing
        assert (await poll_due_schedules(session_factory, job_queue))["dispatched"] == 0
        assert len(job_queue.dispatches) == 1

    async def test_skips_disabled_workflow(self, session_factory, job_queue, make_workflow):
        workflow, _ = await make_workflow([WAIT_STEP])
        trigger = await add_trigger(session_factory, workflow.id, "schedule", config={"cron": "0 * * * *"})
        await make_due(session_factory, trigger.id)
        async with session_factory() as session:
            stored = await session.get(Workflow, workflow.id)
            stored.is_enabled = False
            await session.commit()

        result = await poll_due_schedules(session_factory, job_queue)

        assert result == {"dispatched": 0, "skipped": 1, "errors": 0}
        assert job_queue.dispatches == []
        async with session_factory() as session:
            stored = await TriggerService(session).get_trigger(trigger.id)
            assert stored.error_message == "Workflow not found or disabled"

    async def test_disabled_trigger_is_not_due(self, session_factory, job_queue, make_workflow):
        workflow, _ = await make_workflow([WAIT_STEP])
        trigger = await add_trigger(
            session_factory, workflow.id, "schedule", config={"cron": "0 * * * *"}, is_enabled=False
        )
        await make_due(session_factory, trigger.id)

        result = await poll_due_schedules(session_factory, job_queue)
        assert result["dispatched"] == 0
        assert job_queue.dispatches == []


@pytest.mark.integration
class TestCrashedExecution:

    async def _crash_after_claim(self, make_workflow, make_execution, make_engine):
        workflow, version = await make_workflow([WAIT_STEP])
        execution_id = await make_execution(workflow, version)
        engine = make_engine()

        async def broken_run(state):
            raise RuntimeError("worker lost its connection")

        engine._run = broken_run
        with pytest.raises(RuntimeError):
            await engine.execute(execution_id)
        return execution_id

    async def test_running_execution_is_marked_failed(
        self, session_factory, make_workflow, make_execution, make_engine
    ):
        execution_id = await self._crash_after_claim(make_workflow, make_execution, make_engine)
        async with session_factory() as session:
            assert await ExecutionService(session).get_status(execution_id) == "running"

        assert await mark_execution_crashed(session_factory, execution_id, "worker lost its connection", 1200)

        async with session_factory() as session:
            service = ExecutionService(session)
            execution = await service.get_execution(execution_id)
            assert execution.status == "failed"
            assert execution.error_message == "worker lost its connection"
            assert execution.completed_at is not None
            assert execution.duration_ms == 1200
            logs = await service.get_logs(execution_id)
            assert logs[-1].level == "error"
            assert logs[-1].message == "Workflow execution crashed: worker lost its connection"

    async def test_terminal_execution_is_left_alone(
        self, session_factory, make_workflow, make_execution, make_engine
    ):
        execution_id = await self._crash_after_claim(make_workflow, make_execution, make_engine)
        async with session_factory() as session:
            await ExecutionService(session).cancel_execution(execution_id)
            await session.commit()

        assert not await mark_execution_crashed(session_factory, execution_id, "late", 5)

        async with session_factory() as session:
            assert await ExecutionService(session).get_status(execution_id) == "cancelled"

    async def test_unknown_execution(self, session_factory):
        assert not await mark_execution_crashed(session_factory, "missing", "boom", 0)

    async def test_unpersisted_engine_failure_reaches_the_worker(
        self, session_factory, make_workflow, make_execution, make_engine, monkeypatch
    ):
        workflow, version = await make_workflow([WAIT_STEP])
        execution_id = await make_execution(workflow, version)

        async def unavailable(self, *args, **kwargs):
            raise ConnectionError("database unavailable")

        monkeypatch.setattr(ExecutionService, "finalize_execution", unavailable)
        with pytest.raises(ConnectionError):
            await make_engine().execute(execution_id)
        monkeypatch.undo()

        assert await mark_execution_crashed(session_factory, execution_id, "database unavailable", 10)
        async with session_factory() as session:
            assert await ExecutionService(session).get_status(execution_id) == "failed"
