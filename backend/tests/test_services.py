"""Tests for the persistence services (workflows, executions, credentials, triggers)."""

from datetime import datetime, timedelta, timezone

import pytest

from core.exceptions import ConflictError, NotFoundError, ValidationError
from core.security import CredentialVault, generate_encryption_key
from db.models.credential import Credential
from services.credential_service import CredentialService, DatabaseCredentialStore
from services.execution_service import ExecutionService
from services.trigger_service import TriggerService, compute_next_run
from services.workflow_service import WorkflowService

WAIT_STEP = {"id": "s1", "name": "wait", "type": "delay", "config": {"milliseconds": 0}}


@pytest.mark.integration
class TestWorkflowService:

    async def test_versions_are_numbered(self, db_session):
        svc = WorkflowService(db_session)
        wf = await svc.create_workflow(name="Numbered")
        v1 = await svc.create_version(wf.id, {"steps": [WAIT_STEP]})
        v2 = await svc.create_version(wf.id, {"steps": [WAIT_STEP]})
        assert (v1.version, v2.version) == (1, 2)
        assert not v1.is_active
        assert [v.version for v in await svc.list_versions(wf.id)] == [1, 2]

    async def test_definition_is_validated(self, db_session):
        svc = WorkflowService(db_session)
        wf = await svc.create_workflow(name="Invalid")
        with pytest.raises(ValidationError) as exc:
            await svc.create_version(wf.id, {"steps": [WAIT_STEP, WAIT_STEP]})
        assert "Duplicate step id" in exc.value.message

        with pytest.raises(ValidationError):
            await svc.create_version(wf.id, {"steps": [{"id": "x", "name": "x", "type": "teleport"}]})

    async def test_version_for_unknown_workflow(self, db_session):
        with pytest.raises(NotFoundError):
            await WorkflowService(db_session).create_version("missing", {"steps": []})

    async def test_publish_keeps_a_single_active_version(self, db_session):
        svc = WorkflowService(db_session)
        wf = await svc.create_workflow(name="Publish")
        v1 = await svc.create_version(wf.id, {"steps": [WAIT_STEP]})
        v2 = await svc.create_version(wf.id, {"steps": [WAIT_STEP, {**WAIT_STEP, "id": "s2", "name": "again"}]})

        await svc.publish_version(wf.id, v1.id)
        assert (await svc.get_active_version(wf.id)).id == v1.id

        await svc.publish_version(wf.id, v2.id)
        await db_session.commit()

        active = await svc.get_active_version(wf.id)
        assert active.id == v2.id
        assert active.published_at is not None
        steps = await svc.get_steps(v2.id)
        assert [(s.step_key, s.position) for s in steps] == [("s1", 0), ("s2", 1)]

        await db_session.refresh(v1)
        assert v1.is_active is False

    async def test_publish_version_of_other_workflow(self, db_session):
        svc = WorkflowService(db_session)
        wf_a = await svc.create_workflow(name="A")
        wf_b = await svc.create_workflow(name="B")
        version = await svc.create_version(wf_a.id, {"steps": [WAIT_STEP]})
        with pytest.raises(NotFoundError):
            await svc.publish_version(wf_b.id, version.id)

    async def test_no_active_version(self, db_session):
        svc = WorkflowService(db_session)
        wf = await svc.create_workflow(name="Draft")
        await svc.create_version(wf.id, {"steps": [WAIT_STEP]})
        assert await svc.get_active_version(wf.id) is None


@pytest.mark.integration
class TestExecutionService:

    async def _execution(self, session_factory, make_workflow, make_execution):
        workflow, version = await make_workflow([WAIT_STEP])
        return await make_execution(workflow, version, input={"a": 1})

    async def test_claim_only_once(self, session_factory, make_workflow, make_execution):
        execution_id = await self._execution(session_factory, make_workflow, make_execution)
        async with session_factory() as session:
            svc = ExecutionService(session)
            assert await svc.claim_execution(execution_id) is True
            assert await svc.claim_execution(execution_id) is False
            assert await svc.get_status(execution_id) == "running"

    async def test_finalize_does_not_overwrite_terminal(self, session_factory, make_workflow, make_execution):
        execution_id = await self._execution(session_factory, make_workflow, make_execution)
        async with session_factory() as session:
            svc = ExecutionService(session)
            await svc.claim_execution(execution_id)
            assert await svc.finalize_execution(execution_id, "failed", duration_ms=5, error="boom")
            assert not await svc.finalize_execution(execution_id, "completed", duration_ms=6, output={"x": 1})
            await session.commit()

            data = await svc.to_public_dict(execution_id)
            assert data["status"] == "failed"
            assert data["error"] == "boom"
            assert data["output"] is None
            assert data["duration_ms"] == 5

    async def test_cancel(self, session_factory, make_workflow, make_execution):
        execution_id = await self._execution(session_factory, make_workflow, make_execution)
        async with session_factory() as session:
            svc = ExecutionService(session)
            execution = await svc.cancel_execution(execution_id)
            assert execution.status == "cancelled"
            assert execution.error_message == "Execution cancelled"
            with pytest.raises(ConflictError):
                await svc.cancel_execution(execution_id)
            logs = await svc.get_logs(execution_id)
            assert [(log.level, log.message) for log in logs] == [("warning", "Execution cancelled")]

    async def test_cancel_unknown(self, db_session):
        with pytest.raises(NotFoundError):
            await ExecutionService(db_session).cancel_execution("missing")

    async def test_list_filters(self, session_factory, make_workflow, make_execution):
        execution_id = await self._execution(session_factory, make_workflow, make_execution)
        async with session_factory() as session:
            svc = ExecutionService(session)
            items, total = await svc.list_executions(status="pending")
            assert total == 1 and items[0].id == execution_id
            _, total = await svc.list_executions(status="running")
            assert total == 0


@pytest.mark.integration
class TestCredentialService:

    async def test_encrypted_at_rest_and_decrypted_on_demand(self, db_session):
        svc = CredentialService(db_session)
        credential = await svc.create_credential("api", {"type": "bearer", "token": "s3cret"}, "bearer")
        assert "s3cret" not in credential.encrypted_value

        data = await svc.get_decrypted_data(credential.id, None)
        assert data == {"type": "bearer", "token": "s3cret"}
        await db_session.refresh(credential)
        assert credential.access_count == 1
        assert credential.last_accessed_at is not None

    async def test_owner_scoping(self, db_session):
        svc = CredentialService(db_session)
        credential = await svc.create_credential("mine", {"token": "x"}, owner_id="alice")
        assert await svc.get_decrypted_data(credential.id, "alice") == {"token": "x"}
        with pytest.raises(NotFoundError) as exc:
            await svc.get_decrypted_data(credential.id, "bob")
        assert exc.value.message == "Credential not found"

    async def test_missing_credential(self, db_session):
        with pytest.raises(NotFoundError):
            await CredentialService(db_session).get_decrypted_data("nope", None)

    async def test_wrong_key_cannot_decrypt(self, db_session):
        credential = await CredentialService(db_session).create_credential("k", {"token": "x"})
        other = CredentialService(db_session, vault=CredentialVault(generate_encryption_key()))
        with pytest.raises(ValueError):
            await other.get_decrypted_data(credential.id, None)

    async def test_database_store_records_access(self, session_factory):
        async with session_factory() as session:
            credential = await CredentialService(session).create_credential("k", {"token": "x"})
            await session.commit()

        store = DatabaseCredentialStore(session_factory)
        assert await store.get_decrypted_data(credential.id, None) == {"token": "x"}

        async with session_factory() as session:
            stored = await session.get(Credential, credential.id)
            assert stored.access_count == 1


@pytest.mark.integration
class TestTriggerService:

    def test_compute_next_run_utc(self):
        base = datetime(2026, 1, 1, 8, 0, tzinfo=timezone.utc)
        assert compute_next_run("0 9 * * *", "UTC", base) == datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc)

    def test_compute_next_run_in_timezone(self):
        base = datetime(2026, 1, 1, 8, 0, tzinfo=timezone.utc)  # 10:00 in Sofia
        assert compute_next_run("0 9 * * *", "Europe/Sofia", base) == datetime(2026, 1, 2, 7, 0, tzinfo=timezone.utc)

    def test_compute_next_run_rejects_bad_input(self):
        with pytest.raises(ValidationError):
            compute_next_run("not a cron")
        with pytest.raises(ValidationError):
            compute_next_run("0 9 * * *", "Mars/Olympus")

    async def test_schedule_trigger_gets_next_run(self, db_session):
        wf = await WorkflowService(db_session).create_workflow(name="Sched")
        trigger = await TriggerService(db_session).create_trigger(
            wf.id, "schedule", name="hourly", config={"cron": "0 * * * *"}
        )
        assert trigger.next_run_at is not None

    async def test_invalid_trigger_definitions(self, db_session):
        wf = await WorkflowService(db_session).create_workflow(name="Bad")
        svc = TriggerService(db_session)
        with pytest.raises(ValidationError):
            await svc.create_trigger(wf.id, "carrier_pigeon")
        with pytest.raises(ValidationError):
            await svc.create_trigger(wf.id, "schedule", config={"cron": "every tuesday"})

    async def test_due_schedules_and_mark_fired(self, db_session):
        wf = await WorkflowService(db_session).create_workflow(name="Due")
        svc = TriggerService(db_session)
        due = await svc.create_trigger(wf.id, "schedule", name="due", config={"cron": "*/5 * * * *"})
        await svc.create_trigger(wf.id, "schedule", name="later", config={"cron": "*/5 * * * *"})
        await svc.create_trigger(wf.id, "webhook", name="hook")
        due.next_run_at = datetime.now(timezone.utc) - timedelta(minutes=1)
        await db_session.flush()

        found = await svc.get_due_schedules()
        assert [t.name for t in found] == ["due"]

        await svc.mark_fired(found[0])
        assert found[0].trigger_count == 1
        assert found[0].last_triggered_at is not None
        assert await svc.get_due_schedules() == []

    async def test_update_and_delete(self, db_session):
        wf = await WorkflowService(db_session).create_workflow(name="Crud")
        svc = TriggerService(db_session)
        trigger = await svc.create_trigger(wf.id, "webhook", name="hook")
        updated = await svc.update_trigger(trigger.id, is_enabled=False)
        assert updated.is_enabled is False
        await svc.delete_trigger(trigger.id)
        with pytest.raises(NotFoundError):
            await svc.get_trigger(trigger.id)
