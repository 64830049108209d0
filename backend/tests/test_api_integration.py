"""Integration tests for API endpoints.

These tests exercise the full HTTP stack: FastAPI → route → service → DB.
Jobs land in a recording queue instead of Celery.
"""

import json

import pytest

from api.websockets.connection_manager import ConnectionManager
from worker.tasks.dispatch import dispatch
from workflow.events import RedisEventRelay

DEFINITION = {
    "steps": [
        {"id": "s1", "name": "double", "type": "transform", "config": {"code": "return input.n * 2"}},
    ],
}


async def create_workflow(client, **fields):
    resp = await client.post("/api/v1/workflows/", json={"name": "Orders", **fields})
    assert resp.status_code == 201, resp.text
    return resp.json()


async def create_published_workflow(client):
    workflow = await create_workflow(client)
    resp = await client.post(f"/api/v1/workflows/{workflow['id']}/versions", json={"definition": DEFINITION})
    version = resp.json()
    resp = await client.post(f"/api/v1/workflows/{workflow['id']}/versions/{version['id']}/publish")
    assert resp.status_code == 200, resp.text
    return workflow, resp.json()


# ─── Workflows ───

@pytest.mark.integration
class TestWorkflowEndpoints:

    async def test_create_and_get(self, client):
        workflow = await create_workflow(client, description="nightly", retry_max_attempts=5)
        assert workflow["retry_max_attempts"] == 5
        assert workflow["is_enabled"] is True

        resp = await client.get(f"/api/v1/workflows/{workflow['id']}")
        assert resp.status_code == 200
        assert resp.json()["description"] == "nightly"

    async def test_unknown_workflow_is_404(self, client):
        resp = await client.get("/api/v1/workflows/missing")
        assert resp.status_code == 404
        assert resp.json()["detail"] == "Workflow missing not found"

    async def test_retry_attempts_are_bounded(self, client):
        resp = await client.post("/api/v1/workflows/", json={"name": "x", "retry_max_attempts": 50})
        assert resp.status_code == 422

    async def test_versions_and_publish(self, client):
        workflow, published = await create_published_workflow(client)
        assert published["is_active"] is True
        assert published["version"] == 1

        resp = await client.post(f"/api/v1/workflows/{workflow['id']}/versions", json={"definition": DEFINITION})
        assert resp.json()["version"] == 2
        assert resp.json()["is_active"] is False

        resp = await client.get(f"/api/v1/workflows/{workflow['id']}/versions")
        data = resp.json()
        assert data["total"] == 2
        assert [v["is_active"] for v in data["versions"]] == [True, False]

    async def test_invalid_definition_is_rejected(self, client):
        workflow = await create_workflow(client)
        resp = await client.post(
            f"/api/v1/workflows/{workflow['id']}/versions",
            json={"definition": {"steps": [{"id": "s1", "name": "x", "type": "teleport"}]}},
        )
        assert resp.status_code == 422
        assert resp.json()["detail"].startswith("Invalid workflow definition")

    async def test_execute_queues_dispatch(self, client, job_queue):
        workflow, _ = await create_published_workflow(client)

        resp = await client.post(
            f"/api/v1/workflows/{workflow['id']}/execute",
            json={"input": {"n": 21}, "metadata": {"source": "ui"}},
        )

        assert resp.status_code == 202
        body = resp.json()
        assert body == {"workflow_id": workflow["id"], "job_id": "dispatch-1", "status": "queued"}
        assert job_queue.dispatches == [{
            "workflow_id": workflow["id"],
            "trigger_id": None,
            "input": {"n": 21},
            "metadata": {"source": "ui", "triggered_by": "manual"},
        }]

    async def test_execute_without_published_version(self, client, job_queue):
        workflow = await create_workflow(client)
        resp = await client.post(f"/api/v1/workflows/{workflow['id']}/execute", json={})
        assert resp.status_code == 409
        assert job_queue.dispatches == []


# ─── Executions ───

@pytest.mark.integration
class TestExecutionEndpoints:

    async def test_manual_run_end_to_end(self, client, job_queue, session_factory, make_engine):
        workflow, version = await create_published_workflow(client)
        await client.post(f"/api/v1/workflows/{workflow['id']}/execute", json={"input": {"n": 21}})

        execution_id = await dispatch(session_factory, job_queue, **job_queue.dispatches[0])
        resp = await client.get(f"/api/v1/executions/{execution_id}")
        assert resp.json()["status"] == "pending"
        assert resp.json()["workflow_version_id"] == version["id"]

        await make_engine().execute(execution_id)

        resp = await client.get(f"/api/v1/executions/{execution_id}")
        data = resp.json()
        assert data["status"] == "completed"
        assert data["output"] == {"double": 42}
        assert data["trigger_type"] == "manual"
        assert [s["status"] for s in data["steps"]] == ["completed"]
        assert data["logs"][0]["message"] == "Workflow execution started"

    async def test_list_and_cancel(self, client, job_queue, session_factory):
        workflow, _ = await create_published_workflow(client)
        execution_id = await dispatch(session_factory, job_queue, workflow["id"])

        resp = await client.get("/api/v1/executions/", params={"workflow_id": workflow["id"]})
        data = resp.json()
        assert data["total"] == 1
        assert data["executions"][0]["id"] == execution_id

        resp = await client.post(f"/api/v1/executions/{execution_id}/cancel")
        assert resp.status_code == 200
        assert resp.json()["status"] == "cancelled"

        resp = await client.post(f"/api/v1/executions/{execution_id}/cancel")
        assert resp.status_code == 409

        resp = await client.get("/api/v1/executions/", params={"status": "pending"})
        assert resp.json()["total"] == 0

    async def test_unknown_execution(self, client):
        resp = await client.get("/api/v1/executions/nope")
        assert resp.status_code == 404


# ─── Triggers & webhooks ───

@pytest.mark.integration
class TestTriggerEndpoints:

    async def test_crud(self, client):
        workflow = await create_workflow(client)
        resp = await client.post("/api/v1/triggers/", json={
            "workflow_id": workflow["id"],
            "trigger_type": "schedule",
            "name": "morning",
            "config": {"cron": "0 9 * * *", "timezone": "Europe/Sofia"},
        })
        assert resp.status_code == 201, resp.text
        trigger = resp.json()
        assert trigger["next_run_at"] is not None

        resp = await client.put(f"/api/v1/triggers/{trigger['id']}", json={"is_enabled": False})
        assert resp.json()["is_enabled"] is False

        resp = await client.get("/api/v1/triggers/", params={"workflow_id": workflow["id"]})
        assert [t["name"] for t in resp.json()] == ["morning"]

        resp = await client.delete(f"/api/v1/triggers/{trigger['id']}")
        assert resp.status_code == 204
        resp = await client.get(f"/api/v1/triggers/{trigger['id']}")
        assert resp.status_code == 404

    async def test_invalid_cron(self, client):
        workflow = await create_workflow(client)
        resp = await client.post("/api/v1/triggers/", json={
            "workflow_id": workflow["id"], "trigger_type": "schedule", "config": {"cron": "whenever"},
        })
        assert resp.status_code == 422

    async def test_trigger_for_unknown_workflow(self, client):
        resp = await client.post("/api/v1/triggers/", json={"workflow_id": "ghost", "trigger_type": "webhook"})
        assert resp.status_code == 404

    async def _webhook(self, client, **fields):
        workflow, _ = await create_published_workflow(client)
        resp = await client.post("/api/v1/triggers/", json={
            "workflow_id": workflow["id"], "trigger_type": "webhook", "name": "hook", **fields,
        })
        return workflow, resp.json()

    async def test_webhook_fires(self, client, job_queue):
        workflow, trigger = await self._webhook(client)

        resp = await client.post(f"/api/v1/webhooks/{trigger['id']}", json={"order": 5})

        assert resp.status_code == 202
        assert resp.json()["workflow_id"] == workflow["id"]
        assert job_queue.dispatches[0]["input"] == {"order": 5}
        assert job_queue.dispatches[0]["metadata"] == {"triggered_by": "webhook", "trigger_id": trigger["id"]}

        resp = await client.get(f"/api/v1/triggers/{trigger['id']}")
        assert resp.json()["trigger_count"] == 1

    async def test_webhook_text_body(self, client, job_queue):
        _, trigger = await self._webhook(client)
        await client.post(
            f"/api/v1/webhooks/{trigger['id']}", content=b"plain text", headers={"Content-Type": "text/plain"}
        )
        assert job_queue.dispatches[0]["input"] == {"body": "plain text"}

    async def test_webhook_rejections(self, client, job_queue):
        resp = await client.post("/api/v1/webhooks/unknown", json={})
        assert resp.status_code == 404

        workflow = await create_workflow(client)
        schedule = (await client.post("/api/v1/triggers/", json={
            "workflow_id": workflow["id"], "trigger_type": "schedule", "config": {"cron": "0 * * * *"},
        })).json()
        resp = await client.post(f"/api/v1/webhooks/{schedule['id']}", json={})
        assert resp.status_code == 400

        _, disabled = await self._webhook(client, is_enabled=False)
        resp = await client.post(f"/api/v1/webhooks/{disabled['id']}", json={})
        assert resp.status_code == 403
        assert job_queue.dispatches == []


# ─── Credentials ───

@pytest.mark.integration
class TestCredentialEndpoints:

    async def test_secret_never_returned(self, client, session_factory):
        resp = await client.post("/api/v1/credentials/", json={
            "name": "slack bot", "credential_type": "bearer", "data": {"token": "xoxb-secret"},
        })
        assert resp.status_code == 201
        assert "xoxb-secret" not in resp.text
        assert "data" not in resp.json()

        resp = await client.get("/api/v1/credentials/")
        assert [c["name"] for c in resp.json()] == ["slack bot"]
        assert "xoxb-secret" not in resp.text

    async def test_unsupported_type(self, client):
        resp = await client.post("/api/v1/credentials/", json={
            "name": "x", "credential_type": "carrier_pigeon", "data": {},
        })
        assert resp.status_code == 422


# ─── Real-time events ───

class FakeWebSocket:
    def __init__(self, fail=False):
        self.sent = []
        self.accepted = False
        self.fail = fail

    async def accept(self):
        self.accepted = True

    async def send_text(self, text):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(json.loads(text))


@pytest.mark.unit
class TestEventRelay:

    async def test_relay_forwards_to_room(self):
        manager = ConnectionManager()
        ws, other = FakeWebSocket(), FakeWebSocket()
        await manager.connect(ws, "ex-1")
        await manager.connect(other, "ex-2")
        relay = RedisEventRelay("redis://localhost:6379/0", manager)

        message = json.dumps({"event": "step_completed", "data": {"execution_id": "ex-1", "step_name": "a"}})
        await relay.handle_message(b"execution:ex-1", message.encode())

        assert ws.sent == [{"event": "step_completed", "data": {"execution_id": "ex-1", "step_name": "a"}}]
        assert other.sent == []

    async def test_malformed_message_is_dropped(self):
        manager = ConnectionManager()
        ws = FakeWebSocket()
        await manager.connect(ws, "ex-1")
        await RedisEventRelay("redis://localhost:6379/0", manager).handle_message("execution:ex-1", "{not json")
        assert ws.sent == []

    async def test_broken_socket_is_removed(self):
        manager = ConnectionManager()
        await manager.connect(FakeWebSocket(fail=True), "ex-1")
        await manager.emit("ex-1", "completed", {"execution_id": "ex-1"})
        assert manager.subscriber_count("ex-1") == 0

    async def test_disconnect_leaves_every_room(self):
        manager = ConnectionManager()
        ws = FakeWebSocket()
        await manager.connect(ws, "ex-1")
        manager.subscribe(ws, "ex-2")
        manager.disconnect(ws)
        assert manager.rooms == {}
