"""Slack connector (Web API over httpx)."""

from typing import Any

from connectors.base import BaseConnector, ConnectorAction, ConnectorError
from runners.base_runner import StepResult
from workflow.context import ExecutionContext

SLACK_API_URL = "https://slack.com/api"


class SlackConnector(BaseConnector):
    connector_type = "slack"
    name = "Slack"
    description = "Send messages and interact with Slack workspaces"

    actions = [
        ConnectorAction(
            name="send_message",
            description="Send a message to a Slack channel",
            input_schema={
                "channel": {"type": "string", "required": True, "description": "Channel ID or name"},
                "text": {"type": "string", "required": True, "description": "Message text"},
                "blocks": {"type": "array", "required": False, "description": "Block Kit blocks"},
                "thread_ts": {"type": "string", "required": False, "description": "Thread timestamp"},
            },
            output_schema={"ts": {"type": "string"}, "channel": {"type": "string"}},
        ),
        ConnectorAction(
            name="update_message",
            description="Update an existing Slack message",
            input_schema={
                "channel": {"type": "string", "required": True},
                "ts": {"type": "string", "required": True},
                "text": {"type": "string", "required": True},
                "blocks": {"type": "array", "required": False},
            },
            output_schema={"ts": {"type": "string"}},
        ),
        ConnectorAction(
            name="add_reaction",
            description="Add an emoji reaction to a message",
            input_schema={
                "channel": {"type": "string", "required": True},
                "timestamp": {"type": "string", "required": True},
                "name": {"type": "string", "required": True, "description": "Emoji name without colons"},
            },
            output_schema={"ok": {"type": "boolean"}},
        ),
    ]

    async def _token(self, config: dict[str, Any], context: ExecutionContext) -> str:
        credential_id = config.get("credential_id")
        if not credential_id:
            raise ConnectorError("Slack credential not configured")
        credentials = await self.get_credentials(credential_id, context)
        token = credentials.get("bot_token") or credentials.get("access_token")
        if not token:
            raise ConnectorError("Slack bot token not found in credentials")
        return token

    async def _call(self, method: str, token: str, payload: dict[str, Any]) -> StepResult:
        body = {k: v for k, v in payload.items() if v is not None}
        async with self.http_client() as client:
            response = await client.post(
                f"{SLACK_API_URL}/{method}",
                json=body,
                headers={"Authorization": f"Bearer {token}"},
            )
        data = response.json()
        if not data.get("ok"):
            return StepResult.fail(f"Slack API error: {data.get('error', 'unknown_error')}")
        return StepResult.ok(data)

    async def action_send_message(self, config: dict[str, Any], context: ExecutionContext) -> StepResult:
        token = await self._token(config, context)
        return await self._call("chat.postMessage", token, {
            "channel": config.get("channel"),
            "text": config.get("text"),
            "blocks": config.get("blocks"),
            "thread_ts": config.get("thread_ts"),
        })

    async def action_update_message(self, config: dict[str, Any], context: ExecutionContext) -> StepResult:
        token = await self._token(config, context)
        return await self._call("chat.update", token, {
            "channel": config.get("channel"),
            "ts": config.get("ts"),
            "text": config.get("text"),
            "blocks": config.get("blocks"),
        })

    async def action_add_reaction(self, config: dict[str, Any], context: ExecutionContext) -> StepResult:
        token = await self._token(config, context)
        return await self._call("reactions.add", token, {
            "channel": config.get("channel"),
            "timestamp": config.get("timestamp"),
            "name": config.get("name"),
        })
