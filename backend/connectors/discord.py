"""Discord connector: bot API messages and incoming webhooks."""

from typing import Any

from connectors.base import BaseConnector, ConnectorAction, ConnectorError
from runners.base_runner import StepResult
from workflow.context import ExecutionContext

DISCORD_API_URL = "https://discord.com/api/v10"


class DiscordConnector(BaseConnector):
    connector_type = "discord"
    name = "Discord"
    description = "Send messages to Discord channels"

    actions = [
        ConnectorAction(
            name="send_message",
            description="Send a message to a Discord channel",
            input_schema={
                "channel_id": {"type": "string", "required": True, "description": "Discord channel ID"},
                "content": {"type": "string", "required": False},
                "embeds": {"type": "array", "required": False, "description": "Rich embeds"},
            },
            output_schema={"id": {"type": "string"}, "channel_id": {"type": "string"}},
        ),
        ConnectorAction(
            name="send_webhook",
            description="Send a message via Discord webhook",
            input_schema={
                "webhook_url": {"type": "string", "required": True},
                "content": {"type": "string", "required": False},
                "embeds": {"type": "array", "required": False},
                "username": {"type": "string", "required": False},
                "avatar_url": {"type": "string", "required": False},
            },
            output_schema={"success": {"type": "boolean"}},
        ),
        ConnectorAction(
            name="edit_message",
            description="Edit a Discord message",
            input_schema={
                "channel_id": {"type": "string", "required": True},
                "message_id": {"type": "string", "required": True},
                "content": {"type": "string", "required": False},
                "embeds": {"type": "array", "required": False},
            },
            output_schema={"id": {"type": "string"}},
        ),
    ]

    async def _bot_headers(self, config: dict[str, Any], context: ExecutionContext) -> dict[str, str]:
        credentials: dict[str, Any] = {}
        if config.get("credential_id"):
            credentials = await self.get_credentials(config["credential_id"], context)
        if not credentials.get("bot_token"):
            raise ConnectorError("Discord bot token not found in credentials")
        return {"Authorization": f"Bot {credentials['bot_token']}"}

    @staticmethod
    def _message_body(config: dict[str, Any]) -> dict[str, Any]:
        return {"content": config.get("content"), "embeds": config.get("embeds")}

    async def action_send_message(self, config: dict[str, Any], context: ExecutionContext) -> StepResult:
        headers = await self._bot_headers(config, context)
        async with self.http_client() as client:
            response = await client.post(
                f"{DISCORD_API_URL}/channels/{config.get('channel_id')}/messages",
                json=self._message_body(config),
                headers=headers,
            )
            response.raise_for_status()
        return StepResult.ok(response.json())

    async def action_send_webhook(self, config: dict[str, Any], context: ExecutionContext) -> StepResult:
        webhook_url = config.get("webhook_url")
        if not webhook_url:
            return StepResult.fail("Discord webhook URL is required", retryable=False)

        body = {
            **self._message_body(config),
            "username": config.get("username"),
            "avatar_url": config.get("avatar_url"),
        }
        async with self.http_client() as client:
            response = await client.post(webhook_url, json=body)
            response.raise_for_status()
        return StepResult.ok({"success": True})

    async def action_edit_message(self, config: dict[str, Any], context: ExecutionContext) -> StepResult:
        headers = await self._bot_headers(config, context)
        async with self.http_client() as client:
            response = await client.patch(
                f"{DISCORD_API_URL}/channels/{config.get('channel_id')}/messages/{config.get('message_id')}",
                json=self._message_body(config),
                headers=headers,
            )
            response.raise_for_status()
        return StepResult.ok(response.json())
