"""Generic HTTP connector and the request helper shared with the http_request step."""

import json
import time
from typing import Any, Optional

import httpx

from connectors.auth import apply_auth, join_base_url
from connectors.base import BaseConnector, ConnectorAction
from runners.base_runner import StepResult
from workflow.context import ExecutionContext

DEFAULT_TIMEOUT_MS = 30000


def _parse_body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return response.text


async def send_request(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    headers: Optional[dict[str, Any]] = None,
    params: Optional[dict[str, Any]] = None,
    body: Any = None,
    timeout_ms: Optional[int] = None,
    follow_redirects: bool = True,
) -> tuple[dict[str, Any], float]:
    """Issue one request and return ``(output, duration_ms)``.

    Any status code is a completed call; only transport errors raise.
    Dict and list bodies go out as JSON, anything else as raw content.
    """
    kwargs: dict[str, Any] = {
        "headers": {k: str(v) for k, v in (headers or {}).items() if v is not None},
        "params": params or None,
        "timeout": (timeout_ms or DEFAULT_TIMEOUT_MS) / 1000,
        "follow_redirects": follow_redirects,
    }
    if body is not None and method.upper() not in ("GET", "HEAD"):
        if isinstance(body, (dict, list)):
            kwargs["json"] = body
        else:
            kwargs["content"] = str(body)

    start = time.monotonic()
    response = await client.request(method.upper(), url, **kwargs)
    duration_ms = (time.monotonic() - start) * 1000

    output = {
        "status": response.status_code,
        "status_text": response.reason_phrase,
        "headers": dict(response.headers),
        "data": _parse_body(response),
    }
    return output, duration_ms


class HttpConnector(BaseConnector):
    connector_type = "http"
    name = "HTTP"
    description = "Make HTTP requests with optional authentication"

    actions = [
        ConnectorAction(
            name="request",
            description="Make an HTTP request",
            input_schema={
                "method": {"type": "string", "required": True, "description": "HTTP method (GET, POST, etc.)"},
                "url": {"type": "string", "required": True},
                "headers": {"type": "object", "required": False},
                "body": {"type": "object", "required": False},
                "params": {"type": "object", "required": False, "description": "Query parameters"},
                "timeout": {"type": "number", "required": False, "description": "Request timeout in ms"},
            },
            output_schema={
                "status": {"type": "number"},
                "headers": {"type": "object"},
                "data": {"type": "any"},
            },
        ),
    ]

    async def action_request(self, config: dict[str, Any], context: ExecutionContext) -> StepResult:
        url = config.get("url")
        if not url:
            return StepResult.fail("HTTP request url is required", retryable=False)

        headers = dict(config.get("headers") or {})
        if config.get("credential_id"):
            credentials = await self.get_credentials(config["credential_id"], context)
            headers = apply_auth(headers, credentials)
            url = join_base_url(credentials.get("base_url"), url)

        method = (config.get("method") or "GET").upper()
        async with self.http_client() as client:
            output, duration_ms = await send_request(
                client,
                method,
                url,
                headers=headers,
                params=config.get("params"),
                body=config.get("body"),
                timeout_ms=config.get("timeout"),
            )

        return StepResult.ok(output, metadata={"duration": round(duration_ms, 2), "url": url, "method": method})
