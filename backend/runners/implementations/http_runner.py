"""HTTP request step.

Every response, whatever its status code, is a successful call: the
status is part of the output for later steps to branch on. Only
transport failures (DNS, connect, timeout) fail the step.
"""

import ipaddress
from typing import Any, Optional
from urllib.parse import urlparse

import httpx
import structlog

from connectors.auth import apply_auth, join_base_url
from connectors.base import CredentialStore
from connectors.http import send_request
from core.constants import StepType
from runners.base_runner import BaseStepRunner, StepResult
from runners.configs import HttpRequestConfig
from workflow.context import ExecutionContext
from workflow.interpolation import get_value_by_path, interpolate

logger = structlog.get_logger(__name__)

FORBIDDEN_PORTS = (5432, 6379)


def _is_private_ip(ip_str: str) -> bool:
    try:
        ip = ipaddress.ip_address(ip_str)
    except ValueError:
        return False
    return ip.is_private or ip.is_loopback or ip.is_reserved or ip.is_link_local


def validate_url_safety(url: str) -> None:
    """Reject URLs that point at the worker's own network.

    Raises:
        ValueError: If the URL is not http(s), targets localhost, a
            private address literal, or a well-known internal port.
    """
    parsed = urlparse(url)
    if parsed.scheme.lower() not in ("http", "https"):
        raise ValueError(f"Unsupported scheme: {parsed.scheme or 'none'}. Only HTTP and HTTPS allowed.")

    hostname = parsed.hostname
    if not hostname:
        raise ValueError("URL must have a valid hostname")
    if hostname.lower() == "localhost" or _is_private_ip(hostname):
        raise ValueError(f"Connections to private address {hostname} are not allowed")
    if parsed.port in FORBIDDEN_PORTS:
        raise ValueError(f"Connections to internal port {parsed.port} are not allowed")


class HttpRequestRunner(BaseStepRunner):
    """Call an external HTTP endpoint.

    Config:
        url: Target URL, may contain {{...}} placeholders
        method: GET, POST, PUT, PATCH, DELETE (default GET)
        headers, params, body: interpolated before sending
        timeout: milliseconds (default 30000)
        credential_id: auth credential (bearer, basic or api_key; optional base_url)
        response_path: dotted path into the response to expose as ``mapped``
        response_mapping: template interpolated against ``{response: ...}``
    """

    step_type = StepType.HTTP_REQUEST
    display_name = "HTTP Request"
    description = "Make HTTP requests to APIs and web services"
    config_model = HttpRequestConfig

    def __init__(
        self,
        credentials: Optional[CredentialStore] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        default_timeout_ms: int = 30000,
        allow_private_networks: bool = False,
    ):
        self._credentials = credentials
        self._transport = transport
        self._default_timeout_ms = default_timeout_ms
        self._allow_private_networks = allow_private_networks

    async def execute(self, config: HttpRequestConfig, context: ExecutionContext) -> StepResult:
        # response_mapping is resolved against the response, not the context
        scope = context.template_context()
        url = str(interpolate(config.url, scope))
        headers: dict[str, Any] = dict(interpolate(config.headers, scope))
        params = interpolate(config.params, scope)
        body = interpolate(config.body, scope)

        if config.credential_id:
            if self._credentials is None:
                return StepResult.fail("No credential store configured", retryable=False)
            credentials = await self._credentials.get_decrypted_data(config.credential_id, context.user_id)
            headers = apply_auth(headers, credentials)
            url = join_base_url(credentials.get("base_url"), url)

        if not self._allow_private_networks:
            try:
                validate_url_safety(url)
            except ValueError as e:
                return StepResult.fail(str(e), metadata={"url": url}, retryable=False)

        method = config.method.upper()
        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                output, duration_ms = await send_request(
                    client,
                    method,
                    url,
                    headers=headers,
                    params=params,
                    body=body,
                    timeout_ms=config.timeout or self._default_timeout_ms,
                    follow_redirects=config.follow_redirects,
                )
        except httpx.TimeoutException as e:
            return StepResult.fail(
                f"Request timed out: {e}" if str(e) else "Request timed out",
                metadata={"code": "TIMEOUT", "url": url},
            )
        except httpx.ConnectError as e:
            return StepResult.fail(
                f"Connection failed: {e}",
                metadata={"code": "CONNECT_ERROR", "url": url},
            )
        except httpx.HTTPError as e:
            return StepResult.fail(
                str(e) or "HTTP request failed",
                metadata={"code": e.__class__.__name__, "url": url},
            )

        if config.response_path:
            output["mapped"] = get_value_by_path(output, config.response_path)
        elif config.response_mapping is not None:
            output["mapped"] = interpolate(config.response_mapping, {"response": output})

        logger.debug("HTTP step finished", url=url, method=method, status=output["status"])
        return StepResult.ok(
            output,
            metadata={"duration_ms": round(duration_ms, 2), "url": url, "method": method},
        )
