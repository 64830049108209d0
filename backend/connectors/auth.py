"""Authentication helpers shared by the HTTP connector and the http_request step."""

import base64
from typing import Any, Optional
from urllib.parse import urljoin


def apply_auth(headers: dict[str, Any], credentials: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of ``headers`` with auth derived from a decrypted credential.

    Supported credential shapes:
        {"type": "bearer", "token": "..."}
        {"type": "basic", "username": "...", "password": "..."}
        {"type": "api_key", "api_key": "...", "header": "X-API-Key"}
    """
    auth_headers = dict(headers or {})
    auth_type = credentials.get("type")

    if auth_type in ("bearer", "bearer_token") and credentials.get("token"):
        auth_headers["Authorization"] = f"Bearer {credentials['token']}"
    elif auth_type == "basic" and credentials.get("username") and credentials.get("password"):
        encoded = base64.b64encode(
            f"{credentials['username']}:{credentials['password']}".encode()
        ).decode()
        auth_headers["Authorization"] = f"Basic {encoded}"
    elif auth_type == "api_key":
        header_name = credentials.get("header") or credentials.get("header_name") or "X-API-Key"
        auth_headers[header_name] = credentials.get("api_key", "")

    return auth_headers


def join_base_url(base_url: Optional[str], url: str) -> str:
    """Resolve a relative step URL against a credential's base URL."""
    if not base_url or url.startswith(("http://", "https://")):
        return url
    return urljoin(base_url.rstrip("/") + "/", url.lstrip("/"))
