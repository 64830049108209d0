"""SMTP / email connector.

smtplib is blocking, so the send runs in the default executor.
"""

import asyncio
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid
from typing import Any, Callable, Optional

from connectors.base import BaseConnector, ConnectorAction, ConnectorError, CredentialStore
from runners.base_runner import StepResult
from workflow.context import ExecutionContext


def _recipients(value: Any) -> list[str]:
    if not value:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v).strip() for v in value if str(v).strip()]
    return [part.strip() for part in str(value).split(",") if part.strip()]


class SmtpConnector(BaseConnector):
    connector_type = "smtp"
    name = "SMTP / Email"
    description = "Send emails via SMTP"

    actions = [
        ConnectorAction(
            name="send_email",
            description="Send an email via SMTP",
            input_schema={
                "to": {"type": "string", "required": True, "description": "Recipient email address"},
                "subject": {"type": "string", "required": True},
                "text": {"type": "string", "required": False, "description": "Plain text body"},
                "html": {"type": "string", "required": False, "description": "HTML body"},
                "from": {"type": "string", "required": False, "description": "Sender (defaults to credential)"},
                "cc": {"type": "string", "required": False},
                "bcc": {"type": "string", "required": False},
            },
            output_schema={"message_id": {"type": "string"}, "response": {"type": "string"}},
        ),
    ]

    def __init__(
        self,
        credentials: Optional[CredentialStore] = None,
        smtp_factory: Callable[..., smtplib.SMTP] = smtplib.SMTP,
    ):
        super().__init__(credentials=credentials)
        self._smtp_factory = smtp_factory

    async def action_send_email(self, config: dict[str, Any], context: ExecutionContext) -> StepResult:
        if not config.get("credential_id"):
            raise ConnectorError("SMTP credential not configured")

        credentials = await self.get_credentials(config["credential_id"], context)
        if not credentials.get("host") or not credentials.get("port"):
            raise ConnectorError("SMTP host and port are required in credentials")

        from_addr = config.get("from") or credentials.get("from") or credentials.get("user")
        to = _recipients(config.get("to"))
        cc = _recipients(config.get("cc"))
        bcc = _recipients(config.get("bcc"))
        if not to:
            return StepResult.fail("Email recipient (to) is required", retryable=False)

        msg = MIMEMultipart("alternative")
        msg["Subject"] = config.get("subject") or ""
        msg["From"] = from_addr or ""
        msg["To"] = ", ".join(to)
        if cc:
            msg["Cc"] = ", ".join(cc)
        msg["Message-ID"] = make_msgid()
        if config.get("text"):
            msg.attach(MIMEText(config["text"], "plain"))
        if config.get("html"):
            msg.attach(MIMEText(config["html"], "html"))

        loop = asyncio.get_running_loop()
        refused = await loop.run_in_executor(
            None,
            lambda: self._send_smtp(credentials, from_addr, to + cc + bcc, msg),
        )

        accepted = len(to + cc + bcc) - len(refused)
        return StepResult.ok({
            "message_id": msg["Message-ID"],
            "response": f"{accepted} recipient(s) accepted",
            "rejected": sorted(refused),
        })

    def _send_smtp(self, credentials: dict[str, Any], from_addr: str, recipients: list[str], msg) -> dict:
        """Synchronous SMTP send; returns the refused-recipients map."""
        port = int(credentials["port"])
        secure = credentials.get("secure", True) is not False

        with self._smtp_factory(credentials["host"], port) as server:
            if secure:
                server.starttls()
            if credentials.get("user") and credentials.get("password"):
                server.login(credentials["user"], credentials["password"])
            return server.send_message(msg, from_addr=from_addr, to_addrs=recipients) or {}
