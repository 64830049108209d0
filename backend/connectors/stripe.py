"""Stripe connector, calling the REST API directly over httpx.

Stripe expects form-encoded bodies with bracketed keys for nested maps
(``metadata[order_id]=42``).
"""

from typing import Any

from connectors.base import BaseConnector, ConnectorAction, ConnectorError
from runners.base_runner import StepResult
from workflow.context import ExecutionContext

STRIPE_API_URL = "https://api.stripe.com/v1"
STRIPE_API_VERSION = "2023-10-16"


def _form_encode(params: dict[str, Any], prefix: str = "") -> dict[str, str]:
    encoded: dict[str, str] = {}
    for key, value in params.items():
        if value is None:
            continue
        name = f"{prefix}[{key}]" if prefix else key
        if isinstance(value, dict):
            encoded.update(_form_encode(value, name))
        elif isinstance(value, bool):
            encoded[name] = "true" if value else "false"
        else:
            encoded[name] = str(value)
    return encoded


class StripeConnector(BaseConnector):
    connector_type = "stripe"
    name = "Stripe"
    description = "Interact with the Stripe payment platform"

    actions = [
        ConnectorAction(
            name="create_customer",
            description="Create a new Stripe customer",
            input_schema={
                "email": {"type": "string", "required": True},
                "name": {"type": "string", "required": False},
                "description": {"type": "string", "required": False},
                "metadata": {"type": "object", "required": False},
            },
            output_schema={"id": {"type": "string"}, "email": {"type": "string"}},
        ),
        ConnectorAction(
            name="create_invoice",
            description="Create a Stripe invoice",
            input_schema={
                "customer": {"type": "string", "required": True, "description": "Customer ID"},
                "description": {"type": "string", "required": False},
                "metadata": {"type": "object", "required": False},
                "auto_advance": {"type": "boolean", "required": False},
            },
            output_schema={"id": {"type": "string"}, "status": {"type": "string"}},
        ),
        ConnectorAction(
            name="create_invoice_item",
            description="Add an item to a Stripe invoice",
            input_schema={
                "customer": {"type": "string", "required": True},
                "amount": {"type": "number", "required": True},
                "currency": {"type": "string", "required": True},
                "description": {"type": "string", "required": False},
                "invoice": {"type": "string", "required": False},
            },
            output_schema={"id": {"type": "string"}, "amount": {"type": "number"}},
        ),
        ConnectorAction(
            name="create_payment_intent",
            description="Create a Stripe payment intent",
            input_schema={
                "amount": {"type": "number", "required": True},
                "currency": {"type": "string", "required": True},
                "customer": {"type": "string", "required": False},
                "description": {"type": "string", "required": False},
                "metadata": {"type": "object", "required": False},
            },
            output_schema={
                "id": {"type": "string"},
                "client_secret": {"type": "string"},
                "status": {"type": "string"},
            },
        ),
        ConnectorAction(
            name="retrieve_customer",
            description="Retrieve a Stripe customer",
            input_schema={"customer_id": {"type": "string", "required": True}},
            output_schema={"id": {"type": "string"}, "email": {"type": "string"}},
        ),
    ]

    async def execute(self, action: str, config: dict[str, Any], context: ExecutionContext) -> StepResult:
        if action in self.action_names() and not config.get("credential_id"):
            return StepResult.fail("Stripe credential not configured", retryable=False)
        return await super().execute(action, config, context)

    async def _request(
        self,
        method: str,
        path: str,
        config: dict[str, Any],
        context: ExecutionContext,
        params: dict[str, Any] = None,
    ) -> StepResult:
        credentials = await self.get_credentials(config["credential_id"], context)
        api_key = credentials.get("secret_key") or credentials.get("api_key")
        if not api_key:
            raise ConnectorError("Stripe API key not found in credentials")

        async with self.http_client() as client:
            response = await client.request(
                method,
                f"{STRIPE_API_URL}{path}",
                data=_form_encode(params or {}) if method == "POST" else None,
                headers={
                    "Authorization": f"Bearer {api_key}",
                    "Stripe-Version": STRIPE_API_VERSION,
                },
            )

        data = response.json()
        if response.status_code >= 400:
            message = (data.get("error") or {}).get("message") or f"HTTP {response.status_code}"
            return StepResult.fail(f"Stripe API error: {message}", metadata={"status": response.status_code})
        return StepResult.ok(data)

    async def action_create_customer(self, config: dict[str, Any], context: ExecutionContext) -> StepResult:
        return await self._request("POST", "/customers", config, context, {
            "email": config.get("email"),
            "name": config.get("name"),
            "description": config.get("description"),
            "metadata": config.get("metadata"),
        })

    async def action_create_invoice(self, config: dict[str, Any], context: ExecutionContext) -> StepResult:
        return await self._request("POST", "/invoices", config, context, {
            "customer": config.get("customer"),
            "description": config.get("description"),
            "metadata": config.get("metadata"),
            "auto_advance": config.get("auto_advance"),
        })

    async def action_create_invoice_item(self, config: dict[str, Any], context: ExecutionContext) -> StepResult:
        return await self._request("POST", "/invoiceitems", config, context, {
            "customer": config.get("customer"),
            "amount": config.get("amount"),
            "currency": config.get("currency"),
            "description": config.get("description"),
            "invoice": config.get("invoice"),
        })

    async def action_create_payment_intent(self, config: dict[str, Any], context: ExecutionContext) -> StepResult:
        return await self._request("POST", "/payment_intents", config, context, {
            "amount": config.get("amount"),
            "currency": config.get("currency"),
            "customer": config.get("customer"),
            "description": config.get("description"),
            "metadata": config.get("metadata"),
        })

    async def action_retrieve_customer(self, config: dict[str, Any], context: ExecutionContext) -> StepResult:
        return await self._request("GET", f"/customers/{config.get('customer_id')}", config, context)
