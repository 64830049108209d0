"""Typed configuration models, one per step type.

Step configs are stored as open JSON maps; each runner parses its map
into one of these models before running. Keys are accepted in
snake_case or camelCase (``input_mapping`` / ``inputMapping``).
"""

from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class StepConfig(BaseModel):
    """Base for all step configs."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    @property
    def action_args(self) -> dict[str, Any]:
        """Keys not declared on the model (connector action arguments)."""
        return dict(self.model_extra or {})


class HttpRequestConfig(StepConfig):
    url: str
    method: str = "GET"
    headers: dict[str, Any] = Field(default_factory=dict)
    params: dict[str, Any] = Field(default_factory=dict)
    body: Any = None
    timeout: Optional[int] = Field(default=None, gt=0, description="Timeout in ms")
    credential_id: Optional[str] = None
    follow_redirects: bool = True
    response_path: Optional[str] = None
    response_mapping: Optional[Any] = None


class TransformConfig(StepConfig):
    code: str
    input_mapping: Optional[Any] = None
    output_mapping: Optional[Any] = None
    timeout: Optional[int] = Field(default=None, gt=0, description="Timeout in ms")


class ConditionalConfig(StepConfig):
    condition: Union[str, bool]
    true_steps: list[str] = Field(default_factory=list)
    false_steps: list[str] = Field(default_factory=list)


class LoopConfig(StepConfig):
    items: Any
    max_iterations: Optional[int] = Field(default=None, ge=0)
    step_id: Optional[str] = None
    parallel: bool = False


class DelayConfig(StepConfig):
    milliseconds: float


class CustomCodeConfig(StepConfig):
    language: str
    code: str
    timeout: Optional[int] = Field(default=None, gt=0, description="Timeout in ms")


class ConnectorStepConfig(StepConfig):
    connector_type: str
    action: str
    credential_id: Optional[str] = None
