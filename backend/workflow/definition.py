"""Workflow definition schema.

A definition is what gets stored, immutably, on a WorkflowVersion:

    {
      "steps": [
        {"id": "s1", "name": "fetch", "type": "http_request",
         "config": {"url": "https://api.example.com/data"}, "position": 0},
        {"id": "s2", "name": "square", "type": "transform",
         "config": {"code": "return {'n': variables.fetch.data.n ** 2}"}}
      ],
      "settings": {"retry_policy": {"max_attempts": 5, "backoff_ms": 500}}
    }

Only the structure is validated here. Step configs may hold
``{{...}}`` templates and are parsed by their runner at run time.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from core.constants import StepType


class _DefinitionModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RetrySettings(_DefinitionModel):
    policy: str = "exponential"
    max_attempts: Optional[int] = Field(default=None, ge=1, le=20)
    backoff_ms: Optional[int] = Field(default=None, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)
    max_backoff_ms: Optional[int] = Field(default=None, ge=0)


class WorkflowSettings(_DefinitionModel):
    timeout_ms: Optional[int] = Field(default=None, gt=0)
    retry_policy: Optional[RetrySettings] = None


class StepDefinition(_DefinitionModel):
    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    type: StepType
    config: dict[str, Any] = Field(default_factory=dict)
    position: Optional[int] = None
    next_steps: list[str] = Field(default_factory=list)
    error_handler: Optional[str] = None


class WorkflowDefinition(_DefinitionModel):
    steps: list[StepDefinition] = Field(default_factory=list)
    settings: WorkflowSettings = Field(default_factory=WorkflowSettings)

    @model_validator(mode="after")
    def _check_steps(self) -> "WorkflowDefinition":
        seen: set[str] = set()
        for index, step in enumerate(self.steps):
            if step.id in seen:
                raise ValueError(f"Duplicate step id: {step.id}")
            seen.add(step.id)
            if step.position is None:
                step.position = index
        return self

    def ordered_steps(self) -> list[StepDefinition]:
        """Steps in execution order (position, then declaration order)."""
        return [
            step for _, step in sorted(
                enumerate(self.steps), key=lambda pair: (pair[1].position, pair[0])
            )
        ]
