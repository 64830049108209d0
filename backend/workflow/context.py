"""Per-execution working state shared between the engine and step runners."""

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class ExecutionContext:
    """Mutable working set for one execution.

    ``input`` is fixed for the whole run. ``variables`` maps step name
    to that step's output and is only written by the engine after a
    step succeeds. The context itself is never persisted; its
    ``variables`` snapshot becomes the execution output.
    """

    execution_id: str
    workflow_id: str
    version_id: str
    input: Any = field(default_factory=dict)
    variables: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    user_id: Optional[str] = None

    def template_context(self) -> dict[str, Any]:
        """Names visible to ``{{...}}`` placeholders and conditions."""
        return {
            "input": self.input,
            "variables": self.variables,
            "metadata": self.metadata,
        }
