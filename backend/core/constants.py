"""Constants and enums for the Stepflow workflow engine."""

from enum import Enum


class ExecutionStatus(str, Enum):
    """Workflow execution status."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {ExecutionStatus.COMPLETED, ExecutionStatus.FAILED, ExecutionStatus.CANCELLED}
)


class StepStatus(str, Enum):
    """Status of a single step record within an execution."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class StepType(str, Enum):
    """Closed set of step types a workflow definition may use."""

    HTTP_REQUEST = "http_request"
    TRANSFORM = "transform"
    CONDITIONAL = "conditional"
    LOOP = "loop"
    DELAY = "delay"
    ERROR_HANDLER = "error_handler"
    FALLBACK = "fallback"
    CUSTOM_CODE = "custom_code"
    CONNECTOR = "connector"


class TriggerType(str, Enum):
    """Workflow execution trigger type."""

    MANUAL = "manual"
    WEBHOOK = "webhook"
    SCHEDULE = "schedule"
    EVENT = "event"
    API = "api"


class LogLevel(str, Enum):
    """Log level for execution logs."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class ExecutionEvent(str, Enum):
    """Lifecycle events broadcast for an execution."""

    STARTED = "started"
    STEP_STARTED = "step_started"
    STEP_COMPLETED = "step_completed"
    STEP_FAILED = "step_failed"
    COMPLETED = "completed"
    FAILED = "failed"


class CodeLanguage(str, Enum):
    """Languages accepted by custom_code steps."""

    PYTHON = "python"
    JAVASCRIPT = "javascript"


class CredentialType(str, Enum):
    """Type of credential."""

    API_KEY = "api_key"
    BEARER = "bearer"
    BASIC = "basic"
    OAUTH2 = "oauth2"
    SMTP = "smtp"
    CUSTOM = "custom"
