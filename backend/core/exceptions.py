"""Custom exceptions for the Stepflow workflow engine."""


class EngineException(Exception):
    """Base exception for the workflow engine."""

    def __init__(self, message: str, status_code: int = 500):
        """Initialize exception with message and status code.

        Args:
            message: Exception message
            status_code: HTTP status code
        """
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class NotFoundError(EngineException):
    """Resource not found exception."""

    def __init__(self, message: str = "Resource not found"):
        """Initialize NotFoundError with 404 status code."""
        super().__init__(message, 404)


class ValidationError(EngineException):
    """Validation error exception."""

    def __init__(self, message: str = "Validation failed"):
        """Initialize ValidationError with 422 status code."""
        super().__init__(message, 422)


class ConflictError(EngineException):
    """Resource conflict exception."""

    def __init__(self, message: str = "Resource conflict"):
        """Initialize ConflictError with 409 status code."""
        super().__init__(message, 409)


class StepConfigurationError(EngineException):
    """A step cannot run because its type or config is invalid.

    Never retried: the same config fails the same way every time.
    """

    def __init__(self, message: str):
        super().__init__(message, 422)


class ExecutionAbortedError(EngineException):
    """Raised inside the executor to stop a run and mark it failed."""

    def __init__(self, message: str):
        super().__init__(message, 500)
