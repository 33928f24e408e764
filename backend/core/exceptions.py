"""Custom exceptions for the workflow execution engine."""

from typing import Optional


class WorkflowEngineError(Exception):
    """Base exception for the workflow execution engine."""

    def __init__(self, message: str, status_code: int = 500):
        """Initialize exception with message and status code.

        Args:
            message: Exception message
            status_code: HTTP-style status code for the API layer
        """
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class NotFoundError(WorkflowEngineError):
    """Resource not found exception."""

    def __init__(self, message: str = "Resource not found"):
        """Initialize NotFoundError with 404 status code."""
        super().__init__(message, 404)


class PermissionDenied(WorkflowEngineError):
    """Access check failed."""

    def __init__(self, message: str = "Insufficient permissions"):
        """Initialize PermissionDenied with 403 status code."""
        super().__init__(message, 403)


class ValidationError(WorkflowEngineError):
    """Invalid workflow definition or request."""

    def __init__(self, message: str = "Validation failed", step_id: Optional[str] = None):
        """Initialize ValidationError with 422 status code."""
        self.step_id = step_id
        super().__init__(message, 422)


class ConflictError(WorkflowEngineError):
    """Resource conflict exception."""

    def __init__(self, message: str = "Resource conflict"):
        """Initialize ConflictError with 409 status code."""
        super().__init__(message, 409)


class InvalidStateTransition(WorkflowEngineError):
    """Pause/resume/cancel/approve called against an incompatible state."""

    def __init__(self, message: str = "Invalid state transition"):
        super().__init__(message, 409)


class DependencyNotMet(WorkflowEngineError):
    """Scheduler signal: a step's dependencies have not completed."""

    def __init__(self, step_id: str, missing: list[str]):
        self.step_id = step_id
        self.missing = missing
        super().__init__(
            f"Step '{step_id}' is waiting on: {', '.join(missing)}", 409
        )


class UnsupportedStepType(WorkflowEngineError):
    """No handler registered for a step type."""

    def __init__(self, step_type: str):
        self.step_type = step_type
        super().__init__(f"Unsupported step type: {step_type}", 400)


class StepExecutionError(WorkflowEngineError):
    """Handler-reported step failure. Retried up to the step's cap."""

    def __init__(self, message: str = "Step execution failed"):
        super().__init__(message, 500)


class ExecutionTimeout(WorkflowEngineError):
    """A step or an execution ran past its time budget."""

    def __init__(self, message: str = "Execution timed out"):
        super().__init__(message, 504)
