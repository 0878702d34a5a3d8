"""Custom exceptions for resflow.

All custom exceptions inherit from ResflowError. Each exception type carries a
unique error code plus optional structured details, so the HTTP surface, the
CLI and the scheduler can report failures the same way.

Error taxonomy for the workflow runtime:

- ConfigurationError: a node lacks required input (no predecessor output and
  no literal config value). Reported as that node's ``error`` status.
- InvocationError: the external tool call failed (network, non-success
  response, malformed payload).
- ToolTimeoutError: a tool call outlived the per-call timeout.
- ExecutionError: anything unexpected raised while executing a node;
  built with ``ExecutionError.from_exception``.
- TopologyError: the graph cannot be run (empty, no entry point, cycle) or a
  workflow document failed schema validation on load. The graph is left
  unchanged.
"""

from typing import Any, Optional, Dict, TypeVar, Type

E = TypeVar("E", bound="ResflowError")


class ResflowError(Exception):
    """
    Base error for resflow.

    Args:
        message: Human-readable error message.
        code: Unique error code for programmatic handling.
        details: Optional structured data for debugging or client use.
    """

    error_code: str = "resflow.error"

    def __init__(
        self: "ResflowError",
        message: Optional[str] = None,
        *,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message: str = message or self.__class__.__doc__ or "resflow error"
        self.code: str = code or self.error_code
        self.details: Dict[str, Any] = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the exception for logging or API responses."""
        return {
            "error": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }

    @classmethod
    def from_exception(cls: Type[E], exc: Exception, *, code: Optional[str] = None, details: Optional[Dict[str, Any]] = None) -> E:
        """
        Wrap an arbitrary exception as a ResflowError subclass.
        Preserves the original message and attaches the original exception as detail.
        """
        return cls(
            message=str(exc) or exc.__class__.__name__,
            code=code,
            details={**(details or {}), "original_exception": repr(exc)},
        )


class ValidationError(ResflowError):
    """Raised when parameter or payload validation fails."""
    error_code: str = "resflow.validation_error"


class NotFoundError(ResflowError):
    """Raised when a node, edge or preset is not found."""
    error_code: str = "resflow.not_found"


class ConflictError(ResflowError):
    """Raised when an operation conflicts with the current graph or run state."""
    error_code: str = "resflow.conflict_error"


class ConfigurationError(ResflowError):
    """Raised when a node has neither predecessor output nor a literal input."""
    error_code: str = "resflow.configuration_error"


class InvocationError(ResflowError):
    """Raised when an external tool invocation fails."""
    error_code: str = "resflow.invocation_error"


class TopologyError(ResflowError):
    """Raised when the workflow graph cannot be scheduled."""
    error_code: str = "resflow.topology_error"


class WorkflowDocumentError(TopologyError):
    """Raised when a persisted workflow document fails schema validation."""
    error_code: str = "resflow.workflow_document_error"


class SerializationError(ResflowError):
    """Raised when serialization or deserialization fails."""
    error_code: str = "resflow.serialization_error"


class ExecutionError(ResflowError):
    """Raised for unexpected errors during node execution."""
    error_code: str = "resflow.execution_error"


class ToolTimeoutError(ResflowError):
    """Raised when a tool invocation exceeds its timeout."""
    error_code: str = "resflow.timeout_error"
