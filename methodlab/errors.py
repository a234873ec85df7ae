"""
Error taxonomy for methodlab.

InputValidationError is raised before any external call is made.
GenerationError and its subclasses describe a failed oracle call and carry
the stage that issued it plus the underlying cause.
"""

from typing import Any, Dict, List, Optional


class MethodLabError(Exception):
    """Base class for all methodlab errors."""


class InputValidationError(MethodLabError):
    """Required user input is missing or malformed."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class WorkflowBusyError(MethodLabError):
    """A workflow run is already in flight for this session."""


class GenerationError(MethodLabError):
    """A generation call failed."""

    def __init__(
        self,
        message: str,
        stage: str = "",
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.stage = stage
        self.cause = cause

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": type(self).__name__,
            "stage": self.stage,
            "message": str(self),
            "cause": repr(self.cause) if self.cause is not None else None,
        }


class TransportError(GenerationError):
    """Oracle unreachable or transiently unavailable (retryable)."""


class GenerationTimeout(TransportError):
    """A single oracle call exceeded its timeout."""


class OracleRejection(GenerationError):
    """Oracle returned an explicit error or refused the request."""


class GenerationCancelled(GenerationError):
    """The in-flight call was cancelled by the caller."""


class SchemaViolation(GenerationError):
    """Payload does not parse against the declared schema."""

    def __init__(
        self,
        message: str,
        stage: str = "",
        cause: Optional[BaseException] = None,
        errors: Optional[List[Dict[str, Any]]] = None,
    ):
        super().__init__(message, stage=stage, cause=cause)
        self.errors = errors or []

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["errors"] = self.errors
        return data
