"""
Needs AI - Errors
=================

Exception hierarchy shared by the flow engine, tools and the HTTP layer.

Only `FlowError.message` (and the field list of `SchemaValidationError`) is
meant for callers. `context` carries server-side diagnostics and must never be
echoed back over the API.
"""

from typing import Any, Dict, List, Optional


class NeedsAIError(Exception):
    """Base exception type for all Needs AI errors."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if not self.context:
            return self.message
        return f"{self.message} | context={self.context}"


class SchemaValidationError(NeedsAIError):
    """Raised when a value does not conform to its declared schema."""

    def __init__(
        self,
        message: str,
        fields: Optional[List[str]] = None,
        errors: Optional[List[Dict[str, Any]]] = None,
    ):
        super().__init__(message, {"fields": fields or []})
        self.fields = fields or []
        self.errors = errors or []


class FlowError(NeedsAIError):
    """Caller-safe failure of a flow. `message` is shown to end users."""


class FlowNotFoundError(FlowError):
    """Raised when a flow id is not registered."""


class TemplateError(NeedsAIError):
    """Raised when a prompt template cannot be parsed."""


class GenerationFailure(NeedsAIError):
    """The model produced no usable structured output."""


class ToolExecutionError(NeedsAIError):
    """Expected failure inside a tool handler (store or API unavailable)."""


class DirectoryStoreError(NeedsAIError):
    """Raised by directory store implementations when the backend fails."""
