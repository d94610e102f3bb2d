"""
Errors - Exception taxonomy shared by the engine and node implementations.

Node implementations raise NodeOperationError / NodeApiError.
The engine raises the remaining types while validating, resolving
expressions, enforcing timeouts and aborting runs.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:
    from kerdar.workflow_runtime.state import ExecutionRecord


class WorkflowError(Exception):
    """Base class for every error raised by the engine."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Serializable form stored in run data."""
        return {"message": self.message, "name": type(self).__name__}


class WorkflowValidationError(WorkflowError):
    """Malformed graph reference or missing required parameter. Never retried."""

    def __init__(
        self,
        message: str,
        node_id: Optional[str] = None,
        parameter: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.node_id = node_id
        self.parameter = parameter


class UnknownNodeTypeError(WorkflowError):
    """Node type is not present in the registry."""

    def __init__(self, node_type: str) -> None:
        super().__init__(f"Unknown node type: {node_type}")
        self.node_type = node_type


class EvaluationError(WorkflowError):
    """Expression resolution failure."""

    def __init__(self, message: str, expression: str = "") -> None:
        super().__init__(message)
        self.expression = expression
        self.context: Dict[str, Any] = {}

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["expression"] = self.expression
        if self.context:
            data["context"] = dict(self.context)
        return data


class NodeTimeoutError(WorkflowError):
    """Node execute (or an outbound request) exceeded its timeout."""

    def __init__(self, message: str, timeout: float, url: Optional[str] = None) -> None:
        super().__init__(message)
        self.timeout = timeout
        self.url = url


class NodeExecutionError(WorkflowError):
    """Base for failures raised by node implementations."""


class NodeOperationError(NodeExecutionError):
    """Error during node operation."""

    def __init__(
        self,
        message: str,
        item_index: Optional[int] = None,
        description: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.item_index = item_index
        self.description = description

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.item_index is not None:
            data["itemIndex"] = self.item_index
        if self.description:
            data["description"] = self.description
        return data


class NodeApiError(NodeOperationError):
    """Error from external API call."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        url: Optional[str] = None,
        method: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body
        self.url = url
        self.method = method

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.status_code is not None:
            data["httpCode"] = self.status_code
        return data


class CredentialError(NodeExecutionError):
    """Credential reference missing or store lookup failed."""

    def __init__(self, message: str, credential_type: Optional[str] = None) -> None:
        super().__init__(message)
        self.credential_type = credential_type


class WorkflowRunError(WorkflowError):
    """Run-level failure. Carries the finalized record once available."""

    def __init__(
        self,
        message: str,
        node_id: Optional[str] = None,
        record: Optional["ExecutionRecord"] = None,
    ) -> None:
        super().__init__(message)
        self.node_id = node_id
        self.record = record


class ExecutionAbortedError(WorkflowRunError):
    """A node failed while stop_on_error was set."""


class ExecutionCancelledError(WorkflowRunError):
    """The run was cancelled by the caller or by the overall execution timeout."""


def error_to_dict(error: BaseException) -> Dict[str, Any]:
    """Serialize any exception for run data and continue-on-fail items."""
    if isinstance(error, WorkflowError):
        return error.to_dict()
    return {"message": str(error) or type(error).__name__, "name": type(error).__name__}


__all__ = [
    "WorkflowError",
    "WorkflowValidationError",
    "UnknownNodeTypeError",
    "EvaluationError",
    "NodeTimeoutError",
    "NodeExecutionError",
    "NodeOperationError",
    "NodeApiError",
    "CredentialError",
    "WorkflowRunError",
    "ExecutionAbortedError",
    "ExecutionCancelledError",
    "error_to_dict",
]
