"""
Node SDK - What node implementations program against.

This package provides:
- ExecutionItem / BinaryData: Data flowing through workflows
- BaseNode / NodeType: The execute contract and its adapters
- Error taxonomy shared with the engine
- HttpClient: Timeout-bounded outbound requests

All nodes execute synchronously; the engine enforces timeouts.
"""

from .items import (
    BinaryData,
    ExecutionItem,
    OutputChannels,
    PairedItem,
    copy_input_items,
    make_item,
    normalize_items,
    return_json_array,
)
from .basenode import (
    MISSING,
    BaseNode,
    FunctionNodeType,
    NodeClassType,
    NodeType,
    as_node_type,
)
from .errors import (
    CredentialError,
    EvaluationError,
    ExecutionAbortedError,
    ExecutionCancelledError,
    NodeApiError,
    NodeExecutionError,
    NodeOperationError,
    NodeTimeoutError,
    UnknownNodeTypeError,
    WorkflowError,
    WorkflowRunError,
    WorkflowValidationError,
)
from .http import HttpClient, HttpResponse, RequestOptions

__all__ = [
    # Items
    "BinaryData",
    "ExecutionItem",
    "OutputChannels",
    "PairedItem",
    "copy_input_items",
    "make_item",
    "normalize_items",
    "return_json_array",
    # Node contract
    "MISSING",
    "BaseNode",
    "FunctionNodeType",
    "NodeClassType",
    "NodeType",
    "as_node_type",
    # Errors
    "CredentialError",
    "EvaluationError",
    "ExecutionAbortedError",
    "ExecutionCancelledError",
    "NodeApiError",
    "NodeExecutionError",
    "NodeOperationError",
    "NodeTimeoutError",
    "UnknownNodeTypeError",
    "WorkflowError",
    "WorkflowRunError",
    "WorkflowValidationError",
    # HTTP
    "HttpClient",
    "HttpResponse",
    "RequestOptions",
]
