"""
Core Node Pack - Standard nodes.

This pack provides basic nodes for workflow operations:
- ManualTrigger: Start a workflow manually
- NoOp: Pass-through node (no operation)
- SetVariable: Set/modify data fields
- If / Filter: Route items by conditions
- Limit / Sort: Reshape item lists
- Wait: Pause a branch
- HttpRequest: Outbound HTTP calls
- ErrorHandler: Stop or recover on error items
"""

from .nodes import (
    ErrorHandlerNode,
    FilterNode,
    HttpRequestNode,
    IfNode,
    LimitNode,
    ManualTriggerNode,
    NoOpNode,
    SetVariableNode,
    SortNode,
    WaitNode,
)
from .manifest import MANIFEST, NODE_CLASSES, register_nodes

__all__ = [
    "ErrorHandlerNode",
    "FilterNode",
    "HttpRequestNode",
    "IfNode",
    "LimitNode",
    "ManualTriggerNode",
    "NoOpNode",
    "SetVariableNode",
    "SortNode",
    "WaitNode",
    "MANIFEST",
    "NODE_CLASSES",
    "register_nodes",
]
