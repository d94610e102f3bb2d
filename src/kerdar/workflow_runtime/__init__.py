"""
Workflow Runtime - Execution engine for node/edge workflows.

This package provides:
- Workflow models (nodes, edges, settings, run options)
- WorkflowGraph: validated adjacency view
- ExpressionResolver: safe {{ }} / "=" evaluation
- NodeExecutionContext: what a node's execute() receives
- NodeDispatcher / DownstreamPropagator: per-node state machine and fan-out
- ExecutionStateStore / ExecutionRecord: run state and result
- WorkflowExecutor: top-level execute()
"""

from .models import (
    DataSaveMode,
    ExecutionMode,
    ExecutionOptions,
    ExecutionOrderVersion,
    Workflow,
    WorkflowEdge,
    WorkflowNode,
    WorkflowSettings,
    parse_handle,
    parse_workflow,
)
from .graph import GraphEdge, WorkflowGraph
from .expression import (
    ExpressionResolver,
    SafeExpressionEvaluator,
    build_expression_context,
    is_expression,
    validate_expression,
)
from .credentials import CredentialStore, InMemoryCredentialStore, apply_credentials
from .state import (
    ExecutionRecord,
    ExecutionStateStore,
    ExecutionStatus,
    NodeExecutionState,
    NodeRunData,
    NodeStatus,
)
from .context import (
    ExecutionLogEntry,
    NodeExecutionContext,
    NodeLogger,
    create_execution_context,
)
from .propagator import DownstreamPropagator
from .dispatcher import NodeDispatcher, RunEnvironment
from .executor import WorkflowExecutor, execute_workflow

__all__ = [
    # Models
    "DataSaveMode",
    "ExecutionMode",
    "ExecutionOptions",
    "ExecutionOrderVersion",
    "Workflow",
    "WorkflowEdge",
    "WorkflowNode",
    "WorkflowSettings",
    "parse_handle",
    "parse_workflow",
    # Graph
    "GraphEdge",
    "WorkflowGraph",
    # Expressions
    "ExpressionResolver",
    "SafeExpressionEvaluator",
    "build_expression_context",
    "is_expression",
    "validate_expression",
    # Credentials
    "CredentialStore",
    "InMemoryCredentialStore",
    "apply_credentials",
    # State
    "ExecutionRecord",
    "ExecutionStateStore",
    "ExecutionStatus",
    "NodeExecutionState",
    "NodeRunData",
    "NodeStatus",
    # Context
    "ExecutionLogEntry",
    "NodeExecutionContext",
    "NodeLogger",
    "create_execution_context",
    # Execution
    "DownstreamPropagator",
    "NodeDispatcher",
    "RunEnvironment",
    "WorkflowExecutor",
    "execute_workflow",
]
