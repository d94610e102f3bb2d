"""
Kerdar Workflow Engine

Executes node/edge workflow graphs: nodes are looked up by type in a
registry, run with a per-node context, and their output items flow along
edges to downstream nodes.

Architecture:
- node_sdk/: Node execution contract (BaseNode, items, errors, HTTP)
- node_registry/: Node type lookup + entry-point discovery
- workflow_runtime/: Graph, expressions, dispatcher and executor
- nodepacks/: Bundled node packs
- config/, observability/: Settings and structured logging
"""

from kerdar.node_registry import NodeRegistry
from kerdar.workflow_runtime import (
    ExecutionOptions,
    ExecutionRecord,
    Workflow,
    WorkflowExecutor,
    execute_workflow,
)

__version__ = "1.0.0"

__all__ = [
    "ExecutionOptions",
    "ExecutionRecord",
    "NodeRegistry",
    "Workflow",
    "WorkflowExecutor",
    "execute_workflow",
    "__version__",
]
