"""
Workflow Graph - Validated, read-only view over a workflow's nodes and edges.

Built once per run. Construction validates node id uniqueness, edge
endpoints, handle syntax and acyclicity; afterwards the graph only
answers adjacency queries.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional

from kerdar.node_sdk.errors import WorkflowValidationError

from .models import Workflow, WorkflowNode, parse_handle


@dataclass(frozen=True)
class GraphEdge:
    """An edge with its handles already parsed."""
    id: str
    source: str
    target: str
    output_index: int = 0
    input_index: int = 0


class WorkflowGraph:
    """
    Adjacency view over a workflow.

    Raises WorkflowValidationError on duplicate node ids, dangling edges,
    malformed handles and cycles.
    """

    def __init__(self, workflow: Workflow):
        self.workflow_id = workflow.id
        self.workflow_name = workflow.name

        self._nodes: Dict[str, WorkflowNode] = {}
        self._outgoing: Dict[str, List[GraphEdge]] = {}
        self._incoming: Dict[str, List[GraphEdge]] = {}

        self._build_nodes(workflow)
        self._build_edges(workflow)
        self._check_acyclic()

    def _build_nodes(self, workflow: Workflow) -> None:
        for node in workflow.nodes:
            if node.id in self._nodes:
                raise WorkflowValidationError(f"Duplicate node id: {node.id}", node_id=node.id)
            self._nodes[node.id] = node
            self._outgoing[node.id] = []
            self._incoming[node.id] = []

    def _build_edges(self, workflow: Workflow) -> None:
        for edge in workflow.edges:
            for endpoint in (edge.source, edge.target):
                if endpoint not in self._nodes:
                    raise WorkflowValidationError(
                        f"Edge {edge.id} references unknown node: {endpoint}",
                        node_id=endpoint,
                    )
            try:
                parsed = GraphEdge(
                    id=edge.id,
                    source=edge.source,
                    target=edge.target,
                    output_index=parse_handle(edge.source_handle),
                    input_index=parse_handle(edge.target_handle),
                )
            except WorkflowValidationError as e:
                raise WorkflowValidationError(f"Edge {edge.id}: {e.message}") from e

            self._outgoing[edge.source].append(parsed)
            self._incoming[edge.target].append(parsed)

    def _check_acyclic(self) -> None:
        """Kahn's algorithm: a node never reaching in-degree 0 sits on a cycle."""
        in_degree: Dict[str, int] = {
            node_id: len(edges) for node_id, edges in self._incoming.items()
        }
        queue = [node_id for node_id in self._nodes if in_degree[node_id] == 0]
        order: List[str] = []

        while queue:
            node_id = queue.pop(0)
            order.append(node_id)
            for edge in self._outgoing[node_id]:
                in_degree[edge.target] -= 1
                if in_degree[edge.target] == 0:
                    queue.append(edge.target)

        if len(order) != len(self._nodes):
            remaining = sorted(set(self._nodes) - set(order))
            raise WorkflowValidationError(f"Workflow has cycles involving: {remaining}")

    def get_node(self, node_id: str) -> Optional[WorkflowNode]:
        return self._nodes.get(node_id)

    def find_start_nodes(self, explicit_id: Optional[str] = None) -> List[WorkflowNode]:
        """
        Start nodes for a run.

        With an explicit id, that single node (or nothing if it does not
        exist). Otherwise every node that is not the target of any edge.
        """
        if explicit_id is not None:
            node = self._nodes.get(explicit_id)
            return [node] if node else []
        return [node for node_id, node in self._nodes.items() if not self._incoming[node_id]]

    def outgoing_edges(self, node_id: str) -> List[GraphEdge]:
        return list(self._outgoing.get(node_id, []))

    def __len__(self) -> int:
        return len(self._nodes)


__all__ = [
    "GraphEdge",
    "WorkflowGraph",
]
