"""
Downstream Propagator - Routes a node's output channels along its edges.

Edges are grouped by the output index parsed from their sourceHandle.
Each edge dispatches its target with the slice of that output channel;
a channel the node did not produce is an empty list, not an error.
Slices are passed by reference, not copied.
"""

from __future__ import annotations

from typing import Callable, Dict, List

from kerdar.node_sdk.items import ExecutionItem, OutputChannels

from .graph import GraphEdge, WorkflowGraph


DispatchFn = Callable[[str, List[ExecutionItem], int], None]


def group_by_output(edges: List[GraphEdge]) -> Dict[int, List[GraphEdge]]:
    """Edges keyed by output index, in ascending index order."""
    groups: Dict[int, List[GraphEdge]] = {}
    for edge in sorted(edges, key=lambda e: e.output_index):
        groups.setdefault(edge.output_index, []).append(edge)
    return groups


def channel_slice(output: OutputChannels, output_index: int) -> List[ExecutionItem]:
    if 0 <= output_index < len(output):
        return output[output_index]
    return []


class DownstreamPropagator:
    """
    Fans a node's output out to its successors.

    Dispatch within a branch is sequential: the next edge is dispatched
    once the previous target's dispatch (and its own subtree) returned.
    """

    def __init__(self, graph: WorkflowGraph, dispatch: DispatchFn):
        self.graph = graph
        self._dispatch = dispatch

    def propagate(self, node_id: str, output: OutputChannels) -> int:
        """
        Dispatch every target of node_id's outgoing edges.

        Returns:
            Number of dispatch calls made
        """
        count = 0
        for output_index, edges in group_by_output(self.graph.outgoing_edges(node_id)).items():
            items = channel_slice(output, output_index)
            for edge in edges:
                self._dispatch(edge.target, items, edge.input_index)
                count += 1
        return count


__all__ = [
    "DownstreamPropagator",
    "channel_slice",
    "group_by_output",
]
