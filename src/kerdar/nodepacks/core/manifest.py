"""
Core Node Pack Manifest - Registration function for entry-points.
"""

from kerdar.node_registry.models import NodePackManifest

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


# Node classes by type
NODE_CLASSES = {
    node_class.type: node_class
    for node_class in (
        ManualTriggerNode,
        NoOpNode,
        SetVariableNode,
        IfNode,
        FilterNode,
        LimitNode,
        SortNode,
        WaitNode,
        HttpRequestNode,
        ErrorHandlerNode,
    )
}


MANIFEST = NodePackManifest(
    name="core",
    version="1.0.0",
    description="Standard nodes for routing, reshaping and HTTP",
    author="kerdar",
    license="MIT",
    nodes=list(NODE_CLASSES),
    credentials=["httpBasicAuth", "httpHeaderAuth", "bearerToken", "apiKey"],
    entry_point="kerdar.nodepacks.core",
)


def register_nodes():
    """
    Entry point function for node pack discovery.

    Returns tuple of (manifest, node_classes).
    """
    return MANIFEST, NODE_CLASSES


__all__ = [
    "MANIFEST",
    "NODE_CLASSES",
    "register_nodes",
]
