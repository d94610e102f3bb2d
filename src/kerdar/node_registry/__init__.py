"""
Node Registry - Discovery and lookup of node types.

This package provides:
- NodeDefinition: Metadata about a registered node type
- NodePackManifest: Package metadata for a node pack
- NodeRegistry: Type key -> executable NodeType

Supports entry-points based discovery for plugin node packs.
"""

from .models import NodeDefinition, NodePackManifest
from .registry import NODE_PACK_ENTRY_POINT, NodeRegistry

__all__ = [
    "NODE_PACK_ENTRY_POINT",
    "NodeDefinition",
    "NodePackManifest",
    "NodeRegistry",
]
