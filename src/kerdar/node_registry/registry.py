"""
Node Registry - Central registry for node type discovery and lookup.

Supports multiple discovery methods:
1. Manual registration (BaseNode subclasses or plain functions)
2. Entry-points (for plugin node packs)
3. Module scanning
"""

from __future__ import annotations

import importlib
import threading
from importlib.metadata import entry_points
from typing import Any, Callable, Dict, Iterator, List, Optional

from kerdar.node_sdk.basenode import BaseNode, NodeType, as_node_type
from kerdar.observability import get_logger

from .models import NodeDefinition, NodePackManifest


logger = get_logger(__name__)

# Entry point group for node packs
NODE_PACK_ENTRY_POINT = "kerdar.nodepacks"


class NodeRegistry:
    """
    Central registry mapping node type keys to executable node types.

    Node types can be registered via:
    - register_node(): Manual registration
    - discover_entry_points(): Automatic discovery via entry points
    - register_pack(): Register all nodes from a pack

    Usage:
        registry = NodeRegistry()
        registry.discover_entry_points()

        node_type = registry.get_node_type("if")
        output = node_type.execute(context)
    """

    def __init__(self) -> None:
        """Initialize empty registry."""
        self._nodes: Dict[str, NodeDefinition] = {}
        self._node_types: Dict[str, NodeType] = {}
        self._packs: Dict[str, NodePackManifest] = {}
        self._discovered = False
        self._lock = threading.Lock()

    def register_node(
        self,
        implementation: Any,
        node_type: Optional[str] = None,
    ) -> NodeDefinition:
        """
        Register a node type.

        Args:
            implementation: BaseNode subclass, function(context) or NodeType object
            node_type: Override type key (uses implementation.type if not provided)

        Returns:
            NodeDefinition for the registered node
        """
        wrapped = as_node_type(implementation, node_type)
        key = node_type or wrapped.type

        definition = NodeDefinition.from_node_type(wrapped, key)

        with self._lock:
            self._nodes[key] = definition
            self._node_types[key] = wrapped

        logger.debug("Registered node type: %s", key)
        return definition

    def node(self, node_type: str, **metadata: Any) -> Callable[[Callable], Callable]:
        """
        Decorator registering a function as a node type.

            @registry.node("double")
            def double(context):
                return [[{"json": {"n": i["json"]["n"] * 2}} for i in context.get_input_data()]]
        """
        def decorator(func: Callable) -> Callable:
            from kerdar.node_sdk.basenode import FunctionNodeType

            self.register_node(FunctionNodeType(func, node_type, **metadata))
            return func

        return decorator

    def register_pack(
        self,
        manifest: NodePackManifest,
        node_types: Dict[str, Any],
    ) -> None:
        """
        Register a node pack with its nodes.

        Args:
            manifest: Pack manifest
            node_types: Map of type key -> implementation
        """
        self._packs[manifest.name] = manifest

        for key, implementation in node_types.items():
            definition = self.register_node(implementation, key)
            definition.node_pack = manifest.name

        logger.info("Registered pack '%s' with %d nodes", manifest.name, len(node_types))

    def discover_entry_points(self, force: bool = False) -> int:
        """
        Discover node packs via entry points.

        Entry points are defined in pyproject.toml:

            [project.entry-points."kerdar.nodepacks"]
            mypack = "mypack:register_nodes"

        The entry point should be a function that returns:
        - (manifest, node_types): Tuple of manifest and type dict
        - Or just the type dict

        Args:
            force: Re-discover even if already done

        Returns:
            Number of packs discovered
        """
        if self._discovered and not force:
            return len(self._packs)

        count = 0
        for ep in entry_points(group=NODE_PACK_ENTRY_POINT):
            try:
                register_func = ep.load()
                result = register_func()
            except Exception:
                logger.exception("Failed to load node pack '%s'", ep.name)
                continue

            if isinstance(result, tuple):
                manifest, node_types = result
                self.register_pack(manifest, node_types)
            elif isinstance(result, dict):
                manifest = NodePackManifest(name=ep.name, nodes=list(result.keys()))
                self.register_pack(manifest, result)
            else:
                logger.warning("Node pack '%s' returned %r, ignored", ep.name, type(result))
                continue

            count += 1
            logger.info("Discovered node pack: %s", ep.name)

        self._discovered = True
        return count

    def discover_module(self, module_path: str) -> int:
        """
        Discover nodes from a module.

        Scans module for BaseNode subclasses and registers them.

        Args:
            module_path: Module path to import (e.g., 'mypack.nodes')

        Returns:
            Number of nodes discovered
        """
        module = importlib.import_module(module_path)

        count = 0
        for name in dir(module):
            obj = getattr(module, name)
            if (
                isinstance(obj, type)
                and issubclass(obj, BaseNode)
                and obj is not BaseNode
                and obj.__module__ == module.__name__
            ):
                self.register_node(obj)
                count += 1

        return count

    def get_node_type(self, node_type: str) -> Optional[NodeType]:
        """Executable node type by key, or None if unknown."""
        return self._node_types.get(node_type)

    def get_node(self, node_type: str) -> Optional[NodeDefinition]:
        """Get node definition by type."""
        return self._nodes.get(node_type)

    def unregister_node(self, node_type: str) -> bool:
        """Remove a node type. Returns True if it was registered."""
        with self._lock:
            self._node_types.pop(node_type, None)
            return self._nodes.pop(node_type, None) is not None

    def list_nodes(self) -> List[NodeDefinition]:
        """List all registered nodes."""
        return list(self._nodes.values())

    def list_packs(self) -> List[NodePackManifest]:
        """List all registered packs."""
        return list(self._packs.values())

    def list_node_types(self) -> List[str]:
        """List all registered node types."""
        return list(self._nodes.keys())

    def has_node(self, node_type: str) -> bool:
        """Check if node type is registered."""
        return node_type in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[NodeDefinition]:
        return iter(self._nodes.values())

    def __contains__(self, node_type: str) -> bool:
        return self.has_node(node_type)


__all__ = [
    "NodeRegistry",
    "NODE_PACK_ENTRY_POINT",
]
