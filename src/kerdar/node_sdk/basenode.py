"""
BaseNode - Node type contract and base class for Python node implementations.

The engine only needs a capability object with a single operation:

    node_type.execute(context) -> List[List[ExecutionItem]]

looked up by a string key in the NodeRegistry. Two ways to provide one:

- subclass BaseNode and implement execute(); a fresh instance is created
  per execution and bound to the context (NodeClassType adapter)
- register a plain function taking the context (FunctionNodeType adapter)

execute() is synchronous. The dispatcher runs it on a worker thread and
enforces the per-node timeout around it.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Dict,
    Iterator,
    List,
    Optional,
    Protocol,
    Tuple,
    Type,
    runtime_checkable,
)

from .errors import NodeOperationError
from .items import ExecutionItem, OutputChannels

if TYPE_CHECKING:
    from kerdar.workflow_runtime.context import NodeExecutionContext


# Sentinel for "no fallback given"
MISSING: Any = object()


@runtime_checkable
class NodeType(Protocol):
    """What the registry hands to the dispatcher."""

    type: str
    description: Dict[str, Any]
    properties: Dict[str, Any]

    def execute(self, context: "NodeExecutionContext") -> OutputChannels:
        ...


class BaseNode(ABC):
    """
    Abstract base class for class-based node implementations.

    Nodes define:
    - type: Unique identifier (e.g., "if")
    - version: Node version number
    - description: Node metadata dict (displayName, inputs, outputs, ...)
    - properties: Parameters and credentials

    And implement execute() which processes input items.

    Example:

        class UpperCaseNode(BaseNode):
            type = "upper-case"
            version = 1

            description = {
                "displayName": "Upper Case",
                "name": "upperCase",
                "group": ["transform"],
                "inputs": ["main"],
                "outputs": ["main"],
            }

            properties = {
                "parameters": [
                    {"displayName": "Field", "name": "field", "type": "string",
                     "default": "name", "required": True},
                ],
            }

            def execute(self) -> List[List[ExecutionItem]]:
                results = []
                for i, item in self.iter_items():
                    field = self.get_node_parameter("field")
                    value = str(item["json"].get(field, "")).upper()
                    results.append({"json": {**item["json"], field: value},
                                    "pairedItem": {"item": i}})
                return [results]
    """

    type: str = "base"
    version: int = 1

    description: Dict[str, Any] = {
        "displayName": "Base Node",
        "name": "base",
        "description": "",
        "group": [],
        "version": 1,
        "inputs": ["main"],
        "outputs": ["main"],
    }

    properties: Dict[str, Any] = {
        "parameters": [],
        "credentials": [],
    }

    def __init__(self) -> None:
        """Initialize node instance."""
        self._context: Optional["NodeExecutionContext"] = None

    @abstractmethod
    def execute(self) -> OutputChannels:
        """
        Execute node operation.

        Returns:
            List[List[ExecutionItem]]: Nested list of execution results.
            - Outer list represents output channels (usually 1)
            - Inner list represents items in that channel

        Raises:
            NodeOperationError: On operation failure
            NodeApiError: On API call failure
        """
        raise NotImplementedError

    # ==== Context Management ====

    def set_context(self, context: "NodeExecutionContext") -> None:
        """Set the execution context."""
        self._context = context

    @property
    def context(self) -> "NodeExecutionContext":
        if self._context is None:
            raise NodeOperationError("No context set")
        return self._context

    @property
    def logger(self) -> Any:
        """Per-node logger forwarding to the host log callback."""
        return self.context.logger

    # ==== Helper methods for subclasses ====

    def get_node_parameter(
        self,
        name: str,
        fallback: Any = MISSING,
        item_index: Optional[int] = None,
    ) -> Any:
        """
        Get a parameter with expressions resolved.

        Args:
            name: Parameter name (dot notation for nested values)
            fallback: Value used when the parameter is not set
            item_index: Item to resolve against (default: current item)
        """
        return self.context.get_node_parameter(name, fallback, item_index=item_index)

    def get_credentials(self, credential_type: str) -> Dict[str, Any]:
        """Get credential data by type name (e.g. "apiKeyAuth")."""
        return self.context.get_credentials(credential_type)

    def get_input_data(self, input_index: int = 0) -> List[ExecutionItem]:
        """Get input items from the previous node."""
        return self.context.get_input_data(input_index)

    def iter_items(self) -> Iterator[Tuple[int, ExecutionItem]]:
        """Iterate input items, advancing the current item index."""
        return self.context.iter_items()

    def helpers_request(self, method: str, url: str, **kwargs: Any) -> Any:
        """Make an HTTP request through the context helpers."""
        options = {"method": method, "url": url, **kwargs}
        return self.context.helpers.request(options)

    @classmethod
    def get_definition(cls) -> Dict[str, Any]:
        """Get full node definition for registration."""
        return {
            "type": cls.type,
            "version": cls.version,
            "description": cls.description,
            "properties": cls.properties,
        }


class NodeClassType:
    """NodeType adapter for a BaseNode subclass."""

    def __init__(self, node_class: Type[BaseNode], node_type: Optional[str] = None) -> None:
        self.node_class = node_class
        self.type = node_type or node_class.type
        self.version = node_class.version
        self.description = node_class.description
        self.properties = node_class.properties

    def execute(self, context: "NodeExecutionContext") -> OutputChannels:
        node = self.node_class()
        node.set_context(context)
        return node.execute()

    def __repr__(self) -> str:
        return f"NodeClassType({self.type!r}, {self.node_class.__name__})"


class FunctionNodeType:
    """NodeType adapter for a plain function taking the context."""

    def __init__(
        self,
        func: Callable[["NodeExecutionContext"], OutputChannels],
        node_type: str,
        description: Optional[Dict[str, Any]] = None,
        properties: Optional[Dict[str, Any]] = None,
        version: int = 1,
    ) -> None:
        self.func = func
        self.type = node_type
        self.version = version
        self.description = description or {
            "displayName": node_type,
            "name": node_type,
            "inputs": ["main"],
            "outputs": ["main"],
        }
        self.properties = properties or {"parameters": [], "credentials": []}

    def execute(self, context: "NodeExecutionContext") -> OutputChannels:
        return self.func(context)

    def __repr__(self) -> str:
        return f"FunctionNodeType({self.type!r})"


def as_node_type(implementation: Any, node_type: Optional[str] = None) -> NodeType:
    """Wrap a BaseNode subclass, function or ready NodeType object."""
    if isinstance(implementation, type) and issubclass(implementation, BaseNode):
        return NodeClassType(implementation, node_type)
    if isinstance(implementation, (NodeClassType, FunctionNodeType)):
        return implementation
    if callable(getattr(implementation, "execute", None)) and hasattr(implementation, "type"):
        return implementation
    if callable(implementation):
        if not node_type:
            raise ValueError("node_type is required when registering a function")
        return FunctionNodeType(implementation, node_type)
    raise TypeError(f"Cannot use {implementation!r} as a node type")


def parameter_specs(node_type: NodeType) -> Dict[str, Dict[str, Any]]:
    """Declared parameters of a node type, keyed by name."""
    properties = getattr(node_type, "properties", None) or {}
    if isinstance(properties, dict):
        parameters = properties.get("parameters", [])
    else:
        parameters = list(properties)
    return {p["name"]: p for p in parameters if isinstance(p, dict) and "name" in p}


__all__ = [
    "MISSING",
    "BaseNode",
    "FunctionNodeType",
    "NodeClassType",
    "NodeType",
    "as_node_type",
    "parameter_specs",
]
