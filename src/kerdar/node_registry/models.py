"""
Node Registry Models - Metadata structures for node types and node packs.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class NodeDefinition(BaseModel):
    """
    Metadata about a registered node type.

    This is what a palette or parameter dialog reads; the engine itself
    only calls the NodeType's execute().
    """
    model_config = ConfigDict(extra="allow")

    # Identity
    node_type: str = Field(..., description="Unique node type identifier")
    version: int = Field(1, description="Node version")

    # Display
    display_name: str = Field(..., description="Human-readable name")
    description: str = Field("", description="Node description")
    icon: Optional[str] = Field(None, description="Node icon")
    group: List[str] = Field(default_factory=list, description="Categories")

    # Technical
    implementation: Optional[str] = Field(None, description="Qualified name of the implementation")
    node_pack: Optional[str] = Field(None, description="Source node pack")

    # Runtime
    inputs: List[Any] = Field(default_factory=lambda: ["main"])
    outputs: List[Any] = Field(default_factory=lambda: ["main"])
    credentials: List[Dict[str, Any]] = Field(default_factory=list)
    parameters: List[Dict[str, Any]] = Field(default_factory=list)

    @classmethod
    def from_node_type(cls, node_type: Any, type_key: Optional[str] = None) -> "NodeDefinition":
        """Create definition from a NodeType (class adapter, function adapter or custom)."""
        key = type_key or getattr(node_type, "type", type(node_type).__name__.lower())
        description = getattr(node_type, "description", {}) or {}
        properties = getattr(node_type, "properties", {}) or {}

        if isinstance(description, dict):
            display_name = description.get("displayName", key)
            desc_text = description.get("description", "")
            icon = description.get("icon")
            group = description.get("group", [])
            inputs = description.get("inputs", ["main"])
            outputs = description.get("outputs", ["main"])
            credentials = description.get("credentials", [])
        else:
            display_name = key.replace("-", " ").title()
            desc_text = str(description)
            icon = None
            group = []
            inputs = ["main"]
            outputs = ["main"]
            credentials = []

        if isinstance(properties, dict):
            parameters = properties.get("parameters", [])
            if not credentials:
                credentials = properties.get("credentials", [])
        else:
            parameters = list(properties)

        target = getattr(node_type, "node_class", None) or getattr(node_type, "func", None) or node_type
        implementation = f"{getattr(target, '__module__', '')}.{getattr(target, '__qualname__', type(target).__name__)}"

        return cls(
            node_type=key,
            version=getattr(node_type, "version", 1),
            display_name=display_name,
            description=desc_text,
            icon=icon,
            group=group,
            implementation=implementation,
            inputs=inputs if isinstance(inputs, list) else ["main"],
            outputs=outputs if isinstance(outputs, list) else ["main"],
            credentials=credentials if isinstance(credentials, list) else [],
            parameters=parameters if isinstance(parameters, list) else [],
        )


class NodePackManifest(BaseModel):
    """
    Manifest for a node pack (collection of node types).

    Used for discovery and registration of bundled nodes.
    """
    model_config = ConfigDict(extra="allow")

    # Identity
    name: str = Field(..., description="Pack name (e.g., 'core')")
    version: str = Field("1.0.0", description="Pack version")
    description: str = Field("", description="Pack description")

    # Author
    author: str = Field("", description="Author name")
    license: str = Field("MIT", description="License type")

    # Contents
    nodes: List[str] = Field(
        default_factory=list,
        description="List of node types in this pack"
    )
    credentials: List[str] = Field(
        default_factory=list,
        description="List of credential types in this pack"
    )

    # Technical
    entry_point: str = Field(
        "",
        description="Module path for node discovery (e.g., 'mypack.nodes')"
    )


__all__ = [
    "NodeDefinition",
    "NodePackManifest",
]
