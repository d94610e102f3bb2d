"""
Workflow Models - JSON structures for workflow definitions and run options.

Workflows are node lists plus an edge list, as produced by the canvas:

    {
        "id": "wf-1",
        "name": "Example",
        "nodes": [{"id": "a", "type": "manual-trigger", "parameters": {}}],
        "edges": [{"id": "e1", "source": "a", "target": "b",
                   "sourceHandle": "output-0", "targetHandle": "input-0"}],
        "settings": {"executionOrder": "v1"},
        "staticData": {}
    }

Both the camelCase JSON keys and snake_case attribute names are accepted.
Canvas-only keys (position, color, notes) are tolerated and ignored.
"""

from __future__ import annotations

import re
import threading
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from kerdar.node_sdk.errors import WorkflowValidationError


# "output-1", "input-0", "3"
_HANDLE_PATTERN = re.compile(r"^(?:[A-Za-z_][\w]*-)?(\d+)$")


def parse_handle(handle: Union[str, int, None]) -> int:
    """
    Parse an edge handle into its output/input index.

    A missing handle means index 0. Raises WorkflowValidationError for
    anything that is not a non-negative integer, optionally prefixed.
    """
    if handle is None or handle == "":
        return 0
    if isinstance(handle, bool):
        raise WorkflowValidationError(f"Invalid handle: {handle!r}")
    if isinstance(handle, int):
        if handle < 0:
            raise WorkflowValidationError(f"Invalid handle: {handle!r}")
        return handle

    match = _HANDLE_PATTERN.match(str(handle).strip())
    if not match:
        raise WorkflowValidationError(f"Invalid handle: {handle!r}")
    return int(match.group(1))


class ExecutionMode(str, Enum):
    """How a run was started."""
    MANUAL = "manual"
    TRIGGER = "trigger"
    INTEGRATED = "integrated"
    TEST = "test"


class ExecutionOrderVersion(str, Enum):
    V0 = "v0"
    V1 = "v1"


class DataSaveMode(str, Enum):
    """Whether item data is kept in the run record."""
    ALL = "all"
    NONE = "none"


class WorkflowNode(BaseModel):
    """
    A configured instance of a registered node type.

    Parameter values may be literals or expressions ("{{ $json.x }}", "=...").
    """
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    # Required
    id: str = Field(..., description="Node ID (unique within workflow)")
    type: str = Field(..., description="Node type key in the registry")

    # Optional
    name: str = Field("", description="Display name, defaults to the id")
    type_version: int = Field(1, alias="typeVersion")
    parameters: Dict[str, Any] = Field(default_factory=dict)
    credentials: Dict[str, Any] = Field(
        default_factory=dict,
        description="Credential type -> {'id', 'name'} or bare credential id",
    )
    disabled: bool = Field(False, description="If true, node is skipped")

    # Failure policy
    retry_on_fail: bool = Field(False, alias="retryOnFail")
    max_tries: int = Field(3, alias="maxTries", description="Total attempts when retrying")
    wait_between_tries: int = Field(1000, alias="waitBetweenTries", description="Milliseconds")
    continue_on_fail: bool = Field(False, alias="continueOnFail")

    # Data policy
    execute_once: bool = Field(False, alias="executeOnce")
    always_output_data: bool = Field(False, alias="alwaysOutputData")
    pinned_data: Optional[List[Dict[str, Any]]] = Field(None, alias="pinnedData")

    @model_validator(mode="after")
    def _default_name(self) -> "WorkflowNode":
        if not self.name:
            self.name = self.id
        return self

    def credential_id(self, credential_type: str) -> Optional[str]:
        """Referenced credential id for a credential type, if any."""
        ref = self.credentials.get(credential_type)
        if ref is None:
            return None
        if isinstance(ref, dict):
            return ref.get("id") or ref.get("name")
        return str(ref)


class WorkflowEdge(BaseModel):
    """
    Directed connection from a node's output channel to another node's input.
    """
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str = Field("", description="Edge ID")
    source: str = Field(..., description="Source node id")
    target: str = Field(..., description="Target node id")
    source_handle: Optional[Union[str, int]] = Field(None, alias="sourceHandle")
    target_handle: Optional[Union[str, int]] = Field(None, alias="targetHandle")

    @model_validator(mode="after")
    def _default_id(self) -> "WorkflowEdge":
        if not self.id:
            self.id = f"{self.source}->{self.target}"
        return self

    @property
    def output_index(self) -> int:
        return parse_handle(self.source_handle)

    @property
    def input_index(self) -> int:
        return parse_handle(self.target_handle)


class WorkflowSettings(BaseModel):
    """Workflow-level settings."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    execution_order: ExecutionOrderVersion = Field(
        ExecutionOrderVersion.V1, alias="executionOrder"
    )
    save_data_error_execution: DataSaveMode = Field(DataSaveMode.ALL, alias="saveDataErrorExecution")
    save_data_success_execution: DataSaveMode = Field(DataSaveMode.ALL, alias="saveDataSuccessExecution")
    timezone: str = Field("UTC")
    execution_timeout: int = Field(-1, alias="executionTimeout", description="Milliseconds, -1 = no timeout")
    max_node_execution_time: Optional[int] = Field(
        None, alias="maxNodeExecutionTime", description="Milliseconds"
    )


class Workflow(BaseModel):
    """
    Complete workflow definition.

    staticData is the persistent bag nodes may read and write through
    get_workflow_static_data(); the run record carries a snapshot of it.
    """
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    # Metadata
    id: str = Field("workflow", description="Workflow ID")
    name: str = Field("Unnamed Workflow", description="Workflow name")
    active: bool = Field(False)

    # Structure
    nodes: List[WorkflowNode] = Field(default_factory=list)
    edges: List[WorkflowEdge] = Field(default_factory=list)

    # Settings
    settings: WorkflowSettings = Field(default_factory=WorkflowSettings)
    static_data: Dict[str, Any] = Field(default_factory=dict, alias="staticData")

    def get_node(self, node_id: str) -> Optional[WorkflowNode]:
        """Get node by id."""
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def get_node_by_name(self, name: str) -> Optional[WorkflowNode]:
        """Get node by display name."""
        for node in self.nodes:
            if node.name == name:
                return node
        return None


class ExecutionOptions(BaseModel):
    """
    Options for a single run.

    node_timeout is in seconds; when unset the workflow's
    maxNodeExecutionTime or the configured default applies.
    """
    model_config = ConfigDict(
        extra="forbid", populate_by_name=True, arbitrary_types_allowed=True
    )

    mode: ExecutionMode = ExecutionMode.MANUAL
    start_node_id: Optional[str] = Field(None, alias="startNodeId")
    input_data: Optional[List[Dict[str, Any]]] = Field(None, alias="inputData")
    stop_on_error: bool = Field(False, alias="stopOnError")
    node_timeout: Optional[float] = Field(None, alias="nodeTimeout", gt=0)
    max_concurrency: Optional[int] = Field(None, alias="maxConcurrency", ge=1)
    pin_data: Dict[str, List[Dict[str, Any]]] = Field(default_factory=dict, alias="pinData")
    run_until_node_id: Optional[str] = Field(None, alias="runUntilNodeId")
    env: Dict[str, Any] = Field(default_factory=dict)
    variables: Dict[str, Any] = Field(default_factory=dict)
    cancel_event: Optional[threading.Event] = Field(None, exclude=True)


def parse_workflow(data: Union[Workflow, Dict[str, Any]]) -> Workflow:
    """Parse workflow JSON into a Workflow."""
    if isinstance(data, Workflow):
        return data
    return Workflow.model_validate(data)


__all__ = [
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
]
