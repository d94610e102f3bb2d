"""
Execution State - Per-run node states and the final run record.

One ExecutionStateStore is created per execute() call and owned by it;
nothing here is module-level, so concurrent runs never share state.
All access goes through the store's lock.
"""

from __future__ import annotations

import copy
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from kerdar.node_sdk.items import ExecutionItem, OutputChannels

from .models import DataSaveMode, Workflow, WorkflowNode


class NodeStatus(str, Enum):
    """Status of a node during execution."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"
    SKIPPED = "skipped"


class ExecutionStatus(str, Enum):
    """Overall run status."""
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"
    CANCELED = "canceled"


@dataclass
class NodeExecutionState:
    """
    Mutable state of one node within one run.

    Only the dispatcher handling that node writes to it.
    """
    node_id: str
    node_name: str
    status: NodeStatus = NodeStatus.PENDING
    input_data: List[ExecutionItem] = field(default_factory=list)
    output: Optional[OutputChannels] = None
    error: Optional[Dict[str, Any]] = None
    start_time: Optional[float] = None
    end_time: Optional[float] = None
    tries: int = 0

    @property
    def execution_time_ms(self) -> int:
        if self.start_time is None or self.end_time is None:
            return 0
        return int((self.end_time - self.start_time) * 1000)


# ==============================================================================
# Run record (JSON shape)
# ==============================================================================

class NodeRunOutput(BaseModel):
    main: Optional[List[List[Dict[str, Any]]]] = None


class NodeRunData(BaseModel):
    """Run data of one node: timing, status, output, error."""
    model_config = ConfigDict(populate_by_name=True)

    start_time: Optional[int] = Field(None, alias="startTime", description="Epoch milliseconds")
    end_time: Optional[int] = Field(None, alias="endTime", description="Epoch milliseconds")
    execution_time: int = Field(0, alias="executionTime", description="Milliseconds")
    execution_status: NodeStatus = Field(NodeStatus.PENDING, alias="executionStatus")
    input_data: Optional[List[Dict[str, Any]]] = Field(None, alias="inputData")
    data: NodeRunOutput = Field(default_factory=NodeRunOutput)
    error: Optional[Dict[str, Any]] = None
    tries: int = 0


class ResultData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    run_data: Dict[str, NodeRunData] = Field(default_factory=dict, alias="runData")
    last_node_executed: Optional[str] = Field(None, alias="lastNodeExecuted")
    error: Optional[Dict[str, Any]] = None


class ExecutionData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    result_data: ResultData = Field(default_factory=ResultData, alias="resultData")


class ExecutionRecord(BaseModel):
    """
    Outcome of one run.

    status is "error" if any node errored, "canceled" if the run was
    cancelled, "success" otherwise. Every workflow node has run data,
    including nodes that were never reached (status "pending").
    """
    model_config = ConfigDict(populate_by_name=True)

    id: str
    workflow_id: str = Field(..., alias="workflowId")
    mode: str = "manual"
    status: ExecutionStatus = ExecutionStatus.RUNNING
    started_at: datetime = Field(..., alias="startedAt")
    finished_at: Optional[datetime] = Field(None, alias="finishedAt")
    data: ExecutionData = Field(default_factory=ExecutionData)
    static_data: Dict[str, Any] = Field(default_factory=dict, alias="staticData")

    @property
    def run_data(self) -> Dict[str, NodeRunData]:
        return self.data.result_data.run_data

    @property
    def is_success(self) -> bool:
        return self.status == ExecutionStatus.SUCCESS

    @property
    def is_error(self) -> bool:
        return self.status == ExecutionStatus.ERROR

    def node_status(self, node_id: str) -> Optional[NodeStatus]:
        run = self.run_data.get(node_id)
        return run.execution_status if run else None

    def node_output(self, node_id: str) -> Optional[List[List[Dict[str, Any]]]]:
        run = self.run_data.get(node_id)
        return run.data.main if run else None

    def to_dict(self) -> Dict[str, Any]:
        """JSON-compatible camelCase form."""
        return self.model_dump(by_alias=True, mode="json")


# ==============================================================================
# Store
# ==============================================================================

def _epoch_ms(value: Optional[float]) -> Optional[int]:
    return int(value * 1000) if value is not None else None


class ExecutionStateStore:
    """
    Node states and shared run data for one run.

    Nodes are claimed exactly once: a node reached a second time (a join
    fed by several branches) is not dispatched again.
    """

    def __init__(self, workflow: Workflow):
        self._lock = threading.RLock()
        self._nodes: Dict[str, WorkflowNode] = {node.id: node for node in workflow.nodes}
        self._states: Dict[str, NodeExecutionState] = {
            node.id: NodeExecutionState(node_id=node.id, node_name=node.name)
            for node in workflow.nodes
        }
        self._claimed: set = set()
        self._static_data: Dict[str, Any] = workflow.static_data
        self._static_locks: Dict[str, threading.RLock] = {}
        self._last_node_executed: Optional[str] = None

    # ==== Claiming ====

    def claim(self, node_id: str) -> bool:
        """Reserve a node for dispatch. False if it was already claimed."""
        with self._lock:
            if node_id in self._claimed or node_id not in self._states:
                return False
            self._claimed.add(node_id)
            return True

    # ==== Transitions ====

    def mark_running(self, node_id: str, input_data: List[ExecutionItem]) -> None:
        with self._lock:
            state = self._states[node_id]
            state.status = NodeStatus.RUNNING
            state.input_data = input_data
            state.start_time = time.time()

    def record_attempt(self, node_id: str) -> int:
        with self._lock:
            state = self._states[node_id]
            state.tries += 1
            return state.tries

    def mark_success(self, node_id: str, output: OutputChannels) -> None:
        with self._lock:
            state = self._states[node_id]
            state.status = NodeStatus.SUCCESS
            state.output = output
            state.error = None
            self._finish(state)

    def mark_error(
        self,
        node_id: str,
        error: Dict[str, Any],
        output: Optional[OutputChannels] = None,
    ) -> None:
        with self._lock:
            state = self._states[node_id]
            state.status = NodeStatus.ERROR
            state.error = error
            state.output = output
            self._finish(state)

    def mark_skipped(self, node_id: str, input_data: Optional[List[ExecutionItem]] = None) -> None:
        with self._lock:
            state = self._states[node_id]
            state.status = NodeStatus.SKIPPED
            state.input_data = list(input_data or [])
            state.output = [[]]
            state.start_time = time.time()
            self._finish(state)

    def _finish(self, state: NodeExecutionState) -> None:
        state.end_time = time.time()
        if state.start_time is None:
            state.start_time = state.end_time
        self._last_node_executed = state.node_id

    # ==== Queries ====

    def get(self, node_id: str) -> NodeExecutionState:
        with self._lock:
            return self._states[node_id]

    def status(self, node_id: str) -> NodeStatus:
        with self._lock:
            return self._states[node_id].status

    def states(self) -> Dict[str, NodeExecutionState]:
        with self._lock:
            return dict(self._states)

    def has_errors(self) -> bool:
        with self._lock:
            return any(s.status == NodeStatus.ERROR for s in self._states.values())

    @property
    def last_node_executed(self) -> Optional[str]:
        return self._last_node_executed

    def node_outputs(self) -> Dict[str, Dict[str, Any]]:
        """
        Outputs of finished nodes keyed by node name, for $nodes and $().
        """
        with self._lock:
            outputs: Dict[str, Dict[str, Any]] = {}
            for node_id, state in self._states.items():
                if state.status not in (NodeStatus.SUCCESS, NodeStatus.ERROR) or state.output is None:
                    continue
                node = self._nodes[node_id]
                items = list(state.output[0]) if state.output else []
                outputs[node.name] = {
                    "name": node.name,
                    "type": node.type,
                    "items": items,
                    "json": items[0].get("json", {}) if items else {},
                    "parameters": dict(node.parameters),
                }
            return outputs

    # ==== Static data ====

    @staticmethod
    def static_data_key(scope: str, node_id: str) -> str:
        if scope == "node":
            return f"node:{node_id}"
        if scope in ("workflow", "global"):
            return "global"
        raise ValueError(f"Unknown static data scope: {scope!r}")

    def static_data(self, scope: str, node_id: str) -> Dict[str, Any]:
        """The mutable static data slice for a scope, created on demand."""
        key = self.static_data_key(scope, node_id)
        with self._lock:
            slot = self._static_data.get(key)
            if not isinstance(slot, dict):
                slot = {}
                self._static_data[key] = slot
            return slot

    def static_data_lock(self, scope: str, node_id: str) -> threading.RLock:
        """Lock guarding read-modify-write updates of one static data slice."""
        key = self.static_data_key(scope, node_id)
        with self._lock:
            if key not in self._static_locks:
                self._static_locks[key] = threading.RLock()
            return self._static_locks[key]

    # ==== Record ====

    def aggregate_status(self, cancelled: bool = False) -> ExecutionStatus:
        if cancelled:
            return ExecutionStatus.CANCELED
        return ExecutionStatus.ERROR if self.has_errors() else ExecutionStatus.SUCCESS

    def build_record(
        self,
        execution_id: str,
        workflow: Workflow,
        mode: str,
        started_at: datetime,
        status: ExecutionStatus,
        run_error: Optional[Dict[str, Any]] = None,
    ) -> ExecutionRecord:
        """Snapshot the states into an ExecutionRecord."""
        if status == ExecutionStatus.SUCCESS:
            save_mode = workflow.settings.save_data_success_execution
        else:
            save_mode = workflow.settings.save_data_error_execution
        keep_data = save_mode != DataSaveMode.NONE

        with self._lock:
            run_data: Dict[str, NodeRunData] = {}
            for node_id, state in self._states.items():
                run_data[node_id] = NodeRunData(
                    start_time=_epoch_ms(state.start_time),
                    end_time=_epoch_ms(state.end_time),
                    execution_time=state.execution_time_ms,
                    execution_status=state.status,
                    input_data=copy.deepcopy(state.input_data) if keep_data and state.start_time else None,
                    data=NodeRunOutput(
                        main=copy.deepcopy(state.output) if keep_data and state.output is not None else None
                    ),
                    error=state.error,
                    tries=state.tries,
                )

            return ExecutionRecord(
                id=execution_id,
                workflow_id=workflow.id,
                mode=mode,
                status=status,
                started_at=started_at,
                finished_at=datetime.now(timezone.utc),
                data=ExecutionData(
                    result_data=ResultData(
                        run_data=run_data,
                        last_node_executed=self._last_node_executed,
                        error=run_error,
                    )
                ),
                static_data=copy.deepcopy(self._static_data),
            )


__all__ = [
    "ExecutionData",
    "ExecutionRecord",
    "ExecutionStateStore",
    "ExecutionStatus",
    "NodeExecutionState",
    "NodeRunData",
    "NodeStatus",
    "ResultData",
]
