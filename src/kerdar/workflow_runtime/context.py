"""
Execution Context - The capability object passed to a node's execute().

A context is built fresh for every execute attempt. It gives the node
its input items, expression-resolved parameters, credentials, static
data, a logger forwarding to the host, and a helpers bundle.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import (
    Any,
    Callable,
    Dict,
    Iterator,
    List,
    Optional,
    Sequence,
    Tuple,
    TypedDict,
    Union,
)

from kerdar.config import Settings, get_settings
from kerdar.node_sdk.basenode import MISSING, NodeType, parameter_specs
from kerdar.node_sdk.errors import (
    CredentialError,
    ExecutionCancelledError,
    NodeOperationError,
    WorkflowValidationError,
)
from kerdar.node_sdk.http import HttpClient, RequestOptions
from kerdar.node_sdk.items import (
    BinaryData,
    ExecutionItem,
    copy_input_items,
    return_json_array,
)
from kerdar.observability import get_logger, with_execution_context

from .credentials import CredentialStore, apply_credentials
from .expression import ExpressionResolver, build_expression_context, is_expression
from .models import ExecutionMode, Workflow, WorkflowNode
from .state import ExecutionStateStore


logger = get_logger(__name__)


class ExecutionLogEntry(TypedDict, total=False):
    """Entry handed to the host log callback."""
    timestamp: str
    level: str
    nodeId: Optional[str]
    nodeName: Optional[str]
    message: str
    data: Optional[Dict[str, Any]]


LogCallback = Callable[[ExecutionLogEntry], Any]


def invoke_callback(callback: Optional[Callable[..., Any]], *args: Any) -> None:
    """Call a host callback; a failing callback never affects the run."""
    if callback is None:
        return
    try:
        callback(*args)
    except Exception:
        logger.exception("Host callback %r failed", getattr(callback, "__name__", callback))


def _lookup(parameters: Dict[str, Any], name: str) -> Any:
    """Parameter by name, falling back to a dot path into nested dicts."""
    if name in parameters:
        return parameters[name]
    value: Any = parameters
    for part in name.split("."):
        if not isinstance(value, dict) or part not in value:
            return MISSING
        value = value[part]
    return value


class NodeLogger:
    """
    Per-node logger.

    Each call goes to the python logger (with execution context fields)
    and to the host on_log callback as an ExecutionLogEntry.
    """

    _LEVELS = {
        "debug": logging.DEBUG,
        "info": logging.INFO,
        "warn": logging.WARNING,
        "error": logging.ERROR,
    }

    def __init__(
        self,
        node: WorkflowNode,
        execution_id: str,
        workflow_id: str,
        on_log: Optional[LogCallback] = None,
    ):
        self.node = node
        self.on_log = on_log
        self._logger = get_logger(f"kerdar.node.{node.type}")
        self._extra = with_execution_context(
            execution_id=execution_id,
            workflow_id=workflow_id,
            node_id=node.id,
            node_name=node.name,
        )

    def _emit(self, level: str, message: str, data: Optional[Dict[str, Any]]) -> None:
        self._logger.log(self._LEVELS[level], message, extra=self._extra)
        entry: ExecutionLogEntry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": level,
            "nodeId": self.node.id,
            "nodeName": self.node.name,
            "message": message,
            "data": data,
        }
        invoke_callback(self.on_log, entry)

    def debug(self, message: str, data: Optional[Dict[str, Any]] = None) -> None:
        self._emit("debug", message, data)

    def info(self, message: str, data: Optional[Dict[str, Any]] = None) -> None:
        self._emit("info", message, data)

    def warn(self, message: str, data: Optional[Dict[str, Any]] = None) -> None:
        self._emit("warn", message, data)

    warning = warn

    def error(self, message: str, data: Optional[Dict[str, Any]] = None) -> None:
        self._emit("error", message, data)


class NodeHelpers:
    """Helpers bundle available to node implementations as context.helpers."""

    def __init__(self, context: "NodeExecutionContext"):
        self._context = context

    # ==== HTTP ====

    def request(self, options: RequestOptions) -> Any:
        """
        Outbound HTTP request.

        Returns the parsed body, or {"statusCode", "headers", "body"} with
        returnFullResponse. Raises NodeApiError / NodeTimeoutError.
        """
        client = HttpClient(timeout=self._context.settings.http_timeout_s)
        return client.send(options)

    def http_request(self, options: RequestOptions) -> Any:
        return self.request(options)

    def request_with_authentication(self, credential_type: str, options: RequestOptions) -> Any:
        """Request with the node's credentials of that type applied."""
        data = self._context.get_credentials(credential_type)
        return self.request(apply_credentials(options, credential_type, data))

    # ==== Items ====

    def return_json_array(self, data: Union[Sequence[Any], Dict[str, Any]]) -> List[ExecutionItem]:
        return return_json_array(data)

    def copy_input_items(self, items: List[ExecutionItem], properties: Sequence[str]) -> List[ExecutionItem]:
        return copy_input_items(items, properties)

    # ==== Binary ====

    def prepare_binary_data(
        self,
        data: Union[bytes, bytearray, str],
        file_name: Optional[str] = None,
        mime_type: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Binary entry for an item's "binary" map."""
        return BinaryData.from_bytes(data, file_name=file_name, mime_type=mime_type).to_item_dict()

    def binary_to_bytes(self, binary: Union[BinaryData, Dict[str, Any]]) -> bytes:
        if isinstance(binary, dict):
            binary = BinaryData.model_validate(binary)
        return binary.to_bytes()

    def assert_binary_data(self, item_index: int, property_name: str = "data") -> Dict[str, Any]:
        items = self._context.get_input_data()
        item = items[item_index] if 0 <= item_index < len(items) else None
        binary = (item or {}).get("binary") or {}
        if property_name not in binary:
            raise NodeOperationError(
                f'No binary data found in property "{property_name}"', item_index=item_index
            )
        return binary[property_name]

    def get_binary_data_buffer(self, item_index: int, property_name: str = "data") -> bytes:
        return self.binary_to_bytes(self.assert_binary_data(item_index, property_name))


class NodeExecutionContext:
    """
    Everything a node implementation may use during execute().

    Parameters are resolved against the current item index, which starts
    at 0 and is advanced by iter_items() during per-item processing.
    """

    def __init__(
        self,
        node: WorkflowNode,
        workflow: Workflow,
        input_data: List[ExecutionItem],
        execution_id: str,
        mode: Union[ExecutionMode, str],
        store: ExecutionStateStore,
        node_type: Optional[NodeType] = None,
        input_index: int = 0,
        credential_store: Optional[CredentialStore] = None,
        resolver: Optional[ExpressionResolver] = None,
        settings: Optional[Settings] = None,
        on_log: Optional[LogCallback] = None,
        env: Optional[Dict[str, Any]] = None,
        variables: Optional[Dict[str, Any]] = None,
        cancel_event: Optional[threading.Event] = None,
        run_index: int = 0,
    ):
        self.node = node
        self.workflow = workflow
        self.execution_id = execution_id
        self.mode = mode.value if isinstance(mode, ExecutionMode) else str(mode)
        self.node_type = node_type
        self.settings = settings or get_settings()
        self.credential_store = credential_store
        self.resolver = resolver or ExpressionResolver()
        self.env = env or {}
        self.variables = variables or {}
        self.cancel_event = cancel_event or threading.Event()

        self._store = store
        self._inputs: Dict[int, List[ExecutionItem]] = {input_index: input_data}
        self._input_index = input_index
        self._item_index = 0
        self._run_index = run_index

        self.logger = NodeLogger(node, execution_id, workflow.id, on_log)
        self.helpers = NodeHelpers(self)

    # ==== Input ====

    def get_input_data(self, input_index: int = 0) -> List[ExecutionItem]:
        """Items received on an input (empty if nothing arrived there)."""
        return self._inputs.get(input_index, [])

    def iter_items(self) -> Iterator[Tuple[int, ExecutionItem]]:
        """Iterate main input items, advancing the current item index."""
        items = self.get_input_data(self._input_index)
        for index, item in enumerate(items):
            self._item_index = index
            yield index, item

    def get_item_index(self) -> int:
        return self._item_index

    def get_run_index(self) -> int:
        return self._run_index

    # ==== Parameters ====

    def get_node_parameter(
        self,
        name: str,
        fallback: Any = MISSING,
        item_index: Optional[int] = None,
    ) -> Any:
        """
        Parameter value with expressions resolved against the current item.

        Falls back to the given fallback, then to the node type's declared
        default. A missing parameter without either raises
        WorkflowValidationError.
        """
        value = _lookup(self.node.parameters, name)

        if value is MISSING:
            if fallback is not MISSING:
                return fallback
            spec = parameter_specs(self.node_type).get(name, {}) if self.node_type else {}
            if "default" in spec and (not spec.get("required") or spec["default"] not in ("", None)):
                value = spec["default"]
            elif spec.get("required"):
                raise WorkflowValidationError(
                    f'Required parameter "{name}" is missing', node_id=self.node.id, parameter=name
                )
            else:
                raise WorkflowValidationError(
                    f'Parameter "{name}" is not defined', node_id=self.node.id, parameter=name
                )

        return self.resolver.resolve(value, self.expression_context(item_index))

    def evaluate_expression(self, expression: str, item_index: Optional[int] = None) -> Any:
        """Evaluate an expression ("{{ }}"/"=" marked or bare) for an item."""
        context = self.expression_context(item_index)
        if is_expression(expression):
            return self.resolver.resolve(expression, context)
        return self.resolver.evaluate(expression, context)

    def expression_context(self, item_index: Optional[int] = None) -> Dict[str, Any]:
        index = self._item_index if item_index is None else item_index
        return build_expression_context(
            items=self.get_input_data(self._input_index),
            item_index=index,
            node=self.node.model_dump(by_alias=True),
            workflow={"id": self.workflow.id, "name": self.workflow.name, "active": self.workflow.active},
            execution_id=self.execution_id,
            mode=self.mode,
            env=self.env,
            variables=self.variables,
            node_outputs=self._store.node_outputs(),
            run_index=self._run_index,
            timezone_name=self.workflow.settings.timezone,
        )

    # ==== Credentials ====

    def get_credentials(self, credential_type: str) -> Dict[str, Any]:
        """
        Credential data for a type the node references.

        Raises CredentialError when the node has no reference for the type
        or the store cannot provide it.
        """
        credential_id = self.node.credential_id(credential_type)
        if credential_id is None:
            raise CredentialError(
                f'No credentials of type "{credential_type}" configured',
                credential_type=credential_type,
            )
        if self.credential_store is None:
            raise CredentialError(
                "No credential store configured", credential_type=credential_type
            )
        return self.credential_store.get(credential_id, credential_type)

    # ==== Static data ====

    def get_workflow_static_data(self, scope: str = "workflow") -> Dict[str, Any]:
        """Mutable static data for "node" (this node only) or "workflow" scope."""
        return self._store.static_data(scope, self.node.id)

    def static_data_lock(self, scope: str = "workflow") -> threading.RLock:
        """Hold while doing read-modify-write on a static data slice."""
        return self._store.static_data_lock(scope, self.node.id)

    # ==== Cancellation ====

    def is_cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def check_cancelled(self) -> None:
        """Raise ExecutionCancelledError if the run was cancelled."""
        if self.cancel_event.is_set():
            raise ExecutionCancelledError("Execution was cancelled", node_id=self.node.id)

    def sleep(self, seconds: float) -> None:
        """Sleep that wakes up and raises as soon as the run is cancelled."""
        if self.cancel_event.wait(max(0.0, seconds)):
            self.check_cancelled()


def create_execution_context(
    node: WorkflowNode,
    workflow: Workflow,
    input_data: List[ExecutionItem],
    execution_id: str,
    mode: Union[ExecutionMode, str],
    store: ExecutionStateStore,
    **kwargs: Any,
) -> NodeExecutionContext:
    """Build the context for one execute attempt of a node."""
    return NodeExecutionContext(
        node=node,
        workflow=workflow,
        input_data=input_data,
        execution_id=execution_id,
        mode=mode,
        store=store,
        **kwargs,
    )


__all__ = [
    "ExecutionLogEntry",
    "LogCallback",
    "NodeExecutionContext",
    "NodeHelpers",
    "NodeLogger",
    "create_execution_context",
    "invoke_callback",
]
