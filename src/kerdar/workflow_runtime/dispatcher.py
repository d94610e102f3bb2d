"""
Node Dispatcher - Runs one node to completion or failure.

State machine per node: pending -> running -> {success, error, skipped}.

- disabled: skipped, downstream receives one empty channel
- unknown type: error, nothing executed, nothing propagated
- otherwise execute() runs on a worker thread raced against the node
  timeout and the run's cancellation signal, with retries when the node
  asks for them
- failure with continueOnFail: one {"json": {"error": ...}} item goes
  downstream while the node itself is recorded as error
- failure without it: the branch stops; with stop_on_error the whole
  run is aborted
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from kerdar.config import Settings
from kerdar.node_sdk.basenode import NodeType
from kerdar.node_sdk.errors import (
    EvaluationError,
    ExecutionAbortedError,
    ExecutionCancelledError,
    NodeExecutionError,
    NodeTimeoutError,
    UnknownNodeTypeError,
    WorkflowValidationError,
    error_to_dict,
)
from kerdar.node_sdk.items import ExecutionItem, OutputChannels, has_items, normalize_items
from kerdar.observability import get_logger, with_execution_context

from .context import LogCallback, create_execution_context, invoke_callback
from .credentials import CredentialStore
from .expression import ExpressionResolver
from .graph import WorkflowGraph
from .models import ExecutionOptions, Workflow, WorkflowNode
from .propagator import DownstreamPropagator
from .state import ExecutionStateStore, NodeStatus


logger = get_logger(__name__)

ProgressCallback = Callable[[str, str, Optional[Dict[str, Any]]], Any]

# Failures that are deterministic for a given input
NON_RETRYABLE = (WorkflowValidationError, EvaluationError)


@dataclass
class RunEnvironment:
    """Everything shared by the dispatches of one run."""
    execution_id: str
    workflow: Workflow
    graph: WorkflowGraph
    store: ExecutionStateStore
    registry: Any
    options: ExecutionOptions
    settings: Settings
    node_timeout: float
    credential_store: Optional[CredentialStore] = None
    resolver: ExpressionResolver = field(default_factory=ExpressionResolver)
    on_progress: Optional[ProgressCallback] = None
    on_log: Optional[LogCallback] = None
    cancel_event: threading.Event = field(default_factory=threading.Event)

    def is_cancelled(self) -> bool:
        """True once the caller's event or the run's own event is set."""
        external = self.options.cancel_event
        if external is not None and external.is_set():
            self.cancel_event.set()
        return self.cancel_event.is_set()

    def wait(self, seconds: float) -> bool:
        """Sleep up to seconds; returns True early if the run is cancelled."""
        deadline = time.monotonic() + seconds
        while True:
            if self.is_cancelled():
                return True
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            self.cancel_event.wait(min(remaining, self.settings.cancel_poll_interval_s))

    def log_extra(self, node: Optional[WorkflowNode] = None) -> Dict[str, Any]:
        return with_execution_context(
            execution_id=self.execution_id,
            workflow_id=self.workflow.id,
            node_id=node.id if node else None,
            node_name=node.name if node else None,
        )


class NodeDispatcher:
    """
    Dispatches nodes of one run.

    dispatch() returns once the node and everything downstream of it in
    the same branch has finished.
    """

    def __init__(self, env: RunEnvironment):
        self.env = env
        self.propagator = DownstreamPropagator(env.graph, self.dispatch)

    def dispatch(self, node_id: str, input_data: List[ExecutionItem], input_index: int = 0) -> None:
        """
        Run a node with the given input, then propagate its output.

        Raises:
            ExecutionCancelledError: The run was cancelled
            ExecutionAbortedError: The node failed and stop_on_error is set
        """
        env = self.env
        if env.is_cancelled():
            raise ExecutionCancelledError("Execution was cancelled", node_id=node_id)

        node = env.graph.get_node(node_id)
        if node is None:
            raise WorkflowValidationError(f"Unknown node: {node_id}", node_id=node_id)

        if not env.store.claim(node_id):
            logger.info(
                "Node %s already dispatched, input ignored", node.name, extra=env.log_extra(node)
            )
            return

        if node.disabled:
            env.store.mark_skipped(node_id, input_data)
            self._progress(node_id, NodeStatus.SKIPPED)
            logger.debug("Node %s disabled, skipped", node.name, extra=env.log_extra(node))
            self._propagate(node, [[]])
            return

        node_type = env.registry.get_node_type(node.type)
        if node_type is None:
            self._fail(node, UnknownNodeTypeError(node.type), allow_continue=False)
            return

        env.store.mark_running(node_id, input_data)
        self._progress(node_id, NodeStatus.RUNNING)
        logger.debug("Node %s running (%s)", node.name, node.type, extra=env.log_extra(node))

        pinned = env.options.pin_data.get(node_id, node.pinned_data)
        if pinned is not None:
            logger.debug("Node %s uses pinned data", node.name, extra=env.log_extra(node))
            self._succeed(node, [normalize_items(pinned)])
            return

        items = input_data[:1] if node.execute_once else input_data
        try:
            output = self._execute_with_retry(node, node_type, items, input_index)
        except ExecutionCancelledError:
            env.store.mark_error(node_id, {"message": "Execution was cancelled", "name": "ExecutionCancelledError"})
            self._progress(node_id, NodeStatus.ERROR)
            raise
        except Exception as e:
            self._fail(node, e, allow_continue=not isinstance(e, WorkflowValidationError))
            return

        if node.always_output_data and not has_items(output):
            output = [[{"json": {}}]] + output[1:]

        self._succeed(node, output)

    # ==== Execution ====

    def _execute_with_retry(
        self,
        node: WorkflowNode,
        node_type: NodeType,
        items: List[ExecutionItem],
        input_index: int,
    ) -> OutputChannels:
        env = self.env
        max_attempts = max(1, node.max_tries) if node.retry_on_fail else 1
        wait_s = min(max(0, node.wait_between_tries) / 1000.0, env.settings.max_retry_wait_s)

        attempt = 0
        while True:
            attempt += 1
            env.store.record_attempt(node.id)
            try:
                return self._execute_with_timeout(node, node_type, items, input_index, attempt - 1)
            except (ExecutionCancelledError, *NON_RETRYABLE):
                raise
            except Exception as e:
                if attempt >= max_attempts:
                    raise
                logger.warning(
                    "Node %s failed (%s), retrying in %.2fs (%d/%d)",
                    node.name, e, wait_s, attempt, max_attempts,
                    extra=env.log_extra(node),
                )
                if env.wait(wait_s):
                    raise ExecutionCancelledError("Execution was cancelled", node_id=node.id) from e

    def _execute_with_timeout(
        self,
        node: WorkflowNode,
        node_type: NodeType,
        items: List[ExecutionItem],
        input_index: int,
        run_index: int,
    ) -> OutputChannels:
        """
        Run execute() on a daemon worker and race it against the timeout.

        A worker that overruns is abandoned; its late result is discarded.
        """
        env = self.env
        context = create_execution_context(
            node=node,
            workflow=env.workflow,
            input_data=items,
            execution_id=env.execution_id,
            mode=env.options.mode,
            store=env.store,
            node_type=node_type,
            input_index=input_index,
            credential_store=env.credential_store,
            resolver=env.resolver,
            settings=env.settings,
            on_log=env.on_log,
            env=env.options.env,
            variables=env.options.variables,
            cancel_event=env.cancel_event,
            run_index=run_index,
        )

        result: Dict[str, Any] = {}
        done = threading.Event()

        def run() -> None:
            try:
                result["output"] = node_type.execute(context)
            except Exception as e:
                result["error"] = e
            except BaseException as e:
                result["error"] = NodeExecutionError(
                    f"Node stopped abnormally: {type(e).__name__}: {e}"
                )
            finally:
                done.set()

        worker = threading.Thread(target=run, name=f"kerdar-node-{node.id}", daemon=True)
        worker.start()

        timeout = env.node_timeout
        deadline = time.monotonic() + timeout
        poll = env.settings.cancel_poll_interval_s
        while not done.is_set():
            if env.is_cancelled():
                raise ExecutionCancelledError("Execution was cancelled", node_id=node.id)
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.warning(
                    "Node %s timed out after %.3fs", node.name, timeout, extra=env.log_extra(node)
                )
                raise NodeTimeoutError(f"Execution timeout ({int(timeout * 1000)}ms)", timeout=timeout)
            done.wait(min(remaining, poll))

        if "error" in result:
            raise result["error"]
        if "output" not in result:
            raise NodeExecutionError("Node stopped without returning output")
        return self._normalize_output(result["output"])

    @staticmethod
    def _normalize_output(output: Any) -> OutputChannels:
        """Accept None, a flat item list or channels; always return channels."""
        if output is None:
            return [[]]
        if isinstance(output, dict):
            return [normalize_items(output)]
        if not isinstance(output, list):
            raise TypeError(f"Node returned {type(output).__name__}, expected a list of output channels")
        if not output:
            return [[]]
        if all(isinstance(channel, list) for channel in output):
            return [normalize_items(channel) for channel in output]
        return [normalize_items(output)]

    # ==== Transitions ====

    def _succeed(self, node: WorkflowNode, output: OutputChannels) -> None:
        self.env.store.mark_success(node.id, output)
        self._progress(node.id, NodeStatus.SUCCESS, {"output": output})
        logger.debug(
            "Node %s succeeded (%d items)", node.name, sum(len(c) for c in output),
            extra=self.env.log_extra(node),
        )
        self._propagate(node, output)

    def _fail(self, node: WorkflowNode, error: Exception, allow_continue: bool = True) -> None:
        env = self.env
        error_data = error_to_dict(error)

        if allow_continue and node.continue_on_fail:
            output: OutputChannels = [[{"json": {"error": error_data}, "pairedItem": {"item": 0}}]]
            env.store.mark_error(node.id, error_data, output=output)
            self._progress(node.id, NodeStatus.ERROR, {"error": error_data})
            logger.warning(
                "Node %s failed, continuing: %s", node.name, error_data["message"],
                extra=env.log_extra(node),
            )
            self._propagate(node, output)
            return

        env.store.mark_error(node.id, error_data)
        self._progress(node.id, NodeStatus.ERROR, {"error": error_data})
        logger.error("Node %s failed: %s", node.name, error_data["message"], extra=env.log_extra(node))

        if env.options.stop_on_error:
            raise ExecutionAbortedError(
                f"Node '{node.name}' failed: {error_data['message']}", node_id=node.id
            ) from error

    def _propagate(self, node: WorkflowNode, output: OutputChannels) -> None:
        if self.env.options.run_until_node_id == node.id:
            logger.debug("Stopping after %s", node.name, extra=self.env.log_extra(node))
            return
        self.propagator.propagate(node.id, output)

    def _progress(
        self,
        node_id: str,
        status: NodeStatus,
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        invoke_callback(self.env.on_progress, node_id, status.value, payload)


__all__ = [
    "NON_RETRYABLE",
    "NodeDispatcher",
    "ProgressCallback",
    "RunEnvironment",
]
