"""
Workflow Executor - Runs a workflow and returns its ExecutionRecord.

Resolves start nodes, dispatches each with the run's initial input,
waits for the reachable subgraph to finish and aggregates the result.

Branches below a start node run sequentially. With max_concurrency > 1
the start nodes themselves are dispatched on a thread pool.

Usage:
    registry = NodeRegistry()
    registry.discover_entry_points()

    executor = WorkflowExecutor(registry)
    record = executor.execute(workflow_json)
    record.status            # "success" | "error"
    record.to_dict()         # JSON form
"""

from __future__ import annotations

import threading
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from kerdar.config import Settings, get_settings
from kerdar.node_sdk.errors import (
    ExecutionAbortedError,
    ExecutionCancelledError,
    WorkflowRunError,
    WorkflowValidationError,
    error_to_dict,
)
from kerdar.node_sdk.items import ExecutionItem, normalize_items
from kerdar.observability import get_logger, with_execution_context

from .context import LogCallback
from .credentials import CredentialStore
from .dispatcher import NodeDispatcher, ProgressCallback, RunEnvironment
from .expression import ExpressionResolver
from .graph import WorkflowGraph
from .models import ExecutionOptions, Workflow, WorkflowNode, parse_workflow
from .state import ExecutionRecord, ExecutionStateStore, ExecutionStatus


logger = get_logger(__name__)


class WorkflowExecutor:
    """
    Executes workflows against a node registry.

    The executor itself holds no run state; each execute() call creates
    its own ExecutionStateStore, so one executor may serve concurrent runs.
    """

    def __init__(
        self,
        registry: Any,
        credential_store: Optional[CredentialStore] = None,
        settings: Optional[Settings] = None,
        on_progress: Optional[ProgressCallback] = None,
        on_log: Optional[LogCallback] = None,
    ):
        """
        Initialize executor.

        Args:
            registry: Anything with get_node_type(type) -> NodeType | None
            credential_store: Source of credential data for nodes
            settings: Engine settings (default: get_settings())
            on_progress: Called as (node_id, status, payload) on transitions
            on_log: Called with an ExecutionLogEntry for every node log call
        """
        self.registry = registry
        self.credential_store = credential_store
        self.settings = settings or get_settings()
        self.on_progress = on_progress
        self.on_log = on_log
        self.resolver = ExpressionResolver()

    def execute(
        self,
        workflow: Union[Workflow, Dict[str, Any]],
        options: Optional[Union[ExecutionOptions, Dict[str, Any]]] = None,
    ) -> ExecutionRecord:
        """
        Execute a workflow.

        Args:
            workflow: Workflow model or JSON dict
            options: Run options (model or dict)

        Returns:
            ExecutionRecord with every node's run data

        Raises:
            WorkflowValidationError: Malformed graph or no start node
            ExecutionAbortedError: A node failed with stop_on_error set
            ExecutionCancelledError: Cancelled by the caller or executionTimeout
        """
        workflow = parse_workflow(workflow)
        if options is None:
            options = ExecutionOptions()
        elif isinstance(options, dict):
            options = ExecutionOptions.model_validate(options)

        graph = WorkflowGraph(workflow)
        start_nodes = graph.find_start_nodes(options.start_node_id)
        if not start_nodes:
            if options.start_node_id is not None:
                raise WorkflowValidationError(
                    f"Start node not found: {options.start_node_id}", node_id=options.start_node_id
                )
            raise WorkflowValidationError("No start nodes found")

        execution_id = uuid.uuid4().hex
        started_at = datetime.now(timezone.utc)
        store = ExecutionStateStore(workflow)

        env = RunEnvironment(
            execution_id=execution_id,
            workflow=workflow,
            graph=graph,
            store=store,
            registry=self.registry,
            options=options,
            settings=self.settings,
            node_timeout=self._node_timeout(workflow, options),
            credential_store=self.credential_store,
            resolver=self.resolver,
            on_progress=self.on_progress,
            on_log=self.on_log,
        )
        extra = with_execution_context(execution_id=execution_id, workflow_id=workflow.id)
        logger.info(
            "Execution started: %s (%d nodes, %d start nodes)",
            workflow.name, len(graph), len(start_nodes), extra=extra,
        )

        timed_out = threading.Event()
        timer = self._start_execution_timer(workflow, env, timed_out)

        failure: Optional[WorkflowRunError] = None
        try:
            self._run(NodeDispatcher(env), start_nodes, self._initial_input(options), options)
        except (ExecutionAbortedError, ExecutionCancelledError) as e:
            failure = e
        finally:
            if timer is not None:
                timer.cancel()

        cancelled = isinstance(failure, ExecutionCancelledError)
        if cancelled and timed_out.is_set():
            failure = ExecutionCancelledError(
                f"Execution timed out after {workflow.settings.execution_timeout}ms",
                node_id=failure.node_id,
            )

        status = store.aggregate_status(cancelled=cancelled)
        record = store.build_record(
            execution_id=execution_id,
            workflow=workflow,
            mode=options.mode.value,
            started_at=started_at,
            status=status,
            run_error=error_to_dict(failure) if failure else None,
        )

        logger.info("Execution finished: %s (%s)", workflow.name, record.status.value, extra=extra)

        if failure is not None:
            failure.record = record
            raise failure
        return record

    def _run(
        self,
        dispatcher: NodeDispatcher,
        start_nodes: List[WorkflowNode],
        input_data: List[ExecutionItem],
        options: ExecutionOptions,
    ) -> None:
        max_concurrency = options.max_concurrency or self.settings.default_max_concurrency
        if max_concurrency <= 1 or len(start_nodes) <= 1:
            for node in start_nodes:
                dispatcher.dispatch(node.id, input_data)
            return

        failure: Optional[WorkflowRunError] = None
        with ThreadPoolExecutor(max_workers=max_concurrency, thread_name_prefix="kerdar-branch") as pool:
            futures = [pool.submit(dispatcher.dispatch, node.id, input_data) for node in start_nodes]
            for future in as_completed(futures):
                try:
                    future.result()
                except ExecutionAbortedError as e:
                    # Stop the other branches; the abort is what gets reported
                    if not isinstance(failure, ExecutionAbortedError):
                        failure = e
                    dispatcher.env.cancel_event.set()
                except ExecutionCancelledError as e:
                    if failure is None:
                        failure = e

        if failure is not None:
            raise failure

    def _node_timeout(self, workflow: Workflow, options: ExecutionOptions) -> float:
        if options.node_timeout is not None:
            return options.node_timeout
        if workflow.settings.max_node_execution_time:
            return workflow.settings.max_node_execution_time / 1000.0
        return self.settings.default_node_timeout_s

    @staticmethod
    def _initial_input(options: ExecutionOptions) -> List[ExecutionItem]:
        if options.input_data is None:
            return [{"json": {}}]
        return normalize_items(options.input_data)

    @staticmethod
    def _start_execution_timer(
        workflow: Workflow,
        env: RunEnvironment,
        timed_out: threading.Event,
    ) -> Optional[threading.Timer]:
        timeout_ms = workflow.settings.execution_timeout
        if timeout_ms is None or timeout_ms <= 0:
            return None

        def expire() -> None:
            timed_out.set()
            env.cancel_event.set()

        timer = threading.Timer(timeout_ms / 1000.0, expire)
        timer.daemon = True
        timer.start()
        return timer


def execute_workflow(
    workflow: Union[Workflow, Dict[str, Any]],
    registry: Any,
    options: Optional[Union[ExecutionOptions, Dict[str, Any]]] = None,
    **kwargs: Any,
) -> ExecutionRecord:
    """
    One-shot convenience wrapper.

    Args:
        workflow: Workflow model or JSON dict
        registry: Node registry
        options: Run options
        **kwargs: WorkflowExecutor arguments (credential_store, on_progress, ...)
    """
    return WorkflowExecutor(registry, **kwargs).execute(workflow, options)


__all__ = [
    "WorkflowExecutor",
    "execute_workflow",
]
