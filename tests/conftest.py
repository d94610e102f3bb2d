"""Pytest configuration and fixtures."""
import os
import threading

import pytest

# Set test environment variables
os.environ["KERDAR_ENV"] = "test"
os.environ["KERDAR_LOG_JSON"] = "false"
os.environ["KERDAR_CANCEL_POLL_INTERVAL_S"] = "0.005"

from kerdar.config import reset_settings  # noqa: E402
from kerdar.node_registry import NodeRegistry  # noqa: E402
from kerdar.node_sdk.errors import NodeOperationError  # noqa: E402
from kerdar.nodepacks.core import register_nodes  # noqa: E402
from kerdar.workflow_runtime import WorkflowExecutor  # noqa: E402


@pytest.fixture(autouse=True)
def fresh_settings():
    """Settings are re-read from the environment for every test."""
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def calls():
    """Node ids in the order their execute() ran."""
    return []


@pytest.fixture
def registry(calls):
    """Registry with the core pack plus small test nodes."""
    registry = NodeRegistry()
    registry.register_pack(*register_nodes())

    @registry.node("test-emit")
    def emit(context):
        calls.append(context.node.id)
        rows = context.get_node_parameter("rows", [{"x": 1}])
        return [[{"json": dict(row)} for row in rows]]

    @registry.node("test-passthrough")
    def passthrough(context):
        calls.append(context.node.id)
        return [[item for _, item in context.iter_items()]]

    @registry.node("test-fail")
    def fail(context):
        calls.append(context.node.id)
        raise NodeOperationError(context.get_node_parameter("message", "boom"))

    @registry.node("test-flaky")
    def flaky(context):
        # Fails on the first `failures` attempts
        calls.append(context.node.id)
        if context.get_run_index() < context.get_node_parameter("failures", 1):
            raise NodeOperationError(f"attempt {context.get_run_index() + 1} failed")
        return [[{"json": {"attempt": context.get_run_index() + 1}}]]

    @registry.node("test-hang")
    def hang(context):
        calls.append(context.node.id)
        threading.Event().wait(context.get_node_parameter("seconds", 2.0))
        return [[{"json": {"late": True}}]]

    @registry.node("test-split")
    def split(context):
        # json.route selects the output channel
        calls.append(context.node.id)
        channels = [[], []]
        for _, item in context.iter_items():
            channels[1 if item["json"].get("route") == 1 else 0].append(item)
        return channels

    @registry.node("test-counter")
    def counter(context):
        calls.append(context.node.id)
        with context.static_data_lock("workflow"):
            data = context.get_workflow_static_data("workflow")
            data["count"] = data.get("count", 0) + 1
        node_data = context.get_workflow_static_data("node")
        node_data["seen"] = node_data.get("seen", 0) + 1
        return [[{"json": {"count": data["count"]}}]]

    return registry


@pytest.fixture
def executor(registry):
    """Executor over the test registry."""
    return WorkflowExecutor(registry)


def linear_workflow(*node_dicts, **workflow_fields):
    """
    Workflow of nodes chained in the given order.

    Each argument is a node dict; ids default to n0, n1, ...
    """
    nodes = []
    for index, node_dict in enumerate(node_dicts):
        node = dict(node_dict)
        node.setdefault("id", f"n{index}")
        nodes.append(node)
    edges = [
        {"source": a["id"], "target": b["id"]}
        for a, b in zip(nodes, nodes[1:])
    ]
    return {"id": "wf", "name": "Test Workflow", "nodes": nodes, "edges": edges, **workflow_fields}


@pytest.fixture
def make_linear():
    return linear_workflow
