"""
Tests for the core node pack.
"""

import time

import pytest

from kerdar.node_sdk.errors import NodeOperationError
from kerdar.nodepacks.core.conditions import as_number, evaluate_condition, evaluate_conditions
from kerdar.nodepacks.core.nodes import get_path, set_path
from kerdar.workflow_runtime import InMemoryCredentialStore, NodeStatus, WorkflowExecutor


def run_node(executor, node_type, parameters=None, items=None, options=None, **node_fields):
    """Run a single node with the given input items; returns the record."""
    workflow = {
        "id": "wf",
        "nodes": [{"id": "n", "type": node_type, "parameters": parameters or {}, **node_fields}],
        "edges": [],
    }
    options = dict(options or {})
    if items is not None:
        options["inputData"] = items
    return executor.execute(workflow, options)


def output_json(record, channel=0):
    return [item["json"] for item in record.node_output("n")[channel]]


class FakeTransport:
    """Records outbound requests and replays queued responses."""

    def __init__(self):
        self.requests = []
        self.responses = []

    def send(self, client, options):
        self.requests.append(options)
        return self.responses.pop(0) if self.responses else {"ok": True}


@pytest.fixture
def transport(monkeypatch):
    fake = FakeTransport()
    monkeypatch.setattr(
        "kerdar.workflow_runtime.context.HttpClient.send",
        lambda client, options: fake.send(client, options),
    )
    return fake


class TestConditions:
    """Comparison operations."""

    @pytest.mark.parametrize(
        "value1,operation,value2,expected",
        [
            ("abc", "equals", "abc", True),
            (1, "equals", "1", True),
            (True, "equals", "true", True),
            ("abc", "notEquals", "abd", True),
            ("hello world", "contains", "wor", True),
            ("hello", "notContains", "x", True),
            ("hello", "startsWith", "he", True),
            ("hello", "endsWith", "lo", True),
            ("order-123", "regex", r"^order-\d+$", True),
            ("", "isEmpty", None, True),
            ([], "isEmpty", None, True),
            ({"a": 1}, "isNotEmpty", None, True),
            ("20", "greaterThan", 18, True),
            (18, "greaterThanOrEqual", "18", True),
            ("5kg", "lessThan", 10, True),
            (10, "lessThanOrEqual", 9, False),
            ("abc", "greaterThan", 1, False),
            (True, "isTrue", None, True),
            ("false", "isFalse", None, True),
            (0, "exists", None, True),
            (None, "doesNotExist", None, True),
        ],
    )
    def test_operations(self, value1, operation, value2, expected):
        assert evaluate_condition(value1, operation, value2) is expected

    def test_unknown_operation(self):
        with pytest.raises(NodeOperationError, match="Unknown operation"):
            evaluate_condition(1, "roughlyEquals", 1)

    def test_invalid_regex(self):
        with pytest.raises(NodeOperationError, match="Invalid regular expression"):
            evaluate_condition("x", "regex", "(")

    def test_combine(self):
        conditions = [
            {"value1": 1, "operation": "equals", "value2": 1},
            {"value1": 1, "operation": "equals", "value2": 2},
        ]
        assert evaluate_conditions(conditions, "and") is False
        assert evaluate_conditions(conditions, "or") is True
        assert evaluate_conditions([], "and") is True

    def test_as_number(self):
        assert as_number("3.5e2x") == 350.0
        assert as_number(True) == 1.0


class TestPaths:
    """Dot-notation helpers."""

    def test_get_path(self):
        data = {"user": {"tags": ["a", "b"]}}
        assert get_path(data, "user.tags.1") == "b"
        assert get_path(data, "user.missing.x") is None

    def test_set_path(self):
        data = {"user": "flat"}
        set_path(data, "user.name", "ada")
        set_path(data, "meta.source", "api")
        assert data == {"user": {"name": "ada"}, "meta": {"source": "api"}}


class TestPassThroughNodes:
    """manual-trigger and no-op."""

    def test_manual_trigger_without_input(self, executor):
        record = run_node(executor, "manual-trigger")
        assert output_json(record) == [{}]

    def test_no_op(self, executor):
        items = [{"json": {"a": 1}}, {"json": {"a": 2}}]
        record = run_node(executor, "no-op", items=items)
        assert record.node_output("n") == [items]


class TestSetVariableNode:
    """set-variable node."""

    def test_typed_fields_and_dot_notation(self, executor):
        record = run_node(executor, "set-variable", {
            "fields": {"values": [
                {"name": "user.name", "value": "{{ $json.first }}"},
                {"name": "age", "type": "number", "value": "36"},
                {"name": "active", "type": "boolean", "value": "true"},
                {"name": "tags", "type": "json", "value": '["a"]'},
            ]},
        }, items=[{"json": {"first": "ada"}}])

        assert output_json(record) == [{
            "first": "ada",
            "user": {"name": "ada"},
            "age": 36,
            "active": True,
            "tags": ["a"],
        }]

    def test_keep_only_set(self, executor):
        record = run_node(executor, "set-variable", {
            "keepOnlySet": True,
            "fields": {"values": [{"name": "id", "value": "{{ $json.id }}"}]},
        }, items=[{"json": {"id": "x", "noise": 1}}])
        assert output_json(record) == [{"id": "x"}]

    def test_json_mode(self, executor):
        record = run_node(executor, "set-variable", {
            "mode": "json",
            "jsonData": '{"source": "api"}',
        }, items=[{"json": {"id": 1}}])
        assert output_json(record) == [{"id": 1, "source": "api"}]

    def test_input_items_not_mutated(self, executor):
        items = [{"json": {"nested": {"a": 1}}}]
        run_node(executor, "set-variable", {
            "fields": {"values": [{"name": "nested.b", "value": "2"}]},
        }, items=items)
        assert items == [{"json": {"nested": {"a": 1}}}]

    def test_invalid_number(self, executor):
        record = run_node(executor, "set-variable", {
            "fields": {"values": [{"name": "n", "type": "number", "value": "abc"}]},
        })
        assert record.node_status("n") == NodeStatus.ERROR
        assert "is not a number" in record.run_data["n"].error["message"]


class TestRoutingNodes:
    """if and filter nodes."""

    ITEMS = [{"json": {"age": 20}}, {"json": {"age": "12"}}, {"json": {"age": 40}}]
    ADULT = {"conditions": [{"value1": "{{ $json.age }}", "operation": "greaterThanOrEqual", "value2": 18}]}

    def test_if_routes_true_and_false(self, executor):
        record = run_node(executor, "if", {"conditions": self.ADULT}, items=self.ITEMS)

        assert output_json(record, 0) == [{"age": 20}, {"age": 40}]
        assert output_json(record, 1) == [{"age": "12"}]
        assert [i["pairedItem"] for i in record.node_output("n")[0]] == [{"item": 0}, {"item": 2}]

    def test_if_or_combination(self, executor):
        record = run_node(executor, "if", {
            "combineConditions": "or",
            "conditions": {"conditions": [
                {"value1": "{{ $json.age }}", "operation": "lessThan", "value2": 15},
                {"value1": "{{ $json.age }}", "operation": "greaterThan", "value2": 30},
            ]},
        }, items=self.ITEMS)
        assert output_json(record, 0) == [{"age": "12"}, {"age": 40}]

    def test_filter_kept_and_discarded(self, executor):
        record = run_node(executor, "filter", {"conditions": self.ADULT}, items=self.ITEMS)
        assert output_json(record, 0) == [{"age": 20}, {"age": 40}]
        assert output_json(record, 1) == [{"age": "12"}]

    def test_filter_without_conditions_keeps_all(self, executor):
        record = run_node(executor, "filter", items=self.ITEMS)
        assert len(record.node_output("n")[0]) == 3


class TestListNodes:
    """limit and sort nodes."""

    ITEMS = [{"json": {"n": v}} for v in (3, 1, 2)]

    def test_limit_first(self, executor):
        record = run_node(executor, "limit", {"maxItems": 2}, items=self.ITEMS)
        assert output_json(record) == [{"n": 3}, {"n": 1}]

    def test_limit_last(self, executor):
        record = run_node(executor, "limit", {"maxItems": 2, "keep": "lastItems"}, items=self.ITEMS)
        assert output_json(record) == [{"n": 1}, {"n": 2}]
        assert [i["pairedItem"]["item"] for i in record.node_output("n")[0]] == [1, 2]

    def test_limit_zero(self, executor):
        record = run_node(executor, "limit", {"maxItems": 0, "keep": "lastItems"}, items=self.ITEMS)
        assert output_json(record) == []

    def test_sort(self, executor):
        items = self.ITEMS + [{"json": {"other": True}}]
        asc = run_node(executor, "sort", {"sortField": "n"}, items=items)
        desc = run_node(executor, "sort", {"sortField": "n", "sortOrder": "desc"}, items=items)

        assert output_json(asc) == [{"n": 1}, {"n": 2}, {"n": 3}, {"other": True}]
        assert output_json(desc) == [{"n": 3}, {"n": 2}, {"n": 1}, {"other": True}]

    def test_sort_nested_field(self, executor):
        items = [{"json": {"user": {"name": n}}} for n in ("bob", "ada")]
        record = run_node(executor, "sort", {"sortField": "user.name"}, items=items)
        assert [j["user"]["name"] for j in output_json(record)] == ["ada", "bob"]

    def test_sort_mixed_types(self, executor):
        items = [{"json": {"n": 1}}, {"json": {"n": "x"}}]
        record = run_node(executor, "sort", {"sortField": "n"}, items=items)
        assert record.node_status("n") == NodeStatus.ERROR
        assert "mixed types" in record.run_data["n"].error["message"]


class TestWaitNode:
    """wait node."""

    def test_waits(self, executor):
        started = time.monotonic()
        record = run_node(executor, "wait", {"amount": 50, "unit": "milliseconds"}, items=[{"json": {"a": 1}}])

        assert time.monotonic() - started >= 0.05
        assert output_json(record) == [{"a": 1}]

    def test_unknown_unit(self, executor):
        record = run_node(executor, "wait", {"amount": 1, "unit": "fortnights"})
        assert "Unknown wait unit" in record.run_data["n"].error["message"]

    def test_wait_bounded_by_node_timeout(self, executor):
        record = executor.execute(
            {"nodes": [{"id": "n", "type": "wait", "parameters": {"amount": 5}}]},
            {"nodeTimeout": 0.05},
        )
        assert record.run_data["n"].error["name"] == "NodeTimeoutError"


class TestHttpRequestNode:
    """http-request node."""

    def test_get_request(self, executor, transport):
        record = run_node(executor, "http-request", {
            "url": "https://api.example.com/users/{{ $json.id }}",
            "sendQuery": True,
            "queryParameters": {"parameters": [{"name": "expand", "value": "all"}]},
            "sendHeaders": True,
            "headerParameters": {"parameters": [{"name": "X-Trace", "value": "t1"}]},
            "options": {"timeout": 2500},
        }, items=[{"json": {"id": 7}}])

        request = transport.requests[0]
        assert request["method"] == "GET"
        assert request["url"] == "https://api.example.com/users/7"
        assert request["qs"] == {"expand": "all"}
        assert request["headers"]["X-Trace"] == "t1"
        assert request["timeout"] == 2.5
        assert "body" not in request
        assert output_json(record) == [{"ok": True}]

    def test_post_json_body(self, executor, transport):
        run_node(executor, "http-request", {
            "method": "post",
            "url": "https://api.example.com/items",
            "sendBody": True,
            "body": '{"name": "{{ $json.name }}"}',
        }, items=[{"json": {"name": "ada"}}])

        request = transport.requests[0]
        assert request["method"] == "POST"
        assert request["body"] == {"name": "ada"}
        assert request["headers"]["Content-Type"] == "application/json"

    def test_one_request_per_item(self, executor, transport):
        transport.responses.extend([[1, 2], "text"])
        record = run_node(executor, "http-request", {"url": "https://x.test"}, items=[{"json": {}}, {"json": {}}])

        assert len(transport.requests) == 2
        assert output_json(record) == [{"data": [1, 2]}, {"data": "text"}]

    def test_basic_auth_credentials(self, registry, transport):
        store = InMemoryCredentialStore()
        store.add("cred-1", "httpBasicAuth", {"username": "u", "password": "p"})
        executor = WorkflowExecutor(registry, credential_store=store)

        run_node(
            executor, "http-request",
            {"url": "https://x.test", "authentication": "basicAuth"},
            credentials={"httpBasicAuth": {"id": "cred-1"}},
        )

        assert transport.requests[0]["headers"]["Authorization"] == "Basic dTpw"

    def test_inline_bearer_token(self, executor, transport):
        run_node(executor, "http-request", {
            "url": "https://x.test",
            "authentication": "bearerToken",
            "bearerToken": "{{ $env.TOKEN }}",
        }, options={"env": {"TOKEN": "abc"}})
        assert transport.requests[0]["headers"]["Authorization"] == "Bearer abc"

    def test_missing_url(self, executor, transport):
        record = run_node(executor, "http-request", {"url": ""})
        assert record.run_data["n"].error["message"] == "URL is required"
        assert transport.requests == []


class TestErrorHandlerNode:
    """error-handler node."""

    ERROR_ITEMS = [
        {"json": {"ok": 1}},
        {"json": {"error": {"message": "upstream failed", "name": "NodeApiError"}}},
    ]

    def test_stop_workflow_uses_configured_message(self, executor):
        record = run_node(executor, "error-handler", {
            "errorHandling": "stopWorkflow",
            "errorMessage": "Sync aborted",
        }, items=self.ERROR_ITEMS)

        assert record.node_status("n") == NodeStatus.ERROR
        assert record.run_data["n"].error["message"] == "Sync aborted"

    def test_stop_workflow_defaults_to_item_error(self, executor):
        record = run_node(executor, "error-handler", items=self.ERROR_ITEMS)
        assert record.run_data["n"].error["message"] == "upstream failed"

    def test_passes_items_without_errors(self, executor):
        record = run_node(executor, "error-handler", items=[{"json": {"ok": 1}}])
        assert output_json(record) == [{"ok": 1}]

    def test_continue_with_data(self, executor):
        record = run_node(executor, "error-handler", {"errorHandling": "continueWithData"}, items=self.ERROR_ITEMS)
        assert output_json(record)[1]["_errorHandled"] is True

    def test_use_default(self, executor):
        record = run_node(executor, "error-handler", {
            "errorHandling": "useDefault",
            "defaultData": '{"status": "fallback"}',
        }, items=self.ERROR_ITEMS)
        assert output_json(record) == [{"ok": 1}, {"status": "fallback", "_usedDefaultData": True}]

    def test_handles_continue_on_fail_output(self, executor):
        record = executor.execute({
            "nodes": [
                {"id": "fail", "type": "test-fail", "continueOnFail": True, "parameters": {"message": "api down"}},
                {"id": "handler", "type": "error-handler"},
            ],
            "edges": [{"source": "fail", "target": "handler"}],
        })
        assert record.run_data["handler"].error["message"] == "api down"
