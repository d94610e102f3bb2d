"""Tests for structured logging."""
import importlib
import json
import logging

import pytest

from kerdar.observability.logging import (
    ContextLoggerAdapter,
    CustomJsonFormatter,
    ExecutionContextFilter,
    get_logger,
    setup_logging,
    with_execution_context,
)


def make_record(**extra):
    record = logging.LogRecord("kerdar.test", logging.INFO, __file__, 1, "node finished", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestExecutionContext:
    """Test execution context helpers."""

    def test_with_execution_context_skips_empty(self):
        """Test that only provided fields end up in extra."""
        extra = with_execution_context(execution_id="exec-1", node_name="Fetch", attempt=2)

        assert extra == {"execution_id": "exec-1", "node_name": "Fetch", "attempt": 2}

    def test_filter_fills_missing_fields(self):
        """Test that the filter sets absent context fields to None."""
        record = make_record(node_id="n1")

        assert ExecutionContextFilter().filter(record) is True
        assert record.node_id == "n1"
        assert record.execution_id is None
        assert record.workflow_id is None

    def test_adapter_merges_extra(self):
        """Test that per-call extra overrides the adapter's own."""
        adapter = ContextLoggerAdapter(logging.getLogger("kerdar.test"), extra={"workflow_id": "wf", "node_id": "a"})

        _, kwargs = adapter.process("msg", {"extra": {"node_id": "b"}})

        assert kwargs["extra"] == {"workflow_id": "wf", "node_id": "b"}

    def test_get_logger(self):
        """Test that get_logger wraps the named logger."""
        logger = get_logger("kerdar.sample")

        assert isinstance(logger, ContextLoggerAdapter)
        assert logger.logger.name == "kerdar.sample"

    @pytest.mark.parametrize(
        "module_name",
        [
            "kerdar.node_sdk.http",
            "kerdar.node_registry.registry",
            "kerdar.workflow_runtime.credentials",
            "kerdar.workflow_runtime.context",
            "kerdar.workflow_runtime.dispatcher",
            "kerdar.workflow_runtime.executor",
        ],
    )
    def test_module_loggers_accept_context(self, module_name):
        """Test that every module logger is a context adapter named after its module."""
        module = importlib.import_module(module_name)

        assert isinstance(module.logger, ContextLoggerAdapter)
        assert module.logger.logger.name == module_name


class TestJsonFormatter:
    """Test JSON output."""

    def test_context_fields_in_output(self):
        """Test that context fields and level are emitted."""
        formatter = CustomJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s")
        record = make_record(execution_id="exec-1", workflow_id="wf", node_id=None)

        data = json.loads(formatter.format(record))

        assert data["message"] == "node finished"
        assert data["level"] == "INFO"
        assert data["logger"] == "kerdar.test"
        assert data["execution_id"] == "exec-1"
        assert data["workflow_id"] == "wf"
        assert "timestamp" in data


class TestSetupLogging:
    """Test root logger configuration."""

    def test_json_handler(self, monkeypatch):
        """Test that JSON mode installs the JSON formatter."""
        monkeypatch.setenv("KERDAR_LOG_JSON", "true")
        monkeypatch.setenv("KERDAR_LOG_LEVEL", "DEBUG")
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level

        try:
            setup_logging()

            assert len(root.handlers) == 1
            handler = root.handlers[0]
            assert isinstance(handler.formatter, CustomJsonFormatter)
            assert any(isinstance(f, ExecutionContextFilter) for f in handler.filters)
            assert root.level == logging.DEBUG
            assert logging.getLogger("urllib3").level == logging.WARNING
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)

    def test_plain_handler(self):
        """Test that plain mode uses a text formatter with context."""
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level

        try:
            setup_logging()

            formatter = root.handlers[0].formatter
            assert not isinstance(formatter, CustomJsonFormatter)
            assert "%(execution_id)s" in formatter._fmt
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)
