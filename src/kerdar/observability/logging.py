"""Structured JSON logging with execution context."""
import logging
import sys
from typing import Any

from pythonjsonlogger import jsonlogger

from kerdar.config import get_settings


CONTEXT_FIELDS = ("execution_id", "workflow_id", "node_id", "node_name")


class ExecutionContextFilter(logging.Filter):
    """Add execution context to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        """Add default execution context fields if not present."""
        for field in CONTEXT_FIELDS:
            if not hasattr(record, field):
                setattr(record, field, None)
        return True


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with standardized field names."""

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        """Add custom fields to the log record."""
        super().add_fields(log_record, record, message_dict)

        if "timestamp" not in log_record:
            log_record["timestamp"] = self.formatTime(record, self.datefmt)

        log_record["level"] = record.levelname
        log_record["logger"] = record.name

        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value:
                log_record[field] = value


def setup_logging() -> None:
    """Configure logging for an application embedding the engine."""
    settings = get_settings()

    handler = logging.StreamHandler(sys.stdout)

    if settings.log_json:
        formatter: logging.Formatter = CustomJsonFormatter(
            "%(timestamp)s %(level)s %(name)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
        )
    else:
        formatter = logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s [%(execution_id)s/%(node_name)s] %(message)s"
        )
    handler.setFormatter(formatter)
    handler.addFilter(ExecutionContextFilter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(settings.log_level)

    # Reduce noise from third-party libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("requests").setLevel(logging.WARNING)


class ContextLoggerAdapter(logging.LoggerAdapter):
    """LoggerAdapter that merges per-call extra with its own."""

    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        kwargs["extra"] = {**(self.extra or {}), **kwargs.get("extra", {})}
        return msg, kwargs


def get_logger(name: str) -> logging.LoggerAdapter:
    """
    Get a logger with execution context support.

    Args:
        name: Logger name (typically __name__)

    Returns:
        LoggerAdapter that can accept execution context in extra dict
    """
    logger = logging.getLogger(name)
    return ContextLoggerAdapter(logger, extra={})


def with_execution_context(
    execution_id: str | None = None,
    workflow_id: str | None = None,
    node_id: str | None = None,
    node_name: str | None = None,
    **kwargs: Any,
) -> dict[str, Any]:
    """
    Create an extra dict with execution context for logging.

    Args:
        execution_id: Run id
        workflow_id: Workflow id
        node_id: Node id
        node_name: Node name
        **kwargs: Additional context fields

    Returns:
        Dict to pass as extra parameter to logger methods
    """
    extra = kwargs.copy()
    if execution_id:
        extra["execution_id"] = execution_id
    if workflow_id:
        extra["workflow_id"] = workflow_id
    if node_id:
        extra["node_id"] = node_id
    if node_name:
        extra["node_name"] = node_name
    return extra
