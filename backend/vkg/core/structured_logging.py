"""
Structured Logging Configuration

Implements:
- JSON or key=value logs with structlog
- Trace ID correlation across one pipeline run
- Tenant/workspace context on every entry
- Error categorization
"""

import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog
from structlog.types import EventDict, Processor

# Context variables (async-safe: each pipeline task sees its own values)
trace_id_var: ContextVar[Optional[str]] = ContextVar("trace_id", default=None)
tenant_id_var: ContextVar[Optional[str]] = ContextVar("tenant_id", default=None)
workspace_id_var: ContextVar[Optional[str]] = ContextVar("workspace_id", default=None)


def get_trace_id() -> str:
    """Get current trace ID or generate new one"""
    trace_id = trace_id_var.get()
    if not trace_id:
        trace_id = str(uuid.uuid4())
        trace_id_var.set(trace_id)
    return trace_id


def set_trace_id(trace_id: str) -> None:
    """Set trace ID for current context"""
    trace_id_var.set(trace_id)


def set_run_context(tenant_id: Optional[str] = None, workspace_id: Optional[str] = None) -> None:
    """Set tenant/workspace context for logging"""
    if tenant_id:
        tenant_id_var.set(tenant_id)
    if workspace_id:
        workspace_id_var.set(workspace_id)


def clear_context() -> None:
    """Clear logging context (call at run end)"""
    trace_id_var.set(None)
    tenant_id_var.set(None)
    workspace_id_var.set(None)


def add_trace_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add trace ID and tenant context to all log entries"""
    trace_id = trace_id_var.get()
    if trace_id:
        event_dict["trace_id"] = trace_id

    tenant_id = tenant_id_var.get()
    if tenant_id:
        event_dict["tenant_id"] = tenant_id

    workspace_id = workspace_id_var.get()
    if workspace_id:
        event_dict["workspace_id"] = workspace_id

    return event_dict


def add_timestamp(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add ISO8601 timestamp"""
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def categorize_error(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Categorize pipeline errors for better filtering"""
    error_code = event_dict.get("error_code")
    if error_code:
        event_dict["error_category"] = {
            "GENERATION_ERROR": "oracle",
            "ANSWER_ERROR": "oracle",
            "EXECUTION_ERROR": "engine",
            "VALIDATION_ERROR": "validation",
            "GRAPH_BUILD_ERROR": "graph",
        }.get(error_code, "application")
        return event_dict

    exc_info = event_dict.get("exc_info")
    if exc_info and isinstance(exc_info, tuple):
        exc_type = exc_info[0].__name__
        if "Timeout" in exc_type:
            event_dict["error_category"] = "timeout"
        elif "Connect" in exc_type or "Network" in exc_type:
            event_dict["error_category"] = "network"
        else:
            event_dict["error_category"] = "application"

    return event_dict


def configure_structured_logging(
    log_level: str = "INFO",
    json_format: bool = True,
) -> None:
    """Configure structured logging for the pipeline.

    Args:
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON format (True for production, False for development)
    """
    processors: list[Processor] = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_trace_context,
        add_timestamp,
        categorize_error,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.processors.KeyValueRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )

    # Keep client libraries quiet
    for noisy in ("httpx", "httpcore", "asyncio"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str):
    """Get a structured logger instance."""
    return structlog.get_logger(name)


def log_pipeline_lifecycle(
    stage: str,
    question: str,
    metadata: Optional[Dict[str, Any]] = None,
    logger: Optional[Any] = None,
) -> None:
    """
    Log pipeline lifecycle events with consistent structure

    Args:
        stage: Pipeline stage (started, attempt, completed, error)
        question: Natural language question
        metadata: Additional metadata
        logger: Logger instance (optional)
    """
    log = logger or get_logger("vkg.pipeline_lifecycle")

    event_data = {
        "event_type": "pipeline_lifecycle",
        "stage": stage,
        "question": question[:200],
        "trace_id": get_trace_id(),
    }

    if metadata:
        event_data.update(metadata)

    if stage == "error":
        log.error("pipeline_lifecycle_event", **event_data)
    elif stage in ["started", "completed"]:
        log.info("pipeline_lifecycle_event", **event_data)
    else:
        log.debug("pipeline_lifecycle_event", **event_data)
