"""
Structured Logging Setup
========================
structlog configuration shared by every authgate component.

Usage:
    from authgate_core.logging_config import setup_logging, bind_request_context

    setup_logging(service_name="authgate", json_output=True)
    bind_request_context(request_id="req_123")
"""

import logging
import sys
import uuid
from contextvars import ContextVar
from typing import Optional

import structlog

# Context variables for request tracking
request_id_var: ContextVar[str] = ContextVar("request_id", default="")
service_name_var: ContextVar[str] = ContextVar("service_name", default="authgate")


def _add_service_context(logger, method_name, event_dict):
    """Attach service name and request id to every event."""
    event_dict.setdefault("service", service_name_var.get())
    request_id = request_id_var.get()
    if request_id:
        event_dict.setdefault("request_id", request_id)
    return event_dict


def setup_logging(
    service_name: str = "authgate",
    level: str = "INFO",
    json_output: bool = True,
) -> None:
    """
    Configure structlog and the stdlib root logger.

    Args:
        service_name: Name stamped on every log event
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: Emit JSON lines (production) instead of console output
    """
    service_name_var.set(service_name)
    log_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(handler)

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            _add_service_context,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def bind_request_context(request_id: Optional[str] = None, **values) -> str:
    """
    Bind a request id (and any extra values) to the current context.

    Returns:
        The bound request id
    """
    request_id = request_id or f"req_{uuid.uuid4().hex[:16]}"
    request_id_var.set(request_id)
    structlog.contextvars.bind_contextvars(request_id=request_id, **values)
    return request_id


def clear_request_context() -> None:
    """Drop all request-scoped context."""
    request_id_var.set("")
    structlog.contextvars.clear_contextvars()
