"""
Logging setup for the estimate audit engine.

Configures structlog for JSON (or console) output and stamps every event
emitted during a comparison with the analysis id of that run.
"""
import logging
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Iterator, Optional

import structlog

# Context variable for the running analysis (thread-safe, task-safe)
analysis_id_var: ContextVar[str] = ContextVar("analysis_id", default="")


def get_analysis_id() -> str:
    """Get the analysis id bound to the current context."""
    return analysis_id_var.get()


@contextmanager
def bind_analysis_id(analysis_id: str) -> Iterator[None]:
    """Bind an analysis id to log events for the duration of the block."""
    token = analysis_id_var.set(analysis_id)
    try:
        yield
    finally:
        analysis_id_var.reset(token)


def add_analysis_id_processor(
    logger: Any, method_name: str, event_dict: dict
) -> dict:
    """Structlog processor to add the analysis id to all log entries."""
    analysis_id = analysis_id_var.get()
    if analysis_id:
        event_dict["analysis_id"] = analysis_id
    return event_dict


def configure_logging(level: Optional[str] = None, json_logs: Optional[bool] = None) -> None:
    """
    Configure stdlib logging and structlog.

    Args:
        level: Log level name. Defaults to the configured setting.
        json_logs: Render JSON when True, console output otherwise.
    """
    from estimate_audit.config import get_settings

    settings = get_settings()
    level = (level or settings.log_level).upper()
    json_logs = settings.json_logs if json_logs is None else json_logs

    logging.basicConfig(format="%(message)s", level=getattr(logging, level, logging.INFO))

    renderer = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            add_analysis_id_processor,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
