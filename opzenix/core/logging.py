"""
Logging configuration for Opzenix using structlog.

This module provides structured logging configuration for production log
shipping plus helpers for execution lifecycle events.
"""

import logging
import socket
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import structlog

from .. import __version__
from .config import get_config


def _add_service_metadata(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Add service metadata for log filtering."""
    config = get_config()

    event_dict.update(
        {
            "service_name": "opzenix",
            "service_version": __version__,
            "environment": config.environment.value,
            "hostname": _get_hostname(),
        }
    )

    return event_dict


def _get_hostname() -> str:
    """Get hostname for logging."""
    try:
        return socket.gethostname()
    except OSError:
        return "unknown"


def setup_logging(
    level: Optional[str] = None,
    log_file: Optional[Path] = None,
    json_output: Optional[bool] = None,
) -> None:
    """
    Set up structured logging for Opzenix.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path to log file
        json_output: Whether to output JSON logs (recommended for production)
    """
    config = get_config()

    log_level = level or config.logging.level
    if json_output is None:
        json_output = config.logging.json_output
    if log_file is None and config.logging.log_file:
        log_file = Path(config.logging.log_file)

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        _add_service_metadata,
    ]

    if json_output or config.is_production():
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(getattr(logging, log_level.upper()))
        file_handler.setFormatter(logging.Formatter("%(message)s"))
        logging.getLogger().addHandler(file_handler)

    logger = structlog.get_logger(__name__)
    logger.info(
        "Logging initialized",
        level=log_level,
        json_output=json_output,
        log_file=str(log_file) if log_file else None,
    )


def get_logger(name: str) -> Any:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Structured logger instance
    """
    return structlog.get_logger(name)


def log_execution_event(
    execution_id: Any,
    event: str,
    level: str = "info",
    **details: Any,
) -> None:
    """
    Log an execution lifecycle event with structured data.

    Args:
        execution_id: Execution the event belongs to
        event: Short event name (started, paused, cancelled, ...)
        level: Log level name
        **details: Additional structured fields
    """
    logger = structlog.get_logger("execution")
    getattr(logger, level)(
        "Execution event",
        execution_id=str(execution_id),
        execution_event=event,
        event_type="execution_lifecycle",
        **details,
    )


def log_node_transition(
    execution_id: Any,
    node_id: str,
    old_status: str,
    new_status: str,
    **details: Any,
) -> None:
    """Log a node status change."""
    logger = structlog.get_logger("execution.node")
    log = logger.error if new_status == "failed" else logger.info
    log(
        "Node status changed",
        execution_id=str(execution_id),
        node_id=node_id,
        old_status=old_status,
        new_status=new_status,
        event_type="node_transition",
        **details,
    )
