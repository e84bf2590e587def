"""
Structured logging configuration with structlog.

Modules log through ``logging.getLogger(__name__)``; this routes those
records through structlog's formatter for console or JSON output.
"""

import logging
import os
import sys
from typing import List

import structlog
from structlog.types import Processor


def configure_logging(level: str = "INFO", json_format: bool = False) -> None:
    """Configure structured logging for the application.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
            ``LOG_LEVEL`` overrides it.
        json_format: If True, output JSON logs. ``LOG_FORMAT=json`` forces it.
    """
    log_level = os.environ.get("LOG_LEVEL", level).upper()
    json_format = json_format or os.environ.get("LOG_FORMAT", "").lower() == "json"

    shared_processors: List[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if json_format:
        renderer: Processor = structlog.processors.JSONRenderer()
        shared_processors.append(structlog.processors.format_exc_info)
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=shared_processors + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level)

    # Quiet noisy HTTP client libraries
    for name in ("httpx", "openai", "stripe", "urllib3"):
        logging.getLogger(name).setLevel(logging.WARNING)
