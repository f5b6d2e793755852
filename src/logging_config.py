"""
Structured logging setup.

All modules log through structlog key/value events; this module wires structlog
onto the stdlib logging tree so uvicorn/aiohttp records share the same output.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional

import structlog

_CONFIGURED = False


def configure_logging(level: str = "INFO", fmt: str = "console", *, force: bool = False) -> None:
    """Configure structlog + stdlib logging once per process.

    Args:
        level: Root log level name (DEBUG, INFO, ...).
        fmt: ``console`` for human-readable output, ``json`` for log shippers.
        force: Reconfigure even if already configured (used by tests/CLI).
    """
    global _CONFIGURED
    if _CONFIGURED and not force:
        return

    log_level = getattr(logging, str(level or "INFO").upper(), logging.INFO)

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    if (fmt or "").lower() == "json":
        renderer = structlog.processors.JSONRenderer()
        shared_processors.append(structlog.processors.format_exc_info)
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=shared_processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(log_level)

    # aiohttp access logs are noisy at INFO
    logging.getLogger("aiohttp.access").setLevel(max(log_level, logging.WARNING))
    _CONFIGURED = True


def get_logger(name: Optional[str] = None):
    return structlog.get_logger(name)
