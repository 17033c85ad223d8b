"""Logging for the reindexer package.

Importing the package configures nothing. ``configure_logging`` is opt-in
(``DependentObjectsReindexer.from_config`` applies it) and installs handlers
on the ``reindexer`` stdlib logger only, so the host application's root
handlers stay as they are. Events emitted inside a walk carry its ``walk_id``.
"""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar
from pathlib import Path
from typing import TYPE_CHECKING, Any
from uuid import uuid4

import structlog

if TYPE_CHECKING:
    from reindexer.config.models import LoggingConfig, LogOutputConfig

PACKAGE_LOGGER = "reindexer"

_walk_id: ContextVar[str | None] = ContextVar("walk_id", default=None)
_installed: list[logging.Handler] = []


def get_walk_id() -> str | None:
    return _walk_id.get()


def set_walk_id(walk_id: str | None = None) -> str:
    """Bind a walk id to the current context, generating one when omitted."""
    wid = walk_id or uuid4().hex[:12]
    _walk_id.set(wid)
    return wid


def clear_walk_id() -> None:
    _walk_id.set(None)


def add_walk_id(_logger: Any, _method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Processor stamping ``walk_id`` on events emitted inside a walk."""
    wid = _walk_id.get()
    if wid is not None:
        event_dict.setdefault("walk_id", wid)
    return event_dict


def configure_logging(config: LoggingConfig) -> None:
    """Route reindexer events to the outputs of ``config``.

    A second call replaces the handlers installed by the first.
    """
    reset_logging()

    pre_chain: list[structlog.types.Processor] = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", key="timestamp"),
        add_walk_id,
    ]
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            *pre_chain,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.setLevel(config.level)
    package_logger.propagate = False
    for output in config.outputs:
        handler = _handler_for(output)
        handler.setLevel(output.level or config.level)
        handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processor=_renderer_for(output),
                foreign_pre_chain=pre_chain,
            )
        )
        package_logger.addHandler(handler)
        _installed.append(handler)

    # Walk sessions would otherwise echo every statement at DEBUG.
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def reset_logging() -> None:
    """Remove the handlers installed by ``configure_logging`` and restore structlog defaults."""
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    while _installed:
        handler = _installed.pop()
        package_logger.removeHandler(handler)
        handler.close()
    package_logger.setLevel(logging.NOTSET)
    package_logger.propagate = True
    structlog.reset_defaults()


def _handler_for(output: LogOutputConfig) -> logging.Handler:
    if output.destination == "stderr":
        return logging.StreamHandler(sys.stderr)
    if output.destination == "stdout":
        return logging.StreamHandler(sys.stdout)
    path = Path(output.destination)
    path.parent.mkdir(parents=True, exist_ok=True)
    return logging.FileHandler(path, encoding="utf-8")


def _renderer_for(output: LogOutputConfig) -> structlog.types.Processor:
    if output.format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=False)
