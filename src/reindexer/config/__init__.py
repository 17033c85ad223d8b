"""Config module exports."""

from reindexer.config.loader import ReindexerSettings, load_config
from reindexer.config.models import (
    DatabaseConfig,
    DispatcherConfig,
    IndexConfig,
    LoggingConfig,
    LogOutputConfig,
    ReindexerConfig,
    TraversalConfig,
)

__all__ = [
    "load_config",
    "DatabaseConfig",
    "DispatcherConfig",
    "IndexConfig",
    "LoggingConfig",
    "LogOutputConfig",
    "ReindexerConfig",
    "ReindexerSettings",
    "TraversalConfig",
]
