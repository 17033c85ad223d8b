"""Core module exports."""

from reindexer.core.errors import (
    ConfigError,
    EntityNotFoundError,
    ErrorCode,
    GraphBuildError,
    IndexFailureError,
    InternalError,
    MissingRegistryEntryError,
    QueryFailureError,
    RegistryError,
    ReindexerError,
)
from reindexer.core.logging import (
    add_walk_id,
    clear_walk_id,
    configure_logging,
    get_walk_id,
    reset_logging,
    set_walk_id,
)

__all__ = [
    # Errors
    "ConfigError",
    "EntityNotFoundError",
    "ErrorCode",
    "GraphBuildError",
    "IndexFailureError",
    "InternalError",
    "MissingRegistryEntryError",
    "QueryFailureError",
    "RegistryError",
    "ReindexerError",
    # Logging
    "add_walk_id",
    "clear_walk_id",
    "configure_logging",
    "get_walk_id",
    "reset_logging",
    "set_walk_id",
]
