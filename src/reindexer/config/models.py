"""Pydantic configuration models with env var support.

Configuration Hierarchy (highest to lowest precedence):
1. Direct kwargs to load_config()
2. Environment variables (REINDEXER__SECTION__KEY)
3. YAML config file passed to load_config()
4. Built-in defaults (this file)

Environment Variable Format:
    REINDEXER__<SECTION>__<KEY>=<VALUE>

Examples:
    REINDEXER__LOGGING__LEVEL=DEBUG
    REINDEXER__DISPATCHER__MAX_WORKERS=4
    REINDEXER__TRAVERSAL__SUMMARY_THRESHOLD=25
"""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class LogOutputConfig(BaseModel):
    """Single logging output configuration."""

    format: Literal["json", "console"] = "console"
    destination: str = "stderr"  # stderr, stdout, or absolute file path
    level: LogLevel | None = None  # Inherits from parent if None

    @field_validator("destination")
    @classmethod
    def validate_destination(cls, v: str) -> str:
        if v in ("stderr", "stdout"):
            return v
        path = Path(v).expanduser()
        if not path.is_absolute():
            raise ValueError(f"File destination must be absolute path: {v}")
        return str(path)


class LoggingConfig(BaseModel):
    """Logging configuration.

    Env vars:
        REINDEXER__LOGGING__LEVEL: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """

    level: LogLevel = Field(
        default="INFO",
        description="Root log level. DEBUG logs every visited entity and query.",
    )
    outputs: list[LogOutputConfig] = Field(default_factory=lambda: [LogOutputConfig()])


class DispatcherConfig(BaseModel):
    """Async dispatcher configuration.

    Env vars:
        REINDEXER__DISPATCHER__MAX_WORKERS: Concurrent walks
        REINDEXER__DISPATCHER__QUEUE_MAX_SIZE: In-flight walks before dropping
    """

    max_workers: int = Field(
        default=2,
        description="Concurrent reindex walks. Each walk holds one ORM session.",
    )
    queue_max_size: int = Field(
        default=1000,
        description="Max walks queued or running. Newer requests are dropped (logged) "
        "once reached; a later mutation or a full reindex catches up.",
    )

    @field_validator("max_workers", "queue_max_size")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"Must be >= 1, got {v}")
        return v


class TraversalConfig(BaseModel):
    """Traversal configuration.

    Env vars:
        REINDEXER__TRAVERSAL__SUMMARY_THRESHOLD: Indexed count that triggers a summary line
        REINDEXER__TRAVERSAL__BYPASS_CACHE: Re-read rows instead of trusting the identity map
    """

    summary_threshold: int = Field(
        default=10,
        description="Emit one info line per walk that indexed at least this many entities.",
    )
    bypass_cache: bool = Field(
        default=True,
        description="Load every entity with populate_existing so stale session state "
        "never reaches the index.",
    )


class IndexConfig(BaseModel):
    """Full-text index configuration.

    Env vars:
        REINDEXER__INDEX__INDEX_PATH: SQLite file holding the FTS5 search index
    """

    index_path: str = Field(
        default=".reindexer/search.db",
        description="SQLite file holding the full-text search table.",
    )


class DatabaseConfig(BaseModel):
    """Relational store configuration.

    Env vars:
        REINDEXER__DATABASE__PATH: SQLite database file
        REINDEXER__DATABASE__BUSY_TIMEOUT_MS: SQLite busy timeout
    """

    path: str = Field(
        default=".reindexer/store.db",
        description="SQLite database file holding the business entities.",
    )
    busy_timeout_ms: int = Field(
        default=30000,
        description="SQLite busy timeout (ms). Walks read while the business layer writes.",
    )


class ReindexerConfig(BaseModel):
    """Root configuration.

    All settings can be configured via:
    1. Environment variables: REINDEXER__SECTION__KEY
    2. A YAML config file
    3. Direct kwargs to load_config()
    """

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    dispatcher: DispatcherConfig = Field(default_factory=DispatcherConfig)
    traversal: TraversalConfig = Field(default_factory=TraversalConfig)
    index: IndexConfig = Field(default_factory=IndexConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
