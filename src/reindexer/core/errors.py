"""Reindexer error types with typed error codes.

Error code ranges:
- 2xxx: Config
- 3xxx: Registry
- 4xxx: Graph build
- 5xxx: Traversal (contained inside a walk, never surfaced to callers)
- 9xxx: Internal
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any


class ErrorCode(IntEnum):
    """Typed error codes for programmatic handling."""

    # Config (2xxx)
    CONFIG_PARSE_ERROR = 2001
    CONFIG_INVALID_VALUE = 2002
    CONFIG_FILE_NOT_FOUND = 2003

    # Registry (3xxx)
    REGISTRY_FROZEN = 3001
    REGISTRY_DUPLICATE_NAME = 3002
    REGISTRY_INVALID_CLASS = 3003

    # Graph build (4xxx)
    GRAPH_FIELD_REFLECTION = 4001

    # Traversal (5xxx)
    MISSING_REGISTRY_ENTRY = 5001
    ENTITY_NOT_FOUND = 5002
    INDEX_FAILURE = 5003
    QUERY_FAILURE = 5004

    # Internal (9xxx)
    INTERNAL_ERROR = 9001


@dataclass(frozen=True, slots=True)
class ReindexerError(Exception):
    """Base error with structured context."""

    code: ErrorCode
    message: str
    retryable: bool = False
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def error_name(self) -> str:
        """String identifier for logging (e.g., 'ENTITY_NOT_FOUND')."""
        return self.code.name

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code.value,
            "error": self.error_name,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.error_name}: {self.message}"


class ConfigError(ReindexerError):
    """Configuration-related errors."""

    @classmethod
    def parse_error(cls, path: str, reason: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_PARSE_ERROR,
            message=f"Failed to parse config at {path}: {reason}",
            details={"path": path, "reason": reason},
        )

    @classmethod
    def invalid_value(cls, field: str, value: Any, reason: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_INVALID_VALUE,
            message=f"Invalid value for '{field}': {reason}",
            details={"field": field, "value": str(value), "reason": reason},
        )

    @classmethod
    def file_not_found(cls, path: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_FILE_NOT_FOUND,
            message=f"Config file not found: {path}",
            details={"path": path},
        )


class RegistryError(ReindexerError):
    """Entity registry misuse."""

    @classmethod
    def frozen(cls, entity_class: type) -> "RegistryError":
        return cls(
            code=ErrorCode.REGISTRY_FROZEN,
            message=f"Registry is frozen; cannot register {entity_class.__qualname__}",
            details={"entity_class": entity_class.__qualname__},
        )

    @classmethod
    def duplicate_name(cls, type_name: str, existing: type, new: type) -> "RegistryError":
        return cls(
            code=ErrorCode.REGISTRY_DUPLICATE_NAME,
            message=(
                f"Type name '{type_name}' already registered for "
                f"{existing.__qualname__}, cannot reuse for {new.__qualname__}"
            ),
            details={"type_name": type_name},
        )

    @classmethod
    def invalid_class(cls, value: Any) -> "RegistryError":
        return cls(
            code=ErrorCode.REGISTRY_INVALID_CLASS,
            message=f"Entity registration expects a class, got {type(value).__name__}",
            details={"value": repr(value)},
        )


class GraphBuildError(ReindexerError):
    """A single field could not be reflected while building the graph."""

    @classmethod
    def field_reflection(cls, owner: type, field_name: str, reason: str) -> "GraphBuildError":
        return cls(
            code=ErrorCode.GRAPH_FIELD_REFLECTION,
            message=f"Cannot reflect {owner.__qualname__}.{field_name}: {reason}",
            details={"owner": owner.__qualname__, "field": field_name, "reason": reason},
        )


class MissingRegistryEntryError(ReindexerError):
    """An edge points at an owner type the registry does not know."""

    @classmethod
    def for_type(cls, entity_class: type) -> "MissingRegistryEntryError":
        return cls(
            code=ErrorCode.MISSING_REGISTRY_ENTRY,
            message=f"No registry entry for {entity_class.__qualname__}",
            details={"entity_class": entity_class.__qualname__},
        )


class EntityNotFoundError(ReindexerError):
    """The entity could not be re-loaded from the store."""

    @classmethod
    def for_key(cls, key: str) -> "EntityNotFoundError":
        return cls(
            code=ErrorCode.ENTITY_NOT_FOUND,
            message=f"No row found for {key}",
            details={"key": key},
        )


class IndexFailureError(ReindexerError):
    """The index sink rejected an entity."""

    @classmethod
    def for_key(cls, key: str, reason: str) -> "IndexFailureError":
        return cls(
            code=ErrorCode.INDEX_FAILURE,
            message=f"Failed to index {key}: {reason}",
            retryable=True,
            details={"key": key, "reason": reason},
        )


class QueryFailureError(ReindexerError):
    """The dependents query for an edge could not be executed."""

    @classmethod
    def for_query(cls, query: str, reason: str) -> "QueryFailureError":
        return cls(
            code=ErrorCode.QUERY_FAILURE,
            message=f"Dependents query failed: {reason}",
            retryable=True,
            details={"query": query, "reason": reason},
        )


class InternalError(ReindexerError):
    """Internal/unexpected errors."""

    @classmethod
    def unexpected(cls, reason: str, **details: Any) -> "InternalError":
        return cls(
            code=ErrorCode.INTERNAL_ERROR,
            message=f"Internal error: {reason}",
            details=details,
        )
