"""Depth-first reindex walk over the dependency graph.

One walk starts from one mutated entity, re-loads it in its own session,
hands it to the index sink and descends into every owner that references it,
keeping pending owners on an explicit stack so depth is bounded by the data.
Each ``(type, id)`` reaches the sink at most once per walk. Failures on a
single entity are logged and contained; a walk always completes.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy.engine import Row
from sqlalchemy.exc import SQLAlchemyError

from reindexer.core.errors import (
    EntityNotFoundError,
    IndexFailureError,
    InternalError,
    MissingRegistryEntryError,
    QueryFailureError,
    ReindexerError,
)
from reindexer.core.logging import clear_walk_id, get_walk_id, set_walk_id
from reindexer.entities.registry import EntityKey
from reindexer.graph.planner import plan_dependents_query

if TYPE_CHECKING:
    from sqlmodel import Session

    from reindexer.entities.registry import EntityRegistry, RegistryEntry
    from reindexer.graph.builder import DependencyGraph
    from reindexer.index.sink import IndexSink

logger = structlog.get_logger()

SessionFactory = Callable[[], "Session"]

DEFAULT_SUMMARY_THRESHOLD = 10


class WalkState(Enum):
    """Per-walk lifecycle. There is no failed state: partial success completes."""

    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"


@dataclass
class WalkResult:
    """Outcome of one walk."""

    root: EntityKey
    state: WalkState = WalkState.QUEUED
    visited: set[str] = field(default_factory=set)
    indexed: list[EntityKey] = field(default_factory=list)
    failures: int = 0

    @property
    def size(self) -> int:
        return len(self.indexed)


def _owner_of(row: Any) -> Any:
    """Join queries may yield rows; the owner is the first column."""
    if isinstance(row, (tuple, Row)):
        return row[0]
    return row


class ReindexTraversal:
    """
    Re-indexes everything that transitively embeds a mutated entity.

    Each ``walk`` owns a fresh session from ``session_factory`` and a fresh
    visit set; the graph and the registry are only read. The session runs with
    autoflush on and, with ``bypass_cache``, loads every entity with
    ``populate_existing`` so identity-map state never masks the stored row.

    Usage::

        traversal = ReindexTraversal(registry, graph, db.open_session, index)
        result = traversal.walk(EntityKey("Address", 1))
        result.indexed  # [Address:1, Customer:3, Order:8, ...] in pre-order
    """

    def __init__(
        self,
        registry: EntityRegistry,
        graph: DependencyGraph,
        session_factory: SessionFactory,
        sink: IndexSink,
        *,
        summary_threshold: int = DEFAULT_SUMMARY_THRESHOLD,
        bypass_cache: bool = True,
    ) -> None:
        self._registry = registry
        self._graph = graph
        self._session_factory = session_factory
        self._sink = sink
        self._summary_threshold = summary_threshold
        self._bypass_cache = bypass_cache

    def walk(self, root: EntityKey) -> WalkResult:
        """Run one walk from ``root`` to completion. Never raises for entity errors."""
        result = WalkResult(root=root)
        previous_walk_id = get_walk_id()
        set_walk_id()
        result.state = WalkState.RUNNING
        logger.debug("walk_started", root=str(root))

        session = self._session_factory()
        try:
            session.autoflush = True
            entry = self._registry.lookup_by_name(root.type_name)
            if entry is None:
                error = InternalError.unexpected("root type is not registered", key=str(root))
                logger.info("missing_registry_entry", key=str(root), error=error.to_dict())
            else:
                self._descend(session, entry, root.entity_id, result)
        finally:
            session.close()
            result.state = WalkState.COMPLETED

            if result.size >= self._summary_threshold:
                logger.info("reindex_summary", root=str(root), size=result.size)
            logger.debug(
                "walk_completed",
                root=str(root),
                indexed=result.size,
                visited=len(result.visited),
                failures=result.failures,
            )

            if previous_walk_id:
                set_walk_id(previous_walk_id)
            else:
                clear_walk_id()

        return result

    def _descend(
        self,
        session: Session,
        root_entry: RegistryEntry,
        root_id: Any,
        result: WalkResult,
    ) -> None:
        # Owners are pushed in reverse so they pop in edge and row order (pre-order).
        stack: list[tuple[RegistryEntry, Any, bool]] = [(root_entry, root_id, True)]
        while stack:
            entry, entity_id, is_root = stack.pop()
            owners = self._visit(session, entry, entity_id, result, is_root=is_root)
            for owner_entry, owner_id in reversed(owners):
                stack.append((owner_entry, owner_id, False))

    def _visit(
        self,
        session: Session,
        entry: RegistryEntry,
        entity_id: Any,
        result: WalkResult,
        *,
        is_root: bool,
    ) -> list[tuple[RegistryEntry, Any]]:
        """Re-index one entity and return the owners still to be visited."""
        key = EntityKey(entry.type_name, entity_id)
        token = str(key)
        if token in result.visited:
            return []
        # Recorded before the attempt so a failing entity in a cycle is not retried.
        result.visited.add(token)

        loaded: Any = None
        try:
            session.flush()
            loaded = self._load(session, entry, key)
            self._index(loaded, key)
            result.indexed.append(key)
        except Exception as e:
            self._contain(session, result, key, e)

        # Dead references found through a dependents query are pruned.
        if loaded is None and not is_root:
            logger.debug("dependents_pruned", key=token)
            return []

        owners: list[tuple[RegistryEntry, Any]] = []
        for edge in self._graph.edges_for(entry.entity_class):
            owner_entry = self._registry.lookup_by_type(edge.owner_type)
            if owner_entry is None:
                error = MissingRegistryEntryError.for_type(edge.owner_type)
                logger.info("missing_registry_entry", key=token, error=error.to_dict())
                break

            try:
                query = plan_dependents_query(edge, owner_entry, entry, entity_id)
            except Exception as e:
                error = QueryFailureError.for_query(edge.describe(), str(e))
                logger.info("dependents_query_failed", key=token, error=error.to_dict())
                result.failures += 1
                continue

            try:
                rows = session.exec(query.statement).all()
            except Exception as e:
                error = QueryFailureError.for_query(query.text, str(e))
                logger.info("dependents_query_failed", key=token, error=error.to_dict())
                result.failures += 1
                session.rollback()
                continue

            logger.debug("dependents_found", key=token, query=str(query), count=len(rows))
            for row in rows:
                owner = _owner_of(row)
                owner_type_entry = self._registry.lookup_by_type(type(owner))
                if owner_type_entry is None:
                    continue
                owners.append((owner_type_entry, getattr(owner, owner_type_entry.id_attribute)))
        return owners

    def _load(self, session: Session, entry: RegistryEntry, key: EntityKey) -> Any:
        entity = session.get(
            entry.entity_class, key.entity_id, populate_existing=self._bypass_cache
        )
        if entity is None:
            raise EntityNotFoundError.for_key(str(key))
        return entity

    def _index(self, entity: Any, key: EntityKey) -> None:
        try:
            self._sink.index(entity)
        except ReindexerError:
            raise
        except Exception as e:
            raise IndexFailureError.for_key(str(key), str(e)) from e

    def _contain(
        self, session: Session, result: WalkResult, key: EntityKey, error: Exception
    ) -> None:
        result.failures += 1
        if isinstance(error, ReindexerError):
            details = error.to_dict()
        else:
            details = InternalError.unexpected(str(error), key=str(key)).to_dict()
        logger.info("reindex_failed", key=str(key), error=details)

        if isinstance(error, SQLAlchemyError):
            session.rollback()
