"""Dependent-objects reindexer service: the composition root of the engine."""

from __future__ import annotations

from concurrent.futures import Future
from typing import TYPE_CHECKING, Any

import structlog

from reindexer.config.models import ReindexerConfig
from reindexer.core.logging import configure_logging
from reindexer.db.database import Database
from reindexer.engine.dispatcher import ReindexDispatcher
from reindexer.engine.traversal import ReindexTraversal, SessionFactory, WalkResult
from reindexer.graph.builder import build_dependency_graph
from reindexer.index.lexical import EntityIndex

if TYPE_CHECKING:
    from reindexer.entities.registry import EntityKey, EntityRegistry
    from reindexer.graph.builder import DependencyGraph
    from reindexer.index.sink import IndexSink

logger = structlog.get_logger()


class DependentObjectsReindexer:
    """
    Keeps the search index consistent with entities that embed a mutated one.

    Construct once after every entity type is registered: the dependency
    graph is built here and the registry is frozen. ``reindex_dependents``
    returns immediately; the walk runs on the dispatcher's worker pool.

    Usage::

        registry = EntityRegistry()
        registry.register(Address)
        registry.register(Customer)
        registry.register(Order)

        with DependentObjectsReindexer(registry, db.open_session, index) as reindexer:
            reindexer.reindex_dependents(address)
    """

    def __init__(
        self,
        registry: EntityRegistry,
        session_factory: SessionFactory,
        sink: IndexSink,
        *,
        config: ReindexerConfig | None = None,
        dispatcher: ReindexDispatcher | None = None,
    ) -> None:
        self._config = config or ReindexerConfig()
        self._registry = registry
        self._sink = sink
        self._graph = build_dependency_graph(registry)
        self._traversal = ReindexTraversal(
            registry,
            self._graph,
            session_factory,
            sink,
            summary_threshold=self._config.traversal.summary_threshold,
            bypass_cache=self._config.traversal.bypass_cache,
        )
        self._dispatcher = dispatcher or ReindexDispatcher(
            max_workers=self._config.dispatcher.max_workers,
            queue_max_size=self._config.dispatcher.queue_max_size,
        )
        self._owned: list[Any] = []

    @classmethod
    def from_config(
        cls, config: ReindexerConfig, registry: EntityRegistry
    ) -> DependentObjectsReindexer:
        """Wire logging, a SQLite store and an FTS5 entity index from configuration.

        The service owns the store and the index and releases them on ``stop``.
        """
        configure_logging(config.logging)
        busy_timeout_ms = config.database.busy_timeout_ms
        database = Database(config.database.path, busy_timeout_ms=busy_timeout_ms)
        index = EntityIndex(config.index.index_path, registry, busy_timeout_ms=busy_timeout_ms)
        reindexer = cls(registry, database.open_session, index, config=config)
        reindexer._owned.extend([index, database])
        return reindexer

    @property
    def registry(self) -> EntityRegistry:
        return self._registry

    @property
    def graph(self) -> DependencyGraph:
        return self._graph

    @property
    def sink(self) -> IndexSink:
        return self._sink

    @property
    def dispatcher(self) -> ReindexDispatcher:
        return self._dispatcher

    @property
    def traversal(self) -> ReindexTraversal:
        return self._traversal

    def start(self) -> None:
        self._dispatcher.start()

    def stop(self, wait: bool = True) -> None:
        """Stop dispatching. With ``wait`` the in-flight walks finish first."""
        self._dispatcher.stop(wait=wait)
        for resource in self._owned:
            if isinstance(resource, EntityIndex):
                resource.close()
            elif isinstance(resource, Database):
                resource.dispose()
        self._owned.clear()

    def __enter__(self) -> DependentObjectsReindexer:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop(wait=True)

    def reindex_dependents(self, entity: Any) -> None:
        """Re-index ``entity`` and everything that embeds it, asynchronously.

        Returns before any query runs. Unregistered or id-less entities are
        ignored.
        """
        key = self._registry.key_for(entity)
        if key is None:
            logger.debug("reindex_ignored", entity_type=type(entity).__qualname__)
            return
        self.reindex_key(key)

    def reindex_key(self, key: EntityKey) -> Future[Any] | None:
        """Dispatch a walk for an already-resolved key."""
        return self._dispatcher.submit(key, self._traversal.walk)

    def reindex_dependents_now(self, entity: Any) -> WalkResult | None:
        """Run the walk for ``entity`` in the calling thread."""
        key = self._registry.key_for(entity)
        if key is None:
            logger.debug("reindex_ignored", entity_type=type(entity).__qualname__)
            return None
        return self._traversal.walk(key)
