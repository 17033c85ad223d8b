"""Full-text entity index backed by a SQLite FTS5 table.

One document per managed entity, addressed by its ``Type:id`` key. Indexing
replaces any earlier document for the same key, so re-indexing is idempotent.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import create_engine, event, text
from sqlalchemy.exc import OperationalError

from reindexer.core.errors import IndexFailureError
from reindexer.db.database import DEFAULT_BUSY_TIMEOUT_MS, sqlite_pragma_listener
from reindexer.index.documents import build_document_text

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from reindexer.entities.registry import EntityKey, EntityRegistry

logger = structlog.get_logger()

_TABLE = "entity_documents"

_CREATE_TABLE = f"""
    CREATE VIRTUAL TABLE IF NOT EXISTS {_TABLE} USING fts5(
        doc_key UNINDEXED,
        entity_type UNINDEXED,
        entity_id UNINDEXED,
        content
    )
"""

_DELETE_DOC = f"DELETE FROM {_TABLE} WHERE doc_key = :doc_key"


@dataclass
class SearchHit:
    """A single search result."""

    doc_key: str
    entity_type: str
    entity_id: str
    score: float
    snippet: str


class EntityIndex:
    """
    Full-text index of managed entities.

    Writes are serialised by a lock and each one is a single transaction
    (delete the old document, insert the new one), so walks running on
    several threads can share one instance.

    Usage::

        index = EntityIndex(".reindexer/search.db", registry)
        index.index(order)                       # add or overwrite
        hits = index.search("alice", entity_type="Order")
    """

    def __init__(
        self,
        index_path: Path | str,
        registry: EntityRegistry,
        *,
        busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
    ) -> None:
        """
        Initialize the entity index.

        Args:
            index_path: SQLite file holding the FTS5 table
            registry: Registry used to key documents and find embedded fields
            busy_timeout_ms: SQLite busy timeout for concurrent writers
        """
        self.index_path = Path(index_path)
        self._registry = registry
        self.busy_timeout_ms = busy_timeout_ms
        self._engine: Engine | None = None
        self._lock = threading.Lock()

    def _ensure_initialized(self) -> Engine:
        """Lazily create the engine and the FTS5 table."""
        with self._lock:
            if self._engine is None:
                self.index_path.parent.mkdir(parents=True, exist_ok=True)
                engine = create_engine(
                    f"sqlite:///{self.index_path}",
                    connect_args={"check_same_thread": False},
                )
                event.listen(engine, "connect", sqlite_pragma_listener(self.busy_timeout_ms))
                with engine.begin() as conn:
                    conn.execute(text(_CREATE_TABLE))
                self._engine = engine
                logger.debug("entity_index_opened", path=str(self.index_path))
            return self._engine

    def index(self, entity: Any) -> None:
        """Add or overwrite the document of ``entity``."""
        key = self._registry.key_for(entity)
        if key is None:
            raise IndexFailureError.for_key(repr(entity), "entity is not registered or has no id")

        content = build_document_text(entity, self._registry)
        engine = self._ensure_initialized()
        with self._lock, engine.begin() as conn:
            conn.execute(text(_DELETE_DOC), {"doc_key": str(key)})
            conn.execute(
                text(
                    f"INSERT INTO {_TABLE} (doc_key, entity_type, entity_id, content) "
                    "VALUES (:doc_key, :entity_type, :entity_id, :content)"
                ),
                {
                    "doc_key": str(key),
                    "entity_type": key.type_name,
                    "entity_id": str(key.entity_id),
                    "content": content,
                },
            )
        logger.debug("entity_indexed", key=str(key))

    def remove(self, key: EntityKey | str) -> bool:
        """Delete the document for ``key``. Returns True if one existed."""
        engine = self._ensure_initialized()
        doc_key = str(key)
        with self._lock, engine.begin() as conn:
            existing = conn.execute(
                text(f"SELECT count(*) FROM {_TABLE} WHERE doc_key = :doc_key"),
                {"doc_key": doc_key},
            ).scalar_one()
            conn.execute(text(_DELETE_DOC), {"doc_key": doc_key})
        return bool(existing)

    def search(
        self,
        query: str,
        entity_type: str | None = None,
        limit: int = 20,
    ) -> list[SearchHit]:
        """
        Search document content, best matches first.

        Args:
            query: FTS5 query. If the syntax is invalid the whole query is
                retried as one literal phrase.
            entity_type: Only return documents of this registry type name
            limit: Maximum number of hits

        Returns:
            Hits ordered by bm25 relevance.
        """
        if not query.strip():
            return []
        engine = self._ensure_initialized()

        try:
            return self._run_search(engine, query, entity_type, limit)
        except OperationalError as e:
            literal = '"' + query.replace('"', '""') + '"'
            logger.debug("search_literal_fallback", query=query, reason=str(e.orig))
            return self._run_search(engine, literal, entity_type, limit)

    def _run_search(
        self,
        engine: Engine,
        match: str,
        entity_type: str | None,
        limit: int,
    ) -> list[SearchHit]:
        sql = (
            f"SELECT doc_key, entity_type, entity_id, bm25({_TABLE}) AS bm25_score, "
            f"snippet({_TABLE}, 3, '[', ']', '...', 12) AS snippet "
            f"FROM {_TABLE} WHERE {_TABLE} MATCH :match"
        )
        params: dict[str, Any] = {"match": match, "limit": limit}
        if entity_type is not None:
            sql += " AND entity_type = :entity_type"
            params["entity_type"] = entity_type
        sql += " ORDER BY bm25_score LIMIT :limit"

        with engine.connect() as conn:
            rows = conn.execute(text(sql), params).all()

        return [
            SearchHit(
                doc_key=row.doc_key,
                entity_type=row.entity_type,
                entity_id=row.entity_id,
                score=-float(row.bm25_score),
                snippet=row.snippet,
            )
            for row in rows
        ]

    def doc_count(self) -> int:
        """Number of indexed documents."""
        engine = self._ensure_initialized()
        with engine.connect() as conn:
            return int(conn.execute(text(f"SELECT count(*) FROM {_TABLE}")).scalar_one())

    def clear(self) -> None:
        """Delete every document."""
        engine = self._ensure_initialized()
        with self._lock, engine.begin() as conn:
            conn.execute(text(f"DELETE FROM {_TABLE}"))
        logger.info("entity_index_cleared", path=str(self.index_path))

    def close(self) -> None:
        with self._lock:
            if self._engine is not None:
                self._engine.dispose()
                self._engine = None

