"""Index sink contract consumed by reindex walks."""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class IndexSink(Protocol):
    """Writes or overwrites the search document of one entity.

    Indexing the same ``(type, id)`` twice replaces the earlier document.
    Implementations must be safe to call from several walk threads at once.
    """

    def index(self, entity: Any) -> None: ...
