"""Session event integration: reindex dependents once the caller commits."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import event

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from reindexer.entities.registry import EntityKey
    from reindexer.service import DependentObjectsReindexer

logger = structlog.get_logger()

PENDING_INFO_KEY = "reindexer.pending"


class ReindexOnCommit:
    """
    Dispatches ``reindex_dependents`` for every managed entity a transaction changed.

    Keys of modified and deleted managed instances are collected on each flush
    and dispatched after the commit, so walks only ever see committed rows.
    A rollback discards them.

    Usage::

        hooks = ReindexOnCommit(reindexer)
        hooks.attach(Session)  # or a sessionmaker / one session
    """

    def __init__(self, reindexer: DependentObjectsReindexer) -> None:
        self._reindexer = reindexer

    def attach(self, target: Any) -> None:
        event.listen(target, "after_flush", self._after_flush)
        event.listen(target, "after_commit", self._after_commit)
        event.listen(target, "after_rollback", self._after_rollback)

    def detach(self, target: Any) -> None:
        event.remove(target, "after_flush", self._after_flush)
        event.remove(target, "after_commit", self._after_commit)
        event.remove(target, "after_rollback", self._after_rollback)

    def _after_flush(self, session: Session, _flush_context: Any) -> None:
        registry = self._reindexer.registry
        pending: dict[EntityKey, None] = session.info.setdefault(PENDING_INFO_KEY, {})

        changed = [obj for obj in session.dirty if session.is_modified(obj)]
        changed.extend(session.deleted)
        for obj in changed:
            key = registry.key_for(obj)
            if key is not None:
                pending.setdefault(key, None)

    def _after_commit(self, session: Session) -> None:
        pending: dict[EntityKey, None] = session.info.pop(PENDING_INFO_KEY, {})
        if not pending:
            return
        logger.debug("commit_reindex_requested", count=len(pending))
        for key in pending:
            self._reindexer.reindex_key(key)

    def _after_rollback(self, session: Session) -> None:
        session.info.pop(PENDING_INFO_KEY, None)
