"""Reindex walk, dispatch and session integration."""

from reindexer.engine.dispatcher import DispatcherState, DispatcherStatus, ReindexDispatcher
from reindexer.engine.hooks import ReindexOnCommit
from reindexer.engine.traversal import ReindexTraversal, WalkResult, WalkState

__all__ = [
    "DispatcherState",
    "DispatcherStatus",
    "ReindexDispatcher",
    "ReindexOnCommit",
    "ReindexTraversal",
    "WalkResult",
    "WalkState",
]
