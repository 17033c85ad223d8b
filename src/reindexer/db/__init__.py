"""Relational store access."""

from reindexer.db.database import Database

__all__ = ["Database"]
