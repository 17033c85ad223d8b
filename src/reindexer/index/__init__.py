"""Full-text index sink."""

from reindexer.index.documents import build_document_text, column_values
from reindexer.index.lexical import EntityIndex, SearchHit
from reindexer.index.sink import IndexSink

__all__ = [
    "EntityIndex",
    "IndexSink",
    "SearchHit",
    "build_document_text",
    "column_values",
]
