"""Entity registry and dependency markers."""

from reindexer.entities.markers import (
    CONTAINED_IN,
    EMBEDDED,
    MARKER_INFO_KEY,
    ContainedIn,
    IndexedEmbedded,
    contained_in_relationship,
    embedded_field_names,
    embedded_relationship,
    relationship_marker,
)
from reindexer.entities.registry import EntityKey, EntityRegistry, RegistryEntry

__all__ = [
    # Markers
    "CONTAINED_IN",
    "EMBEDDED",
    "MARKER_INFO_KEY",
    "ContainedIn",
    "IndexedEmbedded",
    "contained_in_relationship",
    "embedded_field_names",
    "embedded_relationship",
    "relationship_marker",
    # Registry
    "EntityKey",
    "EntityRegistry",
    "RegistryEntry",
]
