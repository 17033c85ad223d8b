"""Dependency graph construction from marked entity fields.

The graph is keyed by the *embedded* type: given "what changed", it answers
"who has to be re-indexed" with a single lookup. Edges are discovered once at
startup by reflecting over the own annotations of each registered class;
mapped relationships that carry a marker but no own annotation are read from
the SQLAlchemy mapper instead.
"""

from __future__ import annotations

import collections.abc
import inspect
import sys
import types
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import (
    TYPE_CHECKING,
    Any,
    TypeVar,
    Union,
    get_args,
    get_origin,
    get_type_hints,
)

import structlog
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.exc import NoInspectionAvailable
from sqlalchemy.orm import Mapped

from reindexer.core.errors import GraphBuildError
from reindexer.entities.markers import (
    MARKER_INFO_KEY,
    markers_in_annotation,
    relationship_marker,
    strip_annotated,
)

if TYPE_CHECKING:
    from collections.abc import Iterator

    from reindexer.entities.registry import EntityRegistry

logger = structlog.get_logger()

_COLLECTION_ORIGINS = frozenset(
    {
        list,
        set,
        frozenset,
        tuple,
        collections.abc.Sequence,
        collections.abc.MutableSequence,
        collections.abc.Set,
        collections.abc.MutableSet,
        collections.abc.Collection,
    }
)
_UNION_ORIGINS = (Union, types.UnionType)


class _Unresolvable(Exception):
    """Declared type does not name a single concrete class."""


@dataclass(frozen=True, slots=True)
class DependencyEdge:
    """Reverse dependency: ``embedded_type`` is referenced by ``owner_type.field_name``.

    Two edges are equal when owner type and field name match; the collection
    flag and the embedded type are metadata.
    """

    owner_type: type
    field_name: str
    embedded_type: type = field(compare=False)
    is_collection: bool = field(default=False, compare=False)

    def describe(self) -> str:
        suffix = "[*]" if self.is_collection else ""
        return (
            f"{self.embedded_type.__name__} <- "
            f"{self.owner_type.__name__}.{self.field_name}{suffix}"
        )


class DependencyGraph:
    """Immutable mapping ``embedded type -> ordered edges``."""

    def __init__(self, edges: Mapping[type, collections.abc.Sequence[DependencyEdge]]) -> None:
        self._edges: Mapping[type, tuple[DependencyEdge, ...]] = MappingProxyType(
            {embedded: tuple(bucket) for embedded, bucket in edges.items() if bucket}
        )

    @property
    def edges(self) -> Mapping[type, tuple[DependencyEdge, ...]]:
        return self._edges

    def edges_for(self, entity_class: type) -> tuple[DependencyEdge, ...]:
        return self._edges.get(entity_class, ())

    def embedded_types(self) -> list[type]:
        return list(self._edges)

    @property
    def edge_count(self) -> int:
        return sum(len(bucket) for bucket in self._edges.values())

    def describe(self) -> list[str]:
        """Printable edge lines, grouped by embedded type in insertion order."""
        return [edge.describe() for bucket in self._edges.values() for edge in bucket]

    def __contains__(self, entity_class: object) -> bool:
        return entity_class in self._edges

    def __len__(self) -> int:
        return len(self._edges)

    def __iter__(self) -> Iterator[type]:
        return iter(self._edges)


class DependencyGraphBuilder:
    """
    Collects reverse dependency edges from registered entity classes.

    For every own field carrying an *embedded* or *contained-in* marker whose
    declared type (or collection element type) is a managed entity, one edge
    is recorded under that entity type. Fields that cannot be reflected are
    logged and skipped; they never abort the build.

    Usage::

        builder = DependencyGraphBuilder(registry)
        for entry in registry.ordered_entities():
            builder.add_class(entry.entity_class)
        graph = builder.build()
    """

    def __init__(self, registry: EntityRegistry) -> None:
        self._registry = registry
        self._edges: dict[type, list[DependencyEdge]] = {}

    def add_class(self, entity_class: type) -> int:
        """Scan one class and return the number of edges it contributed."""
        if self._registry.lookup_by_type(entity_class) is None:
            logger.debug("dependency_owner_unmanaged", owner=entity_class.__qualname__)
            return 0

        try:
            annotations = inspect.get_annotations(entity_class)
        except Exception as e:
            self._report_skipped(entity_class, "<annotations>", e)
            annotations = {}

        added = 0
        for name, declared in annotations.items():
            if name.startswith("__"):
                continue
            try:
                edge = self._edge_for(entity_class, name, declared)
            except Exception as e:
                self._report_skipped(entity_class, name, e)
                continue
            if edge is not None and self._insert(edge):
                added += 1

        # Mapped relationships declared without an own annotation.
        try:
            relationships = _own_relationships(entity_class)
        except Exception as e:
            self._report_skipped(entity_class, "<mapper>", e)
            relationships = {}

        for name, prop in relationships.items():
            if name in annotations:
                continue
            edge = self._edge_for_relationship(entity_class, name, prop)
            if edge is not None and self._insert(edge):
                added += 1
        return added

    def build(self) -> DependencyGraph:
        return DependencyGraph(self._edges)

    def _report_skipped(self, owner: type, name: str, exc: Exception) -> None:
        error = GraphBuildError.field_reflection(owner, name, str(exc))
        logger.warning(
            "dependency_field_skipped",
            owner=owner.__qualname__,
            field=name,
            error=error.to_dict(),
        )

    def _edge_for_relationship(self, owner: type, name: str, prop: Any) -> DependencyEdge | None:
        if not prop.info.get(MARKER_INFO_KEY):
            return None
        target = prop.mapper.class_
        if self._registry.lookup_by_type(target) is None:
            logger.debug(
                "dependency_target_unmanaged",
                owner=owner.__qualname__,
                field=name,
                target=target.__qualname__,
            )
            return None
        return DependencyEdge(
            owner_type=owner,
            field_name=name,
            is_collection=bool(prop.uselist),
            embedded_type=target,
        )

    def _insert(self, edge: DependencyEdge) -> bool:
        bucket = self._edges.setdefault(edge.embedded_type, [])
        if edge in bucket:
            logger.warning(
                "duplicate_dependency_edge",
                embedded=edge.embedded_type.__qualname__,
                owner=edge.owner_type.__qualname__,
                field=edge.field_name,
            )
            return False
        bucket.append(edge)
        logger.debug("dependency_edge_added", edge=edge.describe())
        return True

    def _edge_for(self, owner: type, name: str, declared: Any) -> DependencyEdge | None:
        namespace = self._namespace_for(owner)
        relationship_kind = relationship_marker(owner, name)

        try:
            annotation = _resolve_annotation(name, declared, namespace)
        except Exception:
            if relationship_kind is None:
                # Unmarked field with a type we cannot see; not a dependency.
                logger.debug("unmarked_field_unresolved", owner=owner.__qualname__, field=name)
                return None
            raise

        if not markers_in_annotation(annotation) and relationship_kind is None:
            return None

        try:
            target, is_collection = _resolve_target(annotation)
        except _Unresolvable as e:
            logger.debug(
                "dependency_target_unresolved",
                owner=owner.__qualname__,
                field=name,
                reason=str(e),
            )
            return None

        if self._registry.lookup_by_type(target) is None:
            logger.debug(
                "dependency_target_unmanaged",
                owner=owner.__qualname__,
                field=name,
                target=getattr(target, "__qualname__", repr(target)),
            )
            return None

        return DependencyEdge(
            owner_type=owner,
            field_name=name,
            is_collection=is_collection,
            embedded_type=target,
        )

    def _namespace_for(self, owner: type) -> dict[str, Any]:
        module = sys.modules.get(owner.__module__)
        namespace: dict[str, Any] = dict(vars(module)) if module is not None else {}
        namespace.update(self._registry.names())
        namespace.setdefault(owner.__name__, owner)
        return namespace


def _resolve_annotation(name: str, declared: Any, namespace: dict[str, Any]) -> Any:
    """Resolve one declared annotation, including forward refs nested in generics.

    Fields are resolved one at a time so a single unresolvable name cannot
    hide the other fields of the class.
    """
    holder = types.SimpleNamespace(__annotations__={name: declared})
    return get_type_hints(holder, globalns=namespace, include_extras=True)[name]


def _resolve_target(annotation: Any) -> tuple[type, bool]:
    """Return ``(entity type, is_collection)`` for a marked field's declared type."""
    declared = _unwrap_scalar(annotation)
    origin = get_origin(declared)

    if declared in _COLLECTION_ORIGINS:
        raise _Unresolvable("collection without element type")

    if origin in _COLLECTION_ORIGINS:
        args = get_args(declared)
        if origin is tuple:
            if len(args) != 2 or args[1] is not Ellipsis:
                raise _Unresolvable("tuple is not homogeneous")
            args = args[:1]
        if len(args) != 1:
            raise _Unresolvable("collection without element type")
        element = _unwrap_scalar(args[0])
        return _concrete(element), True

    return _concrete(declared), False


def _unwrap_scalar(annotation: Any) -> Any:
    """Strip ``Annotated``, ``Mapped`` and ``Optional`` from a resolved annotation."""
    while True:
        annotation = strip_annotated(annotation)
        origin = get_origin(annotation)
        if origin is Mapped:
            annotation = get_args(annotation)[0]
            continue
        if origin in _UNION_ORIGINS:
            members = [arg for arg in get_args(annotation) if arg is not type(None)]
            if len(members) != 1:
                raise _Unresolvable("union of several types")
            annotation = members[0]
            continue
        return annotation


def _concrete(annotation: Any) -> type:
    if annotation is Any or isinstance(annotation, TypeVar):
        raise _Unresolvable("element type is erased")
    if not isinstance(annotation, type) or get_origin(annotation) is not None:
        raise _Unresolvable(f"not a class: {annotation!r}")
    return annotation


def _own_relationships(entity_class: type) -> dict[str, Any]:
    """Relationships mapped on ``entity_class`` itself, by attribute name."""
    try:
        mapper = sa_inspect(entity_class)
    except NoInspectionAvailable:
        return {}
    return {prop.key: prop for prop in mapper.relationships if prop.parent is mapper}


def build_dependency_graph(
    registry: EntityRegistry,
    *,
    freeze_registry: bool = True,
) -> DependencyGraph:
    """Scan every registered entity in registration order and build the graph."""
    builder = DependencyGraphBuilder(registry)
    for entry in registry.ordered_entities():
        builder.add_class(entry.entity_class)
    graph = builder.build()

    if freeze_registry:
        registry.freeze()

    logger.info(
        "dependency_graph_built",
        entity_count=len(registry),
        embedded_types=len(graph),
        edge_count=graph.edge_count,
    )
    return graph
