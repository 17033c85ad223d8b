"""Field markers declaring reindex dependencies.

A field marked *embedded* copies the target entity's searchable attributes
into the owner's index document. A field marked *contained-in* is the inverse
side: mutating this entity must re-index its containers. Both markers make the
field a dependency edge.

Markers are attached either through ``typing.Annotated`` metadata::

    class Order:
        customer: Annotated[Customer, IndexedEmbedded()]

or through the ``info`` dict of a SQLAlchemy/SQLModel relationship::

    class Order(SQLModel, table=True):
        customer: Optional["Customer"] = embedded_relationship()
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass
from typing import Annotated, Any, get_args, get_origin

from sqlmodel import Relationship

MARKER_INFO_KEY = "reindexer.marker"
EMBEDDED = "embedded"
CONTAINED_IN = "contained_in"


@dataclass(frozen=True, slots=True)
class IndexedEmbedded:
    """Target entity is embedded into this entity's index document."""

    kind: str = EMBEDDED


@dataclass(frozen=True, slots=True)
class ContainedIn:
    """This entity's containers must be re-indexed when it changes."""

    kind: str = CONTAINED_IN


_MARKER_TYPES = (IndexedEmbedded, ContainedIn)


def _with_marker(kind: str, kwargs: dict[str, Any]) -> Any:
    sa_kwargs = dict(kwargs.pop("sa_relationship_kwargs", None) or {})
    info = dict(sa_kwargs.get("info") or {})
    info[MARKER_INFO_KEY] = kind
    sa_kwargs["info"] = info
    return Relationship(sa_relationship_kwargs=sa_kwargs, **kwargs)


def embedded_relationship(**kwargs: Any) -> Any:
    """``sqlmodel.Relationship`` carrying the *embedded* marker."""
    return _with_marker(EMBEDDED, kwargs)


def contained_in_relationship(**kwargs: Any) -> Any:
    """``sqlmodel.Relationship`` carrying the *contained-in* marker."""
    return _with_marker(CONTAINED_IN, kwargs)


def markers_in_annotation(annotation: Any) -> tuple[str, ...]:
    """Marker kinds found in ``Annotated`` metadata of an evaluated annotation."""
    if get_origin(annotation) is not Annotated:
        return ()
    kinds: list[str] = []
    for meta in annotation.__metadata__:
        if isinstance(meta, _MARKER_TYPES):
            kinds.append(meta.kind)
        elif isinstance(meta, type) and issubclass(meta, _MARKER_TYPES):
            kinds.append(meta().kind)
    return tuple(kinds)


def strip_annotated(annotation: Any) -> Any:
    """Drop ``Annotated`` wrappers, keeping the underlying type."""
    while get_origin(annotation) is Annotated:
        annotation = get_args(annotation)[0]
    return annotation


def relationship_marker(entity_class: type, field_name: str) -> str | None:
    """Marker kind stored in the relationship ``info`` of a class's own field.

    Mapped classes expose the relationship as an instrumented attribute;
    SQLModel classes additionally keep the declaration in
    ``__sqlmodel_relationships__`` (also present on non-table models).
    """
    attribute = vars(entity_class).get(field_name)
    info = getattr(attribute, "info", None)
    if isinstance(info, dict) and info.get(MARKER_INFO_KEY):
        return str(info[MARKER_INFO_KEY])

    declared = vars(entity_class).get("__sqlmodel_relationships__") or {}
    rel_info = declared.get(field_name)
    if rel_info is None:
        return None
    sa_kwargs = getattr(rel_info, "sa_relationship_kwargs", None) or {}
    info = sa_kwargs.get("info") or {}
    kind = info.get(MARKER_INFO_KEY)
    return str(kind) if kind else None


def embedded_field_names(entity_class: type) -> list[str]:
    """Own fields of a mapped class whose relationship carries the *embedded* marker."""
    candidates = dict.fromkeys(inspect.get_annotations(entity_class))
    candidates.update(dict.fromkeys(vars(entity_class).get("__sqlmodel_relationships__") or {}))
    return [name for name in candidates if relationship_marker(entity_class, name) == EMBEDDED]
