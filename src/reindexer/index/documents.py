"""Denormalised document text for one entity."""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

from sqlalchemy import inspect as sa_inspect
from sqlalchemy.exc import NoInspectionAvailable

from reindexer.entities.markers import embedded_field_names

if TYPE_CHECKING:
    from reindexer.entities.registry import EntityRegistry

_COLLECTIONS = (list, set, frozenset, tuple)


def column_values(entity: Any) -> list[str]:
    """String values of the mapped columns of ``entity``, skipping NULLs."""
    try:
        mapper = sa_inspect(entity).mapper
    except NoInspectionAvailable:
        return [str(entity)]

    values: list[str] = []
    for attr in mapper.column_attrs:
        value = getattr(entity, attr.key)
        if value is not None:
            values.append(str(value))
    return values


def build_document_text(entity: Any, registry: EntityRegistry) -> str:
    """Own column values plus those of every directly embedded entity.

    Only one level is copied: an embedded entity's own embedded fields are
    left to that entity's document. Contained-in fields are never copied.
    """
    parts = column_values(entity)
    for name in embedded_field_names(type(entity)):
        value = getattr(entity, name, None)
        if value is None:
            continue
        targets: Iterable[Any] = value if isinstance(value, _COLLECTIONS) else (value,)
        for target in targets:
            if registry.lookup_by_type(type(target)) is not None:
                parts.extend(column_values(target))
    return " ".join(parts)
