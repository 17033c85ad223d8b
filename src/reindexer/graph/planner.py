"""Dependent query planning: which owners reference a given entity id."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from sqlalchemy.orm import aliased
from sqlmodel import select

if TYPE_CHECKING:
    from reindexer.entities.registry import RegistryEntry
    from reindexer.graph.builder import DependencyEdge


@dataclass(frozen=True)
class DependentQuery:
    """A planned dependents lookup.

    ``text`` is the relational form used for logging and diagnostics;
    ``statement`` is the executable equivalent bound to ``param``.
    """

    text: str
    param: Any
    statement: Any

    def __str__(self) -> str:
        return f"{self.text} [id={self.param!r}]"


def dependents_query_text(
    edge: DependencyEdge, owner_entry: RegistryEntry, id_attribute: str
) -> str:
    if edge.is_collection:
        return (
            f"SELECT o FROM {owner_entry.type_name} o "
            f"JOIN o.{edge.field_name} r WHERE r.{id_attribute} = :id"
        )
    return (
        f"SELECT o FROM {owner_entry.type_name} o "
        f"WHERE o.{edge.field_name}.{id_attribute} = :id"
    )


def plan_dependents_query(
    edge: DependencyEdge,
    owner_entry: RegistryEntry,
    embedded_entry: RegistryEntry,
    entity_id: Any,
) -> DependentQuery:
    """Plan the lookup of every ``owner_entry`` instance referencing ``entity_id``.

    Collection edges join through the relationship onto an alias of the
    embedded type, so self-referencing collections stay unambiguous.
    Scalar edges use an ``EXISTS`` on the many-to-one/one-to-one side.
    """
    owner = owner_entry.entity_class
    embedded = embedded_entry.entity_class
    id_attribute = embedded_entry.id_attribute
    relationship = getattr(owner, edge.field_name)

    if edge.is_collection:
        target = aliased(embedded)
        statement = (
            select(owner)
            .join(relationship.of_type(target))
            .where(getattr(target, id_attribute) == entity_id)
        )
    else:
        statement = select(owner).where(
            relationship.has(getattr(embedded, id_attribute) == entity_id)
        )

    return DependentQuery(
        text=dependents_query_text(edge, owner_entry, id_attribute),
        param=entity_id,
        statement=statement,
    )
