"""Entity registry: the managed entity types known to the reindexer.

The registry is populated by the hosting application at startup, before the
dependency graph is built. Once the graph has been built the registry is
frozen and rejects further registrations.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, NamedTuple

import structlog

from reindexer.core.errors import RegistryError

logger = structlog.get_logger()


class EntityKey(NamedTuple):
    """Identity of one entity instance for deduplication: ``(type, id)``."""

    type_name: str
    entity_id: Any

    def __str__(self) -> str:
        return f"{self.type_name}:{self.entity_id}"


@dataclass(frozen=True, slots=True)
class RegistryEntry:
    """Associates a managed entity class with the name used in query text."""

    entity_class: type
    type_name: str
    table_name: str
    id_attribute: str = "id"

    def key_for(self, entity: Any) -> EntityKey:
        return EntityKey(self.type_name, getattr(entity, self.id_attribute))


class EntityRegistry:
    """
    Ordered registry of managed entity types.

    Iteration order is registration order, which keeps graph construction and
    its log output deterministic across runs.

    Usage::

        registry = EntityRegistry()
        registry.register(Customer)
        registry.register(Order, type_name="Order")

        entry = registry.lookup_by_type(Order)
        key = registry.key_for(order)  # EntityKey("Order", 7)
    """

    def __init__(self) -> None:
        self._entries: dict[type, RegistryEntry] = {}
        self._by_name: dict[str, RegistryEntry] = {}
        self._frozen = False
        self._lock = threading.Lock()

    def register(
        self,
        entity_class: type,
        *,
        type_name: str | None = None,
        table_name: str | None = None,
        id_attribute: str = "id",
    ) -> RegistryEntry:
        """Register a managed entity class.

        Re-registering the same class is a no-op that returns the existing entry.

        Raises:
            RegistryError: If the registry is frozen, the argument is not a class,
                or the type name is already taken by another class.
        """
        if not isinstance(entity_class, type):
            raise RegistryError.invalid_class(entity_class)

        with self._lock:
            if self._frozen:
                raise RegistryError.frozen(entity_class)

            existing = self._entries.get(entity_class)
            if existing is not None:
                logger.warning("entity_already_registered", entity_type=existing.type_name)
                return existing

            name = type_name or entity_class.__name__
            clash = self._by_name.get(name)
            if clash is not None:
                raise RegistryError.duplicate_name(name, clash.entity_class, entity_class)

            entry = RegistryEntry(
                entity_class=entity_class,
                type_name=name,
                table_name=table_name or getattr(entity_class, "__tablename__", name),
                id_attribute=id_attribute,
            )
            self._entries[entity_class] = entry
            self._by_name[name] = entry

        logger.debug("entity_registered", entity_type=name, table=entry.table_name)
        return entry

    def freeze(self) -> None:
        """Reject any later registration."""
        with self._lock:
            self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def ordered_entities(self) -> list[RegistryEntry]:
        """Entries in registration order."""
        return list(self._entries.values())

    def lookup_by_type(self, entity_class: type) -> RegistryEntry | None:
        return self._entries.get(entity_class)

    def lookup_by_name(self, type_name: str) -> RegistryEntry | None:
        return self._by_name.get(type_name)

    def key_for(self, entity: Any) -> EntityKey | None:
        """Key of a managed entity instance, or None for unmanaged/id-less objects."""
        entry = self._entries.get(type(entity))
        if entry is None:
            return None
        key = entry.key_for(entity)
        if key.entity_id is None:
            return None
        return key

    def names(self) -> dict[str, type]:
        """Type name to class mapping, used to resolve forward references."""
        return {entry.type_name: entry.entity_class for entry in self._entries.values()}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, entity_class: object) -> bool:
        return entity_class in self._entries

    def __iter__(self):  # type: ignore[no-untyped-def]
        return iter(self.ordered_entities())
