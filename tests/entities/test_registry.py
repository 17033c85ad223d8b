"""Tests for the entity registry."""

from __future__ import annotations

import pytest
from structlog.testing import capture_logs

from reindexer.core.errors import ErrorCode, RegistryError
from reindexer.entities.registry import EntityKey, EntityRegistry


class Invoice:
    __tablename__ = "invoices"

    def __init__(self, id: int | None) -> None:  # noqa: A002
        self.id = id


class Ledger:
    def __init__(self, code: str) -> None:
        self.code = code


class Unmanaged:
    id = 1


class TestRegister:
    """Registration behaviour."""

    def test_register_returns_entry_with_defaults(self) -> None:
        registry = EntityRegistry()

        entry = registry.register(Invoice)

        assert entry.entity_class is Invoice
        assert entry.type_name == "Invoice"
        assert entry.table_name == "invoices"
        assert entry.id_attribute == "id"

    def test_register_with_explicit_names(self) -> None:
        registry = EntityRegistry()

        entry = registry.register(
            Ledger, type_name="Book", table_name="ledger", id_attribute="code"
        )

        assert entry.type_name == "Book"
        assert entry.table_name == "ledger"
        assert registry.lookup_by_name("Book") is entry

    def test_table_name_falls_back_to_type_name(self) -> None:
        registry = EntityRegistry()

        assert registry.register(Ledger).table_name == "Ledger"

    def test_reregistering_same_class_warns_and_keeps_entry(self) -> None:
        registry = EntityRegistry()
        first = registry.register(Invoice)

        with capture_logs() as logs:
            second = registry.register(Invoice)

        assert second is first
        assert len(registry) == 1
        assert [log["event"] for log in logs] == ["entity_already_registered"]
        assert logs[0]["log_level"] == "warning"

    def test_duplicate_type_name_for_other_class_raises(self) -> None:
        registry = EntityRegistry()
        registry.register(Invoice, type_name="Doc")

        with pytest.raises(RegistryError) as exc_info:
            registry.register(Ledger, type_name="Doc")

        assert exc_info.value.code == ErrorCode.REGISTRY_DUPLICATE_NAME

    def test_non_class_rejected(self) -> None:
        registry = EntityRegistry()

        with pytest.raises(RegistryError) as exc_info:
            registry.register(Invoice(1))  # type: ignore[arg-type]

        assert exc_info.value.code == ErrorCode.REGISTRY_INVALID_CLASS

    def test_frozen_registry_rejects_registration(self) -> None:
        registry = EntityRegistry()
        registry.register(Invoice)
        registry.freeze()

        with pytest.raises(RegistryError) as exc_info:
            registry.register(Ledger)

        assert exc_info.value.code == ErrorCode.REGISTRY_FROZEN
        assert registry.frozen
        assert Ledger not in registry


class TestLookup:
    """Lookup and ordering."""

    def test_ordered_entities_follow_registration_order(self) -> None:
        registry = EntityRegistry()
        registry.register(Ledger)
        registry.register(Invoice)

        assert [e.entity_class for e in registry.ordered_entities()] == [Ledger, Invoice]
        assert [e.type_name for e in registry] == ["Ledger", "Invoice"]

    def test_lookup_by_type_unknown_returns_none(self) -> None:
        registry = EntityRegistry()

        assert registry.lookup_by_type(Unmanaged) is None
        assert registry.lookup_by_name("Unmanaged") is None

    def test_names_maps_type_names_to_classes(self) -> None:
        registry = EntityRegistry()
        registry.register(Invoice)
        registry.register(Ledger, type_name="Book")

        assert registry.names() == {"Invoice": Invoice, "Book": Ledger}


class TestKeys:
    """Entity keys used for deduplication."""

    def test_key_for_managed_entity(self) -> None:
        registry = EntityRegistry()
        registry.register(Invoice)

        key = registry.key_for(Invoice(7))

        assert key == EntityKey("Invoice", 7)
        assert str(key) == "Invoice:7"

    def test_key_uses_custom_id_attribute(self) -> None:
        registry = EntityRegistry()
        registry.register(Ledger, id_attribute="code")

        assert str(registry.key_for(Ledger("GL-1"))) == "Ledger:GL-1"

    def test_key_for_unmanaged_or_unsaved_is_none(self) -> None:
        registry = EntityRegistry()
        registry.register(Invoice)

        assert registry.key_for(Unmanaged()) is None
        assert registry.key_for(Invoice(None)) is None

    def test_keys_are_value_equal(self) -> None:
        assert EntityKey("Order", 1) == EntityKey("Order", 1)
        assert len({EntityKey("Order", 1), EntityKey("Order", 1), EntityKey("Order", 2)}) == 2
