"""Tests for the depth-first reindex walk."""

from unittest.mock import MagicMock

import pytest
from sqlmodel import Session
from structlog.testing import capture_logs

from reindexer.core.errors import ErrorCode
from reindexer.db.database import Database
from reindexer.engine.traversal import ReindexTraversal, SessionFactory, WalkState
from reindexer.entities.registry import EntityKey, EntityRegistry
from reindexer.graph.builder import DependencyEdge, DependencyGraph, build_dependency_graph
from tests.engine.recording import RecordingSink, seed_address_chain
from tests.models import Address, Customer, CycleA, CycleB, Order, Project, TreeNode, User


def _traversal(
    registry: EntityRegistry,
    graph: DependencyGraph,
    database: Database,
    sink: RecordingSink,
    **kwargs: object,
) -> ReindexTraversal:
    return ReindexTraversal(
        registry, graph, database.open_session, sink, **kwargs  # type: ignore[arg-type]
    )


class TestTransitiveWalk:
    """Every transitive owner is indexed exactly once."""

    def test_address_reaches_customer_and_order(
        self,
        database: Database,
        model_registry: EntityRegistry,
        graph: DependencyGraph,
        sink: RecordingSink,
    ) -> None:
        # Given Address:1 <- Customer:1 <- Order:100
        seed_address_chain(database)

        # When walking from the address
        result = _traversal(model_registry, graph, database, sink).walk(EntityKey("Address", 1))

        # Then all three are indexed in pre-order
        assert sink.calls == ["Address:1", "Customer:1", "Order:100"]
        assert [str(k) for k in result.indexed] == sink.calls
        assert result.state == WalkState.COMPLETED
        assert result.failures == 0

    def test_only_referencing_owners_are_visited(
        self,
        database: Database,
        model_registry: EntityRegistry,
        graph: DependencyGraph,
        sink: RecordingSink,
    ) -> None:
        # Given a second address nobody references
        seed_address_chain(database)
        with database.write_transaction() as session:
            session.add(Address(id=2, street="2 Side St", city="Shelbyville"))

        result = _traversal(model_registry, graph, database, sink).walk(EntityKey("Address", 2))

        assert sink.calls == ["Address:2"]
        assert result.size == 1

    def test_collection_owner_found_through_link_table(
        self,
        database: Database,
        model_registry: EntityRegistry,
        graph: DependencyGraph,
        sink: RecordingSink,
    ) -> None:
        with database.write_transaction() as session:
            alice = User(id=42, name="Alice")
            session.add_all(
                [
                    Project(id=1, title="Apollo", members=[alice]),
                    Project(id=2, title="Gemini", members=[alice]),
                ]
            )

        _traversal(model_registry, graph, database, sink).walk(EntityKey("User", 42))

        assert sink.calls[0] == "User:42"
        assert sorted(sink.calls[1:]) == ["Project:1", "Project:2"]

    def test_repeated_walk_indexes_same_set(
        self,
        database: Database,
        model_registry: EntityRegistry,
        graph: DependencyGraph,
        sink: RecordingSink,
    ) -> None:
        seed_address_chain(database, customers=2)
        traversal = _traversal(model_registry, graph, database, sink)

        first = traversal.walk(EntityKey("Address", 1))
        second = traversal.walk(EntityKey("Address", 1))

        assert set(first.indexed) == set(second.indexed)
        assert len(sink.calls) == 2 * first.size


class TestCycles:
    """Mutually embedding entities terminate."""

    def test_each_entity_indexed_once(
        self,
        database: Database,
        model_registry: EntityRegistry,
        graph: DependencyGraph,
        sink: RecordingSink,
    ) -> None:
        # Given A:1 <-> B:2
        with database.write_transaction() as session:
            session.add(CycleB(id=2, label="b"))
            session.add(CycleA(id=1, label="a", b_id=2))

        # When walking from A
        result = _traversal(model_registry, graph, database, sink).walk(EntityKey("CycleA", 1))

        # Then both are indexed exactly once
        assert sink.calls == ["CycleA:1", "CycleB:2"]
        assert result.visited == {"CycleA:1", "CycleB:2"}


class TestFailureContainment:
    """Failures on one entity never abort the walk."""

    def test_missing_root_logged_once(
        self,
        database: Database,
        model_registry: EntityRegistry,
        graph: DependencyGraph,
        sink: RecordingSink,
    ) -> None:
        with capture_logs() as logs:
            result = _traversal(model_registry, graph, database, sink).walk(
                EntityKey("Address", 999)
            )

        failed = [log for log in logs if log["event"] == "reindex_failed"]
        assert len(failed) == 1
        assert failed[0]["key"] == "Address:999"
        assert failed[0]["error"]["code"] == ErrorCode.ENTITY_NOT_FOUND.value
        assert sink.calls == []
        assert result.state == WalkState.COMPLETED

    def test_sink_failure_does_not_stop_descent(
        self,
        database: Database,
        model_registry: EntityRegistry,
        graph: DependencyGraph,
    ) -> None:
        # Given a sink that rejects Customer:1
        seed_address_chain(database, customers=2)
        sink = RecordingSink(failing={"Customer:1"})

        with capture_logs() as logs:
            result = _traversal(model_registry, graph, database, sink).walk(
                EntityKey("Address", 1)
            )

        # Then the failure is logged and every other entity is still indexed
        failed = [log for log in logs if log["event"] == "reindex_failed"]
        assert [log["key"] for log in failed] == ["Customer:1"]
        assert failed[0]["error"]["code"] == ErrorCode.INDEX_FAILURE.value
        assert result.failures == 1
        assert {str(k) for k in result.indexed} == {
            "Address:1",
            "Customer:2",
            "Order:100",
            "Order:101",
        }

    def test_missing_owner_registry_entry_logged(
        self,
        database: Database,
        graph: DependencyGraph,
        sink: RecordingSink,
    ) -> None:
        # Given a registry that no longer knows Order
        seed_address_chain(database)
        partial = EntityRegistry()
        partial.register(Address)
        partial.register(Customer)

        with capture_logs() as logs:
            _traversal(partial, graph, database, sink).walk(EntityKey("Address", 1))

        missing = [log for log in logs if log["event"] == "missing_registry_entry"]
        assert len(missing) == 1
        assert missing[0]["error"]["code"] == ErrorCode.MISSING_REGISTRY_ENTRY.value
        assert sink.calls == ["Address:1", "Customer:1"]

    def test_unplannable_edge_counted_and_skipped(
        self,
        database: Database,
        model_registry: EntityRegistry,
        sink: RecordingSink,
    ) -> None:
        seed_address_chain(database)
        graph = DependencyGraph(
            {
                Address: [DependencyEdge(Customer, "no_such_field", Address)],
            }
        )

        with capture_logs() as logs:
            result = _traversal(model_registry, graph, database, sink).walk(
                EntityKey("Address", 1)
            )

        failed = [log for log in logs if log["event"] == "dependents_query_failed"]
        assert len(failed) == 1
        assert failed[0]["error"]["code"] == ErrorCode.QUERY_FAILURE.value
        assert result.failures == 1
        assert sink.calls == ["Address:1"]

    def test_unregistered_root_type_logged(
        self,
        database: Database,
        model_registry: EntityRegistry,
        graph: DependencyGraph,
        sink: RecordingSink,
    ) -> None:
        with capture_logs() as logs:
            result = _traversal(model_registry, graph, database, sink).walk(
                EntityKey("Invoice", 1)
            )

        assert [log["event"] for log in logs if log["log_level"] == "info"] == [
            "missing_registry_entry"
        ]
        assert result.size == 0


class TestSummaryLogging:
    """Large walks emit one summary line."""

    def test_twelve_entities_produce_summary(
        self,
        database: Database,
        model_registry: EntityRegistry,
        graph: DependencyGraph,
        sink: RecordingSink,
    ) -> None:
        # Given Address:1 <- 3 customers <- 8 orders (12 entities)
        seed_address_chain(database, customers=2, orders_per_customer=4)
        with database.write_transaction() as session:
            session.add(Customer(id=3, name="Customer 3", address_id=1))

        with capture_logs() as logs:
            result = _traversal(model_registry, graph, database, sink).walk(
                EntityKey("Address", 1)
            )

        summaries = [log for log in logs if log["event"] == "reindex_summary"]
        assert len(summaries) == 1
        assert summaries[0]["root"] == "Address:1"
        assert summaries[0]["size"] == 12
        assert result.size == 12

    @pytest.mark.parametrize("threshold,expected", [(4, 1), (5, 0)])
    def test_threshold_is_inclusive(
        self,
        database: Database,
        model_registry: EntityRegistry,
        graph: DependencyGraph,
        sink: RecordingSink,
        threshold: int,
        expected: int,
    ) -> None:
        # Given a walk of exactly four entities
        seed_address_chain(database, customers=1, orders_per_customer=2)

        with capture_logs() as logs:
            _traversal(
                model_registry, graph, database, sink, summary_threshold=threshold
            ).walk(EntityKey("Address", 1))

        assert sum(1 for log in logs if log["event"] == "reindex_summary") == expected


class TestWalkCorrelation:
    """Each walk runs under its own walk id."""

    def test_walk_id_cleared_afterwards(
        self,
        database: Database,
        model_registry: EntityRegistry,
        graph: DependencyGraph,
        sink: RecordingSink,
    ) -> None:
        from reindexer.core.logging import clear_walk_id, get_walk_id

        clear_walk_id()
        _traversal(model_registry, graph, database, sink).walk(EntityKey("Address", 1))

        assert get_walk_id() is None


class TestDeepChains:
    """Walk depth is bounded by the data, not by the call stack."""

    def test_long_chain_indexed_without_truncation(
        self, database: Database, sink: RecordingSink
    ) -> None:
        # Given 1500 nodes, each the parent of the next
        depth = 1500
        with database.write_transaction() as session:
            for node_id in range(1, depth + 1):
                parent_id = node_id - 1 if node_id > 1 else None
                session.add(TreeNode(id=node_id, label=f"n{node_id}", parent_id=parent_id))
        registry = EntityRegistry()
        registry.register(TreeNode)
        graph = build_dependency_graph(registry)

        # When the deepest node changes
        result = _traversal(registry, graph, database, sink).walk(EntityKey("TreeNode", depth))

        # Then every ancestor is indexed, leaf first
        assert result.failures == 0
        assert result.size == depth
        assert sink.calls[0] == f"TreeNode:{depth}"
        assert sink.calls[-1] == "TreeNode:1"

    def test_siblings_indexed_in_pre_order(
        self,
        database: Database,
        model_registry: EntityRegistry,
        graph: DependencyGraph,
        sink: RecordingSink,
    ) -> None:
        # Given two customers with two orders each
        seed_address_chain(database, customers=2, orders_per_customer=2)

        _traversal(model_registry, graph, database, sink).walk(EntityKey("Address", 1))

        # Then each customer's orders follow it before the next customer
        assert sink.calls == [
            "Address:1",
            "Customer:1",
            "Order:100",
            "Order:101",
            "Customer:2",
            "Order:102",
            "Order:103",
        ]


class TestEntityLoading:
    """Each visited key is read from the store once."""

    @staticmethod
    def _spying_factory(database: Database, gets: list[MagicMock]) -> SessionFactory:
        def session_factory() -> Session:
            session = database.open_session()
            get = MagicMock(wraps=session.get)
            session.get = get  # type: ignore[method-assign]
            gets.append(get)
            return session

        return session_factory

    def test_missing_row_read_once(
        self,
        database: Database,
        model_registry: EntityRegistry,
        graph: DependencyGraph,
        sink: RecordingSink,
    ) -> None:
        gets: list[MagicMock] = []
        factory = self._spying_factory(database, gets)

        result = ReindexTraversal(model_registry, graph, factory, sink).walk(
            EntityKey("Address", 999)
        )

        (get,) = gets
        get.assert_called_once_with(Address, 999, populate_existing=True)
        assert result.failures == 1

    def test_identity_map_used_without_bypass(
        self,
        database: Database,
        model_registry: EntityRegistry,
        graph: DependencyGraph,
        sink: RecordingSink,
    ) -> None:
        seed_address_chain(database)
        gets: list[MagicMock] = []
        factory = self._spying_factory(database, gets)

        ReindexTraversal(model_registry, graph, factory, sink, bypass_cache=False).walk(
            EntityKey("Address", 1)
        )

        (get,) = gets
        assert get.call_count == 3
        assert all(call.kwargs == {"populate_existing": False} for call in get.call_args_list)
