"""Shared fixtures for walk, dispatcher and service tests."""

import pytest

from reindexer.entities.registry import EntityRegistry
from reindexer.graph.builder import DependencyGraph, build_dependency_graph
from tests.engine.recording import RecordingSink


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def graph(model_registry: EntityRegistry) -> DependencyGraph:
    return build_dependency_graph(model_registry)
