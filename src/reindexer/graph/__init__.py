"""Dependency graph and dependents query planning."""

from reindexer.graph.builder import (
    DependencyEdge,
    DependencyGraph,
    DependencyGraphBuilder,
    build_dependency_graph,
)
from reindexer.graph.planner import DependentQuery, dependents_query_text, plan_dependents_query

__all__ = [
    "DependencyEdge",
    "DependencyGraph",
    "DependencyGraphBuilder",
    "DependentQuery",
    "build_dependency_graph",
    "dependents_query_text",
    "plan_dependents_query",
]
