"""Shared pytest fixtures for dependency graph tests."""
from __future__ import annotations

import pytest

from src.core.models import DependencyEdge, DependencyGraph, DependencyNode, GraphMetadata
from src.data.sf_api import QueryError, QueryResult


class FakeClient:
    """Query client double: answers SOQL by the first matching substring.

    A route value is either a list of records or an exception to raise.
    Unmatched queries return an empty result.  Every query is recorded.
    *describes* maps object names to raw describe payloads.
    """

    def __init__(self, routes: dict | None = None, describes: dict | None = None):
        self.routes = dict(routes or {})
        self.describes = dict(describes or {})
        self.queries: list[str] = []

    def _answer(self, soql: str) -> QueryResult:
        self.queries.append(soql)
        for needle, answer in self.routes.items():
            if needle in soql:
                if isinstance(answer, Exception):
                    raise answer
                return QueryResult(records=list(answer), total_size=len(answer))
        return QueryResult()

    def query(self, soql: str) -> QueryResult:
        return self._answer(soql)

    def tooling_query(self, soql: str) -> QueryResult:
        return self._answer(soql)

    def describe_sobject(self, object_name: str) -> dict:
        if object_name not in self.describes:
            raise QueryError("NOT_FOUND: The requested resource does not exist", error_code="NOT_FOUND", status=404)
        return self.describes[object_name]


def build_graph(edges: list[tuple], root_id: str, depths: dict[str, int] | None = None) -> DependencyGraph:
    """Graph over every id mentioned in *edges* (``"Type:Name"`` ids)."""
    depths = depths or {}
    nodes: dict[str, DependencyNode] = {}

    def _ensure(node_id: str) -> None:
        if node_id not in nodes:
            node_type, _, name = node_id.partition(":")
            nodes[node_id] = DependencyNode(
                id=node_id, name=name, type=node_type, api_name=name,
                depth=depths.get(node_id, 0),
            )

    _ensure(root_id)
    edge_objs = []
    for e in edges:
        src, tgt = e[0], e[1]
        rel = e[2] if len(e) > 2 else "references"
        _ensure(src)
        _ensure(tgt)
        edge_objs.append(DependencyEdge(src, tgt, rel))

    node_type, _, name = root_id.partition(":")
    meta = GraphMetadata(
        generated_at="2026-01-01T00:00:00+00:00",
        root_type=node_type,
        root_name=name,
        max_depth=3,
        node_count=len(nodes),
        edge_count=len(edge_objs),
        has_circular_dependencies=False,
    )
    return DependencyGraph(nodes=nodes, edges=edge_objs, root_id=root_id, metadata=meta)


@pytest.fixture
def make_client():
    return FakeClient


@pytest.fixture
def make_graph():
    return build_graph


@pytest.fixture
def cyclic_graph() -> DependencyGraph:
    """ApexClass A -> B -> C -> A."""
    return build_graph(
        [("ApexClass:A", "ApexClass:B"), ("ApexClass:B", "ApexClass:C"), ("ApexClass:C", "ApexClass:A")],
        "ApexClass:A",
        depths={"ApexClass:A": 0, "ApexClass:B": 1, "ApexClass:C": 2},
    )


@pytest.fixture
def impact_graph() -> DependencyGraph:
    """X has five transitive dependents (a chain from Root), Y has one (B)."""
    return build_graph(
        [
            ("ApexClass:Root", "ApexClass:A1"),
            ("ApexClass:A1", "ApexClass:A2"),
            ("ApexClass:A2", "ApexClass:A3"),
            ("ApexClass:A3", "ApexClass:A4"),
            ("ApexClass:A4", "ApexClass:X"),
            ("ApexClass:B", "ApexClass:Y"),
        ],
        "ApexClass:Root",
    )


@pytest.fixture
def account_graph() -> DependencyGraph:
    """Account with two fields (one a lookup to Contact) and a trigger."""
    return build_graph(
        [
            ("CustomObject:Account", "CustomField:Account.Region__c", "contains"),
            ("CustomObject:Account", "CustomField:Account.Contact__c", "contains"),
            ("CustomField:Account.Contact__c", "CustomObject:Contact", "lookupTo"),
            ("CustomObject:Account", "ApexTrigger:AccountTrigger", "triggers"),
        ],
        "CustomObject:Account",
        depths={
            "CustomField:Account.Region__c": 1,
            "CustomField:Account.Contact__c": 1,
            "CustomObject:Contact": 2,
            "ApexTrigger:AccountTrigger": 1,
        },
    )
