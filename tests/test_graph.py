"""Tests for src.core.graph — traversal, cycles, closures and subgraphs."""
from __future__ import annotations

import pytest

from src.core.graph import (
    calculate_impact_score,
    detect_cycles,
    extract_subgraph,
    get_all_dependencies,
    get_all_dependents,
    get_leaf_nodes,
    get_nodes_at_depth,
    get_path_to_node,
    get_root_nodes,
    sort_by_impact,
    to_networkx,
    traverse,
)

A, B, C = "ApexClass:A", "ApexClass:B", "ApexClass:C"
ACCOUNT = "CustomObject:Account"
CONTACT = "CustomObject:Contact"
REGION = "CustomField:Account.Region__c"
CONTACT_FIELD = "CustomField:Account.Contact__c"
TRIGGER = "ApexTrigger:AccountTrigger"


class TestTraverse:
    """Depth-first walk from the root."""

    def test_visits_each_node_once_on_cycle(self, cyclic_graph):
        visited = traverse(cyclic_graph, max_depth=10)
        assert [n.id for n in visited] == [A, B, C]

    def test_reports_cycle_slice(self, cyclic_graph):
        found = []
        traverse(cyclic_graph, max_depth=10, on_cycle_detected=found.append)
        assert found == [[A, B, C, A]]

    def test_no_cycle_report_when_disabled(self, cyclic_graph):
        found = []
        traverse(cyclic_graph, max_depth=10, detect_cycles=False, on_cycle_detected=found.append)
        assert found == []

    def test_respects_max_depth(self, account_graph):
        visited = traverse(account_graph, max_depth=1)
        assert [n.id for n in visited] == [ACCOUNT, REGION, CONTACT_FIELD, TRIGGER]

    def test_node_callback_in_visit_order(self, account_graph):
        seen = []
        traverse(account_graph, max_depth=5, on_node_visit=lambda n: seen.append(n.id))
        assert seen == [ACCOUNT, REGION, CONTACT_FIELD, CONTACT, TRIGGER]

    def test_depth_zero_is_root_only(self, account_graph):
        assert [n.id for n in traverse(account_graph, max_depth=0)] == [ACCOUNT]


class TestDetectCycles:
    """Recursion-stack DFS over every node."""

    def test_three_node_cycle(self, cyclic_graph):
        result = detect_cycles(cyclic_graph.nodes, cyclic_graph.edges, A)
        assert result.has_cycles is True
        assert result.cycles == [[A, B, C, A]]
        assert result.visited_nodes == {A, B, C}

    def test_cycle_found_from_any_start(self, cyclic_graph):
        result = detect_cycles(cyclic_graph.nodes, cyclic_graph.edges, B)
        assert result.has_cycles
        cycle = result.cycles[0]
        assert cycle[0] == cycle[-1]
        assert set(cycle) == {A, B, C}
        assert len(cycle) == 4

    def test_acyclic_graph(self, account_graph):
        result = detect_cycles(account_graph.nodes, account_graph.edges, ACCOUNT)
        assert result.has_cycles is False
        assert result.cycles == []
        assert len(result.visited_nodes) == 5

    def test_disconnected_component_checked(self, make_graph):
        g = make_graph(
            [("ApexClass:R", "ApexClass:Z"), ("ApexClass:X", "ApexClass:Y"), ("ApexClass:Y", "ApexClass:X")],
            "ApexClass:R",
        )
        result = detect_cycles(g.nodes, g.edges, "ApexClass:R")
        assert result.has_cycles
        assert result.cycles == [["ApexClass:X", "ApexClass:Y", "ApexClass:X"]]

    def test_self_loop(self, make_graph):
        g = make_graph([(A, A)], A)
        result = detect_cycles(g.nodes, g.edges, A)
        assert result.cycles == [[A, A]]


class TestFilters:
    def test_nodes_at_depth(self, account_graph):
        ids = {n.id for n in get_nodes_at_depth(account_graph, 1)}
        assert ids == {REGION, CONTACT_FIELD, TRIGGER}

    def test_leaf_nodes_have_no_outgoing_edge(self, account_graph):
        ids = {n.id for n in get_leaf_nodes(account_graph)}
        assert ids == {REGION, CONTACT, TRIGGER}

    def test_root_nodes_have_no_incoming_edge(self, account_graph):
        assert [n.id for n in get_root_nodes(account_graph)] == [ACCOUNT]

    def test_cycle_has_no_root_nodes(self, cyclic_graph):
        assert get_root_nodes(cyclic_graph) == []


class TestPathToNode:
    def test_shortest_path_through_field(self, account_graph):
        assert get_path_to_node(account_graph, CONTACT) == [ACCOUNT, CONTACT_FIELD, CONTACT]

    def test_path_to_root_is_root(self, account_graph):
        assert get_path_to_node(account_graph, ACCOUNT) == [ACCOUNT]

    def test_unreachable_returns_none(self, impact_graph):
        assert get_path_to_node(impact_graph, "ApexClass:Y") is None

    def test_unknown_target_returns_none(self, account_graph):
        assert get_path_to_node(account_graph, "ApexClass:Nope") is None

    def test_shortest_wins_over_longer(self, make_graph):
        g = make_graph([(A, B), (B, C), (A, C)], A)
        assert get_path_to_node(g, C) == [A, C]


class TestClosures:
    """Transitive dependencies / dependents terminate on cycles."""

    def test_dependencies_on_cycle(self, cyclic_graph):
        assert get_all_dependencies(cyclic_graph, A) == {A, B, C}

    def test_dependents_on_cycle(self, cyclic_graph):
        assert get_all_dependents(cyclic_graph, B) == {A, B, C}

    def test_dependencies_exclude_self_when_acyclic(self, account_graph):
        deps = get_all_dependencies(account_graph, ACCOUNT)
        assert deps == {REGION, CONTACT_FIELD, CONTACT, TRIGGER}
        assert ACCOUNT not in deps

    def test_dependents_walk_backwards(self, account_graph):
        assert get_all_dependents(account_graph, CONTACT) == {CONTACT_FIELD, ACCOUNT}

    def test_leaf_has_no_dependencies(self, account_graph):
        assert get_all_dependencies(account_graph, REGION) == set()


class TestImpact:
    def test_impact_scores(self, impact_graph):
        assert calculate_impact_score(impact_graph, "ApexClass:X") == 5
        assert calculate_impact_score(impact_graph, "ApexClass:Y") == 1
        assert calculate_impact_score(impact_graph, "ApexClass:Root") == 0

    def test_sort_places_higher_impact_first(self, impact_graph):
        ranked = [n.id for n, _ in sort_by_impact(impact_graph)]
        assert ranked[0] == "ApexClass:X"
        assert ranked.index("ApexClass:X") < ranked.index("ApexClass:Y")

    def test_sort_scores_descending(self, impact_graph):
        scores = [s for _, s in sort_by_impact(impact_graph)]
        assert scores == sorted(scores, reverse=True)
        assert len(scores) == len(impact_graph.nodes)

    def test_sort_terminates_on_cycle(self, cyclic_graph):
        assert [s for _, s in sort_by_impact(cyclic_graph)] == [3, 3, 3]


class TestExtractSubgraph:
    def test_depth_one_is_node_plus_direct_successors(self, account_graph):
        sub = extract_subgraph(account_graph, ACCOUNT, 1)
        assert set(sub.nodes) == {ACCOUNT, REGION, CONTACT_FIELD, TRIGGER}
        assert sub.nodes[ACCOUNT].depth == 0
        assert all(sub.nodes[n].depth == 1 for n in (REGION, CONTACT_FIELD, TRIGGER))

    def test_edges_stay_inside(self, account_graph):
        sub = extract_subgraph(account_graph, ACCOUNT, 1)
        assert len(sub.edges) == 3
        for e in sub.edges:
            assert e.source_id in sub.nodes and e.target_id in sub.nodes

    def test_boundary_nodes_become_leaves(self, account_graph):
        account_graph.nodes[CONTACT_FIELD].is_leaf = False
        sub = extract_subgraph(account_graph, ACCOUNT, 1)
        assert sub.nodes[CONTACT_FIELD].is_leaf is True
        assert sub.nodes[ACCOUNT].is_leaf is False
        assert account_graph.nodes[CONTACT_FIELD].is_leaf is False

    def test_depth_rebased_to_new_root(self, account_graph):
        sub = extract_subgraph(account_graph, CONTACT_FIELD)
        assert sub.root_id == CONTACT_FIELD
        assert sub.nodes[CONTACT_FIELD].depth == 0
        assert sub.nodes[CONTACT].depth == 1
        assert sub.metadata.root_type == "CustomField"
        assert sub.metadata.node_count == 2
        assert sub.metadata.edge_count == 1

    def test_original_graph_untouched(self, account_graph):
        extract_subgraph(account_graph, CONTACT_FIELD)
        assert account_graph.nodes[CONTACT_FIELD].depth == 1

    def test_circular_paths_kept_only_when_inside(self, cyclic_graph):
        cyclic_graph.metadata.circular_paths = [[A, B, C, A]]
        cyclic_graph.metadata.has_circular_dependencies = True
        assert extract_subgraph(cyclic_graph, B).metadata.has_circular_dependencies is True
        partial = extract_subgraph(cyclic_graph, B, 1)
        assert set(partial.nodes) == {B, C}
        assert partial.metadata.has_circular_dependencies is False
        assert partial.metadata.circular_paths is None

    def test_unknown_node_raises(self, account_graph):
        with pytest.raises(KeyError):
            extract_subgraph(account_graph, "ApexClass:Nope")


class TestToNetworkx:
    def test_parallel_relationships_survive(self, make_graph):
        g = make_graph([(ACCOUNT, TRIGGER, "triggers"), (ACCOUNT, TRIGGER, "contains")], ACCOUNT)
        nxg = to_networkx(g)
        assert nxg.number_of_edges(ACCOUNT, TRIGGER) == 2
        assert nxg.nodes[ACCOUNT]["node"] is g.nodes[ACCOUNT]
