"""
graph.py — Traversal and analysis over a built dependency graph.

Pure functions — no I/O.  Every collector carries a visited guard so graphs
with cycles terminate.  NetworkX backs path search; the dependency model
itself stays an id-indexed node dict plus an edge list.
"""
from __future__ import annotations

import logging
from collections import defaultdict, deque
from collections.abc import Callable, Iterable

import networkx as nx

from src.core.models import (
    CycleDetectionResult,
    DependencyEdge,
    DependencyGraph,
    DependencyNode,
    GraphMetadata,
)

logger = logging.getLogger(__name__)


def to_networkx(graph: DependencyGraph) -> nx.MultiDiGraph:
    """Build a ``MultiDiGraph`` view of *graph*.

    Nodes carry the :class:`DependencyNode` under ``node``; parallel edges
    are keyed by relationship type, so ``contains`` and ``triggers`` between
    the same pair both survive.
    """
    g = nx.MultiDiGraph()
    for node_id, node in graph.nodes.items():
        g.add_node(node_id, node=node)
    for edge in graph.edges:
        g.add_edge(edge.source_id, edge.target_id, key=edge.relationship_type)
    return g


def _adjacency(edges: Iterable[DependencyEdge], reverse: bool = False) -> dict[str, list[str]]:
    adj: dict[str, list[str]] = defaultdict(list)
    for e in edges:
        if reverse:
            adj[e.target_id].append(e.source_id)
        else:
            adj[e.source_id].append(e.target_id)
    return adj


# ── Traversal ─────────────────────────────────────────────────────────────────

def traverse(
    graph: DependencyGraph,
    max_depth: int,
    detect_cycles: bool = True,
    on_node_visit: Callable[[DependencyNode], None] | None = None,
    on_cycle_detected: Callable[[list[str]], None] | None = None,
) -> list[DependencyNode]:
    """Depth-first walk from the root, bounded by *max_depth*.

    Each node is visited once, in DFS order.  When *detect_cycles* is set,
    reaching a node that is on the active path reports the contiguous path
    slice (closed on the repeated node) without stopping the walk.

    Returns:
        Visited nodes in visitation order.
    """
    adj = _adjacency(graph.edges)
    visited: set[str] = set()
    stack: list[str] = []
    result: list[DependencyNode] = []

    def dfs(node_id: str, depth: int) -> None:
        if depth > max_depth:
            return
        if node_id in visited:
            if detect_cycles and node_id in stack:
                cycle = stack[stack.index(node_id):] + [node_id]
                logger.warning("Cycle detected: %s", " -> ".join(cycle))
                if on_cycle_detected:
                    on_cycle_detected(cycle)
            return

        visited.add(node_id)
        stack.append(node_id)
        node = graph.nodes.get(node_id)
        if node is not None:
            result.append(node)
            if on_node_visit:
                on_node_visit(node)
            for target in adj.get(node_id, []):
                dfs(target, depth + 1)
        stack.pop()

    dfs(graph.root_id, 0)
    return result


def detect_cycles(
    nodes: dict[str, DependencyNode],
    edges: list[DependencyEdge],
    start_id: str,
) -> CycleDetectionResult:
    """Find cycles with a recursion-stack DFS launched from every node.

    *start_id* is explored first; every other unvisited node is then used
    as a fresh start so disconnected components are checked too.  Each cycle
    runs from the first repeated node back to itself, e.g. ``[A, B, C, A]``.
    """
    adj = _adjacency(edges)
    visited: set[str] = set()
    on_stack: set[str] = set()
    cycles: list[list[str]] = []

    def dfs(node_id: str, path: list[str]) -> None:
        visited.add(node_id)
        on_stack.add(node_id)
        path = path + [node_id]
        for neighbor in adj.get(node_id, []):
            if neighbor not in visited:
                dfs(neighbor, path)
            elif neighbor in on_stack:
                cycles.append(path[path.index(neighbor):] + [neighbor])
        on_stack.discard(node_id)

    starts = [start_id] if start_id in nodes else []
    starts.extend(n for n in nodes if n != start_id)
    for node_id in starts:
        if node_id not in visited:
            dfs(node_id, [])

    return CycleDetectionResult(has_cycles=bool(cycles), cycles=cycles, visited_nodes=visited)


# ── Filters ───────────────────────────────────────────────────────────────────

def get_nodes_at_depth(graph: DependencyGraph, depth: int) -> list[DependencyNode]:
    return [n for n in graph.nodes.values() if n.depth == depth]


def get_leaf_nodes(graph: DependencyGraph) -> list[DependencyNode]:
    """Nodes with no outgoing edge."""
    with_outgoing = {e.source_id for e in graph.edges}
    return [n for n in graph.nodes.values() if n.id not in with_outgoing]


def get_root_nodes(graph: DependencyGraph) -> list[DependencyNode]:
    """Nodes with no incoming edge."""
    with_incoming = {e.target_id for e in graph.edges}
    return [n for n in graph.nodes.values() if n.id not in with_incoming]


# ── Paths & closures ──────────────────────────────────────────────────────────

def get_path_to_node(graph: DependencyGraph, target_id: str) -> list[str] | None:
    """Shortest path (by edge count) from the root to *target_id*.

    Returns:
        List of node ids from root to target, or ``None`` if unreachable.
    """
    g = to_networkx(graph)
    if target_id not in g:
        return None
    try:
        return nx.shortest_path(g, graph.root_id, target_id)
    except nx.NetworkXNoPath:
        return None


def _closure(adj: dict[str, list[str]], start: str) -> set[str]:
    result: set[str] = set()
    seen: set[str] = {start}
    frontier: deque[str] = deque([start])
    while frontier:
        current = frontier.popleft()
        for nxt in adj.get(current, []):
            result.add(nxt)
            if nxt not in seen:
                seen.add(nxt)
                frontier.append(nxt)
    return result


def get_all_dependencies(graph: DependencyGraph, node_id: str) -> set[str]:
    """Ids reachable from *node_id* along edges (transitive).

    *node_id* itself is included only when it sits on a cycle.
    """
    return _closure(_adjacency(graph.edges), node_id)


def get_all_dependents(graph: DependencyGraph, node_id: str) -> set[str]:
    """Ids that reach *node_id* along edges (transitive, reverse direction)."""
    return _closure(_adjacency(graph.edges, reverse=True), node_id)


def calculate_impact_score(graph: DependencyGraph, node_id: str) -> int:
    """How many components would be affected if *node_id* changed."""
    return len(get_all_dependents(graph, node_id))


def sort_by_impact(graph: DependencyGraph) -> list[tuple[DependencyNode, int]]:
    """All nodes with their impact score, most impactful first.

    Ties keep node insertion order (``sorted`` is stable).
    """
    reverse_adj = _adjacency(graph.edges, reverse=True)
    scored = [(n, len(_closure(reverse_adj, n.id))) for n in graph.nodes.values()]
    return sorted(scored, key=lambda item: item[1], reverse=True)


def extract_subgraph(
    graph: DependencyGraph,
    node_id: str,
    include_depth: int | None = None,
) -> DependencyGraph:
    """Extract *node_id* and everything it reaches within *include_depth* hops.

    Depths are re-numbered as hop distance from *node_id* (which becomes the
    new root at depth 0).  Only edges with both ends inside the subgraph are
    kept.  ``include_depth=None`` means unbounded.

    Raises:
        KeyError: If *node_id* is not in *graph*.
    """
    if node_id not in graph.nodes:
        raise KeyError(node_id)

    adj = _adjacency(graph.edges)
    distance: dict[str, int] = {node_id: 0}
    frontier: deque[str] = deque([node_id])
    while frontier:
        current = frontier.popleft()
        if include_depth is not None and distance[current] >= include_depth:
            continue
        for nxt in adj.get(current, []):
            if nxt not in distance and nxt in graph.nodes:
                distance[nxt] = distance[current] + 1
                frontier.append(nxt)

    sub_edges = [
        e for e in graph.edges
        if e.source_id in distance and e.target_id in distance
    ]
    # leaf = no outgoing edge inside the subgraph
    with_outgoing = {e.source_id for e in sub_edges}

    sub_nodes: dict[str, DependencyNode] = {}
    for nid, dist in distance.items():
        original = graph.nodes[nid]
        sub_nodes[nid] = DependencyNode(
            id=original.id,
            name=original.name,
            type=original.type,
            api_name=original.api_name,
            depth=dist,
            is_leaf=nid not in with_outgoing,
            is_circular=original.is_circular,
            namespace=original.namespace,
            parent_id=original.parent_id if original.parent_id in distance else None,
            metadata=original.metadata,
        )

    meta = graph.metadata
    root = graph.nodes[node_id]
    paths = [p for p in (meta.circular_paths or []) if all(n in sub_nodes for n in p)]
    sub_meta = GraphMetadata(
        generated_at=meta.generated_at,
        root_type=root.type,
        root_name=root.name,
        max_depth=include_depth if include_depth is not None else meta.max_depth,
        node_count=len(sub_nodes),
        edge_count=len(sub_edges),
        has_circular_dependencies=bool(paths),
        circular_paths=paths or None,
    )
    return DependencyGraph(nodes=sub_nodes, edges=sub_edges, root_id=node_id, metadata=sub_meta)
