"""
export.py — JSON, DOT and Mermaid renderings of a dependency graph.

Pure transforms of the in-memory graph for display and hand-off; the JSON
form can be loaded back with :func:`graph_from_json`.
"""
from __future__ import annotations

import json
import re
from typing import Any, Literal

from src.core.models import (
    DependencyEdge,
    DependencyGraph,
    DependencyNode,
    GraphMetadata,
)


def graph_as_dict(graph: DependencyGraph) -> dict[str, Any]:
    """Nodes as a list (insertion order), edges as-is, metadata inline."""
    return {
        "rootId": graph.root_id,
        "nodes": [n.as_dict() for n in graph.nodes.values()],
        "edges": [e.as_dict() for e in graph.edges],
        "metadata": graph.metadata.as_dict(),
    }


def export_graph_to_json(graph: DependencyGraph, indent: int | None = 2) -> str:
    return json.dumps(graph_as_dict(graph), indent=indent)


def graph_from_dict(data: dict[str, Any]) -> DependencyGraph:
    nodes = [DependencyNode.from_dict(n) for n in data["nodes"]]
    metadata = GraphMetadata.from_dict(data["metadata"])
    # Without rootId, fall back to the composite id of the metadata root.
    root_id = data.get("rootId") or f"{metadata.root_type}:{metadata.root_name}"
    return DependencyGraph(
        nodes={n.id: n for n in nodes},
        edges=[DependencyEdge.from_dict(e) for e in data["edges"]],
        root_id=root_id,
        metadata=metadata,
    )


def graph_from_json(text: str) -> DependencyGraph:
    """Inverse of :func:`export_graph_to_json`."""
    return graph_from_dict(json.loads(text))


# ── DOT ───────────────────────────────────────────────────────────────────────

def _dot_escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def export_graph_to_dot(graph: DependencyGraph) -> str:
    """Graphviz ``digraph``; nodes on a cycle are drawn red."""
    lines = ["digraph Dependencies {", "  rankdir=LR;", "  node [shape=box];", ""]
    for node in graph.nodes.values():
        label = f"{node.type}\\n{_dot_escape(node.name)}"
        color = "red" if node.is_circular else "black"
        lines.append(f'  "{_dot_escape(node.id)}" [label="{label}" color="{color}"];')
    lines.append("")
    for edge in graph.edges:
        lines.append(
            f'  "{_dot_escape(edge.source_id)}" -> "{_dot_escape(edge.target_id)}" '
            f'[label="{edge.relationship_type}"];'
        )
    lines.append("}")
    return "\n".join(lines)


# ── Mermaid ───────────────────────────────────────────────────────────────────

def _mermaid_id(node_id: str, taken: dict[str, str]) -> str:
    """Mermaid ids must be alphanumeric/underscore; keep them unique."""
    if node_id in taken:
        return taken[node_id]
    base = re.sub(r"\W", "_", node_id)
    candidate, n = base, 1
    used = set(taken.values())
    while candidate in used:
        n += 1
        candidate = f"{base}_{n}"
    taken[node_id] = candidate
    return candidate


def export_graph_to_mermaid(
    graph: DependencyGraph,
    direction: Literal["LR", "TD"] = "LR",
) -> str:
    """Mermaid ``flowchart``; circular nodes get a ``circular`` class."""
    ids: dict[str, str] = {}
    lines = [f"flowchart {direction}"]
    for node in graph.nodes.values():
        label = f"{node.type}<br/>{node.name}".replace('"', "#quot;")
        lines.append(f'    {_mermaid_id(node.id, ids)}["{label}"]')
    for edge in graph.edges:
        src = _mermaid_id(edge.source_id, ids)
        dst = _mermaid_id(edge.target_id, ids)
        lines.append(f"    {src} -->|{edge.relationship_type}| {dst}")
    circular = [ids[n.id] for n in graph.nodes.values() if n.is_circular]
    if circular:
        lines.append("    classDef circular stroke:#d33,stroke-width:2px")
        lines.append(f"    class {','.join(circular)} circular")
    return "\n".join(lines)


EXPORTERS = {
    "json": export_graph_to_json,
    "dot": export_graph_to_dot,
    "mermaid": export_graph_to_mermaid,
}
