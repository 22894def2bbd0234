"""
server.py — FastMCP server exposing Salesforce dependency-discovery tools.

Thin wrappers only.  Every @mcp.tool is <= 10 lines.
All business logic lives in core/ and data/.
"""
from __future__ import annotations

import os

from fastmcp import FastMCP

from src.core import analyzers, discovery, export, graph
from src.core.enrichment import format_pills_for_display
from src.core.models import DependencyGraph, DiscoveryResult
from src.data import describe, sf_api

# ── Session state ────────────────────────────────────────────────────────────

_active_org: str | None = os.environ.get("SF_TARGET_ORG")

# Graphs from earlier discover calls, keyed by root node id.
_graphs: dict[str, DependencyGraph] = {}


def _client() -> sf_api.SalesforceClient:
    return sf_api.SalesforceClient.from_org(_active_org)


def _get_graph(root_id: str) -> DependencyGraph | None:
    return _graphs.get(root_id)


mcp = FastMCP(
    name="Salesforce Dependency Graph",
    instructions=(
        "You can discover what a Salesforce metadata component depends on. "
        "Call discover_dependencies first; it returns the root id of the graph. "
        "Then use rank_impact, dependency_path, find_circular_dependencies and "
        "get_subgraph with that root id. Use describe_object for an object's fields. "
        "Use switch_org to change the active org. "
        "ALWAYS check rank_impact before advising on renaming or deleting a component."
    ),
)


@mcp.tool
def switch_org(org: str) -> str:
    """Switch the Salesforce CLI org alias used for all subsequent queries."""
    global _active_org
    try:
        instance_url, _ = sf_api.get_session(org)
    except RuntimeError as e:
        return f"Cannot switch: {e}"
    _active_org = org
    return f"Switched to '{org}' ({instance_url})."


@mcp.tool
def discover_dependencies(
    root_type: str,
    root_name: str,
    max_depth: int = discovery.DEFAULT_MAX_DEPTH,
    include_standard_objects: bool = False,
    format: str = "summary",
) -> str:
    """Discover the dependency graph of a component (format: summary, json, dot, mermaid)."""
    options = discovery.DiscoverOptions(root_type, root_name, max_depth, include_standard_objects)
    try:
        result = discovery.discover_dependencies(options, _client())
    except (ValueError, RuntimeError) as e:
        return f"Discovery failed: {e}"
    _graphs[result.graph.root_id] = result.graph
    return _format_result(result, format)


@mcp.tool
def rank_impact(root_id: str, top: int = 10) -> str:
    """Rank nodes of a discovered graph by how many components depend on them."""
    g = _get_graph(root_id)
    if g is None:
        return f"No graph for '{root_id}'. Call discover_dependencies first."
    lines = [f"Top {top} of {len(g.nodes)} node(s) by impact:"]
    lines += [f"  {score:4d}  {node.id}" for node, score in graph.sort_by_impact(g)[:top]]
    return "\n".join(lines)


@mcp.tool
def dependency_path(root_id: str, target_id: str) -> str:
    """Shortest dependency chain from the root of a discovered graph to target_id."""
    g = _get_graph(root_id)
    if g is None:
        return f"No graph for '{root_id}'. Call discover_dependencies first."
    found = graph.get_path_to_node(g, target_id)
    return " -> ".join(found) if found else f"No path from {root_id} to {target_id}."


@mcp.tool
def find_circular_dependencies(root_id: str) -> str:
    """List the circular dependency paths found in a discovered graph."""
    g = _get_graph(root_id)
    if g is None:
        return f"No graph for '{root_id}'. Call discover_dependencies first."
    result = graph.detect_cycles(g.nodes, g.edges, g.root_id)
    if not result.has_cycles:
        return "No circular dependencies."
    return "\n".join([f"{len(result.cycles)} cycle(s):"] + [f"  {' -> '.join(c)}" for c in result.cycles])


@mcp.tool
def get_subgraph(root_id: str, node_id: str, depth: int | None = None, format: str = "mermaid") -> str:
    """Extract node_id and everything it reaches (optionally limited to depth hops)."""
    g = _get_graph(root_id)
    if g is None:
        return f"No graph for '{root_id}'. Call discover_dependencies first."
    if node_id not in g.nodes or format not in export.EXPORTERS:
        return f"Unknown node '{node_id}' or format '{format}'."
    return export.EXPORTERS[format](graph.extract_subgraph(g, node_id, depth))


@mcp.tool
def analyze_object(object_name: str) -> str:
    """Standard fields, workflow field updates and flows attached to an object."""
    try:
        result = analyzers.run_all_analyzers(object_name, _client())
    except RuntimeError as e:
        return f"Analysis failed: {e}"
    return _format_analysis(object_name, result)


@mcp.tool
def describe_object(object_name: str) -> str:
    """Fields, record types and child relationships of a Salesforce object."""
    try:
        obj = describe.describe_object(_client(), object_name)
    except RuntimeError as e:
        return f"Describe failed: {e}"
    return _format_object(obj)


# ── Helpers (not tools) ──────────────────────────────────────────────────────

def _format_result(result: DiscoveryResult, fmt: str) -> str:
    if fmt in export.EXPORTERS:
        return export.EXPORTERS[fmt](result.graph)
    summary = discovery.summarize(result)
    lines = [
        f"Root: {summary['root']}",
        f"Nodes: {summary['nodes']} | Edges: {summary['edges']} | Circular: {summary['circular']}",
        "By type: " + ", ".join(f"{t}={n}" for t, n in summary["by_type"].items()),
    ]
    if result.warnings:
        lines.append(f"\nWarnings ({len(result.warnings)}):")
        lines += [f"  {w}" for w in result.warnings]
    pills = format_pills_for_display(result.pills)
    if pills:
        lines += ["", pills]
    return "\n".join(lines)


def _format_analysis(object_name: str, result: analyzers.AnalysisResult) -> str:
    lines = [f"Analysis of {object_name}: {len(result.nodes)} component(s)"]
    for node in result.nodes:
        lines.append(f"  {node.type}: {node.name}")
    if result.warnings:
        lines.append(f"\nWarnings ({len(result.warnings)}):")
        lines += [f"  {w}" for w in result.warnings]
    return "\n".join(lines)


def _format_object(obj: dict) -> str:
    lines = [
        f"Object: {obj['name']} ({obj['label']})",
        f"Custom: {obj['custom']}",
        f"\nFields ({len(obj['fields'])}):",
    ]
    for f in obj["fields"]:
        ref = f" -> {', '.join(f['reference_to'])}" if f.get("reference_to") else ""
        req = " [REQUIRED]" if f.get("required") else ""
        lines.append(f"  {f['name']} ({f['type']}){ref}{req}")
    if obj["record_types"]:
        lines.append(f"\nRecord Types ({len(obj['record_types'])}):")
        lines += [f"  {rt['developer_name'] or rt['name']}" for rt in obj["record_types"]]
    if obj["child_relationships"]:
        lines.append(f"\nChild Relationships ({len(obj['child_relationships'])}):")
        for r in obj["child_relationships"]:
            lines.append(f"  <- {r['child_sobject']}.{r['field']} (rel: {r['relationship_name']})")
    return "\n".join(lines)


if __name__ == "__main__":
    mcp.run()
