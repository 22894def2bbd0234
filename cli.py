#!/usr/bin/env python3
"""
cli.py — Click CLI for Salesforce metadata dependency discovery.

Usage:
    python cli.py --org sfsdemo discover --type CustomObject --name Invoice__c --depth 2
    python cli.py --org sfsdemo discover --type ApexClass --name InvoiceService --format dot
    python cli.py --org sfsdemo analyze Invoice__c
    python cli.py --org sfsdemo query "SELECT Name FROM ApexTrigger" --tooling
    python cli.py --org sfsdemo describe Invoice__c --field Amount__c
    python cli.py --org sfsdemo flows --object Invoice__c --all
    python cli.py impact graph.json --top 10
    python cli.py path graph.json CustomObject:Contact
    python cli.py subgraph graph.json CustomField:Invoice__c.Account__c --depth 1
    python cli.py cycles graph.json
"""
from __future__ import annotations

import json
import logging
from pathlib import Path

import click

from src.core import analyzers, discovery, export, graph
from src.core.enrichment import format_pills_for_display
from src.core.models import METADATA_TYPES, DependencyGraph, UsagePill
from src.data import describe as describe_api
from src.data.sf_api import QueryError, SalesforceClient

FORMATS = ["json", "dot", "mermaid"]


def _configure_logging(verbose: bool) -> None:
    # JSON goes to stdout, so logs stay on stderr and quiet unless asked for.
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _client(ctx: click.Context) -> SalesforceClient:
    try:
        return SalesforceClient.from_org(ctx.obj["org"], api_version=ctx.obj["api_version"])
    except RuntimeError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)


def _load_graph(path: str) -> DependencyGraph:
    text = Path(path).read_text()
    data = json.loads(text)
    # Accept both a bare graph export and the full `discover` output.
    if "graph" in data:
        data = data["graph"]
    return export.graph_from_dict(data)


def _emit(text: str, output: str | None) -> None:
    if output:
        Path(output).write_text(text)
        click.echo(f"Wrote {output}", err=True)
    else:
        click.echo(text)


@click.group()
@click.option("--org", default=None, envvar="SF_TARGET_ORG",
              help="Salesforce CLI org alias (falls back to SF_INSTANCE_URL/SF_ACCESS_TOKEN).")
@click.option("--api-version", default="v60.0", envvar="SF_API_VERSION", show_default=True,
              help="Salesforce REST API version.")
@click.option("-v", "--verbose", is_flag=True, help="Log progress to stderr.")
@click.pass_context
def cli(ctx: click.Context, org: str | None, api_version: str, verbose: bool) -> None:
    """Salesforce Metadata Dependency CLI."""
    _configure_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["org"] = org
    ctx.obj["api_version"] = api_version


@cli.command()
@click.option("--type", "root_type", required=True, type=click.Choice(METADATA_TYPES),
              help="Metadata type of the root component.")
@click.option("--name", "root_name", required=True, help="API name of the root component.")
@click.option("--depth", default=discovery.DEFAULT_MAX_DEPTH, type=click.IntRange(min=0),
              show_default=True, help="Maximum traversal depth (0 = root only).")
@click.option("--include-standard", is_flag=True, help="Include standard objects and types.")
@click.option("--namespaced/--no-namespaced", default=True,
              help="Include managed-package components.")
@click.option("--exclude-type", "exclude_types", multiple=True, type=click.Choice(METADATA_TYPES),
              help="Metadata type to leave out (repeatable).")
@click.option("--enrich/--no-enrich", default=True, help="Compute usage pills.")
@click.option("--format", "fmt", default="json", type=click.Choice([*FORMATS, "summary"]))
@click.option("-o", "--output", default=None, help="Write to a file instead of stdout.")
@click.pass_context
def discover(
    ctx: click.Context,
    root_type: str,
    root_name: str,
    depth: int,
    include_standard: bool,
    namespaced: bool,
    exclude_types: tuple[str, ...],
    enrich: bool,
    fmt: str,
    output: str | None,
) -> None:
    """Discover the dependency graph of a metadata component."""
    options = discovery.DiscoverOptions(
        root_type=root_type,
        root_name=root_name,
        max_depth=depth,
        include_standard_objects=include_standard,
        include_namespaced=namespaced,
        exclude_types=exclude_types,
    )
    try:
        result = discovery.discover_dependencies(options, _client(ctx), enrich=enrich)
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    if fmt == "json":
        text = json.dumps({
            "graph": export.graph_as_dict(result.graph),
            "pills": [p.as_dict() for p in result.pills],
            "warnings": result.warnings,
            "executionTime": round(result.execution_time),
        }, indent=2)
    elif fmt == "summary":
        text = json.dumps(discovery.summarize(result), indent=2)
    else:
        text = export.EXPORTERS[fmt](result.graph)
    _emit(text, output)

    for w in result.warnings:
        click.echo(f"WARNING: {w}", err=True)


@cli.command()
@click.argument("object_name")
@click.option("--sharing", is_flag=True, help="Also report the internal and external sharing models.")
@click.pass_context
def analyze(ctx: click.Context, object_name: str, sharing: bool) -> None:
    """Run the standalone analyzers (standard fields, workflows, flows) for an object.

    A ``__mdt`` name is analysed as a Custom Metadata Type instead.
    """
    client = _client(ctx)
    if object_name.endswith("__mdt"):
        result = analyzers.analyze_custom_metadata(object_name, client)
    else:
        result = analyzers.run_all_analyzers(object_name, client)
    if sharing:
        extra = analyzers.analyze_sharing_settings(object_name, client)
        result.nodes.extend(extra.nodes)
        result.edges.extend(extra.edges)
        result.warnings.extend(extra.warnings)
    click.echo(json.dumps({
        "nodes": [n.as_dict() for n in result.nodes],
        "edges": [e.as_dict() for e in result.edges],
        "warnings": result.warnings,
    }, indent=2))


@cli.command()
@click.argument("soql")
@click.option("--tooling", is_flag=True, help="Use the Tooling API.")
@click.pass_context
def query(ctx: click.Context, soql: str, tooling: bool) -> None:
    """Execute a SOQL query (all pages) and print the records as JSON."""
    client = _client(ctx)
    try:
        result = client.tooling_query(soql) if tooling else client.query(soql)
    except QueryError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)
    click.echo(json.dumps(result.as_dict(), indent=2))


@cli.command()
@click.argument("graph_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--top", default=10, type=int, help="Number of nodes to show.")
def impact(graph_file: str, top: int) -> None:
    """Rank nodes of a saved graph by how many components depend on them."""
    g = _load_graph(graph_file)
    ranked = graph.sort_by_impact(g)[:top]
    click.echo(f"Top {len(ranked)} of {len(g.nodes)} node(s) by impact:")
    for node, score in ranked:
        click.echo(f"  {score:4d}  {node.id}")


@cli.command()
@click.argument("graph_file", type=click.Path(exists=True, dir_okay=False))
@click.argument("target_id")
def path(graph_file: str, target_id: str) -> None:
    """Shortest path from the root of a saved graph to TARGET_ID."""
    g = _load_graph(graph_file)
    found = graph.get_path_to_node(g, target_id)
    if found is None:
        click.echo(f"No path from {g.root_id} to {target_id}.", err=True)
        raise SystemExit(1)
    click.echo(" -> ".join(found))


@cli.command()
@click.argument("graph_file", type=click.Path(exists=True, dir_okay=False))
@click.argument("node_id")
@click.option("--depth", default=None, type=click.IntRange(min=0), help="Hops to include (default: all).")
@click.option("--format", "fmt", default="json", type=click.Choice(FORMATS))
def subgraph(graph_file: str, node_id: str, depth: int | None, fmt: str) -> None:
    """Extract NODE_ID and what it reaches from a saved graph."""
    g = _load_graph(graph_file)
    if node_id not in g.nodes:
        click.echo(f"Node '{node_id}' not found.", err=True)
        raise SystemExit(1)
    click.echo(export.EXPORTERS[fmt](graph.extract_subgraph(g, node_id, depth)))


@cli.command()
@click.argument("graph_file", type=click.Path(exists=True, dir_okay=False))
def cycles(graph_file: str) -> None:
    """List circular dependencies in a saved graph."""
    g = _load_graph(graph_file)
    result = graph.detect_cycles(g.nodes, g.edges, g.root_id)
    if not result.has_cycles:
        click.echo("No circular dependencies.")
        return
    click.echo(f"{len(result.cycles)} cycle(s):")
    for cycle in result.cycles:
        click.echo(f"  {' -> '.join(cycle)}")


@cli.command()
@click.argument("result_file", type=click.Path(exists=True, dir_okay=False))
def pills(result_file: str) -> None:
    """Show the usage pills stored in a `discover` JSON output."""
    data = json.loads(Path(result_file).read_text())
    loaded = [
        UsagePill(
            id=p["id"], type=p["type"], label=p["label"], description=p["description"],
            severity=p["severity"], affected_components=p.get("affectedComponents", []),
            recommendation=p.get("recommendation"),
        )
        for p in data.get("pills", [])
    ]
    click.echo(format_pills_for_display(loaded) or "No usage pills.")


# ── Describe and listings ─────────────────────────────────────────────────────

def _listing(fetch) -> None:
    try:
        data = fetch()
    except (QueryError, LookupError) as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)
    click.echo(json.dumps(data, indent=2))


@cli.command()
@click.argument("object_name")
@click.option("-f", "--field", "field_name", default=None, help="Describe a single field.")
@click.option("--fields-only", is_flag=True, help="Only print the field list.")
@click.pass_context
def describe(ctx: click.Context, object_name: str, field_name: str | None, fields_only: bool) -> None:
    """Describe an object (or one of its fields) as JSON."""
    client = _client(ctx)
    if field_name:
        _listing(lambda: describe_api.describe_field(client, object_name, field_name))
    elif fields_only:
        _listing(lambda: describe_api.describe_object(client, object_name)["fields"])
    else:
        _listing(lambda: describe_api.describe_object(client, object_name))


@cli.command("apex-classes")
@click.option("--pattern", default=None, help="Name pattern (use % as wildcard).")
@click.pass_context
def apex_classes(ctx: click.Context, pattern: str | None) -> None:
    """List Apex classes."""
    client = _client(ctx)
    _listing(lambda: describe_api.get_apex_classes(client, pattern))


@cli.command("apex-triggers")
@click.option("--object", "object_name", default=None, help="Only triggers on this object.")
@click.pass_context
def apex_triggers(ctx: click.Context, object_name: str | None) -> None:
    """List Apex triggers."""
    client = _client(ctx)
    _listing(lambda: describe_api.get_apex_triggers(client, object_name))


@cli.command("validation-rules")
@click.argument("object_name")
@click.option("--all", "include_inactive", is_flag=True, help="Include inactive rules.")
@click.pass_context
def validation_rules(ctx: click.Context, object_name: str, include_inactive: bool) -> None:
    """List the validation rules of an object."""
    client = _client(ctx)
    _listing(lambda: describe_api.get_validation_rules(client, object_name, active_only=not include_inactive))


@cli.command()
@click.option("--object", "object_name", default=None, help="Only flows triggered by this object.")
@click.option("--all", "include_inactive", is_flag=True, help="Include inactive flows.")
@click.pass_context
def flows(ctx: click.Context, object_name: str | None, include_inactive: bool) -> None:
    """List flows."""
    client = _client(ctx)
    _listing(lambda: describe_api.get_flows(client, object_name, active_only=not include_inactive))


@cli.command("custom-objects")
@click.pass_context
def custom_objects(ctx: click.Context) -> None:
    """List custom object API names."""
    client = _client(ctx)
    _listing(lambda: describe_api.get_custom_objects(client))


if __name__ == "__main__":
    cli()
