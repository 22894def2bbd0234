"""
discovery.py — Discover the metadata dependency graph of one component.

A :class:`DiscoverySession` owns the node map, edge list and warnings for a
single :func:`discover_dependencies` call.  Type-specific analyzers (see
``analyzers.py``) receive the session and add to it in place; query failures
become warnings so a broken branch never loses nodes found elsewhere.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Protocol

from src.core import analyzers
from src.core.enrichment import EnrichmentOptions, enrich_with_usage_pills
from src.core.graph import detect_cycles
from src.core.models import (
    METADATA_TYPES,
    DependencyEdge,
    DependencyGraph,
    DependencyNode,
    DiscoveryResult,
    GraphMetadata,
    NodeMetadata,
    make_node_id,
)
from src.core.names import extract_namespace, is_custom
from src.data.sf_api import QueryError, QueryResult

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 3


class QueryClient(Protocol):
    """What discovery needs from a Salesforce connection."""

    def query(self, soql: str) -> QueryResult: ...

    def tooling_query(self, soql: str) -> QueryResult: ...


@dataclass
class DiscoverOptions:
    """Parameters of one discovery run.

    Attributes:
        root_type: Metadata type of the root component.
        root_name: API name of the root component.
        max_depth: Expansion bound; ``0`` returns the root alone.
        include_standard_objects: Keep references to names without ``__c``.
        include_namespaced: Keep managed-package components.
        exclude_types: Metadata types never added to the graph.
    """

    root_type: str
    root_name: str
    max_depth: int = DEFAULT_MAX_DEPTH
    include_standard_objects: bool = False
    include_namespaced: bool = True
    exclude_types: tuple[str, ...] = ()

    def validate(self) -> None:
        """Raise ``ValueError`` describing the first invalid option."""
        if self.root_type not in METADATA_TYPES:
            raise ValueError(
                f"Unknown metadata type '{self.root_type}'. "
                f"Expected one of: {', '.join(METADATA_TYPES)}"
            )
        if not self.root_name or not self.root_name.strip():
            raise ValueError("root_name must not be empty")
        if isinstance(self.max_depth, bool) or not isinstance(self.max_depth, int):
            raise ValueError(f"max_depth must be an integer, got {self.max_depth!r}")
        if self.max_depth < 0:
            raise ValueError(f"max_depth must be >= 0, got {self.max_depth}")
        bad = [t for t in self.exclude_types if t not in METADATA_TYPES]
        if bad:
            raise ValueError(f"Unknown metadata type(s) in exclude_types: {', '.join(bad)}")


class DiscoverySession:
    """Mutable state shared by every analyzer call of one discovery."""

    def __init__(self, options: DiscoverOptions, client: QueryClient) -> None:
        self.options = options
        self.client = client
        self.nodes: dict[str, DependencyNode] = {}
        self.edges: list[DependencyEdge] = []
        self.warnings: list[str] = []

    @property
    def max_depth(self) -> int:
        return self.options.max_depth

    def add_root(self) -> str:
        opts = self.options
        node_id = make_node_id(opts.root_type, opts.root_name)
        self.nodes[node_id] = DependencyNode(
            id=node_id,
            name=opts.root_name,
            type=opts.root_type,
            api_name=opts.root_name,
            depth=0,
            is_leaf=opts.max_depth == 0,
            namespace=extract_namespace(opts.root_name),
        )
        return node_id

    def add_node(
        self,
        node_type: str,
        api_name: str,
        depth: int,
        name: str | None = None,
        parent_id: str | None = None,
        namespace: str | None = None,
        metadata: NodeMetadata | None = None,
    ) -> str | None:
        """Insert a node unless its id is already present.

        Returns:
            The node id, or ``None`` when the node is filtered out by
            ``exclude_types`` / ``include_namespaced``.  Callers must not add
            edges to a ``None`` id.
        """
        node_id = make_node_id(node_type, api_name)
        if node_id in self.nodes:
            return node_id
        namespace = namespace or extract_namespace(api_name)
        if node_type in self.options.exclude_types:
            return None
        if namespace and not self.options.include_namespaced:
            return None
        self.nodes[node_id] = DependencyNode(
            id=node_id,
            name=name or api_name,
            type=node_type,
            api_name=api_name,
            depth=depth,
            is_leaf=depth >= self.max_depth,
            namespace=namespace,
            parent_id=parent_id,
            metadata=metadata,
        )
        return node_id

    def add_edge(self, source_id: str, target_id: str, relationship: str) -> None:
        self.edges.append(DependencyEdge(source_id, target_id, relationship))

    def allows_reference(self, name: str) -> bool:
        """Standard-object filter: non-``__c`` names need ``include_standard_objects``."""
        return self.options.include_standard_objects or is_custom(name)

    def warn(self, message: str, error: Exception) -> None:
        text = f"{message}: {error}"
        logger.warning(text)
        self.warnings.append(text)

    def expand(self, node_type: str, name: str, current_depth: int) -> None:
        """Run the analyzer registered for *node_type* unless at the depth bound."""
        if current_depth >= self.max_depth:
            return
        analyzer = analyzers.ANALYZERS.get(node_type)
        if analyzer is None:
            logger.debug("No specific discovery for type %s", node_type)
            return
        logger.debug("Discovering %s:%s at depth %d", node_type, name, current_depth)
        try:
            analyzer(self, name, current_depth)
        except QueryError as e:
            self.warn(f"Error discovering {node_type} {name}", e)

    def finalize_leaves(self) -> None:
        """A node is a leaf at the depth bound or when nothing hangs off it."""
        with_outgoing = {e.source_id for e in self.edges}
        for node in self.nodes.values():
            node.is_leaf = node.depth >= self.max_depth or node.id not in with_outgoing


def discover_dependencies(
    options: DiscoverOptions,
    client: QueryClient,
    enrich: bool = True,
    enrichment_options: EnrichmentOptions | None = None,
) -> DiscoveryResult:
    """Discover all dependencies of one metadata component.

    Args:
        options: Root component and expansion parameters.
        client: Query client for the target org.
        enrich: Run the usage-pill enrichment pass.
        enrichment_options: Which pill families to compute.

    Returns:
        :class:`DiscoveryResult` with the graph, pills, warnings and the
        elapsed time in milliseconds.

    Raises:
        ValueError: If *options* are invalid.
    """
    started = time.perf_counter()
    options.validate()
    logger.info(
        "Discovering dependencies for %s:%s (max depth %d)",
        options.root_type, options.root_name, options.max_depth,
    )

    session = DiscoverySession(options, client)
    root_id = session.add_root()
    session.expand(options.root_type, options.root_name, 0)
    session.finalize_leaves()

    cycles = detect_cycles(session.nodes, session.edges, root_id)
    if cycles.has_cycles:
        logger.warning("Circular dependencies detected: %d cycle(s)", len(cycles.cycles))
        for path in cycles.cycles:
            for node_id in path:
                if node_id in session.nodes:
                    session.nodes[node_id].is_circular = True

    metadata = GraphMetadata(
        generated_at=datetime.now(timezone.utc).isoformat(),
        root_type=options.root_type,
        root_name=options.root_name,
        max_depth=options.max_depth,
        node_count=len(session.nodes),
        edge_count=len(session.edges),
        has_circular_dependencies=cycles.has_cycles,
        circular_paths=cycles.cycles if cycles.has_cycles else None,
    )
    graph = DependencyGraph(
        nodes=session.nodes,
        edges=session.edges,
        root_id=root_id,
        metadata=metadata,
    )

    pills = enrich_with_usage_pills(graph, client, enrichment_options) if enrich else []

    elapsed = (time.perf_counter() - started) * 1000
    logger.info(
        "Dependency discovery complete: %d nodes, %d edges in %.0fms",
        len(graph.nodes), len(graph.edges), elapsed,
    )
    return DiscoveryResult(graph=graph, pills=pills, warnings=session.warnings, execution_time=elapsed)


def summarize(result: DiscoveryResult) -> dict[str, Any]:
    """Compact counts for CLI / MCP display."""
    by_type: dict[str, int] = {}
    for node in result.graph.nodes.values():
        by_type[node.type] = by_type.get(node.type, 0) + 1
    return {
        "root": result.graph.root_id,
        "nodes": len(result.graph.nodes),
        "edges": len(result.graph.edges),
        "by_type": dict(sorted(by_type.items())),
        "circular": result.graph.metadata.has_circular_dependencies,
        "warnings": len(result.warnings),
        "pills": len(result.pills),
        "execution_time_ms": round(result.execution_time),
    }
