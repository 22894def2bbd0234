"""
models.py — Typed data model for Salesforce metadata dependency graphs.

Nodes are keyed by a deterministic ``"{type}:{apiName}"`` id and held in an
insertion-ordered dict; edges are an append-only list.  Each node carries a
metadata variant chosen by its type.  No I/O here.
"""
from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any, Literal, Union, get_args

MetadataType = Literal[
    "CustomObject",
    "CustomField",
    "ApexClass",
    "ApexTrigger",
    "ApexPage",
    "ApexComponent",
    "AuraDefinitionBundle",
    "LightningComponentBundle",
    "Flow",
    "FlowDefinition",
    "ValidationRule",
    "WorkflowRule",
    "WorkflowFieldUpdate",
    "WorkflowAlert",
    "ProcessBuilder",
    "CustomMetadataType",
    "CustomSetting",
    "CustomLabel",
    "Layout",
    "RecordType",
    "FieldSet",
    "CompactLayout",
    "ListView",
    "Report",
    "Dashboard",
    "PermissionSet",
    "Profile",
    "Unknown",
]

Relationship = Literal[
    "references",
    "contains",
    "extends",
    "implements",
    "triggers",
    "uses",
    "lookupTo",
    "masterDetail",
    "formulaReference",
    "workflowUpdate",
    "validationReference",
    "flowReference",
    "apex_reference",
    "unknown",
]

UsagePillType = Literal[
    "apex_usage",
    "flow_usage",
    "validation_usage",
    "workflow_usage",
    "formula_usage",
    "layout_usage",
    "report_usage",
    "integration_usage",
    "permission_usage",
    "field_reference",
    "hardcoded_reference",
    "dynamic_reference",
]

UsageSeverity = Literal["info", "warning", "critical"]

METADATA_TYPES: tuple[str, ...] = get_args(MetadataType)
RELATIONSHIPS: tuple[str, ...] = get_args(Relationship)


def make_node_id(node_type: str, api_name: str) -> str:
    """Build the composite node id used as the node map key."""
    return f"{node_type}:{api_name}"


# ── Metadata variants ─────────────────────────────────────────────────────────

@dataclass
class FieldMetadata:
    """Attributes of a custom or standard field."""

    data_type: str = ""
    label: str = ""
    reference_to: list[str] = field(default_factory=list)
    relationship_name: str | None = None
    is_standard: bool = False

    def as_dict(self) -> dict[str, Any]:
        return _variant_dict(self)


@dataclass
class ObjectMetadata:
    label: str = ""
    key_prefix: str | None = None
    internal_sharing_model: str | None = None
    external_sharing_model: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return _variant_dict(self)


@dataclass
class ApexClassMetadata:
    external_reference_count: int = 0

    def as_dict(self) -> dict[str, Any]:
        return _variant_dict(self)


@dataclass
class TriggerMetadata:
    table_enum_or_id: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return _variant_dict(self)


@dataclass
class FlowMetadata:
    trigger_object: str | None = None
    process_type: str | None = None
    trigger_type: str | None = None
    record_trigger_type: str | None = None
    status: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return _variant_dict(self)


@dataclass
class ValidationRuleMetadata:
    error_message: str | None = None
    active: bool = True

    def as_dict(self) -> dict[str, Any]:
        return _variant_dict(self)


@dataclass
class GenericMetadata:
    """Free-form attributes for types without a dedicated variant."""

    attributes: dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return dict(self.attributes)


NodeMetadata = Union[
    FieldMetadata,
    ObjectMetadata,
    ApexClassMetadata,
    TriggerMetadata,
    FlowMetadata,
    ValidationRuleMetadata,
    GenericMetadata,
]

# Node type -> metadata variant.  Types not listed use GenericMetadata.
METADATA_VARIANTS: dict[str, type] = {
    "CustomField": FieldMetadata,
    "CustomObject": ObjectMetadata,
    "CustomMetadataType": ObjectMetadata,
    "ApexClass": ApexClassMetadata,
    "ApexTrigger": TriggerMetadata,
    "Flow": FlowMetadata,
    "ProcessBuilder": FlowMetadata,
    "ValidationRule": ValidationRuleMetadata,
}


def _variant_dict(variant: Any) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for f in fields(variant):
        value = getattr(variant, f.name)
        if value is None:
            continue
        out[f.name] = list(value) if isinstance(value, list) else value
    return out


def metadata_from_dict(node_type: str, data: dict[str, Any] | None) -> NodeMetadata | None:
    """Rebuild the metadata variant for *node_type* from a plain dict.

    Unknown keys for a typed variant fall back to :class:`GenericMetadata`
    so nothing read from JSON is silently dropped.
    """
    if data is None:
        return None
    variant = METADATA_VARIANTS.get(node_type)
    if variant is None:
        return GenericMetadata(dict(data))
    known = {f.name for f in fields(variant)}
    if not set(data) <= known:
        return GenericMetadata(dict(data))
    return variant(**data)


# ── Graph entities ────────────────────────────────────────────────────────────

@dataclass
class DependencyNode:
    """A single metadata component discovered during traversal."""

    id: str
    name: str
    type: str
    api_name: str
    depth: int
    is_leaf: bool = False
    is_circular: bool = False
    namespace: str | None = None
    parent_id: str | None = None
    metadata: NodeMetadata | None = None

    def as_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "apiName": self.api_name,
            "depth": self.depth,
            "isLeaf": self.is_leaf,
            "isCircular": self.is_circular,
        }
        if self.namespace:
            out["namespace"] = self.namespace
        if self.parent_id:
            out["parentId"] = self.parent_id
        if self.metadata is not None:
            out["metadata"] = self.metadata.as_dict()
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DependencyNode:
        return cls(
            id=data["id"],
            name=data["name"],
            type=data["type"],
            api_name=data["apiName"],
            depth=data["depth"],
            is_leaf=data.get("isLeaf", False),
            is_circular=data.get("isCircular", False),
            namespace=data.get("namespace"),
            parent_id=data.get("parentId"),
            metadata=metadata_from_dict(data["type"], data.get("metadata")),
        )


@dataclass
class DependencyEdge:
    """Directed relationship between two node ids."""

    source_id: str
    target_id: str
    relationship_type: str
    description: str | None = None

    def as_tuple(self) -> tuple[str, str, str]:
        return (self.source_id, self.target_id, self.relationship_type)

    def as_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "sourceId": self.source_id,
            "targetId": self.target_id,
            "relationshipType": self.relationship_type,
        }
        if self.description:
            out["description"] = self.description
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DependencyEdge:
        return cls(
            source_id=data["sourceId"],
            target_id=data["targetId"],
            relationship_type=data["relationshipType"],
            description=data.get("description"),
        )


@dataclass
class GraphMetadata:
    """Discovery parameters and summary counts, computed once per discovery."""

    generated_at: str
    root_type: str
    root_name: str
    max_depth: int
    node_count: int
    edge_count: int
    has_circular_dependencies: bool
    circular_paths: list[list[str]] | None = None

    def as_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "generatedAt": self.generated_at,
            "rootType": self.root_type,
            "rootName": self.root_name,
            "maxDepth": self.max_depth,
            "nodeCount": self.node_count,
            "edgeCount": self.edge_count,
            "hasCircularDependencies": self.has_circular_dependencies,
        }
        if self.circular_paths is not None:
            out["circularPaths"] = self.circular_paths
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GraphMetadata:
        return cls(
            generated_at=data["generatedAt"],
            root_type=data["rootType"],
            root_name=data["rootName"],
            max_depth=data["maxDepth"],
            node_count=data["nodeCount"],
            edge_count=data["edgeCount"],
            has_circular_dependencies=data["hasCircularDependencies"],
            circular_paths=data.get("circularPaths"),
        )


@dataclass
class DependencyGraph:
    nodes: dict[str, DependencyNode]
    edges: list[DependencyEdge]
    root_id: str
    metadata: GraphMetadata

    def __post_init__(self) -> None:
        if self.root_id not in self.nodes:
            raise ValueError(f"Root node '{self.root_id}' is not in the node map")


@dataclass
class CycleDetectionResult:
    has_cycles: bool
    cycles: list[list[str]]
    visited_nodes: set[str]


# ── Enrichment & results ──────────────────────────────────────────────────────

@dataclass
class UsagePill:
    """Derived warning/info entry about how discovered components are used."""

    id: str
    type: str
    label: str
    description: str
    severity: str
    affected_components: list[str] = field(default_factory=list)
    recommendation: str | None = None

    def as_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "type": self.type,
            "label": self.label,
            "description": self.description,
            "severity": self.severity,
            "affectedComponents": self.affected_components,
        }
        if self.recommendation:
            out["recommendation"] = self.recommendation
        return out


@dataclass
class DiscoveryResult:
    graph: DependencyGraph
    pills: list[UsagePill]
    warnings: list[str]
    execution_time: float  # milliseconds
