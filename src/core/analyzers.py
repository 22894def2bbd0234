"""
analyzers.py — Per-metadata-type dependency analyzers.

Two families live here:

* Graph analyzers, registered in :data:`ANALYZERS` and driven by
  ``DiscoverySession.expand``.  Each one finds the *immediate* children of a
  component, adds them to the session and recurses through the session
  while under the depth budget.
* Standalone object analyzers (``analyze_*``) that return an
  :class:`AnalysisResult` for one object; :func:`run_all_analyzers` fans
  them out on a thread pool.

Query failures are recorded as warnings, never raised past the analyzer.
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from src.core.models import (
    ApexClassMetadata,
    DependencyEdge,
    DependencyNode,
    FieldMetadata,
    FlowMetadata,
    ObjectMetadata,
    TriggerMetadata,
    ValidationRuleMetadata,
    make_node_id,
)
from src.core.names import build_api_name, soql_quote
from src.data.sf_api import QueryError

if TYPE_CHECKING:
    from src.core.discovery import DiscoverySession, QueryClient

logger = logging.getLogger(__name__)


def is_master_detail(data_type: str | None) -> bool:
    """FieldDefinition reports ``Master-Detail(Account)``; describe reports ``MasterDetail``."""
    if not data_type:
        return False
    return data_type.replace("-", "").lower().startswith("masterdetail")


def _reference_targets(record: dict[str, Any]) -> list[str]:
    ref = record.get("ReferenceTo")
    if isinstance(ref, dict):
        return list(ref.get("referenceTo") or [])
    if isinstance(ref, list):
        return list(ref)
    return []


# ── Graph analyzers ───────────────────────────────────────────────────────────

def discover_custom_object(session: DiscoverySession, object_name: str, depth: int) -> None:
    """Custom fields, referenced objects, triggers and active validation rules.

    Fields sit at ``depth + 1``; an object reached through a lookup or
    master-detail field sits at ``depth + 2`` and is expanded in turn.
    """
    source_id = make_node_id("CustomObject", object_name)
    quoted = soql_quote(object_name)

    try:
        fields = session.client.tooling_query(
            "SELECT QualifiedApiName, DataType, Label, ReferenceTo, RelationshipName "
            "FROM FieldDefinition "
            f"WHERE EntityDefinition.QualifiedApiName = '{quoted}' "
            "AND QualifiedApiName LIKE '%__c'"
        ).records
    except QueryError as e:
        session.warn(f"Error querying fields for {object_name}", e)
        fields = []

    for rec in fields:
        field_name = rec["QualifiedApiName"]
        targets = _reference_targets(rec)
        field_id = session.add_node(
            "CustomField",
            build_api_name(object_name, field_name),
            depth + 1,
            name=field_name,
            parent_id=source_id,
            metadata=FieldMetadata(
                data_type=rec.get("DataType") or "",
                label=rec.get("Label") or "",
                reference_to=targets,
                relationship_name=rec.get("RelationshipName"),
            ),
        )
        if field_id is None:
            continue
        session.add_edge(source_id, field_id, "contains")

        relationship = "masterDetail" if is_master_detail(rec.get("DataType")) else "lookupTo"
        ref_depth = depth + 2
        for target in targets:
            if not session.allows_reference(target):
                continue
            # The lookup target stays recorded on the field's metadata.
            if ref_depth > session.max_depth:
                continue
            ref_id = make_node_id("CustomObject", target)
            is_new = ref_id not in session.nodes
            if session.add_node("CustomObject", target, ref_depth) is None:
                continue
            session.add_edge(field_id, ref_id, relationship)
            if is_new:
                session.expand("CustomObject", target, ref_depth)

    try:
        triggers = session.client.tooling_query(
            f"SELECT Name FROM ApexTrigger WHERE TableEnumOrId = '{quoted}'"
        ).records
    except QueryError as e:
        session.warn(f"Error querying triggers for {object_name}", e)
        triggers = []

    for rec in triggers:
        trigger_id = session.add_node(
            "ApexTrigger",
            rec["Name"],
            depth + 1,
            parent_id=source_id,
            metadata=TriggerMetadata(table_enum_or_id=object_name),
        )
        if trigger_id is not None:
            session.add_edge(source_id, trigger_id, "triggers")

    try:
        rules = session.client.tooling_query(
            "SELECT ValidationName, ErrorMessage, Active FROM ValidationRule "
            f"WHERE EntityDefinition.QualifiedApiName = '{quoted}' AND Active = true"
        ).records
    except QueryError as e:
        session.warn(f"Error querying validation rules for {object_name}", e)
        rules = []

    for rec in rules:
        rule_id = session.add_node(
            "ValidationRule",
            f"{object_name}.{rec['ValidationName']}",
            depth + 1,
            name=rec["ValidationName"],
            parent_id=source_id,
            metadata=ValidationRuleMetadata(
                error_message=rec.get("ErrorMessage"),
                active=rec.get("Active", True),
            ),
        )
        if rule_id is not None:
            session.add_edge(source_id, rule_id, "contains")


def discover_custom_field(session: DiscoverySession, field_name: str, depth: int) -> None:
    # Formula and cross-object references are not traversed per field; the
    # parent object's pass already links the field and its lookup target.
    logger.debug("Field dependency discovery for %s handled via parent object", field_name)


def discover_apex_class(session: DiscoverySession, class_name: str, depth: int) -> None:
    """Classes referenced from the compiled symbol table."""
    source_id = make_node_id("ApexClass", class_name)
    try:
        records = session.client.tooling_query(
            "SELECT Id, Name, SymbolTable FROM ApexClass "
            f"WHERE Name = '{soql_quote(class_name)}'"
        ).records
    except QueryError as e:
        session.warn(f"Error querying Apex class {class_name}", e)
        return

    if not records:
        return
    symbol_table = records[0].get("SymbolTable") or {}
    references = symbol_table.get("externalReferences") or []

    node = session.nodes.get(source_id)
    if node is not None and node.metadata is None:
        node.metadata = ApexClassMetadata(external_reference_count=len(references))

    for ref in references:
        ref_name = ref.get("name")
        if not ref_name or ref_name == class_name:
            continue
        if not session.allows_reference(ref_name):
            continue
        ref_id = make_node_id("ApexClass", ref_name)
        is_new = ref_id not in session.nodes
        if session.add_node(
            "ApexClass", ref_name, depth + 1, namespace=ref.get("namespace") or None,
        ) is None:
            continue
        session.add_edge(source_id, ref_id, "references")
        if is_new:
            session.expand("ApexClass", ref_name, depth + 1)


def discover_apex_trigger(session: DiscoverySession, trigger_name: str, depth: int) -> None:
    """The single object a trigger is bound to."""
    source_id = make_node_id("ApexTrigger", trigger_name)
    try:
        records = session.client.tooling_query(
            "SELECT TableEnumOrId FROM ApexTrigger "
            f"WHERE Name = '{soql_quote(trigger_name)}'"
        ).records
    except QueryError as e:
        session.warn(f"Error querying trigger {trigger_name}", e)
        return

    if not records or not records[0].get("TableEnumOrId"):
        return
    object_name = records[0]["TableEnumOrId"]
    node = session.nodes.get(source_id)
    if node is not None and node.metadata is None:
        node.metadata = TriggerMetadata(table_enum_or_id=object_name)

    object_id = session.add_node("CustomObject", object_name, depth + 1)
    if object_id is not None:
        session.add_edge(source_id, object_id, "triggers")


def discover_flow(session: DiscoverySession, flow_name: str, depth: int) -> None:
    """The object an active flow triggers on, if any."""
    source_id = make_node_id("Flow", flow_name)
    try:
        records = session.client.tooling_query(
            "SELECT TriggerObjectOrEvent, ProcessType, TriggerType, Status FROM Flow "
            f"WHERE DeveloperName = '{soql_quote(flow_name)}' AND IsActive = true"
        ).records
    except QueryError as e:
        session.warn(f"Error querying flow {flow_name}", e)
        return

    if not records or not records[0].get("TriggerObjectOrEvent"):
        return
    rec = records[0]
    object_name = rec["TriggerObjectOrEvent"]
    node = session.nodes.get(source_id)
    if node is not None and node.metadata is None:
        node.metadata = FlowMetadata(
            trigger_object=object_name,
            process_type=rec.get("ProcessType"),
            trigger_type=rec.get("TriggerType"),
            status=rec.get("Status"),
        )

    object_id = session.add_node("CustomObject", object_name, depth + 1)
    if object_id is not None:
        session.add_edge(source_id, object_id, "flowReference")


Analyzer = Callable[["DiscoverySession", str, int], None]

ANALYZERS: dict[str, Analyzer] = {
    "CustomObject": discover_custom_object,
    "CustomField": discover_custom_field,
    "ApexClass": discover_apex_class,
    "ApexTrigger": discover_apex_trigger,
    "Flow": discover_flow,
}


# ── Standalone object analyzers ───────────────────────────────────────────────

@dataclass
class AnalysisResult:
    """Nodes and edges found by one standalone analyzer."""

    nodes: list[DependencyNode] = field(default_factory=list)
    edges: list[DependencyEdge] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def fail(self, message: str, error: Exception) -> AnalysisResult:
        text = f"{message}: {error}"
        logger.warning(text)
        self.warnings.append(text)
        return self


def analyze_standard_fields(object_name: str, client: QueryClient) -> AnalysisResult:
    """Standard (non-custom) fields of *object_name*."""
    result = AnalysisResult()
    object_id = make_node_id("CustomObject", object_name)
    try:
        records = client.tooling_query(
            "SELECT QualifiedApiName, DataType, Label, IsCompound, IsNillable "
            "FROM FieldDefinition "
            f"WHERE EntityDefinition.QualifiedApiName = '{soql_quote(object_name)}' "
            "AND IsCustom = false"
        ).records
    except QueryError as e:
        return result.fail(f"Error analyzing standard fields for {object_name}", e)

    for rec in records:
        api_name = build_api_name(object_name, rec["QualifiedApiName"])
        # typed CustomField (flagged is_standard) but kept apart from custom field ids
        node_id = make_node_id("StandardField", api_name)
        result.nodes.append(DependencyNode(
            id=node_id,
            name=rec["QualifiedApiName"],
            type="CustomField",
            api_name=api_name,
            depth=1,
            is_leaf=True,
            parent_id=object_id,
            metadata=FieldMetadata(
                data_type=rec.get("DataType") or "",
                label=rec.get("Label") or "",
                is_standard=True,
            ),
        ))
        result.edges.append(DependencyEdge(object_id, node_id, "contains"))

    logger.info("Found %d standard fields for %s", len(result.nodes), object_name)
    return result


def analyze_custom_metadata(cmt_name: str, client: QueryClient) -> AnalysisResult:
    """A Custom Metadata Type and its custom fields."""
    result = AnalysisResult()
    quoted = soql_quote(cmt_name)
    try:
        entities = client.tooling_query(
            "SELECT QualifiedApiName, DeveloperName, MasterLabel, KeyPrefix "
            f"FROM EntityDefinition WHERE QualifiedApiName = '{quoted}'"
        ).records
        if not entities:
            result.warnings.append(f"Custom Metadata Type {cmt_name} not found")
            return result
        entity = entities[0]
        root_id = make_node_id("CustomMetadataType", cmt_name)
        result.nodes.append(DependencyNode(
            id=root_id,
            name=entity.get("DeveloperName") or cmt_name,
            type="CustomMetadataType",
            api_name=cmt_name,
            depth=0,
            metadata=ObjectMetadata(
                label=entity.get("MasterLabel") or "",
                key_prefix=entity.get("KeyPrefix"),
            ),
        ))

        fields = client.tooling_query(
            "SELECT QualifiedApiName, DataType, Label FROM FieldDefinition "
            f"WHERE EntityDefinition.QualifiedApiName = '{quoted}' AND IsCustom = true"
        ).records
    except QueryError as e:
        return result.fail(f"Error analyzing CMT {cmt_name}", e)

    for rec in fields:
        api_name = build_api_name(cmt_name, rec["QualifiedApiName"])
        field_id = make_node_id("CustomField", api_name)
        result.nodes.append(DependencyNode(
            id=field_id,
            name=rec["QualifiedApiName"],
            type="CustomField",
            api_name=api_name,
            depth=1,
            is_leaf=True,
            parent_id=root_id,
            metadata=FieldMetadata(data_type=rec.get("DataType") or "", label=rec.get("Label") or ""),
        ))
        result.edges.append(DependencyEdge(root_id, field_id, "contains"))

    result.nodes[0].is_leaf = not fields
    logger.info("Analyzed CMT %s: %d fields", cmt_name, len(fields))
    return result


def analyze_workflows(object_name: str, client: QueryClient) -> AnalysisResult:
    """Workflow field updates whose source object is *object_name*."""
    result = AnalysisResult()
    object_id = make_node_id("CustomObject", object_name)
    try:
        updates = client.tooling_query(
            "SELECT Id, Name, SourceObject FROM WorkflowFieldUpdate "
            f"WHERE SourceObject = '{soql_quote(object_name)}'"
        ).records
    except QueryError as e:
        # WorkflowFieldUpdate is not queryable in every org.
        logger.debug("WorkflowFieldUpdate query failed for %s: %s", object_name, e)
        return result

    for rec in updates:
        api_name = f"{object_name}.{rec['Name']}"
        node_id = make_node_id("WorkflowFieldUpdate", api_name)
        result.nodes.append(DependencyNode(
            id=node_id,
            name=rec["Name"],
            type="WorkflowFieldUpdate",
            api_name=api_name,
            depth=1,
            is_leaf=True,
            parent_id=object_id,
        ))
        result.edges.append(DependencyEdge(object_id, node_id, "workflowUpdate"))
    logger.debug("Found %d workflow field updates for %s", len(updates), object_name)
    return result


def _flows_for_object(
    object_name: str,
    client: QueryClient,
    soql_filter: str,
    node_type: str,
    label: str,
) -> AnalysisResult:
    result = AnalysisResult()
    object_id = make_node_id("CustomObject", object_name)
    try:
        records = client.tooling_query(
            "SELECT Id, MasterLabel, DeveloperName, ProcessType, TriggerType, "
            "RecordTriggerType, Status FROM Flow "
            f"WHERE TriggerObjectOrEvent = '{soql_quote(object_name)}' AND {soql_filter}"
        ).records
    except QueryError as e:
        return result.fail(f"Error analyzing {label} for {object_name}", e)

    for rec in records:
        node_id = make_node_id(node_type, rec["DeveloperName"])
        result.nodes.append(DependencyNode(
            id=node_id,
            name=rec.get("MasterLabel") or rec["DeveloperName"],
            type=node_type,
            api_name=rec["DeveloperName"],
            depth=1,
            is_leaf=True,
            parent_id=object_id,
            metadata=FlowMetadata(
                trigger_object=object_name,
                process_type=rec.get("ProcessType"),
                trigger_type=rec.get("TriggerType"),
                record_trigger_type=rec.get("RecordTriggerType"),
                status=rec.get("Status"),
            ),
        ))
        result.edges.append(DependencyEdge(object_id, node_id, "triggers"))
    logger.info("Found %d %s for %s", len(records), label, object_name)
    return result


def analyze_process_builders(object_name: str, client: QueryClient) -> AnalysisResult:
    return _flows_for_object(
        object_name, client,
        "ProcessType = 'Workflow' AND Status = 'Active'",
        "ProcessBuilder", "Process Builders",
    )


def analyze_record_triggered_flows(object_name: str, client: QueryClient) -> AnalysisResult:
    return _flows_for_object(
        object_name, client,
        "ProcessType = 'AutoLaunchedFlow' AND TriggerType = 'RecordAfterSave' AND IsActive = true",
        "Flow", "Record-Triggered Flows",
    )


def analyze_sharing_settings(object_name: str, client: QueryClient) -> AnalysisResult:
    """Sharing model of *object_name*, returned as metadata on its object node."""
    result = AnalysisResult()
    try:
        records = client.tooling_query(
            "SELECT QualifiedApiName, Label, InternalSharingModel, ExternalSharingModel "
            f"FROM EntityDefinition WHERE QualifiedApiName = '{soql_quote(object_name)}'"
        ).records
    except QueryError as e:
        return result.fail(f"Error analyzing sharing settings for {object_name}", e)

    if records:
        rec = records[0]
        result.nodes.append(DependencyNode(
            id=make_node_id("CustomObject", object_name),
            name=object_name,
            type="CustomObject",
            api_name=object_name,
            depth=0,
            is_leaf=True,
            metadata=ObjectMetadata(
                label=rec.get("Label") or "",
                internal_sharing_model=rec.get("InternalSharingModel"),
                external_sharing_model=rec.get("ExternalSharingModel"),
            ),
        ))
        logger.info(
            "Sharing for %s: internal=%s external=%s", object_name,
            rec.get("InternalSharingModel"), rec.get("ExternalSharingModel"),
        )
    return result


STANDALONE_ANALYZERS: tuple[Callable[[str, Any], AnalysisResult], ...] = (
    analyze_standard_fields,
    analyze_workflows,
    analyze_process_builders,
    analyze_record_triggered_flows,
)


def run_all_analyzers(object_name: str, client: QueryClient) -> AnalysisResult:
    """Run the standalone analyzers for *object_name* concurrently.

    Results are concatenated once every analyzer has finished; the relative
    order of nodes from different analyzers is not guaranteed.
    """
    merged = AnalysisResult()
    with ThreadPoolExecutor(max_workers=len(STANDALONE_ANALYZERS)) as pool:
        futures = [pool.submit(fn, object_name, client) for fn in STANDALONE_ANALYZERS]
        for fut in futures:
            part = fut.result()
            merged.nodes.extend(part.nodes)
            merged.edges.extend(part.edges)
            merged.warnings.extend(part.warnings)
    logger.info(
        "All analyzers complete for %s: %d nodes, %d edges",
        object_name, len(merged.nodes), len(merged.edges),
    )
    return merged
