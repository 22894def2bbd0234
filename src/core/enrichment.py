"""
enrichment.py — Usage pills: derived warnings/info about discovered components.

A one-way consumer of a finished graph.  Each pill family issues its own
Tooling queries; a failing query only drops that pill.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING

from src.core.models import DependencyGraph, UsagePill
from src.core.names import (
    extract_field_references,
    extract_sobject_references,
    is_dynamic_reference,
    parse_api_name,
    soql_quote,
    strip_comments,
)
from src.data.sf_api import QueryError

if TYPE_CHECKING:
    from src.core.discovery import QueryClient

logger = logging.getLogger(__name__)

SEVERITY_ORDER: dict[str, int] = {"info": 0, "warning": 1, "critical": 2}

APEX_WARNING_THRESHOLD = 10
FLOW_WARNING_THRESHOLD = 3


@dataclass
class EnrichmentOptions:
    include_apex_usage: bool = True
    include_flow_usage: bool = True
    include_validation_usage: bool = True
    include_dynamic_references: bool = True
    include_field_references: bool = True


def create_pill(
    type: str,
    label: str,
    description: str,
    severity: str = "info",
    affected_components: list[str] | None = None,
    recommendation: str | None = None,
) -> UsagePill:
    """Build a :class:`UsagePill` with a fresh unique id."""
    return UsagePill(
        id=f"pill_{uuid.uuid4().hex[:12]}",
        type=type,
        label=label,
        description=description,
        severity=severity,
        affected_components=affected_components or [],
        recommendation=recommendation,
    )


def enrich_with_usage_pills(
    graph: DependencyGraph,
    client: QueryClient,
    options: EnrichmentOptions | None = None,
) -> list[UsagePill]:
    """Compute usage pills for the objects, fields and classes in *graph*."""
    options = options or EnrichmentOptions()
    object_names: list[str] = []
    field_names: list[str] = []
    class_names: list[str] = []
    for node in graph.nodes.values():
        if node.type == "CustomObject":
            object_names.append(node.api_name)
        elif node.type == "CustomField":
            field_names.append(node.api_name)
        elif node.type == "ApexClass":
            class_names.append(node.api_name)

    pills: list[UsagePill] = []
    if options.include_apex_usage:
        pills.extend(_apex_usage(object_names, client))
    if options.include_flow_usage:
        pills.extend(_flow_usage(object_names, client))
    if options.include_validation_usage:
        pills.extend(_validation_usage(field_names, client))
    want_fields = options.include_field_references and bool(field_names)
    if class_names and (options.include_dynamic_references or want_fields):
        bodies = _apex_bodies(class_names, client)
        if options.include_dynamic_references:
            pills.extend(_dynamic_references(bodies))
        if want_fields:
            pills.extend(_field_references(bodies, field_names))

    logger.info("Created %d usage pills", len(pills))
    return pills


def _apex_usage(object_names: list[str], client: QueryClient) -> list[UsagePill]:
    pills: list[UsagePill] = []
    for object_name in object_names:
        try:
            records = client.tooling_query(
                "SELECT MetadataComponentName, MetadataComponentType "
                "FROM MetadataComponentDependency "
                f"WHERE RefMetadataComponentName = '{soql_quote(object_name)}' "
                "AND MetadataComponentType = 'ApexClass'"
            ).records
        except QueryError as e:
            logger.debug("MetadataComponentDependency unavailable for %s: %s", object_name, e)
            continue
        if not records:
            continue
        severity = "warning" if len(records) > APEX_WARNING_THRESHOLD else "info"
        pills.append(create_pill(
            "apex_usage",
            f"{object_name} Apex Usage",
            f"{len(records)} Apex class(es) reference this object",
            severity,
            [r["MetadataComponentName"] for r in records[:APEX_WARNING_THRESHOLD]],
            "High Apex coupling: review classes for direct object references "
            "before making schema changes"
            if severity == "warning"
            else "Review Apex classes for direct object references before making schema changes",
        ))
    return pills


def _flow_usage(object_names: list[str], client: QueryClient) -> list[UsagePill]:
    pills: list[UsagePill] = []
    for object_name in object_names:
        try:
            records = client.tooling_query(
                "SELECT Id, MasterLabel, ProcessType, Status FROM Flow "
                f"WHERE TriggerObjectOrEvent = '{soql_quote(object_name)}' AND IsActive = true"
            ).records
        except QueryError as e:
            logger.debug("Error analyzing Flows for %s: %s", object_name, e)
            continue
        if not records:
            continue
        severity = "warning" if len(records) > FLOW_WARNING_THRESHOLD else "info"
        pills.append(create_pill(
            "flow_usage",
            f"{object_name} Flow Usage",
            f"{len(records)} active Flow(s) trigger on this object",
            severity,
            [r["MasterLabel"] for r in records],
            "Multiple flows may cause performance issues or conflicts"
            if severity == "warning"
            else "Review flows before making changes to this object",
        ))
    return pills


def _validation_usage(field_names: list[str], client: QueryClient) -> list[UsagePill]:
    objects: list[str] = []
    for api_name in field_names:
        obj, fld = parse_api_name(api_name)
        if obj and fld and obj not in objects:
            objects.append(obj)

    pills: list[UsagePill] = []
    for object_name in objects:
        try:
            records = client.tooling_query(
                "SELECT Id, ValidationName, ErrorMessage, Active FROM ValidationRule "
                f"WHERE EntityDefinition.QualifiedApiName = '{soql_quote(object_name)}' AND Active = true"
            ).records
        except QueryError as e:
            logger.debug("Error analyzing Validation Rules for %s: %s", object_name, e)
            continue
        if records:
            pills.append(create_pill(
                "validation_usage",
                f"{object_name} Validation Rules",
                f"{len(records)} active validation rule(s) on this object",
                "info",
                [r["ValidationName"] for r in records],
                "Review validation rules when modifying fields on this object",
            ))
    return pills


def _apex_bodies(class_names: list[str], client: QueryClient) -> dict[str, str]:
    """Comment-stripped source of each discovered class, by name."""
    quoted = ", ".join(f"'{soql_quote(n)}'" for n in class_names)
    try:
        records = client.tooling_query(
            f"SELECT Name, Body FROM ApexClass WHERE Name IN ({quoted})"
        ).records
    except QueryError as e:
        logger.debug("Could not read Apex bodies: %s", e)
        return {}
    return {r["Name"]: strip_comments(r["Body"]) for r in records if r.get("Body")}


def _dynamic_references(bodies: dict[str, str]) -> list[UsagePill]:
    dynamic = [name for name, body in bodies.items() if is_dynamic_reference(body)]
    if not dynamic:
        return []
    return [create_pill(
        "dynamic_reference",
        "Dynamic Schema Access",
        f"{len(dynamic)} Apex class(es) access schema dynamically; "
        "references they make may be missed by static analysis",
        "warning",
        dynamic,
        "Search these classes for string-built field and object names before renaming or deleting",
    )]


def _field_references(bodies: dict[str, str], field_names: list[str]) -> list[UsagePill]:
    # field api name -> classes whose source names it
    hits: dict[str, list[str]] = {}
    for class_name, body in bodies.items():
        sobjects = extract_sobject_references(body)
        refs = set(extract_field_references(body))
        for sobject in sobjects:
            refs.update(extract_field_references(body, sobject))
        named = {ref.partition(".")[2] for ref in refs}
        for api_name in field_names:
            obj, fld = parse_api_name(api_name)
            if not (obj and fld):
                continue
            if api_name in refs or (obj in sobjects and fld in named):
                hits.setdefault(api_name, []).append(class_name)

    return [
        create_pill(
            "field_reference",
            f"{api_name} Apex References",
            f"{len(classes)} discovered Apex class(es) name this field in source",
            "info",
            classes,
            "Update these classes together with any change to the field",
        )
        for api_name, classes in hits.items()
    ]


# ── Pill helpers ──────────────────────────────────────────────────────────────

def filter_pills_by_severity(pills: list[UsagePill], min_severity: str) -> list[UsagePill]:
    floor = SEVERITY_ORDER[min_severity]
    return [p for p in pills if SEVERITY_ORDER[p.severity] >= floor]


def filter_pills_by_type(pills: list[UsagePill], types: list[str]) -> list[UsagePill]:
    return [p for p in pills if p.type in types]


def group_pills_by_severity(pills: list[UsagePill]) -> dict[str, list[UsagePill]]:
    grouped: dict[str, list[UsagePill]] = {s: [] for s in SEVERITY_ORDER}
    for pill in pills:
        grouped[pill.severity].append(pill)
    return grouped


def get_pills_summary(pills: list[UsagePill]) -> dict[str, object]:
    grouped = group_pills_by_severity(pills)
    return {
        "total": len(pills),
        "by_category": {s: len(v) for s, v in grouped.items()},
        "top_recommendations": [p.recommendation for p in pills if p.recommendation][:5],
    }


def format_pills_for_display(pills: list[UsagePill]) -> str:
    """Human-readable pill listing, most severe first."""
    grouped = group_pills_by_severity(pills)
    lines: list[str] = []
    for severity, heading in (("critical", "CRITICAL:"), ("warning", "WARNINGS:"), ("info", "INFO:")):
        if not grouped[severity]:
            continue
        if lines:
            lines.append("")
        lines.append(heading)
        for pill in grouped[severity]:
            lines.append(f"  - {pill.label}: {pill.description}")
    return "\n".join(lines)
