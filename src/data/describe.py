"""
describe.py — Object/field describes and metadata listings for one org.

Thin layer over :class:`~src.data.sf_api.SalesforceClient`: a REST describe
normalised to snake_case dicts, plus Tooling / SOQL listings of Apex
classes, triggers, validation rules, flows and custom objects.
"""
from __future__ import annotations

import logging
from typing import Any, Protocol

from src.core.names import is_custom, soql_quote
from src.data.sf_api import QueryError, QueryResult

logger = logging.getLogger(__name__)


class DescribeClient(Protocol):
    def query(self, soql: str) -> QueryResult: ...

    def tooling_query(self, soql: str) -> QueryResult: ...

    def describe_sobject(self, object_name: str) -> dict[str, Any]: ...


# ── Describe ──────────────────────────────────────────────────────────────────

def normalise_field(f: dict[str, Any]) -> dict[str, Any]:
    return {
        "name": f["name"],
        "label": f.get("label", f["name"]),
        "type": f.get("type", "").lower(),
        "custom": f.get("custom", False),
        "required": not f.get("nillable", True) and not f.get("defaultedOnCreate", False),
        "unique": f.get("unique", False),
        "external_id": f.get("externalId", False),
        "calculated": f.get("calculated", False),
        "length": f.get("length"),
        "precision": f.get("precision"),
        "scale": f.get("scale"),
        "createable": f.get("createable", False),
        "updateable": f.get("updateable", False),
        "default_value": f.get("defaultValue"),
        "help_text": f.get("inlineHelpText"),
        "reference_to": list(f.get("referenceTo") or []),
        "relationship_name": f.get("relationshipName"),
        "picklist_values": [p["value"] for p in (f.get("picklistValues") or []) if p.get("active")],
    }


def normalise(raw: dict[str, Any]) -> dict[str, Any]:
    """Transform a raw Salesforce describe into a compact snake_case dict."""
    child_rels = [
        {
            "child_sobject": r["childSObject"],
            "field": r["field"],
            "relationship_name": r.get("relationshipName") or "",
            "cascade_delete": r.get("cascadeDelete", False),
        }
        for r in raw.get("childRelationships", [])
        if r.get("childSObject") and r.get("field")
    ]
    record_types = [
        {
            "record_type_id": rt.get("recordTypeId") or "",
            "name": rt.get("name", ""),
            "developer_name": rt.get("developerName", ""),
            "available": rt.get("available", False),
            "master": rt.get("master", False),
        }
        for rt in raw.get("recordTypeInfos", [])
    ]
    return {
        "name": raw["name"],
        "label": raw.get("label", raw["name"]),
        "label_plural": raw.get("labelPlural", ""),
        "key_prefix": raw.get("keyPrefix") or "",
        "custom": raw.get("custom", False),
        "custom_setting": raw.get("customSetting", False),
        "queryable": raw.get("queryable", False),
        "triggerable": raw.get("triggerable", False),
        "fields": [normalise_field(f) for f in raw.get("fields", [])],
        "record_types": record_types,
        "child_relationships": child_rels,
    }


def describe_object(client: DescribeClient, object_name: str) -> dict[str, Any]:
    """Describe *object_name*.

    Raises:
        QueryError: If the object does not exist or the describe call fails.
    """
    obj = normalise(client.describe_sobject(object_name))
    logger.info("Described %s: %d fields", object_name, len(obj["fields"]))
    return obj


def describe_field(client: DescribeClient, object_name: str, field_name: str) -> dict[str, Any]:
    """Describe one field of *object_name*; the field name is matched case-insensitively.

    Raises:
        LookupError: If the object has no such field.
    """
    wanted = field_name.lower()
    for f in describe_object(client, object_name)["fields"]:
        if f["name"].lower() == wanted:
            return f
    raise LookupError(f"Field {field_name} not found on {object_name}")


def get_entity_definition(client: DescribeClient, object_name: str) -> dict[str, Any] | None:
    records = client.tooling_query(
        "SELECT DurableId, QualifiedApiName, NamespacePrefix, DeveloperName, MasterLabel, "
        "Label, PluralLabel, KeyPrefix, IsCustomSetting, IsApexTriggerable, "
        "InternalSharingModel, ExternalSharingModel "
        f"FROM EntityDefinition WHERE QualifiedApiName = '{soql_quote(object_name)}'"
    ).records
    return records[0] if records else None


# ── Listings ──────────────────────────────────────────────────────────────────

def get_apex_classes(client: DescribeClient, name_pattern: str | None = None) -> list[dict[str, Any]]:
    """Apex classes ordered by name; *name_pattern* is a SOQL ``LIKE`` pattern (``%`` wildcard)."""
    soql = "SELECT Id, Name, NamespacePrefix, ApiVersion, Status, IsValid, LengthWithoutComments FROM ApexClass"
    if name_pattern:
        soql += f" WHERE Name LIKE '{soql_quote(name_pattern)}'"
    records = client.tooling_query(soql + " ORDER BY Name").records
    logger.info("Got %d Apex classes", len(records))
    return records


def get_apex_triggers(client: DescribeClient, object_name: str | None = None) -> list[dict[str, Any]]:
    """Apex triggers ordered by name, optionally only those on *object_name*."""
    soql = (
        "SELECT Id, Name, NamespacePrefix, TableEnumOrId, ApiVersion, Status, IsValid, "
        "UsageBeforeInsert, UsageAfterInsert, UsageBeforeUpdate, UsageAfterUpdate, "
        "UsageBeforeDelete, UsageAfterDelete, UsageAfterUndelete, UsageIsBulk "
        "FROM ApexTrigger"
    )
    if object_name:
        soql += f" WHERE TableEnumOrId = '{soql_quote(object_name)}'"
    records = client.tooling_query(soql + " ORDER BY Name").records
    logger.info("Got %d Apex triggers", len(records))
    return records


def get_validation_rules(
    client: DescribeClient,
    object_name: str,
    active_only: bool = True,
) -> list[dict[str, Any]]:
    """Validation rules of *object_name*, looked up through its EntityDefinition.

    Raises:
        LookupError: If the object has no EntityDefinition.
    """
    entity = get_entity_definition(client, object_name)
    if entity is None:
        raise LookupError(f"Entity {object_name} not found")
    soql = (
        "SELECT Id, ValidationName, Active, Description, ErrorDisplayField, ErrorMessage "
        f"FROM ValidationRule WHERE EntityDefinitionId = '{soql_quote(entity['DurableId'])}'"
    )
    if active_only:
        soql += " AND Active = true"
    records = client.tooling_query(soql).records
    logger.info("Got %d validation rules for %s", len(records), object_name)
    return records


def _object_label(client: DescribeClient, object_name: str) -> str:
    # FlowDefinitionView filters on the object's label, not its API name.
    try:
        records = client.tooling_query(
            "SELECT Label FROM EntityDefinition "
            f"WHERE QualifiedApiName = '{soql_quote(object_name)}' LIMIT 1"
        ).records
    except QueryError as e:
        logger.debug("Could not resolve label of %s, using API name: %s", object_name, e)
        return object_name
    return records[0]["Label"] if records else object_name


def get_flows(
    client: DescribeClient,
    object_name: str | None = None,
    active_only: bool = True,
) -> list[dict[str, Any]]:
    """Flows ordered by label, optionally only those triggered by *object_name*.

    Read from ``FlowDefinitionView`` on the data API and reshaped to the
    Tooling ``Flow`` field names used elsewhere.
    """
    conditions: list[str] = []
    if object_name:
        conditions.append(f"TriggerObjectOrEventLabel = '{soql_quote(_object_label(client, object_name))}'")
    if active_only:
        conditions.append("IsActive = true")

    soql = (
        "SELECT Id, ApiName, Label, ProcessType, TriggerType, TriggerObjectOrEventLabel, "
        "IsActive, Description, RecordTriggerType, NamespacePrefix, ActiveVersionId, "
        "IsTemplate, LastModifiedDate FROM FlowDefinitionView"
    )
    if conditions:
        soql += " WHERE " + " AND ".join(conditions)
    records = client.query(soql + " ORDER BY Label").records
    logger.info("Got %d flows", len(records))
    return [
        {
            "Id": r.get("ActiveVersionId") or r["Id"],
            "DefinitionId": r["Id"],
            "DeveloperName": r["ApiName"],
            "MasterLabel": r["Label"],
            "NamespacePrefix": r.get("NamespacePrefix"),
            "ProcessType": r.get("ProcessType"),
            "Status": "Active" if r.get("IsActive") else "Inactive",
            "Description": r.get("Description"),
            "TriggerType": r.get("TriggerType"),
            "TriggerObjectOrEvent": r.get("TriggerObjectOrEventLabel"),
            "RecordTriggerType": r.get("RecordTriggerType"),
            "IsActive": bool(r.get("IsActive")),
            "IsTemplate": bool(r.get("IsTemplate")),
            "LastModifiedDate": r.get("LastModifiedDate"),
        }
        for r in records
    ]


def get_custom_objects(client: DescribeClient) -> list[str]:
    """API names of all ``__c`` objects, sorted."""
    records = client.tooling_query(
        "SELECT QualifiedApiName FROM EntityDefinition "
        "WHERE IsCustomizable = true AND IsCustomSetting = false "
        "ORDER BY QualifiedApiName"
    ).records
    names = [r["QualifiedApiName"] for r in records if is_custom(r["QualifiedApiName"])]
    logger.info("Got %d custom objects", len(names))
    return names
