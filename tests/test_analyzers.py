"""Tests for src.core.analyzers — standalone object analyzers and helpers."""
from __future__ import annotations

import pytest

from src.core.analyzers import (
    analyze_custom_metadata,
    analyze_process_builders,
    analyze_record_triggered_flows,
    analyze_sharing_settings,
    analyze_standard_fields,
    analyze_workflows,
    is_master_detail,
    run_all_analyzers,
)
from src.data.sf_api import QueryError

FLOW = {
    "Id": "301x", "MasterLabel": "Invoice Sync", "DeveloperName": "Invoice_Sync",
    "ProcessType": "AutoLaunchedFlow", "TriggerType": "RecordAfterSave",
    "RecordTriggerType": "CreateAndUpdate", "Status": "Active",
}


class TestIsMasterDetail:
    @pytest.mark.parametrize("data_type, expected", [
        ("Master-Detail(Account)", True),
        ("MasterDetail", True),
        ("Lookup(Account)", False),
        ("Text(80)", False),
        (None, False),
    ])
    def test_detection(self, data_type, expected):
        assert is_master_detail(data_type) is expected


class TestStandardFields:
    def test_nodes_marked_standard(self, make_client):
        client = make_client({"IsCustom = false": [
            {"QualifiedApiName": "Name", "DataType": "Name", "Label": "Account Name"},
            {"QualifiedApiName": "OwnerId", "DataType": "Lookup(User)", "Label": "Owner ID"},
        ]})
        result = analyze_standard_fields("Account", client)
        assert [n.id for n in result.nodes] == ["StandardField:Account.Name", "StandardField:Account.OwnerId"]
        assert all(n.type == "CustomField" and n.metadata.is_standard for n in result.nodes)
        assert [e.as_tuple() for e in result.edges][0] == (
            "CustomObject:Account", "StandardField:Account.Name", "contains",
        )

    def test_failure_is_warning(self, make_client):
        client = make_client({"FieldDefinition": QueryError("INVALID_SESSION_ID: Session expired")})
        result = analyze_standard_fields("Account", client)
        assert result.nodes == []
        assert result.warnings == [
            "Error analyzing standard fields for Account: INVALID_SESSION_ID: Session expired",
        ]


class TestCustomMetadata:
    def test_type_and_fields(self, make_client):
        client = make_client({
            "FROM EntityDefinition": [{
                "QualifiedApiName": "Tax_Rate__mdt", "DeveloperName": "Tax_Rate",
                "MasterLabel": "Tax Rate", "KeyPrefix": "m01",
            }],
            "FROM FieldDefinition": [{"QualifiedApiName": "Rate__c", "DataType": "Percent", "Label": "Rate"}],
        })
        result = analyze_custom_metadata("Tax_Rate__mdt", client)
        root, fld = result.nodes
        assert root.id == "CustomMetadataType:Tax_Rate__mdt"
        assert root.metadata.key_prefix == "m01"
        assert root.is_leaf is False
        assert fld.id == "CustomField:Tax_Rate__mdt.Rate__c"
        assert fld.parent_id == root.id
        assert len(result.edges) == 1

    def test_not_found(self, make_client):
        result = analyze_custom_metadata("Missing__mdt", make_client())
        assert result.nodes == []
        assert result.warnings == ["Custom Metadata Type Missing__mdt not found"]


class TestWorkflows:
    def test_field_updates(self, make_client):
        client = make_client({"FROM WorkflowFieldUpdate": [{"Id": "04Y", "Name": "Set_Status", "SourceObject": "Invoice__c"}]})
        result = analyze_workflows("Invoice__c", client)
        assert [n.id for n in result.nodes] == ["WorkflowFieldUpdate:Invoice__c.Set_Status"]
        assert result.edges[0].relationship_type == "workflowUpdate"

    def test_unavailable_is_silent(self, make_client):
        client = make_client({"FROM WorkflowFieldUpdate": QueryError("not supported")})
        result = analyze_workflows("Invoice__c", client)
        assert result.nodes == [] and result.warnings == []


class TestFlows:
    def test_record_triggered_flows(self, make_client):
        client = make_client({"RecordAfterSave": [FLOW]})
        result = analyze_record_triggered_flows("Invoice__c", client)
        node = result.nodes[0]
        assert node.id == "Flow:Invoice_Sync"
        assert node.name == "Invoice Sync"
        assert node.metadata.record_trigger_type == "CreateAndUpdate"
        assert result.edges[0].as_tuple() == ("CustomObject:Invoice__c", "Flow:Invoice_Sync", "triggers")

    def test_process_builders(self, make_client):
        client = make_client({"ProcessType = 'Workflow'": [dict(FLOW, DeveloperName="Legacy_PB", ProcessType="Workflow")]})
        result = analyze_process_builders("Invoice__c", client)
        assert [n.id for n in result.nodes] == ["ProcessBuilder:Legacy_PB"]

    def test_failure_names_the_analyzer(self, make_client):
        result = analyze_process_builders("Invoice__c", make_client({"FROM Flow": QueryError("boom")}))
        assert result.warnings == ["Error analyzing Process Builders for Invoice__c: boom"]


class TestSharing:
    def test_sharing_models(self, make_client):
        client = make_client({"InternalSharingModel": [{
            "QualifiedApiName": "Invoice__c", "Label": "Invoice",
            "InternalSharingModel": "Private", "ExternalSharingModel": "Private",
        }]})
        result = analyze_sharing_settings("Invoice__c", client)
        assert result.nodes[0].metadata.internal_sharing_model == "Private"


class TestRunAll:
    def test_results_concatenated(self, make_client):
        client = make_client({
            "IsCustom = false": [{"QualifiedApiName": "Name", "DataType": "Text", "Label": "Name"}],
            "FROM WorkflowFieldUpdate": [{"Id": "04Y", "Name": "Set_Status"}],
            "RecordAfterSave": [FLOW],
        })
        result = run_all_analyzers("Invoice__c", client)
        # Completion order between analyzers is not fixed.
        assert sorted(n.id for n in result.nodes) == [
            "Flow:Invoice_Sync",
            "StandardField:Invoice__c.Name",
            "WorkflowFieldUpdate:Invoice__c.Set_Status",
        ]
        assert len(result.edges) == 3
        assert result.warnings == []

    def test_one_failure_keeps_others(self, make_client):
        client = make_client({
            "IsCustom = false": QueryError("boom"),
            "RecordAfterSave": [FLOW],
        })
        result = run_all_analyzers("Invoice__c", client)
        assert [n.id for n in result.nodes] == ["Flow:Invoice_Sync"]
        assert len(result.warnings) == 1
