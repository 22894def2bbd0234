"""Tests for src.core.enrichment — usage pills over a finished graph."""
from __future__ import annotations

import pytest

from src.core.enrichment import (
    EnrichmentOptions,
    create_pill,
    enrich_with_usage_pills,
    filter_pills_by_severity,
    filter_pills_by_type,
    format_pills_for_display,
    get_pills_summary,
    group_pills_by_severity,
)
from src.data.sf_api import QueryError


def _deps(n: int) -> list[dict]:
    return [{"MetadataComponentName": f"Service{i}", "MetadataComponentType": "ApexClass"} for i in range(n)]


def _flows(n: int) -> list[dict]:
    return [{"Id": str(i), "MasterLabel": f"Flow {i}", "ProcessType": "AutoLaunchedFlow", "Status": "Active"}
            for i in range(n)]


class TestApexUsage:
    def test_info_below_threshold(self, account_graph, make_client):
        client = make_client({"MetadataComponentDependency": _deps(2)})
        pills = enrich_with_usage_pills(account_graph, client)
        apex = [p for p in pills if p.type == "apex_usage"]
        # Account and Contact are both objects in the graph.
        assert len(apex) == 2
        assert apex[0].severity == "info"
        assert apex[0].affected_components == ["Service0", "Service1"]

    def test_warning_above_threshold_caps_components(self, account_graph, make_client):
        client = make_client({"MetadataComponentDependency": _deps(12)})
        pill = filter_pills_by_type(enrich_with_usage_pills(account_graph, client), ["apex_usage"])[0]
        assert pill.severity == "warning"
        assert len(pill.affected_components) == 10
        assert "12 Apex class(es)" in pill.description

    def test_query_failure_drops_pill_only(self, account_graph, make_client):
        client = make_client({
            "MetadataComponentDependency": QueryError("not supported"),
            "FROM Flow": _flows(1),
        })
        pills = enrich_with_usage_pills(account_graph, client)
        assert {p.type for p in pills} == {"flow_usage"}


class TestFlowAndValidationUsage:
    def test_flow_warning_above_three(self, account_graph, make_client):
        client = make_client({"FROM Flow": _flows(4)})
        pills = filter_pills_by_type(enrich_with_usage_pills(account_graph, client), ["flow_usage"])
        assert {p.severity for p in pills} == {"warning"}
        assert pills[0].affected_components == ["Flow 0", "Flow 1", "Flow 2", "Flow 3"]

    def test_validation_rules_per_field_object(self, account_graph, make_client):
        client = make_client({"FROM ValidationRule": [{"Id": "03d", "ValidationName": "Region_Required", "Active": True}]})
        pills = filter_pills_by_type(enrich_with_usage_pills(account_graph, client), ["validation_usage"])
        assert len(pills) == 1
        assert pills[0].label == "Account Validation Rules"
        assert pills[0].affected_components == ["Region_Required"]


class TestDynamicReferences:
    def test_dynamic_schema_access_flagged(self, cyclic_graph, make_client):
        client = make_client({"FROM ApexClass WHERE Name IN": [
            {"Name": "A", "Body": "Schema.getGlobalDescribe().get(name);"},
            {"Name": "B", "Body": "// Database.query(q)\nreturn [SELECT Id FROM Account];"},
            {"Name": "C", "Body": None},
        ]})
        pills = enrich_with_usage_pills(cyclic_graph, client)
        assert len(pills) == 1
        assert pills[0].type == "dynamic_reference"
        assert pills[0].affected_components == ["A"]
        assert any("WHERE Name IN ('A', 'B', 'C')" in q for q in client.queries)

    def test_options_disable_families(self, cyclic_graph, make_client):
        client = make_client({"FROM ApexClass": [{"Name": "A", "Body": "Type.forName('X')"}]})
        options = EnrichmentOptions(include_dynamic_references=False)
        assert enrich_with_usage_pills(cyclic_graph, client, options) == []
        assert client.queries == []


class TestFieldReferences:
    @pytest.fixture
    def invoice_graph(self, make_graph):
        return make_graph([
            ("CustomObject:Invoice__c", "CustomField:Invoice__c.Amount__c", "contains"),
            ("CustomObject:Invoice__c", "CustomField:Invoice__c.Status__c", "contains"),
            ("CustomObject:Invoice__c", "ApexClass:InvoiceService"),
            ("CustomObject:Invoice__c", "ApexClass:LineService"),
        ], "CustomObject:Invoice__c")

    def test_fields_named_in_source(self, invoice_graph, make_client):
        client = make_client({"FROM ApexClass WHERE Name IN": [
            {"Name": "InvoiceService",
             "Body": "Invoice__c inv = [SELECT Id, Status__c FROM Invoice__c];\ninv.Amount__c = 1;"},
            {"Name": "LineService", "Body": "Line__c l = new Line__c();\nl.Amount__c = 2;"},
        ]})
        pills = filter_pills_by_type(enrich_with_usage_pills(invoice_graph, client), ["field_reference"])
        assert {p.label: p.affected_components for p in pills} == {
            "Invoice__c.Amount__c Apex References": ["InvoiceService"],
            "Invoice__c.Status__c Apex References": ["InvoiceService"],
        }

    def test_commented_reference_ignored(self, invoice_graph, make_client):
        client = make_client({"FROM ApexClass WHERE Name IN": [
            {"Name": "InvoiceService", "Body": "// Invoice__c.Amount__c\nreturn null;"},
        ]})
        pills = enrich_with_usage_pills(invoice_graph, client)
        assert filter_pills_by_type(pills, ["field_reference"]) == []

    def test_bodies_read_once(self, invoice_graph, make_client):
        client = make_client()
        enrich_with_usage_pills(invoice_graph, client)
        assert sum("FROM ApexClass WHERE Name IN" in q for q in client.queries) == 1


class TestPillHelpers:
    @pytest.fixture
    def pills(self):
        return [
            create_pill("apex_usage", "A", "a", "info", recommendation="review A"),
            create_pill("flow_usage", "B", "b", "warning", recommendation="review B"),
            create_pill("dynamic_reference", "C", "c", "critical"),
        ]

    def test_ids_unique(self, pills):
        assert len({p.id for p in pills}) == 3
        assert all(p.id.startswith("pill_") for p in pills)

    def test_filter_by_severity(self, pills):
        assert [p.label for p in filter_pills_by_severity(pills, "warning")] == ["B", "C"]

    def test_group_by_severity(self, pills):
        grouped = group_pills_by_severity(pills)
        assert {k: len(v) for k, v in grouped.items()} == {"info": 1, "warning": 1, "critical": 1}

    def test_summary(self, pills):
        summary = get_pills_summary(pills)
        assert summary["total"] == 3
        assert summary["top_recommendations"] == ["review A", "review B"]

    def test_display_most_severe_first(self, pills):
        text = format_pills_for_display(pills)
        assert text.index("CRITICAL:") < text.index("WARNINGS:") < text.index("INFO:")
        assert "  - B: b" in text

    def test_display_empty(self):
        assert format_pills_for_display([]) == ""
