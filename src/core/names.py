"""
names.py — Salesforce API-name helpers and lightweight Apex source scanning.

Pure string handling — no API calls.  Used by the analyzers to filter and
annotate names, and by enrichment to flag dynamic schema access in Apex.
"""
from __future__ import annotations

import re

CUSTOM_SUFFIX = "__c"

# Suffixes that look like a namespace prefix when split on "__" but are not.
_NON_NAMESPACE_PREFIXES = {"c", "r", "mdt", "e", "b", "x"}

_MANAGED_PATTERNS = (
    re.compile(r"^\w+?__\w+__c$"),
    re.compile(r"^\w+?__\w+__\w+$"),
)

_DYNAMIC_PATTERNS = (
    re.compile(r"Schema\s*\.\s*getGlobalDescribe\s*\(\s*\)", re.IGNORECASE),
    re.compile(r"Schema\s*\.\s*describeSObjects\s*\(", re.IGNORECASE),
    re.compile(r"Type\s*\.\s*forName\s*\(", re.IGNORECASE),
    re.compile(r"Database\s*\.\s*query\s*\(", re.IGNORECASE),
    re.compile(r"String\s*\.\s*valueOf\s*\(", re.IGNORECASE),
    re.compile(r"get\s*\(\s*['\"][^'\"]+['\"]\s*\)", re.IGNORECASE),
    re.compile(r"\[\s*['\"][^'\"]+['\"]\s*\]", re.IGNORECASE),
)

# Apex system types that show up after ``new`` but are never SObjects.
COMMON_APEX_TYPES: set[str] = {
    "String", "Integer", "Boolean", "Double", "Decimal", "Date", "DateTime",
    "Time", "Blob", "Id", "Object", "List", "Set", "Map", "Exception",
    "DmlException", "QueryException", "NullPointerException", "AsyncException",
    "HttpRequest", "HttpResponse", "Http", "JSON", "Test", "System",
    "PageReference", "ApexPages", "Database", "Schema", "UserInfo",
}


def is_custom(name: str) -> bool:
    """``True`` when *name* carries the custom ``__c`` suffix."""
    return name.endswith(CUSTOM_SUFFIX)


def is_managed(name: str) -> bool:
    """``True`` for managed-package names such as ``ns__Thing__c``."""
    return any(p.match(name) for p in _MANAGED_PATTERNS)


def extract_namespace(name: str) -> str | None:
    """Return the managed-package namespace prefix of *name*, if any.

    ``HealthCloudGA__CarePlan__c`` -> ``HealthCloudGA``; ``Invoice__c`` -> ``None``.
    For qualified ``Object.Field`` names the field part wins when it is
    namespaced, otherwise the object part is checked.
    """
    if "." in name:
        obj, _, fld = name.partition(".")
        return extract_namespace(fld) or extract_namespace(obj)
    if not is_managed(name):
        return None
    prefix = name.split("__", 1)[0]
    if prefix in _NON_NAMESPACE_PREFIXES:
        return None
    return prefix


def parse_api_name(api_name: str) -> tuple[str | None, str | None]:
    """Split ``Object.Field`` into ``(object, field)``.

    A bare name is treated as an object: ``("Account", None)``.
    """
    parts = api_name.split(".")
    if len(parts) == 2:
        return parts[0], parts[1]
    if len(parts) == 1:
        return parts[0], None
    return None, None


def build_api_name(object_name: str, field_name: str | None = None) -> str:
    return f"{object_name}.{field_name}" if field_name else object_name


# ── Apex source scanning ──────────────────────────────────────────────────────

def strip_comments(code: str) -> str:
    """Remove ``//`` and ``/* */`` comments from Apex source."""
    code = re.sub(r"//[^\n]*", "", code)
    return re.sub(r"/\*[\s\S]*?\*/", "", code)


def is_dynamic_reference(code: str) -> bool:
    """``True`` if *code* accesses schema dynamically (describe, forName, ...).

    Such references are invisible to symbol-table based dependency analysis.
    """
    return any(p.search(code) for p in _DYNAMIC_PATTERNS)


def extract_sobject_references(code: str) -> list[str]:
    """Collect SObject names referenced by SOQL, ``Schema.SObjectType`` or ``new``."""
    clean = strip_comments(code)
    refs: list[str] = []

    def _add(name: str) -> None:
        if name not in refs:
            refs.append(name)

    for m in re.finditer(r"FROM\s+(\w+)", clean, re.IGNORECASE):
        _add(m.group(1))
    for m in re.finditer(r"Schema\.SObjectType\.(\w+)", clean, re.IGNORECASE):
        _add(m.group(1))
    for m in re.finditer(r"new\s+(\w+)\s*\(", clean, re.IGNORECASE):
        if m.group(1) not in COMMON_APEX_TYPES:
            _add(m.group(1))
    return refs


def extract_field_references(code: str, object_name: str | None = None) -> list[str]:
    """Collect ``Object.Field__c`` references from dotted access and SOQL selects.

    SOQL select-list fields are only qualified when *object_name* is given.
    """
    clean = strip_comments(code)
    refs: list[str] = []
    for m in re.finditer(r"(\w+)\s*\.\s*(\w+__c)", clean, re.IGNORECASE):
        ref = f"{m.group(1)}.{m.group(2)}"
        if ref not in refs:
            refs.append(ref)
    if object_name:
        for m in re.finditer(r"SELECT\s+([\w\s,.]+?)\s+FROM", clean, re.IGNORECASE):
            for fld in (f.strip() for f in m.group(1).split(",")):
                if CUSTOM_SUFFIX in fld:
                    ref = f"{object_name}.{fld}"
                    if ref not in refs:
                        refs.append(ref)
    return refs


def soql_quote(value: str) -> str:
    """Escape *value* for use inside a single-quoted SOQL literal."""
    return value.replace("\\", "\\\\").replace("'", "\\'")
