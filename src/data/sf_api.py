"""
sf_api.py — Salesforce REST / Tooling API query client.

Handles credential retrieval via the ``sf`` CLI (or env / .env fallback),
SOQL and Tooling API queries with ``nextRecordsUrl`` pagination, per-request
retry with exponential backoff, and fixed-width batch execution.
No Click, no MCP — pure API I/O.
"""
from __future__ import annotations

import json
import logging
import os
import subprocess
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any

import requests
from dotenv import load_dotenv
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

logger = logging.getLogger(__name__)

DEFAULT_API_VERSION = os.environ.get("SF_API_VERSION", "v60.0")
BATCH_CONCURRENCY = 5
RETRY_STATUS_CODES = (429, 502, 503, 504)


class QueryError(RuntimeError):
    """A SOQL / Tooling query was rejected by Salesforce or could not be sent."""

    def __init__(self, message: str, error_code: str | None = None, status: int | None = None):
        super().__init__(message)
        self.error_code = error_code
        self.status = status


@dataclass
class QueryResult:
    records: list[dict[str, Any]] = field(default_factory=list)
    total_size: int = 0
    done: bool = True

    def as_dict(self) -> dict[str, Any]:
        return {"totalSize": self.total_size, "done": self.done, "records": self.records}


# ── Credentials ───────────────────────────────────────────────────────────────

def get_session(org_alias: str) -> tuple[str, str]:
    """Get ``(instance_url, access_token)`` from the Salesforce CLI.

    Runs ``sf org display -o <alias> --json`` and parses the result.

    Raises:
        RuntimeError: If the sf CLI is not installed or the command fails.
    """
    try:
        result = subprocess.run(
            ["sf", "org", "display", "-o", org_alias, "--json"],
            capture_output=True, text=True, timeout=30,
        )
    except FileNotFoundError:
        raise RuntimeError(
            "'sf' CLI not found. Install from "
            "https://developer.salesforce.com/tools/salesforcecli"
        )

    if result.returncode != 0:
        try:
            err_data = json.loads(result.stdout)
            msg = err_data.get("message", result.stderr)
        except (json.JSONDecodeError, KeyError):
            msg = result.stderr
        raise RuntimeError(
            f"sf org display failed for '{org_alias}': {msg}. "
            f"Try: sf org login web -a {org_alias}"
        )

    data = json.loads(result.stdout)["result"]
    instance_url = data["instanceUrl"].rstrip("/")
    access_token = data["accessToken"]
    return instance_url, access_token


def get_session_from_env() -> tuple[str, str]:
    """Read ``SF_INSTANCE_URL`` / ``SF_ACCESS_TOKEN`` from the environment or ``.env``.

    Raises:
        RuntimeError: If either variable is missing.
    """
    load_dotenv()
    instance_url = os.environ.get("SF_INSTANCE_URL", "").rstrip("/")
    access_token = os.environ.get("SF_ACCESS_TOKEN", "")
    if not instance_url or not access_token:
        raise RuntimeError(
            "No Salesforce org given. Pass --org <alias>, set SF_TARGET_ORG, "
            "or set SF_INSTANCE_URL and SF_ACCESS_TOKEN."
        )
    return instance_url, access_token


def resolve_session(org_alias: str | None = None) -> tuple[str, str]:
    """Resolve credentials: explicit alias, then ``SF_TARGET_ORG``, then env vars."""
    alias = org_alias or os.environ.get("SF_TARGET_ORG")
    if alias:
        return get_session(alias)
    return get_session_from_env()


# ── Client ────────────────────────────────────────────────────────────────────

def _build_http_session(max_retries: int, backoff_factor: float) -> requests.Session:
    retry = Retry(
        total=max_retries,
        backoff_factor=backoff_factor,
        backoff_max=30,
        backoff_jitter=0.1 * backoff_factor,
        status_forcelist=RETRY_STATUS_CODES,
        allowed_methods=frozenset({"GET"}),
        respect_retry_after_header=True,
        raise_on_status=False,
    )
    session = requests.Session()
    adapter = HTTPAdapter(max_retries=retry, pool_maxsize=BATCH_CONCURRENCY)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


class SalesforceClient:
    """Authenticated query client for one org.

    ``query`` hits ``/query``, ``tooling_query`` hits ``/tooling/query``.
    Both follow ``nextRecordsUrl`` until the result set is exhausted.
    """

    def __init__(
        self,
        instance_url: str,
        access_token: str,
        api_version: str = DEFAULT_API_VERSION,
        max_retries: int = 3,
        backoff_factor: float = 1.0,
        timeout: int = 30,
    ) -> None:
        self.instance_url = instance_url.rstrip("/")
        self.api_version = api_version if api_version.startswith("v") else f"v{api_version}"
        self.timeout = timeout
        self._headers = {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/json",
        }
        self._http = _build_http_session(max_retries, backoff_factor)

    @classmethod
    def from_org(cls, org_alias: str | None = None, **kwargs: Any) -> SalesforceClient:
        instance_url, token = resolve_session(org_alias)
        return cls(instance_url, token, **kwargs)

    def query(self, soql: str) -> QueryResult:
        """Run a SOQL query against the data API."""
        return self._run(soql, tooling=False)

    def tooling_query(self, soql: str) -> QueryResult:
        """Run a SOQL query against the Tooling API."""
        return self._run(soql, tooling=True)

    def describe_sobject(self, object_name: str) -> dict[str, Any]:
        """Raw REST describe of one SObject (fields, record types, child relationships)."""
        logger.debug("Describing %s", object_name)
        return self._get(
            f"{self.instance_url}/services/data/{self.api_version}/sobjects/{object_name}/describe"
        )

    def execute_batch(
        self,
        queries: dict[str, str],
        tooling: bool = False,
    ) -> tuple[dict[str, QueryResult], dict[str, str]]:
        """Run named queries at most :data:`BATCH_CONCURRENCY` at a time.

        Returns:
            ``(results, errors)`` keyed by query name.  A failing query lands
            in ``errors`` and does not affect the others.
        """
        run = self.tooling_query if tooling else self.query
        results: dict[str, QueryResult] = {}
        errors: dict[str, str] = {}
        with ThreadPoolExecutor(max_workers=BATCH_CONCURRENCY) as pool:
            futures = {name: pool.submit(run, soql) for name, soql in queries.items()}
            for name, fut in futures.items():
                try:
                    results[name] = fut.result()
                except QueryError as e:
                    errors[name] = str(e)
        logger.info("Batch of %d queries: %d ok, %d failed", len(queries), len(results), len(errors))
        return results, errors

    # ── internals ──

    def _run(self, soql: str, tooling: bool) -> QueryResult:
        started = time.perf_counter()
        soql = " ".join(soql.split())
        path = "tooling/query" if tooling else "query"
        url = f"{self.instance_url}/services/data/{self.api_version}/{path}"
        logger.debug("%s query: %s", "Tooling" if tooling else "SOQL", soql)

        payload = self._get(url, params={"q": soql})
        result = QueryResult(
            records=list(payload.get("records", [])),
            total_size=payload.get("totalSize", 0),
            done=payload.get("done", True),
        )
        next_url = payload.get("nextRecordsUrl")
        while next_url:
            logger.debug("Fetching more records from %s", next_url)
            payload = self._get(f"{self.instance_url}{next_url}")
            result.records.extend(payload.get("records", []))
            next_url = payload.get("nextRecordsUrl")
        result.done = True

        logger.debug(
            "Query returned %d records in %.0fms",
            len(result.records), (time.perf_counter() - started) * 1000,
        )
        return result

    def _get(self, url: str, params: dict[str, str] | None = None) -> dict[str, Any]:
        try:
            resp = self._http.get(url, headers=self._headers, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise QueryError(f"Request to Salesforce failed: {e}") from e
        if resp.status_code >= 400:
            raise _error_from_response(resp)
        try:
            return resp.json()
        except ValueError as e:
            raise QueryError(f"Invalid JSON from Salesforce: {e}", status=resp.status_code) from e


def _error_from_response(resp: requests.Response) -> QueryError:
    """Salesforce errors come back as ``[{"message": ..., "errorCode": ...}]``."""
    try:
        body = resp.json()
    except ValueError:
        return QueryError(f"HTTP {resp.status_code}: {resp.text[:200]}", status=resp.status_code)
    if isinstance(body, list) and body and isinstance(body[0], dict):
        err = body[0]
        code = err.get("errorCode")
        return QueryError(
            f"{code}: {err.get('message', '')}" if code else err.get("message", ""),
            error_code=code,
            status=resp.status_code,
        )
    return QueryError(f"HTTP {resp.status_code}: {body}", status=resp.status_code)
