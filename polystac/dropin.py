"""Drop-in compatibility check between two STAC API servers.

Fires a curated set of requests at server A and server B and reports,
per endpoint, whether status codes and response shapes agree once
per-call noise (absolute hosts, pagination tokens, server timestamps)
is normalized away.
"""

from __future__ import annotations

import argparse
import json
import sys
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Sequence

__all__ = [
    "Case",
    "CallOutcome",
    "Result",
    "classify",
    "diff_bodies",
    "normalize",
    "normalize_links",
    "strip_host",
    "structural_diff",
    "id_set_diff",
    "extract_ids",
    "call",
    "summary",
    "write_report",
    "escape_md",
    "compat_cases",
    "urlencode",
    "main",
]

_SUMMARY_ORDER = (
    "match",
    "expected-diff",
    "diff",
    "endpoint-only-on-A",
    "endpoint-only-on-B",
    "both-fail",
)
_REPORT_ORDER = (
    "diff",
    "endpoint-only-on-A",
    "endpoint-only-on-B",
    "both-fail",
    "expected-diff",
    "match",
)
_LINK_KEYS = ("rel", "href", "type", "method")
_URL_ESCAPES = str.maketrans({'"': "%22", " ": "%20", "<": "%3C", ">": "%3E", "'": "%27"})
_MD_ESCAPES = str.maketrans({"|": "\\|", "\n": " "})
_TIMEOUT = 30.0


@dataclass
class Case:
    """One request fired at both servers.

    ``expected`` names the reason a divergence is acceptable; when set, a
    ``diff`` verdict becomes ``expected-diff``.
    """

    name: str
    method: str
    path: str
    body: Any = None
    ignore_body: bool = False
    expected: str = ""


@dataclass
class CallOutcome:
    """What one server answered (status 0 when the request failed)."""

    status: int = 0
    body: bytes = b""
    error: Exception | None = None
    url: str = ""


@dataclass
class Result:
    """A case together with both outcomes and the verdict."""

    case: Case
    a: CallOutcome
    b: CallOutcome
    verdict: str = ""
    notes: list[str] = field(default_factory=list)


def _quote(text: str) -> str:
    return json.dumps(text)


def _json_type(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, dict):
        return "object"
    if isinstance(value, list):
        return "array"
    return type(value).__name__


def _verdict(result: Result) -> tuple[str, list[str]]:
    a, b = result.a.status, result.b.status
    if a >= 500 and b >= 500:
        return "both-fail", []
    if a == 404 and b != 404 and b < 400:
        return "endpoint-only-on-B", []
    if b == 404 and a != 404 and a < 400:
        return "endpoint-only-on-A", []
    if a != b:
        return "diff", [f"status: A={a} B={b}"]
    if result.case.ignore_body:
        return "match", []
    notes = diff_bodies(result.a.body, result.b.body, result.case.method, result.case.path)
    return ("diff", notes) if notes else ("match", [])


def classify(result: Result) -> Result:
    """Set the verdict and notes on ``result`` and return it."""
    verdict, notes = _verdict(result)
    result.verdict = verdict
    result.notes.extend(notes)
    if result.case.expected and result.verdict == "diff":
        result.verdict = "expected-diff"
        result.notes.append("expected: " + result.case.expected)
    return result


def diff_bodies(a: bytes, b: bytes, method: str, path: str) -> list[str]:
    """Compare two JSON bodies after normalization; empty means equivalent."""
    try:
        a_value = json.loads(a)
    except ValueError as exc:
        return [f"A body not JSON: {exc}"]
    try:
        b_value = json.loads(b)
    except ValueError as exc:
        return [f"B body not JSON: {exc}"]
    a_value = normalize(a_value)
    b_value = normalize(b_value)
    return structural_diff(a_value, b_value, "") + id_set_diff(a_value, b_value, path)


def normalize(value: Any) -> Any:
    """Replace fields that legitimately differ between servers with placeholders."""
    if isinstance(value, dict):
        out: dict[str, Any] = {}
        for key, val in value.items():
            if key == "links":
                out[key] = normalize_links(val)
            elif key in ("created", "updated"):
                out[key] = "<server-timestamp>"
            elif key in ("context", "next", "prev"):
                out[key] = "<opaque>"
            else:
                out[key] = normalize(val)
        return out
    if isinstance(value, list):
        return [normalize(element) for element in value]
    return value


def _link_sort_key(link: dict[str, Any]) -> str:
    return f"{link.get('rel', '<nil>')}{link.get('href', '<nil>')}"


def normalize_links(value: Any) -> Any:
    """Reduce links to rel/href/type/method with host-less hrefs, sorted."""
    if not isinstance(value, list):
        return value
    out = []
    for link in value:
        if not isinstance(link, dict):
            continue
        kept = {k: link[k] for k in _LINK_KEYS if isinstance(link.get(k), str)}
        if "href" in kept:
            kept["href"] = strip_host(kept["href"])
        out.append(kept)
    out.sort(key=_link_sort_key)
    return out


def strip_host(href: str) -> str:
    """Drop the ``scheme://host`` prefix of an absolute http(s) URL."""
    for scheme in ("http://", "https://"):
        if href.startswith(scheme):
            rest = href[len(scheme):]
            slash = rest.find("/")
            return rest[slash:] if slash >= 0 else "/"
    return href


def _join(path: str, key: str) -> str:
    return key if not path else f"{path}.{key}"


def structural_diff(a: Any, b: Any, path: str) -> list[str]:
    """Top-level shape differences: keys for objects, lengths for arrays, types otherwise."""
    if isinstance(a, dict):
        if not isinstance(b, dict):
            return [f"type mismatch at {_quote(path)}: A object, B {_json_type(b)}"]
        out = [f"key {_quote(_join(path, k))} missing in B" for k in sorted(a) if k not in b]
        out += [f"key {_quote(_join(path, k))} missing in A" for k in sorted(b) if k not in a]
        return out
    if isinstance(a, list):
        if not isinstance(b, list):
            return [f"type mismatch at {_quote(path)}: A array, B {_json_type(b)}"]
        if len(a) != len(b):
            return [f"array length differs at {_quote(path)}: A={len(a)} B={len(b)}"]
        return []
    if _json_type(a) != _json_type(b):
        return [f"type mismatch at {_quote(path)}: {_json_type(a)} vs {_json_type(b)}"]
    return []


def _format_ids(ids: list[str]) -> str:
    return "[" + " ".join(ids) + "]"


def _ids_diff(a: Any, b: Any, field_name: str, label: str) -> list[str]:
    a_ids = extract_ids(a, field_name)
    b_ids = extract_ids(b, field_name)
    if a_ids != b_ids:
        return [f"{label} ids differ: A={_format_ids(a_ids)} B={_format_ids(b_ids)}"]
    return []


def id_set_diff(a: Any, b: Any, path: str) -> list[str]:
    """Order-insensitive comparison of returned feature or collection ids."""
    if path.endswith("/items") or path == "/search":
        return _ids_diff(a, b, "features", "feature")
    if path == "/collections":
        return _ids_diff(a, b, "collections", "collection")
    return []


def extract_ids(value: Any, field: str) -> list[str]:
    """Sorted string ``id`` values of the objects in ``value[field]``."""
    if not isinstance(value, dict):
        return []
    entries = value.get(field)
    if not isinstance(entries, list):
        return []
    return sorted(
        e["id"] for e in entries if isinstance(e, dict) and isinstance(e.get("id"), str)
    )


def call(base: str, case: Case) -> CallOutcome:
    """Send one case to a server; failures are recorded, not raised."""
    url = base + case.path
    data = None
    headers: dict[str, str] = {}
    if case.body is not None:
        data = json.dumps(case.body).encode()
        headers["Content-Type"] = "application/json"
    try:
        request = urllib.request.Request(url, data=data, headers=headers, method=case.method)
    except ValueError as exc:
        return CallOutcome(url=url, error=exc)
    try:
        with urllib.request.urlopen(request, timeout=_TIMEOUT) as response:
            return CallOutcome(status=response.status, body=response.read(), url=url)
    except urllib.error.HTTPError as exc:
        try:
            body = exc.read() or b""
        except OSError:
            body = b""
        return CallOutcome(status=exc.code, body=body, url=url)
    except (OSError, ValueError) as exc:
        return CallOutcome(url=url, error=exc)


def _count(results: Sequence[Result]) -> dict[str, int]:
    counts = {verdict: 0 for verdict in _SUMMARY_ORDER}
    for result in results:
        counts[result.verdict] = counts.get(result.verdict, 0) + 1
    return counts


def summary(results: Sequence[Result]) -> dict[str, int]:
    """Print the per-verdict counts and return them."""
    counts = _count(results)
    print("\nDrop-in summary:")
    for verdict in _SUMMARY_ORDER:
        print(f"  {verdict:<21} {counts[verdict]}")
    return counts


def write_report(path: str, url_a: str, url_b: str, results: Sequence[Result]) -> None:
    """Write the markdown compatibility report."""
    counts = _count(results)
    generated = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    lines = [
        "# Drop-in compatibility — PolyStac vs stac-server (Node)",
        "",
        f"Generated: {generated}",
        "",
        f"- A = {url_a} (PolyStac)",
        f"- B = {url_b} (stac-server)",
        "",
        f"Cases: {len(results)}. Per-endpoint verdicts:",
        "",
        "| Verdict | Count |",
        "|---|---:|",
    ]
    lines += [f"| {verdict} | {counts[verdict]} |" for verdict in _SUMMARY_ORDER]
    lines.append("")
    for verdict in _REPORT_ORDER:
        group = [r for r in results if r.verdict == verdict]
        if not group:
            continue
        lines += [
            f"## {verdict} ({len(group)})",
            "",
            "| Method | Path | A status | B status | Notes |",
            "|---|---|---:|---:|---|",
        ]
        for result in group:
            notes = "; ".join(result.notes) or "—"
            shown = result.case.path
            if result.case.body is not None:
                shown += " *(POST body)*"
            lines.append(
                f"| {result.case.method} | `{shown}` | {result.a.status} | "
                f"{result.b.status} | {escape_md(notes)} |"
            )
        lines.append("")
    with open(path, "w", encoding="utf-8") as handle:
        handle.write("\n".join(lines) + "\n")


def escape_md(text: str) -> str:
    """Make text safe for a markdown table cell."""
    return text.translate(_MD_ESCAPES)


def urlencode(text: str) -> str:
    """Percent-encode the few characters CQL2 text filters carry."""
    return text.translate(_URL_ESCAPES)


def compat_cases(collection: str) -> list[Case]:
    """The drop-in test corpus for a seeded collection."""
    item_id = "item-0000001"
    col = collection
    cql2_text = urlencode('"eo:cloud_cover" < 50')
    return [
        Case("landing", "GET", "/"),
        Case("conformance", "GET", "/conformance"),
        Case(
            "openapi-doc",
            "GET",
            "/api",
            expected="spec-allows-both: PolyStac returns OpenAPI as JSON; stac-server "
            "returns it as YAML. The STAC API spec accepts either media type.",
        ),
        Case("collections-list", "GET", "/collections"),
        Case("collection-get", "GET", "/collections/" + col),
        Case("collection-missing", "GET", "/collections/__nope__"),
        Case(
            "queryables-global",
            "GET",
            "/queryables",
            expected="schema-cosmetic: PolyStac includes `description`; stac-server includes "
            "`additionalProperties`. Both are valid JSON-Schema fields and clients "
            "typically read `properties`.",
        ),
        Case(
            "queryables-collection",
            "GET",
            f"/collections/{col}/queryables",
            expected="schema-cosmetic: same as queryables-global.",
        ),
        Case("items-list", "GET", f"/collections/{col}/items?limit=5"),
        Case("items-list-page2", "GET", f"/collections/{col}/items?limit=5&page=2"),
        Case("item-get", "GET", f"/collections/{col}/items/{item_id}"),
        Case("item-missing", "GET", f"/collections/{col}/items/__nope__"),
        Case("search-empty", "GET", "/search?limit=5"),
        Case("search-by-collection", "GET", f"/search?collections={col}&limit=5"),
        Case("search-by-ids", "GET", f"/search?ids={item_id}"),
        Case("search-bbox", "GET", "/search?bbox=-10,-10,10,10&limit=5"),
        Case(
            "search-datetime",
            "GET",
            "/search?datetime=2024-01-01T00:00:00Z/2024-06-01T00:00:00Z&limit=5",
        ),
        Case("search-sortby-asc", "GET", "/search?sortby=id&limit=5"),
        Case("search-sortby-desc", "GET", "/search?sortby=-properties.eo:cloud_cover&limit=5"),
        Case("search-fields-include", "GET", "/search?fields=id,properties.datetime&limit=5"),
        Case(
            "search-cql2-text",
            "GET",
            f"/search?filter-lang=cql2-text&filter={cql2_text}&limit=5",
            expected="polystac-superset: stac-server's /conformance does not declare "
            "cql2-text. PolyStac is strictly more capable here; clients written against "
            "stac-server only send cql2-json.",
        ),
        Case("search-post-empty", "POST", "/search", body={"limit": 5}),
        Case("search-post-collection", "POST", "/search", body={"collections": [col], "limit": 5}),
        Case("search-post-bbox", "POST", "/search", body={"bbox": [-10, -10, 10, 10], "limit": 5}),
        Case(
            "search-post-cql2-text",
            "POST",
            "/search",
            body={"filter-lang": "cql2-text", "filter": '"eo:cloud_cover" < 50', "limit": 5},
            expected="polystac-superset: same as search-cql2-text.",
        ),
        Case(
            "search-post-cql2-json",
            "POST",
            "/search",
            body={
                "filter-lang": "cql2-json",
                "filter": {"op": "<", "args": [{"property": "eo:cloud_cover"}, 50]},
                "limit": 5,
            },
        ),
        Case(
            "search-post-sortby",
            "POST",
            "/search",
            body={"sortby": [{"field": "properties.datetime", "direction": "desc"}], "limit": 5},
        ),
        Case(
            "search-post-fields",
            "POST",
            "/search",
            body={"fields": {"include": ["id", "properties.datetime"]}, "limit": 5},
        ),
    ]


def main(argv: Sequence[str] | None = None) -> int:
    """Run every case against both servers, write the report, print a summary."""
    parser = argparse.ArgumentParser(description="Drop-in compatibility validator")
    parser.add_argument("-a", default="http://localhost:8080", help="PolyStac base URL")
    parser.add_argument("-b", default="http://localhost:3000", help="stac-server base URL")
    parser.add_argument("-out", "--out", default="compat-report.md", help="markdown report path")
    parser.add_argument(
        "-collection", "--collection", default="compat", help="collection ID used in fixtures"
    )
    parser.add_argument("-v", action="store_true", help="print per-case diff")
    args = parser.parse_args(argv)

    results = []
    for case in compat_cases(args.collection):
        result = classify(Result(case=case, a=call(args.a, case), b=call(args.b, case)))
        results.append(result)
        if args.v:
            print(
                f"  [{result.verdict}] {case.method} {case.path} : "
                f"A={result.a.status} B={result.b.status} {'; '.join(result.notes)}",
                file=sys.stderr,
            )

    try:
        write_report(args.out, args.a, args.b, results)
    except OSError as exc:
        print(f"report: {exc}", file=sys.stderr)
    summary(results)
    return 0