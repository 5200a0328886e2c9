"""Aggregate per-implementation k6 summaries and raw.csv into a markdown report."""

from __future__ import annotations

import argparse
import csv
import json
import math
import os
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Sequence, TextIO

__all__ = [
    "SCENARIOS",
    "ImplRow",
    "as_float",
    "load_rows",
    "load_k6",
    "write_report",
    "fmt_mib",
    "fmt_ms",
    "main",
]

SCENARIOS = ("landing", "collections", "search_all", "search_bbox", "search_dt", "search_cql2")
_GROUP_ORDER = ("pgstac", "opensearch")
_DASH = "—"
_MIB = 1024 * 1024


@dataclass
class ImplRow:
    """Static costs from raw.csv plus the k6 results of one implementation."""

    label: str
    image: str = ""
    cold_ms: int = 0
    idle_rss: str = ""
    peak_rss: str = ""
    image_size_mib: float = 0.0
    http_reqs: float = 0.0
    http_rate: float = 0.0
    failed: float = 0.0
    per_scenario_p95: dict[str, float] = field(default_factory=dict)
    per_scenario_med: dict[str, float] = field(default_factory=dict)
    per_scenario_reqs: dict[str, float] = field(default_factory=dict)


def as_float(value: Any) -> float:
    """Coerce a JSON number to float; anything else counts as 0."""
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    return 0.0


def _to_int(text: str) -> int:
    try:
        return int(text.strip())
    except ValueError:
        return 0


def load_rows(directory: str | os.PathLike[str]) -> list[ImplRow]:
    """Read ``raw.csv`` (header skipped) into one row per implementation."""
    path = os.path.join(directory, "raw.csv")
    with open(path, newline="", encoding="utf-8") as handle:
        records = list(csv.reader(handle))
    rows: list[ImplRow] = []
    for number, record in enumerate(records[1:], start=2):
        if len(record) < 6:
            raise ValueError(f"{path}: line {number}: expected 6 fields, got {len(record)}")
        rows.append(
            ImplRow(
                label=record[0],
                image=record[1],
                cold_ms=_to_int(record[2]),
                idle_rss=record[3],
                peak_rss=record[4],
                image_size_mib=_to_int(record[5]) / _MIB,
            )
        )
    return rows


def load_k6(directory: str | os.PathLike[str], row: ImplRow) -> ImplRow:
    """Fill ``row`` from ``<directory>/<label>/k6-summary.json`` and return it."""
    path = os.path.join(directory, row.label, "k6-summary.json")
    with open(path, encoding="utf-8") as handle:
        doc = json.load(handle)
    metrics = doc.get("metrics") if isinstance(doc, dict) else None
    metrics = metrics or {}
    if not isinstance(metrics, dict) or not all(isinstance(m, dict) for m in metrics.values()):
        raise ValueError(f"{path}: metrics must be an object of objects")

    row.per_scenario_p95 = {}
    row.per_scenario_med = {}
    row.per_scenario_reqs = {}
    for scenario in SCENARIOS:
        latency = metrics.get(f"latency_{scenario}_ms")
        if latency is not None:
            row.per_scenario_p95[scenario] = as_float(latency.get("p(95)"))
            row.per_scenario_med[scenario] = as_float(latency.get("med"))
        requests = metrics.get(f"requests_{scenario}")
        if requests is not None:
            row.per_scenario_reqs[scenario] = as_float(requests.get("count"))
    reqs = metrics.get("http_reqs")
    if reqs is not None:
        row.http_reqs = as_float(reqs.get("count"))
        row.http_rate = as_float(reqs.get("rate"))
    failed = metrics.get("http_req_failed")
    if failed is not None:
        row.failed = as_float(failed.get("value"))
    return row


def fmt_mib(value: float) -> str:
    """Human size for a MiB figure."""
    if value < 1:
        return _DASH
    if value < 1024:
        return f"{value:.0f} MiB"
    return f"{value / 1024:.2f} GiB"


def fmt_ms(value: float) -> str:
    """Latency cell; zero or NaN shows as a dash."""
    if value == 0 or math.isnan(value):
        return _DASH
    if value < 10:
        return f"{value:.2f}"
    return f"{value:.1f}"


def _group_rows(rows: Sequence[ImplRow]) -> dict[str, list[ImplRow]]:
    groups: dict[str, list[ImplRow]] = {name: [] for name in _GROUP_ORDER}
    for row in rows:
        if "pgstac" in row.label:
            groups["pgstac"].append(row)
        elif "os" in row.label:
            groups["opensearch"].append(row)
    return groups


def _is_polystac(row: ImplRow) -> bool:
    return row.label.startswith("polystac")


def _write_group(w: TextIO, name: str, group: list[ImplRow]) -> None:
    w.write(f"## {name} backend\n\n")

    w.write("### Static cost\n\n")
    w.write("| Impl | Image size | Cold start | Idle RSS | Peak RSS (under load) |\n")
    w.write("|---|---:|---:|---:|---:|\n")
    for row in group:
        cold = f"{row.cold_ms} ms" if row.cold_ms > 0 else _DASH
        w.write(
            f"| {row.label} | {fmt_mib(row.image_size_mib)} | {cold} | "
            f"{row.idle_rss} | {row.peak_rss} |\n"
        )
    w.write("\n")

    w.write("### Throughput & error rate\n\n")
    w.write("| Impl | Total requests | Req/sec | Error rate |\n")
    w.write("|---|---:|---:|---:|\n")
    for row in group:
        w.write(
            f"| {row.label} | {row.http_reqs:.0f} | {row.http_rate:.1f} | "
            f"{row.failed * 100:.2f}% |\n"
        )
    w.write("\n")

    labels = "".join(f" {row.label} |" for row in group)
    columns = "---:|" * len(group)

    w.write("### Per-scenario p95 latency (ms, lower is better)\n\n")
    w.write(f"| Scenario |{labels} ratio (ref ÷ polystac) |\n")
    w.write(f"|---|{columns}---:|\n")
    for scenario in SCENARIOS:
        poly = other = 0.0
        cells = []
        for row in group:
            value = row.per_scenario_p95.get(scenario, 0.0)
            cells.append(f" {fmt_ms(value)} |")
            if _is_polystac(row):
                poly = value
            else:
                other = value
        ratio = f"{other / poly:.2f}×" if poly > 0 and other > 0 else _DASH
        w.write(f"| {scenario} |{''.join(cells)} {ratio} |\n")
    w.write("\n")

    w.write("### Per-scenario median latency (ms)\n\n")
    w.write(f"| Scenario |{labels}\n")
    w.write(f"|---|{columns}\n")
    for scenario in SCENARIOS:
        cells = "".join(f" {fmt_ms(row.per_scenario_med.get(scenario, 0.0))} |" for row in group)
        w.write(f"| {scenario} |{cells}\n")
    w.write("\n")


def write_report(
    out: TextIO, rows: Sequence[ImplRow], items: int, duration: str, vus: int
) -> None:
    """Write the markdown performance report to a text stream."""
    w = out
    generated = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    w.write("# PolyStac vs reference implementations — performance diff\n\n")
    w.write(f"Generated: {generated}\n\n")
    w.write("**Configuration**\n\n")
    w.write(f"- Items seeded per backend: **{items}**\n")
    w.write(f"- k6 duration: **{duration}**\n")
    w.write(f"- k6 VUs: **{vus}**\n")
    w.write(
        "- Mix: 6 endpoints uniformly sampled — landing, /collections, "
        "search (all/bbox/datetime/cql2-text).\n"
    )
    w.write(
        "- pgstac (v0.8.5) is shared across both pgstac impls (both call the same "
        "`pgstac.search`/`create_items` SQL — apples-to-apples).\n"
    )
    w.write(
        "- OpenSearch (2.13.0) gets a fresh container per impl (impls use incompatible "
        "index layouts) and each impl HTTP-seeds its own data via its native write path.\n\n"
    )

    groups = _group_rows(rows)
    for name in _GROUP_ORDER:
        group = groups[name]
        if not group:
            continue
        group.sort(key=lambda row: not _is_polystac(row))
        _write_group(w, name, group)

    w.write("## Methodology\n\n")
    w.write(
        "- pgstac side: the same Postgres+pgstac container feeds both PolyStac and "
        "stac-fastapi-pgstac; data is bulk-seeded once via `pgstac.create_items` and read "
        "by both impls. The only thing that changes between rows is the API server.\n"
    )
    w.write(
        "- OpenSearch side: each impl gets its own fresh OpenSearch and seeds itself by "
        "ingesting the same N items through its own POST /collections/{id}/items endpoint. "
        "Data is logically identical but stored in each impl's native index layout.\n"
    )
    w.write("- Cold start: wall-clock from `docker run` to the first 200 on `/`.\n")
    w.write("- Idle RSS: `docker stats` snapshot 5 s after the impl reports ready, no traffic.\n")
    w.write("- Peak RSS: max `docker stats` sample taken once per second during the k6 run.\n")
    w.write(
        "- Latency includes one localhost network hop, JSON marshal, and (for /search) "
        "one round-trip to the backend service.\n"
    )
    w.write("- All requests in the mix have `limit=10` so payload size is comparable.\n\n")
    w.write("Run with `bench/run.sh [items] [duration] [vus]` (defaults: 1000 / 30s / 20).\n")


def main(argv: Sequence[str] | None = None) -> int:
    """Build ``report.md`` inside the results directory."""
    parser = argparse.ArgumentParser(description="Aggregate benchmark results", allow_abbrev=False)
    parser.add_argument("-dir", dest="dir", default="", help="results directory")
    parser.add_argument("-items", dest="items", type=int, default=0, help="items seeded")
    parser.add_argument("-duration", dest="duration", default="", help="k6 duration")
    parser.add_argument("-vus", dest="vus", type=int, default=0, help="k6 VUs")
    args = parser.parse_args(argv)
    if not args.dir:
        print("report: -dir is required", file=sys.stderr)
        return 2

    try:
        rows = load_rows(args.dir)
    except (OSError, ValueError, csv.Error) as exc:
        print(f"report: {exc}", file=sys.stderr)
        return 1
    for row in rows:
        try:
            load_k6(args.dir, row)
        except (OSError, ValueError) as exc:
            print(f"warn: {row.label}: {exc}", file=sys.stderr)
    try:
        with open(os.path.join(args.dir, "report.md"), "w", encoding="utf-8") as out:
            write_report(out, rows, args.items, args.duration, args.vus)
    except OSError as exc:
        print(f"report: {exc}", file=sys.stderr)
        return 1
    return 0