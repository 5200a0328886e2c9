# polystac

Tools for working with STAC (SpatioTemporal Asset Catalog) APIs:

- `polystac.translator` turns a STAC item search, including a CQL2
  filter, into an OpenSearch / Elasticsearch `_search` request body.
- `polystac.dropin` sends the same requests to two STAC API servers and
  reports where their answers differ.
- `polystac.bench_report` turns k6 summary exports and a `raw.csv` of
  static measurements into a markdown performance report.
- `polystac.seed_http` fills any STAC API server with deterministic
  synthetic items through its own HTTP endpoints.

The package has no third-party runtime dependencies.

## Installation

```
pip install .
```

For the tests:

```
pip install ".[test]"
pytest
```

## Translating searches

```python
from polystac.translator import (
    SearchRequest, SortClause, SortDirection, translate_search,
)

request = SearchRequest(
    ids=["a", "b"],
    bbox=[-10, -20, 10, 20],
    filter={"op": "<", "args": [{"property": "eo:cloud_cover"}, 10]},
    sort_by=[SortClause("datetime", SortDirection.DESC)],
    limit=25,
)
body = translate_search(request, None)
```

`translate_search(request, after)` returns a dict with `query` (a
`bool`/`must` list), `size`, `track_total_hits`, `sort`, and, when
given, `search_after` (the `after` cursor) and `_source` (from a
`FieldsSpec`'s include/exclude lists). The request's `collections` and
`token` fields are not part of the body.

- `ids` become a `terms` clause on `id`; `bbox` becomes an `envelope`
  `geo_shape` (`bbox_geo_shape`); `intersects` (a GeoJSON geometry dict)
  becomes a `geo_shape` with `geometry_shape`; `datetime`
  (`TemporalInterval`) becomes a range on `properties.datetime`
  (`datetime_range`), or `match_all` when both ends are open.
- `query` maps property names to `Predicate`s (`eq`, `neq`, `lt`, `lte`,
  `gt`, `gte`, `in_`, `starts_with`, `ends_with`, `contains`), translated
  by `query_to_clauses`.
- `pick_size` defaults the page size to 10 and caps it at 10000.
  `track_total_hits` is `True` when a sort is given, otherwise 10000.
- `sort_clauses` defaults to `properties.datetime` descending then `id`
  ascending, and always adds an `id` tiebreak when none is present.
- `map_field` leaves `id`, `collection`, `geometry` and any dotted name
  unchanged and prefixes everything else with `properties.`.

Filters are CQL2 in its JSON encoding. Supported operators: `and`, `or`,
`not`, `=`, `<>`, `<`, `<=`, `>`, `>=`, `between`, `in`, `like`
(`%`/`_` become `*`/`?`), `isNull`, `s_intersects`, `s_within`,
`s_contains`, `s_disjoint`, `t_after`, `t_before`, `t_during`,
`t_intersects` and `t_equals`. Literals may be numbers, strings,
booleans, null, `{"timestamp": ...}`, `{"date": ...}`,
`{"interval": [...]}`, `{"bbox": [...]}` or a GeoJSON geometry. Anything
else raises `TranslationError` (a `ValueError`).

## Command-line tools

Compare two STAC API servers and write a markdown report:

```
polystac-dropin -a http://localhost:8080 -b http://localhost:3000 --out compat-report.md --collection compat -v
```

Each case gets a verdict: `match`, `diff`, `expected-diff`,
`endpoint-only-on-A`, `endpoint-only-on-B` or `both-fail`. Before
comparing, link hrefs lose their scheme and host, `created`/`updated`
and `context`/`next`/`prev` values are replaced by placeholders, and
only top-level keys, array lengths, scalar types and the sets of
returned feature or collection ids are compared. Cases with a known,
acceptable divergence are reported as `expected-diff`. A summary of the
counts is printed to stdout.

Build `report.md` from a benchmark results directory holding `raw.csv`
and `<label>/k6-summary.json` files:

```
polystac-bench-report -dir results -items 1000 -duration 30s -vus 20
```

Without `-dir` it exits with status 2. A missing or unreadable k6
summary only produces a warning.

Seed a running STAC API server with synthetic items:

```
polystac-seed-http -url http://localhost:8080 -n 1000 -collection bench
```

It waits up to 90 s for the server, creates the collection (200, 201
and 409 are accepted), then posts the items one at a time, exiting with
status 1 on the first failure.

## What this package does not do

It does not talk to an OpenSearch or Elasticsearch cluster, install
index templates, or store collections and items: `translate_search`
only builds the request body, and sending it is left to the caller. It
does not include a STAC API server; the command-line tools only act as
clients of servers that are already running.