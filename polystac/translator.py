"""Translate STAC search requests into the OpenSearch query DSL.

Filters are CQL2 expressions in their JSON encoding, e.g.
``{"op": "<", "args": [{"property": "eo:cloud_cover"}, 10]}``.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any

__all__ = [
    "SortDirection",
    "SortClause",
    "TemporalInterval",
    "Predicate",
    "FieldsSpec",
    "SearchRequest",
    "TranslationError",
    "translate_search",
    "pick_size",
    "sort_clauses",
    "map_field",
    "datetime_range",
    "query_to_clauses",
    "bbox_geo_shape",
    "geometry_shape",
]

_BACKEND = "opensearch"
_DATE_FORMAT = "strict_date_optional_time"
_TOP_LEVEL_FIELDS = {"id", "collection", "geometry"}
_COMPARISONS = {"<": "lt", "<=": "lte", ">": "gt", ">=": "gte"}
_SPATIAL_RELATIONS = {
    "s_intersects": "intersects",
    "s_within": "within",
    "s_contains": "contains",
    "s_disjoint": "disjoint",
}
_TEMPORAL_OPS = {"t_after", "t_before", "t_during", "t_intersects", "t_equals"}
_GEOJSON_TYPES = {
    "Point",
    "MultiPoint",
    "LineString",
    "MultiLineString",
    "Polygon",
    "MultiPolygon",
    "GeometryCollection",
}
_ESCAPE_WILDCARDS = str.maketrans({"*": "\\*", "?": "\\?"})
_CQL2_TO_DSL_WILDCARDS = str.maketrans({"%": "*", "_": "?"})


class SortDirection(enum.Enum):
    """Direction of one sort clause."""

    ASC = "asc"
    DESC = "desc"


@dataclass
class SortClause:
    """Sort on one field."""

    field: str
    direction: SortDirection = SortDirection.ASC


@dataclass
class TemporalInterval:
    """Closed datetime interval; either end may be open (``None``)."""

    start: datetime | None = None
    end: datetime | None = None


@dataclass
class Predicate:
    """Query-extension predicate on a single property; ``None``/empty means unset."""

    eq: Any = None
    neq: Any = None
    lt: Any = None
    lte: Any = None
    gt: Any = None
    gte: Any = None
    in_: list[Any] = field(default_factory=list)
    starts_with: str = ""
    ends_with: str = ""
    contains: str = ""


@dataclass
class FieldsSpec:
    """Fields-extension include / exclude lists."""

    include: list[str] = field(default_factory=list)
    exclude: list[str] = field(default_factory=list)


@dataclass
class SearchRequest:
    """A normalized item search."""

    ids: list[str] = field(default_factory=list)
    collections: list[str] = field(default_factory=list)
    bbox: list[float] = field(default_factory=list)
    intersects: dict[str, Any] | None = None
    datetime: TemporalInterval | None = None
    query: dict[str, Predicate] = field(default_factory=dict)
    filter: Any = None
    sort_by: list[SortClause] = field(default_factory=list)
    limit: int = 0
    token: str = ""
    fields: FieldsSpec | None = None


class TranslationError(ValueError):
    """A filter expression has no mapping into the backend's query language."""

    def __init__(self, reason: str, op: str | None = None, backend: str = _BACKEND) -> None:
        self.backend = backend
        self.op = op
        self.reason = reason
        where = f"{backend}: {op}" if op else backend
        super().__init__(f"{where}: cannot translate: {reason}")


def translate_search(request: SearchRequest, after: list[Any] | None) -> dict[str, Any]:
    """Build the full ``_search`` body for a request, resuming after ``after``."""
    must: list[Any] = []
    if request.ids:
        must.append({"terms": {"id": list(request.ids)}})
    if request.bbox:
        must.append(
            {
                "geo_shape": {
                    "geometry": {"shape": bbox_geo_shape(request.bbox), "relation": "intersects"}
                }
            }
        )
    if request.intersects is not None:
        must.append(
            {
                "geo_shape": {
                    "geometry": {
                        "shape": geometry_shape(request.intersects),
                        "relation": "intersects",
                    }
                }
            }
        )
    if request.datetime is not None:
        must.append(datetime_range(request.datetime))
    for name, predicate in request.query.items():
        must.extend(query_to_clauses(name, predicate))
    if request.filter is not None:
        must.append(_translate_filter(request.filter))

    body: dict[str, Any] = {
        "query": {"bool": {"must": must}},
        "size": pick_size(request.limit),
        "track_total_hits": True if request.sort_by else 10000,
        "sort": sort_clauses(request.sort_by),
    }
    if after:
        body["search_after"] = list(after)
    if request.fields is not None:
        source: dict[str, Any] = {}
        if request.fields.include:
            source["includes"] = list(request.fields.include)
        if request.fields.exclude:
            source["excludes"] = list(request.fields.exclude)
        if source:
            body["_source"] = source
    return body


def pick_size(limit: int) -> int:
    """Clamp a page size to 1..10000, defaulting to 10."""
    if limit <= 0:
        return 10
    return min(limit, 10000)


def sort_clauses(clauses: list[SortClause]) -> list[Any]:
    """Sort clauses with an ``id`` tiebreak so ``search_after`` is stable."""
    if not clauses:
        return [
            {"properties.datetime": {"order": "desc"}},
            {"id": {"order": "asc"}},
        ]
    out: list[Any] = []
    has_id = False
    for clause in clauses:
        direction = "desc" if clause.direction is SortDirection.DESC else "asc"
        name = map_field(clause.field)
        out.append({name: {"order": direction}})
        has_id = has_id or name == "id"
    if not has_id:
        out.append({"id": {"order": "asc"}})
    return out


def map_field(name: str) -> str:
    """Map a STAC property name onto its document path; idempotent."""
    if name in _TOP_LEVEL_FIELDS or "." in name:
        return name
    return "properties." + name


def _format_instant(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def datetime_range(interval: TemporalInterval) -> dict[str, Any]:
    """Range clause on ``properties.datetime`` (match-all when fully open)."""
    bounds: dict[str, Any] = {}
    if interval.start is not None:
        bounds["gte"] = _format_instant(interval.start)
    if interval.end is not None:
        bounds["lte"] = _format_instant(interval.end)
    if not bounds:
        return {"match_all": {}}
    bounds["format"] = _DATE_FORMAT
    return {"range": {"properties.datetime": bounds}}


def query_to_clauses(field: str, predicate: Predicate) -> list[Any]:
    """Translate one query-extension predicate into DSL clauses."""
    target = map_field(field)
    out: list[Any] = []
    if predicate.eq is not None:
        out.append({"term": {target: predicate.eq}})
    if predicate.neq is not None:
        out.append({"bool": {"must_not": [{"term": {target: predicate.neq}}]}})
    for op in ("lt", "lte", "gt", "gte"):
        value = getattr(predicate, op)
        if value is not None:
            out.append({"range": {target: {op: value}}})
    if predicate.in_:
        out.append({"terms": {target: list(predicate.in_)}})
    if predicate.starts_with:
        out.append({"prefix": {target: predicate.starts_with}})
    if predicate.ends_with:
        out.append({"wildcard": {target: "*" + predicate.ends_with}})
    if predicate.contains:
        out.append({"wildcard": {target: "*" + predicate.contains + "*"}})
    return out


def bbox_geo_shape(coords: list[float]) -> dict[str, Any]:
    """Envelope shape for a ``[w, s, e, n, ...]`` bounding box."""
    if len(coords) < 4:
        raise TranslationError("bbox needs 4 elements")
    west, south, east, north = coords[0], coords[1], coords[2], coords[3]
    return {"type": "envelope", "coordinates": [[west, north], [east, south]]}


def geometry_shape(geometry: dict[str, Any] | None) -> dict[str, Any] | None:
    """GeoJSON geometry reduced to what a ``geo_shape`` query accepts."""
    if geometry is None:
        return None
    out: dict[str, Any] = {"type": geometry.get("type", "")}
    members = geometry.get("geometries") or []
    if members:
        out["geometries"] = [geometry_shape(member) for member in members]
    elif geometry.get("coordinates") is not None:
        out["coordinates"] = geometry["coordinates"]
    return out


# ---------- CQL2 ---------------------------------------------------------


def _translate_filter(expr: Any) -> dict[str, Any]:
    if isinstance(expr, dict) and "op" in expr:
        return _translate_op(expr)
    raise TranslationError(f"top-level node type {type(expr).__name__} not allowed")


def _translate_op(node: dict[str, Any]) -> dict[str, Any]:
    op = str(node["op"])
    key = op.lower()
    args = list(node.get("args") or [])

    if key in ("and", "or"):
        clauses = [_translate_filter(arg) for arg in args]
        if key == "or":
            return {"bool": {"should": clauses, "minimum_should_match": 1}}
        return {"bool": {"must": clauses}}

    if key == "not":
        if len(args) != 1:
            raise TranslationError("arity", op)
        return {"bool": {"must_not": [_translate_filter(args[0])]}}

    if key == "=":
        name, value = _prop_and_literal(args)
        return {"term": {name: value}}

    if key == "<>":
        name, value = _prop_and_literal(args)
        return {"bool": {"must_not": [{"term": {name: value}}]}}

    if key in _COMPARISONS:
        name, value = _prop_and_literal(args)
        return {"range": {name: {_COMPARISONS[key]: value}}}

    if key == "between":
        if len(args) != 3:
            raise TranslationError("arity", op)
        name = _require_property(args[0], op, "first arg must be a property")
        low = _literal_value(args[1])
        high = _literal_value(args[2])
        return {"range": {map_field(name): {"gte": low, "lte": high}}}

    if key == "in":
        if len(args) < 2:
            raise TranslationError("arity", op)
        name = _require_property(args[0], op, "first arg must be a property")
        values: list[Any] = []
        for arg in args[1:]:
            if isinstance(arg, list):
                values.extend(_literal_value(element) for element in arg)
            else:
                values.append(_literal_value(arg))
        return {"terms": {map_field(name): values}}

    if key == "like":
        if len(args) != 2:
            raise TranslationError("arity", op)
        name = _require_property(args[0], op, "first arg must be a property")
        pattern = args[1]
        if not isinstance(pattern, str):
            raise TranslationError("second arg must be a string literal", op)
        dsl = pattern.translate(_ESCAPE_WILDCARDS).translate(_CQL2_TO_DSL_WILDCARDS)
        return {"wildcard": {map_field(name): dsl}}

    if key == "isnull":
        if len(args) != 1:
            raise TranslationError("arity", op)
        name = _require_property(args[0], op, "arg must be a property")
        return {"bool": {"must_not": [{"exists": {"field": map_field(name)}}]}}

    if key in _SPATIAL_RELATIONS:
        return _translate_spatial(op, key, args)

    if key in _TEMPORAL_OPS:
        return _translate_temporal(op, key, args)

    raise TranslationError("operator not supported", op)


def _translate_spatial(op: str, key: str, args: list[Any]) -> dict[str, Any]:
    if len(args) != 2:
        raise TranslationError("arity", op)
    name = _require_property(args[0], op, "first arg must be a property (e.g. geometry)")
    shape = _spatial_shape(args[1])
    return {
        "geo_shape": {
            map_field(name): {"shape": shape, "relation": _SPATIAL_RELATIONS[key]}
        }
    }


def _translate_temporal(op: str, key: str, args: list[Any]) -> dict[str, Any]:
    if len(args) != 2:
        raise TranslationError("arity", op)
    name = _prop_ref(args[0])
    target = map_field(name) if name is not None else "properties.datetime"
    value = _literal_value(args[1])
    if key == "t_after":
        return _range_on(target, "gt", value)
    if key == "t_before":
        return _range_on(target, "lt", value)
    if key in ("t_during", "t_intersects"):
        if isinstance(value, tuple):
            bounds: dict[str, Any] = {}
            if value[0] is not None:
                bounds["gte"] = value[0]
            if value[1] is not None:
                bounds["lte"] = value[1]
            bounds["format"] = _DATE_FORMAT
            return {"range": {target: bounds}}
        return _range_on(target, "gte", value)
    return {"term": {target: list(value) if isinstance(value, tuple) else value}}


def _range_on(target: str, op: str, value: Any) -> dict[str, Any]:
    if isinstance(value, tuple):
        value = list(value)
    return {"range": {target: {op: value, "format": _DATE_FORMAT}}}


def _prop_and_literal(args: list[Any]) -> tuple[str, Any]:
    if len(args) != 2:
        raise TranslationError("arity")
    name = _prop_ref(args[0])
    if name is not None:
        return map_field(name), _literal_value(args[1])
    name = _prop_ref(args[1])
    if name is not None:
        return map_field(name), _literal_value(args[0])
    raise TranslationError("expected property + literal")


def _prop_ref(expr: Any) -> str | None:
    if isinstance(expr, dict) and isinstance(expr.get("property"), str):
        return expr["property"]
    return None


def _require_property(expr: Any, op: str, reason: str) -> str:
    name = _prop_ref(expr)
    if name is None:
        raise TranslationError(reason, op)
    return name


def _parse_instant(text: Any) -> datetime:
    if not isinstance(text, str):
        raise TranslationError(f"timestamp {text!r} is not a string")
    raw = text[:-1] + "+00:00" if text.endswith(("Z", "z")) else text
    try:
        value = datetime.fromisoformat(raw)
    except ValueError as exc:
        raise TranslationError(f"timestamp {text!r}: {exc}") from None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _interval_bound(bound: Any) -> str | None:
    if isinstance(bound, dict) and "timestamp" in bound:
        return _format_instant(_parse_instant(bound["timestamp"]))
    if isinstance(bound, str) and "T" in bound:
        return _format_instant(_parse_instant(bound))
    return None


def _literal_value(expr: Any) -> Any:
    if expr is None or isinstance(expr, (bool, int, float, str)):
        return expr
    if isinstance(expr, dict):
        if "timestamp" in expr:
            return _format_instant(_parse_instant(expr["timestamp"]))
        if "date" in expr:
            try:
                return date.fromisoformat(str(expr["date"])).isoformat()
            except ValueError as exc:
                raise TranslationError(f"date {expr['date']!r}: {exc}") from None
        if "interval" in expr:
            bounds = expr["interval"]
            if not isinstance(bounds, list) or len(bounds) != 2:
                raise TranslationError("interval needs 2 elements")
            return (_interval_bound(bounds[0]), _interval_bound(bounds[1]))
    raise TranslationError(f"unsupported literal type {type(expr).__name__}")


def _spatial_shape(expr: Any) -> Any:
    if isinstance(expr, dict):
        if "bbox" in expr:
            return bbox_geo_shape(list(expr["bbox"]))
        if expr.get("type") in _GEOJSON_TYPES:
            return geometry_shape(expr)
    raise TranslationError(f"spatial literal type {type(expr).__name__}")