import json
from datetime import datetime, timezone

import pytest

from polystac.translator import (
    FieldsSpec,
    Predicate,
    SearchRequest,
    SortClause,
    SortDirection,
    TemporalInterval,
    TranslationError,
    bbox_geo_shape,
    datetime_range,
    geometry_shape,
    map_field,
    pick_size,
    query_to_clauses,
    sort_clauses,
    translate_search,
)


def dump(value):
    return json.dumps(value, sort_keys=True, separators=(",", ":"))


def prop(name):
    return {"property": name}


def test_translates_basic_search():
    body = translate_search(SearchRequest(ids=["a", "b"], limit=25), None)
    s = dump(body)
    assert '"size":25' in s
    assert '"terms":{"id":["a","b"]}' in s


def test_translates_bbox_to_geo_shape():
    body = translate_search(SearchRequest(bbox=[-10, -20, 10, 20]), None)
    s = dump(body)
    assert '"type":"envelope"' in s
    assert '"coordinates":[[-10,20],[10,-20]]' in s


def test_translates_datetime_range():
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    end = datetime(2024, 6, 1, tzinfo=timezone.utc)
    body = translate_search(SearchRequest(datetime=TemporalInterval(start, end)), None)
    s = dump(body)
    assert '"properties.datetime"' in s
    assert '"gte":"2024-01-01T00:00:00Z"' in s
    assert '"lte":"2024-06-01T00:00:00Z"' in s


def test_translates_cql2_comparison():
    expr = {"op": "<", "args": [prop("eo:cloud_cover"), 10]}
    s = dump(translate_search(SearchRequest(filter=expr), None))
    assert '"range":{"properties.eo:cloud_cover":{"lt":10}}' in s


def test_translates_cql2_logical_and_between():
    expr = {
        "op": "and",
        "args": [
            {"op": "=", "args": [prop("platform"), "S2A"]},
            {"op": "between", "args": [prop("eo:cloud_cover"), 0, 50]},
        ],
    }
    s = dump(translate_search(SearchRequest(filter=expr), None))
    assert '"bool":{"must":[' in s
    assert '"properties.platform"' in s
    assert '"gte":0' in s
    assert '"lte":50' in s


def test_translates_cql2_like():
    expr = {"op": "like", "args": [prop("platform"), "S2%"]}
    s = dump(translate_search(SearchRequest(filter=expr), None))
    assert '"wildcard":{"properties.platform":"S2*"}' in s


def test_translates_cql2_is_null():
    expr = {"op": "isNull", "args": [prop("platform")]}
    s = dump(translate_search(SearchRequest(filter=expr), None))
    assert '"must_not":[{"exists":{"field":"properties.platform"}}]' in s


def test_sort_clauses_include_id_tiebreak():
    s = dump(sort_clauses([SortClause("datetime", SortDirection.DESC)]))
    assert '"properties.datetime":{"order":"desc"}' in s
    assert '"id":{"order":"asc"}' in s


def test_sort_clauses_default_and_no_duplicate_id():
    assert sort_clauses([]) == [
        {"properties.datetime": {"order": "desc"}},
        {"id": {"order": "asc"}},
    ]
    assert sort_clauses([SortClause("id", SortDirection.DESC)]) == [{"id": {"order": "desc"}}]


@pytest.mark.parametrize("limit,expected", [(0, 10), (-3, 10), (5, 5), (10000, 10000), (20000, 10000)])
def test_pick_size(limit, expected):
    assert pick_size(limit) == expected


@pytest.mark.parametrize(
    "name,expected",
    [
        ("id", "id"),
        ("collection", "collection"),
        ("geometry", "geometry"),
        ("eo:cloud_cover", "properties.eo:cloud_cover"),
        ("properties.eo:cloud_cover", "properties.eo:cloud_cover"),
    ],
)
def test_map_field(name, expected):
    assert map_field(name) == expected
    assert map_field(map_field(name)) == expected


def test_datetime_range_open_is_match_all():
    assert datetime_range(TemporalInterval()) == {"match_all": {}}


def test_datetime_range_naive_and_offset():
    start = datetime(2024, 1, 1, 12, 30, 15, 999)
    assert datetime_range(TemporalInterval(start=start)) == {
        "range": {
            "properties.datetime": {
                "gte": "2024-01-01T12:30:15Z",
                "format": "strict_date_optional_time",
            }
        }
    }


def test_query_to_clauses():
    clauses = query_to_clauses(
        "platform",
        Predicate(eq="S2A", neq="L8", gt=1, in_=["a", "b"], starts_with="S", ends_with="A", contains="2"),
    )
    assert clauses == [
        {"term": {"properties.platform": "S2A"}},
        {"bool": {"must_not": [{"term": {"properties.platform": "L8"}}]}},
        {"range": {"properties.platform": {"gt": 1}}},
        {"terms": {"properties.platform": ["a", "b"]}},
        {"prefix": {"properties.platform": "S"}},
        {"wildcard": {"properties.platform": "*A"}},
        {"wildcard": {"properties.platform": "*2*"}},
    ]


def test_query_in_search_body():
    body = translate_search(SearchRequest(query={"eo:cloud_cover": Predicate(lte=30)}), None)
    assert body["query"]["bool"]["must"] == [{"range": {"properties.eo:cloud_cover": {"lte": 30}}}]


def test_bbox_geo_shape_requires_four():
    with pytest.raises(TranslationError):
        bbox_geo_shape([1, 2, 3])


def test_geometry_shape():
    point = {"type": "Point", "coordinates": [1, 2], "bbox": [1, 2, 1, 2]}
    assert geometry_shape(point) == {"type": "Point", "coordinates": [1, 2]}
    collection = {"type": "GeometryCollection", "geometries": [point]}
    assert geometry_shape(collection) == {
        "type": "GeometryCollection",
        "geometries": [{"type": "Point", "coordinates": [1, 2]}],
    }
    assert geometry_shape(None) is None


def test_intersects_uses_geometry_shape():
    geom = {"type": "Point", "coordinates": [3, 4]}
    body = translate_search(SearchRequest(intersects=geom), None)
    assert body["query"]["bool"]["must"] == [
        {"geo_shape": {"geometry": {"shape": {"type": "Point", "coordinates": [3, 4]}, "relation": "intersects"}}}
    ]


def test_track_total_hits_search_after_and_source():
    body = translate_search(
        SearchRequest(
            sort_by=[SortClause("datetime")],
            fields=FieldsSpec(include=["id"], exclude=["assets"]),
        ),
        ["x", 42],
    )
    assert body["track_total_hits"] is True
    assert body["search_after"] == ["x", 42]
    assert body["_source"] == {"includes": ["id"], "excludes": ["assets"]}
    plain = translate_search(SearchRequest(fields=FieldsSpec()), None)
    assert plain["track_total_hits"] == 10000
    assert "search_after" not in plain
    assert "_source" not in plain


def test_or_translation():
    expr = {
        "op": "or",
        "args": [
            {"op": "=", "args": [prop("platform"), "S2A"]},
            {"op": "=", "args": [5, prop("eo:cloud_cover")]},
        ],
    }
    body = translate_search(SearchRequest(filter=expr), None)
    assert body["query"]["bool"]["must"] == [
        {
            "bool": {
                "should": [
                    {"term": {"properties.platform": "S2A"}},
                    {"term": {"properties.eo:cloud_cover": 5}},
                ],
                "minimum_should_match": 1,
            }
        }
    ]


def test_not_and_neq():
    expr = {"op": "not", "args": [{"op": "<>", "args": [prop("id"), "a"]}]}
    body = translate_search(SearchRequest(filter=expr), None)
    assert body["query"]["bool"]["must"][0] == {
        "bool": {"must_not": [{"bool": {"must_not": [{"term": {"id": "a"}}]}}]}
    }


def test_in_expands_arrays():
    expr = {"op": "in", "args": [prop("platform"), ["S2A", "S2B"]]}
    body = translate_search(SearchRequest(filter=expr), None)
    assert body["query"]["bool"]["must"][0] == {"terms": {"properties.platform": ["S2A", "S2B"]}}


def test_like_escapes_dsl_wildcards():
    expr = {"op": "like", "args": [prop("name"), "a*b_c%"]}
    body = translate_search(SearchRequest(filter=expr), None)
    assert body["query"]["bool"]["must"][0] == {"wildcard": {"properties.name": "a\\*b?c*"}}


def test_spatial_with_bbox():
    expr = {"op": "s_within", "args": [prop("geometry"), {"bbox": [0, 1, 2, 3]}]}
    body = translate_search(SearchRequest(filter=expr), None)
    assert body["query"]["bool"]["must"][0] == {
        "geo_shape": {
            "geometry": {
                "shape": {"type": "envelope", "coordinates": [[0, 3], [2, 1]]},
                "relation": "within",
            }
        }
    }


def test_temporal_interval_and_after():
    during = {
        "op": "t_during",
        "args": [prop("datetime"), {"interval": ["2024-01-01T00:00:00Z", ".."]}],
    }
    body = translate_search(SearchRequest(filter=during), None)
    assert body["query"]["bool"]["must"][0] == {
        "range": {"properties.datetime": {"gte": "2024-01-01T00:00:00Z", "format": "strict_date_optional_time"}}
    }
    after = {"op": "t_after", "args": [prop("datetime"), {"timestamp": "2024-02-01T01:00:00+01:00"}]}
    body = translate_search(SearchRequest(filter=after), None)
    assert body["query"]["bool"]["must"][0] == {
        "range": {"properties.datetime": {"gt": "2024-02-01T00:00:00Z", "format": "strict_date_optional_time"}}
    }


def test_unsupported_operator_raises():
    with pytest.raises(TranslationError) as info:
        translate_search(SearchRequest(filter={"op": "a_contains", "args": [prop("x"), [1]]}), None)
    assert info.value.reason == "operator not supported"


def test_top_level_literal_rejected():
    with pytest.raises(TranslationError):
        translate_search(SearchRequest(filter=True), None)


def test_comparison_without_property_rejected():
    with pytest.raises(TranslationError) as info:
        translate_search(SearchRequest(filter={"op": "=", "args": [1, 2]}), None)
    assert info.value.reason == "expected property + literal"


def test_between_arity_error():
    with pytest.raises(TranslationError) as info:
        translate_search(SearchRequest(filter={"op": "between", "args": [prop("x"), 1]}), None)
    assert info.value.reason == "arity"