import io
import json
import math

import pytest

from polystac.bench_report import (
    SCENARIOS,
    ImplRow,
    as_float,
    fmt_mib,
    fmt_ms,
    load_k6,
    load_rows,
    main,
    write_report,
)

HEADER = "label,image,cold_ms,idle_rss,peak_rss,image_size\n"


def _write_csv(directory, lines):
    (directory / "raw.csv").write_text(HEADER + "".join(line + "\n" for line in lines))


def _write_k6(directory, label, metrics):
    sub = directory / label
    sub.mkdir()
    (sub / "k6-summary.json").write_text(json.dumps({"metrics": metrics}))


def test_as_float_numbers_and_others():
    assert as_float(3) == 3.0
    assert as_float(2.5) == 2.5
    assert as_float("x") == 0.0
    assert as_float({"a": 1}) == 0.0
    assert as_float(None) == 0.0


def test_fmt_mib_small_is_dash():
    assert fmt_mib(0.5) == "—"
    assert fmt_mib(100.0) == "100 MiB"
    assert fmt_mib(2048.0).endswith("GiB")


def test_fmt_ms_zero_and_nan_are_dashes():
    assert fmt_ms(0) == "—"
    assert fmt_ms(math.nan) == "—"
    small = fmt_ms(5)
    assert small.count(".") == 1 and len(small.split(".")[1]) == 2
    large = fmt_ms(123.45)
    assert len(large.split(".")[1]) == 1


def test_load_rows_skips_header_and_parses(tmp_path):
    size = 3 * 1024 * 1024
    _write_csv(tmp_path, [f"polystac-pgstac,img:1,450,20MiB,80MiB,{size}", "stac-os,img:2,bad,1,2,x"])
    rows = load_rows(tmp_path)
    assert [r.label for r in rows] == ["polystac-pgstac", "stac-os"]
    assert rows[0].cold_ms == 450
    assert rows[0].image_size_mib * 1024 * 1024 == size
    assert rows[0].idle_rss == "20MiB"
    assert rows[1].cold_ms == 0
    assert rows[1].image_size_mib == 0.0


def test_load_rows_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_rows(tmp_path)


def test_load_k6_reads_metrics(tmp_path):
    _write_k6(
        tmp_path,
        "polystac-pgstac",
        {
            "latency_landing_ms": {"p(95)": 12.5, "med": 4.0},
            "requests_landing": {"count": 300},
            "http_reqs": {"count": 1800, "rate": 60.0},
            "http_req_failed": {"value": 0.01, "thresholds": {"rate<0.05": False}},
        },
    )
    row = load_k6(tmp_path, ImplRow(label="polystac-pgstac"))
    assert row.per_scenario_p95 == {"landing": 12.5}
    assert row.per_scenario_med == {"landing": 4.0}
    assert row.per_scenario_reqs == {"landing": 300.0}
    assert row.http_reqs == 1800.0
    assert row.http_rate == 60.0
    assert row.failed == 0.01


def test_load_k6_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_k6(tmp_path, ImplRow(label="nobody"))


def _rows():
    poly = ImplRow(label="polystac-pgstac", cold_ms=300, image_size_mib=50.0)
    ref = ImplRow(label="stac-fastapi-pgstac", image_size_mib=400.0)
    poly.per_scenario_p95 = {"landing": 10.0}
    ref.per_scenario_p95 = {"landing": 20.0}
    other = ImplRow(label="stac-server-os")
    return [ref, poly, other]


def test_write_report_groups_and_orders():
    buf = io.StringIO()
    write_report(buf, _rows(), 1000, "30s", 20)
    text = buf.getvalue()
    assert "- Items seeded per backend: **1000**" in text
    assert "- k6 duration: **30s**" in text
    assert "- k6 VUs: **20**" in text
    assert text.index("## pgstac backend") < text.index("## opensearch backend")
    pg_section = text[text.index("## pgstac backend"):text.index("## opensearch backend")]
    assert pg_section.index("| polystac-pgstac |") < pg_section.index("| stac-fastapi-pgstac |")
    assert "| polystac-pgstac | 50 MiB | 300 ms |" in pg_section
    assert "2.00×" in pg_section
    assert "stac-server-os" not in pg_section
    assert text.endswith("(defaults: 1000 / 30s / 20).\n")


def test_write_report_tables_have_one_row_per_scenario():
    buf = io.StringIO()
    write_report(buf, _rows(), 0, "", 0)
    text = buf.getvalue()
    for scenario in SCENARIOS:
        assert text.count(f"| {scenario} |") == 4


def test_main_requires_dir():
    assert main([]) == 2


def test_main_writes_report(tmp_path):
    _write_csv(tmp_path, ["polystac-os,img,100,1,2,10485760"])
    _write_k6(tmp_path, "polystac-os", {"http_reqs": {"count": 10, "rate": 1.0}})
    assert main(["-dir", str(tmp_path), "-items", "1000", "-duration", "30s", "-vus", "20"]) == 0
    report = (tmp_path / "report.md").read_text(encoding="utf-8")
    assert "## opensearch backend" in report
    assert "**1000**" in report


def test_main_missing_csv_fails(tmp_path):
    assert main(["-dir", str(tmp_path)]) == 1