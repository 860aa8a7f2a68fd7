from __future__ import annotations

import json
from pathlib import Path

import numpy as np
import pyarrow.parquet as pq

from sql_clustering.analyzer.features import SQLExecutionSample
from sql_clustering.analyzer.report import ClusterAnalyzer, ClusterReport
from sql_clustering.cli.reporting import (
    cluster_report_csv,
    cluster_report_html,
    cluster_report_json,
    format_cell,
    make_report_paths,
    summarize_markdown,
    to_table,
    write_parquet,
)
from sql_clustering.cli.ui import UI


def _report(outlier_id: str = "outlier") -> ClusterReport:
    samples = [
        SQLExecutionSample(
            sql_id=f"fast{i}",
            elapsed_time_ms=10.0 * (i + 1),
            cpu_time_ms=5.0 + i,
            buffer_gets=100.0 + 10 * i,
            disk_reads=i,
            executions=1,
            rows_processed=2 * i,
        )
        for i in range(9)
    ]
    samples.append(
        SQLExecutionSample(
            sql_id=outlier_id,
            elapsed_time_ms=5000.0,
            cpu_time_ms=800.0,
            buffer_gets=20000.0,
            disk_reads=400,
            executions=1,
            rows_processed=1,
        )
    )
    centroids = np.array([[0.0, 0.0, 0.0, 0.0], [1.0, 1.0, 1.0, 1.0]])
    analyzer = ClusterAnalyzer(initializer=lambda k, dims: centroids.copy())
    return analyzer.analyze(samples, k=2)


def _section(text: str, title: str) -> list[str]:
    lines = text.splitlines()
    start = lines.index(title) + 1
    out = []
    for line in lines[start:]:
        if not line:
            break
        out.append(line)
    return out


def test_csv_projection_has_summary_and_detail_sections():
    text = cluster_report_csv(_report(), connection_name="PROD")

    assert text.startswith("# SQL cluster analysis report\n")
    assert "# Connection: PROD" in text
    assert "# Total SQL statements: 10" in text

    summary = _section(text, "## Cluster summary")
    assert summary[0].startswith("Cluster ID,Cluster Name,SQL Count")
    assert summary[1].startswith("cluster-0,Balanced,9,100.00,")
    assert summary[2].startswith("cluster-1,Slow Queries,1,50.00,")

    details = _section(text, "## SQL details")
    assert len(details) == 1 + 10
    assert details[-1].startswith("outlier,Slow Queries,C,800.00,5000.00,20000,400,1,1")


def test_json_projection():
    payload = json.loads(cluster_report_json(_report()))

    assert payload["metadata"]["algorithm"] == "kmeans"
    assert payload["metadata"]["k"] == 2
    assert payload["metadata"]["total_clusters"] == 2
    assert payload["summary"]["total_sql_statements"] == 10
    assert sum(payload["summary"]["grade_counts"].values()) == 10
    assert payload["summary"]["grade_counts"]["C"] == 1
    assert [c["name"] for c in payload["clusters"]] == ["Balanced", "Slow Queries"]
    slow = payload["clusters"][1]
    assert slow["sql_statements"][0]["sql_id"] == "outlier"
    assert slow["centroid"]["elapsed_time"] == 5000.0
    assert payload["diagnostics"]["converged"] is True


def test_html_projection_escapes_text():
    html = cluster_report_html(_report(outlier_id="q<1>&x"), connection_name="a&b")

    assert html.startswith("<!DOCTYPE html>")
    assert "q&lt;1&gt;&amp;x" in html
    assert "q<1>" not in html
    assert "Connection: a&amp;b" in html
    assert html.count("<table>") == 2 + 2  # summary tables + one per cluster


def test_markdown_summary_lists_clusters_and_worst_sql():
    md = summarize_markdown(_report(), connection_name="PROD")
    assert md.startswith("# SQL cluster report: PROD")
    assert "- algorithm: `kmeans`" in md
    assert "Slow Queries" in md
    worst = md.split("## Lowest graded SQL", 1)[1]
    # lowest score first
    first_row = worst.split("\n")[5]
    assert first_row.startswith("outlier")


def test_members_parquet(tmp_path: Path):
    report = _report()
    paths = make_report_paths(tmp_path / "out")
    write_parquet(paths.members_parquet, report.member_rows())

    table = pq.read_table(paths.members_parquet)
    assert table.num_rows == 10
    assert "sql_id" in table.column_names
    assert "grade" in table.column_names


def test_to_table_formats_floats():
    text = to_table([{"a": 1.5, "b": None}, {"a": 2.0, "b": "x"}], ["a", "b"])
    lines = text.splitlines()
    assert lines[0].split() == ["a", "b"]
    assert lines[2].strip() == "1.5"
    assert lines[3].split() == ["2", "x"]
    assert to_table([], ["a"]) == "(no rows)"


def test_plain_console_and_exports_share_cell_format(capsys):
    assert format_cell(0.12500) == "0.125"
    assert format_cell(3.0) == "3"
    assert format_cell(None) == ""
    assert format_cell(7) == "7"

    ui = UI(rich=False, _console=None)
    ui.fields({"score": 87.5, "seed": None})
    ui.table(title=None, columns=["grade", "cpu"], rows=[{"grade": "A", "cpu": 2.25}])
    out = capsys.readouterr().out.splitlines()
    assert out[0] == "score : 87.5"
    assert out[1] == "seed  : "
    assert out[4].split() == ["A", "2.25"]
