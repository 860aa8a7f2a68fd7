"""Export projections for cluster reports (CSV/JSON/HTML/Markdown/Parquet)."""

from __future__ import annotations

import csv
import html
import io
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import pyarrow as pa
import pyarrow.parquet as pq

from ..analyzer.report import ClusterReport, iso_timestamp

SUMMARY_COLUMNS = [
    "cluster_id",
    "cluster_name",
    "sql_count",
    "score",
    "avg_cpu_ms",
    "avg_elapsed_ms",
    "avg_buffer_gets",
    "total_executions",
]

MEMBER_COLUMNS = [
    "sql_id",
    "cluster_name",
    "grade",
    "cpu_time_per_exec",
    "elapsed_time_per_exec",
    "buffer_gets_per_exec",
    "disk_reads",
    "executions",
    "rows_processed",
]


def format_cell(v: Any) -> str:
    """Render one table cell; floats lose trailing zeros."""
    if v is None:
        return ""
    if isinstance(v, float):
        return f"{v:.4f}".rstrip("0").rstrip(".")
    return str(v)


def to_table(rows: list[dict[str, Any]], columns: list[str]) -> str:
    if not rows:
        return "(no rows)"

    data = [[format_cell(r.get(c)) for c in columns] for r in rows]
    widths = [len(c) for c in columns]
    for row in data:
        for i, cell in enumerate(row):
            widths[i] = max(widths[i], len(cell))

    header = "  ".join(c.ljust(widths[i]) for i, c in enumerate(columns))
    sep = "  ".join("-" * widths[i] for i in range(len(columns)))
    lines = [header, sep]
    for row in data:
        lines.append(
            "  ".join(row[i].ljust(widths[i]) for i in range(len(columns)))
        )
    return "\n".join(lines)


def write_parquet(path: Path, rows: list[dict[str, Any]]) -> None:
    """Write member rows as a Parquet table (empty rows -> empty file schema)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    if rows:
        table = pa.Table.from_pylist(rows)
    else:
        table = pa.table({c: pa.array([], type=pa.string()) for c in MEMBER_COLUMNS})
    pq.write_table(table, path)


def cluster_report_csv(
    report: ClusterReport, connection_name: Optional[str] = None
) -> str:
    """Commented header, then a cluster summary section and a SQL detail section."""
    buf = io.StringIO()
    w = csv.writer(buf, lineterminator="\n")

    buf.write("# SQL cluster analysis report\n")
    buf.write(f"# Generated: {iso_timestamp(report.analysis_timestamp)}\n")
    buf.write(f"# Total clusters: {len(report.clusters)}\n")
    buf.write(f"# Total SQL statements: {report.member_count}\n")
    if connection_name:
        buf.write(f"# Connection: {connection_name}\n")
    buf.write("\n")

    buf.write("## Cluster summary\n")
    w.writerow(
        [
            "Cluster ID",
            "Cluster Name",
            "SQL Count",
            "Avg Performance Score",
            "Avg CPU Time (ms)",
            "Avg Elapsed Time (ms)",
            "Avg Buffer Gets",
            "Total Executions",
        ]
    )
    for c in report.clusters:
        w.writerow(
            [
                c.id,
                c.label,
                c.size,
                f"{c.score:.2f}",
                f"{c.avg_cpu_ms:.2f}",
                f"{c.avg_elapsed_ms:.2f}",
                f"{c.avg_buffer_gets:.0f}",
                c.total_executions,
            ]
        )
    buf.write("\n")

    buf.write("## SQL details\n")
    w.writerow(
        [
            "SQL ID",
            "Cluster",
            "Performance Grade",
            "CPU Time (ms)",
            "Elapsed Time (ms)",
            "Buffer Gets",
            "Disk Reads",
            "Executions",
            "Rows Processed",
        ]
    )
    for row in report.member_rows():
        w.writerow(
            [
                row["sql_id"],
                row["cluster_name"],
                row["grade"],
                f"{row['cpu_time_per_exec']:.2f}",
                f"{row['elapsed_time_per_exec']:.2f}",
                format_cell(row["buffer_gets_per_exec"]),
                format_cell(row["disk_reads"]),
                row["executions"],
                format_cell(row["rows_processed"]),
            ]
        )
    return buf.getvalue()


def cluster_report_json(
    report: ClusterReport, connection_name: Optional[str] = None
) -> str:
    metadata: dict[str, Any] = dict(report.metadata)
    metadata["total_clusters"] = len(report.clusters)
    if connection_name:
        metadata["connection_name"] = connection_name

    payload = {
        "metadata": metadata,
        "diagnostics": report.diagnostics,
        "summary": {
            "total_clusters": len(report.clusters),
            "total_sql_statements": report.member_count,
            "grade_counts": report.grade_counts(),
            "clusters": [
                {
                    "id": c.id,
                    "name": c.label,
                    "sql_count": c.size,
                    "avg_performance_score": c.score,
                    "characteristics": c.to_dict()["characteristics"],
                    "centroid": c.centroid,
                }
                for c in report.clusters
            ],
        },
        "clusters": [
            {
                "id": c.id,
                "name": c.label,
                "avg_performance_score": c.score,
                "centroid": c.centroid,
                "sql_statements": [m.to_dict() for m in c.members],
            }
            for c in report.clusters
        ],
    }
    return json.dumps(payload, indent=2, default=str)


def _html_table(headers: list[str], rows: list[list[Any]]) -> list[str]:
    out = ["<table>", "<thead><tr>"]
    out.extend(f"<th>{html.escape(h)}</th>" for h in headers)
    out.append("</tr></thead>")
    out.append("<tbody>")
    for row in rows:
        cells = "".join(f"<td>{html.escape(format_cell(v))}</td>" for v in row)
        out.append(f"<tr>{cells}</tr>")
    out.append("</tbody>")
    out.append("</table>")
    return out


def cluster_report_html(
    report: ClusterReport, connection_name: Optional[str] = None
) -> str:
    """Flat tabular HTML summary; presentation is left to the dashboard."""
    lines = [
        "<!DOCTYPE html>",
        '<html lang="en">',
        "<head>",
        '<meta charset="UTF-8">',
        "<title>SQL cluster analysis report</title>",
        "<style>table{border-collapse:collapse}"
        "th,td{padding:4px 8px;border-bottom:1px solid #ddd;text-align:left}</style>",
        "</head>",
        "<body>",
        "<h1>SQL cluster analysis report</h1>",
        f"<p>Generated: {html.escape(iso_timestamp(report.analysis_timestamp))}</p>",
    ]
    if connection_name:
        lines.append(f"<p>Connection: {html.escape(connection_name)}</p>")

    lines.append("<h2>Summary</h2>")
    lines.extend(
        _html_table(
            ["Total clusters", "Total SQL statements", "Avg performance score"],
            [
                [
                    len(report.clusters),
                    report.member_count,
                    round(report.average_score, 1),
                ]
            ],
        )
    )
    lines.extend(
        _html_table(
            [
                "Cluster",
                "Name",
                "SQL count",
                "Score",
                "Avg CPU (ms)",
                "Avg elapsed (ms)",
                "Avg buffer gets",
                "Total executions",
            ],
            [
                [
                    r["cluster_id"],
                    r["cluster_name"],
                    r["sql_count"],
                    r["score"],
                    round(r["avg_cpu_ms"], 2),
                    round(r["avg_elapsed_ms"], 2),
                    round(r["avg_buffer_gets"]),
                    r["total_executions"],
                ]
                for r in report.summary_rows()
            ],
        )
    )

    for c in report.clusters:
        lines.append(f"<h2>{html.escape(c.id)}: {html.escape(c.label)}</h2>")
        lines.extend(
            _html_table(
                [
                    "SQL ID",
                    "Grade",
                    "CPU (ms)",
                    "Elapsed (ms)",
                    "Buffer gets",
                    "Disk reads",
                    "Executions",
                ],
                [
                    [
                        m.sql_id,
                        m.grade,
                        round(m.cpu_per_exec, 2),
                        round(m.elapsed_per_exec, 2),
                        round(m.buffer_per_exec, 2),
                        m.disk_reads,
                        m.executions,
                    ]
                    for m in c.members
                ],
            )
        )

    lines.extend(["</body>", "</html>"])
    return "\n".join(lines) + "\n"


@dataclass(frozen=True)
class ReportPaths:
    root: Path
    summary_md: Path
    clusters_csv: Path
    clusters_json: Path
    clusters_html: Path
    members_parquet: Path


def make_report_paths(out_dir: Path) -> ReportPaths:
    return ReportPaths(
        root=out_dir,
        summary_md=out_dir / "summary.md",
        clusters_csv=out_dir / "clusters.csv",
        clusters_json=out_dir / "clusters.json",
        clusters_html=out_dir / "clusters.html",
        members_parquet=out_dir / "members.parquet",
    )


def summarize_markdown(
    report: ClusterReport, connection_name: Optional[str] = None
) -> str:
    lines: list[str] = []
    title = connection_name or "snapshot"
    lines.append(f"# SQL cluster report: {title}")
    lines.append("")
    meta = report.metadata
    lines.append(f"- algorithm: `{meta['algorithm']}`")
    lines.append(f"- k: `{meta['k']}`")
    lines.append(f"- total_sql_count: `{meta['total_sql_count']}`")
    lines.append(f"- analysis_timestamp: `{meta['analysis_timestamp']}`")
    lines.append(f"- iterations: `{report.iterations}`")
    lines.append(f"- converged: `{report.converged}`")
    if report.excluded_sql_count:
        lines.append(
            f"- excluded (zero executions): `{report.excluded_sql_count}`"
        )
    lines.append("")

    lines.append("## Clusters")
    lines.append("")
    if not report.clusters:
        lines.append("- No clusters.")
        lines.append("")
        return "\n".join(lines) + "\n"
    lines.append("```")
    lines.append(to_table(report.summary_rows(), SUMMARY_COLUMNS))
    lines.append("```")
    lines.append("")

    # Worst statements first, capped for brevity.
    worst = sorted(report.member_rows(), key=lambda r: (r["score"], r["sql_id"]))
    lines.append("## Lowest graded SQL")
    lines.append("")
    lines.append("```")
    lines.append(to_table(worst[:20], MEMBER_COLUMNS))
    lines.append("```")
    lines.append("")
    return "\n".join(lines) + "\n"
