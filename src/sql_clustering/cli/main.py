"""CLI interface for SQL performance clustering."""

import json
from pathlib import Path

import click

from ..analyzer.characterizer import GRADES, ClusterMember
from ..analyzer.errors import ClusteringError
from ..analyzer.features import FeatureVector, qualifying_samples
from ..analyzer.report import SUPPORTED_ALGORITHMS, ClusterAnalyzer, ClusterReport
from ..cli.reporting import (
    MEMBER_COLUMNS,
    SUMMARY_COLUMNS,
    cluster_report_csv,
    cluster_report_html,
    cluster_report_json,
    make_report_paths,
    summarize_markdown,
    write_parquet,
)
from ..cli.ui import UI, ProgressUI
from ..collector.snapshot import load_samples
from ..config import Config


def _snapshot_options(f):
    f = click.option(
        "--limit",
        default=None,
        type=int,
        help="Max rows read from the snapshot (highest elapsed first)",
    )(f)
    f = click.option(
        "--time-unit",
        default=None,
        type=click.Choice(["ms", "us", "s"]),
        help="Unit of elapsed/cpu columns in the snapshot (V$SQL uses us)",
    )(f)
    return f


def _cluster_options(f):
    f = click.option(
        "--minutes",
        default=None,
        type=int,
        help="Time window the snapshot covers (informational)",
    )(f)
    f = click.option(
        "--algorithm",
        default=None,
        help=f"Clustering algorithm (supported: {', '.join(SUPPORTED_ALGORITHMS)})",
    )(f)
    f = click.option("--k", "k", default=None, type=int, help="Cluster count")(f)
    f = click.option(
        "--connection-name", default=None, help="Label used in report headers"
    )(f)
    return f


def _load(config: Config, snapshot: Path, time_unit, limit):
    try:
        return load_samples(
            snapshot,
            limit=config.snapshot_limit if limit is None else limit,
            time_unit=time_unit or config.time_unit,
        )
    except ClusteringError as e:
        raise click.ClickException(str(e)) from e


def _run_analysis(
    ctx, snapshot, k, algorithm, time_unit, limit, show_progress
) -> ClusterReport:
    config: Config = ctx.obj["config"]
    ui: UI = ctx.obj["ui"]
    samples = _load(config, snapshot, time_unit, limit)

    analyzer = ClusterAnalyzer(config)
    if show_progress:
        prog = ui.progress(total=config.max_iterations)
    else:
        prog = ProgressUI(
            rich=False, _progress=None, _task_id=None, total=config.max_iterations
        )
    try:
        with prog:
            return analyzer.analyze(
                samples,
                k=k,
                algorithm=algorithm,
                on_iteration=prog.on_iteration,
            )
    except ClusteringError as e:
        raise click.ClickException(str(e)) from e


@click.group()
@click.option(
    "--seed",
    default=None,
    type=int,
    help="Seed for centroid initialization (reproducible runs)",
)
@click.option(
    "--max-iterations",
    default=None,
    type=click.IntRange(min=1),
    help="K-means iteration cap",
)
@click.option(
    "--min-samples",
    default=None,
    type=click.IntRange(min=1),
    help="Minimum snapshot size accepted for clustering",
)
@click.pass_context
def cli(ctx, seed, max_iterations, min_samples):
    """SQL performance clustering - group captured SQL by execution cost."""
    ctx.ensure_object(dict)
    config = Config.from_env()
    if seed is not None:
        config.seed = seed
    if max_iterations is not None:
        config.max_iterations = max_iterations
    if min_samples is not None:
        config.min_samples = min_samples
    ctx.obj["config"] = config
    ctx.obj["ui"] = UI.create()


@cli.command()
@click.argument("snapshot", type=click.Path(path_type=Path))
@_cluster_options
@_snapshot_options
@click.option(
    "--members/--no-members",
    default=False,
    help="Also list each cluster's SQL statements (table format)",
)
@click.option(
    "--format",
    "out_format",
    default="table",
    type=click.Choice(["table", "json", "csv", "html"]),
)
@click.pass_context
def analyze(
    ctx,
    snapshot,
    connection_name,
    k,
    algorithm,
    minutes,
    time_unit,
    limit,
    members,
    out_format,
):
    """Cluster a snapshot and print the result."""
    ui: UI = ctx.obj["ui"]
    config: Config = ctx.obj["config"]

    report = _run_analysis(
        ctx,
        snapshot,
        k,
        algorithm,
        time_unit,
        limit,
        show_progress=(out_format == "table"),
    )

    if out_format == "json":
        click.echo(json.dumps(report.to_dict(), indent=2, default=str))
        return
    if out_format == "csv":
        click.echo(cluster_report_csv(report, connection_name), nl=False)
        return
    if out_format == "html":
        click.echo(cluster_report_html(report, connection_name), nl=False)
        return

    ui.rule(f"SQL clusters: {connection_name or snapshot.name}")
    meta = dict(report.metadata)
    meta["window_minutes"] = minutes if minutes is not None else config.window_minutes
    meta["iterations"] = report.iterations
    meta["converged"] = report.converged
    if report.excluded_sql_count:
        meta["excluded_sql_count"] = report.excluded_sql_count
    ui.fields(meta)
    ui.table(title=None, columns=SUMMARY_COLUMNS, rows=report.summary_rows())

    if members:
        for cluster_id, rows in _rows_by_cluster(report).items():
            ui.rule(cluster_id)
            ui.table(title=None, columns=MEMBER_COLUMNS, rows=rows)


def _rows_by_cluster(report: ClusterReport) -> dict:
    grouped: dict = {}
    for row in report.member_rows():
        grouped.setdefault(row["cluster_id"], []).append(row)
    return grouped


@cli.command()
@click.argument("snapshot", type=click.Path(path_type=Path))
@click.option(
    "--out",
    "out_dir",
    required=True,
    type=click.Path(path_type=Path),
    help="Output directory for report artifacts",
)
@_cluster_options
@_snapshot_options
@click.pass_context
def report(
    ctx, snapshot, out_dir, connection_name, k, algorithm, minutes, time_unit, limit
):
    """Write shareable report artifacts (Markdown, CSV, JSON, HTML, Parquet)."""
    ui: UI = ctx.obj["ui"]
    result = _run_analysis(
        ctx, snapshot, k, algorithm, time_unit, limit, show_progress=True
    )

    paths = make_report_paths(out_dir)
    paths.root.mkdir(parents=True, exist_ok=True)
    paths.summary_md.write_text(summarize_markdown(result, connection_name))
    paths.clusters_csv.write_text(cluster_report_csv(result, connection_name))
    paths.clusters_json.write_text(
        cluster_report_json(result, connection_name) + "\n"
    )
    paths.clusters_html.write_text(cluster_report_html(result, connection_name))
    write_parquet(paths.members_parquet, result.member_rows())

    ui.echo(
        f"✓ Wrote report for {result.member_count} SQL statement(s) "
        f"in {len(result.clusters)} cluster(s) to {paths.root}"
    )


@cli.command()
@click.argument("snapshot", type=click.Path(path_type=Path))
@_snapshot_options
@click.option(
    "--grade",
    "only_grade",
    default=None,
    type=click.Choice(list(GRADES)),
    help="Only show statements with this grade",
)
@click.option(
    "--format",
    "out_format",
    default="table",
    type=click.Choice(["table", "json"]),
)
@click.pass_context
def grade(ctx, snapshot, time_unit, limit, only_grade, out_format):
    """Grade every SQL statement in a snapshot (worst first), without clustering."""
    config: Config = ctx.obj["config"]
    ui: UI = ctx.obj["ui"]
    samples = _load(config, snapshot, time_unit, limit)

    graded = [
        ClusterMember.from_vector(FeatureVector.from_sample(s))
        for s in qualifying_samples(samples)
    ]
    if only_grade is not None:
        graded = [m for m in graded if m.grade == only_grade]
    graded.sort(key=lambda m: (m.score, m.sql_id))
    rows = [m.to_dict() for m in graded]

    if out_format == "json":
        click.echo(json.dumps(rows, indent=2, default=str))
        return

    counts = {g: 0 for g in GRADES}
    for m in graded:
        counts[m.grade] += 1
    ui.rule(f"SQL grades: {snapshot.name}")
    ui.fields(counts)
    ui.table(
        title=None,
        columns=[
            "sql_id",
            "grade",
            "elapsed_time_per_exec",
            "cpu_time_per_exec",
            "buffer_gets_per_exec",
            "executions",
        ],
        rows=rows,
    )
