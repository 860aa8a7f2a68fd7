"""Load SQL execution snapshots exported from V$SQL (or similar) via DuckDB."""

from pathlib import Path
from typing import List, Optional, Union

import duckdb

from ..analyzer.errors import SnapshotError
from ..analyzer.features import TIME_UNITS, SQLExecutionSample

_READERS = {
    ".csv": "read_csv_auto",
    ".tsv": "read_csv_auto",
    ".parquet": "read_parquet",
    ".pq": "read_parquet",
    ".json": "read_json_auto",
    ".jsonl": "read_json_auto",
    ".ndjson": "read_json_auto",
}

# Lower-cased column names accepted per required field.
REQUIRED_COLUMNS = {
    "sql_id": ("sql_id",),
    "elapsed_time_ms": ("elapsed_time_ms", "elapsed_time"),
    "cpu_time_ms": ("cpu_time_ms", "cpu_time"),
    "buffer_gets": ("buffer_gets",),
    "executions": ("executions",),
}

DEFAULT_LIMIT = 200


def _source_expr(path: Path) -> str:
    reader = _READERS.get(path.suffix.lower())
    if reader is None:
        raise SnapshotError(
            f"Unsupported snapshot format '{path.suffix}' "
            f"(expected one of: {', '.join(sorted(_READERS))})"
        )
    quoted = str(path).replace("'", "''")
    return f"{reader}('{quoted}')"


def _resolve_columns(columns: List[str]) -> dict:
    """Map each required field to the actual column name in the file."""
    by_lower = {c.lower(): c for c in columns}
    resolved = {}
    missing = []
    for field, aliases in REQUIRED_COLUMNS.items():
        actual = next((by_lower[a] for a in aliases if a in by_lower), None)
        if actual is None:
            missing.append(field)
        else:
            resolved[field] = actual
    if missing:
        raise SnapshotError(
            f"Snapshot is missing required column(s): {', '.join(missing)}"
        )
    return resolved


def load_samples(
    path: Union[str, Path],
    limit: Optional[int] = DEFAULT_LIMIT,
    time_unit: str = "ms",
) -> List[SQLExecutionSample]:
    """
    Read a snapshot file into SQLExecutionSample records.

    Rows that executed at least once come first, each group ordered by elapsed
    time (highest first), and the result is capped at ``limit``. This mirrors
    how the collector bounds a snapshot. Zero-execution rows that fit under
    the cap are kept here; the clustering pipeline drops them.

    Args:
        path: CSV, Parquet or JSON file
        limit: Maximum number of rows to keep (None = no cap)
        time_unit: Unit of the elapsed/cpu columns ("ms", "us" or "s")
    """
    path = Path(path)
    if not path.exists():
        raise SnapshotError(f"Snapshot not found: {path}")
    if time_unit not in TIME_UNITS:
        raise SnapshotError(f"Unknown time unit: {time_unit}")

    source = _source_expr(path)
    conn = duckdb.connect()
    try:
        columns = [
            d[0]
            for d in conn.execute(f"SELECT * FROM {source} LIMIT 0").description
        ]
        resolved = _resolve_columns(columns)

        # Statements that ran sort ahead of zero-execution rows, so the cap
        # never trades an executed statement for one the pipeline will drop.
        sql = (
            f"SELECT * FROM {source} "
            f'ORDER BY (COALESCE("{resolved["executions"]}", 0) > 0) DESC, '
            f'"{resolved["elapsed_time_ms"]}" DESC NULLS LAST'
        )
        if limit is not None:
            sql += f" LIMIT {int(limit)}"
        df = conn.execute(sql).fetchdf()
    except duckdb.Error as e:
        raise SnapshotError(f"Failed to read snapshot {path}: {e}") from e
    finally:
        conn.close()

    df.columns = [str(c).lower() for c in df.columns]
    try:
        return [
            SQLExecutionSample.from_dict(row, time_unit=time_unit)
            for row in df.to_dict("records")
        ]
    except (TypeError, ValueError) as e:
        raise SnapshotError(f"Invalid row in snapshot {path}: {e}") from e
