"""Feature extraction and min-max normalization for SQL execution samples."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence

import numpy as np

from .errors import InsufficientData

MIN_SAMPLES = 10

# Column order of the normalized feature matrix.
FEATURE_NAMES = (
    "elapsed_per_exec",
    "cpu_per_exec",
    "buffer_per_exec",
    "executions",
)

# Accepted input names per field: snake_case first, then Oracle V$SQL names.
_FIELD_ALIASES: Dict[str, tuple[str, ...]] = {
    "sql_id": ("sql_id", "SQL_ID"),
    "elapsed_time_ms": ("elapsed_time_ms", "elapsed_time", "ELAPSED_TIME"),
    "cpu_time_ms": ("cpu_time_ms", "cpu_time", "CPU_TIME"),
    "buffer_gets": ("buffer_gets", "BUFFER_GETS"),
    "disk_reads": ("disk_reads", "DISK_READS"),
    "executions": ("executions", "EXECUTIONS"),
    "rows_processed": ("rows_processed", "ROWS_PROCESSED"),
}

TIME_UNITS = ("ms", "us", "s")


def to_milliseconds(value: float, time_unit: str) -> float:
    if time_unit == "us":
        return value / 1000.0
    if time_unit == "s":
        return value * 1000.0
    return value


def _lookup(data: Mapping[str, Any], field: str) -> Any:
    for name in _FIELD_ALIASES[field]:
        if name in data:
            return data[name]
    return None


def _num(value: Any) -> float:
    # NULL totals count as zero, as NVL(..., 0) does in the collector query.
    if value is None:
        return 0.0
    f = float(value)
    if f != f:  # NaN from a missing cell
        return 0.0
    return f


@dataclass(frozen=True)
class SQLExecutionSample:
    """Cumulative execution statistics for one SQL statement."""

    sql_id: str
    elapsed_time_ms: float
    cpu_time_ms: float
    buffer_gets: float
    disk_reads: float
    executions: int
    rows_processed: float

    @classmethod
    def from_dict(
        cls, data: Mapping[str, Any], time_unit: str = "ms"
    ) -> "SQLExecutionSample":
        """
        Build a sample from a collector row.

        Accepts snake_case keys or the upper-case V$SQL column names. Timings
        are converted from ``time_unit`` to milliseconds.
        """
        if time_unit not in TIME_UNITS:
            raise ValueError(f"Unknown time unit: {time_unit}")

        sql_id = _lookup(data, "sql_id")
        if sql_id is None:
            raise ValueError("Row is missing sql_id")

        return cls(
            sql_id=str(sql_id),
            elapsed_time_ms=to_milliseconds(
                _num(_lookup(data, "elapsed_time_ms")), time_unit
            ),
            cpu_time_ms=to_milliseconds(
                _num(_lookup(data, "cpu_time_ms")), time_unit
            ),
            buffer_gets=_num(_lookup(data, "buffer_gets")),
            disk_reads=_num(_lookup(data, "disk_reads")),
            executions=int(_num(_lookup(data, "executions"))),
            rows_processed=_num(_lookup(data, "rows_processed")),
        )


@dataclass(frozen=True)
class FeatureVector:
    """Per-execution cost of one SQL statement."""

    sql_id: str
    elapsed_per_exec: float
    cpu_per_exec: float
    buffer_per_exec: float
    executions: int
    sample: SQLExecutionSample

    @classmethod
    def from_sample(cls, sample: SQLExecutionSample) -> "FeatureVector":
        n = sample.executions
        return cls(
            sql_id=sample.sql_id,
            elapsed_per_exec=sample.elapsed_time_ms / n,
            cpu_per_exec=sample.cpu_time_ms / n,
            buffer_per_exec=sample.buffer_gets / n,
            executions=n,
            sample=sample,
        )

    def values(self) -> tuple[float, float, float, float]:
        return (
            self.elapsed_per_exec,
            self.cpu_per_exec,
            self.buffer_per_exec,
            float(self.executions),
        )


@dataclass(frozen=True)
class NormalizedFeatures:
    """Feature matrix rescaled to [0, 1] per dimension."""

    matrix: np.ndarray
    mins: np.ndarray
    maxs: np.ndarray

    @property
    def degenerate(self) -> List[str]:
        """Names of dimensions whose population min equals max."""
        return [
            FEATURE_NAMES[i]
            for i in range(len(FEATURE_NAMES))
            if self.maxs[i] == self.mins[i]
        ]

    def __len__(self) -> int:
        return int(self.matrix.shape[0])


def qualifying_samples(
    samples: Sequence[SQLExecutionSample],
) -> List[SQLExecutionSample]:
    """Samples that executed at least once."""
    return [s for s in samples if s.executions > 0]


def build_feature_vectors(
    samples: Sequence[SQLExecutionSample],
    min_samples: Optional[int] = None,
) -> List[FeatureVector]:
    """
    Convert cumulative totals into per-execution feature vectors.

    The minimum population applies to the snapshot as delivered. Samples with
    zero executions are dropped afterwards without error.

    Raises:
        InsufficientData: fewer than ``min_samples`` samples, or none
            with executions > 0.
    """
    minimum = MIN_SAMPLES if min_samples is None else min_samples
    if len(samples) < minimum:
        raise InsufficientData(len(samples), minimum)

    qualifying = qualifying_samples(samples)
    if not qualifying:
        raise InsufficientData(0, minimum)

    return [FeatureVector.from_sample(s) for s in qualifying]


def normalize(vectors: Sequence[FeatureVector]) -> NormalizedFeatures:
    """Min-max scale every dimension; a constant dimension maps to 0."""
    raw = np.array([v.values() for v in vectors], dtype=float).reshape(
        len(vectors), len(FEATURE_NAMES)
    )
    if raw.shape[0] == 0:
        empty = np.zeros(len(FEATURE_NAMES))
        return NormalizedFeatures(matrix=raw, mins=empty, maxs=empty)

    mins = raw.min(axis=0)
    maxs = raw.max(axis=0)
    span = maxs - mins

    matrix = np.zeros_like(raw)
    live = span != 0
    matrix[:, live] = (raw[:, live] - mins[live]) / span[live]
    return NormalizedFeatures(matrix=matrix, mins=mins, maxs=maxs)
