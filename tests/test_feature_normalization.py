from __future__ import annotations

import pytest

from sql_clustering.analyzer.errors import InsufficientData
from sql_clustering.analyzer.features import (
    SQLExecutionSample,
    build_feature_vectors,
    normalize,
)


def _sample(
    sql_id: str,
    elapsed: float,
    cpu: float = 1.0,
    buffer: float = 10.0,
    executions: int = 1,
) -> SQLExecutionSample:
    return SQLExecutionSample(
        sql_id=sql_id,
        elapsed_time_ms=elapsed,
        cpu_time_ms=cpu,
        buffer_gets=buffer,
        disk_reads=0,
        executions=executions,
        rows_processed=0,
    )


def _population(n: int) -> list[SQLExecutionSample]:
    return [_sample(f"s{i}", elapsed=10.0 * (i + 1), cpu=float(i)) for i in range(n)]


def test_build_rejects_population_below_minimum():
    with pytest.raises(InsufficientData) as exc:
        build_feature_vectors(_population(9))
    assert exc.value.count == 9
    assert exc.value.minimum == 10


def test_build_honours_custom_minimum():
    vectors = build_feature_vectors(_population(3), min_samples=3)
    assert len(vectors) == 3


def test_build_computes_per_execution_values():
    samples = _population(9) + [
        _sample("busy", elapsed=1000.0, cpu=400.0, buffer=8000.0, executions=4)
    ]
    vectors = build_feature_vectors(samples)
    busy = next(v for v in vectors if v.sql_id == "busy")
    assert busy.elapsed_per_exec == 250.0
    assert busy.cpu_per_exec == 100.0
    assert busy.buffer_per_exec == 2000.0
    assert busy.executions == 4


def test_build_drops_zero_execution_samples_silently():
    samples = _population(10) + [_sample("idle", elapsed=50.0, executions=0)]
    vectors = build_feature_vectors(samples)
    assert len(vectors) == 10
    assert "idle" not in {v.sql_id for v in vectors}
    # Input order is kept.
    assert [v.sql_id for v in vectors] == [f"s{i}" for i in range(10)]


def test_build_fails_when_nothing_executed():
    samples = [_sample(f"s{i}", elapsed=1.0, executions=0) for i in range(10)]
    with pytest.raises(InsufficientData):
        build_feature_vectors(samples)


def test_normalize_maps_min_to_zero_and_max_to_one():
    vectors = build_feature_vectors(_population(10))
    features = normalize(vectors)

    elapsed = features.matrix[:, 0]
    cpu = features.matrix[:, 1]
    assert elapsed[0] == 0.0
    assert elapsed[9] == 1.0
    assert cpu[0] == 0.0
    assert cpu[9] == 1.0
    assert ((features.matrix >= 0.0) & (features.matrix <= 1.0)).all()


def test_normalize_degenerate_dimension_maps_to_zero():
    vectors = build_feature_vectors(_population(10))
    features = normalize(vectors)

    # buffer gets and executions are constant across the population
    assert (features.matrix[:, 2] == 0.0).all()
    assert (features.matrix[:, 3] == 0.0).all()
    assert features.degenerate == ["buffer_per_exec", "executions"]


def test_sample_from_oracle_row_converts_microseconds():
    row = {
        "SQL_ID": "7h35uxf5uhmm1",
        "ELAPSED_TIME": 2_500_000,
        "CPU_TIME": 1_000_000,
        "BUFFER_GETS": 4000,
        "DISK_READS": 12,
        "EXECUTIONS": 5,
        "ROWS_PROCESSED": None,
    }
    s = SQLExecutionSample.from_dict(row, time_unit="us")
    assert s.sql_id == "7h35uxf5uhmm1"
    assert s.elapsed_time_ms == 2500.0
    assert s.cpu_time_ms == 1000.0
    assert s.buffer_gets == 4000.0
    assert s.executions == 5
    assert s.rows_processed == 0.0


def test_sample_from_dict_requires_sql_id():
    with pytest.raises(ValueError):
        SQLExecutionSample.from_dict({"elapsed_time_ms": 1.0})
