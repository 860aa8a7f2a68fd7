from __future__ import annotations

import numpy as np
import pytest

from sql_clustering.analyzer.errors import (
    ClusteringCancelled,
    ClusteringError,
    InvalidParameter,
    UnsupportedAlgorithm,
)
from sql_clustering.analyzer.kmeans import KMeansEngine, RandomCentroidInitializer


class _FixedCentroids:
    """Initializer returning a predetermined centroid matrix."""

    def __init__(self, centroids):
        self.centroids = np.asarray(centroids, dtype=float)
        self.calls: list[tuple[int, int]] = []

    def __call__(self, k: int, dims: int) -> np.ndarray:
        self.calls.append((k, dims))
        return self.centroids.copy()


def _points(seed: int = 0, n: int = 40) -> np.ndarray:
    return np.random.default_rng(seed).random((n, 4))


def test_assign_breaks_ties_to_lowest_centroid_index():
    points = np.array([[0.5, 0.0, 0.0, 0.0]])
    centroids = np.array([[0.0, 0.0, 0.0, 0.0], [1.0, 0.0, 0.0, 0.0]])
    assert KMeansEngine.assign(points, centroids).tolist() == [0]

    duplicated = np.array([[0.3, 0.3, 0.3, 0.3]] * 3)
    assert KMeansEngine.assign(points, duplicated).tolist() == [0]


def test_empty_centroid_is_left_unchanged():
    points = np.array([[0.0, 0.0, 0.0, 0.0], [0.1, 0.0, 0.0, 0.0]])
    init = _FixedCentroids([[0.0, 0.0, 0.0, 0.0], [1.0, 1.0, 1.0, 1.0]])

    result = KMeansEngine(k=2, initializer=init).run(points)

    assert result.assignments.tolist() == [0, 0]
    assert result.centroids[1].tolist() == [1.0, 1.0, 1.0, 1.0]
    assert result.centroids[0].tolist() == pytest.approx([0.05, 0.0, 0.0, 0.0])
    assert init.calls == [(2, 4)]


def test_converges_after_first_unchanged_pass():
    points = np.array([[0.0, 0.0, 0.0, 0.0], [1.0, 1.0, 1.0, 1.0]])
    init = _FixedCentroids([[0.1, 0.1, 0.1, 0.1], [0.9, 0.9, 0.9, 0.9]])
    seen: list[tuple[int, bool]] = []

    result = KMeansEngine(k=2, initializer=init).run(
        points, on_iteration=lambda i, changed: seen.append((i, changed))
    )

    assert result.converged
    assert result.iterations == 2
    assert seen == [(1, True), (2, False)]
    assert result.assignments.tolist() == [0, 1]


def test_iteration_cap_is_best_effort_not_failure():
    result = KMeansEngine(
        k=3, max_iterations=1, initializer=RandomCentroidInitializer(seed=1)
    ).run(_points())
    assert result.iterations == 1
    assert not result.converged
    assert len(result.assignments) == 40


def test_never_exceeds_max_iterations():
    for seed in range(10):
        engine = KMeansEngine(
            k=6, max_iterations=3, initializer=RandomCentroidInitializer(seed=seed)
        )
        result = engine.run(_points(seed, n=60))
        assert 1 <= result.iterations <= 3


def test_seeded_runs_are_reproducible():
    points = _points(5)
    a = KMeansEngine(k=4, initializer=RandomCentroidInitializer(seed=42)).run(points)
    b = KMeansEngine(k=4, initializer=RandomCentroidInitializer(seed=42)).run(points)
    assert a.assignments.tolist() == b.assignments.tolist()
    assert np.array_equal(a.centroids, b.centroids)
    assert a.iterations == b.iterations


def test_random_initializer_draws_from_unit_hypercube():
    c = RandomCentroidInitializer(seed=3)(5, 4)
    assert c.shape == (5, 4)
    assert ((c >= 0.0) & (c < 1.0)).all()


def test_result_keeps_all_k_centroids():
    result = KMeansEngine(k=7, initializer=RandomCentroidInitializer(seed=9)).run(
        _points(9)
    )
    assert result.k == 7
    assert set(result.assignments.tolist()) <= set(range(7))


def test_should_stop_cancels_between_iterations():
    calls = {"n": 0}

    def stop_on_second_check() -> bool:
        calls["n"] += 1
        return calls["n"] >= 2

    engine = KMeansEngine(k=2, initializer=RandomCentroidInitializer(seed=0))
    with pytest.raises(ClusteringCancelled):
        engine.run(_points(), should_stop=stop_on_second_check)
    assert calls["n"] == 2


def test_rejects_invalid_parameters():
    with pytest.raises(UnsupportedAlgorithm):
        KMeansEngine(k=0)
    with pytest.raises(InvalidParameter) as exc:
        KMeansEngine(k=2, max_iterations=0)
    assert isinstance(exc.value, ClusteringError)


def test_rejects_wrong_initializer_shape():
    engine = KMeansEngine(k=3, initializer=_FixedCentroids([[0.0, 0.0, 0.0, 0.0]]))
    with pytest.raises(ValueError):
        engine.run(_points())
