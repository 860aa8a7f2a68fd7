"""K-means over normalized SQL feature vectors.

Centroids start at uniform random points of the unit hypercube rather than at
data points, so a centroid can finish the run without members. Such a
centroid is left where it is and dropped later when clusters are built; it is
never re-seeded.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional, Protocol

import numpy as np

from .errors import ClusteringCancelled, InvalidParameter, UnsupportedAlgorithm

DEFAULT_MAX_ITERATIONS = 100


class CentroidInitializer(Protocol):
    def __call__(self, k: int, dims: int) -> np.ndarray: ...


class RandomCentroidInitializer:
    """Draws centroids uniformly from [0, 1]^dims."""

    def __init__(
        self,
        seed: Optional[int] = None,
        rng: Optional[np.random.Generator] = None,
    ):
        self.rng = rng if rng is not None else np.random.default_rng(seed)

    def __call__(self, k: int, dims: int) -> np.ndarray:
        return self.rng.random((k, dims))


@dataclass
class KMeansResult:
    assignments: np.ndarray
    centroids: np.ndarray
    iterations: int
    converged: bool

    @property
    def k(self) -> int:
        return int(self.centroids.shape[0])


def euclidean_distances(
    points: np.ndarray, centroids: np.ndarray
) -> np.ndarray:
    """Pairwise distances, shape (len(points), len(centroids))."""
    diff = points[:, None, :] - centroids[None, :, :]
    return np.sqrt((diff**2).sum(axis=2))


class KMeansEngine:
    """Lloyd-style k-means with change-based convergence."""

    def __init__(
        self,
        k: int,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        initializer: Optional[CentroidInitializer] = None,
    ):
        if k < 1:
            raise UnsupportedAlgorithm(f"k must be >= 1 (got {k})")
        if max_iterations < 1:
            raise InvalidParameter(
                f"max_iterations must be >= 1 (got {max_iterations})"
            )
        self.k = k
        self.max_iterations = max_iterations
        self.initializer: CentroidInitializer = (
            initializer
            if initializer is not None
            else RandomCentroidInitializer()
        )

    def run(
        self,
        points: np.ndarray,
        should_stop: Optional[Callable[[], bool]] = None,
        on_iteration: Optional[Callable[[int, bool], None]] = None,
    ) -> KMeansResult:
        """
        Cluster ``points`` (an N x d matrix in normalized space).

        Stops after the first assignment pass that changes nothing, or after
        ``max_iterations`` passes. Hitting the cap is returned as a result
        with ``converged=False``, not raised.

        Args:
            points: Normalized feature matrix
            should_stop: Checked once before each pass; returning True
                aborts the run with ClusteringCancelled
            on_iteration: Called after each pass with (pass number, changed)
        """
        points = np.asarray(points, dtype=float)
        n, dims = points.shape

        centroids = np.array(self.initializer(self.k, dims), dtype=float)
        if centroids.shape != (self.k, dims):
            raise ValueError(
                f"Initializer returned shape {centroids.shape}, "
                f"expected {(self.k, dims)}"
            )

        # -1 marks "not yet assigned" so the first pass always counts as a change.
        assignments = np.full(n, -1, dtype=int)
        iterations = 0
        changed = True

        while changed and iterations < self.max_iterations:
            if should_stop is not None and should_stop():
                raise ClusteringCancelled(
                    f"Clustering stopped after {iterations} iteration(s)"
                )

            new_assignments = self.assign(points, centroids)
            changed = not np.array_equal(new_assignments, assignments)
            assignments = new_assignments
            centroids = self.update(points, assignments, centroids)
            iterations += 1

            if on_iteration is not None:
                on_iteration(iterations, changed)

        return KMeansResult(
            assignments=assignments,
            centroids=centroids,
            iterations=iterations,
            converged=not changed,
        )

    @staticmethod
    def assign(points: np.ndarray, centroids: np.ndarray) -> np.ndarray:
        """Index of the nearest centroid per point (lowest index on ties)."""
        if points.shape[0] == 0:
            return np.zeros(0, dtype=int)
        # argmin returns the first occurrence of the minimum.
        return euclidean_distances(points, centroids).argmin(axis=1)

    @staticmethod
    def update(
        points: np.ndarray, assignments: np.ndarray, centroids: np.ndarray
    ) -> np.ndarray:
        """Move each non-empty centroid to the mean of its members."""
        updated = centroids.copy()
        for j in range(centroids.shape[0]):
            mask = assignments == j
            if mask.any():
                updated[j] = points[mask].mean(axis=0)
        return updated
