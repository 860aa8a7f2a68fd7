"""Clustering pipeline entry point and the report it produces."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

from ..config import Config
from .characterizer import GRADES, Cluster, ClusterCharacterizer
from .errors import InvalidParameter, UnsupportedAlgorithm
from .features import SQLExecutionSample, build_feature_vectors, normalize
from .kmeans import CentroidInitializer, KMeansEngine, RandomCentroidInitializer

SUPPORTED_ALGORITHMS = ("kmeans",)


def iso_timestamp(dt: datetime) -> str:
    """UTC timestamp in the dashboard's format (2025-01-02T03:04:05.678Z)."""
    return (
        dt.astimezone(timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


@dataclass
class ClusterReport:
    """Ordered clusters for one snapshot plus run metadata."""

    clusters: List[Cluster]
    algorithm: str
    k: int
    total_sql_count: int
    analysis_timestamp: datetime
    iterations: int = 0
    converged: bool = True
    excluded_sql_count: int = 0
    degenerate_dimensions: List[str] = field(default_factory=list)

    @property
    def metadata(self) -> Dict[str, Any]:
        return {
            "algorithm": self.algorithm,
            "k": self.k,
            "total_sql_count": self.total_sql_count,
            "analysis_timestamp": iso_timestamp(self.analysis_timestamp),
        }

    @property
    def diagnostics(self) -> Dict[str, Any]:
        return {
            "iterations": self.iterations,
            "converged": self.converged,
            "excluded_sql_count": self.excluded_sql_count,
            "degenerate_dimensions": list(self.degenerate_dimensions),
        }

    @property
    def member_count(self) -> int:
        return sum(c.size for c in self.clusters)

    @property
    def average_score(self) -> float:
        if not self.clusters:
            return 0.0
        return sum(c.score for c in self.clusters) / len(self.clusters)

    def to_dict(self) -> Dict[str, Any]:
        """Request/response body shape; field names are relied on downstream."""
        return {
            "clusters": [c.to_dict() for c in self.clusters],
            "metadata": self.metadata,
            "diagnostics": self.diagnostics,
        }

    def summary_rows(self) -> List[Dict[str, Any]]:
        """One flat row per cluster."""
        return [
            {
                "cluster_id": c.id,
                "cluster_name": c.label,
                "sql_count": c.size,
                "score": c.score,
                "avg_elapsed_ms": c.avg_elapsed_ms,
                "avg_cpu_ms": c.avg_cpu_ms,
                "avg_buffer_gets": c.avg_buffer_gets,
                "total_executions": c.total_executions,
            }
            for c in self.clusters
        ]

    def member_rows(self) -> List[Dict[str, Any]]:
        """One flat row per SQL statement, in cluster order."""
        rows: List[Dict[str, Any]] = []
        for c in self.clusters:
            for m in c.members:
                rows.append(
                    {
                        "sql_id": m.sql_id,
                        "cluster_id": c.id,
                        "cluster_name": c.label,
                        "grade": m.grade,
                        "score": m.score,
                        "cpu_time_per_exec": m.cpu_per_exec,
                        "elapsed_time_per_exec": m.elapsed_per_exec,
                        "buffer_gets_per_exec": m.buffer_per_exec,
                        "disk_reads": m.disk_reads,
                        "executions": m.executions,
                        "rows_processed": m.rows_processed,
                    }
                )
        return rows

    def grade_counts(self) -> Dict[str, int]:
        counts = {g: 0 for g in GRADES}
        for c in self.clusters:
            for grade, n in c.grade_counts().items():
                counts[grade] += n
        return counts


class ClusterAnalyzer:
    """Runs feature extraction, k-means and characterization on a snapshot."""

    def __init__(
        self,
        config: Optional[Config] = None,
        initializer: Optional[CentroidInitializer] = None,
        characterizer: Optional[ClusterCharacterizer] = None,
    ):
        """
        Initialize the analyzer.

        Args:
            config: Clustering settings (defaults to Config())
            initializer: Centroid source; defaults to uniform random
                centroids seeded from ``config.seed``
            characterizer: Cluster builder (defaults to ClusterCharacterizer())
        """
        self.config = config or Config()
        self.initializer = initializer
        self.characterizer = characterizer or ClusterCharacterizer()

    def analyze(
        self,
        samples: Sequence[SQLExecutionSample],
        k: Optional[int] = None,
        algorithm: Optional[str] = None,
        should_stop: Optional[Callable[[], bool]] = None,
        on_iteration: Optional[Callable[[int, bool], None]] = None,
    ) -> ClusterReport:
        """
        Cluster one snapshot.

        Raises:
            UnsupportedAlgorithm: unknown algorithm or k < 1 (checked first)
            InsufficientData: snapshot smaller than config.min_samples
            InvalidParameter: config.max_iterations or config.min_samples < 1
            ClusteringCancelled: should_stop returned True mid-run
        """
        k = self.config.default_k if k is None else k
        if algorithm is None:
            algorithm = self.config.algorithm
        if algorithm not in SUPPORTED_ALGORITHMS:
            raise UnsupportedAlgorithm(
                f"Unsupported algorithm: {algorithm!r} "
                f"(supported: {', '.join(SUPPORTED_ALGORITHMS)})"
            )
        if k < 1:
            raise UnsupportedAlgorithm(f"k must be >= 1 (got {k})")
        if self.config.max_iterations < 1:
            raise InvalidParameter(
                f"max_iterations must be >= 1 (got {self.config.max_iterations})"
            )
        if self.config.min_samples < 1:
            raise InvalidParameter(
                f"min_samples must be >= 1 (got {self.config.min_samples})"
            )

        vectors = build_feature_vectors(
            samples, min_samples=self.config.min_samples
        )
        features = normalize(vectors)

        engine = KMeansEngine(
            k=k,
            max_iterations=self.config.max_iterations,
            initializer=self._initializer(),
        )
        result = engine.run(
            features.matrix,
            should_stop=should_stop,
            on_iteration=on_iteration,
        )

        clusters = self.characterizer.characterize(
            vectors, result.assignments, k
        )
        return ClusterReport(
            clusters=clusters,
            algorithm=algorithm,
            k=k,
            total_sql_count=len(vectors),
            analysis_timestamp=datetime.now(timezone.utc),
            iterations=result.iterations,
            converged=result.converged,
            excluded_sql_count=len(samples) - len(vectors),
            degenerate_dimensions=features.degenerate,
        )

    def _initializer(self) -> CentroidInitializer:
        if self.initializer is not None:
            return self.initializer
        return RandomCentroidInitializer(seed=self.config.seed)
