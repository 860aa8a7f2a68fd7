"""Turn raw k-means membership into labelled, scored clusters.

Scoring, labelling and grading are expressed as ordered rule tables so each
policy can be tested on its own:

- PENALTY_RULES: every matching rule subtracts its penalty (start 100, floor 0)
- LABEL_RULES: first matching rule names the cluster
- GRADE_BOUNDARIES: first boundary the score reaches gives the letter
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, NamedTuple, Sequence

import numpy as np

from .features import FeatureVector


class CostProfile(NamedTuple):
    """Per-execution cost of a statement or the averages of a cluster."""

    elapsed_ms: float
    cpu_ms: float
    buffer_gets: float
    executions: float


Rule = Callable[[CostProfile], bool]

MAX_SCORE = 100

PENALTY_RULES: List[tuple[Rule, int]] = [
    (lambda c: c.elapsed_ms > 1000, 20),
    (lambda c: c.cpu_ms > 500, 15),
    (lambda c: c.buffer_gets > 10000, 15),
]

# For clusters, `executions` is the total across members.
LABEL_RULES: List[tuple[Rule, str]] = [
    (lambda c: c.elapsed_ms > 2000, "Slow Queries"),
    (lambda c: c.cpu_ms > 1000, "CPU Intensive"),
    (lambda c: c.buffer_gets > 50000, "I/O Heavy"),
    (lambda c: c.executions > 10000, "High Frequency"),
]
DEFAULT_LABEL = "Balanced"

GRADE_BOUNDARIES: List[tuple[int, str]] = [
    (80, "A"),
    (65, "B"),
    (50, "C"),
    (35, "D"),
]
FAILING_GRADE = "F"
GRADES = ("A", "B", "C", "D", "F")


def performance_score(profile: CostProfile) -> int:
    score = MAX_SCORE
    for rule, penalty in PENALTY_RULES:
        if rule(profile):
            score -= penalty
    return max(0, score)


def cluster_label(profile: CostProfile) -> str:
    for rule, label in LABEL_RULES:
        if rule(profile):
            return label
    return DEFAULT_LABEL


def grade_for_score(score: float) -> str:
    for boundary, grade in GRADE_BOUNDARIES:
        if score >= boundary:
            return grade
    return FAILING_GRADE


def round_half_up(value: float) -> int:
    """Round like the dashboard did (halves go up, also for negatives)."""
    return int(math.floor(value + 0.5))


@dataclass(frozen=True)
class ClusterMember:
    """One SQL statement inside a cluster, in original units."""

    sql_id: str
    elapsed_per_exec: float
    cpu_per_exec: float
    buffer_per_exec: float
    executions: int
    disk_reads: float
    rows_processed: float
    score: int
    grade: str

    @classmethod
    def from_vector(cls, vector: FeatureVector) -> "ClusterMember":
        profile = CostProfile(
            elapsed_ms=vector.elapsed_per_exec,
            cpu_ms=vector.cpu_per_exec,
            buffer_gets=vector.buffer_per_exec,
            executions=vector.executions,
        )
        score = performance_score(profile)
        return cls(
            sql_id=vector.sql_id,
            elapsed_per_exec=vector.elapsed_per_exec,
            cpu_per_exec=vector.cpu_per_exec,
            buffer_per_exec=vector.buffer_per_exec,
            executions=vector.executions,
            disk_reads=vector.sample.disk_reads,
            rows_processed=vector.sample.rows_processed,
            score=score,
            grade=grade_for_score(score),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sql_id": self.sql_id,
            "elapsed_time_per_exec": self.elapsed_per_exec,
            "cpu_time_per_exec": self.cpu_per_exec,
            "buffer_gets_per_exec": self.buffer_per_exec,
            "executions": self.executions,
            "disk_reads": self.disk_reads,
            "rows_processed": self.rows_processed,
            "grade": self.grade,
        }


@dataclass
class Cluster:
    """A labelled group of statements with aggregate statistics."""

    id: str
    label: str
    centroid_index: int
    members: List[ClusterMember] = field(default_factory=list)
    avg_elapsed_ms: float = 0.0
    avg_cpu_ms: float = 0.0
    avg_buffer_gets: float = 0.0
    total_executions: int = 0
    score: int = MAX_SCORE

    @property
    def size(self) -> int:
        return len(self.members)

    @property
    def centroid(self) -> Dict[str, float]:
        """Cluster centre in original units."""
        return {
            "cpu_time": self.avg_cpu_ms,
            "buffer_gets": self.avg_buffer_gets,
            "elapsed_time": self.avg_elapsed_ms,
        }

    def grade_counts(self) -> Dict[str, int]:
        counts = {g: 0 for g in GRADES}
        for m in self.members:
            counts[m.grade] += 1
        return counts

    def to_dict(self) -> Dict[str, Any]:
        """Wire format consumed by the dashboard."""
        return {
            "id": self.id,
            "name": self.label,
            "centroid": {
                "cpu_time": self.avg_cpu_ms,
                "buffer_gets": self.avg_buffer_gets,
            },
            "members": [m.to_dict() for m in self.members],
            "avgScore": round_half_up(self.score),
            "characteristics": {
                "avgElapsedTime": round_half_up(self.avg_elapsed_ms),
                "avgCpuTime": round_half_up(self.avg_cpu_ms),
                "avgBufferGets": round_half_up(self.avg_buffer_gets),
                "totalExecutions": self.total_executions,
            },
        }


class ClusterCharacterizer:
    """Builds ordered Cluster objects from a final k-means assignment."""

    def characterize(
        self,
        vectors: Sequence[FeatureVector],
        assignments: np.ndarray | Sequence[int],
        k: int,
    ) -> List[Cluster]:
        """
        Group ``vectors`` by centroid index and describe each group.

        Centroids without members are skipped, so the result can hold fewer
        than ``k`` clusters. Output is ordered by member count (descending),
        then by centroid index, and ids are assigned in that order.
        """
        assignments = [int(a) for a in assignments]
        if len(assignments) != len(vectors):
            raise ValueError(
                f"{len(assignments)} assignments for {len(vectors)} vectors"
            )

        clusters: List[Cluster] = []
        for j in range(k):
            members = [v for v, a in zip(vectors, assignments) if a == j]
            if not members:
                continue
            clusters.append(self._build(j, members))

        clusters.sort(key=lambda c: (-c.size, c.centroid_index))
        for position, cluster in enumerate(clusters):
            cluster.id = f"cluster-{position}"
        return clusters

    def _build(
        self, centroid_index: int, members: Sequence[FeatureVector]
    ) -> Cluster:
        n = len(members)
        avg_elapsed = sum(m.elapsed_per_exec for m in members) / n
        avg_cpu = sum(m.cpu_per_exec for m in members) / n
        avg_buffer = sum(m.buffer_per_exec for m in members) / n
        total_executions = sum(m.executions for m in members)

        profile = CostProfile(
            elapsed_ms=avg_elapsed,
            cpu_ms=avg_cpu,
            buffer_gets=avg_buffer,
            executions=total_executions,
        )
        return Cluster(
            id="",
            label=cluster_label(profile),
            centroid_index=centroid_index,
            members=[ClusterMember.from_vector(m) for m in members],
            avg_elapsed_ms=avg_elapsed,
            avg_cpu_ms=avg_cpu,
            avg_buffer_gets=avg_buffer,
            total_executions=total_executions,
            score=performance_score(profile),
        )
