"""Configuration management for the SQL clustering engine."""

import os
from dataclasses import dataclass
from typing import Optional


def _optional_int(value: Optional[str]) -> Optional[int]:
    if value is None or not value.strip():
        return None
    return int(value)


@dataclass
class Config:
    """Configuration settings for SQL performance clustering."""

    # Clustering settings
    default_k: int = 5
    algorithm: str = "kmeans"
    max_iterations: int = 100
    min_samples: int = 10  # Smallest snapshot worth clustering
    seed: Optional[int] = None  # None = non-deterministic centroids

    # Snapshot settings (consumed by the collector side only)
    window_minutes: int = 60
    snapshot_limit: int = 200  # Rows kept, highest elapsed time first
    time_unit: str = "ms"  # "us" for raw V$SQL timings

    @classmethod
    def from_env(cls) -> "Config":
        """Create config from environment variables."""
        return cls(
            default_k=int(os.getenv("SQLCLUSTER_K", "5")),
            algorithm=os.getenv("SQLCLUSTER_ALGORITHM", "kmeans"),
            max_iterations=int(os.getenv("SQLCLUSTER_MAX_ITERATIONS", "100")),
            min_samples=int(os.getenv("SQLCLUSTER_MIN_SAMPLES", "10")),
            seed=_optional_int(os.getenv("SQLCLUSTER_SEED")),
            window_minutes=int(os.getenv("SQLCLUSTER_WINDOW_MINUTES", "60")),
        )
