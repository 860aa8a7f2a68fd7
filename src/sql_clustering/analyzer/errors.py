"""Errors raised by the clustering pipeline."""


class ClusteringError(Exception):
    """Base class for clustering failures."""


class InsufficientData(ClusteringError):
    """Snapshot is too small to cluster."""

    def __init__(self, count: int, minimum: int):
        self.count = count
        self.minimum = minimum
        super().__init__(
            f"At least {minimum} SQL statements are required "
            f"for clustering (got {count})"
        )


class UnsupportedAlgorithm(ClusteringError):
    """Unknown algorithm name or invalid cluster count."""


class ClusteringCancelled(ClusteringError):
    """Run stopped by the caller between iterations."""


class SnapshotError(ClusteringError):
    """Snapshot file is missing, unreadable or lacks required columns."""


class InvalidParameter(ClusteringError):
    """Run setting outside its allowed range (iteration cap, minimum population)."""
