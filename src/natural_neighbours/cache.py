"""
Per-worker scratch buffers.
"""

from __future__ import annotations

import numpy as np

# Widest least-squares design used by the derivative generator (cubic fit)
MAX_TERMS = 9


class EvaluationCache:
    """Reusable workspace owned by exactly one evaluation worker.

    The buffers are sized to the largest neighbour ring seen so far. They only
    ever grow, so a worker that has warmed up evaluates without allocating. A
    cache must never be shared between threads.

    Args:
        capacity: Initial number of neighbour slots.
    """

    def __init__(self, capacity: int = 16):
        # A triangle is the smallest neighbour set
        capacity = max(int(capacity), 3)
        self.indices = np.empty(capacity, dtype=np.int64)
        self.weights = np.empty(capacity, dtype=np.float64)
        self.coordinates = np.empty((capacity, 2), dtype=np.float64)
        self.polygon = np.empty((capacity + 2, 2), dtype=np.float64)
        self.design = np.empty((capacity, MAX_TERMS), dtype=np.float64)
        self.rhs = np.empty(capacity, dtype=np.float64)

        # Bowyer-Watson cavity scratch
        self.cavity: list[int] = []
        self.cavity_members: set[int] = set()
        self.boundary: dict[int, tuple[int, int]] = {}

    @property
    def capacity(self) -> int:
        return len(self.indices)

    def reserve(self, n: int) -> None:
        """Make sure every buffer holds at least ``n`` neighbour slots."""
        if n <= self.capacity:
            return
        capacity = max(int(n), 2 * self.capacity)
        self.indices = np.empty(capacity, dtype=np.int64)
        self.weights = np.empty(capacity, dtype=np.float64)
        self.coordinates = np.empty((capacity, 2), dtype=np.float64)
        self.design = np.empty((capacity, MAX_TERMS), dtype=np.float64)
        self.rhs = np.empty(capacity, dtype=np.float64)

    def reserve_polygon(self, n: int) -> None:
        if n > len(self.polygon):
            self.polygon = np.empty((max(int(n), 2 * len(self.polygon)), 2), dtype=np.float64)

    def reset_cavity(self) -> None:
        self.cavity.clear()
        self.cavity_members.clear()
        self.boundary.clear()

    def __repr__(self) -> str:
        return f"EvaluationCache(capacity={self.capacity})"


def make_caches(n: int) -> list[EvaluationCache]:
    """One fresh cache per worker."""
    return [EvaluationCache() for _ in range(n)]
