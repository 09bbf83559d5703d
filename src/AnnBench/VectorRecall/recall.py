"""Thread-safe Recall@K accumulation across concurrently completing queries."""

from __future__ import annotations

import threading
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Optional

from .errors import AggregationError

__all__ = ("RecallAggregator", "RecallSnapshot", "count_hits")


@dataclass(frozen=True)
class RecallSnapshot:
    """Point-in-time copy of the recall counters.

    Attributes:
        queries: Queries recorded, failed ones included.
        hits: Returned identifiers found in the paired ground truth.
        failures: Queries whose search operation failed (zero hits each).
        possible: Sum of ``k`` over recorded queries (``queries * K`` for a
            constant ``K``).
        recall: ``hits / possible`` or ``None`` when nothing was recorded.
    """

    queries: int
    hits: int
    failures: int
    possible: int
    recall: Optional[float]

    @property
    def succeeded(self) -> int:
        return self.queries - self.failures


def count_hits(returned: Iterable[int], ground_truth: frozenset[int] | set[int], k: int) -> int:
    """Return how many of the first ``k`` distinct returned ids are true neighbours."""

    seen: set[int] = set()
    for key in returned:
        if len(seen) >= k:
            break
        seen.add(int(key))
    return len(seen & ground_truth)


class RecallAggregator:
    """Accumulate hits and query counts from arbitrary completion threads.

    Failed queries are always counted: :meth:`record_failure` adds one query
    with zero hits and increments a separate failure counter, so the final
    ratio is reproducible rather than silently skewed by dropped queries.

    Examples:
        >>> aggregator = RecallAggregator()
        >>> aggregator.record_query(8, 10)
        >>> aggregator.record_failure(10)
        >>> aggregator.final_recall()
        0.4
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._queries = 0
        self._hits = 0
        self._failures = 0
        self._possible = 0

    def record_query(self, hit_count: int, k: int) -> None:
        """Atomically add one query with ``hit_count`` hits out of ``k``."""

        if k < 1:
            raise ValueError(f"k must be >= 1, got {k}")
        if not 0 <= hit_count <= k:
            raise ValueError(f"hit_count must be within [0, {k}], got {hit_count}")
        with self._lock:
            self._queries += 1
            self._hits += hit_count
            self._possible += k

    def record_failure(self, k: int) -> None:
        """Atomically add one failed query (zero hits out of ``k``)."""

        if k < 1:
            raise ValueError(f"k must be >= 1, got {k}")
        with self._lock:
            self._queries += 1
            self._failures += 1
            self._possible += k

    def snapshot(self) -> RecallSnapshot:
        """Return the counters; only authoritative after the query phase has drained."""

        with self._lock:
            recall = self._hits / self._possible if self._possible else None
            return RecallSnapshot(
                queries=self._queries,
                hits=self._hits,
                failures=self._failures,
                possible=self._possible,
                recall=recall,
            )

    def final_recall(self) -> float:
        """Return ``hits / (queries * K)``.

        Raises:
            AggregationError: If no query has been recorded.
        """

        snapshot = self.snapshot()
        if snapshot.recall is None:
            raise AggregationError("Recall requested before any query was recorded")
        return snapshot.recall
