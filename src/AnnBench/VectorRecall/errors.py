"""Exception hierarchy shared across dataset decoding, querying, and reporting.

A benchmark run spans binary decoding, bounded dispatch against a vector
store, and recall aggregation. This module groups the failure modes so CLI and
library callers can react to categories (a corrupt dataset vs. a store that
returned errors) while the concurrency-level failures remain importable from
one place.
"""

from __future__ import annotations

from typing import Optional

from AnnBench.concurrency.errors import DispatchFailure, OperationFailure, OperationTimeout

__all__ = [
    "VectorRecallError",
    "MalformedRecord",
    "AggregationError",
    "ConfigurationError",
    "RecallBelowThreshold",
    "DispatchFailure",
    "OperationFailure",
    "OperationTimeout",
]


class VectorRecallError(RuntimeError):
    """Base exception for dataset, store, or recall reporting failures."""


class MalformedRecord(VectorRecallError):
    """Raised when a binary record is truncated or inconsistent.

    The decode stream is aborted; no partial record is yielded.
    """

    def __init__(
        self,
        message: str,
        *,
        record_index: int,
        source: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.record_index = record_index
        self.source = source


class AggregationError(VectorRecallError):
    """Raised when a recall value is requested before any query was recorded."""


class ConfigurationError(VectorRecallError):
    """Raised when settings or dataset locations are invalid."""


class RecallBelowThreshold(VectorRecallError):
    """Raised when the measured recall misses the configured minimum."""

    def __init__(self, recall: float, minimum: float) -> None:
        super().__init__(f"recall {recall:.4f} is below the required {minimum:.4f}")
        self.recall = recall
        self.minimum = minimum
