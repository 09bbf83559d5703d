# === NAVMAP v1 ===
# {
#   "module": "AnnBench.VectorRecall.__init__",
#   "purpose": "Recall@K benchmark for vector stores under bounded concurrency.",
#   "sections": []
# }
# === /NAVMAP ===

"""
Recall@K benchmark for vector stores under bounded concurrency.

The package streams a base corpus and a query set from ``.fvecs`` / ``.ivecs``
containers, drives an asynchronous :class:`VectorStore` through the bounded
dispatcher from :mod:`AnnBench.concurrency`, and aggregates Recall@K against
exact ground truth.

Modules:
    formats: lazy binary readers and writers for the container format.
    recall: thread-safe recall aggregation.
    orchestrator: ingest and query phases.
    cql: Cassandra / DataStax vector search store.
    devtools: in-memory store and synthetic datasets.
    config / logging / observability: ambient settings, structured logs, metrics.
    cli: the ``annbench`` Typer application.
"""

from .errors import (
    AggregationError,
    ConfigurationError,
    DispatchFailure,
    MalformedRecord,
    OperationFailure,
    OperationTimeout,
    RecallBelowThreshold,
    VectorRecallError,
)
from .formats import FloatVectorReader, GroundTruthReader, write_fvecs, write_ivecs
from .interfaces import VectorStore
from .orchestrator import BenchmarkOrchestrator, BenchmarkReport, PhaseReport, QueryReport
from .recall import RecallAggregator, RecallSnapshot, count_hits

__all__ = [
    "AggregationError",
    "BenchmarkOrchestrator",
    "BenchmarkReport",
    "ConfigurationError",
    "DispatchFailure",
    "FloatVectorReader",
    "GroundTruthReader",
    "MalformedRecord",
    "OperationFailure",
    "OperationTimeout",
    "PhaseReport",
    "QueryReport",
    "RecallAggregator",
    "RecallBelowThreshold",
    "RecallSnapshot",
    "VectorRecallError",
    "VectorStore",
    "count_hits",
    "write_fvecs",
    "write_ivecs",
]
