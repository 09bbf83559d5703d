# === NAVMAP v1 ===
# {
#   "module": "AnnBench.VectorRecall.orchestrator",
#   "purpose": "Sequence the ingest and query phases of a recall benchmark.",
#   "sections": [
#     {
#       "id": "phasereport",
#       "name": "PhaseReport",
#       "anchor": "class-phasereport",
#       "kind": "class"
#     },
#     {
#       "id": "queryreport",
#       "name": "QueryReport",
#       "anchor": "class-queryreport",
#       "kind": "class"
#     },
#     {
#       "id": "benchmarkreport",
#       "name": "BenchmarkReport",
#       "anchor": "class-benchmarkreport",
#       "kind": "class"
#     },
#     {
#       "id": "benchmarkorchestrator",
#       "name": "BenchmarkOrchestrator",
#       "anchor": "class-benchmarkorchestrator",
#       "kind": "class"
#     }
#   ]
# }
# === /NAVMAP ===

"""
Two-phase recall benchmark.

``ingest`` streams base vectors into the store as keyed writes; ``run_queries``
streams query vectors and their ground truth in lockstep, issues top-K searches
and feeds intersection counts into a :class:`RecallAggregator`. Both phases run
through a fresh :class:`~AnnBench.concurrency.BoundedAsyncDispatcher` and end
at its drain barrier, so the query phase only ever sees a fully ingested corpus
and the recall read afterwards is final.

A decode error or a failing operation factory stops the phase: operations
already issued are drained, then the error propagates. Failed store operations
do not stop the phase; they are logged, counted and passed to the optional
caller-supplied failure sink. A failed query counts as one query with zero
hits.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterator, Sequence
from concurrent.futures import Future
from dataclasses import asdict, dataclass
from typing import Any, FrozenSet, Iterable, NamedTuple, Optional, Tuple, TypeVar

from AnnBench.concurrency import BoundedAsyncDispatcher, DispatchStats, OperationFailure

from .errors import ConfigurationError
from .formats import FloatVectorReader, GroundTruthReader, PathOrStream, Vector
from .interfaces import VectorStore
from .logging import get_logger, log_event
from .observability import Observability
from .recall import RecallAggregator, RecallSnapshot, count_hits

__all__ = [
    "BenchmarkOrchestrator",
    "BenchmarkReport",
    "PhaseReport",
    "QueryCase",
    "QueryReport",
]

logger = get_logger(__name__)

T = TypeVar("T")


class QueryCase(NamedTuple):
    """A query vector paired with its ground truth at dispatch time."""

    vector: Vector
    ground_truth: FrozenSet[int]


@dataclass(frozen=True)
class PhaseReport:
    """Outcome of one dispatched phase.

    Attributes:
        phase: ``"ingest"`` or ``"query"``.
        dispatched: Operations issued.
        succeeded: Operations that completed successfully.
        failed: Operations reported as failures.
        peak_in_flight: Highest number of simultaneously pending operations.
        duration_s: Wall time from first dispatch to drain.
        throughput: Completed operations per second.
    """

    phase: str
    dispatched: int
    succeeded: int
    failed: int
    peak_in_flight: int
    duration_s: float
    throughput: float

    @classmethod
    def from_stats(cls, phase: str, stats: DispatchStats, duration_s: float) -> "PhaseReport":
        throughput = stats.completed / duration_s if duration_s > 0 else 0.0
        return cls(
            phase=phase,
            dispatched=stats.dispatched,
            succeeded=stats.succeeded,
            failed=stats.failed,
            peak_in_flight=stats.peak_in_flight,
            duration_s=duration_s,
            throughput=throughput,
        )


@dataclass(frozen=True)
class QueryReport:
    """Query phase counters together with the recall they produced."""

    phase: PhaseReport
    snapshot: RecallSnapshot
    k: int

    @property
    def recall(self) -> Optional[float]:
        return self.snapshot.recall


@dataclass(frozen=True)
class BenchmarkReport:
    """Full benchmark outcome returned by :meth:`BenchmarkOrchestrator.run`."""

    ingest: PhaseReport
    query: QueryReport

    @property
    def recall(self) -> Optional[float]:
        return self.query.recall

    def to_dict(self) -> dict[str, Any]:
        return {
            "recall": self.recall,
            "k": self.query.k,
            "ingest": asdict(self.ingest),
            "query": asdict(self.query.phase),
            "aggregate": asdict(self.query.snapshot),
        }


class BenchmarkOrchestrator:
    """Drive a :class:`VectorStore` through ingest and query phases.

    Args:
        store: Store under test; not closed by the orchestrator.
        max_in_flight: Concurrency budget for each phase.
        operation_timeout_s: Optional per-operation deadline.
        observability: Metrics and tracing facade; a private one is created
            when omitted.
        failure_sink: Receives every :class:`OperationFailure` after the
            orchestrator has logged and counted it.
        dimension: Expected vector dimension; records of another size are
            malformed.

    Examples:
        >>> import io
        >>> import numpy as np
        >>> from AnnBench.VectorRecall.devtools import InMemoryVectorStore
        >>> from AnnBench.VectorRecall.formats import write_fvecs, write_ivecs
        >>> base, queries, truth = io.BytesIO(), io.BytesIO(), io.BytesIO()
        >>> _ = write_fvecs(base, [[1, 0], [0, 1], [1, 1]])
        >>> _ = write_fvecs(queries, [[1, 0]])
        >>> _ = write_ivecs(truth, [[0]])
        >>> _ = [buf.seek(0) for buf in (base, queries, truth)]
        >>> store = InMemoryVectorStore(policy="inline")
        >>> orchestrator = BenchmarkOrchestrator(store)
        >>> orchestrator.ingest(base).succeeded
        3
        >>> orchestrator.run_queries(queries, truth, 1)
        1.0
        >>> store.close()
    """

    def __init__(
        self,
        store: VectorStore,
        *,
        max_in_flight: int = 100,
        operation_timeout_s: Optional[float] = None,
        observability: Optional[Observability] = None,
        failure_sink: Optional[Callable[[OperationFailure], None]] = None,
        dimension: Optional[int] = None,
    ) -> None:
        if max_in_flight < 1:
            raise ValueError(f"max_in_flight must be >= 1, got {max_in_flight}")
        self._store = store
        self._max_in_flight = max_in_flight
        self._timeout_s = operation_timeout_s or None
        self._obs = observability or Observability()
        self._failure_sink = failure_sink
        self._dimension = dimension
        self._last_query: Optional[QueryReport] = None

    @property
    def observability(self) -> Observability:
        return self._obs

    @property
    def last_query_report(self) -> Optional[QueryReport]:
        """Report of the most recent completed query phase."""

        return self._last_query

    def ingest(self, path: PathOrStream) -> PhaseReport:
        """Write every base vector under its zero-based record index.

        Returns only after every write has reached a terminal state.
        """

        with FloatVectorReader(path, expected_dimension=self._dimension) as reader:
            report = self._run_phase(
                "ingest",
                reader,
                self._timed(
                    "ingest", lambda index, vector: self._store.submit_write(index, vector)
                ),
                sink=self._sink("ingest"),
            )
        return report

    def run_queries(self, query_path: PathOrStream, gt_path: PathOrStream, k: int) -> float:
        """Search every query vector and return Recall@``k``.

        Ground truth is truncated to the first ``k`` identifiers of each
        record.

        Raises:
            AggregationError: If the query file held no records.
            ConfigurationError: If the ground truth has fewer records than
                there are queries.
        """

        _, recall = self._query_phase(query_path, gt_path, k)
        return recall

    def run(
        self,
        base_path: PathOrStream,
        query_path: PathOrStream,
        gt_path: PathOrStream,
        k: int,
    ) -> BenchmarkReport:
        """Ingest the base corpus, then run the query phase."""

        ingest_report = self.ingest(base_path)
        query_report, _ = self._query_phase(query_path, gt_path, k)
        return BenchmarkReport(ingest=ingest_report, query=query_report)

    def _query_phase(
        self, query_path: PathOrStream, gt_path: PathOrStream, k: int
    ) -> Tuple[QueryReport, float]:
        if k < 1:
            raise ValueError(f"k must be >= 1, got {k}")
        aggregator = RecallAggregator()

        def record(index: int, case: QueryCase, returned: Sequence[int]) -> None:
            aggregator.record_query(count_hits(returned, case.ground_truth, k), k)

        with FloatVectorReader(query_path, expected_dimension=self._dimension) as queries, \
                GroundTruthReader(gt_path, depth=k) as truth:
            phase = self._run_phase(
                "query",
                self._pair(queries, truth),
                self._timed(
                    "query", lambda index, case: self._store.submit_top_k(case.vector, k)
                ),
                sink=self._sink("query", aggregator=aggregator, k=k),
                on_result=record,
            )

        snapshot = aggregator.snapshot()
        report = QueryReport(phase=phase, snapshot=snapshot, k=k)
        self._last_query = report
        recall = aggregator.final_recall()
        log_event(
            logger.child(phase="query"),
            "info",
            "Recall computed",
            k=k,
            recall=recall,
            queries=snapshot.queries,
            hits=snapshot.hits,
            failures=snapshot.failures,
        )
        return report, recall

    def _run_phase(
        self,
        phase: str,
        items: Iterable[T],
        factory: Callable[[int, T], "Future[Any]"],
        *,
        sink: Callable[[OperationFailure], None],
        on_result: Optional[Callable[[int, T, Any], None]] = None,
    ) -> PhaseReport:
        dispatcher: BoundedAsyncDispatcher[T] = BoundedAsyncDispatcher(
            self._max_in_flight,
            operation_timeout_s=self._timeout_s,
            failure_sink=sink,
            name=phase,
        )
        phase_log = logger.child(phase=phase)
        log_event(
            phase_log,
            "info",
            "Phase started",
            max_in_flight=self._max_in_flight,
            operation_timeout_s=self._timeout_s,
        )
        start = time.perf_counter()
        with self._obs.trace(phase):
            try:
                handle = dispatcher.dispatch(items, factory, on_result=on_result)
            except Exception as exc:
                stats = dispatcher.drain()
                log_event(
                    phase_log,
                    "error",
                    "Phase aborted",
                    error=str(exc),
                    error_type=type(exc).__name__,
                    dispatched=stats.dispatched,
                )
                raise
            stats = handle.wait()
        report = PhaseReport.from_stats(phase, stats, time.perf_counter() - start)

        metrics = self._obs.metrics
        metrics.increment("operations", report.succeeded, phase=phase, status="ok")
        metrics.increment("operations", report.failed, phase=phase, status="failed")
        metrics.observe("phase_throughput_ops", report.throughput, phase=phase)
        log_event(phase_log, "info", "Phase completed", **asdict(report))
        return report

    def _timed(
        self, phase: str, factory: Callable[[int, T], "Future[Any]"]
    ) -> Callable[[int, T], "Future[Any]"]:
        metrics = self._obs.metrics

        def issue(index: int, item: T) -> "Future[Any]":
            start = time.perf_counter()
            future = factory(index, item)
            if isinstance(future, Future):
                future.add_done_callback(
                    lambda _f: metrics.observe(
                        "operation_latency_ms", (time.perf_counter() - start) * 1000, phase=phase
                    )
                )
            return future

        return issue

    def _sink(
        self,
        phase: str,
        *,
        aggregator: Optional[RecallAggregator] = None,
        k: int = 0,
    ) -> Callable[[OperationFailure], None]:
        phase_log = logger.child(phase=phase)

        def sink(failure: OperationFailure) -> None:
            if aggregator is not None:
                aggregator.record_failure(k)
            log_event(
                phase_log,
                "warning",
                "Store operation failed",
                index=failure.index,
                stage=failure.stage,
                error=str(failure.cause) if failure.cause is not None else str(failure),
            )
            if self._failure_sink is not None:
                self._failure_sink(failure)

        return sink

    @staticmethod
    def _pair(
        queries: FloatVectorReader, truth: GroundTruthReader
    ) -> Iterator[QueryCase]:
        for vector in queries:
            ground_truth = next(truth, None)
            if ground_truth is None:
                raise ConfigurationError(
                    f"ground truth ended after {truth.records_read} records; "
                    f"query {queries.records_read - 1} has no neighbours to compare against"
                )
            yield QueryCase(vector, ground_truth)
        if next(truth, None) is not None:
            log_event(
                logger.child(phase="query"),
                "warning",
                "Ground truth has more records than queries; extra records ignored",
                queries=queries.records_read,
            )
