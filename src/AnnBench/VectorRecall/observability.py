"""
Lightweight observability primitives for benchmark phases.

Counters and histograms are updated from store completion threads, so the
collector guards its tables with a lock. Spans time a whole phase and emit a
structured ``benchmark-trace`` record when they close.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from typing import Dict, Iterable, Iterator, Mapping, MutableMapping, Optional, Tuple

from .logging import log_event

__all__ = [
    "CounterSample",
    "HistogramSample",
    "MetricsCollector",
    "Observability",
    "TraceRecorder",
]

_LabelKey = Tuple[str, Tuple[Tuple[str, str], ...]]


@dataclass
class CounterSample:
    """Sample from a counter metric.

    Examples:
        >>> CounterSample(name="queries", labels={"status": "ok"}, value=3.0).value
        3.0
    """

    name: str
    labels: Mapping[str, str]
    value: float


@dataclass
class HistogramSample:
    """Percentile summary of a histogram metric."""

    name: str
    labels: Mapping[str, str]
    count: int
    p50: float
    p95: float
    p99: float


class MetricsCollector:
    """Thread-safe in-memory counters and histograms.

    Examples:
        >>> collector = MetricsCollector()
        >>> collector.increment("operations", phase="ingest")
        >>> collector.observe("latency_ms", 4.2, phase="query")
        >>> [sample.value for sample in collector.export_counters()]
        [1.0]
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: MutableMapping[_LabelKey, float] = defaultdict(float)
        self._histograms: MutableMapping[_LabelKey, list[float]] = defaultdict(list)

    def increment(self, name: str, amount: float = 1.0, **labels: str) -> None:
        key = (name, tuple(sorted(labels.items())))
        with self._lock:
            self._counters[key] += amount

    def observe(self, name: str, value: float, **labels: str) -> None:
        key = (name, tuple(sorted(labels.items())))
        with self._lock:
            self._histograms[key].append(value)

    def counter_value(self, name: str, **labels: str) -> float:
        """Return the current value of one counter (0.0 when unset)."""

        key = (name, tuple(sorted(labels.items())))
        with self._lock:
            return self._counters.get(key, 0.0)

    def export_counters(self) -> Iterable[CounterSample]:
        with self._lock:
            items = list(self._counters.items())
        for (name, labels), value in items:
            yield CounterSample(name=name, labels=dict(labels), value=value)

    def export_histograms(self) -> Iterable[HistogramSample]:
        with self._lock:
            items = [(key, list(samples)) for key, samples in self._histograms.items()]
        for (name, labels), samples in items:
            sorted_samples = sorted(samples)
            count = len(sorted_samples)
            if count == 0:
                continue
            yield HistogramSample(
                name=name,
                labels=dict(labels),
                count=count,
                p50=sorted_samples[int(0.5 * (count - 1))],
                p95=sorted_samples[int(0.95 * (count - 1))],
                p99=sorted_samples[int(0.99 * (count - 1))],
            )


class TraceRecorder:
    """Context manager producing timing spans."""

    def __init__(self, metrics: MetricsCollector, logger: logging.Logger) -> None:
        self._metrics = metrics
        self._logger = logger

    @contextmanager
    def span(self, name: str, **attributes: str) -> Iterator[None]:
        """Time the enclosed block; exceptions propagate with ``status=error``."""

        start = time.perf_counter()
        status = "error"
        try:
            yield
            status = "ok"
        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            self._metrics.observe(f"trace_{name}_ms", duration_ms, **attributes)
            log_event(
                self._logger,
                "info",
                "benchmark-trace",
                span=name,
                duration_ms=round(duration_ms, 3),
                status=status,
                **attributes,
            )


class Observability:
    """Facade bundling metrics and tracing for one benchmark run.

    Examples:
        >>> obs = Observability()
        >>> with obs.trace("ingest"):
        ...     obs.metrics.increment("operations", phase="ingest")
        >>> sorted(obs.metrics_snapshot())
        ['counters', 'histograms']
    """

    def __init__(self, *, logger: Optional[logging.Logger] = None) -> None:
        self._metrics = MetricsCollector()
        self._logger = logger or logging.getLogger("AnnBench.VectorRecall")
        self._tracer = TraceRecorder(self._metrics, self._logger)

    @property
    def metrics(self) -> MetricsCollector:
        return self._metrics

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    def trace(self, name: str, **attributes: str) -> Iterator[None]:
        return self._tracer.span(name, **attributes)

    def metrics_snapshot(self) -> Dict[str, list[Mapping[str, object]]]:
        """Return counters and histograms as JSON-serialisable dictionaries."""

        counters = [asdict(sample) for sample in self._metrics.export_counters()]
        histograms = [asdict(sample) for sample in self._metrics.export_histograms()]
        return {"counters": counters, "histograms": histograms}
