from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from AnnBench.VectorRecall.logging import (
    JSONFormatter,
    get_logger,
    log_event,
    setup_logging,
)
from AnnBench.VectorRecall.observability import MetricsCollector, Observability


def test_json_formatter_merges_extra_fields() -> None:
    record = logging.LogRecord("AnnBench.test", logging.INFO, __file__, 1, "hello", None, None)
    record.extra_fields = {"phase": "ingest", "dispatched": 3}

    payload = json.loads(JSONFormatter().format(record))

    assert payload["message"] == "hello"
    assert payload["level"] == "INFO"
    assert payload["phase"] == "ingest"
    assert payload["dispatched"] == 3


def test_structured_logger_binds_fields(caplog: pytest.LogCaptureFixture) -> None:
    adapter = get_logger("AnnBench.test", base_fields={"phase": "query"})
    child = adapter.child(run="r1")

    with caplog.at_level(logging.INFO, logger="AnnBench.test"):
        log_event(child, "warning", "slow store", index=4)

    record = caplog.records[-1]
    assert record.extra_fields == {"phase": "query", "run": "r1", "index": 4}


def test_log_event_rejects_unknown_level() -> None:
    with pytest.raises(AttributeError):
        log_event(logging.getLogger("AnnBench.test"), "loud", "nope")


def test_setup_logging_writes_jsonl_file(tmp_path: Path) -> None:
    logger = setup_logging(level="DEBUG", fmt="json", log_dir=tmp_path)
    setup_logging(level="DEBUG", fmt="json", log_dir=tmp_path)

    assert len(logger.handlers) == 2
    log_event(logging.getLogger("AnnBench.VectorRecall.test"), "info", "written", phase="ingest")
    for handler in logger.handlers:
        handler.flush()

    files = list(tmp_path.glob("annbench-*.jsonl"))
    assert len(files) == 1
    lines = [json.loads(line) for line in files[0].read_text().splitlines()]
    assert lines[-1]["message"] == "written"
    assert lines[-1]["phase"] == "ingest"


def test_metrics_collector_percentiles() -> None:
    collector = MetricsCollector()
    for value in range(1, 101):
        collector.observe("latency_ms", float(value), phase="query")
    collector.increment("operations", 2, phase="query")

    (histogram,) = collector.export_histograms()
    assert histogram.count == 100
    assert histogram.p50 == 50.0
    assert histogram.p99 == 99.0
    assert collector.counter_value("operations", phase="query") == 2


def test_trace_records_errors_and_reraises() -> None:
    observability = Observability()

    with pytest.raises(KeyError):
        with observability.trace("query"):
            raise KeyError("boom")

    snapshot = observability.metrics_snapshot()
    assert snapshot["histograms"][0]["name"] == "trace_query_ms"
