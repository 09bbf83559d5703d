from __future__ import annotations

from pathlib import Path

import pytest

from AnnBench.VectorRecall.config import (
    CqlCfg,
    LogFormat,
    StoreBackend,
    load_settings,
)
from AnnBench.VectorRecall.errors import ConfigurationError


def test_defaults_match_sift_benchmark(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("ANNBENCH_DATASET_TOP_K", "ANNBENCH_DISPATCH_MAX_IN_FLIGHT", "ANNBENCH_CQL_TABLE"):
        monkeypatch.delenv(name, raising=False)

    settings = load_settings()

    assert settings.store is StoreBackend.MEMORY
    assert settings.dispatch.max_in_flight == 100
    assert settings.dispatch.timeout_or_none is None
    assert settings.dataset.top_k == 100
    assert settings.dataset.dimension == 128
    assert settings.dataset.min_recall == pytest.approx(0.975)
    assert settings.cql.keyspace == "testing"
    assert settings.cql.table == "sifttest"


def test_environment_then_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("ANNBENCH_DATASET_TOP_K", "10")
    monkeypatch.setenv("ANNBENCH_DISPATCH_MAX_IN_FLIGHT", "7")
    monkeypatch.setenv("ANNBENCH_LOG_FORMAT", "json")

    settings = load_settings({"dispatch.max_in_flight": 3, "dataset.data_dir": str(tmp_path)})

    assert settings.dataset.top_k == 10
    assert settings.dispatch.max_in_flight == 3
    assert settings.app.log_format is LogFormat.JSON
    assert settings.dataset.base_path == tmp_path / "base.fvecs"
    assert settings.dataset.ground_truth_path == tmp_path / "groundtruth.ivecs"


def test_keyword_overrides_and_none_passthrough() -> None:
    settings = load_settings(dataset__top_k=5, dispatch__operation_timeout_s=None, store="cql")
    assert settings.dataset.top_k == 5
    assert settings.store is StoreBackend.CQL


def test_invalid_values_raise_configuration_error() -> None:
    with pytest.raises(ConfigurationError):
        load_settings({"dispatch.max_in_flight": 0})
    with pytest.raises(ConfigurationError):
        load_settings({"cql.keyspace": "drop table;"})


def test_contact_points_parsing() -> None:
    assert CqlCfg(contact_points="10.0.0.1, 10.0.0.2").hosts == ["10.0.0.1", "10.0.0.2"]
    assert CqlCfg(contact_points=["a", "b"]).hosts == ["a", "b"]
