from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest

from AnnBench.VectorRecall.devtools import (
    InMemoryVectorStore,
    SimulatedStoreError,
    exact_neighbors,
    make_synthetic_dataset,
)
from AnnBench.VectorRecall.formats import FloatVectorReader, GroundTruthReader


def _vec(*values: float) -> np.ndarray:
    return np.asarray(values, dtype=np.float32)


@pytest.fixture
def store():
    store = InMemoryVectorStore(workers=4)
    yield store
    store.close()


def test_top_k_orders_by_distance_then_key(store: InMemoryVectorStore) -> None:
    for key, vector in enumerate([_vec(1, 0), _vec(0, 1), _vec(1, 1), _vec(0, 1)]):
        store.submit_write(key, vector).result(timeout=5)

    assert store.size == 4
    assert store.submit_top_k(_vec(1, 0), 1).result(timeout=5) == [0]
    assert store.submit_top_k(_vec(0, 1), 2).result(timeout=5) == [1, 3]
    assert store.submit_top_k(_vec(1, 0), 10).result(timeout=5) == [0, 2, 1, 3]


def test_search_on_empty_store_returns_nothing(store: InMemoryVectorStore) -> None:
    assert store.submit_top_k(_vec(1, 0), 3).result(timeout=5) == []


def test_injected_failures() -> None:
    store = InMemoryVectorStore(policy="inline", fail_queries={1}, fail_writes={7})
    try:
        with pytest.raises(SimulatedStoreError):
            store.submit_write(7, _vec(1.0)).result()
        store.submit_write(0, _vec(1.0)).result()
        assert store.submit_top_k(_vec(1.0), 1).result() == [0]
        with pytest.raises(SimulatedStoreError):
            store.submit_top_k(_vec(1.0), 1).result()
    finally:
        store.close()


def test_hung_queries_are_cancelled_on_close() -> None:
    store = InMemoryVectorStore(policy="inline", hang_queries={0})
    pending = store.submit_top_k(_vec(1.0), 1)
    assert not pending.done()
    store.close()
    assert pending.cancelled()


def test_closed_store_rejects_operations() -> None:
    store = InMemoryVectorStore(policy="inline")
    store.close()
    with pytest.raises(RuntimeError):
        store.submit_write(0, _vec(1.0))


def test_unknown_policy_rejected() -> None:
    with pytest.raises(ValueError):
        InMemoryVectorStore(policy="cpu")


def test_exact_neighbors_matches_brute_force() -> None:
    rng = np.random.default_rng(3)
    base = rng.random((50, 4), dtype=np.float32)
    queries = rng.random((7, 4), dtype=np.float32)

    result = exact_neighbors(base, queries, 5, batch_size=3)

    for row, query in zip(result, queries):
        distances = ((base - query) ** 2).sum(axis=1)
        assert set(row.tolist()) == set(np.argsort(distances)[:5].tolist())
        assert row[0] == int(np.argmin(distances))


def test_make_synthetic_dataset_writes_consistent_files(tmp_path: Path) -> None:
    paths = make_synthetic_dataset(
        tmp_path / "synthetic", base_count=40, query_count=5, dimension=3, depth=4, seed=1
    )

    base = list(FloatVectorReader(paths.base, expected_dimension=3))
    queries = list(FloatVectorReader(paths.query, expected_dimension=3))
    truth = list(GroundTruthReader(paths.ground_truth))
    assert len(base) == 40
    assert len(queries) == 5
    assert len(truth) == 5
    assert all(len(ids) == 4 and max(ids) < 40 for ids in truth)
