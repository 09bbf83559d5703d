"""In-memory analogue of the vector store used by the recall benchmark.

The production target is a Cassandra / DataStax cluster with vector search.
Tests and offline runs cannot depend on a live cluster, so
``InMemoryVectorStore`` implements :class:`~AnnBench.VectorRecall.interfaces.VectorStore`
entirely in process:

- writes and searches run on a thread pool from
  :func:`AnnBench.concurrency.create_executor`, so futures complete on worker
  threads exactly as a driver's would;
- search is exact Euclidean brute force, which makes the store a recall
  ceiling (recall 1.0 against exact ground truth);
- fault injection (``fail_queries``, ``fail_writes``, ``hang_queries``) and
  artificial ``latency_s`` let tests exercise failure routing, timeouts, and
  backpressure deterministically.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import Future
from typing import Any, Dict, List, Optional

import numpy as np
import numpy.typing as npt

from AnnBench.concurrency import create_executor

__all__ = ("InMemoryVectorStore", "SimulatedStoreError")


class SimulatedStoreError(RuntimeError):
    """Failure injected by :class:`InMemoryVectorStore` fault settings."""


class InMemoryVectorStore:
    """Exact top-K vector store backed by a numpy matrix.

    Args:
        workers: Size of the worker pool completing operations.
        policy: ``"io"`` for a thread pool or ``"inline"`` to resolve futures on
            the calling thread.
        latency_s: Sleep applied to every operation before it completes.
        fail_queries: Query ordinals (submission order, zero-based) that fail.
        fail_writes: Keys whose writes fail.
        hang_queries: Query ordinals whose futures never resolve.

    Examples:
        >>> store = InMemoryVectorStore(policy="inline")
        >>> _ = store.submit_write(0, np.array([1.0, 0.0], dtype=np.float32)).result()
        >>> _ = store.submit_write(1, np.array([0.0, 1.0], dtype=np.float32)).result()
        >>> store.submit_top_k(np.array([0.9, 0.1], dtype=np.float32), 1).result()
        [0]
        >>> store.close()
    """

    def __init__(
        self,
        *,
        workers: int = 8,
        policy: str = "io",
        latency_s: float = 0.0,
        fail_queries: Iterable[int] = (),
        fail_writes: Iterable[int] = (),
        hang_queries: Iterable[int] = (),
    ) -> None:
        if policy not in {"io", "inline"}:
            raise ValueError(f"policy must be 'io' or 'inline', got {policy!r}")
        self._executor, self._owns_executor = create_executor(
            policy, workers, name="annbench-memory"
        )
        self._latency_s = latency_s
        self._fail_queries = frozenset(fail_queries)
        self._fail_writes = frozenset(fail_writes)
        self._hang_queries = frozenset(hang_queries)

        self._lock = threading.RLock()
        self._vectors: Dict[int, npt.NDArray[np.float32]] = {}
        self._matrix: Optional[npt.NDArray[np.float32]] = None
        self._matrix_keys: Optional[npt.NDArray[np.int64]] = None
        self._query_ordinal = 0
        self._hung: List["Future[Any]"] = []
        self._closed = False

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._vectors)

    def submit_write(self, key: int, vector: npt.NDArray[np.float32]) -> "Future[Any]":
        payload = np.asarray(vector, dtype=np.float32)
        return self._submit(self._write, int(key), payload)

    def submit_top_k(self, vector: npt.NDArray[np.float32], k: int) -> "Future[Sequence[int]]":
        with self._lock:
            ordinal = self._query_ordinal
            self._query_ordinal += 1
        if ordinal in self._hang_queries:
            pending: "Future[Sequence[int]]" = Future()
            with self._lock:
                self._hung.append(pending)
            return pending
        query = np.asarray(vector, dtype=np.float32)
        return self._submit(self._search, ordinal, query, int(k))

    def close(self) -> None:
        """Shut the worker pool down and cancel futures that were told to hang."""

        with self._lock:
            if self._closed:
                return
            self._closed = True
            hung, self._hung = self._hung, []
        for pending in hung:
            pending.cancel()
        if self._executor is not None and self._owns_executor:
            self._executor.shutdown(wait=True)

    def _submit(self, fn: Callable[..., Any], *args: Any) -> "Future[Any]":
        if self._closed:
            raise RuntimeError("InMemoryVectorStore is closed")
        if self._executor is not None:
            return self._executor.submit(fn, *args)
        future: "Future[Any]" = Future()
        try:
            future.set_result(fn(*args))
        except Exception as exc:
            future.set_exception(exc)
        return future

    def _write(self, key: int, vector: npt.NDArray[np.float32]) -> bool:
        if self._latency_s:
            time.sleep(self._latency_s)
        if key in self._fail_writes:
            raise SimulatedStoreError(f"injected write failure for key {key}")
        with self._lock:
            self._vectors[key] = vector
            self._matrix = None
            self._matrix_keys = None
        return True

    def _search(self, ordinal: int, query: npt.NDArray[np.float32], k: int) -> List[int]:
        if self._latency_s:
            time.sleep(self._latency_s)
        if ordinal in self._fail_queries:
            raise SimulatedStoreError(f"injected search failure for query {ordinal}")
        if k < 1:
            raise ValueError(f"k must be >= 1, got {k}")
        matrix, keys = self._snapshot()
        if keys.size == 0:
            return []
        if matrix.shape[1] != query.shape[0]:
            raise ValueError(
                f"query dimension {query.shape[0]} does not match stored dimension {matrix.shape[1]}"
            )
        deltas = matrix - query
        distances = np.einsum("ij,ij->i", deltas, deltas)
        top_k = min(k, keys.size)
        if top_k < keys.size:
            candidates = np.argpartition(distances, top_k - 1)[:top_k]
        else:
            candidates = np.arange(keys.size)
        order = np.lexsort((keys[candidates], distances[candidates]))
        return [int(keys[idx]) for idx in candidates[order]]

    def _snapshot(self) -> tuple[npt.NDArray[np.float32], npt.NDArray[np.int64]]:
        with self._lock:
            if self._matrix is None or self._matrix_keys is None:
                keys = sorted(self._vectors)
                self._matrix_keys = np.asarray(keys, dtype=np.int64)
                if keys:
                    self._matrix = np.stack([self._vectors[key] for key in keys]).astype(
                        np.float32, copy=False
                    )
                else:
                    self._matrix = np.empty((0, 0), dtype=np.float32)
            return self._matrix, self._matrix_keys
