"""Contract between the benchmark orchestrator and the vector store under test.

The orchestrator only ever talks to a store through :class:`VectorStore`.
Implementations must:

- return a ``concurrent.futures.Future`` from both submit methods without
  blocking on the remote call;
- be safe to call from one dispatching thread while earlier futures complete
  on other threads;
- eventually resolve every future, with a result or an exception. A future that
  never resolves pins a dispatcher budget unit unless a per-operation timeout
  is configured.

``CqlVectorStore`` is the production implementation (Cassandra / DataStax
vector search); ``devtools.InMemoryVectorStore`` is an exact brute-force
stand-in used by tests and offline runs.
"""

from __future__ import annotations

from collections.abc import Sequence
from concurrent.futures import Future
from typing import Any, Protocol

import numpy as np
import numpy.typing as npt

__all__ = ("VectorStore",)


class VectorStore(Protocol):
    """Protocol describing the asynchronous write / top-K search surface."""

    def submit_write(self, key: int, vector: npt.NDArray[np.float32]) -> "Future[Any]":
        """Store ``vector`` under integer ``key``.

        Returns:
            Future resolving with an implementation-defined acknowledgement.
        """

    def submit_top_k(self, vector: npt.NDArray[np.float32], k: int) -> "Future[Sequence[int]]":
        """Search the ``k`` nearest stored vectors to ``vector``.

        Returns:
            Future resolving with the keys of the nearest vectors, best first.
        """

    def close(self) -> None:
        """Release connections or worker pools held by the store."""
