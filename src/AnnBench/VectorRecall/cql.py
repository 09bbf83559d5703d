"""
Cassandra / DataStax vector search adapter.

``CqlVectorStore`` issues prepared ``INSERT`` and ``ORDER BY ... ANN OF``
statements with ``Session.execute_async`` and bridges the driver's
``ResponseFuture`` callbacks into ``concurrent.futures.Future`` handles the
dispatcher understands. The driver is an optional dependency
(``pip install annbench[cql]``) and is imported only when a session is
actually opened, so the rest of the package works without it.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from concurrent.futures import Future
from typing import Any, List, Optional, Tuple

import numpy as np
import numpy.typing as npt
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .config import CqlCfg
from .errors import ConfigurationError
from .logging import log_event

__all__ = ("CqlVectorStore", "connect_session", "provision_schema", "schema_statements")

logger = logging.getLogger(__name__)


def schema_statements(settings: CqlCfg, dimension: int) -> List[str]:
    """Return the DDL needed before a run, in execution order."""

    if dimension < 1:
        raise ValueError(f"dimension must be >= 1, got {dimension}")
    table = f"{settings.keyspace}.{settings.table}"
    statements = [
        (
            f"CREATE KEYSPACE IF NOT EXISTS {settings.keyspace} WITH replication = "
            f"{{'class': 'SimpleStrategy', 'replication_factor': {settings.replication_factor}}}"
        ),
        f"CREATE TABLE IF NOT EXISTS {table} (key int PRIMARY KEY, val vector<float, {dimension}>)",
        f"CREATE CUSTOM INDEX IF NOT EXISTS ON {table}(val) USING 'StorageAttachedIndex'",
    ]
    if settings.truncate:
        statements.append(f"TRUNCATE {table}")
    return statements


def provision_schema(session: Any, settings: CqlCfg, dimension: int) -> None:
    """Create keyspace, table and vector index, truncating the table when configured."""

    for statement in schema_statements(settings, dimension):
        logger.debug(f"Executing schema statement: {statement}")
        session.execute(statement, timeout=settings.request_timeout_s)
    log_event(
        logger,
        "info",
        "CQL schema ready",
        keyspace=settings.keyspace,
        table=settings.table,
        dimension=dimension,
        truncated=settings.truncate,
    )


def connect_session(
    settings: CqlCfg,
    *,
    cluster_factory: Optional[Callable[..., Any]] = None,
    retry_on: Optional[Tuple[type[BaseException], ...]] = None,
) -> Tuple[Any, Any]:
    """Open a cluster connection and return ``(cluster, session)``.

    Connection attempts are retried with exponential backoff up to
    ``settings.connect_retries`` times.

    Args:
        settings: Connection settings.
        cluster_factory: Callable building a cluster object; defaults to
            ``cassandra.cluster.Cluster``.
        retry_on: Exception types worth retrying; defaults to the driver's
            ``NoHostAvailable``.

    Raises:
        ConfigurationError: If the driver is not installed or cannot load, or
            if every connection attempt failed.
    """

    if cluster_factory is None or retry_on is None:
        try:
            from cassandra.cluster import Cluster, NoHostAvailable
        except Exception as exc:
            raise ConfigurationError(
                "The cql store requires cassandra-driver; install annbench[cql]"
            ) from exc
        cluster_factory = cluster_factory or Cluster
        retry_on = retry_on or (NoHostAvailable,)

    cluster = cluster_factory(contact_points=settings.hosts, port=settings.port)
    retrying = Retrying(
        stop=stop_after_attempt(settings.connect_retries),
        wait=wait_exponential(multiplier=0.5, max=10),
        retry=retry_if_exception_type(retry_on),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    try:
        session = retrying(cluster.connect)
    except retry_on as exc:
        cluster.shutdown()
        raise ConfigurationError(
            f"Could not connect to CQL cluster at {', '.join(settings.hosts)}:{settings.port} "
            f"after {settings.connect_retries} attempt(s): {exc}"
        ) from exc
    except BaseException:
        cluster.shutdown()
        raise
    log_event(logger, "info", "Connected to CQL cluster", hosts=settings.hosts, port=settings.port)
    return cluster, session


def _bridge(response_future: Any, transform: Callable[[Any], Any]) -> "Future[Any]":
    """Resolve a concurrent future from a driver ``ResponseFuture``."""

    future: "Future[Any]" = Future()
    future.set_running_or_notify_cancel()

    def _on_rows(rows: Any) -> None:
        try:
            future.set_result(transform(rows))
        except Exception as exc:
            future.set_exception(exc)

    def _on_error(exc: BaseException) -> None:
        future.set_exception(exc)

    response_future.add_callbacks(callback=_on_rows, errback=_on_error)
    return future


def _row_keys(rows: Any) -> List[int]:
    return [int(row[0]) for row in rows]


class CqlVectorStore:
    """:class:`~AnnBench.VectorRecall.interfaces.VectorStore` over a CQL session.

    Args:
        session: Connected driver session (or a compatible fake).
        settings: Keyspace and table names.
        cluster: Cluster owning ``session``; shut down by :meth:`close` when
            given.
    """

    def __init__(self, session: Any, settings: CqlCfg, *, cluster: Any = None) -> None:
        self._session = session
        self._settings = settings
        self._cluster = cluster
        table = f"{settings.keyspace}.{settings.table}"
        self._insert = session.prepare(f"INSERT INTO {table} (key, val) VALUES (?, ?)")
        self._select = session.prepare(f"SELECT key FROM {table} ORDER BY val ANN OF ? LIMIT ?")
        self._closed = False

    @classmethod
    def connect(
        cls,
        settings: CqlCfg,
        *,
        dimension: int,
        provision: bool = True,
        cluster_factory: Optional[Callable[..., Any]] = None,
        retry_on: Optional[Tuple[type[BaseException], ...]] = None,
    ) -> "CqlVectorStore":
        """Connect, optionally provision the schema, and return an owning store."""

        cluster, session = connect_session(
            settings, cluster_factory=cluster_factory, retry_on=retry_on
        )
        try:
            if provision:
                provision_schema(session, settings, dimension)
            return cls(session, settings, cluster=cluster)
        except BaseException:
            cluster.shutdown()
            raise

    def submit_write(self, key: int, vector: npt.NDArray[np.float32]) -> "Future[Any]":
        params = (int(key), np.asarray(vector, dtype=np.float32).tolist())
        response = self._session.execute_async(
            self._insert, params, timeout=self._settings.request_timeout_s
        )
        return _bridge(response, lambda _rows: True)

    def submit_top_k(self, vector: npt.NDArray[np.float32], k: int) -> "Future[Sequence[int]]":
        if k < 1:
            raise ValueError(f"k must be >= 1, got {k}")
        params = (np.asarray(vector, dtype=np.float32).tolist(), int(k))
        response = self._session.execute_async(
            self._select, params, timeout=self._settings.request_timeout_s
        )
        return _bridge(response, _row_keys)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._cluster is not None:
            self._cluster.shutdown()
            log_event(logger, "info", "CQL cluster shut down", table=self._settings.table)
