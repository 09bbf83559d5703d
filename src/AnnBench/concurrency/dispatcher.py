# === NAVMAP v1 ===
# {
#   "module": "AnnBench.concurrency.dispatcher",
#   "purpose": "Bounded fan-out of asynchronous operations with a drain barrier",
#   "sections": [
#     {
#       "id": "dispatchstats",
#       "name": "DispatchStats",
#       "anchor": "class-dispatchstats",
#       "kind": "class"
#     },
#     {
#       "id": "drainhandle",
#       "name": "DrainHandle",
#       "anchor": "class-drainhandle",
#       "kind": "class"
#     },
#     {
#       "id": "boundedasyncdispatcher",
#       "name": "BoundedAsyncDispatcher",
#       "anchor": "class-boundedasyncdispatcher",
#       "kind": "class"
#     }
#   ]
# }
# === /NAVMAP ===

"""Bounded fan-out of asynchronous operations.

The dispatcher turns a lazy sequence of items into one pending operation per
item while never holding more than ``max_in_flight`` operations at once:

    dispatcher = BoundedAsyncDispatcher(max_in_flight=100)
    drain = dispatcher.dispatch(vectors, lambda key, vec: store.submit_write(key, vec))
    stats = drain.wait()

**Backpressure:** every item acquires one unit from a
``threading.BoundedSemaphore`` before its operation is created. When the
budget is exhausted the dispatching thread parks on the semaphore until a
completion continuation releases a unit.

**Completion:** operation handles are ``concurrent.futures.Future`` objects.
The continuation attached to each handle runs the optional result handler,
routes failures to the failure sink, removes the handle from the pending set
and releases its budget unit. Membership in the pending set is what makes the
release happen exactly once.

**Drain barrier:** :meth:`DrainHandle.wait` blocks until the pending set is
empty. Operations dispatched after the call begins are waited on as well, so
callers must stop feeding items before treating a returned wait as full drain.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from concurrent.futures import CancelledError, Future
from dataclasses import dataclass
from functools import partial
from typing import Any, Generic, Optional, Set, TypeVar

from .errors import DispatchFailure, OperationFailure
from .timeouts import with_deadline

__all__ = [
    "BoundedAsyncDispatcher",
    "DispatchStats",
    "DrainHandle",
    "FailureSink",
    "OperationFactory",
    "ResultHandler",
]

logger = logging.getLogger(__name__)

T = TypeVar("T")

OperationFactory = Callable[[int, T], "Future[Any]"]
ResultHandler = Callable[[int, T, Any], None]
FailureSink = Callable[[OperationFailure], None]


@dataclass(frozen=True)
class DispatchStats:
    """Counters describing the operations issued by a dispatcher.

    Attributes:
        dispatched: Operations created by the factory.
        succeeded: Operations that resolved with a result (and whose result
            handler, if any, completed without raising).
        failed: Operations reported to the failure sink.
        in_flight: Operations still pending when the snapshot was taken.
        peak_in_flight: Highest number of simultaneously pending operations.
    """

    dispatched: int
    succeeded: int
    failed: int
    in_flight: int
    peak_in_flight: int

    @property
    def completed(self) -> int:
        return self.succeeded + self.failed


class DrainHandle:
    """Awaitable returned by :meth:`BoundedAsyncDispatcher.dispatch`."""

    def __init__(self, dispatcher: "BoundedAsyncDispatcher[Any]") -> None:
        self._dispatcher = dispatcher

    def wait(self, timeout: Optional[float] = None) -> DispatchStats:
        """Block until no operation is outstanding and return the counters.

        Raises:
            TimeoutError: If ``timeout`` elapses while operations are pending.
        """

        return self._dispatcher.drain(timeout=timeout)


class BoundedAsyncDispatcher(Generic[T]):
    """Dispatch one asynchronous operation per item under a concurrency cap.

    Args:
        max_in_flight: Maximum number of pending operations (the budget).
        operation_timeout_s: Optional per-operation deadline. Handles that do
            not resolve in time are reported as failures with
            :class:`~AnnBench.concurrency.errors.OperationTimeout` and release
            their budget unit.
        failure_sink: Default receiver for :class:`OperationFailure` reports.
        name: Label used in log messages.

    Examples:
        >>> from concurrent.futures import Future
        >>> def ready(index, item):
        ...     future = Future()
        ...     future.set_result(item * 2)
        ...     return future
        >>> seen = []
        >>> dispatcher = BoundedAsyncDispatcher(max_in_flight=2)
        >>> stats = dispatcher.dispatch(
        ...     [1, 2, 3], ready, on_result=lambda i, item, res: seen.append(res)
        ... ).wait()
        >>> (stats.succeeded, sorted(seen))
        (3, [2, 4, 6])
    """

    def __init__(
        self,
        max_in_flight: int = 100,
        *,
        operation_timeout_s: Optional[float] = None,
        failure_sink: Optional[FailureSink] = None,
        name: str = "dispatch",
    ) -> None:
        if max_in_flight < 1:
            raise ValueError(f"max_in_flight must be >= 1, got {max_in_flight}")
        self._max_in_flight = max_in_flight
        self._timeout_s = operation_timeout_s if operation_timeout_s else None
        self._failure_sink = failure_sink
        self._name = name

        self._budget = threading.BoundedSemaphore(max_in_flight)
        self._cond = threading.Condition()
        self._pending: Set["Future[Any]"] = set()
        self._dispatched = 0
        self._succeeded = 0
        self._failed = 0
        self._peak = 0

        logger.debug(
            f"BoundedAsyncDispatcher[{name}] initialized: max_in_flight={max_in_flight}, "
            f"operation_timeout_s={self._timeout_s}"
        )

    @property
    def max_in_flight(self) -> int:
        return self._max_in_flight

    @property
    def in_flight(self) -> int:
        """Number of registered operations that have not reached a terminal state."""

        with self._cond:
            return len(self._pending)

    @property
    def available_budget(self) -> int:
        """Budget units currently available for new dispatches."""

        return getattr(self._budget, "_value", 0)

    def stats(self) -> DispatchStats:
        with self._cond:
            return DispatchStats(
                dispatched=self._dispatched,
                succeeded=self._succeeded,
                failed=self._failed,
                in_flight=len(self._pending),
                peak_in_flight=self._peak,
            )

    def dispatch(
        self,
        items: Iterable[T],
        factory: OperationFactory,
        *,
        on_result: Optional[ResultHandler] = None,
        on_failure: Optional[FailureSink] = None,
    ) -> DrainHandle:
        """Issue ``factory(index, item)`` for every item in order.

        The call returns once the input is exhausted; operations may still be
        pending. Use the returned handle to wait for them.

        Args:
            items: Lazy sequence of items; consumed once, on the calling thread.
            factory: Creates the pending operation for ``(index, item)``.
            on_result: Invoked with ``(index, item, result)`` for successful
                operations before their budget unit is released.
            on_failure: Overrides the dispatcher's failure sink for this call.

        Returns:
            DrainHandle whose ``wait`` blocks until nothing is outstanding.

        Raises:
            DispatchFailure: If ``factory`` raises or returns something other
                than a ``Future``. No further items are consumed.
        """

        sink = on_failure if on_failure is not None else self._failure_sink
        for index, item in enumerate(items):
            self._budget.acquire()
            try:
                handle = factory(index, item)
                if not isinstance(handle, Future):
                    raise TypeError(
                        f"operation factory returned {type(handle).__name__}, expected Future"
                    )
            except Exception as exc:
                self._budget.release()
                logger.error(
                    f"[{self._name}] operation factory failed for item {index}: {exc}"
                )
                raise DispatchFailure(
                    f"Operation factory failed for item {index}: {exc}", index=index
                ) from exc

            if self._timeout_s is not None:
                handle = with_deadline(handle, self._timeout_s)

            with self._cond:
                self._pending.add(handle)
                self._dispatched += 1
                if len(self._pending) > self._peak:
                    self._peak = len(self._pending)

            handle.add_done_callback(partial(self._complete, index, item, on_result, sink))

        return DrainHandle(self)

    def drain(self, timeout: Optional[float] = None) -> DispatchStats:
        """Block until the pending set is empty.

        Raises:
            TimeoutError: If ``timeout`` elapses first.
        """

        with self._cond:
            drained = self._cond.wait_for(lambda: not self._pending, timeout=timeout)
            if not drained:
                raise TimeoutError(
                    f"[{self._name}] {len(self._pending)} operations still pending "
                    f"after {timeout}s"
                )
        return self.stats()

    def _complete(
        self,
        index: int,
        item: T,
        on_result: Optional[ResultHandler],
        sink: Optional[FailureSink],
        handle: "Future[Any]",
    ) -> None:
        failure: Optional[OperationFailure] = None
        try:
            if handle.cancelled():
                failure = OperationFailure(
                    f"Operation {index} was cancelled", index=index, cause=CancelledError()
                )
            else:
                error = handle.exception()
                if error is not None:
                    failure = OperationFailure(
                        f"Operation {index} failed: {error}", index=index, cause=error
                    )
                elif on_result is not None:
                    try:
                        on_result(index, item, handle.result())
                    except Exception as exc:
                        failure = OperationFailure(
                            f"Result handler failed for operation {index}: {exc}",
                            index=index,
                            cause=exc,
                            stage="result",
                        )
            if failure is not None:
                self._report(failure, sink)
        finally:
            with self._cond:
                registered = handle in self._pending
                if registered:
                    self._pending.discard(handle)
                    if failure is None:
                        self._succeeded += 1
                    else:
                        self._failed += 1
                    if not self._pending:
                        self._cond.notify_all()
            if registered:
                self._budget.release()

    def _report(self, failure: OperationFailure, sink: Optional[FailureSink]) -> None:
        logger.warning(f"[{self._name}] {failure}")
        if sink is None:
            return
        try:
            sink(failure)
        except Exception:
            logger.exception(
                f"[{self._name}] failure sink raised while handling operation {failure.index}"
            )
