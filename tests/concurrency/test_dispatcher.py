"""Tests for the bounded asynchronous dispatcher."""

from __future__ import annotations

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, List

import pytest

from AnnBench.concurrency import (
    BoundedAsyncDispatcher,
    DispatchFailure,
    OperationFailure,
    OperationTimeout,
)


class InFlightGauge:
    """Track concurrently running operations across worker threads."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.current = 0
        self.peak = 0

    def enter(self) -> None:
        with self._lock:
            self.current += 1
            self.peak = max(self.peak, self.current)

    def leave(self) -> None:
        with self._lock:
            self.current -= 1


class ManualOperations:
    """Operations that only complete when the test releases them."""

    def __init__(self) -> None:
        self.futures: List[Future] = []
        self.issued = threading.Event()
        self._lock = threading.Lock()

    def __call__(self, index: int, item: Any) -> Future:
        future: Future = Future()
        with self._lock:
            self.futures.append(future)
        self.issued.set()
        return future


def _resolved(value: Any) -> Future:
    future: Future = Future()
    future.set_result(value)
    return future


def _failed(error: BaseException) -> Future:
    future: Future = Future()
    future.set_exception(error)
    return future


def test_in_flight_never_exceeds_budget_with_delayed_operations() -> None:
    gauge = InFlightGauge()
    budget = 4

    def slow(index: int, item: int) -> int:
        gauge.enter()
        try:
            time.sleep(0.01)
            return item
        finally:
            gauge.leave()

    with ThreadPoolExecutor(max_workers=16) as pool:
        dispatcher = BoundedAsyncDispatcher(max_in_flight=budget)
        stats = dispatcher.dispatch(
            range(40), lambda index, item: pool.submit(slow, index, item)
        ).wait(timeout=10)

    assert stats.dispatched == 40
    assert stats.succeeded == 40
    assert stats.failed == 0
    assert gauge.peak <= budget
    assert stats.peak_in_flight <= budget


def test_budget_of_one_with_externally_released_operations() -> None:
    operations = ManualOperations()
    dispatcher = BoundedAsyncDispatcher(max_in_flight=1)
    observed: List[int] = []
    result: dict = {}

    def run() -> None:
        result["handle"] = dispatcher.dispatch(range(10), operations)

    producer = threading.Thread(target=run)
    producer.start()

    for expected in range(10):
        deadline = time.monotonic() + 5
        while len(operations.futures) <= expected:
            assert time.monotonic() < deadline, "dispatch did not progress"
            time.sleep(0.001)
        time.sleep(0.005)
        # Only the newest operation may be outstanding.
        assert len(operations.futures) == expected + 1
        observed.append(dispatcher.in_flight)
        operations.futures[expected].set_result(expected)

    producer.join(timeout=5)
    stats = result["handle"].wait(timeout=5)
    assert max(observed) == 1
    assert stats.peak_in_flight == 1
    assert stats.succeeded == 10


def test_drain_empties_pending_and_restores_budget() -> None:
    operations = ManualOperations()
    dispatcher = BoundedAsyncDispatcher(max_in_flight=5)
    handle = dispatcher.dispatch(range(3), operations)

    assert dispatcher.in_flight == 3
    assert dispatcher.available_budget == 2

    releaser = threading.Timer(0.05, lambda: [f.set_result(None) for f in operations.futures])
    releaser.start()
    stats = handle.wait(timeout=5)

    assert stats.in_flight == 0
    assert dispatcher.in_flight == 0
    assert dispatcher.available_budget == 5


def test_drain_timeout_raises_when_operations_remain() -> None:
    operations = ManualOperations()
    dispatcher = BoundedAsyncDispatcher(max_in_flight=2)
    handle = dispatcher.dispatch([1], operations)

    with pytest.raises(TimeoutError):
        handle.wait(timeout=0.01)

    operations.futures[0].set_result(None)
    assert handle.wait(timeout=1).succeeded == 1


def test_factory_error_raises_dispatch_failure_and_stops_consuming() -> None:
    consumed: List[int] = []

    def items():
        for value in range(10):
            consumed.append(value)
            yield value

    def factory(index: int, item: int) -> Future:
        if index == 3:
            raise RuntimeError("boom")
        return _resolved(item)

    dispatcher = BoundedAsyncDispatcher(max_in_flight=2)
    with pytest.raises(DispatchFailure) as excinfo:
        dispatcher.dispatch(items(), factory)

    assert excinfo.value.index == 3
    assert isinstance(excinfo.value.__cause__, RuntimeError)
    assert consumed == [0, 1, 2, 3]
    assert dispatcher.available_budget == 2
    assert dispatcher.drain(timeout=1).dispatched == 3


def test_factory_returning_non_future_is_dispatch_failure() -> None:
    dispatcher = BoundedAsyncDispatcher(max_in_flight=1)
    with pytest.raises(DispatchFailure):
        dispatcher.dispatch([1], lambda index, item: item)
    assert dispatcher.available_budget == 1


def test_async_failures_go_to_sink_and_release_budget() -> None:
    failures: List[OperationFailure] = []

    def factory(index: int, item: int) -> Future:
        if item % 2:
            return _failed(ValueError(f"odd {item}"))
        return _resolved(item)

    dispatcher = BoundedAsyncDispatcher(max_in_flight=3, failure_sink=failures.append)
    stats = dispatcher.dispatch(range(6), factory).wait(timeout=1)

    assert stats.succeeded == 3
    assert stats.failed == 3
    assert sorted(failure.index for failure in failures) == [1, 3, 5]
    assert all(isinstance(failure.cause, ValueError) for failure in failures)
    assert dispatcher.available_budget == 3


def test_result_handler_runs_before_drain_returns() -> None:
    seen: List[int] = []
    lock = threading.Lock()

    def record(index: int, item: int, result: int) -> None:
        time.sleep(0.001)
        with lock:
            seen.append(result)

    with ThreadPoolExecutor(max_workers=4) as pool:
        dispatcher = BoundedAsyncDispatcher(max_in_flight=4)
        dispatcher.dispatch(
            range(20), lambda index, item: pool.submit(lambda: item * 10), on_result=record
        ).wait(timeout=5)
        assert sorted(seen) == [value * 10 for value in range(20)]


def test_result_handler_error_is_reported_as_failure() -> None:
    failures: List[OperationFailure] = []

    def record(index: int, item: int, result: int) -> None:
        if index == 1:
            raise KeyError("bad result")

    dispatcher = BoundedAsyncDispatcher(max_in_flight=2)
    stats = dispatcher.dispatch(
        range(3), lambda index, item: _resolved(item), on_result=record, on_failure=failures.append
    ).wait(timeout=1)

    assert stats.succeeded == 2
    assert stats.failed == 1
    assert failures[0].stage == "result"
    assert isinstance(failures[0].cause, KeyError)


def test_failing_sink_does_not_leak_budget() -> None:
    def sink(failure: OperationFailure) -> None:
        raise RuntimeError("sink broke")

    dispatcher = BoundedAsyncDispatcher(max_in_flight=2, failure_sink=sink)
    stats = dispatcher.dispatch(
        range(4), lambda index, item: _failed(OSError("down"))
    ).wait(timeout=1)

    assert stats.failed == 4
    assert dispatcher.available_budget == 2


def test_cancelled_operation_counts_as_failure() -> None:
    failures: List[OperationFailure] = []
    operations = ManualOperations()
    dispatcher = BoundedAsyncDispatcher(max_in_flight=2, failure_sink=failures.append)
    handle = dispatcher.dispatch([1], operations)

    operations.futures[0].cancel()
    stats = handle.wait(timeout=1)

    assert stats.failed == 1
    assert "cancelled" in str(failures[0])


def test_operation_timeout_releases_hung_operations() -> None:
    failures: List[OperationFailure] = []
    operations = ManualOperations()
    dispatcher = BoundedAsyncDispatcher(
        max_in_flight=2, operation_timeout_s=0.05, failure_sink=failures.append
    )

    stats = dispatcher.dispatch(range(4), operations).wait(timeout=5)

    assert stats.failed == 4
    assert dispatcher.available_budget == 2
    assert all(isinstance(failure.cause, OperationTimeout) for failure in failures)


def test_invalid_budget_rejected() -> None:
    with pytest.raises(ValueError):
        BoundedAsyncDispatcher(max_in_flight=0)
