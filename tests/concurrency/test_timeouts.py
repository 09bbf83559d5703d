from __future__ import annotations

from concurrent.futures import Future

import pytest

from AnnBench.concurrency import OperationTimeout, with_deadline


def test_source_result_wins_before_deadline() -> None:
    source: Future = Future()
    proxy = with_deadline(source, 5.0)
    source.set_result("ok")
    assert proxy.result(timeout=1) == "ok"


def test_source_exception_is_forwarded() -> None:
    source: Future = Future()
    proxy = with_deadline(source, 5.0)
    source.set_exception(ValueError("nope"))
    with pytest.raises(ValueError):
        proxy.result(timeout=1)


def test_deadline_expires_and_late_result_is_ignored() -> None:
    source: Future = Future()
    proxy = with_deadline(source, 0.02)

    error = proxy.exception(timeout=2)
    assert isinstance(error, OperationTimeout)
    assert error.timeout_s == 0.02

    source.set_result("late")
    assert isinstance(proxy.exception(), OperationTimeout)


def test_cancelling_source_cancels_proxy() -> None:
    source: Future = Future()
    proxy = with_deadline(source, 5.0)
    source.cancel()
    assert proxy.cancelled()


@pytest.mark.parametrize("timeout_s", [0, -1.0])
def test_non_positive_timeout_rejected(timeout_s: float) -> None:
    with pytest.raises(ValueError):
        with_deadline(Future(), timeout_s)
