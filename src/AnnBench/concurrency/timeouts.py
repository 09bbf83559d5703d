"""Deadline wrappers for pending operation handles.

A remote call that never resolves would otherwise hold its dispatcher budget
unit forever. :func:`with_deadline` returns a proxy future that mirrors the
source handle but resolves with :class:`OperationTimeout` once the deadline
passes, so the dispatcher can release capacity without waiting on the remote
side.
"""

from __future__ import annotations

import threading
from concurrent.futures import Future
from typing import Any

from .errors import OperationTimeout

__all__ = ["with_deadline"]


def with_deadline(source: "Future[Any]", timeout_s: float) -> "Future[Any]":
    """Return a proxy for ``source`` that fails after ``timeout_s`` seconds.

    The proxy resolves exactly once: with the source outcome when it arrives
    first, otherwise with :class:`OperationTimeout`. A late source outcome is
    discarded. Cancelling the source cancels the proxy.
    """

    if timeout_s <= 0:
        raise ValueError(f"timeout_s must be positive, got {timeout_s}")

    proxy: "Future[Any]" = Future()
    lock = threading.Lock()

    def _expire() -> None:
        with lock:
            if proxy.done():
                return
            proxy.set_exception(
                OperationTimeout(
                    f"Operation exceeded {timeout_s}s deadline", timeout_s=timeout_s
                )
            )

    timer = threading.Timer(timeout_s, _expire)
    timer.daemon = True

    def _transfer(done: "Future[Any]") -> None:
        timer.cancel()
        with lock:
            if proxy.done():
                return
            if done.cancelled():
                proxy.cancel()
                return
            error = done.exception()
            if error is not None:
                proxy.set_exception(error)
            else:
                proxy.set_result(done.result())

    timer.start()
    source.add_done_callback(_transfer)
    return proxy
