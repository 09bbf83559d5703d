"""Executor factory utilities used by the benchmark stores."""

from __future__ import annotations

from concurrent import futures
from typing import Optional, Tuple

Executor = futures.Executor


def create_executor(
    policy: str, workers: int, *, name: str = "annbench-store"
) -> Tuple[Optional[Executor], bool]:
    """
    Return an executor configured for the given policy.

    Args:
        policy: Execution policy; ``"inline"`` runs work on the calling thread,
            anything else selects a thread pool suitable for IO-bound work.
        workers: Desired concurrency level.
        name: Thread name prefix for the pool.

    Returns:
        Tuple of (executor, needs_shutdown). Caller is responsible for shutting
        down the returned executor when ``needs_shutdown`` is ``True``. A
        ``None`` executor means work should run inline on the calling thread.
    """
    normalized = (policy or "io").lower()
    if normalized == "inline":
        return None, False
    return futures.ThreadPoolExecutor(max_workers=max(1, workers), thread_name_prefix=name), True
