"""Failure types raised or reported by the bounded dispatcher."""

from __future__ import annotations

from typing import Optional

__all__ = [
    "DispatchFailure",
    "OperationFailure",
    "OperationTimeout",
]


class DispatchFailure(RuntimeError):
    """Raised when the operation factory fails synchronously for an item.

    The budget unit held for the item is released before this propagates and
    the dispatcher stops consuming its input sequence.
    """

    def __init__(self, message: str, *, index: int) -> None:
        super().__init__(message)
        self.index = index


class OperationFailure(RuntimeError):
    """Describes an asynchronous operation that resolved with an error.

    Instances are handed to the failure sink rather than raised; ``cause``
    carries the original exception reported by the pending handle.
    """

    def __init__(
        self,
        message: str,
        *,
        index: int,
        cause: Optional[BaseException] = None,
        stage: str = "operation",
    ) -> None:
        super().__init__(message)
        self.index = index
        self.cause = cause
        self.stage = stage


class OperationTimeout(TimeoutError):
    """Resolution error for handles that exceeded the per-operation deadline."""

    def __init__(self, message: str, *, timeout_s: float) -> None:
        super().__init__(message)
        self.timeout_s = timeout_s
