# === NAVMAP v1 ===
# {
#   "module": "AnnBench.concurrency.__init__",
#   "purpose": "Concurrency helpers shared across AnnBench components.",
#   "sections": []
# }
# === /NAVMAP ===

"""
Concurrency helpers shared across AnnBench components.

Exposes :class:`BoundedAsyncDispatcher` (bounded fan-out with a drain
barrier), :func:`with_deadline` for per-operation timeouts, and
:func:`create_executor` used by stores that run their operations on a local
pool.
"""

from .dispatcher import BoundedAsyncDispatcher, DispatchStats, DrainHandle
from .errors import DispatchFailure, OperationFailure, OperationTimeout
from .executors import create_executor
from .timeouts import with_deadline

__all__ = [
    "BoundedAsyncDispatcher",
    "DispatchFailure",
    "DispatchStats",
    "DrainHandle",
    "OperationFailure",
    "OperationTimeout",
    "create_executor",
    "with_deadline",
]
