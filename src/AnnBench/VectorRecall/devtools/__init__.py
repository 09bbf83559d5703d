# === NAVMAP v1 ===
# {
#   "module": "AnnBench.VectorRecall.devtools.__init__",
#   "purpose": "Developer tooling helpers for the recall benchmark.",
#   "sections": []
# }
# === /NAVMAP ===

"""Developer tooling helpers for the recall benchmark.

The ``devtools`` package makes it possible to run the whole benchmark without a
vector database: an in-memory exact store implementing the production
``VectorStore`` protocol, and a generator for synthetic datasets with exact
ground truth in the same container format as the SIFT corpus.
"""

from .datasets import DatasetPaths, exact_neighbors, make_synthetic_dataset
from .memory_store import InMemoryVectorStore, SimulatedStoreError

__all__ = (
    "DatasetPaths",
    "InMemoryVectorStore",
    "SimulatedStoreError",
    "exact_neighbors",
    "make_synthetic_dataset",
)
