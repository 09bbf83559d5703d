"""Synthetic ANN datasets with exact brute-force ground truth."""

from __future__ import annotations

from pathlib import Path
from typing import NamedTuple

import numpy as np
import numpy.typing as npt
from tqdm import tqdm

from ..formats import write_fvecs, write_ivecs

__all__ = ("DatasetPaths", "exact_neighbors", "make_synthetic_dataset")

DATASET_RNG_SEED = 13


class DatasetPaths(NamedTuple):
    """Locations of the three files a benchmark run consumes."""

    base: Path
    query: Path
    ground_truth: Path


def exact_neighbors(
    base: npt.NDArray[np.float32],
    queries: npt.NDArray[np.float32],
    depth: int,
    *,
    batch_size: int = 256,
    progress: bool = False,
) -> npt.NDArray[np.int32]:
    """Return the ``depth`` nearest base rows (Euclidean) for every query, best first."""

    if base.ndim != 2 or queries.ndim != 2:
        raise ValueError("base and queries must be 2 dimensional")
    if base.shape[1] != queries.shape[1]:
        raise ValueError(
            f"dimension mismatch: base has {base.shape[1]}, queries have {queries.shape[1]}"
        )
    depth = min(depth, base.shape[0])
    base_norms = np.einsum("ij,ij->i", base, base)
    result = np.empty((queries.shape[0], depth), dtype=np.int32)

    starts = range(0, queries.shape[0], batch_size)
    for start in tqdm(starts, desc="ground truth", unit="batch", disable=not progress):
        chunk = queries[start : start + batch_size]
        # ||b - q||^2 without the constant ||q||^2 term
        distances = base_norms[None, :] - 2.0 * (chunk @ base.T)
        if depth < base.shape[0]:
            candidates = np.argpartition(distances, depth - 1, axis=1)[:, :depth]
        else:
            candidates = np.tile(np.arange(base.shape[0]), (chunk.shape[0], 1))
        picked = np.take_along_axis(distances, candidates, axis=1)
        order = np.argsort(picked, axis=1, kind="stable")
        result[start : start + chunk.shape[0]] = np.take_along_axis(candidates, order, axis=1)
    return result


def make_synthetic_dataset(
    out_dir: Path,
    *,
    base_count: int = 10_000,
    query_count: int = 100,
    dimension: int = 128,
    depth: int = 100,
    seed: int = DATASET_RNG_SEED,
    progress: bool = False,
) -> DatasetPaths:
    """Write ``base.fvecs``, ``query.fvecs`` and ``groundtruth.ivecs`` into ``out_dir``."""

    if min(base_count, query_count, dimension, depth) < 1:
        raise ValueError("base_count, query_count, dimension and depth must be >= 1")
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    rng = np.random.default_rng(seed)
    base = rng.random((base_count, dimension), dtype=np.float32)
    queries = rng.random((query_count, dimension), dtype=np.float32)
    truth = exact_neighbors(base, queries, depth, progress=progress)

    paths = DatasetPaths(
        base=out_dir / "base.fvecs",
        query=out_dir / "query.fvecs",
        ground_truth=out_dir / "groundtruth.ivecs",
    )
    write_fvecs(paths.base, base)
    write_fvecs(paths.query, queries)
    write_ivecs(paths.ground_truth, truth)
    return paths
