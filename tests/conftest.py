"""
Pytest Configuration

Puts ``src`` on ``sys.path`` so the suite runs against the working tree
without an editable install, and provides small dataset fixtures shared by the
recall benchmark tests.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Iterator, NamedTuple

import pytest

ROOT = Path(__file__).resolve().parent.parent
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from AnnBench.VectorRecall.formats import write_fvecs, write_ivecs  # noqa: E402


@pytest.fixture(autouse=True)
def reset_annbench_logger() -> Iterator[None]:
    """Drop handlers installed by ``setup_logging`` so tests do not leak streams."""

    yield
    logger = logging.getLogger("AnnBench")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True


class TinyDataset(NamedTuple):
    directory: Path
    base: Path
    query: Path
    ground_truth: Path


@pytest.fixture
def tiny_dataset(tmp_path: Path) -> TinyDataset:
    """Three 2-d base vectors, one query ``[1, 0]`` whose nearest neighbour is id 0."""

    directory = tmp_path / "tiny"
    directory.mkdir()
    dataset = TinyDataset(
        directory=directory,
        base=directory / "base.fvecs",
        query=directory / "query.fvecs",
        ground_truth=directory / "groundtruth.ivecs",
    )
    write_fvecs(dataset.base, [[1, 0], [0, 1], [1, 1]])
    write_fvecs(dataset.query, [[1, 0]])
    write_ivecs(dataset.ground_truth, [[0]])
    return dataset
