# === NAVMAP v1 ===
# {
#   "module": "AnnBench.VectorRecall.formats",
#   "purpose": "Streaming readers and writers for length-prefixed vector containers",
#   "sections": [
#     {
#       "id": "recordstream",
#       "name": "_RecordStream",
#       "anchor": "class-recordstream",
#       "kind": "class"
#     },
#     {
#       "id": "floatvectorreader",
#       "name": "FloatVectorReader",
#       "anchor": "class-floatvectorreader",
#       "kind": "class"
#     },
#     {
#       "id": "groundtruthreader",
#       "name": "GroundTruthReader",
#       "anchor": "class-groundtruthreader",
#       "kind": "class"
#     },
#     {
#       "id": "write-fvecs",
#       "name": "write_fvecs",
#       "anchor": "function-write-fvecs",
#       "kind": "function"
#     },
#     {
#       "id": "write-ivecs",
#       "name": "write_ivecs",
#       "anchor": "function-write-ivecs",
#       "kind": "function"
#     }
#   ]
# }
# === /NAVMAP ===

"""Streaming readers and writers for ``.fvecs`` / ``.ivecs`` containers.

Both containers repeat the record layout::

    count   : uint32, little-endian
    payload : count x 4-byte little-endian value
              (float32 for vectors, int32 for neighbour identifiers)

Readers decode one record per iteration step so arbitrarily large corpora are
never materialised in memory. Iteration is forward-only and cannot be
restarted. A record with fewer bytes than its declared count (or a trailing
partial count field) raises :class:`MalformedRecord` and ends the stream.
"""

from __future__ import annotations

import struct
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import BinaryIO, FrozenSet, Generic, Optional, TypeVar, Union

import numpy as np
import numpy.typing as npt

from .errors import MalformedRecord

__all__ = (
    "FloatVectorReader",
    "GroundTruthReader",
    "PathOrStream",
    "Vector",
    "write_fvecs",
    "write_ivecs",
)

PathOrStream = Union[str, Path, BinaryIO]
Vector = npt.NDArray[np.float32]
""" A decoded record: read-only, 1 dimensional ``float32`` array """

_COUNT = struct.Struct("<I")
_VALUE_SIZE = 4
_READ_CHUNK = 1 << 20
_FLOAT_DTYPE = np.dtype("<f4")
_INT_DTYPE = np.dtype("<i4")

R = TypeVar("R")


class _RecordStream(Generic[R]):
    """Shared framing logic for the vector and ground-truth readers."""

    def __init__(self, source: PathOrStream) -> None:
        if isinstance(source, (str, Path)):
            self._name = str(source)
            self._stream: BinaryIO = open(source, "rb")
            self._owns_stream = True
        else:
            self._name = getattr(source, "name", repr(source))
            self._stream = source
            self._owns_stream = False
        self._records = 0
        self._finished = False

    @property
    def records_read(self) -> int:
        """Number of records decoded so far."""

        return self._records

    def __iter__(self) -> Iterator[R]:
        return self

    def __next__(self) -> R:
        if self._finished:
            raise StopIteration
        try:
            payload = self._read_record()
        except MalformedRecord:
            self.close()
            raise
        if payload is None:
            self.close()
            raise StopIteration
        record = self._decode(payload)
        self._records += 1
        return record

    def __enter__(self) -> "_RecordStream[R]":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        """Stop iteration and close the underlying file when this reader opened it."""

        self._finished = True
        if self._owns_stream and not self._stream.closed:
            self._stream.close()

    def _read_record(self) -> Optional[bytes]:
        header = self._stream.read(_COUNT.size)
        if not header:
            return None
        if len(header) < _COUNT.size:
            raise MalformedRecord(
                f"{self._name}: record {self._records} has a truncated count field "
                f"({len(header)} of {_COUNT.size} bytes)",
                record_index=self._records,
                source=self._name,
            )
        (count,) = _COUNT.unpack(header)
        expected = count * _VALUE_SIZE
        payload = self._read_payload(expected)
        if len(payload) < expected:
            raise MalformedRecord(
                f"{self._name}: record {self._records} declares {count} values but only "
                f"{len(payload)} of {expected} payload bytes remain",
                record_index=self._records,
                source=self._name,
            )
        return payload

    def _read_payload(self, expected: int) -> bytes:
        # A corrupt count must not allocate its full declared size up front.
        if expected <= _READ_CHUNK:
            return self._stream.read(expected)
        chunks = bytearray()
        while len(chunks) < expected:
            chunk = self._stream.read(min(_READ_CHUNK, expected - len(chunks)))
            if not chunk:
                break
            chunks += chunk
        return bytes(chunks)

    def _decode(self, payload: bytes) -> R:  # pragma: no cover - abstract
        raise NotImplementedError


class FloatVectorReader(_RecordStream[Vector]):
    """Lazily decode an ``.fvecs`` stream into ``float32`` vectors.

    Args:
        source: Path to the container or an open binary stream.
        expected_dimension: Optional dimension every record must declare;
            a mismatch is treated as an inconsistent record.

    Examples:
        >>> import io
        >>> raw = io.BytesIO(b"\\x02\\x00\\x00\\x00" + np.array([1, 0], "<f4").tobytes())
        >>> [v.tolist() for v in FloatVectorReader(raw)]
        [[1.0, 0.0]]
    """

    def __init__(self, source: PathOrStream, *, expected_dimension: Optional[int] = None) -> None:
        super().__init__(source)
        self._expected_dimension = expected_dimension

    def _decode(self, payload: bytes) -> Vector:
        vector = np.frombuffer(payload, dtype=_FLOAT_DTYPE).astype(np.float32, copy=False)
        if self._expected_dimension is not None and vector.shape[0] != self._expected_dimension:
            error = MalformedRecord(
                f"{self._name}: record {self._records} has dimension {vector.shape[0]}, "
                f"expected {self._expected_dimension}",
                record_index=self._records,
                source=self._name,
            )
            self.close()
            raise error
        vector.flags.writeable = False
        return vector


class GroundTruthReader(_RecordStream[FrozenSet[int]]):
    """Lazily decode an ``.ivecs`` stream into neighbour-identifier sets.

    Args:
        source: Path to the container or an open binary stream.
        depth: Keep only the first ``depth`` identifiers of every record
            (the true top-``depth`` neighbours). ``None`` keeps all of them.
    """

    def __init__(self, source: PathOrStream, *, depth: Optional[int] = None) -> None:
        if depth is not None and depth < 1:
            raise ValueError(f"depth must be >= 1, got {depth}")
        super().__init__(source)
        self._depth = depth

    def _decode(self, payload: bytes) -> FrozenSet[int]:
        ids = np.frombuffer(payload, dtype=_INT_DTYPE)
        if self._depth is not None:
            ids = ids[: self._depth]
        return frozenset(int(value) for value in ids)


def write_fvecs(target: PathOrStream, vectors: Iterable[npt.ArrayLike]) -> int:
    """Write ``vectors`` to ``target`` in ``.fvecs`` layout and return the record count."""

    return _write_records(target, vectors, _FLOAT_DTYPE)


def write_ivecs(target: PathOrStream, rows: Iterable[npt.ArrayLike]) -> int:
    """Write integer ``rows`` to ``target`` in ``.ivecs`` layout and return the record count."""

    return _write_records(target, rows, _INT_DTYPE)


def _write_records(target: PathOrStream, rows: Iterable[npt.ArrayLike], dtype: np.dtype) -> int:
    if isinstance(target, (str, Path)):
        with open(target, "wb") as handle:
            return _write_records(handle, rows, dtype)
    written = 0
    for row in rows:
        values = np.asarray(row).astype(dtype, copy=False).reshape(-1)
        target.write(_COUNT.pack(values.shape[0]))
        target.write(values.tobytes())
        written += 1
    return written
