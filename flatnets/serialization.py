"""Weights file format: little-endian int32 count then float32 values."""

from __future__ import annotations

from pathlib import Path

import numpy as np

from .core.types import Array

_COUNT = np.dtype("<i4")
_VALUE = np.dtype("<f4")


def serialize(parameters: Array) -> bytes:
    values = np.ascontiguousarray(np.asarray(parameters).reshape(-1), dtype=_VALUE)
    header = np.array([values.size], dtype=_COUNT)
    return header.tobytes() + values.tobytes()


def deserialize(payload: bytes, expected_count: int | None = None) -> Array:
    """Decode ``payload``; optionally check the stored count against ``expected_count``."""

    if len(payload) < _COUNT.itemsize:
        raise ValueError("weights payload is shorter than its length prefix")
    count = int(np.frombuffer(payload, dtype=_COUNT, count=1)[0])
    if count < 0:
        raise ValueError(f"weights payload declares a negative count ({count})")
    body = len(payload) - _COUNT.itemsize
    if body != count * _VALUE.itemsize:
        raise ValueError(f"weights payload declares {count} values but holds {body} bytes")
    if expected_count is not None and count != expected_count:
        raise ValueError(f"weights payload holds {count} values, the network has {expected_count}")
    values = np.frombuffer(payload, dtype=_VALUE, count=count, offset=_COUNT.itemsize)
    return values.astype(np.float32)


def save_parameters(path: str | Path, parameters: Array) -> str:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(serialize(parameters))
    return str(path)


def load_parameters(path: str | Path, expected_count: int | None = None) -> Array:
    return deserialize(Path(path).read_bytes(), expected_count)


__all__ = ["serialize", "deserialize", "save_parameters", "load_parameters"]
