"""Execution models for the layer kernels."""

from __future__ import annotations

from typing import Callable, Dict

from ..core.layout import ConfigurationError
from .base import Backend, dropout_keep_mask, fill_random, init_limit
from .parallel import ParallelBackend
from .vectorized import VectorizedBackend

_BACKENDS: Dict[str, Callable[[], Backend]] = {
    "vectorized": VectorizedBackend,
    "parallel": ParallelBackend,
}


def available_backends() -> list[str]:
    return sorted(_BACKENDS)


def create_backend(backend: str | Backend = "vectorized") -> Backend:
    """Return a backend instance for ``backend`` (a name or an instance)."""

    if not isinstance(backend, str):
        return backend
    try:
        return _BACKENDS[backend]()
    except KeyError:
        available = ", ".join(available_backends())
        raise ConfigurationError(f"Unknown backend {backend!r}. Available backends: {available}") from None


__all__ = [
    "Backend",
    "ParallelBackend",
    "VectorizedBackend",
    "available_backends",
    "create_backend",
    "dropout_keep_mask",
    "fill_random",
    "init_limit",
]
