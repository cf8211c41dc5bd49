"""Backend contract shared by the execution models."""

from __future__ import annotations

import math
from typing import Protocol

import numpy as np

from ..core.buffers import DTYPE, BufferSet
from ..core.layers import Convolution, Dense, Dropout, LayerDescriptor, Softmax
from ..core.types import Array


class Backend(Protocol):
    """Forward and backward kernels for every layer kind.

    ``forward`` reads the layer's input slice and writes its output slice for
    the active samples of ``buffers``.  ``backward`` reads the next-layer error
    slice, adds into the current-layer error slice and overwrites the layer's
    per-sample gradient slice.  ``keep`` is the dropout mask and is ignored by
    other layer kinds.
    """

    name: str

    def forward(self, layer: LayerDescriptor, buffers: BufferSet, keep: Array | None = None) -> None:
        ...

    def backward(self, layer: LayerDescriptor, buffers: BufferSet, keep: Array | None = None) -> None:
        ...


def init_limit(layer: LayerDescriptor) -> float:
    """Half-width of the uniform initialisation range for ``layer``."""

    match layer:
        case Convolution():
            return math.sqrt(2.0 / layer.parameter_count)
        case Dense() | Softmax():
            return math.sqrt(6.0 / (layer.num_inputs + layer.num_outputs))
    return 0.0


def fill_random(layer: LayerDescriptor, parameters: Array, rng: np.random.Generator) -> None:
    """Fill ``layer``'s parameter slice uniformly in ``[-limit, limit)``."""

    if layer.parameter_count == 0:
        return
    limit = init_limit(layer)
    start = layer.parameter_offset
    stop = start + layer.parameter_count
    parameters[start:stop] = rng.uniform(-limit, limit, size=layer.parameter_count).astype(DTYPE)


def dropout_keep_mask(layer: Dropout, rng: np.random.Generator, training: bool) -> Array:
    """Draw the per-unit keep mask shared by every sample of one forward call.

    Outside training the rate is treated as zero, so every unit is kept and no
    random numbers are consumed.
    """

    if not training or layer.rate <= 0.0:
        return np.ones(layer.num_outputs, dtype=np.bool_)
    return rng.random(layer.num_outputs) >= layer.rate


__all__ = ["Backend", "init_limit", "fill_random", "dropout_keep_mask"]
