"""Loss registry writing the final layer's error slice."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, Iterable

import numpy as np

from ..core.buffers import BufferSet
from ..core.layout import ConfigurationError
from ..core.types import Array

LossFn = Callable[[Array, Array], tuple[Array, Array]]

CE_EPSILON = 1e-15


@dataclass(frozen=True)
class Loss:
    """Loss wrapper.

    ``fn`` maps ``(actual, expected)`` for the active samples to
    ``(per_sample_loss, error)``.  Calling the loss clears the whole error
    buffer, writes ``error`` into the final layer's next-layer error slice and
    returns the loss summed over the batch.
    """

    name: str
    fn: LossFn

    def __call__(self, buffers: BufferSet, expected: Array) -> float:
        layer = buffers.network.output_layer
        expected = np.asarray(expected, dtype=np.float32)
        if expected.ndim == 1:
            expected = expected.reshape(1, -1)
        if expected.shape != (buffers.active, layer.num_outputs):
            raise ValueError(
                f"expected outputs have shape {expected.shape}, "
                f"the network produces {(buffers.active, layer.num_outputs)}"
            )
        actual = buffers.outputs()
        per_sample, error = self.fn(actual, expected)
        buffers.zero_errors()
        start = layer.next_layer_error_offset
        buffers.error_rows()[:, start : start + layer.num_outputs] = error
        return float(np.sum(per_sample))


class LossRegistry:
    """Central registry for loss functions."""

    def __init__(self) -> None:
        self._registry: Dict[str, Loss] = {}

    def register(self, name: str, fn: LossFn) -> None:
        self._registry[name] = Loss(name, fn)

    def get(self, name: str) -> Loss:
        return self.resolve(name)

    def names(self) -> Iterable[str]:
        return sorted(self._registry)

    def resolve(self, name: str) -> Loss:
        key = str(name).strip().lower().replace("-", "_")
        if key not in self._registry:
            available = ", ".join(sorted(self._registry))
            raise ConfigurationError(f"Unknown loss {name!r}. Available losses: {available}")
        return self._registry[key]


REGISTRY = LossRegistry()


def _mse(actual: Array, expected: Array) -> tuple[Array, Array]:
    diff = actual - expected
    per_sample = np.sum(np.square(diff), axis=1) / actual.shape[1]
    return per_sample, diff


def _cross_entropy(actual: Array, expected: Array) -> tuple[Array, Array]:
    # Paired with a softmax output, p - y is the gradient w.r.t. the logits.
    clamped = np.maximum(actual, CE_EPSILON)
    per_sample = -np.sum(expected * np.log(clamped), axis=1) / actual.shape[1]
    return per_sample, actual - expected


REGISTRY.register("mse", _mse)
REGISTRY.register("cross_entropy", _cross_entropy)
# Short alias used by run configs
REGISTRY.register("ce", _cross_entropy)

__all__ = ["Loss", "LossRegistry", "REGISTRY", "CE_EPSILON"]
