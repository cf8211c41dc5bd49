"""Shared flat buffers owned by one runner or trainer."""

from __future__ import annotations

import numpy as np

from .layout import NetworkConfig
from .types import Array

DTYPE = np.float32


class BufferSet:
    """Parameters, activations, errors and per-sample gradients.

    ``activations`` and ``errors`` hold ``batch_size`` consecutive blocks of
    ``activation_count`` values; ``gradients`` holds ``batch_size`` blocks of
    ``parameter_count`` values.  ``active`` is the number of leading blocks in
    use for the current batch, which is smaller than ``batch_size`` for a
    short final batch.
    """

    def __init__(self, network: NetworkConfig, batch_size: int) -> None:
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        self.network = network
        self.batch_size = int(batch_size)
        self.activation_count = network.activation_count
        self.parameter_count = network.parameter_count
        self.parameters: Array = np.zeros(self.parameter_count, dtype=DTYPE)
        self.activations: Array = np.zeros(self.activation_count * self.batch_size, dtype=DTYPE)
        self.errors: Array = np.zeros(self.activation_count * self.batch_size, dtype=DTYPE)
        self.gradients: Array = np.zeros(self.parameter_count * self.batch_size, dtype=DTYPE)
        self.active = self.batch_size
        self.closed = False

    # ------------------------------------------------------------------
    # Per-sample views

    def activation_rows(self) -> Array:
        """``(active, activation_count)`` view over the activations buffer."""

        return self.activations.reshape(self.batch_size, self.activation_count)[: self.active]

    def error_rows(self) -> Array:
        return self.errors.reshape(self.batch_size, self.activation_count)[: self.active]

    def gradient_rows(self) -> Array:
        return self.gradients.reshape(self.batch_size, self.parameter_count)[: self.active]

    # ------------------------------------------------------------------
    # Staging

    def load_inputs(self, inputs: Array) -> None:
        """Copy ``(n, num_inputs)`` inputs to each sample's base offset."""

        inputs = np.asarray(inputs, dtype=DTYPE)
        if inputs.ndim == 1:
            inputs = inputs.reshape(1, -1)
        count, width = inputs.shape
        expected = self.network.input_count
        if width != expected:
            raise ValueError(f"input has {width} values, the first layer expects {expected}")
        if not 0 < count <= self.batch_size:
            raise ValueError(f"batch of {count} samples does not fit batch_size {self.batch_size}")
        self.active = count
        self.activation_rows()[:, :expected] = inputs

    def outputs(self) -> Array:
        """Copy of the final layer's activations for the active samples."""

        layer = self.network.output_layer
        start = layer.activation_output_offset
        return self.activation_rows()[:, start : start + layer.num_outputs].copy()

    def zero_errors(self) -> None:
        self.errors.fill(0.0)

    def mean_gradient(self) -> Array:
        """Reduce the per-sample gradient blocks to their mean over the active samples."""

        return self.gradient_rows().mean(axis=0, dtype=DTYPE)

    # ------------------------------------------------------------------
    # Lifecycle

    def close(self) -> None:
        empty = np.zeros(0, dtype=DTYPE)
        self.parameters = empty
        self.activations = empty
        self.errors = empty
        self.gradients = empty
        self.closed = True

    def __enter__(self) -> "BufferSet":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


__all__ = ["BufferSet", "DTYPE"]
