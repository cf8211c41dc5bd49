"""Data-parallel execution model.

Each stage is one numpy expression over the flattened ``(batch, output)``
index space.  Backward passes that fan error into shared input cells
(convolution taps, max-pool routing) scatter with :func:`numpy.add.at`, which
accumulates repeated indices instead of overwriting them.
"""

from __future__ import annotations

from functools import lru_cache

import numpy as np

from ..core import activations as act
from ..core.buffers import DTYPE, BufferSet
from ..core.layers import Convolution, Dense, Dropout, LayerDescriptor, MaxPool, Softmax
from ..core.types import Array


def _input(layer: LayerDescriptor, rows: Array) -> Array:
    start = layer.activation_input_offset
    return rows[:, start : start + layer.num_inputs]


def _output(layer: LayerDescriptor, rows: Array) -> Array:
    start = layer.activation_output_offset
    return rows[:, start : start + layer.num_outputs]


def _current_error(layer: LayerDescriptor, rows: Array) -> Array:
    start = layer.current_layer_error_offset
    return rows[:, start : start + layer.num_inputs]


def _next_error(layer: LayerDescriptor, rows: Array) -> Array:
    start = layer.next_layer_error_offset
    return rows[:, start : start + layer.num_outputs]


def _weights(layer: Dense | Softmax, parameters: Array) -> tuple[Array, Array]:
    start = layer.parameter_offset
    weights = parameters[start : start + layer.bias_offset].reshape(layer.num_outputs, layer.num_inputs)
    bias_start = start + layer.bias_offset
    return weights, parameters[bias_start : bias_start + layer.num_outputs]


@lru_cache(maxsize=32)
def convolution_taps(layer: Convolution) -> tuple[Array, Array]:
    """Gather tables for a connected convolution.

    Returns ``(taps, weight_index)``, both shaped ``(num_outputs, k * k)``.
    ``taps`` holds the input index each kernel position reads, with
    ``num_inputs`` standing in for zero padding; ``weight_index`` holds the
    matching index into the layer's parameter slice.
    """

    size = layer.kernel_size
    window = size * size
    out_c, out_h, out_w = layer.output_channels, layer.output_height, layer.output_width
    in_h, in_w = layer.input_height, layer.input_width
    ky, kx = np.divmod(np.arange(window), size)
    iy = np.arange(out_h)[:, None] * layer.stride + ky[None, :] - layer.padding
    ix = np.arange(out_w)[:, None] * layer.stride + kx[None, :] - layer.padding
    iy = iy[None, :, None, :]
    ix = ix[None, None, :, :]
    in_channel = (np.arange(out_c) // layer.kernels_per_channel)[:, None, None, None]
    valid = (iy >= 0) & (iy < in_h) & (ix >= 0) & (ix < in_w)
    pixels = in_channel * in_h * in_w + iy * in_w + ix
    taps = np.where(valid, pixels, layer.num_inputs).reshape(layer.num_outputs, window)
    kernel = np.arange(out_c)[:, None] * window + np.arange(window)[None, :]
    weight_index = np.broadcast_to(
        kernel[:, None, None, :], (out_c, out_h, out_w, window)
    ).reshape(layer.num_outputs, window)
    return taps, weight_index


@lru_cache(maxsize=32)
def pool_windows(layer: MaxPool) -> Array:
    """``(num_outputs, pool * pool)`` input indices in row-major scan order."""

    pool = layer.pool_size
    ky, kx = np.divmod(np.arange(pool * pool), pool)
    rows = np.arange(layer.output_height)[:, None] * pool + ky[None, :]
    cols = np.arange(layer.output_width)[:, None] * pool + kx[None, :]
    channel = np.arange(layer.output_channels)[:, None, None, None]
    plane = layer.input_height * layer.input_width
    windows = channel * plane + rows[None, :, None, :] * layer.input_width + cols[None, None, :, :]
    return windows.reshape(layer.num_outputs, pool * pool)


def _padded(values: Array) -> Array:
    pad = np.zeros((values.shape[0], 1), dtype=values.dtype)
    return np.concatenate([values, pad], axis=1)


class VectorizedBackend:
    """numpy kernels over the whole active batch at once."""

    name = "vectorized"

    def forward(self, layer: LayerDescriptor, buffers: BufferSet, keep: Array | None = None) -> None:
        rows = buffers.activation_rows()
        params = buffers.parameters
        match layer:
            case Dense():
                weights, bias = _weights(layer, params)
                logits = _input(layer, rows) @ weights.T + bias
                _output(layer, rows)[...] = act.activate(logits, layer.activation_code, layer.alpha)
            case Softmax():
                weights, bias = _weights(layer, params)
                logits = _input(layer, rows) @ weights.T + bias
                _output(layer, rows)[...] = act.stable_softmax(logits)
            case Convolution():
                taps, weight_index = convolution_taps(layer)
                kernel = params[layer.parameter_offset : layer.parameter_offset + layer.parameter_count]
                patches = _padded(_input(layer, rows))[:, taps]
                logits = np.einsum("bok,ok->bo", patches, kernel[weight_index])
                _output(layer, rows)[...] = act.activate(logits, layer.activation_code, layer.alpha)
            case MaxPool():
                values = _input(layer, rows)[:, pool_windows(layer)]
                _output(layer, rows)[...] = values.max(axis=2)
            case Dropout():
                source = _input(layer, rows)
                _output(layer, rows)[...] = source if keep is None else np.where(keep, source, 0.0)
            case _:
                raise TypeError(f"Unsupported layer type: {type(layer).__name__}")

    def backward(self, layer: LayerDescriptor, buffers: BufferSet, keep: Array | None = None) -> None:
        rows = buffers.activation_rows()
        errors = buffers.error_rows()
        params = buffers.parameters
        match layer:
            case Dense() | Softmax():
                upstream = _next_error(layer, errors)
                if isinstance(layer, Dense):
                    delta = upstream * act.derivative(_output(layer, rows), layer.activation_code, layer.alpha)
                else:
                    delta = upstream
                weights, _ = _weights(layer, params)
                _current_error(layer, errors)[...] += delta @ weights
                grads = buffers.gradient_rows()
                start = layer.parameter_offset
                outer = delta[:, :, None] * _input(layer, rows)[:, None, :]
                grads[:, start : start + layer.bias_offset] = outer.reshape(delta.shape[0], -1)
                bias_start = start + layer.bias_offset
                grads[:, bias_start : bias_start + layer.num_outputs] = delta
            case Convolution():
                taps, weight_index = convolution_taps(layer)
                start = layer.parameter_offset
                kernel = params[start : start + layer.parameter_count]
                derivative = act.derivative(_output(layer, rows), layer.activation_code, layer.alpha)
                delta = _next_error(layer, errors) * derivative
                count = delta.shape[0]
                contributions = delta[:, :, None] * kernel[weight_index][None, :, :]
                scatter = np.zeros((count, layer.num_inputs + 1), dtype=DTYPE)
                np.add.at(scatter, (slice(None), taps.reshape(-1)), contributions.reshape(count, -1))
                _current_error(layer, errors)[...] += scatter[:, : layer.num_inputs]
                channels = layer.output_channels
                plane = layer.output_height * layer.output_width
                patches = _padded(_input(layer, rows))[:, taps].reshape(count, channels, plane, -1)
                per_kernel = np.einsum("bcp,bcpk->bck", delta.reshape(count, channels, plane), patches)
                buffers.gradient_rows()[:, start : start + layer.parameter_count] = per_kernel.reshape(count, -1)
            case MaxPool():
                windows = pool_windows(layer)
                values = _input(layer, rows)[:, windows]
                width = windows.shape[1]
                # last position in scan order holding the window maximum
                winner = width - 1 - np.argmax(values[:, :, ::-1], axis=2)
                sources = windows[np.arange(layer.num_outputs)[None, :], winner]
                samples = np.arange(values.shape[0])[:, None]
                np.add.at(_current_error(layer, errors), (samples, sources), _next_error(layer, errors))
            case Dropout():
                upstream = _next_error(layer, errors)
                _current_error(layer, errors)[...] += upstream if keep is None else np.where(keep, upstream, 0.0)
            case _:
                raise TypeError(f"Unsupported layer type: {type(layer).__name__}")


__all__ = ["VectorizedBackend", "convolution_taps", "pool_windows"]
