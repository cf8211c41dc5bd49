"""Batch-parallel CPU execution model.

Every kernel is compiled with numba and distributes the batch index over a
thread pool with ``prange``.  Within one sample the kernel runs sequentially,
so scatter-adds into the sample's own error and gradient blocks never race:
two threads only ever touch different ``batch_index * stride`` blocks.
"""

from __future__ import annotations

import math

import numpy as np
from numba import njit, prange

from ..core.buffers import BufferSet
from ..core.layers import Convolution, Dense, Dropout, LayerDescriptor, MaxPool, Softmax
from ..core.types import Array


@njit
def _activate(x, code, alpha):
    if code == 0:
        return 1.0 / (1.0 + math.exp(-x))
    if code == 1:
        return x if x > 0.0 else 0.0
    return x if x > 0.0 else alpha * x


@njit
def _derivative(y, code, alpha):
    if code == 0:
        return y * (1.0 - y)
    if code == 1:
        return 1.0 if y > 0.0 else 0.0
    return 1.0 if y > 0.0 else alpha


# --- linear layers ---
@njit(parallel=True)
def _linear_forward(params, acts, count, stride, in_off, out_off, n_in, n_out, p_off, bias_off, code, alpha, softmax):
    for b in prange(count):
        base = b * stride
        for o in range(n_out):
            acc = params[p_off + bias_off + o]
            w = p_off + o * n_in
            for i in range(n_in):
                acc += acts[base + in_off + i] * params[w + i]
            if softmax:
                acts[base + out_off + o] = acc
            else:
                acts[base + out_off + o] = _activate(acc, code, alpha)
        if softmax:
            mx = acts[base + out_off]
            for o in range(1, n_out):
                if acts[base + out_off + o] > mx:
                    mx = acts[base + out_off + o]
            s = 0.0
            for o in range(n_out):
                ex = math.exp(acts[base + out_off + o] - mx)
                acts[base + out_off + o] = ex
                s += ex
            if s > 0.0 and s < math.inf:
                for o in range(n_out):
                    acts[base + out_off + o] = acts[base + out_off + o] / s
            else:
                for o in range(n_out):
                    acts[base + out_off + o] = 1.0 / n_out


@njit(parallel=True)
def _linear_backward(
    params, acts, errs, grads, count, stride, p_stride, in_off, out_off, cur_off, next_off,
    n_in, n_out, p_off, bias_off, code, alpha, use_derivative,
):
    for b in prange(count):
        base = b * stride
        g_base = b * p_stride
        for o in range(n_out):
            delta = errs[base + next_off + o] * 1.0
            if use_derivative:
                delta = delta * _derivative(acts[base + out_off + o], code, alpha)
            w = p_off + o * n_in
            for i in range(n_in):
                errs[base + cur_off + i] += delta * params[w + i]
                grads[g_base + w + i] = delta * acts[base + in_off + i]
            grads[g_base + p_off + bias_off + o] = delta


# --- convolution ---
@njit(parallel=True)
def _conv_forward(
    params, acts, count, stride, in_off, out_off, in_w, in_h, in_c, out_w, out_h,
    kernels, size, step, padding, p_off, code, alpha,
):
    for b in prange(count):
        base = b * stride
        for ic in range(in_c):
            for k in range(kernels):
                oc = ic * kernels + k
                for y in range(out_h):
                    for x in range(out_w):
                        acc = 0.0
                        for ky in range(size):
                            iy = y * step + ky - padding
                            if iy < 0 or iy >= in_h:
                                continue
                            for kx in range(size):
                                ix = x * step + kx - padding
                                if ix < 0 or ix >= in_w:
                                    continue
                                pixel = ic * in_h * in_w + iy * in_w + ix
                                weight = p_off + oc * size * size + ky * size + kx
                                acc += acts[base + in_off + pixel] * params[weight]
                        acts[base + out_off + oc * out_h * out_w + y * out_w + x] = _activate(acc, code, alpha)


@njit(parallel=True)
def _conv_backward(
    params, acts, errs, grads, count, stride, p_stride, in_off, out_off, cur_off, next_off,
    in_w, in_h, in_c, out_w, out_h, kernels, size, step, padding, p_off, p_count, code, alpha,
):
    for b in prange(count):
        base = b * stride
        g_base = b * p_stride
        for t in range(p_count):
            grads[g_base + p_off + t] = 0.0
        for ic in range(in_c):
            for k in range(kernels):
                oc = ic * kernels + k
                for y in range(out_h):
                    for x in range(out_w):
                        o = oc * out_h * out_w + y * out_w + x
                        delta = errs[base + next_off + o] * _derivative(acts[base + out_off + o], code, alpha)
                        for ky in range(size):
                            iy = y * step + ky - padding
                            if iy < 0 or iy >= in_h:
                                continue
                            for kx in range(size):
                                ix = x * step + kx - padding
                                if ix < 0 or ix >= in_w:
                                    continue
                                pixel = ic * in_h * in_w + iy * in_w + ix
                                weight = p_off + oc * size * size + ky * size + kx
                                errs[base + cur_off + pixel] += delta * params[weight]
                                grads[g_base + weight] += delta * acts[base + in_off + pixel]


# --- max pooling ---
@njit(parallel=True)
def _pool_forward(acts, count, stride, in_off, out_off, in_w, in_h, channels, out_w, out_h, pool):
    for b in prange(count):
        base = b * stride
        for c in range(channels):
            for y in range(out_h):
                for x in range(out_w):
                    m = -math.inf
                    for ky in range(pool):
                        for kx in range(pool):
                            v = acts[base + in_off + c * in_h * in_w + (y * pool + ky) * in_w + x * pool + kx]
                            if v > m:
                                m = v
                    acts[base + out_off + c * out_h * out_w + y * out_w + x] = m


@njit(parallel=True)
def _pool_backward(acts, errs, count, stride, in_off, cur_off, next_off, in_w, in_h, channels, out_w, out_h, pool):
    for b in prange(count):
        base = b * stride
        for c in range(channels):
            for y in range(out_h):
                for x in range(out_w):
                    m = -math.inf
                    winner = c * in_h * in_w + (y * pool) * in_w + x * pool
                    for ky in range(pool):
                        for kx in range(pool):
                            pixel = c * in_h * in_w + (y * pool + ky) * in_w + x * pool + kx
                            v = acts[base + in_off + pixel]
                            if v >= m:
                                m = v
                                winner = pixel
                    errs[base + cur_off + winner] += errs[base + next_off + c * out_h * out_w + y * out_w + x]


# --- dropout ---
@njit(parallel=True)
def _dropout_forward(acts, keep, count, stride, in_off, out_off, n):
    for b in prange(count):
        base = b * stride
        for i in range(n):
            acts[base + out_off + i] = acts[base + in_off + i] if keep[i] else 0.0


@njit(parallel=True)
def _dropout_backward(errs, keep, count, stride, cur_off, next_off, n):
    for b in prange(count):
        base = b * stride
        for i in range(n):
            if keep[i]:
                errs[base + cur_off + i] += errs[base + next_off + i]


def _keep(layer: Dropout, keep: Array | None) -> Array:
    if keep is None:
        return np.ones(layer.num_outputs, dtype=np.bool_)
    return np.ascontiguousarray(keep, dtype=np.bool_)


class ParallelBackend:
    """numba kernels parallel over the batch index."""

    name = "parallel"

    def forward(self, layer: LayerDescriptor, buffers: BufferSet, keep: Array | None = None) -> None:
        params, acts = buffers.parameters, buffers.activations
        count, stride = buffers.active, buffers.activation_count
        match layer:
            case Dense() | Softmax():
                is_softmax = isinstance(layer, Softmax)
                _linear_forward(
                    params, acts, count, stride,
                    layer.activation_input_offset, layer.activation_output_offset,
                    layer.num_inputs, layer.num_outputs, layer.parameter_offset, layer.bias_offset,
                    0 if is_softmax else layer.activation_code,
                    0.0 if is_softmax else float(layer.alpha),
                    is_softmax,
                )
            case Convolution():
                _conv_forward(
                    params, acts, count, stride,
                    layer.activation_input_offset, layer.activation_output_offset,
                    layer.input_width, layer.input_height, layer.input_channels,
                    layer.output_width, layer.output_height, layer.kernels_per_channel,
                    layer.kernel_size, layer.stride, layer.padding, layer.parameter_offset,
                    layer.activation_code, float(layer.alpha),
                )
            case MaxPool():
                _pool_forward(
                    acts, count, stride,
                    layer.activation_input_offset, layer.activation_output_offset,
                    layer.input_width, layer.input_height, layer.input_channels,
                    layer.output_width, layer.output_height, layer.pool_size,
                )
            case Dropout():
                _dropout_forward(
                    acts, _keep(layer, keep), count, stride,
                    layer.activation_input_offset, layer.activation_output_offset, layer.num_outputs,
                )
            case _:
                raise TypeError(f"Unsupported layer type: {type(layer).__name__}")

    def backward(self, layer: LayerDescriptor, buffers: BufferSet, keep: Array | None = None) -> None:
        params, acts, errs, grads = buffers.parameters, buffers.activations, buffers.errors, buffers.gradients
        count, stride, p_stride = buffers.active, buffers.activation_count, buffers.parameter_count
        match layer:
            case Dense() | Softmax():
                is_dense = isinstance(layer, Dense)
                _linear_backward(
                    params, acts, errs, grads, count, stride, p_stride,
                    layer.activation_input_offset, layer.activation_output_offset,
                    layer.current_layer_error_offset, layer.next_layer_error_offset,
                    layer.num_inputs, layer.num_outputs, layer.parameter_offset, layer.bias_offset,
                    layer.activation_code if is_dense else 0,
                    float(layer.alpha) if is_dense else 0.0,
                    is_dense,
                )
            case Convolution():
                _conv_backward(
                    params, acts, errs, grads, count, stride, p_stride,
                    layer.activation_input_offset, layer.activation_output_offset,
                    layer.current_layer_error_offset, layer.next_layer_error_offset,
                    layer.input_width, layer.input_height, layer.input_channels,
                    layer.output_width, layer.output_height, layer.kernels_per_channel,
                    layer.kernel_size, layer.stride, layer.padding,
                    layer.parameter_offset, layer.parameter_count,
                    layer.activation_code, float(layer.alpha),
                )
            case MaxPool():
                _pool_backward(
                    acts, errs, count, stride,
                    layer.activation_input_offset, layer.current_layer_error_offset, layer.next_layer_error_offset,
                    layer.input_width, layer.input_height, layer.input_channels,
                    layer.output_width, layer.output_height, layer.pool_size,
                )
            case Dropout():
                _dropout_backward(
                    errs, _keep(layer, keep), count, stride,
                    layer.current_layer_error_offset, layer.next_layer_error_offset, layer.num_outputs,
                )
            case _:
                raise TypeError(f"Unsupported layer type: {type(layer).__name__}")


__all__ = ["ParallelBackend"]
