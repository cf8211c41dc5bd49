"""Activation functions shared by the layer kernels."""

from __future__ import annotations

import numpy as np

from .types import Array

SIGMOID = 0
RELU = 1
LEAKY_RELU = 2

_CODES = {"sigmoid": SIGMOID, "relu": RELU, "leaky_relu": LEAKY_RELU}


def activation_code(name: str) -> int:
    """Return the integer code the compiled kernels use for ``name``."""

    key = name.strip().lower().replace("-", "_")
    if key == "leakyrelu":
        key = "leaky_relu"
    try:
        return _CODES[key]
    except KeyError:
        available = ", ".join(activation_names())
        raise ValueError(f"Unknown activation {name!r}. Available activations: {available}") from None


def activation_names() -> list[str]:
    return sorted(_CODES)


def sigmoid(x: Array) -> Array:
    with np.errstate(over="ignore"):
        return 1.0 / (1.0 + np.exp(-x))


def relu(x: Array) -> Array:
    """Return the ReLU activation."""

    return np.maximum(x, 0.0)


def leaky_relu(x: Array, alpha: float = 0.01) -> Array:
    return np.where(x > 0, x, alpha * x)


def activate(x: Array, code: int, alpha: float = 0.01) -> Array:
    if code == SIGMOID:
        return sigmoid(x)
    if code == RELU:
        return relu(x)
    if code == LEAKY_RELU:
        return leaky_relu(x, alpha)
    raise ValueError(f"Unknown activation code: {code}")


def derivative(y: Array, code: int, alpha: float = 0.01) -> Array:
    """Derivative expressed in terms of the activation output ``y``."""

    if code == SIGMOID:
        return y * (1.0 - y)
    if code == RELU:
        return (y > 0).astype(y.dtype)
    if code == LEAKY_RELU:
        return np.where(y > 0, 1.0, alpha).astype(y.dtype)
    raise ValueError(f"Unknown activation code: {code}")


def stable_softmax(logits: Array) -> Array:
    """Row-wise softmax falling back to a uniform row when it degenerates.

    A row whose exponent sum is zero, NaN or infinite (for example a row of
    NaN logits) becomes ``1 / n`` everywhere instead of propagating NaN.
    """

    logits = np.asarray(logits)
    width = logits.shape[-1]
    with np.errstate(invalid="ignore", over="ignore"):
        shifted = logits - np.max(logits, axis=-1, keepdims=True)
        exp = np.exp(shifted)
        total = np.sum(exp, axis=-1, keepdims=True)
        valid = np.isfinite(total) & (total > 0)
        probs = exp / np.where(valid, total, 1.0)
    return np.where(valid, probs, 1.0 / width).astype(logits.dtype, copy=False)


__all__ = [
    "SIGMOID",
    "RELU",
    "LEAKY_RELU",
    "activation_code",
    "activation_names",
    "sigmoid",
    "relu",
    "leaky_relu",
    "activate",
    "derivative",
    "stable_softmax",
]
