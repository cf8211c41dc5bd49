"""Layer descriptors and input configurations.

Descriptors form a closed set of frozen dataclasses.  They are created with
hyperparameters only; :func:`flatnets.core.layout.connect` returns connected
copies carrying the shape metadata and the offsets into the shared buffers.

All offsets are per-sample: a kernel adds ``batch_index * activation_count``
(or ``batch_index * parameter_count`` for gradients) before using them.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, Union

from .activations import activation_code


@dataclass(frozen=True, kw_only=True)
class ConnectedInput:
    """Flat input vector of ``inputs`` values."""

    inputs: int


@dataclass(frozen=True, kw_only=True)
class ConvolutionInput:
    """Image input laid out channel-major (``c * H * W + y * W + x``)."""

    width: int
    height: int
    is_grayscale: bool = True

    @property
    def channels(self) -> int:
        return 1 if self.is_grayscale else 3

    @property
    def inputs(self) -> int:
        return self.width * self.height * self.channels


InputConfig = Union[ConnectedInput, ConvolutionInput]


@dataclass(frozen=True, kw_only=True)
class Layer:
    """Fields shared by every layer kind."""

    kind: ClassVar[str] = "layer"
    spatial: ClassVar[bool] = False

    num_inputs: int = 0
    num_outputs: int = 0
    activation_input_offset: int = 0
    activation_output_offset: int = 0
    current_layer_error_offset: int = 0
    next_layer_error_offset: int = 0
    parameter_offset: int = 0
    parameter_count: int = 0


@dataclass(frozen=True, kw_only=True)
class SpatialLayer(Layer):
    spatial: ClassVar[bool] = True

    input_width: int = 0
    input_height: int = 0
    input_channels: int = 0
    output_width: int = 0
    output_height: int = 0
    output_channels: int = 0


@dataclass(frozen=True, kw_only=True)
class Dense(Layer):
    """Fully connected layer ``out[o] = f(bias[o] + sum_i in[i] * w[o, i])``."""

    kind: ClassVar[str] = "dense"

    neurons: int
    activation: str = "sigmoid"
    alpha: float = 0.01
    bias_offset: int = 0

    @property
    def activation_code(self) -> int:
        return activation_code(self.activation)


@dataclass(frozen=True, kw_only=True)
class Softmax(Layer):
    """Linear scores followed by a numerically stable softmax."""

    kind: ClassVar[str] = "softmax"

    neurons: int
    bias_offset: int = 0


@dataclass(frozen=True, kw_only=True)
class Dropout(Layer):
    kind: ClassVar[str] = "dropout"

    rate: float = 0.5


@dataclass(frozen=True, kw_only=True)
class Convolution(SpatialLayer):
    """Bias-free correlation with ``kernels_per_channel`` kernels per input channel.

    Output channel ``oc = input_channel * kernels_per_channel + k``.
    """

    kind: ClassVar[str] = "convolution"

    kernel_size: int
    stride: int = 1
    padding: int = 0
    kernels_per_channel: int = 1
    activation: str = "relu"
    alpha: float = 0.01

    @property
    def activation_code(self) -> int:
        return activation_code(self.activation)


@dataclass(frozen=True, kw_only=True)
class MaxPool(SpatialLayer):
    kind: ClassVar[str] = "maxpool"

    pool_size: int = 2


LayerDescriptor = Union[Dense, Softmax, Dropout, Convolution, MaxPool]

LAYER_KINDS = {cls.kind: cls for cls in (Dense, Softmax, Dropout, Convolution, MaxPool)}


__all__ = [
    "ConnectedInput",
    "ConvolutionInput",
    "InputConfig",
    "Layer",
    "SpatialLayer",
    "Dense",
    "Softmax",
    "Dropout",
    "Convolution",
    "MaxPool",
    "LayerDescriptor",
    "LAYER_KINDS",
]
