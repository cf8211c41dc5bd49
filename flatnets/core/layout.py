"""Offset allocation for a sequence of layers sharing flat buffers."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Iterable, List, Sequence, Tuple

from .activations import activation_code
from .layers import (
    Convolution,
    ConvolutionInput,
    ConnectedInput,
    Dense,
    Dropout,
    InputConfig,
    LayerDescriptor,
    MaxPool,
    Softmax,
)


class ConfigurationError(ValueError):
    """Raised when a network, optimizer or schedule cannot be built."""


@dataclass(frozen=True)
class NetworkConfig:
    """Immutable layout plan: connected layers plus aggregate buffer sizes."""

    input: InputConfig
    layers: Tuple[LayerDescriptor, ...]
    activation_count: int
    parameter_count: int

    @property
    def input_count(self) -> int:
        return self.layers[0].num_inputs

    @property
    def output_count(self) -> int:
        return self.layers[-1].num_outputs

    @property
    def output_layer(self) -> LayerDescriptor:
        return self.layers[-1]

    def __len__(self) -> int:
        return len(self.layers)


def _positive(value: int, name: str, owner: str) -> int:
    value = int(value)
    if value <= 0:
        raise ConfigurationError(f"{owner} requires a positive {name}, got {value}")
    return value


def _check_activation(layer: Dense | Convolution) -> None:
    try:
        activation_code(layer.activation)
    except ValueError as exc:
        raise ConfigurationError(str(exc)) from exc


def _source_shape(source: InputConfig | LayerDescriptor) -> tuple[int, int, int, int]:
    """Return ``(flat, width, height, channels)``; spatial fields are 0 for flat sources."""

    if isinstance(source, ConvolutionInput):
        _positive(source.width, "width", "convolution input")
        _positive(source.height, "height", "convolution input")
        return source.inputs, source.width, source.height, source.channels
    if isinstance(source, ConnectedInput):
        return _positive(source.inputs, "input count", "connected input"), 0, 0, 0
    if getattr(source, "spatial", False):
        return (
            source.num_outputs,
            source.output_width,
            source.output_height,
            source.output_channels,
        )
    return source.num_outputs, 0, 0, 0


def _shape(layer: LayerDescriptor, source: InputConfig | LayerDescriptor, first: bool) -> LayerDescriptor:
    """Derive the shape fields of ``layer`` given what feeds it."""

    flat, width, height, channels = _source_shape(source)
    source_spatial = isinstance(source, ConvolutionInput) or getattr(source, "spatial", False)
    source_name = type(source).__name__

    spatial = getattr(layer, "spatial", False)
    if spatial and not source_spatial:
        raise ConfigurationError(
            f"{layer.kind} layer needs spatial input but follows {source_name}"
        )
    if not spatial and first and not isinstance(source, ConnectedInput):
        raise ConfigurationError(
            f"{layer.kind} layer cannot be the first layer after {source_name}; "
            "use a connected input"
        )

    match layer:
        case Dense():
            neurons = _positive(layer.neurons, "neuron count", f"{layer.kind} layer")
            _check_activation(layer)
            return replace(
                layer,
                num_inputs=flat,
                num_outputs=neurons,
                parameter_count=flat * neurons + neurons,
                bias_offset=flat * neurons,
            )
        case Softmax():
            neurons = _positive(layer.neurons, "neuron count", f"{layer.kind} layer")
            return replace(
                layer,
                num_inputs=flat,
                num_outputs=neurons,
                parameter_count=flat * neurons + neurons,
                bias_offset=flat * neurons,
            )
        case Dropout():
            if not 0.0 <= float(layer.rate) < 1.0:
                raise ConfigurationError(f"dropout rate must be in [0, 1), got {layer.rate}")
            return replace(layer, num_inputs=flat, num_outputs=flat, parameter_count=0)
        case Convolution():
            size = _positive(layer.kernel_size, "kernel size", f"{layer.kind} layer")
            stride = _positive(layer.stride, "stride", f"{layer.kind} layer")
            kernels = _positive(layer.kernels_per_channel, "kernels per channel", f"{layer.kind} layer")
            if layer.padding < 0:
                raise ConfigurationError(f"convolution padding must be >= 0, got {layer.padding}")
            _check_activation(layer)
            out_w = (width - size + 2 * layer.padding) // stride + 1
            out_h = (height - size + 2 * layer.padding) // stride + 1
            if out_w <= 0 or out_h <= 0:
                raise ConfigurationError(
                    f"convolution kernel {size} does not fit a {width}x{height} input"
                )
            out_c = channels * kernels
            return replace(
                layer,
                num_inputs=flat,
                num_outputs=out_w * out_h * out_c,
                input_width=width,
                input_height=height,
                input_channels=channels,
                output_width=out_w,
                output_height=out_h,
                output_channels=out_c,
                parameter_count=out_c * size * size,
            )
        case MaxPool():
            pool = _positive(layer.pool_size, "pool size", f"{layer.kind} layer")
            out_w = width // pool
            out_h = height // pool
            if out_w <= 0 or out_h <= 0:
                raise ConfigurationError(f"pool size {pool} does not fit a {width}x{height} input")
            return replace(
                layer,
                num_inputs=flat,
                num_outputs=out_w * out_h * channels,
                input_width=width,
                input_height=height,
                input_channels=channels,
                output_width=out_w,
                output_height=out_h,
                output_channels=channels,
                parameter_count=0,
            )
    raise ConfigurationError(f"Unsupported layer type: {type(layer).__name__}")


def connect(layers: Sequence[LayerDescriptor], input_config: InputConfig) -> NetworkConfig:
    """Lay ``layers`` out into shared buffers.

    The first layer reads the input block at activation offset 0; every later
    layer reads its predecessor's output slice in place.  Error slices mirror
    the activation slices, and parameter slices are packed back to back.
    """

    if not layers:
        raise ConfigurationError("a network needs at least one layer")

    connected: List[LayerDescriptor] = []
    source: InputConfig | LayerDescriptor = input_config
    for index, layer in enumerate(layers):
        shaped = _shape(layer, source, first=index == 0)
        if connected:
            prev = connected[-1]
            act_in = prev.activation_output_offset
            param_off = prev.parameter_offset + prev.parameter_count
        else:
            act_in = 0
            param_off = 0
        act_out = act_in + shaped.num_inputs
        shaped = replace(
            shaped,
            activation_input_offset=act_in,
            activation_output_offset=act_out,
            current_layer_error_offset=act_in,
            next_layer_error_offset=act_out,
            parameter_offset=param_off,
        )
        connected.append(shaped)
        source = shaped

    activation_count = connected[0].num_inputs + sum(layer.num_outputs for layer in connected)
    parameter_count = sum(layer.parameter_count for layer in connected)
    return NetworkConfig(
        input=input_config,
        layers=tuple(connected),
        activation_count=activation_count,
        parameter_count=parameter_count,
    )


class NetworkBuilder:
    """Fluent wrapper around :func:`connect`."""

    def __init__(self, input_config: InputConfig) -> None:
        self.input_config = input_config
        self._layers: List[LayerDescriptor] = []

    def add(self, layer: LayerDescriptor) -> "NetworkBuilder":
        self._layers.append(layer)
        return self

    def extend(self, layers: Iterable[LayerDescriptor]) -> "NetworkBuilder":
        self._layers.extend(layers)
        return self

    def build(self) -> NetworkConfig:
        return connect(self._layers, self.input_config)


__all__ = ["ConfigurationError", "NetworkConfig", "NetworkBuilder", "connect"]
