"""JSON/YAML network descriptions."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Mapping

from .core.layers import (
    LAYER_KINDS,
    ConnectedInput,
    Convolution,
    ConvolutionInput,
    Dense,
    Dropout,
    InputConfig,
    LayerDescriptor,
    MaxPool,
    Softmax,
)
from .core.layout import ConfigurationError, NetworkConfig, connect


def read_mapping(path: str | Path) -> Mapping[str, Any]:
    """Read a JSON or YAML file that must decode to a mapping."""

    path = Path(path)
    text = path.read_text()
    suffix = path.suffix.lower()
    if suffix in {".yaml", ".yml"}:
        try:
            import yaml  # type: ignore
        except Exception as exc:  # pragma: no cover - optional dependency
            raise RuntimeError("PyYAML is required to load YAML configs") from exc
        data = yaml.safe_load(text) or {}
    elif suffix == ".json":
        data = json.loads(text or "{}")
    else:
        raise ValueError(f"Unsupported config file type: {path.suffix}")
    if not isinstance(data, Mapping):
        raise TypeError(f"Config {path.name} must decode to a mapping")
    return data


def _type(entry: Mapping[str, Any], where: str) -> str:
    if "type" not in entry:
        raise ConfigurationError(f"{where} entry is missing its 'type'")
    return str(entry["type"]).strip().lower()


def input_from_dict(entry: Mapping[str, Any]) -> InputConfig:
    kind = _type(entry, "input")
    if kind == "connected":
        return ConnectedInput(inputs=int(entry["inputs"]))
    if kind == "convolution":
        return ConvolutionInput(
            width=int(entry["width"]),
            height=int(entry["height"]),
            is_grayscale=bool(entry.get("is_grayscale", entry.get("grayscale", True))),
        )
    raise ConfigurationError(f"Unknown input type {kind!r}; expected 'connected' or 'convolution'")


def layer_from_dict(entry: Mapping[str, Any]) -> LayerDescriptor:
    kind = _type(entry, "layer")
    try:
        if kind == "dense":
            return Dense(
                neurons=int(entry["neurons"]),
                activation=str(entry.get("activation", "sigmoid")),
                alpha=float(entry.get("alpha", 0.01)),
            )
        if kind == "softmax":
            return Softmax(neurons=int(entry["neurons"]))
        if kind == "dropout":
            return Dropout(rate=float(entry.get("rate", entry.get("dropout_rate", 0.5))))
        if kind == "convolution":
            return Convolution(
                kernel_size=int(entry["kernel_size"]),
                stride=int(entry.get("stride", 1)),
                padding=int(entry.get("padding", 0)),
                kernels_per_channel=int(entry.get("kernels_per_channel", 1)),
                activation=str(entry.get("activation", "relu")),
                alpha=float(entry.get("alpha", 0.01)),
            )
        if kind == "maxpool":
            return MaxPool(pool_size=int(entry.get("pool_size", 2)))
    except KeyError as exc:
        raise ConfigurationError(f"{kind} layer is missing {exc.args[0]!r}") from exc
    expected = ", ".join(sorted(LAYER_KINDS))
    raise ConfigurationError(f"Unknown layer type {kind!r}; expected one of {expected}")


def network_from_dict(data: Mapping[str, Any]) -> NetworkConfig:
    if "input" not in data or "layers" not in data:
        raise ConfigurationError("network description needs 'input' and 'layers'")
    layers = [layer_from_dict(entry) for entry in data["layers"]]
    return connect(layers, input_from_dict(data["input"]))


def load_network(path: str | Path) -> NetworkConfig:
    return network_from_dict(read_mapping(path))


def _layer_to_dict(layer: LayerDescriptor) -> Dict[str, Any]:
    if isinstance(layer, Dense):
        return {"type": "dense", "neurons": layer.neurons, "activation": layer.activation, "alpha": layer.alpha}
    if isinstance(layer, Softmax):
        return {"type": "softmax", "neurons": layer.neurons}
    if isinstance(layer, Dropout):
        return {"type": "dropout", "rate": layer.rate}
    if isinstance(layer, Convolution):
        return {
            "type": "convolution",
            "kernel_size": layer.kernel_size,
            "stride": layer.stride,
            "padding": layer.padding,
            "kernels_per_channel": layer.kernels_per_channel,
            "activation": layer.activation,
            "alpha": layer.alpha,
        }
    if isinstance(layer, MaxPool):
        return {"type": "maxpool", "pool_size": layer.pool_size}
    raise ConfigurationError(f"Unsupported layer type: {type(layer).__name__}")


def network_to_dict(network: NetworkConfig) -> Dict[str, Any]:
    source = network.input
    if isinstance(source, ConvolutionInput):
        entry: Dict[str, Any] = {
            "type": "convolution",
            "width": source.width,
            "height": source.height,
            "is_grayscale": source.is_grayscale,
        }
    else:
        entry = {"type": "connected", "inputs": source.inputs}
    layers: List[Dict[str, Any]] = [_layer_to_dict(layer) for layer in network.layers]
    return {"input": entry, "layers": layers}


__all__ = [
    "read_mapping",
    "input_from_dict",
    "layer_from_dict",
    "network_from_dict",
    "network_to_dict",
    "load_network",
]
