"""flatnets public API."""

from .config import load_network, network_from_dict, network_to_dict
from .core import activations, types  # noqa: F401
from .core.buffers import BufferSet
from .core.layers import (
    ConnectedInput,
    Convolution,
    ConvolutionInput,
    Dense,
    Dropout,
    MaxPool,
    Softmax,
)
from .core.layout import ConfigurationError, NetworkBuilder, NetworkConfig, connect
from .kernels import create_backend
from .serialization import deserialize, load_parameters, save_parameters, serialize
from .training.pipelines import load_preset, presets, run_pipeline
from .training.trainer import NetworkRunner, NetworkTrainer, TrainConfig

__all__ = [
    "BufferSet",
    "ConfigurationError",
    "ConnectedInput",
    "Convolution",
    "ConvolutionInput",
    "Dense",
    "Dropout",
    "MaxPool",
    "NetworkBuilder",
    "NetworkConfig",
    "NetworkRunner",
    "NetworkTrainer",
    "Softmax",
    "TrainConfig",
    "activations",
    "connect",
    "create_backend",
    "deserialize",
    "load_network",
    "load_parameters",
    "load_preset",
    "network_from_dict",
    "network_to_dict",
    "presets",
    "run_pipeline",
    "save_parameters",
    "serialize",
    "types",
]
