"""Pipeline assembly: presets, dataset, trainer, sinks and artifacts."""

from __future__ import annotations

import logging
from copy import deepcopy
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, Mapping

from ..config import network_from_dict, network_to_dict, read_mapping
from ..core.layout import ConfigurationError, NetworkConfig
from ..core.types import RunResult
from ..data import get_dataset
from ..reporting.artifacts import write_manifest
from ..reporting.metrics import CsvSink, JsonlSink
from ..reporting.plots import PlotAdapter
from .trainer import NetworkTrainer, TrainConfig

log = logging.getLogger(__name__)

_PRESETS: Dict[str, Mapping[str, Any]] = {
    "blobs-softmax": {
        "network": {
            "input": {"type": "connected", "inputs": 2},
            "layers": [
                {"type": "dense", "neurons": 8, "activation": "leaky_relu"},
                {"type": "softmax", "neurons": 2},
            ],
        },
        "training": {
            "epochs": 10,
            "batch": 16,
            "loss": "cross_entropy",
            "optimizer": {"type": "adam"},
            "lr_schedule": {"type": "constant", "lr": 0.01},
            "backend": "vectorized",
            "seed": 7,
        },
        "data": {"name": "blobs", "options": {"n": 256, "d": 2, "seed": 0}},
        "run": {"run_dir": "runs/blobs-softmax", "test_threshold": 0.5, "enable_plots": False},
    },
    "stripes-conv": {
        "network": {
            "input": {"type": "convolution", "width": 8, "height": 8, "is_grayscale": True},
            "layers": [
                {
                    "type": "convolution",
                    "kernel_size": 3,
                    "stride": 1,
                    "padding": 1,
                    "kernels_per_channel": 4,
                    "activation": "leaky_relu",
                },
                {"type": "maxpool", "pool_size": 2},
                {"type": "dropout", "rate": 0.1},
                {"type": "dense", "neurons": 16, "activation": "leaky_relu"},
                {"type": "softmax", "neurons": 2},
            ],
        },
        "training": {
            "epochs": 5,
            "batch": 8,
            "loss": "cross_entropy",
            "optimizer": {"type": "adam"},
            "lr_schedule": {"type": "step_decay", "lr": 0.005, "step": 2, "decay": 0.5},
            "backend": "vectorized",
            "seed": 11,
        },
        "data": {"name": "stripes", "options": {"n": 128, "size": 8, "seed": 0}},
        "run": {"run_dir": "runs/stripes-conv", "test_threshold": 0.5, "enable_plots": False},
    },
}

REQUIRED_SECTIONS = ("network", "training", "data")


def presets() -> Mapping[str, Mapping[str, Any]]:
    return {name: deepcopy(cfg) for name, cfg in _PRESETS.items()}


def load_preset(name: str) -> Dict[str, Any]:
    try:
        return deepcopy(dict(_PRESETS[name]))
    except KeyError:
        available = ", ".join(sorted(_PRESETS))
        raise KeyError(f"Unknown preset {name!r}. Available presets: {available}") from None


def load_config(path: str | Path) -> Dict[str, Any]:
    """Read a run config file and check its required sections."""

    data = dict(read_mapping(path))
    missing = [section for section in REQUIRED_SECTIONS if section not in data]
    if missing:
        raise ConfigurationError(f"Config {Path(path).name} is missing sections: {', '.join(missing)}")
    return data


def run_pipeline(config: Mapping[str, Any]) -> RunResult:
    """Build, train, test and persist a network described by ``config``."""

    network = network_from_dict(config["network"])
    train_cfg = TrainConfig.from_mapping(config.get("training", {}))
    data_cfg = dict(config["data"])
    run_cfg = dict(config.get("run", {}))

    dataset = get_dataset(str(data_cfg["name"]), **dict(data_cfg.get("options", {})))
    if dataset.num_inputs != network.input_count or dataset.num_outputs != network.output_count:
        raise ConfigurationError(
            f"dataset {dataset.name!r} provides {dataset.num_inputs} inputs and "
            f"{dataset.num_outputs} outputs; the network expects "
            f"{network.input_count} and {network.output_count}"
        )

    run_dir = Path(run_cfg.get("run_dir") or f"runs/{dataset.name}")
    run_dir.mkdir(parents=True, exist_ok=True)
    parameters_path = Path(run_cfg.get("parameters_file") or run_dir / "parameters.bin")
    threshold = float(run_cfg.get("test_threshold", 0.1))

    _print_startup_summary(dataset_name=dataset.name, network=network, config=train_cfg)

    train_jsonl = JsonlSink(
        run_dir / "metrics.jsonl", split="train", seed=train_cfg.seed, backend=train_cfg.backend
    )
    train_csv = CsvSink(run_dir / "metrics.csv", split="train")
    plots = PlotAdapter(run_dir, enable_plots=bool(run_cfg.get("enable_plots", False)))

    with NetworkTrainer(network, train_cfg, callbacks=[train_jsonl, train_csv, plots]) as trainer:
        if parameters_path.exists():
            log.info("Reading parameters from %s", parameters_path)
            trainer.read_parameters(parameters_path)
        else:
            trainer.init_random_parameters()
        result = trainer.train(dataset.train)
        if dataset.test:
            report = trainer.test(dataset.test, threshold)
            test_jsonl = JsonlSink(
                run_dir / "metrics_test.jsonl", split="test", seed=train_cfg.seed, backend=train_cfg.backend
            )
            test_jsonl.on_epoch(train_cfg.epochs, report.as_metrics())
        trainer.save_parameters(parameters_path)
        optimizer = {"type": trainer.optimizer.name, **trainer.optimizer.hyperparameters()}
    plots.close()

    resolved = {
        "network": network_to_dict(network),
        "training": {**train_cfg.to_dict(), "optimizer": optimizer},
        "data": data_cfg,
        "run": {**run_cfg, "run_dir": str(run_dir), "parameters_file": str(parameters_path)},
    }
    manifest_path = write_manifest(
        run_dir / "manifest.json",
        config=resolved,
        dataset_provenance=dataset.provenance,
        layout=_layout_summary(network),
    )
    return replace(
        result,
        metrics_path=str(train_jsonl.path),
        manifest_path=manifest_path,
        parameters_path=str(parameters_path),
    )


def _layout_summary(network: NetworkConfig) -> Dict[str, Any]:
    return {
        "activation_count": network.activation_count,
        "parameter_count": network.parameter_count,
        "layers": [
            {
                "type": layer.kind,
                "num_inputs": layer.num_inputs,
                "num_outputs": layer.num_outputs,
                "activation_input_offset": layer.activation_input_offset,
                "activation_output_offset": layer.activation_output_offset,
                "parameter_offset": layer.parameter_offset,
                "parameter_count": layer.parameter_count,
            }
            for layer in network.layers
        ],
    }


def _print_startup_summary(*, dataset_name: str, network: NetworkConfig, config: TrainConfig) -> None:
    shape = " -> ".join([str(network.input_count)] + [f"{layer.kind}({layer.num_outputs})" for layer in network.layers])
    print("=== flatnets run ===")
    print(f"Dataset       : {dataset_name}")
    print(f"Layers        : {shape}")
    print(f"Parameters    : {network.parameter_count}")
    print(f"Activations   : {network.activation_count} per sample")
    print(f"Loss          : {config.loss}")
    print(f"Optimizer     : {dict(config.optimizer).get('type', 'sgd')}")
    print(f"Backend       : {config.backend}")
    print(f"Epochs/batch  : {config.epochs}/{config.batch_size}")
    print("====================")


__all__ = ["run_pipeline", "load_preset", "load_config", "presets"]
