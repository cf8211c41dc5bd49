"""Command line entry point for flatnets training runs."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Iterable

from flatnets.config import read_mapping
from flatnets.kernels import available_backends
from flatnets.training import pipelines

LOG_FORMAT = "[%(asctime)s] [%(levelname)-8s] %(message)s"


def _format_result(result) -> str:
    payload = {
        "epochs": result.epochs,
        "steps": result.steps,
        "final_loss": result.final_loss,
        "metrics": result.metrics_path,
        "manifest": result.manifest_path,
        "parameters": result.parameters_path,
    }
    return json.dumps(payload, sort_keys=True)


def parse_args(argv: Iterable[str] | None = None) -> argparse.Namespace:
    preset_names = sorted(pipelines.presets().keys())
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--preset",
        choices=preset_names,
        default="blobs-softmax",
        help="Preset configuration to execute",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="JSON/YAML run config; a full config replaces the preset, a partial one is merged",
    )
    parser.add_argument("--network", type=Path, help="JSON/YAML network description")
    parser.add_argument("--epochs", type=int, help="Override the epoch count")
    parser.add_argument("--seed", type=int, help="Seed used for initialisation and shuffling")
    parser.add_argument("--backend", choices=available_backends(), help="Kernel execution model")
    parser.add_argument("--run-dir", type=Path, help="Directory for metrics, manifest and parameters")
    parser.add_argument("--parameters", type=Path, help="Weights file to resume from and save to")
    parser.add_argument(
        "--enable-plots", action="store_true", help="Write a loss curve with matplotlib"
    )
    parser.add_argument(
        "--list-presets", action="store_true", help="List available presets and exit"
    )
    parser.add_argument(
        "--dump-config", type=Path, help="Dump the resolved config to a JSON file"
    )
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO)")
    return parser.parse_args(argv)


def _merge(base: dict, override: dict) -> dict:
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            base[key] = _merge(dict(base[key]), value)
        else:
            base[key] = value
    return base


def _setup_logging(level: str) -> None:
    root = logging.getLogger("flatnets")
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    if not root.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%H:%M:%S"))
        root.addHandler(handler)


def main(argv: Iterable[str] | None = None) -> None:
    args = parse_args(argv)
    _setup_logging(args.log_level)

    if args.list_presets:
        for name in sorted(pipelines.presets().keys()):
            print(name)
        raise SystemExit(0)

    config = pipelines.load_preset(args.preset)
    if args.config:
        override = json.loads(json.dumps(read_mapping(args.config)))
        if set(pipelines.REQUIRED_SECTIONS) <= set(override):
            config = pipelines.load_config(args.config)
        else:
            config = _merge(config, override)
    if args.network:
        config["network"] = json.loads(json.dumps(read_mapping(args.network)))

    training = config.setdefault("training", {})
    run = config.setdefault("run", {})
    if args.epochs is not None:
        training["epochs"] = int(args.epochs)
    if args.seed is not None:
        training["seed"] = int(args.seed)
    if args.backend:
        training["backend"] = args.backend
    if args.run_dir:
        run["run_dir"] = str(args.run_dir)
    if args.parameters:
        run["parameters_file"] = str(args.parameters)
    if args.enable_plots:
        run["enable_plots"] = True

    if args.dump_config:
        args.dump_config.parent.mkdir(parents=True, exist_ok=True)
        args.dump_config.write_text(json.dumps(config, indent=2))

    result = pipelines.run_pipeline(config)
    print(_format_result(result))


if __name__ == "__main__":
    main()
