"""Runner and trainer driving the layer kernels over shared buffers."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, MutableSequence, Sequence

import numpy as np

from ..core.buffers import BufferSet
from ..core.layers import Dropout
from ..core.layout import ConfigurationError, NetworkConfig
from ..core.types import Array, Batch, RunResult, Sample
from ..kernels import Backend, create_backend, dropout_keep_mask, fill_random
from ..serialization import load_parameters, save_parameters
from .losses import REGISTRY as LOSS_REGISTRY
from .metrics import EvaluationReport, classification_report
from .optimizers import create_optimizer
from .schedules import create_schedule

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrainConfig:
    """Hyperparameters of one training run."""

    epochs: int = 1
    batch_size: int = 1
    loss: str = "mse"
    optimizer: Mapping[str, Any] = field(default_factory=lambda: {"type": "sgd"})
    schedule: Mapping[str, Any] = field(default_factory=lambda: {"type": "constant", "lr": 0.01})
    backend: str = "vectorized"
    seed: int | None = None

    def __post_init__(self) -> None:
        if self.epochs < 0:
            raise ConfigurationError(f"epochs must be >= 0, got {self.epochs}")
        if self.batch_size <= 0:
            raise ConfigurationError(f"batch size must be positive, got {self.batch_size}")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "TrainConfig":
        optimizer = data.get("optimizer", {"type": "sgd"})
        schedule = data.get("lr_schedule", data.get("schedule", {"type": "constant", "lr": 0.01}))
        seed = data.get("seed")
        return cls(
            epochs=int(data.get("epochs", 1)),
            batch_size=int(data.get("batch_size", data.get("batch", 1))),
            loss=str(data.get("loss", "mse")),
            optimizer={"type": optimizer} if isinstance(optimizer, str) else dict(optimizer),
            schedule=schedule if isinstance(schedule, (int, float, str)) else dict(schedule),
            backend=str(data.get("backend", "vectorized")),
            seed=int(seed) if seed is not None else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "epochs": self.epochs,
            "batch_size": self.batch_size,
            "loss": self.loss,
            "optimizer": dict(self.optimizer),
            "lr_schedule": self.schedule if isinstance(self.schedule, (int, float, str)) else dict(self.schedule),
            "backend": self.backend,
            "seed": self.seed,
        }


def shuffle_in_place(data: MutableSequence[Any], rng: np.random.Generator) -> None:
    """Fisher-Yates shuffle driven by ``rng``."""

    for i in range(len(data) - 1, 0, -1):
        j = int(rng.integers(i + 1))
        data[i], data[j] = data[j], data[i]


class NetworkAgent:
    """Owns a :class:`BufferSet` and runs forward/backward passes over it."""

    training = False

    def __init__(
        self,
        network: NetworkConfig,
        *,
        batch_size: int = 1,
        backend: str | Backend = "vectorized",
        rng: np.random.Generator | None = None,
        seed: int | None = None,
    ) -> None:
        self.network = network
        self.backend = create_backend(backend)
        self.rng = rng if rng is not None else np.random.default_rng(seed)
        self.buffers = BufferSet(network, batch_size)
        self._keep: Dict[int, Array] = {}

    @property
    def batch_size(self) -> int:
        return self.buffers.batch_size

    @property
    def closed(self) -> bool:
        return self.buffers.closed

    def _require_open(self) -> None:
        if self.closed:
            raise RuntimeError(f"{type(self).__name__} has been closed")

    # ------------------------------------------------------------------
    # Parameters

    def init_random_parameters(self) -> None:
        self._require_open()
        for layer in self.network.layers:
            fill_random(layer, self.buffers.parameters, self.rng)

    def get_parameters(self) -> Array:
        self._require_open()
        return self.buffers.parameters.copy()

    def load_parameters(self, parameters: Array) -> None:
        self._require_open()
        parameters = np.asarray(parameters, dtype=np.float32).reshape(-1)
        if parameters.size != self.network.parameter_count:
            raise ValueError(
                f"got {parameters.size} parameters, the network has {self.network.parameter_count}"
            )
        self.buffers.parameters[...] = parameters

    def save_parameters(self, path: str | Path) -> str:
        return save_parameters(path, self.get_parameters())

    def read_parameters(self, path: str | Path) -> None:
        self.load_parameters(load_parameters(path, self.network.parameter_count))

    # ------------------------------------------------------------------
    # Passes

    def _forward(self, inputs: Array) -> None:
        self._require_open()
        self.buffers.load_inputs(inputs)
        self._keep.clear()
        for index, layer in enumerate(self.network.layers):
            keep = None
            if isinstance(layer, Dropout):
                keep = dropout_keep_mask(layer, self.rng, self.training)
                self._keep[index] = keep
            self.backend.forward(layer, self.buffers, keep)

    def _backward(self) -> None:
        layers = self.network.layers
        for index in range(len(layers) - 1, -1, -1):
            self.backend.backward(layers[index], self.buffers, self._keep.get(index))

    def predict(self, inputs: Sequence[Array] | Array) -> List[Array]:
        """Run inference with dropout disabled; one output vector per input."""

        self._require_open()
        rows = [np.asarray(x, dtype=np.float32).reshape(-1) for x in inputs]
        outputs: List[Array] = []
        training, self.training = self.training, False
        try:
            for start in range(0, len(rows), self.batch_size):
                self._forward(np.stack(rows[start : start + self.batch_size]))
                outputs.extend(self.buffers.outputs())
        finally:
            self.training = training
        return outputs

    # ------------------------------------------------------------------
    # Lifecycle

    def close(self) -> None:
        if not self.closed:
            self.buffers.close()
            self._keep.clear()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class NetworkRunner(NetworkAgent):
    """Inference-only agent."""

    def __init__(
        self,
        network: NetworkConfig,
        parameters: Array | None = None,
        *,
        batch_size: int = 1,
        backend: str | Backend = "vectorized",
    ) -> None:
        super().__init__(network, batch_size=batch_size, backend=backend)
        if parameters is not None:
            self.load_parameters(parameters)


class NetworkTrainer(NetworkAgent):
    """Run epochs of shuffle, forward, loss, backward and optimizer steps."""

    def __init__(
        self,
        network: NetworkConfig,
        config: TrainConfig,
        *,
        backend: str | Backend | None = None,
        rng: np.random.Generator | None = None,
        callbacks: Sequence[object] | None = None,
    ) -> None:
        super().__init__(
            network,
            batch_size=config.batch_size,
            backend=backend or config.backend,
            rng=rng,
            seed=config.seed,
        )
        self.config = config
        self.loss = LOSS_REGISTRY.resolve(config.loss)
        self.optimizer = create_optimizer(config.optimizer, network.parameter_count)
        self.schedule = create_schedule(config.schedule)
        self.callbacks = list(callbacks or [])

    def train_on_batch(self, samples: Sequence[Sample], learning_rate: float) -> float:
        """One forward/loss/backward/optimize step; returns the summed batch loss."""

        batch = Batch.from_samples(samples)
        training, self.training = self.training, True
        try:
            self._forward(batch.inputs)
            loss = self.loss(self.buffers, batch.targets)
            self._backward()
            self.optimizer.optimize(self.buffers, learning_rate)
        finally:
            self.training = training
        return loss

    def train(self, data: MutableSequence[Sample]) -> RunResult:
        """Train on ``data`` for ``config.epochs`` epochs, shuffling it in place."""

        self._require_open()
        if len(data) == 0:
            raise ValueError("cannot train on an empty dataset")
        self.optimizer.reset()
        history: List[Dict[str, float]] = []
        steps = 0
        for epoch in range(self.config.epochs):
            learning_rate = float(self.schedule(epoch))
            started = time.perf_counter()
            shuffle_in_place(data, self.rng)
            epoch_loss = 0.0
            for start in range(0, len(data), self.batch_size):
                epoch_loss += self.train_on_batch(data[start : start + self.batch_size], learning_rate)
                steps += 1
            elapsed = time.perf_counter() - started
            metrics = {
                "loss": epoch_loss / len(data),
                "lr": learning_rate,
                "samples_per_sec": len(data) / elapsed if elapsed > 0 else 0.0,
                "seconds": elapsed,
            }
            history.append(metrics)
            log.info(
                "Epoch %d, lr %.3g, loss %.4g, %.0f samples/s",
                epoch + 1,
                learning_rate,
                metrics["loss"],
                metrics["samples_per_sec"],
            )
            self._emit_epoch(epoch + 1, metrics)
        return RunResult(
            epochs=self.config.epochs,
            steps=steps,
            final_loss=history[-1]["loss"] if history else float("nan"),
            history=history,
        )

    def test(self, data: Sequence[Sample], threshold: float = 0.1) -> EvaluationReport:
        self._require_open()
        if len(data) == 0:
            raise ValueError("cannot test on an empty dataset")
        started = time.perf_counter()
        predictions = np.stack(self.predict([x for x, _ in data]))
        targets = np.stack([np.asarray(y, dtype=np.float32).reshape(-1) for _, y in data])
        report = classification_report(predictions, targets, threshold)
        elapsed = time.perf_counter() - started
        for index, scores in enumerate(report.classes):
            log.info(
                "Class %d: precision %.4f, recall %.4f, f1 %.4f",
                index,
                scores.precision,
                scores.recall,
                scores.f1,
            )
        log.info(
            "Subset accuracy %d/%d (%.2f%%), %.0f samples/s",
            report.correct,
            report.total,
            100.0 * report.subset_accuracy,
            report.total / elapsed if elapsed > 0 else 0.0,
        )
        return report

    def _emit_epoch(self, epoch: int, metrics: Mapping[str, float]) -> None:
        for callback in self.callbacks:
            if hasattr(callback, "on_epoch"):
                callback.on_epoch(epoch, metrics)  # type: ignore[attr-defined]
            elif callable(callback):
                callback(epoch, metrics)


__all__ = [
    "NetworkAgent",
    "NetworkRunner",
    "NetworkTrainer",
    "TrainConfig",
    "shuffle_in_place",
]
