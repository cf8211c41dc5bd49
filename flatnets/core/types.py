"""Core typing contracts for flatnets."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Sequence, Tuple

import numpy as np

Array = np.ndarray

Sample = Tuple[Array, Array]
"""A single ``(flat_input, flat_expected_output)`` pair."""


@dataclass(frozen=True)
class Batch:
    """A single mini-batch of data stacked into ``(n, features)`` arrays."""

    inputs: Array
    targets: Array

    @classmethod
    def from_samples(cls, samples: Sequence[Sample]) -> "Batch":
        inputs = np.stack([np.asarray(x, dtype=np.float32).reshape(-1) for x, _ in samples])
        targets = np.stack([np.asarray(y, dtype=np.float32).reshape(-1) for _, y in samples])
        return cls(inputs=inputs, targets=targets)

    def __len__(self) -> int:
        return int(self.inputs.shape[0])


@dataclass(frozen=True)
class RunResult:
    """Summary returned by :meth:`flatnets.training.trainer.NetworkTrainer.train`."""

    epochs: int
    steps: int
    final_loss: float
    history: List[Dict[str, float]] = field(default_factory=list)
    metrics_path: str = ""
    manifest_path: str = ""
    parameters_path: str = ""
