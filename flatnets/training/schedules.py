"""Learning-rate schedules: pure functions of the epoch number."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping

from ..core.layout import ConfigurationError


@dataclass(frozen=True)
class Constant:
    lr: float = 0.01

    def __call__(self, epoch: int) -> float:
        return self.lr


@dataclass(frozen=True)
class StepDecay:
    """Multiply the rate by ``decay`` every ``step`` epochs."""

    lr: float = 0.01
    step: int = 10
    decay: float = 0.5

    def __call__(self, epoch: int) -> float:
        return self.lr * self.decay ** (epoch // self.step)


@dataclass(frozen=True)
class ExponentialDecay:
    lr: float = 0.01
    decay: float = 0.05

    def __call__(self, epoch: int) -> float:
        return self.lr * math.exp(-self.decay * epoch)


Schedule = Callable[[int], float]

SCHEDULES: Dict[str, Callable[..., Schedule]] = {
    "constant": Constant,
    "step_decay": StepDecay,
    "exponential_decay": ExponentialDecay,
}


def create_schedule(config: float | str | Mapping[str, Any]) -> Schedule:
    """Build a schedule from a number, a name or ``{"type": ..., **options}``."""

    if isinstance(config, (int, float)):
        return Constant(lr=float(config))
    if isinstance(config, str):
        config = {"type": config}
    options = dict(config)
    name = str(options.pop("type", "constant")).strip().lower().replace("-", "_")
    if name not in SCHEDULES:
        available = ", ".join(sorted(SCHEDULES))
        raise ConfigurationError(f"Unknown lr schedule {name!r}. Available schedules: {available}")
    try:
        schedule = SCHEDULES[name](**options)
    except TypeError as exc:
        raise ConfigurationError(f"Invalid options for lr schedule {name!r}: {exc}") from exc
    if isinstance(schedule, StepDecay) and schedule.step <= 0:
        raise ConfigurationError("step_decay requires a positive step")
    return schedule


__all__ = ["Constant", "StepDecay", "ExponentialDecay", "SCHEDULES", "Schedule", "create_schedule"]
