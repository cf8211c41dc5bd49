"""Optimizers updating the shared parameter buffer in place.

Every optimizer first reduces the per-sample gradient blocks to their mean
over the active samples, then applies its update rule elementwise.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, ClassVar, Dict, Mapping, Type

import numpy as np

from ..core.buffers import DTYPE, BufferSet
from ..core.layout import ConfigurationError
from ..core.types import Array


class Optimizer(ABC):
    """Base class; subclasses implement :meth:`_update`."""

    name: ClassVar[str] = "optimizer"

    def __init__(self, parameter_count: int) -> None:
        self.parameter_count = int(parameter_count)
        self.reset()

    def reset(self) -> None:
        """Zero all optimizer state."""

    def _zeros(self) -> Array:
        return np.zeros(self.parameter_count, dtype=DTYPE)

    def optimize(self, buffers: BufferSet, learning_rate: float) -> None:
        if buffers.parameter_count != self.parameter_count:
            raise ValueError(
                f"optimizer sized for {self.parameter_count} parameters, "
                f"buffers hold {buffers.parameter_count}"
            )
        self._update(buffers.parameters, buffers.mean_gradient(), float(learning_rate))

    @abstractmethod
    def _update(self, params: Array, grad: Array, lr: float) -> None:
        """Apply one step to ``params`` in place given the mean gradient ``grad``."""

    def hyperparameters(self) -> Dict[str, Any]:
        return {}


class Sgd(Optimizer):
    name = "sgd"

    def _update(self, params: Array, grad: Array, lr: float) -> None:
        params -= lr * grad


class SgdMomentum(Optimizer):
    name = "sgd_momentum"

    def __init__(self, parameter_count: int, momentum: float = 0.1) -> None:
        self.momentum = float(momentum)
        super().__init__(parameter_count)

    def reset(self) -> None:
        self.velocity = self._zeros()

    def _update(self, params: Array, grad: Array, lr: float) -> None:
        self.velocity[...] = self.momentum * self.velocity + (1.0 - self.momentum) * grad
        params -= lr * self.velocity

    def hyperparameters(self) -> Dict[str, Any]:
        return {"momentum": self.momentum}


class AdaGrad(Optimizer):
    name = "adagrad"

    def __init__(self, parameter_count: int, epsilon: float = 1e-8) -> None:
        self.epsilon = float(epsilon)
        super().__init__(parameter_count)

    def reset(self) -> None:
        self.accumulator = self._zeros()

    def _update(self, params: Array, grad: Array, lr: float) -> None:
        self.accumulator += np.square(grad)
        params -= lr * grad / (np.sqrt(self.accumulator) + self.epsilon)

    def hyperparameters(self) -> Dict[str, Any]:
        return {"epsilon": self.epsilon}


class AdaDelta(Optimizer):
    """AdaDelta over exponentially averaged squared gradients.

    The step is ``sqrt(acc_update + eps) / sqrt(acc_grad + eps)`` and
    ``acc_update`` averages the squared gradient.  With ``scale_by_gradient``
    the step is multiplied by the gradient and ``acc_update`` averages the
    squared step instead (Zeiler's formulation).
    """

    name = "adadelta"

    def __init__(
        self,
        parameter_count: int,
        rho: float = 0.1,
        epsilon: float = 1e-8,
        scale_by_gradient: bool = False,
    ) -> None:
        self.rho = float(rho)
        self.epsilon = float(epsilon)
        self.scale_by_gradient = bool(scale_by_gradient)
        super().__init__(parameter_count)

    def reset(self) -> None:
        self.accumulated_gradient = self._zeros()
        self.accumulated_update = self._zeros()

    def _update(self, params: Array, grad: Array, lr: float) -> None:
        rho, eps = self.rho, self.epsilon
        self.accumulated_gradient[...] = rho * self.accumulated_gradient + (1.0 - rho) * np.square(grad)
        update = np.sqrt(self.accumulated_update + eps) / np.sqrt(self.accumulated_gradient + eps)
        if self.scale_by_gradient:
            update = update * grad
            tracked = np.square(update)
        else:
            tracked = np.square(grad)
        self.accumulated_update[...] = rho * self.accumulated_update + (1.0 - rho) * tracked
        params -= lr * update

    def hyperparameters(self) -> Dict[str, Any]:
        return {"rho": self.rho, "epsilon": self.epsilon, "scale_by_gradient": self.scale_by_gradient}


class RmsProp(Optimizer):
    name = "rmsprop"

    def __init__(self, parameter_count: int, rho: float = 0.1, epsilon: float = 1e-8) -> None:
        self.rho = float(rho)
        self.epsilon = float(epsilon)
        super().__init__(parameter_count)

    def reset(self) -> None:
        self.accumulator = self._zeros()

    def _update(self, params: Array, grad: Array, lr: float) -> None:
        self.accumulator[...] = self.rho * self.accumulator + (1.0 - self.rho) * np.square(grad)
        params -= lr * grad / (np.sqrt(self.accumulator) + self.epsilon)

    def hyperparameters(self) -> Dict[str, Any]:
        return {"rho": self.rho, "epsilon": self.epsilon}


class Adam(Optimizer):
    """Adam with bias-corrected moments and a global timestep."""

    name = "adam"

    def __init__(
        self,
        parameter_count: int,
        beta1: float = 0.9,
        beta2: float = 0.999,
        epsilon: float = 1e-8,
    ) -> None:
        self.beta1 = float(beta1)
        self.beta2 = float(beta2)
        self.epsilon = float(epsilon)
        super().__init__(parameter_count)

    def reset(self) -> None:
        self.first_moment = self._zeros()
        self.second_moment = self._zeros()
        self.timestep = 0

    def _update(self, params: Array, grad: Array, lr: float) -> None:
        self.timestep += 1
        b1, b2 = self.beta1, self.beta2
        self.first_moment[...] = b1 * self.first_moment + (1.0 - b1) * grad
        self.second_moment[...] = b2 * self.second_moment + (1.0 - b2) * np.square(grad)
        m_hat = self.first_moment / (1.0 - b1**self.timestep)
        v_hat = self.second_moment / (1.0 - b2**self.timestep)
        params -= lr * m_hat / (np.sqrt(v_hat) + self.epsilon)

    def hyperparameters(self) -> Dict[str, Any]:
        return {"beta1": self.beta1, "beta2": self.beta2, "epsilon": self.epsilon}


OPTIMIZERS: Dict[str, Type[Optimizer]] = {
    cls.name: cls for cls in (Sgd, SgdMomentum, AdaGrad, AdaDelta, RmsProp, Adam)
}
_ALIASES = {"momentum": "sgd_momentum", "sgdmomentum": "sgd_momentum", "rms_prop": "rmsprop"}


def create_optimizer(config: str | Mapping[str, Any], parameter_count: int) -> Optimizer:
    """Build an optimizer from ``"adam"`` or ``{"type": "adam", "beta1": 0.9, ...}``."""

    if isinstance(config, str):
        config = {"type": config}
    options = dict(config)
    name = str(options.pop("type", "sgd")).strip().lower().replace("-", "_")
    name = _ALIASES.get(name, name)
    if name not in OPTIMIZERS:
        available = ", ".join(sorted(OPTIMIZERS))
        raise ConfigurationError(f"Unknown optimizer {name!r}. Available optimizers: {available}")
    try:
        return OPTIMIZERS[name](parameter_count, **options)
    except TypeError as exc:
        raise ConfigurationError(f"Invalid options for optimizer {name!r}: {exc}") from exc


__all__ = [
    "Optimizer",
    "Sgd",
    "SgdMomentum",
    "AdaGrad",
    "AdaDelta",
    "RmsProp",
    "Adam",
    "OPTIMIZERS",
    "create_optimizer",
]
