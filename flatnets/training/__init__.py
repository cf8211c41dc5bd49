"""Losses, optimizers, schedules and the training loop."""

from .losses import REGISTRY as LOSSES
from .optimizers import create_optimizer
from .schedules import create_schedule
from .trainer import NetworkRunner, NetworkTrainer, TrainConfig

__all__ = [
    "LOSSES",
    "NetworkRunner",
    "NetworkTrainer",
    "TrainConfig",
    "create_optimizer",
    "create_schedule",
]
