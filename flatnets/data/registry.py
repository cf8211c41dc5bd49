"""Dataset registry and metadata contracts."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, MutableMapping

import numpy as np

from ..core.types import Array, Sample


@dataclass(frozen=True)
class DatasetSpec:
    """Train and test samples plus the metadata recorded in run manifests.

    Attributes
    ----------
    name:
        Registry identifier the dataset was built from.
    train, test:
        Lists of ``(flat_input, flat_expected_output)`` pairs.  ``train`` is a
        plain list because the trainer shuffles it in place.
    num_inputs, num_outputs:
        Lengths every input and expected-output vector share.
    provenance:
        Free-form description of where the samples came from.
    """

    name: str
    train: List[Sample]
    test: List[Sample]
    num_inputs: int
    num_outputs: int
    provenance: Dict[str, Any] = field(default_factory=dict)


DatasetFactory = Callable[..., DatasetSpec]


_REGISTRY: MutableMapping[str, DatasetFactory] = {}


def register_dataset(
    name: str | None = None,
    factory: DatasetFactory | None = None,
) -> Callable[[DatasetFactory], DatasetFactory] | DatasetFactory:
    """Register a dataset factory, either directly or as a decorator."""

    def _decorator(func: DatasetFactory) -> DatasetFactory:
        _REGISTRY[str(name or func.__name__)] = func
        return func

    if factory is not None:
        return _decorator(factory)
    return _decorator


def get_dataset(name: str, /, **options: Any) -> DatasetSpec:
    """Build the dataset registered as ``name`` with ``options``."""

    if name not in _REGISTRY:
        available = ", ".join(available_datasets())
        raise KeyError(f"Unknown dataset {name!r}. Available datasets: {available}")
    spec = _REGISTRY[name](**options)
    _validate_spec(spec)
    return spec


def available_datasets() -> Iterable[str]:
    return sorted(_REGISTRY)


def to_samples(inputs: Array, targets: Array) -> List[Sample]:
    inputs = np.asarray(inputs, dtype=np.float32)
    targets = np.asarray(targets, dtype=np.float32)
    return [(inputs[i].reshape(-1), targets[i].reshape(-1)) for i in range(inputs.shape[0])]


def one_hot(labels: Array, num_classes: int) -> Array:
    labels = np.asarray(labels).astype(int).reshape(-1)
    if labels.size and (labels.min() < 0 or labels.max() >= num_classes):
        raise ValueError(f"labels must lie in [0, {num_classes}), got {labels.min()}..{labels.max()}")
    return np.eye(num_classes, dtype=np.float32)[labels]


def holdout_split(count: int, test_split: float, seed: int) -> tuple[Array, Array]:
    """Deterministic ``(train_indices, test_indices)`` permutation split."""

    if not 0.0 <= test_split < 1.0:
        raise ValueError(f"test_split must be in [0, 1), got {test_split}")
    order = np.random.default_rng(seed).permutation(count)
    n_test = int(round(count * test_split))
    return np.sort(order[n_test:]), np.sort(order[:n_test])


def _validate_spec(spec: DatasetSpec) -> None:
    if not spec.train:
        raise ValueError(f"Dataset {spec.name!r} has no training samples")
    for split, samples in (("train", spec.train), ("test", spec.test)):
        for x, y in samples:
            if x.size != spec.num_inputs or y.size != spec.num_outputs:
                raise ValueError(
                    f"Dataset {spec.name!r} {split} sample has shape ({x.size}, {y.size}), "
                    f"expected ({spec.num_inputs}, {spec.num_outputs})"
                )


__all__ = [
    "DatasetSpec",
    "available_datasets",
    "get_dataset",
    "holdout_split",
    "one_hot",
    "register_dataset",
    "to_samples",
]
