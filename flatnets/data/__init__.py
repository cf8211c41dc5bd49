"""Dataset registry and loader helpers."""

# Ensure built-in datasets register themselves when the package is imported.
from . import csv_loader as _csv_loader  # noqa: F401
from . import synthetic as _synthetic  # noqa: F401
from .registry import (
    DatasetSpec,
    available_datasets,
    get_dataset,
    one_hot,
    register_dataset,
    to_samples,
)
from .synthetic import make_blobs

__all__ = [
    "DatasetSpec",
    "available_datasets",
    "get_dataset",
    "make_blobs",
    "one_hot",
    "register_dataset",
    "to_samples",
]
