"""Label-first CSV files such as the MNIST CSV exports."""

from __future__ import annotations

from pathlib import Path

import numpy as np
import pandas as pd

from ..core.types import Array
from .registry import DatasetSpec, holdout_split, one_hot, register_dataset, to_samples


def read_labelled_csv(path: str | Path, *, scale: float = 255.0) -> tuple[Array, Array]:
    """Return ``(features, labels)``; column 0 is the label, the rest are scaled by ``1 / scale``."""

    df = pd.read_csv(path)
    if df.shape[1] < 2:
        raise ValueError(f"{path} needs a label column and at least one feature column")
    labels = df.iloc[:, 0].to_numpy()
    features = df.iloc[:, 1:].to_numpy(dtype=np.float32) / np.float32(scale)
    return features, labels


@register_dataset("csv")
def load_csv(
    *,
    train_path: str | Path,
    test_path: str | Path | None = None,
    num_classes: int | None = None,
    scale: float = 255.0,
    test_split: float = 0.2,
    seed: int = 0,
) -> DatasetSpec:
    """Load a label-first CSV; without ``test_path`` a seeded holdout is used."""

    x_train, y_train = read_labelled_csv(train_path, scale=scale)
    if test_path is not None:
        x_test, y_test = read_labelled_csv(test_path, scale=scale)
    else:
        train_idx, test_idx = holdout_split(x_train.shape[0], test_split, seed)
        x_test, y_test = x_train[test_idx], y_train[test_idx]
        x_train, y_train = x_train[train_idx], y_train[train_idx]
    if num_classes is None:
        num_classes = int(max(np.max(y_train), np.max(y_test) if y_test.size else 0)) + 1
    return DatasetSpec(
        name="csv",
        train=to_samples(x_train, one_hot(y_train, num_classes)),
        test=to_samples(x_test, one_hot(y_test, num_classes)),
        num_inputs=int(x_train.shape[1]),
        num_outputs=int(num_classes),
        provenance={
            "type": "csv",
            "train_path": str(train_path),
            "test_path": str(test_path) if test_path is not None else None,
            "scale": scale,
            "num_classes": num_classes,
        },
    )


__all__ = ["load_csv", "read_labelled_csv"]
