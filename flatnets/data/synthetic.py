"""Seeded Gaussian blobs for smoke runs and regression tests."""

from __future__ import annotations

import numpy as np

from ..core.types import Array
from .registry import DatasetSpec, holdout_split, one_hot, register_dataset, to_samples


def make_blobs(
    n: int = 256,
    d: int = 2,
    classes: int = 2,
    separation: float = 3.0,
    seed: int = 0,
) -> tuple[Array, Array]:
    """Return ``(features, labels)``.

    Class centres sit on a circle of radius ``separation`` in the first two
    feature dimensions, so two classes are linearly separable up to the
    Gaussian tails.
    """

    if d < 2:
        raise ValueError("blobs need at least two feature dimensions")
    rng = np.random.default_rng(seed)
    labels = np.arange(n) % classes
    angles = 2.0 * np.pi * labels / classes
    features = rng.normal(0.0, 1.0, size=(n, d))
    features[:, 0] += separation * np.cos(angles)
    features[:, 1] += separation * np.sin(angles)
    order = rng.permutation(n)
    return features[order].astype(np.float32), labels[order]


@register_dataset("blobs")
def load_blobs(
    *,
    n: int = 256,
    d: int = 2,
    classes: int = 2,
    separation: float = 3.0,
    test_split: float = 0.25,
    seed: int = 0,
) -> DatasetSpec:
    features, labels = make_blobs(n=n, d=d, classes=classes, separation=separation, seed=seed)
    targets = one_hot(labels, classes)
    train_idx, test_idx = holdout_split(n, test_split, seed)
    return DatasetSpec(
        name="blobs",
        train=to_samples(features[train_idx], targets[train_idx]),
        test=to_samples(features[test_idx], targets[test_idx]),
        num_inputs=d,
        num_outputs=classes,
        provenance={
            "type": "synthetic",
            "n": n,
            "d": d,
            "classes": classes,
            "separation": separation,
            "seed": seed,
            "test_split": test_split,
        },
    )


def make_stripes(
    n: int = 128,
    size: int = 8,
    noise: float = 0.1,
    seed: int = 0,
) -> tuple[Array, Array]:
    """Grayscale ``size x size`` images of horizontal (label 0) or vertical (label 1) stripes."""

    rng = np.random.default_rng(seed)
    labels = np.arange(n) % 2
    phases = rng.integers(0, 2, size=n)
    grid = np.arange(size)
    images = np.empty((n, size, size), dtype=np.float32)
    for i in range(n):
        lines = ((grid + phases[i]) % 2 == 0).astype(np.float32)
        images[i] = lines[:, None] if labels[i] == 0 else lines[None, :]
    images += rng.normal(0.0, noise, size=images.shape).astype(np.float32)
    order = rng.permutation(n)
    return images.reshape(n, -1)[order], labels[order]


@register_dataset("stripes")
def load_stripes(
    *,
    n: int = 128,
    size: int = 8,
    noise: float = 0.1,
    test_split: float = 0.25,
    seed: int = 0,
) -> DatasetSpec:
    features, labels = make_stripes(n=n, size=size, noise=noise, seed=seed)
    targets = one_hot(labels, 2)
    train_idx, test_idx = holdout_split(n, test_split, seed)
    return DatasetSpec(
        name="stripes",
        train=to_samples(features[train_idx], targets[train_idx]),
        test=to_samples(features[test_idx], targets[test_idx]),
        num_inputs=size * size,
        num_outputs=2,
        provenance={
            "type": "synthetic",
            "n": n,
            "size": size,
            "noise": noise,
            "seed": seed,
            "test_split": test_split,
        },
    )


__all__ = ["load_blobs", "load_stripes", "make_blobs", "make_stripes"]
