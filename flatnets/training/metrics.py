"""Classification metrics for the test pass."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Mapping

import numpy as np

from ..core.types import Array


@dataclass(frozen=True)
class ClassMetrics:
    precision: float
    recall: float
    f1: float


@dataclass(frozen=True)
class EvaluationReport:
    """Outcome of :meth:`flatnets.training.trainer.NetworkTrainer.test`."""

    correct: int
    total: int
    argmax_accuracy: float
    classes: List[ClassMetrics] = field(default_factory=list)

    @property
    def subset_accuracy(self) -> float:
        return self.correct / self.total if self.total else 0.0

    def as_metrics(self) -> Mapping[str, float]:
        metrics: Dict[str, float] = {
            "subset_accuracy": self.subset_accuracy,
            "accuracy": self.argmax_accuracy,
        }
        if self.classes:
            metrics["macro_f1"] = float(np.mean([c.f1 for c in self.classes]))
        return metrics


def _ratio(numerator: float, denominator: float) -> float:
    return 0.0 if denominator == 0 else numerator / denominator


def classification_report(predictions: Array, targets: Array, threshold: float) -> EvaluationReport:
    """Threshold each output into a label (``value > threshold``) and score it.

    A sample counts towards subset accuracy only when every one of its labels
    matches.  Per-class precision, recall and F1 come from the same labels.
    """

    predictions = np.asarray(predictions)
    targets = np.asarray(targets)
    if predictions.shape != targets.shape:
        raise ValueError(f"predictions {predictions.shape} and targets {targets.shape} differ")
    if predictions.shape[0] == 0:
        return EvaluationReport(correct=0, total=0, argmax_accuracy=0.0)

    predicted = predictions > threshold
    expected = targets > threshold
    correct = int(np.sum(np.all(predicted == expected, axis=1)))
    argmax_accuracy = float(np.mean(np.argmax(predictions, axis=1) == np.argmax(targets, axis=1)))

    classes: List[ClassMetrics] = []
    for column in range(predictions.shape[1]):
        tp = float(np.sum(predicted[:, column] & expected[:, column]))
        fp = float(np.sum(predicted[:, column] & ~expected[:, column]))
        fn = float(np.sum(~predicted[:, column] & expected[:, column]))
        precision = _ratio(tp, tp + fp)
        recall = _ratio(tp, tp + fn)
        f1 = _ratio(2 * precision * recall, precision + recall)
        classes.append(ClassMetrics(precision=precision, recall=recall, f1=f1))
    return EvaluationReport(
        correct=correct,
        total=int(predictions.shape[0]),
        argmax_accuracy=argmax_accuracy,
        classes=classes,
    )


__all__ = ["ClassMetrics", "EvaluationReport", "classification_report"]
