"""Epoch metric sinks used as trainer callbacks."""

from __future__ import annotations

import csv
import json
from pathlib import Path
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping

from .artifacts import git_sha


class _EpochSink(ABC):
    """Truncate ``path`` on creation and append one row per epoch."""

    def __init__(self, path: str | Path, *, split: str) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text("")
        self.split = split

    def _row(self, epoch: int, metrics: Mapping[str, Any]) -> Dict[str, Any]:
        row: Dict[str, Any] = {"epoch": int(epoch), "split": self.split}
        row.update({k: float(v) for k, v in metrics.items() if isinstance(v, (int, float))})
        return row

    @abstractmethod
    def write(self, row: Mapping[str, Any]) -> None:
        """Persist one epoch row."""

    def on_epoch(self, epoch: int, metrics: Mapping[str, Any]) -> None:
        self.write(self._row(epoch, metrics))

    __call__ = on_epoch


class JsonlSink(_EpochSink):
    """One JSON object per epoch tagged with the run seed, backend and git revision."""

    def __init__(
        self,
        path: str | Path,
        *,
        split: str = "train",
        seed: int | None = None,
        backend: str | None = None,
        sha: str | None = None,
    ) -> None:
        super().__init__(path, split=split)
        self.tags = {"seed": seed, "backend": backend, "sha": sha or git_sha()}

    def write(self, row: Mapping[str, Any]) -> None:
        record = {**row, **self.tags}
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(record) + "\n")


class CsvSink(_EpochSink):
    """CSV with the trainer's epoch columns first.

    The header is fixed by the first row; metrics that only appear later are
    dropped and missing ones are left empty.
    """

    LEADING = ("epoch", "split", "loss", "lr", "samples_per_sec", "seconds")

    def __init__(self, path: str | Path, *, split: str = "train") -> None:
        super().__init__(path, split=split)
        self.fieldnames: List[str] = []

    def write(self, row: Mapping[str, Any]) -> None:
        with self.path.open("a", encoding="utf-8", newline="") as handle:
            if not self.fieldnames:
                extra = [key for key in row if key not in self.LEADING]
                self.fieldnames = [key for key in self.LEADING if key in row] + extra
                writer = csv.DictWriter(handle, fieldnames=self.fieldnames, extrasaction="ignore")
                writer.writeheader()
            else:
                writer = csv.DictWriter(handle, fieldnames=self.fieldnames, extrasaction="ignore")
            writer.writerow(row)
