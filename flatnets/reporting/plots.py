"""Loss and learning-rate curves written with matplotlib's Agg backend."""

from __future__ import annotations

from pathlib import Path
from typing import List, Mapping, Tuple


class PlotAdapter:
    """Trainer callback collecting ``(epoch, loss, lr)``; :meth:`close` renders ``loss.png``."""

    def __init__(self, run_dir: str | Path, enable_plots: bool = False):
        self.enable_plots = enable_plots
        self.run_dir = Path(run_dir)
        self._points: List[Tuple[int, float, float]] = []

    def on_epoch(self, epoch: int, metrics: Mapping[str, float]) -> None:
        if self.enable_plots:
            self._points.append((int(epoch), float(metrics.get("loss", 0.0)), float(metrics.get("lr", 0.0))))

    __call__ = on_epoch

    def close(self) -> str | None:
        if not self.enable_plots or not self._points:
            return None
        try:
            import matplotlib
        except ImportError as exc:  # pragma: no cover - optional at import time
            raise RuntimeError("matplotlib is required when plots are enabled") from exc

        matplotlib.use("Agg", force=True)
        import matplotlib.pyplot as plt

        epochs, losses, rates = zip(*self._points)
        fig, loss_ax = plt.subplots()
        loss_ax.plot(epochs, losses, marker="o", color="tab:blue")
        loss_ax.set_xlabel("Epoch")
        loss_ax.set_ylabel("Loss")
        lr_ax = loss_ax.twinx()
        lr_ax.plot(epochs, rates, linestyle="--", color="tab:orange")
        lr_ax.set_ylabel("Learning rate")
        loss_ax.set_title("Training curve")
        self.run_dir.mkdir(parents=True, exist_ok=True)
        plot_path = self.run_dir / "loss.png"
        fig.savefig(plot_path)
        plt.close(fig)
        return str(plot_path)
