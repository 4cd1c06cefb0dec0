"""Plots of recorded training statistics."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import matplotlib.pyplot as plt
import numpy as np

from .optimizer import TrainingStatistics


def plot_loss_history(
    stats: TrainingStatistics,
    out_path: str | Path | None = None,
    title: str = "Training loss",
    ax: Optional[plt.Axes] = None,
):
    """Plot the loss trace on a log scale with central-path step boundaries.

    Returns the figure; it is also written to ``out_path`` when given.
    """
    if ax is None:
        fig, ax = plt.subplots(figsize=(7, 4), facecolor="white")
    else:
        fig = ax.figure
    loss = np.asarray(stats.loss, dtype=float)
    ax.plot(np.arange(loss.size), loss, color="#1f77b4", linewidth=1.2, label="loss")
    if loss.size and np.all(loss > 0):
        ax.set_yscale("log")

    # Each step records its starting loss plus one value per iteration.
    boundary = 0
    for step in stats.steps[:-1]:
        boundary += int(step["iterations"]) + 1
        ax.axvline(boundary, color="0.6", linestyle="--", linewidth=0.8)

    ax.set_xlabel("evaluation")
    ax.set_ylabel("loss")
    ax.set_title(title)
    ax.grid(True, alpha=0.3)
    fig.tight_layout()
    if out_path is not None:
        out_path = Path(out_path)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(out_path, bbox_inches="tight")
    return fig
