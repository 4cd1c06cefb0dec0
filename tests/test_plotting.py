import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt

from lipnet.optimizer import TrainingStatistics
from lipnet.plotting import plot_loss_history


def test_plot_loss_history_writes_figure(tmp_path):
    stats = TrainingStatistics(
        loss=[2.0, 1.5, 1.2, 1.1, 0.9, 0.8],
        steps=[{"iterations": 2}, {"iterations": 2}],
    )
    out = tmp_path / "figs" / "loss.png"
    fig = plot_loss_history(stats, out_path=out)
    ax = fig.axes[0]
    assert ax.get_yscale() == "log"
    assert len(ax.lines) == 2  # loss trace plus one step boundary
    assert out.exists()
    plt.close(fig)
