import json

import matplotlib

matplotlib.use("Agg")

from lipnet.cli import main
from lipnet.data import load_model


def test_train_and_lipschitz_commands(tmp_path, capsys):
    model_path = tmp_path / "model.json"
    stats_path = tmp_path / "stats.json"
    plot_path = tmp_path / "loss.png"
    code = main(
        [
            "train",
            "--topology",
            "2,3,2",
            "--lipschitz",
            "5",
            "--samples",
            "12",
            "--cpsteps",
            "2",
            "--max-iter",
            "50",
            "--feasibility",
            "--out-model",
            str(model_path),
            "--out-stats",
            str(stats_path),
            "--plot",
            str(plot_path),
        ]
    )
    assert code == 0
    assert load_model(model_path, topology=(2, 3, 2)).slack is not None
    stats = json.loads(stats_path.read_text())
    assert len(stats["steps"]) == 2
    assert plot_path.exists()

    assert main(["lipschitz", "--model", str(model_path), "--trivial-only"]) == 0
    out = capsys.readouterr().out
    assert "final loss" in out
    assert "trivial:" in out


def test_train_with_fixed_slack(tmp_path):
    model_path = tmp_path / "model.mat"
    code = main(
        [
            "train",
            "--topology",
            "2,3,2",
            "--lipschitz",
            "2",
            "--fixed-slack",
            "--feasibility",
            "--samples",
            "6",
            "--cpsteps",
            "1",
            "--max-iter",
            "20",
            "--out-model",
            str(model_path),
        ]
    )
    assert code == 0
    assert load_model(model_path).slack is None
