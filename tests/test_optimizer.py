import numpy as np
import pytest

from lipnet.barrier import FixedSlackBarrier, InfeasibleIterateError
from lipnet.feasibility import WeightFeasibility
from lipnet.optimizer import AdamBarrierOptimizer, AdamBarrierSettings, TrainingStatistics
from lipnet.problem import NetworkVariable
from lipnet.training import BarrierTrainingProblem


class QuadraticLoss:
    """``0.5 * ||W - target||^2 + 0.5 * ||b||^2`` for a single linear layer."""

    def __init__(self, target: np.ndarray) -> None:
        self.target = np.asarray(target, dtype=float)

    def __call__(self, variable: NetworkVariable):
        diff = variable.weights[0] - self.target
        gradient = NetworkVariable([diff.copy()], [variable.biases[0].copy()])
        loss = 0.5 * float(np.sum(diff**2)) + 0.5 * float(np.sum(variable.biases[0] ** 2))
        return gradient, loss


def _central_path_point(gamma: float, target: float = 2.0) -> float:
    """Root of ``(w - target) + 2 gamma w / (1 - w^2)`` in (0, 1) by bisection."""
    lo, hi = 0.0, 1.0 - 1e-12
    for _ in range(200):
        mid = 0.5 * (lo + hi)
        if (mid - target) + 2.0 * gamma * mid / (1.0 - mid**2) < 0.0:
            lo = mid
        else:
            hi = mid
    return 0.5 * (lo + hi)


def _linear_problem(feasibility: bool = True):
    # One 2x2 layer with L0 = 1: chi is feasible exactly when ||W||_2 < 1.
    barrier = FixedSlackBarrier([], lipschitz=1.0)
    check = WeightFeasibility() if feasibility else None
    return BarrierTrainingProblem(QuadraticLoss(2.0 * np.eye(2)), barrier, check)


def test_settings_validation():
    AdamBarrierSettings().validate()
    with pytest.raises(ValueError):
        AdamBarrierSettings(cpsteps=0).validate()
    with pytest.raises(ValueError):
        AdamBarrierSettings(beta1=1.0).validate()
    with pytest.raises(ValueError):
        AdamBarrierOptimizer(AdamBarrierSettings(alphadec=0.0))


def test_central_path_is_monotone_and_decays_parameters():
    x0 = NetworkVariable([np.zeros((2, 2))], [np.zeros(2)])
    settings = AdamBarrierSettings(max_iter=3000, cpsteps=3, feasibility=True)
    stats = TrainingStatistics()
    result = AdamBarrierOptimizer(settings).run(_linear_problem(), x0, stats)

    losses = [step["loss"] for step in result.history]
    assert len(losses) == 3
    for prev, cur in zip(losses, losses[1:]):
        assert cur <= prev + 1e-2

    gammas = [step["gamma"] for step in result.history]
    alphas = [step["alpha"] for step in result.history]
    assert np.allclose(gammas, [1.0, 0.5, 0.25])
    assert np.allclose(alphas, [0.02, 0.01, 0.005])

    # The iterate tracks the analytic central point of the last step.
    w = _central_path_point(0.25)
    assert np.allclose(result.variable.weights[0], w * np.eye(2), atol=5e-2)
    assert np.linalg.norm(result.variable.weights[0], 2) < 1.0
    assert np.allclose(result.variable.biases[0], 0.0)

    assert stats.steps == result.history
    assert len(stats.loss) == sum(step["iterations"] for step in result.history) + 3
    assert stats.loss[-1] == result.loss
    assert np.allclose(x0.weights[0], 0.0)


def test_feasibility_check_clips_steps_near_the_boundary():
    x0 = NetworkVariable([0.95 * np.eye(2)], [np.zeros(2)])
    settings = AdamBarrierSettings(max_iter=20, cpsteps=1, gamma=1e-3, alpha=0.5, feasibility=True)
    result = AdamBarrierOptimizer(settings).run(_linear_problem(), x0)
    assert np.linalg.norm(result.variable.weights[0], 2) < 1.0
    assert result.history[0]["clipped"] > 0


def test_infeasible_step_propagates_without_feasibility_check():
    x0 = NetworkVariable([0.95 * np.eye(2)], [np.zeros(2)])
    settings = AdamBarrierSettings(max_iter=20, cpsteps=1, gamma=1e-3, alpha=0.5, feasibility=False)
    with pytest.raises(InfeasibleIterateError):
        AdamBarrierOptimizer(settings).run(_linear_problem(feasibility=False), x0)


def test_statistics_json_round_trip(tmp_path):
    stats = TrainingStatistics(loss=[3.0, 2.0, 1.5], steps=[{"step": 0, "iterations": 2}])
    path = tmp_path / "stats" / "trace.json"
    stats.save_json(path)
    loaded = TrainingStatistics.load_json(path)
    assert loaded.loss == stats.loss
    assert loaded.steps == stats.steps
    assert stats.to_dict()["loss"] == [3.0, 2.0, 1.5]
