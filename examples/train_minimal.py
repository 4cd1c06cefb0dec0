"""Minimal Lipschitz-constrained training run on synthetic blobs."""

from __future__ import annotations

import logging

from lipnet.barrier import BarrierFunction, shrink_to_feasible
from lipnet.data import initial_variable, synthetic_classification
from lipnet.feasibility import JointFeasibility
from lipnet.lipcalc import sdp_lipschitz, trivial_lipschitz
from lipnet.optimizer import AdamBarrierOptimizer, AdamBarrierSettings, TrainingStatistics
from lipnet.training import BarrierTrainingProblem, BatchLossGradient


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    lipschitz = 5.0
    data = synthetic_classification(60, input_dim=2, num_classes=3, seed=3)
    provider = BatchLossGradient(data.inputs, data.targets)
    barrier = BarrierFunction(lipschitz)
    x0 = shrink_to_feasible(barrier, initial_variable((2, 10, 10, 3), variance=0.1, seed=3))

    settings = AdamBarrierSettings(max_iter=5000, cpsteps=4, feasibility=True, verbose=True)
    stats = TrainingStatistics()
    result = AdamBarrierOptimizer(settings).run(
        BarrierTrainingProblem(provider, barrier, JointFeasibility()), x0, stats
    )

    print(f"loss {stats.loss[0]:.4f} -> {result.loss:.4f}, accuracy {provider.accuracy(result.variable):.3f}")
    print(f"trivial bound {trivial_lipschitz(result.variable.weights):.3f}")
    print(f"SDP bound     {sdp_lipschitz(result.variable.weights):.3f} (target {lipschitz})")
