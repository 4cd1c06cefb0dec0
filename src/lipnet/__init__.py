"""Lipschitz-constrained training of feed-forward networks.

The stable top-level API covers the network data model, the structured
log-det barrier, the feasibility step bounds and the central-path Adam
optimizer. The SDP helpers in ``lipnet.lipcalc`` (cvxpy) and the plotting
helpers in ``lipnet.plotting`` (matplotlib) are not re-exported here, which
keeps ``import lipnet`` light.
"""

from .barrier import (
    BarrierFunction,
    CholeskyFactor,
    FixedSlackBarrier,
    InfeasibleIterateError,
    InverseBlocks,
    is_feasible,
    shrink_to_feasible,
)
from .data import (
    NetworkData,
    initial_variable,
    load_csv_dataset,
    load_model,
    make_one_hot,
    save_model,
    synthetic_classification,
)
from .feasibility import FeasibilityCheck, JointFeasibility, NoFeasibilityCheck, WeightFeasibility
from .optimizer import AdamBarrierOptimizer, AdamBarrierResult, AdamBarrierSettings, TrainingStatistics
from .problem import NetworkTopology, NetworkVariable
from .structure import BlockTridiagonal, chi_matrix
from .training import BarrierTrainingProblem, BatchLossGradient, LossConfig

__all__ = [
    "NetworkTopology",
    "NetworkVariable",
    "BlockTridiagonal",
    "chi_matrix",
    "BarrierFunction",
    "FixedSlackBarrier",
    "CholeskyFactor",
    "InverseBlocks",
    "InfeasibleIterateError",
    "is_feasible",
    "shrink_to_feasible",
    "FeasibilityCheck",
    "NoFeasibilityCheck",
    "WeightFeasibility",
    "JointFeasibility",
    "AdamBarrierSettings",
    "AdamBarrierOptimizer",
    "AdamBarrierResult",
    "TrainingStatistics",
    "LossConfig",
    "BatchLossGradient",
    "BarrierTrainingProblem",
    "NetworkData",
    "make_one_hot",
    "load_csv_dataset",
    "synthetic_classification",
    "initial_variable",
    "save_model",
    "load_model",
]
