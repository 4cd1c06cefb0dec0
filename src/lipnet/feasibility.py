"""Step bounds that keep chi positive definite along a search direction.

The optimizer moves ``x <- x - alpha * d``. A feasibility check is prepared
at the current position and then answers ``step_bound(d)``: the largest
``alpha`` (or a safe under-estimate) for which chi stays positive definite.
"""

from __future__ import annotations

import logging
from typing import List, Optional

import numpy as np
from scipy.linalg import eig, eigvalsh, solve_triangular

from .barrier import BarrierFunction, CholeskyFactor, symmetrize
from .problem import NetworkVariable
from .structure import chi_linear_term, chi_matrix, chi_quadratic_term

logger = logging.getLogger(__name__)

Array = np.ndarray


class FeasibilityCheck:
    """Interface for step-bound strategies."""

    enabled = True

    def prepare(self, barrier: BarrierFunction, variable: NetworkVariable, factor: CholeskyFactor) -> None:
        raise NotImplementedError

    def step_bound(self, direction: NetworkVariable) -> float:
        raise NotImplementedError


class NoFeasibilityCheck(FeasibilityCheck):
    enabled = False

    def prepare(self, barrier: BarrierFunction, variable: NetworkVariable, factor: CholeskyFactor) -> None:
        return None

    def step_bound(self, direction: NetworkVariable) -> float:
        return float("inf")


class WeightFeasibility(FeasibilityCheck):
    """Step bound along a weight direction with the slack held fixed.

    With ``chi(alpha) = chi - alpha * E`` and ``chi = LL^T``, positive
    definiteness holds while ``alpha < 1 / lambda_max(L^{-1} E L^{-T})``.
    Negative eigenvalues are replaced by ``floor`` so that a direction which
    only moves into the interior still yields a finite bound, and ``eps``
    keeps the bound strictly inside the region.
    """

    def __init__(self, floor: float = 1e-2, eps: float = 1e-3) -> None:
        if floor <= 0:
            raise ValueError("floor must be positive.")
        if eps < 0:
            raise ValueError("eps must be non-negative.")
        self.floor = float(floor)
        self.eps = float(eps)
        self._weights: Optional[List[Array]] = None
        self._slack: Optional[List[Array]] = None
        self._factor: Optional[Array] = None

    def prepare(self, barrier: BarrierFunction, variable: NetworkVariable, factor: CholeskyFactor) -> None:
        if barrier.optimizes_slack:
            raise ValueError("WeightFeasibility needs a barrier with fixed slack; use JointFeasibility when T moves.")
        self._weights = [W.copy() for W in variable.weights]
        self._slack = [t.copy() for t in barrier.slack_of(variable)]
        self._factor = factor.to_dense()

    def step_bound(self, direction: NetworkVariable) -> float:
        if self._factor is None:
            raise RuntimeError("prepare() must be called before step_bound().")
        E = chi_linear_term(self._weights, self._slack, direction.weights).to_dense()
        Y = solve_triangular(self._factor, E, lower=True)
        R = solve_triangular(self._factor, Y.T, lower=True)
        eigs = eigvalsh(symmetrize(R))
        eigs = np.where(eigs < 0.0, self.floor, eigs)
        return float(1.0 / (abs(eigs.max()) + self.eps))


class JointFeasibility(FeasibilityCheck):
    """Exact step bound along a joint weight and slack direction.

    Along ``x - alpha * d`` the matrix ``M(alpha) = -chi`` is quadratic in
    ``alpha``: ``M0 - alpha * M1 + alpha^2 * M2``. The boundary crossings are
    the eigenvalues ``lambda = -alpha`` of the quadratic eigenproblem
    ``(M0 + lambda M1 + lambda^2 M2) v = 0``, solved through the linear pencil

        A = [[0, cI], [M0, M1]],   C = [[cI, 0], [0, -M2]].

    The smallest positive crossing is returned; ``inf`` when the direction
    never leaves the feasible region.
    """

    pencil_scale = 2.0

    def __init__(self, tol: float = 1e-6) -> None:
        if tol <= 0:
            raise ValueError("tol must be positive.")
        self.tol = float(tol)
        self._weights: Optional[List[Array]] = None
        self._slack: Optional[List[Array]] = None
        self._chi: Optional[Array] = None
        self._moves_slack = False

    def prepare(self, barrier: BarrierFunction, variable: NetworkVariable, factor: CholeskyFactor) -> None:
        self._weights = [W.copy() for W in variable.weights]
        self._slack = [t.copy() for t in barrier.slack_of(variable)]
        self._chi = chi_matrix(self._weights, self._slack, barrier.lipschitz).to_dense()
        self._moves_slack = barrier.optimizes_slack

    def step_bound(self, direction: NetworkVariable) -> float:
        if self._chi is None:
            raise RuntimeError("prepare() must be called before step_bound().")
        slack_direction = direction.slack if self._moves_slack else None
        linear = chi_linear_term(self._weights, self._slack, direction.weights, slack_direction)
        quadratic = chi_quadratic_term(direction.weights, slack_direction)
        M0 = -self._chi
        M1 = -linear.to_dense()
        M2 = -quadratic.to_dense()
        n = M0.shape[0]
        c = self.pencil_scale
        I = np.eye(n)
        Z = np.zeros((n, n))
        A = np.block([[Z, c * I], [M0, M1]])
        C = np.block([[c * I, Z], [Z, -M2]])
        alphas, betas = eig(A, C, left=False, right=False, homogeneous_eigvals=True)
        keep = (np.abs(alphas.imag) < self.tol) & (np.abs(betas) > self.tol)
        if not np.any(keep):
            logger.debug("Feasibility pencil has no finite real eigenvalue; step is unconstrained.")
            return float("inf")
        ratios = (alphas[keep] / betas[keep]).real
        negative = ratios[ratios < 0.0]
        if negative.size == 0:
            return float("inf")
        return float(abs(negative.max()))
