"""Structured log-det barrier for the chi matrix.

The barrier ``-gamma * log det chi`` is evaluated through a block Cholesky
factorization ``chi = LL^T`` whose factor is lower block-bidiagonal, and
its gradient through the diagonal and first sub-diagonal blocks of
``chi^{-1}``. Both recursions cost ``O(sum N_i^3)`` and never form chi
densely.
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np
from scipy.linalg import cholesky, solve_triangular

from .problem import NetworkVariable
from .structure import BlockTridiagonal, chi_matrix, coupling_block

Array = np.ndarray


def symmetrize(mat: Array) -> Array:
    return 0.5 * (mat + mat.T)


class InfeasibleIterateError(np.linalg.LinAlgError):
    """Raised when chi is not positive definite at the current iterate."""

    def __init__(self, block: int, message: str | None = None) -> None:
        self.block = int(block)
        super().__init__(message or f"chi is not positive definite (Cholesky failed at block {block})")


@dataclass
class CholeskyFactor:
    """Blocks of the lower block-bidiagonal factor of chi.

    ``lipschitz`` is the scalar first diagonal block ``D_0`` (the factor
    block itself is ``L0 * I``), ``diagonals[i - 1]`` holds ``D_i`` for
    ``i = 1, ..., L`` and ``lowers[i]`` holds the coupling block ``L_i`` in
    position ``(i + 1, i)``.
    """

    lipschitz: float
    input_dim: int
    diagonals: List[Array]
    lowers: List[Array]

    @property
    def depth(self) -> int:
        return len(self.lowers)

    @property
    def widths(self) -> tuple:
        return (self.input_dim,) + tuple(D.shape[0] for D in self.diagonals)

    def diagonal(self, i: int) -> Array:
        """Dense diagonal block ``D_i`` of the factor."""
        if i == 0:
            return self.lipschitz * np.eye(self.input_dim)
        return self.diagonals[i - 1]

    def logdet(self) -> float:
        """log det chi."""
        value = 2.0 * self.input_dim * np.log(self.lipschitz)
        for D in self.diagonals:
            value += 2.0 * float(np.sum(np.log(np.diag(D))))
        return float(value)

    def to_dense(self) -> Array:
        """Dense lower-triangular factor."""
        widths = self.widths
        offsets = np.concatenate([[0], np.cumsum(widths)])
        n = int(offsets[-1])
        out = np.zeros((n, n), dtype=float)
        for i in range(len(widths)):
            out[offsets[i] : offsets[i + 1], offsets[i] : offsets[i + 1]] = self.diagonal(i)
        for i, B in enumerate(self.lowers):
            out[offsets[i + 1] : offsets[i + 2], offsets[i] : offsets[i + 1]] = B
        return out

    def to_block_tridiagonal(self) -> BlockTridiagonal:
        """Reassemble chi (plus any stability shift) from the factor."""
        diagonals = []
        for i in range(len(self.widths)):
            D = self.diagonal(i)
            block = D @ D.T
            if i > 0:
                B = self.lowers[i - 1]
                block = block + B @ B.T
            diagonals.append(symmetrize(block))
        lowers = [B @ self.diagonal(i).T for i, B in enumerate(self.lowers)]
        return BlockTridiagonal(diagonals, lowers)


@dataclass
class InverseBlocks:
    """Diagonal blocks ``P_i`` and sub-diagonal blocks ``K_i`` of chi^{-1}."""

    diagonals: List[Array]
    lowers: List[Array]

    def to_block_tridiagonal(self) -> BlockTridiagonal:
        return BlockTridiagonal(self.diagonals, self.lowers)


class BarrierFunction:
    """Log-det barrier of chi with the slack T as part of the variable."""

    optimizes_slack = True

    def __init__(self, lipschitz: float, stability: float = 0.0) -> None:
        if lipschitz <= 0:
            raise ValueError("lipschitz must be positive.")
        if stability < 0:
            raise ValueError("stability must be non-negative.")
        self.lipschitz = float(lipschitz)
        self.stability = float(stability)

    def slack_of(self, variable: NetworkVariable) -> List[Array]:
        if variable.slack is None:
            raise ValueError("This barrier optimizes the slack T; the variable carries none.")
        return variable.slack

    def chi(self, variable: NetworkVariable) -> BlockTridiagonal:
        return chi_matrix(variable.weights, self.slack_of(variable), self.lipschitz)

    def chol(self, variable: NetworkVariable) -> CholeskyFactor:
        """Block Cholesky factorization of chi at ``variable``."""
        weights = variable.weights
        slack = self.slack_of(variable)
        depth = len(weights)
        lowers = [-coupling_block(weights, slack, 0) / self.lipschitz]
        diagonals: List[Array] = []
        for i in range(1, depth + 1):
            n = weights[i - 1].shape[0]
            if i < depth:
                X = np.diag(2.0 * slack[i - 1])
            else:
                X = np.eye(n)
            X = X - lowers[i - 1] @ lowers[i - 1].T
            if self.stability:
                X = X + self.stability * np.eye(n)
            try:
                D = cholesky(symmetrize(X), lower=True)
            except np.linalg.LinAlgError as exc:
                raise InfeasibleIterateError(i) from exc
            diagonals.append(D)
            if i < depth:
                C = coupling_block(weights, slack, i)
                lowers.append(-solve_triangular(D, C.T, lower=True).T)
        return CholeskyFactor(self.lipschitz, weights[0].shape[1], diagonals, lowers)

    def inv(self, factor: CholeskyFactor) -> InverseBlocks:
        """Diagonal and first sub-diagonal blocks of chi^{-1} from its factor."""
        depth = factor.depth
        P: List[Optional[Array]] = [None] * (depth + 1)
        K: List[Optional[Array]] = [None] * depth

        D_inv = solve_triangular(factor.diagonals[-1], np.eye(factor.widths[-1]), lower=True)
        P[depth] = symmetrize(D_inv.T @ D_inv)
        for i in range(depth - 1, 0, -1):
            D_inv = solve_triangular(factor.diagonals[i - 1], np.eye(factor.widths[i]), lower=True)
            G = D_inv.T @ factor.lowers[i].T
            K[i] = -(G @ P[i + 1]).T
            P[i] = symmetrize(D_inv.T @ D_inv - G @ K[i])

        d0 = factor.lipschitz
        K[0] = -P[1] @ factor.lowers[0] / d0
        P[0] = symmetrize(np.eye(factor.input_dim) / d0**2 - factor.lowers[0].T @ K[0] / d0)
        return InverseBlocks(P, K)

    def compute(self, variable: NetworkVariable, gradient: NetworkVariable, gamma: float) -> CholeskyFactor:
        """Add the gradient of ``-gamma * log det chi`` into ``gradient``.

        Returns the Cholesky factor at ``variable`` so callers can reuse it.
        """
        factor = self.chol(variable)
        inverse = self.inv(factor)
        slack = self.slack_of(variable)
        depth = len(variable.weights)
        if self.optimizes_slack and gradient.slack is None:
            raise ValueError("Gradient needs slack entries for a barrier that optimizes T.")
        for i in range(depth):
            K = inverse.lowers[i]
            if i < depth - 1:
                gradient.weights[i] += 2.0 * gamma * slack[i][:, None] * K
            else:
                gradient.weights[i] += 2.0 * gamma * K
            if self.optimizes_slack and i < depth - 1:
                cross = np.einsum("ij,ij->i", K, variable.weights[i])
                gradient.slack[i] += 2.0 * gamma * (cross - np.diag(inverse.diagonals[i + 1]))
        return factor

    def value(self, variable: NetworkVariable, gamma: float) -> float:
        return -gamma * self.chol(variable).logdet()


class FixedSlackBarrier(BarrierFunction):
    """Barrier with T held fixed; only the weights are optimized."""

    optimizes_slack = False

    def __init__(self, slack: Sequence[Array], lipschitz: float, stability: float = 0.0) -> None:
        super().__init__(lipschitz, stability)
        self.slack = [np.array(t, dtype=float).reshape(-1) for t in slack]
        if any(np.any(t <= 0) for t in self.slack):
            raise ValueError("Fixed slack entries must be positive.")

    def slack_of(self, variable: NetworkVariable) -> List[Array]:
        return self.slack


def is_feasible(barrier: BarrierFunction, variable: NetworkVariable) -> bool:
    try:
        barrier.chol(variable)
    except InfeasibleIterateError:
        return False
    return True


def shrink_to_feasible(
    barrier: BarrierFunction,
    variable: NetworkVariable,
    factor: float = 0.5,
    max_halvings: int = 60,
) -> NetworkVariable:
    """Scale the weights by ``factor`` until chi is positive definite."""
    if not (0.0 < factor < 1.0):
        raise ValueError("factor must be in (0, 1).")
    out = variable.copy()
    for count in range(max_halvings + 1):
        if is_feasible(barrier, out):
            if count:
                warnings.warn(
                    f"Initial weights were infeasible; scaled by {factor ** count:.3g} to satisfy the "
                    "Lipschitz certificate.",
                    RuntimeWarning,
                )
            return out
        out.weights = [factor * W for W in out.weights]
    raise InfeasibleIterateError(-1, "Could not shrink the weights into the feasible region.")
