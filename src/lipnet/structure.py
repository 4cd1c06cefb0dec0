"""Block-tridiagonal chi matrix of a feed-forward network.

For weights ``W_0, ..., W_{L-1}``, hidden slack ``T_0, ..., T_{L-2}`` and a
target Lipschitz constant ``L0`` the chi matrix is

    chi[0, 0]     = L0^2 I
    chi[i, i]     = 2 diag(T_{i-1})        i = 1, ..., L-1
    chi[L, L]     = I
    chi[i+1, i]   = -diag(T_i) W_i         i = 0, ..., L-2
    chi[L, L-1]   = -W_{L-1}

with all other blocks zero. ``chi ⪰ 0`` certifies that the network is
``L0``-Lipschitz for activations slope-restricted to [0, 1].
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from .problem import NetworkTopology

Array = np.ndarray


@dataclass
class BlockTridiagonal:
    """Symmetric block-tridiagonal matrix stored by blocks.

    ``diagonals[i]`` is block ``(i, i)`` and ``lowers[i]`` is block
    ``(i + 1, i)``; the upper blocks are the transposes.
    """

    diagonals: List[Array]
    lowers: List[Array]

    def __post_init__(self) -> None:
        self.diagonals = [np.asarray(D, dtype=float) for D in self.diagonals]
        self.lowers = [np.asarray(B, dtype=float) for B in self.lowers]
        if len(self.lowers) != len(self.diagonals) - 1:
            raise ValueError("Need exactly one coupling block between consecutive diagonal blocks.")
        for i, B in enumerate(self.lowers):
            expected = (self.diagonals[i + 1].shape[0], self.diagonals[i].shape[0])
            if B.shape != expected:
                raise ValueError(f"Coupling block {i} has shape {B.shape}, expected {expected}")

    @property
    def widths(self) -> tuple:
        return tuple(D.shape[0] for D in self.diagonals)

    @property
    def shape(self) -> tuple:
        n = int(sum(self.widths))
        return (n, n)

    def diagonal(self, i: int) -> Array:
        return self.diagonals[i]

    def lower(self, i: int) -> Array:
        """Block ``(i + 1, i)``."""
        return self.lowers[i]

    def upper(self, i: int) -> Array:
        """Block ``(i, i + 1)``."""
        return self.lowers[i].T

    def add(self, other: "BlockTridiagonal") -> "BlockTridiagonal":
        if self.widths != other.widths:
            raise ValueError(f"Block structure mismatch: {self.widths} vs {other.widths}")
        return BlockTridiagonal(
            [a + b for a, b in zip(self.diagonals, other.diagonals)],
            [a + b for a, b in zip(self.lowers, other.lowers)],
        )

    def scale(self, factor: float) -> "BlockTridiagonal":
        return BlockTridiagonal([factor * D for D in self.diagonals], [factor * B for B in self.lowers])

    def to_dense(self) -> Array:
        offsets = np.concatenate([[0], np.cumsum(self.widths)])
        out = np.zeros(self.shape, dtype=float)
        for i, D in enumerate(self.diagonals):
            out[offsets[i] : offsets[i + 1], offsets[i] : offsets[i + 1]] = D
        for i, B in enumerate(self.lowers):
            rows = slice(offsets[i + 1], offsets[i + 2])
            cols = slice(offsets[i], offsets[i + 1])
            out[rows, cols] = B
            out[cols, rows] = B.T
        return out

    def matvec(self, x: Array) -> Array:
        x = np.asarray(x, dtype=float).reshape(-1)
        if x.shape[0] != self.shape[0]:
            raise ValueError(f"Vector of length {x.shape[0]} does not match matrix size {self.shape[0]}")
        offsets = np.concatenate([[0], np.cumsum(self.widths)])
        parts = [x[offsets[i] : offsets[i + 1]] for i in range(len(self.diagonals))]
        out = [D @ p for D, p in zip(self.diagonals, parts)]
        for i, B in enumerate(self.lowers):
            out[i + 1] = out[i + 1] + B @ parts[i]
            out[i] = out[i] + B.T @ parts[i + 1]
        return np.concatenate(out)


def _slack_or_ones(topology: NetworkTopology, slack: Optional[Sequence[Array]]) -> List[Array]:
    if slack is None:
        return [np.ones(n) for n in topology.hidden]
    slack = [np.asarray(t, dtype=float).reshape(-1) for t in slack]
    if len(slack) != len(topology.hidden):
        raise ValueError(f"Expected {len(topology.hidden)} slack vectors, got {len(slack)}")
    return slack


def coupling_block(weights: Sequence[Array], slack: Sequence[Array], layer: int) -> Array:
    """Return ``C_i`` such that ``chi[i+1, i] = -C_i``."""
    W = np.asarray(weights[layer], dtype=float)
    if layer == len(weights) - 1:
        return W
    return np.asarray(slack[layer], dtype=float)[:, None] * W


def chi_matrix(
    weights: Sequence[Array],
    slack: Optional[Sequence[Array]],
    lipschitz: float,
) -> BlockTridiagonal:
    """Assemble chi for the given weights, slack and Lipschitz target."""
    if lipschitz <= 0:
        raise ValueError("lipschitz must be positive.")
    weights = [np.asarray(W, dtype=float) for W in weights]
    topology = NetworkTopology(tuple([weights[0].shape[1]] + [W.shape[0] for W in weights]))
    slack = _slack_or_ones(topology, slack)
    widths = topology.widths
    diagonals = [lipschitz**2 * np.eye(widths[0])]
    diagonals += [2.0 * np.diag(t) for t in slack]
    diagonals.append(np.eye(widths[-1]))
    lowers = [-coupling_block(weights, slack, i) for i in range(topology.depth)]
    return BlockTridiagonal(diagonals, lowers)


def chi_linear_term(
    weights: Sequence[Array],
    slack: Sequence[Array],
    weight_direction: Sequence[Array],
    slack_direction: Optional[Sequence[Array]] = None,
) -> BlockTridiagonal:
    """First-order change of chi along ``(weight_direction, slack_direction)``.

    chi(W + a dW, T + a dT) = chi(W, T) + a * linear + a^2 * quadratic.
    """
    weights = [np.asarray(W, dtype=float) for W in weights]
    depth = len(weights)
    widths = [weights[0].shape[1]] + [W.shape[0] for W in weights]
    if slack_direction is None:
        slack_direction = [np.zeros_like(np.asarray(t, dtype=float)) for t in slack]
    diagonals = [np.zeros((widths[0], widths[0]))]
    diagonals += [2.0 * np.diag(np.asarray(dt, dtype=float)) for dt in slack_direction]
    diagonals.append(np.zeros((widths[-1], widths[-1])))
    lowers = []
    for i in range(depth):
        dW = np.asarray(weight_direction[i], dtype=float)
        if i == depth - 1:
            lowers.append(-dW)
        else:
            t = np.asarray(slack[i], dtype=float)
            dt = np.asarray(slack_direction[i], dtype=float)
            lowers.append(-(t[:, None] * dW + dt[:, None] * weights[i]))
    return BlockTridiagonal(diagonals, lowers)


def chi_quadratic_term(
    weight_direction: Sequence[Array],
    slack_direction: Optional[Sequence[Array]] = None,
) -> BlockTridiagonal:
    """Second-order change of chi; only the slack-weight products survive."""
    dWs = [np.asarray(W, dtype=float) for W in weight_direction]
    depth = len(dWs)
    widths = [dWs[0].shape[1]] + [W.shape[0] for W in dWs]
    diagonals = [np.zeros((n, n)) for n in widths]
    lowers = []
    for i in range(depth):
        if i == depth - 1 or slack_direction is None:
            lowers.append(np.zeros_like(dWs[i]))
        else:
            dt = np.asarray(slack_direction[i], dtype=float)
            lowers.append(-(dt[:, None] * dWs[i]))
    return BlockTridiagonal(diagonals, lowers)
