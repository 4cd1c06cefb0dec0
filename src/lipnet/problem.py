"""Data structures for Lipschitz-constrained feed-forward networks."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

import numpy as np

Array = np.ndarray


@dataclass(frozen=True)
class NetworkTopology:
    """Layer widths ``N_0, ..., N_L`` of a feed-forward network.

    ``N_0`` is the input dimension and ``N_L`` the output dimension; the
    entries in between are hidden layers. The chi matrix of a network with
    this topology is square with ``size`` rows, partitioned into one block
    per layer.
    """

    widths: tuple

    def __post_init__(self) -> None:
        widths = tuple(int(n) for n in self.widths)
        if len(widths) < 2:
            raise ValueError("A topology needs at least an input and an output layer.")
        if any(n <= 0 for n in widths):
            raise ValueError(f"Layer widths must be positive, got {widths}")
        object.__setattr__(self, "widths", widths)

    @property
    def depth(self) -> int:
        """Number of weight layers L."""
        return len(self.widths) - 1

    @property
    def offsets(self) -> tuple:
        """Start index of each layer block inside chi."""
        return tuple(int(v) for v in np.concatenate([[0], np.cumsum(self.widths[:-1])]))

    @property
    def size(self) -> int:
        return int(sum(self.widths))

    @property
    def hidden(self) -> tuple:
        """Widths of the hidden layers (one slack vector each)."""
        return self.widths[1:-1]

    @property
    def hidden_size(self) -> int:
        return int(sum(self.hidden))

    def weight_shape(self, layer: int) -> tuple:
        return (self.widths[layer + 1], self.widths[layer])

    def __len__(self) -> int:
        return len(self.widths)


def _as_arrays(items: Sequence[Array]) -> List[Array]:
    return [np.array(item, dtype=float) for item in items]


@dataclass(eq=False)
class NetworkVariable:
    """Optimization variable: weights, biases and (optionally) the slack T.

    ``weights[i]`` has shape ``(N_{i+1}, N_i)``, ``biases[i]`` has shape
    ``(N_{i+1},)`` and ``slack[i]`` has shape ``(N_{i+1},)`` for every hidden
    layer. ``slack`` is ``None`` when T is not optimized.
    """

    weights: List[Array]
    biases: List[Array]
    slack: Optional[List[Array]] = None

    def __post_init__(self) -> None:
        self.weights = _as_arrays(self.weights)
        self.biases = [np.array(b, dtype=float).reshape(-1) for b in self.biases]
        if self.slack is not None:
            self.slack = [np.array(t, dtype=float).reshape(-1) for t in self.slack]
        if not self.weights:
            raise ValueError("A network needs at least one weight layer.")
        if len(self.biases) != len(self.weights):
            raise ValueError("Number of bias vectors must match the number of weight layers.")
        for i, (W, b) in enumerate(zip(self.weights, self.biases)):
            if W.ndim != 2:
                raise ValueError(f"weights[{i}] must be a matrix, got shape {W.shape}")
            if b.shape[0] != W.shape[0]:
                raise ValueError(f"biases[{i}] has length {b.shape[0]}, expected {W.shape[0]}")
            if i > 0 and W.shape[1] != self.weights[i - 1].shape[0]:
                raise ValueError(f"weights[{i}] does not chain with weights[{i - 1}]")
        if self.slack is not None:
            hidden = self.topology.hidden
            if len(self.slack) != len(hidden):
                raise ValueError(f"Expected {len(hidden)} slack vectors, got {len(self.slack)}")
            for i, (t, n) in enumerate(zip(self.slack, hidden)):
                if t.shape[0] != n:
                    raise ValueError(f"slack[{i}] has length {t.shape[0]}, expected {n}")

    @classmethod
    def zeros(cls, topology: NetworkTopology, with_slack: bool = True) -> "NetworkVariable":
        weights = [np.zeros(topology.weight_shape(i)) for i in range(topology.depth)]
        biases = [np.zeros(topology.widths[i + 1]) for i in range(topology.depth)]
        slack = [np.zeros(n) for n in topology.hidden] if with_slack else None
        return cls(weights, biases, slack)

    @property
    def topology(self) -> NetworkTopology:
        return NetworkTopology(tuple([self.weights[0].shape[1]] + [W.shape[0] for W in self.weights]))

    @property
    def has_slack(self) -> bool:
        return self.slack is not None

    def arrays(self) -> List[Array]:
        """All parameter arrays in a fixed order (weights, biases, slack)."""
        out = list(self.weights) + list(self.biases)
        if self.slack is not None:
            out.extend(self.slack)
        return out

    def _check_compatible(self, other: "NetworkVariable") -> None:
        if self.topology != other.topology:
            raise ValueError(
                f"Topology mismatch: {self.topology.widths} vs {other.topology.widths}"
            )
        if self.has_slack != other.has_slack:
            raise ValueError("Cannot combine a variable with slack and one without.")

    def _map(self, fn: Callable[[Array], Array]) -> "NetworkVariable":
        slack = None if self.slack is None else [fn(t) for t in self.slack]
        return NetworkVariable([fn(W) for W in self.weights], [fn(b) for b in self.biases], slack)

    def _zip(self, other: "NetworkVariable", fn: Callable[[Array, Array], Array]) -> "NetworkVariable":
        self._check_compatible(other)
        slack = None
        if self.slack is not None:
            slack = [fn(a, b) for a, b in zip(self.slack, other.slack)]
        return NetworkVariable(
            [fn(a, b) for a, b in zip(self.weights, other.weights)],
            [fn(a, b) for a, b in zip(self.biases, other.biases)],
            slack,
        )

    def add(self, other: "NetworkVariable") -> "NetworkVariable":
        return self._zip(other, np.add)

    def subtract(self, other: "NetworkVariable") -> "NetworkVariable":
        return self._zip(other, np.subtract)

    def multiply(self, other: "NetworkVariable") -> "NetworkVariable":
        return self._zip(other, np.multiply)

    def divide(self, other: "NetworkVariable") -> "NetworkVariable":
        return self._zip(other, np.divide)

    def scale(self, factor: float) -> "NetworkVariable":
        return self._map(lambda a: factor * a)

    def add_scalar(self, value: float) -> "NetworkVariable":
        return self._map(lambda a: a + value)

    def square(self) -> "NetworkVariable":
        return self._map(np.square)

    def sqrt(self) -> "NetworkVariable":
        return self._map(np.sqrt)

    def zeros_like(self) -> "NetworkVariable":
        return self._map(np.zeros_like)

    def copy(self) -> "NetworkVariable":
        return self._map(np.copy)

    def inner(self, other: "NetworkVariable") -> float:
        self._check_compatible(other)
        return float(sum(np.vdot(a, b) for a, b in zip(self.arrays(), other.arrays())))

    def norm(self) -> float:
        return float(np.sqrt(self.inner(self)))

    def iadd(self, other: "NetworkVariable", factor: float = 1.0) -> "NetworkVariable":
        """In-place ``self += factor * other``."""
        self._check_compatible(other)
        for a, b in zip(self.arrays(), other.arrays()):
            a += factor * b
        return self

    def isub(self, other: "NetworkVariable", factor: float = 1.0) -> "NetworkVariable":
        """In-place ``self -= factor * other``."""
        return self.iadd(other, -factor)

    def without_slack(self) -> "NetworkVariable":
        return NetworkVariable([W.copy() for W in self.weights], [b.copy() for b in self.biases], None)

    def with_slack(self, slack: Sequence[Array]) -> "NetworkVariable":
        return NetworkVariable([W.copy() for W in self.weights], [b.copy() for b in self.biases], list(slack))
