"""Loss-gradient providers and the barrier training problem."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Callable, Optional, Tuple

import numpy as np
import torch
from torch.nn import functional as F

from .barrier import BarrierFunction, CholeskyFactor
from .feasibility import FeasibilityCheck, NoFeasibilityCheck
from .problem import NetworkVariable

logger = logging.getLogger(__name__)

LossGradient = Callable[[NetworkVariable], Tuple[NetworkVariable, float]]

_ACTIVATIONS = {"tanh": torch.tanh, "relu": torch.relu}
_LOSSES = ("cross_entropy", "squared")


@dataclass
class LossConfig:
    """Network activation, data loss and batching."""

    activation: str = "tanh"
    loss: str = "cross_entropy"
    batch_size: Optional[int] = None  # None uses the full dataset
    log_eps: float = 1e-8

    def validate(self) -> None:
        if self.activation not in _ACTIVATIONS:
            raise ValueError(f"activation must be one of {sorted(_ACTIVATIONS)}.")
        if self.loss not in _LOSSES:
            raise ValueError(f"loss must be one of {_LOSSES}.")
        if self.batch_size is not None and self.batch_size < 1:
            raise ValueError("batch_size must be positive.")


def _ensure_tensor(data: np.ndarray, requires_grad: bool = False) -> torch.Tensor:
    return torch.tensor(np.asarray(data, dtype=float), dtype=torch.float64, requires_grad=requires_grad)


def forward(
    weights: list,
    biases: list,
    inputs: torch.Tensor,
    activation: str = "tanh",
) -> torch.Tensor:
    """Network output for a batch of row-vector inputs."""
    act = _ACTIVATIONS[activation]
    h = inputs
    for i, (W, b) in enumerate(zip(weights, biases)):
        h = h @ W.T + b
        if i < len(weights) - 1:
            h = act(h)
    return h


class BatchLossGradient:
    """Data loss and its gradient for a fixed dataset, cycling over batches.

    ``inputs`` has shape ``(samples, N_0)`` and ``targets`` shape
    ``(samples, N_L)`` (one-hot rows for the cross-entropy loss). Every call
    consumes the next batch.
    """

    def __init__(self, inputs: np.ndarray, targets: np.ndarray, config: Optional[LossConfig] = None) -> None:
        self.config = config or LossConfig()
        self.config.validate()
        inputs = np.asarray(inputs, dtype=float)
        targets = np.asarray(targets, dtype=float)
        if inputs.ndim != 2:
            raise ValueError("Inputs must be a 2D array of shape (N, D).")
        if targets.ndim == 1:
            targets = targets[:, None]
        if targets.shape[0] != inputs.shape[0]:
            raise ValueError("inputs and targets must have the same number of samples.")
        samples = inputs.shape[0]
        batch_size = self.config.batch_size or samples
        if samples % batch_size != 0:
            raise ValueError(f"Batch size {batch_size} does not divide the number of samples {samples}.")
        self.inputs = _ensure_tensor(inputs)
        self.targets = _ensure_tensor(targets)
        self.batch_size = batch_size
        self.num_batches = samples // batch_size
        self.calls = 0
        logger.debug(
            "Loss provider: %d samples, %d batches of %d, %s loss, %s activation",
            samples,
            self.num_batches,
            batch_size,
            self.config.loss,
            self.config.activation,
        )

    def _batch(self, index: int) -> tuple[torch.Tensor, torch.Tensor]:
        start = (index % self.num_batches) * self.batch_size
        stop = start + self.batch_size
        return self.inputs[start:stop], self.targets[start:stop]

    def _loss(self, outputs: torch.Tensor, targets: torch.Tensor) -> torch.Tensor:
        if self.config.loss == "cross_entropy":
            probs = F.softmax(outputs, dim=1)
            return -torch.log((probs * targets).sum(dim=1) + self.config.log_eps).mean()
        return ((outputs - targets) ** 2).sum(dim=1).mean()

    def __call__(self, variable: NetworkVariable) -> Tuple[NetworkVariable, float]:
        batch_x, batch_y = self._batch(self.calls)
        self.calls += 1
        weights = [_ensure_tensor(W, requires_grad=True) for W in variable.weights]
        biases = [_ensure_tensor(b, requires_grad=True) for b in variable.biases]
        loss = self._loss(forward(weights, biases, batch_x, self.config.activation), batch_y)
        loss.backward()
        slack = None
        if variable.slack is not None:
            slack = [np.zeros_like(t) for t in variable.slack]
        gradient = NetworkVariable(
            [W.grad.detach().numpy().copy() for W in weights],
            [b.grad.detach().numpy().copy() for b in biases],
            slack,
        )
        return gradient, float(loss.item())

    def predict(self, variable: NetworkVariable, inputs: np.ndarray | None = None) -> np.ndarray:
        x = self.inputs if inputs is None else _ensure_tensor(inputs)
        with torch.no_grad():
            weights = [_ensure_tensor(W) for W in variable.weights]
            biases = [_ensure_tensor(b) for b in variable.biases]
            return forward(weights, biases, x, self.config.activation).numpy()

    def evaluate(self, variable: NetworkVariable) -> float:
        """Loss over the whole dataset; does not advance the batch cycle."""
        with torch.no_grad():
            weights = [_ensure_tensor(W) for W in variable.weights]
            biases = [_ensure_tensor(b) for b in variable.biases]
            outputs = forward(weights, biases, self.inputs, self.config.activation)
            return float(self._loss(outputs, self.targets).item())

    def accuracy(self, variable: NetworkVariable) -> float:
        outputs = self.predict(variable)
        labels = np.argmax(self.targets.numpy(), axis=1)
        return float(np.mean(np.argmax(outputs, axis=1) == labels))


class BarrierTrainingProblem:
    """Data loss plus ``-gamma * log det chi`` with an optional step bound.

    Calling the problem returns the combined gradient and the data loss; the
    barrier value itself is not part of the reported loss.
    """

    def __init__(
        self,
        loss_gradient: LossGradient,
        barrier: BarrierFunction,
        feasibility: Optional[FeasibilityCheck] = None,
    ) -> None:
        self.loss_gradient = loss_gradient
        self.barrier = barrier
        self.feasibility = feasibility or NoFeasibilityCheck()
        self.last_factor: Optional[CholeskyFactor] = None

    def __call__(self, variable: NetworkVariable, gamma: float) -> Tuple[NetworkVariable, float]:
        gradient, loss = self.loss_gradient(variable)
        if self.barrier.optimizes_slack and gradient.slack is None:
            gradient = gradient.with_slack([np.zeros_like(t) for t in self.barrier.slack_of(variable)])
        factor = self.barrier.compute(variable, gradient, gamma)
        self.feasibility.prepare(self.barrier, variable, factor)
        self.last_factor = factor
        return gradient, loss

    def step_bound(self, direction: NetworkVariable) -> float:
        return self.feasibility.step_bound(direction)

    def objective(self, variable: NetworkVariable, gamma: float) -> float:
        """Data loss plus barrier value; advances a batch-cycling provider."""
        _, loss = self.loss_gradient(variable)
        return float(loss + self.barrier.value(variable, gamma))
