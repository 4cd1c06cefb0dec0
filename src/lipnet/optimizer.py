"""Central-path Adam for barrier-constrained network training.

The optimizer follows the central path of ``loss - gamma * log det chi``:
each outer step runs Adam on the barrier problem for a fixed ``gamma`` until
the loss stagnates, then shrinks ``gamma`` and the learning rate. When a
feasibility check is enabled every Adam step is clipped so the iterate stays
strictly inside ``chi ≻ 0``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Tuple

import numpy as np
from tqdm.auto import tqdm

from .problem import NetworkVariable

logger = logging.getLogger(__name__)


class BarrierProblem(Protocol):
    def __call__(self, variable: NetworkVariable, gamma: float) -> Tuple[NetworkVariable, float]:
        ...

    def step_bound(self, direction: NetworkVariable) -> float:
        ...


@dataclass
class AdamBarrierSettings:
    """Hyperparameters of the central-path Adam optimizer."""

    max_iter: int = 500000  # per central-path step
    cpsteps: int = 5
    diff: float = 1e-10  # loss-change stopping threshold, scaled by beta3
    threshold: float = 1e-8  # averaged-decrease stopping threshold, scaled by beta3
    window: int = 300
    gamma: float = 1.0
    alpha: float = 0.02
    beta1: float = 0.9
    beta2: float = 0.999
    beta3: float = 5.0
    alphadec: float = 0.5
    gammadec: float = 0.5
    eps: float = 1e-8
    feasibility: bool = False
    log_every: int = 100
    verbose: bool = False

    def validate(self) -> None:
        if self.max_iter < 1:
            raise ValueError("max_iter must be at least 1.")
        if self.cpsteps < 1:
            raise ValueError("cpsteps must be at least 1.")
        if self.window < 1:
            raise ValueError("window must be at least 1.")
        if self.gamma <= 0 or self.alpha <= 0:
            raise ValueError("gamma and alpha must be positive.")
        if not (0.0 <= self.beta1 < 1.0) or not (0.0 <= self.beta2 < 1.0):
            raise ValueError("beta1 and beta2 must be in [0, 1).")
        if self.beta3 <= 0:
            raise ValueError("beta3 must be positive.")
        if not (0.0 < self.alphadec <= 1.0) or not (0.0 < self.gammadec <= 1.0):
            raise ValueError("alphadec and gammadec must be in (0, 1].")
        if self.diff < 0 or self.threshold < 0 or self.eps < 0:
            raise ValueError("diff, threshold and eps must be non-negative.")
        if self.log_every < 1:
            raise ValueError("log_every must be at least 1.")


@dataclass
class TrainingStatistics:
    """Loss trace recorded during training."""

    loss: List[float] = field(default_factory=list)
    steps: List[Dict[str, float]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def save_json(self, path: str | Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.to_dict(), indent=2))

    @classmethod
    def load_json(cls, path: str | Path) -> "TrainingStatistics":
        payload = json.loads(Path(path).read_text())
        return cls(loss=[float(v) for v in payload.get("loss", [])], steps=list(payload.get("steps", [])))


@dataclass
class AdamBarrierResult:
    variable: NetworkVariable
    loss: float
    history: List[Dict[str, float]]

    @property
    def iterations(self) -> int:
        return int(sum(step["iterations"] for step in self.history))


class AdamBarrierOptimizer:
    """Adam following the central path of a log-det barrier problem."""

    def __init__(self, settings: Optional[AdamBarrierSettings] = None) -> None:
        self.settings = settings or AdamBarrierSettings()
        self.settings.validate()

    def run(
        self,
        problem: BarrierProblem,
        x0: NetworkVariable,
        stats: Optional[TrainingStatistics] = None,
    ) -> AdamBarrierResult:
        """Minimize ``problem`` from ``x0``; ``x0`` is left untouched.

        ``problem(x, gamma)`` must return the gradient of loss plus barrier
        and the loss value. ``problem.step_bound(d)`` is only consulted when
        ``settings.feasibility`` is set.
        """
        s = self.settings
        x = x0.copy()
        gamma = s.gamma
        alpha = s.alpha
        m = x.zeros_like()
        v = x.zeros_like()
        history: List[Dict[str, float]] = []
        f = float("nan")

        steps = tqdm(range(s.cpsteps), disable=not s.verbose, desc="central path")
        for j in steps:
            power = s.beta3 ** (s.cpsteps - j)
            diff_j = s.diff * power
            threshold_j = s.threshold * power

            g, f = problem(x, gamma)
            if stats is not None:
                stats.loss.append(float(f))
            i = 0
            f_prev = np.inf
            avg = -10.0
            clipped = 0
            while abs(f_prev - f) > diff_j and i < s.max_iter and avg < -threshold_j:
                i += 1
                m = m.scale(s.beta1).add(g.scale(1.0 - s.beta1))
                v = v.scale(s.beta2).add(g.square().scale(1.0 - s.beta2))
                m_hat = m.scale(1.0 / (1.0 - s.beta1**i))
                v_hat = v.scale(1.0 / (1.0 - s.beta2**i))
                direction = m_hat.divide(v_hat.sqrt().add_scalar(s.eps))

                scale = 1.0
                if s.feasibility:
                    bound = problem.step_bound(direction)
                    if bound < alpha:
                        m = m.zeros_like()
                        v = v.zeros_like()
                        scale = bound / (4.0 * alpha)
                        clipped += 1
                x.isub(direction, alpha * scale)

                f_prev = f
                g, f = problem(x, gamma)
                if stats is not None:
                    stats.loss.append(float(f))
                avg = ((s.window - 1) * avg + f - f_prev) / s.window
                if i % s.log_every == 0:
                    logger.debug("step %d iter %d: loss=%.6e avg=%.3e", j, i, f, avg)

            summary = {"step": j, "gamma": gamma, "alpha": alpha, "iterations": i, "loss": float(f), "clipped": clipped}
            history.append(summary)
            if stats is not None:
                stats.steps.append(dict(summary))
            logger.info(
                "central-path step %d/%d: gamma=%.3e alpha=%.3e iterations=%d loss=%.6e",
                j + 1,
                s.cpsteps,
                gamma,
                alpha,
                i,
                f,
            )
            if s.verbose:
                steps.set_postfix(loss=f"{f:.4e}", gamma=f"{gamma:.1e}", iters=i)

            gamma *= s.gammadec
            alpha *= s.alphadec

        return AdamBarrierResult(variable=x, loss=float(f), history=history)
