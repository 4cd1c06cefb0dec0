"""Lipschitz constants of trained networks via semidefinite programming.

The SDP bound minimizes ``rho`` over the slack ``T >= 0`` subject to chi
with ``L0^2 = rho`` being positive semidefinite, after the output block has
been eliminated by a Schur complement. The certified constant is
``sqrt(rho)``. cvxpy is imported lazily and only when an SDP is solved.
"""

from __future__ import annotations

import io
import logging
from contextlib import contextmanager, redirect_stderr
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence

import numpy as np

logger = logging.getLogger(__name__)

Array = np.ndarray

DEFAULT_SOLVERS = ("CLARABEL", "MOSEK", "SCS")

# Tolerance keywords per conic solver; every entry receives the same value.
_TOLERANCE_OPTIONS = {
    "CLARABEL": ("tol_feas", "tol_gap_abs", "tol_gap_rel"),
    "SCS": ("eps",),
}
_MOSEK_TOLERANCES = (
    "MSK_DPAR_INTPNT_CO_TOL_PFEAS",
    "MSK_DPAR_INTPNT_CO_TOL_DFEAS",
    "MSK_DPAR_INTPNT_CO_TOL_REL_GAP",
)

_cvxpy: Any | None = None
_cvxpy_missing = False


@contextmanager
def _quiet_cvxpy():
    """Raise the cvxpy loggers to ERROR for the duration of the block."""
    loggers = [logging.getLogger("__cvxpy__"), logging.getLogger("cvxpy")]
    levels = [lg.level for lg in loggers]
    for lg in loggers:
        lg.setLevel(logging.ERROR)
    try:
        yield
    finally:
        for lg, level in zip(loggers, levels):
            lg.setLevel(level)


def _get_cvxpy() -> Any | None:
    """cvxpy module, imported on first use; None when it is not installed."""
    global _cvxpy, _cvxpy_missing
    if _cvxpy is None and not _cvxpy_missing:
        try:
            # Optional backend probes on import write to stderr.
            with _quiet_cvxpy(), redirect_stderr(io.StringIO()):
                import cvxpy
        except ImportError:  # pragma: no cover - dependency gate
            _cvxpy_missing = True
        else:
            _cvxpy = cvxpy
    return _cvxpy


def _require_cvxpy() -> Any:
    cp = _get_cvxpy()
    if cp is None:
        raise ModuleNotFoundError("Lipschitz SDP bounds need cvxpy. Install with: pip install cvxpy")
    return cp


def cvxpy_available() -> bool:
    return _get_cvxpy() is not None


def installed_solvers() -> set[str]:
    """Upper-case names of the conic solvers cvxpy can call."""
    cp = _require_cvxpy()
    with _quiet_cvxpy():
        return {str(name).upper() for name in cp.installed_solvers()}


def pick_first_available(candidates: Sequence[str], installed: set[str]) -> str | None:
    """First of ``candidates`` (case-insensitive) that is in ``installed``."""
    return next((str(c).upper() for c in candidates if str(c).upper() in installed), None)


def solver_kwargs(solver: str, tol: float, scs_max_iters: int = 100000) -> dict[str, Any]:
    """Keyword arguments for ``Problem.solve`` that apply ``tol`` to ``solver``."""
    solver = str(solver).upper()
    tol = float(tol)
    if solver == "MOSEK":
        return {"mosek_params": {key: tol for key in _MOSEK_TOLERANCES}}
    options: dict[str, Any] = {key: tol for key in _TOLERANCE_OPTIONS.get(solver, ())}
    if solver == "SCS":
        options["max_iters"] = int(scs_max_iters)
    return options


@dataclass
class LipschitzSDP:
    """Problem description handed to the conic solver."""

    weights: List[Array]
    solver: Optional[str] = None  # first installed of DEFAULT_SOLVERS when None
    solver_tol: float = 1e-8

    def __post_init__(self) -> None:
        self.weights = [np.asarray(W, dtype=float) for W in self.weights]
        if not self.weights:
            raise ValueError("At least one weight matrix is required.")
        for i in range(1, len(self.weights)):
            if self.weights[i].shape[1] != self.weights[i - 1].shape[0]:
                raise ValueError(f"weights[{i}] does not chain with weights[{i - 1}]")

    @property
    def widths(self) -> tuple:
        return tuple([self.weights[0].shape[1]] + [W.shape[0] for W in self.weights])


@dataclass
class LipschitzSolution:
    lipschitz: float
    slack: List[Array]
    status: str
    solver: str


def build_lipschitz_problem(sdp: LipschitzSDP):
    """Return ``(problem, rho, slack_vars)`` for the Schur-complemented chi."""
    cp = _require_cvxpy()
    weights = sdp.weights
    depth = len(weights)
    widths = sdp.widths
    rho = cp.Variable(nonneg=True)
    slack_vars = [cp.Variable(n, nonneg=True) for n in widths[1:-1]]
    last = weights[-1]

    blocks: list[list[Any]] = [[np.zeros((widths[r], widths[c])) for c in range(depth)] for r in range(depth)]
    blocks[0][0] = rho * np.eye(widths[0])
    for i, T in enumerate(slack_vars):
        blocks[i + 1][i + 1] = 2 * cp.diag(T)
        coupling = -cp.diag(T) @ weights[i]
        blocks[i + 1][i] = coupling
        blocks[i][i + 1] = coupling.T
    blocks[depth - 1][depth - 1] = blocks[depth - 1][depth - 1] - last.T @ last

    M = cp.bmat(blocks)
    constraints = [0.5 * (M + M.T) >> 0]
    prob = cp.Problem(cp.Minimize(rho), constraints)
    return prob, rho, slack_vars


def solve_conic_program(sdp: LipschitzSDP) -> LipschitzSolution:
    """Solve the Lipschitz SDP; raises RuntimeError if it is not solved."""
    cp = _require_cvxpy()
    solver = sdp.solver
    if solver is None:
        solver = pick_first_available(DEFAULT_SOLVERS, installed_solvers())
        if solver is None:
            raise RuntimeError(f"None of the SDP solvers {DEFAULT_SOLVERS} is installed.")
    solver = str(solver).upper()

    prob, rho, slack_vars = build_lipschitz_problem(sdp)
    with _quiet_cvxpy():
        prob.solve(solver=solver, verbose=False, **solver_kwargs(solver, sdp.solver_tol))
    status = str(prob.status)
    if status not in {cp.OPTIMAL, cp.OPTIMAL_INACCURATE} or rho.value is None:
        raise RuntimeError(f"Lipschitz SDP was not solved by {solver} (status: {status}).")
    if status == cp.OPTIMAL_INACCURATE:
        logger.warning("Lipschitz SDP solved inaccurately by %s.", solver)

    slack = [np.asarray(T.value, dtype=float).reshape(-1) for T in slack_vars]
    lipschitz = float(np.sqrt(max(float(rho.value), 0.0)))
    logger.debug("SDP Lipschitz constant %.6e (%s, %s)", lipschitz, solver, status)
    return LipschitzSolution(lipschitz=lipschitz, slack=slack, status=status, solver=solver)


def sdp_lipschitz(weights: Sequence[Array], solver: Optional[str] = None, solver_tol: float = 1e-8) -> float:
    """SDP-certified Lipschitz constant of a network with the given weights."""
    return solve_conic_program(LipschitzSDP(list(weights), solver=solver, solver_tol=solver_tol)).lipschitz


def trivial_lipschitz(weights: Sequence[Array]) -> float:
    """Product of the layer spectral norms."""
    value = 1.0
    for W in weights:
        value *= float(np.linalg.norm(np.asarray(W, dtype=float), 2))
    return value
