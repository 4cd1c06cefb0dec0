"""Command-line interface for Lipschitz-constrained training."""

from __future__ import annotations

import argparse
import logging
from dataclasses import replace
from typing import Sequence

import numpy as np

from .barrier import BarrierFunction, FixedSlackBarrier, shrink_to_feasible
from .data import initial_variable, load_csv_dataset, load_model, save_model, synthetic_classification
from .feasibility import JointFeasibility, NoFeasibilityCheck, WeightFeasibility
from .optimizer import AdamBarrierOptimizer, AdamBarrierSettings, TrainingStatistics
from .problem import NetworkTopology
from .training import BarrierTrainingProblem, BatchLossGradient, LossConfig


def _parse_topology(value: str) -> tuple[int, ...]:
    parts = [p.strip() for p in str(value).split(",") if p.strip()]
    if len(parts) < 2:
        raise argparse.ArgumentTypeError("topology must list at least input and output widths, e.g. 2,4,3.")
    try:
        out = tuple(int(p) for p in parts)
    except ValueError as exc:  # pragma: no cover
        raise argparse.ArgumentTypeError("topology widths must be integers.") from exc
    if any(v <= 0 for v in out):
        raise argparse.ArgumentTypeError("topology widths must be positive.")
    return out


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="python -m lipnet.cli", description="Lipschitz-constrained network training.")
    sub = parser.add_subparsers(dest="command", required=True)

    p_train = sub.add_parser("train", help="Train a network with a certified Lipschitz bound.")
    p_train.add_argument("--topology", type=_parse_topology, required=True, help="Layer widths, e.g. 2,10,10,3.")
    p_train.add_argument("--lipschitz", type=float, required=True, help="Certified Lipschitz bound L0.")
    p_train.add_argument("--data", type=str, default=None, help="CSV file with rows x_0..x_{N0-1},label.")
    p_train.add_argument("--skip-header", type=int, default=0)
    p_train.add_argument("--samples", type=int, default=60, help="Synthetic samples when --data is omitted.")
    p_train.add_argument("--seed", type=int, default=0)
    p_train.add_argument("--variance", type=float, default=0.1, help="Variance of the initial weights.")
    p_train.add_argument("--slack-init", type=float, default=1.0, help="Initial value of every slack entry.")
    p_train.add_argument(
        "--fixed-slack",
        action="store_true",
        default=False,
        help="Hold T fixed at --slack-init and optimize the weights only.",
    )
    p_train.add_argument("--feasibility", action="store_true", default=False, help="Clip steps to stay feasible.")
    p_train.add_argument("--stability", type=float, default=0.0, help="Diagonal shift added before each Cholesky.")
    p_train.add_argument("--activation", choices=["tanh", "relu"], default="tanh")
    p_train.add_argument("--loss", choices=["cross_entropy", "squared"], default="cross_entropy")
    p_train.add_argument("--batch-size", type=int, default=None)

    defaults = AdamBarrierSettings()
    p_train.add_argument("--max-iter", type=int, default=defaults.max_iter)
    p_train.add_argument("--cpsteps", type=int, default=defaults.cpsteps)
    p_train.add_argument("--gamma", type=float, default=defaults.gamma)
    p_train.add_argument("--alpha", type=float, default=defaults.alpha)
    p_train.add_argument("--gammadec", type=float, default=defaults.gammadec)
    p_train.add_argument("--alphadec", type=float, default=defaults.alphadec)
    p_train.add_argument("--beta1", type=float, default=defaults.beta1)
    p_train.add_argument("--beta2", type=float, default=defaults.beta2)
    p_train.add_argument("--beta3", type=float, default=defaults.beta3)
    p_train.add_argument("--diff", type=float, default=defaults.diff)
    p_train.add_argument("--threshold", type=float, default=defaults.threshold)
    p_train.add_argument("--window", type=int, default=defaults.window)

    p_train.add_argument("--out-model", type=str, default=None, help="Write the trained model (.json or .mat).")
    p_train.add_argument("--out-stats", type=str, default=None, help="Write the loss trace as JSON.")
    p_train.add_argument("--plot", type=str, default=None, help="Write a loss-history figure.")
    p_train.add_argument("--verbose", action="store_true", default=False)
    p_train.set_defaults(func=_cmd_train)

    p_lip = sub.add_parser("lipschitz", help="Report Lipschitz bounds of a saved model.")
    p_lip.add_argument("--model", type=str, required=True)
    p_lip.add_argument("--solver", type=str, default=None, help="cvxpy solver name (default: first installed).")
    p_lip.add_argument("--trivial-only", action="store_true", default=False)
    p_lip.set_defaults(func=_cmd_lipschitz)
    return parser


def _cmd_train(args: argparse.Namespace) -> int:
    if args.verbose:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    topology = NetworkTopology(tuple(args.topology))
    if args.data is not None:
        data = load_csv_dataset(args.data, topology.widths[0], topology.widths[-1], skip_header=args.skip_header)
    else:
        data = synthetic_classification(args.samples, topology.widths[0], topology.widths[-1], seed=args.seed)

    loss_cfg = LossConfig(activation=args.activation, loss=args.loss, batch_size=args.batch_size)
    provider = BatchLossGradient(data.inputs, data.targets, loss_cfg)

    if args.fixed_slack:
        slack = [args.slack_init * np.ones(n) for n in topology.hidden]
        barrier = FixedSlackBarrier(slack, args.lipschitz, stability=args.stability)
        x0 = initial_variable(topology, variance=args.variance, slack=None, seed=args.seed)
        feasibility = WeightFeasibility() if args.feasibility else NoFeasibilityCheck()
    else:
        barrier = BarrierFunction(args.lipschitz, stability=args.stability)
        x0 = initial_variable(topology, variance=args.variance, slack=args.slack_init, seed=args.seed)
        feasibility = JointFeasibility() if args.feasibility else NoFeasibilityCheck()
    x0 = shrink_to_feasible(barrier, x0)

    settings = replace(
        AdamBarrierSettings(),
        max_iter=args.max_iter,
        cpsteps=args.cpsteps,
        gamma=args.gamma,
        alpha=args.alpha,
        gammadec=args.gammadec,
        alphadec=args.alphadec,
        beta1=args.beta1,
        beta2=args.beta2,
        beta3=args.beta3,
        diff=args.diff,
        threshold=args.threshold,
        window=args.window,
        feasibility=bool(args.feasibility),
        verbose=bool(args.verbose),
    )
    problem = BarrierTrainingProblem(provider, barrier, feasibility)
    stats = TrainingStatistics()
    result = AdamBarrierOptimizer(settings).run(problem, x0, stats)

    print(f"[info] final loss: {result.loss:.6e} after {result.iterations} iterations")
    print(f"[info] accuracy: {provider.accuracy(result.variable):.3f}")
    if args.out_model:
        save_model(args.out_model, result.variable, lipschitz=args.lipschitz)
        print(f"[info] model written to {args.out_model}")
    if args.out_stats:
        stats.save_json(args.out_stats)
        print(f"[info] statistics written to {args.out_stats}")
    if args.plot:
        from .plotting import plot_loss_history

        plot_loss_history(stats, out_path=args.plot)
        print(f"[info] plot written to {args.plot}")
    return 0


def _cmd_lipschitz(args: argparse.Namespace) -> int:
    from .lipcalc import sdp_lipschitz, trivial_lipschitz

    variable = load_model(args.model)
    print(f"trivial: {trivial_lipschitz(variable.weights):.6e}")
    if not args.trivial_only:
        print(f"sdp:     {sdp_lipschitz(variable.weights, solver=args.solver):.6e}")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
