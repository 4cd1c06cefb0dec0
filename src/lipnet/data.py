"""Datasets, network initialization and model persistence."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Sequence

import numpy as np
from scipy.io import loadmat, savemat

from .problem import NetworkTopology, NetworkVariable


@dataclass
class NetworkData:
    """Inputs with one-hot targets and the underlying integer labels."""

    inputs: np.ndarray
    targets: np.ndarray
    labels: np.ndarray

    def __post_init__(self) -> None:
        self.inputs = np.asarray(self.inputs, dtype=float)
        self.targets = np.asarray(self.targets, dtype=float)
        self.labels = np.asarray(self.labels, dtype=int).reshape(-1)
        if self.inputs.ndim != 2:
            raise ValueError("inputs must be a 2D array of shape (N, D).")
        if not (self.inputs.shape[0] == self.targets.shape[0] == self.labels.shape[0]):
            raise ValueError("inputs, targets and labels must have the same number of samples.")

    def __len__(self) -> int:
        return int(self.inputs.shape[0])

    @property
    def input_dim(self) -> int:
        return int(self.inputs.shape[1])

    @property
    def num_classes(self) -> int:
        return int(self.targets.shape[1])


def make_one_hot(labels: Sequence[int], num_classes: int) -> np.ndarray:
    labels = np.asarray(labels, dtype=int).reshape(-1)
    if labels.size and (labels.min() < 0 or labels.max() >= num_classes):
        raise ValueError(f"Labels must lie in [0, {num_classes}), got range [{labels.min()}, {labels.max()}].")
    out = np.zeros((labels.shape[0], num_classes), dtype=float)
    out[np.arange(labels.shape[0]), labels] = 1.0
    return out


def load_csv_dataset(
    path: str | Path,
    input_dim: int,
    num_classes: int,
    delimiter: str = ",",
    skip_header: int = 0,
) -> NetworkData:
    """Read rows ``x_0, ..., x_{D-1}, label`` from a CSV file."""
    raw = np.genfromtxt(str(path), delimiter=delimiter, skip_header=skip_header, dtype=float)
    raw = np.atleast_2d(raw)
    if raw.shape[1] != input_dim + 1:
        raise ValueError(f"Expected {input_dim + 1} columns (inputs + label), got {raw.shape[1]}.")
    labels = raw[:, -1].astype(int)
    return NetworkData(raw[:, :input_dim], make_one_hot(labels, num_classes), labels)


def synthetic_classification(
    num_samples: int,
    input_dim: int = 2,
    num_classes: int = 3,
    spread: float = 0.5,
    seed: int | None = None,
) -> NetworkData:
    """Gaussian blobs around random class centers, classes assigned round-robin."""
    rng = np.random.default_rng(seed)
    centers = rng.normal(0.0, 2.0, size=(num_classes, input_dim))
    labels = np.arange(num_samples) % num_classes
    inputs = centers[labels] + spread * rng.normal(size=(num_samples, input_dim))
    return NetworkData(inputs, make_one_hot(labels, num_classes), labels)


def initial_variable(
    topology: NetworkTopology | Sequence[int],
    variance: float = 0.1,
    slack: float | None = 1.0,
    seed: int | None = None,
    rng: np.random.Generator | None = None,
) -> NetworkVariable:
    """Gaussian weights with the given variance, zero biases, constant slack.

    ``slack=None`` produces a weights-only variable.
    """
    if not isinstance(topology, NetworkTopology):
        topology = NetworkTopology(tuple(topology))
    if variance < 0:
        raise ValueError("variance must be non-negative.")
    rng = rng or np.random.default_rng(seed)
    std = float(np.sqrt(variance))
    weights = [rng.normal(0.0, std, size=topology.weight_shape(i)) for i in range(topology.depth)]
    biases = [np.zeros(topology.widths[i + 1]) for i in range(topology.depth)]
    slack_vecs = None if slack is None else [float(slack) * np.ones(n) for n in topology.hidden]
    return NetworkVariable(weights, biases, slack_vecs)


def _model_payload(variable: NetworkVariable, lipschitz: float | None) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "topology": list(variable.topology.widths),
        "weights": [W.tolist() for W in variable.weights],
        "biases": [b.tolist() for b in variable.biases],
        "slack": None if variable.slack is None else [t.tolist() for t in variable.slack],
    }
    if lipschitz is not None:
        payload["lipschitz"] = float(lipschitz)
    return payload


def save_model(path: str | Path, variable: NetworkVariable, lipschitz: float | None = None) -> None:
    """Write a model as JSON, or as a MAT file when ``path`` ends in ``.mat``."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.suffix.lower() == ".mat":
        mdict: Dict[str, Any] = {"topology": np.asarray(variable.topology.widths, dtype=float)}
        for i, (W, b) in enumerate(zip(variable.weights, variable.biases)):
            mdict[f"W{i}"] = W
            mdict[f"b{i}"] = b.reshape(-1, 1)
        mdict["has_slack"] = float(variable.slack is not None)
        for i, t in enumerate(variable.slack or []):
            mdict[f"T{i}"] = t.reshape(-1, 1)
        if lipschitz is not None:
            mdict["lipschitz"] = float(lipschitz)
        savemat(str(path), mdict)
        return
    path.write_text(json.dumps(_model_payload(variable, lipschitz), indent=2))


def _load_mat_model(path: Path) -> Dict[str, Any]:
    raw = {k: v for k, v in loadmat(str(path)).items() if not str(k).startswith("__")}
    if "topology" not in raw:
        raise KeyError(f"Missing key 'topology' in MAT file {path}.")
    widths = [int(v) for v in np.asarray(raw["topology"]).reshape(-1)]
    depth = len(widths) - 1
    slack = None
    if bool(np.asarray(raw.get("has_slack", 0.0)).reshape(-1)[0]):
        slack = [np.asarray(raw[f"T{i}"], dtype=float).reshape(-1) for i in range(depth - 1)]
    return {
        "topology": widths,
        "weights": [np.asarray(raw[f"W{i}"], dtype=float) for i in range(depth)],
        "biases": [np.asarray(raw[f"b{i}"], dtype=float).reshape(-1) for i in range(depth)],
        "slack": slack,
        "lipschitz": float(np.asarray(raw["lipschitz"]).reshape(-1)[0]) if "lipschitz" in raw else None,
    }


def load_model_payload(path: str | Path) -> Dict[str, Any]:
    path = Path(path)
    if path.suffix.lower() == ".mat":
        return _load_mat_model(path)
    return json.loads(path.read_text())


def load_model(
    path: str | Path,
    topology: NetworkTopology | Sequence[int] | None = None,
) -> NetworkVariable:
    """Read a saved model; raises ValueError if ``topology`` does not match."""
    payload = load_model_payload(path)
    slack = payload.get("slack")
    variable = NetworkVariable(
        [np.asarray(W, dtype=float) for W in payload["weights"]],
        [np.asarray(b, dtype=float) for b in payload["biases"]],
        None if slack is None else [np.asarray(t, dtype=float) for t in slack],
    )
    stored = tuple(int(n) for n in payload.get("topology", variable.topology.widths))
    if stored != variable.topology.widths:
        raise ValueError(f"Stored topology {stored} does not match the stored weights {variable.topology.widths}.")
    if topology is not None:
        expected = topology if isinstance(topology, NetworkTopology) else NetworkTopology(tuple(topology))
        if expected != variable.topology:
            raise ValueError(f"Model topology {variable.topology.widths} does not match expected {expected.widths}.")
    return variable
