import numpy as np
import pytest

from lipnet.barrier import (
    BarrierFunction,
    FixedSlackBarrier,
    InfeasibleIterateError,
    is_feasible,
    shrink_to_feasible,
)
from lipnet.problem import NetworkTopology, NetworkVariable

TOPOLOGIES = [(3, 5, 4, 2), (2, 3), (4, 6, 6, 6, 3)]


def _random_position(widths, seed: int, scale: float = 0.1) -> NetworkVariable:
    rng = np.random.default_rng(seed)
    topology = NetworkTopology(tuple(widths))
    weights = [scale * rng.standard_normal(topology.weight_shape(i)) for i in range(topology.depth)]
    biases = [rng.standard_normal(n) for n in topology.widths[1:]]
    slack = [rng.uniform(1.0, 2.0, size=n) for n in topology.hidden]
    return NetworkVariable(weights, biases, slack)


def _block(mat: np.ndarray, widths, row: int, col: int) -> np.ndarray:
    offsets = np.concatenate([[0], np.cumsum(widths)])
    return mat[offsets[row] : offsets[row + 1], offsets[col] : offsets[col + 1]]


def test_factorization_reconstructs_chi():
    for seed, widths in enumerate(TOPOLOGIES):
        x = _random_position(widths, seed)
        barrier = BarrierFunction(lipschitz=10.0)
        chi = barrier.chi(x).to_dense()
        factor = barrier.chol(x)

        lower = factor.to_dense()
        assert np.allclose(np.triu(lower, 1), 0.0)
        assert np.allclose(lower @ lower.T, chi)
        assert np.allclose(factor.to_block_tridiagonal().to_dense(), chi)
        assert np.isclose(factor.logdet(), np.linalg.slogdet(chi)[1])


def test_stability_shift_is_added_to_trailing_blocks():
    widths = (3, 5, 4, 2)
    x = _random_position(widths, seed=11)
    stability = 1e-2
    chi = BarrierFunction(10.0).chi(x).to_dense()
    shifted = BarrierFunction(10.0, stability=stability).chol(x).to_block_tridiagonal().to_dense()

    expected = chi + stability * np.eye(chi.shape[0])
    expected[: widths[0], : widths[0]] = chi[: widths[0], : widths[0]]
    assert np.allclose(shifted, expected)


def test_inverse_blocks_match_dense_inverse():
    for seed, widths in enumerate(TOPOLOGIES):
        x = _random_position(widths, seed + 20)
        barrier = BarrierFunction(lipschitz=10.0)
        chi = barrier.chi(x).to_dense()
        inverse = barrier.inv(barrier.chol(x))
        reference = np.linalg.inv(chi)

        for i, P in enumerate(inverse.diagonals):
            assert np.allclose(P, _block(reference, widths, i, i), atol=1e-10)
        for i, K in enumerate(inverse.lowers):
            assert np.allclose(K, _block(reference, widths, i + 1, i), atol=1e-10)

        offsets = np.concatenate([[0], np.cumsum(widths)])
        band = np.zeros(chi.shape, dtype=bool)
        for i in range(len(widths) - 1):
            band[offsets[i] : offsets[i + 2], offsets[i] : offsets[i + 2]] = True
        assembled = inverse.to_block_tridiagonal().to_dense()
        assert np.allclose(assembled[band], reference[band], atol=1e-10)
        assert np.allclose(assembled[~band], 0.0)


def _central_difference(barrier, x: NetworkVariable, gamma: float, field: str, layer: int, index, h: float = 1e-6):
    plus = x.copy()
    minus = x.copy()
    getattr(plus, field)[layer][index] += h
    getattr(minus, field)[layer][index] -= h
    return (barrier.value(plus, gamma) - barrier.value(minus, gamma)) / (2.0 * h)


def test_barrier_gradient_matches_finite_differences():
    gamma = 0.7
    for seed, widths in enumerate(TOPOLOGIES):
        rng = np.random.default_rng(100 + seed)
        x = _random_position(widths, seed + 40)
        barrier = BarrierFunction(lipschitz=3.0)
        gradient = x.zeros_like()
        barrier.compute(x, gradient, gamma)

        for layer, W in enumerate(x.weights):
            for _ in range(3):
                index = (int(rng.integers(W.shape[0])), int(rng.integers(W.shape[1])))
                fd = _central_difference(barrier, x, gamma, "weights", layer, index)
                assert np.isclose(gradient.weights[layer][index], fd, rtol=1e-5, atol=1e-6)
        for layer, t in enumerate(x.slack):
            index = int(rng.integers(t.shape[0]))
            fd = _central_difference(barrier, x, gamma, "slack", layer, index)
            assert np.isclose(gradient.slack[layer][index], fd, rtol=1e-5, atol=1e-6)
        for b in gradient.biases:
            assert np.allclose(b, 0.0)


def test_barrier_gradient_is_accumulated():
    x = _random_position((3, 5, 4, 2), seed=3)
    barrier = BarrierFunction(lipschitz=5.0)
    fresh = x.zeros_like()
    barrier.compute(x, fresh, 0.3)
    prefilled = x.zeros_like().add_scalar(1.0)
    barrier.compute(x, prefilled, 0.3)
    for a, b in zip(prefilled.arrays(), fresh.arrays()):
        assert np.allclose(a, b + 1.0)


def test_fixed_slack_barrier_only_touches_weights():
    x = _random_position((3, 5, 4, 2), seed=8)
    barrier = FixedSlackBarrier([t.copy() for t in x.slack], lipschitz=3.0)
    weights_only = x.without_slack()
    gradient = weights_only.zeros_like()
    barrier.compute(weights_only, gradient, 1.0)
    assert gradient.slack is None

    fd = _central_difference(barrier, weights_only, 1.0, "weights", 1, (2, 3))
    assert np.isclose(gradient.weights[1][2, 3], fd, rtol=1e-5, atol=1e-6)

    full = x.zeros_like()
    BarrierFunction(lipschitz=3.0).compute(x, full, 1.0)
    for a, b in zip(gradient.weights, full.weights):
        assert np.allclose(a, b)

    with pytest.raises(ValueError):
        FixedSlackBarrier([np.zeros(5), np.ones(4)], lipschitz=3.0)


def test_infeasible_iterate_raises():
    x = _random_position((3, 5, 4, 2), seed=1)
    x.weights = [50.0 * W for W in x.weights]
    barrier = BarrierFunction(lipschitz=1.0)
    with pytest.raises(InfeasibleIterateError) as excinfo:
        barrier.chol(x)
    assert isinstance(excinfo.value, np.linalg.LinAlgError)
    assert 1 <= excinfo.value.block <= 3
    assert not is_feasible(barrier, x)


def test_barrier_requires_slack_variable():
    x = _random_position((3, 5, 2), seed=0).without_slack()
    with pytest.raises(ValueError):
        BarrierFunction(lipschitz=2.0).chol(x)


def test_shrink_to_feasible_scales_weights():
    x = _random_position((3, 5, 4, 2), seed=2)
    x.weights = [50.0 * W for W in x.weights]
    barrier = BarrierFunction(lipschitz=1.0)
    with pytest.warns(RuntimeWarning):
        shrunk = shrink_to_feasible(barrier, x)
    assert is_feasible(barrier, shrunk)
    ratio = shrunk.weights[0][0, 0] / x.weights[0][0, 0]
    assert 0.0 < ratio < 1.0
    assert np.allclose(shrunk.weights[1], ratio * x.weights[1])
    assert np.allclose(shrunk.slack[0], x.slack[0])
