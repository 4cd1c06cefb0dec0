import numpy as np
import pytest

from lipnet.data import (
    initial_variable,
    load_csv_dataset,
    load_model,
    make_one_hot,
    save_model,
    synthetic_classification,
)


def test_one_hot_encoding():
    encoded = make_one_hot([0, 2, 1, 2], 3)
    assert encoded.shape == (4, 3)
    assert np.allclose(encoded.sum(axis=1), 1.0)
    assert np.allclose(np.argmax(encoded, axis=1), [0, 2, 1, 2])
    with pytest.raises(ValueError):
        make_one_hot([0, 3], 3)


def test_synthetic_classification_is_reproducible():
    a = synthetic_classification(20, input_dim=2, num_classes=3, seed=7)
    b = synthetic_classification(20, input_dim=2, num_classes=3, seed=7)
    assert len(a) == 20
    assert a.input_dim == 2 and a.num_classes == 3
    assert np.allclose(a.inputs, b.inputs)
    assert np.bincount(a.labels).tolist() == [7, 7, 6]
    assert np.allclose(np.argmax(a.targets, axis=1), a.labels)


def test_load_csv_dataset(tmp_path):
    path = tmp_path / "points.csv"
    path.write_text("x0,x1,label\n0.5,1.0,0\n-1.0,2.0,1\n3.0,-0.5,1\n")
    data = load_csv_dataset(path, input_dim=2, num_classes=2, skip_header=1)
    assert data.inputs.shape == (3, 2)
    assert data.labels.tolist() == [0, 1, 1]
    assert np.allclose(data.targets[1], [0.0, 1.0])
    with pytest.raises(ValueError):
        load_csv_dataset(path, input_dim=3, num_classes=2, skip_header=1)


def test_initial_variable_layout():
    x = initial_variable((2, 4, 3), variance=0.1, slack=1.5, seed=0)
    assert [W.shape for W in x.weights] == [(4, 2), (3, 4)]
    assert all(np.allclose(b, 0.0) for b in x.biases)
    assert np.allclose(x.slack[0], 1.5)
    assert initial_variable((2, 4, 3), slack=None, seed=0).slack is None
    assert np.allclose(initial_variable((2, 4, 3), seed=0).weights[1], x.weights[1])


def test_model_json_round_trip_and_topology_check(tmp_path):
    x = initial_variable((2, 4, 3), variance=0.1, seed=1)
    path = tmp_path / "model.json"
    save_model(path, x, lipschitz=5.0)
    loaded = load_model(path, topology=(2, 4, 3))
    for a, b in zip(loaded.arrays(), x.arrays()):
        assert np.allclose(a, b)
    with pytest.raises(ValueError):
        load_model(path, topology=(2, 5, 3))


def test_model_mat_round_trip(tmp_path):
    x = initial_variable((3, 2), variance=0.1, slack=None, seed=2)
    path = tmp_path / "model.mat"
    save_model(path, x)
    loaded = load_model(path)
    assert loaded.slack is None
    assert loaded.topology.widths == (3, 2)
    assert np.allclose(loaded.weights[0], x.weights[0])
