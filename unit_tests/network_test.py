"""
Tests for the regressor, its layers and training loop
"""

import numpy as np
import pytest

from housing_mlp.activation_functions import Identity, ReLU
from housing_mlp.layers import DenseLayer
from housing_mlp.losses import Loss, MeanLogAbsoluteError, MeanSquaredError
from housing_mlp.network import EarlyStopping, History, MLPRegressor, _generate_minibatches, build_regressor


def make_linear_data(n_samples=200, seed=0):
    rng = np.random.default_rng(seed)
    X = rng.normal(size=(n_samples, 3))
    y = X.dot(np.array([[0.5], [-0.3], [0.2]])) + 0.1

    return X, y


class NaNLoss(Loss):
    def elementwise(self, y, y_pred):
        return np.full_like(y, np.nan)

    def derivative(self, y, y_pred):
        return np.zeros_like(y_pred)


def test_activation_functions():
    X = np.array([[-1.0, 0.0, 2.0]])

    np.testing.assert_array_equal(ReLU()(X), [[0.0, 0.0, 2.0]])
    np.testing.assert_array_equal(ReLU().derivative(ReLU()(X)), [[0.0, 0.0, 1.0]])
    np.testing.assert_array_equal(Identity()(X), X)
    np.testing.assert_array_equal(Identity().derivative(X), np.ones_like(X))


def test_generate_minibatches():
    X = np.arange(10).reshape(-1, 1)
    y = np.arange(10).reshape(-1, 1)

    batches = list(_generate_minibatches(X, y, batch_size=4))

    assert [len(X_batch) for _, X_batch, _ in batches] == [4, 4, 2]
    assert [batch_i for batch_i, _, _ in batches] == [0, 1, 2]
    assert len(list(_generate_minibatches(X, y, batch_size=-1))) == 1


def test_build_regressor_topology():
    clf = build_regressor(13, MeanSquaredError(), hidden_units=(64, 32), random_state=0)

    assert [layer.shape for layer in clf.layers] == [(13, 64), (64, 32), (32, 1)]
    assert [type(layer.activation_func) for layer in clf.layers] == [ReLU, ReLU, Identity]
    assert clf.predict(np.zeros((5, 13))).shape == (5, 1)


def test_layer_input_mismatch():
    with pytest.raises(AssertionError):
        MLPRegressor([DenseLayer(4, n_inputs=2), DenseLayer(1, n_inputs=3)])


def test_same_seed_same_weights():
    a = build_regressor(3, random_state=7)
    b = build_regressor(3, random_state=7)

    for layer_a, layer_b in zip(a.layers, b.layers):
        np.testing.assert_array_equal(layer_a.W, layer_b.W)


def test_backward_matches_numerical_gradient():
    X, y = make_linear_data(n_samples=8)
    loss_func = MeanSquaredError()
    clf = MLPRegressor([DenseLayer(4, n_inputs=3, activation_func=Identity()),
                        DenseLayer(1, activation_func=Identity())],
                       learning_rate=0.1, momentum=0.0, loss_func=loss_func, random_state=0)

    def loss_at(layer, param, index, delta):
        getattr(layer, param)[index] += delta
        loss = loss_func(y, clf.predict(X))
        getattr(layer, param)[index] -= delta

        return loss

    h = 1e-6
    expected = []

    for layer in clf.layers:
        params = {}

        for param in ('W', 'b'):
            value = getattr(layer, param)
            grad = np.zeros_like(value)

            for index in np.ndindex(value.shape):
                grad[index] = (loss_at(layer, param, index, h) - loss_at(layer, param, index, -h)) / (2 * h)

            params[param] = value - clf.learning_rate * grad

        expected.append(params)

    clf._backward(y, clf._forward(X))

    for layer, params in zip(clf.layers, expected):
        np.testing.assert_allclose(layer.W, params['W'], rtol=1e-5, atol=1e-8)
        np.testing.assert_allclose(layer.b, params['b'], rtol=1e-5, atol=1e-8)


def test_fit_reduces_loss():
    X, y = make_linear_data()
    clf = build_regressor(3, MeanSquaredError(), hidden_units=(16, 16), learning_rate=0.01, random_state=0)

    history = clf.fit(X, y, n_epochs=30, batch_size=16, log_verbosity=0)

    assert history.n_epochs == 30
    assert history.loss[-1] < history.loss[0]
    assert history.mae[-1] < history.mae[0]
    assert np.isnan(history.val_loss[-1])
    assert clf.score(X, y) == pytest.approx(np.mean(np.abs(clf.predict(X) - y)))


def test_fit_with_log_absolute_loss():
    X, y = make_linear_data()
    y = np.abs(y) / 1000
    clf = build_regressor(3, MeanLogAbsoluteError(scale=1000), hidden_units=(16, 16), learning_rate=0.001,
                          random_state=0)

    history = clf.fit(X, y, val_set=0.25, n_epochs=5, batch_size=16, log_verbosity=0)

    assert history.n_epochs == 5
    assert np.all(np.isfinite(history.loss))
    assert np.all(np.isfinite(history.val_mae))


def test_fit_stops_on_non_finite_loss(capsys):
    X, y = make_linear_data(n_samples=20)
    clf = build_regressor(3, NaNLoss(), hidden_units=(4, 4), random_state=0)
    weights = clf.layers[0].W.copy()

    history = clf.fit(X, y, n_epochs=10, batch_size=5, log_verbosity=1)

    assert history.n_epochs == 1
    assert history.stop_reason == 'loss is not finite'
    np.testing.assert_array_equal(clf.layers[0].W, weights)
    assert 'Stopping early - loss is not finite.' in capsys.readouterr().out


def test_fit_logs_progress(capsys):
    X, y = make_linear_data(n_samples=20)
    clf = build_regressor(3, hidden_units=(4, 4), random_state=0)

    clf.fit(X, y, n_epochs=4, batch_size=5, log_verbosity=2)

    lines = capsys.readouterr().out.splitlines()

    assert len(lines) == 2
    assert lines[0].startswith('epoch 1 of 4 - loss: ')
    assert lines[1].startswith('epoch 3 of 4 - loss: ')


def test_fit_with_validation_tuple():
    X, y = make_linear_data()
    clf = build_regressor(3, hidden_units=(8, 8), random_state=0)

    history = clf.fit(X[:150], y[:150], val_set=(X[150:], y[150:]), n_epochs=3, log_verbosity=0)

    assert history.val_mae[-1] == pytest.approx(clf.score(X[150:], y[150:]))


def test_fit_rejects_row_vector_targets():
    X, y = make_linear_data(n_samples=10)
    clf = build_regressor(3, hidden_units=(4, 4), random_state=0)

    with pytest.raises(AssertionError):
        clf.fit(X, y.ravel(), n_epochs=1)


def test_invalid_val_set():
    X, y = make_linear_data(n_samples=10)
    clf = build_regressor(3, hidden_units=(4, 4), random_state=0)

    with pytest.raises(ValueError):
        clf.fit(X, y, val_set='10%', n_epochs=1)


def test_early_stopping_patience():
    es = EarlyStopping(patience=2)

    for loss in [1.0, 0.5, 0.5, 0.5]:
        es.update(loss, 1.0)
        assert not es.should_stop

    es.update(0.5, 1.0)

    assert es.should_stop
    assert es.reason == 'loss has stopped improving'


def test_early_stopping_criterion():
    es = EarlyStopping(patience=0, criterion=0.1)
    es.update(1.0, 0.05)

    assert es.should_stop
    assert es.reason == 'reached target error criterion'


def test_fit_stops_early():
    X, y = make_linear_data(n_samples=40)
    clf = build_regressor(3, hidden_units=(4, 4), random_state=0)

    history = clf.fit(X, y, n_epochs=50, early_stopping=EarlyStopping(patience=0, criterion=1e6), log_verbosity=0)

    assert history.n_epochs == 1
    assert history.stop_reason == 'reached target error criterion'


def test_history():
    history = History()
    history.append(1.0, 0.5)

    assert history.n_epochs == 1
    assert history.to_json()['loss'] == [1.0]
    assert np.isnan(history.val_mae[0])


def test_to_json_and_weights(tmp_path):
    clf = build_regressor(3, MeanLogAbsoluteError(scale=100), hidden_units=(4, 4), random_state=0)
    clf.save(str(tmp_path / 'model.json'))
    clf.save_weights(str(tmp_path / 'weights'))

    json_dict = clf.to_json()

    assert json_dict['loss_func'] == {'loss_type': 'MeanLogAbsoluteError', 'epsilon': 1e-7, 'scale': 100.0}
    assert [layer['activation_func']['activation_type'] for layer in json_dict['layers']] == \
           ['ReLU', 'ReLU', 'Identity']

    other = build_regressor(3, hidden_units=(4, 4), random_state=1)
    other.load_weights(str(tmp_path / 'weights'))

    X = np.ones((2, 3))
    np.testing.assert_array_equal(other.predict(X), clf.predict(X))


def test_from_json_rebuilds_regressor(tmp_path):
    clf = build_regressor(3, MeanLogAbsoluteError(scale=100), hidden_units=(4, 2), learning_rate=0.05,
                          momentum=0.5, random_state=0)
    clf.save(str(tmp_path / 'model.json'))

    restored = MLPRegressor.load(str(tmp_path / 'model.json'))

    assert restored.to_json() == clf.to_json()
    assert isinstance(restored.loss_func, MeanLogAbsoluteError)
    assert [type(layer.activation_func) for layer in restored.layers] == [ReLU, ReLU, Identity]
    assert [layer.shape for layer in restored.layers] == [(3, 4), (4, 2), (2, 1)]
