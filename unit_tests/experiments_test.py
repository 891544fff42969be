import json
import os

import numpy as np
import pytest

from experiments import ResultSet, compare_losses, get_parser, load_data, load_model, pad, run_trial


@pytest.fixture(scope='module')
def data():
    return load_data(random_state=0)


def test_load_data(data):
    X_train, X_test, y_train, y_test = data

    assert len(X_train) == 800
    assert len(X_test) == 200
    assert y_train.shape == (800, 1)
    np.testing.assert_allclose(X_train.mean(axis=0), 0.0, atol=1e-8)


@pytest.mark.parametrize('loss_name', ['mse', 'msle', 'mlae', 'mslae'])
def test_run_trial(data, loss_name):
    mae, history, clf = run_trial(loss_name, *data, config=dict(n_epochs=2, hidden_units=(8, 8)), random_state=0)

    assert np.isfinite(mae)
    assert mae >= 0
    assert history.n_epochs <= 2
    assert clf.loss_func.name == loss_name


def test_compare_losses():
    maes = {'mse': [10.0, 11.0, 12.0], 'mlae': [5.0, 6.0, 7.0]}

    df = compare_losses(maes)

    assert df.loc['mse', 'mae_mean'] == pytest.approx(11.0)
    assert np.isnan(df.loc['mse', 'p_value'])
    assert df.loc['mlae', 't_statistic'] < 0
    assert df.loc['mlae', 'p_value'] < 0.05


def test_compare_losses_missing_baseline():
    with pytest.raises(ValueError):
        compare_losses({'mlae': [1.0, 2.0]})


def test_pad():
    np.testing.assert_array_equal(pad([1.0, 2.0], 4, fill_value=0.0), [1.0, 2.0, 0.0, 0.0])
    np.testing.assert_array_equal(pad([1.0, 2.0], 2), [1.0, 2.0])


def test_result_set_save(tmp_path, data):
    maes = {}
    histories = {}
    clf = None

    for loss_name in ['mse', 'mlae']:
        results = [run_trial(loss_name, *data, config=dict(n_epochs=1, hidden_units=(4, 4)), random_state=seed)
                   for seed in range(2)]
        maes[loss_name] = [mae for mae, _, _ in results]
        histories[loss_name] = [history for _, history, _ in results]
        clf = results[0][2]

    run_path = ResultSet('run', dict(scale=1000.0, baseline='mse'), maes, histories, clf).save(str(tmp_path))

    with open(os.path.join(run_path, 'statistics.json')) as file:
        stats = json.load(file)

    assert stats['maes']['mlae'] == maes['mlae']
    assert [row['loss'] for row in stats['comparison']] == ['mse', 'mlae']
    assert np.load(os.path.join(run_path, 'mlae_val_mae.npy')).shape == (2, 1)
    assert os.path.exists(os.path.join(run_path, 'model.json'))
    assert os.path.exists(os.path.join(run_path, 'weights'))


def test_parser_defaults():
    args = get_parser().parse_args([])

    assert args.losses == ['mse', 'msle', 'mlae', 'mslae']
    assert args.scale == 1000.0

    args = get_parser().parse_args(['--losses', 'mse', 'mlae', '--scale', '100'])

    assert args.losses == ['mse', 'mlae']
    assert args.scale == 100.0


def _reject_constant(name):
    raise ValueError('Non-standard JSON constant %s.' % name)


def test_statistics_are_strict_json(tmp_path, data):
    mae, history, clf = run_trial('mse', *data, config=dict(n_epochs=1, hidden_units=(4, 4)), random_state=0)
    maes = {'mse': [mae], 'mlae': [float('nan')]}
    histories = {'mse': [history], 'mlae': [history]}

    run_path = ResultSet('strict', dict(baseline='mse'), maes, histories, clf).save(str(tmp_path))

    with open(os.path.join(run_path, 'statistics.json')) as file:
        stats = json.loads(file.read(), parse_constant=_reject_constant)

    assert stats['maes']['mlae'] == [None]
    assert stats['comparison'][0]['loss'] == 'mse'
    assert stats['comparison'][0]['t_statistic'] is None
    assert stats['comparison'][0]['p_value'] is None


def test_saved_model_loads_back(tmp_path, data):
    X_train, X_test, _, _ = data
    mae, history, clf = run_trial('mlae', *data, config=dict(n_epochs=2, hidden_units=(8, 8), scale=500.0),
                                  random_state=0)

    run_path = ResultSet('model', dict(baseline='mlae'), {'mlae': [mae]}, {'mlae': [history]}, clf) \
        .save(str(tmp_path))
    restored = load_model(run_path)

    assert restored.to_json() == clf.to_json()
    assert restored.loss_func.scale == 500.0
    np.testing.assert_array_equal(restored.predict(X_test), clf.predict(X_test))


def test_parser_run_options():
    args = get_parser().parse_args(['--target', 'value', '--n-jobs', '4', '--patience', '0'])

    assert args.target == 'value'
    assert args.n_jobs == 4
    assert args.patience == 0
