"""Compare loss functions for regression on wide range housing prices.

A regressor with the same fixed topology is trained once per loss function
and trial. Every model is evaluated with the same metric, the mean absolute
error of the predicted prices in thousands, whichever loss drove training.
"""
import argparse
import hashlib
import json
import multiprocessing
import os
from datetime import datetime
from time import time

import numpy as np
import pandas as pd
from scipy import stats
from sklearn.model_selection import train_test_split

from housing_mlp.datasets import denormalise_labels, load_housing, make_housing, normalise_labels, preprocess
from housing_mlp.losses import LOSSES, get_loss
from housing_mlp.metrics import mean_absolute_error
from housing_mlp.network import EarlyStopping, MLPRegressor, build_regressor

DEFAULT_CONFIG = dict(
    scale=1000.0,
    n_epochs=200,
    batch_size=32,
    learning_rate=0.01,
    momentum=0.9,
    hidden_units=(64, 64),
    val_split=0.2,
    patience=20,
    log_verbosity=0
)


class ResultSet:
    def __init__(self, run_id, config, maes, histories, clf):
        self.run_id = run_id
        self.config = config
        self.maes = maes
        self.histories = histories
        self.clf = clf

    def json(self):
        return {
            'run_id': self.run_id,
            'config': self.config,
            'maes': {name: [mae if np.isfinite(mae) else None for mae in errors]
                     for name, errors in self.maes.items()},
            'stop_reasons': {name: [history.stop_reason for history in histories]
                             for name, histories in self.histories.items()},
            # pandas writes NaN as null, e.g. the t-test columns of the baseline row.
            'comparison': json.loads(compare_losses(self.maes, self.config['baseline']).reset_index()
                                     .to_json(orient='records'))
        }

    def save(self, path):
        run_path = os.path.join(path, self.run_id)
        os.makedirs(run_path, exist_ok=True)

        with open(os.path.join(run_path, 'statistics.json'), 'w') as file:
            json.dump(self.json(), file, default=float, allow_nan=False)

        for name, histories in self.histories.items():
            n_epochs = max(history.n_epochs for history in histories)
            np.save(os.path.join(run_path, '%s_val_mae' % name),
                    np.array([pad(history.val_mae, n_epochs) for history in histories]))

        if self.clf is not None:
            self.clf.save(os.path.join(run_path, 'model.json'))
            self.clf.save_weights(os.path.join(run_path, 'weights'))

        return run_path


def load_model(run_path):
    """Load the model saved by `ResultSet.save`, with its trained weights.

    Arguments:
        run_path: The directory of the run, as returned by `ResultSet.save`.

    Returns: The MLPRegressor.
    """
    clf = MLPRegressor.load(os.path.join(run_path, 'model.json'))
    clf.load_weights(os.path.join(run_path, 'weights'))

    return clf


def pad(a, length, fill_value=np.nan):
    """Pad a history that was cut short by early stopping to `length` epochs."""
    if len(a) == length:
        return np.asarray(a)

    padded = np.full(length, fill_value)
    padded[:len(a)] = a

    return padded


def run_trial(loss_name, X_train, X_test, y_train, y_test, config=None, random_state=None):
    """Train a regressor with the given loss and evaluate it on the test set.

    Arguments:
        loss_name: The short name of the loss function, see `housing_mlp.losses.LOSSES`.
        X_train: The preprocessed training features.
        X_test: The preprocessed test features.
        y_train: The training prices, in thousands.
        y_test: The test prices, in thousands.
        config: Overrides for `DEFAULT_CONFIG`.
        random_state: The seed for this trial.

    Returns: A 3-tuple of the test MAE in thousands, the training `History` and the trained regressor.
    """
    config = dict(DEFAULT_CONFIG, **(config or {}))
    scale = config['scale']

    # The log absolute losses multiply by the same scale the labels are divided by here.
    loss_func = get_loss(loss_name, scale=scale)
    clf = build_regressor(X_train.shape[1], loss_func, hidden_units=config['hidden_units'],
                          learning_rate=config['learning_rate'], momentum=config['momentum'],
                          random_state=random_state)

    history = clf.fit(X_train, normalise_labels(y_train, scale), val_set=config['val_split'],
                      n_epochs=config['n_epochs'], batch_size=config['batch_size'],
                      early_stopping=EarlyStopping(patience=config['patience']),
                      log_verbosity=config['log_verbosity'])

    y_pred = denormalise_labels(clf.predict(X_test), scale)

    return mean_absolute_error(y_test, y_pred), history, clf


def compare_losses(maes, baseline='mse'):
    """Compare the test error of each loss function against a baseline.

    A Welch's t-test is done between the errors of each loss and those of the baseline.

    Arguments:
        maes: A dictionary mapping loss names to a list of test MAEs, one per trial.
        baseline: The name of the loss to compare against.

    Returns: A pandas DataFrame indexed by loss name with the mean and standard deviation of the MAE, and the
    t-statistic and p-value against the baseline (NaN for the baseline itself).
    """
    if baseline not in maes:
        raise ValueError('Baseline \'%s\' not found in results for: %s.' % (baseline, ', '.join(maes)))

    rows = []

    for name, errors in maes.items():
        errors = np.asarray(errors, dtype=np.float64)
        t_statistic, p_value = np.nan, np.nan

        if name != baseline and len(errors) > 1 and len(maes[baseline]) > 1:
            t_statistic, p_value = stats.ttest_ind(errors, maes[baseline], equal_var=False)

        rows.append(dict(loss=name, mae_mean=errors.mean(), mae_std=errors.std(),
                         t_statistic=float(t_statistic), p_value=float(p_value)))

    return pd.DataFrame(rows).set_index('loss')


def load_data(data_file=None, target='price', test_size=0.2, random_state=None):
    """Load, split and preprocess the housing data.

    Returns: The 4-tuple X_train, X_test, y_train, y_test.
    """
    if data_file:
        X, y = load_housing(data_file, target=target)
    else:
        X, y = make_housing(random_state=random_state)

    X_train, X_test, y_train, y_test = train_test_split(X, y, test_size=test_size, random_state=random_state)
    X_train, X_test = preprocess(X_train, X_test)

    return X_train, X_test, y_train, y_test


def main(args):
    config = dict(DEFAULT_CONFIG, scale=args.scale, n_epochs=args.n_epochs, batch_size=args.batch_size,
                  learning_rate=args.learning_rate, momentum=args.momentum, patience=args.patience,
                  log_verbosity=args.log_verbosity)

    X_train, X_test, y_train, y_test = load_data(args.data_file, args.target, args.test_size, args.seed)
    print('Loaded %d training and %d test samples with %d features.'
          % (len(X_train), len(X_test), X_train.shape[1]))

    rng = np.random.default_rng(args.seed)
    n_jobs = args.n_jobs if args.n_jobs > 0 else os.cpu_count()
    seeds = [int(seed) for seed in rng.integers(2 ** 31 - 1, size=args.n_trials)]

    maes = {}
    histories = {}
    best_mae = float('inf')
    best_clf = None
    start = datetime.now()

    for loss_name in args.losses:
        trials = [(loss_name, X_train, X_test, y_train, y_test, config, seed) for seed in seeds]

        with multiprocessing.Pool(n_jobs) as p:
            results = p.starmap(run_trial, trials)

        maes[loss_name] = [mae for mae, _, _ in results]
        histories[loss_name] = [history for _, history, _ in results]

        for mae, _, clf in results:
            if np.isfinite(mae) and mae < best_mae:
                best_mae = mae
                best_clf = clf

        print('%s: test MAE %.2f ± %.2f (n=%d) - Elapsed time: %s'
              % (loss_name, np.mean(maes[loss_name]), 2 * np.std(maes[loss_name]), args.n_trials,
                 datetime.now() - start))

    print()
    print(compare_losses(maes, baseline=args.losses[0]).to_string())

    run_id = hashlib.md5(str(time()).encode('utf-8')).hexdigest()
    config['baseline'] = args.losses[0]
    run_path = ResultSet(run_id, config, maes, histories, best_clf).save(args.results_dir)
    print('Results saved to \'%s\'.' % run_path)


def get_parser():
    parser = argparse.ArgumentParser(description='Compare loss functions for housing price regression.')
    parser.add_argument('--data-file', type=str, default=None,
                        help='A CSV file of housing data. A synthetic data set is used if this is not given.')
    parser.add_argument('--target', type=str, default='price', help='The name of the price column.')
    parser.add_argument('--results-dir', type=str, default='results/', help='Where to save the results to.')
    parser.add_argument('--losses', type=str, nargs='+', default=list(LOSSES), choices=list(LOSSES),
                        help='The loss functions to compare. The first one is the baseline.')
    parser.add_argument('--n-trials', type=int, default=5, help='How many times to repeat each configuration.')
    parser.add_argument('--n-jobs', type=int, default=1, help='How many processors to use.')
    parser.add_argument('--n-epochs', type=int, default=DEFAULT_CONFIG['n_epochs'])
    parser.add_argument('--batch-size', type=int, default=DEFAULT_CONFIG['batch_size'])
    parser.add_argument('--learning-rate', type=float, default=DEFAULT_CONFIG['learning_rate'])
    parser.add_argument('--momentum', type=float, default=DEFAULT_CONFIG['momentum'])
    parser.add_argument('--patience', type=int, default=DEFAULT_CONFIG['patience'],
                        help='Epochs without improvement in validation loss before stopping. Zero disables it.')
    parser.add_argument('--scale', type=float, default=DEFAULT_CONFIG['scale'],
                        help='Prices are divided by this before training. The log absolute losses use the same value.')
    parser.add_argument('--test-size', type=float, default=0.2, help='The proportion of data held out for testing.')
    parser.add_argument('--seed', type=int, default=42)
    parser.add_argument('--log-verbosity', type=int, default=0, help='Log training progress every n epochs.')

    return parser


if __name__ == '__main__':
    main(get_parser().parse_args())
