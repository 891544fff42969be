import argparse

import matplotlib.pyplot as plt

from experiments import DEFAULT_CONFIG, load_data, run_trial
from housing_mlp.datasets import plot_history, plot_price_histogram
from housing_mlp.losses import LOSSES

if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Train one regressor per loss function and plot the results.')
    parser.add_argument('--data-file', type=str, default=None, help='A CSV file of housing data.')
    parser.add_argument('--n-epochs', type=int, default=DEFAULT_CONFIG['n_epochs'])
    parser.add_argument('--seed', type=int, default=42)
    args = parser.parse_args()

    X_train, X_test, y_train, y_test = load_data(args.data_file, random_state=args.seed)

    fig, (ax_linear, ax_log) = plt.subplots(1, 2, figsize=(10, 4))
    plot_price_histogram(y_train, ax=ax_linear)
    plot_price_histogram(y_train, ax=ax_log, log=True, title='Distribution of log house prices')
    plt.show()

    histories = {}

    for loss_name in LOSSES:
        mae, history, clf = run_trial(loss_name, X_train, X_test, y_train, y_test,
                                      config=dict(n_epochs=args.n_epochs, log_verbosity=50),
                                      random_state=args.seed)
        histories[loss_name] = history
        print('%s: test MAE %.2f - %s' % (clf.loss_func, mae, history.stop_reason or 'ran all epochs'))

    plot_history(histories, metric='val_mae')
    plt.title('Validation MAE (normalised prices)')
    plt.show()
