"""Loading, preprocessing and plotting of housing price data sets.

Prices are expected in thousands (e.g. 21.6 for $21,600). They are divided by
a scale before training and multiplied back afterwards; the same scale must be
given to the log absolute losses.
"""

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from sklearn.datasets import make_regression
from sklearn.preprocessing import StandardScaler


def load_housing(path, target='price'):
    """Load a housing data set from a CSV file.

    Arguments:
        path: The path to the CSV file. Every column other than `target` is used as a feature.
        target: The name of the column holding the prices.

    Returns: A 2-tuple of the features, shape (n, d), and the prices as a column vector, shape (n, 1).
    """
    df = pd.read_csv(path)

    if target not in df.columns:
        raise KeyError('Column \'%s\' not found in \'%s\'. Available columns: %s.'
                       % (target, path, ', '.join(df.columns)))

    X = df.drop(columns=[target]).to_numpy(dtype=np.float64)
    y = df[target].to_numpy(dtype=np.float64).reshape(-1, 1)

    return X, y


def make_housing(n_samples=1000, n_features=13, noise=0.1, random_state=None):
    """Generate a synthetic housing data set with a wide range of prices.

    The log of the price is a noisy linear function of the features, so the
    prices themselves follow a heavy tailed, log-normal like distribution.

    Arguments:
        n_samples: The number of houses.
        n_features: The number of features per house.
        noise: The standard deviation of the noise added to the log price.
        random_state: The seed for the generator.

    Returns: A 2-tuple of the features, shape (n, d), and the prices in thousands, shape (n, 1).
    """
    X, log_price = make_regression(n_samples=n_samples, n_features=n_features, n_informative=n_features,
                                   noise=noise, random_state=random_state)
    # Centre the log prices around ~$150k with roughly an order of magnitude of spread either side.
    log_price = (log_price - log_price.mean()) / log_price.std()
    y = np.exp(np.log(150.0) + 1.2 * log_price)

    return X, y.reshape(-1, 1)


def preprocess(X_train, X_test):
    """Standardise the features using statistics of the training set only.

    Returns: A 2-tuple of the scaled training and test features.
    """
    scaler = StandardScaler().fit(X_train)

    return scaler.transform(X_train), scaler.transform(X_test)


def normalise_labels(y, scale=1000.0):
    return np.asarray(y, dtype=np.float64) / scale


def denormalise_labels(y, scale=1000.0):
    return np.asarray(y, dtype=np.float64) * scale


def plot_price_histogram(y, ax=None, bins=50, log=False, title='Distribution of house prices'):
    """Plot a histogram of house prices.

    Arguments:
        y: The prices.
        ax: The matplotlib axes to draw on. A new figure is created if this is None.
        bins: The number of histogram bins.
        log: Whether to plot the log of the prices, which shows the spread of a wide range data set better.
            Prices of zero or less are left out of the log plot.
        title: The plot title.

    Returns: The axes the histogram was drawn on.
    """
    if ax is None:
        _, ax = plt.subplots()

    values = np.ravel(y)

    if log:
        # log is undefined for free or negatively priced entries.
        values = np.log(values[values > 0])

    ax.hist(values, bins=bins)
    ax.set_title(title)
    ax.set_xlabel('log(price)' if log else 'Price (thousands)')
    ax.set_ylabel('Count')

    return ax


def plot_history(histories, metric='val_mae', ax=None):
    """Plot one training curve per loss function.

    Arguments:
        histories: A dictionary mapping loss names to `History` objects.
        metric: Which of the history's series to plot, e.g. 'loss', 'mae', 'val_loss' or 'val_mae'.
        ax: The matplotlib axes to draw on. A new figure is created if this is None.

    Returns: The axes the curves were drawn on.
    """
    if ax is None:
        _, ax = plt.subplots()

    for name, history in histories.items():
        ax.plot(getattr(history, metric), label=name)

    ax.set_xlabel('Epoch')
    ax.set_ylabel(metric)
    ax.legend(title='Loss')

    return ax
