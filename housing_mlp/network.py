"""This module implements the MLP (Multi-layer Perceptron) regressor used to
compare loss functions, and some supporting functionality.

The main classes are:
- MLPRegressor: A MLP for regression, trained with mini-batch SGD and momentum.
- EarlyStopping: Decides when training should stop.
- History: The per-epoch loss and metric values recorded during training.

The design is similar to a mix of the Keras API and the scikit-learn estimator API. The network is agnostic to the
loss it minimises: any object with the `Loss` calling convention and a `derivative` method will do. What is reported
is always the metric, mean absolute error by default, so different losses can be compared on the same footing.
"""
import gzip
import json
import pickle

import numpy as np
from sklearn import utils
from sklearn.model_selection import train_test_split

from housing_mlp.activation_functions import Identity, ReLU
from housing_mlp.layers import DenseLayer
from housing_mlp.losses import Loss, MeanSquaredError
from housing_mlp.metrics import is_finite_loss, mean_absolute_error


def _generate_minibatches(X, y, batch_size=32, shuffle=False, random_state=None):
    """Generate mini-batches from the given X-y sets.

    Arguments:
        X: The feature data set.
        y: The target data set.
        batch_size: The size of the batches to generate from X and y.
                    If this parameter is set to negative one, then the batch
                    size is set the length of the entire X set - which is
                    equivalent to batch SGD.

        shuffle: Whether or not to shuffle the data.
        random_state: The seed used for shuffling.
    """
    N = len(X)
    assert N == len(y), "X and y must have the same number of samples (%d != %d)." % (N, len(y))
    assert batch_size == -1 or batch_size > 0, "Invalid batch size."

    if shuffle:
        X, y = utils.shuffle(X, y, random_state=random_state)

    if batch_size == -1 or batch_size > N:
        batch_size = N

    for batch_i, batch_start in enumerate(range(0, N, batch_size)):
        yield batch_i, X[batch_start:batch_start + batch_size], y[batch_start:batch_start + batch_size]


class EarlyStopping:
    """An object that implements early stopping.

    Training can be stopped early based on the lack of improvement of loss or upon reaching a target error.
    """

    def __init__(self, patience=10, min_improvement=1e-5, criterion=0.0):
        """
        Create an EarlyStopping object.

        Arguments:
            patience: The number of epochs after no improvement in loss is observed which training should be stopped
            early. If set to any number less than one, early stopping based on the change in loss is disabled.

            min_improvement: The minimum change of loss that is to be considered an improvement.

            criterion: The target error. Training is stopped once the mean absolute error drops below the
            criterion. If set to zero or less this check is disabled.
        """
        self.patience = patience
        self.min_improvement = min_improvement
        self.criterion = criterion
        self.epochs_no_improvement = 0
        self.min_loss = float('inf')
        self.last_error = float('inf')
        self.reason = ''

    @property
    def should_stop(self):
        """Check whether training should stop.

        Returns: True if training should stop, False otherwise.
        """
        if self.patience > 0 and self.epochs_no_improvement > self.patience:
            self.reason = 'loss has stopped improving'

            return True
        elif self.criterion > 0 and self.last_error < self.criterion:
            self.reason = 'reached target error criterion'

            return True
        else:
            return False

    def update(self, loss, error):
        """Update the state of the early stopping object.

        Arguments:
            loss: The loss to measure.
            error: The mean absolute error to measure.
        """
        self.last_error = error

        if self.min_loss - loss > self.min_improvement:
            self.min_loss = loss
            self.epochs_no_improvement = 0
        else:
            self.epochs_no_improvement += 1


class History:
    """The training history of a MLP, one entry per epoch."""

    def __init__(self):
        self.loss = []
        self.mae = []
        self.val_loss = []
        self.val_mae = []
        self.stop_reason = ''

    @property
    def n_epochs(self):
        return len(self.loss)

    def append(self, loss, mae, val_loss=np.nan, val_mae=np.nan):
        self.loss.append(loss)
        self.mae.append(mae)
        self.val_loss.append(val_loss)
        self.val_mae.append(val_mae)

    def to_json(self):
        return dict(loss=self.loss, mae=self.mae, val_loss=self.val_loss, val_mae=self.val_mae,
                    stop_reason=self.stop_reason)


class MLPRegressor:
    """A MLP for regression tasks."""

    def __init__(self, layers=None, learning_rate=0.01, momentum=0.9, loss_func=None, metric=None,
                 random_state=None):
        """Create a MLP.

        Arguments:
            layers: A list of the layers to use for the network. See the
            documentation on DenseLayer for more details.

            learning_rate: The learning constant which controls how big of a
            step is taken during SGD.

            momentum: The momentum constant which controls how much of the
            previous weight changes are carried over to the next update.

            loss_func: The loss function the MLP is trained to minimise. Defaults to mean squared error.

            metric: The function `metric(y, y_pred) -> float` used to report performance. Defaults to mean
            absolute error.

            random_state: The seed for weight initialisation and batch shuffling.
        """
        assert layers is not None and len(layers) > 0, "You need to define at least one layer for the network."

        self.learning_rate = learning_rate
        self.momentum = momentum
        self.loss_func = loss_func if loss_func is not None else MeanSquaredError()
        self.metric = metric if metric is not None else mean_absolute_error
        self.layers = layers
        self.rng = np.random.default_rng(random_state)

        for i, layer in enumerate(layers):
            if i > 0:
                if layer.n_inputs is None:
                    # We need to infer the input shape from the previous layer.
                    layer.n_inputs = self.layers[i - 1].n_units
                else:
                    assert layer.n_inputs == self.layers[i - 1].n_units, \
                        "The number of inputs for layer %d does not match the number of units in the previous layer " \
                        "(%d != %d)." % (i, layer.n_inputs, self.layers[i - 1].n_units)
            else:
                assert layer.n_inputs is not None, "The number of inputs for the first layer must be explicitly specified."

            layer.network = self
            layer.initialise_weights(self.rng)

    def _forward(self, X):
        """Perform a forward pass of the MLP.

        Arguments:
            X: The feature data set.

        Returns; The output of the MLP.
        """
        output = X

        for layer in self.layers:
            output = layer.forward(output)

        return output

    def _backward(self, y, y_pred):
        """Perform a backward pass of the MLP (i.e. back propagate error) and
        update weights and biases.

        Arguments:
            y: The ground truth targets of the last forward pass.
            y_pred: The output of the last forward pass.
        """
        error_grad = self.loss_func.derivative(y, y_pred)

        for layer in reversed(self.layers):
            error_grad = layer.backward(error_grad)

    def fit(self, X, y, val_set=0.0, n_epochs=100, batch_size=32, shuffle_batches=True,
            early_stopping=None, log_verbosity=1):
        """Fit/train the MLP on the given data sets.

        Arguments:
            X: The feature data set for training the MLP on.
            y: The target data set for training the MLP on.
            val_set: The data set to be used for validation. This can be an integer indicating how many samples from the
            training sets to use for validation; or it can be a ratio indicating what proportion of the training data to
            use for validation; or it can be a tuple containing the X and y validation sets.

            n_epochs: How many epochs to train the MLP for.

            batch_size: The size of the batches to use for training.
            If this is set to -1, batch SGD is performed; if this is set to 1,
            standard SGD is performed; otherwise mini-batch SGD is performed.

            shuffle_batches: Whether or not to shuffle the batches each epoch.

            early_stopping: See `EarlyStopping`. If set to None then early stopping is not used.

            log_verbosity: How often to log training progress. Large values
            will make training progress be logged less frequently. Zero disables logging.

        Returns: The `History` of training loss and error, and validation loss and error.
        """
        assert len(y.shape) == 2, 'The target vector `y` must be a column vector, got shape %s instead.\n' \
                                  'You can reshape y with `y.reshape(-1, 1)`.' % (y.shape,)

        history = History()
        X_train, X_val, y_train, y_val = self._train_val_split(X, y, val_set)

        for epoch in range(n_epochs):
            epoch_loss = []
            epoch_mae = []
            random_state = int(self.rng.integers(2 ** 31 - 1))

            for _, X_batch, y_batch in _generate_minibatches(X_train, y_train, batch_size, shuffle=shuffle_batches,
                                                             random_state=random_state):
                y_pred = self._forward(X_batch)
                loss = self.loss_func(y_batch, y_pred)
                epoch_loss.append(loss)
                epoch_mae.append(self.metric(y_batch, y_pred))

                if not is_finite_loss(loss):
                    history.stop_reason = 'loss is not finite'
                    break

                self._backward(y_batch, y_pred)

            if X_val is not None:
                y_val_pred = self.predict(X_val)
                history.append(np.mean(epoch_loss), np.mean(epoch_mae),
                               self.loss_func(y_val, y_val_pred), self.metric(y_val, y_val_pred))
            else:
                history.append(np.mean(epoch_loss), np.mean(epoch_mae))

            if log_verbosity > 0 and (epoch % log_verbosity == 0 or history.stop_reason):
                print('epoch %d of %d - loss: %.4f - mae: %.4f - val_loss: %.4f - val_mae: %.4f'
                      % (epoch + 1, n_epochs, history.loss[-1], history.mae[-1],
                         history.val_loss[-1], history.val_mae[-1]))

            if not history.stop_reason and early_stopping:
                if X_val is not None:
                    early_stopping.update(history.val_loss[-1], history.val_mae[-1])
                else:
                    early_stopping.update(history.loss[-1], history.mae[-1])

                if early_stopping.should_stop:
                    history.stop_reason = early_stopping.reason

            if history.stop_reason:
                if log_verbosity > 0:
                    print('Stopping early - %s.' % history.stop_reason)

                break

        return history

    def _train_val_split(self, X, y, val_set):
        if isinstance(val_set, tuple):
            X_val, y_val = val_set

            return X, X_val, y, y_val
        elif type(val_set) in (int, float):
            if not val_set:
                return X, None, y, None

            random_state = int(self.rng.integers(2 ** 31 - 1))

            return train_test_split(X, y, test_size=val_set, random_state=random_state)
        else:
            raise ValueError('Invalid type `%s` for val_set, expected int, float or tuple.' % type(val_set))

    def predict(self, X):
        """Predict the targets for a given feature data set.

        Arguments:
            X: The feature data set.

        Returns: The predicted targets for the given feature data.
        """
        return self._forward(X)

    def score(self, X, y):
        """Calculate the reported error for given feature and target data sets.

        Arguments:
            X: The feature data set.
            y: The target data set.

        Returns: The metric (mean absolute error by default) of the MLP for the given data sets.
        """
        return self.metric(y, self.predict(X))

    def __str__(self):
        class_name = self.__class__.__name__
        layers = '[%s]' % ', '.join([str(layer) for layer in self.layers])

        return '%s(layers=%s, learning_rate=%s, momentum=%s, loss_func=%s)' \
               % (class_name, layers, self.learning_rate, self.momentum, self.loss_func)

    def to_json(self):
        """Create a JSON representation of the MLP.

        Returns: a JSON-convertible dictionary containing the hyper-parameters that describe the MLP.
        """
        return dict(
            clf_type=self.__class__.__name__,
            layers=[layer.to_json() for layer in self.layers],
            learning_rate=self.learning_rate,
            momentum=self.momentum,
            loss_func=self.loss_func.to_json()
        )

    def save(self, filename):
        """Save a MLP to disk.

        Weights are not saved. For saving weights see `save_weights`.

        Arguments:
            filename: The path + filename indicating where to save the MLP.
        """
        with open(filename, 'w') as file:
            json.dump(self.to_json(), file)

    @staticmethod
    def from_json(json_dict):
        """Create a MLP object from JSON.

        Arguments:
            json_dict: The JSON dictionary from which to create the MLP object.

        Returns: The instantiated MLP object, with freshly initialised weights.
        """
        assert json_dict['clf_type'] == MLPRegressor.__name__, \
            "Expected a %s, got '%s'." % (MLPRegressor.__name__, json_dict['clf_type'])

        return MLPRegressor(layers=[DenseLayer.from_json(layer_params) for layer_params in json_dict['layers']],
                            learning_rate=json_dict['learning_rate'],
                            momentum=json_dict['momentum'],
                            loss_func=Loss.from_json(json_dict['loss_func']))

    @staticmethod
    def load(filename):
        """Load a MLP from disk.

        Weights are not loaded. For restoring weights see `load_weights`.

        Arguments:
            filename: The path + filename indicating where to load the MLP from.

        Returns: A new MLP object.
        """
        with open(filename, 'r') as file:
            json_dict = json.load(file)

        return MLPRegressor.from_json(json_dict)

    def save_weights(self, filename):
        """Save the weights and bias of a MLP to disk.

        Arguments:
            filename: The path + filename indicating where to save the MLP parameters.
        """
        with gzip.open(filename, 'wb') as file:
            pickle.dump([(layer.W, layer.b) for layer in self.layers], file)

    def load_weights(self, filename):
        """Load the weights and bias of a MLP from disk.

        Arguments:
            filename: The path + filename indicating where to load the MLP parameters from.
        """
        with gzip.open(filename, 'rb') as file:
            weights_bias = pickle.load(file)

        assert len(weights_bias) == len(self.layers), \
            "Layer count mismatch. This MLP has %d layers, however the file '%s' indicates %d layers." \
            % (len(self.layers), filename, len(weights_bias))

        for (weights, bias), layer in zip(weights_bias, self.layers):
            layer.W = weights
            layer.b = bias


def build_regressor(n_inputs, loss_func=None, hidden_units=(64, 64), learning_rate=0.01, momentum=0.9,
                    random_state=None):
    """Create the regressor used in the loss comparison experiments.

    The topology is fixed: two ReLU hidden layers and a single linear output unit.

    Arguments:
        n_inputs: The number of features.
        loss_func: The loss function to train with.
        hidden_units: The number of units in the first and second hidden layers.
        learning_rate: See `MLPRegressor`.
        momentum: See `MLPRegressor`.
        random_state: See `MLPRegressor`.

    Returns: The MLPRegressor.
    """
    assert len(hidden_units) == 2, "Expected two hidden layer sizes, got %d." % len(hidden_units)

    return MLPRegressor([DenseLayer(hidden_units[0], n_inputs=n_inputs, activation_func=ReLU()),
                         DenseLayer(hidden_units[1], activation_func=ReLU()),
                         DenseLayer(1, activation_func=Identity())],
                        learning_rate=learning_rate, momentum=momentum, loss_func=loss_func,
                        random_state=random_state)
