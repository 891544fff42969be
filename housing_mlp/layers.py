"""This module implements the layers of the housing price regressor.

All layers provide the methods `forward(X)` and `backward` to encapsulate to forward and back propagation processes.
"""

import numpy as np

from housing_mlp.activation_functions import Activation, Identity


class Layer:
    """An abstraction of a layer in a neural network."""

    def __init__(self, n_units, n_inputs=None):
        self.n_inputs = n_inputs
        self.n_units = n_units

        self.network = None

    def initialise_weights(self, rng):
        """Create the layer's parameters.

        Arguments:
            rng: The numpy random generator to draw initial values from.
        """
        raise NotImplementedError

    @property
    def shape(self):
        """Get the shape of the layer,

        Returns: A 2-tuple containing the number of inputs for each unit and
        the number of units in the layer.
        """
        return self.n_inputs, self.n_units

    def forward(self, X):
        """Perform a forward pass of a layer.

        Arguments:
            X: The input to the layer.

        Returns: The result of the forward pass of the layer.
        """
        raise NotImplementedError

    def backward(self, error_term):
        """Perform a backward pass of a layer (i.e. back propagate error) and
        update the layer's parameters.

        Arguments:
            error_term: The gradient of the loss w.r.t. the output of this layer.

        Returns the gradient of the loss w.r.t. the input of this layer.
        """
        raise NotImplementedError

    def __str__(self):
        return '%s(n_inputs=%d, n_units=%d)' % (self.__class__.__name__, self.n_inputs, self.n_units)

    def to_json(self):
        """Create a JSON representation of a layer.

        Returns: a JSON-convertible dictionary containing the parameters that describe the layer instance.
        """
        return dict(
            layer_type=self.__class__.__name__,
            n_inputs=self.n_inputs,
            n_units=self.n_units
        )


class DenseLayer(Layer):
    """A fully connected layer trained with SGD and momentum."""

    def __init__(self, n_units, n_inputs=None, activation_func=None):
        """Create a fully connected layer.

        Arguments;
            n_units: How many units (or artificial neurons) the layer should have.

            n_inputs: How many inputs the layer should accept. If this is set to
            None then the input size will be inferred from the previous layer.

            activation_func: The activation function to use for this layer.
            If set the None this defaults to the identity function.
        """
        super().__init__(n_units, n_inputs)

        self.W = None
        self.b = None
        self.prev_dW = None
        self.prev_db = None

        self.activation_func = activation_func if activation_func is not None else Identity()

        self.prev_input = None
        self.activation_value = None

    def initialise_weights(self, rng):
        # He initialisation, the hidden layers use ReLU.
        self.W = rng.normal(0, np.sqrt(2.0 / self.n_inputs), (self.n_inputs, self.n_units))
        self.b = np.zeros((1, self.n_units))
        self.prev_dW = np.zeros_like(self.W)
        self.prev_db = np.zeros_like(self.b)

    def forward(self, X):
        self.prev_input = X
        self.activation_value = self.activation_func(np.matmul(X, self.W) + self.b)

        return self.activation_value

    def backward(self, error_term):
        N = error_term.shape[0]

        delta = error_term * self.activation_func.derivative(self.activation_value)
        # Must use the weights from the forward pass, i.e. before the update.
        input_grad = delta.dot(self.W.T)

        dW = self.network.learning_rate * np.matmul(self.prev_input.T, delta) / N \
            + self.network.momentum * self.prev_dW
        db = self.network.learning_rate * delta.mean(axis=0, keepdims=True) \
            + self.network.momentum * self.prev_db

        self.W -= dW
        self.b -= db

        self.prev_dW = dW
        self.prev_db = db

        return input_grad

    def __str__(self):
        return '%s(n_inputs=%d, n_units=%d, activation_func=%s)' \
               % (self.__class__.__name__, self.n_inputs, self.n_units, str(self.activation_func))

    def to_json(self):
        json_dict = super().to_json()
        json_dict['activation_func'] = self.activation_func.to_json()

        return json_dict

    @staticmethod
    def from_json(json_dict):
        """Create a dense layer from JSON.

        Arguments:
            json_dict: The JSON dictionary from which to create the layer object.

        Returns: The instantiated layer object.
        """
        activation_func = Activation.from_json(json_dict['activation_func'])

        return DenseLayer(n_units=json_dict['n_units'],
                          n_inputs=json_dict['n_inputs'],
                          activation_func=activation_func)
