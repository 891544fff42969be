"""This module implements the activation functions used by the regressor's
layers.

The functions are called using the `__call__(X)` method, and the derivative of an activation function is given by the
`derivative(Y)` method.
"""

import numpy as np


class Activation:
    """An abstraction of activation functions.

    Activation functions provide two sets of functionality:
    1. Calculation of the output of the activation function.
    2. Calculation of the activation function's derivative,
    """

    def __call__(self, X):
        """Calculate the output of the activation function.

        Arguments;
            X: The input to the activation function.

        Returns: The activation value, i.e. the input transformed by the activation function.
        """
        raise NotImplementedError

    def derivative(self, Y):
        """Calculate the derivative of the activation function.

        Arguments;
            Y: The previous output of the activation function.

        Returns: The derivative of the activation function w.r.t. its input.
        """
        raise NotImplementedError

    def __str__(self):
        return '%s()' % self.__class__.__name__

    def to_json(self):
        return {
            'activation_type': self.__class__.__name__
        }

    @staticmethod
    def from_json(json_dict):
        """Create an activation function from JSON.

        Arguments:
            json_dict: The JSON dictionary from which to create the activation function.

        Returns: The instantiated activation function.
        """
        return globals()[json_dict['activation_type']]()


class Identity(Activation):
    """The identity function, used for the linear output layer."""

    def __call__(self, X):
        return X

    def derivative(self, Y):
        return np.ones_like(Y)


class ReLU(Activation):
    """The rectified linear unit (ReLU) activation function."""

    def __call__(self, X):
        return np.maximum(X, 0)

    def derivative(self, Y):
        # ReLU outputs are positive exactly where the input was.
        return np.where(Y > 0, 1.0, 0.0)
