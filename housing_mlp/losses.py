"""This module implements the loss functions used to train regressors on
targets with a wide dynamic range, such as house prices.

Every loss is a callable object with the same calling convention,
`loss(y_true, y_pred) -> float`, so any of them can be handed to a network as
its training objective. The reduction is always the mean over every element,
which keeps loss values independent of the batch size.

Two of the losses are the usual ones:
- MeanSquaredError
- MeanSquaredLogarithmicError

And two compare the targets on a log scale after rectifying them:
- MeanLogAbsoluteError
- MeanSquaredLogAbsoluteError
"""

import numpy as np


class ShapeMismatchError(ValueError):
    """Raised when the ground truth and predicted targets differ in shape."""


class FloatContext:
    """The numeric settings a loss function computes with.

    A context is bound to a loss when the loss is created, rather than being
    looked up from some global backend configuration.
    """

    def __init__(self, epsilon=1e-7, dtype=np.float64):
        """Create a float context.

        Arguments:
            epsilon: The small positive constant used to keep the argument of `log` away from zero.
            dtype: The floating point type that inputs are converted to.
        """
        assert epsilon > 0, "Epsilon must be positive, got %s." % epsilon

        self.epsilon = epsilon
        self.dtype = dtype

    def asarray(self, x):
        return np.asarray(x, dtype=self.dtype)

    def __repr__(self):
        return '%s(epsilon=%g, dtype=%s)' % (self.__class__.__name__, self.epsilon, np.dtype(self.dtype).name)


DEFAULT_CONTEXT = FloatContext()


def check_shapes(y, y_pred, context=DEFAULT_CONTEXT):
    """Convert a pair of target sets to arrays and make sure they line up.

    Arguments:
        y: The ground truth targets.
        y_pred: The predicted targets.
        context: The float context used for the conversion.

    Returns: A 2-tuple of the ground truth and predicted targets as arrays.

    Raises:
        ShapeMismatchError: if `y` and `y_pred` do not have identical shapes.
    """
    y = context.asarray(y)
    y_pred = context.asarray(y_pred)

    if y.shape != y_pred.shape:
        raise ShapeMismatchError('Expected targets of the same shape, got %s (y_true) and %s (y_pred).'
                                 % (y.shape, y_pred.shape))

    return y, y_pred


class Loss:
    """An abstraction of loss functions.

    A loss function provides two sets of functionality:
    1. Calculation of loss given a set of ground truths and predictions
    2. Calculation of the gradient of the loss w.r.t. the predictions.

    Loss objects hold configuration only, calling them never changes their state.
    """
    name = None

    def __init__(self, context=None):
        self.context = context if context is not None else DEFAULT_CONTEXT

    def __call__(self, y, y_pred):
        """Calculate loss.

        Arguments:
            y: The set of ground truth targets.
            y_pred: The set of predicted targets.

        Returns: The mean loss of the given sets of ground truth and predicted targets.
        """
        y, y_pred = check_shapes(y, y_pred, self.context)

        return float(np.mean(self.elementwise(y, y_pred)))

    def elementwise(self, y, y_pred):
        """Calculate the loss term for each pair of targets, before reduction."""
        raise NotImplementedError

    def derivative(self, y, y_pred):
        """Calculate the derivative of the loss function with respect to y_pred.

        The derivative is of each element's loss term, it is not divided by the
        number of elements. Averaging over the batch is left to the caller.

        Arguments:
            y: The ground truth targets.
            y_pred: The predicted targets.

        Returns: The gradient of the loss function at the given values of `y` and `y_pred`.
        """
        raise NotImplementedError

    def get_config(self):
        return {'epsilon': self.context.epsilon}

    def to_json(self):
        """Create a JSON representation of a loss.

        Returns: a JSON-convertible dictionary containing the loss name and its parameters.
        """
        json_dict = dict(loss_type=self.__class__.__name__)
        json_dict.update(self.get_config())

        return json_dict

    @staticmethod
    def from_json(json_dict):
        """Create a loss object from JSON.

        Arguments:
            json_dict: The JSON dictionary from which to create the loss object.

        Returns: The instantiated loss object.
        """
        json_dict = dict(json_dict)
        class_ = globals()[json_dict.pop('loss_type')]
        context = FloatContext(epsilon=json_dict.pop('epsilon'))

        return class_(context=context, **json_dict)

    def __str__(self):
        return self.__class__.__name__


class MeanSquaredError(Loss):
    """The mean squared error (MSE) loss function."""
    name = 'mse'

    def elementwise(self, y, y_pred):
        return np.square(y_pred - y)

    def derivative(self, y, y_pred):
        y, y_pred = check_shapes(y, y_pred, self.context)

        return 2 * (y_pred - y)


class MeanSquaredLogarithmicError(Loss):
    """The mean squared logarithmic error (MSLE) loss function.

    Targets are clipped to [epsilon, inf) before one is added and the log is
    taken, so negative predictions are floored at a value just above zero.
    """
    name = 'msle'

    def _log(self, x):
        return np.log(np.clip(x, self.context.epsilon, None) + 1)

    def elementwise(self, y, y_pred):
        return np.square(self._log(y_pred) - self._log(y))

    def derivative(self, y, y_pred):
        y, y_pred = check_shapes(y, y_pred, self.context)
        clipped = np.clip(y_pred, self.context.epsilon, None)
        diff = np.log(clipped + 1) - self._log(y)

        # No gradient flows through the clipped region.
        return np.where(y_pred > self.context.epsilon, 2 * diff / (clipped + 1), 0.0)


class LogAbsoluteLoss(Loss):
    """Base class for the losses that compare targets as log(relu(y * scale) + 1).

    The relu maps negative targets to exactly zero, so log(0 + 1) = 0. This is
    different to the clipping of MSLE, which floors them at epsilon.
    """

    def __init__(self, scale=1000.0, context=None):
        """Create a log absolute loss.

        Arguments:
            scale: The constant targets are multiplied by before the log is taken. This should convert the
            normalised labels back into their natural units, e.g. a scale of 1000 for prices that were divided
            by 1000. It must match the label preprocessing.

            context: The float context to compute with.
        """
        if not scale > 0:
            raise ValueError('The scale must be positive, got %s.' % scale)

        super().__init__(context)

        self.scale = float(scale)

    def _rectify(self, x):
        return np.maximum(x * self.scale, 0)

    def _log_diff(self, y, y_pred):
        """Calculate log(relu(y * scale) + 1) - log(relu(y_pred * scale) + 1)."""
        return np.log(self._rectify(y) + 1) - np.log(self._rectify(y_pred) + 1)

    def _log_pred_derivative(self, y_pred):
        """Calculate the derivative of log(relu(y_pred * scale) + 1) w.r.t. y_pred."""
        rectified = self._rectify(y_pred)

        return np.where(y_pred * self.scale > 0, self.scale / (rectified + 1), 0.0)

    def get_config(self):
        config = super().get_config()
        config['scale'] = self.scale

        return config

    def __str__(self):
        return '%s(scale=%g)' % (self.__class__.__name__, self.scale)


class MeanLogAbsoluteError(LogAbsoluteLoss):
    """The mean log absolute error (MLAE) loss function."""
    name = 'mlae'

    def elementwise(self, y, y_pred):
        return np.abs(self._log_diff(y, y_pred))

    def derivative(self, y, y_pred):
        y, y_pred = check_shapes(y, y_pred, self.context)

        # d|a - b|/db = -sign(a - b), with b the log of the prediction.
        return -np.sign(self._log_diff(y, y_pred)) * self._log_pred_derivative(y_pred)


class MeanSquaredLogAbsoluteError(LogAbsoluteLoss):
    """The mean squared log absolute error (MSLAE) loss function."""
    name = 'mslae'

    def elementwise(self, y, y_pred):
        return np.abs(self._log_diff(y, y_pred)) ** 2

    def derivative(self, y, y_pred):
        y, y_pred = check_shapes(y, y_pred, self.context)

        return -2 * self._log_diff(y, y_pred) * self._log_pred_derivative(y_pred)


LOSSES = {loss_class.name: loss_class for loss_class in
          (MeanSquaredError, MeanSquaredLogarithmicError, MeanLogAbsoluteError, MeanSquaredLogAbsoluteError)}


def get_loss(name, **kwargs):
    """Create a loss function from its short name.

    Arguments:
        name: One of 'mse', 'msle', 'mlae' or 'mslae'.
        **kwargs: Passed on to the loss' constructor, e.g. `scale` or `context`.

    Returns: The instantiated loss object.
    """
    try:
        class_ = LOSSES[name]
    except KeyError:
        raise ValueError('Unrecognised loss \'%s\'. Loss must be one of: %s.'
                         % (name, ', '.join(sorted(LOSSES)))) from None

    if not issubclass(class_, LogAbsoluteLoss):
        kwargs.pop('scale', None)

    return class_(**kwargs)
