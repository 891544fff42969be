"""Metrics used to report how well a regressor is doing.

These are kept apart from the loss functions: the loss is what a network
minimises, the metric is what gets reported, whichever loss was used.
"""

import numpy as np

from housing_mlp.losses import DEFAULT_CONTEXT, check_shapes


def mean_absolute_error(y, y_pred, context=DEFAULT_CONTEXT):
    """Calculate the mean absolute error (MAE).

    Arguments:
        y: The ground truth targets.
        y_pred: The predicted targets.
        context: The float context used to convert the inputs.

    Returns: The mean of |y_pred - y| over every element.
    """
    y, y_pred = check_shapes(y, y_pred, context)

    return float(np.mean(np.abs(y_pred - y)))


def is_finite_loss(value):
    return bool(np.all(np.isfinite(value)))
