"""
Cost functions seeding the backward pass, and loss values for reporting.
"""
import numpy as np

from ..common.exceptions import ShapeMismatchError


def _check(result, target):
    if result.shape != target.shape:
        raise ShapeMismatchError(
            f"Result {result.shape} and target {target.shape} differ in shape")


def residual(result, target):
    """
    Gradient `result - target`.

    This is the combined gradient of softmax + cross-entropy (and of sigmoid
    + binary cross-entropy, and of a linear output + half squared error).
    """
    _check(result, target)
    return result - target


def cross_entropy(result, target):
    """Categorical cross-entropy of a probability row against a one-hot target."""
    _check(result, target)
    return float(-np.sum(target.array * np.log(result.array + 1e-15)))


def squared_error(result, target):
    """Half the summed squared error."""
    _check(result, target)
    return float(0.5 * np.sum((result.array - target.array) ** 2))
