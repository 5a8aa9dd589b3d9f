"""
Build (input Mat, one-hot target Mat) training pairs from numpy arrays.
"""
import numpy as np

from ..common.exceptions import DatasetError
from ._matrix import Mat


def one_hot(labels, n_classes=None):
    """
    Convert class labels to one-hot (1, n_classes) Mats.

    Args:
        labels: integer class indices
        n_classes (int): Number of classes; inferred as max(label) + 1

    Returns:
        list of Mat
    """
    labels = np.asarray(labels, dtype=int).ravel()
    if n_classes is None:
        n_classes = int(labels.max()) + 1 if labels.size else 0
    if labels.size and (labels.min() < 0 or labels.max() >= n_classes):
        raise DatasetError(f"Labels must lie in [0, {n_classes})")
    targets = []
    for label in labels:
        target = Mat(1, n_classes)
        target[0, label] = 1.0
        targets.append(target)
    return targets


def as_sample(x, input_shape=None):
    """
    Copy one sample into a Mat.

    Args:
        x: array-like sample
        input_shape (tuple): (rows, cols) of the Mat; by default 2D samples
            keep their shape and anything else becomes a single row
    """
    x = np.asarray(x, dtype=float)
    if input_shape is None:
        input_shape = x.shape if x.ndim == 2 else (1, x.size)
    if x.size != input_shape[0] * input_shape[1]:
        raise DatasetError(f"A sample of shape {x.shape} does not fit {tuple(input_shape)}")
    return Mat(input_shape[0], input_shape[1], x)


def make_dataset(X, y, n_classes=None, input_shape=None):
    """
    Pair every sample of X with the one-hot encoding of its label.

    Args:
        X: numpy array of shape (N, ...)
        y: numpy array of shape (N,) with integer labels
        n_classes (int): Number of classes; inferred from y by default
        input_shape (tuple): (rows, cols) each sample is reshaped to, e.g.
            (channels, height * width) for convolutional inputs

    Returns:
        list of (Mat, Mat) pairs
    """
    X = np.asarray(X)
    y = np.asarray(y)
    if X.shape[0] != y.shape[0]:
        raise DatasetError("X and y must have the same number of samples")
    if X.shape[0] == 0:
        raise DatasetError("Cannot build a dataset from zero samples")
    targets = one_hot(y, n_classes)
    return [(as_sample(x, input_shape), target) for x, target in zip(X, targets)]
