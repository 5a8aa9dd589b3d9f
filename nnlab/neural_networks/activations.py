"""
Elementwise activation functions and the strategy objects layers hold.

All functions operate in place on a Mat or Kernel. Derivatives are evaluated
from the *input* value of the activation, not from its output.
"""
import numpy as np


def inplace_sigmoid(x):
    """Compute the logistic sigmoid function inplace."""
    arr = x.array
    np.clip(arr, -500, 500, out=arr)
    np.negative(arr, out=arr)
    np.exp(arr, out=arr)
    arr += 1.0
    np.reciprocal(arr, out=arr)


def inplace_sigmoid_derivative(x):
    """Replace x with s(x) * (1 - s(x)), recomputing the sigmoid."""
    inplace_sigmoid(x)
    arr = x.array
    arr *= 1.0 - arr


def inplace_relu(x):
    """Compute the rectified linear unit function inplace."""
    arr = x.array
    np.maximum(arr, 0, out=arr)


def inplace_relu_derivative(x):
    """Replace x with the 0/1 step; relu is treated as flat at zero."""
    arr = x.array
    arr[...] = (arr > 0).astype(arr.dtype)


def inplace_tanh(x):
    """Compute the hyperbolic tan function inplace."""
    arr = x.array
    np.tanh(arr, out=arr)


def inplace_tanh_derivative(x):
    """Replace x with 1 - tanh(x)**2."""
    arr = x.array
    np.tanh(arr, out=arr)
    arr[...] = 1.0 - arr ** 2


def inplace_softmax(x):
    """
    Row-wise softmax inplace.

    The row maximum is subtracted before exponentiating for numerical
    stability. No derivative is provided: softmax is only ever paired with a
    cross-entropy loss, whose combined gradient is `result - target`.
    """
    arr = x.array
    arr -= np.max(arr, axis=1, keepdims=True)
    np.exp(arr, out=arr)
    arr /= np.sum(arr, axis=1, keepdims=True)


class Activation:
    """Pairs an elementwise function with its derivative."""

    name = None

    def apply(self, x):
        raise NotImplementedError

    def derivative(self, x):
        raise NotImplementedError

    def __repr__(self):
        return f"{type(self).__name__}()"


class Sigmoid(Activation):
    name = 'sigmoid'

    def apply(self, x):
        inplace_sigmoid(x)

    def derivative(self, x):
        inplace_sigmoid_derivative(x)


class ReLU(Activation):
    name = 'relu'

    def apply(self, x):
        inplace_relu(x)

    def derivative(self, x):
        inplace_relu_derivative(x)


class Tanh(Activation):
    name = 'tanh'

    def apply(self, x):
        inplace_tanh(x)

    def derivative(self, x):
        inplace_tanh_derivative(x)


def get_activation(activation='tanh'):
    """
    Factory function to get activation strategies.

    Args:
        activation (str or Activation): 'sigmoid', 'relu', 'tanh' or an instance

    Returns:
        Activation instance
    """
    if isinstance(activation, Activation):
        return activation
    if activation == 'sigmoid':
        return Sigmoid()
    if activation == 'relu':
        return ReLU()
    if activation == 'tanh':
        return Tanh()
    raise ValueError(f"Unknown activation: {activation}")
