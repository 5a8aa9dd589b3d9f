"""
Neural network layers implementation.
"""
from ..common.exceptions import ShapeMismatchError, StateMisuseError
from ._matrix import Mat, multiply
from .activations import Sigmoid, ReLU, Tanh, get_activation, inplace_softmax
from .initializers import get_initializer


class Layer:
    """
    Base class for all neural network layers.

    A layer in training mode alternates strictly between `forward` and
    `backward`: the cache written by forward is only valid for the very next
    backward call. In evaluation mode forward may be repeated freely and
    backward is rejected.

    Subclasses implement `_forward` / `_backward`; layers with trainable
    parameters also implement `parameters`, which fixes the order used by
    `learn`, `save` and `load`.
    """

    metrics = None

    def __init__(self):
        self.training = True
        self._pending = False

    def forward(self, x):
        """Forward pass through the layer."""
        if self.training and self._pending:
            raise StateMisuseError(
                f"{type(self).__name__}.forward called twice without backward")
        y = self._forward(x)
        self._pending = self.training
        return y

    def backward(self, delta):
        """Backward pass through the layer; returns the gradient for the previous layer."""
        if not self.training:
            raise StateMisuseError(
                f"{type(self).__name__}.backward called in evaluation mode")
        if not self._pending:
            raise StateMisuseError(
                f"{type(self).__name__}.backward called without a matching forward")
        self._pending = False
        return self._backward(delta)

    def __call__(self, x):
        return self.forward(x)

    def _forward(self, x):
        raise NotImplementedError

    def _backward(self, delta):
        raise NotImplementedError

    def parameters(self):
        """Ordered mapping of name -> (parameter, gradient accumulator)."""
        return {}

    def randomize(self, rng):
        """Sample every trainable parameter from the layer's initializer."""
        for param, _ in self.parameters().values():
            param.randomize(self.initializer, rng)

    def learn(self, optimizer):
        """Apply the accumulated gradients through `optimizer`, then zero them."""
        for name, (param, nabla) in self.parameters().items():
            optimizer.optimize(param, nabla, key=(id(self), name))
            nabla.clear()

    def save(self, stream):
        for param, _ in self.parameters().values():
            param.write(stream)

    def read_parameters(self, tokens):
        """Parse this layer's parameters from checkpoint tokens without applying them."""
        return [Mat.read_checked(tokens, param.shape)
                for param, _ in self.parameters().values()]

    def assign_parameters(self, values):
        for (param, _), value in zip(self.parameters().values(), values):
            param.assign(value)

    def load(self, tokens):
        self.assign_parameters(self.read_parameters(tokens))

    def train(self):
        """Set layer to training mode."""
        self.training = True
        self._pending = False

    def eval(self):
        """Set layer to evaluation mode."""
        self.training = False
        self._pending = False


class FlattenLayer(Layer):
    """
    Reshape the incoming buffer to a single row; no computation.

    An owning Mat is reshaped in place, not copied: as the first layer of a
    network, Flatten leaves the stored training samples as (1, n) rows.
    """

    def __init__(self):
        super().__init__()
        self._prev_shape = None

    def _forward(self, x):
        if not isinstance(x, Mat):
            x = x.copy()
        self._prev_shape = x.shape
        return x.reshape(1, x.size)

    def _backward(self, delta):
        if not isinstance(delta, Mat):
            delta = delta.copy()
        return delta.reshape(*self._prev_shape)


class ActivationLayer(Layer):
    """
    Elementwise activation layer.

    Holds an activation strategy; backward multiplies the incoming gradient
    by the derivative evaluated at the cached pre-activation input.
    """

    def __init__(self, activation):
        super().__init__()
        self.activation = get_activation(activation)
        self._prev_input = None

    def _forward(self, x):
        self._prev_input = x.copy()
        y = x.copy()
        self.activation.apply(y)
        return y

    def _backward(self, delta):
        grad = self._prev_input
        self.activation.derivative(grad)
        return grad.hadamard(delta)

    def __repr__(self):
        return f"{type(self).__name__}()"


class SigmoidLayer(ActivationLayer):
    """Sigmoid activation layer."""

    def __init__(self):
        super().__init__(Sigmoid())


class ReLULayer(ActivationLayer):
    """ReLU activation layer."""

    def __init__(self):
        super().__init__(ReLU())


class TanhLayer(ActivationLayer):
    """Tanh activation layer."""

    def __init__(self):
        super().__init__(Tanh())


class SoftmaxLayer(Layer):
    """Softmax activation layer."""

    def _forward(self, x):
        y = x.copy()
        inplace_softmax(y)
        return y

    def _backward(self, delta):
        # Paired with cross-entropy: the caller already supplies result - target.
        return delta

    def __repr__(self):
        return "SoftmaxLayer()"


class DenseLayer(Layer):
    """
    Fully connected layer: y = x.W + b.

    Gradients are summed into `nabla_weight` / `nabla_bias` on every backward
    call and only cleared by `learn`.
    """

    def __init__(self, in_features, out_features, initializer='kaiming'):
        """
        Args:
            in_features (int): Number of input features
            out_features (int): Number of output features
            initializer (str or Initializer): Sampling strategy, built with
                fan count in_features + out_features
        """
        super().__init__()
        self.in_features = in_features
        self.out_features = out_features
        self.initializer = get_initializer(initializer, in_features + out_features)

        self.weight = Mat(in_features, out_features)
        self.bias = Mat(1, out_features)
        self.nabla_weight = Mat(in_features, out_features)
        self.nabla_bias = Mat(1, out_features)
        self._prev_input = None

    def parameters(self):
        return {'weight': (self.weight, self.nabla_weight),
                'bias': (self.bias, self.nabla_bias)}

    def _forward(self, x):
        if x.cols != self.in_features:
            raise ShapeMismatchError(
                f"DenseLayer expects {self.in_features} input features, got {x.shape}")
        self._prev_input = x.copy()
        y = multiply(x, self.weight, metrics=self.metrics)
        for i in range(y.rows):
            row = y.row(i)
            row += self.bias
        return y

    def _backward(self, delta):
        if delta.shape != (self._prev_input.rows, self.out_features):
            raise ShapeMismatchError(
                f"DenseLayer expects a {(self._prev_input.rows, self.out_features)} "
                f"gradient, got {delta.shape}")
        multiply(self._prev_input.transpose(), delta, out=self.nabla_weight,
                 metrics=self.metrics)
        for i in range(delta.rows):
            self.nabla_bias += delta.row(i)
        return multiply(delta, self.weight.transpose(), metrics=self.metrics)

    def __repr__(self):
        return (f"DenseLayer(in_features={self.in_features}, "
                f"out_features={self.out_features})")
