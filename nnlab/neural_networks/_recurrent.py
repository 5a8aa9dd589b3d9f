"""
Recurrent layers.

A forward call receives a (T, in_size) Mat, one row per time step, and
returns the (T, hidden_size) Mat of hidden states. The hidden (and cell)
state carries over to the next forward call until `reset_state` is called,
unless the layer is built with `stateful=False`.

Backward walks the steps of the last forward call in reverse. With
`bptt=False` every step only receives its own output gradient, i.e. the
gradient is truncated to one step; with `bptt=True` the gradient flowing
into the previous hidden (and cell) state is carried back through the whole
call. State inherited from an earlier call is treated as a constant.
"""
from ..common.exceptions import ShapeMismatchError
from ._matrix import Kernel, Mat, concat, multiply
from .activations import Sigmoid, Tanh, get_activation, inplace_tanh
from .initializers import get_initializer
from .layers import Layer


class _RecurrentLayer(Layer):
    """Shared construction and state handling of RNN and LSTM layers."""

    def __init__(self, in_size, hidden_size, initializer='kaiming', bptt=False,
                 stateful=True):
        super().__init__()
        self.in_size = in_size
        self.hidden_size = hidden_size
        self.bptt = bptt
        self.stateful = stateful
        self.initializer = get_initializer(initializer, hidden_size)
        self.hidden = Mat(1, hidden_size)
        self._steps = []

    def reset_state(self):
        """Zero the recurrent state."""
        self.hidden = Mat(1, self.hidden_size)

    def _check_input(self, x):
        if x.cols != self.in_size:
            raise ShapeMismatchError(
                f"{type(self).__name__} expects {self.in_size} input features, got {x.shape}")

    def _check_delta(self, delta):
        if delta.shape != (len(self._steps), self.hidden_size):
            raise ShapeMismatchError(
                f"{type(self).__name__} expects a {(len(self._steps), self.hidden_size)} "
                f"gradient, got {delta.shape}")

    def __repr__(self):
        return (f"{type(self).__name__}(in_size={self.in_size}, "
                f"hidden_size={self.hidden_size}, bptt={self.bptt})")


class RNNLayer(_RecurrentLayer):
    """
    Elman recurrent layer: h_t = act(h_{t-1}.Wh + x_t.Wi + b).
    """

    def __init__(self, in_size, hidden_size, initializer='kaiming', activation='tanh',
                 bptt=False, stateful=True):
        super().__init__(in_size, hidden_size, initializer, bptt, stateful)
        self.activation = get_activation(activation)

        self.weight_input = Mat(in_size, hidden_size)
        self.weight_hidden = Mat(hidden_size, hidden_size)
        self.bias = Mat(1, hidden_size)
        self.nabla_weight_input = Mat(in_size, hidden_size)
        self.nabla_weight_hidden = Mat(hidden_size, hidden_size)
        self.nabla_bias = Mat(1, hidden_size)

    def parameters(self):
        return {'weight_input': (self.weight_input, self.nabla_weight_input),
                'weight_hidden': (self.weight_hidden, self.nabla_weight_hidden),
                'bias': (self.bias, self.nabla_bias)}

    def _forward(self, x):
        self._check_input(x)
        if not self.stateful:
            self.reset_state()

        y = Mat(x.rows, self.hidden_size)
        self._steps = []
        for t in range(x.rows):
            x_t = x.row(t).copy()
            h_prev = self.hidden
            z = multiply(h_prev, self.weight_hidden, metrics=self.metrics)
            multiply(x_t, self.weight_input, out=z, metrics=self.metrics)
            z += self.bias
            h = z.copy()
            self.activation.apply(h)
            self._steps.append((x_t, h_prev, z))
            self.hidden = h
            out = y.row(t)
            out += h
        return y

    def _backward(self, delta):
        self._check_delta(delta)
        grad = Mat(len(self._steps), self.in_size)
        carry = Mat(1, self.hidden_size)
        for t in reversed(range(len(self._steps))):
            x_t, h_prev, z = self._steps[t]
            dh = delta.row(t).copy()
            if self.bptt:
                dh += carry

            dz = z.copy()
            self.activation.derivative(dz)
            dz.hadamard(dh)

            multiply(x_t.transpose(), dz, out=self.nabla_weight_input, metrics=self.metrics)
            multiply(h_prev.transpose(), dz, out=self.nabla_weight_hidden, metrics=self.metrics)
            self.nabla_bias += dz
            multiply(dz, self.weight_input.transpose(), out=grad.row(t), metrics=self.metrics)
            if self.bptt:
                carry = multiply(dz, self.weight_hidden.transpose(), metrics=self.metrics)
        self._steps = []
        return grad


class LSTMLayer(_RecurrentLayer):
    """
    Long short-term memory layer.

    With z = [h_{t-1}, x_t]:
        f = sigmoid(z.Wf + bf)    i = sigmoid(z.Wi + bi)
        g = tanh(z.Wc + bc)       o = sigmoid(z.Wo + bo)
        c = f * c_prev + i * g    h = o * tanh(c)
    """

    _gates = ('forget', 'input', 'candidate', 'output')

    def __init__(self, in_size, hidden_size, initializer='kaiming', bptt=False,
                 stateful=True):
        super().__init__(in_size, hidden_size, initializer, bptt, stateful)
        self.cell = Mat(1, hidden_size)
        rows = hidden_size + in_size
        self.weights = {gate: Mat(rows, hidden_size) for gate in self._gates}
        self.biases = {gate: Mat(1, hidden_size) for gate in self._gates}
        self.nabla_weights = {gate: Mat(rows, hidden_size) for gate in self._gates}
        self.nabla_biases = {gate: Mat(1, hidden_size) for gate in self._gates}
        self._activations = {'forget': Sigmoid(), 'input': Sigmoid(),
                             'candidate': Tanh(), 'output': Sigmoid()}

    def parameters(self):
        # Four weight matrices, then four biases.
        params = {f'weight_{gate}': (self.weights[gate], self.nabla_weights[gate])
                  for gate in self._gates}
        params.update({f'bias_{gate}': (self.biases[gate], self.nabla_biases[gate])
                       for gate in self._gates})
        return params

    def reset_state(self):
        super().reset_state()
        self.cell = Mat(1, self.hidden_size)

    def _gate(self, z, gate):
        a = multiply(z, self.weights[gate], metrics=self.metrics)
        a += self.biases[gate]
        self._activations[gate].apply(a)
        return a

    def _forward(self, x):
        self._check_input(x)
        if not self.stateful:
            self.reset_state()

        y = Mat(x.rows, self.hidden_size)
        self._steps = []
        for t in range(x.rows):
            z = concat(self.hidden, x.row(t))
            c_prev = self.cell
            f, i, g, o = (self._gate(z, gate) for gate in self._gates)
            c = f * c_prev + i * g
            tanh_c = c.copy()
            inplace_tanh(tanh_c)
            h = o * tanh_c
            self._steps.append((z, c_prev, f, i, g, o, tanh_c))
            self.hidden = h
            self.cell = c
            out = y.row(t)
            out += h
        return y

    def _backward(self, delta):
        self._check_delta(delta)
        hidden = self.hidden_size
        grad = Mat(len(self._steps), self.in_size)
        dh_carry = Mat(1, hidden)
        dc_carry = Mat(1, hidden)
        for t in reversed(range(len(self._steps))):
            z, c_prev, f, i, g, o, tanh_c = self._steps[t]
            dh = delta.row(t).copy()
            if self.bptt:
                dh += dh_carry

            dc = dh * o
            dc.hadamard(1.0 - tanh_c * tanh_c)
            if self.bptt:
                dc += dc_carry

            local = {
                'forget': (dc * c_prev).hadamard(f * (1.0 - f)),
                'input': (dc * g).hadamard(i * (1.0 - i)),
                'candidate': (dc * i).hadamard(1.0 - g * g),
                'output': (dh * tanh_c).hadamard(o * (1.0 - o)),
            }

            z_t = z.transpose()
            dz = Mat(1, hidden + self.in_size)
            for gate in self._gates:
                multiply(z_t, local[gate], out=self.nabla_weights[gate], metrics=self.metrics)
                self.nabla_biases[gate] += local[gate]
                multiply(local[gate], self.weights[gate].transpose(), out=dz,
                         metrics=self.metrics)

            out = grad.row(t)
            out += Kernel(1, self.in_size, dz, hidden)
            dh_carry = Kernel(1, hidden, dz, 0).copy()
            dc_carry = dc * f
        self._steps = []
        return grad
