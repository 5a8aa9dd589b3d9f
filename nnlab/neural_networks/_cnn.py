"""
Convolution and pooling layers for image-shaped buffers.

Images travel between layers as (channels, height * width) Mats.
"""
import threading
from concurrent.futures import ThreadPoolExecutor

from ..common.exceptions import ShapeMismatchError
from ._matrix import Kernel, Mat, Tensor, multiply
from ._spatial import (
    col2im,
    compute_output_size,
    conv,
    conv_transpose,
    im2col,
    max_pooling,
    max_pooling_prime,
    mean_pooling,
    mean_pooling_prime,
)
from .initializers import get_initializer
from .layers import Layer


# Helper Functions
def as_image_buffer(data, channels, height, width):
    """
    Copy `data` into a (channels, height * width) Mat.

    Any buffer holding channels * height * width values is accepted, so a
    flattened gradient can be handed back to a spatial layer.
    """
    if data.size != channels * height * width:
        raise ShapeMismatchError(
            f"Expected {channels}x{height}x{width} = {channels * height * width} "
            f"values, got a buffer of shape {data.shape}")
    return data.copy().reshape(channels, height * width)


class ConvLayer(Layer):
    """
    Convolutional layer for feature extraction with learnable filters.

    Weights are stored as a (channels * kernel_count, kh * kw) Mat whose row
    i * kernel_count + j is the filter from input channel i to output
    channel j; the bias is a (kernel_count, 1) Mat.
    """

    def __init__(self, height, width, channels, kernel_height, kernel_width,
                 kernel_count, stride=1, padding=0, initializer='kaiming',
                 forward_fan=True, method='im2col'):
        """
        Args:
            height, width, channels (int): Input image shape
            kernel_height, kernel_width (int): Filter size
            kernel_count (int): Number of output channels
            stride (int): Window step
            padding (int): Zero padding on every side
            initializer (str or Initializer): Sampling strategy
            forward_fan (bool): Scale the initializer by the input fan
                (channels * kh * kw) rather than the output fan
            method (str): 'im2col' or 'direct' correlation
        """
        super().__init__()
        if method not in ('im2col', 'direct'):
            raise ValueError(f"Unknown convolution method: {method}")
        self.in_size = (channels, height, width)
        self.kernel_size = (kernel_count, kernel_height, kernel_width)
        self.stride = stride
        self.padding = padding
        self.method = method
        self.out_size = compute_output_size(height, width, kernel_height, kernel_width,
                                            stride, padding)

        fan = (channels if forward_fan else kernel_count) * kernel_height * kernel_width
        self.initializer = get_initializer(initializer, fan)

        self.weight = Mat(channels * kernel_count, kernel_height * kernel_width)
        self.bias = Mat(kernel_count, 1)
        self.nabla_weight = Mat(channels * kernel_count, kernel_height * kernel_width)
        self.nabla_bias = Mat(kernel_count, 1)
        self._prev_input = None

    @property
    def _window(self):
        return self.kernel_size[1] * self.kernel_size[2]

    @property
    def _positions(self):
        return self.out_size[0] * self.out_size[1]

    def parameters(self):
        return {'weight': (self.weight, self.nabla_weight),
                'bias': (self.bias, self.nabla_bias)}

    def _filter(self, i, j):
        """(kh, kw) view of the filter from input channel i to output channel j."""
        count, kh, kw = self.kernel_size
        return Kernel(kh, kw, self.weight, (i * count + j) * self._window)

    def _columns(self, cols, i):
        """(kh * kw, positions) view of input channel i's rows of an im2col matrix."""
        return Kernel(self._window, self._positions, cols, i * self._window * self._positions)

    def _each_channel(self, task):
        for i in range(self.in_size[0]):
            task(i)

    def _forward(self, x):
        channels, height, width = self.in_size
        x = as_image_buffer(x, channels, height, width)
        self._prev_input = x
        cols = None
        if self.method == 'im2col':
            cols = im2col(x, channels, height, width, self.kernel_size[1:],
                          self.stride, self.padding)

        y = Mat(self.kernel_size[0], self._positions)
        self._each_channel(lambda i: self._accumulate_channel(x, cols, i, y))
        for j in range(self.kernel_size[0]):
            out = y.row(j)
            out += self.bias[j, 0]
        return y

    def _accumulate_channel(self, x, cols, i, y):
        """Add input channel i's correlation with every filter into y."""
        count = self.kernel_size[0]
        if self.method == 'im2col':
            cols_i = self._columns(cols, i)
            for j in range(count):
                multiply(self.weight.row(i * count + j), cols_i, out=y.row(j),
                         metrics=self.metrics)
            return
        img = Tensor(self.in_size, x)[i]
        out = Tensor((count,) + self.out_size, y)
        for j in range(count):
            conv(img, self._filter(i, j), out[j], self.stride, self.padding)

    def _backward(self, delta):
        channels, height, width = self.in_size
        count = self.kernel_size[0]
        delta = as_image_buffer(delta, count, *self.out_size)
        cols = im2col(self._prev_input, channels, height, width, self.kernel_size[1:],
                      self.stride, self.padding)

        for j in range(count):
            cell = self.nabla_bias.row(j)
            cell += delta.row(j).sum()

        grad = Mat(channels, height * width)
        grad_cols = Mat(channels * self._window, self._positions) if self.method == 'im2col' else None
        self._each_channel(lambda i: self._backward_channel(cols, delta, i, grad_cols, grad))
        if self.method == 'im2col':
            col2im(grad_cols, channels, height, width, self.kernel_size[1:],
                   self.stride, self.padding, out=grad)
        return grad

    def _backward_channel(self, cols, delta, i, grad_cols, grad):
        """
        Weight gradient and input gradient for input channel i.

        Only rows i * count + j of nabla_weight and channel i's region of the
        gradient buffers are written, so channels never overlap.
        """
        count = self.kernel_size[0]
        cols_t = self._columns(cols, i).transpose()
        for j in range(count):
            delta_j = delta.row(j)
            multiply(delta_j, cols_t, out=self.nabla_weight.row(i * count + j),
                     metrics=self.metrics)
            if self.method == 'im2col':
                multiply(self.weight.row(i * count + j).transpose(), delta_j,
                         out=self._columns(grad_cols, i), metrics=self.metrics)
            else:
                conv_transpose(Kernel(self.out_size[0], self.out_size[1], delta_j),
                               self._filter(i, j), Tensor(self.in_size, grad)[i],
                               self.stride, self.padding)

    def get_output_shape(self):
        """Calculate output dimensions as (channels, height, width)"""
        return (self.kernel_size[0],) + self.out_size

    def __repr__(self):
        channels, height, width = self.in_size
        count, kh, kw = self.kernel_size
        return (f"{type(self).__name__}(in_size=({channels}, {height}, {width}), "
                f"kernel_size=({count}, {kh}, {kw}), stride={self.stride}, "
                f"padding={self.padding})")


class ParallelConvLayer(ConvLayer):
    """
    Convolutional layer that fans per-input-channel work out to a bounded
    thread pool.

    Forward partial sums from different input channels land in the same
    output channels, so each worker correlates into a private buffer and
    adds it to the shared output under a lock. Backward work per input
    channel writes disjoint regions and needs no lock. The pool is joined
    before forward/backward return; worker exceptions propagate.

    Summation order across channels depends on scheduling, so results match
    the serial layer only up to floating-point rounding.
    """

    def __init__(self, *args, workers=4, **kwargs):
        super().__init__(*args, **kwargs)
        if workers < 1:
            raise ValueError(f"workers must be at least 1, got {workers}")
        self.workers = workers
        self._lock = threading.Lock()

    def _each_channel(self, task):
        with ThreadPoolExecutor(max_workers=self.workers) as pool:
            futures = [pool.submit(task, i) for i in range(self.in_size[0])]
            for future in futures:
                future.result()

    def _accumulate_channel(self, x, cols, i, y):
        partial = Mat(*y.shape)
        super()._accumulate_channel(x, cols, i, partial)
        with self._lock:
            y += partial


class PoolingLayer(Layer):
    """
    Max or mean pooling layer for spatial dimension reduction.
    """

    def __init__(self, height, width, channels, size=(2, 2), stride=2, mode='max'):
        """Constructor"""
        super().__init__()
        if mode not in ('max', 'mean'):
            raise ValueError(f"Unknown pooling mode: {mode}")
        self.in_size = (channels, height, width)
        self.pool_size = (tuple(size) if isinstance(size, (tuple, list)) else (size, size))
        self.stride = stride
        self.mode = mode
        self.out_size = compute_output_size(height, width, self.pool_size[0],
                                            self.pool_size[1], stride, 0)
        self._prev_input = None

    def _forward(self, x):
        """Forward pass: pool every channel"""
        channels = self.in_size[0]
        x = as_image_buffer(x, *self.in_size)
        self._prev_input = x
        y = Mat(channels, self.out_size[0] * self.out_size[1])
        images = Tensor(self.in_size, x)
        outs = Tensor((channels,) + self.out_size, y)
        pool = max_pooling if self.mode == 'max' else mean_pooling
        for i in range(channels):
            pool(images[i], outs[i], self.pool_size, self.stride)
        return y

    def _backward(self, delta):
        """Backward pass: route gradients to max locations or spread them evenly"""
        channels, height, width = self.in_size
        delta = as_image_buffer(delta, channels, *self.out_size)
        grad = Mat(channels, height * width)
        images = Tensor(self.in_size, self._prev_input)
        deltas = Tensor((channels,) + self.out_size, delta)
        grads = Tensor(self.in_size, grad)
        for i in range(channels):
            if self.mode == 'max':
                max_pooling_prime(images[i], deltas[i], grads[i], self.pool_size, self.stride)
            else:
                mean_pooling_prime(deltas[i], grads[i], self.pool_size, self.stride)
        return grad

    def get_output_shape(self):
        """Calculate output dimensions as (channels, height, width)"""
        return (self.in_size[0],) + self.out_size

    def __repr__(self):
        return (f"PoolingLayer(in_size={self.in_size}, size={self.pool_size}, "
                f"stride={self.stride}, mode='{self.mode}')")
