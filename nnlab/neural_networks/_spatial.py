"""
Sliding-window primitives: output-size arithmetic, im2col/col2im, direct
correlation and its transpose, and max/mean pooling with their gradients.

Images are (channels, height * width) buffers; single-channel routines take
(height, width) Kernels. Every routine accumulates into or writes through the
buffer it is given rather than allocating its result, except where `out`
is optional.
"""
import numpy as np

from ..common.exceptions import ShapeMismatchError
from ._matrix import Mat


def _pair(value):
    if isinstance(value, (tuple, list)):
        return int(value[0]), int(value[1])
    return int(value), int(value)


def compute_output_size(in_height, in_width, kernel_height, kernel_width,
                        stride=1, padding=0):
    """
    Output (height, width) of a sliding window.

    floor((in - kernel + 2 * padding) / stride) + 1 along each axis.
    """
    if stride <= 0:
        raise ValueError(f"Stride must be positive, got {stride}")
    out_height = (in_height - kernel_height + 2 * padding) // stride + 1
    out_width = (in_width - kernel_width + 2 * padding) // stride + 1
    if out_height <= 0 or out_width <= 0:
        raise ValueError(
            f"A {kernel_height}x{kernel_width} window does not fit a "
            f"{in_height}x{in_width} input with padding {padding}")
    return out_height, out_width


def _as_image(buffer, channels, height, width):
    arr = buffer.array
    if arr.size != channels * height * width:
        raise ShapeMismatchError(
            f"Buffer of {arr.size} elements is not a {channels}x{height}x{width} image")
    return arr.reshape(channels, height, width)


def im2col(image, channels, height, width, ksize, stride=1, padding=0, out=None):
    """
    Rearrange an image into a column matrix.

    Args:
        image: (channels, height * width) Mat, Kernel or Tensor
        ksize: (kernel_height, kernel_width)

    Returns:
        Mat of shape (channels * kh * kw, out_h * out_w). Row (c, ki, kj)
        holds the sample at kernel offset (ki, kj) of channel c for every
        output position, so column p is the flattened receptive field of
        output p. Samples falling into the padding are zero.
    """
    kh, kw = _pair(ksize)
    out_h, out_w = compute_output_size(height, width, kh, kw, stride, padding)
    img = _as_image(image, channels, height, width)
    if out is None:
        out = Mat(channels * kh * kw, out_h * out_w)
    elif out.shape != (channels * kh * kw, out_h * out_w):
        raise ShapeMismatchError(
            f"im2col output must be {(channels * kh * kw, out_h * out_w)}, got {out.shape}")

    padded = np.pad(img, ((0, 0), (padding, padding), (padding, padding)))
    cols = out.array.reshape(channels, kh, kw, out_h, out_w)
    for ki in range(kh):
        for kj in range(kw):
            cols[:, ki, kj] = padded[:, ki:ki + stride * out_h:stride,
                                     kj:kj + stride * out_w:stride]
    return out


def col2im(columns, channels, height, width, ksize, stride=1, padding=0, out=None):
    """
    Additive inverse of im2col.

    Every entry of `columns` is added onto the image cell it was sampled
    from; entries that came from the padding are dropped. Overlapping
    receptive fields therefore accumulate.
    """
    kh, kw = _pair(ksize)
    out_h, out_w = compute_output_size(height, width, kh, kw, stride, padding)
    if columns.shape != (channels * kh * kw, out_h * out_w):
        raise ShapeMismatchError(
            f"col2im input must be {(channels * kh * kw, out_h * out_w)}, got {columns.shape}")
    if out is None:
        out = Mat(channels, height * width)
    img = _as_image(out, channels, height, width)

    padded = np.zeros((channels, height + 2 * padding, width + 2 * padding))
    cols = columns.array.reshape(channels, kh, kw, out_h, out_w)
    for ki in range(kh):
        for kj in range(kw):
            padded[:, ki:ki + stride * out_h:stride,
                   kj:kj + stride * out_w:stride] += cols[:, ki, kj]
    img += padded[:, padding:padding + height, padding:padding + width]
    return out


def conv(inp, kernel, out, stride=1, padding=0):
    """
    Direct single-channel correlation, accumulated into `out`.

    out[i][j] += sum_k sum_l in[i*stride + k - padding][j*stride + l - padding] * kernel[k][l]
    with out-of-bounds input samples contributing nothing.
    """
    out_h, out_w = out.shape
    expected = compute_output_size(inp.rows, inp.cols, kernel.rows, kernel.cols,
                                   stride, padding)
    if (out_h, out_w) != expected:
        raise ShapeMismatchError(f"conv output must be {expected}, got {out.shape}")

    padded = np.pad(inp.array, padding)
    weights = kernel.array
    res = out.array
    for k in range(kernel.rows):
        for l in range(kernel.cols):
            res += weights[k, l] * padded[k:k + stride * out_h:stride,
                                          l:l + stride * out_w:stride]


def conv_transpose(inp, kernel, out, stride=1, padding=0):
    """
    Adjoint of `conv`: scatter-add every in[i][j] * kernel[k][l] onto
    out[i*stride + k - padding][j*stride + l - padding].
    """
    in_h, in_w = inp.shape
    expected = compute_output_size(out.rows, out.cols, kernel.rows, kernel.cols,
                                   stride, padding)
    if (in_h, in_w) != expected:
        raise ShapeMismatchError(
            f"conv_transpose input must be {expected}, got {inp.shape}")

    padded = np.zeros((out.rows + 2 * padding, out.cols + 2 * padding))
    delta = inp.array
    weights = kernel.array
    for k in range(kernel.rows):
        for l in range(kernel.cols):
            padded[k:k + stride * in_h:stride,
                   l:l + stride * in_w:stride] += weights[k, l] * delta
    res = out.array
    res += padded[padding:padding + out.rows, padding:padding + out.cols]


def _windows(arr, size, stride, out_h, out_w):
    """Stack every window as the last axis, cells in row-major scan order."""
    kh, kw = size
    return np.stack([arr[k:k + stride * out_h:stride, l:l + stride * out_w:stride]
                     for k in range(kh) for l in range(kw)], axis=-1)


def _check_pool(inp_shape, out_shape, size, stride):
    expected = compute_output_size(inp_shape[0], inp_shape[1], size[0], size[1], stride, 0)
    if tuple(out_shape) != expected:
        raise ShapeMismatchError(f"Pooling output must be {expected}, got {tuple(out_shape)}")


def max_pooling(inp, out, size, stride):
    """Write the maximum of every window of `inp` into `out`."""
    size = _pair(size)
    _check_pool(inp.shape, out.shape, size, stride)
    windows = _windows(inp.array, size, stride, out.rows, out.cols)
    out.array[...] = windows.max(axis=-1)


def mean_pooling(inp, out, size, stride):
    """Write the mean of every window of `inp` into `out`."""
    size = _pair(size)
    _check_pool(inp.shape, out.shape, size, stride)
    windows = _windows(inp.array, size, stride, out.rows, out.cols)
    out.array[...] = windows.sum(axis=-1) / (size[0] * size[1])


def max_pooling_argmax(img, size, stride, out_h, out_w):
    """
    Input coordinates of the maximum of every window.

    Ties go to the first cell met in row-major scan order of the window.

    Returns:
        (rows, cols) integer arrays of shape (out_h, out_w)
    """
    kh, kw = _pair(size)
    windows = _windows(img.array, (kh, kw), stride, out_h, out_w)
    flat = np.argmax(windows, axis=-1)
    grid_i, grid_j = np.indices((out_h, out_w))
    return grid_i * stride + flat // kw, grid_j * stride + flat % kw


def max_pooling_prime(img, delta, out, size, stride):
    """
    Route delta[i][j] to the argmax cell of window (i, j), accumulating into
    `out`; every other cell receives nothing from that window.
    """
    size = _pair(size)
    _check_pool(img.shape, delta.shape, size, stride)
    if out.shape != img.shape:
        raise ShapeMismatchError(f"Gradient buffer {out.shape} does not match {img.shape}")
    rows, cols = max_pooling_argmax(img, size, stride, delta.rows, delta.cols)
    np.add.at(out.array, (rows, cols), delta.array)


def mean_pooling_prime(delta, out, size, stride):
    """
    Add delta[i][j] / (kh * kw) to every cell of window (i, j) of `out`.

    Overlapping windows accumulate, so the total gradient is conserved.
    """
    kh, kw = _pair(size)
    _check_pool(out.shape, delta.shape, (kh, kw), stride)
    share = delta.array / (kh * kw)
    res = out.array
    for k in range(kh):
        for l in range(kw):
            res[k:k + stride * delta.rows:stride,
                l:l + stride * delta.cols:stride] += share
