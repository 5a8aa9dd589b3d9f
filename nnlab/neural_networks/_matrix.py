"""
Dense matrix buffer and the non-owning views that alias its storage.

`Mat` owns a flat float64 array and a (rows, cols) shape descriptor.
`Kernel` and `Tensor` reinterpret a window of that storage under another
shape without copying; writes through a view are visible through the owner.

Python keeps a view's storage alive, so a view can never dangle in the C
sense. What *can* happen is that the owner swaps its storage for a new array
(`Mat.load`) or releases it (`Mat.release`), after which an old view would
silently point at data the owner no longer uses. Each Mat therefore carries a
generation counter, bumped on every storage replacement, and every view
checks the generation it was created under before touching memory.
"""
from contextlib import nullcontext
from math import prod

import numpy as np

from ..common.exceptions import (
    CheckpointError,
    IndexOutOfRangeError,
    ShapeMismatchError,
    StaleViewError,
)

DTYPE = np.float64


def _next_token(tokens):
    try:
        return next(tokens)
    except StopIteration:
        raise CheckpointError("Unexpected end of checkpoint data") from None


class _Matrix:
    """Arithmetic shared by owning buffers and strided views."""

    rows = 0
    cols = 0

    @property
    def array(self):
        """Return a (rows, cols) numpy view of the underlying storage."""
        raise NotImplementedError

    @property
    def shape(self):
        return (self.rows, self.cols)

    @property
    def size(self):
        return self.rows * self.cols

    def _check_index(self, key):
        if not isinstance(key, tuple) or len(key) != 2:
            raise TypeError("Matrices are indexed with a (row, col) pair")
        i, j = key
        if not (0 <= i < self.rows and 0 <= j < self.cols):
            raise IndexOutOfRangeError(
                f"Index ({i}, {j}) out of range for shape {self.shape}")
        return i, j

    def __getitem__(self, key):
        i, j = self._check_index(key)
        return float(self.array[i, j])

    def __setitem__(self, key, value):
        i, j = self._check_index(key)
        self.array[i, j] = value

    def _operand(self, other, op):
        if isinstance(other, _Matrix):
            if other.shape != self.shape:
                raise ShapeMismatchError(
                    f"Cannot {op} matrices of shape {self.shape} and {other.shape}")
            return other.array
        if np.isscalar(other):
            return other
        raise TypeError(f"Cannot {op} {type(self).__name__} and {type(other).__name__}")

    # In-place arithmetic
    def __iadd__(self, other):
        arr = self.array
        np.add(arr, self._operand(other, 'add'), out=arr)
        return self

    def __isub__(self, other):
        arr = self.array
        np.subtract(arr, self._operand(other, 'subtract'), out=arr)
        return self

    def __imul__(self, other):
        arr = self.array
        np.multiply(arr, self._operand(other, 'multiply'), out=arr)
        return self

    def hadamard(self, other):
        """Elementwise product with `other`, in place."""
        if not isinstance(other, _Matrix):
            raise TypeError("hadamard() expects a matrix operand")
        self *= other
        return self

    def scale(self, theta):
        """Multiply every element by the scalar `theta`, in place."""
        self *= float(theta)
        return self

    # Copy-producing arithmetic
    def __add__(self, other):
        res = self.copy()
        res += other
        return res

    __radd__ = __add__

    def __sub__(self, other):
        res = self.copy()
        res -= other
        return res

    def __rsub__(self, other):
        res = Mat.from_array(self._operand(other, 'subtract') - self.array)
        return res

    def __mul__(self, other):
        res = self.copy()
        res *= other
        return res

    __rmul__ = __mul__

    def __neg__(self):
        return Mat.from_array(-self.array)

    def __matmul__(self, other):
        return multiply(self, other)

    def transpose(self):
        """Return a new Mat holding the transpose."""
        return Mat.from_array(self.array.T)

    def clear(self):
        """Fill with zeros."""
        self.array.fill(0.0)

    def sum(self):
        return float(np.sum(self.array))

    def randomize(self, initializer, rng):
        """Fill with draws from `initializer`, taken in row-major order."""
        arr = self.array
        arr[...] = np.asarray(initializer.sample(rng, self.size),
                              dtype=DTYPE).reshape(self.shape)

    def copy(self):
        """Return an owning Mat with the same shape and values."""
        return Mat.from_array(self.array)

    def to_numpy(self):
        """Return a detached (rows, cols) numpy array."""
        return self.array.copy()

    def write(self, stream):
        """Write `rows cols v0 v1 ...` to a text stream."""
        values = self.array.ravel().tolist()
        stream.write(f"{self.rows} {self.cols} ")
        stream.write(" ".join(repr(v) for v in values))
        stream.write(" " if values else "")

    def __repr__(self):
        return f"{type(self).__name__}(rows={self.rows}, cols={self.cols})"


class Mat(_Matrix):
    """Owning, row-major, shape-tagged buffer of float64 values."""

    def __init__(self, rows, cols, values=None):
        if rows < 0 or cols < 0:
            raise ValueError(f"Invalid matrix shape ({rows}, {cols})")
        if values is None:
            data = np.zeros(rows * cols, dtype=DTYPE)
        else:
            data = np.array(values, dtype=DTYPE).ravel()
            if data.size != rows * cols:
                raise ShapeMismatchError(
                    f"{data.size} values cannot fill a ({rows}, {cols}) matrix")
        self._data = data
        self.rows = rows
        self.cols = cols
        self.generation = 0

    @classmethod
    def from_array(cls, arr):
        """Copy a 1D or 2D array-like into a new Mat (1D becomes one row)."""
        arr = np.asarray(arr, dtype=DTYPE)
        if arr.ndim == 1:
            arr = arr.reshape(1, -1)
        if arr.ndim != 2:
            raise ShapeMismatchError(
                f"Expected a 1D or 2D array, got shape {arr.shape}")
        return cls(arr.shape[0], arr.shape[1], arr)

    @property
    def storage(self):
        """The flat numpy array this Mat owns."""
        return self._data

    @property
    def array(self):
        return self._data.reshape(self.rows, self.cols)

    def reshape(self, rows, cols):
        """Change the shape descriptor in place, keeping the same storage."""
        if rows * cols != self._data.size:
            raise ShapeMismatchError(
                f"Cannot reshape {self.shape} ({self._data.size} elements) "
                f"to ({rows}, {cols})")
        self.rows = rows
        self.cols = cols
        return self

    def row(self, i):
        """Return a (1, cols) Kernel over row `i`."""
        if not 0 <= i < self.rows:
            raise IndexOutOfRangeError(f"Row {i} out of range for shape {self.shape}")
        return Kernel(1, self.cols, self, i * self.cols)

    def kernel(self, rows, cols, offset=0):
        """Return a (rows, cols) Kernel starting at flat `offset`."""
        return Kernel(rows, cols, self, offset)

    def release(self):
        """Drop the storage; any view created before this call becomes stale."""
        self._data = np.zeros(0, dtype=DTYPE)
        self.rows = 0
        self.cols = 0
        self.generation += 1

    @classmethod
    def read(cls, tokens):
        """Build a Mat from `rows cols v0 v1 ...` tokens."""
        try:
            rows = int(_next_token(tokens))
            cols = int(_next_token(tokens))
            if rows < 0 or cols < 0:
                raise ValueError(f"negative shape ({rows}, {cols})")
            values = [float(_next_token(tokens)) for _ in range(rows * cols)]
        except ValueError as exc:
            raise CheckpointError(f"Malformed checkpoint data: {exc}") from exc
        return cls(rows, cols, values)

    @classmethod
    def read_checked(cls, tokens, expected_shape):
        """Read a Mat and require it to have `expected_shape`."""
        other = cls.read(tokens)
        if other.shape != tuple(expected_shape):
            raise ShapeMismatchError(
                f"Checkpoint holds a {other.shape} matrix, expected {tuple(expected_shape)}")
        return other

    def assign(self, other):
        """Take over `other`'s shape and a copy of its values as new storage."""
        self._data = np.array(other.array, dtype=DTYPE).ravel()
        self.rows = other.rows
        self.cols = other.cols
        self.generation += 1
        return self

    def load(self, tokens, expected_shape=None):
        """Replace storage and shape in place from checkpoint tokens."""
        if expected_shape is None:
            return self.assign(Mat.read(tokens))
        return self.assign(Mat.read_checked(tokens, expected_shape))


class Kernel(_Matrix):
    """
    Non-owning (rows, cols) window over a Mat's storage.

    The window starts at flat offset `offset` of the owner and is read in
    row-major order, so a Kernel can address one channel of a
    (channels, height * width) buffer as an independent height x width matrix.
    """

    def __init__(self, rows, cols, owner, offset=0):
        if isinstance(owner, Kernel):
            owner.check_live()
            offset += owner.offset
            owner = owner.owner
        if rows < 0 or cols < 0:
            raise ValueError(f"Invalid view shape ({rows}, {cols})")
        if offset < 0 or offset + rows * cols > owner.storage.size:
            raise IndexOutOfRangeError(
                f"View of {rows}x{cols} at offset {offset} exceeds a buffer "
                f"of {owner.storage.size} elements")
        self.rows = rows
        self.cols = cols
        self.owner = owner
        self.offset = offset
        self.generation = owner.generation

    def check_live(self):
        if self.owner.generation != self.generation:
            raise StaleViewError(
                "View used after its owning buffer replaced or released its storage")

    @property
    def array(self):
        self.check_live()
        return self.owner.storage[self.offset:self.offset + self.size].reshape(
            self.rows, self.cols)

    def row(self, i):
        if not 0 <= i < self.rows:
            raise IndexOutOfRangeError(f"Row {i} out of range for shape {self.shape}")
        return Kernel(1, self.cols, self, i * self.cols)


class Tensor:
    """
    Non-owning N-dimensional reinterpretation of a buffer's flat storage.

    `tensor[i]` returns the i-th slab along the leading dimension: a Kernel
    when two dimensions remain, a one-row Kernel when one remains, otherwise
    another Tensor.
    """

    def __init__(self, dims, data):
        dims = tuple(int(d) for d in dims)
        if isinstance(data, Kernel):
            data.check_live()
            owner, offset = data.owner, data.offset
        else:
            owner, offset = data, 0
        if prod(dims) != data.size:
            raise ShapeMismatchError(
                f"Tensor dimensions {dims} do not cover a buffer of {data.size} elements")
        self._init(dims, owner, offset)

    def _init(self, dims, owner, offset):
        self.dims = dims
        self.owner = owner
        self.offset = offset
        self.generation = owner.generation

    @classmethod
    def _slab(cls, dims, owner, offset):
        slab = cls.__new__(cls)
        slab._init(dims, owner, offset)
        return slab

    @property
    def shape(self):
        return self.dims

    @property
    def size(self):
        return prod(self.dims)

    def __len__(self):
        return self.dims[0]

    def check_live(self):
        if self.owner.generation != self.generation:
            raise StaleViewError(
                "View used after its owning buffer replaced or released its storage")

    @property
    def array(self):
        self.check_live()
        return self.owner.storage[self.offset:self.offset + self.size].reshape(self.dims)

    def __getitem__(self, index):
        self.check_live()
        if not 0 <= index < self.dims[0]:
            raise IndexOutOfRangeError(
                f"Index {index} out of range for leading dimension {self.dims[0]}")
        rest = self.dims[1:]
        offset = self.offset + index * prod(rest)
        if len(rest) == 2:
            return Kernel(rest[0], rest[1], self.owner, offset)
        if len(rest) <= 1:
            return Kernel(1, rest[0] if rest else 1, self.owner, offset)
        return Tensor._slab(rest, self.owner, offset)

    def __repr__(self):
        return f"Tensor(dims={self.dims})"


def multiply(a, b, out=None, metrics=None):
    """
    Matrix product accumulated into `out` (a fresh zero Mat by default).

    Every element is summed left to right over the inner index,
    `out[i][j] += a[i][k] * b[k][j]` for k = 0 .. K-1, so results do not
    depend on the BLAS build.
    """
    if a.cols != b.rows:
        raise ShapeMismatchError(
            f"Cannot multiply {a.shape} by {b.shape}: inner dimensions differ")
    if out is None:
        out = Mat(a.rows, b.cols)
    elif out.shape != (a.rows, b.cols):
        raise ShapeMismatchError(
            f"Product of {a.shape} and {b.shape} does not fit into {out.shape}")

    timer = metrics.timer('multiply') if metrics is not None else nullcontext()
    with timer:
        lhs, rhs, res = a.array, b.array, out.array
        for k in range(a.cols):
            res += np.outer(lhs[:, k], rhs[k])
    if metrics is not None:
        metrics.count('multiply')
    return out


def concat(*matrices):
    """Join matrices with equal row counts side by side into a new Mat."""
    rows = {m.rows for m in matrices}
    if len(rows) != 1:
        raise ShapeMismatchError(
            f"Cannot concatenate matrices of shapes {[m.shape for m in matrices]}")
    return Mat.from_array(np.concatenate([m.array for m in matrices], axis=1))
