"""
test_matrix.py
~~~~~~~~~~~~~~

Unit tests for the Mat buffer, its Kernel/Tensor views and the matrix product.
"""

import io

import numpy as np
import pytest

from nnlab.common.exceptions import (
    CheckpointError,
    IndexOutOfRangeError,
    ShapeMismatchError,
    StaleViewError,
)
from nnlab.common.metrics import Metrics
from nnlab.neural_networks import Kernel, Mat, Tensor, concat, multiply


@pytest.mark.unit
class TestMat:
    """Construction, element access and elementwise arithmetic."""

    def test_new_mat_is_zero_filled(self):
        m = Mat(2, 3)
        assert m.shape == (2, 3)
        assert m.size == 6
        assert m.sum() == 0.0

    def test_from_array_turns_vector_into_row(self):
        m = Mat.from_array([1.0, 2.0, 3.0])
        assert m.shape == (1, 3)
        assert m[0, 2] == 3.0

    def test_values_must_fill_shape(self):
        with pytest.raises(ShapeMismatchError):
            Mat(2, 2, [1.0, 2.0, 3.0])

    def test_index_out_of_range(self):
        m = Mat(2, 2)
        with pytest.raises(IndexOutOfRangeError):
            m[2, 0]
        with pytest.raises(IndexOutOfRangeError):
            m[0, -1] = 1.0

    def test_inplace_ops_require_same_shape(self):
        with pytest.raises(ShapeMismatchError):
            Mat(2, 2).__iadd__(Mat(2, 3))

    def test_arithmetic(self):
        a = Mat.from_array([[1.0, 2.0], [3.0, 4.0]])
        b = Mat.from_array([[0.5, 0.5], [2.0, -1.0]])
        np.testing.assert_array_equal((a + b).array, [[1.5, 2.5], [5.0, 3.0]])
        np.testing.assert_array_equal((a - b).array, [[0.5, 1.5], [1.0, 5.0]])
        np.testing.assert_array_equal((a * b).array, [[0.5, 1.0], [6.0, -4.0]])
        np.testing.assert_array_equal((1.0 - a).array, [[0.0, -1.0], [-2.0, -3.0]])
        np.testing.assert_array_equal((-a).array, [[-1.0, -2.0], [-3.0, -4.0]])
        # Copy-producing operators leave their operands alone.
        assert a[0, 0] == 1.0

    def test_hadamard_and_scale_are_in_place(self):
        a = Mat.from_array([[1.0, 2.0]])
        result = a.hadamard(Mat.from_array([[3.0, 4.0]]))
        assert result is a
        a.scale(0.5)
        np.testing.assert_array_equal(a.array, [[1.5, 4.0]])

    def test_reshape_aliases_storage(self):
        m = Mat.from_array(np.arange(6.0).reshape(2, 3))
        storage = m.storage
        m.reshape(3, 2)
        assert m.storage is storage
        assert m.shape == (3, 2)
        assert m[2, 1] == 5.0
        with pytest.raises(ShapeMismatchError):
            m.reshape(4, 2)

    def test_transpose(self):
        m = Mat.from_array([[1.0, 2.0, 3.0]])
        t = m.transpose()
        assert t.shape == (3, 1)
        assert t[2, 0] == 3.0

    def test_clear(self):
        m = Mat.from_array([[1.0, 2.0]])
        m.clear()
        assert m.sum() == 0.0


@pytest.mark.unit
class TestMultiply:
    """Matrix product semantics."""

    def test_matches_numpy(self, random_mat):
        a, b = random_mat(3, 4), random_mat(4, 5)
        np.testing.assert_allclose(multiply(a, b).array, a.array @ b.array)

    def test_accumulates_into_out(self, random_mat):
        a, b = random_mat(2, 3), random_mat(3, 2)
        out = Mat.from_array(np.ones((2, 2)))
        multiply(a, b, out=out)
        np.testing.assert_allclose(out.array, a.array @ b.array + 1.0)

    def test_transpose_identity(self, random_mat):
        a, b = random_mat(3, 4), random_mat(4, 2)
        lhs = (a @ b).transpose()
        rhs = multiply(b.transpose(), a.transpose())
        np.testing.assert_allclose(lhs.array, rhs.array)

    def test_inner_dimension_mismatch(self):
        with pytest.raises(ShapeMismatchError):
            multiply(Mat(2, 3), Mat(2, 3))

    def test_out_shape_mismatch(self):
        with pytest.raises(ShapeMismatchError):
            multiply(Mat(2, 3), Mat(3, 2), out=Mat(3, 3))

    def test_writes_through_views(self, random_mat):
        a, b = random_mat(1, 3), random_mat(3, 4)
        target = Mat(2, 4)
        multiply(a, b, out=target.row(1))
        np.testing.assert_allclose(target.array[1], (a.array @ b.array)[0])
        assert np.all(target.array[0] == 0.0)

    def test_records_metrics(self, random_mat):
        metrics = Metrics()
        multiply(random_mat(2, 2), random_mat(2, 2), metrics=metrics)
        snapshot = metrics.snapshot()
        assert snapshot['counters']['multiply'] == 1
        assert snapshot['timings']['multiply'] >= 0.0

    def test_concat(self):
        joined = concat(Mat.from_array([[1.0]]), Mat.from_array([[2.0, 3.0]]))
        np.testing.assert_array_equal(joined.array, [[1.0, 2.0, 3.0]])
        with pytest.raises(ShapeMismatchError):
            concat(Mat(1, 2), Mat(2, 2))


@pytest.mark.unit
class TestViews:
    """Kernel and Tensor aliasing, bounds and staleness."""

    def test_kernel_writes_are_visible_through_owner(self):
        m = Mat(2, 4)
        k = m.kernel(2, 2, offset=4)
        k[1, 1] = 7.0
        assert m[1, 3] == 7.0

    def test_kernel_of_kernel_composes_offsets(self):
        m = Mat.from_array(np.arange(12.0).reshape(3, 4))
        inner = Kernel(1, 2, m.row(1), 2)
        np.testing.assert_array_equal(inner.array, [[6.0, 7.0]])

    def test_kernel_bounds(self):
        with pytest.raises(IndexOutOfRangeError):
            Kernel(2, 2, Mat(1, 3))
        with pytest.raises(IndexOutOfRangeError):
            Mat(2, 2).row(2)

    def test_tensor_indexing(self):
        m = Mat.from_array(np.arange(24.0).reshape(2, 12))
        t = Tensor((2, 3, 4), m)
        channel = t[1]
        assert isinstance(channel, Kernel)
        assert channel.shape == (3, 4)
        assert channel[0, 0] == 12.0

        deep = Tensor((2, 1, 3, 4), m)[0]
        assert isinstance(deep, Tensor)
        assert deep.shape == (1, 3, 4)

        line = Tensor((6, 4), m)[5]
        assert line.shape == (1, 4)
        assert line[0, 3] == 23.0

    def test_tensor_dims_must_cover_buffer(self):
        with pytest.raises(ShapeMismatchError):
            Tensor((2, 2, 2), Mat(2, 3))

    def test_tensor_index_out_of_range(self):
        with pytest.raises(IndexOutOfRangeError):
            Tensor((2, 2, 2), Mat(2, 4))[2]

    def test_released_owner_makes_views_stale(self):
        m = Mat(2, 2)
        k = m.row(0)
        t = Tensor((2, 2), m)
        m.release()
        with pytest.raises(StaleViewError):
            k.array
        with pytest.raises(StaleViewError):
            t[0]

    def test_loaded_owner_makes_views_stale(self):
        m = Mat(1, 2)
        k = m.row(0)
        m.load(iter("1 2 3.0 4.0".split()))
        with pytest.raises(StaleViewError):
            k[0, 0]
        assert m[0, 1] == 4.0


@pytest.mark.unit
class TestSerialization:
    """Text checkpoint format of a single matrix."""

    def test_round_trip_is_exact(self, random_mat):
        m = random_mat(3, 2)
        stream = io.StringIO()
        m.write(stream)
        loaded = Mat.read(iter(stream.getvalue().split()))
        np.testing.assert_array_equal(loaded.array, m.array)

    def test_format(self):
        stream = io.StringIO()
        Mat.from_array([[0.5, -1.0]]).write(stream)
        assert stream.getvalue().split() == ["1", "2", "0.5", "-1.0"]

    def test_truncated_input(self):
        with pytest.raises(CheckpointError):
            Mat.read(iter("2 2 1.0 2.0".split()))

    def test_malformed_input(self):
        with pytest.raises(CheckpointError):
            Mat.read(iter("1 1 abc".split()))

    def test_read_checked_shape(self):
        with pytest.raises(ShapeMismatchError):
            Mat.read_checked(iter("1 2 1.0 2.0".split()), (2, 1))
