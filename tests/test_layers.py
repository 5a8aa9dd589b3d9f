"""
test_layers.py
~~~~~~~~~~~~~~

Unit tests for the layer protocol, dense and activation layers.
"""

import io

import numpy as np
import pytest

from nnlab.common.exceptions import ShapeMismatchError, StateMisuseError
from nnlab.neural_networks import (
    DenseLayer,
    FlattenLayer,
    Mat,
    NormalInit,
    ReLULayer,
    SGDOptimizer,
    SigmoidLayer,
    SoftmaxLayer,
    TanhLayer,
)


@pytest.fixture
def dense(rng):
    layer = DenseLayer(3, 2, initializer=NormalInit(0.0, 0.5))
    layer.randomize(rng)
    return layer


@pytest.mark.unit
class TestLayerProtocol:
    """Forward/backward alternation and mode handling."""

    def test_double_forward_in_training_raises(self, dense, random_mat):
        x = random_mat(1, 3)
        dense.forward(x)
        with pytest.raises(StateMisuseError):
            dense.forward(x)

    def test_backward_without_forward_raises(self, dense):
        with pytest.raises(StateMisuseError):
            dense.backward(Mat(1, 2))

    def test_backward_in_eval_mode_raises(self, dense, random_mat):
        dense.eval()
        dense.forward(random_mat(1, 3))
        with pytest.raises(StateMisuseError):
            dense.backward(Mat(1, 2))

    def test_eval_mode_allows_repeated_forward(self, dense, random_mat):
        x = random_mat(1, 3)
        dense.eval()
        first = dense(x)
        second = dense(x)
        np.testing.assert_array_equal(first.array, second.array)

    def test_switching_mode_discards_pending_forward(self, dense, random_mat):
        dense.forward(random_mat(1, 3))
        dense.train()
        with pytest.raises(StateMisuseError):
            dense.backward(Mat(1, 2))

    def test_parameterless_layers_have_no_parameters(self):
        assert FlattenLayer().parameters() == {}
        assert ReLULayer().parameters() == {}


@pytest.mark.unit
class TestDenseLayer:

    def test_forward(self):
        layer = DenseLayer(2, 2)
        layer.weight.assign(Mat.from_array([[1.0, 2.0], [3.0, 4.0]]))
        layer.bias.assign(Mat.from_array([[0.5, -0.5]]))
        y = layer.forward(Mat.from_array([[1.0, 1.0], [2.0, 0.0]]))
        np.testing.assert_allclose(y.array, [[4.5, 5.5], [2.5, 3.5]])

    def test_forward_checks_width(self, dense):
        with pytest.raises(ShapeMismatchError):
            dense.forward(Mat(1, 4))

    def test_backward_checks_shape(self, dense, random_mat):
        dense.forward(random_mat(1, 3))
        with pytest.raises(ShapeMismatchError):
            dense.backward(Mat(1, 3))

    def test_gradients(self, dense, random_mat, check_layer_gradients):
        check_layer_gradients(dense, random_mat(2, 3))

    def test_gradients_accumulate_until_learn(self, dense, random_mat):
        x, delta = random_mat(1, 3), random_mat(1, 2)
        dense.forward(x)
        dense.backward(delta)
        once = dense.nabla_weight.to_numpy()
        dense.forward(x)
        dense.backward(delta)
        np.testing.assert_allclose(dense.nabla_weight.array, 2 * once)

    def test_learn_applies_update_and_clears(self, dense, random_mat):
        before = dense.weight.to_numpy()
        dense.forward(random_mat(1, 3))
        dense.backward(random_mat(1, 2))
        nabla = dense.nabla_weight.to_numpy()

        optimizer = SGDOptimizer(lr=0.1, batch_size=1)
        dense.learn(optimizer)
        np.testing.assert_allclose(dense.weight.array, before - 0.1 * nabla)
        assert dense.nabla_weight.sum() == 0.0
        assert dense.nabla_bias.sum() == 0.0

    def test_randomize_is_reproducible(self):
        a, b = DenseLayer(4, 3), DenseLayer(4, 3)
        a.randomize(np.random.default_rng(5))
        b.randomize(np.random.default_rng(5))
        np.testing.assert_array_equal(a.weight.array, b.weight.array)

    def test_save_load_round_trip(self, dense):
        stream = io.StringIO()
        dense.save(stream)
        other = DenseLayer(3, 2)
        other.load(iter(stream.getvalue().split()))
        np.testing.assert_array_equal(other.weight.array, dense.weight.array)
        np.testing.assert_array_equal(other.bias.array, dense.bias.array)

        x = Mat.from_array([[0.3, -1.2, 0.7]])
        dense.eval()
        other.eval()
        np.testing.assert_array_equal(other.forward(x).array, dense.forward(x).array)

    def test_load_rejects_wrong_shape(self, dense):
        stream = io.StringIO()
        dense.save(stream)
        with pytest.raises(ShapeMismatchError):
            DenseLayer(2, 3).load(iter(stream.getvalue().split()))


@pytest.mark.unit
class TestActivationLayers:

    @pytest.mark.parametrize("layer_cls", [SigmoidLayer, TanhLayer])
    def test_gradients(self, layer_cls, random_mat, check_layer_gradients):
        check_layer_gradients(layer_cls(), random_mat(2, 3))

    def test_relu_backward_masks_gradient(self):
        layer = ReLULayer()
        layer.forward(Mat.from_array([[-1.0, 2.0]]))
        grad = layer.backward(Mat.from_array([[5.0, 5.0]]))
        np.testing.assert_array_equal(grad.array, [[0.0, 5.0]])

    def test_forward_does_not_modify_input(self):
        x = Mat.from_array([[-1.0, 2.0]])
        ReLULayer().forward(x)
        assert x[0, 0] == -1.0

    def test_softmax_passes_gradient_through(self):
        layer = SoftmaxLayer()
        y = layer.forward(Mat.from_array([[1.0, 2.0]]))
        assert y.sum() == pytest.approx(1.0)
        delta = Mat.from_array([[0.3, -0.3]])
        assert layer.backward(delta) is delta


@pytest.mark.unit
class TestFlattenLayer:

    def test_round_trip_shapes(self):
        layer = FlattenLayer()
        x = Mat.from_array(np.arange(6.0).reshape(2, 3))
        y = layer.forward(x)
        assert y.shape == (1, 6)
        grad = layer.backward(Mat.from_array(np.ones((1, 6))))
        assert grad.shape == (2, 3)

    def test_owning_mat_is_reshaped_in_place(self):
        x = Mat.from_array(np.arange(6.0).reshape(2, 3))
        y = FlattenLayer().forward(x)
        assert y is x
        assert x.shape == (1, 6)

    def test_flatten_view_copies(self):
        owner = Mat.from_array(np.arange(8.0).reshape(2, 4))
        y = FlattenLayer().forward(owner.kernel(2, 2, offset=4))
        assert isinstance(y, Mat)
        np.testing.assert_array_equal(y.array, [[4.0, 5.0, 6.0, 7.0]])
        assert owner.shape == (2, 4)
