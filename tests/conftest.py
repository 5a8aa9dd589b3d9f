"""
conftest.py
~~~~~~~~~~~

Shared fixtures: seeded generators, a metrics collector and a central
finite-difference gradient estimator.
"""

import numpy as np
import pytest

from nnlab.common.metrics import Metrics
from nnlab.neural_networks import Mat


@pytest.fixture
def rng():
    """Deterministic generator for test data."""
    return np.random.default_rng(1234)


@pytest.fixture
def metrics():
    return Metrics()


@pytest.fixture
def random_mat(rng):
    """Factory for Mats filled with standard normal values."""
    def make(rows, cols):
        return Mat.from_array(rng.standard_normal((rows, cols)))
    return make


@pytest.fixture
def numeric_grad():
    """
    Central-difference estimate of d loss / d mat.

    `loss` is a zero-argument callable re-evaluated after every in-place
    perturbation of `mat`.
    """
    def estimate(loss, mat, eps=1e-6):
        grad = np.zeros(mat.shape)
        for i in range(mat.rows):
            for j in range(mat.cols):
                original = mat[i, j]
                mat[i, j] = original + eps
                plus = loss()
                mat[i, j] = original - eps
                minus = loss()
                mat[i, j] = original
                grad[i, j] = (plus - minus) / (2 * eps)
        return grad
    return estimate


@pytest.fixture
def check_layer_gradients(numeric_grad, rng):
    """
    Compare a layer's analytic gradients against finite differences.

    The scalar loss is sum(layer(x) * R) for a fixed random R, so the
    gradient fed to backward is R itself.
    """
    def check(layer, x, rtol=1e-5, atol=1e-6):
        layer.train()
        out = layer.forward(x)
        weights = rng.standard_normal(out.shape)
        grad_input = layer.backward(Mat.from_array(weights))
        analytic = {name: nabla.to_numpy()
                    for name, (_, nabla) in layer.parameters().items()}

        layer.eval()

        def loss():
            return float(np.sum(layer.forward(x).array * weights))

        np.testing.assert_allclose(grad_input.array, numeric_grad(loss, x),
                                   rtol=rtol, atol=atol)
        for name, (param, _) in layer.parameters().items():
            np.testing.assert_allclose(analytic[name], numeric_grad(loss, param),
                                       rtol=rtol, atol=atol, err_msg=name)
        layer.train()
    return check
