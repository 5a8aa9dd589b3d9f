"""
Neural networks module: buffers, primitives, layers, network and optimizers.
"""
from ._matrix import (
    Mat,
    Kernel,
    Tensor,
    multiply,
    concat
)
from .activations import (
    Sigmoid,
    ReLU,
    Tanh,
    get_activation,
    inplace_sigmoid,
    inplace_sigmoid_derivative,
    inplace_relu,
    inplace_relu_derivative,
    inplace_tanh,
    inplace_tanh_derivative,
    inplace_softmax
)
from ._spatial import (
    compute_output_size,
    im2col,
    col2im,
    conv,
    conv_transpose,
    max_pooling,
    max_pooling_prime,
    mean_pooling,
    mean_pooling_prime
)
from .initializers import (
    UniformInit,
    NormalInit,
    XavierInit,
    KaimingInit,
    get_initializer
)
from .layers import (
    Layer,
    FlattenLayer,
    ActivationLayer,
    SigmoidLayer,
    TanhLayer,
    ReLULayer,
    SoftmaxLayer,
    DenseLayer
)
from ._cnn import (
    ConvLayer,
    ParallelConvLayer,
    PoolingLayer
)
from ._recurrent import (RNNLayer, LSTMLayer)
from .losses import (residual, cross_entropy, squared_error)
from .optimizers import (
    Optimizer,
    SGDOptimizer,
    get_optimizer
)
from ._dataset import (one_hot, make_dataset)
from ._network import Network

__all__ = [
    'Mat',
    'Kernel',
    'Tensor',
    'multiply',
    'concat',
    'Sigmoid',
    'ReLU',
    'Tanh',
    'get_activation',
    'inplace_sigmoid',
    'inplace_sigmoid_derivative',
    'inplace_relu',
    'inplace_relu_derivative',
    'inplace_tanh',
    'inplace_tanh_derivative',
    'inplace_softmax',
    'compute_output_size',
    'im2col',
    'col2im',
    'conv',
    'conv_transpose',
    'max_pooling',
    'max_pooling_prime',
    'mean_pooling',
    'mean_pooling_prime',
    'UniformInit',
    'NormalInit',
    'XavierInit',
    'KaimingInit',
    'get_initializer',
    'Layer',
    'FlattenLayer',
    'ActivationLayer',
    'SigmoidLayer',
    'TanhLayer',
    'ReLULayer',
    'SoftmaxLayer',
    'DenseLayer',
    'ConvLayer',
    'ParallelConvLayer',
    'PoolingLayer',
    'RNNLayer',
    'LSTMLayer',
    'residual',
    'cross_entropy',
    'squared_error',
    'Optimizer',
    'SGDOptimizer',
    'get_optimizer',
    'one_hot',
    'make_dataset',
    'Network'
]
