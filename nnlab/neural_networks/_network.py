"""
Network: an ordered stack of layers trained by an optimizer.
"""
import logging
import math
from contextlib import nullcontext

import numpy as np

from ..base import BaseClassifier
from ..common.exceptions import CheckpointError
from ._dataset import as_sample, make_dataset
from .losses import cross_entropy, residual

logger = logging.getLogger(__name__)


class Network(BaseClassifier):
    """
    Ordered composition of layers.

    `forward` and `backward` handle one sample at a time; gradients pile up
    in the layers until `learn` hands them to the optimizer, which `train`
    does at every minibatch boundary.
    """

    _trainable_attributes = ("layers",)

    def __init__(self, layers, optimizer=None, cost=residual, loss=cross_entropy,
                 epochs=1, n_classes=None, input_shape=None, metrics=None,
                 verbose=False):
        """
        Args:
            layers (list): Layers applied in order
            optimizer (Optimizer): Owns the corpus and the update rule
            cost (callable): (result, target) -> gradient seeding backward;
                the default residual assumes a paired activation and loss
            loss (callable): (result, target) -> float, for reporting only
            epochs (int): Passes over the corpus made by `train` / `fit`
            n_classes (int): Width of one-hot targets built by `fit`
            input_shape (tuple): (rows, cols) array samples are reshaped to
            metrics (Metrics): Collector shared with every layer
            verbose (bool): Log training progress at INFO instead of DEBUG
        """
        self.layers = list(layers)
        self.optimizer = optimizer
        self.cost = cost
        self.loss = loss
        self.epochs = epochs
        self.n_classes = n_classes
        self.input_shape = input_shape
        self.verbose = verbose
        self.metrics = metrics
        self.loss_curve_ = []

    @property
    def metrics(self):
        return self._metrics

    @metrics.setter
    def metrics(self, metrics):
        self._metrics = metrics
        for layer in self.layers:
            layer.metrics = metrics

    def _timer(self, name):
        return self._metrics.timer(name) if self._metrics is not None else nullcontext()

    def _require_optimizer(self):
        if self.optimizer is None:
            raise ValueError("Network has no optimizer")

    def trainable_params(self):
        return {f"{index}.{name}": param
                for index, layer in enumerate(self.layers)
                for name, (param, _) in layer.parameters().items()}

    def randomize(self, seed=42):
        """Sample every layer's parameters from one generator seeded with `seed`."""
        rng = np.random.default_rng(seed)
        for layer in self.layers:
            layer.randomize(rng)
        return self

    def forward(self, x):
        """Apply every layer in order and return the final activation."""
        with self._timer('forward'):
            for layer in self.layers:
                x = layer.forward(x)
        return x

    def backward(self, result, target):
        """Seed the gradient with the cost function and run the layers in reverse."""
        with self._timer('backward'):
            delta = self.cost(result, target)
            for layer in reversed(self.layers):
                delta = layer.backward(delta)
        return delta

    def learn(self, samples=None):
        """
        Apply the accumulated gradients of every layer and zero them.

        Args:
            samples (int): Number of samples behind the gradients; defaults to
                the size of the batch the optimizer handed out last
        """
        self._require_optimizer()
        if samples is not None:
            self.optimizer.accumulated = samples
        for layer in self.layers:
            layer.learn(self.optimizer)
        self.optimizer.accumulated = 0

    def train(self, epochs=None):
        """
        Minibatch training over the optimizer's corpus.

        Each epoch shuffles the corpus, runs forward and backward on every
        sample, and calls `learn` after each batch.

        Returns:
            list: loss_curve_, the mean loss of every epoch trained so far
        """
        self._require_optimizer()
        epochs = self.epochs if epochs is None else epochs
        level = logging.INFO if self.verbose else logging.DEBUG
        n_batches = math.ceil(self.optimizer.count() / self.optimizer.batch_size)
        self.train_mode()

        for epoch in range(epochs):
            self.optimizer.shuffle()
            total = 0.0
            for batch_no, batch in enumerate(self.optimizer.batches(), start=1):
                for x, target in batch:
                    result = self.forward(x)
                    total += self.loss(result, target)
                    self.backward(result, target)
                self.learn()
                if batch_no % 100 == 0:
                    logger.log(level, "Processing batches: %d/%d", batch_no, n_batches)

            epoch_loss = total / self.optimizer.count()
            self.loss_curve_.append(epoch_loss)
            logger.log(level, "Epoch %d/%d, loss: %.4f", epoch + 1, epochs, epoch_loss)
        return self.loss_curve_

    def fit(self, X, y):
        """Training: fit(X, y) -> self"""
        self._require_optimizer()
        dataset = make_dataset(X, y, n_classes=self.n_classes, input_shape=self.input_shape)
        self.optimizer.set_data(dataset)
        self.train()
        return self

    def _samples(self, X):
        if isinstance(X, np.ndarray):
            return [as_sample(x, self.input_shape) for x in X]
        return list(X)

    def predict(self, X):
        """Prediction: index of the largest output for every sample"""
        training = all(layer.training for layer in self.layers)
        self.eval_mode()
        try:
            predictions = [int(np.argmax(self.forward(x).array)) for x in self._samples(X)]
        finally:
            if training:
                self.train_mode()
        return np.array(predictions, dtype=int)

    def evaluate(self, dataset):
        """Fraction of (input, one-hot target) pairs whose argmax matches."""
        dataset = list(dataset)
        if not dataset:
            return 0.0
        predictions = self.predict([x for x, _ in dataset])
        labels = np.array([int(np.argmax(target.array)) for _, target in dataset])
        return float(np.mean(predictions == labels))

    def train_mode(self):
        for layer in self.layers:
            layer.train()

    def eval_mode(self):
        for layer in self.layers:
            layer.eval()

    def reset_state(self):
        """Reset the state of every recurrent layer."""
        for layer in self.layers:
            if hasattr(layer, 'reset_state'):
                layer.reset_state()

    def save(self, stream):
        """Write every layer's parameters, in layer order, to a text stream."""
        for layer in self.layers:
            layer.save(stream)

    def load(self, stream):
        """
        Read parameters written by `save`.

        Everything is parsed and shape-checked before any layer changes, so
        a bad checkpoint leaves the network untouched.
        """
        tokens = iter(stream.read().split())
        staged = [layer.read_parameters(tokens) for layer in self.layers]
        if next(tokens, None) is not None:
            raise CheckpointError("Checkpoint holds more values than the network has parameters")
        for layer, values in zip(self.layers, staged):
            layer.assign_parameters(values)

    def save_checkpoint(self, path):
        try:
            with open(path, 'w', encoding='utf-8') as stream:
                self.save(stream)
        except OSError as exc:
            raise CheckpointError(f"Cannot write checkpoint {path}: {exc}") from exc
        logger.info("Saved checkpoint to %s", path)

    def load_checkpoint(self, path):
        try:
            with open(path, encoding='utf-8') as stream:
                self.load(stream)
        except CheckpointError:
            raise
        except OSError as exc:
            raise CheckpointError(f"Cannot read checkpoint {path}: {exc}") from exc
        logger.info("Loaded checkpoint from %s", path)

    def __repr__(self):
        inner = ",\n    ".join(repr(layer) for layer in self.layers)
        return f"Network([\n    {inner}\n])"
