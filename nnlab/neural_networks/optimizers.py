"""
Optimizers for neural networks.

An optimizer owns the training corpus, decides the shuffled visiting order
and the minibatch boundaries, and applies the parameter update rule to the
gradients each layer accumulated over a minibatch.
"""
import numpy as np

from ..common.exceptions import DatasetError, ShapeMismatchError
from ._matrix import Mat


class Optimizer:
    """
    Base class holding the dataset, the cursor and the batch bookkeeping.

    Attributes:
        index (int): Position in the shuffled order of the current batch,
            always in [0, N)
        accumulated (int): Number of samples whose gradients the layers hold
            since the last update
    """

    def __init__(self, training_data=None, batch_size=10, random_state=42):
        """
        Args:
            training_data (list): (input Mat, target Mat) pairs
            batch_size (int): Samples per minibatch
            random_state (int): Seed of the shuffling generator (fixed by default)
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {batch_size}")
        self.batch_size = batch_size
        self.random_state = random_state
        self._rng = np.random.default_rng(random_state)
        self.training_data = []
        self._order = np.arange(0)
        self.index = 0
        self.accumulated = 0
        if training_data is not None:
            self.set_data(training_data)

    def set_data(self, training_data):
        """Replace the corpus; the visiting order is reset to dataset order."""
        self.training_data = list(training_data)
        self._order = np.arange(len(self.training_data))
        self.index = 0
        self.accumulated = 0

    def count(self):
        return len(self.training_data)

    def __len__(self):
        return self.count()

    def _check_data(self):
        if not self.training_data:
            raise DatasetError("The optimizer holds no training data")

    def shuffle(self):
        """Draw a uniformly random visiting order from the seeded generator."""
        self._check_data()
        self._order = self._rng.permutation(len(self.training_data))
        self.index = 0

    def batches(self):
        """
        Yield minibatches as lists of (input, target) pairs in visiting order.

        The last batch holds whatever remains. `accumulated` is set to the
        size of each batch before it is handed out.
        """
        self._check_data()
        for start in range(0, len(self._order), self.batch_size):
            batch = [self.training_data[k] for k in self._order[start:start + self.batch_size]]
            self.index = start
            self.accumulated = len(batch)
            yield batch
        self.index = 0

    def optimize(self, param, nabla, key=None):
        """Update `param` in place from its accumulated gradient `nabla`."""
        raise NotImplementedError


class SGDOptimizer(Optimizer):
    """
    Stochastic Gradient Descent optimizer with optional momentum.

    param <- param - (lr / accumulated) * nabla, where `accumulated` is the
    number of samples behind `nabla`, so a short final batch is scaled by
    its real size.
    """

    def __init__(self, training_data=None, lr=0.01, batch_size=10, momentum=0.0,
                 random_state=42):
        """
        Initialize SGD optimizer.

        Args:
            training_data (list): (input Mat, target Mat) pairs
            lr (float): Learning rate
            batch_size (int): Samples per minibatch
            momentum (float): Momentum factor (0 disables momentum)
            random_state (int): Seed of the shuffling generator (fixed by default)
        """
        super().__init__(training_data, batch_size, random_state)
        self.lr = lr
        self.momentum = momentum
        self.velocities = {}

    def optimize(self, param, nabla, key=None):
        """
        Update weights using SGD.

        Args:
            param (Mat): Parameter, updated in place
            nabla (Mat): Gradient summed over the minibatch
            key (hashable): Identifies the parameter across calls; required
                with momentum

        Returns:
            Mat: The updated parameter
        """
        if param.shape != nabla.shape:
            raise ShapeMismatchError(
                f"Parameter {param.shape} and gradient {nabla.shape} differ in shape")
        samples = self.accumulated or self.batch_size
        step = nabla * (self.lr / samples)

        if not self.momentum:
            param -= step
            return param

        if key is None:
            raise ValueError("SGD with momentum needs a parameter key")
        velocity = self.velocities.get(key)
        if velocity is None or velocity.shape != param.shape:
            velocity = Mat(*param.shape)
            self.velocities[key] = velocity
        velocity.scale(self.momentum)
        velocity -= step
        param += velocity
        return param


def get_optimizer(solver='sgd', **kwargs):
    """
    Factory function to get optimizer instances.

    Args:
        solver (str): Optimizer type ('sgd', 'momentum')
        **kwargs: Optimizer-specific parameters

    Returns:
        Optimizer instance
    """
    if solver == 'sgd':
        return SGDOptimizer(**kwargs)
    if solver == 'momentum':
        kwargs.setdefault('momentum', 0.9)
        return SGDOptimizer(**kwargs)
    raise ValueError(f"Unknown solver: {solver}")
