"""
Parameter initializers.

Every initializer draws from a `numpy.random.Generator` supplied by the
caller, so a whole network is reproducible from one seed.
"""
import numpy as np


class Initializer:
    """Base class for sampling strategies."""

    def generate(self, rng):
        """Draw a single value."""
        return float(self.sample(rng, 1)[0])

    def sample(self, rng, size):
        """Draw `size` values in order."""
        raise NotImplementedError

    def __call__(self, rng):
        return self.generate(rng)


class UniformInit(Initializer):
    """Uniform on [a, b)."""

    def __init__(self, a=0.0, b=1.0):
        self.a = a
        self.b = b

    def sample(self, rng, size):
        return rng.uniform(self.a, self.b, size)

    def __repr__(self):
        return f"UniformInit(a={self.a}, b={self.b})"


class NormalInit(Initializer):
    """Gaussian with the given mean and standard deviation."""

    def __init__(self, mean=0.0, std=1.0):
        self.mean = mean
        self.std = std

    def sample(self, rng, size):
        return rng.normal(self.mean, self.std, size)

    def __repr__(self):
        return f"NormalInit(mean={self.mean}, std={self.std})"


class _ScaledInit(Initializer):
    """Zero-centred normal or uniform draw scaled by a fan count."""

    def __init__(self, method):
        if method not in ('normal', 'uniform'):
            raise ValueError(f"Unknown method: {method}")
        self.method = method

    def _fan(self):
        raise NotImplementedError

    def sample(self, rng, size):
        fan = self._fan()
        if self.method == 'normal':
            return rng.normal(0.0, np.sqrt(2.0 / fan), size)
        limit = np.sqrt(6.0 / fan)
        return rng.uniform(-limit, limit, size)


class XavierInit(_ScaledInit):
    """
    Xavier/Glorot initialization.

    normal: N(0, sqrt(2 / n)); uniform: U(-sqrt(6 / n), sqrt(6 / n)),
    where n is the fan count given by the layer.
    """

    def __init__(self, n, method='normal'):
        super().__init__(method)
        self.n = n

    def _fan(self):
        return self.n

    def __repr__(self):
        return f"XavierInit(n={self.n}, method='{self.method}')"


class KaimingInit(_ScaledInit):
    """
    Kaiming/He initialization with a leaky slope term.

    The scale uses bound = (1 + a2) * n in place of n.
    """

    def __init__(self, n, a2=5, method='normal'):
        super().__init__(method)
        self.n = n
        self.a2 = a2

    def _fan(self):
        return (1 + self.a2) * self.n

    def __repr__(self):
        return f"KaimingInit(n={self.n}, a2={self.a2}, method='{self.method}')"


def get_initializer(kind='kaiming', n=1):
    """
    Factory function to get initializer instances.

    Args:
        kind (str or Initializer): 'uniform', 'normal', 'xavier', 'kaiming'
            or an already built initializer (returned unchanged)
        n (int): Fan count used by the scaled initializers

    Returns:
        Initializer instance
    """
    if isinstance(kind, Initializer):
        return kind
    if kind == 'kaiming':
        return KaimingInit(n)
    if kind == 'xavier':
        return XavierInit(n)
    if kind == 'uniform':
        return UniformInit()
    if kind == 'normal':
        return NormalInit()
    raise ValueError(f"Unknown initializer: {kind}")
