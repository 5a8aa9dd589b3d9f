"""
Error taxonomy shared by the buffer engine, the layers and the training loop.
"""


class NNLabError(Exception):
    """Base class for all errors raised by nnlab."""


class ShapeMismatchError(NNLabError, ValueError):
    """Two operands (or a buffer and its declared shape) do not conform."""


class IndexOutOfRangeError(NNLabError, IndexError):
    """An index or a view window falls outside the declared shape."""


class StateMisuseError(NNLabError, RuntimeError):
    """A layer operation was called out of order (e.g. backward without forward)."""


class StaleViewError(StateMisuseError):
    """A view was used after its owning buffer replaced or released its storage."""


class CheckpointError(NNLabError, OSError):
    """A checkpoint file is missing, unreadable or malformed."""


class DatasetError(NNLabError, ValueError):
    """The training corpus is empty or malformed."""
