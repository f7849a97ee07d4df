"""
Error taxonomy.

Every failure is terminal for the current training run: nothing here is
retried or recovered from. Errors raised by PyTorch itself (shape
mismatches and the like) are not wrapped and reach the host unchanged.
"""

from typing import Any


class NeuralMarkupError(Exception):
    """Base class for all neuralmarkup errors."""


class InvalidLayerKind(NeuralMarkupError):
    """A layer declaration is not one of the supported kinds."""

    def __init__(self, descriptor: Any, reason: str = 'Invalid layer'):
        self.descriptor = descriptor
        super().__init__(f"{reason}: {descriptor!r}")


class EmptyBatchError(NeuralMarkupError):
    """The sample source produced nothing for a requested batch."""

    def __init__(self, message: str = (
        'No data returned from data generator for batch, check sample length'
    )):
        super().__init__(message)


class ConfigurationError(NeuralMarkupError):
    """Unknown optimizer, loss or metric, or invalid training parameters."""


class TrainingLoopError(NeuralMarkupError):
    """The training loop was advanced while busy or after it finished."""
