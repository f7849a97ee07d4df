"""
Batch Assembly
==============

Pulls labeled samples one at a time from a resumable source (any Python
iterator) and stacks them into an input batch and a target batch.

A source yields ``Sample(x, y)`` values, ``{'x': ..., 'y': ...}`` dicts or
``(x, y)`` pairs. It signals exhaustion by yielding ``None`` or by simply
running out.

Example:
    >>> def source():
    ...     for i in range(10):
    ...         yield Sample(x=[i, i], y=[i % 2])
    >>> it = source()
    >>> with get_batch(it, batch_size=4) as batch:
    ...     batch.xs.shape
    torch.Size([4, 2])
"""

import math
from typing import Any, Iterator, List, NamedTuple, Optional, Union

import numpy as np
import torch

from ..errors import EmptyBatchError


# Batch size meaning "take everything the source has left"
UNBOUNDED = math.inf

DEFAULT_BATCH_SIZE = 32


class Sample(NamedTuple):
    """One labeled sample."""
    x: Any
    y: Any


class Batch:
    """
    Stacked inputs and targets for a single fit or evaluate call.

    Owned by one training step and released with dispose() (or by leaving
    a ``with`` block) once that step is done.
    """

    def __init__(self, xs: torch.Tensor, ys: torch.Tensor):
        self.xs: Optional[torch.Tensor] = xs
        self.ys: Optional[torch.Tensor] = ys
        self.size = xs.shape[0]

    @property
    def disposed(self) -> bool:
        return self.xs is None

    def dispose(self) -> None:
        """Drop the tensor references so their memory can be reclaimed."""
        self.xs = None
        self.ys = None

    def __enter__(self) -> 'Batch':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.dispose()

    def __repr__(self) -> str:
        if self.disposed:
            return f"Batch(size={self.size}, disposed)"
        return f"Batch(xs={tuple(self.xs.shape)}, ys={tuple(self.ys.shape)})"


def _unpack(sample: Any) -> Sample:
    if isinstance(sample, Sample):
        return sample
    if isinstance(sample, dict):
        return Sample(sample['x'], sample['y'])
    x, y = sample
    return Sample(x, y)


def _stack(values: List[Any]) -> torch.Tensor:
    """Stack tensor elements, or bulk-convert plain arrays and numbers."""
    if isinstance(values[0], torch.Tensor):
        return torch.stack(values)
    return torch.as_tensor(np.asarray(values), dtype=torch.float32)


def get_batch(source: Iterator[Any], batch_size: Union[int, float] = DEFAULT_BATCH_SIZE) -> Batch:
    """
    Pull up to batch_size samples from source and stack them.

    Args:
        source: Resumable sample iterator; partially consumed on return
        batch_size: Maximum samples to pull, or UNBOUNDED for all remaining

    Returns:
        Batch with min(available, batch_size) samples

    Raises:
        EmptyBatchError: the source had nothing left
    """
    xs: List[Any] = []
    ys: List[Any] = []

    while len(xs) < batch_size:
        sample = next(source, None)
        # None or an empty mapping marks the end of the source
        if sample is None or (isinstance(sample, dict) and not sample):
            break
        sample = _unpack(sample)
        xs.append(sample.x)
        ys.append(sample.y)

    if not xs:
        raise EmptyBatchError()

    return Batch(_stack(xs), _stack(ys))
