"""
Training Loop
=============

A cooperative, pausable training loop:
    1. For each epoch, open a fresh training source
    2. Before every batch, check the host's pause flag
    3. Fit one stacked batch without blocking the event loop
    4. Report metrics and release the batch
    5. After each epoch, evaluate on the validation source (if any)

The loop is a single asyncio-driven state object. The host advances it
with ``await loop.advance()``; it returns as soon as the pause flag is found
False (state SUSPENDED) or training ends. Nothing but another advance() call
moves it past a suspension.

States:
    IDLE -> RUNNING <-> SUSPENDED
                    -> COMPLETED
                    -> FAILED
    RUNNING | SUSPENDED -> ABANDONED   (abandon(), at the next batch boundary)
"""

import asyncio
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

import numpy as np

from .batching import UNBOUNDED, get_batch
from .network import CompiledModel
from ..errors import ConfigurationError, TrainingLoopError
from ..utils.logger import get_logger, log_training_metrics

_logger = get_logger(__name__)

History = Dict[str, List[float]]
SourceFactory = Callable[[], Iterable[Any]]


class TrainingState(Enum):
    IDLE = 'idle'
    RUNNING = 'running'
    SUSPENDED = 'suspended'
    COMPLETED = 'completed'
    FAILED = 'failed'
    ABANDONED = 'abandoned'


class TrainingMetrics:
    """
    Per-metric history of reported values.

    Each push appends the current value of every reported metric; unseen
    metric names start a new series. Series are never trimmed, so memory
    grows with the number of batches trained.
    """

    def __init__(self):
        self.history: Dict[str, List[float]] = {}
        self._listeners: List[Callable[['TrainingMetrics'], None]] = []

    def push(self, metrics: Mapping[str, Sequence[float]]) -> None:
        """Append the first value of each metric in a Keras-style history."""
        for name, values in metrics.items():
            self.history.setdefault(name, []).append(float(values[0]))
        for listener in list(self._listeners):
            listener(self)

    def clear(self) -> None:
        """Drop every series and notify listeners."""
        self.history.clear()
        for listener in list(self._listeners):
            listener(self)

    def on_update(self, callback: Callable[['TrainingMetrics'], None]) -> None:
        """Register a callback run after every push."""
        self._listeners.append(callback)

    def names(self) -> List[str]:
        return list(self.history)

    def get(self, name: str) -> List[float]:
        return list(self.history.get(name, []))

    def latest(self) -> Dict[str, float]:
        return {name: values[-1] for name, values in self.history.items() if values}

    def get_recent_average(self, name: str, n: int = 100) -> Optional[float]:
        """Average of the last n values for a metric (None if no values)."""
        values = self.history.get(name)
        if not values:
            return None
        return float(np.mean(values[-n:]))

    def __len__(self) -> int:
        return len(self.history)

    def __contains__(self, name: str) -> bool:
        return name in self.history

    def to_plot_data(
        self,
        color: str = '#1a9afc',
        width: int = 420,
        height: int = 340
    ) -> List[Dict[str, Any]]:
        """One Plotly figure (data + layout) per metric."""
        figures = []
        for name, values in self.history.items():
            figures.append({
                'name': name,
                'data': [{
                    'x': list(range(len(values))),
                    'y': list(values),
                    'type': 'scatter',
                    'mode': 'lines+markers',
                    'marker': {'color': color},
                }],
                'layout': {'width': width, 'height': height, 'title': name},
            })
        return figures

    def summary(self) -> str:
        """Text summary: one line per metric."""
        if not self.history:
            return "No metrics recorded"
        lines = []
        for name, values in self.history.items():
            lines.append(
                f"{name:<24} n={len(values):<6d} last={values[-1]:.4f} "
                f"min={min(values):.4f} max={max(values):.4f}"
            )
        return "\n".join(lines)


class TrainingLoop:
    """
    Pausable batch-by-batch training of a compiled model.

    Attributes:
        state (TrainingState): Current lifecycle state
        epoch (int): Epoch being trained
        batch (int): Batch index within the epoch
        fit_calls (int): Batches fitted so far
        evaluate_calls (int): Validation passes run so far

    Example:
        >>> flag = {'train': True}
        >>> loop = TrainingLoop(model, epochs=2, batch_size=32, samples=1024,
        ...                     train_data=make_source, is_training=lambda: flag['train'])
        >>> await loop.advance()
        <TrainingState.COMPLETED: 'completed'>
    """

    def __init__(
        self,
        model: CompiledModel,
        *,
        epochs: int,
        batch_size: int,
        samples: int,
        train_data: SourceFactory,
        is_training: Callable[[], bool],
        validation_data: Optional[SourceFactory] = None,
        display: bool = False,
        metrics: Optional[TrainingMetrics] = None,
        on_batch_end: Optional[Callable[[History, CompiledModel], None]] = None,
        on_train_end: Optional[Callable[[CompiledModel], None]] = None,
    ):
        for name, value in (('epochs', epochs), ('batch_size', batch_size), ('samples', samples)):
            if not isinstance(value, int) or value <= 0:
                raise ConfigurationError(f"{name} must be a positive integer, got {value!r}")
        if not callable(train_data):
            raise ConfigurationError("train_data must be a zero-argument source factory")

        self.model = model
        self.epochs = epochs
        self.batch_size = batch_size
        self.samples = samples
        self.train_data = train_data
        self.validation_data = validation_data
        self.display = display
        self.metrics = metrics if metrics is not None else TrainingMetrics()

        self._is_training = is_training
        self._on_batch_end = on_batch_end if callable(on_batch_end) else (lambda history, model: None)
        self._on_train_end = on_train_end if callable(on_train_end) else (lambda model: None)

        self.state = TrainingState.IDLE
        self.epoch = 0
        self.batch = 0
        self.fit_calls = 0
        self.evaluate_calls = 0

        self._advancing = False
        self._abandoned = False
        self._steps = self._run()

    @property
    def advancing(self) -> bool:
        """True while an advance() call is outstanding."""
        return self._advancing

    @property
    def finished(self) -> bool:
        return self.state in (TrainingState.COMPLETED, TrainingState.FAILED, TrainingState.ABANDONED)

    @property
    def abandoned(self) -> bool:
        return self._abandoned

    def abandon(self) -> None:
        """
        Stop at the next batch boundary without reporting anything further.

        A fit already running is not interrupted, but its results are
        discarded. A loop that is not advancing stops immediately.
        """
        if self.finished or self._abandoned:
            return
        self._abandoned = True
        if not self._advancing:
            self._stop_abandoned()

    async def advance(self) -> TrainingState:
        """
        Run until the next pause-flag suspension or the end of training.

        Returns:
            The state reached (SUSPENDED, COMPLETED, ABANDONED)

        Raises:
            TrainingLoopError: called concurrently or after training ended
            Exception: whatever fit/evaluate/callbacks raised (state FAILED)
        """
        if self.state is TrainingState.ABANDONED:
            return self.state
        if self._advancing:
            raise TrainingLoopError("advance() called while a previous advance is still running")
        if self.finished:
            raise TrainingLoopError(f"Training loop already {self.state.value}")

        self._advancing = True
        try:
            await self._steps.__anext__()
        except StopAsyncIteration:
            pass
        finally:
            self._advancing = False
        return self.state

    async def _run(self):
        try:
            for epoch in range(self.epochs):
                self.epoch = epoch
                source = iter(self.train_data())

                batch_index = 0
                while batch_index * self.batch_size < self.samples:
                    while not self._abandoned and not self._is_training():
                        self.state = TrainingState.SUSPENDED
                        _logger.debug(f"Suspended before epoch {epoch} batch {batch_index}")
                        yield

                    if self._abandoned:
                        self._stop_abandoned()
                        return

                    self.state = TrainingState.RUNNING
                    self.batch = batch_index
                    await self._fit_batch(source)
                    batch_index += 1

                    if self.display:
                        # Let the host repaint before the next batch
                        await asyncio.sleep(0)

                if self._abandoned:
                    self._stop_abandoned()
                    return

                if self.validation_data is not None:
                    self.state = TrainingState.RUNNING
                    await self._validate()

                average = self.metrics.get_recent_average('loss', batch_index)
                _logger.info(
                    f"Epoch {epoch + 1}/{self.epochs} done ({batch_index} batches"
                    + (f", avg loss {average:.4f})" if average is not None else ")")
                )

            if self._abandoned:
                self._stop_abandoned()
                return

            self._on_train_end(self.model)
            self.state = TrainingState.COMPLETED
            _logger.info(f"Training complete after {self.fit_calls} batches")
        except Exception as e:
            self.state = TrainingState.FAILED
            _logger.error(f"Training failed at epoch {self.epoch} batch {self.batch}: {type(e).__name__}: {e}")
            raise

    def _stop_abandoned(self) -> None:
        self.state = TrainingState.ABANDONED
        _logger.info(f"Training loop abandoned at epoch {self.epoch} batch {self.batch}")

    async def _fit_batch(self, source) -> None:
        batch = get_batch(source, self.batch_size)
        try:
            history = await asyncio.to_thread(
                self.model.fit, batch.xs, batch.ys, batch_size=batch.size, epochs=1
            )
        finally:
            batch.dispose()

        self.fit_calls += 1
        if self._abandoned:
            return
        self._on_batch_end(history, self.model)
        # on_batch_end may itself trigger a recompile
        if self._abandoned:
            return
        self.metrics.push(history)
        log_training_metrics(self.epoch, self.batch, history)

    async def _validate(self) -> None:
        source = iter(self.validation_data())
        batch = get_batch(source, UNBOUNDED)
        try:
            values = await asyncio.to_thread(
                self.model.evaluate, batch.xs, batch.ys, batch_size=self.batch_size
            )
        finally:
            batch.dispose()

        self.evaluate_calls += 1
        if self._abandoned:
            return
        history = {
            f'validation-{name}': [value]
            for name, value in zip(self.model.metrics_names, values)
        }
        self.metrics.push(history)
        log_training_metrics(self.epoch, self.batch, history)
