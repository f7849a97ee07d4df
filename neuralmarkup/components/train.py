"""
Train Component
===============

Drives a TrainingLoop from host events.

Lifecycle:
    1. mount() mounts the child Model; its compile hands the compiled
       model to Train, which creates a TrainingLoop and schedules the
       first advance on the running asyncio event loop.
    2. set_train(False) pauses at the next batch boundary; set_train(True)
       resumes exactly where training stopped.
    3. Every recompile of the child Model abandons the current loop at its
       next batch boundary, clears the metrics and starts a fresh loop.
    4. wait() resolves with the final model, or raises the training error.

Must be mounted from inside a running asyncio event loop. Threads (such as
the web dashboard's) toggle training through request_train().

Example:
    >>> async def main():
    ...     trainer = Train(model, epochs=2, batch_size=32, samples=1024,
    ...                     train_data=make_source, on_train_end=print)
    ...     trainer.mount()
    ...     return await trainer.wait()
    >>> asyncio.run(main())
"""

import asyncio
from typing import Any, Callable, Dict, List, Optional, Set

from .model import Model
from ..ai.network import CompiledModel
from ..ai.trainer import SourceFactory, TrainingLoop, TrainingMetrics, TrainingState
from ..config import Config
from ..utils.logger import get_logger

_logger = get_logger(__name__)


class Train:
    """
    Host for a pausable training run.

    Attributes:
        model (Model): Child model component
        train (bool): Pause flag; training proceeds only while True
        metrics (TrainingMetrics): Metric history for every loop of this host
        loop (TrainingLoop): Loop for the most recently compiled model
        result (CompiledModel): Final model once training ended
        error (Exception): Training error, if training failed
    """

    def __init__(
        self,
        model: Model,
        *,
        train_data: SourceFactory,
        epochs: Optional[int] = None,
        batch_size: Optional[int] = None,
        samples: Optional[int] = None,
        validation_data: Optional[SourceFactory] = None,
        display: bool = False,
        train: bool = True,
        on_batch_end: Optional[Callable[[Dict[str, List[float]], CompiledModel], None]] = None,
        on_train_end: Optional[Callable[[CompiledModel], None]] = None,
        on_error: Optional[Callable[[BaseException], None]] = None,
        dashboard: Any = None,
        config: Optional[Config] = None,
    ):
        self.config = config or Config()
        self.model = model
        self.train_data = train_data
        self.epochs = epochs if epochs is not None else self.config.EPOCHS
        self.batch_size = batch_size if batch_size is not None else self.config.BATCH_SIZE
        self.samples = samples if samples is not None else self.config.SAMPLES
        self.validation_data = validation_data
        self.display = display
        self.train = bool(train)
        self.on_batch_end = on_batch_end
        self.on_train_end = on_train_end
        self.on_error = on_error
        self.dashboard = dashboard

        self.metrics = TrainingMetrics()
        self.loop: Optional[TrainingLoop] = None
        self.result: Optional[CompiledModel] = None
        self.error: Optional[BaseException] = None

        self._event_loop: Optional[asyncio.AbstractEventLoop] = None
        self._finished: Optional[asyncio.Event] = None
        self._child_on_compile: Optional[Callable[[CompiledModel], None]] = None
        self._tasks: List[asyncio.Task] = []
        # Loops with an advance() scheduled but not yet started
        self._pending: Set[TrainingLoop] = set()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def mount(self) -> None:
        """Mount the child model and start training once it compiles."""
        self._event_loop = asyncio.get_running_loop()
        self._finished = asyncio.Event()

        self._child_on_compile = self.model.on_compile
        self.model.on_compile = self._on_compile

        if self.dashboard is not None:
            self.dashboard.attach(self)

        self.model.mount()

    def set_train(self, train: bool) -> None:
        """Update the pause flag; a False -> True change resumes training."""
        previous = self.train
        self.train = bool(train)

        if self.dashboard is not None:
            self.dashboard.publisher.set_paused(not self.train)

        if self.train and not previous:
            _logger.info("Training resumed")
            loop = self.loop
            if loop is not None and loop.state == TrainingState.SUSPENDED:
                self._schedule_advance(loop)
        elif previous and not self.train:
            _logger.info("Training paused")

    def request_train(self, train: bool) -> None:
        """Thread-safe set_train() for callers outside the event loop."""
        if self._event_loop is None:
            raise RuntimeError("Train component is not mounted")
        self._event_loop.call_soon_threadsafe(self.set_train, train)

    async def wait(self) -> CompiledModel:
        """Wait for training to end; return the final model or raise its error."""
        if self._finished is None:
            raise RuntimeError("Train component is not mounted")
        await self._finished.wait()
        if self.error is not None:
            raise self.error
        return self.result

    def render(self) -> Optional[List[Dict[str, Any]]]:
        """Plot data for each metric, or None when display is off."""
        if not self.display:
            return None
        return self.metrics.to_plot_data(
            color=self.config.PLOT_COLOR,
            width=self.config.PLOT_WIDTH,
            height=self.config.PLOT_HEIGHT,
        )

    @property
    def state(self) -> Optional[TrainingState]:
        return self.loop.state if self.loop is not None else None

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _on_compile(self, compiled: CompiledModel) -> None:
        if callable(self._child_on_compile):
            self._child_on_compile(compiled)

        if self.loop is not None:
            if not self.loop.finished:
                _logger.info("Model recompiled; restarting training with the new model")
                self.loop.abandon()
            self.metrics.clear()

        self.loop = TrainingLoop(
            compiled,
            epochs=self.epochs,
            batch_size=self.batch_size,
            samples=self.samples,
            train_data=self.train_data,
            validation_data=self.validation_data,
            display=self.display,
            is_training=lambda: self.train,
            metrics=self.metrics,
            on_batch_end=self.on_batch_end,
            on_train_end=self._handle_train_end,
        )
        self._schedule_advance(self.loop)

    def _schedule_advance(self, loop: TrainingLoop) -> None:
        if loop in self._pending or loop.advancing:
            return
        self._pending.add(loop)
        task = self._event_loop.create_task(self._advance(loop))
        self._tasks.append(task)
        task.add_done_callback(lambda t: self._on_advance_done(loop, t))

    async def _advance(self, loop: TrainingLoop) -> TrainingState:
        # advance() marks the loop as advancing before its first await
        self._pending.discard(loop)
        return await loop.advance()

    def _on_advance_done(self, loop: TrainingLoop, task: asyncio.Task) -> None:
        self._tasks.remove(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is None:
            return
        if loop is not self.loop:
            _logger.warning(f"Replaced training loop failed: {type(error).__name__}: {error}")
            return

        self.error = error
        if callable(self.on_error):
            self.on_error(error)
        else:
            _logger.error(f"Training failed: {type(error).__name__}: {error}")
        self._finished.set()

    def _handle_train_end(self, compiled: CompiledModel) -> None:
        if compiled is not self.model.model:
            return
        if callable(self.on_train_end):
            self.on_train_end(compiled)
        if self.display:
            _logger.info(f"Training metrics:\n{self.metrics.summary()}")
        self.result = compiled
        self._finished.set()
