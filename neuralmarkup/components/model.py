"""
Model Component
===============

Holds a declared network and keeps a compiled model in sync with it.

The component compiles on mount() and recompiles on update() whenever the
declared configuration changes by value. Replacing a prop with an equal
value does not recompile; invalidate() forces the next update() to.

Example:
    >>> model = Model(
    ...     [Dense(units=16, activation='relu', input_shape=(4,)), Dense(units=1)],
    ...     optimizer='adam', loss='mse',
    ...     on_compile=lambda compiled: print(compiled.summary()),
    ... )
    >>> model.mount()
    >>> model.update(optimizer='sgd')     # recompiles
    True
"""

import dataclasses
from typing import Any, Callable, Optional, Sequence

import torch

from ..ai.network import CompiledModel, ModelConfig, build_model
from ..errors import ConfigurationError
from ..utils.logger import get_logger

_logger = get_logger(__name__)


class Model:
    """
    Declarative sequential model.

    Attributes:
        config (ModelConfig): Currently declared layers and compile options
        model (CompiledModel): Last compiled model (None before mount)
        compile_count (int): Number of compiles so far
        on_compile: Called with each newly compiled model
    """

    def __init__(
        self,
        layers: Sequence[Any] = (),
        *,
        optimizer: Any = 'sgd',
        loss: Any = 'mean_squared_error',
        metrics: Sequence[str] = (),
        input_shape: Optional[Sequence[int]] = None,
        learning_rate: Optional[float] = None,
        on_compile: Optional[Callable[[CompiledModel], None]] = None,
        device: Optional[torch.device] = None,
    ):
        self.config = ModelConfig(
            layers=tuple(layers),
            optimizer=optimizer,
            loss=loss,
            metrics=metrics,
            input_shape=input_shape,
            learning_rate=learning_rate,
        )
        self.on_compile = on_compile
        self.device = device

        self.model: Optional[CompiledModel] = None
        self.compile_count = 0
        self.mounted = False

        self._compiled_config: Optional[ModelConfig] = None
        self._dirty = True

    def mount(self) -> CompiledModel:
        """Compile the declared network for the first time."""
        self.mounted = True
        return self._compile()

    def update(self, **props) -> bool:
        """
        Replace declared props; recompile if the configuration changed.

        Args:
            **props: Any of layers, optimizer, loss, metrics, input_shape,
                learning_rate, on_compile

        Returns:
            True if a recompile happened
        """
        if 'on_compile' in props:
            self.on_compile = props.pop('on_compile')

        if props:
            try:
                self.config = dataclasses.replace(self.config, **props)
            except TypeError as e:
                raise ConfigurationError(f"Unknown model prop: {e}") from e

        if not self.mounted:
            return False
        if self._dirty or self.config != self._compiled_config:
            self._compile()
            return True
        return False

    def invalidate(self) -> None:
        """Force a recompile on the next update()."""
        self._dirty = True

    def _compile(self) -> CompiledModel:
        model = build_model(self.config, self.device)

        self.model = model
        self._compiled_config = self.config
        self._dirty = False
        self.compile_count += 1
        _logger.debug(f"Compiled model #{self.compile_count}:\n{model.summary()}")

        if callable(self.on_compile):
            self.on_compile(model)
        return model
