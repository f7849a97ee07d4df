"""
Sequential Network Builder
==========================

Turns an ordered list of layer descriptors plus a compile configuration
into a ``CompiledModel``: a ``torch.nn.Sequential`` with an optimizer, a
loss function and a set of metric functions bound to it.

Compile configuration:
    optimizer - 'sgd', 'adam', 'rmsprop', 'adagrad' or a torch.optim.Optimizer subclass
    loss      - 'mean_squared_error', 'mean_absolute_error', 'binary_crossentropy',
                'categorical_crossentropy', 'sparse_categorical_crossentropy'
                (short aliases 'mse' and 'mae') or a callable (pred, target) -> scalar
    metrics   - any of 'accuracy' ('acc'), 'mse', 'mae'

Cross-entropy losses expect probabilities, i.e. a network ending in a
softmax or sigmoid activation, with one-hot (categorical) or integer
(sparse) targets.

Example:
    >>> config = ModelConfig(
    ...     layers=[Dense(units=8, activation='relu', input_shape=(4,)), Dense(units=1)],
    ...     optimizer='adam',
    ...     loss='mse',
    ... )
    >>> model = build_model(config)
    >>> history = model.fit(xs, ys)           # {'loss': [0.42]}
    >>> model.evaluate(xs, ys)                # [0.40]
"""

import os
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Type, Union

import torch
import torch.nn as nn
import torch.nn.functional as F
import torch.optim as optim
from torch.nn.parameter import UninitializedParameter

from .layers import LayerDescriptor, layer_from_dict, layer_to_dict, resolve_layer
from ..errors import ConfigurationError
from ..utils.logger import get_logger, log_model_event

_logger = get_logger(__name__)

# Clamp for log() in cross-entropy losses
_EPSILON = 1e-7

LossFn = Callable[[torch.Tensor, torch.Tensor], torch.Tensor]


# =============================================================================
# Losses
# =============================================================================

def _categorical_crossentropy(pred: torch.Tensor, target: torch.Tensor) -> torch.Tensor:
    return -(target * torch.log(pred.clamp(_EPSILON, 1.0))).sum(dim=-1).mean()


def _sparse_categorical_crossentropy(pred: torch.Tensor, target: torch.Tensor) -> torch.Tensor:
    log_probs = torch.log(pred.clamp(_EPSILON, 1.0))
    return F.nll_loss(log_probs.reshape(-1, pred.shape[-1]), target.long().reshape(-1))


def _binary_crossentropy(pred: torch.Tensor, target: torch.Tensor) -> torch.Tensor:
    return F.binary_cross_entropy(pred.clamp(_EPSILON, 1.0 - _EPSILON), target)


LOSSES: Dict[str, LossFn] = {
    'mean_squared_error': F.mse_loss,
    'mse': F.mse_loss,
    'mean_absolute_error': F.l1_loss,
    'mae': F.l1_loss,
    'binary_crossentropy': _binary_crossentropy,
    'categorical_crossentropy': _categorical_crossentropy,
    'sparse_categorical_crossentropy': _sparse_categorical_crossentropy,
}


# =============================================================================
# Metrics
# =============================================================================

def _accuracy(pred: torch.Tensor, target: torch.Tensor) -> torch.Tensor:
    """Argmax accuracy for multi-class outputs, 0.5 threshold otherwise."""
    if pred.dim() > 1 and pred.shape[-1] > 1:
        predicted = pred.argmax(dim=-1)
        if target.shape == pred.shape:
            actual = target.argmax(dim=-1)
        else:
            actual = target.long().reshape(predicted.shape)
    else:
        predicted = (pred > 0.5).float()
        actual = target.float().reshape(predicted.shape)
    return (predicted == actual).float().mean()


METRICS: Dict[str, LossFn] = {
    'accuracy': _accuracy,
    'acc': _accuracy,
    'mse': F.mse_loss,
    'mae': F.l1_loss,
}


# =============================================================================
# Optimizers
# =============================================================================

OPTIMIZERS: Dict[str, Type[optim.Optimizer]] = {
    'sgd': optim.SGD,
    'adam': optim.Adam,
    'rmsprop': optim.RMSprop,
    'adagrad': optim.Adagrad,
}

# Learning rates used when the configuration leaves it unset
DEFAULT_LEARNING_RATES: Dict[str, float] = {
    'sgd': 0.01,
    'adam': 0.001,
    'rmsprop': 0.001,
    'adagrad': 0.01,
}


def resolve_loss(loss: Union[str, LossFn]) -> LossFn:
    if callable(loss):
        return loss
    if loss not in LOSSES:
        raise ConfigurationError(f"Unknown loss '{loss}'. Options: {sorted(LOSSES)}")
    return LOSSES[loss]


def resolve_metrics(names: Sequence[str]) -> Dict[str, LossFn]:
    resolved = {}
    for name in names:
        if name not in METRICS:
            raise ConfigurationError(f"Unknown metric '{name}'. Options: {sorted(METRICS)}")
        resolved[name] = METRICS[name]
    return resolved


def resolve_optimizer(
    optimizer: Union[str, Type[optim.Optimizer]],
    learning_rate: Optional[float] = None
) -> Callable[[Any], optim.Optimizer]:
    """Return a factory that builds the optimizer for a parameter list."""
    if isinstance(optimizer, type) and issubclass(optimizer, optim.Optimizer):
        if learning_rate is None:
            return optimizer
        return lambda params: optimizer(params, lr=learning_rate)

    if optimizer not in OPTIMIZERS:
        raise ConfigurationError(
            f"Unknown optimizer '{optimizer}'. Options: {sorted(OPTIMIZERS)}"
        )
    optimizer_cls = OPTIMIZERS[optimizer]
    lr = learning_rate if learning_rate is not None else DEFAULT_LEARNING_RATES[optimizer]
    return lambda params: optimizer_cls(params, lr=lr)


# =============================================================================
# Model
# =============================================================================

@dataclass(frozen=True)
class ModelConfig:
    """
    Declared network: layers in order plus compile options.

    Compared by value, so two configurations with equal layers and
    options are the same model.
    """
    layers: Tuple[LayerDescriptor, ...] = ()
    optimizer: Union[str, Type[optim.Optimizer]] = 'sgd'
    loss: Union[str, LossFn] = 'mean_squared_error'
    metrics: Tuple[str, ...] = field(default_factory=tuple)
    input_shape: Optional[Tuple[int, ...]] = None
    learning_rate: Optional[float] = None

    def __post_init__(self):
        metrics = (self.metrics,) if isinstance(self.metrics, str) else self.metrics
        object.__setattr__(self, 'layers', tuple(
            layer_from_dict(layer) if isinstance(layer, Mapping) else layer
            for layer in self.layers
        ))
        object.__setattr__(self, 'metrics', tuple(metrics))
        if self.input_shape is not None:
            object.__setattr__(self, 'input_shape', tuple(self.input_shape))

    @property
    def resolved_input_shape(self) -> Optional[Tuple[int, ...]]:
        """Explicit input shape, else the one declared on the first layer."""
        if self.input_shape is not None:
            return self.input_shape
        if self.layers:
            first = getattr(self.layers[0], 'input_shape', None)
            return tuple(first) if first is not None else None
        return None


class CompiledModel:
    """
    A built and compiled sequential network.

    Attributes:
        network (nn.Sequential): One entry per declared layer, in order
        optimizer: Bound optimizer (None until lazy layers are materialized)
        metrics_names (List[str]): 'loss' followed by the declared metrics

    Example:
        >>> history = model.fit(xs, ys, batch_size=32, epochs=1)
        >>> history['loss']
        [0.693]
    """

    def __init__(
        self,
        network: nn.Sequential,
        optimizer_factory: Callable[[Any], optim.Optimizer],
        loss_fn: LossFn,
        metric_fns: Dict[str, LossFn],
        config: ModelConfig,
        device: torch.device,
    ):
        self.network = network
        self.loss_fn = loss_fn
        self.metric_fns = metric_fns
        self.config = config
        self.device = device
        self.metrics_names: List[str] = ['loss'] + list(metric_fns)

        self.optimizer: Optional[optim.Optimizer] = None
        self._optimizer_factory = optimizer_factory

    @property
    def layers(self) -> List[nn.Module]:
        return list(self.network)

    @property
    def is_built(self) -> bool:
        """True once every lazy parameter has a concrete shape."""
        return not any(isinstance(p, UninitializedParameter) for p in self.network.parameters())

    def build(self, input_shape: Sequence[int]) -> None:
        """Materialize lazy layers with a dry run, then bind the optimizer."""
        if not self.is_built:
            dummy = torch.zeros((1, *input_shape), device=self.device)
            with torch.no_grad():
                self.network(dummy)
        self._bind_optimizer()

    def _bind_optimizer(self) -> None:
        if self.optimizer is not None:
            return
        params = list(self.network.parameters())
        # Parameter-free stacks (e.g. only Flatten) still evaluate a loss
        if params:
            self.optimizer = self._optimizer_factory(params)

    def _ensure_built(self, xs: torch.Tensor) -> None:
        if self.optimizer is None:
            self.build(tuple(xs.shape[1:]))

    def _to_device(self, *tensors: torch.Tensor) -> Tuple[torch.Tensor, ...]:
        return tuple(t.to(self.device) for t in tensors)

    def fit(
        self,
        xs: torch.Tensor,
        ys: torch.Tensor,
        batch_size: Optional[int] = None,
        epochs: int = 1
    ) -> Dict[str, List[float]]:
        """
        Train on the given tensors.

        Args:
            xs: Inputs, first dimension is the sample axis
            ys: Targets, same number of samples as xs
            batch_size: Samples per gradient step (default: all)
            epochs: Passes over xs

        Returns:
            History: metric name -> one averaged value per epoch
        """
        xs, ys = self._to_device(xs, ys)
        self._ensure_built(xs)
        num_samples = xs.shape[0]
        batch_size = batch_size or num_samples

        history: Dict[str, List[float]] = {name: [] for name in self.metrics_names}
        self.network.train()

        for _ in range(epochs):
            totals = dict.fromkeys(self.metrics_names, 0.0)
            for start in range(0, num_samples, batch_size):
                x = xs[start:start + batch_size]
                y = ys[start:start + batch_size]

                pred = self.network(x)
                loss = self.loss_fn(pred, y)

                if self.optimizer is not None:
                    self.optimizer.zero_grad()
                    loss.backward()
                    self.optimizer.step()

                count = x.shape[0]
                totals['loss'] += loss.item() * count
                with torch.no_grad():
                    for name, metric_fn in self.metric_fns.items():
                        totals[name] += metric_fn(pred.detach(), y).item() * count

            for name in self.metrics_names:
                history[name].append(totals[name] / num_samples)

        return history

    def evaluate(
        self,
        xs: torch.Tensor,
        ys: torch.Tensor,
        batch_size: Optional[int] = None
    ) -> List[float]:
        """Loss and metrics over xs without updating weights, in metrics_names order."""
        xs, ys = self._to_device(xs, ys)
        self._ensure_built(xs)
        num_samples = xs.shape[0]
        batch_size = batch_size or num_samples

        totals = dict.fromkeys(self.metrics_names, 0.0)
        self.network.eval()
        with torch.no_grad():
            for start in range(0, num_samples, batch_size):
                x = xs[start:start + batch_size]
                y = ys[start:start + batch_size]
                pred = self.network(x)
                count = x.shape[0]
                totals['loss'] += self.loss_fn(pred, y).item() * count
                for name, metric_fn in self.metric_fns.items():
                    totals[name] += metric_fn(pred, y).item() * count
        self.network.train()

        return [totals[name] / num_samples for name in self.metrics_names]

    def predict(self, xs: torch.Tensor) -> torch.Tensor:
        (xs,) = self._to_device(xs)
        self._ensure_built(xs)
        self.network.eval()
        with torch.no_grad():
            result = self.network(xs)
        self.network.train()
        return result

    def summary(self) -> str:
        """One line per layer with its parameter count ('?' while lazy)."""
        lines = []
        total = 0
        for index, (layer, descriptor) in enumerate(zip(self.network, self.config.layers)):
            params = list(layer.parameters())
            if any(isinstance(p, UninitializedParameter) for p in params):
                count = '?'
            else:
                layer_total = sum(p.numel() for p in params)
                total += layer_total
                count = f"{layer_total:,}"
            lines.append(f"{index:>3}  {type(descriptor).__name__:<14} params={count}")
        lines.append(f"Total params: {total:,}")
        return "\n".join(lines)

    def save(self, filepath: str) -> None:
        """Save weights plus the declared architecture."""
        directory = os.path.dirname(filepath)
        if directory:
            os.makedirs(directory, exist_ok=True)
        checkpoint = {
            'state_dict': self.network.state_dict(),
            'layers': [layer_to_dict(layer) for layer in self.config.layers],
            'metrics_names': self.metrics_names,
        }
        if self.optimizer is not None:
            checkpoint['optimizer_state_dict'] = self.optimizer.state_dict()
        torch.save(checkpoint, filepath)
        log_model_event('save', filepath, layers=len(self.config.layers))

    def load(self, filepath: str) -> None:
        """Load weights saved by save() into this (same architecture) model."""
        checkpoint = torch.load(filepath, map_location=self.device, weights_only=False)
        # Lazy layers take their shapes from the state dict
        self.network.load_state_dict(checkpoint['state_dict'])
        self._bind_optimizer()
        if self.optimizer is not None and 'optimizer_state_dict' in checkpoint:
            self.optimizer.load_state_dict(checkpoint['optimizer_state_dict'])
        log_model_event('load', filepath, layers=len(self.config.layers))


def build_model(config: ModelConfig, device: Optional[torch.device] = None) -> CompiledModel:
    """
    Build and compile a sequential network from a declared configuration.

    Every layer and compile option is resolved before anything is
    assembled, so an invalid declaration fails without side effects.

    Args:
        config: Declared layers and compile options
        device: Target device (default: CPU)

    Returns:
        The compiled model

    Raises:
        InvalidLayerKind: a layer declaration is not a supported kind
        ConfigurationError: no layers, or unknown optimizer/loss/metric
    """
    if not config.layers:
        raise ConfigurationError("Model has no layers")

    modules = [resolve_layer(layer) for layer in config.layers]
    loss_fn = resolve_loss(config.loss)
    metric_fns = resolve_metrics(config.metrics)
    optimizer_factory = resolve_optimizer(config.optimizer, config.learning_rate)

    device = device or torch.device('cpu')
    network = nn.Sequential()
    for module in modules:
        network.append(module)
    network.to(device)

    model = CompiledModel(network, optimizer_factory, loss_fn, metric_fns, config, device)

    input_shape = config.resolved_input_shape
    if input_shape is not None:
        model.build(input_shape)
    else:
        _logger.debug("No input shape declared; layers materialize on first fit")

    optimizer_name = getattr(config.optimizer, '__name__', config.optimizer)
    log_model_event(
        'compile',
        'sequential',
        layers=len(modules),
        optimizer=optimizer_name,
        loss=getattr(config.loss, '__name__', config.loss),
        metrics=','.join(config.metrics) or '-',
    )
    return model
