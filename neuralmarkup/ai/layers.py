"""
Layer Descriptors
=================

Declarative descriptions of network layers and their resolution into
PyTorch modules.

Each supported kind has its own frozen parameter record:

    Conv2D        -> nn.LazyConv2d
    Dense         -> nn.LazyLinear
    Flatten       -> nn.Flatten
    MaxPooling2D  -> nn.MaxPool2d

Convolution and dense layers use PyTorch's lazy modules so that, like a
declarative layer list, they only need their output size; input sizes are
inferred on the first forward pass. Image tensors are channels-first.

Example:
    >>> layers = [
    ...     Conv2D(filters=8, kernel_size=3, activation='relu', input_shape=(1, 28, 28)),
    ...     MaxPooling2D(pool_size=2),
    ...     Flatten(),
    ...     Dense(units=10, activation='softmax'),
    ... ]
    >>> modules = [resolve_layer(layer) for layer in layers]
"""

from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, Callable, ClassVar, Dict, Mapping, Optional, Tuple, Union

import torch.nn as nn

from ..errors import InvalidLayerKind


IntOrPair = Union[int, Tuple[int, int]]


class LayerKind(Enum):
    """The fixed set of supported layer kinds."""
    CONV2D = 'conv2d'
    DENSE = 'dense'
    FLATTEN = 'flatten'
    MAX_POOLING2D = 'max_pooling2d'


# Activation name -> module factory
ACTIVATIONS: Dict[str, Callable[[], nn.Module]] = {
    'relu': nn.ReLU,
    'sigmoid': nn.Sigmoid,
    'softmax': lambda: nn.Softmax(dim=-1),
    'tanh': nn.Tanh,
    'elu': nn.ELU,
    'leaky_relu': nn.LeakyReLU,
}


@dataclass(frozen=True)
class Conv2D:
    """2D convolution over channels-first images."""
    kind: ClassVar[LayerKind] = LayerKind.CONV2D

    filters: int
    kernel_size: IntOrPair
    strides: IntOrPair = 1
    padding: Union[str, IntOrPair] = 'valid'
    activation: Optional[str] = None
    use_bias: bool = True
    input_shape: Optional[Tuple[int, ...]] = None


@dataclass(frozen=True)
class Dense:
    """Fully connected layer."""
    kind: ClassVar[LayerKind] = LayerKind.DENSE

    units: int
    activation: Optional[str] = None
    use_bias: bool = True
    input_shape: Optional[Tuple[int, ...]] = None


@dataclass(frozen=True)
class Flatten:
    """Flattens everything but the batch dimension."""
    kind: ClassVar[LayerKind] = LayerKind.FLATTEN

    input_shape: Optional[Tuple[int, ...]] = None


@dataclass(frozen=True)
class MaxPooling2D:
    """2D max pooling; strides default to the pool size."""
    kind: ClassVar[LayerKind] = LayerKind.MAX_POOLING2D

    pool_size: IntOrPair = 2
    strides: Optional[IntOrPair] = None
    input_shape: Optional[Tuple[int, ...]] = None


LayerDescriptor = Union[Conv2D, Dense, Flatten, MaxPooling2D]

_DESCRIPTOR_TYPES = {
    LayerKind.CONV2D: Conv2D,
    LayerKind.DENSE: Dense,
    LayerKind.FLATTEN: Flatten,
    LayerKind.MAX_POOLING2D: MaxPooling2D,
}


def _with_activation(layer: nn.Module, descriptor: Any) -> nn.Module:
    """Fuse a declared activation into the layer so it stays one entry."""
    name = descriptor.activation
    if name is None or name == 'linear':
        return layer
    if name not in ACTIVATIONS:
        raise InvalidLayerKind(descriptor, reason=f"Unknown activation '{name}'")
    return nn.Sequential(layer, ACTIVATIONS[name]())


def _resolve_conv2d(layer: Conv2D) -> nn.Module:
    module = nn.LazyConv2d(
        layer.filters,
        layer.kernel_size,
        stride=layer.strides,
        padding=layer.padding,
        bias=layer.use_bias,
    )
    return _with_activation(module, layer)


def _resolve_dense(layer: Dense) -> nn.Module:
    return _with_activation(nn.LazyLinear(layer.units, bias=layer.use_bias), layer)


def _resolve_flatten(layer: Flatten) -> nn.Module:
    return nn.Flatten()


def _resolve_max_pooling2d(layer: MaxPooling2D) -> nn.Module:
    return nn.MaxPool2d(layer.pool_size, stride=layer.strides)


_RESOLVERS: Dict[type, Callable[[Any], nn.Module]] = {
    Conv2D: _resolve_conv2d,
    Dense: _resolve_dense,
    Flatten: _resolve_flatten,
    MaxPooling2D: _resolve_max_pooling2d,
}


def resolve_layer(descriptor: LayerDescriptor) -> nn.Module:
    """
    Build the PyTorch module for one layer descriptor.

    Args:
        descriptor: One of Conv2D, Dense, Flatten, MaxPooling2D

    Returns:
        A single module (layer and fused activation, if any)

    Raises:
        InvalidLayerKind: descriptor is not a supported layer
    """
    resolver = _RESOLVERS.get(type(descriptor))
    if resolver is None:
        raise InvalidLayerKind(descriptor)
    return resolver(descriptor)


def layer_from_dict(spec: Mapping[str, Any]) -> LayerDescriptor:
    """
    Build a descriptor from a flat mapping such as parsed JSON.

    The mapping names the layer under 'kind' and carries the layer's
    options as the remaining keys:

        {'kind': 'dense', 'units': 10, 'activation': 'softmax'}
    """
    options = dict(spec)
    kind_name = options.pop('kind', None)
    try:
        kind = LayerKind(kind_name)
    except ValueError:
        raise InvalidLayerKind(spec) from None

    for key in ('kernel_size', 'strides', 'padding', 'pool_size', 'input_shape'):
        if isinstance(options.get(key), list):
            options[key] = tuple(options[key])

    try:
        return _DESCRIPTOR_TYPES[kind](**options)
    except TypeError as e:
        raise InvalidLayerKind(spec, reason=f"Invalid options for {kind.value} ({e})") from e


def layer_to_dict(descriptor: LayerDescriptor) -> Dict[str, Any]:
    """Inverse of layer_from_dict; omits options left at None."""
    if type(descriptor) not in _RESOLVERS:
        raise InvalidLayerKind(descriptor)
    result: Dict[str, Any] = {'kind': descriptor.kind.value}
    for field in fields(descriptor):
        value = getattr(descriptor, field.name)
        if value is not None:
            result[field.name] = list(value) if isinstance(value, tuple) else value
    return result
