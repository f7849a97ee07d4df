"""
neuralmarkup
============

Declarative neural networks with a pausable training loop, on PyTorch.

Describe a network as an ordered list of layer descriptors, hand it to a
``Model`` component which compiles it, and wrap that in a ``Train``
component which drives training from host events.

Packages:
    ai/         - Layer descriptors, model builder, batching, training loop
    components/ - ``Model`` and ``Train`` host components
    web/        - Flask + SocketIO dashboard with pause/resume control
    utils/      - Logging
"""

from .ai.layers import Conv2D, Dense, Flatten, MaxPooling2D
from .components import Model, Train

__version__ = "1.0.0"

__all__ = [
    'Conv2D', 'Dense', 'Flatten', 'MaxPooling2D',
    'Model', 'Train',
]
