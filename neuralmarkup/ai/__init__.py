"""
AI Module
=========

Network description, compilation and training on PyTorch.

Classes:
    Conv2D, Dense, Flatten, MaxPooling2D - Layer descriptors
    CompiledModel   - Built, compiled sequential network
    Batch           - Stacked inputs/targets for one step
    TrainingLoop    - Pausable batch-by-batch training
    TrainingMetrics - Per-metric history
"""

from .layers import Conv2D, Dense, Flatten, MaxPooling2D, LayerKind, resolve_layer
from .network import CompiledModel, ModelConfig, build_model
from .batching import Batch, Sample, UNBOUNDED, get_batch
from .trainer import TrainingLoop, TrainingMetrics, TrainingState

__all__ = [
    'Conv2D', 'Dense', 'Flatten', 'MaxPooling2D', 'LayerKind', 'resolve_layer',
    'CompiledModel', 'ModelConfig', 'build_model',
    'Batch', 'Sample', 'UNBOUNDED', 'get_batch',
    'TrainingLoop', 'TrainingMetrics', 'TrainingState',
]
