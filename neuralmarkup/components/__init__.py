"""
Components
==========

Declarative host components.

Classes:
    Model - Declared network, recompiled when its configuration changes
    Train - Pausable training run driven by a Model
"""

from .model import Model
from .train import Train

__all__ = ['Model', 'Train']
