"""
Configuration for neuralmarkup
==============================

Training defaults, display options, dashboard settings and system paths are
centralized here. Component arguments always win over these defaults.

Usage:
    from neuralmarkup.config import Config
    cfg = Config()
    print(cfg.BATCH_SIZE)
"""

from dataclasses import dataclass
from typing import Optional
import torch


@dataclass
class Config:
    """
    Central configuration for the entire project.

    Sections:
    1. Training - Defaults for the Train component
    2. Compile - Defaults for the Model component
    3. Display - Metric plot options
    4. Dashboard - Web server settings
    5. System - Hardware, logging and paths
    """

    # =========================================================================
    # TRAINING DEFAULTS
    # =========================================================================

    # Passes over the training data
    EPOCHS: int = 1

    # Samples stacked into each fit call
    BATCH_SIZE: int = 32

    # Samples drawn from the training source per epoch
    SAMPLES: int = 1024

    # =========================================================================
    # COMPILE DEFAULTS
    # =========================================================================

    # Options: 'sgd', 'adam', 'rmsprop', 'adagrad'
    OPTIMIZER: str = 'sgd'

    LEARNING_RATE: float = 0.01

    # =========================================================================
    # DISPLAY SETTINGS
    # =========================================================================

    # Plot size for each metric chart
    PLOT_WIDTH: int = 420
    PLOT_HEIGHT: int = 340

    # Marker color for metric series
    PLOT_COLOR: str = '#1a9afc'

    # =========================================================================
    # WEB DASHBOARD
    # =========================================================================

    DASHBOARD_HOST: str = '0.0.0.0'
    DASHBOARD_PORT: int = 5000

    # =========================================================================
    # SYSTEM SETTINGS
    # =========================================================================

    # Force CPU even when an accelerator is available
    FORCE_CPU: bool = False

    @property
    def DEVICE(self) -> torch.device:
        """Auto-detect CUDA/MPS/CPU, or force CPU if configured."""
        if self.FORCE_CPU:
            return torch.device('cpu')
        if torch.cuda.is_available():
            return torch.device('cuda')
        elif hasattr(torch.backends, 'mps') and torch.backends.mps.is_available():
            return torch.device('mps')
        return torch.device('cpu')

    # Paths
    MODEL_DIR: str = 'models'
    LOG_DIR: str = 'logs'

    # 'DEBUG', 'INFO', 'WARNING', 'ERROR'
    LOG_LEVEL: str = 'INFO'

    # Random seed for reproducibility (None for random)
    SEED: Optional[int] = None

    def __post_init__(self):
        """Validation."""
        assert self.EPOCHS > 0, "Epochs must be positive"
        assert self.BATCH_SIZE > 0, "Batch size must be positive"
        assert self.SAMPLES > 0, "Samples must be positive"
        assert self.LEARNING_RATE > 0, "Learning rate must be positive"
        assert 0 < self.DASHBOARD_PORT < 65536, "Dashboard port out of range"
        assert self.LOG_LEVEL in ('DEBUG', 'INFO', 'WARNING', 'ERROR'), \
            "Unknown log level"


# Global config instance for easy importing
config = Config()
