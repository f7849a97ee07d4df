"""
Centralized logging infrastructure for neuralmarkup.

Usage:
    from neuralmarkup.utils.logger import get_logger

    logger = get_logger(__name__)
    logger.info("Training started")
    logger.debug("Batch 3 fitted")

Configuration:
    Call setup_logging() once from the application entry point. Library
    code only ever calls get_logger(); when nothing has been set up yet,
    the first get_logger() call installs a console-only default.
"""

import logging
import sys
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional


ROOT_LOGGER_NAME = 'neuralmarkup'


class LogLevel(Enum):
    """Log levels for configuration."""
    DEBUG = logging.DEBUG
    INFO = logging.INFO
    WARNING = logging.WARNING
    ERROR = logging.ERROR


# Module-level state
_initialized = False
_implicit_default = False
_log_dir: Optional[Path] = None
_file_handler: Optional[logging.FileHandler] = None


class ColoredFormatter(logging.Formatter):
    """Formatter that adds colors to console output."""

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
        'RESET': '\033[0m',
    }

    def __init__(self, fmt: str, use_colors: bool = True):
        super().__init__(fmt)
        self.use_colors = use_colors and sys.stdout.isatty()

    def format(self, record: logging.LogRecord) -> str:
        if self.use_colors:
            # Color a copy so other handlers keep the plain level name
            record = logging.makeLogRecord(record.__dict__)
            color = self.COLORS.get(record.levelname, self.COLORS['RESET'])
            record.levelname = f"{color}{record.levelname}{self.COLORS['RESET']}"
        return super().format(record)


def setup_logging(
    log_dir: str = 'logs',
    level: LogLevel = LogLevel.INFO,
    console_output: bool = True,
    file_output: bool = True,
    log_filename: Optional[str] = None,
) -> None:
    """
    Initialize the logging system.

    Args:
        log_dir: Directory for log files
        level: Minimum log level to capture
        console_output: Whether to output to console
        file_output: Whether to output to file
        log_filename: Custom log filename (default: training_YYYYMMDD_HHMMSS.log)
    """
    global _initialized, _implicit_default, _log_dir, _file_handler

    # An explicit call replaces the console-only default from get_logger()
    if _initialized and not _implicit_default:
        return

    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.setLevel(level.value)
    root_logger.handlers.clear()

    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level.value)
        console_handler.setFormatter(ColoredFormatter(
            '%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
            use_colors=True
        ))
        root_logger.addHandler(console_handler)

    if file_output:
        _log_dir = Path(log_dir)
        _log_dir.mkdir(parents=True, exist_ok=True)
        if log_filename is None:
            timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
            log_filename = f'training_{timestamp}.log'

        _file_handler = logging.FileHandler(_log_dir / log_filename, mode='a', encoding='utf-8')
        _file_handler.setLevel(logging.DEBUG)  # Capture everything in file
        _file_handler.setFormatter(logging.Formatter(
            '%(asctime)s | %(levelname)-8s | %(name)s | %(message)s'
        ))
        root_logger.addHandler(_file_handler)

    _initialized = True
    _implicit_default = False
    root_logger.debug(f"Logging initialized (level={level.name}, file={file_output})")


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a module.

    Args:
        name: Module name (typically __name__)

    Returns:
        Logger under the 'neuralmarkup' namespace
    """
    global _implicit_default

    if not _initialized:
        setup_logging(file_output=False)
        _implicit_default = True

    if name == ROOT_LOGGER_NAME or name.startswith(ROOT_LOGGER_NAME + '.'):
        return logging.getLogger(name)
    return logging.getLogger(f'{ROOT_LOGGER_NAME}.{name}')


def get_log_path() -> Optional[Path]:
    """Get the current log file path."""
    if _file_handler is not None:
        return Path(_file_handler.baseFilename)
    return None


def log_training_metrics(
    epoch: int,
    batch: int,
    metrics: Dict[str, List[float]],
) -> None:
    """
    Log one batch's metrics in a consistent format.

    Args:
        epoch: Current epoch number
        batch: Batch number within the epoch
        metrics: Keras-style history, metric name -> [value]
    """
    logger = get_logger('training')

    parts = [f"epoch={epoch}", f"batch={batch}"]
    for name, values in metrics.items():
        if values:
            parts.append(f"{name}={float(values[0]):.6f}")

    logger.debug(" | ".join(parts))


def log_model_event(event: str, target: Any, **kwargs) -> None:
    """
    Log model-related events (compile/save/load).

    Args:
        event: Event type ('compile', 'save', 'load')
        target: Model file path or short model description
        **kwargs: Additional context (e.g., layers, optimizer)
    """
    logger = get_logger('model')

    extra = " | ".join(f"{k}={v}" for k, v in kwargs.items())
    if extra:
        logger.info(f"{event.upper()} | {target} | {extra}")
    else:
        logger.info(f"{event.upper()} | {target}")
