"""
Command line entry point.

Trains a declared network on a synthetic image data set (horizontal,
vertical and diagonal strokes on a noisy 8x8 canvas), optionally with the
web dashboard for live charts and pause/resume control.

    neuralmarkup                              Train the default conv net
    neuralmarkup --epochs 5 --web             Watch it at localhost:5000
    neuralmarkup --web --paused               Start paused, resume from the browser
    neuralmarkup --network net.json           Train a network declared as JSON
    neuralmarkup --save                       Save to models/neuralmarkup_model.pt
"""

import argparse
import asyncio
import json
import os
import sys
from typing import Iterator, List, Optional

import numpy as np
import torch

from .ai.batching import Sample
from .ai.layers import Conv2D, Dense, Flatten, MaxPooling2D, layer_from_dict
from .components import Model, Train
from .config import Config
from .errors import NeuralMarkupError
from .utils.logger import LogLevel, get_log_path, get_logger, setup_logging

_logger = get_logger('cli')

IMAGE_SIZE = 8
NUM_CLASSES = 3
VALIDATION_SEED_OFFSET = 10 ** 6
DEFAULT_MODEL_FILE = 'neuralmarkup_model.pt'


def default_layers() -> List:
    return [
        Conv2D(filters=8, kernel_size=3, activation='relu', input_shape=(1, IMAGE_SIZE, IMAGE_SIZE)),
        MaxPooling2D(pool_size=2),
        Flatten(),
        Dense(units=NUM_CLASSES, activation='softmax'),
    ]


def load_layers(path: str) -> List:
    """Read a JSON list of layer declarations."""
    with open(path, 'r', encoding='utf-8') as f:
        declarations = json.load(f)
    return [layer_from_dict(declaration) for declaration in declarations]


def stroke_samples(count: int, seed: int) -> Iterator[Sample]:
    """Yield noisy stroke images with one-hot labels."""
    rng = np.random.default_rng(seed)
    for _ in range(count):
        label = int(rng.integers(NUM_CLASSES))
        image = rng.normal(0.0, 0.1, size=(IMAGE_SIZE, IMAGE_SIZE))
        position = int(rng.integers(IMAGE_SIZE))
        if label == 0:
            image[position, :] += 1.0
        elif label == 1:
            image[:, position] += 1.0
        else:
            image += np.eye(IMAGE_SIZE)
        target = np.zeros(NUM_CLASSES, dtype=np.float32)
        target[label] = 1.0
        yield Sample(x=image[np.newaxis].astype(np.float32), y=target)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    config = Config()
    parser = argparse.ArgumentParser(
        description="Train a declaratively described neural network",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )

    parser.add_argument('--network', type=str, default=None, metavar='JSON',
                        help='JSON file with the layer declarations (default: small conv net)')
    parser.add_argument('--epochs', type=int, default=config.EPOCHS,
                        help=f'Epochs to train (default: {config.EPOCHS})')
    parser.add_argument('--batch-size', type=int, default=config.BATCH_SIZE,
                        help=f'Samples per batch (default: {config.BATCH_SIZE})')
    parser.add_argument('--samples', type=int, default=config.SAMPLES,
                        help=f'Training samples per epoch (default: {config.SAMPLES})')
    parser.add_argument('--validation-samples', type=int, default=256,
                        help='Validation samples per epoch, 0 to disable (default: 256)')
    parser.add_argument('--optimizer', type=str, default=config.OPTIMIZER,
                        choices=['sgd', 'adam', 'rmsprop', 'adagrad'],
                        help=f'Optimizer (default: {config.OPTIMIZER})')
    parser.add_argument('--learning-rate', type=float, default=config.LEARNING_RATE,
                        help=f'Learning rate (default: {config.LEARNING_RATE})')

    parser.add_argument('--web', action='store_true',
                        help='Serve the live dashboard')
    parser.add_argument('--port', type=int, default=config.DASHBOARD_PORT,
                        help=f'Dashboard port (default: {config.DASHBOARD_PORT})')
    parser.add_argument('--no-display', action='store_true',
                        help='Skip per-batch repaint yields and the final metrics summary')
    parser.add_argument('--paused', action='store_true',
                        help='Start paused; resume from the dashboard (requires --web)')

    parser.add_argument('--save', type=str, nargs='?', const='', default=None, metavar='PATH',
                        help=f'Save the trained model to PATH (no PATH: {config.MODEL_DIR}/{DEFAULT_MODEL_FILE})')
    parser.add_argument('--log-level', type=str, default=config.LOG_LEVEL,
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help=f'Console log level (default: {config.LOG_LEVEL})')
    parser.add_argument('--seed', type=int, default=config.SEED,
                        help='Random seed')
    parser.add_argument('--cpu', action='store_true',
                        help='Force CPU even if an accelerator is available')

    args = parser.parse_args(argv)
    if args.paused and not args.web:
        parser.error('--paused needs --web to resume training')
    return args


async def run(args: argparse.Namespace, config: Config) -> None:
    layers = load_layers(args.network) if args.network else default_layers()
    seed = args.seed if args.seed is not None else 0

    model = Model(
        layers,
        optimizer=args.optimizer,
        learning_rate=args.learning_rate,
        loss='categorical_crossentropy',
        metrics=['accuracy'],
        device=config.DEVICE,
        on_compile=lambda compiled: _logger.info(f"Compiled network:\n{compiled.summary()}"),
    )

    dashboard = None
    if args.web:
        from .web import WebDashboard
        dashboard = WebDashboard(config, port=args.port)
        dashboard.start()

    epoch_seeds = iter(range(seed, seed + VALIDATION_SEED_OFFSET))
    validation = None
    if args.validation_samples > 0:
        validation = lambda: stroke_samples(args.validation_samples, seed=seed + VALIDATION_SEED_OFFSET)

    trainer = Train(
        model,
        epochs=args.epochs,
        batch_size=args.batch_size,
        samples=args.samples,
        train_data=lambda: stroke_samples(args.samples, seed=next(epoch_seeds)),
        validation_data=validation,
        display=not args.no_display,
        train=not args.paused,
        dashboard=dashboard,
        config=config,
    )

    try:
        trainer.mount()
        if args.paused:
            _logger.info(f"Training paused; resume at http://localhost:{args.port}")
        trained = await trainer.wait()
        if args.save is not None:
            trained.save(args.save or os.path.join(config.MODEL_DIR, DEFAULT_MODEL_FILE))
    finally:
        if dashboard is not None:
            dashboard.stop()


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    config = Config(
        EPOCHS=args.epochs,
        BATCH_SIZE=args.batch_size,
        SAMPLES=args.samples,
        OPTIMIZER=args.optimizer,
        LEARNING_RATE=args.learning_rate,
        DASHBOARD_PORT=args.port,
        FORCE_CPU=args.cpu,
        LOG_LEVEL=args.log_level,
        SEED=args.seed,
    )

    setup_logging(config.LOG_DIR, level=LogLevel[config.LOG_LEVEL])
    log_path = get_log_path()
    if log_path is not None:
        _logger.info(f"Logging to {log_path}")
    if config.SEED is not None:
        torch.manual_seed(config.SEED)
        np.random.seed(config.SEED)

    try:
        asyncio.run(run(args, config))
    except NeuralMarkupError as e:
        _logger.error(str(e))
        return 1
    except KeyboardInterrupt:
        _logger.info("Interrupted")
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
