"""
Pytest configuration and shared fixtures.

This file is automatically loaded by pytest and applies to all tests in
the tests/ directory.
"""

import asyncio

import pytest
import torch

from neuralmarkup.ai.batching import Sample
from neuralmarkup.ai.layers import Dense
from neuralmarkup.ai.network import ModelConfig, build_model


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )


@pytest.fixture(autouse=True)
def seed():
    """Make weight initialization deterministic."""
    torch.manual_seed(0)


def counting_source(count: int, width: int = 1):
    """Deterministic source: sample i has x = [i]*width and y = [2i]."""
    def factory():
        for i in range(count):
            yield Sample(x=[float(i)] * width, y=[2.0 * i])
    return factory


async def settle(turns: int = 5) -> None:
    """Let scheduled tasks run up to their next real suspension."""
    for _ in range(turns):
        await asyncio.sleep(0)


@pytest.fixture
def linear_config():
    """One-input linear regression network."""
    return ModelConfig(
        layers=[Dense(units=1, input_shape=(1,))],
        optimizer='sgd',
        loss='mse',
        metrics=['mae'],
    )


@pytest.fixture
def linear_model(linear_config):
    return build_model(linear_config)
