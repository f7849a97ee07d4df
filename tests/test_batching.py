"""
Tests for batch assembly from resumable sample sources.
"""

import numpy as np
import pytest
import torch

from neuralmarkup.ai.batching import UNBOUNDED, Batch, Sample, get_batch
from neuralmarkup.errors import EmptyBatchError

from .conftest import counting_source


class TestGetBatch:
    """Batch Assembler contract."""

    @pytest.mark.parametrize("available,requested", [(5, 2), (5, 5), (3, 8), (1, 1)])
    def test_returns_min_of_available_and_requested(self, available, requested):
        batch = get_batch(counting_source(available)(), requested)
        assert batch.size == min(available, requested)
        assert batch.xs.shape[0] == batch.ys.shape[0] == min(available, requested)

    def test_pulls_in_source_order_and_resumes(self):
        source = counting_source(5)()
        first = get_batch(source, 2)
        second = get_batch(source, 2)
        third = get_batch(source, 2)
        assert first.xs.flatten().tolist() == [0.0, 1.0]
        assert second.xs.flatten().tolist() == [2.0, 3.0]
        assert third.xs.flatten().tolist() == [4.0]

    def test_unbounded_takes_everything(self):
        batch = get_batch(counting_source(7)(), UNBOUNDED)
        assert batch.size == 7

    def test_exhausted_source_raises(self):
        source = counting_source(2)()
        get_batch(source, 2)
        with pytest.raises(EmptyBatchError):
            get_batch(source, 2)

    def test_empty_source_raises(self):
        with pytest.raises(EmptyBatchError):
            get_batch(iter([]), 4)

    def test_none_sentinel_stops_early(self):
        source = iter([Sample([1.0], [1.0]), None, Sample([2.0], [2.0])])
        batch = get_batch(source, 10)
        assert batch.size == 1

    def test_empty_mapping_ends_source(self):
        source = iter([{'x': [1.0], 'y': [1.0]}, {}, {'x': [2.0], 'y': [2.0]}])
        batch = get_batch(source, 10)
        assert batch.size == 1

    def test_leading_empty_mapping_is_empty_batch(self):
        with pytest.raises(EmptyBatchError):
            get_batch(iter([{}]), 4)

    def test_tensor_samples_are_stacked(self):
        samples = [Sample(torch.full((1, 2, 2), float(i)), torch.tensor([i])) for i in range(3)]
        batch = get_batch(iter(samples), 3)
        assert batch.xs.shape == (3, 1, 2, 2)
        assert batch.ys.shape == (3, 1)
        assert batch.ys.dtype == torch.int64

    def test_plain_arrays_are_converted_to_float(self):
        samples = [Sample(np.ones((2, 3)), 1) for _ in range(4)]
        batch = get_batch(iter(samples), 4)
        assert batch.xs.shape == (4, 2, 3)
        assert batch.xs.dtype == torch.float32
        assert batch.ys.shape == (4,)

    def test_dict_and_tuple_samples(self):
        source = iter([{'x': [1.0], 'y': [0.0]}, ([2.0], [1.0])])
        batch = get_batch(source, 2)
        assert batch.xs.flatten().tolist() == [1.0, 2.0]
        assert batch.ys.flatten().tolist() == [0.0, 1.0]


class TestBatchDisposal:
    """Batches release their tensors after use."""

    def test_dispose(self):
        batch = Batch(torch.zeros(2, 1), torch.zeros(2, 1))
        batch.dispose()
        assert batch.disposed
        assert batch.xs is None and batch.ys is None
        assert batch.size == 2

    def test_context_manager_disposes(self):
        with get_batch(counting_source(3)(), 3) as batch:
            assert not batch.disposed
        assert batch.disposed

    def test_context_manager_disposes_on_error(self):
        with pytest.raises(ValueError):
            with get_batch(counting_source(3)(), 3) as batch:
                raise ValueError("boom")
        assert batch.disposed
