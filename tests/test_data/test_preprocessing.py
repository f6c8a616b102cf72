"""Tests for EMA sequence preprocessing."""

import pytest
import numpy as np
from numpy.testing import assert_array_almost_equal
from datetime import datetime, timedelta

from cognitive_forecast.data import (
    regularize_timesteps,
    normalize_sequence,
    train_validation_split,
    TrainingSequence,
)


class TestRegularizeTimesteps:
    """Test suite for regularize_timesteps."""

    def test_linear_interpolation(self):
        start = datetime(2024, 1, 1)
        timestamps = [start, start + timedelta(hours=3), start + timedelta(hours=9)]
        values = np.array([[0.0], [3.0], [9.0]])
        regular, times, interpolated = regularize_timesteps(values, timestamps, 2.0)
        assert interpolated
        # ceil(9 / 2) grid points starting at the first timestamp
        assert regular.shape == (5, 1)
        assert_array_almost_equal(regular[:, 0], [0.0, 2.0, 4.0, 6.0, 8.0])
        assert times[1] == start + timedelta(hours=2)

    def test_single_point_unchanged(self):
        values = np.array([[1.0, 2.0]])
        regular, times, interpolated = regularize_timesteps(values, [datetime(2024, 1, 1)], 4.0)
        assert not interpolated
        assert_array_almost_equal(regular, values)
        assert len(times) == 1


class TestNormalizeSequence:
    """Test suite for normalize_sequence."""

    def test_zscore(self):
        values = np.array([[1.0, 5.0], [3.0, 5.0], [5.0, 5.0]])
        normalized, stats = normalize_sequence(values)
        assert_array_almost_equal(stats.means, [3.0, 5.0])
        assert_array_almost_equal(stats.stds, [2.0, 1.0])
        assert_array_almost_equal(normalized[:, 0], [-1.0, 0.0, 1.0])
        assert_array_almost_equal(normalized[:, 1], [0.0, 0.0, 0.0])

    def test_denormalize(self):
        values = np.random.default_rng(0).normal(2.0, 3.0, size=(20, 3))
        normalized, stats = normalize_sequence(values)
        assert_array_almost_equal(stats.denormalize(normalized), values)

    def test_single_row(self):
        normalized, stats = normalize_sequence(np.array([[4.0, -1.0]]))
        assert_array_almost_equal(stats.stds, [1.0, 1.0])
        assert_array_almost_equal(normalized, [[0.0, 0.0]])

    def test_empty(self):
        normalized, stats = normalize_sequence(np.zeros((0, 5)))
        assert normalized.shape == (0, 5)
        assert stats.means.size == 0


class TestTrainValidationSplit:
    """Test suite for train_validation_split."""

    def _sequences(self, n):
        return [TrainingSequence(participant_id=f"P{i}", values=np.zeros((3, 5)), timestamps=[])
                for i in range(n)]

    def test_sizes(self):
        train, validation = train_validation_split(self._sequences(10), 0.2, np.random.default_rng(0))
        assert len(train) == 8
        assert len(validation) == 2

    def test_floor(self):
        train, validation = train_validation_split(self._sequences(3), 0.2, np.random.default_rng(0))
        assert len(train) == 2
        assert len(validation) == 1

    def test_partition(self):
        sequences = self._sequences(7)
        train, validation = train_validation_split(sequences, 0.3, np.random.default_rng(1))
        ids = sorted(s.participant_id for s in train + validation)
        assert ids == sorted(s.participant_id for s in sequences)

    def test_no_validation(self):
        train, validation = train_validation_split(self._sequences(4), 0.0)
        assert len(train) == 4
        assert validation == []
