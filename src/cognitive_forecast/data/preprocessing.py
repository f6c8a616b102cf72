"""Preparation of EMA sequences for training."""

import logging
import math
from datetime import datetime, timedelta
from typing import List, Sequence, Tuple, Optional

import numpy as np

from .ema import NormalizationStats, TrainingSequence

logger = logging.getLogger(__name__)


def regularize_timesteps(values: np.ndarray, timestamps: Sequence[datetime],
                         target_interval_hours: float) -> Tuple[np.ndarray, List[datetime], bool]:
    """Resample an irregular series onto a fixed grid by linear interpolation.

    The grid starts at the first timestamp and holds
    ``ceil(total_hours / target_interval_hours)`` points; values beyond the
    last observation are held constant.

    Parameters
    ----------
    values : np.ndarray, shape (T, D)
    timestamps : Sequence[datetime]
        Non-decreasing observation times
    target_interval_hours : float

    Returns
    -------
    values : np.ndarray, shape (steps, D)
    timestamps : List[datetime]
    was_interpolated : bool
        False when the input had fewer than two points and was returned as is
    """
    values = np.asarray(values, dtype=float)
    if len(values) < 2:
        return values, list(timestamps), False

    start = timestamps[0]
    hours = np.array([(ts - start).total_seconds() / 3600.0 for ts in timestamps])
    num_steps = math.ceil(hours[-1] / target_interval_hours)
    grid = np.arange(num_steps) * target_interval_hours

    regular = np.column_stack([np.interp(grid, hours, values[:, d]) for d in range(values.shape[1])])
    grid_times = [start + timedelta(hours=float(h)) for h in grid]
    return regular.reshape(num_steps, values.shape[1]), grid_times, True


def normalize_sequence(values: np.ndarray) -> Tuple[np.ndarray, NormalizationStats]:
    """Z-score each dimension with the sample standard deviation.

    Dimensions with zero (or undefined) spread use a standard deviation of 1.
    """
    values = np.asarray(values, dtype=float)
    if len(values) == 0:
        return values, NormalizationStats(means=np.zeros(0), stds=np.zeros(0))

    means = values.mean(axis=0)
    if len(values) > 1:
        stds = values.std(axis=0, ddof=1)
    else:
        stds = np.zeros(values.shape[1])
    stds = np.where(np.isfinite(stds) & (stds > 0), stds, 1.0)

    return (values - means) / stds, NormalizationStats(means=means, stds=stds)


def train_validation_split(sequences: List[TrainingSequence], validation_split: float,
                           rng: Optional[np.random.Generator] = None
                           ) -> Tuple[List[TrainingSequence], List[TrainingSequence]]:
    """Shuffle and split at ``floor(n * (1 - validation_split))``."""
    rng = rng if rng is not None else np.random.default_rng()
    order = rng.permutation(len(sequences))
    shuffled = [sequences[i] for i in order]
    split = int(math.floor(len(shuffled) * (1.0 - validation_split)))
    return shuffled[:split], shuffled[split:]
