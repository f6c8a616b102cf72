"""Synthetic EMA data for experiments and tests.

Two generators:

- :func:`generate_ema_dataset` draws stable five-dimensional VAR(1)
  trajectories with irregular sampling times, one per participant.
- :func:`generate_critical_transition_series` produces a series whose AR(1)
  coefficient drifts toward 1, the critical-slowing-down scenario the
  early-warning detectors look for.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional, Sequence, Tuple

import numpy as np
from scipy.special import expit

from ..config.random_state import get_rng
from ..core.state import STATE_DIMENSIONS
from .ema import EMADataset, EMAObservation, ParticipantTimeSeries

logger = logging.getLogger(__name__)

EVOLUTION_TYPES = ['linear', 'sigmoid', 'constant']
MIN_GAP_HOURS = 0.25
MAX_SPECTRAL_RADIUS = 0.95
DEFAULT_START = datetime(2024, 1, 1, 8, 0)


def random_var_matrix(dim: int, rng: np.random.Generator, persistence: float = 0.8,
                      coupling: float = 0.1) -> np.ndarray:
    """Stable VAR(1) matrix: diagonal persistence plus random cross-coupling.

    Rescaled so that the spectral radius stays below 0.95.
    """
    A = np.eye(dim) * persistence + rng.uniform(-coupling, coupling, size=(dim, dim)) * (1 - np.eye(dim))
    radius = np.max(np.abs(np.linalg.eigvals(A)))
    if radius >= MAX_SPECTRAL_RADIUS:
        A *= MAX_SPECTRAL_RADIUS / radius
    return A


def generate_ema_dataset(n_participants: int = 10,
                         n_observations: int = 60,
                         interval_hours: float = 4.0,
                         jitter_hours: float = 1.0,
                         noise_std: float = 0.1,
                         dim: int = len(STATE_DIMENSIONS),
                         start: datetime = DEFAULT_START,
                         seed: Optional[int] = None) -> EMADataset:
    """Generate irregularly sampled EMA trajectories.

    Each participant has a baseline ``mu`` and its own stable dynamics
    ``x_{t+1} = mu + A (x_t - mu) + eps``. Sampling gaps are
    ``interval_hours`` plus uniform jitter, never shorter than 15 minutes.

    Parameters
    ----------
    n_participants : int
    n_observations : int
        Observations per participant
    interval_hours : float
        Nominal gap between prompts
    jitter_hours : float
        Half-width of the uniform gap jitter
    noise_std : float
        Innovation standard deviation
    dim : int
        Number of state dimensions
    start : datetime
        Time of every participant's first observation
    seed : Optional[int]

    Returns
    -------
    EMADataset
    """
    if n_participants < 1 or n_observations < 1:
        raise ValueError("Number of participants and observations must be positive")

    rng = get_rng(seed)
    participants = []

    for p in range(n_participants):
        A = random_var_matrix(dim, rng)
        mu = rng.uniform(-0.5, 0.5, size=dim)
        x = mu + rng.normal(0, noise_std, size=dim)

        gaps = np.maximum(MIN_GAP_HOURS, interval_hours + rng.uniform(-jitter_hours, jitter_hours,
                                                                       size=n_observations))
        gaps[0] = 0.0
        hours = np.cumsum(gaps)

        observations = []
        for t in range(n_observations):
            observations.append(EMAObservation(timestamp=start + timedelta(hours=float(hours[t])),
                                               values=x.copy()))
            x = mu + A @ (x - mu) + rng.normal(0, noise_std, size=dim)

        participants.append(ParticipantTimeSeries(participant_id=f"P{p:03d}", observations=observations))

    logger.debug("Generated %d synthetic participants with %d observations each",
                 n_participants, n_observations)
    return EMADataset(
        participants=participants,
        name="synthetic",
        metadata={
            'generator': 'var1',
            'interval_hours': interval_hours,
            'jitter_hours': jitter_hours,
            'noise_std': noise_std,
            'seed': seed,
        },
    )


def ar_coefficient_trajectory(n_steps: int, ar_start: float, ar_end: float,
                              evolution: str = 'linear', steepness: float = 10.0) -> np.ndarray:
    """AR(1) coefficient per step moving from ``ar_start`` to ``ar_end``."""
    if evolution not in EVOLUTION_TYPES:
        raise ValueError(f"Unknown evolution type: {evolution}")

    t = np.linspace(0, 1, n_steps) if n_steps > 1 else np.zeros(1)
    if evolution == 'linear':
        progress = t
    elif evolution == 'sigmoid':
        progress = expit(steepness * (t - 0.5))
    else:
        progress = np.zeros_like(t)
    return ar_start + (ar_end - ar_start) * progress


def generate_critical_transition_series(n_steps: int = 200,
                                        dim: int = len(STATE_DIMENSIONS),
                                        ar_start: float = 0.1,
                                        ar_end: float = 0.95,
                                        evolution: str = 'linear',
                                        affected_dims: Sequence[int] = (0,),
                                        noise_std: float = 0.1,
                                        seed: Optional[int] = None) -> Tuple[np.ndarray, np.ndarray]:
    """Series approaching a tipping point in ``affected_dims``.

    Affected dimensions follow ``x_t = a_t x_{t-1} + eps`` with ``a_t``
    drifting from ``ar_start`` to ``ar_end``; the others keep ``ar_start``.

    Returns
    -------
    series : np.ndarray, shape (n_steps, dim)
    coefficients : np.ndarray, shape (n_steps,)
        AR coefficient of the affected dimensions at each step
    """
    rng = get_rng(seed)
    coefficients = ar_coefficient_trajectory(n_steps, ar_start, ar_end, evolution)
    affected = np.zeros(dim, dtype=bool)
    affected[list(affected_dims)] = True

    series = np.zeros((n_steps, dim))
    for t in range(1, n_steps):
        a = np.where(affected, coefficients[t], ar_start)
        series[t] = a * series[t - 1] + rng.normal(0, noise_std, size=dim)

    return series, coefficients
