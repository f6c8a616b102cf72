"""Critical-transition detectors shared by both engines.

Implements the classic early-warning indicators of an approaching tipping
point: rising lag-1 autocorrelation (critical slowing down), rising
variance, flickering between regimes and rising cross-dimension
connectivity.
"""

import logging
from dataclasses import dataclass, asdict
from typing import List, Optional, Sequence, Union

import numpy as np

from .state import LatentState, dimension_label

logger = logging.getLogger(__name__)

AC_INCREASE_THRESHOLD = 0.1
AC_LEVEL_THRESHOLD = 0.5
AC_TRANSITION_THRESHOLD = 0.7
VARIANCE_RATIO_THRESHOLD = 1.5
FLICKERING_THRESHOLD = 0.3
FLICKERING_HOURS = 12.0
FLICKERING_CONFIDENCE = 0.6
CONNECTIVITY_RATIO_THRESHOLD = 1.3
CONNECTIVITY_CONFIDENCE = 0.7
MAX_TRANSITION_HOURS = 48.0
FULL_CONFIDENCE_SAMPLES = 50


@dataclass
class EarlyWarningSignal:
    """One detected indicator.

    Attributes
    ----------
    type : str
        ``autocorrelation``, ``variance``, ``flickering`` or ``connectivity``
    dimension : str
        State dimension label, or ``network`` for connectivity
    strength : float
        Relative increase of the indicator
    estimated_time_to_transition : Optional[float]
        Hours until the expected transition, None when unknown
    confidence : float
    recommendation : str
    """
    type: str
    dimension: str
    strength: float
    estimated_time_to_transition: Optional[float]
    confidence: float
    recommendation: str

    def to_dict(self):
        return asdict(self)


def autocorrelation(series: Sequence[float]) -> float:
    """Lag-1 autocorrelation; 0 for fewer than three samples or a flat series."""
    x = np.asarray(series, dtype=float)
    if x.shape[0] < 3:
        return 0.0
    centered = x - x.mean()
    denominator = float(np.sum(centered ** 2))
    if denominator <= 0:
        return 0.0
    return float(np.sum(centered[:-1] * centered[1:]) / denominator)


def variance(series: Sequence[float]) -> float:
    """Unbiased sample variance; 0 for fewer than two samples."""
    x = np.asarray(series, dtype=float)
    if x.shape[0] < 2:
        return 0.0
    return float(np.var(x, ddof=1))


def flickering(series: Sequence[float]) -> float:
    """Excess mean-crossing rate over the white-noise expectation.

    Returns ``max(0, crossings / ((n - 1) / 2) - 1)``, 0 for fewer than
    five samples.
    """
    x = np.asarray(series, dtype=float)
    if x.shape[0] < 5:
        return 0.0
    above = x >= x.mean()
    crossings = int(np.count_nonzero(above[1:] != above[:-1]))
    expected = (x.shape[0] - 1) / 2
    return max(0.0, crossings / expected - 1.0)


def correlation(x: Sequence[float], y: Sequence[float]) -> float:
    """Pearson correlation; 0 for fewer than three samples or zero spread."""
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    if x.shape[0] < 3:
        return 0.0
    dx = x - x.mean()
    dy = y - y.mean()
    denom = np.sqrt(np.sum(dx * dx) * np.sum(dy * dy))
    if denom <= 0:
        return 0.0
    return float(np.sum(dx * dy) / denom)


def mean_abs_correlation(window: np.ndarray) -> float:
    """Average |correlation| over all dimension pairs of a (T, D) window."""
    n = window.shape[1]
    values = [abs(correlation(window[:, i], window[:, j]))
              for i in range(n) for j in range(i + 1, n)]
    return float(np.mean(values)) if values else 0.0


def network_connectivity(history: np.ndarray):
    """Mean pairwise |correlation| of the first and second half of the history."""
    midpoint = history.shape[0] // 2
    return mean_abs_correlation(history[:midpoint]), mean_abs_correlation(history[midpoint:])


def estimate_transition_time(ac: float, dt: float = 1.0) -> Optional[float]:
    """Hours to transition from critical slowing down, ``min(48, dt / (1 - ac))``.

    Unknown (None) below an autocorrelation of 0.7.
    """
    if ac < AC_TRANSITION_THRESHOLD:
        return None
    if ac >= 1.0:
        return 0.0
    return min(MAX_TRANSITION_HOURS, dt / (1.0 - ac))


def history_matrix(history: Union[Sequence[LatentState], np.ndarray]) -> np.ndarray:
    """Stack latent states (or pass through an array) into shape (T, D)."""
    if isinstance(history, np.ndarray):
        return np.atleast_2d(history).astype(float)
    if len(history) == 0:
        return np.zeros((0, 0))
    return np.array([s.latent_state for s in history], dtype=float)


def detect_early_warnings(history: Union[Sequence[LatentState], np.ndarray],
                          window_size: int,
                          dt: float = 1.0,
                          include_connectivity: bool = True) -> List[EarlyWarningSignal]:
    """Compare an early and a late window of the history for each indicator.

    Parameters
    ----------
    history : sequence of LatentState or np.ndarray, shape (T, D)
        Ordered state history
    window_size : int
        Length of the early (first) and late (last) comparison windows
    dt : float, default=1.0
        Hours per step, used for transition-time estimates
    include_connectivity : bool, default=True
        Also test network-wide correlation growth

    Returns
    -------
    List[EarlyWarningSignal]
        Empty when fewer than ``2 * window_size`` samples are available
    """
    data = history_matrix(history)
    n_samples = data.shape[0]
    if window_size < 1 or n_samples < window_size * 2:
        return []

    signals: List[EarlyWarningSignal] = []
    sample_confidence = min(1.0, n_samples / FULL_CONFIDENCE_SAMPLES)
    early = data[:window_size]
    late = data[-window_size:]

    for dim in range(data.shape[1]):
        label = dimension_label(dim)

        early_ac = autocorrelation(early[:, dim])
        late_ac = autocorrelation(late[:, dim])
        if late_ac > early_ac + AC_INCREASE_THRESHOLD and late_ac > AC_LEVEL_THRESHOLD:
            headroom = 1.0 - early_ac
            signals.append(EarlyWarningSignal(
                type='autocorrelation',
                dimension=label,
                strength=(late_ac - early_ac) / headroom if headroom > 0 else 1.0,
                estimated_time_to_transition=estimate_transition_time(late_ac, dt),
                confidence=sample_confidence,
                recommendation=(f"Rising autocorrelation in {label} suggests the state is "
                                f"approaching a transition. Consider a preventive intervention."),
            ))

        early_var = variance(early[:, dim])
        late_var = variance(late[:, dim])
        if late_var > early_var * VARIANCE_RATIO_THRESHOLD:
            signals.append(EarlyWarningSignal(
                type='variance',
                dimension=label,
                strength=(late_var - early_var) / early_var if early_var > 0 else 1.0,
                estimated_time_to_transition=None,
                confidence=sample_confidence,
                recommendation=f"Variability of {label} is increasing. The state is becoming less stable.",
            ))

        flicker = flickering(late[:, dim])
        if flicker > FLICKERING_THRESHOLD:
            signals.append(EarlyWarningSignal(
                type='flickering',
                dimension=label,
                strength=flicker,
                estimated_time_to_transition=FLICKERING_HOURS,
                confidence=FLICKERING_CONFIDENCE,
                recommendation=(f"Flickering detected in {label}: the state alternates between "
                                f"regimes, a sign of an imminent shift."),
            ))

    if include_connectivity:
        early_conn, late_conn = network_connectivity(data)
        if late_conn > early_conn * CONNECTIVITY_RATIO_THRESHOLD:
            signals.append(EarlyWarningSignal(
                type='connectivity',
                dimension='network',
                strength=(late_conn - early_conn) / early_conn if early_conn > 0 else late_conn,
                estimated_time_to_transition=None,
                confidence=CONNECTIVITY_CONFIDENCE,
                recommendation=("Coupling between psychological dimensions is strengthening. "
                                "The system is more vulnerable to cascading effects."),
            ))

    if signals:
        logger.debug("Detected %d early-warning signals over %d samples", len(signals), n_samples)
    return signals
