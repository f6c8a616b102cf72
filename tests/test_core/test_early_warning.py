"""Tests for critical-transition detection."""

import pytest
import numpy as np

from cognitive_forecast.core import EarlyWarningSignal, detect_early_warnings
from cognitive_forecast.core.early_warning import (
    autocorrelation,
    variance,
    flickering,
    correlation,
    estimate_transition_time,
    history_matrix,
)


class TestIndicators:
    """Test suite for the scalar indicator functions."""

    def test_autocorrelation_short_series(self):
        assert autocorrelation([1.0, 2.0]) == 0.0

    def test_autocorrelation_flat_series(self):
        assert autocorrelation(np.ones(10)) == 0.0

    def test_autocorrelation_alternating_is_negative(self):
        assert autocorrelation(np.tile([1.0, -1.0], 10)) < -0.5

    def test_autocorrelation_trend_is_positive(self):
        assert autocorrelation(np.arange(20, dtype=float)) > 0.5

    def test_variance(self):
        assert variance([1.0]) == 0.0
        assert variance([1.0, 3.0]) == pytest.approx(2.0)

    def test_flickering_alternating(self):
        """Crossing at every step is twice the white-noise rate."""
        assert flickering(np.tile([1.0, -1.0], 10)) == pytest.approx(1.0)

    def test_flickering_short_or_monotone(self):
        assert flickering([1.0, 2.0, 3.0]) == 0.0
        assert flickering(np.arange(10, dtype=float)) == 0.0

    def test_correlation(self):
        x = np.arange(10, dtype=float)
        assert correlation(x, 2 * x + 1) == pytest.approx(1.0)
        assert correlation(x, -x) == pytest.approx(-1.0)
        assert correlation(x, np.ones(10)) == 0.0

    def test_transition_time(self):
        assert estimate_transition_time(0.5) is None
        assert estimate_transition_time(0.8, dt=1.0) == pytest.approx(5.0)
        assert estimate_transition_time(0.999) == 48.0
        assert estimate_transition_time(1.0) == 0.0


class TestDetectEarlyWarnings:
    """Test suite for detect_early_warnings."""

    def test_short_history_is_suppressed(self):
        """Fewer than two windows of data yield no signals."""
        history = np.random.default_rng(0).normal(size=(9, 5))
        assert detect_early_warnings(history, window_size=5) == []

    def test_constant_history_has_no_signals(self):
        assert detect_early_warnings(np.ones((40, 5)), window_size=10) == []

    def test_invalid_window(self):
        assert detect_early_warnings(np.ones((10, 2)), window_size=0) == []

    def test_detects_critical_slowing_down(self, critical_series):
        """The dimension approaching the transition is flagged."""
        signals = detect_early_warnings(critical_series, window_size=50)
        flagged = {(s.type, s.dimension) for s in signals}
        assert ('variance', 'valence') in flagged or ('autocorrelation', 'valence') in flagged
        for signal in signals:
            assert isinstance(signal, EarlyWarningSignal)
            assert 0.0 <= signal.confidence <= 1.0
            assert signal.recommendation

    def test_variance_signal_strength(self):
        """A late window with quadrupled spread gives a variance signal."""
        rng = np.random.default_rng(1)
        history = np.zeros((40, 1))
        history[:20, 0] = rng.normal(0.0, 0.1, 20)
        history[20:, 0] = rng.normal(0.0, 1.0, 20)
        signals = detect_early_warnings(history, window_size=20, include_connectivity=False)
        variance_signals = [s for s in signals if s.type == 'variance']
        assert len(variance_signals) == 1
        assert variance_signals[0].dimension == 'valence'
        assert variance_signals[0].strength > 1.0

    def test_connectivity_signal(self):
        """Dimensions that become coupled raise a network signal."""
        rng = np.random.default_rng(2)
        early = rng.normal(size=(30, 3))
        driver = rng.normal(size=30)
        late = np.stack([driver, driver + 0.05 * rng.normal(size=30),
                         -driver + 0.05 * rng.normal(size=30)], axis=1)
        history = np.vstack([early, late])
        signals = detect_early_warnings(history, window_size=30)
        assert any(s.type == 'connectivity' and s.dimension == 'network' for s in signals)

    def test_signal_to_dict(self):
        signal = EarlyWarningSignal(type='variance', dimension='risk', strength=0.5,
                                    estimated_time_to_transition=None, confidence=0.8,
                                    recommendation='watch')
        assert signal.to_dict()['dimension'] == 'risk'

    def test_history_matrix_from_states(self, dense_config):
        from cognitive_forecast.core import create_state
        states = [create_state(np.full(5, float(i)), 5) for i in range(3)]
        assert history_matrix(states).shape == (3, 5)
        assert history_matrix([]).shape == (0, 0)
