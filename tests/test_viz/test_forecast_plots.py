"""Tests for forecast, causal-network and early-warning figures."""

import pytest
import numpy as np
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
from numpy.testing import assert_array_almost_equal

from cognitive_forecast.core import PLRNNEngine, KalmanFormerEngine, EarlyWarningSignal
from cognitive_forecast.viz import (
    ForecastPlotConfig,
    forecast_path,
    plot_forecast,
    plot_causal_network,
    plot_early_warnings,
    plot_attention,
)

pytestmark = pytest.mark.visual


@pytest.fixture(autouse=True)
def close_figures():
    yield
    plt.close('all')


@pytest.fixture
def plrnn_engine(dense_config):
    engine = PLRNNEngine(dense_config, seed=0)
    engine.initialize()
    return engine


@pytest.fixture
def kalmanformer_state(small_kalmanformer_config, observation_sequence):
    engine = KalmanFormerEngine(small_kalmanformer_config, seed=0)
    engine.initialize()
    values, timestamps = observation_sequence
    state = engine.create_state(values[0], timestamps[0])
    for obs, ts in zip(values[1:6], timestamps[1:6]):
        state = engine.update(state, obs, ts)
    return engine, state


class TestForecastPath:
    """Test suite for forecast_path."""

    def test_plrnn_path(self, plrnn_engine, start_time):
        state = plrnn_engine.create_state(np.full(5, 0.1), start_time)
        prediction = plrnn_engine.predict(state, 6)
        mean, lower, upper = forecast_path(prediction)
        assert mean.shape == (7, 5)
        assert_array_almost_equal(mean[-1], prediction.mean_prediction)
        assert np.all(lower <= mean)
        assert np.all(upper >= mean)
        # Band widens as uncertainty accumulates
        assert np.all((upper - lower)[-1] >= (upper - lower)[0])

    def test_kalmanformer_path(self, kalmanformer_state):
        engine, state = kalmanformer_state
        prediction = engine.predict(state, 4)
        mean, lower, upper = forecast_path(prediction)
        assert mean.shape == (5, 5)
        assert_array_almost_equal(mean[0], state.state_estimate)
        assert np.all(upper - lower >= 0)


class TestPlots:
    """Test suite for the plotting functions."""

    def test_plot_forecast(self, plrnn_engine, observation_sequence, start_time):
        values, _ = observation_sequence
        state = plrnn_engine.create_state(values[-1], start_time)
        prediction = plrnn_engine.predict(state, 5)
        fig = plot_forecast(values, prediction)
        assert isinstance(fig, plt.Figure)
        assert len(fig.axes) == 5

    def test_plot_forecast_subset_and_save(self, kalmanformer_state, tmp_path):
        engine, state = kalmanformer_state
        prediction = engine.predict(state, 3)
        path = tmp_path / "plots" / "forecast.png"
        config = ForecastPlotConfig(figure_size=(6, 4), dpi=50, show_legend=False)
        fig = plot_forecast(np.zeros((0, 5)), prediction, dimensions=[0, 3],
                            save_path=path, config=config)
        assert len(fig.axes) == 2
        assert path.exists()

    def test_plot_causal_network(self, plrnn_engine, tmp_path):
        network = plrnn_engine.extract_causal_network()
        path = tmp_path / "network.png"
        fig = plot_causal_network(network, save_path=path, config=ForecastPlotConfig(dpi=50))
        assert isinstance(fig, plt.Figure)
        assert path.exists()

    def test_plot_causal_network_on_axes(self, plrnn_engine):
        fig, ax = plt.subplots()
        result = plot_causal_network(plrnn_engine.extract_causal_network(), ax=ax)
        assert result is fig

    def test_plot_early_warnings(self):
        signals = [
            EarlyWarningSignal('variance', 'valence', 0.8, None, 0.6, 'monitor'),
            EarlyWarningSignal('autocorrelation', 'valence', 0.4, 12.0, 0.5, 'monitor'),
            EarlyWarningSignal('connectivity', 'network', 0.3, None, 0.4, 'monitor'),
        ]
        fig = plot_early_warnings(signals)
        assert isinstance(fig, plt.Figure)

    def test_plot_early_warnings_empty(self):
        fig = plot_early_warnings([])
        assert isinstance(fig, plt.Figure)
        assert not fig.axes[0].axison

    def test_plot_attention(self, kalmanformer_state):
        engine, state = kalmanformer_state
        explanation = engine.explain(state)
        fig = plot_attention(explanation)
        assert isinstance(fig, plt.Figure)

    def test_plot_attention_without_history(self, small_kalmanformer_config, start_time):
        engine = KalmanFormerEngine(small_kalmanformer_config, seed=0)
        engine.initialize()
        state = engine.create_state(np.zeros(5), start_time)
        explanation = engine.explain(state)
        fig = plot_attention(explanation)
        assert isinstance(fig, plt.Figure)
