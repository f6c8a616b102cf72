"""Tests for the PLRNN forecasting engine."""

import pytest
import numpy as np
from numpy.testing import assert_array_almost_equal
from datetime import datetime, timedelta

from cognitive_forecast.config import PLRNNConfig
from cognitive_forecast.core import (
    PLRNNEngine,
    PLRNNWeights,
    LatentState,
    Prediction,
    TrainingSample,
    InterventionSimulation,
    NotInitializedError,
    InvalidDimensionError,
    HORIZON_STEPS,
    create_engine,
    EngineKind,
)


@pytest.fixture
def engine(dense_config):
    engine = PLRNNEngine(dense_config, seed=42)
    engine.initialize()
    return engine


@pytest.fixture
def linear_engine(dense_config, start_time):
    """Dense engine with unit self-weights, no coupling and identity readout."""
    engine = PLRNNEngine(dense_config, seed=0)
    engine.initialize()
    engine.weights.A[:] = 1.0
    engine.weights.W[:] = 0.0
    engine.weights.B[:] = np.eye(5)
    engine.weights.bias_latent[:] = 0.0
    return engine


def _zero_state(start_time):
    return LatentState(latent_state=np.zeros(5), hidden_activations=np.zeros(5),
                       observed_state=np.zeros(5), uncertainty=np.zeros(5),
                       timestamp=start_time, timestep=0)


class TestInitialization:
    """Test suite for engine construction and weights."""

    def test_uninitialized_raises(self, dense_config):
        engine = PLRNNEngine(dense_config)
        assert not engine.is_initialized
        with pytest.raises(NotInitializedError):
            engine.predict(engine.create_state(np.zeros(5)), 3)

    def test_unknown_connectivity(self):
        with pytest.raises(ValueError):
            PLRNNEngine(PLRNNConfig(connectivity="sparse"))

    def test_weight_shapes_dense(self, engine):
        w = engine.get_weights()
        assert w.A.shape == (5,)
        assert w.W.shape == (5, 5)
        assert_array_almost_equal(w.B, np.eye(5))
        assert w.C is None and w.dendritic_weights is None
        assert np.all((w.A >= 0.9) & (w.A <= 1.0))

    def test_weight_shapes_dendritic(self, dendritic_config):
        engine = PLRNNEngine(dendritic_config, seed=1)
        engine.initialize()
        assert engine.weights.C.shape == (5, 4)
        assert engine.weights.dendritic_weights.shape == (4, 5)

    def test_load_get_identity(self, engine, dense_config):
        other = PLRNNEngine(dense_config, seed=3)
        other.initialize()
        weights = other.get_weights()
        engine.load_weights(weights)
        assert engine.get_weights() is weights

    def test_weights_dict_round_trip(self, dendritic_config):
        engine = PLRNNEngine(dendritic_config, seed=2)
        engine.initialize()
        restored = PLRNNWeights.from_dict(engine.weights.to_dict())
        assert_array_almost_equal(restored.W, engine.weights.W)
        assert_array_almost_equal(restored.C, engine.weights.C)
        assert restored.meta.config.connectivity == "dendritic"

    def test_copy_is_independent(self, engine):
        snapshot = engine.weights.copy()
        engine.weights.W += 1.0
        assert not np.allclose(snapshot.W, engine.weights.W)

    def test_same_seed_same_weights(self, dense_config):
        a = create_engine(EngineKind.PLRNN, dense_config, seed=9)
        b = create_engine("plrnn", dense_config, seed=9)
        assert_array_almost_equal(a.weights.W, b.weights.W)


class TestForward:
    """Test suite for one-step dynamics."""

    def test_linear_step_returns_observation_bias(self, linear_engine, start_time):
        """With A=1, W=0, B=I and no latent bias, zero stays zero."""
        state = _zero_state(start_time)
        nxt = linear_engine.forward(state)
        assert_array_almost_equal(nxt.latent_state, np.zeros(5))
        assert_array_almost_equal(nxt.observed_state, linear_engine.weights.bias_observed)
        assert nxt.timestep == 1
        assert nxt.timestamp == start_time + timedelta(hours=1)
        assert_array_almost_equal(nxt.uncertainty, np.zeros(5))

    def test_wrong_latent_length(self, engine, start_time):
        state = engine.create_state(np.zeros(5), start_time)
        state.latent_state = np.zeros(3)
        with pytest.raises(InvalidDimensionError):
            engine.forward(state)

    def test_inputs_shift_latent(self, linear_engine, start_time):
        state = _zero_state(start_time)
        nxt = linear_engine.forward(state, inputs=[1.0, 0.0, 0.0, 0.0, 0.0])
        assert nxt.latent_state[0] == pytest.approx(1.0)

    def test_dendritic_forward_is_finite(self, dendritic_config, start_time):
        engine = PLRNNEngine(dendritic_config, seed=4)
        engine.initialize()
        state = engine.create_state(np.ones(5) * 0.5, start_time)
        nxt = engine.forward(state)
        assert np.all(np.isfinite(nxt.observed_state))

    def test_create_state_pads(self, engine):
        state = engine.create_state([0.1, 0.2])
        assert state.latent_state.shape == (5,)


class TestPredict:
    """Test suite for multi-step prediction."""

    def test_trajectory_length(self, engine, start_time):
        state = engine.create_state(np.full(5, 0.2), start_time)
        prediction = engine.predict(state, horizon=6)
        assert isinstance(prediction, Prediction)
        assert prediction.horizon == 6
        assert len(prediction.trajectory) == 7
        assert prediction.trajectory[0] is state
        assert prediction.variance.shape == (7, 5)
        assert_array_almost_equal(prediction.mean_prediction, prediction.trajectory[-1].observed_state)

    def test_default_horizon(self, engine):
        prediction = engine.predict(engine.create_state(np.zeros(5)))
        assert prediction.horizon == engine.config.prediction_horizon

    def test_uncertainty_monotone_and_capped(self, engine, start_time):
        state = engine.create_state(np.full(5, 0.2), start_time)
        prediction = engine.predict(state, horizon=80)
        variance = prediction.variance
        assert np.all(np.diff(variance, axis=0) >= -1e-12)
        assert np.all(variance <= engine.config.max_uncertainty + 1e-12)
        assert_array_almost_equal(variance[-1], np.full(5, engine.config.max_uncertainty))

    def test_confidence_band(self, engine):
        prediction = engine.predict(engine.create_state(np.zeros(5)), horizon=3)
        ci = prediction.confidence_interval
        spread = 1.96 * np.sqrt(prediction.trajectory[-1].uncertainty)
        assert_array_almost_equal(ci.upper - prediction.mean_prediction, spread)
        assert_array_almost_equal(prediction.mean_prediction - ci.lower, spread)

    def test_to_dict(self, engine, start_time):
        data = engine.predict(engine.create_state(np.zeros(5), start_time), horizon=2).to_dict()
        assert data['horizon'] == 2
        assert len(data['trajectory']) == 3

    def test_hybrid_predict(self, engine):
        state = engine.create_state(np.zeros(5))
        original_l1 = engine.config.l1_regularization
        for label, steps in HORIZON_STEPS.items():
            assert engine.hybrid_predict(state, label).horizon == steps
        assert engine.config.l1_regularization == original_l1

    def test_hybrid_predict_unknown(self, engine):
        with pytest.raises(ValueError):
            engine.hybrid_predict(engine.create_state(np.zeros(5)), 'weekly')


class TestInterventions:
    """Test suite for counterfactual simulation."""

    def test_symmetry_without_coupling(self, linear_engine, start_time):
        """Without coupling, increase and decrease effects mirror each other."""
        state = linear_engine.create_state(np.full(5, 0.3), start_time)
        up = linear_engine.simulate_intervention(state, 'valence', 'increase', 0.1)
        down = linear_engine.simulate_intervention(state, 'valence', 'decrease', 0.1)
        for dim in up.effects:
            assert up.effects[dim] == pytest.approx(-down.effects[dim], abs=1e-10)
        assert up.effects['valence'] > 0
        assert up.effects['arousal'] == pytest.approx(0.0)
        assert up.side_effects == []

    def test_symmetry_with_dense_coupling(self, engine, start_time):
        state = engine.create_state(np.full(5, 0.5), start_time)
        up = engine.simulate_intervention(state, 'arousal', 'increase', 0.05)
        down = engine.simulate_intervention(state, 'arousal', 'decrease', 0.05)
        assert np.sign(up.effects['arousal']) == -np.sign(down.effects['arousal'])

    def test_result_fields(self, engine, start_time):
        state = engine.create_state(np.full(5, 0.5), start_time)
        result = engine.simulate_intervention(state, 'risk', 'stabilize', 1.0)
        assert isinstance(result, InterventionSimulation)
        assert set(result.effects) == {'valence', 'arousal', 'dominance', 'risk', 'resources'}
        assert 0.0 <= result.confidence <= 1.0
        assert 0.0 <= result.time_to_peak <= 24.0
        assert result.to_dict()['target'] == 'risk'

    def test_unknown_target(self, engine):
        with pytest.raises(InvalidDimensionError):
            engine.simulate_intervention(engine.create_state(np.zeros(5)), 'mood', 'increase', 0.1)

    def test_unknown_intervention(self, engine):
        with pytest.raises(ValueError):
            engine.simulate_intervention(engine.create_state(np.zeros(5)), 'risk', 'boost', 0.1)


class TestAnalysis:
    """Test suite for causal networks, warnings and complexity metrics."""

    def test_causal_network_from_weights(self, engine):
        engine.weights.W[:] = 0.0
        engine.weights.W[1, 0] = 0.4
        network = engine.extract_causal_network()
        assert len(network.edges) == 1
        assert network.edges[0].source == 'node_0'

    def test_complexity_metrics(self, engine):
        metrics = engine.get_complexity_metrics()
        assert set(metrics) == {'effective_dimensionality', 'sparsity', 'lyapunov_exponent'}
        assert 0.0 <= metrics['sparsity'] <= 1.0

    def test_complexity_zero_coupling(self, linear_engine):
        metrics = linear_engine.get_complexity_metrics()
        assert metrics['sparsity'] == 1.0
        assert metrics['lyapunov_exponent'] == float('-inf')

    def test_complexity_uninitialized(self, dense_config):
        metrics = PLRNNEngine(dense_config).get_complexity_metrics()
        assert metrics['sparsity'] == 0.0

    def test_calculate_loss(self, engine):
        assert engine.calculate_loss([1.0, 2.0], [1.0, 0.0]) == pytest.approx(2.0)
        assert engine.calculate_loss([], []) == 0.0


class TestOnlineTraining:
    """Test suite for online and batch training."""

    def _sample(self, observation_sequence):
        values, timestamps = observation_sequence
        return TrainingSample(observations=list(values), timestamps=timestamps)

    def test_short_sample_is_skipped(self, engine):
        before = engine.weights.copy()
        result = engine.train_online(TrainingSample(observations=[np.zeros(5)]))
        assert result.loss == float('inf')
        assert not result.converged
        assert_array_almost_equal(engine.weights.W, before.W)

    def test_train_online_updates_weights(self, engine, observation_sequence):
        before = engine.weights.copy()
        result = engine.train_online(self._sample(observation_sequence))
        assert np.isfinite(result.loss)
        assert result.epochs == 1
        assert engine.weights.meta.training_samples == 1
        assert not np.allclose(before.bias_observed, engine.weights.bias_observed)

    def test_training_reduces_loss(self, dense_config, observation_sequence):
        config = PLRNNConfig(latent_dim=5, connectivity="dense", learning_rate=0.01,
                             teacher_forcing_ratio=1.0)
        engine = PLRNNEngine(config, seed=1)
        engine.initialize()
        sample = self._sample(observation_sequence)
        first = engine.train_online(sample).loss
        for _ in range(30):
            last = engine.train_online(sample).loss
        assert last < first

    def test_empty_batch(self, engine):
        result = engine.train_batch([])
        assert result.loss == float('inf')
        assert result.epochs == 0

    def test_train_batch(self, engine, observation_sequence):
        result = engine.train_batch([self._sample(observation_sequence)] * 2)
        assert result.epochs == 2
        assert np.isfinite(result.loss)

    def test_train_initializes(self, dense_config, observation_sequence):
        engine = PLRNNEngine(dense_config, seed=0)
        engine.train_online(self._sample(observation_sequence))
        assert engine.is_initialized

    def test_apply_gradients_sgd(self, engine):
        before = engine.weights.bias_observed.copy()
        engine.apply_gradients({'bias_observed': np.ones(5)}, learning_rate=0.1, optimizer="sgd")
        assert_array_almost_equal(engine.weights.bias_observed, before - 0.1)

    def test_apply_gradients_clips(self, engine):
        before = engine.weights.bias_latent.copy()
        engine.apply_gradients({'bias_latent': np.full(5, 100.0)}, learning_rate=0.1,
                               gradient_clip=1.0, optimizer="sgd")
        assert_array_almost_equal(engine.weights.bias_latent, before - 0.1)

    def test_apply_gradients_unknown_optimizer(self, engine):
        with pytest.raises(ValueError):
            engine.apply_gradients({'A': np.zeros(5)}, learning_rate=0.1, optimizer="rmsprop")
