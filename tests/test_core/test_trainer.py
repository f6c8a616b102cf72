"""Tests for the truncated-BPTT trainer."""

import pytest
import numpy as np
from numpy.testing import assert_array_almost_equal
from dataclasses import replace

from cognitive_forecast.core import (
    PLRNNEngine,
    PLRNNTrainer,
    TrainingHistory,
    TrainingMetrics,
    EMATrainingResult,
)
from cognitive_forecast.data import generate_ema_dataset, TrainingSequence


@pytest.fixture
def trainer(dense_config, fast_training_config):
    engine = PLRNNEngine(dense_config, seed=0)
    return PLRNNTrainer(engine, fast_training_config, seed=0)


@pytest.fixture
def sequence():
    rng = np.random.default_rng(3)
    t = np.arange(25)
    values = np.stack([np.sin(t / 4.0 + k) for k in range(5)], axis=1) + rng.normal(0, 0.05, (25, 5))
    return TrainingSequence(participant_id="S", values=values, timestamps=[])


class TestConstruction:
    """Test suite for trainer construction."""

    def test_initializes_engine(self, dense_config, fast_training_config):
        engine = PLRNNEngine(dense_config, seed=0)
        PLRNNTrainer(engine, fast_training_config)
        assert engine.is_initialized

    def test_unknown_schedule(self, dense_config, fast_training_config):
        with pytest.raises(ValueError):
            PLRNNTrainer(PLRNNEngine(dense_config), replace(fast_training_config, lr_schedule="cyclic"))

    def test_get_config_is_copy(self, trainer):
        config = trainer.get_config()
        config.epochs = 999
        assert trainer.config.epochs != 999


class TestLearningRate:
    """Test suite for the learning-rate schedules."""

    def test_constant_without_warmup(self, trainer):
        # three epochs leave no room for warm-up
        assert trainer.compute_learning_rate(0) == pytest.approx(trainer.config.learning_rate)
        assert trainer.compute_learning_rate(2) == pytest.approx(trainer.config.learning_rate)

    def test_warmup(self, trainer):
        trainer.config = replace(trainer.config, epochs=100, lr_schedule="constant")
        assert trainer.compute_learning_rate(0) == pytest.approx(trainer.config.learning_rate / 5)
        assert trainer.compute_learning_rate(4) == pytest.approx(trainer.config.learning_rate)

    def test_step_schedule(self, trainer):
        trainer.config = replace(trainer.config, epochs=100, lr_schedule="step",
                                 lr_decay_steps=30, lr_decay_factor=0.5)
        assert trainer.compute_learning_rate(30) == pytest.approx(trainer.config.learning_rate * 0.5)
        assert trainer.compute_learning_rate(60) == pytest.approx(trainer.config.learning_rate * 0.25)

    def test_exponential_schedule(self, trainer):
        trainer.config = replace(trainer.config, epochs=100, lr_schedule="exponential",
                                 lr_decay_steps=10, lr_decay_factor=0.5)
        assert trainer.compute_learning_rate(15) == pytest.approx(trainer.config.learning_rate * 0.5 ** 1.5)

    def test_cosine_schedule(self, trainer):
        trainer.config = replace(trainer.config, epochs=100, lr_schedule="cosine", lr_min=1e-6)
        peak = trainer.compute_learning_rate(5)
        late = trainer.compute_learning_rate(99)
        assert peak == pytest.approx(trainer.config.learning_rate)
        assert late < peak
        assert late >= trainer.config.lr_min

    def test_floor(self, trainer):
        trainer.config = replace(trainer.config, epochs=100, lr_schedule="step",
                                 lr_decay_steps=1, lr_decay_factor=0.01, lr_min=1e-5)
        assert trainer.compute_learning_rate(50) == pytest.approx(1e-5)


class TestBPTT:
    """Test suite for full-sequence forward and backward passes."""

    def test_forward(self, trainer, sequence):
        result = trainer.bptt_forward(sequence.values[:8])
        assert len(result.states) == 8
        assert len(result.predictions) == 7
        assert len(result.losses) == 7
        assert result.total_loss == pytest.approx(sum(result.losses))
        assert_array_almost_equal(result.states[0].latent_state, sequence.values[0])

    def test_backward(self, trainer, sequence):
        values = sequence.values[:8]
        forward = trainer.bptt_forward(values)
        backward = trainer.bptt_backward(values, forward)
        assert backward.gradients.num_samples == 7
        assert backward.final_error.shape == (5,)
        assert set(backward.gradients.sums) >= {'A', 'W', 'B', 'bias_latent', 'bias_observed'}

    def test_train_on_sequence(self, trainer, sequence):
        before = trainer.engine.weights.copy()
        loss = trainer.train_on_sequence(sequence)
        assert np.isfinite(loss)
        assert not np.allclose(before.W, trainer.engine.weights.W)

    def test_short_sequence_skipped(self, trainer):
        short = TrainingSequence(participant_id="S", values=np.zeros((4, 5)), timestamps=[])
        before = trainer.engine.weights.copy()
        assert trainer.train_on_sequence(short) == 0.0
        assert_array_almost_equal(before.W, trainer.engine.weights.W)

    def test_validation_leaves_weights(self, trainer, sequence):
        before = trainer.engine.weights.copy()
        result = trainer._run_sequence(sequence, True, 0.01, 1.0)
        assert result.samples > 0
        assert set(result.horizon_losses) == {1, 3}
        assert_array_almost_equal(before.W, trainer.engine.weights.W)
        assert_array_almost_equal(before.B, trainer.engine.weights.B)


class TestDataPreparation:
    """Test suite for sequence preparation."""

    def test_prepare_split(self, trainer, synthetic_dataset):
        train, validation = trainer.prepare_split(synthetic_dataset)
        assert len(train) == 3
        assert len(validation) == 1
        for seq in train + validation:
            assert seq.was_interpolated
            assert_array_almost_equal(seq.values.mean(axis=0), np.zeros(5))
            assert seq.norm_stats is not None

    def test_short_participants_skipped(self, trainer):
        dataset = generate_ema_dataset(n_participants=2, n_observations=5, seed=1)
        assert trainer.prepare_training_data(dataset) == []


class TestTrain:
    """Test suite for full training runs."""

    def test_train_result(self, trainer, synthetic_dataset):
        result = trainer.train(synthetic_dataset)
        assert isinstance(result, EMATrainingResult)
        assert isinstance(result.history, TrainingHistory)
        assert isinstance(result.metrics, TrainingMetrics)
        assert 1 <= len(result.history.epoch_losses) <= 3
        assert len(result.history.learning_rates) == len(result.history.epoch_losses)
        assert 0 <= result.history.best_epoch < len(result.history.epoch_losses)
        history = result.history
        assert history.best_validation_loss == history.epoch_validation_losses[history.best_epoch]
        assert history.best_validation_loss >= min(history.epoch_validation_losses)
        assert set(result.metrics.per_horizon_mae) == {1, 3}
        assert result.trained_weights is trainer.engine.get_weights()
        assert result.trained_weights.meta.training_samples == 3

    def test_no_sequences_raises(self, trainer):
        dataset = generate_ema_dataset(n_participants=2, n_observations=5, seed=1)
        with pytest.raises(ValueError):
            trainer.train(dataset)

    def test_empty_validation_uses_training_loss(self, trainer, synthetic_dataset):
        config = replace(trainer.config, validation_split=0.0)
        result = trainer.train(synthetic_dataset, config)
        assert result.history.epoch_validation_losses == result.history.epoch_losses
        assert result.history.horizon_losses == {}

    def test_early_stopping(self, trainer, synthetic_dataset):
        config = replace(trainer.config, epochs=10, early_stopping_patience=1,
                         early_stopping_min_delta=1e9)
        result = trainer.train(synthetic_dataset, config)
        assert result.history.converged
        assert result.history.early_stop_reason is not None
        assert len(result.history.epoch_losses) == 2
        assert result.history.best_epoch == 0

    def test_best_weights_restored(self, trainer, synthetic_dataset):
        """Weights of the best epoch are loaded back, not those of the last one."""
        config = replace(trainer.config, epochs=4, early_stopping_patience=10,
                         early_stopping_min_delta=1e9)
        snapshot = trainer.engine.weights.copy()
        result = trainer.train(synthetic_dataset, config)
        assert result.history.best_epoch == 0
        assert not np.allclose(result.trained_weights.W, snapshot.W)

    def test_alias(self, trainer):
        assert PLRNNTrainer.train_on_ema_data is PLRNNTrainer.train


class TestFinalMetrics:
    """Test suite for forecast-quality metrics."""

    def test_persistence_on_constant_sequence(self, trainer):
        constant = TrainingSequence(participant_id="C", values=np.ones((10, 5)), timestamps=[])
        metrics = trainer.compute_final_metrics([constant], [1, 2])
        assert metrics.per_horizon_persistence[1] == pytest.approx(0.0)
        assert metrics.improvement_over_persistence == 0.0
        assert set(metrics.per_horizon_rmse) == {1, 2}

    def test_metrics_consistency(self, trainer, sequence):
        metrics = trainer.compute_final_metrics([sequence], [1, 3])
        for h in (1, 3):
            assert metrics.per_horizon_rmse[h] >= metrics.per_horizon_mae[h] - 1e-12
            assert metrics.per_horizon_r2[h] <= 1.0
        assert metrics.final_validation_loss == pytest.approx(
            (metrics.per_horizon_mae[1] + metrics.per_horizon_mae[3]) / 2)
