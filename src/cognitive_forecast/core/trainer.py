"""Truncated backpropagation-through-time trainer for the PLRNN on EMA data.

Sequences are cut into overlapping windows. Each window is rolled forward
with teacher forcing, its one-step errors are propagated back through the
piecewise-linear transition, and the averaged gradients are applied with
Adam. A weighted multi-horizon term tracks longer forecasts, the learning
rate follows a schedule with warm-up, and the weights of the best
validation epoch are restored at the end.
"""

import logging
import math
import time
from datetime import datetime
from dataclasses import dataclass, field, replace
from typing import List, Dict, Optional, Sequence, Tuple

import numpy as np
from tqdm import tqdm

from ..config.defaults import TrainingConfig, LR_SCHEDULES
from ..config.random_state import get_rng
from ..data.ema import EMADataset, TrainingSequence
from ..data.preprocessing import regularize_timesteps, normalize_sequence, train_validation_split
from .gradients import GradientAccumulator
from .plrnn import PLRNNEngine, PLRNNWeights
from .state import LatentState

logger = logging.getLogger(__name__)

MAX_WARMUP_EPOCHS = 5


def _mse(predicted: np.ndarray, target: np.ndarray) -> float:
    """Mean squared error over the overlapping leading entries."""
    n = min(len(predicted), len(target))
    if n == 0:
        return 0.0
    diff = np.asarray(predicted[:n], dtype=float) - np.asarray(target[:n], dtype=float)
    return float(np.mean(diff ** 2))


@dataclass
class BPTTForwardResult:
    """Free-running roll-out of a sequence; ``states[0]`` is the seed state."""
    states: List[LatentState]
    predictions: List[np.ndarray]
    losses: List[float]
    total_loss: float


@dataclass
class BPTTBackwardResult:
    gradients: GradientAccumulator
    final_error: Optional[np.ndarray]


@dataclass
class SequenceResult:
    loss: float
    samples: int
    horizon_losses: Dict[int, float] = field(default_factory=dict)


@dataclass
class EpochResult:
    avg_loss: float
    horizon_losses: Dict[int, float]
    num_sequences: int
    duration: float


@dataclass
class TrainingHistory:
    """Per-epoch record of a training run.

    Attributes
    ----------
    epoch_losses : List[float]
        Mean training loss per epoch
    epoch_validation_losses : List[float]
        Mean validation loss per epoch
    horizon_losses : Dict[int, List[float]]
        Validation loss per forecast horizon per epoch
    learning_rates : List[float]
    best_epoch : int
    best_validation_loss : float
    total_training_time : float
        Seconds
    converged : bool
        True when early stopping triggered
    early_stop_reason : Optional[str]
    """
    epoch_losses: List[float] = field(default_factory=list)
    epoch_validation_losses: List[float] = field(default_factory=list)
    horizon_losses: Dict[int, List[float]] = field(default_factory=dict)
    learning_rates: List[float] = field(default_factory=list)
    best_epoch: int = 0
    best_validation_loss: float = float('inf')
    total_training_time: float = 0.0
    converged: bool = False
    early_stop_reason: Optional[str] = None


@dataclass
class TrainingMetrics:
    """Forecast quality of the restored weights on the validation sequences."""
    final_training_loss: float
    final_validation_loss: float
    per_horizon_mae: Dict[int, float]
    per_horizon_rmse: Dict[int, float]
    per_horizon_r2: Dict[int, float]
    per_horizon_persistence: Dict[int, float]
    improvement_over_persistence: float


@dataclass
class EMATrainingResult:
    trained_weights: PLRNNWeights
    history: TrainingHistory
    metrics: TrainingMetrics
    config: TrainingConfig


class PLRNNTrainer:
    """Truncated-BPTT trainer bound to one PLRNN engine.

    Parameters
    ----------
    engine : PLRNNEngine
        Engine whose weights are trained in place; initialised on demand
    config : Optional[TrainingConfig]
        Training settings, defaults when omitted
    seed : Optional[int]
        Seed for shuffling, the split and teacher-forcing draws
    """

    def __init__(self, engine: PLRNNEngine, config: Optional[TrainingConfig] = None,
                 seed: Optional[int] = None):
        self.engine = engine
        self.config = replace(config) if config is not None else TrainingConfig()
        self.rng = get_rng(seed)

        if self.config.lr_schedule not in LR_SCHEDULES:
            raise ValueError(f"Unknown learning-rate schedule '{self.config.lr_schedule}'. "
                             f"Available: {LR_SCHEDULES}")
        if not self.engine.is_initialized:
            self.engine.initialize()

    def get_config(self) -> TrainingConfig:
        return replace(self.config)

    # ------------------------------------------------------------------
    # Data preparation
    # ------------------------------------------------------------------

    def _prepare_participant(self, participant) -> TrainingSequence:
        cfg = self.config
        values = participant.values
        timestamps = participant.timestamps
        was_interpolated = False
        norm_stats = None

        if cfg.handle_irregular_sampling:
            values, timestamps, was_interpolated = regularize_timesteps(
                values, timestamps, cfg.target_interval_hours)

        if cfg.per_participant_normalization:
            values, norm_stats = normalize_sequence(values)

        return TrainingSequence(
            participant_id=participant.participant_id,
            values=values,
            timestamps=list(timestamps),
            was_interpolated=was_interpolated,
            norm_stats=norm_stats,
        )

    def prepare_split(self, dataset: EMADataset) -> Tuple[List[TrainingSequence], List[TrainingSequence]]:
        """Regularise, normalise and split the dataset.

        Participants with fewer than ``bptt_window + 1`` raw observations are
        skipped.
        """
        sequences = []
        for participant in dataset.participants:
            if len(participant) < self.config.bptt_window + 1:
                logger.debug("Skipping participant %s: %d observations",
                             participant.participant_id, len(participant))
                continue
            sequences.append(self._prepare_participant(participant))

        return train_validation_split(sequences, self.config.validation_split, self.rng)

    def prepare_training_data(self, dataset: EMADataset) -> List[TrainingSequence]:
        """All prepared sequences, training part first."""
        train, validation = self.prepare_split(dataset)
        return train + validation

    # ------------------------------------------------------------------
    # Full-sequence BPTT
    # ------------------------------------------------------------------

    def bptt_forward(self, sequence: np.ndarray) -> BPTTForwardResult:
        """Roll the engine freely from ``sequence[0]`` and score each step."""
        engine = self.engine
        sequence = np.asarray(sequence, dtype=float)
        first = sequence[0] if len(sequence) else np.zeros(engine.latent_dim)

        state = engine.create_state(first)
        states = [state]
        predictions = []
        losses = []

        for t in range(1, len(sequence)):
            state = engine.forward(state)
            states.append(state)
            predictions.append(state.observed_state.copy())
            losses.append(_mse(state.observed_state, sequence[t]))

        return BPTTForwardResult(states=states, predictions=predictions, losses=losses,
                                 total_loss=float(sum(losses)))

    def bptt_backward(self, sequence: np.ndarray, forward_result: BPTTForwardResult) -> BPTTBackwardResult:
        """Accumulate gradients from the last step back to the first."""
        sequence = np.asarray(sequence, dtype=float)
        states = forward_result.states
        accumulator = GradientAccumulator()
        error = None

        for t in range(len(states) - 1, 0, -1):
            grads = self.engine.compute_step_gradients(states[t - 1], states[t], sequence[t], error)
            accumulator.add(grads)
            error = grads.latent_error

        return BPTTBackwardResult(gradients=accumulator, final_error=error)

    def train_on_sequence(self, sequence: TrainingSequence, learning_rate: Optional[float] = None) -> float:
        """One training pass over a single sequence, without teacher forcing."""
        lr = learning_rate if learning_rate is not None else self.config.learning_rate
        return self._run_sequence(sequence, False, lr, 0.0).loss

    # ------------------------------------------------------------------
    # Windowed training
    # ------------------------------------------------------------------

    def _roll(self, state: LatentState, steps: int) -> LatentState:
        for _ in range(steps):
            state = self.engine.forward(state)
        return state

    def _run_sequence(self, sequence: TrainingSequence, is_validation: bool,
                      learning_rate: float, teacher_forcing_ratio: float) -> SequenceResult:
        """Truncated BPTT over overlapping windows of one sequence.

        The error chain is cut where the next step's input was teacher
        forced, since that input does not depend on the current output.
        """
        cfg = self.config
        engine = self.engine
        values = sequence.values
        timestamps = sequence.timestamps
        window = cfg.bptt_window
        n_values = len(values)

        if n_values < window + 1:
            return SequenceResult(loss=0.0, samples=0)

        total_loss = 0.0
        total_samples = 0
        horizon_losses = {h: 0.0 for h in cfg.horizons}

        state = engine.create_state(values[0], timestamps[0] if timestamps else None)
        step = max(1, window - cfg.bptt_overlap)

        window_start = 0
        while window_start + window < n_values:
            window_end = min(window_start + window, n_values - 1)

            inputs: List[LatentState] = []
            outputs: List[LatentState] = []
            forced: List[bool] = []
            for t in range(window_start, window_end):
                inputs.append(state)
                next_state = engine.forward(state)
                outputs.append(next_state)

                if not is_validation and self.rng.random() < teacher_forcing_ratio:
                    state = engine.create_state(values[t + 1], timestamps[t + 1] if timestamps else None)
                    state.timestep = next_state.timestep
                    forced.append(True)
                else:
                    state = next_state
                    forced.append(False)

            for i, t in enumerate(range(window_start, window_end)):
                total_loss += _mse(outputs[i].observed_state, values[t + 1])
                total_samples += 1

            if not is_validation:
                accumulator = GradientAccumulator()
                error = None
                for i in range(len(outputs) - 1, -1, -1):
                    if forced[i]:
                        error = None
                    grads = engine.compute_step_gradients(inputs[i], outputs[i],
                                                          values[window_start + i + 1], error)
                    accumulator.add(grads)
                    error = grads.latent_error

            last_state = outputs[-1]
            for h, weight in zip(cfg.horizons, cfg.horizon_weights):
                if window_end + h < n_values:
                    predicted = self._roll(last_state, h)
                    h_loss = _mse(predicted.observed_state, values[window_end + h])
                    horizon_losses[h] += h_loss
                    if not is_validation:
                        total_loss += weight * h_loss
                        total_samples += 1

            if not is_validation:
                engine.apply_gradients(accumulator.normalized(), learning_rate,
                                       cfg.l1_regularization, cfg.l2_regularization, cfg.gradient_clip)

            state = last_state
            window_start += step

        return SequenceResult(
            loss=total_loss / total_samples if total_samples else 0.0,
            samples=total_samples,
            horizon_losses=horizon_losses,
        )

    def _run_epoch(self, sequences: Sequence[TrainingSequence], is_validation: bool,
                   learning_rate: float, teacher_forcing_ratio: float) -> EpochResult:
        start = time.perf_counter()
        total_loss = 0.0
        total_samples = 0
        horizon_sums = {h: 0.0 for h in self.config.horizons}
        horizon_counts = {h: 0 for h in self.config.horizons}

        for sequence in sequences:
            result = self._run_sequence(sequence, is_validation, learning_rate, teacher_forcing_ratio)
            total_loss += result.loss * result.samples
            total_samples += result.samples
            for h, loss in result.horizon_losses.items():
                horizon_sums[h] += loss
                horizon_counts[h] += 1

        horizon_losses = {h: horizon_sums[h] / (horizon_counts[h] or 1) for h in self.config.horizons}
        return EpochResult(
            avg_loss=total_loss / total_samples if total_samples else 0.0,
            horizon_losses=horizon_losses,
            num_sequences=len(sequences),
            duration=time.perf_counter() - start,
        )

    # ------------------------------------------------------------------
    # Schedules and metrics
    # ------------------------------------------------------------------

    def compute_learning_rate(self, epoch: int) -> float:
        """Scheduled learning rate with linear warm-up over ``min(5, epochs // 4)`` epochs."""
        cfg = self.config
        warmup = min(MAX_WARMUP_EPOCHS, cfg.epochs // 4)
        warmup_factor = (epoch + 1) / warmup if warmup > 0 and epoch < warmup else 1.0

        if cfg.lr_schedule == 'step':
            base = max(cfg.lr_min, cfg.learning_rate * cfg.lr_decay_factor ** (epoch // cfg.lr_decay_steps))
        elif cfg.lr_schedule == 'exponential':
            base = max(cfg.lr_min, cfg.learning_rate * cfg.lr_decay_factor ** (epoch / cfg.lr_decay_steps))
        elif cfg.lr_schedule == 'cosine':
            effective = max(1, cfg.epochs - warmup)
            progress = max(0, epoch - warmup) / effective
            base = cfg.lr_min + (cfg.learning_rate - cfg.lr_min) * 0.5 * (1 + math.cos(math.pi * min(1.0, progress)))
        else:
            base = cfg.learning_rate

        rate = base * warmup_factor
        if not math.isfinite(rate) or rate < 0:
            return cfg.lr_min
        return rate

    def compute_final_metrics(self, sequences: Sequence[TrainingSequence],
                              horizons: Sequence[int]) -> TrainingMetrics:
        """Teacher-forced h-step forecasts scored against a persistence baseline.

        At every position the engine restarts from the observed value, rolls
        ``h`` steps and is compared with the observation ``h`` ahead; the
        persistence forecast is the current observation.
        """
        engine = self.engine
        mae, rmse, r2, persistence = {}, {}, {}, {}

        for h in horizons:
            actuals = [seq.values[t + h] for seq in sequences for t in range(len(seq.values) - h)]
            mean_actual = float(np.mean(actuals)) if actuals else 0.0

            abs_err = sq_err = persist_err = sq_actual = 0.0
            count = 0
            for seq in sequences:
                values = seq.values
                timestamps = seq.timestamps
                for t in range(len(values) - h):
                    state = engine.create_state(values[t], timestamps[t] if timestamps else None)
                    predicted = self._roll(state, h).observed_state
                    actual = values[t + h]
                    current = values[t]
                    d = min(len(predicted), len(actual))

                    abs_err += float(np.sum(np.abs(predicted[:d] - actual[:d])))
                    sq_err += float(np.sum((predicted[:d] - actual[:d]) ** 2))
                    persist_err += float(np.sum(np.abs(current[:d] - actual[:d])))
                    sq_actual += float(np.sum((actual[:d] - mean_actual) ** 2))
                    count += d

            if count > 0:
                mae[h] = abs_err / count
                rmse[h] = math.sqrt(sq_err / count)
                r2[h] = 1.0 - sq_err / (sq_actual or 1.0)
                persistence[h] = persist_err / count

        avg_mae = sum(mae.get(h, 0.0) for h in horizons) / len(horizons) if horizons else 0.0
        avg_persistence = sum(persistence.get(h, 0.0) for h in horizons) / len(horizons) if horizons else 0.0
        improvement = (avg_persistence - avg_mae) / avg_persistence * 100 if avg_persistence > 0 else 0.0

        return TrainingMetrics(
            final_training_loss=0.0,
            final_validation_loss=avg_mae,
            per_horizon_mae=mae,
            per_horizon_rmse=rmse,
            per_horizon_r2=r2,
            per_horizon_persistence=persistence,
            improvement_over_persistence=improvement,
        )

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def train(self, dataset: EMADataset, config: Optional[TrainingConfig] = None) -> EMATrainingResult:
        """Train the engine on an EMA dataset.

        Parameters
        ----------
        dataset : EMADataset
        config : Optional[TrainingConfig]
            Replaces the trainer's settings for this and later runs

        Returns
        -------
        EMATrainingResult
            Snapshot of the best weights (also loaded into the engine),
            the epoch history and validation metrics

        Raises
        ------
        ValueError
            If no participant is long enough to train on
        """
        if config is not None:
            self.config = replace(config)
        cfg = self.config

        self.engine.reset_optimizer_state()
        train, validation = self.prepare_split(dataset)
        if not train:
            raise ValueError("No training sequences after preparation")

        logger.info("Training on %d sequences, validating on %d", len(train), len(validation))

        history = TrainingHistory()
        best_weights = self.engine.get_weights().copy()
        patience = 0
        start = time.perf_counter()

        epochs = tqdm(range(cfg.epochs), desc="Training", disable=not cfg.verbose)
        for epoch in epochs:
            if cfg.shuffle_data:
                train = [train[i] for i in self.rng.permutation(len(train))]

            lr = self.compute_learning_rate(epoch)
            history.learning_rates.append(lr)
            tf_ratio = cfg.teacher_forcing_ratio * cfg.teacher_forcing_decay ** epoch

            train_result = self._run_epoch(train, False, lr, tf_ratio)
            history.epoch_losses.append(train_result.avg_loss)

            if validation:
                val_result = self._run_epoch(validation, True, lr, 0.0)
                val_loss = val_result.avg_loss
                for h, loss in val_result.horizon_losses.items():
                    history.horizon_losses.setdefault(h, []).append(loss)
            else:
                val_loss = train_result.avg_loss
            history.epoch_validation_losses.append(val_loss)

            if val_loss < history.best_validation_loss - cfg.early_stopping_min_delta:
                history.best_validation_loss = val_loss
                history.best_epoch = epoch
                best_weights = self.engine.get_weights().copy()
                patience = 0
            else:
                patience += 1

            if epoch % max(1, cfg.log_every_epochs) == 0:
                logger.info("Epoch %d: train=%.4f val=%.4f lr=%.6f patience=%d",
                            epoch, train_result.avg_loss, val_loss, lr, patience)
            epochs.set_postfix(train=f"{train_result.avg_loss:.4f}", val=f"{val_loss:.4f}")

            if patience >= cfg.early_stopping_patience:
                history.converged = True
                history.early_stop_reason = f"No improvement for {cfg.early_stopping_patience} epochs"
                logger.info("Early stopping at epoch %d: %s", epoch, history.early_stop_reason)
                break

        self.engine.load_weights(best_weights)
        best_weights.meta.training_samples += len(train)
        best_weights.meta.validation_loss = history.best_validation_loss
        best_weights.meta.trained_at = datetime.now()
        history.total_training_time = time.perf_counter() - start

        metrics = self.compute_final_metrics(validation if validation else train, cfg.horizons)
        metrics.final_training_loss = history.epoch_losses[-1] if history.epoch_losses else 0.0

        return EMATrainingResult(trained_weights=best_weights, history=history,
                                 metrics=metrics, config=replace(cfg))

    train_on_ema_data = train
