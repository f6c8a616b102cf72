"""Piecewise-linear recurrent neural network (PLRNN) forecasting engine.

Implements the latent dynamics

    z_{t+1} = A * z_t + W relu(z_t) + C relu(D z_t) + C s_t + b_z
    x_{t+1} = B z_{t+1} + b_x

where ``A`` is diagonal, ``W`` couples dimensions through a ReLU and the
optional dendritic basis layer ``relu(D z)`` adds saturating, threshold-like
responses. Each step is an affine-plus-ReLU map, so the gradients of the
squared one-step error are derived by hand (see :mod:`.gradients`).
"""

import logging
import time
from dataclasses import dataclass, field, asdict, replace
from datetime import datetime
from typing import List, Optional, Dict, Any, Sequence, Union

import numpy as np

from ..config.defaults import PLRNNConfig, CONNECTIVITY_MODES
from ..config.random_state import get_rng
from .base import TemporalEngine, EngineKind
from .causal import CausalNetwork, extract_causal_network
from .early_warning import EarlyWarningSignal, detect_early_warnings
from .exceptions import InvalidDimensionError
from .gradients import (
    AdamOptimizer,
    StepGradients,
    output_error,
    latent_error_from_output,
    grad_observation_matrix,
    grad_observation_bias,
    grad_self_weights,
    grad_recurrent_weights,
    grad_latent_bias,
    grad_dendritic_coupling,
    grad_dendritic_bases,
    propagate_latent_error,
)
from .linalg import relu, clip, init_matrix, approximate_max_eigenvalue
from .state import (
    LatentState,
    Prediction,
    TrainingSample,
    TrainingResult,
    confidence_band,
    create_state,
    advance_time,
    dimension_index,
    dimension_label,
    fit_to_dim,
    as_vector,
)

logger = logging.getLogger(__name__)

HORIZON_STEPS = {
    'short': 3,    # closer to a linear, Kalman-like regime
    'medium': 12,
    'long': 48,
}
INTERVENTION_KINDS = ('increase', 'decrease', 'stabilize')
INTERVENTION_HORIZON = 24
SIDE_EFFECT_THRESHOLD = 0.1
SATURATION_LEVEL = 2.0
SATURATION_PENALTY = 0.1
EARLY_WARNING_WINDOW = 5
ONLINE_CONVERGENCE_LOSS = 0.1
BATCH_CONVERGENCE_LOSS = 0.05
SPARSITY_TOLERANCE = 0.01

# Parameters penalised by L2 weight decay; biases are left alone
MATRIX_PARAMETERS = ('A', 'W', 'B', 'C', 'dendritic_weights')


@dataclass
class WeightsMeta:
    """Training bookkeeping shared by both engines' weight containers."""
    trained_at: datetime = field(default_factory=datetime.now)
    training_samples: int = 0
    validation_loss: float = float('inf')
    config: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'trained_at': self.trained_at.isoformat(),
            'training_samples': self.training_samples,
            'validation_loss': self.validation_loss,
            'config': {k: list(v) if isinstance(v, tuple) else v for k, v in asdict(self.config).items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], config_cls) -> 'WeightsMeta':
        return cls(
            trained_at=datetime.fromisoformat(data['trained_at']),
            training_samples=int(data['training_samples']),
            validation_loss=float(data['validation_loss']),
            config=config_cls(**data['config']),
        )


@dataclass
class PLRNNWeights:
    """Parameters of one PLRNN.

    Attributes
    ----------
    A : np.ndarray, shape (D,)
        Diagonal self-connections
    W : np.ndarray, shape (D, D)
        Recurrent coupling through ``relu(z)``
    B : np.ndarray, shape (D, D)
        Observation projection
    bias_latent, bias_observed : np.ndarray, shape (D,)
    C : Optional[np.ndarray], shape (D, bases)
        Dendritic / external-input coupling (dendritic mode only)
    dendritic_weights : Optional[np.ndarray], shape (bases, D)
        Basis projection ``D`` (dendritic mode only)
    meta : WeightsMeta
    """
    A: np.ndarray
    W: np.ndarray
    B: np.ndarray
    bias_latent: np.ndarray
    bias_observed: np.ndarray
    C: Optional[np.ndarray] = None
    dendritic_weights: Optional[np.ndarray] = None
    meta: WeightsMeta = field(default_factory=WeightsMeta)

    def parameters(self) -> Dict[str, np.ndarray]:
        """Live references to every trainable array, keyed by name."""
        params = {
            'A': self.A,
            'W': self.W,
            'B': self.B,
            'bias_latent': self.bias_latent,
            'bias_observed': self.bias_observed,
        }
        if self.C is not None:
            params['C'] = self.C
        if self.dendritic_weights is not None:
            params['dendritic_weights'] = self.dendritic_weights
        return params

    def copy(self) -> 'PLRNNWeights':
        """Independent snapshot of all arrays and metadata."""
        return PLRNNWeights(
            A=self.A.copy(),
            W=self.W.copy(),
            B=self.B.copy(),
            bias_latent=self.bias_latent.copy(),
            bias_observed=self.bias_observed.copy(),
            C=None if self.C is None else self.C.copy(),
            dendritic_weights=None if self.dendritic_weights is None else self.dendritic_weights.copy(),
            meta=replace(self.meta, config=replace(self.meta.config)),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {name: value.tolist() for name, value in self.parameters().items()}
        data['meta'] = self.meta.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PLRNNWeights':
        def optional(name):
            return None if data.get(name) is None else np.asarray(data[name], dtype=float)

        return cls(
            A=np.asarray(data['A'], dtype=float),
            W=np.asarray(data['W'], dtype=float),
            B=np.asarray(data['B'], dtype=float),
            bias_latent=np.asarray(data['bias_latent'], dtype=float),
            bias_observed=np.asarray(data['bias_observed'], dtype=float),
            C=optional('C'),
            dendritic_weights=optional('dendritic_weights'),
            meta=WeightsMeta.from_dict(data['meta'], PLRNNConfig),
        )


@dataclass
class InterventionSimulation:
    """Counterfactual response to a constant nudge of one dimension.

    Attributes
    ----------
    target : str
        Dimension receiving the input
    intervention : str
        ``increase``, ``decrease`` or ``stabilize``
    magnitude : float
    effects : Dict[str, float]
        Intervened minus baseline observation at the horizon, per dimension
    time_to_peak : float
        Hours until the largest absolute effect on the target
    duration : float
        Hours from the peak until the effect decays below 10% of its peak
    side_effects : List[Dict[str, float]]
        Other dimensions with |effect| above 0.1
    confidence : float
        ``1 - variance`` of the target at the horizon, clamped to [0, 1]
    """
    target: str
    intervention: str
    magnitude: float
    effects: Dict[str, float]
    time_to_peak: float
    duration: float
    side_effects: List[Dict[str, Any]]
    confidence: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class PLRNNEngine(TemporalEngine):
    """PLRNN forecasting engine.

    Parameters
    ----------
    config : Optional[PLRNNConfig]
        Engine configuration, defaults when omitted
    seed : Optional[int]
        Seed of the private generator used for initialisation and
        teacher-forcing draws

    Examples
    --------
    >>> engine = PLRNNEngine(seed=0)
    >>> engine.initialize()
    >>> state = engine.create_state([0.2, 0.1, 0.5, 0.8, 0.6])
    >>> forecast = engine.predict(state, horizon=12)
    """

    kind = EngineKind.PLRNN
    name = "PLRNN"

    def __init__(self, config: Optional[PLRNNConfig] = None, seed: Optional[int] = None):
        super().__init__()
        self.config = replace(config) if config is not None else PLRNNConfig()
        self._check_config(self.config)
        self.rng = get_rng(seed)
        self.optimizer = AdamOptimizer()
        self.training_history: List[float] = []

    @staticmethod
    def _check_config(config: PLRNNConfig) -> None:
        if config.connectivity not in CONNECTIVITY_MODES:
            raise ValueError(f"Unknown connectivity '{config.connectivity}'. Available: {CONNECTIVITY_MODES}")
        if config.latent_dim < 1:
            raise ValueError(f"latent_dim must be positive, got {config.latent_dim}")

    @property
    def latent_dim(self) -> int:
        return self.config.latent_dim

    @property
    def uses_dendrites(self) -> bool:
        return self.config.connectivity == "dendritic" and self.config.dendritic_bases > 0

    # ------------------------------------------------------------------
    # Initialisation
    # ------------------------------------------------------------------

    def initialize(self, config: Optional[PLRNNConfig] = None) -> None:
        """Build fresh weights and reset the optimiser.

        Self-weights start in [0.9, 1.0] for stability, ``W`` is 80% sparse,
        ``B`` is the identity and biases are small.
        """
        if config is not None:
            self._check_config(config)
            self.config = replace(config)

        n = self.config.latent_dim
        rng = self.rng

        A = 0.9 + rng.random(n) * 0.1
        W = init_matrix(n, n, 'sparse', rng)
        B = init_matrix(n, n, 'identity')
        bias_latent = (rng.random(n) - 0.5) * 0.1
        bias_observed = (rng.random(n) - 0.5) * 0.1

        C = None
        dendritic_weights = None
        if self.uses_dendrites:
            bases = self.config.dendritic_bases
            dendritic_weights = init_matrix(bases, n, 'normal', rng)
            C = init_matrix(n, bases, 'normal', rng)

        self.weights = PLRNNWeights(
            A=A, W=W, B=B,
            bias_latent=bias_latent,
            bias_observed=bias_observed,
            C=C,
            dendritic_weights=dendritic_weights,
            meta=WeightsMeta(config=self.config),
        )
        self.optimizer.reset()
        logger.debug("Initialised PLRNN with latent_dim=%d connectivity=%s", n, self.config.connectivity)

    def load_weights(self, weights: PLRNNWeights) -> None:
        super().load_weights(weights)
        self.optimizer.reset()

    def create_state(self, observation: Sequence[float], timestamp: Optional[datetime] = None) -> LatentState:
        """Start a trajectory from an observation (padded or truncated to the latent size)."""
        return create_state(observation, self.config.latent_dim, timestamp)

    def to_observation(self, state: LatentState) -> np.ndarray:
        return state.observed_state.copy()

    # ------------------------------------------------------------------
    # Dynamics
    # ------------------------------------------------------------------

    def _input_term(self, inputs: Sequence[float]) -> np.ndarray:
        weights = self.weights
        if weights.C is not None:
            return weights.C @ fit_to_dim(inputs, weights.C.shape[1])
        return fit_to_dim(inputs, self.config.latent_dim)

    def _grow_uncertainty(self, z_next: np.ndarray, previous: np.ndarray) -> np.ndarray:
        penalty = np.where(np.abs(z_next) > SATURATION_LEVEL, SATURATION_PENALTY, 0.0)
        grown = previous * (1.0 + self.config.uncertainty_growth) + penalty
        return np.minimum(self.config.max_uncertainty, grown)

    def forward(self, state: LatentState, inputs: Optional[Sequence[float]] = None) -> LatentState:
        """Advance one step of ``dt`` hours.

        Parameters
        ----------
        state : LatentState
            Current state; its latent vector must have ``latent_dim`` entries
        inputs : Optional[Sequence[float]]
            External input for this step. Routed through ``C`` in dendritic
            mode, added directly to the latent update otherwise.

        Returns
        -------
        LatentState
            Next state with timestep + 1 and grown uncertainty
        """
        weights = self._require_weights()
        z = as_vector(state.latent_state, self.config.latent_dim, "latent state")

        phi = relu(z)
        z_next = weights.A * z + weights.W @ phi + weights.bias_latent

        if weights.C is not None and weights.dendritic_weights is not None:
            z_next = z_next + weights.C @ relu(weights.dendritic_weights @ z)

        if inputs is not None:
            z_next = z_next + self._input_term(inputs)

        x_next = weights.B @ z_next + weights.bias_observed

        return LatentState(
            latent_state=z_next,
            hidden_activations=phi,
            observed_state=x_next,
            uncertainty=self._grow_uncertainty(z_next, np.asarray(state.uncertainty, dtype=float)),
            timestamp=advance_time(state.timestamp, self.config.dt),
            timestep=state.timestep + 1,
        )

    def predict(self, state: LatentState, horizon: Optional[int] = None,
                inputs: Optional[Sequence[Sequence[float]]] = None) -> Prediction:
        """Roll the dynamics forward ``horizon`` steps.

        Parameters
        ----------
        state : LatentState
            Starting state, kept as the first trajectory entry
        horizon : Optional[int]
            Number of steps, ``config.prediction_horizon`` by default
        inputs : Optional[sequence of input vectors]
            Per-step external inputs; steps beyond its length receive none

        Returns
        -------
        Prediction
            Trajectory of ``horizon + 1`` states, the final observation as
            point forecast and a 95% band ``mean ± 1.96 sqrt(uncertainty)``
        """
        self._require_weights()
        if horizon is None:
            horizon = self.config.prediction_horizon

        trajectory = [state]
        current = state
        for t in range(horizon):
            step_input = inputs[t] if inputs is not None and t < len(inputs) else None
            current = self.forward(current, step_input)
            trajectory.append(current)

        final = trajectory[-1]
        mean = final.observed_state.copy()
        variance = np.array([s.uncertainty for s in trajectory], dtype=float)

        return Prediction(
            trajectory=trajectory,
            mean_prediction=mean,
            confidence_interval=confidence_band(mean, np.sqrt(final.uncertainty)),
            variance=variance,
            early_warning_signals=self.detect_early_warnings(
                trajectory, min(EARLY_WARNING_WINDOW, len(trajectory))),
            horizon=horizon,
        )

    def hybrid_predict(self, state: LatentState, horizon: str) -> Prediction:
        """Forecast over a symbolic horizon (``short``, ``medium`` or ``long``).

        Short horizons double the L1 strength for the duration of the call;
        the original value is restored even if prediction fails.
        """
        if horizon not in HORIZON_STEPS:
            raise ValueError(f"Unknown horizon '{horizon}'. Available: {list(HORIZON_STEPS)}")

        with self._lock:
            original_l1 = self.config.l1_regularization
            if horizon == 'short':
                self.config.l1_regularization = original_l1 * 2
            try:
                return self.predict(state, HORIZON_STEPS[horizon])
            finally:
                self.config.l1_regularization = original_l1

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    def extract_causal_network(self, state: Optional[LatentState] = None) -> CausalNetwork:
        """Causal graph of the learned self- and cross-weights.

        When ``state`` is given its latent values are attached to the nodes.
        """
        weights = self._require_weights()
        values = None if state is None else state.latent_state
        return extract_causal_network(weights.A, weights.W, dt=self.config.dt, current_values=values)

    def detect_early_warnings(self, history: Sequence[LatentState], window_size: int) -> List[EarlyWarningSignal]:
        """Early-warning indicators over a state history.

        Network connectivity is only assessed once weights exist.
        """
        return detect_early_warnings(history, window_size, dt=self.config.dt,
                                     include_connectivity=self.is_initialized)

    def simulate_intervention(self, state: LatentState, target: str, intervention: str,
                              magnitude: float) -> InterventionSimulation:
        """Compare a 24-step forecast with and without a constant nudge.

        Parameters
        ----------
        state : LatentState
            Baseline state
        target : str
            Dimension label to act on
        intervention : str
            ``increase`` (+magnitude), ``decrease`` (-magnitude) or
            ``stabilize`` (-0.5 * current value)
        magnitude : float

        Raises
        ------
        InvalidDimensionError
            If ``target`` is not a state dimension
        ValueError
            If ``intervention`` is unknown
        """
        self._require_weights()
        n = self.config.latent_dim
        target_idx = dimension_index(target, n)
        if intervention not in INTERVENTION_KINDS:
            raise ValueError(f"Unknown intervention '{intervention}'. Available: {INTERVENTION_KINDS}")

        nudge = np.zeros(n)
        if intervention == 'increase':
            nudge[target_idx] = magnitude
        elif intervention == 'decrease':
            nudge[target_idx] = -magnitude
        else:
            nudge[target_idx] = -state.latent_state[target_idx] * 0.5

        horizon = INTERVENTION_HORIZON
        dt = self.config.dt
        baseline = self.predict(state, horizon)
        intervened = self.predict(state, horizon, [nudge] * horizon)

        delta = (np.array([s.observed_state for s in intervened.trajectory])
                 - np.array([s.observed_state for s in baseline.trajectory]))
        final_delta = intervened.mean_prediction - baseline.mean_prediction
        effects = {dimension_label(i): float(final_delta[i]) for i in range(n)}

        target_effect = np.abs(delta[:, target_idx])
        peak_idx = int(np.argmax(target_effect))
        max_effect = float(target_effect[peak_idx])

        duration = horizon * dt
        for t in range(peak_idx, horizon + 1):
            if target_effect[t] < max_effect * 0.1:
                duration = t * dt
                break

        side_effects = [{'dimension': dim, 'effect': effect}
                        for dim, effect in effects.items()
                        if dim != target and abs(effect) > SIDE_EFFECT_THRESHOLD]

        confidence = 1.0 - float(intervened.variance[-1, target_idx])

        return InterventionSimulation(
            target=target,
            intervention=intervention,
            magnitude=magnitude,
            effects=effects,
            time_to_peak=peak_idx * dt,
            duration=duration,
            side_effects=side_effects,
            confidence=float(np.clip(confidence, 0.0, 1.0)),
        )

    def get_complexity_metrics(self) -> Dict[str, float]:
        """Sparsity of ``W``, effective dimensionality and a Lyapunov proxy.

        The Lyapunov proxy is ``log|λ_max(W)|``; it is ``-inf`` when the
        dominant eigenvalue estimate is zero.
        """
        if self.weights is None:
            return {'effective_dimensionality': 0.0, 'sparsity': 0.0, 'lyapunov_exponent': 0.0}

        W = self.weights.W
        sparsity = float(np.mean(np.abs(W) < SPARSITY_TOLERANCE))
        max_eigenvalue = approximate_max_eigenvalue(W)
        lyapunov = float(np.log(abs(max_eigenvalue))) if max_eigenvalue != 0 else float('-inf')

        return {
            'effective_dimensionality': W.shape[0] * (1.0 - sparsity),
            'sparsity': sparsity,
            'lyapunov_exponent': lyapunov,
        }

    # ------------------------------------------------------------------
    # Online training
    # ------------------------------------------------------------------

    def calculate_loss(self, predicted, actual) -> float:
        """Mean squared error over all entries; 0 for empty input."""
        predicted = np.asarray(predicted, dtype=float)
        actual = np.asarray(actual, dtype=float)
        if predicted.size == 0:
            return 0.0
        return float(np.mean((predicted - actual) ** 2))

    def _update_weights_online(self, previous: LatentState, predicted: LatentState, target: np.ndarray) -> None:
        """One clipped SGD step on ``B``, ``b_x``, ``A``, ``W`` and ``b_z``."""
        weights = self.weights
        lr = self.config.learning_rate
        limit = self.config.gradient_clip

        err = output_error(predicted.observed_state, target)
        latent_err = latent_error_from_output(weights.B, err, self.config.exact_latent_backprop)

        z_prev = previous.latent_state
        weights.B -= lr * clip(grad_observation_matrix(err, predicted.latent_state), limit)
        weights.bias_observed -= lr * clip(grad_observation_bias(err), limit)
        weights.A -= lr * clip(grad_self_weights(latent_err, z_prev), limit)
        weights.W -= lr * clip(grad_recurrent_weights(latent_err, z_prev, weights.W,
                                                      self.config.l1_regularization), limit)
        weights.bias_latent -= lr * clip(grad_latent_bias(latent_err), limit)

    def train_online(self, sample: TrainingSample) -> TrainingResult:
        """Single pass over a sample with teacher forcing.

        Fewer than two observations return an infinite loss and leave the
        weights untouched.
        """
        if self.weights is None:
            self.initialize()

        start = time.perf_counter()
        observations = sample.observations
        if len(observations) < 2:
            logger.debug("Skipping online update: %d observations", len(observations))
            return TrainingResult(loss=float('inf'), validation_loss=float('inf'), epochs=0,
                                  training_time=0.0, converged=False, weights=self.weights)

        n = self.config.latent_dim
        first_time = sample.timestamps[0] if sample.timestamps else None
        state = self.create_state(observations[0], first_time)
        total_loss = 0.0

        for t in range(len(observations) - 1):
            predicted = self.forward(state)
            target = fit_to_dim(observations[t + 1], n)
            total_loss += self.calculate_loss(predicted.observed_state, target)

            self._update_weights_online(state, predicted, target)

            if self.rng.random() < self.config.teacher_forcing_ratio:
                state = self.create_state(target, predicted.timestamp)
                state.timestep = predicted.timestep
            else:
                state = predicted

        avg_loss = total_loss / (len(observations) - 1)
        self.training_history.append(avg_loss)
        self.weights.meta.training_samples += 1
        self.weights.meta.trained_at = datetime.now()

        return TrainingResult(
            loss=avg_loss,
            validation_loss=avg_loss,
            epochs=1,
            training_time=time.perf_counter() - start,
            converged=avg_loss < ONLINE_CONVERGENCE_LOSS,
            weights=self.weights,
        )

    def train_batch(self, samples: Sequence[TrainingSample]) -> TrainingResult:
        """Online training over several samples; an empty batch returns infinite loss."""
        start = time.perf_counter()
        if self.weights is None:
            self.initialize()
        if len(samples) == 0:
            return TrainingResult(loss=float('inf'), validation_loss=float('inf'), epochs=0,
                                  training_time=0.0, converged=False, weights=self.weights)

        total_loss = sum(self.train_online(sample).loss for sample in samples)
        avg_loss = total_loss / len(samples)
        converged = avg_loss < BATCH_CONVERGENCE_LOSS
        if converged:
            self.weights.meta.validation_loss = avg_loss

        return TrainingResult(
            loss=avg_loss,
            validation_loss=avg_loss,
            epochs=len(samples),
            training_time=time.perf_counter() - start,
            converged=converged,
            weights=self.weights,
        )

    # ------------------------------------------------------------------
    # Hooks for the BPTT trainer
    # ------------------------------------------------------------------

    def compute_step_gradients(self, previous: LatentState, current: LatentState,
                               target: Sequence[float],
                               next_error: Optional[np.ndarray] = None) -> StepGradients:
        """Gradients of the one-step loss at ``current``.

        Parameters
        ----------
        previous : LatentState
            State fed into the transition
        current : LatentState
            Transition output
        target : Sequence[float]
            Observation the output is compared against
        next_error : Optional[np.ndarray]
            Latent error of the following step, carried back through the
            transition Jacobian at ``current`` and added to this step's error

        Returns
        -------
        StepGradients
            Raw (unclipped, unregularised) gradients and the latent error
        """
        weights = self._require_weights()
        target = fit_to_dim(target, self.config.latent_dim)

        err = output_error(current.observed_state, target)
        latent_err = latent_error_from_output(weights.B, err, self.config.exact_latent_backprop)
        if next_error is not None:
            latent_err = latent_err + propagate_latent_error(
                next_error, weights.A, weights.W, current.latent_state,
                weights.C, weights.dendritic_weights)

        z_prev = previous.latent_state
        grads = StepGradients(
            dA=grad_self_weights(latent_err, z_prev),
            dW=grad_recurrent_weights(latent_err, z_prev),
            dB=grad_observation_matrix(err, current.latent_state),
            d_bias_latent=grad_latent_bias(latent_err),
            d_bias_observed=grad_observation_bias(err),
            latent_error=latent_err,
        )
        if weights.C is not None and weights.dendritic_weights is not None:
            grads.dC = grad_dendritic_coupling(latent_err, weights.dendritic_weights, z_prev)
            grads.d_dendritic = grad_dendritic_bases(latent_err, weights.C, weights.dendritic_weights, z_prev)
        return grads

    def apply_gradients(self, gradients: Union[StepGradients, Dict[str, np.ndarray]],
                        learning_rate: float, l1: float = 0.0, l2: float = 0.0,
                        gradient_clip: Optional[float] = None, optimizer: str = "adam") -> None:
        """Regularise, clip and apply gradients in place.

        L1 applies to ``W`` only, L2 to the weight matrices (not the biases).

        Parameters
        ----------
        gradients : StepGradients or dict
            Gradient per parameter name
        learning_rate : float
        l1, l2 : float
            Regularisation strengths
        gradient_clip : Optional[float]
            Elementwise bound, ``config.gradient_clip`` by default
        optimizer : str, default="adam"
            ``adam`` or ``sgd``
        """
        weights = self._require_weights()
        if isinstance(gradients, StepGradients):
            gradients = gradients.as_dict()
        if gradient_clip is None:
            gradient_clip = self.config.gradient_clip

        params = weights.parameters()
        processed = {}
        for name, grad in gradients.items():
            if name not in params:
                continue
            grad = np.asarray(grad, dtype=float)
            if name == 'W' and l1:
                grad = grad + l1 * np.sign(params[name])
            if name in MATRIX_PARAMETERS and l2:
                grad = grad + l2 * params[name]
            processed[name] = clip(grad, gradient_clip)

        if optimizer == "adam":
            self.optimizer.step(params, processed, learning_rate)
        elif optimizer == "sgd":
            for name, grad in processed.items():
                params[name] -= learning_rate * grad
        else:
            raise ValueError(f"Unknown optimizer '{optimizer}'")

    def reset_optimizer_state(self) -> None:
        self.optimizer.reset()
