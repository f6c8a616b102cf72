"""KalmanFormer: Kalman filter combined with a transformer context encoder.

Each update runs a classical predict/update cycle, encodes the recent
observation window with a small transformer, derives the Kalman gain either
from the context (learned, sigmoid-squashed) or in closed form, and blends
the filter estimate with the transformer's own point prediction. The blended
value is written back as the filter estimate, so the filter tracks a hybrid
signal rather than a pure linear-Gaussian one.
"""

import logging
import math
import time
import warnings
from dataclasses import dataclass, field, fields, replace, is_dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Dict, Any, Sequence

import numpy as np
from scipy import linalg as sp_linalg
from scipy.stats import chi2

from ..config.defaults import KalmanFormerConfig, BLEND_MODES, TIME_EMBEDDINGS
from ..config.random_state import get_rng
from .base import TemporalEngine, EngineKind
from .linalg import (
    mat_inverse,
    relu,
    sigmoid,
    softmax,
    layer_norm,
    clip,
    init_matrix,
    sinusoidal_table,
)
from .plrnn import WeightsMeta
from .ring_buffer import ObservationWindow, ObservationRecord
from .state import (
    LatentState,
    ConfidenceInterval,
    TrainingSample,
    confidence_band,
    dimension_label,
    fit_to_dim,
    as_vector,
)

logger = logging.getLogger(__name__)

INITIAL_COVARIANCE = 0.1
PROCESS_NOISE = 0.01
MEASUREMENT_NOISE = 0.1
INITIAL_CONFIDENCE = 0.5
CONFIDENCE_DECAY = 0.95
OUTLIER_DAMPING = 0.1
COVARIANCE_EPS = 1e-8
BLEND_STEP = 0.1
BLEND_MAX = 0.8
BLEND_MIN = 0.2
BLEND_ERROR_THRESHOLD = 0.5
TOP_INFLUENTIAL = 5
RECENCY_RATIO = 1.5
ADJACENT_ATTENTION_SHARE = 0.5
CONVERGENCE_LOSS = 0.1
TRAINING_GRADIENT_CLIP = 1.0
FF_EXPANSION = 4


def _to_serializable(value):
    if isinstance(value, np.ndarray):
        return value.tolist()
    if is_dataclass(value) and not isinstance(value, type):
        if isinstance(value, WeightsMeta):
            return value.to_dict()
        return {f.name: _to_serializable(getattr(value, f.name)) for f in fields(value)}
    return value


def _copy_arrays(obj):
    """Deep copy of a dataclass holding arrays (metadata config copied too)."""
    changes = {}
    for f in fields(obj):
        value = getattr(obj, f.name)
        if isinstance(value, np.ndarray):
            changes[f.name] = value.copy()
        elif isinstance(value, WeightsMeta):
            changes[f.name] = replace(value, config=replace(value.config))
        elif is_dataclass(value):
            changes[f.name] = _copy_arrays(value)
    return replace(obj, **changes)


@dataclass
class KalmanBlock:
    """Linear-Gaussian model: ``x' = F x + w``, ``z = H x + v``."""
    state_transition: np.ndarray     # F, (n, n)
    observation_matrix: np.ndarray   # H, (m, n)
    process_noise: np.ndarray        # Q, (n, n)
    measurement_noise: np.ndarray    # R, (m, m)


@dataclass
class TransformerWeights:
    """Per-layer parameters stacked along the first axis.

    Shapes use L layers, H heads, E embedding size and ``hd = E / H``.
    """
    query: np.ndarray          # (L, H, E, hd)
    key: np.ndarray            # (L, H, E, hd)
    value: np.ndarray          # (L, H, E, hd)
    attention_output: np.ndarray  # (L, E, E)
    ff_linear1: np.ndarray     # (L, E, 4E)
    ff_bias1: np.ndarray       # (L, 4E)
    ff_linear2: np.ndarray     # (L, 4E, E)
    ff_bias2: np.ndarray       # (L, E)
    ln_gamma: np.ndarray       # (2L, E)
    ln_beta: np.ndarray        # (2L, E)


@dataclass
class EmbeddingWeights:
    observation: np.ndarray             # (m, E)
    position: np.ndarray                # (context_window, E), fixed sinusoidal table
    time: Optional[np.ndarray] = None   # (1, E), learned time-of-day projection


@dataclass
class GainPredictor:
    weights: np.ndarray  # (E, n * m)
    bias: np.ndarray     # (n * m,)


@dataclass
class BlendPredictor:
    weights: np.ndarray  # (E,)
    bias: float = 0.5


@dataclass
class KalmanFormerWeights:
    kalman: KalmanBlock
    transformer: TransformerWeights
    embedding: EmbeddingWeights
    blend_predictor: BlendPredictor
    output_projection: np.ndarray  # (E, n)
    gain_predictor: Optional[GainPredictor] = None
    meta: WeightsMeta = field(default_factory=WeightsMeta)

    def copy(self) -> 'KalmanFormerWeights':
        return _copy_arrays(self)

    def to_dict(self) -> Dict[str, Any]:
        return _to_serializable(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'KalmanFormerWeights':
        def arrays(block_cls, block):
            return block_cls(**{k: (np.asarray(v, dtype=float) if isinstance(v, list) else v)
                                for k, v in block.items()})

        gain = data.get('gain_predictor')
        blend = data['blend_predictor']
        return cls(
            kalman=arrays(KalmanBlock, data['kalman']),
            transformer=arrays(TransformerWeights, data['transformer']),
            embedding=arrays(EmbeddingWeights, data['embedding']),
            blend_predictor=BlendPredictor(weights=np.asarray(blend['weights'], dtype=float),
                                           bias=float(blend['bias'])),
            output_projection=np.asarray(data['output_projection'], dtype=float),
            gain_predictor=None if gain is None else arrays(GainPredictor, gain),
            meta=WeightsMeta.from_dict(data['meta'], KalmanFormerConfig),
        )


@dataclass
class KalmanFilterState:
    """Filter bookkeeping after one cycle.

    Attributes
    ----------
    state_estimate : np.ndarray, shape (n,)
    error_covariance : np.ndarray, shape (n, n)
    predicted_state : np.ndarray, shape (n,)
    predicted_covariance : np.ndarray, shape (n, n)
    innovation : np.ndarray, shape (m,)
    innovation_covariance : np.ndarray, shape (m, m)
    kalman_gain : np.ndarray, shape (n, m)
    normalized_innovation_squared : float
    is_outlier : bool
    timestep : int
    timestamp : datetime
    """
    state_estimate: np.ndarray
    error_covariance: np.ndarray
    predicted_state: np.ndarray
    predicted_covariance: np.ndarray
    innovation: np.ndarray
    innovation_covariance: np.ndarray
    kalman_gain: np.ndarray
    normalized_innovation_squared: float = 0.0
    is_outlier: bool = False
    timestep: int = 0
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class KalmanFormerState:
    """Rolling per-entity state of the hybrid filter."""
    kalman_state: KalmanFilterState
    transformer_hidden: np.ndarray
    window: ObservationWindow
    blend_ratio: float
    confidence: float
    timestamp: datetime
    learned_gain: Optional[np.ndarray] = None
    kalman_estimate: Optional[np.ndarray] = None
    transformer_estimate: Optional[np.ndarray] = None

    @property
    def state_estimate(self) -> np.ndarray:
        return self.kalman_state.state_estimate


@dataclass
class AttentionExplanation:
    """Which past observations drive the current encoding.

    Attributes
    ----------
    self_attention : np.ndarray, shape (seq, seq)
        Row-normalised attention over the buffered embeddings
    top_influential : List[Dict[str, Any]]
        Up to five observations with the highest attention from the latest
        position: index, timestamp, weight and most extreme dimension
    temporal_pattern : str
        ``recency_bias``, ``pattern_matching`` or ``uniform``
    """
    self_attention: np.ndarray
    top_influential: List[Dict[str, Any]]
    temporal_pattern: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'self_attention': self.self_attention.tolist(),
            'top_influential': [{**obs, 'timestamp': obs['timestamp'].isoformat()} for obs in self.top_influential],
            'temporal_pattern': self.temporal_pattern,
        }


@dataclass
class KalmanFormerPrediction:
    state_estimate: np.ndarray
    covariance: np.ndarray
    kalman_contribution: np.ndarray
    transformer_contribution: np.ndarray
    blended_prediction: np.ndarray
    confidence_interval: ConfidenceInterval
    attention: AttentionExplanation
    horizon: int
    trajectory: List[KalmanFormerState]
    confidence: float

    @property
    def mean_prediction(self) -> np.ndarray:
        return self.state_estimate

    def to_dict(self) -> Dict[str, Any]:
        return {
            'horizon': self.horizon,
            'mean_prediction': self.state_estimate.tolist(),
            'confidence_interval': {
                'lower': self.confidence_interval.lower.tolist(),
                'upper': self.confidence_interval.upper.tolist(),
                'level': self.confidence_interval.level,
            },
            'kalman_contribution': self.kalman_contribution.tolist(),
            'transformer_contribution': self.transformer_contribution.tolist(),
            'trajectory': [s.state_estimate.tolist() for s in self.trajectory],
            'confidence': self.confidence,
            'attention': self.attention.to_dict(),
        }


@dataclass
class KalmanFormerTrainingResult:
    loss: float
    kalman_loss: float
    transformer_loss: float
    epochs: int
    training_time: float
    converged: bool
    weights: KalmanFormerWeights


class KalmanFormerEngine(TemporalEngine):
    """Kalman filter / transformer hybrid.

    Parameters
    ----------
    config : Optional[KalmanFormerConfig]
        Engine configuration, defaults when omitted
    seed : Optional[int]
        Seed of the private generator used for initialisation

    Raises
    ------
    ValueError
        If the embedding size is not divisible by the number of heads, or
        the blend mode / time embedding is unknown
    """

    kind = EngineKind.KALMANFORMER
    name = "KalmanFormer"

    def __init__(self, config: Optional[KalmanFormerConfig] = None, seed: Optional[int] = None):
        super().__init__()
        self.config = replace(config) if config is not None else KalmanFormerConfig()
        self._check_config(self.config)
        self.rng = get_rng(seed)

    @staticmethod
    def _check_config(config: KalmanFormerConfig) -> None:
        if config.num_heads < 1 or config.embed_dim % config.num_heads != 0:
            raise ValueError(f"embed_dim {config.embed_dim} must be divisible by num_heads {config.num_heads}")
        if config.blend_mode not in BLEND_MODES:
            raise ValueError(f"Unknown blend mode '{config.blend_mode}'. Available: {BLEND_MODES}")
        if config.time_embedding not in TIME_EMBEDDINGS:
            raise ValueError(f"Unknown time embedding '{config.time_embedding}'. Available: {TIME_EMBEDDINGS}")

    @property
    def head_dim(self) -> int:
        return self.config.embed_dim // self.config.num_heads

    # ------------------------------------------------------------------
    # Initialisation
    # ------------------------------------------------------------------

    def initialize(self, config: Optional[KalmanFormerConfig] = None) -> None:
        if config is not None:
            self._check_config(config)
            self.config = replace(config)

        cfg = self.config
        rng = self.rng
        n, m, E = cfg.state_dim, cfg.obs_dim, cfg.embed_dim
        L, H, hd = cfg.num_layers, cfg.num_heads, self.head_dim

        kalman = KalmanBlock(
            state_transition=np.eye(n),
            observation_matrix=np.eye(m, n),
            process_noise=np.eye(n) * PROCESS_NOISE,
            measurement_noise=np.eye(m) * MEASUREMENT_NOISE,
        )

        def heads():
            return np.stack([np.stack([init_matrix(E, hd, 'uniform', rng) for _ in range(H)])
                             for _ in range(L)])

        transformer = TransformerWeights(
            query=heads(),
            key=heads(),
            value=heads(),
            attention_output=np.stack([init_matrix(E, E, 'uniform', rng) for _ in range(L)]),
            ff_linear1=np.stack([init_matrix(E, E * FF_EXPANSION, 'uniform', rng) for _ in range(L)]),
            ff_bias1=np.zeros((L, E * FF_EXPANSION)),
            ff_linear2=np.stack([init_matrix(E * FF_EXPANSION, E, 'uniform', rng) for _ in range(L)]),
            ff_bias2=np.zeros((L, E)),
            ln_gamma=np.ones((2 * L, E)),
            ln_beta=np.zeros((2 * L, E)),
        )

        embedding = EmbeddingWeights(
            observation=init_matrix(m, E, 'uniform', rng),
            position=sinusoidal_table(cfg.context_window, E),
            time=init_matrix(1, E, 'uniform', rng) if cfg.time_embedding == 'learned' else None,
        )

        gain_predictor = None
        if cfg.learned_gain:
            gain_predictor = GainPredictor(weights=init_matrix(E, n * m, 'uniform', rng),
                                           bias=np.zeros(n * m))

        self.weights = KalmanFormerWeights(
            kalman=kalman,
            transformer=transformer,
            embedding=embedding,
            blend_predictor=BlendPredictor(weights=rng.random(E) * 0.1, bias=0.5),
            output_projection=init_matrix(E, n, 'uniform', rng),
            gain_predictor=gain_predictor,
            meta=WeightsMeta(config=self.config),
        )
        logger.debug("Initialised KalmanFormer: state_dim=%d embed_dim=%d layers=%d heads=%d",
                     n, E, L, H)

    def load_weights(self, weights: KalmanFormerWeights) -> None:
        super().load_weights(weights)
        self._check_noise_covariances()

    def _check_noise_covariances(self) -> None:
        kalman = self.weights.kalman
        for name, matrix in (('process', kalman.process_noise), ('measurement', kalman.measurement_noise)):
            try:
                sp_linalg.cholesky(matrix, lower=True)
            except sp_linalg.LinAlgError:
                warnings.warn(f"{name.capitalize()} noise covariance is not positive definite", RuntimeWarning)

    # ------------------------------------------------------------------
    # State helpers
    # ------------------------------------------------------------------

    def create_state(self, observation: Sequence[float], timestamp: Optional[datetime] = None) -> KalmanFormerState:
        """Filter state seeded with a first observation."""
        self._require_weights()
        cfg = self.config
        obs = as_vector(observation, cfg.obs_dim)
        timestamp = timestamp if timestamp is not None else datetime.now()
        estimate = fit_to_dim(obs, cfg.state_dim)
        n, m = cfg.state_dim, cfg.obs_dim

        window = ObservationWindow(cfg.context_window)
        window.append(ObservationRecord(obs, timestamp, self.embed_observation(obs, timestamp)))

        kalman_state = KalmanFilterState(
            state_estimate=estimate,
            error_covariance=np.eye(n) * INITIAL_COVARIANCE,
            predicted_state=estimate.copy(),
            predicted_covariance=np.eye(n) * INITIAL_COVARIANCE,
            innovation=np.zeros(m),
            innovation_covariance=np.eye(m) * INITIAL_COVARIANCE,
            kalman_gain=np.eye(n, m),
            timestep=0,
            timestamp=timestamp,
        )
        return KalmanFormerState(
            kalman_state=kalman_state,
            transformer_hidden=np.zeros((0, cfg.embed_dim)),
            window=window,
            blend_ratio=cfg.blend_ratio,
            confidence=INITIAL_CONFIDENCE,
            timestamp=timestamp,
        )

    def to_observation(self, state: KalmanFormerState) -> np.ndarray:
        return self.weights.kalman.observation_matrix @ state.state_estimate

    # ------------------------------------------------------------------
    # Embedding and encoder
    # ------------------------------------------------------------------

    def embed_observation(self, observation: np.ndarray, timestamp: datetime) -> np.ndarray:
        """Content embedding: linear projection plus time-of-day / day-of-week terms.

        Positional terms are added at encoding time from the record's slot in
        the window.
        """
        weights = self._require_weights()
        E = self.config.embed_dim
        embedding = np.asarray(observation, dtype=float) @ weights.embedding.observation

        hour = timestamp.hour + timestamp.minute / 60.0
        if self.config.time_embedding == 'sinusoidal':
            day_of_week = timestamp.isoweekday() % 7  # Sunday = 0
            even = np.arange(0, E, 2)
            freq = np.power(10000.0, even / E)
            embedding[even] += np.sin(hour * 2 * np.pi / 24 / freq)
            odd = even + 1
            valid = odd < E
            embedding[odd[valid]] += np.cos(day_of_week * 2 * np.pi / 7 / freq[valid])
        elif self.config.time_embedding == 'learned' and weights.embedding.time is not None:
            embedding = embedding + (hour / 24.0) * weights.embedding.time[0]

        return embedding

    def _window_embeddings(self, window: ObservationWindow) -> np.ndarray:
        position = self.weights.embedding.position
        rows = []
        for i, record in enumerate(window):
            content = record.embedding
            if content is None:
                content = self.embed_observation(record.observation, record.timestamp)
            rows.append(content + position[i % position.shape[0]])
        return np.array(rows)

    def multi_head_attention(self, X: np.ndarray, layer: int, return_weights: bool = False):
        """Scaled dot-product self-attention over ``X`` of shape (seq, E).

        Returns the projected output, plus the per-head attention weights
        of shape (H, seq, seq) when ``return_weights`` is set.
        """
        tw = self.weights.transformer
        scale = math.sqrt(self.head_dim)
        head_outputs = []
        head_weights = []
        for h in range(self.config.num_heads):
            Q = X @ tw.query[layer, h]
            K = X @ tw.key[layer, h]
            V = X @ tw.value[layer, h]
            attn = softmax(Q @ K.T / scale, temperature=self.config.temperature)
            head_outputs.append(attn @ V)
            head_weights.append(attn)

        output = np.concatenate(head_outputs, axis=-1) @ tw.attention_output[layer]
        if return_weights:
            return output, np.stack(head_weights)
        return output

    def feed_forward(self, X: np.ndarray, layer: int) -> np.ndarray:
        tw = self.weights.transformer
        hidden = relu(X @ tw.ff_linear1[layer] + tw.ff_bias1[layer])
        return hidden @ tw.ff_linear2[layer] + tw.ff_bias2[layer]

    def encode_context(self, window: ObservationWindow) -> np.ndarray:
        """Run the transformer stack over the window.

        Returns
        -------
        np.ndarray, shape (seq, E)
            One encoded vector per buffered observation; a single zero row
            for an empty window
        """
        self._require_weights()
        if len(window) == 0:
            return np.zeros((1, self.config.embed_dim))

        tw = self.weights.transformer
        X = self._window_embeddings(window)
        for layer in range(self.config.num_layers):
            attended = self.multi_head_attention(X, layer)
            X = layer_norm(X + attended, tw.ln_gamma[2 * layer], tw.ln_beta[2 * layer])
            X = layer_norm(X + self.feed_forward(X, layer), tw.ln_gamma[2 * layer + 1], tw.ln_beta[2 * layer + 1])
        return X

    # ------------------------------------------------------------------
    # Kalman cycle
    # ------------------------------------------------------------------

    def condition_covariance(self, P: np.ndarray) -> np.ndarray:
        """Symmetrise ``P`` and keep its eigenvalues in ``[eps, max_uncertainty^2]``.

        A non-finite matrix is reset to the initial covariance.
        """
        n = P.shape[0]
        if not np.all(np.isfinite(P)):
            warnings.warn("Non-finite error covariance, resetting to initial covariance", RuntimeWarning)
            return np.eye(n) * INITIAL_COVARIANCE

        P = (P + P.T) / 2.0
        eigvals, eigvecs = sp_linalg.eigh(P)
        clipped = np.clip(eigvals, COVARIANCE_EPS, self.config.max_uncertainty ** 2)
        if np.array_equal(clipped, eigvals):
            return P
        if eigvals[0] < 0:
            logger.debug("Error covariance lost positive definiteness (min eigenvalue %.3g)", eigvals[0])
        return (eigvecs * clipped) @ eigvecs.T

    def kalman_predict(self, kalman_state: KalmanFilterState, steps: int = 1) -> KalmanFilterState:
        """Propagate ``steps`` times: ``x = F x``, ``P = F P F^T + Q``."""
        kalman = self.weights.kalman
        F, Q = kalman.state_transition, kalman.process_noise
        x = kalman_state.state_estimate
        P = kalman_state.error_covariance
        for _ in range(max(1, steps)):
            x = F @ x
            P = F @ P @ F.T + Q
        return replace(kalman_state, predicted_state=x, predicted_covariance=self.condition_covariance(P),
                       timestep=kalman_state.timestep + 1)

    def compute_standard_gain(self, predicted: KalmanFilterState) -> np.ndarray:
        """Closed-form gain ``P H^T (H P H^T + R)^{-1}``."""
        kalman = self.weights.kalman
        H, R = kalman.observation_matrix, kalman.measurement_noise
        P = predicted.predicted_covariance
        S = H @ P @ H.T + R
        return P @ H.T @ mat_inverse(S)

    def predict_gain(self, context: np.ndarray) -> np.ndarray:
        """Gain from the last context vector, each entry squashed into (0, 1)."""
        gp = self.weights.gain_predictor
        if gp is None:
            raise ValueError("Gain predictor not initialized; enable learned_gain")
        gain = sigmoid(context[-1] @ gp.weights + gp.bias)
        return gain.reshape(self.config.state_dim, self.config.obs_dim)

    def kalman_update(self, predicted: KalmanFilterState, observation: np.ndarray,
                      gain: np.ndarray) -> KalmanFilterState:
        """Measurement update with NIS outlier detection.

        The normalised innovation squared ``y^T S^{-1} y`` is compared with
        the chi-squared quantile at ``outlier_probability``. Flagged
        innovations are scaled by 0.1 when ``dampen_outliers`` is set.
        """
        kalman = self.weights.kalman
        H, R = kalman.observation_matrix, kalman.measurement_noise
        x_pred, P_pred = predicted.predicted_state, predicted.predicted_covariance

        innovation = observation - H @ x_pred
        S = H @ P_pred @ H.T + R
        nis = float(innovation @ mat_inverse(S) @ innovation)
        threshold = chi2.ppf(self.config.outlier_probability, df=self.config.obs_dim)
        is_outlier = nis > threshold

        effective = innovation
        if is_outlier:
            logger.debug("Outlier observation: NIS %.3f exceeds %.3f", nis, threshold)
            if self.config.dampen_outliers:
                effective = innovation * OUTLIER_DAMPING

        # Joseph form stays positive semi-definite for any gain, learned or optimal
        I_KH = np.eye(x_pred.shape[0]) - gain @ H
        P = I_KH @ P_pred @ I_KH.T + gain @ R @ gain.T

        return replace(
            predicted,
            state_estimate=x_pred + gain @ effective,
            error_covariance=self.condition_covariance(P),
            innovation=innovation,
            innovation_covariance=S,
            kalman_gain=gain,
            normalized_innovation_squared=nis,
            is_outlier=bool(is_outlier),
        )

    def transformer_predict(self, context: np.ndarray) -> np.ndarray:
        """Project the last context vector to state space."""
        if context.shape[0] == 0:
            return np.zeros(self.config.state_dim)
        return context[-1] @ self.weights.output_projection

    def compute_blend_ratio(self, context: np.ndarray, previous_ratio: float) -> float:
        """Share of the transformer in the blend, clamped to [0, 1]."""
        mode = self.config.blend_mode
        if mode == 'fixed':
            ratio = self.config.blend_ratio
        elif mode == 'carry':
            ratio = previous_ratio
        else:
            bp = self.weights.blend_predictor
            ratio = float(sigmoid(context[-1] @ bp.weights + bp.bias))
        return float(np.clip(ratio, 0.0, 1.0))

    @staticmethod
    def blend(kalman: np.ndarray, transformer: np.ndarray, ratio: float) -> np.ndarray:
        return (1.0 - ratio) * kalman + ratio * transformer

    @staticmethod
    def compute_confidence(kalman_state: KalmanFilterState, transformer_pred: np.ndarray) -> float:
        """Average of Kalman/transformer agreement and innovation smallness."""
        agreement = float(np.mean(np.exp(-(kalman_state.state_estimate - transformer_pred) ** 2)))
        innovation_confidence = float(np.exp(-np.linalg.norm(kalman_state.innovation)))
        return float(np.clip((agreement + innovation_confidence) / 2.0, 0.0, 1.0))

    def _gap_steps(self, previous: datetime, current: datetime) -> int:
        """One predict step per elapsed ``dt`` (rounded), between 1 and ``ceil(max_time_gap / dt)``."""
        cfg = self.config
        hours = (current - previous).total_seconds() / 3600.0
        max_steps = max(1, math.ceil(cfg.max_time_gap / cfg.dt))
        if hours <= 0:
            return 1
        return int(min(max_steps, max(1, round(hours / cfg.dt))))

    def update(self, state: KalmanFormerState, observation: Sequence[float],
               timestamp: datetime) -> KalmanFormerState:
        """Fold one observation into the filter state.

        Parameters
        ----------
        state : KalmanFormerState
            Current state; not modified
        observation : Sequence[float]
            Observation vector of ``obs_dim`` entries
        timestamp : datetime
            Observation time; gaps apply one predict step per ``dt``

        Returns
        -------
        KalmanFormerState
            New state whose filter estimate is the blended value
        """
        self._require_weights()
        obs = as_vector(observation, self.config.obs_dim)

        window = state.window.copy()
        window.append(ObservationRecord(obs, timestamp, self.embed_observation(obs, timestamp)))

        predicted = self.kalman_predict(state.kalman_state, self._gap_steps(state.timestamp, timestamp))
        context = self.encode_context(window)

        if self.config.learned_gain and self.weights.gain_predictor is not None:
            gain = self.predict_gain(context)
        else:
            gain = self.compute_standard_gain(predicted)

        updated = self.kalman_update(predicted, obs, gain)
        transformer_pred = self.transformer_predict(context)
        ratio = self.compute_blend_ratio(context, state.blend_ratio)
        blended = self.blend(updated.state_estimate, transformer_pred, ratio)

        return KalmanFormerState(
            kalman_state=replace(updated, state_estimate=blended, timestamp=timestamp),
            transformer_hidden=context,
            window=window,
            blend_ratio=ratio,
            confidence=self.compute_confidence(updated, transformer_pred),
            timestamp=timestamp,
            learned_gain=gain,
            kalman_estimate=updated.state_estimate,
            transformer_estimate=transformer_pred,
        )

    # ------------------------------------------------------------------
    # Forecasting and explanation
    # ------------------------------------------------------------------

    def _spread(self, covariance: np.ndarray) -> np.ndarray:
        """Per-dimension standard deviation from the row maxima, capped at the ceiling."""
        row_max = np.max(np.abs(covariance), axis=1)
        return np.minimum(np.sqrt(row_max), self.config.max_uncertainty)

    def predict(self, state: KalmanFormerState, horizon: int = 12) -> KalmanFormerPrediction:
        """Roll the hybrid forward ``horizon`` steps of ``dt`` hours.

        Each step blends the Kalman prediction with the transformer's and
        feeds the blended value back into the window as a synthetic
        observation. Confidence decays by 5% per step.
        """
        self._require_weights()
        H = self.weights.kalman.observation_matrix
        trajectory = [state]
        current = state

        for _ in range(horizon):
            predicted = self.kalman_predict(current.kalman_state)
            context = self.encode_context(current.window)
            transformer_pred = self.transformer_predict(context)
            blended = self.blend(predicted.predicted_state, transformer_pred, current.blend_ratio)
            next_time = current.timestamp + timedelta(hours=self.config.dt)

            synthetic = H @ blended
            window = current.window.copy()
            window.append(ObservationRecord(synthetic, next_time, self.embed_observation(synthetic, next_time)))

            current = KalmanFormerState(
                kalman_state=replace(predicted, state_estimate=blended,
                                     error_covariance=predicted.predicted_covariance,
                                     timestamp=next_time),
                transformer_hidden=context,
                window=window,
                blend_ratio=current.blend_ratio,
                confidence=current.confidence * CONFIDENCE_DECAY,
                timestamp=next_time,
                learned_gain=current.learned_gain,
                kalman_estimate=predicted.predicted_state,
                transformer_estimate=transformer_pred,
            )
            trajectory.append(current)

        final = trajectory[-1]
        estimate = final.state_estimate.copy()

        return KalmanFormerPrediction(
            state_estimate=estimate,
            covariance=final.kalman_state.error_covariance,
            kalman_contribution=self.kalman_predict(state.kalman_state).predicted_state,
            transformer_contribution=self.transformer_predict(self.encode_context(state.window)),
            blended_prediction=estimate,
            confidence_interval=confidence_band(estimate, self._spread(final.kalman_state.error_covariance)),
            attention=self.explain(final),
            horizon=horizon,
            trajectory=trajectory,
            confidence=final.confidence,
        )

    def compute_attention_weights(self, embeddings: np.ndarray) -> np.ndarray:
        """Softmax-normalised dot-product attention between embeddings."""
        embeddings = np.atleast_2d(embeddings)
        scores = embeddings @ embeddings.T / math.sqrt(embeddings.shape[1])
        return softmax(scores)

    def explain(self, state: KalmanFormerState) -> AttentionExplanation:
        """Summarise attention over the buffered observations."""
        self._require_weights()
        records = state.window.records()
        if not records:
            return AttentionExplanation(self_attention=np.zeros((0, 0)), top_influential=[],
                                        temporal_pattern='uniform')

        attention = self.compute_attention_weights(self._window_embeddings(state.window))
        influence = attention[-1]

        order = np.argsort(-influence, kind='stable')[:TOP_INFLUENTIAL]
        top = []
        for idx in order:
            observation = records[idx].observation
            top.append({
                'index': int(idx),
                'timestamp': records[idx].timestamp,
                'weight': float(influence[idx]),
                'dimension': dimension_label(int(np.argmax(np.abs(observation)))),
            })

        recent = float(np.mean(influence[-5:]))
        early = float(np.mean(influence[:5]))
        if recent >= early * RECENCY_RATIO:
            pattern = 'recency_bias'
        elif self._is_pattern_matching(attention):
            pattern = 'pattern_matching'
        else:
            pattern = 'uniform'

        return AttentionExplanation(self_attention=attention, top_influential=top, temporal_pattern=pattern)

    @staticmethod
    def _is_pattern_matching(attention: np.ndarray) -> bool:
        """Less than half of the latest row's mass on the two most recent steps."""
        if attention.shape[0] < 3:
            return False
        last = attention[-1]
        return float(last[-2:].sum() / last.sum()) < ADJACENT_ATTENTION_SHARE

    def adapt_blend_ratio(self, predictions, actuals) -> float:
        """Shift the configured blend ratio from the RMS error of recent forecasts.

        High error (> 0.5) moves 0.1 toward the transformer, up to 0.8; low
        error (< 0.25) moves 0.1 toward the filter, down to 0.2. Empty or
        mismatched inputs leave the ratio unchanged.
        """
        predictions = np.asarray(predictions, dtype=float)
        actuals = np.asarray(actuals, dtype=float)
        if predictions.size == 0 or predictions.shape != actuals.shape:
            return self.config.blend_ratio

        rms = float(np.sqrt(np.mean((predictions - actuals) ** 2)))
        ratio = self.config.blend_ratio
        if rms > BLEND_ERROR_THRESHOLD:
            ratio = min(BLEND_MAX, ratio + BLEND_STEP)
        elif rms < BLEND_ERROR_THRESHOLD * 0.5:
            ratio = max(BLEND_MIN, ratio - BLEND_STEP)

        self.config.blend_ratio = ratio
        return ratio

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    def calculate_loss(self, predicted, actual) -> float:
        predicted = np.asarray(predicted, dtype=float)
        actual = np.asarray(actual, dtype=float)
        if predicted.size == 0:
            return 0.0
        return float(np.mean((predicted - actual) ** 2))

    def _gradient_step(self, state: KalmanFormerState, target: np.ndarray) -> None:
        """SGD on the output projection and the logistic blend predictor.

        For ``b = (1 - r) k + r t`` with ``t = h P_out`` and
        ``r = sigmoid(h w + c)``, the squared-error gradients are
        ``dP_out = h ⊗ (r g)`` and ``dw = (g · (t - k)) r (1 - r) h`` where
        ``g = 2 (b - y) / n``.
        """
        weights = self.weights
        lr = self.config.learning_rate
        h = state.transformer_hidden[-1]
        k, t = state.kalman_estimate, state.transformer_estimate
        r = state.blend_ratio
        blended = state.state_estimate

        g = 2.0 * (blended - target) / target.shape[0]
        weights.output_projection -= lr * clip(np.outer(h, r * g), TRAINING_GRADIENT_CLIP)

        if self.config.blend_mode == 'learned':
            d_logit = float(g @ (t - k)) * r * (1.0 - r)
            bp = weights.blend_predictor
            bp.weights -= lr * clip(d_logit * h, TRAINING_GRADIENT_CLIP)
            bp.bias -= lr * float(clip(d_logit, TRAINING_GRADIENT_CLIP))

    def _train_samples(self, samples: Sequence[TrainingSample]) -> KalmanFormerTrainingResult:
        if self.weights is None:
            self.initialize()

        start = time.perf_counter()
        n = self.config.state_dim
        total = kalman_total = transformer_total = 0.0
        count = 0

        for sample in samples:
            observations = sample.observations
            if len(observations) < 2:
                continue
            timestamps = sample.timestamps or [datetime.now() + timedelta(hours=i * self.config.dt)
                                               for i in range(len(observations))]
            state = self.create_state(observations[0], timestamps[0])

            for t in range(1, len(observations)):
                state = self.update(state, observations[t], timestamps[t])
                if sample.ground_truth is not None and t < len(sample.ground_truth):
                    target = fit_to_dim(sample.ground_truth[t], n)
                else:
                    target = fit_to_dim(observations[t], n)

                kalman_total += self.calculate_loss(state.kalman_estimate, target)
                transformer_total += self.calculate_loss(state.transformer_estimate, target)
                total += self.calculate_loss(state.state_estimate, target)
                count += 1

                self._gradient_step(state, target)

        if count == 0:
            return KalmanFormerTrainingResult(loss=float('inf'), kalman_loss=float('inf'),
                                              transformer_loss=float('inf'), epochs=0,
                                              training_time=0.0, converged=False, weights=self.weights)

        loss = total / count
        self.weights.meta.training_samples += len(samples)
        self.weights.meta.trained_at = datetime.now()
        self.weights.meta.validation_loss = loss

        return KalmanFormerTrainingResult(
            loss=loss,
            kalman_loss=kalman_total / count,
            transformer_loss=transformer_total / count,
            epochs=1,
            training_time=time.perf_counter() - start,
            converged=loss < CONVERGENCE_LOSS,
            weights=self.weights,
        )

    def train_online(self, sample: TrainingSample) -> KalmanFormerTrainingResult:
        """Filter one sample and take a gradient step after every update."""
        return self._train_samples([sample])

    def train_batch(self, samples: Sequence[TrainingSample]) -> KalmanFormerTrainingResult:
        """Filter each sample in turn; an empty batch returns infinite loss."""
        return self._train_samples(samples)

    train = train_batch

    # ------------------------------------------------------------------
    # Interoperability
    # ------------------------------------------------------------------

    def to_plrnn_state(self, state: KalmanFormerState) -> LatentState:
        """Convert to the PLRNN state shape.

        Lossy: the covariance is reduced to one spread per dimension
        (square root of the row maximum), cross-covariances are dropped.
        """
        estimate = state.state_estimate.copy()
        hidden = state.transformer_hidden[0].copy() if state.transformer_hidden.shape[0] else np.zeros(0)
        return LatentState(
            latent_state=estimate,
            hidden_activations=hidden,
            observed_state=estimate.copy(),
            uncertainty=self._spread(state.kalman_state.error_covariance),
            timestamp=state.timestamp,
            timestep=len(state.window),
        )

    def from_plrnn_state(self, plrnn_state: LatentState) -> KalmanFormerState:
        """Convert a PLRNN state into a fresh filter state.

        Lossy: the covariance restarts as ``0.1 I`` and the window holds only
        the converted observation. The transformer context starts empty.
        """
        self._require_weights()
        cfg = self.config
        n, m = cfg.state_dim, cfg.obs_dim
        estimate = fit_to_dim(plrnn_state.observed_state, n)
        obs = fit_to_dim(plrnn_state.observed_state, m)
        timestamp = plrnn_state.timestamp

        window = ObservationWindow(cfg.context_window)
        window.append(ObservationRecord(obs, timestamp, self.embed_observation(obs, timestamp)))

        kalman_state = KalmanFilterState(
            state_estimate=estimate,
            error_covariance=np.eye(n) * INITIAL_COVARIANCE,
            predicted_state=fit_to_dim(plrnn_state.latent_state, n),
            predicted_covariance=np.eye(n) * INITIAL_COVARIANCE,
            innovation=np.zeros(m),
            innovation_covariance=np.eye(m) * INITIAL_COVARIANCE,
            kalman_gain=np.eye(n, m),
            timestep=plrnn_state.timestep,
            timestamp=timestamp,
        )
        confidence = 1.0 - float(np.mean(plrnn_state.uncertainty))
        return KalmanFormerState(
            kalman_state=kalman_state,
            transformer_hidden=np.zeros((0, cfg.embed_dim)),
            window=window,
            blend_ratio=cfg.blend_ratio,
            confidence=float(np.clip(confidence, 0.0, 1.0)),
            timestamp=timestamp,
        )

    def get_complexity_metrics(self) -> Dict[str, float]:
        if self.weights is None:
            return {'total_parameters': 0, 'kalman_parameters': 0,
                    'transformer_parameters': 0, 'effective_context_length': 0}

        cfg = self.config
        E = cfg.embed_dim
        kalman_parameters = 4 * cfg.state_dim * cfg.state_dim
        qkv = 3 * cfg.num_heads * E * self.head_dim
        ffn = 2 * E * E * FF_EXPANSION
        transformer_parameters = cfg.num_layers * (qkv + ffn + 4 * E)
        embedding_parameters = cfg.obs_dim * E + cfg.context_window * E

        return {
            'total_parameters': kalman_parameters + transformer_parameters + embedding_parameters,
            'kalman_parameters': kalman_parameters,
            'transformer_parameters': transformer_parameters,
            'effective_context_length': cfg.context_window,
        }
