"""Shared state representation for both forecasting engines.

The canonical state is a fixed-dimension latent vector (default five
dimensions: valence, arousal, dominance, risk, resources) carrying a
per-dimension uncertainty, a timestamp and an integer timestep.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional, Dict, Any, Sequence

import numpy as np

from .exceptions import InvalidDimensionError

STATE_DIMENSIONS = ('valence', 'arousal', 'dominance', 'risk', 'resources')

INITIAL_UNCERTAINTY = 0.1
CI_Z_SCORE = 1.96


def dimension_label(index: int) -> str:
    """Human-readable label of a state dimension."""
    if 0 <= index < len(STATE_DIMENSIONS):
        return STATE_DIMENSIONS[index]
    return f"dim_{index}"


def dimension_index(name: str, dim: int = len(STATE_DIMENSIONS)) -> int:
    """Index of a named dimension.

    Raises
    ------
    InvalidDimensionError
        If ``name`` is not one of the first ``dim`` state dimensions
    """
    labels = [dimension_label(i) for i in range(dim)]
    if name not in labels:
        raise InvalidDimensionError(f"Unknown target dimension: {name}. Available: {labels}")
    return labels.index(name)


def as_vector(values: Sequence[float], dim: int, name: str = "observation") -> np.ndarray:
    """Convert to a float vector of exactly ``dim`` entries.

    Raises
    ------
    InvalidDimensionError
        If the length differs from ``dim``
    """
    vector = np.asarray(values, dtype=float).reshape(-1)
    if vector.shape[0] != dim:
        raise InvalidDimensionError(f"{name} must have length {dim}, got {vector.shape[0]}")
    return vector


def fit_to_dim(values: Sequence[float], dim: int) -> np.ndarray:
    """Truncate or zero-pad ``values`` to ``dim`` entries."""
    vector = np.zeros(dim)
    source = np.asarray(values, dtype=float).reshape(-1)[:dim]
    vector[:source.shape[0]] = source
    return vector


@dataclass
class LatentState:
    """Time-stamped, uncertainty-annotated state of one entity.

    Attributes
    ----------
    latent_state : np.ndarray, shape (D,)
        Latent vector z
    hidden_activations : np.ndarray
        ReLU activations that produced the state (for interpretability)
    observed_state : np.ndarray, shape (D,)
        Observation-space projection x = B z + b_x
    uncertainty : np.ndarray, shape (D,)
        Per-dimension uncertainty in [0, ceiling]
    timestamp : datetime
    timestep : int
    """
    latent_state: np.ndarray
    hidden_activations: np.ndarray
    observed_state: np.ndarray
    uncertainty: np.ndarray
    timestamp: datetime
    timestep: int = 0

    @property
    def dim(self) -> int:
        return int(self.latent_state.shape[0])

    def copy(self) -> 'LatentState':
        return LatentState(
            latent_state=self.latent_state.copy(),
            hidden_activations=self.hidden_activations.copy(),
            observed_state=self.observed_state.copy(),
            uncertainty=self.uncertainty.copy(),
            timestamp=self.timestamp,
            timestep=self.timestep,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'latent_state': self.latent_state.tolist(),
            'observed_state': self.observed_state.tolist(),
            'uncertainty': self.uncertainty.tolist(),
            'timestamp': self.timestamp.isoformat(),
            'timestep': self.timestep,
        }


def create_state(observation: Sequence[float], dim: int,
                 timestamp: Optional[datetime] = None,
                 uncertainty: float = INITIAL_UNCERTAINTY) -> LatentState:
    """Build a state directly from an observation.

    The observation is truncated or zero-padded to ``dim`` and used for both
    the latent and observed vectors.
    """
    obs = fit_to_dim(observation, dim)
    return LatentState(
        latent_state=obs.copy(),
        hidden_activations=np.maximum(obs, 0.0),
        observed_state=obs.copy(),
        uncertainty=np.full(dim, uncertainty),
        timestamp=timestamp if timestamp is not None else datetime.now(),
        timestep=0,
    )


def advance_time(timestamp: datetime, hours: float) -> datetime:
    return timestamp + timedelta(hours=hours)


@dataclass
class ConfidenceInterval:
    lower: np.ndarray
    upper: np.ndarray
    level: float = 0.95


def confidence_band(mean: np.ndarray, spread: np.ndarray, z: float = CI_Z_SCORE) -> ConfidenceInterval:
    """Symmetric band ``mean ± z * spread``."""
    mean = np.asarray(mean, dtype=float)
    spread = np.asarray(spread, dtype=float)
    return ConfidenceInterval(lower=mean - z * spread, upper=mean + z * spread, level=0.95)


@dataclass
class Prediction:
    """Multi-step forecast.

    ``trajectory`` starts with the initial state, so a horizon ``h`` forecast
    holds ``h + 1`` states and ``variance`` has shape ``(h + 1, D)``.
    """
    trajectory: List[LatentState]
    mean_prediction: np.ndarray
    confidence_interval: ConfidenceInterval
    variance: np.ndarray
    early_warning_signals: list
    horizon: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'horizon': self.horizon,
            'mean_prediction': self.mean_prediction.tolist(),
            'confidence_interval': {
                'lower': self.confidence_interval.lower.tolist(),
                'upper': self.confidence_interval.upper.tolist(),
                'level': self.confidence_interval.level,
            },
            'trajectory': [s.observed_state.tolist() for s in self.trajectory],
            'early_warning_signals': [s.to_dict() for s in self.early_warning_signals],
        }


@dataclass
class TrainingSample:
    """Ordered observations of one entity used for online training."""
    observations: List[np.ndarray]
    timestamps: List[datetime] = field(default_factory=list)
    user_id: Optional[str] = None
    ground_truth: Optional[List[np.ndarray]] = None
    context: Dict[str, Any] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.observations)


@dataclass
class TrainingResult:
    loss: float
    validation_loss: float
    epochs: int
    training_time: float
    converged: bool
    weights: Any


def to_state_observation(valence: float, arousal: float, dominance: float,
                         depression_score: float, stress_score: float) -> np.ndarray:
    """Map affect estimates to the five-dimensional observation vector.

    Depression and stress scores in [0, 1] are inverted into the ``risk``
    and ``resources`` dimensions.
    """
    depression_score = float(np.clip(depression_score, 0.0, 1.0))
    stress_score = float(np.clip(stress_score, 0.0, 1.0))
    return np.array([valence, arousal, dominance, 1.0 - depression_score, 1.0 - stress_score], dtype=float)
