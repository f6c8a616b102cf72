"""Default configuration parameters for the forecasting engines and the trainer."""

from dataclasses import dataclass, field
from typing import List, Tuple

CONNECTIVITY_MODES = [
    "dense",      # W * relu(z) only
    "dendritic",  # additional ReLU basis layer routed back through C
]

BLEND_MODES = [
    "fixed",    # use the configured blend ratio
    "learned",  # logistic function of the last context embedding
    "carry",    # keep the ratio carried on the filter state
]

TIME_EMBEDDINGS = [
    "sinusoidal",  # fixed time-of-day / day-of-week encoding
    "learned",     # learned projection of the time of day
    "none",
]

LR_SCHEDULES = [
    "constant",
    "step",
    "exponential",
    "cosine",
]


@dataclass
class PLRNNConfig:
    """Configuration of the piecewise-linear recurrent network engine."""

    # Architecture
    latent_dim: int = 5
    hidden_units: int = 16
    connectivity: str = "dendritic"
    dendritic_bases: int = 8

    # Online learning
    learning_rate: float = 0.001
    teacher_forcing_ratio: float = 0.5
    l1_regularization: float = 0.01
    gradient_clip: float = 1.0
    exact_latent_backprop: bool = False

    # Forecasting
    prediction_horizon: int = 12
    dt: float = 1.0  # hours per step
    uncertainty_growth: float = 0.05
    max_uncertainty: float = 1.0


@dataclass
class KalmanFormerConfig:
    """Configuration of the Kalman filter / transformer hybrid engine."""

    # Dimensions
    state_dim: int = 5
    obs_dim: int = 5
    embed_dim: int = 64
    num_heads: int = 4
    num_layers: int = 2
    context_window: int = 24

    # Behaviour
    dropout: float = 0.1  # carried for compatibility, not applied
    blend_ratio: float = 0.5
    blend_mode: str = "learned"
    learned_gain: bool = True
    temperature: float = 1.0
    time_embedding: str = "sinusoidal"
    max_time_gap: float = 48.0  # hours
    dt: float = 1.0  # hours per filter step

    # Outlier handling
    outlier_probability: float = 0.99
    dampen_outliers: bool = True

    max_uncertainty: float = 1.0
    learning_rate: float = 0.001


@dataclass
class TrainingConfig:
    """Truncated-BPTT training settings for EMA data."""

    # BPTT
    bptt_window: int = 20
    bptt_overlap: int = 5

    # Epochs
    epochs: int = 100
    batch_size: int = 8

    # Train / validation
    validation_split: float = 0.2
    shuffle_data: bool = True

    # Early stopping
    early_stopping_patience: int = 15
    early_stopping_min_delta: float = 0.001

    # Learning rate
    learning_rate: float = 0.001
    lr_schedule: str = "cosine"
    lr_decay_factor: float = 0.5
    lr_decay_steps: int = 30
    lr_min: float = 1e-6

    # Multi-horizon loss
    horizons: Tuple[int, ...] = (1, 3, 6, 12)
    horizon_weights: Tuple[float, ...] = (1.0, 0.5, 0.25, 0.125)

    # EMA specific
    handle_irregular_sampling: bool = True
    per_participant_normalization: bool = True
    target_interval_hours: float = 4.0

    # Regularisation
    l1_regularization: float = 0.01
    l2_regularization: float = 0.0001
    gradient_clip: float = 1.0

    # Teacher forcing
    teacher_forcing_ratio: float = 0.5
    teacher_forcing_decay: float = 0.98

    # Logging
    log_every_epochs: int = 10
    verbose: bool = False


DEFAULT_PLRNN_CONFIG = PLRNNConfig()
DEFAULT_KALMANFORMER_CONFIG = KalmanFormerConfig()
DEFAULT_TRAINING_CONFIG = TrainingConfig()

# Longer windows, gentler regularisation and slow teacher-forcing decay
TUNED_TRAINING_CONFIG = TrainingConfig(
    bptt_window=30,
    bptt_overlap=10,
    epochs=200,
    batch_size=4,
    early_stopping_patience=25,
    early_stopping_min_delta=0.0001,
    learning_rate=0.0005,
    lr_schedule="cosine",
    lr_decay_factor=0.5,
    lr_decay_steps=50,
    lr_min=1e-7,
    horizons=(1, 2, 4, 8),
    horizon_weights=(1.0, 0.7, 0.4, 0.2),
    l1_regularization=0.001,
    l2_regularization=0.0001,
    gradient_clip=0.5,
    teacher_forcing_ratio=0.9,
    teacher_forcing_decay=0.995,
)

# Small engines and short runs for smoke tests and demos
MINIMAL_TRAINING_CONFIG = TrainingConfig(
    bptt_window=8,
    bptt_overlap=2,
    epochs=5,
    batch_size=2,
    early_stopping_patience=3,
    horizons=(1, 3),
    horizon_weights=(1.0, 0.5),
    log_every_epochs=1,
)

PRESETS = {
    "default": (PLRNNConfig(), KalmanFormerConfig(), TrainingConfig()),
    "tuned": (PLRNNConfig(l1_regularization=0.001, gradient_clip=0.5),
              KalmanFormerConfig(),
              TUNED_TRAINING_CONFIG),
    "minimal": (PLRNNConfig(connectivity="dense"),
                KalmanFormerConfig(embed_dim=16, num_heads=2, num_layers=1, context_window=12),
                MINIMAL_TRAINING_CONFIG),
}

# Practical limits
MAX_RECOMMENDED_LATENT_DIM = 32
MAX_RECOMMENDED_EMBED_DIM = 256
MAX_RECOMMENDED_CONTEXT = 168  # one week of hourly samples


def validate_plrnn_config(config: PLRNNConfig) -> List[str]:
    """Validate PLRNN parameters and return list of warnings."""
    warnings = []

    if config.latent_dim < 1:
        warnings.append(f"Latent dimension {config.latent_dim} must be positive")

    if config.latent_dim > MAX_RECOMMENDED_LATENT_DIM:
        warnings.append(f"Latent dimension {config.latent_dim} may cause performance issues")

    if config.connectivity not in CONNECTIVITY_MODES:
        warnings.append(f"Connectivity '{config.connectivity}' not recognized")

    if config.connectivity == "dendritic" and config.dendritic_bases < 1:
        warnings.append("Dendritic connectivity requires at least one basis")

    if not 0.0 <= config.teacher_forcing_ratio <= 1.0:
        warnings.append(f"Teacher forcing ratio {config.teacher_forcing_ratio} outside [0, 1]")

    if config.learning_rate <= 0 or config.learning_rate > 0.1:
        warnings.append(f"Learning rate {config.learning_rate} is outside the stable range (0, 0.1]")

    if config.gradient_clip <= 0:
        warnings.append(f"Gradient clip {config.gradient_clip} must be positive")

    if config.dt <= 0:
        warnings.append(f"Time step {config.dt} must be positive")

    if config.max_uncertainty <= 0:
        warnings.append(f"Uncertainty ceiling {config.max_uncertainty} must be positive")

    return warnings


def validate_kalmanformer_config(config: KalmanFormerConfig) -> List[str]:
    """Validate KalmanFormer parameters and return list of warnings."""
    warnings = []

    if config.num_heads < 1 or config.embed_dim % config.num_heads != 0:
        warnings.append(f"Embedding size {config.embed_dim} is not divisible by {config.num_heads} heads")

    if config.embed_dim > MAX_RECOMMENDED_EMBED_DIM:
        warnings.append(f"Embedding size {config.embed_dim} may cause performance issues")

    if config.context_window < 1:
        warnings.append(f"Context window {config.context_window} must be positive")

    if config.context_window > MAX_RECOMMENDED_CONTEXT:
        warnings.append(f"Context window {config.context_window} is very long, attention cost is quadratic")

    if not 0.0 <= config.blend_ratio <= 1.0:
        warnings.append(f"Blend ratio {config.blend_ratio} outside [0, 1]")

    if config.blend_mode not in BLEND_MODES:
        warnings.append(f"Blend mode '{config.blend_mode}' not recognized")

    if config.time_embedding not in TIME_EMBEDDINGS:
        warnings.append(f"Time embedding '{config.time_embedding}' not recognized")

    if config.temperature <= 0:
        warnings.append(f"Attention temperature {config.temperature} must be positive")

    if not 0.0 < config.outlier_probability < 1.0:
        warnings.append(f"Outlier probability {config.outlier_probability} must lie in (0, 1)")

    if config.obs_dim != config.state_dim:
        warnings.append("Observation and state dimensions differ; the observation matrix is truncated identity")

    return warnings


def validate_training_config(config: TrainingConfig) -> List[str]:
    """Validate trainer parameters and return list of warnings."""
    warnings = []

    if config.bptt_overlap >= config.bptt_window:
        warnings.append(f"BPTT overlap {config.bptt_overlap} must be smaller than window {config.bptt_window}")

    if not 0.0 <= config.validation_split < 1.0:
        warnings.append(f"Validation split {config.validation_split} outside [0, 1)")

    if config.lr_schedule not in LR_SCHEDULES:
        warnings.append(f"Learning-rate schedule '{config.lr_schedule}' not recognized")

    if len(config.horizons) != len(config.horizon_weights):
        warnings.append("Horizons and horizon weights have different lengths")

    if config.lr_min > config.learning_rate:
        warnings.append(f"Minimum learning rate {config.lr_min} exceeds base rate {config.learning_rate}")

    if config.target_interval_hours <= 0:
        warnings.append(f"Target interval {config.target_interval_hours} must be positive")

    return warnings
