"""Configuration management for Cognitive Forecast.

Provides engine/trainer configuration, global settings and random seed
management for reproducible forecasting runs.
"""

from .settings import get_config, set_config, Settings
from .random_state import set_global_seed, get_random_state, get_rng
from .defaults import (
    PLRNNConfig,
    KalmanFormerConfig,
    TrainingConfig,
    DEFAULT_PLRNN_CONFIG,
    DEFAULT_KALMANFORMER_CONFIG,
    DEFAULT_TRAINING_CONFIG,
    TUNED_TRAINING_CONFIG,
    MINIMAL_TRAINING_CONFIG,
    PRESETS,
)

__all__ = [
    'get_config',
    'set_config',
    'set_global_seed',
    'get_random_state',
    'get_rng',
    'Settings',
    'PLRNNConfig',
    'KalmanFormerConfig',
    'TrainingConfig',
    'DEFAULT_PLRNN_CONFIG',
    'DEFAULT_KALMANFORMER_CONFIG',
    'DEFAULT_TRAINING_CONFIG',
    'TUNED_TRAINING_CONFIG',
    'MINIMAL_TRAINING_CONFIG',
    'PRESETS',
]
