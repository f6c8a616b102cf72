"""EMA data handling: dataset types, loading, preprocessing and synthetic generation."""

from .ema import (
    EMAObservation,
    ParticipantTimeSeries,
    EMADataset,
    TrainingSequence,
    NormalizationStats,
    EMA_COLUMNS,
    dataframe_to_dataset,
    load_ema_csv,
    save_ema_csv,
    dataset_to_samples,
    save_weights,
    load_weights_file,
)
from .preprocessing import regularize_timesteps, normalize_sequence, train_validation_split
from .synthetic import (
    generate_ema_dataset,
    generate_critical_transition_series,
    ar_coefficient_trajectory,
    random_var_matrix,
)

__all__ = [
    'EMAObservation',
    'ParticipantTimeSeries',
    'EMADataset',
    'TrainingSequence',
    'NormalizationStats',
    'EMA_COLUMNS',
    'dataframe_to_dataset',
    'load_ema_csv',
    'save_ema_csv',
    'dataset_to_samples',
    'save_weights',
    'load_weights_file',
    'regularize_timesteps',
    'normalize_sequence',
    'train_validation_split',
    'generate_ema_dataset',
    'generate_critical_transition_series',
    'ar_coefficient_trajectory',
    'random_var_matrix',
]
