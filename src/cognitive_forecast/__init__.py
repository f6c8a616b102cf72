"""
Cognitive Forecast - temporal forecasting of psychological state.

Two interchangeable dynamics engines (a piecewise-linear recurrent network and a
Kalman-filter/attention hybrid) that denoise, forecast and explain sequences of
five-dimensional EMA observations.
"""

__version__ = "0.1.0"

from .core import (
    PLRNNEngine,
    KalmanFormerEngine,
    PLRNNTrainer,
    EngineKind,
    create_engine,
    LatentState,
    STATE_DIMENSIONS,
)

__all__ = [
    'PLRNNEngine',
    'KalmanFormerEngine',
    'PLRNNTrainer',
    'EngineKind',
    'create_engine',
    'LatentState',
    'STATE_DIMENSIONS',
]
