"""Core forecasting engines.

This module contains:
- Linear-algebra and activation primitives
- The shared latent-state representation and observation window
- Early-warning detection and causal-network extraction
- The PLRNN and KalmanFormer engines with their common contract
- The truncated-BPTT trainer
"""

from .exceptions import ForecastEngineError, NotInitializedError, InvalidDimensionError
from .state import (
    STATE_DIMENSIONS,
    LatentState,
    Prediction,
    ConfidenceInterval,
    TrainingSample,
    TrainingResult,
    create_state,
    to_state_observation,
)
from .ring_buffer import ObservationWindow, ObservationRecord
from .early_warning import EarlyWarningSignal, detect_early_warnings
from .causal import CausalNetwork, CausalNode, CausalEdge, extract_causal_network
from .base import TemporalEngine, EngineKind, create_engine
from .plrnn import PLRNNEngine, PLRNNWeights, InterventionSimulation, HORIZON_STEPS
from .kalmanformer import (
    KalmanFormerEngine,
    KalmanFormerWeights,
    KalmanFormerState,
    KalmanFormerPrediction,
    AttentionExplanation,
)
from .trainer import PLRNNTrainer, TrainingHistory, TrainingMetrics, EMATrainingResult

__all__ = [
    # Errors
    'ForecastEngineError',
    'NotInitializedError',
    'InvalidDimensionError',

    # State
    'STATE_DIMENSIONS',
    'LatentState',
    'Prediction',
    'ConfidenceInterval',
    'TrainingSample',
    'TrainingResult',
    'create_state',
    'to_state_observation',
    'ObservationWindow',
    'ObservationRecord',

    # Analysis
    'EarlyWarningSignal',
    'detect_early_warnings',
    'CausalNetwork',
    'CausalNode',
    'CausalEdge',
    'extract_causal_network',

    # Engines
    'TemporalEngine',
    'EngineKind',
    'create_engine',
    'PLRNNEngine',
    'PLRNNWeights',
    'InterventionSimulation',
    'HORIZON_STEPS',
    'KalmanFormerEngine',
    'KalmanFormerWeights',
    'KalmanFormerState',
    'KalmanFormerPrediction',
    'AttentionExplanation',

    # Training
    'PLRNNTrainer',
    'TrainingHistory',
    'TrainingMetrics',
    'EMATrainingResult',
]
