"""Common capability contract of the forecasting engines."""

import threading
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Optional, Union

import numpy as np

from .exceptions import NotInitializedError


class EngineKind(str, Enum):
    """Tag selecting an engine implementation."""
    PLRNN = "plrnn"
    KALMANFORMER = "kalmanformer"


class TemporalEngine(ABC):
    """Shared surface of PLRNN and KalmanFormer.

    Subclasses own exactly one weights object. Mutating calls (training,
    weight loading) and forecasting calls on the same instance must be
    serialised by the caller; ``_lock`` guards the few operations that
    temporarily alter engine configuration.
    """

    kind: EngineKind
    name: str = "Engine"

    def __init__(self):
        self.weights = None
        self._lock = threading.RLock()

    @property
    def is_initialized(self) -> bool:
        return self.weights is not None

    def _require_weights(self):
        if self.weights is None:
            raise NotInitializedError(self.name)
        return self.weights

    @abstractmethod
    def initialize(self, config: Optional[Any] = None) -> None:
        """Build fresh weights."""

    def load_weights(self, weights) -> None:
        """Replace the weights wholesale; the engine config follows ``weights.meta``."""
        self.weights = weights
        self.config = weights.meta.config

    def get_weights(self):
        """Return the live weights object."""
        return self._require_weights()

    @abstractmethod
    def predict(self, state, horizon: int):
        """Bounded multi-step forecast."""

    @abstractmethod
    def to_observation(self, state) -> np.ndarray:
        """Point estimate of ``state`` in observation space."""

    @abstractmethod
    def calculate_loss(self, predicted, actual) -> float:
        """Mean squared error between predictions and targets."""

    @abstractmethod
    def get_complexity_metrics(self) -> dict:
        """Model-size and dynamics summary."""


def create_engine(kind: Union[EngineKind, str], config: Optional[Any] = None,
                  seed: Optional[int] = None, initialize: bool = True) -> TemporalEngine:
    """Construct an engine by tag.

    Parameters
    ----------
    kind : EngineKind or str
        ``plrnn`` or ``kalmanformer``
    config : optional
        Engine config dataclass; defaults when omitted
    seed : Optional[int]
        Seed of the engine's private generator
    initialize : bool, default=True
        Build weights immediately

    Raises
    ------
    ValueError
        For an unknown kind
    """
    kind = EngineKind(kind)

    if kind is EngineKind.PLRNN:
        from .plrnn import PLRNNEngine
        engine = PLRNNEngine(config, seed=seed)
    else:
        from .kalmanformer import KalmanFormerEngine
        engine = KalmanFormerEngine(config, seed=seed)

    if initialize:
        engine.initialize()
    return engine
