"""Exception types raised by the forecasting engines."""


class ForecastEngineError(Exception):
    """Base class for engine errors."""


class NotInitializedError(ForecastEngineError, RuntimeError):
    """Raised when an engine is used before ``initialize`` or ``load_weights``."""

    def __init__(self, engine: str = "Engine"):
        super().__init__(f"{engine} not initialized. Call initialize() or load_weights() first.")
        self.engine = engine


class InvalidDimensionError(ForecastEngineError, ValueError):
    """Raised for unknown state dimensions or vectors of the wrong length."""
