"""
Cognitive Forecast Visualization Module.

Figures for forecasts (fan charts), learned causal networks, early-warning
indicators and KalmanFormer attention.
"""

from .forecast_plots import (
    ForecastPlotConfig,
    forecast_path,
    plot_forecast,
    plot_causal_network,
    plot_early_warnings,
    plot_attention,
)

__all__ = [
    'ForecastPlotConfig',
    'forecast_path',
    'plot_forecast',
    'plot_causal_network',
    'plot_early_warnings',
    'plot_attention',
]
