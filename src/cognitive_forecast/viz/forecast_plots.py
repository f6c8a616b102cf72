"""
Forecast, causal-network and early-warning figures.

Plots consume the engines' result objects directly: a PLRNN ``Prediction``
or a ``KalmanFormerPrediction`` for fan charts, a ``CausalNetwork`` for the
influence graph, a list of ``EarlyWarningSignal`` for the indicator chart
and an ``AttentionExplanation`` for the attention heatmap.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns
import networkx as nx

from ..core.state import STATE_DIMENSIONS, CI_Z_SCORE, dimension_label

plt.style.use('seaborn-v0_8-paper')
sns.set_palette("husl")


@dataclass
class ForecastPlotConfig:
    """Figure settings shared by the plotting functions."""
    figure_size: Tuple[float, float] = (12, 8)
    dpi: int = 150
    line_width: float = 1.5
    band_alpha: float = 0.25
    color_palette: str = 'husl'
    show_legend: bool = True


def _save(fig: plt.Figure, save_path: Optional[Union[str, Path]], dpi: int) -> None:
    if save_path:
        save_path = Path(save_path)
        save_path.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(save_path, dpi=dpi, bbox_inches='tight', facecolor='white', edgecolor='none')


def _history_array(history) -> np.ndarray:
    """Observation history as (T, D): raw arrays or states with ``observed_state``."""
    if isinstance(history, np.ndarray):
        return np.atleast_2d(history).astype(float)
    rows = [getattr(item, 'observed_state', item) for item in history]
    return np.array(rows, dtype=float) if rows else np.zeros((0, 0))


def forecast_path(prediction) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Mean path and 95% band along a forecast trajectory.

    Returns
    -------
    mean, lower, upper : np.ndarray, shape (horizon + 1, D)
    """
    trajectory = prediction.trajectory
    if hasattr(trajectory[0], 'observed_state'):
        mean = np.array([s.observed_state for s in trajectory])
        spread = np.sqrt(np.asarray(prediction.variance, dtype=float))
    else:
        mean = np.array([s.state_estimate for s in trajectory])
        spread = np.array([np.sqrt(np.max(np.abs(s.kalman_state.error_covariance), axis=1))
                           for s in trajectory])
    spread = spread[:, :mean.shape[1]]
    return mean, mean - CI_Z_SCORE * spread, mean + CI_Z_SCORE * spread


def plot_forecast(history, prediction,
                  dimensions: Optional[Sequence[int]] = None,
                  title: str = "State forecast",
                  save_path: Optional[Union[str, Path]] = None,
                  config: Optional[ForecastPlotConfig] = None) -> plt.Figure:
    """Fan chart per dimension: observed history, mean forecast and 95% band.

    Parameters
    ----------
    history : np.ndarray, shape (T, D), or sequence of states
        Observations preceding the forecast
    prediction : Prediction or KalmanFormerPrediction
    dimensions : Optional[Sequence[int]]
        Dimensions to draw, all by default
    title : str
    save_path : Optional[Union[str, Path]]
    config : Optional[ForecastPlotConfig]

    Returns
    -------
    plt.Figure
    """
    config = config or ForecastPlotConfig()
    past = _history_array(history)
    mean, lower, upper = forecast_path(prediction)

    if dimensions is None:
        dimensions = list(range(mean.shape[1]))
    colors = sns.color_palette(config.color_palette, len(dimensions))

    fig, axes = plt.subplots(len(dimensions), 1, figsize=config.figure_size, sharex=True, squeeze=False)
    n_past = past.shape[0]
    past_x = np.arange(-n_past + 1, 1) if n_past else np.zeros(0)
    future_x = np.arange(mean.shape[0])

    for ax, dim, color in zip(axes[:, 0], dimensions, colors):
        if n_past and dim < past.shape[1]:
            ax.plot(past_x, past[:, dim], color='0.3', linewidth=config.line_width,
                    marker='o', markersize=3, label='observed')
        ax.plot(future_x, mean[:, dim], color=color, linewidth=config.line_width, label='forecast')
        ax.fill_between(future_x, lower[:, dim], upper[:, dim], color=color,
                        alpha=config.band_alpha, label='95% band')
        ax.axvline(0, color='0.6', linestyle='--', linewidth=0.8)
        ax.set_ylabel(dimension_label(dim))
        if config.show_legend and dim == dimensions[0]:
            ax.legend(loc='upper left', fontsize='small')

    axes[-1, 0].set_xlabel('steps')
    fig.suptitle(title)
    fig.tight_layout()
    _save(fig, save_path, config.dpi)
    return fig


def plot_causal_network(network, ax: Optional[plt.Axes] = None,
                        title: str = "Causal network",
                        save_path: Optional[Union[str, Path]] = None,
                        config: Optional[ForecastPlotConfig] = None) -> plt.Figure:
    """Directed influence graph.

    Node size follows centrality, edge width ``|weight|``; excitatory edges
    are drawn red, inhibitory ones blue.
    """
    config = config or ForecastPlotConfig()
    if ax is None:
        fig, ax = plt.subplots(figsize=(6, 6))
    else:
        fig = ax.figure

    graph = network.to_networkx()
    pos = nx.circular_layout(graph)
    centrality = [graph.nodes[n]['centrality'] for n in graph.nodes]
    max_centrality = max(centrality) if centrality and max(centrality) > 0 else 1.0
    node_sizes = [300 + 1200 * c / max_centrality for c in centrality]

    edges = list(graph.edges(data=True))
    edge_colors = ['tab:red' if d['weight'] > 0 else 'tab:blue' for _, _, d in edges]
    edge_widths = [0.5 + 4 * abs(d['weight']) for _, _, d in edges]

    nx.draw_networkx_nodes(graph, pos, ax=ax, node_size=node_sizes, node_color='lightgray',
                           edgecolors='0.3')
    nx.draw_networkx_labels(graph, pos, ax=ax, font_size=9)
    if edges:
        nx.draw_networkx_edges(graph, pos, ax=ax, edgelist=[(u, v) for u, v, _ in edges],
                               edge_color=edge_colors, width=edge_widths, arrows=True,
                               arrowsize=15, connectionstyle='arc3,rad=0.1')

    ax.set_title(f"{title} (density {network.density:.2f}, central: {network.central_node})")
    ax.set_axis_off()
    _save(fig, save_path, config.dpi)
    return fig


def plot_early_warnings(signals: List,
                        dimensions: Sequence[str] = STATE_DIMENSIONS,
                        title: str = "Early-warning signals",
                        save_path: Optional[Union[str, Path]] = None,
                        config: Optional[ForecastPlotConfig] = None) -> plt.Figure:
    """Signal strength per dimension, grouped by indicator type."""
    config = config or ForecastPlotConfig()
    fig, ax = plt.subplots(figsize=(8, 4))

    if not signals:
        ax.text(0.5, 0.5, "No early-warning signals", ha='center', va='center', transform=ax.transAxes)
        ax.set_axis_off()
    else:
        df = pd.DataFrame([s.to_dict() for s in signals])
        order = [d for d in list(dimensions) + ['network'] if d in set(df['dimension'])]
        sns.barplot(data=df, x='dimension', y='strength', hue='type', order=order, ax=ax)
        ax.set_ylabel('strength')
        ax.set_xlabel('')

    ax.set_title(title)
    fig.tight_layout()
    _save(fig, save_path, config.dpi)
    return fig


def plot_attention(explanation,
                   title: str = "Self-attention",
                   save_path: Optional[Union[str, Path]] = None,
                   config: Optional[ForecastPlotConfig] = None) -> plt.Figure:
    """Heatmap of a KalmanFormer attention explanation."""
    config = config or ForecastPlotConfig()
    fig, ax = plt.subplots(figsize=(6, 5))
    weights = explanation.self_attention
    if weights.size:
        sns.heatmap(weights, ax=ax, cmap='viridis', vmin=0.0, square=True,
                    cbar_kws={'label': 'attention'})
        ax.set_xlabel('attended observation')
        ax.set_ylabel('query observation')
    else:
        ax.text(0.5, 0.5, "No history", ha='center', va='center', transform=ax.transAxes)
        ax.set_axis_off()
    ax.set_title(f"{title} ({explanation.temporal_pattern})")
    fig.tight_layout()
    _save(fig, save_path, config.dpi)
    return fig
