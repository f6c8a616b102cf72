"""Causal-influence graph extracted from recurrent weights."""

from dataclasses import dataclass, field, asdict
from typing import List, Optional, Tuple

import numpy as np
import networkx as nx

from .state import dimension_label

SIGNIFICANCE_THRESHOLD = 0.1


@dataclass
class CausalNode:
    id: str
    label: str
    self_weight: float
    centrality: float
    value: float = 0.0


@dataclass
class CausalEdge:
    """Directed influence ``source -> target`` one lag ahead."""
    source: str
    target: str
    weight: float
    lag: float
    significance: float


@dataclass
class CausalNetwork:
    """Snapshot graph of the learned dynamics.

    Attributes
    ----------
    nodes : List[CausalNode]
        One node per state dimension
    edges : List[CausalEdge]
        Off-diagonal weights whose magnitude exceeds the threshold
    density : float
        Edge count over the number of possible directed edges
    central_node : str
        Label of the node with the highest centrality
    feedback_loops : List[Tuple[str, str]]
        Dimension pairs influencing each other in both directions
    """
    nodes: List[CausalNode]
    edges: List[CausalEdge]
    density: float
    central_node: str
    feedback_loops: List[Tuple[str, str]] = field(default_factory=list)

    def to_networkx(self) -> nx.DiGraph:
        """Directed graph keyed by node label."""
        graph = nx.DiGraph()
        labels = {node.id: node.label for node in self.nodes}
        for node in self.nodes:
            graph.add_node(node.label, self_weight=node.self_weight,
                           centrality=node.centrality, value=node.value)
        for edge in self.edges:
            graph.add_edge(labels[edge.source], labels[edge.target], weight=edge.weight,
                           lag=edge.lag, significance=edge.significance)
        return graph

    def to_dict(self):
        return {
            'nodes': [asdict(n) for n in self.nodes],
            'edges': [asdict(e) for e in self.edges],
            'metrics': {
                'density': self.density,
                'central_node': self.central_node,
                'feedback_loops': [list(pair) for pair in self.feedback_loops],
            },
        }


def node_centrality(W: np.ndarray, index: int) -> float:
    """Mean of absolute outgoing and incoming strength, ``(Σ|row| + Σ|col|) / 2D``."""
    n = W.shape[0]
    return float((np.abs(W[index]).sum() + np.abs(W[:, index]).sum()) / (2 * n))


def edge_significance(weight: float, n: int) -> float:
    """``|w|`` relative to the uniform weight ``1/n``, capped at 1."""
    return float(min(1.0, abs(weight) / (1.0 / n)))


def feedback_loops(W: np.ndarray, threshold: float = SIGNIFICANCE_THRESHOLD) -> List[Tuple[str, str]]:
    n = W.shape[0]
    return [(dimension_label(i), dimension_label(j))
            for i in range(n) for j in range(i + 1, n)
            if abs(W[i, j]) > threshold and abs(W[j, i]) > threshold]


def extract_causal_network(A: np.ndarray, W: np.ndarray, dt: float = 1.0,
                           threshold: float = SIGNIFICANCE_THRESHOLD,
                           current_values: Optional[np.ndarray] = None) -> CausalNetwork:
    """Build a CausalNetwork from self-weights ``A`` and cross-weights ``W``.

    ``W[i, j]`` is the influence of dimension ``j`` on dimension ``i``, so it
    becomes the edge ``node_j -> node_i``.

    Parameters
    ----------
    A : np.ndarray, shape (D,)
        Diagonal self-connection weights
    W : np.ndarray, shape (D, D)
        Recurrent weight matrix
    dt : float, default=1.0
        Lag attached to every edge, in hours
    threshold : float, default=0.1
        Minimum |weight| for an edge
    current_values : Optional[np.ndarray]
        Current state to attach to the nodes; zeros when omitted

    Returns
    -------
    CausalNetwork
    """
    A = np.asarray(A, dtype=float)
    W = np.asarray(W, dtype=float)
    n = W.shape[0]
    values = np.zeros(n) if current_values is None else np.asarray(current_values, dtype=float)

    nodes = [CausalNode(id=f"node_{i}", label=dimension_label(i), self_weight=float(A[i]),
                        centrality=node_centrality(W, i), value=float(values[i]))
             for i in range(n)]

    edges = []
    for i in range(n):
        for j in range(n):
            if i != j and abs(W[i, j]) > threshold:
                edges.append(CausalEdge(source=f"node_{j}", target=f"node_{i}",
                                        weight=float(W[i, j]), lag=dt,
                                        significance=edge_significance(W[i, j], n)))

    density = len(edges) / (n * (n - 1)) if n > 1 else 0.0
    central = max(nodes, key=lambda node: node.centrality).label if nodes else ""

    return CausalNetwork(nodes=nodes, edges=edges, density=density, central_node=central,
                         feedback_loops=feedback_loops(W, threshold))
