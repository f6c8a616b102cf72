"""Tests for causal-network extraction."""

import pytest
import numpy as np

from cognitive_forecast.core import CausalNetwork, extract_causal_network
from cognitive_forecast.core.causal import node_centrality, edge_significance, feedback_loops


@pytest.fixture
def coupled_weights():
    """Valence drives arousal strongly; risk and resources inhibit each other."""
    W = np.zeros((5, 5))
    W[1, 0] = 0.5    # valence -> arousal
    W[4, 3] = -0.3   # risk -> resources
    W[3, 4] = -0.2   # resources -> risk
    W[2, 2] = 0.9    # diagonal, never an edge
    W[0, 1] = 0.05   # below threshold
    return np.full(5, 0.95), W


class TestExtractCausalNetwork:
    """Test suite for extract_causal_network."""

    def test_edges_follow_column_to_row(self, coupled_weights):
        A, W = coupled_weights
        network = extract_causal_network(A, W, dt=2.0)
        edges = {(e.source, e.target): e for e in network.edges}
        assert ('node_0', 'node_1') in edges
        assert edges[('node_0', 'node_1')].weight == pytest.approx(0.5)
        assert edges[('node_0', 'node_1')].lag == 2.0
        assert ('node_1', 'node_0') not in edges
        assert len(network.edges) == 3

    def test_density(self, coupled_weights):
        A, W = coupled_weights
        network = extract_causal_network(A, W)
        assert network.density == pytest.approx(3 / 20)

    def test_feedback_loops(self, coupled_weights):
        A, W = coupled_weights
        network = extract_causal_network(A, W)
        assert network.feedback_loops == [('risk', 'resources')]

    def test_nodes(self, coupled_weights):
        A, W = coupled_weights
        network = extract_causal_network(A, W, current_values=np.arange(5, dtype=float))
        assert [n.label for n in network.nodes] == ['valence', 'arousal', 'dominance', 'risk', 'resources']
        assert network.nodes[0].self_weight == pytest.approx(0.95)
        assert network.nodes[3].value == 3.0
        assert network.central_node == 'dominance'

    def test_significance_capped(self):
        assert edge_significance(0.5, 5) == 1.0
        assert edge_significance(0.1, 5) == pytest.approx(0.5)

    def test_centrality(self, coupled_weights):
        _, W = coupled_weights
        assert node_centrality(W, 0) == pytest.approx((0.05 + 0.5) / 10)

    def test_no_loops_without_reciprocity(self):
        W = np.zeros((3, 3))
        W[1, 0] = 0.5
        assert feedback_loops(W) == []

    def test_to_networkx_and_dict(self, coupled_weights):
        A, W = coupled_weights
        network = extract_causal_network(A, W)
        graph = network.to_networkx()
        assert graph.number_of_nodes() == 5
        assert graph.has_edge('valence', 'arousal')
        assert graph['risk']['resources']['weight'] == pytest.approx(-0.3)

        data = network.to_dict()
        assert len(data['edges']) == 3
        assert data['metrics']['central_node'] == 'dominance'
        assert isinstance(network, CausalNetwork)
