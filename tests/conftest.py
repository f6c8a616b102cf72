"""
Pytest configuration and shared fixtures for the Cognitive Forecast test suite.
"""

import pytest
import numpy as np
import sys
from datetime import datetime, timedelta
from pathlib import Path

# Add src to path for testing
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from cognitive_forecast.config import set_global_seed, PLRNNConfig, KalmanFormerConfig, TrainingConfig


@pytest.fixture(scope="session")
def global_test_seed():
    """Set global random seed for all tests to ensure reproducibility."""
    seed = 42
    set_global_seed(seed)
    np.random.seed(seed)
    return seed


@pytest.fixture
def start_time():
    """Fixed reference timestamp (a Monday morning)."""
    return datetime(2024, 1, 1, 8, 0, 0)


@pytest.fixture
def dense_config():
    """Small dense PLRNN configuration for fast tests."""
    return PLRNNConfig(latent_dim=5, hidden_units=8, connectivity="dense")


@pytest.fixture
def dendritic_config():
    """Small dendritic PLRNN configuration."""
    return PLRNNConfig(latent_dim=5, hidden_units=8, connectivity="dendritic", dendritic_bases=4)


@pytest.fixture
def small_kalmanformer_config():
    """Small KalmanFormer configuration for fast tests."""
    return KalmanFormerConfig(embed_dim=16, num_heads=2, num_layers=1, context_window=8)


@pytest.fixture
def fast_training_config():
    """Training configuration with short windows and few epochs."""
    return TrainingConfig(
        bptt_window=6,
        bptt_overlap=2,
        epochs=3,
        batch_size=2,
        early_stopping_patience=5,
        horizons=(1, 3),
        horizon_weights=(1.0, 0.5),
        lr_schedule="constant",
        log_every_epochs=1,
    )


@pytest.fixture
def observation_sequence(start_time):
    """Twenty smooth five-dimensional observations one hour apart."""
    rng = np.random.default_rng(42)
    t = np.arange(20)
    base = np.stack([np.sin(t / 3.0 + k) * 0.5 for k in range(5)], axis=1)
    values = base + rng.normal(0.0, 0.05, size=base.shape)
    timestamps = [start_time + timedelta(hours=int(i)) for i in t]
    return values, timestamps


@pytest.fixture
def synthetic_dataset():
    """Small synthetic EMA dataset."""
    from cognitive_forecast.data import generate_ema_dataset
    return generate_ema_dataset(n_participants=4, n_observations=30, seed=7)


@pytest.fixture
def critical_series():
    """Series whose first dimension approaches a critical transition."""
    from cognitive_forecast.data import generate_critical_transition_series
    series, _ = generate_critical_transition_series(n_steps=200, ar_start=0.1, ar_end=0.97,
                                                    noise_std=0.1, seed=3)
    return series


# Pytest configuration
def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "visual: marks tests that generate visual output"
    )


def pytest_collection_modifyitems(config, items):
    """Automatically mark integration tests."""
    for item in items:
        if "integration" in item.nodeid or "end_to_end" in item.nodeid:
            item.add_marker(pytest.mark.integration)
