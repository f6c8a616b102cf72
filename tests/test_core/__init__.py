"""
Core tests for Cognitive Forecast.

Tests for the forecasting core:
- Linear-algebra primitives and the observation window
- PLRNN and KalmanFormer engines
- Early-warning detection and causal networks
- Truncated-BPTT training
"""
