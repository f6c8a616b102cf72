"""
Data tests for Cognitive Forecast.

Tests for EMA datasets, CSV and weight persistence, preprocessing and
synthetic data generation.
"""
