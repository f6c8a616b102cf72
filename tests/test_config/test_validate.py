"""Tests for environment validation functionality.

Tests the environment validation system that checks dependencies and
versions for Cognitive Forecast.
"""

import pytest
from unittest.mock import patch

from cognitive_forecast.config.validate import (
    check_environment,
    get_dependency_versions,
    format_environment_info,
)


class TestEnvironmentChecking:
    """Test suite for environment validation functions."""

    def test_check_environment_success(self):
        """Should not raise with the installed dependencies."""
        check_environment()
        check_environment(min_numpy="1.20", min_scipy="1.7")

    def test_check_environment_numpy_too_old(self):
        with pytest.raises(RuntimeError, match="NumPy"):
            check_environment(min_numpy="999.0")

    def test_check_environment_scipy_too_old(self):
        with pytest.raises(RuntimeError, match="SciPy"):
            check_environment(min_scipy="999.0")

    def test_missing_optional_package_warns(self):
        with patch('cognitive_forecast.config.validate.OPTIONAL_PACKAGES', ['not_a_real_package_xyz']):
            with pytest.warns(UserWarning, match="not_a_real_package_xyz"):
                check_environment()


class TestDependencyVersions:
    """Test suite for version reporting."""

    def test_get_dependency_versions(self):
        versions = get_dependency_versions()
        assert 'python' in versions
        assert versions['numpy'] != 'not installed'
        assert versions['scipy'] != 'not installed'
        assert 'tomli_w' in versions

    def test_format_environment_info(self):
        text = format_environment_info()
        assert text.startswith("Cognitive Forecast - Environment Information")
        assert "numpy" in text
        assert "platform" in text
