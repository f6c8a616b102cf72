"""Environment validation for Cognitive Forecast dependencies."""

import sys
import warnings
from typing import Dict
from importlib import import_module

from packaging import version

OPTIONAL_PACKAGES = ['pandas', 'matplotlib', 'seaborn', 'networkx', 'tqdm']


def check_environment(min_numpy: str = "1.25", min_scipy: str = "1.11") -> None:
    """Check that environment meets minimum dependency requirements.

    Parameters
    ----------
    min_numpy : str, default="1.25"
        Minimum required NumPy version
    min_scipy : str, default="1.11"
        Minimum required SciPy version

    Raises
    ------
    RuntimeError
        If any dependency requirements are not met
    """
    errors = []

    if sys.version_info < (3, 9):
        errors.append(f"Python 3.9+ required, found {sys.version_info.major}.{sys.version_info.minor}")

    try:
        import numpy as np
        if version.parse(np.__version__) < version.parse(min_numpy):
            errors.append(f"NumPy {min_numpy}+ required, found {np.__version__}")
    except ImportError:
        errors.append("NumPy not installed - required for array operations")

    try:
        import scipy
        if version.parse(scipy.__version__) < version.parse(min_scipy):
            errors.append(f"SciPy {min_scipy}+ required, found {scipy.__version__}")
    except ImportError:
        errors.append("SciPy not installed - required for special functions and distributions")

    optional_warnings = []
    for name in OPTIONAL_PACKAGES:
        try:
            import_module(name)
        except ImportError:
            optional_warnings.append(f"{name} not found - required for data loading, plots or progress bars")

    if errors:
        error_msg = "Environment validation failed:\n" + "\n".join(f"  - {err}" for err in errors)
        if optional_warnings:
            error_msg += "\n\nWarnings:\n" + "\n".join(f"  - {warn}" for warn in optional_warnings)
        error_msg += "\n\nTo install required dependencies:\n  pip install -e ."
        raise RuntimeError(error_msg)

    if optional_warnings:
        warning_msg = "Environment warnings:\n" + "\n".join(f"  - {warn}" for warn in optional_warnings)
        warnings.warn(warning_msg, UserWarning)


def get_dependency_versions() -> Dict[str, str]:
    """Get versions of all relevant dependencies.

    Returns
    -------
    dict
        Dictionary mapping package names to version strings
    """
    versions = {
        'python': f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"
    }

    for name in ['numpy', 'scipy'] + OPTIONAL_PACKAGES + ['packaging']:
        try:
            module = import_module(name)
            versions[name] = getattr(module, '__version__', 'unknown')
        except ImportError:
            versions[name] = 'not installed'

    try:
        import tomllib  # noqa: F401
        versions['tomllib'] = 'built-in (3.11+)'
    except ImportError:
        try:
            import tomli
            versions['tomli'] = getattr(tomli, '__version__', 'unknown')
        except ImportError:
            versions['tomli'] = 'not installed'

    try:
        import tomli_w
        versions['tomli_w'] = getattr(tomli_w, '__version__', 'unknown')
    except ImportError:
        versions['tomli_w'] = 'not installed'

    return versions


def format_environment_info() -> str:
    """Render dependency versions as a printable block."""
    versions = get_dependency_versions()
    lines = ["Cognitive Forecast - Environment Information", "=" * 44]
    for pkg, ver in versions.items():
        lines.append(f"  {pkg:12}: {ver}")
    lines.append(f"  {'platform':12}: {sys.platform}")
    return "\n".join(lines)
