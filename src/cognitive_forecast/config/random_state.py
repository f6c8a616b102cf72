"""Global random seed management for reproducible forecasting runs."""

import random
import numpy as np
from typing import Optional, Dict, Any
import os
import hashlib

SEED_ENV_VAR = 'COGNITIVE_FORECAST_SEED'

# Global random state storage
_GLOBAL_SEED: Optional[int] = None
_RNG_STATE: Optional[Dict[str, Any]] = None
_SEED_SEQUENCE: Optional[np.random.SeedSequence] = None


def set_global_seed(seed: int) -> None:
    """Set global random seed for all random number generators.

    Seeds Python's ``random`` module, the legacy NumPy global state and the
    seed sequence from which engine generators are spawned.

    Parameters
    ----------
    seed : int
        Random seed value for reproducibility

    Examples
    --------
    >>> set_global_seed(42)
    >>> rng = get_rng()  # reproducible across runs
    """
    global _GLOBAL_SEED, _RNG_STATE, _SEED_SEQUENCE

    _GLOBAL_SEED = seed

    random.seed(seed)
    np.random.seed(seed)
    _SEED_SEQUENCE = np.random.SeedSequence(seed)

    _RNG_STATE = {
        'seed': seed,
        'python_state': random.getstate(),
        'numpy_state': np.random.get_state()
    }


def get_global_seed() -> Optional[int]:
    """Get the current global random seed.

    Returns
    -------
    Optional[int]
        Current global seed, or None if not set
    """
    return _GLOBAL_SEED


def get_random_state() -> Optional[Dict[str, Any]]:
    """Get current random number generator states.

    Returns
    -------
    Optional[Dict[str, Any]]
        Dictionary containing RNG states, or None if not initialized
    """
    return _RNG_STATE


def get_rng(seed: Optional[int] = None) -> np.random.Generator:
    """Return an independent NumPy generator.

    Parameters
    ----------
    seed : Optional[int]
        Explicit seed. When omitted a child of the global seed sequence is
        spawned, so consecutive engines draw different but reproducible streams.

    Returns
    -------
    np.random.Generator
    """
    if seed is not None:
        return np.random.default_rng(seed)

    if _SEED_SEQUENCE is None:
        ensure_reproducibility()
    child = _SEED_SEQUENCE.spawn(1)[0]
    return np.random.default_rng(child)


def create_deterministic_seed(base_string: str) -> int:
    """Create a deterministic seed from a string.

    Useful for creating reproducible seeds from participant ids,
    experiment names or configuration hashes.

    Parameters
    ----------
    base_string : str
        String to hash for seed generation

    Returns
    -------
    int
        Deterministic seed value
    """
    hash_hex = hashlib.sha256(base_string.encode()).hexdigest()

    # Convert first 8 hex characters to integer
    seed = int(hash_hex[:8], 16)

    return seed % (2**31 - 1)


def reset_random_state() -> None:
    """Reset all random number generators to their initial states.

    Only works if set_global_seed() was called previously.
    """
    global _SEED_SEQUENCE

    if _RNG_STATE is None:
        raise RuntimeError("Random state not initialized. Call set_global_seed() first.")

    random.setstate(_RNG_STATE['python_state'])
    np.random.set_state(_RNG_STATE['numpy_state'])
    _SEED_SEQUENCE = np.random.SeedSequence(_RNG_STATE['seed'])


def get_environment_seed() -> int:
    """Get seed from environment variable if available.

    Checks for the COGNITIVE_FORECAST_SEED environment variable.

    Returns
    -------
    int
        Seed from environment, or a default value if not set
    """
    env_seed = os.environ.get(SEED_ENV_VAR)

    if env_seed is not None:
        try:
            return int(env_seed)
        except ValueError:
            # Non-integer values are hashed into a seed
            return create_deterministic_seed(env_seed)

    return 42


def ensure_reproducibility() -> int:
    """Ensure reproducible random state is set.

    Sets global seed if not already set, using environment variable
    or default value.

    Returns
    -------
    int
        The seed that was set
    """
    if _GLOBAL_SEED is None:
        seed = get_environment_seed()
        set_global_seed(seed)
        return seed
    return _GLOBAL_SEED


# Seed on import unless the environment variable is explicitly empty
if os.environ.get(SEED_ENV_VAR) != '':
    ensure_reproducibility()
