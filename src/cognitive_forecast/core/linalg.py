"""Dense linear-algebra kernel and activation primitives.

All functions are pure: they never modify their arguments. Matrices are
row-major ``np.ndarray`` objects of shape (rows, cols).
"""

import logging
import warnings
from typing import Optional

import numpy as np
from scipy import special

logger = logging.getLogger(__name__)

PIVOT_TOLERANCE = 1e-10
POWER_ITERATIONS = 20
LAYER_NORM_EPS = 1e-5


def mat_vec(A: np.ndarray, v: np.ndarray) -> np.ndarray:
    """Matrix-vector product ``A @ v``."""
    return np.asarray(A, dtype=float) @ np.asarray(v, dtype=float)


def mat_mul(A: np.ndarray, B: np.ndarray) -> np.ndarray:
    """Matrix product ``A @ B``."""
    return np.asarray(A, dtype=float) @ np.asarray(B, dtype=float)


def transpose(A: np.ndarray) -> np.ndarray:
    """Return a transposed copy of ``A``."""
    return np.array(A, dtype=float).T.copy()


def mat_add(A: np.ndarray, B: np.ndarray) -> np.ndarray:
    return np.asarray(A, dtype=float) + np.asarray(B, dtype=float)


def mat_sub(A: np.ndarray, B: np.ndarray) -> np.ndarray:
    return np.asarray(A, dtype=float) - np.asarray(B, dtype=float)


def mat_inverse(A: np.ndarray) -> np.ndarray:
    """Invert a square matrix by Gauss-Jordan elimination with row pivoting.

    Elimination runs on the augmented matrix ``[A | I]``. If a pivot is
    numerically zero the matrix is treated as singular and the identity is
    returned instead of raising, so callers can proceed with an unscaled
    update.

    Parameters
    ----------
    A : np.ndarray, shape (n, n)
        Matrix to invert

    Returns
    -------
    np.ndarray, shape (n, n)
        ``A^{-1}``, or ``I`` when ``A`` is singular

    Raises
    ------
    ValueError
        If ``A`` is not square
    """
    A = np.asarray(A, dtype=float)
    if A.ndim != 2 or A.shape[0] != A.shape[1]:
        raise ValueError(f"Matrix must be square, got shape {A.shape}")

    n = A.shape[0]
    augmented = np.hstack([A, np.eye(n)])

    for i in range(n):
        max_row = i + int(np.argmax(np.abs(augmented[i:, i])))
        if max_row != i:
            augmented[[i, max_row]] = augmented[[max_row, i]]

        if abs(augmented[i, i]) < PIVOT_TOLERANCE:
            logger.debug("Singular matrix in inversion at pivot %d, using identity", i)
            warnings.warn("Singular matrix encountered in inversion, falling back to identity",
                          RuntimeWarning)
            return np.eye(n)

        augmented[i] /= augmented[i, i]
        factors = augmented[:, i].copy()
        factors[i] = 0.0
        augmented -= np.outer(factors, augmented[i])

    return augmented[:, n:]


def approximate_max_eigenvalue(W: np.ndarray, iterations: int = POWER_ITERATIONS) -> float:
    """Estimate the dominant eigenvalue of ``W`` by power iteration.

    Returns 0.0 when the iterate collapses to the zero vector.
    """
    W = np.asarray(W, dtype=float)
    n = W.shape[0]
    if n == 0:
        return 0.0

    v = np.full(n, 1.0 / np.sqrt(n))
    for _ in range(iterations):
        Av = W @ v
        norm = np.linalg.norm(Av)
        if norm < PIVOT_TOLERANCE:
            return 0.0
        v = Av / norm

    return float(v @ (W @ v))


def relu(x: np.ndarray) -> np.ndarray:
    return np.maximum(np.asarray(x, dtype=float), 0.0)


def relu_derivative(x: np.ndarray) -> np.ndarray:
    return (np.asarray(x, dtype=float) > 0).astype(float)


def sigmoid(x):
    """Logistic function, stable for large magnitudes."""
    return special.expit(x)


def softmax(scores: np.ndarray, temperature: float = 1.0, axis: int = -1) -> np.ndarray:
    """Row-wise softmax with max subtraction.

    Parameters
    ----------
    scores : np.ndarray
        Raw scores
    temperature : float, default=1.0
        Scores are divided by the temperature before normalisation
    axis : int, default=-1
        Axis along which probabilities sum to one

    Returns
    -------
    np.ndarray
        Probabilities with the same shape as ``scores``
    """
    scaled = np.asarray(scores, dtype=float) / temperature
    scaled = scaled - np.max(scaled, axis=axis, keepdims=True)
    return special.softmax(scaled, axis=axis)


def layer_norm(x: np.ndarray, gamma: np.ndarray, beta: np.ndarray,
               eps: float = LAYER_NORM_EPS) -> np.ndarray:
    """Normalise the last axis to zero mean, unit variance, then scale and shift."""
    x = np.asarray(x, dtype=float)
    mean = x.mean(axis=-1, keepdims=True)
    var = x.var(axis=-1, keepdims=True)
    return (x - mean) / np.sqrt(var + eps) * gamma + beta


def clip(values, limit: float):
    """Clip values to ``[-limit, limit]``."""
    return np.clip(values, -limit, limit)


def identity(n: int) -> np.ndarray:
    return np.eye(n)


def diagonal(n: int, value: float) -> np.ndarray:
    return np.eye(n) * value


def init_matrix(rows: int, cols: int, kind: str = "uniform",
                rng: Optional[np.random.Generator] = None,
                sparsity: float = 0.8) -> np.ndarray:
    """Initialise a weight matrix.

    Parameters
    ----------
    rows, cols : int
        Matrix shape
    kind : str
        ``identity`` (rectangular identity), ``sparse`` (Xavier-uniform with a
        ``sparsity`` fraction of exact zeros), ``uniform`` (Xavier-uniform) or
        ``normal`` (Gaussian with Xavier standard deviation)
    rng : Optional[np.random.Generator]
        Source of randomness
    sparsity : float, default=0.8
        Fraction of zero entries for ``sparse``

    Returns
    -------
    np.ndarray, shape (rows, cols)
    """
    if rng is None:
        rng = np.random.default_rng()

    scale = np.sqrt(2.0 / (rows + cols))

    if kind == "identity":
        return np.eye(rows, cols)
    if kind == "sparse":
        values = (rng.random((rows, cols)) - 0.5) * 2 * scale
        mask = rng.random((rows, cols)) < (1.0 - sparsity)
        return np.where(mask, values, 0.0)
    if kind == "uniform":
        return (rng.random((rows, cols)) - 0.5) * 2 * scale
    if kind == "normal":
        return rng.normal(0.0, scale, size=(rows, cols))

    raise ValueError(f"Unknown initialisation '{kind}'")


def sinusoidal_table(length: int, dim: int) -> np.ndarray:
    """Fixed sinusoidal positional table of shape (length, dim)."""
    positions = np.arange(length)[:, None]
    idx = np.arange(dim)[None, :]
    angles = positions / np.power(10000.0, (2 * (idx // 2)) / dim)
    return np.where(idx % 2 == 0, np.sin(angles), np.cos(angles))
