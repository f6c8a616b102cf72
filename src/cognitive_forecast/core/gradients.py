"""Hand-derived gradients for the piecewise-linear recurrent transition.

The transition is

    z' = A * z + W relu(z) + C relu(D z) + b_z
    x  = B z' + b_x

and the loss is the squared output error ``|target - x|^2``. Every function
below returns the gradient of that loss with respect to one tensor, so a
descent step is ``param -= lr * grad``. Errors are expressed as
``target - prediction``; the leading minus signs follow from that.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional

import numpy as np

from .linalg import relu, relu_derivative


def output_error(predicted: np.ndarray, target: np.ndarray) -> np.ndarray:
    """Observation-space error ``target - predicted``."""
    return np.asarray(target, dtype=float) - np.asarray(predicted, dtype=float)


def latent_error_from_output(B: np.ndarray, out_error: np.ndarray, exact: bool = False) -> np.ndarray:
    """Map an output error into latent space.

    With ``exact=False`` the error is multiplied by ``B`` itself, which equals
    the true ``B^T`` back-projection only for symmetric ``B`` (the identity at
    initialisation). ``exact=True`` uses ``B^T``.
    """
    return (B.T if exact else B) @ out_error


def grad_observation_matrix(out_error: np.ndarray, latent: np.ndarray) -> np.ndarray:
    """dL/dB = -err ⊗ z'."""
    return -np.outer(out_error, latent)


def grad_observation_bias(out_error: np.ndarray) -> np.ndarray:
    return -out_error


def grad_self_weights(latent_error: np.ndarray, z_prev: np.ndarray) -> np.ndarray:
    """dL/dA = -δ * z (elementwise, A is diagonal)."""
    return -latent_error * z_prev


def grad_recurrent_weights(latent_error: np.ndarray, z_prev: np.ndarray,
                           W: Optional[np.ndarray] = None, l1: float = 0.0) -> np.ndarray:
    """dL/dW = -δ ⊗ relu(z), plus the L1 subgradient ``l1 * sign(W)``."""
    grad = -np.outer(latent_error, relu(z_prev))
    if W is not None and l1:
        grad = grad + l1 * np.sign(W)
    return grad


def grad_latent_bias(latent_error: np.ndarray) -> np.ndarray:
    return -latent_error


def grad_dendritic_coupling(latent_error: np.ndarray, D: np.ndarray, z_prev: np.ndarray) -> np.ndarray:
    """dL/dC = -δ ⊗ relu(D z)."""
    return -np.outer(latent_error, relu(D @ z_prev))


def grad_dendritic_bases(latent_error: np.ndarray, C: np.ndarray, D: np.ndarray,
                         z_prev: np.ndarray) -> np.ndarray:
    """dL/dD = -((C^T δ) * relu'(D z)) ⊗ z."""
    gate = relu_derivative(D @ z_prev)
    return -np.outer((C.T @ latent_error) * gate, z_prev)


def propagate_latent_error(latent_error: np.ndarray, A: np.ndarray, W: np.ndarray,
                           z: np.ndarray, C: Optional[np.ndarray] = None,
                           D: Optional[np.ndarray] = None) -> np.ndarray:
    """Carry a latent error one step back through the transition Jacobian.

    Returns ``J(z)^T δ`` where ``J(z) = diag(A) + W diag(relu'(z)) + C diag(relu'(Dz)) D``.
    """
    back = A * latent_error + (W.T @ latent_error) * relu_derivative(z)
    if C is not None and D is not None:
        back = back + D.T @ ((C.T @ latent_error) * relu_derivative(D @ z))
    return back


@dataclass
class StepGradients:
    """Gradients of one transition step plus the latent error that produced them."""
    dA: np.ndarray
    dW: np.ndarray
    dB: np.ndarray
    d_bias_latent: np.ndarray
    d_bias_observed: np.ndarray
    latent_error: np.ndarray
    dC: Optional[np.ndarray] = None
    d_dendritic: Optional[np.ndarray] = None

    def as_dict(self) -> Dict[str, np.ndarray]:
        """Parameter name -> gradient, skipping absent dendritic terms."""
        grads = {
            'A': self.dA,
            'W': self.dW,
            'B': self.dB,
            'bias_latent': self.d_bias_latent,
            'bias_observed': self.d_bias_observed,
        }
        if self.dC is not None:
            grads['C'] = self.dC
        if self.d_dendritic is not None:
            grads['dendritic_weights'] = self.d_dendritic
        return grads


@dataclass
class GradientAccumulator:
    """Running sum of step gradients over a BPTT window."""
    sums: Dict[str, np.ndarray] = field(default_factory=dict)
    num_samples: int = 0

    def add(self, step: StepGradients) -> None:
        for name, grad in step.as_dict().items():
            if name in self.sums:
                self.sums[name] = self.sums[name] + grad
            else:
                self.sums[name] = np.array(grad, dtype=float)
        self.num_samples += 1

    def normalized(self) -> Dict[str, np.ndarray]:
        """Mean gradient per parameter (sums unchanged for a single sample)."""
        if self.num_samples <= 1:
            return {name: grad.copy() for name, grad in self.sums.items()}
        scale = 1.0 / self.num_samples
        return {name: grad * scale for name, grad in self.sums.items()}


class AdamOptimizer:
    """Adam with per-parameter first and second moments.

    Parameters
    ----------
    beta1, beta2 : float
        Exponential decay rates of the moment estimates
    eps : float
        Denominator stabiliser
    """

    def __init__(self, beta1: float = 0.9, beta2: float = 0.999, eps: float = 1e-8):
        self.beta1 = beta1
        self.beta2 = beta2
        self.eps = eps
        self.m: Dict[str, np.ndarray] = {}
        self.v: Dict[str, np.ndarray] = {}
        self.t = 0

    def reset(self) -> None:
        self.m.clear()
        self.v.clear()
        self.t = 0

    def step(self, params: Dict[str, np.ndarray], grads: Dict[str, np.ndarray],
             learning_rate: float) -> None:
        """Update every array in ``params`` in place."""
        self.t += 1
        bias1 = 1.0 - self.beta1 ** self.t
        bias2 = 1.0 - self.beta2 ** self.t

        for name, grad in grads.items():
            param = params[name]
            if name not in self.m:
                self.m[name] = np.zeros_like(param)
                self.v[name] = np.zeros_like(param)
            self.m[name] = self.beta1 * self.m[name] + (1 - self.beta1) * grad
            self.v[name] = self.beta2 * self.v[name] + (1 - self.beta2) * grad ** 2
            m_hat = self.m[name] / bias1
            v_hat = self.v[name] / bias2
            param -= learning_rate * m_hat / (np.sqrt(v_hat) + self.eps)
