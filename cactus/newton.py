"""Equality-constrained Newton step.

Solves the KKT system

    [[K, A^T], [A, 0]] [v; w] = [-grad; -(A p - b)]

for the search direction ``v``.  The primary path factors ``K = R^T R`` and
works in the whitened coordinates ``R v`` where, with only two constraint
rows, the projection onto the constraint null space is a compact SVD of
``A R^{-1}``.  When the Cholesky factorization fails the full augmented
system is solved instead.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
from scipy.linalg import LinAlgError, cholesky, solve, solve_triangular, svd

logger = logging.getLogger(__name__)


@dataclass
class NewtonStep:
    direction: np.ndarray
    decrement: float
    method: str  # "cholesky" or "dense"


def regularized_hessian(H: np.ndarray, G: np.ndarray, eta: np.ndarray, grad: np.ndarray,
                        t: float, pd_shift: float = 1e-5) -> np.ndarray:
    """Hessian of the soft-max objective, nudged to be positive definite.

    The exact Hessian is ``H + t (G diag(eta) G^T - grad grad^T)`` with
    ``grad = G eta``; the rank-one term is scaled by ``1 - pd_shift``.
    """
    return H + (G * (t * eta)) @ G.T - ((1.0 - pd_shift) * t) * np.outer(grad, grad)


def kkt_direction_cholesky(K: np.ndarray, grad: np.ndarray, A: np.ndarray, rpri: np.ndarray) -> np.ndarray:
    """Newton direction through ``K = R^T R``; raises ``LinAlgError`` if ``K`` is not PD."""
    R = cholesky(K, lower=False)
    g_t = solve_triangular(R, grad, trans="T")
    AR = solve_triangular(R, A.T, trans="T").T
    U, s, Vt = svd(AR, full_matrices=False)
    V = Vt.T
    v_t = -g_t - V @ ((U.T @ rpri) / s) + V @ (V.T @ g_t)
    return solve_triangular(R, v_t)


def kkt_direction_dense(K: np.ndarray, grad: np.ndarray, A: np.ndarray, rpri: np.ndarray) -> np.ndarray:
    """Newton direction from the full symmetric (indefinite) augmented system."""
    l, m = K.shape[0], A.shape[0]
    kkt = np.block([[K, A.T], [A, np.zeros((m, m))]])
    rhs = -np.concatenate([grad, rpri])
    return solve(kkt, rhs, assume_a="sym")[:l]


def newton_direction(K: np.ndarray, grad: np.ndarray, A: np.ndarray, rpri: np.ndarray) -> NewtonStep:
    """Constrained Newton direction and decrement ``-grad^T v / 2``.

    The decrement estimates the remaining gap of the smoothed problem at the
    current temperature.
    """
    try:
        v = kkt_direction_cholesky(K, grad, A, rpri)
        method = "cholesky"
    except LinAlgError:
        logger.debug("Cholesky failed, solving the augmented KKT system")
        v = kkt_direction_dense(K, grad, A, rpri)
        method = "dense"
    return NewtonStep(direction=v, decrement=float(-grad @ v / 2.0), method=method)


def kkt_residual(K: np.ndarray, grad: np.ndarray, A: np.ndarray, rpri: np.ndarray, v: np.ndarray) -> float:
    """Smallest KKT residual achievable by ``v`` (multipliers fitted by least squares).

    Returns ``max(|K v + grad + A^T w|_inf, |A v + rpri|_inf)``.
    """
    r1 = K @ v + grad
    w = np.linalg.lstsq(A.T, -r1, rcond=None)[0]
    return float(max(np.max(np.abs(r1 + A.T @ w)), np.max(np.abs(A @ v + rpri))))
