"""Shift objectives, their soft-max aggregate, gradients and Hessian.

For a shift of ``k`` bins (``k = 1..n``, i.e. a translation of ``k/n``) the
objective is a symmetrised KL-style divergence between ``p`` and its shifted
copy, ``sum (p_i - p_{i+k}) log(p_i / p_{i+k})``.

In :attr:`CostMode.EXACT` the two end bins stand for geometric tails: the
mass beyond the grid is ``p_0 r^j`` on the left and ``p_{l-1} r^j`` on the
right.  Interior entries that are shifted past the grid edge are compared
against those synthetic tail values, and the tail-to-tail divergence has a
closed form.  In :attr:`CostMode.BIN_FLOOR` there is no tail model.

All functions are pure: they take ``p`` and the problem constants and
return new arrays.
"""

from __future__ import annotations

from typing import Tuple

import numpy as np

from .config import CostMode


def _kl_terms(a: np.ndarray, b: np.ndarray) -> float:
    return float(np.sum((a - b) * np.log(a / b)))


def _tail_factor(k: int, r: float) -> float:
    """Tail-to-tail divergence per unit of boundary mass for shift ``k``."""
    return k * (1.0 - r ** k) / (1.0 - r) * (-np.log(r))


def shift_objectives(p: np.ndarray, n: int, r: float, mode: CostMode) -> np.ndarray:
    """Objective value for every shift ``1..n`` (entry ``k-1`` is shift ``k``)."""
    l = p.size
    allobj = np.zeros(n)
    if mode is CostMode.EXACT:
        for k in range(1, n + 1):
            interior = _kl_terms(p[1:l - k - 1], p[1 + k:l - 1])
            q_plus = p[-1] * r ** np.arange(k)
            q_minus = p[0] * r ** np.arange(k - 1, -1, -1)
            tails = _kl_terms(p[l - k - 1:l - 1], q_plus) + _kl_terms(p[1:1 + k], q_minus)
            allobj[k - 1] = interior + tails + (p[0] + p[-1]) * _tail_factor(k, r)
    else:
        for k in range(1, n + 1):
            allobj[k - 1] = _kl_terms(p[k:], p[:l - k])
    return allobj


def smooth_max(allobj: np.ndarray, t: float) -> Tuple[float, np.ndarray, float, int]:
    """Temperature-``t`` log-sum-exp of the shift objectives.

    Returns:
        ``(fval, eta, primobj, index)`` where ``primobj = max(allobj)``,
        ``fval = primobj + log(sum exp(t (allobj - primobj))) / t`` and
        ``eta`` are the soft-max weights (non-negative, summing to one).
        ``index`` is the 0-based position of the maximum.

    ``primobj <= fval <= primobj + log(n) / t``, so the smoothed problem
    approaches the minimax problem as ``t`` grows.
    """
    index = int(np.argmax(allobj))
    primobj = float(allobj[index])
    w = np.exp(t * (allobj - primobj))
    total = w.sum()
    return float(np.log(total) / t + primobj), w / total, primobj, index


def shift_gradient(p: np.ndarray, k: int, r: float, mode: CostMode) -> np.ndarray:
    """Gradient of the shift-``k`` objective with respect to ``p``."""
    l = p.size
    if mode is CostMode.EXACT:
        mid = p[1:l - 1]
        # ratios to the forward and backward partners, tails past the grid edge
        rat1 = np.concatenate([p[1 + k:], p[-1] * r ** np.arange(1, k)]) / mid
        rat2 = np.concatenate([p[0] * r ** np.arange(k - 1, 0, -1), p[:l - k - 1]]) / mid

        grad_mid = (-np.log(rat1) + 1.0 - rat1) + (-np.log(rat2) + 1.0 - rat2)

        tf = _tail_factor(k, r)
        end1 = rat1[-k:]
        end2 = rat2[:k]
        grad_right = np.sum(r ** np.arange(k) * (np.log(end1) + 1.0 - 1.0 / end1)) + tf
        grad_left = np.sum(r ** np.arange(k - 1, -1, -1) * (np.log(end2) + 1.0 - 1.0 / end2)) + tf
        return np.concatenate([[grad_left], grad_mid, [grad_right]])

    rat = p[k:] / p[:l - k]
    logr = np.log(rat)
    grad = np.zeros(l)
    grad[k:] += logr + 1.0 - 1.0 / rat
    grad[:l - k] += -logr + 1.0 - rat
    return grad


def shift_gradients(p: np.ndarray, n: int, r: float, mode: CostMode) -> np.ndarray:
    """Matrix whose column ``k-1`` is :func:`shift_gradient` for shift ``k``."""
    G = np.empty((p.size, n))
    for k in range(1, n + 1):
        G[:, k - 1] = shift_gradient(p, k, r, mode)
    return G


def hessian_bands(p: np.ndarray, n: int, eta: np.ndarray, r: float, mode: CostMode) -> np.ndarray:
    """Upper banded storage of ``sum_k eta_k * Hess(objective_k)``.

    The Hessian has half-bandwidth ``n``.  The result ``ab`` has shape
    ``(n + 1, l)`` in the layout used by :func:`scipy.linalg.solveh_banded`:
    ``ab[n + i - j, j] == H[i, j]`` for ``i <= j``.  Row ``n`` holds the
    diagonal and row ``n - k`` the ``k``-th superdiagonal.
    """
    l = p.size
    ab = np.zeros((n + 1, l))
    d = ab[n]

    if mode is CostMode.EXACT:
        mid = p[1:l - 1]
        for k in range(1, n + 1):
            e = eta[k - 1]
            d[0] += e * (np.sum(r ** np.arange(k)) / p[0] + np.sum(p[1:1 + k]) / p[0] ** 2)
            d[-1] += e * (np.sum(r ** np.arange(k)) / p[-1] + np.sum(p[l - k - 1:l - 1]) / p[-1] ** 2)
            fwd = np.concatenate([p[1 + k:], p[-1] * r ** np.arange(1, k)])
            bwd = np.concatenate([p[0] * r ** np.arange(k - 1, 0, -1), p[:l - k - 1]])
            d[1:l - 1] += e * (2.0 / mid + (fwd + bwd) / mid ** 2)

            # interior pairs (i, i + k), both strictly inside the grid
            ab[n - k, 1 + k:l - 1] = e * (-1.0 / p[1:l - 1 - k] - 1.0 / p[1 + k:l - 1])

        # the end bins couple with the first n interior bins through every
        # shift whose tail reaches them
        for k in range(1, n + 1):
            decay = r ** np.arange(n - k + 1)
            ab[n - k, k] = np.sum(eta[k - 1:] * (-decay / p[k] - 1.0 / p[0]))
            ab[n - k, l - 1] = np.sum(eta[k - 1:] * (-decay / p[l - 1 - k] - 1.0 / p[-1]))
    else:
        for k in range(1, n + 1):
            e = eta[k - 1]
            lo, hi = p[:l - k], p[k:]
            d[:l - k] += e * (1.0 / lo + hi / lo ** 2)
            d[k:] += e * (1.0 / hi + lo / hi ** 2)
            ab[n - k, k:] = e * (-1.0 / lo - 1.0 / hi)
    return ab


def banded_to_dense(ab: np.ndarray) -> np.ndarray:
    """Expand upper banded storage into the full symmetric matrix."""
    n = ab.shape[0] - 1
    H = np.diag(ab[n])
    for k in range(1, n + 1):
        off = np.diag(ab[n - k, k:], k)
        H += off + off.T
    return H


def hessian(p: np.ndarray, n: int, eta: np.ndarray, r: float, mode: CostMode) -> np.ndarray:
    return banded_to_dense(hessian_bands(p, n, eta, r, mode))
