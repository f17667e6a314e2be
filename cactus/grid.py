"""Quantization grid, cost row and normalization row.

The cost constraint ``E|X|^cexp <= C`` is always tight at the optimum, so it
is handled as the equality ``A[0] @ p = C`` next to the normalization
``A[1] @ p = 1``.
"""

from __future__ import annotations

import numpy as np
from scipy.special import gamma, gammaincc

from .config import ConfigurationError, CostMode, SolverConfig
from .core import CostModel, tail_weights


def make_grid(n: int, xmax: float):
    """Return ``(x, N, xmax)`` with ``xmax`` rounded up to a multiple of ``1/n``."""
    N = int(np.ceil(n * xmax))
    return np.arange(-N, N + 1) / n, N, N / n


def boundary_tail_cost(n: int, N: int, cexp: float, r: float) -> float:
    """Effective cost of a boundary bin including its geometric tail.

    The tail sum ``sum_j r^j ((N+j)/n)^cexp`` has no closed form, so it is
    bounded above by an integral, which is an upper incomplete gamma
    function.  The result over-estimates the true cost; the cost constraint
    therefore still certifies the bound.
    """
    a = cexp + 1.0
    lam = -np.log(r)
    return float(n * r ** (-N - 0.5) * (n * lam) ** (-a) * gamma(a) * gammaincc(a, lam * (N - 0.5)))


def exact_cost(x: np.ndarray, n: int, xmax: float, cexp: float, r: float) -> np.ndarray:
    """Average of ``|x|^cexp`` over every bin, tails folded into the end bins."""
    h = 0.5 / n
    ax = np.abs(x)
    c = np.zeros_like(x)
    inner = (ax > 0) & (ax < xmax - 0.25 / n)
    c[inner] = ((ax[inner] + h) ** (cexp + 1) - (ax[inner] - h) ** (cexp + 1)) * (n / (cexp + 1))
    c[ax == 0] = h ** cexp / (1 + cexp)
    N = (x.size - 1) // 2
    c[0] = c[-1] = boundary_tail_cost(n, N, cexp, r)
    return c


def bin_floor_cost(x: np.ndarray, n: int, cexp: float) -> np.ndarray:
    """Smallest value of ``|x|^cexp`` inside every bin."""
    return np.maximum(0.0, np.abs(x) - 0.5 / n) ** cexp


def build_cost_model(config: SolverConfig) -> CostModel:
    """Build the grid and the constraint system ``A @ p = b``."""
    n, r, cexp = config.n, config.r, config.cexp
    x, N, xmax = make_grid(n, config.xmax)
    if N < n:
        raise ConfigurationError(
            f"grid must extend at least one unit past the origin: n*xmax={n * config.xmax:g} < n={n}"
        )

    if config.mode is CostMode.EXACT:
        c = exact_cost(x, n, xmax, cexp, r)
        weights = tail_weights(x.size, r)
    else:
        c = bin_floor_cost(x, n, cexp)
        weights = np.ones(x.size)

    A = np.vstack([c, weights])
    b = np.array([config.C, 1.0])
    return CostModel(x=x, A=A, b=b, n=n, N=N, xmax=xmax, r=r, cexp=cexp, mode=config.mode)


def initial_guess(model: CostModel, C: float) -> np.ndarray:
    """Heavy-tailed starting point with roughly the target cost.

    Only the normalization row is satisfied exactly; the solver takes care
    of the cost row.
    """
    q = C ** (-1.0 - 2.0 / model.cexp)
    p = 1.0 / (1.0 + q * np.abs(model.x) ** (model.cexp + 2.0))
    return p / (model.weights @ p)
