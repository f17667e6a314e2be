"""Persisting a converged distribution.

Records are MATLAB ``.mat`` files holding ``p``, ``x``, ``n``, ``r`` and
``xmax`` (plus ``cexp``, ``C``, ``weights`` and ``cost`` when known), so
they can be reused from either environment.
"""

from __future__ import annotations

import csv
import os
from typing import List, Optional

import numpy as np
from scipy.io import loadmat, savemat

from .core import CactusDistribution


def default_filename(cexp: float, C: float, sensitivity: float = 1.0) -> str:
    """Record name derived from the problem parameters, e.g. ``cactus_s1.0_L2=0.25.mat``."""
    return f"cactus_s{sensitivity:.1f}_L{cexp:g}={C:.2f}.mat"


def save_distribution(dist: CactusDistribution, path: Optional[str] = None,
                      sensitivity: float = 1.0) -> str:
    """Write ``dist`` to a ``.mat`` record and return the path written."""
    if path is None:
        if dist.C is None:
            raise ValueError("a path is required when the distribution has no cost bound C")
        path = default_filename(dist.cexp, dist.C, sensitivity)
    if not path.endswith(".mat"):
        path += ".mat"

    record = {
        "p": dist.p[:, None],
        "x": dist.x[:, None],
        "n": float(dist.n),
        "r": dist.r,
        "xmax": dist.xmax,
        "cexp": dist.cexp,
        "weights": dist.weights[:, None],
    }
    if dist.C is not None:
        record["C"] = float(dist.C)
    if dist.cost is not None:
        record["cost"] = dist.cost[:, None]
    savemat(path, record)
    return path


def _scalar(data: dict, key: str, default=None):
    if key not in data:
        return default
    return float(np.asarray(data[key]).ravel()[0])


def load_distribution(path: str) -> CactusDistribution:
    """Read a record written by :func:`save_distribution`.

    Records without ``weights`` get the geometric tail factors rebuilt from
    ``r``.
    """
    data = loadmat(path)
    for key in ("p", "x", "n", "r"):
        if key not in data:
            raise ValueError(f"'{path}' is missing '{key}'")

    weights = np.ravel(data["weights"]) if "weights" in data else None
    cost = np.ravel(data["cost"]) if "cost" in data else None
    return CactusDistribution(
        np.ravel(data["x"]),
        np.ravel(data["p"]),
        weights=weights,
        n=int(round(_scalar(data, "n"))),
        r=_scalar(data, "r"),
        xmax=_scalar(data, "xmax"),
        cexp=_scalar(data, "cexp", 2.0),
        C=_scalar(data, "C"),
        cost=cost,
    )


def export_csv(dist: CactusDistribution, prefix: str) -> List[str]:
    """Write the CDF, ``p`` and ``x`` as one-column CSV files."""
    paths = []
    for suffix, values in (("cdf", dist.cdf()), ("p", dist.p), ("x", dist.x)):
        path = f"{prefix}_{suffix}.csv"
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(path, "w", newline="") as f:
            writer = csv.writer(f)
            for value in values:
                writer.writerow([repr(float(value))])
        paths.append(path)
    return paths
