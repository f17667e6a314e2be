"""
ソルバー設定

最適化問題の入力パラメータとソルバーの調整値をまとめて保持します。
全フィールドは名前付きで、既定値は構築時に確定します。
"""

from __future__ import annotations

import json
import math
import numbers
import os
from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, Dict, Mapping, Union


class ConfigurationError(ValueError):
    """設定値が不正な場合の例外"""


class CostMode(Enum):
    """Cost/objective model.

    ``EXACT`` integrates ``|x|^cexp`` over each bin and models geometric tails
    beyond the grid, so the optimum is an achievable bound.  ``BIN_FLOOR``
    charges each bin its smallest cost and ignores the tails, which gives a
    lower bound for the continuous problem.
    """

    EXACT = "exact"
    BIN_FLOOR = "bin-floor"

    @classmethod
    def parse(cls, value: Union["CostMode", str, int]) -> "CostMode":
        if isinstance(value, cls):
            return value
        if isinstance(value, bool):
            raise ConfigurationError(f"Unsupported mode: {value!r}")
        if isinstance(value, numbers.Integral):
            codes = {1: cls.EXACT, 2: cls.BIN_FLOOR}
            if value in codes:
                return codes[value]
            raise ConfigurationError(f"Unsupported mode: {value!r} (expected 1 or 2)")
        if isinstance(value, str):
            key = value.strip().lower().replace("_", "-")
            for member in cls:
                if member.value == key:
                    return member
        raise ConfigurationError(f"Unsupported mode: {value!r}")


def _positive(name: str, value: float):
    if not (isinstance(value, numbers.Real) and math.isfinite(value) and value > 0):
        raise ConfigurationError(f"{name} must be positive and finite, got {value!r}")


@dataclass
class SolverConfig:
    """Configuration of one cactus solve.

    Args:
        n: quantization level, bins have width ``1/n``
        xmax: half-range of the grid (rounded up to a whole number of bins)
        C: bound on the expected cost ``E|X|^cexp``
        cexp: cost exponent
        mode: :class:`CostMode`, its string value, or the integer code 1/2
        r: geometric fall-off ratio assumed beyond the grid
        tol: duality-gap stopping threshold
        verbose: 0 silent, 1 per-iteration lines, 2 also a live plot
    """

    n: int
    xmax: float
    C: float
    cexp: float = 2.0
    mode: CostMode = CostMode.EXACT
    r: float = 0.9
    tol: float = 1e-8
    verbose: int = 2

    # ソルバー内部の定数
    t0: float = 1.0
    t_growth: float = 1.25
    armijo: float = 0.1
    min_step: float = 1e-8
    pd_shift: float = 1e-5
    max_iter: int = 5000
    max_stalled: int = 50

    def __post_init__(self):
        if isinstance(self.n, bool) or not isinstance(self.n, numbers.Integral) or self.n <= 0:
            raise ConfigurationError(f"n must be a positive integer, got {self.n!r}")
        self.n = int(self.n)
        _positive("xmax", self.xmax)
        _positive("C", self.C)
        _positive("cexp", self.cexp)
        _positive("tol", self.tol)
        _positive("t0", self.t0)
        _positive("min_step", self.min_step)
        self.mode = CostMode.parse(self.mode)
        if not 0.0 < self.r < 1.0:
            raise ConfigurationError(f"r must lie in (0, 1), got {self.r!r}")
        if self.verbose not in (0, 1, 2):
            raise ConfigurationError(f"verbose must be 0, 1 or 2, got {self.verbose!r}")
        if not self.t_growth > 1.0:
            raise ConfigurationError(f"t_growth must exceed 1, got {self.t_growth!r}")
        if not 0.0 < self.armijo < 1.0:
            raise ConfigurationError(f"armijo must lie in (0, 1), got {self.armijo!r}")
        if not 0.0 <= self.pd_shift < 1.0:
            raise ConfigurationError(f"pd_shift must lie in [0, 1), got {self.pd_shift!r}")
        if self.max_iter < 1 or self.max_stalled < 1:
            raise ConfigurationError("max_iter and max_stalled must be at least 1")

    @property
    def N(self) -> int:
        """境界ビンのインデックス (グリッドは -N..N)"""
        return int(math.ceil(self.n * self.xmax))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SolverConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {', '.join(unknown)}")
        missing = [name for name in ("n", "xmax", "C") if name not in data]
        if missing:
            raise ConfigurationError(f"Missing required configuration keys: {', '.join(missing)}")
        return cls(**dict(data))

    def to_dict(self) -> Dict[str, Any]:
        out = {f.name: getattr(self, f.name) for f in fields(self)}
        out["mode"] = self.mode.value
        return out


def load_config(path: str, **overrides) -> SolverConfig:
    """JSONファイルから設定を読み込む

    ``overrides`` に与えたキーはファイルの値より優先されます
    (値が None のキーは無視)。
    """
    data: Dict[str, Any] = {}
    if path and os.path.exists(path):
        with open(path, "r", encoding="utf-8") as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as exc:
                raise ConfigurationError(f"Failed to parse config file '{path}': {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file '{path}' must contain a JSON object")
    elif path:
        raise ConfigurationError(f"Config file not found: '{path}'")
    data.update({k: v for k, v in overrides.items() if v is not None})
    return SolverConfig.from_dict(data)
