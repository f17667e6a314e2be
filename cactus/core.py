"""
カクタス機構の中核データ構造

このモジュールは量子化グリッド上のコストモデル、ソルバーの反復状態、
収束後の分布の表現を提供します。
"""

from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np

from .config import CostMode
from .sampler import CactusSampler


class ConvergenceError(RuntimeError):
    """ソルバーが許容誤差に到達しなかった場合の例外

    ``state`` には最後の反復状態が入ります。
    """

    def __init__(self, message: str, state: Optional["SolverState"] = None):
        super().__init__(message)
        self.state = state


class StallError(ConvergenceError):
    """直線探索が最小ステップで打ち切られる反復が続いた場合の例外"""


@dataclass(frozen=True)
class CostModel:
    """量子化グリッドと二本の線形制約 ``A @ p = b``

    A[0] はコスト汎関数、A[1] は境界の幾何裾を含めた総確率質量を表します。
    """
    x: np.ndarray
    A: np.ndarray
    b: np.ndarray
    n: int
    N: int
    xmax: float
    r: float
    cexp: float
    mode: CostMode

    @property
    def size(self) -> int:
        return int(self.x.size)

    @property
    def cost(self) -> np.ndarray:
        return self.A[0]

    @property
    def weights(self) -> np.ndarray:
        """正規化行 (境界ビンには 1/(1-r) が掛かる)"""
        return self.A[1]

    def residual(self, p: np.ndarray) -> np.ndarray:
        """主実行可能性残差 A p - b"""
        return self.A @ p - self.b


@dataclass(frozen=True)
class SolverState:
    """反復間で受け渡される状態

    p, t, feasible だけが反復をまたいで意味を持ち、
    allobj と fval は p と t から再計算できるキャッシュで、
    省略した場合は次の反復で計算されます。
    """
    p: np.ndarray
    t: float
    feasible: bool = False
    iteration: int = 0
    allobj: Optional[np.ndarray] = None
    fval: float = float("nan")
    stalled: int = 0

    @property
    def primobj(self) -> float:
        return float(np.max(self.allobj))


@dataclass
class IterationInfo:
    """1反復分の診断情報"""
    iteration: int
    step: float
    primobj: float
    fval: float
    fval_before: float
    newton_decrement: float
    t: float
    max_shift: int
    shift_fraction: float
    feasible: bool
    became_feasible: bool
    method: str
    gap: Optional[float] = None
    stalled: bool = False
    p: Optional[np.ndarray] = field(default=None, repr=False)


class CactusDistribution:
    """収束したカクタス分布の表現

    x: ビン中心のグリッド
    p: 各ビンの確率 (境界ビンは裾一本あたりの値)
    weights: 正規化行。境界ビンの裾の総質量を表す係数を含む
    """

    MASS_TOLERANCE = 1e-6

    def __init__(self,
                 x: np.ndarray,
                 p: np.ndarray,
                 weights: Optional[np.ndarray] = None,
                 n: int = 1,
                 r: float = 0.9,
                 xmax: Optional[float] = None,
                 cexp: float = 2.0,
                 C: Optional[float] = None,
                 cost: Optional[np.ndarray] = None,
                 skip_validation: bool = False):
        self.x = np.asarray(x, dtype=float).ravel()
        self.p = np.asarray(p, dtype=float).ravel()
        if self.x.shape != self.p.shape:
            raise ValueError(f"x and p must have the same length, got {self.x.size} and {self.p.size}")
        if weights is None:
            weights = tail_weights(self.x.size, r)
        self.weights = np.asarray(weights, dtype=float).ravel()
        self.n = int(n)
        self.r = float(r)
        self.xmax = float(self.x[-1]) if xmax is None else float(xmax)
        self.cexp = float(cexp)
        self.C = C
        self.cost = None if cost is None else np.asarray(cost, dtype=float).ravel()

        if not skip_validation:
            self._validate()

    @classmethod
    def from_model(cls, model: CostModel, p: np.ndarray, C: Optional[float] = None) -> "CactusDistribution":
        """コストモデルと解ベクトルから分布を作成"""
        return cls(model.x, p, weights=model.weights, n=model.n, r=model.r,
                   xmax=model.xmax, cexp=model.cexp, C=C, cost=model.cost)

    def _validate(self):
        """分布の妥当性をチェック"""
        if np.any(self.p <= 0):
            raise ValueError("Distribution entries must be strictly positive")
        total_mass = self.total_mass()
        if abs(total_mass - 1.0) > self.MASS_TOLERANCE:
            raise ValueError(f"Distribution mass should be 1.0, got {total_mass}")

    def pmf(self) -> np.ndarray:
        """各ビン (境界は裾を含む) の確率質量"""
        return self.p * self.weights

    def total_mass(self) -> float:
        return float(np.sum(self.pmf()))

    def cdf(self) -> np.ndarray:
        return np.cumsum(self.pmf())

    def moment(self, cexp: Optional[float] = None) -> float:
        """期待コスト E|X|^cexp

        ソルバーのコスト行を持っていればそれを使い、
        なければビン中心で評価します。
        """
        if cexp is None:
            cexp = self.cexp
        if self.cost is not None and cexp == self.cexp:
            return float(self.cost @ self.p)
        return float(np.sum(np.abs(self.x) ** cexp * self.pmf()))

    def sampler(self) -> CactusSampler:
        return CactusSampler(self.x, self.cdf(), self.r, self.n)

    def sample(self, size: int = 1, rng: Optional[np.random.Generator] = None) -> np.ndarray:
        """サンプリング"""
        return self.sampler().sample(size, rng=rng)

    def __repr__(self):
        return (f"CactusDistribution(bins={self.x.size}, n={self.n}, r={self.r}, "
                f"xmax={self.xmax:g}, mass={self.total_mass():.6f})")


@dataclass
class CactusResult:
    """ソルバーの出力"""
    primobj: float
    fval: float
    x: np.ndarray
    p: np.ndarray
    model: CostModel
    t: float
    iterations: int
    C: float
    history: List[IterationInfo] = field(default_factory=list)

    @property
    def gap(self) -> Optional[float]:
        return self.history[-1].gap if self.history else None

    def distribution(self) -> CactusDistribution:
        return CactusDistribution.from_model(self.model, self.p, C=self.C)

    def sampler(self):
        return self.distribution().sampler()


def tail_weights(size: int, r: float) -> np.ndarray:
    """境界ビンに幾何裾の総和 1/(1-r) を掛けた正規化行"""
    w = np.ones(size)
    w[0] = w[-1] = 1.0 / (1.0 - r)
    return w
