"""
カクタス分布のサンプラー

グリッド上の累積分布から1ビンを選び、ビン幅の一様ディザを加えます。
境界ビンが選ばれた場合は幾何分布に従うオフセットで裾を外側へ延長します。
"""

from typing import Optional

import numpy as np


class CactusSampler:
    """収束した分布からのサンプリング

    ソルバーの状態は変更しないため、複数の呼び出し元から同時に使えます。
    乱数源は ``numpy.random.Generator`` を明示的に渡します。
    """

    def __init__(self, x: np.ndarray, cdf: np.ndarray, r: float, n: int):
        """
        Args:
            x: ビン中心 (等間隔 1/n)
            cdf: 正規化行で重み付けした累積分布
            r: 裾の幾何減衰率
            n: 量子化レベル
        """
        x = np.asarray(x, dtype=float).ravel()
        cdf = np.asarray(cdf, dtype=float).ravel()
        if x.size != cdf.size or x.size < 2:
            raise ValueError(f"x and cdf must have the same length >= 2, got {x.size} and {cdf.size}")
        if np.any(np.diff(cdf) < 0):
            raise ValueError("cdf must be non-decreasing")
        if not 0.0 < r < 1.0:
            raise ValueError(f"Tail ratio r must lie in (0, 1), got {r}")
        if n <= 0:
            raise ValueError(f"Quantization level n must be positive, got {n}")

        self.x = x
        self.cdf = cdf
        self.r = float(r)
        self.n = int(n)

    def sample(self, size: int = 1, rng: Optional[np.random.Generator] = None) -> np.ndarray:
        """``size`` 個の独立なサンプルを返す"""
        if rng is None:
            rng = np.random.default_rng()
        last = self.x.size - 1

        # u < cdf[i] となる最初のビン。cdf の末尾が丸めで 1 を下回っても最終ビンに落とす
        idx = np.minimum(np.searchsorted(self.cdf, rng.random(size), side="right"), last)
        s = self.x[idx]

        edge = (idx == 0) | (idx == last)
        if np.any(edge):
            # P(j >= m) = r^m
            j = np.floor(np.log(1.0 - rng.random(int(edge.sum()))) / np.log(self.r))
            s[edge] += np.where(idx[edge] == 0, -j, j) / self.n

        return s + (rng.random(size) - 0.5) / self.n

    def __call__(self, rng: Optional[np.random.Generator] = None) -> float:
        """1サンプルを返す"""
        return float(self.sample(1, rng=rng)[0])

    def __repr__(self):
        return f"CactusSampler(bins={self.x.size}, n={self.n}, r={self.r})"
