"""
カクタス機構ジェネレータ

コスト制約 E|X|^c <= C の下で、小さな平行移動に対する最悪の
シフト発散を最小化するノイズ分布を計算し、そのサンプラーを提供します。
"""

from .config import ConfigurationError, CostMode, SolverConfig, load_config
from .core import (CactusDistribution, CactusResult, ConvergenceError, CostModel,
                   IterationInfo, SolverState, StallError)
from .grid import build_cost_model, initial_guess
from .objective import (hessian, hessian_bands, shift_gradient, shift_gradients,
                        shift_objectives, smooth_max)
from .newton import NewtonStep, newton_direction, regularized_hessian
from .sampler import CactusSampler
from .solver import line_search, newton_iteration, opt_kl, solve
from .export import default_filename, export_csv, load_distribution, save_distribution

__version__ = "0.1.0"

__all__ = [
    # 設定
    'SolverConfig', 'CostMode', 'load_config',
    # 中核クラス
    'CostModel', 'SolverState', 'IterationInfo', 'CactusDistribution', 'CactusResult',
    # 例外
    'ConfigurationError', 'ConvergenceError', 'StallError',
    # グリッドと評価関数
    'build_cost_model', 'initial_guess',
    'shift_objectives', 'smooth_max', 'shift_gradient', 'shift_gradients',
    'hessian', 'hessian_bands',
    # ニュートン法
    'NewtonStep', 'newton_direction', 'regularized_hessian',
    # ソルバー
    'solve', 'opt_kl', 'newton_iteration', 'line_search',
    # サンプリングと保存
    'CactusSampler',
    'default_filename', 'save_distribution', 'load_distribution', 'export_csv',
]
