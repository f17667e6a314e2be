"""
カクタス分布ソルバー

シフト発散の最悪値を最小化する離散分布を、ソフトマックス平滑化と
温度の継続法 (ホモトピー) を組み合わせた制約付きニュートン法で求めます。

各反復は 目的関数/勾配/ヘッセ行列の評価 → 探索方向 → 直線探索 →
状態更新 → 停止判定 の順に進みます。
"""

import logging
from dataclasses import dataclass, replace
from typing import Callable, Iterable, List, Optional, Tuple

import numpy as np

from .config import SolverConfig
from .core import CactusResult, ConvergenceError, CostModel, IterationInfo, SolverState, StallError
from .grid import build_cost_model, initial_guess
from .newton import newton_direction, regularized_hessian
from .objective import hessian, shift_gradients, shift_objectives, smooth_max

logger = logging.getLogger(__name__)

Observer = Callable[[IterationInfo], None]


@dataclass
class LineSearchResult:
    step: float
    p: np.ndarray
    allobj: np.ndarray
    fval: float
    primobj: float
    index: int


def line_search(p: np.ndarray, v: np.ndarray, slope: float, fval: float, t: float, feasible: bool,
                model: CostModel, config: SolverConfig) -> LineSearchResult:
    """Backtracking search along ``p + dst * v``.

    Steps that leave the positive orthant are always rejected.  While the
    constraints are not yet met the longest positive step is taken;
    afterwards a step needs ``fval(p + dst v) < fval + armijo * dst * slope``
    or must have reached ``config.min_step``.
    """
    dst = 1.0
    while True:
        pnew = p + dst * v
        if np.min(pnew) > 0:
            allobj = shift_objectives(pnew, model.n, model.r, model.mode)
            newfval, _, primobj, index = smooth_max(allobj, t)
            if not feasible:
                break
            if newfval < fval + config.armijo * dst * slope:
                break
            if dst < config.min_step:
                break
        dst /= 2.0
    return LineSearchResult(step=dst, p=pnew, allobj=allobj, fval=newfval, primobj=primobj, index=index)


def newton_iteration(state: SolverState, model: CostModel,
                     config: SolverConfig) -> Tuple[SolverState, IterationInfo, bool]:
    """1反復を実行し、新しい状態・診断情報・収束フラグを返す"""
    n, r, mode = model.n, model.r, model.mode
    p, t = state.p, state.t

    # allobj と fval はキャッシュ。未設定なら p と t から計算する
    allobj = state.allobj
    if allobj is None:
        allobj = shift_objectives(p, n, r, mode)
    # 双対変数 eta はソフトマックスの重み
    smoothed, eta, _, _ = smooth_max(allobj, t)
    fval = state.fval if state.allobj is not None and np.isfinite(state.fval) else smoothed
    G = shift_gradients(p, n, r, mode)
    grad = G @ eta
    rpri = model.residual(p)

    K = regularized_hessian(hessian(p, n, eta, r, mode), G, eta, grad, t, config.pd_shift)
    step = newton_direction(K, grad, model.A, rpri)
    v = step.direction
    if not np.all(np.isfinite(v)):
        raise ConvergenceError("Newton direction is not finite", state)

    ls = line_search(p, v, float(grad @ v), fval, t, state.feasible, model, config)

    became_feasible = not state.feasible and ls.step == 1.0
    feasible = state.feasible or became_feasible
    if became_feasible:
        logger.info("feasible after %d iterations", state.iteration + 1)

    # 最小ステップで打ち切られ、かつ進むべき余地が残っている場合は停滞とみなす
    stalled = ls.step < config.min_step and (not feasible or step.decrement >= config.tol / 2)
    if stalled:
        logger.debug("line search hit the step floor (dst=%.1e)", ls.step)

    # 減少量が意味を持つのは実行可能点から計算した方向だけ
    gap = None
    converged = False
    new_t = t
    if state.feasible:
        # n/e/t bounds the soft-max approximation error at the smoothed optimum
        gap = abs(step.decrement) + n / np.e / t
        converged = gap < config.tol
        if not converged and (ls.step == 1.0 or abs(step.decrement) < config.tol / 2):
            new_t = t * config.t_growth

    new_fval = ls.fval if new_t == t else smooth_max(ls.allobj, new_t)[0]
    new_state = replace(
        state,
        p=ls.p,
        t=new_t,
        feasible=feasible,
        iteration=state.iteration + 1,
        allobj=ls.allobj,
        fval=new_fval,
        stalled=state.stalled + 1 if stalled else 0,
    )
    info = IterationInfo(
        iteration=new_state.iteration,
        step=ls.step,
        primobj=ls.primobj,
        fval=ls.fval,
        fval_before=fval,
        newton_decrement=step.decrement,
        t=t,
        max_shift=ls.index + 1,
        shift_fraction=(ls.index + 1) / n,
        feasible=feasible,
        became_feasible=became_feasible,
        method=step.method,
        gap=gap,
        stalled=stalled,
        p=ls.p,
    )
    return new_state, info, converged


def default_observers(config: SolverConfig, model: CostModel) -> List[Observer]:
    """verbose に応じた診断出力を用意する"""
    from .report import ConsoleReporter, LivePlotter

    observers: List[Observer] = []
    if config.verbose >= 1:
        observers.append(ConsoleReporter())
    if config.verbose >= 2:
        observers.append(LivePlotter(model.x))
    return observers


def solve(config: SolverConfig, observers: Optional[Iterable[Observer]] = None) -> CactusResult:
    """最悪シフト発散を最小化する分布を計算する

    Args:
        config: ソルバー設定
        observers: 各反復の IterationInfo を受け取る追加のコールバック

    Returns:
        CactusResult: 主目的値、グリッド、分布、反復履歴

    Raises:
        StallError: 最小ステップでの打ち切りが max_stalled 回続いた場合
        ConvergenceError: max_iter 回以内に停止条件を満たさなかった場合
    """
    model = build_cost_model(config)
    p = initial_guess(model, config.C)
    allobj = shift_objectives(p, model.n, model.r, model.mode)
    state = SolverState(p=p, t=config.t0, allobj=allobj, fval=smooth_max(allobj, config.t0)[0])

    watchers = default_observers(config, model) + list(observers or [])
    history: List[IterationInfo] = []
    logger.info("solving n=%d xmax=%g C=%g cexp=%g mode=%s (%d bins)",
                model.n, model.xmax, config.C, model.cexp, model.mode.value, model.size)

    while True:
        if state.iteration >= config.max_iter:
            raise ConvergenceError(f"no convergence after {config.max_iter} iterations", state)

        state, info, converged = newton_iteration(state, model, config)
        history.append(info)
        for watch in watchers:
            watch(info)

        if converged:
            break
        if state.stalled >= config.max_stalled:
            raise StallError(f"line search stalled for {state.stalled} consecutive iterations", state)

    logger.info("converged after %d iterations: primobj=%.6f gap=%.2e t=%.1e",
                state.iteration, state.primobj, info.gap, state.t)
    return CactusResult(
        primobj=state.primobj,
        fval=info.fval,
        x=model.x,
        p=state.p,
        model=model,
        t=state.t,
        iterations=state.iteration,
        C=config.C,
        history=history,
    )


def opt_kl(n: int, xmax: float, C: float, cexp: float = 2.0, mode=1, r: float = 0.9,
           tol: float = 1e-8, verbose: int = 2):
    """便利関数：``(primobj, x, p, sampler)`` を返す

    最初は ``opt_kl(200, 8, 0.25)`` あたりから試すとよい。
    """
    result = solve(SolverConfig(n=n, xmax=xmax, C=C, cexp=cexp, mode=mode, r=r, tol=tol, verbose=verbose))
    return result.primobj, result.x, result.p, result.sampler()
