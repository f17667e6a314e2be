"""End-to-end tests for the continuation Newton solver."""

import os
import sys

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from dataclasses import replace

import numpy as np
import pytest

from cactus import (CactusSampler, ConvergenceError, CostMode, SolverConfig, StallError,
                    build_cost_model, initial_guess, line_search, newton_iteration, opt_kl, solve)
from cactus.core import SolverState
from cactus.objective import shift_objectives, smooth_max
from cactus.report import ConsoleReporter
from cactus.solver import default_observers


@pytest.fixture(scope="module")
def small_config():
    return SolverConfig(n=10, xmax=3, C=1, tol=1e-6, verbose=0)


@pytest.fixture(scope="module")
def small_result(small_config):
    return solve(small_config)


def _start_state(model, config):
    p = initial_guess(model, config.C)
    allobj = shift_objectives(p, model.n, model.r, model.mode)
    return SolverState(p=p, t=config.t0, allobj=allobj, fval=smooth_max(allobj, config.t0)[0])


def test_small_problem_converges(small_result):
    result = small_result
    assert result.gap is not None and 0 <= result.gap < 1e-6
    assert np.all(result.p > 0)
    assert np.allclose(result.model.residual(result.p), 0.0, atol=1e-8)
    assert result.iterations == len(result.history) <= 500
    assert result.primobj == pytest.approx(np.max(
        shift_objectives(result.p, 10, 0.9, CostMode.EXACT)))


def test_solution_is_symmetric(small_result):
    p = small_result.p
    assert np.allclose(p, p[::-1], rtol=1e-5, atol=1e-10)


def test_history_invariants(small_result):
    """温度は単調非減少、実行可能後の通常ステップでは平滑化目的関数が減少"""
    history = small_result.history
    temperatures = [info.t for info in history]
    assert all(a <= b for a, b in zip(temperatures, temperatures[1:]))

    first_feasible = [info.became_feasible for info in history]
    assert sum(first_feasible) == 1

    for info in history:
        assert 0 < info.step <= 1.0
        assert 1 <= info.max_shift <= 10
        if info.feasible and not info.became_feasible:
            assert info.gap is not None and info.gap >= 0
            if not info.stalled:
                assert info.fval <= info.fval_before + 1e-12
        else:
            # 実行可能になった反復の減少量は実行不能点で計算されている
            assert info.gap is None


def test_cost_constraint_is_met(small_result):
    dist = small_result.distribution()
    assert dist.moment() == pytest.approx(1.0, abs=1e-8)
    assert dist.total_mass() == pytest.approx(1.0, abs=1e-8)


def test_bin_floor_relaxation_is_lower(small_config, small_result):
    """下界モデルは厳密モデルの緩和なので最適値が大きくならない"""
    floor = solve(SolverConfig(n=10, xmax=3, C=1, tol=1e-6, verbose=0, mode="bin-floor"))
    assert np.all(floor.p > 0)
    assert floor.primobj <= small_result.primobj + 1e-5


def test_single_shift_problem():
    result = solve(SolverConfig(n=1, xmax=4, C=1, tol=1e-6, verbose=0))
    assert result.x.size == 9
    assert result.gap < 1e-6
    assert np.allclose(result.model.residual(result.p), 0.0, atol=1e-8)


@pytest.mark.parametrize("xmax", [1, 2])
def test_single_shift_problem_on_narrow_grid(xmax):
    """狭いグリッドでも実行可能になった直後の反復で停止しない"""
    result = solve(SolverConfig(n=1, xmax=xmax, C=1, tol=1e-6, verbose=0))
    assert result.iterations > 1
    assert 0 <= result.gap < 1e-6
    assert result.t > 1.0
    assert all(info.gap is None or info.gap >= 0 for info in result.history)
    assert np.all(result.p > 0)
    assert np.allclose(result.model.residual(result.p), 0.0, atol=1e-8)

def test_max_iter_raises_with_last_state():
    config = SolverConfig(n=10, xmax=3, C=1, verbose=0, max_iter=2)
    with pytest.raises(ConvergenceError) as excinfo:
        solve(config)
    assert not isinstance(excinfo.value, StallError)
    assert excinfo.value.state is not None
    assert excinfo.value.state.iteration == 2


def test_newton_iteration_does_not_mutate_state(small_config):
    model = build_cost_model(small_config)
    state = _start_state(model, small_config)
    p_before = state.p.copy()

    new_state, info, converged = newton_iteration(state, model, small_config)

    assert np.array_equal(state.p, p_before)
    assert state.iteration == 0
    assert new_state.iteration == 1
    assert info.iteration == 1
    assert not converged
    assert np.all(new_state.p > 0)


def test_newton_iteration_fills_missing_cache(small_config):
    model = build_cost_model(small_config)
    full = _start_state(model, small_config)
    bare = SolverState(p=full.p, t=small_config.t0)

    from_bare, info_bare, _ = newton_iteration(bare, model, small_config)
    from_full, info_full, _ = newton_iteration(full, model, small_config)

    assert info_bare.fval_before == pytest.approx(full.fval)
    assert np.allclose(from_bare.p, from_full.p)
    assert np.isfinite(from_bare.fval)
    assert from_bare.allobj is not None


def test_cached_fval_is_the_armijo_reference(small_config):
    model = build_cost_model(small_config)
    state = replace(_start_state(model, small_config), fval=123.0)
    _, info, _ = newton_iteration(state, model, small_config)
    assert info.fval_before == 123.0


def test_line_search_rejects_non_positive_steps(small_config):
    model = build_cost_model(small_config)
    state = _start_state(model, small_config)
    # 全成分を大きく負方向へ動かす方向
    v = -2.0 * state.p
    ls = line_search(state.p, v, -1.0, state.fval, state.t, False, model, small_config)
    assert ls.step == 0.25
    assert np.all(ls.p > 0)


def test_observers_receive_every_iteration(small_config):
    seen = []
    lines = []
    result = solve(small_config, observers=[seen.append, ConsoleReporter(print_fn=lines.append)])
    assert len(seen) == result.iterations
    assert lines.count("Feasible!") == 1
    assert any(line.startswith("iter=1 ") for line in lines)


def test_default_observers_follow_verbosity(small_config):
    model = build_cost_model(small_config)
    assert default_observers(small_config, model) == []
    verbose = SolverConfig(n=10, xmax=3, C=1, verbose=1)
    observers = default_observers(verbose, model)
    assert len(observers) == 1
    assert isinstance(observers[0], ConsoleReporter)


def test_console_reporter_format(small_result):
    info = small_result.history[0]
    line = ConsoleReporter.format(info)
    assert line.startswith("iter=1  dst=")
    assert "primobj=" in line and "nwt_dec=" in line
    assert line.endswith(f"a = {info.shift_fraction:1.4f}")


def test_opt_kl_returns_sampler():
    primobj, x, p, sampler = opt_kl(10, 3, 1, tol=1e-6, verbose=0)
    assert isinstance(sampler, CactusSampler)
    assert x.shape == p.shape
    assert primobj > 0
    assert np.isfinite(sampler(np.random.default_rng(0)))
