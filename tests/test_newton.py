"""Tests for the constrained Newton step."""

import os
import sys

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

import numpy as np
import pytest
from scipy.linalg import LinAlgError

from cactus.config import SolverConfig
from cactus.grid import build_cost_model, initial_guess
from cactus.newton import (kkt_direction_cholesky, kkt_direction_dense, kkt_residual,
                           newton_direction, regularized_hessian)
from cactus.objective import hessian, shift_gradients, shift_objectives, smooth_max


def _problem(t=1.0):
    config = SolverConfig(n=4, xmax=2, C=0.5, verbose=0)
    model = build_cost_model(config)
    p = initial_guess(model, config.C)
    allobj = shift_objectives(p, model.n, model.r, model.mode)
    _, eta, _, _ = smooth_max(allobj, t)
    G = shift_gradients(p, model.n, model.r, model.mode)
    grad = G @ eta
    K = regularized_hessian(hessian(p, model.n, eta, model.r, model.mode), G, eta, grad, t)
    return K, grad, model.A, model.residual(p)


def test_regularized_hessian_is_positive_definite():
    K, _, _, _ = _problem()
    assert np.allclose(K, K.T)
    assert np.min(np.linalg.eigvalsh(K)) > 0


def test_cholesky_and_dense_paths_agree():
    K, grad, A, rpri = _problem()
    v_chol = kkt_direction_cholesky(K, grad, A, rpri)
    v_dense = kkt_direction_dense(K, grad, A, rpri)
    assert np.allclose(v_chol, v_dense, rtol=1e-6, atol=1e-9)
    # 完全なステップで線形制約を満たす
    assert np.allclose(A @ v_chol, -rpri)


def test_newton_direction_primary_path():
    K, grad, A, rpri = _problem()
    step = newton_direction(K, grad, A, rpri)
    assert step.method == "cholesky"
    assert step.decrement == pytest.approx(-grad @ step.direction / 2)
    assert kkt_residual(K, grad, A, rpri, step.direction) < 1e-8


def test_dense_fallback_on_indefinite_matrix():
    """コレスキー分解が失敗しても拡大系で同じ KKT 残差まで解ける"""
    K, grad, A, rpri = _problem()
    # 制約の零空間では正定値のまま、全体としては不定値にする
    K_bad = K.copy()
    K_bad[0, 0] = -abs(K_bad[0, 0]) - 1.0
    with pytest.raises(LinAlgError):
        kkt_direction_cholesky(K_bad, grad, A, rpri)

    step = newton_direction(K_bad, grad, A, rpri)
    assert step.method == "dense"
    scale = max(1.0, np.max(np.abs(K_bad)))
    assert kkt_residual(K_bad, grad, A, rpri, step.direction) < 1e-8 * scale
    assert np.allclose(A @ step.direction, -rpri)


def test_ill_conditioned_hessian_fallback_matches_primary_tolerance():
    K, grad, A, rpri = _problem(t=1e6)
    primary = newton_direction(K, grad, A, rpri)
    dense = kkt_direction_dense(K, grad, A, rpri)
    scale = max(1.0, np.max(np.abs(K)))
    assert kkt_residual(K, grad, A, rpri, primary.direction) < 1e-6 * scale
    assert kkt_residual(K, grad, A, rpri, dense) < 1e-6 * scale


def test_kkt_residual_detects_wrong_direction():
    K, grad, A, rpri = _problem()
    assert kkt_residual(K, grad, A, rpri, np.zeros_like(grad)) > 1e-6
