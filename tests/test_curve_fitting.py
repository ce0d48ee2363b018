import math

import numpy as np
import pytest

from slambox.curve_fitting import (
    FitResult,
    gauss_newton,
    generate_data,
    jacobian,
    levenberg_marquardt,
    main,
    model,
    residuals,
)

TRUE = (1.0, 2.0, 1.0)
START = (2.0, -1.0, 5.0)


def test_model_at_zero_is_exp_c():
    assert model(TRUE, 0.0) == pytest.approx(math.e)


def test_generate_data_without_noise_matches_model():
    x, y = generate_data(TRUE, 100, 0.0, 3)
    assert len(x) == 100
    assert x[1] == pytest.approx(0.01)
    assert np.allclose(y, model(TRUE, x))


def test_generate_data_is_reproducible_with_seed():
    _, y1 = generate_data(TRUE, 50, 1.0, 7)
    _, y2 = generate_data(TRUE, 50, 1.0, 7)
    assert np.array_equal(y1, y2)


def test_generate_data_rejects_negative_count():
    with pytest.raises(ValueError):
        generate_data(TRUE, -1, 1.0, 0)


def test_residuals_vanish_on_exact_data():
    x, y = generate_data(TRUE, 30, 0.0, 0)
    assert np.allclose(residuals(TRUE, x, y), 0.0)


def test_jacobian_matches_finite_differences():
    params = np.array([0.5, -0.3, 0.2])
    x, y = generate_data(TRUE, 20, 0.0, 0)
    J = jacobian(params, x)
    h = 1e-6
    for k in range(3):
        step = np.zeros(3)
        step[k] = h
        numeric = (residuals(params + step, x, y) - residuals(params - step, x, y)) / (2 * h)
        assert np.allclose(J[:, k], numeric, atol=1e-5)


def test_gauss_newton_recovers_exact_parameters():
    x, y = generate_data(TRUE, 100, 0.0, 0)
    result = gauss_newton(x, y, START, 100, 1.0)
    assert isinstance(result, FitResult)
    assert np.allclose(result.params, TRUE, atol=1e-3)
    assert result.cost < 1e-6


def test_levenberg_marquardt_recovers_exact_parameters():
    x, y = generate_data(TRUE, 100, 0.0, 0)
    result = levenberg_marquardt(x, y, START, 200, 1.0)
    assert np.allclose(result.params, TRUE, atol=1e-3)


def test_solvers_agree_on_noisy_data_and_beat_truth():
    x, y = generate_data(TRUE, 100, 1.0, 11)
    gn = gauss_newton(x, y, START, 100, 1.0)
    lm = levenberg_marquardt(x, y, START, 200, 1.0)
    truth_cost = float(np.sum(residuals(TRUE, x, y) ** 2))
    assert gn.cost <= truth_cost + 1e-9
    assert lm.cost <= truth_cost + 1e-9
    assert np.allclose(gn.params, lm.params, atol=1e-2)


def test_zero_iterations_keep_initial_guess():
    x, y = generate_data(TRUE, 10, 0.0, 0)
    result = gauss_newton(x, y, START, 0, 1.0)
    assert np.array_equal(result.params, np.array(START))
    assert result.iterations == 0


def test_mismatched_lengths_raise():
    with pytest.raises(ValueError):
        gauss_newton([0.0, 0.1], [1.0], START, 10, 1.0)


def test_non_positive_sigma_raises():
    x, y = generate_data(TRUE, 10, 0.0, 0)
    with pytest.raises(ValueError):
        levenberg_marquardt(x, y, START, 10, 0.0)


def test_wrong_parameter_count_raises():
    with pytest.raises(ValueError):
        model((1.0, 2.0), 0.5)


def test_main_prints_estimate(capsys):
    assert main(["--method", "levenberg-marquardt", "--seed", "1"]) == 0
    assert "estimated abc = " in capsys.readouterr().out