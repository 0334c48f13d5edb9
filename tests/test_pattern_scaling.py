"""
Tests for pattern scaling and grid helpers
"""

import numpy as np
import pytest

from fieldgen import (
    DegenerateFitError,
    Grid,
    InputShapeError,
    apply_pattern_scaling,
    fit_pattern_scaling,
    global_mean,
)


def test_exact_linear_response_has_zero_residuals():
    driver = np.linspace(0.0, 2.0, 30)
    slopes = np.array([1.5, 0.5, -0.25])
    intercepts = np.array([280.0, 290.0, 300.0])
    variable = np.outer(driver, slopes) + intercepts

    model = fit_pattern_scaling(variable, driver)

    np.testing.assert_allclose(model.slopes, slopes, atol=1e-10)
    np.testing.assert_allclose(model.intercepts, intercepts, atol=1e-8)
    np.testing.assert_allclose(model.residuals, 0.0, atol=1e-8)


def test_residuals_are_observed_minus_fitted():
    rng = np.random.default_rng(0)
    driver = np.linspace(0.0, 3.0, 50)
    variable = np.outer(driver, [2.0, 1.0]) + rng.normal(0.0, 0.1, (50, 2))

    model = fit_pattern_scaling(variable, driver)

    fitted = apply_pattern_scaling(model, driver)
    np.testing.assert_allclose(variable - fitted, model.residuals, atol=1e-12)
    # OLS residuals are centered per cell
    np.testing.assert_allclose(model.residuals.mean(axis=0), 0.0, atol=1e-10)


def test_apply_to_new_driver():
    driver = np.arange(10.0)
    model = fit_pattern_scaling(np.outer(driver, [1.0, 3.0]) + 1.0, driver)
    new_driver = np.array([0.0, 10.0, 20.0])

    mean_field = apply_pattern_scaling(model, new_driver)

    assert mean_field.shape == (3, 2)
    np.testing.assert_allclose(mean_field[:, 1], 3.0 * new_driver + 1.0, atol=1e-8)


def test_single_cell_vector_input():
    driver = np.linspace(0.0, 1.0, 20)
    model = fit_pattern_scaling(2.0 * driver + 1.0, driver)
    assert model.n_cells == 1
    assert model.n_time == 20


def test_constant_driver_is_degenerate():
    with pytest.raises(DegenerateFitError):
        fit_pattern_scaling(np.random.randn(20, 3), np.full(20, 1.0))


def test_too_few_steps_is_degenerate():
    with pytest.raises(DegenerateFitError):
        fit_pattern_scaling(np.ones((1, 3)), np.array([1.0]))


def test_mismatched_lengths():
    with pytest.raises(InputShapeError):
        fit_pattern_scaling(np.random.randn(20, 3), np.arange(19.0))


def test_missing_values_rejected():
    variable = np.random.randn(20, 3)
    variable[5, 1] = np.nan
    with pytest.raises((InputShapeError, ValueError)):
        fit_pattern_scaling(variable, np.arange(20.0))


def test_global_mean_uses_area_weights():
    grid = Grid.from_latitudes([0.0, 60.0], [0.0], time=np.arange(2))
    data = np.array([[1.0, 0.0], [1.0, 0.0]])
    # cos(0) = 1, cos(60) = 0.5
    np.testing.assert_allclose(global_mean(data, grid), 2.0 / 3.0)
    np.testing.assert_allclose(grid.weights.sum(), 1.0)
