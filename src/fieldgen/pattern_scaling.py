"""
Pattern Scaling

Per-grid-cell linear response of a local variable to a global driver scalar
(typically area-weighted global mean temperature):

    variable[t, i] = slope[i] * driver[t] + intercept[i] + residual[t, i]

The fitted model is applied to arbitrary driver trajectories to produce mean
fields for scenario generation.
"""

from dataclasses import dataclass

import numpy as np
from sklearn.linear_model import LinearRegression

from .errors import DegenerateFitError, InputShapeError
from .grid import as_driver, as_time_by_cell


@dataclass(frozen=True, eq=False)
class PatternScale:
    """
    Fitted pattern-scaling model.

    Attributes
    ----------
    slopes, intercepts : np.ndarray
        Per-cell regression coefficients, length N.
    residuals : np.ndarray
        Training residuals (observed minus fitted mean response), T×N.
    driver : np.ndarray
        Training driver series, length T.
    """

    slopes: np.ndarray
    intercepts: np.ndarray
    residuals: np.ndarray
    driver: np.ndarray

    def __post_init__(self):
        slopes = np.asarray(self.slopes, dtype=float).ravel()
        intercepts = np.asarray(self.intercepts, dtype=float).ravel()
        if slopes.size != intercepts.size:
            raise InputShapeError(
                f"{slopes.size} slopes but {intercepts.size} intercepts"
            )
        driver = as_driver(self.driver, name="training driver")
        residuals = as_time_by_cell(
            self.residuals, "residuals", n_time=driver.size, n_cells=slopes.size
        )
        object.__setattr__(self, "slopes", slopes)
        object.__setattr__(self, "intercepts", intercepts)
        object.__setattr__(self, "driver", driver)
        object.__setattr__(self, "residuals", residuals)

    @property
    def n_cells(self) -> int:
        return self.slopes.size

    @property
    def n_time(self) -> int:
        return self.driver.size


def fit_pattern_scaling(variable, driver) -> PatternScale:
    """
    Fit an ordinary-least-squares line of every cell against the driver.

    Parameters
    ----------
    variable : array-like
        T×N matrix in analysis space (e.g. temperature, log precipitation).
    driver : array-like
        Length-T regressor (e.g. global mean temperature).

    Returns
    -------
    PatternScale
        Slopes, intercepts, residuals and the training driver.

    Raises
    ------
    InputShapeError
        If shapes disagree or inputs contain NaN/Inf.
    DegenerateFitError
        If T < 2 or the driver has zero variance.

    Examples
    --------
    >>> driver = np.linspace(0.0, 3.0, 50)
    >>> field = np.outer(driver, [1.5, 0.5]) + 2.0
    >>> model = fit_pattern_scaling(field, driver)
    >>> print(model.slopes)  # approximately [1.5, 0.5]
    """
    variable = as_time_by_cell(variable, "variable")
    n_time = variable.shape[0]
    driver = as_driver(driver, n_time=n_time)

    if n_time < 2:
        raise DegenerateFitError(
            f"Pattern scaling needs at least 2 time steps, got {n_time}"
        )
    scale = max(1.0, float(np.max(np.abs(driver))))
    if np.std(driver) <= np.finfo(float).eps * scale:
        raise DegenerateFitError(
            "Driver series has zero variance; the regression is undefined"
        )

    # One multi-output regression fits all cells at once
    reg = LinearRegression(fit_intercept=True)
    reg.fit(driver.reshape(-1, 1), variable)

    slopes = np.asarray(reg.coef_, dtype=float).reshape(-1)
    intercepts = np.atleast_1d(np.asarray(reg.intercept_, dtype=float))

    meanfield = np.outer(driver, slopes) + intercepts
    return PatternScale(
        slopes=slopes,
        intercepts=intercepts,
        residuals=variable - meanfield,
        driver=driver,
    )


def apply_pattern_scaling(model: PatternScale, driver) -> np.ndarray:
    """
    Mean response field for an arbitrary driver series.

    Parameters
    ----------
    model : PatternScale
        Fitted model.
    driver : array-like
        Length-T' driver; need not match the training length or values.

    Returns
    -------
    np.ndarray
        T'×N mean field.
    """
    driver = as_driver(driver)
    return np.outer(driver, model.slopes) + model.intercepts
