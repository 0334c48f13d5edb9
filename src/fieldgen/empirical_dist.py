"""
Empirical Distribution Transform

Maps per-cell residuals into a standard normal reference distribution via
their empirical CDF, and back through the empirical quantile function. The
mapping is continuous and strictly increasing, so it preserves ranks: the
Spearman correlation between any two cells (of the same or of different
variables) is unchanged by normalization.

Each cell owns an ``EmpiricalCDF``: sorted control points (value, probability)
with plotting positions ``(rank - 0.5) / T``. Inside the sampled range the CDF
is piecewise linear in probability. Outside it the CDF continues linearly in
normal-score space with the slope of the end segment. Normalization works in
score space directly (``score``/``from_score``), so far tails map to finite
scores and back without passing through probabilities that round to 0 or 1.
"""

import warnings
from dataclasses import dataclass
from typing import Sequence, Tuple

import numpy as np
from scipy import stats

from .config import MIN_DISTINCT_VALUES, TIE_WARNING_FRACTION
from .errors import DegenerateFitError, InputShapeError, InvertibilityError
from .grid import as_time_by_cell


@dataclass(frozen=True, eq=False)
class EmpiricalCDF:
    """
    Monotone piecewise-linear CDF of one grid cell and its exact inverse.

    Attributes
    ----------
    cell : int
        Column index of the cell this function belongs to.
    values : np.ndarray
        Strictly increasing control-point values.
    probs : np.ndarray
        Strictly increasing probabilities in (0, 1) at ``values``.
    """

    cell: int
    values: np.ndarray
    probs: np.ndarray

    def __post_init__(self):
        values = np.asarray(self.values, dtype=float).ravel()
        probs = np.asarray(self.probs, dtype=float).ravel()
        if values.size != probs.size:
            raise InputShapeError(
                f"cell {self.cell}: {values.size} values but {probs.size} probabilities"
            )
        if values.size < 2:
            raise DegenerateFitError(
                f"cell {self.cell}: at least 2 control points are required"
            )
        if np.any(np.diff(values) <= 0) or np.any(np.diff(probs) <= 0):
            raise DegenerateFitError(
                f"cell {self.cell}: control points must be strictly increasing"
            )
        if probs[0] <= 0.0 or probs[-1] >= 1.0:
            raise InvertibilityError(
                f"cell {self.cell}: probabilities must lie strictly inside (0, 1)"
            )
        object.__setattr__(self, "values", values)
        object.__setattr__(self, "probs", probs)

        # Tail extension: straight lines in normal-score space
        z = stats.norm.ppf(probs[[0, 1, -2, -1]])
        object.__setattr__(self, "_z_lo", z[0])
        object.__setattr__(self, "_z_hi", z[3])
        object.__setattr__(self, "_slope_lo", (z[1] - z[0]) / (values[1] - values[0]))
        object.__setattr__(self, "_slope_hi", (z[3] - z[2]) / (values[-1] - values[-2]))

    @property
    def support(self) -> Tuple[float, float]:
        """Sampled value range; the function extrapolates beyond it."""
        return float(self.values[0]), float(self.values[-1])

    def evaluate(self, x) -> np.ndarray:
        """Probability of ``x`` (forward CDF)."""
        x = np.asarray(x, dtype=float)
        p = np.interp(x, self.values, self.probs)
        below = x < self.values[0]
        above = x > self.values[-1]
        if np.any(below):
            p = np.where(
                below,
                stats.norm.cdf(self._z_lo + self._slope_lo * (x - self.values[0])),
                p,
            )
        if np.any(above):
            p = np.where(
                above,
                stats.norm.cdf(self._z_hi + self._slope_hi * (x - self.values[-1])),
                p,
            )
        return p

    def invert(self, p) -> np.ndarray:
        """Value at probability ``p`` (quantile function)."""
        p = np.asarray(p, dtype=float)
        if np.any(~(p > 0.0) | ~(p < 1.0)):
            raise InvertibilityError(
                f"cell {self.cell}: quantile lookup outside the open interval (0, 1)"
            )
        x = np.interp(p, self.probs, self.values)
        below = p < self.probs[0]
        above = p > self.probs[-1]
        if np.any(below) or np.any(above):
            z = stats.norm.ppf(p)
            x = np.where(below, self.values[0] + (z - self._z_lo) / self._slope_lo, x)
            x = np.where(above, self.values[-1] + (z - self._z_hi) / self._slope_hi, x)
        return x

    def score(self, x) -> np.ndarray:
        """Standard normal score of ``x``: ``norm.ppf(evaluate(x))``, exact in the tails."""
        x = np.asarray(x, dtype=float)
        below = x < self.values[0]
        above = x > self.values[-1]
        inside = np.clip(x, self.values[0], self.values[-1])
        z = stats.norm.ppf(np.interp(inside, self.values, self.probs))
        z = np.where(below, self._z_lo + self._slope_lo * (x - self.values[0]), z)
        z = np.where(above, self._z_hi + self._slope_hi * (x - self.values[-1]), z)
        return z

    def from_score(self, z) -> np.ndarray:
        """Inverse of :meth:`score`: value at standard normal score ``z``."""
        z = np.asarray(z, dtype=float)
        if not np.all(np.isfinite(z)):
            raise InvertibilityError(f"cell {self.cell}: normal scores must be finite")
        below = z < self._z_lo
        above = z > self._z_hi
        inside = np.clip(z, self._z_lo, self._z_hi)
        x = np.interp(stats.norm.cdf(inside), self.probs, self.values)
        x = np.where(below, self.values[0] + (z - self._z_lo) / self._slope_lo, x)
        x = np.where(above, self.values[-1] + (z - self._z_hi) / self._slope_hi, x)
        return x


@dataclass(frozen=True, eq=False)
class EmpiricalDist:
    """Per-cell empirical CDFs of one variable, indexed by cell."""

    cells: Tuple[EmpiricalCDF, ...]
    name: str = ""

    def __post_init__(self):
        cells = tuple(self.cells)
        for i, cdf in enumerate(cells):
            if cdf.cell != i:
                raise InputShapeError(
                    f"EmpiricalDist entry {i} is tagged for cell {cdf.cell}"
                )
        object.__setattr__(self, "cells", cells)

    def __len__(self) -> int:
        return len(self.cells)

    def __getitem__(self, i: int) -> EmpiricalCDF:
        return self.cells[i]

    @property
    def n_cells(self) -> int:
        return len(self.cells)

    def normalize(self, residuals) -> np.ndarray:
        return normalize(residuals, self)

    def unnormalize(self, normalized) -> np.ndarray:
        return unnormalize(normalized, self)


def _plotting_positions(counts: np.ndarray, n_samples: int) -> np.ndarray:
    """(rank - 0.5) / n, averaged over each group of tied samples."""
    last_rank = np.cumsum(counts)
    first_rank = last_rank - counts + 1
    mean_rank = 0.5 * (first_rank + last_rank)
    return (mean_rank - 0.5) / n_samples


def characterize(
    residuals,
    name: str = "",
    min_distinct: int = MIN_DISTINCT_VALUES,
) -> EmpiricalDist:
    """
    Build the empirical CDF of every cell.

    Parameters
    ----------
    residuals : array-like
        T×N matrix of training residuals.
    name : str
        Variable name stored on the result.
    min_distinct : int
        Minimum number of distinct values required per cell (default: 3).

    Returns
    -------
    EmpiricalDist

    Raises
    ------
    DegenerateFitError
        If any cell has fewer than ``min_distinct`` distinct values.
    """
    residuals = as_time_by_cell(residuals, "residuals")
    n_time, n_cells = residuals.shape

    cells = []
    heavy_ties = []
    for i in range(n_cells):
        values, counts = np.unique(residuals[:, i], return_counts=True)
        if values.size < min_distinct:
            raise DegenerateFitError(
                f"{name or 'residuals'} cell {i} has {values.size} distinct values; "
                f"at least {min_distinct} are needed for an empirical distribution"
            )
        if 1.0 - values.size / n_time > TIE_WARNING_FRACTION:
            heavy_ties.append(i)
        cells.append(EmpiricalCDF(i, values, _plotting_positions(counts, n_time)))

    if heavy_ties:
        warnings.warn(
            f"{len(heavy_ties)} cells of {name or 'residuals'} have more than "
            f"{TIE_WARNING_FRACTION:.0%} tied samples (first: cell {heavy_ties[0]})"
        )
    return EmpiricalDist(cells=tuple(cells), name=name)


def _check_cells(matrix: np.ndarray, dist: EmpiricalDist, label: str):
    if matrix.shape[1] != dist.n_cells:
        raise InputShapeError(
            f"{label} has {matrix.shape[1]} cells, the distribution has {dist.n_cells}"
        )


def normalize(residuals, dist: EmpiricalDist) -> np.ndarray:
    """
    Map residuals to standard normal scores: ``norm.ppf(cdf(x))`` per cell.

    Values outside the training sample continue along the tail lines and stay
    finite however far out they lie.

    Parameters
    ----------
    residuals : array-like
        T×N matrix (any T).
    dist : EmpiricalDist
        Distribution built by :func:`characterize`.

    Returns
    -------
    np.ndarray
        T×N normalized residuals.
    """
    residuals = as_time_by_cell(residuals, "residuals")
    _check_cells(residuals, dist, "residuals")
    out = np.empty_like(residuals)
    for i, cdf in enumerate(dist.cells):
        out[:, i] = cdf.score(residuals[:, i])
    return out


def unnormalize(normalized, dist: EmpiricalDist) -> np.ndarray:
    """
    Inverse of :func:`normalize`: ``quantile(norm.cdf(z))`` per cell.

    Raises
    ------
    InvertibilityError
        If a normal score is not finite.
    """
    normalized = as_time_by_cell(normalized, "normalized residuals")
    _check_cells(normalized, dist, "normalized residuals")
    out = np.empty_like(normalized)
    for i, cdf in enumerate(dist.cells):
        out[:, i] = cdf.from_score(normalized[:, i])
    return out


def spearman_matrix(data, cells: Sequence[int] = None) -> np.ndarray:
    """Spearman rank correlation between columns (optionally a subset)."""
    data = as_time_by_cell(data, "data")
    if cells is not None:
        data = data[:, list(cells)]
    rho = stats.spearmanr(data)[0]
    if np.ndim(rho) == 0:
        # spearmanr returns a scalar for exactly two columns
        rho = np.array([[1.0, rho], [rho, 1.0]])
    return np.asarray(rho)
