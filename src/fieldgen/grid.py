"""
Grid and variable containers with input validation.

A ``Grid`` is an ordered set of N cells with area weights and a time axis of
T steps. Every (time, cell) matrix in the package is laid out as T×N, cells
flattened in row-major (lat, lon) order.
"""

from dataclasses import dataclass, field
from typing import Optional, Union

import numpy as np

from .config import DEFAULT_TRANSFORMS
from .errors import InputShapeError
from .transforms import get_transform


def as_time_by_cell(
    data,
    name: str = "data",
    n_time: Optional[int] = None,
    n_cells: Optional[int] = None,
) -> np.ndarray:
    """
    Convert input to a finite float T×N matrix, checking its dimensions.

    Parameters
    ----------
    data : array-like
        Matrix with time along the first axis. A 1D input is read as a single
        cell (T×1).
    name : str
        Label used in error messages.
    n_time, n_cells : int, optional
        Expected dimensions.

    Raises
    ------
    InputShapeError
        On wrong dimensionality, mismatched sizes, or NaN/Inf values.
    """
    arr = np.asarray(data, dtype=float)
    if arr.ndim == 1:
        arr = arr.reshape(-1, 1)
    if arr.ndim != 2:
        raise InputShapeError(
            f"{name} must be a 2D (time, cell) matrix, got ndim={arr.ndim}"
        )
    if n_time is not None and arr.shape[0] != n_time:
        raise InputShapeError(
            f"{name} has {arr.shape[0]} time steps, expected {n_time}"
        )
    if n_cells is not None and arr.shape[1] != n_cells:
        raise InputShapeError(
            f"{name} has {arr.shape[1]} cells, expected {n_cells}"
        )
    if not np.all(np.isfinite(arr)):
        n_bad = int(np.sum(~np.isfinite(arr)))
        raise InputShapeError(
            f"{name} contains {n_bad} NaN/Inf values; a complete series is required"
        )
    return arr


def as_driver(driver, n_time: Optional[int] = None, name: str = "driver") -> np.ndarray:
    """Convert input to a finite 1D float series of optional length ``n_time``."""
    arr = np.asarray(driver, dtype=float)
    if arr.ndim == 2 and 1 in arr.shape:
        arr = arr.ravel()
    if arr.ndim != 1:
        raise InputShapeError(f"{name} must be 1D, got shape {arr.shape}")
    if n_time is not None and arr.size != n_time:
        raise InputShapeError(
            f"{name} has length {arr.size}, expected {n_time}"
        )
    if not np.all(np.isfinite(arr)):
        raise InputShapeError(f"{name} contains NaN/Inf values")
    return arr


@dataclass(frozen=True, eq=False)
class Grid:
    """
    Spatial cells, their area weights, and the time axis.

    Weights are normalized to sum to one on construction.
    """

    weights: np.ndarray
    time: np.ndarray
    lat: Optional[np.ndarray] = None
    lon: Optional[np.ndarray] = None
    grid_id: str = ""

    def __post_init__(self):
        w = np.asarray(self.weights, dtype=float).ravel()
        if w.size == 0:
            raise InputShapeError("Grid needs at least one cell")
        if not np.all(np.isfinite(w)) or np.any(w < 0):
            raise InputShapeError("Grid weights must be finite and non-negative")
        total = w.sum()
        if total <= 0:
            raise InputShapeError("Grid weights sum to zero")
        object.__setattr__(self, "weights", w / total)
        object.__setattr__(self, "time", np.asarray(self.time).ravel())
        for coord in ("lat", "lon"):
            values = getattr(self, coord)
            if values is not None:
                values = np.asarray(values, dtype=float).ravel()
                if values.size != w.size:
                    raise InputShapeError(
                        f"Grid {coord} has {values.size} entries for {w.size} cells"
                    )
                object.__setattr__(self, coord, values)

    @property
    def n_cells(self) -> int:
        return int(self.weights.size)

    @property
    def n_time(self) -> int:
        return int(self.time.size)

    @classmethod
    def from_latitudes(cls, lat, lon, time, grid_id: str = "") -> "Grid":
        """
        Build a grid from 1D latitude/longitude axes with cos(lat) weights.

        Cells are flattened with latitude as the slow index.
        """
        lat = np.asarray(lat, dtype=float).ravel()
        lon = np.asarray(lon, dtype=float).ravel()
        lat2d, lon2d = np.meshgrid(lat, lon, indexing="ij")
        weights = np.clip(np.cos(np.deg2rad(lat2d.ravel())), 0.0, None)
        return cls(
            weights=weights,
            time=time,
            lat=lat2d.ravel(),
            lon=lon2d.ravel(),
            grid_id=grid_id or f"{lat.size}x{lon.size}",
        )

    @classmethod
    def uniform(cls, n_cells: int, time, grid_id: str = "") -> "Grid":
        """Grid with equal weights, for non-geographic or test data."""
        return cls(weights=np.ones(int(n_cells)), time=time, grid_id=grid_id)

    def with_time(self, time) -> "Grid":
        """Same cells on a different time axis."""
        return Grid(
            weights=self.weights,
            time=time,
            lat=self.lat,
            lon=self.lon,
            grid_id=self.grid_id,
        )


def global_mean(data, grid_or_weights: Union[Grid, np.ndarray]) -> np.ndarray:
    """
    Area-weighted mean over cells for every time step.

    Parameters
    ----------
    data : array-like
        T×N matrix.
    grid_or_weights : Grid or np.ndarray
        Grid, or raw weights of length N (normalized here).

    Returns
    -------
    np.ndarray
        Length-T series, e.g. global mean temperature used as driver.
    """
    if isinstance(grid_or_weights, Grid):
        weights = grid_or_weights.weights
    else:
        weights = np.asarray(grid_or_weights, dtype=float).ravel()
    arr = as_time_by_cell(data, "data", n_cells=weights.size)
    return arr @ (weights / weights.sum())


@dataclass(frozen=True, eq=False)
class VariableSeries:
    """
    One physical variable on a grid, in its analysis (transformed) space.

    ``data`` is T×N in analysis space; ``raw`` optionally keeps the native
    values the series was built from.
    """

    name: str
    data: np.ndarray
    transform: str = "identity"
    raw: Optional[np.ndarray] = field(default=None, repr=False)

    def __post_init__(self):
        object.__setattr__(self, "data", as_time_by_cell(self.data, self.name))
        if self.raw is not None:
            raw = np.asarray(self.raw, dtype=float)
            if raw.ndim == 1:
                raw = raw.reshape(-1, 1)
            if raw.shape != self.data.shape:
                raise InputShapeError(
                    f"{self.name}: raw shape {raw.shape} differs from data shape {self.data.shape}"
                )
            object.__setattr__(self, "raw", raw)
        # fail early on unknown transform names
        get_transform(self.transform)

    @property
    def n_time(self) -> int:
        return self.data.shape[0]

    @property
    def n_cells(self) -> int:
        return self.data.shape[1]

    @classmethod
    def from_native(cls, name: str, raw, transform: Optional[str] = None) -> "VariableSeries":
        """Apply the variable's forward transform to native-unit values."""
        if transform is None:
            transform = DEFAULT_TRANSFORMS.get(name, "identity")
        raw = np.asarray(raw, dtype=float)
        data = get_transform(transform).forward(raw)
        return cls(name=name, data=data, transform=transform, raw=raw)

    def native(self) -> np.ndarray:
        """Values in native units (the stored raw matrix if present)."""
        if self.raw is not None:
            return self.raw
        return get_transform(self.transform).inverse(self.data)
