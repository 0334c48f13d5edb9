"""
Optional IO utilities for training emulators from ESM NetCDF output.

These functions are lightweight wrappers: if xarray is not installed, they
raise a clear ImportError. Gridded (time, lat, lon) variables are flattened to
T×N matrices with latitude as the slow index, matching ``Grid.from_latitudes``.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np

from .config import (
    LAT_NAME,
    LON_NAME,
    NETCDF_GLOB,
    PRECIP_FILE_TOKEN,
    PRECIP_VAR_NAME,
    TEMPERATURE_FILE_TOKEN,
    TEMPERATURE_VAR_NAME,
    TIME_NAME,
)
from .emulator import Emulator, train
from .errors import InputShapeError
from .grid import Grid, VariableSeries

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def _require_xarray():
    try:
        import xarray as xr  # type: ignore
    except Exception as exc:  # pragma: no cover - import guard
        raise ImportError(
            "xarray is required for NetCDF IO. Install xarray and netCDF4."
        ) from exc
    return xr


def read_netcdf_grid(
    path: PathLike,
    var_name: str,
    lat_name: str = LAT_NAME,
    lon_name: str = LON_NAME,
    time_name: str = TIME_NAME,
    transform: Optional[str] = None,
) -> Tuple[VariableSeries, Grid]:
    """Read a (time, lat, lon) variable as a VariableSeries and its Grid.

    The variable's forward transform (log for precipitation by default) is
    applied on read; the native values are kept on the series.
    """
    xr = _require_xarray()
    with xr.open_dataset(path) as ds:
        if var_name not in ds:
            raise KeyError(f"Variable '{var_name}' not found in {path}")
        da = ds[var_name]
        missing = [d for d in (time_name, lat_name, lon_name) if d not in da.dims]
        if missing:
            raise InputShapeError(
                f"'{var_name}' in {path} lacks dimensions {missing}; found {da.dims}"
            )
        da = da.transpose(time_name, lat_name, lon_name)
        values = np.asarray(da.values, dtype=float)
        lats = np.asarray(ds[lat_name].values, dtype=float)
        lons = np.asarray(ds[lon_name].values, dtype=float)
        times = np.asarray(ds[time_name].values)

    n_time = values.shape[0]
    grid = Grid.from_latitudes(lats, lons, times)
    raw = values.reshape(n_time, -1)
    series = VariableSeries.from_native(var_name, raw, transform=transform)
    logger.debug("Read %s from %s: %d steps x %d cells", var_name, path, n_time, grid.n_cells)
    return series, grid


def pair_precipitation_file(
    tas_path: PathLike,
    tas_token: str = TEMPERATURE_FILE_TOKEN,
    pr_token: str = PRECIP_FILE_TOKEN,
) -> Path:
    """Precipitation file that belongs to a temperature file.

    The temperature token in the file name is replaced by the precipitation
    token: ``tas_annual_esm_rcp85.nc`` -> ``pr_annual_esm_rcp85.nc``.
    """
    tas_path = Path(tas_path)
    if tas_token not in tas_path.name:
        raise ValueError(f"'{tas_path.name}' does not contain the token '{tas_token}'")
    pr_path = tas_path.with_name(tas_path.name.replace(tas_token, pr_token, 1))
    if not pr_path.exists():
        raise FileNotFoundError(f"No precipitation file {pr_path} for {tas_path}")
    return pr_path


def find_training_files(
    paths: Union[PathLike, Iterable[PathLike]],
    pattern: str = NETCDF_GLOB,
    tas_token: str = TEMPERATURE_FILE_TOKEN,
) -> List[Path]:
    """Expand files and directories into a sorted list of temperature files."""
    if isinstance(paths, (str, Path)):
        paths = [paths]
    paths = list(paths)
    found = []
    for p in map(Path, paths):
        if p.is_dir():
            found.extend(f for f in sorted(p.glob(pattern)) if f.name.startswith(tas_token))
        elif p.exists():
            found.append(p)
        else:
            raise FileNotFoundError(f"Training input {p} does not exist")
    if not found:
        raise FileNotFoundError(f"No training files found in {list(paths)}")
    return found


def train_from_files(
    paths: Union[PathLike, Sequence[PathLike]],
    joint: bool = True,
    tas_name: str = TEMPERATURE_VAR_NAME,
    pr_name: str = PRECIP_VAR_NAME,
    **train_kwargs,
) -> Emulator:
    """Train an emulator on one or more ESM runs stored as NetCDF.

    Runs are concatenated along time for pattern scaling, the empirical CDFs
    and the EOFs. The spectrum is computed per run and averaged, so no Fourier
    transform spans the seam between two runs. Every run must be on the same
    grid and have the same length. The file names and run lengths are recorded
    in the emulator metadata.

    Parameters
    ----------
    paths : path or sequence of paths
        Temperature files, or directories holding them.
    joint : bool
        Also read the paired precipitation files and train jointly.
    **train_kwargs
        Passed to :func:`fieldgen.emulator.train`.

    Raises
    ------
    InputShapeError
        If the runs are on different grids or have different lengths.
    """
    files = find_training_files(paths)

    tas_parts, pr_parts, times, run_lengths = [], [], [], []
    grid = None
    for f in files:
        tas, g = read_netcdf_grid(f, tas_name)
        if grid is None:
            grid = g
        elif g.n_cells != grid.n_cells or not np.allclose(g.weights, grid.weights):
            raise InputShapeError(f"{f} is on a different grid than {files[0]}")
        tas_parts.append(tas.native())
        times.append(g.time)
        run_lengths.append(tas.n_time)
        if joint:
            pr, _ = read_netcdf_grid(pair_precipitation_file(f), pr_name)
            if pr.data.shape != tas.data.shape:
                raise InputShapeError(
                    f"Precipitation for {f} is {pr.data.shape}, temperature is {tas.data.shape}"
                )
            pr_parts.append(pr.native())
        logger.info("Loaded training run %s (%d steps)", f.name, tas.n_time)

    grid = grid.with_time(np.concatenate(times))
    variables = [VariableSeries.from_native(tas_name, np.vstack(tas_parts))]
    if joint:
        variables.append(VariableSeries.from_native(pr_name, np.vstack(pr_parts)))

    return train(
        variables,
        grid,
        source_ids=[f.name for f in files],
        run_lengths=run_lengths,
        **train_kwargs,
    )
