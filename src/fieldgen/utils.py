"""
Utility functions for emulator experiments
"""

from typing import Dict, Mapping

import numpy as np
import pandas as pd

from .config import PRECIP_VAR_NAME, TEMPERATURE_VAR_NAME
from .eof import EOFBasis
from .grid import Grid, global_mean


def generate_synthetic_esm_data(n_time=120, n_lat=6, n_lon=8, seed=42, joint=True):
    """
    Generate a synthetic ESM run for testing.

    Temperature responds linearly to a warming driver with a latitude-dependent
    slope (polar amplification) plus AR(1) noise that is spatially correlated
    through a shared large-scale mode. Precipitation is log-normal, scales with
    local temperature and is strictly positive.

    Parameters
    ----------
    n_time : int, default=120
        Number of time steps (e.g. years)
    n_lat, n_lon : int
        Grid dimensions
    seed : int, default=42
        Random seed for reproducibility
    joint : bool, default=True
        Also generate precipitation

    Returns
    -------
    data : dict
        'grid', 'driver', 'tas' (T×N, K), 'slopes' (true per-cell slopes)
        and, if ``joint``, 'pr' (T×N, kg m-2 s-1)

    Examples
    --------
    >>> data = generate_synthetic_esm_data(n_time=100, n_lat=4, n_lon=6)
    >>> print(data['tas'].shape)
    (100, 24)
    """
    rng = np.random.default_rng(seed)

    lat = np.linspace(-75.0, 75.0, n_lat)
    lon = np.linspace(0.0, 360.0, n_lon, endpoint=False)
    grid = Grid.from_latitudes(lat, lon, time=np.arange(n_time), grid_id=f"synthetic_{n_lat}x{n_lon}")
    n_cells = grid.n_cells

    # Forcing: gentle warming with interannual wiggle
    years = np.arange(n_time)
    forcing = 0.02 * years + 0.1 * np.sin(2 * np.pi * years / 11.0)

    # Per-cell response, stronger at high latitude
    slopes = 1.0 + 0.8 * np.abs(grid.lat) / 90.0
    base = 288.0 - 30.0 * (np.abs(grid.lat) / 90.0) ** 2

    # Spatially correlated AR(1) noise: one large-scale mode + local noise
    mode = np.cos(np.deg2rad(grid.lon)) * np.cos(np.deg2rad(grid.lat))
    phi = 0.6
    noise = np.zeros((n_time, n_cells))
    shocks = rng.standard_normal((n_time, n_cells)) * 0.3
    shocks += rng.standard_normal((n_time, 1)) * 0.5 * mode
    noise[0] = shocks[0]
    for t in range(1, n_time):
        noise[t] = phi * noise[t - 1] + shocks[t]

    tas = base + np.outer(forcing, slopes) + noise

    data = {
        'grid': grid,
        'driver': global_mean(tas, grid),
        TEMPERATURE_VAR_NAME: tas,
        'slopes': slopes,
    }

    if joint:
        # ~3 mm/day mean, +2%/K, log-normal spread anticorrelated with local noise
        log_pr = (
            np.log(3.0 / 86400.0)
            + 0.02 * (tas - base)
            - 0.2 * noise
            + rng.standard_normal((n_time, n_cells)) * 0.25
        )
        data[PRECIP_VAR_NAME] = np.exp(log_pr)

    return data


def summary_statistics(fields: Mapping[str, np.ndarray]) -> pd.DataFrame:
    """
    Calculate summary statistics for each field.

    Parameters
    ----------
    fields : dict
        Variable name -> array (e.g. one generated realization)

    Returns
    -------
    summary : pd.DataFrame
        Summary statistics table, one row per variable
    """
    stats: Dict[str, Dict[str, float]] = {}

    for key, values in fields.items():
        if isinstance(values, np.ndarray) or isinstance(values, list):
            stats[key] = {
                'mean': np.mean(values),
                'std': np.std(values),
                'min': np.min(values),
                'max': np.max(values),
                'median': np.median(values),
            }

    summary = pd.DataFrame(stats).T

    return summary


def eof_power_table(eof: EOFBasis) -> pd.DataFrame:
    """Explained variance per EOF, with the cumulative fraction."""
    return pd.DataFrame(
        {
            'power': eof.power,
            'cumulative': np.cumsum(eof.power),
        },
        index=pd.RangeIndex(1, eof.n_eof + 1, name='eof'),
    )
